#!/usr/bin/env python3
from __future__ import annotations

import logging
import re
from typing import Dict, List, Tuple

from utils.activity_models import (
	CATEGORIES,
	CategorizedChanges,
	CategorizedEntry,
	CodeChange,
	IssueUpdate,
	RawActivity,
	RawActivityRecord,
)

logger = logging.getLogger(__name__)

_CONVENTIONAL = re.compile(r"^(feat|fix|hotfix|chore|docs|style|refactor|perf|test|build|ci)(\([^)]*\))?!?:\s*", re.IGNORECASE)
_DRAFT = re.compile(r"^(wip|draft)\s*:\s*", re.IGNORECASE)

_FIX_WORDS = re.compile(r"\b(fix(es|ed)?|bugs?|issues?|errors?|crash(es|ed)?|broken|resolve[sd]?|patch(es|ed)?)\b", re.IGNORECASE)
_FEATURE_WORDS = re.compile(r"\b(add(s|ed)?|new|features?|implement(s|ed)?|create[sd]?|introduce[sd]?)\b", re.IGNORECASE)
_FIX_LABELS = {"bug", "defect", "fix", "hotfix"}
_FEATURE_LABELS = {"feature", "enhancement", "new"}

USER_VALUE = {
	"newFeatures": "Adds new functionality to enhance your workflow",
	"improvements": "Makes existing features work better and faster",
	"fixes": "Resolves issues to provide a smoother experience",
}

_CHAT_TITLE_MAX = 50


def clean_title(title: str) -> str:
	"""Strip conventional-commit and WIP/DRAFT prefixes and capitalize."""
	t = (title or "").strip()
	t = _DRAFT.sub("", t)
	t = _CONVENTIONAL.sub("", t)
	t = _DRAFT.sub("", t).strip()
	if not t:
		return ""
	return t[0].upper() + t[1:]


def _chat_title(text: str) -> str:
	first = (text or "").strip().split("\n")[0].strip()
	if len(first) > _CHAT_TITLE_MAX:
		first = first[:_CHAT_TITLE_MAX] + "..."
	return clean_title(first)


def _classify(text: str, labels: List[str]) -> str:
	m = _CONVENTIONAL.match(text.strip())
	if m:
		prefix = m.group(1).lower()
		if prefix == "feat":
			return "newFeatures"
		if prefix in ("fix", "hotfix"):
			return "fixes"
		return "improvements"

	lowered = {label.strip().lower() for label in labels}
	if _FIX_WORDS.search(text) or lowered & _FIX_LABELS:
		return "fixes"
	if _FEATURE_WORDS.search(text) or lowered & _FEATURE_LABELS:
		return "newFeatures"
	return "improvements"


def _describe(record: RawActivityRecord) -> Tuple[str, str, str, List[str], float]:
	# (title, description, text to classify, labels, confidence)
	if isinstance(record, CodeChange):
		if record.change_type == "pull_request":
			confidence = 0.9 if record.merged and record.body.strip() else 0.6
			text = f"{record.title}\n{record.body}"
		else:
			confidence = 0.7 if len(record.body or record.title) > 20 else 0.5
			text = record.body or record.title
		return clean_title(record.title), record.body.strip(), text, record.labels, confidence
	if isinstance(record, IssueUpdate):
		completed = record.state_type.lower() == "completed" or record.state.lower() in ("done", "completed")
		confidence = 0.9 if completed and record.description.strip() else 0.7
		return clean_title(record.title), record.description.strip(), f"{record.title}\n{record.description}", record.labels, confidence
	return _chat_title(record.text), record.text.strip(), record.text, [], 0.6


class RuleBasedCategorizer:
	"""Keyword and label heuristics mapping every record to exactly one category."""

	def categorize(self, raw_activity: RawActivity) -> CategorizedChanges:
		buckets: Dict[str, List[CategorizedEntry]] = {name: [] for name in CATEGORIES}
		for record in raw_activity.records():
			title, description, text, labels, confidence = _describe(record)
			category = _classify(text, labels)
			buckets[category].append(CategorizedEntry(
				title=title or "Untitled change",
				description=description,
				user_value=USER_VALUE[category],
				confidence=confidence,
				category=category,
				origin="rule-based",
				source_ids=(record.id,) if record.id else (),
			))
		changes = CategorizedChanges.from_buckets(buckets)
		logger.debug(f"Rule-based categorization: {changes.total()} entries from {sum(raw_activity.counts().values())} records")
		return changes
