#!/usr/bin/env python3
from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from utils.activity_models import CATEGORIES, CategorizedChanges, CategorizedEntry

logger = logging.getLogger(__name__)


class JSONSanitizerError(Exception):
	def __init__(self, message: str, code: str = "SANITIZE_ERROR") -> None:
		super().__init__(message)
		self.code = code


class ReplyEntry(BaseModel):
	"""One entry as the model is asked to return it."""

	model_config = ConfigDict(extra="ignore", populate_by_name=True)

	title: str = ""
	description: Optional[str] = ""
	user_value: Optional[str] = Field("", alias="userValue")
	confidence: Optional[float] = None


class CategorizationReply(BaseModel):
	"""Shape of the model reply; used for the prompt schema."""

	newFeatures: List[ReplyEntry] = Field(default_factory=list)
	improvements: List[ReplyEntry] = Field(default_factory=list)
	fixes: List[ReplyEntry] = Field(default_factory=list)


# --- Private helpers ---

def _strip_fences(text: str) -> str:
	return re.sub(r"```[a-zA-Z]*\n|```", "", text)


def _remove_control_chars(text: str) -> str:
	return re.sub(r"[\x00-\x08\x0B\x0C\x0E-\x1F]", " ", text)


def _largest_braced_region(text: str) -> str | None:
	stack: List[int] = []
	best = None
	best_len = 0
	for i, ch in enumerate(text):
		if ch == '{':
			stack.append(i)
		elif ch == '}' and stack:
			start = stack.pop()
			cand = text[start:i+1]
			if len(cand) > best_len:
				best = cand
				best_len = len(cand)
	return best


def _fix_trailing_commas(s: str) -> str:
	return re.sub(r",\s*([}\]])", r"\1", s)


def _smart_quotes(s: str) -> str:
	return s.replace("“", '"').replace("”", '"').replace("’", "'")


def _clamp(value: Optional[float]) -> float:
	if value is None:
		return 0.5
	return min(1.0, max(0.0, float(value)))


# --- Public API ---

def extract_json_objects(raw_text: str) -> List[str]:
	"""Return candidate JSON object strings found in raw_text, most-likely first."""
	if not raw_text:
		return []
	text = _remove_control_chars(_strip_fences(raw_text))
	cands: List[str] = []
	# Prefer largest braced region
	largest = _largest_braced_region(text)
	if largest:
		cands.append(largest)
	# Fallback: naive scan for first and last braces
	first = text.find('{')
	last = text.rfind('}')
	if first != -1 and last != -1 and last > first:
		frag = text[first:last+1]
		if frag not in cands:
			cands.append(frag)
	return cands


def minimal_json_repairs(s: str) -> str:
	"""Apply minimal, safe repairs without inventing content."""
	s = _smart_quotes(s)
	s = _fix_trailing_commas(s)
	return s.strip()


def _load_reply(raw_text: str) -> Dict[str, Any]:
	candidates = extract_json_objects(raw_text)
	if not candidates:
		raise JSONSanitizerError("No JSON object candidates found", code="NO_JSON")
	last_error: Exception | None = None
	for cand in candidates:
		try:
			data = json.loads(minimal_json_repairs(cand))
		except json.JSONDecodeError as e:
			last_error = e
			continue
		if isinstance(data, dict):
			return data
	raise JSONSanitizerError(str(last_error or "JSON decode error"), code="JSON_DECODE")


def resolve_conflicts(entries: List[CategorizedEntry]) -> List[CategorizedEntry]:
	"""Keep one entry per case-insensitive title, the highest confidence one (first on ties)."""
	winners: Dict[str, CategorizedEntry] = {}
	for entry in entries:
		key = entry.title.strip().lower()
		current = winners.get(key)
		if current is None or entry.confidence > current.confidence:
			if current is not None:
				logger.warning(f"Duplicate entry '{entry.title}': keeping {entry.category} over {current.category}")
			winners[key] = entry
	return [e for e in entries if winners[e.title.strip().lower()] is e]


def extract_categorized_changes(raw_text: str) -> CategorizedChanges:
	"""Parse a model reply into CategorizedChanges.

	The category key decides an entry's category. Unknown keys are ignored and
	missing keys are empty categories, but at least one known key must be present.
	"""
	data = _load_reply(raw_text)
	if not any(k in data for k in CATEGORIES) and isinstance(data.get("categorizedChanges"), dict):
		data = data["categorizedChanges"]
	if not any(k in data for k in CATEGORIES):
		raise JSONSanitizerError("Reply has none of the expected categories", code="VALIDATION")

	entries: List[CategorizedEntry] = []
	for category in CATEGORIES:
		items = data.get(category) or []
		if not isinstance(items, list):
			raise JSONSanitizerError(f"Category '{category}' is not a list", code="VALIDATION")
		for item in items:
			if not isinstance(item, dict):
				logger.warning(f"Skipping non-object entry in {category}")
				continue
			try:
				reply = ReplyEntry.model_validate(item)
			except ValidationError as e:
				logger.warning(f"Skipping malformed entry in {category}: {e.errors()[0].get('msg')}")
				continue
			title = (reply.title or "").strip()
			if not title:
				logger.warning(f"Skipping entry without title in {category}")
				continue
			entries.append(CategorizedEntry(
				title=title,
				description=(reply.description or "").strip(),
				user_value=(reply.user_value or "").strip(),
				confidence=_clamp(reply.confidence),
				category=category,
				origin="llm",
			))

	buckets: Dict[str, List[CategorizedEntry]] = {name: [] for name in CATEGORIES}
	for entry in resolve_conflicts(entries):
		buckets[entry.category].append(entry)
	return CategorizedChanges.from_buckets(buckets)
