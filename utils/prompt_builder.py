#!/usr/bin/env python3
from __future__ import annotations

import json
import re
from typing import Dict, Any, Tuple, List, Optional

from configs.config import Config
from utils.activity_models import ChatMessage, CodeChange, DateRange, IssueUpdate, RawActivity
from utils.data_sanitizer import sanitize_all, sanitize_text
from utils.json_sanitizer import CategorizationReply


RELEASE_NOTES_TEMPLATE = """You are writing customer-facing release notes for a software product.

Below is the engineering activity for the period. Group it into user-visible
changes and classify each change as exactly one of:
- newFeatures: functionality that did not exist before
- improvements: better performance, usability or behavior of existing features
- fixes: resolved bugs, errors or crashes

Rules:
- Merge records that describe the same change into one entry.
- Leave out purely internal work (refactors, CI, dependency bumps) unless it is user-visible.
- Write titles and descriptions in plain language for end users, not engineers.
- "userValue" is one sentence on why the change matters to the user.
- "confidence" is a number between 0 and 1.
- An empty list is a valid answer for any category.

Period: {{ start }} to {{ end }}
Record counts: {{ counts }}{{ truncation_note }}

Code changes (commits and pull requests):
{{ code }}

Issue tracker updates:
{{ issues }}

Team chat:
{{ chat }}

Respond with a single JSON object matching this JSON schema and nothing else:
{{ json_schema }}
"""


_PLACEHOLDER = re.compile(r"\{\{ (\w+) \}\}")


def _render_template(template: str, mapping: Dict[str, str]) -> str:
	# Single pass: substituted values are never scanned for placeholders again
	return _PLACEHOLDER.sub(lambda m: mapping.get(m.group(1), m.group(0)), template)


def _clip(text: str, limit: int) -> str:
	text = sanitize_text(text or "").replace("\r", " ").replace("\n", " ").strip()
	if len(text) > limit:
		return text[:limit] + "..."
	return text


def _bulleted(lines: List[str]) -> str:
	if not lines:
		return "- none"
	return "\n".join(f"- {line}" for line in lines)


def _code_line(c: CodeChange, limit: int) -> str:
	parts = [f"[{c.change_type} {sanitize_text(c.id)[:12]}] {_clip(c.title, limit)}"]
	if c.change_type == "pull_request":
		parts.append(f"merged={c.merged} +{c.additions}/-{c.deletions}")
		if c.body:
			parts.append(_clip(c.body, limit))
	if c.labels:
		parts.append("labels=" + ",".join(sanitize_all(c.labels)))
	return " | ".join(parts)


def _issue_line(i: IssueUpdate, limit: int) -> str:
	parts = [f"[{sanitize_text(i.id)}] {_clip(i.title, limit)}", f"state={i.state or 'unknown'} priority={i.priority}"]
	if i.description:
		parts.append(_clip(i.description, limit))
	if i.labels:
		parts.append("labels=" + ",".join(sanitize_all(i.labels)))
	return " | ".join(parts)


def _chat_line(m: ChatMessage, limit: int) -> str:
	return f"[#{sanitize_text(m.channel)}] {_clip(m.text, limit)}"


def build_categorization_prompt(raw_activity: RawActivity, date_range: Optional[DateRange] = None,
		budgets: Optional[Dict[str, int]] = None) -> Tuple[str, Dict[str, Any]]:
	"""Build the categorization prompt for one generation call.

	Returns the prompt text and meta info for logging.
	"""
	date_range = date_range or raw_activity.date_range
	budgets = budgets or Config.get_prompt_budget_config()
	max_records = int(budgets.get("max_records", 200))
	limit = int(budgets.get("max_text_chars", 400))

	# Share the record budget across sources in record order
	remaining = max_records
	code = raw_activity.code[:remaining]
	remaining -= len(code)
	issues = raw_activity.issues[:max(remaining, 0)]
	remaining -= len(issues)
	chat = raw_activity.chat[:max(remaining, 0)]
	included = len(code) + len(issues) + len(chat)
	total = sum(raw_activity.counts().values())

	truncation_note = ""
	if included < total:
		truncation_note = f" (showing {included} of {total} records)"

	schema_json = json.dumps(CategorizationReply.model_json_schema(), separators=(",", ":"))
	mapping = {
		"start": date_range.start.isoformat() if date_range else "unspecified",
		"end": date_range.end.isoformat() if date_range else "unspecified",
		"counts": json.dumps(raw_activity.counts()),
		"truncation_note": truncation_note,
		"code": _bulleted([_code_line(c, limit) for c in code]),
		"issues": _bulleted([_issue_line(i, limit) for i in issues]),
		"chat": _bulleted([_chat_line(m, limit) for m in chat]),
		"json_schema": schema_json,
	}
	prompt = _render_template(RELEASE_NOTES_TEMPLATE, mapping)
	meta = {
		"records_total": total,
		"records_in_prompt": included,
		"prompt_len": len(prompt),
	}
	return prompt, meta
