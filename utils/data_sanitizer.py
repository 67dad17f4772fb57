#!/usr/bin/env python3
"""Redaction of secrets and personal data in activity text.

Applied to every piece of source text before it is placed in an LLM prompt.
"""
from __future__ import annotations

import re
from typing import Iterable, List, Pattern, Tuple


_RULES: List[Tuple[Pattern[str], str]] = [
	(re.compile(r"\bgh[ps]_[A-Za-z0-9_]{36,}\b"), "[GITHUB_TOKEN_REDACTED]"),
	(re.compile(r"\blin_api_[A-Za-z0-9_]{40,}\b"), "[LINEAR_TOKEN_REDACTED]"),
	(re.compile(r"\bxox[bpoa]-[A-Za-z0-9-]+"), "[SLACK_TOKEN_REDACTED]"),
	(re.compile(r"\b[A-Za-z0-9._%+-]+@(?!github\.com|noreply)[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "[EMAIL_REDACTED]"),
	(re.compile(r"\b(?:sk-|pk_)[A-Za-z0-9_-]{20,}\b"), "[TOKEN_REDACTED]"),
	(re.compile(r"\b(?:api[_-]?key|secret|token)[\"\s]*[:=][\"\s]*[A-Za-z0-9_-]{20,}\b", re.IGNORECASE), "[API_KEY_REDACTED]"),
	(
		re.compile(
			r"https?://(?!api\.github\.com|github\.com)[^\s<>\"{}|\\^`\[\]]*(?:password|token|key|secret)[^\s<>\"{}|\\^`\[\]]*",
			re.IGNORECASE,
		),
		"[URL_REDACTED]",
	),
	# Slack mentions
	(re.compile(r"<@U[A-Z0-9]+>"), "@[USER]"),
	(re.compile(r"<#C[A-Z0-9]+(?:\|[^>]+)?>"), "#[CHANNEL]"),
]


def sanitize_text(text: str) -> str:
	if not text:
		return text or ""
	for pattern, replacement in _RULES:
		text = pattern.sub(replacement, text)
	return text


def sanitize_all(values: Iterable[str]) -> List[str]:
	return [sanitize_text(v) for v in values or []]
