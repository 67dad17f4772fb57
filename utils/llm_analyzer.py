#!/usr/bin/env python3
"""LLM-backed release notes analysis.

``create_release_notes_analyzer`` validates ``LLMSettings`` and builds the
provider client from a small name -> builder registry. The analyzer turns raw
activity into ``CategorizedChanges`` with one model call and wraps every
failure in ``LLMAnalysisError`` so the generator can fall back to rules.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

from langsmith.run_helpers import traceable
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from clients.bedrock_client import BedrockClient, BedrockError
from configs.config import LLMSettings
from utils.activity_models import CategorizedChanges, RawActivity
from utils.json_sanitizer import JSONSanitizerError, extract_categorized_changes
from utils.metrics import Timer
from utils.prompt_builder import build_categorization_prompt

logger = logging.getLogger(__name__)


class LLMConstructionError(Exception):
	def __init__(self, message: str, code: str = "INVALID_CONFIG") -> None:
		super().__init__(message)
		self.code = code


class LLMAnalysisError(Exception):
	def __init__(self, message: str, code: str = "UNKNOWN") -> None:
		super().__init__(message)
		self.code = code


class AnalysisMetadata(BaseModel):
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

	provider: str
	model: Optional[str] = None
	duration: float = Field(0.0, ge=0.0, description="Milliseconds spent in the model call")
	analysis_type: str = "release-notes"


class LLMAnalysis(BaseModel):
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

	categorized_changes: CategorizedChanges
	metadata: AnalysisMetadata


def _build_bedrock(settings: LLMSettings) -> BedrockClient:
	return BedrockClient(
		model_id=settings.model,
		region=settings.region,
		timeout_s=settings.timeout_s,
		max_output_tokens=settings.max_tokens,
		temperature=settings.temperature,
	)


# Provider name -> builder returning an object with ``complete_json(prompt) -> str``
_PROVIDERS: Dict[str, Callable[[LLMSettings], Any]] = {
	"bedrock": _build_bedrock,
}


def register_provider(name: str, builder: Callable[[LLMSettings], Any]) -> None:
	_PROVIDERS[name.strip().lower()] = builder


def _validate(settings: LLMSettings) -> None:
	if not settings.provider:
		raise LLMConstructionError("LLM provider is not configured (LLM_PROVIDER)", code="NOT_CONFIGURED")
	if settings.provider not in _PROVIDERS:
		raise LLMConstructionError(
			f"Unknown LLM provider '{settings.provider}'. Available: {', '.join(sorted(_PROVIDERS))}",
			code="UNKNOWN_PROVIDER",
		)
	if settings.max_tokens <= 0:
		raise LLMConstructionError(f"max_tokens must be positive, got {settings.max_tokens}")
	if not 0 <= settings.temperature <= 2:
		raise LLMConstructionError(f"temperature must be between 0 and 2, got {settings.temperature}")
	if settings.timeout_s <= 0:
		raise LLMConstructionError(f"timeout_s must be positive, got {settings.timeout_s}")


class ReleaseNotesAnalyzer:
	"""Categorizes raw activity with a single LLM call."""

	def __init__(self, settings: LLMSettings, client: Any = None) -> None:
		self.settings = settings
		self.client = client

	@property
	def config(self) -> Dict[str, Any]:
		return self.settings.describe()

	@property
	def enabled(self) -> bool:
		return self.settings.enabled

	def status(self) -> Dict[str, Any]:
		return {**self.config, "initialized": self.client is not None}

	@traceable(name="analyze_release_notes")
	def analyze(self, raw_activity: RawActivity) -> LLMAnalysis:
		"""Categorize the activity into release-note entries.

		Raises:
			LLMAnalysisError: on any failure, including a disabled analyzer
		"""
		if not self.enabled or self.client is None:
			raise LLMAnalysisError("LLM analyzer is disabled", code="DISABLED")

		start = time.perf_counter()
		if raw_activity.is_empty():
			logger.info("No activity to analyze; returning empty categorization")
			changes = CategorizedChanges()
		else:
			prompt, meta = build_categorization_prompt(raw_activity)
			logger.debug(f"LLM prompt built: {meta}")
			try:
				with Timer("llm.analyze", provider=self.settings.provider):
					reply = self.client.complete_json(prompt)
				changes = extract_categorized_changes(reply)
			except (BedrockError, JSONSanitizerError) as e:
				raise LLMAnalysisError(f"LLM analysis failed: {e}", code=e.code) from e
			except Exception as e:
				raise LLMAnalysisError(f"LLM analysis failed: {e}", code="UNKNOWN") from e

		duration_ms = (time.perf_counter() - start) * 1000.0
		logger.info(f"✓ LLM categorized {changes.total()} entries in {duration_ms:.0f}ms")
		return LLMAnalysis(
			categorized_changes=changes,
			metadata=AnalysisMetadata(
				provider=self.settings.provider,
				model=self.settings.model,
				duration=duration_ms,
			),
		)


def create_release_notes_analyzer(settings: Optional[LLMSettings] = None, client: Any = None) -> ReleaseNotesAnalyzer:
	"""Build an analyzer from settings.

	Args:
		settings: LLM settings (defaults to ``LLMSettings.from_env()``)
		client: Pre-built provider client; skips the registry builder

	Raises:
		LLMConstructionError: missing or unknown provider, invalid numbers,
			or a provider client that cannot be built
	"""
	settings = settings or LLMSettings.from_env()
	_validate(settings)
	if client is None and settings.enabled:
		try:
			client = _PROVIDERS[settings.provider](settings)
		except BedrockError as e:
			raise LLMConstructionError(f"Could not build {settings.provider} client: {e}", code=e.code) from e
		except Exception as e:
			raise LLMConstructionError(f"Could not build {settings.provider} client: {e}", code="CLIENT_INIT") from e
	logger.info(f"LLM analyzer created: {settings.describe()}")
	return ReleaseNotesAnalyzer(settings, client)
