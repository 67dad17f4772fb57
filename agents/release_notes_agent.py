#!/usr/bin/env python3
"""Hybrid release notes generator.

Fetches engineering activity (code, issues, chat) for a date range, asks the
LLM analyzer to categorize it and falls back wholesale to rule-based
categorization when the analyzer is absent, disabled or fails. Every call
returns a ReleaseNotesResult whose metadata records which path produced it.
"""

import json
import logging
import sys
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from dotenv import load_dotenv

load_dotenv()

from pydantic import ValidationError  # noqa: E402

from configs.config import Config, LLMSettings  # noqa: E402
from utils.activity_models import (  # noqa: E402
	ChatMessage,
	CodeChange,
	DateRange,
	GenerationMetadata,
	InvalidDateRangeError,
	IssueUpdate,
	RawActivity,
	ReleaseNotesResult,
	ServiceStatus,
)
from utils.activity_sources import (  # noqa: E402
	ActivitySource,
	GitHubActivitySource,
	LinearActivitySource,
	SlackActivitySource,
	SourceFetchError,
)
from utils.llm_analyzer import LLMAnalysis, create_release_notes_analyzer  # noqa: E402
from utils.metrics import incr, record_generation  # noqa: E402
from utils.rule_based_categorizer import RuleBasedCategorizer  # noqa: E402

# Set up logging
logger = logging.getLogger(__name__)

SOURCE_ROLES = ("code", "issues", "chat")
RECORD_TYPES = {"code": CodeChange, "issues": IssueUpdate, "chat": ChatMessage}


class ActivityCollectionError(Exception):
	"""Raised when every configured activity source failed."""

	def __init__(self, message: str, source_errors: Dict[str, str], code: str = "ALL_SOURCES_FAILED") -> None:
		super().__init__(message)
		self.code = code
		self.source_errors = source_errors


def _degradation(working: int) -> Optional[str]:
	if working >= len(SOURCE_ROLES):
		return None
	if working == 0:
		return "critical"
	if working == 1:
		return "high"
	return "medium"


class HybridReleaseNotesGenerator:
	"""Generates categorized release notes, preferring the LLM and falling back to rules."""

	def __init__(
		self,
		code_source: Optional[ActivitySource] = None,
		issue_source: Optional[ActivitySource] = None,
		chat_source: Optional[ActivitySource] = None,
		*,
		llm_settings: Optional[LLMSettings] = None,
		analyzer_factory: Callable[[LLMSettings], Any] = create_release_notes_analyzer,
		categorizer: Optional[RuleBasedCategorizer] = None,
	):
		"""Initialize the generator.

		Args:
			code_source: Source of commits and pull requests, or None if not configured
			issue_source: Source of issue-tracker updates, or None
			chat_source: Source of chat messages, or None
			llm_settings: LLM settings (defaults to LLMSettings.from_env())
			analyzer_factory: Builds the LLM analyzer from settings
			categorizer: Rule-based categorizer used when the LLM path is not taken
		"""
		self._sources: Dict[str, Optional[ActivitySource]] = {
			"code": code_source,
			"issues": issue_source,
			"chat": chat_source,
		}
		self._categorizer = categorizer or RuleBasedCategorizer()
		self._llm_analyzer = None
		try:
			self._llm_analyzer = analyzer_factory(llm_settings or LLMSettings.from_env())
		except Exception as e:
			logger.warning(f"LLM analyzer unavailable, using rule-based categorization only: {e}")
		configured = [role for role, src in self._sources.items() if src is not None]
		logger.info(f"Release notes generator initialized (sources: {', '.join(configured) or 'none'}, llm: {self._llm_enabled()})")

	@classmethod
	def from_config(cls, config=Config, env: Optional[Mapping[str, str]] = None, **kwargs) -> "HybridReleaseNotesGenerator":
		"""Build the concrete GitHub, Linear and Slack sources from configuration.

		Sources whose credentials are missing are left unconfigured.
		"""
		github = config.get_github_config()
		linear = config.get_linear_config()
		slack = config.get_slack_config()
		sources: Dict[str, Optional[ActivitySource]] = {"code": None, "issues": None, "chat": None}
		if github["token"]:
			sources["code"] = GitHubActivitySource(**github)
		if linear["api_key"]:
			sources["issues"] = LinearActivitySource(**linear)
		if slack["bot_token"]:
			sources["chat"] = SlackActivitySource(**slack)
		kwargs.setdefault("llm_settings", LLMSettings.from_env(env))
		return cls(sources["code"], sources["issues"], sources["chat"], **kwargs)

	def _llm_enabled(self) -> bool:
		if self._llm_analyzer is None:
			return False
		return bool(self._llm_analyzer.config.get("enabled", False))

	def _fetch_one(self, role: str, source: ActivitySource, date_range: DateRange) -> Tuple[list, float]:
		t0 = time.perf_counter()
		model = RECORD_TYPES[role]
		records = []
		for record in source.fetch(date_range) or []:
			if isinstance(record, model):
				records.append(record)
				continue
			try:
				records.append(model.model_validate(record))
			except (ValidationError, TypeError) as e:
				raise SourceFetchError(f"{role} source returned an invalid record: {e}", code="VALIDATION") from e
		return records, time.perf_counter() - t0

	def _fetch_all(self, date_range: DateRange) -> Tuple[RawActivity, Dict[str, str]]:
		"""Fetch all configured sources concurrently, isolating each failure.

		Returns:
			Raw activity and a mapping of failed role -> error message

		Raises:
			ActivityCollectionError: If every configured source failed
		"""
		configured = {role: src for role, src in self._sources.items() if src is not None}
		if not configured:
			logger.warning("No activity sources configured; release notes will be empty")
			return RawActivity(date_range=date_range), {}

		collected: Dict[str, list] = {role: [] for role in SOURCE_ROLES}
		failed: Dict[str, str] = {}
		with ThreadPoolExecutor(max_workers=len(SOURCE_ROLES)) as pool:
			futures = {role: pool.submit(self._fetch_one, role, src, date_range) for role, src in configured.items()}
			for role, future in futures.items():
				try:
					records, elapsed = future.result()
				except SourceFetchError as e:
					failed[role] = f"{e.code}: {e}"
					logger.warning(f"{role} source failed ({e.code}): {e}")
					incr("source.fetch_failed", role=role, code=e.code)
					continue
				except Exception as e:
					failed[role] = f"UNKNOWN: {e}"
					logger.warning(f"{role} source failed unexpectedly: {e}")
					incr("source.fetch_failed", role=role, code="UNKNOWN")
					continue
				collected[role] = records
				incr(f"source.{role}.latency_s", value=elapsed, records=len(records))
				logger.debug(f"✓ Fetched {len(records)} {role} records in {elapsed:.2f}s")

		if len(failed) == len(configured):
			raise ActivityCollectionError(
				f"All configured activity sources failed: {', '.join(sorted(failed))}",
				source_errors=failed,
			)
		raw = RawActivity(
			code=collected["code"],
			issues=collected["issues"],
			chat=collected["chat"],
			date_range=date_range,
		)
		return raw, failed

	def _try_llm(self, raw_activity: RawActivity) -> Tuple[Optional[LLMAnalysis], Optional[str]]:
		"""Run the single LLM attempt. Returns (analysis, None) or (None, error message)."""
		try:
			analysis = self._llm_analyzer.analyze(raw_activity)
			if not isinstance(analysis, LLMAnalysis):
				analysis = LLMAnalysis.model_validate(analysis)
		except Exception as e:
			code = getattr(e, "code", "UNKNOWN")
			logger.warning(f"LLM analysis failed ({code}), falling back to rule-based categorization: {e}")
			incr("llm.fallback", code=code)
			return None, str(e) or type(e).__name__
		return analysis, None

	def generate_release_notes(self, date_range: Any) -> ReleaseNotesResult:
		"""Generate release notes for a date range.

		Args:
			date_range: DateRange, {'start': ..., 'end': ...} mapping or (start, end) pair

		Returns:
			ReleaseNotesResult with entries, metadata and the validated date range

		Raises:
			InvalidDateRangeError: If the date range is missing, unparsable or reversed
			ActivityCollectionError: If every configured source failed
		"""
		date_range = DateRange.parse(date_range)
		logger.info(f"Generating release notes for {date_range.start} to {date_range.end}")
		t0 = time.perf_counter()

		raw_activity, failed = self._fetch_all(date_range)

		analysis = None
		llm_error = None
		if self._llm_enabled():
			analysis, llm_error = self._try_llm(raw_activity)

		if analysis is not None:
			entries = analysis.categorized_changes
			metadata_fields = {
				"generation_method": "llm-enhanced",
				"ai_generated": entries.total(),
				"llm_provider": analysis.metadata.provider,
				"llm_model": analysis.metadata.model,
			}
		else:
			entries = self._categorizer.categorize(raw_activity)
			metadata_fields = {"generation_method": "rule-based", "ai_generated": 0}

		working = sum(1 for role, src in self._sources.items() if src is not None and role not in failed)
		metadata = GenerationMetadata(
			**metadata_fields,
			analysis_time=(time.perf_counter() - t0) * 1000.0,
			source_counts=raw_activity.counts(),
			failed_sources=tuple(role for role in SOURCE_ROLES if role in failed),
			source_errors=failed,
			degradation=_degradation(working),
			llm_error=llm_error,
		)
		record_generation(metadata)
		logger.info(f"✓ Generated {entries.total()} entries ({metadata.generation_method}) in {metadata.analysis_time:.0f}ms")
		return ReleaseNotesResult(entries=entries, metadata=metadata, date_range=date_range)

	def get_service_status(self) -> ServiceStatus:
		"""Report which collaborators were available at construction time."""
		return ServiceStatus(
			llm_analyzer=self._llm_enabled(),
			llm_status=self._llm_analyzer.status() if self._llm_analyzer is not None else None,
			sources={role: src is not None for role, src in self._sources.items()},
		)


def main(argv=None):
	"""CLI entry point for the release notes generator."""
	import argparse

	parser = argparse.ArgumentParser(
		description="Hybrid Release Notes Generator - categorize engineering activity for a date range",
		formatter_class=argparse.RawDescriptionHelpFormatter,
		epilog="""
Examples:
  python -m agents.release_notes_agent --start 2024-01-01 --end 2024-01-15
  python -m agents.release_notes_agent --status
		"""
	)
	parser.add_argument("--start", help="First day of the range (YYYY-MM-DD)")
	parser.add_argument("--end", help="Last day of the range (YYYY-MM-DD)")
	parser.add_argument("--status", action="store_true", help="Print service status and exit")
	parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

	args = parser.parse_args(argv)
	if not args.status and not (args.start and args.end):
		parser.error("--start and --end are required unless --status is given")

	# Set up logging
	log_level = logging.DEBUG if args.verbose else logging.INFO
	logging.basicConfig(
		level=log_level,
		format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
	)

	# Suppress verbose logs from libraries unless in debug mode
	if not args.verbose:
		logging.getLogger("utils.activity_sources").setLevel(logging.WARNING)
		logging.getLogger("utils.metrics").setLevel(logging.WARNING)
		logging.getLogger("urllib3").setLevel(logging.WARNING)
		logging.getLogger("botocore").setLevel(logging.WARNING)

	try:
		generator = HybridReleaseNotesGenerator.from_config()
		if args.status:
			print(json.dumps(generator.get_service_status().model_dump(by_alias=True), indent=2, default=str))
			sys.exit(0)

		result = generator.generate_release_notes({"start": args.start, "end": args.end})
		print(json.dumps(result.to_json_dict(), indent=2, default=str))
		sys.exit(0)

	except InvalidDateRangeError as e:
		print(f"Error: {e}", file=sys.stderr)
		sys.exit(2)

	except ActivityCollectionError as e:
		print(f"Error: {e}", file=sys.stderr)
		for role, message in e.source_errors.items():
			print(f"  {role}: {message}", file=sys.stderr)
		sys.exit(1)

	except KeyboardInterrupt:
		print("\nOperation cancelled by user", file=sys.stderr)
		sys.exit(1)

	except Exception as e:
		# Unexpected error
		print(f"Unexpected error: {e}", file=sys.stderr)
		if args.verbose:
			logger.exception("Detailed error information:")
		else:
			print("Use --verbose for more details", file=sys.stderr)
		sys.exit(1)


if __name__ == "__main__":
	main()
