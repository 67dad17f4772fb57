import json
from datetime import date

import pytest

from agents import release_notes_agent
from agents.release_notes_agent import ActivityCollectionError
from agents.release_notes_agent import HybridReleaseNotesGenerator
from configs.config import LLMSettings
from conftest import FakeAnalyzer
from conftest import FakeSource
from conftest import make_analysis
from utils.activity_models import CategorizedChanges
from utils.activity_models import InvalidDateRangeError
from utils.activity_models import RawActivity
from utils.activity_sources import SourceFetchError
from utils.llm_analyzer import LLMAnalysisError
from utils.llm_analyzer import LLMConstructionError
from utils.rule_based_categorizer import RuleBasedCategorizer


RANGE = {"start": "2024-01-01", "end": "2024-01-31"}


#============================================
def make_generator(sources, analyzer=None, factory_error=None):
	"""
	Build a generator whose analyzer factory returns the given double.
	"""
	def factory(settings):
		if factory_error is not None:
			raise factory_error
		return analyzer
	return HybridReleaseNotesGenerator(
		*sources,
		llm_settings=LLMSettings(provider="bedrock"),
		analyzer_factory=factory,
	)


#============================================
def expected_rule_based(records):
	raw = RawActivity(code=records["code"], issues=records["issues"], chat=records["chat"])
	return RuleBasedCategorizer().categorize(raw)


#============================================
def test_llm_success_uses_llm_entries(dashboard_sources, dashboard_analysis) -> None:
	"""
	A successful analysis is the result and metadata reflect the LLM path.
	"""
	analyzer = FakeAnalyzer(result=dashboard_analysis)
	generator = make_generator(dashboard_sources, analyzer)
	result = generator.generate_release_notes(RANGE)

	assert result.entries == dashboard_analysis.categorized_changes
	assert [e.title for e in result.entries.new_features] == ["New Analytics Dashboard"]
	assert result.entries.fixes[0].confidence == 0.95
	meta = result.metadata
	assert meta.generation_method == "llm-enhanced"
	assert meta.ai_generated == 3
	assert meta.llm_provider == "openai"
	assert meta.llm_model == "gpt-4"
	assert meta.analysis_time >= 0
	assert meta.source_counts == {"code": 2, "issues": 1, "chat": 1}
	assert meta.failed_sources == ()
	assert meta.degradation is None
	assert meta.llm_error is None
	assert len(analyzer.calls) == 1


#============================================
def test_llm_receives_merged_activity(dashboard_sources, dashboard_analysis, dashboard_records) -> None:
	"""
	The analyzer sees every fetched record, grouped by source role.
	"""
	analyzer = FakeAnalyzer(result=dashboard_analysis)
	generator = make_generator(dashboard_sources, analyzer)
	generator.generate_release_notes(RANGE)
	raw = analyzer.calls[0]
	assert raw.code == dashboard_records["code"]
	assert raw.issues == dashboard_records["issues"]
	assert raw.chat == dashboard_records["chat"]
	assert raw.date_range.start == date(2024, 1, 1)
	assert raw.date_range.end == date(2024, 1, 31)


#============================================
class SingleArgumentAnalyzer:
	"""
	Analyzer exposing only analyze(raw_activity), the documented call shape.
	"""

	config = {"enabled": True, "provider": "openai", "model": "gpt-4"}

	def __init__(self, result):
		self.result = result
		self.seen = []

	def status(self):
		return {**self.config, "initialized": True}

	def analyze(self, raw_activity):
		self.seen.append(raw_activity)
		return self.result


#============================================
def test_analyzer_is_called_with_raw_activity_only(dashboard_sources, dashboard_analysis) -> None:
	"""
	An analyzer whose analyze takes a single argument is used, not bypassed.
	"""
	analyzer = SingleArgumentAnalyzer(dashboard_analysis)
	result = make_generator(dashboard_sources, analyzer).generate_release_notes(RANGE)

	assert result.metadata.generation_method == "llm-enhanced"
	assert result.metadata.llm_error is None
	assert result.entries == dashboard_analysis.categorized_changes
	assert len(analyzer.seen) == 1
	assert analyzer.seen[0].date_range.end == date(2024, 1, 31)


#============================================
def test_llm_failure_falls_back_to_rule_based(dashboard_sources, dashboard_records) -> None:
	"""
	A rejected analysis yields exactly the rule-based result.
	"""
	analyzer = FakeAnalyzer(error=LLMAnalysisError("LLM service unavailable", code="NETWORK"))
	generator = make_generator(dashboard_sources, analyzer)
	result = generator.generate_release_notes(RANGE)

	assert result.entries == expected_rule_based(dashboard_records)
	assert result.metadata.generation_method == "rule-based"
	assert result.metadata.ai_generated == 0
	assert result.metadata.llm_provider is None
	assert result.metadata.llm_model is None
	assert "LLM service unavailable" in result.metadata.llm_error
	assert len(analyzer.calls) == 1


#============================================
def test_unexpected_llm_exception_also_falls_back(dashboard_sources, dashboard_records) -> None:
	analyzer = FakeAnalyzer(error=RuntimeError("boom"))
	result = make_generator(dashboard_sources, analyzer).generate_release_notes(RANGE)
	assert result.entries == expected_rule_based(dashboard_records)
	assert result.metadata.generation_method == "rule-based"


#============================================
def test_shapeless_llm_result_falls_back(dashboard_sources, dashboard_records) -> None:
	"""
	A None analysis counts as a failed attempt.
	"""
	analyzer = FakeAnalyzer(result=None)
	result = make_generator(dashboard_sources, analyzer).generate_release_notes(RANGE)
	assert result.metadata.generation_method == "rule-based"
	assert result.entries == expected_rule_based(dashboard_records)
	assert result.metadata.llm_error


#============================================
def test_all_empty_llm_result_is_not_backfilled(dashboard_sources) -> None:
	"""
	Empty categories from the LLM stay empty and the path is still llm-enhanced.
	"""
	analyzer = FakeAnalyzer(result=make_analysis(CategorizedChanges()))
	result = make_generator(dashboard_sources, analyzer).generate_release_notes(RANGE)

	assert result.entries.new_features == ()
	assert result.entries.improvements == ()
	assert result.entries.fixes == ()
	assert result.metadata.generation_method == "llm-enhanced"
	assert result.metadata.ai_generated == 0
	assert result.metadata.llm_provider == "openai"


#============================================
def test_partially_empty_llm_result_is_not_backfilled(dashboard_sources, dashboard_analysis) -> None:
	changes = CategorizedChanges(new_features=dashboard_analysis.categorized_changes.new_features)
	analyzer = FakeAnalyzer(result=make_analysis(changes))
	result = make_generator(dashboard_sources, analyzer).generate_release_notes(RANGE)
	assert len(result.entries.new_features) == 1
	assert result.entries.improvements == ()
	assert result.entries.fixes == ()
	assert result.metadata.ai_generated == 1


#============================================
def test_factory_failure_leaves_analyzer_absent(dashboard_sources, dashboard_records) -> None:
	"""
	Analyzer construction errors never escape the constructor.
	"""
	generator = make_generator(dashboard_sources, factory_error=LLMConstructionError("Unknown LLM provider"))
	status = generator.get_service_status()
	assert status.llm_analyzer is False
	assert status.llm_status is None

	result = generator.generate_release_notes(RANGE)
	assert result.metadata.generation_method == "rule-based"
	assert result.entries == expected_rule_based(dashboard_records)


#============================================
def test_any_factory_exception_is_contained(dashboard_sources) -> None:
	generator = make_generator(dashboard_sources, factory_error=KeyError("region"))
	assert generator.get_service_status().llm_analyzer is False


#============================================
def test_disabled_analyzer_is_never_called(dashboard_sources, dashboard_analysis) -> None:
	"""
	A disabled analyzer is reported in status but generation is rule-based.
	"""
	analyzer = FakeAnalyzer(result=dashboard_analysis, enabled=False)
	generator = make_generator(dashboard_sources, analyzer)
	status = generator.get_service_status()
	assert status.llm_analyzer is False
	assert status.llm_status["enabled"] is False

	result = generator.generate_release_notes(RANGE)
	assert analyzer.calls == []
	assert result.metadata.generation_method == "rule-based"
	assert result.metadata.llm_error is None


#============================================
def test_service_status_reports_analyzer_and_sources(dashboard_analysis) -> None:
	analyzer = FakeAnalyzer(result=dashboard_analysis)
	generator = make_generator((FakeSource(), None, FakeSource()), analyzer)
	status = generator.get_service_status()
	assert status.llm_analyzer is True
	assert status.llm_status == {"enabled": True, "provider": "openai", "model": "gpt-4", "initialized": True}
	assert status.sources == {"code": True, "issues": False, "chat": True}
	dumped = status.model_dump(by_alias=True)
	assert dumped["llmAnalyzer"] is True
	assert "llmStatus" in dumped


#============================================
def test_partial_source_failure_is_isolated(dashboard_records, dashboard_analysis) -> None:
	"""
	One failing source contributes nothing and is reported in metadata.
	"""
	sources = (
		FakeSource(dashboard_records["code"]),
		FakeSource(error=SourceFetchError("Linear API error: HTTP 401", code="UNAUTHORIZED")),
		FakeSource(dashboard_records["chat"]),
	)
	analyzer = FakeAnalyzer(result=dashboard_analysis)
	result = make_generator(sources, analyzer).generate_release_notes(RANGE)

	assert result.metadata.source_counts == {"code": 2, "issues": 0, "chat": 1}
	assert result.metadata.failed_sources == ("issues",)
	assert result.metadata.source_errors["issues"].startswith("UNAUTHORIZED")
	assert result.metadata.degradation == "medium"
	assert result.metadata.generation_method == "llm-enhanced"
	assert analyzer.calls[0].issues == []


#============================================
def test_two_failed_sources_is_high_degradation(dashboard_records) -> None:
	sources = (
		FakeSource(dashboard_records["code"]),
		FakeSource(error=SourceFetchError("down", code="NETWORK")),
		FakeSource(error=ValueError("bad payload")),
	)
	result = make_generator(sources).generate_release_notes(RANGE)
	assert result.metadata.failed_sources == ("issues", "chat")
	assert result.metadata.source_errors["chat"].startswith("UNKNOWN")
	assert result.metadata.degradation == "high"
	assert result.metadata.source_counts["code"] == 2


#============================================
def test_malformed_records_fail_only_their_source(dashboard_records, dashboard_analysis) -> None:
	"""
	A source returning records that do not fit its record type is a failed source.
	"""
	sources = (
		FakeSource([{"title": "Add export", "additions": "lots"}]),
		FakeSource(dashboard_records["issues"]),
		FakeSource(dashboard_records["chat"]),
	)
	analyzer = FakeAnalyzer(result=dashboard_analysis)
	result = make_generator(sources, analyzer).generate_release_notes(RANGE)

	assert result.metadata.failed_sources == ("code",)
	assert result.metadata.source_errors["code"].startswith("VALIDATION")
	assert result.metadata.source_counts == {"code": 0, "issues": 1, "chat": 1}
	assert result.metadata.degradation == "medium"
	assert analyzer.calls[0].code == []


#============================================
def test_plain_dict_records_are_validated_into_models(dashboard_records) -> None:
	sources = (
		FakeSource([{"id": "f00d", "change_type": "commit", "title": "fix: crash on save", "body": "fix: crash on save"}]),
		FakeSource(dashboard_records["issues"]),
		None,
	)
	result = make_generator(sources).generate_release_notes(RANGE)
	assert result.metadata.failed_sources == ()
	assert [e.title for e in result.entries.fixes] == ["Crash on save"]
	assert result.entries.fixes[0].source_ids == ("f00d",)


#============================================
def test_all_sources_failing_raises() -> None:
	sources = (
		FakeSource(error=SourceFetchError("a", code="NETWORK")),
		FakeSource(error=SourceFetchError("b", code="TIMEOUT")),
		FakeSource(error=SourceFetchError("c", code="RATE_LIMIT")),
	)
	with pytest.raises(ActivityCollectionError) as exc_info:
		make_generator(sources).generate_release_notes(RANGE)
	assert set(exc_info.value.source_errors) == {"code", "issues", "chat"}
	assert exc_info.value.code == "ALL_SOURCES_FAILED"


#============================================
def test_no_sources_configured_yields_empty_rule_based_result() -> None:
	result = make_generator((None, None, None)).generate_release_notes(RANGE)
	assert result.entries.total() == 0
	assert result.metadata.generation_method == "rule-based"
	assert result.metadata.degradation == "critical"
	assert result.metadata.source_counts == {"code": 0, "issues": 0, "chat": 0}


#============================================
def test_every_record_is_categorized_once_without_llm(dashboard_sources, dashboard_records) -> None:
	result = make_generator(dashboard_sources).generate_release_notes(RANGE)
	assert result.entries.total() == 4
	assert all(e.origin == "rule-based" for e in result.entries.all_entries())
	assert result.entries == expected_rule_based(dashboard_records)


#============================================
@pytest.mark.parametrize("bad_range", [
	None,
	{},
	{"start": "2024-01-10"},
	{"start": "2024-02-01", "end": "2024-01-01"},
	{"start": "not-a-date", "end": "2024-01-01"},
])
def test_invalid_date_range_raises(dashboard_sources, bad_range) -> None:
	"""
	Structurally invalid ranges are the one input error that propagates.
	"""
	generator = make_generator(dashboard_sources)
	with pytest.raises(InvalidDateRangeError):
		generator.generate_release_notes(bad_range)
	assert dashboard_sources[0].calls == []


#============================================
def test_single_day_range_is_valid(dashboard_sources) -> None:
	result = make_generator(dashboard_sources).generate_release_notes(("2024-01-15", "2024-01-15"))
	assert result.date_range.start == date(2024, 1, 15)
	assert result.date_range.end == date(2024, 1, 15)
	assert dashboard_sources[0].calls[0] == result.date_range


#============================================
def test_result_serializes_with_camel_case(dashboard_sources, dashboard_analysis) -> None:
	result = make_generator(dashboard_sources, FakeAnalyzer(result=dashboard_analysis)).generate_release_notes(RANGE)
	payload = json.loads(json.dumps(result.to_json_dict(), default=str))
	assert set(payload["entries"]) == {"newFeatures", "improvements", "fixes"}
	assert payload["entries"]["newFeatures"][0]["userValue"] == "Better understanding of your data trends"
	assert payload["metadata"]["generationMethod"] == "llm-enhanced"
	assert payload["metadata"]["aiGenerated"] == 3
	assert payload["dateRange"] == {"start": "2024-01-01", "end": "2024-01-31"}


#============================================
def test_repeated_generation_is_identical_apart_from_timing(dashboard_sources, dashboard_analysis) -> None:
	"""
	Same activity and same analysis give the same result; only analysisTime may differ.
	"""
	generator = make_generator(dashboard_sources, FakeAnalyzer(result=dashboard_analysis))
	first = generator.generate_release_notes(RANGE).to_json_dict()
	second = generator.generate_release_notes(RANGE).to_json_dict()
	first["metadata"].pop("analysisTime")
	second["metadata"].pop("analysisTime")
	assert first == second
	assert "generatedAt" not in first["metadata"]


#============================================
def test_generation_writes_metrics_summary(dashboard_sources, isolated_metrics) -> None:
	make_generator(dashboard_sources).generate_release_notes(RANGE)
	lines = (isolated_metrics / "metrics.log").read_text(encoding="utf-8").splitlines()
	records = [json.loads(line) for line in lines]
	summary = [r for r in records if r["metric"] == "release_notes.generated"]
	assert len(summary) == 1
	assert summary[0]["method"] == "rule-based"
	assert summary[0]["count_code"] == 2


#============================================
def test_from_config_builds_only_configured_sources(monkeypatch) -> None:
	"""
	Sources without credentials stay unconfigured.
	"""
	class FakeConfig:
		@classmethod
		def get_github_config(cls):
			return {"token": "ghp_x", "repositories": ["acme/web"], "timeout_s": 5}

		@classmethod
		def get_linear_config(cls):
			return {"api_key": None, "team_members": [], "timeout_s": 5}

		@classmethod
		def get_slack_config(cls):
			return {"bot_token": "", "channels": [], "timeout_s": 5}

	generator = HybridReleaseNotesGenerator.from_config(
		FakeConfig,
		env={},
		analyzer_factory=lambda settings: None,
	)
	status = generator.get_service_status()
	assert status.sources == {"code": True, "issues": False, "chat": False}
	assert status.llm_analyzer is False


#============================================
def test_cli_requires_range_without_status() -> None:
	with pytest.raises(SystemExit) as exc_info:
		release_notes_agent.main([])
	assert exc_info.value.code == 2


#============================================
def test_cli_prints_result_json(monkeypatch, capsys, dashboard_sources) -> None:
	generator = make_generator(dashboard_sources)
	monkeypatch.setattr(HybridReleaseNotesGenerator, "from_config", classmethod(lambda cls: generator))
	with pytest.raises(SystemExit) as exc_info:
		release_notes_agent.main(["--start", "2024-01-01", "--end", "2024-01-31"])
	assert exc_info.value.code == 0
	payload = json.loads(capsys.readouterr().out)
	assert payload["metadata"]["generationMethod"] == "rule-based"


#============================================
def test_cli_reports_invalid_range(monkeypatch, capsys, dashboard_sources) -> None:
	generator = make_generator(dashboard_sources)
	monkeypatch.setattr(HybridReleaseNotesGenerator, "from_config", classmethod(lambda cls: generator))
	with pytest.raises(SystemExit) as exc_info:
		release_notes_agent.main(["--start", "2024-02-01", "--end", "2024-01-01"])
	assert exc_info.value.code == 2
	assert "Error:" in capsys.readouterr().err


#============================================
def test_cli_status(monkeypatch, capsys, dashboard_sources) -> None:
	generator = make_generator(dashboard_sources)
	monkeypatch.setattr(HybridReleaseNotesGenerator, "from_config", classmethod(lambda cls: generator))
	with pytest.raises(SystemExit) as exc_info:
		release_notes_agent.main(["--status"])
	assert exc_info.value.code == 0
	payload = json.loads(capsys.readouterr().out)
	assert payload["llmAnalyzer"] is False
	assert payload["sources"] == {"code": True, "issues": True, "chat": True}
