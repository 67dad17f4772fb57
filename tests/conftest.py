from datetime import datetime
from datetime import timezone

import pytest

from configs.config import Config
from configs.config import LLMSettings
from utils.activity_models import CategorizedChanges
from utils.activity_models import CategorizedEntry
from utils.activity_models import ChatMessage
from utils.activity_models import CodeChange
from utils.activity_models import IssueUpdate
from utils.activity_sources import ActivitySource
from utils.llm_analyzer import AnalysisMetadata
from utils.llm_analyzer import LLMAnalysis


#============================================
@pytest.fixture(autouse=True)
def isolated_metrics(tmp_path, monkeypatch):
	"""
	Keep metrics lines out of the working tree.
	"""
	monkeypatch.setattr(Config, "METRICS_ROOT", str(tmp_path / "metrics"))
	monkeypatch.setattr(Config, "METRICS_ENABLED", True)
	return tmp_path / "metrics"


#============================================
class FakeSource(ActivitySource):
	"""
	Activity source returning canned records or raising a canned error.
	"""

	def __init__(self, records=None, error=None):
		self.records = list(records or [])
		self.error = error
		self.calls = []

	def fetch(self, date_range):
		self.calls.append(date_range)
		if self.error is not None:
			raise self.error
		return list(self.records)


#============================================
class FakeAnalyzer:
	"""
	LLM analyzer double with the analyzer's public surface.
	"""

	def __init__(self, result=None, error=None, enabled=True, provider="openai", model="gpt-4"):
		self.result = result
		self.error = error
		self.config = {"enabled": enabled, "provider": provider, "model": model}
		self.calls = []

	def status(self):
		return {**self.config, "initialized": True}

	def analyze(self, raw_activity):
		self.calls.append(raw_activity)
		if self.error is not None:
			raise self.error
		return self.result


#============================================
def llm_entry(title, user_value, confidence, category, description=""):
	return CategorizedEntry(
		title=title,
		description=description,
		user_value=user_value,
		confidence=confidence,
		category=category,
		origin="llm",
	)


#============================================
def make_analysis(changes, provider="openai", model="gpt-4", duration=1500):
	return LLMAnalysis(
		categorized_changes=changes,
		metadata=AnalysisMetadata(provider=provider, model=model, duration=duration),
	)


#============================================
@pytest.fixture
def dashboard_records():
	"""
	One record per source describing the analytics dashboard launch.
	"""
	return {
		"code": [
			CodeChange(
				id="abc123",
				change_type="commit",
				title="Add analytics dashboard feature",
				body="Add analytics dashboard feature",
				repo="acme/web",
				timestamp=datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc),
			),
			CodeChange(
				id="42",
				change_type="pull_request",
				title="Feature: Analytics Dashboard",
				body="Adds new analytics dashboard for users",
				repo="acme/web",
				additions=150,
				deletions=20,
				merged=True,
				timestamp=datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc),
			),
		],
		"issues": [
			IssueUpdate(
				id="LIN-123",
				title="Implement analytics dashboard",
				description="Build a dashboard with usage charts",
				state="Done",
				state_type="completed",
				priority=3,
				timestamp=datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc),
			),
		],
		"chat": [
			ChatMessage(
				id="1705320000.123456",
				text="Shipped the new analytics dashboard! Users love it.",
				channel="dev",
				timestamp=datetime.fromtimestamp(1705320000.123456, tz=timezone.utc),
			),
		],
	}


#============================================
@pytest.fixture
def dashboard_sources(dashboard_records):
	return (
		FakeSource(dashboard_records["code"]),
		FakeSource(dashboard_records["issues"]),
		FakeSource(dashboard_records["chat"]),
	)


#============================================
@pytest.fixture
def dashboard_analysis():
	"""
	LLM analysis with one entry in each category.
	"""
	changes = CategorizedChanges(
		new_features=(llm_entry("New Analytics Dashboard", "Better understanding of your data trends", 0.9, "newFeatures"),),
		improvements=(llm_entry("Faster Page Loading", "Reduced waiting time and improved productivity", 0.85, "improvements"),),
		fixes=(llm_entry("Login Issue Resolved", "More reliable access to your account", 0.95, "fixes"),),
	)
	return make_analysis(changes)


#============================================
@pytest.fixture
def llm_settings():
	return LLMSettings(provider="bedrock", enabled=True, model="test-model")
