import os
from dataclasses import dataclass
from typing import Dict, Any, List, Mapping, Optional


def _csv(value: Optional[str]) -> List[str]:
	return [part.strip() for part in (value or "").split(",") if part.strip()]


class Config:
	"""Configuration for the hybrid release notes generator."""

	# AWS Bedrock Configuration
	AWS_REGION = os.getenv("AWS_REGION", "us-east-1")
	BEDROCK_MODEL_ID = os.getenv("BEDROCK_MODEL_ID", "anthropic.claude-3-sonnet-20240229-v1:0")

	# Activity sources
	GITHUB_TOKEN = os.getenv("GITHUB_TOKEN") or os.getenv("GITHUB_PAT")
	GITHUB_REPOSITORIES = _csv(os.getenv("GITHUB_REPOSITORIES"))
	LINEAR_API_KEY = os.getenv("LINEAR_API_KEY")
	LINEAR_TEAM_MEMBERS = _csv(os.getenv("LINEAR_TEAM_MEMBERS"))
	SLACK_BOT_TOKEN = os.getenv("SLACK_BOT_TOKEN")
	SLACK_CHANNELS = _csv(os.getenv("SLACK_CHANNELS"))
	HTTP_TIMEOUT_S = int(os.getenv("HTTP_TIMEOUT_S", "30"))

	# Prompt budgets
	PROMPT_MAX_RECORDS = int(os.getenv("PROMPT_MAX_RECORDS", "200"))
	PROMPT_MAX_TEXT_CHARS = int(os.getenv("PROMPT_MAX_TEXT_CHARS", "400"))

	# Observability
	METRICS_ROOT = os.getenv("METRICS_ROOT", ".cache/release_notes/metrics")
	METRICS_ENABLED = bool(int(os.getenv("METRICS_ENABLED", "1")))

	@classmethod
	def get_bedrock_config(cls) -> Dict[str, Any]:
		"""Get Bedrock configuration."""
		return {
			"region_name": cls.AWS_REGION,
			"model_id": cls.BEDROCK_MODEL_ID
		}

	@classmethod
	def get_github_config(cls) -> Dict[str, Any]:
		"""Get GitHub configuration for the code activity source."""
		return {
			"token": cls.GITHUB_TOKEN,
			"repositories": list(cls.GITHUB_REPOSITORIES),
			"timeout_s": cls.HTTP_TIMEOUT_S
		}

	@classmethod
	def get_linear_config(cls) -> Dict[str, Any]:
		return {
			"api_key": cls.LINEAR_API_KEY,
			"team_members": list(cls.LINEAR_TEAM_MEMBERS),
			"timeout_s": cls.HTTP_TIMEOUT_S
		}

	@classmethod
	def get_slack_config(cls) -> Dict[str, Any]:
		return {
			"bot_token": cls.SLACK_BOT_TOKEN,
			"channels": list(cls.SLACK_CHANNELS),
			"timeout_s": cls.HTTP_TIMEOUT_S
		}

	@classmethod
	def get_prompt_budget_config(cls) -> Dict[str, int]:
		return {
			"max_records": cls.PROMPT_MAX_RECORDS,
			"max_text_chars": cls.PROMPT_MAX_TEXT_CHARS,
		}


_DEFAULT_MODELS = {
	"bedrock": Config.BEDROCK_MODEL_ID,
}


@dataclass(frozen=True)
class LLMSettings:
	"""LLM settings resolved once at process start and handed to the analyzer factory.

	``provider`` is ``None`` when no LLM is configured at all; ``enabled`` only
	turns a configured provider off.
	"""

	provider: Optional[str] = None
	enabled: bool = True
	model: Optional[str] = None
	region: str = "us-east-1"
	max_tokens: int = 4000
	temperature: float = 0.1
	timeout_s: int = 30

	@classmethod
	def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "LLMSettings":
		"""Build settings from environment variables.

		Args:
			env: Mapping to read from (defaults to ``os.environ``)

		Returns:
			LLMSettings instance. Malformed numbers are kept out of range so that
			the analyzer factory rejects them instead of silently defaulting.
		"""
		env = os.environ if env is None else env
		provider = (env.get("LLM_PROVIDER") or "").strip().lower() or None
		model = env.get("LLM_MODEL") or _DEFAULT_MODELS.get(provider or "")
		return cls(
			provider=provider,
			enabled=(env.get("LLM_ENABLED", "true").strip().lower() != "false"),
			model=model,
			region=env.get("AWS_REGION", Config.AWS_REGION),
			max_tokens=_int_or_invalid(env.get("LLM_MAX_TOKENS"), 4000),
			temperature=_float_or_invalid(env.get("LLM_TEMPERATURE"), 0.1),
			timeout_s=_int_or_invalid(env.get("LLM_TIMEOUT_S"), Config.HTTP_TIMEOUT_S),
		)

	def describe(self) -> Dict[str, Any]:
		return {"enabled": self.enabled, "provider": self.provider, "model": self.model}


def _int_or_invalid(raw: Optional[str], default: int) -> int:
	if raw is None or raw == "":
		return default
	try:
		return int(raw)
	except ValueError:
		return -1


def _float_or_invalid(raw: Optional[str], default: float) -> float:
	if raw is None or raw == "":
		return default
	try:
		return float(raw)
	except ValueError:
		return -1.0
