#!/usr/bin/env python3
from __future__ import annotations

import json
import logging
import math
import random
import time
from typing import Any, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ReadTimeoutError, EndpointConnectionError, ClientError

from configs.config import Config

logger = logging.getLogger(__name__)


class BedrockError(Exception):
	def __init__(self, message: str, code: str = "UNKNOWN") -> None:
		super().__init__(message)
		self.code = code


class BedrockClient:
	"""Anthropic-on-Bedrock text completion with bounded retries on transient errors."""

	provider = "bedrock"

	def __init__(self, model_id: Optional[str] = None, region: Optional[str] = None, timeout_s: Optional[int] = None,
			max_output_tokens: int = 4000, temperature: float = 0.1, runtime: Any = None) -> None:
		cfg = Config.get_bedrock_config()
		self.region = region or cfg.get("region_name", Config.AWS_REGION)
		self.model_id = model_id or cfg.get("model_id", Config.BEDROCK_MODEL_ID)
		self.timeout_s = int(timeout_s if timeout_s is not None else Config.HTTP_TIMEOUT_S)
		self.max_output_tokens = int(max_output_tokens)
		self.temperature = float(temperature)
		if runtime is None:
			session = boto3.Session(region_name=self.region)
			if session.get_credentials() is None:
				raise BedrockError("No AWS credentials available for Bedrock", code="UNAUTHORIZED")
			runtime = session.client(
				"bedrock-runtime",
				config=BotoConfig(read_timeout=self.timeout_s, connect_timeout=self.timeout_s, retries={"max_attempts": 1}),
			)
		self._runtime = runtime
		self._tokens_per_char = 4.0
		self._hard_total_cap = 100000  # combined prompt+response tokens
		self._global_cap_s = 300

	def _estimate_tokens(self, text: str) -> int:
		if not text:
			return 0
		return math.ceil(len(text) / max(1.0, self._tokens_per_char))

	def _invoke(self, prompt: str) -> str:
		body = {
			"anthropic_version": "bedrock-2023-05-31",
			"max_tokens": self.max_output_tokens,
			"temperature": self.temperature,
			"messages": [
				{"role": "user", "content": [{"type": "text", "text": prompt}]}
			],
		}
		response = self._runtime.invoke_model(
			modelId=self.model_id,
			contentType="application/json",
			accept="application/json",
			body=json.dumps(body).encode("utf-8"),
		)
		payload = response.get("body")
		raw = payload.read() if hasattr(payload, "read") else payload
		try:
			data = json.loads(raw.decode("utf-8", errors="ignore") if isinstance(raw, (bytes, bytearray)) else raw)
			content = data["content"][0]["text"]
		except (json.JSONDecodeError, KeyError, IndexError, TypeError) as e:
			raise BedrockError(f"Malformed Bedrock response: {e}", code="UNKNOWN")
		if not content or not content.strip():
			raise BedrockError("Empty text content in response", code="UNKNOWN")
		return content

	def complete_json(self, prompt: str) -> str:
		start = time.monotonic()
		# Budget guardrails
		tokens_est = self._estimate_tokens(prompt) + self.max_output_tokens
		if tokens_est > self._hard_total_cap:
			raise BedrockError("Prompt exceeds hard token cap", code="UNKNOWN")
		# Retries on transient errors
		exc: Optional[Exception] = None
		for attempt in range(3):
			try:
				if (time.monotonic() - start) >= self._global_cap_s:
					raise BedrockError("Global timeout exceeded", code="TIMEOUT")
				return self._invoke(prompt)
			except BedrockError:
				# Propagate our typed errors without remapping
				raise
			except ReadTimeoutError as e:
				exc = e
				code = "TIMEOUT"
			except EndpointConnectionError as e:
				exc = e
				code = "NETWORK"
			except ClientError as e:
				exc = e
				err = e.response.get("Error", {}) if hasattr(e, "response") else {}
				status = err.get("Code", "") or err.get("StatusCode", "")
				msg = err.get("Message", "")
				low = (str(status) + " " + str(msg)).lower()
				if "throttl" in low or "429" in low or "rate exceeded" in low or "too many" in low:
					code = "RATE_LIMIT"
				elif "unauthorized" in low or "accessdenied" in low or "403" in low or "401" in low:
					code = "UNAUTHORIZED"
				else:
					code = "UNKNOWN"
			# backoff if transient
			if code in ("TIMEOUT", "NETWORK", "RATE_LIMIT") and attempt < 2:
				backoff = (2 ** attempt) + random.random()
				logger.warning(f"Bedrock transient error ({code}), retrying attempt {attempt + 2}/3")
				time.sleep(min(backoff, 2.5))
				continue
			raise BedrockError(f"Bedrock error: {exc}", code=code)
		raise BedrockError("Unknown failure", code="UNKNOWN")
