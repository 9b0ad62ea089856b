"""LLM client for Azure OpenAI ranking calls.

Two API variants are supported:

- ``responses`` (default): Azure OpenAI Responses API
- ``chat``: chat completions on a deployment

Configuration comes from :class:`app.config.Settings` (see that module for the
environment variables). A client without an endpoint, key or deployment is
"unconfigured"; callers check ``is_configured`` and use the mock ranker.

Usage:
    from app.services.llm_client import LLMClient
    client = LLMClient.from_settings(settings)
    text, attempts = client.request_ranking(request, nurses)
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlsplit

import httpx

from app.config import Settings
from app.models.match import MatchRequest
from app.services.prompt_builder import build_prompt
from app.services.redact import excerpt

logger = logging.getLogger(__name__)

VARIANTS = ("responses", "chat")

SYSTEM_PROMPT = (
    "You are a healthcare staffing matching engine for WonderCare. "
    "Rank candidates for a patient request using ALL provided data: skills (services), "
    "expertise tags, location proximity, availability overlap with the requested time window, "
    "rating, number of reviews, and urgency. "
    "Be decisive and avoid ties unless justified."
)

RESULT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "results": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string"},
                    "score": {"type": "number", "minimum": 0, "maximum": 1},
                    "reason": {"type": "string"},
                },
                "required": ["id", "score", "reason"],
                "additionalProperties": False,
            },
        }
    },
    "required": ["results"],
    "additionalProperties": False,
}


class LLMError(RuntimeError):
    """Base class for model pipeline failures."""


class LLMNotConfigured(LLMError):
    pass


class LLMTransportError(LLMError):
    def __init__(self, message: str, *, status: Optional[int] = None, attempts: int = 1, retryable: bool = False):
        super().__init__(message)
        self.status = status
        self.attempts = attempts
        self.retryable = retryable


class LLMResponseError(LLMError):
    pass


@dataclass
class LLMResponse:
    data: Any
    status: int
    attempts: int


def is_transient(status: int) -> bool:
    return status == 429 or 500 <= status <= 599


# ---------------------------------------------------------------------------
# Response text extractors, tried in order. Each takes the decoded JSON body
# and returns the answer text or None.
# ---------------------------------------------------------------------------

def _nonempty(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def extract_output_text(data: Any) -> Optional[str]:
    if isinstance(data, dict):
        return _nonempty(data.get("output_text"))
    return None


def extract_output_blocks(data: Any) -> Optional[str]:
    if not isinstance(data, dict) or not isinstance(data.get("output"), list):
        return None
    for item in data["output"]:
        if not isinstance(item, dict) or not isinstance(item.get("content"), list):
            continue
        for block in item["content"]:
            if isinstance(block, dict) and block.get("type", "output_text") in ("output_text", "text"):
                text = _nonempty(block.get("text"))
                if text:
                    return text
    return None


def extract_chat_choice(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    message = choices[0].get("message")
    if isinstance(message, dict):
        return _nonempty(message.get("content"))
    return None


def extract_content_blocks(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    content = data.get("content")
    if isinstance(content, list) and content and isinstance(content[0], dict):
        return _nonempty(content[0].get("text"))
    return None


RESPONSE_EXTRACTORS: Tuple[Tuple[str, Callable[[Any], Optional[str]]], ...] = (
    ("output_text", extract_output_text),
    ("output", extract_output_blocks),
    ("choices", extract_chat_choice),
    ("content", extract_content_blocks),
)


def extract_text(data: Any) -> str:
    """Return the model's answer text, or the whole response serialized as JSON."""
    for name, extractor in RESPONSE_EXTRACTORS:
        text = extractor(data)
        if text is not None:
            logger.debug("Model answer found via %s", name)
            return text
    logger.warning("No known answer field in model response; passing raw body to the validator")
    return json.dumps(data, ensure_ascii=False)


class LLMClient:
    def __init__(
        self,
        *,
        uri: Optional[str] = None,
        endpoint: Optional[str] = None,
        api_version: Optional[str] = None,
        api_key: Optional[str] = None,
        deployment: Optional[str] = None,
        variant: str = "responses",
        timeout: float = 20.0,
        max_candidates: int = 50,
        retry_delays: Sequence[float] = (0.25, 0.5),
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if variant not in VARIANTS:
            raise ValueError(f"Unknown LLM API variant {variant!r}; expected one of {VARIANTS}")
        self.uri = uri
        self.endpoint = endpoint.rstrip("/") if endpoint else None
        self.api_version = api_version
        self.api_key = api_key
        self.deployment = deployment
        self.variant = variant
        self.timeout = timeout
        self.max_candidates = max_candidates
        self.retry_delays = tuple(retry_delays)
        self._transport = transport
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "LLMClient":
        return cls(
            uri=settings.azure_openai_uri,
            endpoint=settings.azure_openai_endpoint,
            api_version=settings.azure_openai_api_version,
            api_key=settings.azure_openai_key,
            deployment=settings.azure_openai_deployment,
            variant=settings.llm_api_variant,
            timeout=settings.llm_timeout_seconds,
            max_candidates=settings.llm_max_candidates,
            retry_delays=settings.retry_delays,
            **kwargs,
        )

    @property
    def url(self) -> Optional[str]:
        if self.uri:
            return self.uri
        if not (self.endpoint and self.api_version):
            return None
        if self.variant == "chat":
            if not self.deployment:
                return None
            return f"{self.endpoint}/openai/deployments/{self.deployment}/chat/completions?api-version={self.api_version}"
        return f"{self.endpoint}/openai/responses?api-version={self.api_version}"

    @property
    def is_configured(self) -> bool:
        return bool(self.url and self.api_key and self.deployment)

    def describe_endpoint(self) -> str:
        """Scheme and host only, safe to log."""
        if not self.url:
            return "<not configured>"
        parts = urlsplit(self.url)
        return f"{parts.scheme}://{parts.hostname}/..."

    # -- request body -----------------------------------------------------

    def build_body(self, payload: Dict[str, Any], top_k: int) -> Dict[str, Any]:
        payload_json = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
        instruction = (
            f"Return the top {top_k} candidates as JSON only, matching the MatchResult schema: "
            '{"results": [{"id": string, "score": number between 0 and 1, "reason": string}]}. '
            "Include a compact rationale per candidate."
        )
        if self.variant == "chat":
            return {
                "model": self.deployment,
                "messages": [
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": f"Request + Candidates (JSON):\n{payload_json}\n\n{instruction}"},
                ],
                "temperature": 0.2,
                "response_format": {
                    "type": "json_schema",
                    "json_schema": {"name": "MatchResult", "schema": RESULT_SCHEMA, "strict": True},
                },
            }
        return {
            "model": self.deployment,
            "input": [
                {"role": "system", "content": [{"type": "input_text", "text": SYSTEM_PROMPT}]},
                {
                    "role": "user",
                    "content": [
                        {"type": "input_text", "text": "Request + Candidates (JSON):"},
                        {"type": "input_text", "text": payload_json},
                        {"type": "input_text", "text": instruction},
                    ],
                },
            ],
            "text": {
                "format": {"type": "json_schema", "name": "MatchResult", "schema": RESULT_SCHEMA, "strict": True},
            },
        }

    # -- transport --------------------------------------------------------

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, transport=self._transport)

    def _excerpt(self, text: Optional[str]) -> str:
        return excerpt(text, secrets=(self.api_key,))

    def post_json(self, body: Dict[str, Any]) -> LLMResponse:
        """POST ``body`` with bounded retries on 429/5xx and network errors."""
        if not self.is_configured:
            raise LLMNotConfigured("Missing AZURE_OPENAI_* settings (endpoint, key or deployment)")
        url = self.url
        headers = {"content-type": "application/json", "api-key": self.api_key}
        schedule = (0.0,) + self.retry_delays
        last_error: Optional[LLMTransportError] = None

        with self._client() as client:
            for attempt, delay in enumerate(schedule, start=1):
                if delay > 0:
                    logger.info("Retrying model call in %.2fs (attempt %d/%d)", delay, attempt, len(schedule))
                    self._sleep(delay)
                try:
                    resp = client.post(url, json=body, headers=headers)
                except httpx.TransportError as exc:
                    last_error = LLMTransportError(
                        f"Azure OpenAI network error: {type(exc).__name__}: {self._excerpt(str(exc))}",
                        attempts=attempt,
                        retryable=True,
                    )
                    logger.warning("Model call attempt %d failed: %s", attempt, last_error)
                    continue

                if resp.status_code < 400:
                    try:
                        data = resp.json()
                    except ValueError:
                        raise LLMResponseError(
                            f"Azure OpenAI returned a non-JSON body: {self._excerpt(resp.text)}"
                        ) from None
                    logger.info("Model call succeeded (HTTP %d, attempt %d)", resp.status_code, attempt)
                    return LLMResponse(data=data, status=resp.status_code, attempts=attempt)

                transient = is_transient(resp.status_code)
                error = LLMTransportError(
                    f"Azure OpenAI HTTP {resp.status_code}: {self._excerpt(resp.text)}",
                    status=resp.status_code,
                    attempts=attempt,
                    retryable=transient,
                )
                logger.warning("Model call attempt %d failed: %s", attempt, error)
                if not transient:
                    raise error
                last_error = error

        if last_error is None:
            raise LLMTransportError("Azure OpenAI call made no attempts", attempts=0)
        raise LLMTransportError(
            f"{last_error} (gave up after {len(schedule)} attempts)",
            status=last_error.status,
            attempts=len(schedule),
            retryable=True,
        )

    def request_ranking(self, request: MatchRequest, nurses: Sequence[Dict[str, Any]]) -> Tuple[str, int]:
        """Ask the model to rank ``nurses`` for ``request``.

        Returns (answer_text, attempts). Only the first ``max_candidates`` nurses
        are sent; name resolution later uses the full list.
        """
        candidates: List[Dict[str, Any]] = list(nurses[: self.max_candidates])
        if len(nurses) > len(candidates):
            logger.info("Sending %d of %d candidates to the model", len(candidates), len(nurses))
        payload = build_prompt(request, candidates)
        body = self.build_body(payload, request.top_k)
        resp = self.post_json(body)
        return extract_text(resp.data), resp.attempts
