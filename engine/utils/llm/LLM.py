"""Centralised Gemini helper utilities.

This module is the single place the reconciliation engine talks to the
structured-extraction service (Google Gemini). It abstracts client creation,
rate-limiting, retries and finish-reason handling behind a small oracle
interface so the tools never touch the SDK directly.

## Key Features

- `StructuredOracle` is the protocol every tool depends on: one async
`generate(request)` call returning the raw text plus its finish reason.
Tests swap in a scripted fake; production uses `GeminiOracle`.

- `GeminiOracle` builds the request (system instruction, inline PDF/image
parts, JSON response mime type, output-token ceiling) and runs the blocking
SDK call in a worker thread.

- Implements a per-minute sliding window limiter (`RateLimiter`) for concurrent
access control based on token and request budgets.

- Applies Tenacity-backed exponential-jitter retries for transient faults.
The attempt count comes from `LLM_MAX_ATTEMPTS` and defaults to 1, so a
failed call is reported rather than silently retried.

- `to_parts()` coerces strings, bytes, or `Part` instances into a unified list
of `Part` objects for Gemini calls.

Import pattern for tools:
```python
from utils.llm.LLM import OracleRequest, StructuredOracle, ensure_complete
```
"""

from __future__ import annotations

import time
import httpx
import asyncio
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence, runtime_checkable

import tenacity
from google import genai
from google.genai import types
from google.genai.types import Part
from google.genai import errors as gerrors

from utils.core.errors import OracleError, TruncatedResponseError
from utils.core.log import get_logger
from utils.vault import secrets


__all__ = [
    "Part",
    "InlinePart",
    "OracleRequest",
    "OracleResponse",
    "StructuredOracle",
    "GeminiOracle",
    "RateLimiter",
    "ensure_complete",
    "get_client",
    "to_parts",
]

# Configuration

MODEL_DEFAULT = "gemini-2.5-flash"
MAX_OUTPUT_TOKENS_DEFAULT = 8192
REQUESTS_PER_MINUTE = 200
TOKENS_PER_MINUTE = 10_000_000
_RETRIABLE_CLIENT_CODES = {429, 499}
_TRUNCATION_REASONS = {"MAX_TOKENS", "LENGTH"}

_CLIENT = None
_LOCK = threading.Lock()


@dataclass(frozen=True)
class InlinePart:
    """Binary attachment sent alongside the prompt (PDF drawings, BOQ scans)."""

    data: bytes
    mime_type: str


@dataclass
class OracleRequest:
    user_prompt: str
    system_instruction: str = ""
    inline_parts: List[InlinePart] = field(default_factory=list)
    json_only: bool = True
    max_output_tokens: Optional[int] = None
    temperature: float = 0.0
    caller: str = "unknown"


@dataclass
class OracleResponse:
    text: str
    finish_reason: Optional[str] = None
    prompt_tokens: int = -1
    total_tokens: int = -1

    @property
    def truncated(self) -> bool:
        return (self.finish_reason or "").upper() in _TRUNCATION_REASONS


@runtime_checkable
class StructuredOracle(Protocol):
    """Anything that can turn an `OracleRequest` into raw model text."""

    async def generate(self, request: OracleRequest) -> OracleResponse: ...


def ensure_complete(response: OracleResponse, label: str) -> str:
    """Return the response text, raising if the model stopped at its length ceiling."""
    if response.truncated:
        raise TruncatedResponseError(
            f"{label} response was truncated (finish_reason={response.finish_reason}). "
            "Reduce the input or raise the output token limit.",
            finish_reason=response.finish_reason,
        )
    return response.text or ""


def _is_retriable(exc: Exception) -> bool:
    """Return True only for transient faults we want to retry."""
    if isinstance(exc, gerrors.ServerError):  # 5xx
        return True
    if isinstance(exc, gerrors.ClientError):  # 4xx
        return getattr(exc, "code", None) in _RETRIABLE_CLIENT_CODES  # rate-limit and 499
    return isinstance(exc, httpx.TransportError)


def _retry_policy(attempts: int):
    return tenacity.retry(
        retry=tenacity.retry_if_exception(_is_retriable),
        wait=tenacity.wait_exponential_jitter(initial=1, max=8),
        stop=tenacity.stop_after_attempt(max(1, attempts)),
        reraise=True,
    )


def _create_client(api_key: str | None = None) -> genai.Client:
    if not api_key:
        try:
            api_key = secrets.get("GEMINI_API_KEY")
        except KeyError as e:
            raise OracleError("GEMINI_API_KEY is not set") from e
    http_options = types.HttpOptions(
        client_args={
            "http2": False,
            "limits": httpx.Limits(
                max_keepalive_connections=100,
                max_connections=500,
                keepalive_expiry=60.0,
            ),
        },
    )
    return genai.Client(api_key=api_key, http_options=http_options)


def get_client() -> genai.Client:
    global _CLIENT
    if _CLIENT is None:
        with _LOCK:
            if _CLIENT is None:
                _CLIENT = _create_client()
    return _CLIENT


# Rate limiter
class RateLimiter:
    """Simple token/request bucket for minute-long windows (thread- and loop-safe)."""

    def __init__(
        self, req_pm: int = REQUESTS_PER_MINUTE, tok_pm: int = TOKENS_PER_MINUTE
    ):
        self.req_pm = req_pm
        self.tok_pm = tok_pm
        self._mtx = threading.Lock()
        self._req: deque[float] = deque()
        self._tok: deque[tuple[float, int]] = deque()

    def _try_consume(self, tokens: int) -> float:
        """Consume budget and return 0, or return how long to wait before retrying."""
        now = time.time()
        window_start = now - 60.0

        with self._mtx:
            # evict old entries
            while self._req and self._req[0] < window_start:
                self._req.popleft()
            while self._tok and self._tok[0][0] < window_start:
                self._tok.popleft()

            used_tokens = sum(t for _, t in self._tok)
            can_req = len(self._req) < self.req_pm
            can_tok = (used_tokens + tokens) <= self.tok_pm or not self._tok

            if can_req and can_tok:
                self._req.append(now)
                self._tok.append((now, tokens))
                return 0.0

            next_req = (self._req[0] + 60.0 - now) if self._req else 0.05
            next_tok = (self._tok[0][0] + 60.0 - now) if self._tok else 0.05
            return max(0.001, min(x for x in (next_req, next_tok, 0.05) if x > 0))

    async def acquire(self, tokens: int = 0):
        tokens = max(0, int(tokens))
        while True:
            sleep_for = self._try_consume(tokens)
            if not sleep_for:
                return
            await asyncio.sleep(sleep_for)


_GLOBAL_LIMITER = RateLimiter()


def get_global_limiter() -> RateLimiter:
    return _GLOBAL_LIMITER


# Misc helpers
def to_parts(content: Sequence[Part | InlinePart | str | bytes]) -> List[Part]:
    "makes content gemini safe by converting to parts"
    parts: List[Part] = []
    for item in content:
        if isinstance(item, Part):
            parts.append(item)
        elif isinstance(item, InlinePart):
            parts.append(Part.from_bytes(data=item.data, mime_type=item.mime_type))
        elif isinstance(item, str):
            parts.append(Part.from_text(text=item))
        elif isinstance(item, (bytes, bytearray)):
            parts.append(
                Part.from_bytes(data=bytes(item), mime_type="application/octet-stream")
            )
        else:
            raise TypeError(f"Unsupported Part type: {type(item)}")
    return parts


def _estimate_tokens(request: OracleRequest) -> int:
    # ~4 chars per token for text; inline bytes are billed per page/image so
    # a flat allowance per attachment is close enough for the limiter.
    text_len = len(request.user_prompt) + len(request.system_instruction)
    return text_len // 4 + 1_000 * len(request.inline_parts)


def _finish_reason(resp) -> Optional[str]:
    candidates = getattr(resp, "candidates", None) or []
    if not candidates:
        return None
    reason = getattr(candidates[0], "finish_reason", None)
    if reason is None:
        return None
    return getattr(reason, "name", None) or str(reason)


class GeminiOracle:
    """`StructuredOracle` backed by the google-genai SDK."""

    def __init__(
        self,
        *,
        model: str | None = None,
        api_key: str | None = None,
        max_attempts: int | None = None,
        max_output_tokens: int | None = None,
        limiter: RateLimiter | None = None,
        client: genai.Client | None = None,
    ):
        self.model = model or secrets.get("LLM_MODEL", MODEL_DEFAULT)
        self.max_attempts = max_attempts or secrets.get_int("LLM_MAX_ATTEMPTS", 1)
        self.max_output_tokens = max_output_tokens or secrets.get_int(
            "LLM_MAX_OUTPUT_TOKENS", MAX_OUTPUT_TOKENS_DEFAULT
        )
        self.limiter = limiter or get_global_limiter()
        self._api_key = api_key
        self._client = client

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            self._client = _create_client(self._api_key) if self._api_key else get_client()
        return self._client

    def _build_config(self, request: OracleRequest) -> types.GenerateContentConfig:
        cfg = {
            "temperature": request.temperature,
            "max_output_tokens": request.max_output_tokens or self.max_output_tokens,
        }
        if request.system_instruction:
            cfg["system_instruction"] = request.system_instruction
        if request.json_only:
            cfg["response_mime_type"] = "application/json"
        return types.GenerateContentConfig(**cfg)

    def _send(self, parts: List[Part], config: types.GenerateContentConfig, caller: str):
        """Run the SDK call, classify errors, and emit structured logs."""
        logger = get_logger()
        t0 = time.perf_counter()
        try:
            resp = self.client.models.generate_content(
                model=self.model, contents=parts, config=config
            )
        except gerrors.ClientError as e:
            logger.error(
                "LLM ClientError | caller=%s | model=%s | code=%s | err=%s",
                caller, self.model, getattr(e, "code", None), e,
            )
            raise
        except gerrors.ServerError as e:
            logger.error(
                "LLM ServerError | caller=%s | model=%s | err=%s", caller, self.model, e
            )
            raise

        latency_ms = int((time.perf_counter() - t0) * 1000)
        usage = getattr(resp, "usage_metadata", None)
        prompt_tok = getattr(usage, "prompt_token_count", None) or -1
        total_tok = getattr(usage, "total_token_count", None) or -1
        finish = _finish_reason(resp) or "STOP"

        base_msg = (
            f"LLM Call OK | caller={caller} | model={self.model} | latency={latency_ms}ms | "
            f"prompt_tokens={prompt_tok} | total_tokens={total_tok}"
        )
        if finish.upper() != "STOP":  # safety-stop, max-tokens, etc.
            logger.warning(base_msg + f" | finish_reason={finish}")
        else:
            logger.debug(base_msg)
        return resp

    async def generate(self, request: OracleRequest) -> OracleResponse:
        parts = to_parts([*request.inline_parts, request.user_prompt])
        config = self._build_config(request)

        await self.limiter.acquire(_estimate_tokens(request))

        @_retry_policy(self.max_attempts)
        def _blocking_with_retry():
            return self._send(parts, config, request.caller)

        try:
            resp = await asyncio.to_thread(_blocking_with_retry)
        except (gerrors.APIError, httpx.HTTPError) as e:
            raise OracleError(f"{request.caller}: {e}") from e

        usage = getattr(resp, "usage_metadata", None)
        return OracleResponse(
            text=getattr(resp, "text", None) or "",
            finish_reason=_finish_reason(resp),
            prompt_tokens=getattr(usage, "prompt_token_count", None) or -1,
            total_tokens=getattr(usage, "total_token_count", None) or -1,
        )
