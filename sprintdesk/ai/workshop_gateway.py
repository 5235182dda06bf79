"""
SprintDesk
Workshop Gateway — outbound calls to the AI content collaborator.

All requests to the OpenAI-compatible chat completions endpoint go through
this class, using the official ``openai`` SDK. The gateway never raises:
every outcome (success, missing key, timeout, provider error, unparseable
payload) is returned as a WorkshopResult so the caller can persist the
audit row before deciding what to do.

Testability: pass a mock `client` to WorkshopGateway() in tests instead of
letting it create a real openai.OpenAI internally.
"""

from __future__ import annotations

import json
import logging
import time

import openai

from sprintdesk.ai.prompts import build_workshop_messages

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 60
_TEMPERATURE = 0.7


class WorkshopResult:
    """Structured return value from WorkshopGateway.generate.

    Attributes:
        ok:             True if an agenda object was produced.
        status_code:    HTTP status code (None if the call was never made or failed at network level).
        agenda:         Parsed agenda dict, else None.
        raw_text:       Message content (or error body) as returned by the provider.
        error:          Human-readable error message or None.
        duration_ms:    Round-trip latency in milliseconds.
        model:          Model requested.
        messages:       Prompt messages sent.
    """

    def __init__(
        self,
        ok: bool,
        status_code: int | None,
        agenda: dict | None,
        raw_text: str | None,
        error: str | None,
        duration_ms: int,
        model: str,
        messages: list[dict],
    ) -> None:
        self.ok = ok
        self.status_code = status_code
        self.agenda = agenda
        self.raw_text = raw_text
        self.error = error
        self.duration_ms = duration_ms
        self.model = model
        self.messages = messages

    def to_log_dict(self) -> dict:
        """Return fields suitable for AIResponse creation."""
        return {
            "provider": "openai",
            "model": self.model,
            "prompt": self.messages,
            "response_text": self.raw_text,
            "response_json": self.agenda,
            "http_status": self.status_code,
            "success": self.ok,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }


class WorkshopGateway:
    """OpenAI chat completions client for workshop agendas.

    Usage:
        from sprintdesk.ai.workshop_gateway import workshop_gateway
        result = workshop_gateway.generate(context, api_key=..., model="gpt-4o")
    """

    def __init__(self, client: openai.OpenAI | None = None) -> None:
        self._client = client
        self._client_key: tuple | None = None

    def _get_client(self, api_key: str, base_url: str | None, timeout: float) -> openai.OpenAI:
        """Return the injected client, or a cached one for these settings."""
        key = (api_key, base_url, timeout)
        if self._client is None or (self._client_key is not None and self._client_key != key):
            self._client = openai.OpenAI(
                api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0,
            )
            self._client_key = key
        return self._client

    @staticmethod
    def _extract_content(response) -> str | None:
        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError):
            return None
        return content if isinstance(content, str) and content.strip() else None

    def generate(
        self,
        context: dict,
        *,
        api_key: str,
        model: str,
        base_url: str | None = None,
        timeout: float = _DEFAULT_TIMEOUT,
    ) -> WorkshopResult:
        """Request a workshop agenda for ``context``.

        Returns:
            WorkshopResult — always returns (never raises). Callers check .ok.
        """
        messages = build_workshop_messages(context)

        def _fail(error, *, status=None, raw=None, duration_ms=0):
            logger.warning("Workshop generation failed model=%s status=%s error=%s",
                           model, status, error)
            return WorkshopResult(
                ok=False, status_code=status, agenda=None, raw_text=raw,
                error=error, duration_ms=duration_ms, model=model, messages=messages,
            )

        if not api_key:
            return _fail("OpenAI API key not configured")

        client = self._get_client(api_key, base_url, timeout)
        t0 = time.perf_counter()
        try:
            response = client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=_TEMPERATURE,
                response_format={"type": "json_object"},
            )
        except openai.APITimeoutError:
            return _fail(f"Request timed out after {timeout}s", duration_ms=int(timeout * 1000))
        except openai.APIStatusError as exc:
            body = exc.response.text if exc.response is not None else None
            return _fail(f"HTTP {exc.status_code}: {exc.message[:500]}",
                         status=exc.status_code, raw=body,
                         duration_ms=int((time.perf_counter() - t0) * 1000))
        except openai.OpenAIError as exc:
            return _fail(str(exc)[:500], duration_ms=int((time.perf_counter() - t0) * 1000))
        duration_ms = int((time.perf_counter() - t0) * 1000)

        content = self._extract_content(response)
        if content is None:
            return _fail("No workshop content received from AI",
                         status=200, duration_ms=duration_ms)

        try:
            agenda = json.loads(content)
        except ValueError:
            return _fail("Invalid workshop format from AI",
                         status=200, raw=content, duration_ms=duration_ms)
        if not isinstance(agenda, dict):
            return _fail("Workshop payload is not a JSON object",
                         status=200, raw=content, duration_ms=duration_ms)

        logger.info("Workshop generated model=%s duration_ms=%d", model, duration_ms)
        return WorkshopResult(
            ok=True, status_code=200, agenda=agenda, raw_text=content,
            error=None, duration_ms=duration_ms, model=model, messages=messages,
        )


# Module-level singleton
workshop_gateway = WorkshopGateway()
