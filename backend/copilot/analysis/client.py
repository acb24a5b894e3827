"""Model provider clients that turn a prompt into raw structured JSON text."""

from __future__ import annotations

import http.client
import json
from dataclasses import dataclass
from typing import Protocol
from urllib import error as urllib_error
from urllib import request as urllib_request

from copilot.errors import ConfigurationError, TransientProviderError

_PERMANENT_HTTP_STATUSES = {401, 403}


class ModelClient(Protocol):
    """Protocol for pluggable LLM clients used by the analysis engine."""

    model: str

    def generate_structured(
        self,
        prompt: str,
        *,
        temperature: float,
        max_tokens: int,
        json_only: bool = True,
    ) -> str:
        """Return the raw text the model produced for ``prompt``."""


@dataclass(slots=True)
class OpenAIChatCompletionsClient:
    """Minimal OpenAI Chat Completions client using stdlib HTTP."""

    api_key: str
    model: str
    base_url: str = "https://api.openai.com/v1"
    timeout_seconds: int = 60

    def generate_structured(
        self,
        prompt: str,
        *,
        temperature: float,
        max_tokens: int,
        json_only: bool = True,
    ) -> str:
        payload: dict[str, object] = {
            "model": self.model,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if json_only:
            payload["response_format"] = {"type": "json_object"}
        url = f"{self.base_url.rstrip('/')}/chat/completions"
        req = urllib_request.Request(
            url=url,
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )

        try:
            with urllib_request.urlopen(req, timeout=self.timeout_seconds) as resp:
                raw = resp.read().decode("utf-8")
        except urllib_error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            if exc.code in _PERMANENT_HTTP_STATUSES:
                raise ConfigurationError(f"OpenAI rejected the configured credential (HTTP {exc.code}): {detail}") from exc
            raise TransientProviderError(f"OpenAI HTTP {exc.code}: {detail}") from exc
        except urllib_error.URLError as exc:
            raise TransientProviderError(f"OpenAI request failed: {exc.reason}") from exc
        except TimeoutError as exc:
            raise TransientProviderError(f"OpenAI request timed out after {self.timeout_seconds}s") from exc
        except (http.client.HTTPException, OSError) as exc:
            raise TransientProviderError(f"OpenAI connection failed: {exc!r}") from exc

        try:
            decoded = json.loads(raw)
            message = decoded["choices"][0]["message"]
            refusal = message.get("refusal")
            if isinstance(refusal, str) and refusal.strip():
                raise TransientProviderError(f"OpenAI refused analysis request: {refusal.strip()}")
            content = message["content"]
            if not isinstance(content, str) or not content.strip():
                raise TransientProviderError("OpenAI returned an empty response")
            return content
        except TransientProviderError:
            raise
        except (KeyError, IndexError, TypeError, json.JSONDecodeError) as exc:
            raise TransientProviderError("OpenAI returned an unexpected response envelope") from exc
