from __future__ import annotations

import logging
import os
from dataclasses import dataclass

import httpx


logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are the assistant of {tenant}. Rewrite this {kind} message so it sounds friendly, "
    "natural and personal. Keep it to at most 3 sentences and do not overuse emojis."
)


@dataclass
class PersonalizationResult:
    text: str
    personalized: bool
    fallback_reason: str | None = None


class PersonalizationClient:
    """
    Optional rewrite of an already substituted template by an external
    chat-completions service. Every failure path returns the input text.
    """

    def __init__(
        self,
        *,
        url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        min_length: int | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._url = url
        self._api_key = api_key
        self._model = model or "gpt-4o-mini"
        self._timeout = timeout if timeout is not None else 8.0
        self._min_length = min_length if min_length is not None else 50
        self._http_client = http_client

    @classmethod
    def from_env(cls) -> "PersonalizationClient":
        return cls(
            url=os.getenv("AI_PERSONALIZATION_URL"),
            api_key=os.getenv("AI_PERSONALIZATION_API_KEY"),
            model=os.getenv("AI_PERSONALIZATION_MODEL"),
            timeout=float(os.getenv("AI_PERSONALIZATION_TIMEOUT_SECONDS") or "8"),
            min_length=int(os.getenv("AI_PERSONALIZATION_MIN_LENGTH") or "50"),
        )

    def personalize(self, text: str, *, tenant_name: str, message_kind: str) -> PersonalizationResult:
        if not self._url:
            return PersonalizationResult(text=text, personalized=False, fallback_reason="not_configured")
        if len(text) > self._min_length:
            return PersonalizationResult(text=text, personalized=False, fallback_reason="already_personalized")

        payload = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT.format(tenant=tenant_name, kind=message_kind.replace("_", " "))},
                {"role": "user", "content": f'Personalize this message: "{text}"'},
            ],
            "max_tokens": 150,
            "temperature": 0.7,
        }
        headers = {}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        close_client = False
        client = self._http_client
        if client is None:
            client = httpx.Client(timeout=self._timeout)
            close_client = True

        try:
            response = client.post(self._url, json=payload, headers=headers, timeout=self._timeout)
            response.raise_for_status()
            content = response.json()["choices"][0]["message"]["content"]
        except httpx.TimeoutException:
            logger.warning("personalization timed out", extra={"message_kind": message_kind})
            return PersonalizationResult(text=text, personalized=False, fallback_reason="timeout")
        except httpx.HTTPError as exc:
            logger.warning("personalization request failed", extra={"message_kind": message_kind, "error": str(exc)})
            return PersonalizationResult(text=text, personalized=False, fallback_reason="http_error")
        except (ValueError, KeyError, IndexError, TypeError):
            logger.warning("personalization response malformed", extra={"message_kind": message_kind})
            return PersonalizationResult(text=text, personalized=False, fallback_reason="malformed_response")
        finally:
            if close_client:
                client.close()

        content = (content or "").strip().strip('"').strip()
        if not content:
            return PersonalizationResult(text=text, personalized=False, fallback_reason="empty_response")
        return PersonalizationResult(text=content, personalized=True)
