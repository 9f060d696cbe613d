from __future__ import annotations

import logging
from typing import Any

import requests

from leafcare.config import Settings
from leafcare.core.errors import GenerativeServiceError


logger = logging.getLogger(__name__)


class ChatCompletionClient:
    """
    Minimal client for an OpenAI-compatible chat-completions endpoint.

    - One attempt per call; callers degrade instead of retrying
    - Asks for a JSON-object response format
    - Every transport or protocol problem surfaces as GenerativeServiceError
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 20.0,
        session: requests.Session | None = None,
    ):
        if not api_key:
            raise ValueError("api_key is required for the generative service")
        self.api_key = api_key
        self.model = model
        self.url = f"{base_url.rstrip('/')}/chat/completions"
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings) -> ChatCompletionClient | None:
        if not settings.openai_api_key:
            return None
        return cls(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            base_url=settings.openai_base_url,
            timeout=settings.generative_timeout_s,
        )

    # ------------------------------------------------------------------
    # Internal HTTP helper
    # ------------------------------------------------------------------
    def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self.session.post(
                self.url,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()
        except requests.Timeout as exc:
            logger.warning("Generative request timed out after %ss", self.timeout)
            raise GenerativeServiceError(f"Generative service timed out after {self.timeout}s") from exc
        except requests.HTTPError as exc:
            status = exc.response.status_code if exc.response is not None else "n/a"
            logger.warning("Generative request failed with status %s", status)
            raise GenerativeServiceError(f"Generative service returned HTTP {status}") from exc
        except requests.RequestException as exc:
            logger.warning("Generative request failed: %s", exc)
            raise GenerativeServiceError(f"Generative service request failed: {exc}") from exc
        except ValueError as exc:
            raise GenerativeServiceError("Generative service returned a non-JSON body") from exc

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------
    def complete_json(self, prompt: str, temperature: float = 0.3) -> str:
        """Returns the raw text of the first choice; parsing is up to the caller."""
        data = self._post(
            {
                "model": self.model,
                "temperature": temperature,
                "messages": [{"role": "user", "content": prompt}],
                "response_format": {"type": "json_object"},
            }
        )

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise GenerativeServiceError("Generative service response had no message content") from exc

        if not isinstance(content, str) or not content.strip():
            raise GenerativeServiceError("Generative service returned an empty completion")

        logger.debug("Generative completion model=%s → %s chars", self.model, len(content))
        return content
