"""Gemini generation proxy.

The browser never sees the API key: it posts a prompt (or a full
generateContent body) here and gets the upstream JSON back unchanged.
"""

import logging
from typing import Optional

import requests

import settings

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"
# Misspellings that older dashboard builds still send
MODEL_ALIASES = {
    "gemini-flash-2.5": DEFAULT_MODEL,
    "gemini-falsh-2.5": DEFAULT_MODEL,
}


def normalize_model(model: Optional[str]) -> str:
    raw = (model or "").strip()
    if not raw:
        return DEFAULT_MODEL
    return MODEL_ALIASES.get(raw.lower(), raw)


class GeminiError(Exception):
    """Upstream or configuration failure, carrying the HTTP status to return."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class GeminiClient:
    """Forwards generateContent requests with the server-held key."""

    API_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

    def __init__(self, api_key: Optional[str] = None, session: Optional[requests.Session] = None,
                 timeout: Optional[float] = None):
        self.api_key = api_key if api_key is not None else settings.gemini_api_key()
        self.session = session or requests.Session()
        self.timeout = timeout or max(settings.HTTP_TIMEOUT, 30)

    def is_available(self) -> bool:
        return bool(self.api_key)

    def generate(self, prompt: str, model: Optional[str] = None) -> dict:
        """Single-prompt generation.

        Args:
            prompt: Text prompt.
            model: Model name; blank means the default.

        Returns:
            The upstream response JSON.

        Raises:
            GeminiError: Missing key, transport failure or upstream error.
        """
        return self.generate_custom({"contents": [{"parts": [{"text": prompt}]}]}, model)

    def generate_custom(self, body: dict, model: Optional[str] = None) -> dict:
        if not self.is_available():
            raise GeminiError(500, "Gemini API key not configured")

        url = self.API_URL.format(model=normalize_model(model))
        try:
            response = self.session.post(
                url,
                params={"key": self.api_key},
                json=body,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("Error calling Gemini API: %s", e)
            raise GeminiError(500, str(e)) from e

        if not response.ok:
            logger.warning("Gemini API returned %s", response.status_code)
            raise GeminiError(response.status_code, f"Gemini API error: {response.text}")
        try:
            return response.json()
        except ValueError as e:
            raise GeminiError(502, "Gemini API returned invalid JSON") from e


def get_gemini() -> GeminiClient:
    return GeminiClient()
