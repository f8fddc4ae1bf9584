import logging
import os
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

LLM_API_KEY = os.getenv("LLM_API_KEY") or os.getenv("OPENAI_API_KEY")
LLM_API_BASE_URL = os.getenv("LLM_API_BASE_URL", "https://api.openai.com").rstrip("/")
LLM_CHAT_MODEL = os.getenv("LLM_CHAT_MODEL", "gpt-4o")
SUMMARY_TIMEOUT_SECONDS = float(os.getenv("SUMMARY_TIMEOUT_SECONDS", "20"))
SUMMARY_MAX_TOKENS = int(os.getenv("SUMMARY_MAX_TOKENS", "200"))

SYSTEM_PROMPT = (
    "You write concise summaries of personal notes. Keep the key points and "
    "important details, and use no more than 100 words."
)
USER_PROMPT = (
    "Please summarize the following note concisely while keeping its key points:\n\n{text}"
)


class SummaryError(RuntimeError):
    pass


class Summarizer:
    """Client for an OpenAI-compatible chat completions endpoint."""

    def __init__(
        self,
        api_key: str,
        base_url: str = LLM_API_BASE_URL,
        model: str = LLM_CHAT_MODEL,
        timeout: float = SUMMARY_TIMEOUT_SECONDS,
        max_tokens: int = SUMMARY_MAX_TOKENS,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.max_tokens = max_tokens

    def _request(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        url = f"{self.base_url}{endpoint}"
        try:
            response = requests.post(url, headers=headers, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise SummaryError(f"Summary request failed: {exc.__class__.__name__}") from exc
        if response.status_code >= 400:
            raise SummaryError(f"Summary request failed with status {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise SummaryError("Summary response is not JSON") from exc

    def summarize(self, text: str) -> str:
        if not text or not text.strip():
            raise SummaryError("Nothing to summarize")
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": USER_PROMPT.format(text=text)},
            ],
            "max_tokens": self.max_tokens,
            "temperature": 0.2,
        }
        data = self._request("/v1/chat/completions", payload)
        try:
            summary = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise SummaryError("Unexpected summary response") from exc
        summary = str(summary or "").strip()
        if not summary:
            raise SummaryError("Empty summary")
        logger.info("AI summarize: success model=%s chars=%d", self.model, len(summary))
        return summary


def build_summarizer() -> Optional[Summarizer]:
    if not LLM_API_KEY:
        logger.info("AI summaries disabled: no LLM_API_KEY/OPENAI_API_KEY configured")
        return None
    return Summarizer(LLM_API_KEY)
