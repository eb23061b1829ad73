"""
Gemini text API client for prompt enhancement.
Uses POST /v1beta/models/{model}:generateContent with an API key.
"""
import logging
import time
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"

ENHANCE_INSTRUCTIONS = (
    "You are an art director for traditional Japanese woodblock prints. "
    "Rewrite the following image prompt so it is vivid and specific while keeping every "
    "place, subject, detail and mood it mentions. Keep the Ukiyo-e style direction. "
    "Answer with the rewritten prompt only, no preamble, at most 120 words.\n\nPrompt: "
)


class PromptEnhancementError(Exception):
    pass


class GeminiClient:
    """Client for Gemini generateContent (text in, text out)."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gemini-2.5-flash",
        base_url: Optional[str] = None,
        timeout_seconds: int = 30,
        rate_limit_retries: int = 2,
        rate_limit_base_wait: float = 2.0,
    ):
        self.api_key = api_key or ""
        self.model = model
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.rate_limit_retries = max(1, rate_limit_retries)
        self.rate_limit_base_wait = rate_limit_base_wait

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def enhance_prompt(self, prompt: str) -> str:
        """Return an enriched version of `prompt`. Raises PromptEnhancementError on failure."""
        if not self.configured:
            raise PromptEnhancementError("GEMINI_API_KEY is not set")
        url = f"{self.base_url}/v1beta/models/{self.model}:generateContent"
        payload = {
            "contents": [{"role": "user", "parts": [{"text": ENHANCE_INSTRUCTIONS + prompt}]}],
            "generationConfig": {"temperature": 0.8, "maxOutputTokens": 400},
        }
        headers = {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}

        for attempt in range(self.rate_limit_retries):
            try:
                with httpx.Client(timeout=self.timeout_seconds) as client:
                    r = client.post(url, json=payload, headers=headers)
            except httpx.RequestError as e:
                if attempt < self.rate_limit_retries - 1:
                    time.sleep(self.rate_limit_base_wait * (2 ** attempt))
                    continue
                raise PromptEnhancementError(f"Gemini request failed: {e}")

            if r.status_code in (429, 500, 502, 503, 504) and attempt < self.rate_limit_retries - 1:
                wait = self.rate_limit_base_wait * (2 ** attempt)
                logger.warning("Gemini transient error (%s), waiting %.0fs before retry", r.status_code, wait)
                time.sleep(wait)
                continue
            if r.status_code >= 400:
                raise PromptEnhancementError(f"Gemini API error {r.status_code}: {r.text[:300]}")

            resp = r.json()
            candidates = resp.get("candidates") or []
            if not candidates:
                raise PromptEnhancementError(f"Gemini returned no candidates: {str(resp)[:300]}")
            parts = (candidates[0].get("content") or {}).get("parts") or []
            text = "".join(p.get("text", "") for p in parts if isinstance(p, dict)).strip()
            if not text:
                raise PromptEnhancementError("Gemini returned an empty prompt")
            return text

        raise PromptEnhancementError("Gemini retries exhausted")
