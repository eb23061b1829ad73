"""
Wavespeed API client for Seedream image generation.
"""
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)


class ImageGenerationError(Exception):
    pass

class ImageGenerationRateLimit(ImageGenerationError):
    pass

class ImageGenerationTimeout(ImageGenerationError):
    pass

class ImageGenerationNotConfigured(ImageGenerationError):
    pass


DEFAULT_BASE_URL = "https://api.wavespeed.ai/api/v3"
SEEDREAM_PATH = "bytedance/seedream-v4/sequential"

# Provider job states
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

_TRANSIENT_STATUS_CODES = (429, 500, 502, 503, 504)


def extract_output_urls(data: Dict[str, Any]) -> List[str]:
    """Image URLs from a prediction payload (`outputs` or the older `images` key)."""
    for key in ("outputs", "images"):
        value = data.get(key)
        if isinstance(value, list):
            urls = []
            for item in value:
                if isinstance(item, str) and item:
                    urls.append(item)
                elif isinstance(item, dict) and item.get("url"):
                    urls.append(item["url"])
            if urls:
                return urls
    return []


class WavespeedClient:
    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        timeout_seconds: int = 120,
        polling_timeout_seconds: int = 360,
        polling_interval_seconds: int = 5,
        rate_limit_retries: int = 3,
        rate_limit_base_wait: float = 10.0,
    ):
        self.api_key = api_key
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.polling_timeout = polling_timeout_seconds
        self.polling_interval = polling_interval_seconds
        self.rate_limit_retries = max(1, rate_limit_retries)
        self.rate_limit_base_wait = rate_limit_base_wait

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _post_prediction(self, payload: dict) -> Dict[str, Any]:
        """POST to the Seedream endpoint, retrying rate limits and transient errors."""
        if not self.configured:
            raise ImageGenerationNotConfigured("WAVESPEED_API_KEY is not set")
        url = f"{self.base_url}/{SEEDREAM_PATH}"
        for attempt in range(self.rate_limit_retries):
            try:
                with httpx.Client(timeout=self.timeout_seconds) as client:
                    r = client.post(url, json=payload, headers=self._headers())
            except httpx.RequestError as e:
                if attempt < self.rate_limit_retries - 1:
                    wait = self.rate_limit_base_wait * (2 ** attempt)
                    logger.warning(
                        "Wavespeed network error, waiting %.0fs before retry %d/%d: %s",
                        wait,
                        attempt + 1,
                        self.rate_limit_retries - 1,
                        e,
                    )
                    time.sleep(wait)
                    continue
                raise ImageGenerationError(f"Wavespeed request failed after retries: {e}")

            if r.status_code in _TRANSIENT_STATUS_CODES:
                if attempt < self.rate_limit_retries - 1:
                    wait = self.rate_limit_base_wait * (2 ** attempt)
                    logger.warning(
                        "Wavespeed transient error (%s), waiting %.0fs before retry %d/%d",
                        r.status_code,
                        wait,
                        attempt + 1,
                        self.rate_limit_retries - 1,
                    )
                    time.sleep(wait)
                    continue
                if r.status_code == 429:
                    raise ImageGenerationRateLimit("Rate limit exceeded after retries")
                raise ImageGenerationError(
                    f"Wavespeed transient error {r.status_code} after retries: {r.text[:500]}"
                )
            if r.status_code >= 400:
                raise ImageGenerationError(f"Wavespeed API error {r.status_code}: {r.text[:500]}")
            body = r.json()
            data = body.get("data") if isinstance(body, dict) else None
            if not isinstance(data, dict):
                raise ImageGenerationError(f"Unexpected Wavespeed response: {str(body)[:300]}")
            return data
        raise ImageGenerationRateLimit("Rate limit exceeded")

    def generate_sync(self, prompt: str, size: str) -> str:
        """Generate one image in sync mode. Returns the image URL."""
        payload = {
            "prompt": prompt,
            "size": size,
            "max_images": 1,
            "enable_base64_output": False,
            "enable_sync_mode": True,
        }
        data = self._post_prediction(payload)
        if data.get("status") == STATUS_FAILED:
            raise ImageGenerationError(f"Image generation failed: {data.get('error') or 'unknown error'}")
        urls = extract_output_urls(data)
        if not urls:
            raise ImageGenerationError("No image URL returned from API")
        logger.info("Image generated", extra={"request_id": data.get("id")})
        return urls[0]

    def submit(self, prompt: str, size: str) -> str:
        """Submit an async generation job. Returns the provider request ID."""
        payload = {
            "prompt": prompt,
            "size": size,
            "max_images": 1,
            "enable_base64_output": False,
            "enable_sync_mode": False,
        }
        data = self._post_prediction(payload)
        request_id = data.get("id")
        if not request_id:
            raise ImageGenerationError("No request ID returned")
        logger.info(f"Generation job submitted: {request_id}")
        return request_id

    def get_result(self, request_id: str) -> Dict[str, Any]:
        """Get a job by ID. Returns the `data` object of the API response."""
        if not self.configured:
            raise ImageGenerationNotConfigured("WAVESPEED_API_KEY is not set")
        url = f"{self.base_url}/predictions/{request_id}/result"
        with httpx.Client(timeout=self.timeout_seconds) as client:
            r = client.get(url, headers=self._headers())
        if r.status_code >= 400:
            raise ImageGenerationError(f"Get result error {r.status_code}: {r.text[:500]}")
        body = r.json()
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            raise ImageGenerationError(f"Unexpected Wavespeed response: {str(body)[:300]}")
        return data

    def poll_result(self, request_id: str) -> str:
        """Poll until the job completes. Returns the first output URL."""
        start = time.time()
        while True:
            if time.time() - start > self.polling_timeout:
                raise ImageGenerationTimeout(f"Polling timed out after {self.polling_timeout}s")
            data = self.get_result(request_id)
            status = data.get("status", "")
            if status == STATUS_COMPLETED:
                urls = extract_output_urls(data)
                if urls:
                    return urls[0]
                raise ImageGenerationError(f"Unexpected output format: {data.get('outputs')}")
            if status == STATUS_FAILED:
                raise ImageGenerationError(f"Image generation failed: {data.get('error') or 'unknown error'}")
            time.sleep(self.polling_interval)
