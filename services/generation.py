"""
Image generation service – generates each gallery image, stores a print and a
web copy in the blob store, and records the result on the gallery.

Three dispatch modes:

- background: generate all four images in worker threads of this process
- webhook: POST one signed /api/webhook-generate request per image
- poll: submit async jobs and let /api/check-status collect the results
"""
import io
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional

import httpx
from PIL import Image

from clients.gemini_client import GeminiClient, PromptEnhancementError
from clients.wavespeed_client import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    ImageGenerationError,
    WavespeedClient,
    extract_output_urls,
)
from models.gallery import GalleryMetadata, ImageSlot, ImageStatus, UserInputs
from models.schemas import ImageUpdate
from services.blob_store import BlobStore
from services.gallery_progress import check_index
from services.gallery_service import GalleryNotFound, GalleryService, gallery_prefix
from services.prompt_builder import aspect_ratio_to_size, build_prompt, build_prompt_variations
from services.webhook_auth import sign_request

logger = logging.getLogger(__name__)

WEB_MAX_SIZE = 2048
WEB_JPEG_QUALITY = 85


def resize_for_web(content: bytes, max_size: int = WEB_MAX_SIZE, quality: int = WEB_JPEG_QUALITY) -> bytes:
    """Fit inside max_size x max_size as JPEG (never enlarged). Returns the input if it cannot be decoded."""
    try:
        with Image.open(io.BytesIO(content)) as img:
            rgb = img.convert("RGB")
        rgb.thumbnail((max_size, max_size), Image.Resampling.LANCZOS)
        out = io.BytesIO()
        rgb.save(out, format="JPEG", quality=quality)
        return out.getvalue()
    except (OSError, ValueError) as e:
        logger.warning("Failed to resize for web, storing original: %s", e)
        return content


class GenerationService:
    def __init__(
        self,
        image_client: WavespeedClient,
        galleries: GalleryService,
        store: BlobStore,
        prompt_client: Optional[GeminiClient] = None,
        download_timeout_seconds: int = 60,
        max_workers: int = 4,
    ):
        self.image_client = image_client
        self.galleries = galleries
        self.store = store
        self.prompt_client = prompt_client
        self.download_timeout = download_timeout_seconds
        self.max_workers = max_workers

    # ── Prompts ──────────────────────────────────────────────

    def build_prompts(self, inputs: UserInputs) -> list[str]:
        base = build_prompt(inputs)
        if self.prompt_client and self.prompt_client.configured:
            try:
                base = self.prompt_client.enhance_prompt(base)
                logger.info("Prompt enhanced by LLM")
            except PromptEnhancementError as e:
                logger.warning("Prompt enhancement failed, using template prompt: %s", e)
        return build_prompt_variations(inputs, base=base)

    # ── Storage ──────────────────────────────────────────────

    def download(self, url: str) -> bytes:
        with httpx.Client(timeout=self.download_timeout, follow_redirects=True) as client:
            r = client.get(url)
        if r.status_code >= 400:
            raise ImageGenerationError(f"Failed to fetch image: {r.status_code}")
        return r.content

    def persist_image(self, gallery_id: str, index: int, source_url: str) -> ImageUpdate:
        """Store the full-size print copy and the resized web copy of a generated image."""
        original = self.download(source_url)
        prefix = gallery_prefix(gallery_id)
        print_blob = self.store.put(f"{prefix}print-{index}.jpg", original, content_type="image/jpeg")
        web_blob = self.store.put(f"{prefix}web-{index}.jpg", resize_for_web(original), content_type="image/jpeg")
        logger.info("Uploaded image %d for gallery %s: print + web versions", index, gallery_id)
        return ImageUpdate(
            status=ImageStatus.COMPLETED,
            web_url=web_blob.url,
            print_url=print_blob.url,
            original_url=source_url,
        )

    def upload_images(self, image_urls: list[str], gallery_id: Optional[str] = None) -> dict:
        """Copy remote images into the blob store. Failures are reported per image."""
        prefix = gallery_prefix(gallery_id) + "uploads/" if gallery_id else "uploads/"
        uploaded, failed = [], []
        for i, url in enumerate(image_urls, start=1):
            try:
                content = self.download(url)
                blob = self.store.put(f"{prefix}{i}.jpg", content, content_type="image/jpeg")
                uploaded.append({"originalUrl": url, "blobUrl": blob.url, "filename": blob.key, "index": i})
            except Exception as e:
                logger.warning("Failed to upload image %d: %s", i, e)
                failed.append({"originalUrl": url, "blobUrl": None, "error": str(e), "index": i})
        logger.info("Upload summary: %d successful, %d failed", len(uploaded), len(failed))
        return {
            "uploadedImages": uploaded,
            "failedUploads": failed,
            "summary": {"total": len(image_urls), "successful": len(uploaded), "failed": len(failed)},
        }

    # ── Generation ───────────────────────────────────────────

    def generate_image(self, gallery_id: str, index: int, prompt: str, aspect_ratio: str = "1:1") -> ImageSlot:
        """Generate and store one image. Provider or storage failures mark the slot failed.

        A slot that already completed is returned as is, so a redelivered webhook cannot
        replace a finished image.
        """
        check_index(index)
        current = self.galleries.load(gallery_id)
        if current is None:
            raise GalleryNotFound(f"Gallery not found: {gallery_id}")
        if current.slot(index).status == ImageStatus.COMPLETED:
            logger.info("Image %d of gallery %s already completed, skipping", index, gallery_id)
            return current.slot(index)

        self.galleries.set_image_status(gallery_id, index, ImageStatus.GENERATING)
        try:
            image_url = self.image_client.generate_sync(prompt, aspect_ratio_to_size(aspect_ratio))
            update = self.persist_image(gallery_id, index, image_url)
        except Exception as e:
            logger.exception("Image %d of gallery %s failed", index, gallery_id)
            update = ImageUpdate(status=ImageStatus.FAILED, error=str(e))
        metadata = self.galleries.update_image(gallery_id, index, update)
        return metadata.slot(index)

    def _generate_slot(self, gallery_id: str, index: int, prompt: str, aspect_ratio: str) -> None:
        try:
            self.generate_image(gallery_id, index, prompt, aspect_ratio)
        except Exception:
            logger.exception("Could not record image %d of gallery %s", index, gallery_id)

    def generate_gallery(self, gallery: GalleryMetadata) -> Optional[GalleryMetadata]:
        """Generate all four images concurrently (background mode)."""
        if not self.image_client.configured:
            logger.error("Gallery %s: image generation is not configured (WAVESPEED_API_KEY)", gallery.id)
            return self.galleries.fail_unfinished(gallery.id, "Image generation is not configured")
        inputs = gallery.user_inputs or UserInputs()
        prompts = self.build_prompts(inputs)
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            for index, prompt in enumerate(prompts, start=1):
                pool.submit(self._generate_slot, gallery.id, index, prompt, inputs.aspect_ratio)
        metadata = self.galleries.load(gallery.id)
        if metadata:
            logger.info("Gallery %s finished with status %s", gallery.id, metadata.status.value)
        return metadata

    def submit_gallery(self, gallery: GalleryMetadata) -> None:
        """Submit four async jobs and record their request IDs (poll mode)."""
        inputs = gallery.user_inputs or UserInputs()
        size = aspect_ratio_to_size(inputs.aspect_ratio)
        for index, prompt in enumerate(self.build_prompts(inputs), start=1):
            try:
                request_id = self.image_client.submit(prompt, size)
                self.galleries.set_image_status(
                    gallery.id, index, ImageStatus.GENERATING, {"requestId": request_id}
                )
            except ImageGenerationError as e:
                logger.warning("Gallery %s: submit for image %d failed: %s", gallery.id, index, e)
                self.galleries.set_image_status(gallery.id, index, ImageStatus.FAILED, {"error": str(e)})

    def complete_from_result(self, gallery_id: str, index: int, result: Dict[str, Any]) -> Optional[ImageSlot]:
        """Apply a polled provider result to a slot. Returns None while the job is still running."""
        check_index(index)
        status = result.get("status")
        if status not in (STATUS_COMPLETED, STATUS_FAILED):
            return None

        current = self.galleries.load(gallery_id)
        if current is None:
            raise GalleryNotFound(f"Gallery not found: {gallery_id}")
        slot = current.slot(index)
        if slot.status in (ImageStatus.COMPLETED, ImageStatus.FAILED):
            return slot

        request_id = result.get("id")
        if status == STATUS_FAILED:
            update = ImageUpdate(status=ImageStatus.FAILED, error=str(result.get("error") or "Image generation failed"))
        else:
            urls = extract_output_urls(result)
            try:
                if not urls:
                    raise ImageGenerationError("No image URL returned from API")
                update = self.persist_image(gallery_id, index, urls[0])
            except Exception as e:
                logger.warning("Gallery %s: storing result for image %d failed: %s", gallery_id, index, e)
                update = ImageUpdate(status=ImageStatus.FAILED, error=str(e))
        if request_id:
            update.request_id = request_id
        return self.galleries.update_image(gallery_id, index, update).slot(index)

    def dispatch_webhooks(self, gallery: GalleryMetadata, webhook_url: str, secret: str) -> None:
        """Fire one signed generation request per image without waiting for completion."""
        inputs = gallery.user_inputs or UserInputs()
        for index, prompt in enumerate(self.build_prompts(inputs), start=1):
            body = json.dumps(
                {
                    "galleryId": gallery.id,
                    "imageIndex": index,
                    "enhancedPrompt": prompt,
                    "aspectRatio": inputs.aspect_ratio,
                }
            ).encode("utf-8")
            headers = {"Content-Type": "application/json", **sign_request(secret, body)}
            try:
                r = httpx.post(webhook_url, content=body, headers=headers, timeout=3)
                if r.status_code >= 400:
                    logger.warning("Webhook for image %d of %s returned %s", index, gallery.id, r.status_code)
            except httpx.TimeoutException:
                # Generation takes far longer than the dispatch timeout; the webhook keeps running.
                logger.info("Webhook dispatched for image %d of %s", index, gallery.id)
            except httpx.HTTPError as e:
                logger.warning("Webhook dispatch for image %d of %s failed: %s", index, gallery.id, e)
