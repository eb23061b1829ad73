"""
FastAPI application for Omoide Art: Ukiyo-e galleries generated from travel memories.
"""
import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import AsyncGenerator, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from clients import (
    PRINT_PRODUCTS,
    GeminiClient,
    ImageGenerationError,
    PrintServiceError,
    PrintServiceNotConfigured,
    ProdigiClient,
    WavespeedClient,
)
from clients.prodigi_client import resolve_sku
from config import Settings, get_settings
from models import ErrorResponse, GenerateRequest, GenerateResponse, ImageStatus, ImageUpdate
from models.print_schemas import PrintOrderRequest, PrintQuoteRequest
from models.schemas import (
    CleanupRequest,
    CollectionRequest,
    GalleryUpdateRequest,
    RequestIdUpdate,
    UploadImagesRequest,
    WebhookGenerateRequest,
)
from services import (
    BlobStore,
    CleanupService,
    ConcurrentUpdateError,
    GalleryNotFound,
    GalleryService,
    GenerationService,
    InvalidGalleryId,
    InvalidImageIndex,
    LocalBlobStore,
    build_blob_store,
)
from services.webhook_auth import (
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    SignatureError,
    verify_bearer,
    verify_signature,
)

logging.basicConfig(
    level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)
# Reduce noisy per-request logs from httpx/httpcore and boto.
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("botocore").setLevel(logging.WARNING)

# Delay before the first in-process cleanup sweep after startup
CLEANUP_STARTUP_DELAY_SECONDS = 120


# ── Dependencies ─────────────────────────────────────────────

@lru_cache
def get_blob_store() -> BlobStore:
    return build_blob_store(get_settings())


def get_gallery_service(
    store: BlobStore = Depends(get_blob_store),
    settings: Settings = Depends(get_settings),
) -> GalleryService:
    return GalleryService(
        store,
        ttl_days=settings.gallery_ttl_days,
        write_retries=settings.metadata_write_retries,
        public_base_url=settings.public_base_url,
    )


def get_image_client(settings: Settings = Depends(get_settings)) -> WavespeedClient:
    return WavespeedClient(
        api_key=settings.wavespeed_api_key,
        base_url=settings.wavespeed_base_url,
        timeout_seconds=settings.api_timeout_seconds,
        polling_interval_seconds=settings.polling_interval_seconds,
        rate_limit_retries=settings.max_retries,
        rate_limit_base_wait=settings.rate_limit_base_wait_seconds,
    )


def get_prompt_client(settings: Settings = Depends(get_settings)) -> GeminiClient:
    return GeminiClient(api_key=settings.gemini_api_key, model=settings.gemini_model)


def get_generation_service(
    galleries: GalleryService = Depends(get_gallery_service),
    store: BlobStore = Depends(get_blob_store),
    image_client: WavespeedClient = Depends(get_image_client),
    prompt_client: GeminiClient = Depends(get_prompt_client),
) -> GenerationService:
    return GenerationService(image_client, galleries, store, prompt_client=prompt_client)


def get_cleanup_service(
    galleries: GalleryService = Depends(get_gallery_service),
    store: BlobStore = Depends(get_blob_store),
) -> CleanupService:
    return CleanupService(store, galleries)


def get_print_client(settings: Settings = Depends(get_settings)) -> ProdigiClient:
    return ProdigiClient(api_key=settings.prodigi_api_key, sandbox=settings.prodigi_sandbox)


# ── Lifespan ─────────────────────────────────────────────────

def _run_cleanup_sync() -> dict:
    store = get_blob_store()
    return get_cleanup_service(get_gallery_service(store, get_settings()), store).run()


async def _cleanup_loop(interval_hours: int) -> None:
    """Sweep expired galleries shortly after startup and then every `interval_hours`."""
    await asyncio.sleep(CLEANUP_STARTUP_DELAY_SECONDS)
    while True:
        try:
            await asyncio.to_thread(_run_cleanup_sync)
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.warning("Cleanup loop error: %s", e)
        await asyncio.sleep(interval_hours * 3600)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info("Omoide Art service starting")
    s = get_settings()
    if not s.wavespeed_api_key:
        logger.warning("WAVESPEED_API_KEY not set; galleries will fail to generate")
    if s.blob_bucket:
        logger.info("Blob store: S3 bucket %s", s.blob_bucket)
    else:
        logger.info("Blob store: local filesystem")
    logger.info("Generation mode: %s", s.generation_mode)

    cleanup_task = None
    if s.cleanup_interval_hours > 0:
        cleanup_task = asyncio.create_task(_cleanup_loop(s.cleanup_interval_hours))
    yield
    if cleanup_task is not None:
        cleanup_task.cancel()
        try:
            await cleanup_task
        except asyncio.CancelledError:
            pass
    logger.info("Omoide Art service shutting down")


app = FastAPI(
    title="Omoide Art",
    description="Turn travel memories into Ukiyo-e galleries",
    version="1.0.0",
    lifespan=lifespan,
)


# ── Error envelope ───────────────────────────────────────────

def _error(status_code: int, message: str, error: Optional[str] = None) -> JSONResponse:
    body = ErrorResponse(message=message, error=error).model_dump(exclude_none=True)
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body')}: {err.get('msg')}" for err in exc.errors()
    )
    return _error(400, "Invalid request", details)


@app.exception_handler(GalleryNotFound)
async def gallery_not_found_handler(request: Request, exc: GalleryNotFound) -> JSONResponse:
    return _error(404, str(exc))


@app.exception_handler(InvalidGalleryId)
async def invalid_gallery_id_handler(request: Request, exc: InvalidGalleryId) -> JSONResponse:
    return _error(400, "Invalid gallery ID", str(exc))


@app.exception_handler(InvalidImageIndex)
async def invalid_image_index_handler(request: Request, exc: InvalidImageIndex) -> JSONResponse:
    return _error(400, "Invalid image index", str(exc))


@app.exception_handler(ConcurrentUpdateError)
async def concurrent_update_handler(request: Request, exc: ConcurrentUpdateError) -> JSONResponse:
    return _error(409, "Gallery is being updated, please retry", str(exc))


@app.exception_handler(PrintServiceError)
async def print_service_handler(request: Request, exc: PrintServiceError) -> JSONResponse:
    if isinstance(exc, PrintServiceNotConfigured):
        return _error(503, "Print ordering is not available", str(exc))
    return _error(502, "Print order service unavailable", str(exc))


# ── Health ───────────────────────────────────────────────────

@app.get("/health")
async def health() -> JSONResponse:
    """Lightweight health endpoint for uptime checks."""
    return JSONResponse({"status": "ok"})


# ── Generation API ───────────────────────────────────────────

@app.post("/api/generate")
async def generate(
    body: GenerateRequest,
    background_tasks: BackgroundTasks,
    galleries: GalleryService = Depends(get_gallery_service),
    generation: GenerationService = Depends(get_generation_service),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    """Create a gallery and start generating its four images."""
    gallery = await asyncio.to_thread(galleries.create_gallery, body.to_user_inputs())

    mode = settings.generation_mode
    if mode == "webhook" and not (settings.webhook_secret and settings.public_base_url):
        logger.warning("Webhook mode needs WEBHOOK_SECRET and PUBLIC_BASE_URL; generating in background")
        mode = "background"
    if mode == "webhook":
        webhook_url = f"{settings.public_base_url.rstrip('/')}/api/webhook-generate"
        background_tasks.add_task(generation.dispatch_webhooks, gallery, webhook_url, settings.webhook_secret)
    elif mode == "poll":
        background_tasks.add_task(generation.submit_gallery, gallery)
    else:
        background_tasks.add_task(generation.generate_gallery, gallery)
    logger.info("Gallery %s created, generation dispatched (%s)", gallery.id, mode)

    response = GenerateResponse(
        gallery_id=gallery.id,
        magic_link=galleries.magic_link(gallery.id),
        status=gallery.status.value,
        progress=gallery.progress.model_dump(),
    )
    return JSONResponse(response.model_dump(by_alias=True))


@app.post("/api/webhook-generate")
async def webhook_generate(
    request: Request,
    generation: GenerationService = Depends(get_generation_service),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    """Generate one gallery image. Requests must be signed with WEBHOOK_SECRET."""
    raw = await request.body()
    try:
        verify_signature(
            settings.webhook_secret,
            raw,
            request.headers.get(TIMESTAMP_HEADER),
            request.headers.get(SIGNATURE_HEADER),
            tolerance_seconds=settings.signature_tolerance_seconds,
        )
    except SignatureError as e:
        logger.warning("Rejected webhook request: %s", e)
        return _error(401, "Unauthorized webhook request")
    body = _parse_body(WebhookGenerateRequest, raw)

    slot = await asyncio.to_thread(
        generation.generate_image, body.gallery_id, body.image_index, body.enhanced_prompt, body.aspect_ratio
    )
    metadata = await asyncio.to_thread(generation.galleries.load, body.gallery_id)
    return JSONResponse(
        {
            "success": slot.status == ImageStatus.COMPLETED,
            "galleryId": body.gallery_id,
            "imageIndex": body.image_index,
            "imageResult": slot.model_dump(mode="json", by_alias=True, exclude_none=True),
            "galleryStatus": metadata.status.value if metadata else None,
            "progress": metadata.progress.model_dump() if metadata else None,
        }
    )


@app.get("/api/check-status")
async def check_status(
    request_id: str = Query(..., alias="requestId", min_length=1),
    gallery_id: Optional[str] = Query(None, alias="galleryId"),
    image_index: Optional[int] = Query(None, alias="imageIndex"),
    generation: GenerationService = Depends(get_generation_service),
) -> JSONResponse:
    """Poll a generation job; when the slot is given, apply a finished result to the gallery."""
    if (gallery_id is None) != (image_index is None):
        raise HTTPException(status_code=400, detail="galleryId and imageIndex must be given together")
    try:
        result = await asyncio.to_thread(generation.image_client.get_result, request_id)
    except ImageGenerationError as e:
        logger.warning("Status check for %s failed: %s", request_id, e)
        return _error(502, "Failed to check status", str(e))

    payload = {"success": True, "requestId": request_id, "status": result.get("status", "unknown"), "data": result}
    if gallery_id is not None:
        GalleryService.check_id(gallery_id)
        slot = await asyncio.to_thread(generation.complete_from_result, gallery_id, image_index, result)
        if slot is not None:
            payload["image"] = slot.model_dump(mode="json", by_alias=True, exclude_none=True)
    return JSONResponse(payload)


@app.post("/api/upload-images")
async def upload_images(
    body: UploadImagesRequest,
    generation: GenerationService = Depends(get_generation_service),
) -> JSONResponse:
    if body.gallery_id:
        GalleryService.check_id(body.gallery_id)
    result = await asyncio.to_thread(generation.upload_images, body.image_urls, body.gallery_id)
    return JSONResponse({"success": True, "galleryId": body.gallery_id, **result})


# ── Gallery API ──────────────────────────────────────────────

async def _gallery_payload(galleries: GalleryService, gallery_id: str) -> JSONResponse:
    metadata = await asyncio.to_thread(galleries.get_or_placeholder, gallery_id)
    return JSONResponse({"success": True, "gallery": galleries.to_api(metadata)})


@app.get("/api/gallery")
async def get_gallery_by_query(
    gallery_id: str = Query(..., alias="id", min_length=1),
    galleries: GalleryService = Depends(get_gallery_service),
) -> JSONResponse:
    return await _gallery_payload(galleries, gallery_id)


@app.get("/api/gallery/{gallery_id}")
async def get_gallery(gallery_id: str, galleries: GalleryService = Depends(get_gallery_service)) -> JSONResponse:
    return await _gallery_payload(galleries, gallery_id)


@app.post("/api/gallery/{gallery_id}/view")
async def record_gallery_view(
    gallery_id: str, galleries: GalleryService = Depends(get_gallery_service)
) -> JSONResponse:
    metadata = await asyncio.to_thread(galleries.record_view, gallery_id)
    return JSONResponse({"success": True, "galleryId": gallery_id, "viewCount": metadata.view_count})


@app.post("/api/collection")
async def get_collection(
    body: CollectionRequest, galleries: GalleryService = Depends(get_gallery_service)
) -> JSONResponse:
    collection = await asyncio.to_thread(galleries.get_collection, body.gallery_ids)
    return JSONResponse({"success": True, "collection": collection})


@app.post("/api/gallery-update")
async def gallery_update(
    body: GalleryUpdateRequest, galleries: GalleryService = Depends(get_gallery_service)
) -> JSONResponse:
    if body.action == "update-image":
        if body.image_index is None or body.image_data is None:
            raise HTTPException(status_code=400, detail="Image index and data are required")
        metadata = await asyncio.to_thread(galleries.update_image, body.gallery_id, body.image_index, body.image_data)
    elif body.action == "set-status":
        if body.image_index is None or body.status is None:
            raise HTTPException(status_code=400, detail="Image index and status are required")
        additional = body.additional_data.model_dump(exclude_unset=True) if body.additional_data else None
        metadata = await asyncio.to_thread(
            galleries.set_image_status, body.gallery_id, body.image_index, body.status, additional
        )
    else:
        metadata = await asyncio.to_thread(galleries.load, body.gallery_id)
        if metadata is None:
            raise GalleryNotFound(f"Gallery not found: {body.gallery_id}")
    return JSONResponse({"success": True, "metadata": metadata.to_document()})


@app.post("/api/update-gallery")
async def update_gallery_request_id(
    body: RequestIdUpdate, galleries: GalleryService = Depends(get_gallery_service)
) -> JSONResponse:
    """Record the provider request ID tracking one slot."""
    update = ImageUpdate(status=body.status, request_id=body.request_id)
    await asyncio.to_thread(galleries.update_image, body.gallery_id, body.image_index, update)
    return JSONResponse(
        {
            "success": True,
            "message": f"Gallery {body.gallery_id} updated - Image {body.image_index} "
            f"now tracking requestId: {body.request_id}",
        }
    )


# ── Cleanup API ──────────────────────────────────────────────

@app.post("/api/cleanup-expired")
async def cleanup_expired(
    request: Request,
    cleanup: CleanupService = Depends(get_cleanup_service),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    """Delete expired galleries. Requests must be signed with CLEANUP_SECRET."""
    raw = await request.body()
    try:
        verify_signature(
            settings.cleanup_secret,
            raw,
            request.headers.get(TIMESTAMP_HEADER),
            request.headers.get(SIGNATURE_HEADER),
            tolerance_seconds=settings.signature_tolerance_seconds,
        )
    except SignatureError as e:
        logger.warning("Rejected cleanup request: %s", e)
        return _error(401, "Unauthorized: invalid cleanup signature")
    body = _parse_body(CleanupRequest, raw) if raw.strip() else CleanupRequest()

    result = await asyncio.to_thread(cleanup.run, body.dry_run)
    message = f"Cleanup completed: processed {result['processed']} galleries, deleted {result['deleted']} files"
    return JSONResponse({"message": message, **result})


@app.get("/api/cron-cleanup")
async def cron_cleanup(
    request: Request,
    cleanup: CleanupService = Depends(get_cleanup_service),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    """Scheduled sweep, authorized with `Authorization: Bearer {CRON_SECRET}`."""
    if not verify_bearer(settings.cron_secret, request.headers.get("authorization")):
        return _error(401, "Unauthorized")
    logger.info("Cron cleanup triggered")
    result = await asyncio.to_thread(cleanup.run)
    return JSONResponse({"success": True, "message": "Daily cleanup completed successfully", "details": result})


# ── Prints API ───────────────────────────────────────────────

@app.get("/api/prints/products")
async def print_products() -> JSONResponse:
    return JSONResponse({"success": True, "products": PRINT_PRODUCTS})


def _resolve_items(items, gallery=None) -> list[dict]:
    resolved = []
    for item in items:
        try:
            sku = resolve_sku(item.product_sku)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        image_url = item.image_url
        if not image_url and gallery is not None:
            image_url = gallery.slot(item.image_index).print_url
        resolved.append(
            {"sku": sku, "copies": item.quantity, "imageUrl": image_url, "imageIndex": item.image_index}
        )
    return resolved


@app.post("/api/prints/quote")
async def print_quote(body: PrintQuoteRequest, prints: ProdigiClient = Depends(get_print_client)) -> JSONResponse:
    items = _resolve_items(body.items)
    quote = await asyncio.to_thread(prints.get_quote, body.country_code.upper(), items)
    return JSONResponse(quote)


@app.post("/api/prints/orders")
async def create_print_order(
    body: PrintOrderRequest,
    prints: ProdigiClient = Depends(get_print_client),
    galleries: GalleryService = Depends(get_gallery_service),
) -> JSONResponse:
    """Place a print order. Images default to the gallery's print files when a gallery is given."""
    gallery = None
    if body.gallery_id:
        gallery = await asyncio.to_thread(galleries.load, body.gallery_id)
        if gallery is None:
            raise GalleryNotFound(f"Gallery not found: {body.gallery_id}")
    items = _resolve_items(body.items, gallery)
    missing = [i["imageIndex"] for i in items if not i["imageUrl"]]
    if missing:
        raise HTTPException(status_code=400, detail=f"No print image available for image(s) {missing}")

    recipient = body.recipient.model_dump(by_alias=True)
    recipient["address"]["countryCode"] = recipient["address"]["countryCode"].upper()
    order = await asyncio.to_thread(prints.create_order, recipient, items)
    if gallery is not None:
        await asyncio.to_thread(galleries.mark_purchased, gallery.id)
    return JSONResponse(order)


# ── Blob files ───────────────────────────────────────────────

@app.get("/blobs/{key:path}")
async def get_blob(key: str, store: BlobStore = Depends(get_blob_store)) -> FileResponse:
    """Serve files of the local blob store."""
    if not isinstance(store, LocalBlobStore):
        raise HTTPException(status_code=404, detail="File not found")
    path = store.open_path(key)
    if path is None:
        raise HTTPException(status_code=404, detail="File not found")
    media_type = "application/json" if path.suffix == ".json" else "image/jpeg"
    return FileResponse(path, media_type=media_type)


def _parse_body(model, raw: bytes):
    """Validate a raw JSON body read for signature checking."""
    try:
        return model.model_validate(json.loads(raw or b"{}"))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid request body: {e}")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="127.0.0.1",
        port=8001,
        reload=True,
    )
