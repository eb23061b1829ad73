"""
Gallery persistence: create, load and update gallery metadata documents.

Every mutation is a read → modify → conditional write against the blob ETag,
retried a bounded number of times when another writer got there first.
"""
import logging
import random
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Optional

from pydantic import ValidationError

from models.gallery import GalleryMetadata, ImageStatus, UserInputs, utcnow
from models.schemas import ImageUpdate
from services.blob_store import BlobStore, StaleWriteError
from services.gallery_id import decode_user_inputs, encode_gallery_id, is_valid_gallery_id
from services.gallery_progress import apply_image_update, refresh

logger = logging.getLogger(__name__)

CONFLICT_BACKOFF_SECONDS = 0.05


class GalleryNotFound(Exception):
    pass

class InvalidGalleryId(ValueError):
    pass

class ConcurrentUpdateError(Exception):
    pass


def gallery_prefix(gallery_id: str) -> str:
    return f"galleries/{gallery_id}/"


def metadata_key(gallery_id: str) -> str:
    return f"{gallery_prefix(gallery_id)}metadata.json"


class GalleryService:
    def __init__(
        self,
        store: BlobStore,
        ttl_days: int = 30,
        write_retries: int = 5,
        public_base_url: Optional[str] = None,
    ):
        self.store = store
        self.ttl_days = ttl_days
        self.write_retries = max(1, write_retries)
        self.public_base_url = (public_base_url or "").rstrip("/")

    def magic_link(self, gallery_id: str) -> str:
        return f"{self.public_base_url}/gallery/{gallery_id}"

    @staticmethod
    def check_id(gallery_id: str) -> None:
        if not is_valid_gallery_id(gallery_id):
            raise InvalidGalleryId(f"Invalid gallery id: {str(gallery_id)[:80]!r}")

    def create_gallery(self, inputs: UserInputs) -> GalleryMetadata:
        gallery_id = encode_gallery_id(inputs)
        metadata = refresh(GalleryMetadata.new(gallery_id, inputs, self.ttl_days))
        self.store.put_json(metadata_key(gallery_id), metadata.to_document(), if_none_match=True)
        logger.info("Gallery created: %s (expires %s)", gallery_id, metadata.expires_at.isoformat())
        return metadata

    def _read(self, gallery_id: str) -> Optional[tuple[GalleryMetadata, str]]:
        self.check_id(gallery_id)
        try:
            found = self.store.get_json(metadata_key(gallery_id))
        except ValueError as e:
            logger.warning("Gallery %s: unreadable metadata: %s", gallery_id, e)
            return None
        if found is None:
            return None
        document, etag = found
        try:
            metadata = GalleryMetadata.model_validate(document)
        except ValidationError as e:
            logger.warning("Gallery %s: invalid metadata document: %s", gallery_id, e)
            return None
        if metadata.user_inputs is None:
            metadata.user_inputs = decode_user_inputs(gallery_id)
        return metadata, etag

    def load(self, gallery_id: str) -> Optional[GalleryMetadata]:
        found = self._read(gallery_id)
        return found[0] if found else None

    def get_or_placeholder(self, gallery_id: str) -> GalleryMetadata:
        """Stored gallery, or an unsaved pending one rebuilt from the id."""
        metadata = self.load(gallery_id)
        if metadata is not None:
            return metadata
        logger.info("Gallery %s: no metadata stored yet, serving placeholder", gallery_id)
        return refresh(GalleryMetadata.new(gallery_id, decode_user_inputs(gallery_id), self.ttl_days))

    def _mutate(self, gallery_id: str, mutate: Callable[[GalleryMetadata], Any]) -> GalleryMetadata:
        for attempt in range(1, self.write_retries + 1):
            found = self._read(gallery_id)
            if found is None:
                raise GalleryNotFound(f"Gallery not found: {gallery_id}")
            metadata, etag = found
            mutate(metadata)
            try:
                self.store.put_json(metadata_key(gallery_id), metadata.to_document(), if_match=etag)
                return metadata
            except StaleWriteError:
                logger.info(
                    "Gallery %s: concurrent update, retrying (%d/%d)", gallery_id, attempt, self.write_retries
                )
                time.sleep(random.uniform(0, CONFLICT_BACKOFF_SECONDS * attempt))
        raise ConcurrentUpdateError(f"Gallery {gallery_id} kept changing; gave up after {self.write_retries} attempts")

    def update_image(self, gallery_id: str, index: int, update: ImageUpdate) -> GalleryMetadata:
        metadata = self._mutate(gallery_id, lambda m: apply_image_update(m, index, update))
        logger.info(
            "Gallery %s: image %s -> %s (%d/4 completed, %d failed)",
            gallery_id,
            index,
            update.status.value,
            metadata.progress.completed,
            metadata.progress.failed,
        )
        return metadata

    def set_image_status(
        self,
        gallery_id: str,
        index: int,
        status: ImageStatus,
        additional: Optional[dict[str, Any]] = None,
    ) -> GalleryMetadata:
        update = ImageUpdate.model_validate({**(additional or {}), "status": status})
        return self.update_image(gallery_id, index, update)

    def fail_unfinished(self, gallery_id: str, reason: str) -> GalleryMetadata:
        """Mark every slot that has not completed as failed."""
        def mutate(metadata: GalleryMetadata) -> None:
            for slot in metadata.images:
                if slot.status != ImageStatus.COMPLETED:
                    slot.status = ImageStatus.FAILED
                    slot.error = reason
            refresh(metadata)

        return self._mutate(gallery_id, mutate)

    def mark_purchased(self, gallery_id: str) -> GalleryMetadata:
        def mutate(metadata: GalleryMetadata) -> None:
            metadata.purchased = True

        metadata = self._mutate(gallery_id, mutate)
        logger.info("Gallery %s marked purchased", gallery_id)
        return metadata

    def record_view(self, gallery_id: str) -> GalleryMetadata:
        def mutate(metadata: GalleryMetadata) -> None:
            metadata.view_count += 1

        return self._mutate(gallery_id, mutate)

    def to_api(self, metadata: GalleryMetadata) -> dict:
        document = metadata.to_document()
        document["timeRemaining"] = metadata.time_remaining_ms()
        document["magicLink"] = self.magic_link(metadata.id)
        return document

    def _collection_entry(self, gallery_id: str) -> Optional[GalleryMetadata]:
        try:
            return self.get_or_placeholder(gallery_id)
        except Exception as e:
            logger.warning("Failed to fetch gallery %s: %s", gallery_id, e)
            return None

    def get_collection(self, gallery_ids: list[str]) -> dict:
        ids = [g for g in dict.fromkeys(gallery_ids) if is_valid_gallery_id(g)]
        galleries: list[GalleryMetadata] = []
        if ids:
            with ThreadPoolExecutor(max_workers=min(8, len(ids))) as pool:
                galleries = [g for g in pool.map(self._collection_entry, ids) if g is not None]
        if not galleries:
            raise GalleryNotFound("No valid galleries found")

        now = utcnow()
        entries = []
        for g in galleries:
            doc = g.to_document()
            entries.append(
                {
                    "id": g.id,
                    "status": doc["status"],
                    "userInputs": doc.get("userInputs"),
                    "images": doc["images"],
                    "createdAt": doc["createdAt"],
                    "expiresAt": doc["expiresAt"],
                    "timeRemaining": g.time_remaining_ms(now),
                    "purchased": g.purchased,
                }
            )
        collection = {
            "totalGalleries": len(galleries),
            "totalImages": sum(len(g.images) for g in galleries),
            "completedImages": sum(
                1 for g in galleries for img in g.images if img.status == ImageStatus.COMPLETED
            ),
            "galleries": entries,
            "earliestExpiry": min(int(g.expires_at_utc.timestamp() * 1000) for g in galleries),
            "createdAt": now.isoformat(),
        }
        logger.info(
            "Collection assembled: %d galleries, %d/%d images completed",
            collection["totalGalleries"],
            collection["completedImages"],
            collection["totalImages"],
        )
        return collection
