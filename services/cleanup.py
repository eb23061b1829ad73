"""
Expiry sweep: deletes every file of galleries past their expiry date.

Purchased galleries are kept. Per-file failures are logged and counted but
never stop the sweep.
"""
import logging
import time
from datetime import datetime
from typing import Optional

from models.gallery import GalleryMetadata, utcnow
from services.blob_store import BlobStore
from services.gallery_service import GalleryService, gallery_prefix

logger = logging.getLogger(__name__)

GALLERIES_PREFIX = "galleries/"
METADATA_SUFFIX = "/metadata.json"
SECONDS_PER_DAY = 24 * 3600


class CleanupService:
    def __init__(self, store: BlobStore, galleries: GalleryService):
        self.store = store
        self.galleries = galleries

    def _gallery_ids(self) -> list[str]:
        ids = []
        for blob in self.store.list(GALLERIES_PREFIX):
            if not blob.key.endswith(METADATA_SUFFIX):
                continue
            gallery_id = blob.key[len(GALLERIES_PREFIX):-len(METADATA_SUFFIX)]
            if gallery_id and "/" not in gallery_id:
                ids.append(gallery_id)
        return ids

    def find_expired(self, now: Optional[datetime] = None) -> list[dict]:
        """Expired, unpurchased galleries as {galleryId, expiresAt, daysExpired}."""
        now = now or utcnow()
        gallery_ids = self._gallery_ids()
        logger.info("Cleanup: found %d gallery metadata files", len(gallery_ids))

        expired = []
        for gallery_id in gallery_ids:
            try:
                metadata: Optional[GalleryMetadata] = self.galleries.load(gallery_id)
            except Exception as e:
                logger.warning("Cleanup: failed to check gallery %s: %s", gallery_id, e)
                continue
            if metadata is None:
                logger.warning("Cleanup: skipping gallery %s with unreadable metadata", gallery_id)
                continue
            if metadata.purchased or not metadata.is_expired(now):
                continue
            overdue = now - metadata.expires_at_utc
            expired.append(
                {
                    "galleryId": gallery_id,
                    "expiresAt": metadata.expires_at_utc.isoformat(),
                    "daysExpired": int(overdue.total_seconds() // SECONDS_PER_DAY),
                }
            )
        logger.info("Cleanup: %d expired galleries", len(expired))
        return expired

    def delete_gallery_files(self, gallery_id: str) -> dict:
        deleted, failed = 0, 0
        for blob in self.store.list(gallery_prefix(gallery_id)):
            try:
                self.store.delete(blob.key)
                deleted += 1
            except Exception as e:
                logger.warning("Cleanup: failed to delete %s: %s", blob.key, e)
                failed += 1
        logger.info("Cleanup: gallery %s deleted %d files, %d failed", gallery_id, deleted, failed)
        return {"deleted": deleted, "failed": failed}

    def run(self, dry_run: bool = False, now: Optional[datetime] = None) -> dict:
        """Run one sweep and return the report."""
        start = time.monotonic()
        expired = self.find_expired(now)

        total_deleted, total_failed = 0, 0
        details = []
        for entry in expired:
            gallery_id = entry["galleryId"]
            if dry_run:
                details.append({"galleryId": gallery_id, "daysExpired": entry["daysExpired"], "dryRun": True})
                continue
            try:
                result = self.delete_gallery_files(gallery_id)
            except Exception as e:
                logger.warning("Cleanup: gallery %s failed: %s", gallery_id, e)
                total_failed += 1
                details.append({"galleryId": gallery_id, "error": str(e)})
                continue
            total_deleted += result["deleted"]
            total_failed += result["failed"]
            details.append(
                {
                    "galleryId": gallery_id,
                    "daysExpired": entry["daysExpired"],
                    "filesDeleted": result["deleted"],
                    "filesFailed": result["failed"],
                }
            )

        duration = int((time.monotonic() - start) * 1000)
        logger.info(
            "Cleanup completed in %dms: processed %d, files deleted %d, failed %d%s",
            duration,
            len(expired),
            total_deleted,
            total_failed,
            " (dry run)" if dry_run else "",
        )
        return {
            "success": True,
            "processed": len(expired),
            "deleted": total_deleted,
            "failed": total_failed,
            "duration": duration,
            "dryRun": dry_run,
            "details": details,
        }
