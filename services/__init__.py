from .blob_store import BlobStore, LocalBlobStore, S3BlobStore, StaleWriteError, build_blob_store
from .cleanup import CleanupService
from .gallery_progress import InvalidImageIndex
from .gallery_service import ConcurrentUpdateError, GalleryNotFound, GalleryService, InvalidGalleryId
from .generation import GenerationService

__all__ = [
    "BlobStore",
    "LocalBlobStore",
    "S3BlobStore",
    "StaleWriteError",
    "build_blob_store",
    "CleanupService",
    "InvalidImageIndex",
    "ConcurrentUpdateError",
    "GalleryNotFound",
    "GalleryService",
    "InvalidGalleryId",
    "GenerationService",
]
