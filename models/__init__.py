from .gallery import GalleryMetadata, GalleryStatus, ImageSlot, ImageStatus, Progress, UserInputs
from .schemas import ErrorResponse, GenerateRequest, GenerateResponse, ImageUpdate

__all__ = [
    "GalleryMetadata",
    "GalleryStatus",
    "ImageSlot",
    "ImageStatus",
    "Progress",
    "UserInputs",
    "ErrorResponse",
    "GenerateRequest",
    "GenerateResponse",
    "ImageUpdate",
]
