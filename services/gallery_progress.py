"""
Gallery progress aggregation.

A gallery's overall status is a pure function of its four image slots:

- ``complete`` when all four slots are ``completed``
- ``partial`` when every slot is terminal (completed or failed) but not all completed
- ``generating`` otherwise
"""
from models.gallery import SLOT_COUNT, GalleryMetadata, GalleryStatus, ImageStatus, Progress
from models.schemas import ImageUpdate


class InvalidImageIndex(ValueError):
    pass


def count_progress(metadata: GalleryMetadata) -> Progress:
    statuses = [slot.status for slot in metadata.images]
    return Progress(
        completed=statuses.count(ImageStatus.COMPLETED),
        total=SLOT_COUNT,
        failed=statuses.count(ImageStatus.FAILED),
        generating=statuses.count(ImageStatus.GENERATING),
    )


def derive_status(progress: Progress) -> GalleryStatus:
    if progress.completed == SLOT_COUNT:
        return GalleryStatus.COMPLETE
    if progress.completed + progress.failed == SLOT_COUNT:
        return GalleryStatus.PARTIAL
    return GalleryStatus.GENERATING


def refresh(metadata: GalleryMetadata) -> GalleryMetadata:
    """Recompute progress and status from the slots."""
    metadata.progress = count_progress(metadata)
    metadata.status = derive_status(metadata.progress)
    return metadata


def check_index(index: int) -> None:
    if not isinstance(index, int) or isinstance(index, bool) or not 1 <= index <= SLOT_COUNT:
        raise InvalidImageIndex(f"Image index must be between 1 and {SLOT_COUNT}, got {index!r}")


def apply_image_update(metadata: GalleryMetadata, index: int, update: ImageUpdate) -> GalleryMetadata:
    """Merge `update` into slot `index` (1-based) and refresh the aggregate.

    Raises InvalidImageIndex for indexes outside 1..4; the document is left untouched.
    """
    check_index(index)

    fields = update.model_dump(exclude_unset=True)
    # A slot that left the failed state should not keep reporting the old error.
    if update.status != ImageStatus.FAILED and "error" not in fields:
        fields["error"] = None

    current = metadata.slot(index)
    metadata.images[index - 1] = current.model_copy(update={**fields, "index": index})
    return refresh(metadata)
