from typing import Literal, Optional

from pydantic import ConfigDict, Field

from models.gallery import CamelModel, ImageStatus, UserInputs


class GenerateRequest(UserInputs):
    """Memory form submitted by the frontend."""
    model_config = ConfigDict(str_strip_whitespace=True)

    location: str = Field(..., min_length=1)
    atmosphere: str = Field(..., min_length=1)
    focus: str = Field(..., min_length=1)
    detail: str = Field(..., min_length=1)
    feelings: list[str] = Field(..., min_length=1)
    aspect_ratio: str = "1:1"
    season: str = ""

    def to_user_inputs(self) -> UserInputs:
        return UserInputs.model_validate(self.model_dump())


class ImageDetails(CamelModel):
    """Optional slot fields sent alongside a status change."""
    request_id: Optional[str] = None
    web_url: Optional[str] = None
    print_url: Optional[str] = None
    original_url: Optional[str] = None
    error: Optional[str] = None


class ImageUpdate(ImageDetails):
    """New state for one image slot. Unset fields keep their stored value."""
    status: ImageStatus


class GalleryUpdateRequest(CamelModel):
    action: Literal["update-image", "set-status", "get-metadata"]
    gallery_id: str = Field(..., min_length=1)
    image_index: Optional[int] = None
    image_data: Optional[ImageUpdate] = None
    status: Optional[ImageStatus] = None
    additional_data: Optional[ImageDetails] = None


class RequestIdUpdate(CamelModel):
    gallery_id: str = Field(..., min_length=1)
    image_index: int
    request_id: str = Field(..., min_length=1)
    status: ImageStatus = ImageStatus.GENERATING


class CollectionRequest(CamelModel):
    gallery_ids: list[str] = Field(..., min_length=1)


class UploadImagesRequest(CamelModel):
    image_urls: list[str] = Field(..., min_length=1)
    gallery_id: Optional[str] = None


class WebhookGenerateRequest(CamelModel):
    gallery_id: str = Field(..., min_length=1)
    image_index: int
    enhanced_prompt: str = Field(..., min_length=1)
    aspect_ratio: str = "1:1"


class CleanupRequest(CamelModel):
    dry_run: bool = False


class GenerateResponse(CamelModel):
    success: bool = True
    gallery_id: str
    magic_link: str
    status: str
    progress: dict[str, int]
    message: str = "Gallery created. Your artwork is being generated."


class ErrorResponse(CamelModel):
    success: bool = False
    message: str
    error: Optional[str] = None
