"""
Gallery ID codec.

A gallery ID is ``{random prefix}_{base64(JSON user inputs)}`` so a Magic Link
alone is enough to rebuild the form a gallery was created from.
"""
import base64
import binascii
import json
import logging
import re
import uuid

from pydantic import ValidationError

from models.gallery import UserInputs

logger = logging.getLogger(__name__)

SEPARATOR = "_"
_VALID_ID = re.compile(r"^[A-Za-z0-9_=-]{1,1024}$")

DEFAULT_USER_INPUTS = UserInputs(
    location="Tokyo",
    atmosphere="golden",
    focus="cherry blossoms",
    detail="pink petals falling",
    feelings=["peaceful", "nostalgic"],
    aspect_ratio="1:1",
    season="spring",
)


def default_user_inputs() -> UserInputs:
    return DEFAULT_USER_INPUTS.model_copy(deep=True)


def is_valid_gallery_id(gallery_id: str) -> bool:
    """True if the id is safe to use as a blob key segment."""
    return isinstance(gallery_id, str) and bool(_VALID_ID.match(gallery_id))


def encode_gallery_id(inputs: UserInputs) -> str:
    payload = json.dumps(inputs.model_dump(mode="json", by_alias=True), separators=(",", ":"), ensure_ascii=False)
    encoded = base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii").rstrip("=")
    return f"{uuid.uuid4().hex[:8]}{SEPARATOR}{encoded}"


def _b64decode(value: str) -> bytes:
    # URL-safe alphabet, padding optional.
    normalized = value.replace("-", "+").replace("_", "/")
    normalized += "=" * (-len(normalized) % 4)
    return base64.b64decode(normalized, validate=True)


def decode_user_inputs(gallery_id: str) -> UserInputs:
    """Recover the form inputs from a gallery ID. Falls back to the defaults, never raises."""
    if not isinstance(gallery_id, str) or SEPARATOR not in gallery_id:
        logger.info("Gallery id has no encoded inputs; using defaults")
        return default_user_inputs()
    encoded = gallery_id.split(SEPARATOR, 1)[1]
    try:
        decoded = json.loads(_b64decode(encoded).decode("utf-8"))
        if not isinstance(decoded, dict):
            raise ValueError("encoded inputs are not an object")
        return UserInputs.model_validate(decoded)
    except (binascii.Error, UnicodeDecodeError, ValueError, ValidationError) as e:
        logger.info("Failed to decode user inputs, using defaults: %s", e)
        return default_user_inputs()
