import base64
import binascii
import re
from typing import Optional
from urllib.parse import urlparse

import puremagic
import structlog
from core.exceptions import ValidationException
from domain.models import GenerationRequest

logger = structlog.get_logger()

ACCEPTED_IMAGE_TYPES = frozenset({"image/jpeg", "image/png", "image/webp"})

_DATA_URL = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[^;,]*)*?);base64,(?P<data>.*)$", re.DOTALL)


def sniff_image_type(data: bytes) -> Optional[str]:
    """Returns the accepted image MIME type the bytes look like, if any."""
    try:
        matches = puremagic.magic_string(data[:2048])
    except puremagic.PureError:
        logger.debug("image_signature_unidentified")
        return None

    for match in matches:
        if match.mime_type in ACCEPTED_IMAGE_TYPES:
            return match.mime_type
    return None


def validate_request(request: GenerationRequest) -> GenerationRequest:
    """
    Rejects malformed input before any network call is made.
    Returns the request unchanged when it is acceptable.
    """
    if request.source_url is not None:
        if request.image is not None:
            raise ValidationException("Provide either image bytes or an image URL, not both.")
        _check_http_url(request.source_url)
        return request

    if not request.image:
        raise ValidationException("Image is empty.")

    mime = (request.mime_type or "").lower()
    if mime not in ACCEPTED_IMAGE_TYPES:
        raise ValidationException(
            f"Unsupported image type '{request.mime_type}'. "
            f"Accepted types: {', '.join(sorted(ACCEPTED_IMAGE_TYPES))}."
        )

    detected = sniff_image_type(request.image)
    if detected is None:
        raise ValidationException("Could not identify the uploaded file as an image.")
    if detected != mime:
        logger.info("image_mime_mismatch", declared=mime, detected=detected)
        raise ValidationException(f"Image content is {detected} but was declared as {mime}.")

    return request


def _check_http_url(url: str) -> None:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationException("Image URL must use http or https.")


def request_from_bytes(
    data: bytes, mime_type: Optional[str], model_version: Optional[str] = None
) -> GenerationRequest:
    request = GenerationRequest(
        image=data,
        mime_type=(mime_type or "").lower() or None,
        model_version=model_version,
    )
    return validate_request(request)


def request_from_payload(
    image: str, mime_type: Optional[str] = None, model_version: Optional[str] = None
) -> GenerationRequest:
    """
    Builds a request from what a browser sends: a data URL, an http(s) URL,
    or bare base64 accompanied by its MIME type.
    """
    image = (image or "").strip()
    if not image:
        raise ValidationException("Missing or invalid image.")

    if image.startswith(("http://", "https://")):
        return validate_request(GenerationRequest(source_url=image, model_version=model_version))

    if image.startswith("data:"):
        match = _DATA_URL.match(image)
        if not match or not match.group("mime"):
            raise ValidationException("Invalid data URL.")
        url_mime = match.group("mime").lower()
        if mime_type and mime_type.lower() != url_mime:
            raise ValidationException(f"mimeType {mime_type} does not match data URL type {url_mime}.")
        return request_from_bytes(_decode_base64(match.group("data")), url_mime, model_version)

    if "://" in image:
        raise ValidationException("Image URL must use http or https.")

    if not mime_type:
        raise ValidationException("mimeType is required when sending raw base64 image data.")
    return request_from_bytes(_decode_base64(image), mime_type, model_version)


def _decode_base64(payload: str) -> bytes:
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationException("Image data is not valid base64.", original_error=e)


def to_data_url(request: GenerationRequest) -> str:
    """Inline form for providers that accept the image inside the job request."""
    encoded = base64.b64encode(request.image or b"").decode("ascii")
    return f"data:{request.mime_type};base64,{encoded}"
