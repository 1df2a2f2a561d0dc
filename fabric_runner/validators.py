from __future__ import annotations

from typing import Iterable
from urllib.parse import urlsplit

from .errors import InputValidationError
from .types import GenerationRequest

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp")
AUDIO_EXTENSIONS = (".mp3", ".wav", ".m4a", ".aac")


def _capitalized(label: str) -> str:
    return label[:1].upper() + label[1:]


def is_http_url(url: str) -> bool:
    try:
        parsed = urlsplit(url)
    except ValueError:
        return False
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def validate_url(url: str, label: str) -> None:
    """Reject empty strings and anything that is not an absolute http(s) URL."""
    if not url:
        raise InputValidationError(f"{_capitalized(label)} is required")
    if not is_http_url(url):
        raise InputValidationError(f"Invalid {label} format")


def validate_media_url(url: str, label: str, extensions: Iterable[str], kind: str) -> None:
    validate_url(url, label)
    path = urlsplit(url).path.lower()
    allowed = tuple(extensions)
    if not any(ext in path for ext in allowed):
        names = ", ".join(ext.lstrip(".").upper() for ext in allowed)
        raise InputValidationError(
            f"{_capitalized(label)} must point to a valid {kind} file ({names})"
        )


def validate_image_url(url: str, strict: bool = False) -> None:
    if strict:
        validate_media_url(url, "image URL", IMAGE_EXTENSIONS, "image")
    else:
        validate_url(url, "image URL")


def validate_audio_url(url: str, strict: bool = False) -> None:
    if strict:
        validate_media_url(url, "audio URL", AUDIO_EXTENSIONS, "audio")
    else:
        validate_url(url, "audio URL")


def validate_request(request: GenerationRequest, strict: bool = False) -> None:
    validate_image_url(request.image_url, strict=strict)
    validate_audio_url(request.audio_url, strict=strict)
