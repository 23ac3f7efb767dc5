"""
Filename derivation for relayed images.

Turns an original file token (the last segment of the notification path) plus
optional session metadata into the name the image is stored under:

    "{User} - {Style} - {Type} - {YYYY-MM-DD_HHMM}{.ext}"

Without a session, or without a usable name on it, the original token is
returned untouched. Everything in this module is pure apart from reading the
local clock when ``now`` is not supplied.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Optional

from ..models import DEFAULT_EXTENSION, DerivedFilename, SessionRecord, TypeDescriptor

DEFAULT_FILE_TOKEN = "untitled.png"
UNKNOWN_USER = "UnknownUser"
DEFAULT_STYLE = "General"
TIMESTAMP_FORMAT = "%Y-%m-%d_%H%M"

_UNSAFE_NAME_CHARS = re.compile(r"[^\w .-]")
_FORBIDDEN_CHARS = re.compile(r'[\\/:*?"<>|]')
_WHITESPACE_RUN = re.compile(r"\s+")
_UNDERSCORE_RUN = re.compile(r"_{2,}")
_HYPHEN_RUN = re.compile(r"-{2,}")
# A hyphen touching whitespace on either side is a separator; hyphens inside
# words and dates are left alone.
_SEPARATOR = re.compile(r"\s+-\s*|\s*-\s+")


def extract_file_token(path: Optional[str]) -> str:
    """Return the last non-empty '/'-delimited segment of ``path``."""
    segments = [segment for segment in (path or "").split("/") if segment]
    if not segments:
        return DEFAULT_FILE_TOKEN
    return segments[-1]


def classify(base_name: str) -> TypeDescriptor:
    lowered = base_name.lower()
    if "final" in lowered:
        return TypeDescriptor.FINAL_OUTPUT
    if "qr" in lowered:
        return TypeDescriptor.QR_CODE
    return TypeDescriptor.GENERIC


def split_token(original_token: str) -> DerivedFilename:
    """
    Split a token at its last period into base name and extension.

    A token with no period, or whose only usable period is the first or last
    character, keeps the whole token as its base and gets DEFAULT_EXTENSION.
    """
    index = original_token.rfind(".")
    if index <= 0 or index == len(original_token) - 1:
        base, extension = original_token, DEFAULT_EXTENSION
    else:
        base, extension = original_token[:index], original_token[index:]
    return DerivedFilename(base_name=base, extension=extension, type_descriptor=classify(base))


def _capitalize_words(value: str) -> str:
    return " ".join(word[:1].upper() + word[1:] for word in value.split(" "))


def sanitize_user_name(raw: Optional[str]) -> str:
    cleaned = _UNSAFE_NAME_CHARS.sub("_", (raw or "").strip())
    cleaned = _WHITESPACE_RUN.sub(" ", cleaned).strip()
    if not cleaned:
        return UNKNOWN_USER
    return _capitalize_words(cleaned)


def sanitize_style(raw: Optional[str]) -> str:
    stripped = (raw or "").strip()
    if not stripped:
        return DEFAULT_STYLE
    words = stripped.replace("_", " ").split()
    titled = " ".join(word[:1].upper() + word[1:] for word in words)
    cleaned = _UNSAFE_NAME_CHARS.sub("_", titled).strip()
    return cleaned or DEFAULT_STYLE


def format_timestamp(now: datetime) -> str:
    return now.strftime(TIMESTAMP_FORMAT)


def finalize_filename(name: str) -> str:
    """Make an assembled name storage-safe and normalize its separators."""
    result = _FORBIDDEN_CHARS.sub("_", name)
    result = _UNDERSCORE_RUN.sub("_", result)
    result = _HYPHEN_RUN.sub("-", result)
    result = _SEPARATOR.sub(" - ", result)
    result = _WHITESPACE_RUN.sub(" ", result)
    return result.strip()


def usable_name(session: SessionRecord) -> Optional[str]:
    """Return the display name to enrich with, or None when it is blank."""
    if session.display_name and session.display_name.strip():
        return session.display_name
    return None


def derive_filename(
    original_token: str,
    session: Optional[SessionRecord],
    now: Optional[datetime] = None,
) -> str:
    """
    Derive the stored filename for ``original_token``.

    Returns ``original_token`` unchanged when ``session`` is None or carries no
    usable name. ``now`` defaults to the local clock.
    """
    if session is None:
        return original_token

    name = usable_name(session)
    if name is None:
        return original_token

    parts = split_token(original_token)
    timestamp = format_timestamp(now or datetime.now())
    assembled = (
        f"{sanitize_user_name(name)} - {sanitize_style(session.style_tag)} - "
        f"{parts.type_descriptor.value} - {timestamp}{parts.extension}"
    )
    return finalize_filename(assembled)
