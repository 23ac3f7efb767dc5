"""
Image Relay - Pipeline Data Model

Immutable value objects passed between the stages of one notification run.
Nothing here is persisted or shared between runs.
"""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

DEFAULT_EXTENSION = ".png"
DEFAULT_CONTENT_TYPE = "image/png"


class TypeDescriptor(str, Enum):
    """Coarse purpose of an image, inferred from its original file token."""

    FINAL_OUTPUT = "Final Output"
    QR_CODE = "QR Code"
    GENERIC = "Generic"


@dataclass(frozen=True)
class ChangeEvent:
    """One Postgres notification announcing a new image path."""

    channel: str
    payload: str


@dataclass(frozen=True)
class SessionRecord:
    """Session metadata used to build a human-readable filename."""

    session_id: Any
    display_name: Optional[str] = None
    style_tag: Optional[str] = None
    email: Optional[str] = None


@dataclass(frozen=True)
class DerivedFilename:
    """Parsed pieces of an original file token."""

    base_name: str
    extension: str
    type_descriptor: TypeDescriptor

    def __post_init__(self) -> None:
        if not self.extension:
            raise ValueError("DerivedFilename.extension must not be empty")


@dataclass(frozen=True)
class UploadRequest:
    """Bytes plus the name and folder they should be stored under."""

    content: bytes
    filename: str
    destination_folder: str

    @property
    def content_type(self) -> str:
        guessed, _ = mimetypes.guess_type(self.filename)
        return guessed or DEFAULT_CONTENT_TYPE

    @property
    def size(self) -> int:
        return len(self.content)
