"""Attachment validation and text extraction for priming context."""

import base64
from dataclasses import dataclass
from pathlib import Path
import mimetypes
from typing import Callable, Dict, Optional, Union
import structlog

from ..errors import ValidationError


logger = structlog.get_logger()


MAX_FILE_SIZE_MB = 10

IMAGE_TYPES = {"image/jpeg", "image/png", "image/webp", "image/heic", "image/heif"}
PLAIN_TEXT_TYPES = {"text/plain"}
PDF_TYPE = "application/pdf"
DOCX_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
LEGACY_DOC_TYPE = "application/msword"

TEXT_TYPES = PLAIN_TEXT_TYPES | {PDF_TYPE, DOCX_TYPE}

# Extractors turn raw bytes of a document type into plain text.
TextExtractor = Callable[[bytes], str]

_extractors: Dict[str, TextExtractor] = {}


def register_extractor(mime_type: str, extractor: TextExtractor) -> None:
    """Register a text extractor for a binary document type."""
    _extractors[mime_type] = extractor
    logger.info("Registered text extractor", mime_type=mime_type)


def unregister_extractor(mime_type: str) -> None:
    _extractors.pop(mime_type, None)


@dataclass(frozen=True)
class Attachment:
    """
    An attachment ready for priming.

    ``data`` holds extracted text for text documents and base64 for images.
    """

    name: str
    mime_type: str
    size: int
    data: str

    @property
    def is_text(self) -> bool:
        return self.mime_type in TEXT_TYPES

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")


def load_attachment(
    name: str,
    data: bytes,
    mime_type: Optional[str] = None,
    max_size_mb: float = MAX_FILE_SIZE_MB,
) -> Attachment:
    """Validate a file and convert it into an Attachment."""
    size = len(data)
    if size > max_size_mb * 1024 * 1024:
        raise ValidationError(f"File {name} is too large (max {max_size_mb:g}MB).")

    mime_type = mime_type or mimetypes.guess_type(name)[0] or ""
    logger.info("Processing file", name=name, mime_type=mime_type, size=size)

    if mime_type in IMAGE_TYPES:
        encoded = base64.b64encode(data).decode("ascii")
        return Attachment(name, mime_type, size, encoded)

    if mime_type in PLAIN_TEXT_TYPES:
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ValidationError(f"Could not read text file: {name}") from e
        return Attachment(name, mime_type, size, text)

    if mime_type in (PDF_TYPE, DOCX_TYPE):
        extractor = _extractors.get(mime_type)
        if extractor is None:
            raise ValidationError(
                f"No text extractor is available for '{name}' ({mime_type})."
            )
        try:
            text = extractor(data)
        except Exception as e:
            logger.error("Failed to extract document text", name=name, error=str(e))
            raise ValidationError(f"Could not read document: {name}") from e
        logger.info("Extracted document text", name=name, characters=len(text))
        return Attachment(name, mime_type, size, text.strip())

    if mime_type == LEGACY_DOC_TYPE or name.lower().endswith(".doc"):
        raise ValidationError(
            f"Legacy .doc files are not supported. Please save '{name}' as .docx or .pdf."
        )

    raise ValidationError(
        f"File type \"{mime_type or 'unknown'}\" for '{name}' is not supported."
    )


def load_attachment_file(
    path: Union[str, Path], max_size_mb: float = MAX_FILE_SIZE_MB
) -> Attachment:
    """Read a file from disk and load it as an attachment."""
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as e:
        raise ValidationError(f"Could not read file: {path.name}") from e
    return load_attachment(path.name, data, max_size_mb=max_size_mb)
