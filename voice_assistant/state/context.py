"""Session context: system instruction plus the priming content."""

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple, Union
import structlog

from ..metrics.recorder import estimate_tokens
from .attachments import Attachment


logger = structlog.get_logger()


CONTEXT_INTRO = (
    "Please use the following information and documents as context for "
    "our conversation:\n\n"
)
PRIMING_ACKNOWLEDGEMENT = (
    "Understood. I have received the information and will use it as context."
)


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class InlineDataPart:
    """Binary content, base64 encoded."""
    mime_type: str
    data: str


PrimingPart = Union[TextPart, InlineDataPart]


@dataclass(frozen=True)
class SessionContext:
    """Immutable context a chat session is opened with."""

    system_instruction: str
    priming_parts: Tuple[PrimingPart, ...] = ()

    @property
    def has_priming(self) -> bool:
        return len(self.priming_parts) > 0

    def estimate_tokens(self) -> int:
        """
        Rough token estimate for everything sent ahead of the first turn.

        Priming is replayed as a user/model exchange, so the model's
        acknowledgement counts too.
        """
        total = estimate_tokens(self.system_instruction)
        for part in self.priming_parts:
            if isinstance(part, TextPart):
                total += estimate_tokens(part.text)
            else:
                total += estimate_tokens(part.data)
        if self.priming_parts:
            total += estimate_tokens(PRIMING_ACKNOWLEDGEMENT)
        return total


def build_session_context(
    system_instruction: str,
    personalization: str = "",
    attachments: Optional[Iterable[Attachment]] = None,
) -> SessionContext:
    """
    Compile personalization text and attachments into a session context.

    All text content is merged into a single leading text part; each image
    attachment becomes its own inline part after it. Nothing is primed when
    there is neither personalization text nor any attachment.
    """
    attachments = list(attachments or [])
    if not personalization.strip() and not attachments:
        return SessionContext(system_instruction=system_instruction)

    combined = CONTEXT_INTRO
    if personalization.strip():
        combined += personalization

    text_names = []
    for attachment in attachments:
        if attachment.is_text:
            combined += (
                f"\n\n--- Start of attached file: {attachment.name} ---\n"
                f"{attachment.data}\n"
                f"--- End of attached file: {attachment.name} ---"
            )
            text_names.append(attachment.name)

    parts = [TextPart(combined)]

    image_names = []
    for attachment in attachments:
        if attachment.is_image:
            parts.append(InlineDataPart(attachment.mime_type, attachment.data))
            image_names.append(attachment.name)

    logger.info(
        "Session context constructed",
        text_files=text_names,
        image_files=image_names,
        parts=len(parts),
    )
    return SessionContext(system_instruction, tuple(parts))


def coerce_parts(parts: Optional[Sequence[PrimingPart]]) -> Tuple[PrimingPart, ...]:
    return tuple(parts or ())
