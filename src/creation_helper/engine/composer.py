"""Compose the text sent to the backend for a user turn."""

from __future__ import annotations

from typing import Sequence

from ..schemas.session import ImageAttachment, Reference

_SECTION_BREAK = "\n\n---\n"


def format_reference(reference: Reference) -> str:
    if reference.type == "character":
        header = f'[Referenced Character: "{reference.name}" (id:{reference.id})]'
        body = reference.description or "No definition available."
    else:
        header = f'[Referenced Persona: "{reference.name}" (id:{reference.id})]'
        body = reference.description or "No description available."
    return f"{header}\n{body}"


def format_attachment(attachment: ImageAttachment) -> str:
    filename = attachment.filename or "image.png"
    return f'[Uploaded Image: "{filename}" (id:{attachment.id})]'


def compose_message(
    text: str,
    attachments: Sequence[ImageAttachment] = (),
    references: Sequence[Reference] = (),
) -> str:
    """Append reference and attachment blocks to the trimmed user text."""

    message = text.strip()
    if not message:
        raise ValueError("Message text must not be empty")

    if references:
        reference_text = "\n\n".join(format_reference(ref) for ref in references)
        message = f"{message}{_SECTION_BREAK}{reference_text}"

    if attachments:
        attachment_text = "\n".join(format_attachment(att) for att in attachments)
        message = f"{message}{_SECTION_BREAK}{attachment_text}"

    return message


__all__ = ["compose_message", "format_attachment", "format_reference"]
