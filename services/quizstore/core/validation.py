"""
Validation utilities for quiz media.
Ensures attachments respect their per-type ceilings before anything is written.
"""
from typing import Iterable, List, Mapping

from ..models import Attachment
from .errors import AttachmentTooLarge


def validate_attachment_size(attachment: Attachment, limits: Mapping[str, int]) -> None:
    """
    Check one attachment against the ceiling for its mime class.

    Rules:
    - byte_size must not exceed limits[mime_class]
    - when the payload is present, its real length is what counts

    Raises:
        AttachmentTooLarge
    """
    size = len(attachment.payload) if attachment.payload is not None else attachment.byte_size
    ceiling = limits.get(attachment.mime_class)
    if ceiling is None:
        return
    if size > ceiling:
        raise AttachmentTooLarge(
            f"{attachment.mime_class} '{attachment.filename or attachment.id}' is "
            f"{size} bytes; the limit for {attachment.size_class} media is {ceiling} bytes",
            required=size,
            available=ceiling,
        )


def validate_attachments(attachments: Iterable[Attachment], limits: Mapping[str, int]) -> None:
    for a in attachments:
        validate_attachment_size(a, limits)


def ensure_unique_attachment_ids(attachments: List[Attachment]) -> None:
    """
    Two questions may not claim the same attachment id with different owners:
    deleting one would reclaim the other's media.
    """
    owners = {}
    for a in attachments:
        prev = owners.setdefault(a.id, a.owner_question_id)
        if prev != a.owner_question_id:
            raise ValueError(f"Duplicate attachment id {a.id} (questions {prev} and {a.owner_question_id})")
