# services/quizstore/models/attachment.py
from __future__ import annotations

import base64
import binascii
from typing import Any, Dict, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_serializer, field_validator, model_validator

MimeClass = Literal["image", "audio", "video"]

# Declared size class per media type; ceilings are configured per type.
SIZE_CLASSES: Dict[str, str] = {
    "image": "small",
    "audio": "medium",
    "video": "large",
}


def new_attachment_id() -> str:
    return f"a-{uuid4().hex[:12]}"


class Attachment(BaseModel):
    """
    Embedded media blob referenced by a question.

    `payload` is raw bytes in Python and base64 text in stored records.
    Finished quizzes keep only a reference (payload=None) inside the
    question; the bytes live in the `attachments` collection.
    """

    id: str = Field(default_factory=new_attachment_id)
    owner_question_id: str
    filename: str = ""
    mime_class: MimeClass = "image"
    mime_type: str = "application/octet-stream"
    byte_size: int = Field(default=0, ge=0)
    payload: Optional[bytes] = None

    @field_validator("payload", mode="before")
    @classmethod
    def _decode_payload(cls, v: Any) -> Any:
        if isinstance(v, str):
            try:
                return base64.b64decode(v.encode("ascii"), validate=True)
            except (binascii.Error, ValueError) as e:
                raise ValueError(f"payload is not valid base64: {e}") from e
        return v

    @field_serializer("payload", when_used="json")
    def _encode_payload(self, v: Optional[bytes]) -> Optional[str]:
        if v is None:
            return None
        return base64.b64encode(v).decode("ascii")

    @model_validator(mode="after")
    def _fill_byte_size(self) -> "Attachment":
        if self.payload is not None and self.byte_size == 0:
            self.byte_size = len(self.payload)
        return self

    @property
    def size_class(self) -> str:
        return SIZE_CLASSES[self.mime_class]

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
