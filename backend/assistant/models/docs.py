"""Document domain models."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, model_validator


class DocumentRef(BaseModel):
    """Group-owned document metadata.

    Inline-content documents carry their text directly and bypass extraction.
    """

    doc_id: UUID
    group_id: UUID
    title: str
    media_type: str | None = None
    storage_locator: str | None = None
    access_url: str | None = None
    size_bytes: int | None = None
    uploaded_at: datetime
    is_inline_content: bool = False
    inline_text: str | None = None


class DocumentCandidate(BaseModel):
    """A resolver match: either a blob locator or inline text."""

    doc_id: UUID
    title: str
    media_type: str | None = None
    storage_locator: str | None = None
    inline_text: str | None = None
    uploaded_at: datetime

    @model_validator(mode="after")
    def validate_source(self) -> "DocumentCandidate":
        """Ensure the candidate can be read from somewhere."""
        if self.inline_text is None and not self.storage_locator:
            raise ValueError("candidate needs storage_locator or inline_text")
        return self

    @property
    def is_inline(self) -> bool:
        return self.inline_text is not None


class DocumentMetadata(BaseModel):
    """Compact metadata entry injected into the model context."""

    title: str
    media_type: str | None = None
    uploaded_at: datetime


class BlobContent(BaseModel):
    """Bytes downloaded from the blob store."""

    data: bytes
    media_type: str | None = None
