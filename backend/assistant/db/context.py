"""Request context for caller identity."""

import uuid
from dataclasses import dataclass, field
from uuid import UUID


@dataclass(frozen=True)
class RequestContext:
    """Request context containing the caller's identity.

    Group scope is supplied per message; every store call that touches group
    data is checked against the caller's membership by the pipeline.
    """

    user_id: UUID
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
