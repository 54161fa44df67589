"""Session schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel


class SessionRead(BaseModel):
    """A device session as shown to its owner. Never includes the token."""
    id: UUID
    device_info: dict[str, Any]
    ip_address: str | None
    created_at: datetime
    last_activity_at: datetime
    expires_at: datetime
    is_current: bool = False

    model_config = {"from_attributes": True}
