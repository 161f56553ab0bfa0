from typing import Dict, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class CurrentUser(BaseModel):
    """Authenticated caller resolved from the bearer token. tenant_id is the caller's school."""

    id: UUID
    tenant_id: UUID
    role: str
    permissions: Dict[str, Dict[str, bool]] = Field(default_factory=dict)
    name: Optional[str] = None
