"""
Action log entry model.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from .base import BaseModel, generate_id, utcnow


@dataclass(frozen=True)
class ActionLogEntry(BaseModel):
    """Immutable audit record of one orchestration attempt."""
    action: str
    status: str
    details: Dict[str, Any] = field(default_factory=dict)
    user_id: Optional[str] = None
    account_id: Optional[str] = None
    id: str = field(default_factory=generate_id)
    created_at: datetime = field(default_factory=utcnow)
