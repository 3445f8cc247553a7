"""
Best-effort audit trail of orchestration attempts.
"""

import logging
from typing import Any, Dict, List, Optional

from .data.base import ActionLogRepository
from .models.action_log import ActionLogEntry

logger = logging.getLogger(__name__)


class ActionLog:
    """Appends entries to the action log without ever failing the caller.

    A sync or publish that already happened must not be reported as failed
    because its audit record could not be written, so repository errors
    are logged and dropped here.
    """

    def __init__(self, repository: ActionLogRepository):
        self.repository = repository

    async def record(self,
                     action: str,
                     status: str,
                     details: Optional[Dict[str, Any]] = None,
                     user_id: Optional[str] = None,
                     account_id: Optional[str] = None) -> Optional[ActionLogEntry]:
        """
        Append one entry.

        Returns:
            The entry written, or None if the write failed
        """
        entry = ActionLogEntry(
            action=action,
            status=status,
            details=details or {},
            user_id=user_id,
            account_id=account_id,
        )
        try:
            await self.repository.append(entry)
        except Exception as e:
            logger.error(f"Failed to write action log entry {action}/{status}: {e}")
            return None
        return entry

    async def recent(self,
                     limit: int = 100,
                     action: Optional[str] = None,
                     account_id: Optional[str] = None) -> List[ActionLogEntry]:
        return await self.repository.list_entries(limit=limit, action=action, account_id=account_id)
