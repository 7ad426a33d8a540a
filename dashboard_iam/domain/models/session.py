"""Authentication session. One per successful login."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class Session:
    id: str
    user_id: str
    created_at: datetime
    expires_at: datetime
    last_activity_at: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    is_active: bool = True
    ended_at: Optional[datetime] = None

    def is_live(self, now: datetime) -> bool:
        """Expired sessions read as absent even if never swept."""
        return self.is_active and self.expires_at > now

    def snapshot(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "ip_address": self.ip_address,
            "is_active": self.is_active,
            "expires_at": self.expires_at.isoformat(),
        }
