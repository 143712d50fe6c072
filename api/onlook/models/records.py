"""Persistent records owned by the service."""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class GenerationStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class GenerationRecord:
    """Append-only audit entry, one per generation attempt.

    Rows are inserted once and never updated or deleted.
    """
    user_email: str
    status: GenerationStatus
    cost_in_credits: int
    provider: str
    model: str
    duration_ms: int
    image_url: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)

    def to_row(self) -> Dict[str, Any]:
        row = asdict(self)
        row["status"] = self.status.value
        return row
