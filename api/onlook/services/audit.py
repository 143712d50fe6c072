from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, ContextManager, Dict, List

from sqlalchemy import text
from sqlalchemy.orm import Session

from ..models.records import GenerationRecord, GenerationStatus
from .db import db_session

logger = logging.getLogger(__name__)


class SqlAuditStore:
    """``generations`` table access. Insert-only apart from reads."""

    def __init__(self, session_factory: Callable[[], ContextManager[Session]] = db_session):
        self._session_factory = session_factory

    def insert(self, record: GenerationRecord) -> None:
        with self._session_factory() as s:
            s.execute(
                text(
                    """
                    INSERT INTO generations
                        (user_email, status, cost_in_credits, provider, model,
                         duration_ms, image_url, error_message, created_at)
                    VALUES
                        (:user_email, :status, :cost_in_credits, :provider, :model,
                         :duration_ms, :image_url, :error_message, :created_at)
                    """
                ),
                record.to_row(),
            )

    def list_for_user(self, user_email: str, status: GenerationStatus = GenerationStatus.SUCCESS,
                      limit: int = 50) -> List[Dict[str, Any]]:
        with self._session_factory() as s:
            rows = s.execute(
                text(
                    """
                    SELECT id, created_at, image_url, model, status
                    FROM generations
                    WHERE user_email = :email AND status = :status
                    ORDER BY created_at DESC
                    LIMIT :limit
                    """
                ),
                {"email": user_email, "status": status.value, "limit": limit},
            ).mappings().all()
            return [dict(r) for r in rows]


class GenerationAuditLog:
    """Records generation attempts without ever failing the request."""

    def __init__(self, store: Any = None):
        self._store = store or SqlAuditStore()

    async def record(self, record: GenerationRecord) -> None:
        try:
            await asyncio.to_thread(self._store.insert, record)
        except Exception as e:
            logger.error(
                "Failed to write generation record",
                extra={"status": record.status.value, "error": str(e)},
                exc_info=True,
            )

    async def history(self, user_email: str, limit: int = 50) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._store.list_for_user, user_email, GenerationStatus.SUCCESS, limit)
