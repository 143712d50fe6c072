"""Per-user credit ledger.

Balances live in Postgres and are only ever touched through three stored
procedures (see ``infra/migrations``):

- ``consume_credit(p_user_id)`` decrements by one when the balance is at
  least one and returns the new balance, otherwise ``NULL``
- ``refund_credit(p_user_id)`` increments by one
- ``get_credit_balance(p_user_id)`` reads the balance

The store provides the atomicity; this module never reads a balance and
writes it back. ``CreditLedger.reserve`` wraps consume/refund into a
reservation so that a consumed credit is refunded whenever the paid-for
work raises.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, ContextManager, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.exceptions import InsufficientCreditsException, LedgerUnavailableException
from .db import db_session

logger = logging.getLogger(__name__)


class CreditLedger:
    """Interface for the atomic credit operations."""

    async def consume(self, user_id: str) -> int:
        """Take one credit and return the remaining balance.

        Raises:
            InsufficientCreditsException: balance is zero or the ledger
                refused the decrement.
        """
        raise NotImplementedError

    async def refund(self, user_id: str) -> None:
        raise NotImplementedError

    async def get_balance(self, user_id: str) -> int:
        raise NotImplementedError

    def reserve(self, user_id: str) -> "CreditReservation":
        return CreditReservation(self, user_id)


class CreditReservation:
    """One consumed credit that is refunded unless the work completes.

    Usage::

        async with ledger.reserve(user_id) as reservation:
            result = await do_paid_work()
            reservation.commit()

    Leaving the block with an exception before ``commit()`` issues exactly
    one refund, then lets the exception propagate.
    """

    def __init__(self, ledger: CreditLedger, user_id: str):
        self._ledger = ledger
        self.user_id = user_id
        self.remaining: Optional[int] = None
        self.committed = False
        self.refunded = False
        self.refund_error: Optional[str] = None

    async def __aenter__(self) -> "CreditReservation":
        self.remaining = await self._ledger.consume(self.user_id)
        logger.info("Credit reserved", extra={"remaining_credits": self.remaining})
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None and not self.committed:
            await self._refund(exc)
        return False

    def commit(self) -> None:
        self.committed = True

    async def _refund(self, cause: BaseException | None) -> None:
        if self.refunded:
            return
        try:
            await self._ledger.refund(self.user_id)
            self.refunded = True
            logger.info("Credit refunded", extra={"cause": type(cause).__name__ if cause else None})
        except Exception as e:
            # The original failure must still reach the caller; the ledger
            # needs manual reconciliation for this user.
            self.refund_error = str(e)
            logger.error(
                "Credit refund failed",
                extra={"ledger_user_id": self.user_id, "error": str(e)},
                exc_info=True,
            )


class SqlCreditLedger(CreditLedger):
    """Ledger backed by the Postgres stored procedures."""

    def __init__(self, session_factory: Callable[[], ContextManager[Session]] = db_session):
        self._session_factory = session_factory

    def _call(self, procedure: str, user_id: str):
        with self._session_factory() as s:
            return s.execute(
                text(f"SELECT {procedure}(:p_user_id)"),
                {"p_user_id": user_id},
            ).scalar()

    async def consume(self, user_id: str) -> int:
        try:
            remaining = await asyncio.to_thread(self._call, "consume_credit", user_id)
        except SQLAlchemyError as e:
            logger.warning(f"consume_credit failed: {e}")
            raise InsufficientCreditsException(details={"reason": "ledger_unavailable"})
        if remaining is None:
            raise InsufficientCreditsException()
        return int(remaining)

    async def refund(self, user_id: str) -> None:
        await asyncio.to_thread(self._call, "refund_credit", user_id)

    async def get_balance(self, user_id: str) -> int:
        try:
            balance = await asyncio.to_thread(self._call, "get_credit_balance", user_id)
        except SQLAlchemyError as e:
            logger.error(f"get_credit_balance failed: {e}")
            raise LedgerUnavailableException("Credit balance is temporarily unavailable")
        return int(balance or 0)
