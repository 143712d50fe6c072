"""Unit tests for the credit ledger and credit reservations."""

import asyncio
from contextlib import contextmanager
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from onlook.models.exceptions import (
    GenerationFailedException,
    InsufficientCreditsException,
    LedgerUnavailableException,
)
from onlook.services.credit_ledger import SqlCreditLedger
from onlook.tests.mocks.fakes import InMemoryCreditLedger


def session_factory_returning(value=None, error=None):
    """Session factory whose ``execute().scalar()`` yields ``value``."""
    session = MagicMock()
    if error is not None:
        session.execute.side_effect = error
    else:
        session.execute.return_value.scalar.return_value = value

    @contextmanager
    def factory():
        yield session

    return factory, session


class TestCreditReservation:
    """Test cases for consume/refund pairing."""

    async def test_commit_keeps_credit(self):
        ledger = InMemoryCreditLedger({"u1": 3})

        async with ledger.reserve("u1") as reservation:
            reservation.commit()

        assert reservation.remaining == 2
        assert ledger.balances["u1"] == 2
        assert ledger.refund_calls == 0
        assert not reservation.refunded

    async def test_exception_refunds_once(self):
        ledger = InMemoryCreditLedger({"u1": 1})

        with pytest.raises(GenerationFailedException):
            async with ledger.reserve("u1") as reservation:
                raise GenerationFailedException("provider down")

        assert reservation.refunded
        assert ledger.refund_calls == 1
        assert ledger.balances["u1"] == 1

    async def test_exception_after_commit_does_not_refund(self):
        ledger = InMemoryCreditLedger({"u1": 1})

        with pytest.raises(RuntimeError):
            async with ledger.reserve("u1") as reservation:
                reservation.commit()
                raise RuntimeError("late failure")

        assert ledger.refund_calls == 0
        assert ledger.balances["u1"] == 0

    async def test_refused_consume_never_refunds(self):
        ledger = InMemoryCreditLedger({"u1": 0})

        with pytest.raises(InsufficientCreditsException):
            async with ledger.reserve("u1"):
                pytest.fail("body must not run without a credit")

        assert ledger.refund_calls == 0
        assert ledger.balances["u1"] == 0

    async def test_failed_refund_keeps_original_error(self):
        ledger = InMemoryCreditLedger({"u1": 1})
        ledger.fail_refund = True

        with pytest.raises(GenerationFailedException, match="provider down"):
            async with ledger.reserve("u1") as reservation:
                raise GenerationFailedException("provider down")

        assert not reservation.refunded
        assert reservation.refund_error == "ledger connection lost"
        assert ledger.refund_calls == 1

    async def test_parallel_consumes_never_overdraw(self):
        ledger = InMemoryCreditLedger({"u1": 3})

        results = await asyncio.gather(
            *(ledger.consume("u1") for _ in range(10)),
            return_exceptions=True,
        )

        succeeded = [r for r in results if isinstance(r, int)]
        refused = [r for r in results if isinstance(r, InsufficientCreditsException)]
        assert len(succeeded) == 3
        assert len(refused) == 7
        assert sorted(succeeded) == [0, 1, 2]
        assert ledger.balances["u1"] == 0

    async def test_unknown_user_has_zero_balance(self):
        ledger = InMemoryCreditLedger()

        assert await ledger.get_balance("nobody") == 0
        with pytest.raises(InsufficientCreditsException):
            await ledger.consume("nobody")


class TestSqlCreditLedger:
    """Test cases for the stored procedure calls."""

    async def test_consume_returns_remaining(self):
        factory, session = session_factory_returning(4)

        remaining = await SqlCreditLedger(factory).consume("u1")

        assert remaining == 4
        statement, params = session.execute.call_args.args
        assert str(statement) == "SELECT consume_credit(:p_user_id)"
        assert params == {"p_user_id": "u1"}

    async def test_consume_null_is_insufficient(self):
        factory, _ = session_factory_returning(None)

        with pytest.raises(InsufficientCreditsException):
            await SqlCreditLedger(factory).consume("u1")

    async def test_consume_store_error_is_insufficient(self):
        factory, _ = session_factory_returning(error=OperationalError("SELECT", {}, Exception("down")))

        with pytest.raises(InsufficientCreditsException) as exc_info:
            await SqlCreditLedger(factory).consume("u1")

        assert exc_info.value.details == {"reason": "ledger_unavailable"}

    async def test_refund_calls_procedure(self):
        factory, session = session_factory_returning(None)

        await SqlCreditLedger(factory).refund("u1")

        statement, params = session.execute.call_args.args
        assert str(statement) == "SELECT refund_credit(:p_user_id)"
        assert params == {"p_user_id": "u1"}

    async def test_get_balance(self):
        factory, session = session_factory_returning(7)

        assert await SqlCreditLedger(factory).get_balance("u1") == 7
        statement, _ = session.execute.call_args.args
        assert str(statement) == "SELECT get_credit_balance(:p_user_id)"

    async def test_get_balance_missing_row_is_zero(self):
        factory, _ = session_factory_returning(None)

        assert await SqlCreditLedger(factory).get_balance("u1") == 0

    async def test_get_balance_store_error_is_unavailable(self):
        factory, _ = session_factory_returning(error=OperationalError("SELECT", {}, Exception("down")))

        with pytest.raises(LedgerUnavailableException):
            await SqlCreditLedger(factory).get_balance("u1")
