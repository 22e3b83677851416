"""
Tests for card-to-card transfers — THE MOST CRITICAL TEST FILE.

These tests verify:
  - A successful transfer debits and credits exactly once, in one commit
  - Each validation rule, checked in order, with nothing written on failure
  - Foreign cards are forbidden (403), missing cards are not found (404)
  - Money is conserved: the sum over both cards never changes
  - Transfers are not idempotent: a resubmission moves the money again
  - Concurrent transfers from one card queue up and never overdraw it
"""

import asyncio
import uuid
from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from bankcards.crypto import card_cipher
from bankcards.database import Base, use_immediate_transactions
from bankcards.exceptions import (
    CardAccessDeniedError,
    CardNotFoundError,
    InsufficientFundsError,
    InvalidArgumentError,
)
from bankcards.models.card import Card, CardStatus
from bankcards.models.user import Role, User
from bankcards.services import transfer_service


def _body(source: Card, dest: Card, amount: str) -> dict:
    return {
        "from_card_id": str(source.id),
        "to_card_id": str(dest.id),
        "amount": amount,
    }


async def _balances(db_session, *cards: Card) -> list[Decimal]:
    for card in cards:
        await db_session.refresh(card)
    return [card.balance for card in cards]


# ---------------------------------------------------------------------------
# Successful Transfers
# ---------------------------------------------------------------------------

class TestTransferSuccess:
    """Tests for POST /cards/transfer when every check passes."""

    async def test_transfer(self, client, db_session, user, make_card, auth_headers):
        """100.00 -> 20.00, move 30.00: balances become 70.00 and 50.00."""
        source = await make_card(user, number="4111111111111111", balance="100.00")
        dest = await make_card(user, number="5500000000000004", balance="20.00")

        response = await client.post(
            "/cards/transfer",
            json=_body(source, dest, "30.00"),
            headers=auth_headers(user),
        )
        assert response.status_code == 200
        data = response.json()
        assert data["from_card_id"] == str(source.id)
        assert data["to_card_id"] == str(dest.id)
        assert Decimal(data["amount"]) == Decimal("30.00")

        assert await _balances(db_session, source, dest) == [
            Decimal("70.00"),
            Decimal("50.00"),
        ]

    async def test_exactly_two_card_writes(self, client, db_engine, user, make_card, auth_headers):
        """The debit and credit are the only card rows written."""
        source = await make_card(user, number="4111111111111111", balance="100.00")
        dest = await make_card(user, number="5500000000000004", balance="20.00")

        updated_rows = []

        def count_card_updates(conn, cursor, statement, parameters, context, executemany):
            if statement.lstrip().upper().startswith("UPDATE CARDS"):
                updated_rows.append(len(parameters) if executemany else 1)

        event.listen(db_engine.sync_engine, "before_cursor_execute", count_card_updates)
        try:
            response = await client.post(
                "/cards/transfer",
                json=_body(source, dest, "30.00"),
                headers=auth_headers(user),
            )
        finally:
            event.remove(db_engine.sync_engine, "before_cursor_execute", count_card_updates)

        assert response.status_code == 200
        assert sum(updated_rows) == 2

    async def test_drain_to_zero(self, client, db_session, user, make_card, auth_headers):
        source = await make_card(user, number="4111111111111111", balance="30.00")
        dest = await make_card(user, number="5500000000000004")

        response = await client.post(
            "/cards/transfer",
            json=_body(source, dest, "30.00"),
            headers=auth_headers(user),
        )
        assert response.status_code == 200
        assert await _balances(db_session, source, dest) == [
            Decimal("0.00"),
            Decimal("30.00"),
        ]

    async def test_cents_are_exact(self, client, db_session, user, make_card, auth_headers):
        source = await make_card(user, number="4111111111111111", balance="10.30")
        dest = await make_card(user, number="5500000000000004", balance="0.20")

        await client.post(
            "/cards/transfer",
            json=_body(source, dest, "1.10"),
            headers=auth_headers(user),
        )
        assert await _balances(db_session, source, dest) == [
            Decimal("9.20"),
            Decimal("1.30"),
        ]

    async def test_not_idempotent(self, client, db_session, user, make_card, auth_headers):
        """Submitting the same transfer twice moves the money twice."""
        source = await make_card(user, number="4111111111111111", balance="100.00")
        dest = await make_card(user, number="5500000000000004")

        for _ in range(2):
            response = await client.post(
                "/cards/transfer",
                json=_body(source, dest, "25.00"),
                headers=auth_headers(user),
            )
            assert response.status_code == 200

        assert await _balances(db_session, source, dest) == [
            Decimal("50.00"),
            Decimal("50.00"),
        ]

    async def test_back_and_forth_conserves_total(self, client, db_session, user, make_card, auth_headers):
        a = await make_card(user, number="4111111111111111", balance="100.00")
        b = await make_card(user, number="5500000000000004", balance="50.00")

        for source, dest, amount in [(a, b, "10.00"), (b, a, "35.50"), (a, b, "1.01")]:
            response = await client.post(
                "/cards/transfer",
                json=_body(source, dest, amount),
                headers=auth_headers(user),
            )
            assert response.status_code == 200

        balances = await _balances(db_session, a, b)
        assert sum(balances) == Decimal("150.00")
        assert balances == [Decimal("124.49"), Decimal("25.51")]


# ---------------------------------------------------------------------------
# Validation (HTTP)
# ---------------------------------------------------------------------------

class TestTransferValidation:
    """Every rejected transfer leaves both balances untouched."""

    async def test_same_card(self, client, db_session, user, make_card, auth_headers):
        card = await make_card(user, balance="100.00")
        response = await client.post(
            "/cards/transfer",
            json=_body(card, card, "10.00"),
            headers=auth_headers(user),
        )
        assert response.status_code == 400
        assert response.json()["error_type"] == "invalid_argument"
        assert await _balances(db_session, card) == [Decimal("100.00")]

    @pytest.mark.parametrize("amount", ["0", "-5.00", "0.99", "1.001"])
    async def test_bad_amount_rejected_by_schema(self, client, user, make_card, auth_headers, amount):
        source = await make_card(user, number="4111111111111111", balance="100.00")
        dest = await make_card(user, number="5500000000000004")
        response = await client.post(
            "/cards/transfer",
            json=_body(source, dest, amount),
            headers=auth_headers(user),
        )
        assert response.status_code == 400
        assert response.json()["error_type"] == "invalid_argument"

    async def test_bad_amount_body_names_the_field(self, client, user, make_card, auth_headers):
        source = await make_card(user, number="4111111111111111", balance="100.00")
        dest = await make_card(user, number="5500000000000004")
        response = await client.post(
            "/cards/transfer",
            json=_body(source, dest, "0"),
            headers=auth_headers(user),
        )
        body = response.json()
        assert response.status_code == 400
        assert set(body) == {"detail", "error_type"}
        assert isinstance(body["detail"], str)
        assert body["detail"].startswith("amount: ")

    async def test_foreign_source_card(self, client, db_session, user, other_user, make_card, auth_headers):
        theirs = await make_card(other_user, number="4111111111111111", balance="100.00")
        mine = await make_card(user, number="5500000000000004")

        response = await client.post(
            "/cards/transfer",
            json=_body(theirs, mine, "10.00"),
            headers=auth_headers(user),
        )
        assert response.status_code == 403
        assert response.json()["error_type"] == "permission_denied"
        assert await _balances(db_session, theirs, mine) == [
            Decimal("100.00"),
            Decimal("0.00"),
        ]

    async def test_foreign_destination_card(self, client, db_session, user, other_user, make_card, auth_headers):
        mine = await make_card(user, number="4111111111111111", balance="100.00")
        theirs = await make_card(other_user, number="5500000000000004")

        response = await client.post(
            "/cards/transfer",
            json=_body(mine, theirs, "10.00"),
            headers=auth_headers(user),
        )
        assert response.status_code == 403
        assert await _balances(db_session, mine, theirs) == [
            Decimal("100.00"),
            Decimal("0.00"),
        ]

    async def test_missing_card(self, client, user, make_card, auth_headers):
        mine = await make_card(user, balance="100.00")
        response = await client.post(
            "/cards/transfer",
            json={
                "from_card_id": str(mine.id),
                "to_card_id": str(uuid.uuid4()),
                "amount": "10.00",
            },
            headers=auth_headers(user),
        )
        assert response.status_code == 404

    @pytest.mark.parametrize(
        "source_status, dest_status",
        [
            (CardStatus.BLOCKED, CardStatus.ACTIVE),
            (CardStatus.ACTIVE, CardStatus.BLOCKED),
            (CardStatus.EXPIRED, CardStatus.ACTIVE),
        ],
    )
    async def test_inactive_card(
        self, client, db_session, user, make_card, auth_headers, source_status, dest_status
    ):
        source = await make_card(
            user, number="4111111111111111", balance="100.00", status=source_status
        )
        dest = await make_card(user, number="5500000000000004", status=dest_status)

        response = await client.post(
            "/cards/transfer",
            json=_body(source, dest, "10.00"),
            headers=auth_headers(user),
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Both cards must be ACTIVE"
        assert await _balances(db_session, source, dest) == [
            Decimal("100.00"),
            Decimal("0.00"),
        ]

    async def test_insufficient_funds(self, client, db_session, user, make_card, auth_headers):
        source = await make_card(user, number="4111111111111111", balance="10.00")
        dest = await make_card(user, number="5500000000000004", balance="5.00")

        response = await client.post(
            "/cards/transfer",
            json=_body(source, dest, "10.01"),
            headers=auth_headers(user),
        )
        assert response.status_code == 400
        data = response.json()
        assert data["error_type"] == "insufficient_funds"
        assert Decimal(data["requested"]) == Decimal("10.01")
        assert Decimal(data["available"]) == Decimal("10.00")
        assert await _balances(db_session, source, dest) == [
            Decimal("10.00"),
            Decimal("5.00"),
        ]

    async def test_requires_authentication(self, client, user, make_card):
        source = await make_card(user, number="4111111111111111", balance="10.00")
        dest = await make_card(user, number="5500000000000004")
        response = await client.post("/cards/transfer", json=_body(source, dest, "1.00"))
        assert response.status_code == 401


# ---------------------------------------------------------------------------
# Validation order (service level)
# ---------------------------------------------------------------------------

class TestValidationOrder:
    """The first failing check wins, in the documented order."""

    async def test_same_card_before_amount(self, db_session, user):
        card_id = uuid.uuid4()
        with pytest.raises(InvalidArgumentError, match="must differ"):
            await transfer_service.transfer(
                db_session, user, card_id, card_id, Decimal("-1")
            )

    @pytest.mark.parametrize("amount", ["0", "-0.01"])
    async def test_amount_before_lookup(self, db_session, user, amount):
        """Non-positive amounts fail before the cards are even looked up."""
        with pytest.raises(InvalidArgumentError, match="positive"):
            await transfer_service.transfer(
                db_session, user, uuid.uuid4(), uuid.uuid4(), Decimal(amount)
            )

    async def test_missing_before_status(self, db_session, user, make_card):
        blocked = await make_card(user, status=CardStatus.BLOCKED)
        with pytest.raises(CardNotFoundError):
            await transfer_service.transfer(
                db_session, user, blocked.id, uuid.uuid4(), Decimal("1")
            )

    async def test_source_ownership_checked_first(self, db_session, user, other_user, make_card):
        theirs = await make_card(other_user, number="4111111111111111")
        with pytest.raises(CardAccessDeniedError) as exc_info:
            await transfer_service.transfer(
                db_session, user, theirs.id, uuid.uuid4(), Decimal("1")
            )
        assert exc_info.value.card_id == theirs.id

    async def test_ownership_before_status(self, db_session, user, other_user, make_card):
        mine = await make_card(user, number="4111111111111111", status=CardStatus.BLOCKED)
        theirs = await make_card(other_user, number="5500000000000004")
        with pytest.raises(CardAccessDeniedError):
            await transfer_service.transfer(
                db_session, user, mine.id, theirs.id, Decimal("1")
            )

    async def test_status_before_funds(self, db_session, user, make_card):
        source = await make_card(user, number="4111111111111111", balance="0.00")
        dest = await make_card(user, number="5500000000000004", status=CardStatus.BLOCKED)
        with pytest.raises(InvalidArgumentError, match="ACTIVE"):
            await transfer_service.transfer(
                db_session, user, source.id, dest.id, Decimal("1000")
            )


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def file_engine(tmp_path):
    """
    A file-backed SQLite engine with one connection per session.

    Unlike the shared in-memory connection, separate connections let
    transfers really run side by side, with the same BEGIN IMMEDIATE
    setup the application engine uses.
    """
    engine = use_immediate_transactions(
        create_async_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'race.db'}",
            poolclass=NullPool,
        )
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


async def _seed(sessions, source_balance: str):
    """Create one owner with an ACTIVE source and an empty ACTIVE destination."""
    async with sessions() as setup:
        owner = User(username="racer", hashed_password="x", role=Role.USER)
        setup.add(owner)
        await setup.flush()
        source = Card(
            encrypted_number=card_cipher.encrypt("4111111111111111"),
            owner_id=owner.id,
            expiration_date=date(2030, 12, 31),
            status=CardStatus.ACTIVE,
            balance=Decimal(source_balance),
        )
        dest = Card(
            encrypted_number=card_cipher.encrypt("5500000000000004"),
            owner_id=owner.id,
            expiration_date=date(2030, 12, 31),
            status=CardStatus.ACTIVE,
            balance=Decimal("0.00"),
        )
        setup.add_all([source, dest])
        await setup.commit()
    return owner, source, dest


async def _race(sessions, owner, source, dest, amount: Decimal, attempts: int) -> list:
    """Run `attempts` identical transfers at once, each in its own session."""

    async def attempt():
        async with sessions() as session:
            try:
                await transfer_service.transfer(session, owner, source.id, dest.id, amount)
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return await asyncio.gather(
        *(attempt() for _ in range(attempts)), return_exceptions=True
    )


async def _final_balances(sessions, source, dest) -> tuple[Decimal, Decimal]:
    async with sessions() as check:
        final_source = await check.get(Card, source.id)
        final_dest = await check.get(Card, dest.id)
    return final_source.balance, final_dest.balance


class TestConcurrentTransfers:
    """Racing transfers on one card queue up; none is lost, none overdraws."""

    async def test_two_parallel_transfers_both_apply(self, file_engine):
        sessions = async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)
        owner, source, dest = await _seed(sessions, "100.00")

        results = await _race(sessions, owner, source, dest, Decimal("10.00"), attempts=2)

        assert results == [None, None]
        assert await _final_balances(sessions, source, dest) == (
            Decimal("80.00"),
            Decimal("20.00"),
        )

    async def test_parallel_transfers_stop_at_zero(self, file_engine):
        """100.00 covers three of five 30.00 transfers; the other two are refused."""
        sessions = async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)
        owner, source, dest = await _seed(sessions, "100.00")

        results = await _race(sessions, owner, source, dest, Decimal("30.00"), attempts=5)

        failures = [result for result in results if result is not None]
        assert results.count(None) == 3
        assert len(failures) == 2
        assert all(isinstance(failure, InsufficientFundsError) for failure in failures)
        assert await _final_balances(sessions, source, dest) == (
            Decimal("10.00"),
            Decimal("90.00"),
        )
