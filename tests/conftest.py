"""
Shared fixtures: a file-backed SQLite database per test built from the ORM
metadata, helpers that seed organizations and classes, and fake gateways
that record what the services asked them to do.
"""
import os

# Settings are read once per process; SQLite has no schemas.
os.environ["DB_SCHEMA"] = ""
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from classbook.crud.bookingsCrud import Attendee
from classbook.crud.organizationCrud import create_organization
from classbook.db.postgresql import Base
from classbook.models import ClassSession, MemberPass
from classbook.services.gateways import PaymentResult
from classbook.services.session_locks import SessionLocks


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'classbook.db'}")

    # pysqlite issues its own BEGIN; let SQLAlchemy do it so SAVEPOINT works
    @event.listens_for(engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def locks():
    return SessionLocks()


@pytest.fixture
def now():
    return datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def org(db):
    return await create_organization(db, "Downtown Yoga")


@pytest.fixture
def make_session(db):
    async def _make(
        organization_id: int,
        capacity: int = 10,
        start_at: Optional[datetime] = None,
        duration_minutes: int = 60,
        name: str = "Vinyasa Flow",
        price: Decimal = Decimal("20.00")
    ) -> ClassSession:
        start_at = start_at or datetime.now(timezone.utc) + timedelta(days=2)
        session = ClassSession(
            organization_id=organization_id,
            name=name,
            start_at=start_at,
            end_at=start_at + timedelta(minutes=duration_minutes),
            capacity=capacity,
            confirmed_count=0,
            price=price,
        )
        db.add(session)
        await db.commit()
        await db.refresh(session)
        return session

    return _make


@pytest.fixture
def make_pass(db):
    async def _make(organization_id: int, email: str, credits: int = 5, status: str = "active") -> MemberPass:
        member_pass = MemberPass(
            organization_id=organization_id,
            attendee_email=email,
            remaining_credits=credits,
            status=status,
        )
        db.add(member_pass)
        await db.commit()
        await db.refresh(member_pass)
        return member_pass

    return _make


def attendee(name: str = "Ana Lopez", email: str = "ana@example.com", phone: Optional[str] = None) -> Attendee:
    return Attendee(name=name, email=email, phone=phone)


class FakeNotificationGateway:
    def __init__(self, fail_for: Optional[List[str]] = None):
        self.sent: List[Dict[str, Any]] = []
        self.fail_for = set(fail_for or [])

    async def notify(self, recipient: str, template_kind: str, payload: Dict[str, Any]) -> None:
        if recipient in self.fail_for:
            raise ConnectionError(f"mail provider rejected {recipient}")
        self.sent.append({"recipient": recipient, "template_kind": template_kind, "payload": payload})


class FakePaymentGateway:
    def __init__(self, decline_for: Optional[List[str]] = None):
        self.charges: List[Dict[str, Any]] = []
        self.decline_for = set(decline_for or [])

    async def charge(
        self,
        attendee: Attendee,
        amount: Decimal,
        currency: str,
        idempotency_key: Optional[str] = None
    ) -> PaymentResult:
        if attendee.email in self.decline_for:
            return PaymentResult(success=False, error="card declined")
        self.charges.append({
            "email": attendee.email, "amount": amount, "currency": currency, "key": idempotency_key
        })
        return PaymentResult(success=True, reference=f"ch_{len(self.charges)}")


@pytest.fixture
def notification_gateway():
    return FakeNotificationGateway()


@pytest.fixture
def payment_gateway():
    return FakePaymentGateway()
