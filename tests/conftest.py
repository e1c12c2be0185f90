"""Test configuration and fixtures.

Each test gets a fresh in-memory SQLite database (aiosqlite, one shared
connection) with the full schema created from the models. Redis and the
payment gateway are replaced with in-process fakes through
``app.dependency_overrides``.
"""

import json
import uuid
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient, Response
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from freelance_escrow.auth.context import CallerContext
from freelance_escrow.config import settings
from freelance_escrow.database import Base, get_db
from freelance_escrow.main import app
from freelance_escrow.models.milestone import Milestone
from freelance_escrow.models.payment import PayoutAccount
from freelance_escrow.models.project import Bid, BidStatus, EscrowStatus, Project
from freelance_escrow.models.user import User, UserRole, UserStatus
from freelance_escrow.redis import get_redis
from freelance_escrow.services.gateway import GatewayError, SandboxGateway, get_payment_gateway
from freelance_escrow.services.payout_destinations import PayoutDestination
from freelance_escrow.utils.crypto import (
    authorization_header,
    generate_keypair,
    generate_nonce,
    sign_request,
    utc_timestamp,
)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class RecordingGateway(SandboxGateway):
    """Sandbox gateway that remembers every call and can be told to fail."""

    def __init__(self) -> None:
        super().__init__(key_id="rzp_test_key", key_secret="test-gateway-secret")
        self.orders: list[dict] = []
        self.payouts: list[dict] = []
        self.fail_orders = False
        self.fail_payouts = False

    async def create_order(
        self, amount: Decimal, currency: str, receipt: str, metadata: dict[str, str]
    ) -> str:
        if self.fail_orders:
            raise GatewayError("order service unavailable")
        order_id = await super().create_order(amount, currency, receipt, metadata)
        self.orders.append(
            {"order_id": order_id, "amount": amount, "currency": currency,
             "receipt": receipt, "metadata": metadata}
        )
        return order_id

    async def create_payout(
        self, destination: PayoutDestination, amount: Decimal, currency: str, reference: str
    ) -> str:
        call = {"destination": destination, "amount": amount, "currency": currency,
                "reference": reference, "payout_id": None}
        self.payouts.append(call)
        if self.fail_payouts:
            raise GatewayError("payout rejected by bank")
        call["payout_id"] = await super().create_payout(destination, amount, currency, reference)
        return call["payout_id"]


def make_fake_redis() -> AsyncMock:
    """Just enough of redis for SET NX nonce bookkeeping."""
    keys: set[str] = set()

    async def _set(key: str, value: str, nx: bool = False, ex: int | None = None) -> bool | None:
        if nx and key in keys:
            return None
        keys.add(key)
        return True

    redis = AsyncMock()
    redis.set.side_effect = _set
    return redis


# ---------------------------------------------------------------------------
# Per-test fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_settings() -> None:
    """Snapshot settings before each test and restore after to prevent mutation bleed."""
    original = settings.model_dump()
    object.__setattr__(settings, "payment_gateway_backend", "sandbox")
    yield  # type: ignore[misc]
    for key, value in original.items():
        object.__setattr__(settings, key, value)


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        settings.test_database_url,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture
def fake_redis() -> AsyncMock:
    return make_fake_redis()


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    gateway: RecordingGateway,
    fake_redis: AsyncMock,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP test client; every request gets its own session on the test database."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    async def override_get_redis() -> AsyncGenerator[AsyncMock, None]:
        yield fake_redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_payment_gateway] = lambda: gateway

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

@dataclass
class Party:
    """A seeded user and their signing key.

    The identity is copied off the ORM row up front: a service that rolls back
    the shared session expires every loaded instance.
    """

    user: User
    private_key: str
    context: CallerContext = field(init=False)

    def __post_init__(self) -> None:
        self.context = CallerContext(user_id=self.user.user_id, role=self.user.role)

    @property
    def user_id(self) -> uuid.UUID:
        return self.context.user_id


@dataclass
class Market:
    """An owner with a project whose bid from ``freelancer`` has been accepted."""

    owner: Party
    freelancer: Party
    outsider: Party
    admin: Party
    project: Project
    bid: Bid
    project_id: uuid.UUID = field(init=False)
    bid_id: uuid.UUID = field(init=False)

    def __post_init__(self) -> None:
        self.project_id = self.project.project_id
        self.bid_id = self.bid.bid_id


async def make_user(
    db: AsyncSession,
    role: UserRole,
    status: UserStatus = UserStatus.ACTIVE,
    name: str = "Test User",
) -> Party:
    private_key, public_key = generate_keypair()
    user = User(
        user_id=uuid.uuid4(), public_key=public_key, display_name=name,
        role=role, status=status,
    )
    db.add(user)
    await db.commit()
    return Party(user=user, private_key=private_key)


async def seed_payout_account(
    db: AsyncSession,
    user_id: uuid.UUID,
    verified: bool = True,
    primary: bool = True,
    active: bool = True,
) -> PayoutAccount:
    account = PayoutAccount(
        user_id=user_id,
        account_holder_name="Asha Rao",
        account_number="50100123456789",
        ifsc_code="HDFC0001234",
        bank_name="HDFC Bank",
        is_verified=verified,
        is_primary=primary,
        is_active=active,
    )
    db.add(account)
    await db.commit()
    return account


async def seed_project(
    db: AsyncSession,
    owner: Party,
    freelancer: Party,
    bid_status: BidStatus = BidStatus.ACCEPTED,
    escrow_status: EscrowStatus = EscrowStatus.NOT_CREATED,
    final_amount: Decimal | None = None,
) -> tuple[Project, Bid]:
    project = Project(
        project_id=uuid.uuid4(), owner_id=owner.user_id, title="Landing page redesign",
        escrow_status=escrow_status,
        escrow_amount=final_amount,
        final_project_amount=final_amount,
        escrow_order_id="order_seeded" if escrow_status != EscrowStatus.NOT_CREATED else None,
    )
    db.add(project)
    await db.flush()
    bid = Bid(
        bid_id=uuid.uuid4(), project_id=project.project_id, freelancer_id=freelancer.user_id,
        amount=final_amount or Decimal("1000.00"), status=bid_status,
    )
    db.add(bid)
    await db.flush()
    project.accepted_bid_id = bid.bid_id
    await db.commit()
    return project, bid


async def seed_milestones(
    db: AsyncSession,
    bid: Bid,
    count: int,
    completed: bool = False,
    amount: Decimal = Decimal("100.00"),
) -> list[Milestone]:
    milestones = [
        Milestone(
            milestone_id=uuid.uuid4(), bid_id=bid.bid_id, position=i,
            title=f"Milestone {i + 1}", amount=amount,
            is_completed=completed,
            completed_at=datetime.now() if completed else None,
            payment_initiated=False, payment_released=False,
        )
        for i in range(count)
    ]
    db.add_all(milestones)
    await db.commit()
    return milestones


@pytest_asyncio.fixture
async def market(db_session: AsyncSession) -> Market:
    owner = await make_user(db_session, UserRole.CLIENT, name="Client")
    freelancer = await make_user(db_session, UserRole.FREELANCER, name="Freelancer")
    outsider = await make_user(db_session, UserRole.FREELANCER, name="Outsider")
    admin = await make_user(db_session, UserRole.ADMIN, name="Admin")
    project, bid = await seed_project(db_session, owner, freelancer)
    await seed_payout_account(db_session, freelancer.user_id)
    return Market(owner, freelancer, outsider, admin, project, bid)


# ---------------------------------------------------------------------------
# Signed requests
# ---------------------------------------------------------------------------

def make_auth_headers(
    user_id: str,
    private_key_hex: str,
    method: str,
    path: str,
    body: bytes = b"",
    timestamp: str | None = None,
    nonce: str | None = None,
) -> dict[str, str]:
    """Build signed auth headers for a request."""
    timestamp = timestamp or utc_timestamp()
    nonce = nonce or generate_nonce()
    signature = sign_request(private_key_hex, timestamp, nonce, method, path, body)
    return {
        "Authorization": authorization_header(user_id, signature),
        "X-Timestamp": timestamp,
        "X-Nonce": nonce,
    }


async def send(
    client: AsyncClient,
    party: Party,
    method: str,
    path: str,
    payload: dict | None = None,
) -> Response:
    """Sign and send; the signed bytes are exactly the bytes on the wire."""
    body = b"" if payload is None else json.dumps(payload).encode()
    headers = make_auth_headers(str(party.user_id), party.private_key, method, path, body)
    if payload is not None:
        headers["Content-Type"] = "application/json"
    return await client.request(method, path, content=body, headers=headers)


async def reload(session_factory: async_sessionmaker[AsyncSession], model: type, pk: uuid.UUID):  # type: ignore[no-untyped-def]
    """Read a row through a fresh session, bypassing any cached identity map."""
    async with session_factory() as session:
        return await session.get(model, pk)
