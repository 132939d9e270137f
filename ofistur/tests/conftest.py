"""
Centralized Test Configuration.
"""

import pytest
from types import SimpleNamespace
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from ofistur.app.main import app
from ofistur.app.db.session import get_db, Base
from ofistur.app.core.auth import AuthContext
from ofistur.app.core.jwt import create_access_token
from ofistur.app.models.agency import Agency
from ofistur.app.models.user import User
from ofistur.app.models.enums import UserRole
from ofistur.app.models.subjects import Client, Operator
from ofistur.app.models.credit_account import CreditAccount
from ofistur.app.models.credit_entry import CreditEntry

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# pysqlite/aiosqlite issue their own BEGIN lazily, which breaks SAVEPOINT.
# Let SQLAlchemy emit BEGIN itself so begin_nested() works as on PostgreSQL.
@event.listens_for(engine.sync_engine, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints and manual transaction control for SQLite."""
    dbapi_conn.isolation_level = None
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@event.listens_for(engine.sync_engine, "begin")
def do_begin(conn):
    conn.exec_driver_sql("BEGIN")


TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


@pytest.fixture(scope="session", autouse=True)
def apply_overrides():
    """Point the app at the in-memory database for the whole session."""

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield
    app.dependency_overrides = {}


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def session_factory():
    """Opens extra sessions that act as concurrent requests."""
    return TestingSessionLocal


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
async def ledger(db_session):
    """
    Two agencies with users and subjects.

    Only ids and AuthContexts are returned; ORM rows would be expired by
    the first rollback a test triggers.
    """
    agency_a = Agency(name="Agencia Norte")
    agency_b = Agency(name="Agencia Sur")
    db_session.add_all([agency_a, agency_b])
    await db_session.flush()

    manager = User(id_agency=agency_a.id_agency, email="gerente@norte.test",
                   first_name="Ana", last_name="Paz", role=UserRole.MANAGER)
    leader = User(id_agency=agency_a.id_agency, email="lider@norte.test",
                  first_name="Luis", last_name="Rey", role=UserRole.LEADER)
    seller = User(id_agency=agency_a.id_agency, email="vendedor@norte.test",
                  first_name="Sol", last_name="Gil", role=UserRole.SELLER)
    inactive = User(id_agency=agency_a.id_agency, email="baja@norte.test",
                    first_name="Ivo", last_name="Luna", role=UserRole.MANAGER, is_active=False)
    other_manager = User(id_agency=agency_b.id_agency, email="gerente@sur.test",
                         first_name="Eva", last_name="Sosa", role=UserRole.MANAGER)
    db_session.add_all([manager, leader, seller, inactive, other_manager])

    client_a = Client(id_agency=agency_a.id_agency, first_name="Juan", last_name="Perez")
    client_a2 = Client(id_agency=agency_a.id_agency, first_name="Maria", last_name="Lopez")
    client_b = Client(id_agency=agency_b.id_agency, first_name="Pedro", last_name="Diaz")
    operator_a = Operator(id_agency=agency_a.id_agency, name="Aerolineas Demo")
    operator_b = Operator(id_agency=agency_b.id_agency, name="Hoteles Sur")
    db_session.add_all([client_a, client_a2, client_b, operator_a, operator_b])
    await db_session.commit()

    def ctx(user):
        return AuthContext(actor_id=user.id_user, agency_id=user.id_agency, role=user.role.value)

    return SimpleNamespace(
        agency_id=agency_a.id_agency,
        other_agency_id=agency_b.id_agency,
        manager_id=manager.id_user,
        leader_id=leader.id_user,
        seller_id=seller.id_user,
        inactive_id=inactive.id_user,
        other_manager_id=other_manager.id_user,
        admin=ctx(manager),
        leader=ctx(leader),
        seller=ctx(seller),
        other_admin=ctx(other_manager),
        client_id=client_a.id_client,
        client2_id=client_a2.id_client,
        other_client_id=client_b.id_client,
        operator_id=operator_a.id_operator,
        other_operator_id=operator_b.id_operator,
    )


@pytest.fixture
def token_for(ledger):
    """Build a bearer header for a seeded user."""

    def _headers(auth: AuthContext, **overrides):
        payload = {
            "sub": f"user-{auth.actor_id}",
            "user_id": auth.actor_id,
            "agency_id": auth.agency_id,
            "role": auth.role,
        }
        payload.update(overrides)
        payload = {k: v for k, v in payload.items() if v is not None}
        return {"Authorization": f"Bearer {create_access_token(payload)}"}

    return _headers


@pytest.fixture
def fetch_account(db_session):
    """Fresh read of an account, bypassing the identity map."""

    async def _fetch(account_id: int) -> CreditAccount:
        result = await db_session.execute(
            select(CreditAccount)
            .where(CreditAccount.id_credit_account == account_id)
            .execution_options(populate_existing=True)
        )
        account = result.scalar_one()
        await db_session.commit()
        return account

    return _fetch


@pytest.fixture
def count_entries(db_session):
    async def _count(account_id: int) -> int:
        result = await db_session.execute(
            select(CreditEntry.id_entry).where(CreditEntry.account_id == account_id)
        )
        count = len(result.all())
        await db_session.commit()
        return count

    return _count
