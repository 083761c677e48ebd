import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from unifiedpay.database import Base
import unifiedpay.models  # noqa: F401 - register all models
from unifiedpay.services.ledger import PaymentLedger
from unifiedpay.services.payment_verifier import PaymentVerifier
from unifiedpay.services.verification_cache import VerificationCache
from tests.chain_fakes import FakeRpc, make_registry

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()

@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session

@pytest.fixture
def ledger(db):
    return PaymentLedger(db)

@pytest.fixture
def rpc():
    return FakeRpc()

@pytest_asyncio.fixture
async def chains(rpc):
    registry = make_registry(rpc)
    yield registry
    await registry.aclose()

@pytest.fixture
def cache():
    return VerificationCache(ttl_seconds=300)

@pytest.fixture
def verifier(chains, cache):
    return PaymentVerifier(chains, cache)
