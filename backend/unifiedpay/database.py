from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from unifiedpay.config import settings

# Index names match the ones the migrations create with op.f()
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
}

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DATABASE_ECHO,
    pool_pre_ping=True,
)
PaymentSession = async_sessionmaker(engine, expire_on_commit=False)

class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)

async def get_db() -> AsyncSession:
    """One session per request; the ledger commits its own writes."""
    async with PaymentSession() as session:
        yield session
