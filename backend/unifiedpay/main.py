import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from unifiedpay.config import settings
from unifiedpay.routers import payments
from unifiedpay.services.chains import ChainRegistry
from unifiedpay.services.payment_verifier import PaymentVerifier
from unifiedpay.services.transfer_scanner import TransferScanner
from unifiedpay.services.verification_cache import VerificationCache

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


def sweep_verification_cache(cache: VerificationCache):
    removed = cache.sweep()
    if removed:
        logger.debug("Swept %s expired verification cache entries", removed)


@asynccontextmanager
async def lifespan(app: FastAPI):
    chains = ChainRegistry.from_settings(settings)
    cache = VerificationCache(ttl_seconds=settings.VERIFICATION_CACHE_TTL_SECONDS)
    app.state.chains = chains
    app.state.verification_cache = cache
    app.state.verifier = PaymentVerifier(chains, cache)
    app.state.scanner = TransferScanner(
        chains,
        lookback_blocks=settings.SCAN_LOOKBACK_BLOCKS,
        chunk_size=settings.SCAN_CHUNK_SIZE,
    )
    scheduler.add_job(
        sweep_verification_cache, "interval",
        seconds=settings.CACHE_SWEEP_INTERVAL_SECONDS,
        args=[cache],
        id="verification_cache_sweep",
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Serving chains %s (primary %s)", chains.supported_chain_ids(), settings.PRIMARY_CHAIN_ID)
    yield
    scheduler.shutdown()
    await chains.aclose()

app = FastAPI(title="UnifiedPay API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(payments.router)

@app.get("/health")
async def health():
    return {"status": "ok"}
