from typing import Optional
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from unifiedpay.database import get_db
from unifiedpay.config import settings
from unifiedpay.core.errors import UnsupportedChain
from unifiedpay.services.access import RecentPaymentTrustPolicy
from unifiedpay.services.chains import ChainConfig, ChainRegistry
from unifiedpay.services.ledger import PaymentLedger
from unifiedpay.services.payment_verifier import PaymentVerifier
from unifiedpay.services.transfer_scanner import TransferScanner

def get_chains(request: Request) -> ChainRegistry:
    return request.app.state.chains

def get_verifier(request: Request) -> PaymentVerifier:
    return request.app.state.verifier

def get_scanner(request: Request) -> TransferScanner:
    return request.app.state.scanner

def get_trust_policy() -> RecentPaymentTrustPolicy:
    return RecentPaymentTrustPolicy(window_seconds=settings.RECENT_PAYMENT_TRUST_SECONDS)

async def get_ledger(db: AsyncSession = Depends(get_db)) -> PaymentLedger:
    return PaymentLedger(db)

def resolve_chain(chains: ChainRegistry, chain_id: Optional[int]) -> ChainConfig:
    try:
        return chains.config(chain_id if chain_id is not None else settings.PRIMARY_CHAIN_ID)
    except UnsupportedChain as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, str(exc))
