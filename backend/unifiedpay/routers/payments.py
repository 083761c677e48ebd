from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from unifiedpay.core.deps import (
    get_chains, get_verifier, get_scanner, get_trust_policy, get_ledger, resolve_chain,
)
from unifiedpay.core.errors import (
    ChainUnavailable, InvalidAddress, ItemNotFound, MalformedAmount, PaymentRejected, UnsupportedChain,
)
from unifiedpay.config import settings
from unifiedpay.core.wallet import is_valid_address, normalize_address, normalize_tx_hash
from unifiedpay.models.payment import Payment
from unifiedpay.schemas.payment import RecordPaymentRequest, VerifyPaymentRequest, ScanRequest, TX_HASH_RE
from unifiedpay.services.access import RecentPaymentTrustPolicy, check_access
from unifiedpay.services.chains import ChainRegistry
from unifiedpay.services.ledger import PaymentLedger
from unifiedpay.services.payment_verifier import PaymentVerifier
from unifiedpay.services.reconciliation import scan_and_reconcile
from unifiedpay.services.recording import record_payment
from unifiedpay.services.token_amount import to_decimal_string
from unifiedpay.services.transfer_decoder import TransferFact
from unifiedpay.services.transfer_scanner import InvalidBlockRange, TransferScanner

router = APIRouter(prefix="/api/payments", tags=["payments"])


def _unavailable(exc: ChainUnavailable) -> HTTPException:
    return HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, f"Chain temporarily unavailable, try again: {exc.detail}")


def _payment_dict(payment: Payment, decimals: int) -> dict:
    return {
        "id": payment.id,
        "item_id": payment.item_id,
        "payer_wallet": payment.payer_wallet,
        "amount": payment.amount,
        "amount_formatted": to_decimal_string(int(payment.amount), decimals),
        "tx_hash": payment.tx_hash,
        "chain_id": payment.chain_id,
        "created_at": payment.created_at.isoformat() if payment.created_at else None,
    }


def _transfer_dict(transfer: TransferFact, decimals: int) -> dict:
    return {
        "tx_hash": transfer.tx_hash,
        "from_address": transfer.from_address,
        "to_address": transfer.to_address,
        "amount": str(transfer.amount),
        "amount_formatted": to_decimal_string(transfer.amount, decimals),
        "block_number": transfer.block_number,
        "timestamp": transfer.timestamp,
    }


def _decimals_for(chains: ChainRegistry, chain_id: int) -> int:
    try:
        return chains.config(chain_id).token_decimals
    except UnsupportedChain:
        return settings.TOKEN_DECIMALS


def _require_wallet(wallet: str) -> str:
    if not is_valid_address(wallet):
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Invalid wallet address format")
    return normalize_address(wallet)


@router.post("")
async def record(
    body: RecordPaymentRequest,
    ledger: PaymentLedger = Depends(get_ledger),
    verifier: PaymentVerifier = Depends(get_verifier),
    chains: ChainRegistry = Depends(get_chains),
):
    """Record a payment the client just made. Verified on-chain before the write."""
    payer = _require_wallet(body.wallet_address)
    chain = resolve_chain(chains, body.chain_id)
    try:
        outcome = await record_payment(
            ledger, verifier,
            item_id=body.item_id,
            payer_wallet=payer,
            tx_hash=body.tx_hash,
            chain_id=chain.chain_id,
            decimals=chain.token_decimals,
        )
    except ItemNotFound:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Payment item not found")
    except ChainUnavailable as exc:
        raise _unavailable(exc)
    except (PaymentRejected, MalformedAmount, InvalidAddress) as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, f"Payment verification failed: {exc}")

    return {
        "success": True,
        "already_recorded": not outcome.created,
        "payment": _payment_dict(outcome.payment, chain.token_decimals),
    }


@router.get("")
async def get_payment(
    tx_hash: str = Query(...),
    wallet: Optional[str] = Query(None),
    ledger: PaymentLedger = Depends(get_ledger),
    chains: ChainRegistry = Depends(get_chains),
):
    payment = await ledger.find_payment_by_tx_hash(normalize_tx_hash(tx_hash))
    if not payment:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Payment not found")
    if wallet is not None and _require_wallet(wallet) != payment.payer_wallet:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Payment does not belong to this wallet")

    result = _payment_dict(payment, _decimals_for(chains, payment.chain_id))
    result["item"] = {
        "id": payment.item.id,
        "title": payment.item.title,
        "type": payment.item.type.value,
        "content_url": payment.item.content_url,
    }
    return {"success": True, "payment": result}


@router.post("/verify")
async def verify(
    body: VerifyPaymentRequest,
    ledger: PaymentLedger = Depends(get_ledger),
    verifier: PaymentVerifier = Depends(get_verifier),
    chains: ChainRegistry = Depends(get_chains),
):
    recipient = _require_wallet(body.recipient_address)
    chain = resolve_chain(chains, body.chain_id)
    try:
        verification = await verifier.verify(chain.chain_id, body.tx_hash, recipient, body.expected_amount)
    except MalformedAmount as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, str(exc))
    if verification.is_unavailable:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, verification.error)

    if not verification.is_valid:
        return {"success": False, "verified": False, "error": verification.error, "verification": verification.as_dict()}

    existing = await ledger.find_payment_by_tx_hash(body.tx_hash)
    if existing and normalize_address(existing.item.page.creator_wallet) != recipient:
        return {
            "success": False,
            "verified": False,
            "error": "Recipient address does not match payment item creator",
            "verification": verification.as_dict(),
        }

    return {
        "success": True,
        "verified": True,
        "verification": verification.as_dict(),
        "payment_exists": existing is not None,
    }


@router.get("/verify/{tx_hash}")
async def verify_by_hash(
    tx_hash: str,
    recipient: str = Query(...),
    amount: Optional[str] = Query(None),
    chain_id: Optional[int] = Query(None),
    refresh: bool = Query(False),
    ledger: PaymentLedger = Depends(get_ledger),
    verifier: PaymentVerifier = Depends(get_verifier),
    chains: ChainRegistry = Depends(get_chains),
):
    if not TX_HASH_RE.match(tx_hash):
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Invalid transaction hash")
    tx_hash = normalize_tx_hash(tx_hash)
    recipient = _require_wallet(recipient)
    chain = resolve_chain(chains, chain_id)
    if refresh and verifier.cache is not None:
        verifier.cache.invalidate(tx_hash)
    try:
        verification = await verifier.verify(chain.chain_id, tx_hash, recipient, amount)
    except MalformedAmount as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, str(exc))
    if verification.is_unavailable:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, verification.error)

    existing = await ledger.find_payment_by_tx_hash(tx_hash)
    return {
        "success": True,
        "verified": verification.is_valid,
        "verification": verification.as_dict() if verification.is_valid else None,
        "error": verification.error,
        "payment_recorded": existing is not None,
        "payment": _payment_dict(existing, chain.token_decimals) if existing else None,
    }


@router.post("/scan")
async def scan(
    body: ScanRequest,
    ledger: PaymentLedger = Depends(get_ledger),
    scanner: TransferScanner = Depends(get_scanner),
    chains: ChainRegistry = Depends(get_chains),
):
    """Sweep a block range for transfers to a creator and reconcile them with their items."""
    recipient = _require_wallet(body.wallet_address)
    chain = resolve_chain(chains, body.chain_id)
    decimals = chain.token_decimals
    try:
        result = await scan_and_reconcile(
            scanner, ledger, chain.chain_id, recipient,
            from_block=body.from_block,
            to_block=body.to_block,
            decimals=decimals,
        )
    except InvalidBlockRange as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, str(exc))
    except ChainUnavailable as exc:
        raise _unavailable(exc)

    report = result.report
    matched = [m.transfer for m in report.matched]
    candidates = [c.transfer for c in report.unmatched_with_candidate]
    if body.include_timestamps:
        # Payments are already committed here; unreachable blocks come back as timestamp 0
        resolved = await scanner.resolve_timestamps(chain.chain_id, matched + candidates + report.unmatched)
        by_hash = {(t.tx_hash, t.log_index): t for t in resolved}
    else:
        by_hash = {}

    def out(t: TransferFact) -> dict:
        return _transfer_dict(by_hash.get((t.tx_hash, t.log_index), t), decimals)

    return {
        "success": True,
        "scanned": {
            "chain_id": result.chain_id,
            "from_block": result.from_block,
            "to_block": result.to_block,
            "total_transfers": result.total_transfers,
        },
        "counts": report.counts,
        "results": {
            "matched": [{
                "transfer": out(m.transfer),
                "payment_id": m.payment_id,
                "item": {"id": m.item.id, "title": m.item.title},
            } for m in report.matched],
            "unmatched_with_candidate": [{
                "transfer": out(c.transfer),
                "candidate_items": [{"id": i.id, "title": i.title} for i in c.candidate_items],
            } for c in report.unmatched_with_candidate],
            "unmatched": [out(t) for t in report.unmatched],
            "already_recorded": [t.tx_hash for t in report.already_recorded],
        },
    }


@router.get("/access")
async def access(
    wallet: str = Query(...),
    item_id: str = Query(...),
    ledger: PaymentLedger = Depends(get_ledger),
    verifier: PaymentVerifier = Depends(get_verifier),
    policy: RecentPaymentTrustPolicy = Depends(get_trust_policy),
):
    payer = _require_wallet(wallet)
    try:
        decision = await check_access(ledger, verifier, policy, payer, item_id)
    except ItemNotFound:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Payment item not found")
    except ChainUnavailable as exc:
        raise _unavailable(exc)
    except (InvalidAddress, MalformedAmount) as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, str(exc))

    response = {
        "success": True,
        "has_access": decision.has_access,
        "reason": decision.reason,
        "item": {
            "id": decision.item_id,
            "title": decision.item_title,
            "content_url": decision.content_url if decision.has_access else None,
        },
        "trusted_recent_payment": decision.trusted_recent,
    }
    if decision.payment is not None:
        response["payment"] = {
            "tx_hash": decision.payment.tx_hash,
            "amount": decision.payment.amount,
            "created_at": decision.payment.created_at.isoformat() if decision.payment.created_at else None,
        }
    if decision.verification is not None:
        response["verification"] = decision.verification.as_dict()
    return response


@router.get("/history")
async def history(
    wallet: str = Query(...),
    ledger: PaymentLedger = Depends(get_ledger),
    chains: ChainRegistry = Depends(get_chains),
):
    """All payments made by a wallet across creators, newest first."""
    payer = _require_wallet(wallet)
    payments = await ledger.payments_for_payer(payer)
    purchases = []
    for p in payments:
        entry = _payment_dict(p, _decimals_for(chains, p.chain_id))
        entry["item"] = {
            "id": p.item.id,
            "title": p.item.title,
            "type": p.item.type.value,
            "price_usdc": p.item.price_usdc,
            "content_url": p.item.content_url,
        }
        entry["page"] = {
            "id": p.item.page.id,
            "title": p.item.page.title,
            "creator_wallet": p.item.page.creator_wallet,
        }
        purchases.append(entry)
    return {
        "success": True,
        "wallet_address": payer,
        "total_purchases": len(purchases),
        "purchases": purchases,
    }
