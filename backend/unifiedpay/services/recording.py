import logging
from dataclasses import dataclass
from typing import Optional
from unifiedpay.core.errors import ChainUnavailable, DuplicateTxHash, ItemNotFound, PaymentRejected
from unifiedpay.core.wallet import normalize_address, normalize_tx_hash
from unifiedpay.models.page import ItemType
from unifiedpay.models.payment import Payment
from unifiedpay.services.ledger import PaymentLedger
from unifiedpay.services.payment_verifier import PaymentVerifier, VerificationResult
from unifiedpay.services.token_amount import to_smallest_unit

logger = logging.getLogger(__name__)

REASON_PAYER_MISMATCH = "transaction sender does not match payer wallet"


@dataclass
class RecordOutcome:
    payment: Payment
    created: bool
    verification: Optional[VerificationResult] = None


async def record_payment(
    ledger: PaymentLedger,
    verifier: PaymentVerifier,
    item_id: str,
    payer_wallet: str,
    tx_hash: str,
    chain_id: int,
    decimals: int = 6,
) -> RecordOutcome:
    """Record a client-reported payment after verifying it on-chain.

    Resubmitting a hash that is already recorded returns the existing row
    with created=False instead of failing.
    """
    payer = normalize_address(payer_wallet)
    tx_hash = normalize_tx_hash(tx_hash)
    item = await ledger.get_item(item_id)
    if item is None:
        raise ItemNotFound(item_id)

    existing = await ledger.find_payment_by_tx_hash(tx_hash)
    if existing is not None:
        return RecordOutcome(payment=existing, created=False)

    expected_amount = None
    if item.type == ItemType.fixed:
        expected_amount = to_smallest_unit(item.price_usdc or "", decimals)

    verification = await verifier.verify(chain_id, tx_hash, item.page.creator_wallet, expected_amount)
    if verification.is_unavailable:
        raise ChainUnavailable(chain_id, verification.error or "verification unavailable")
    if not verification.is_valid:
        raise PaymentRejected(verification.error or "payment could not be verified")
    if verification.from_address != payer:
        raise PaymentRejected(REASON_PAYER_MISMATCH)

    try:
        payment = await ledger.create_payment(
            item_id=item.id,
            payer_wallet=verification.from_address,
            amount=verification.amount,
            tx_hash=tx_hash,
            chain_id=chain_id,
        )
    except DuplicateTxHash:
        payment = await ledger.find_payment_by_tx_hash(tx_hash)
        if payment is None:
            raise
        return RecordOutcome(payment=payment, created=False, verification=verification)

    logger.info("Recorded payment %s for item %s from %s", tx_hash, item_id, payer)
    return RecordOutcome(payment=payment, created=True, verification=verification)
