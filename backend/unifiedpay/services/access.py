"""
Content access checks.

A payer has access to an item's content when their most recent payment for
it verifies on-chain. Payments recorded less than
RECENT_PAYMENT_TRUST_SECONDS ago are trusted without an RPC round-trip;
older ones are always re-verified. A window of 0 disables the shortcut.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from typing import Optional
from unifiedpay.core.errors import ChainUnavailable, ItemNotFound
from unifiedpay.core.wallet import normalize_address
from unifiedpay.models.payment import Payment
from unifiedpay.services.ledger import PaymentLedger
from unifiedpay.services.payment_verifier import PaymentVerifier, VerificationResult

logger = logging.getLogger(__name__)

REASON_NO_CONTENT = "This item does not have content to unlock"
REASON_NO_PAYMENT = "No payment found for this item"
REASON_VERIFICATION_FAILED = "Payment verification failed on blockchain"


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they are stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class RecentPaymentTrustPolicy:
    window_seconds: int = 120

    def is_trusted(self, payment: Payment, now: Optional[datetime] = None) -> bool:
        if self.window_seconds <= 0 or payment.created_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        age = now - _as_utc(payment.created_at)
        return timedelta(0) <= age < timedelta(seconds=self.window_seconds)


@dataclass
class AccessDecision:
    has_access: bool
    item_id: str
    item_title: str
    content_url: Optional[str] = None
    reason: Optional[str] = None
    payment: Optional[Payment] = None
    verification: Optional[VerificationResult] = None
    trusted_recent: bool = False


async def check_access(
    ledger: PaymentLedger,
    verifier: PaymentVerifier,
    policy: RecentPaymentTrustPolicy,
    payer_wallet: str,
    item_id: str,
    now: Optional[datetime] = None,
) -> AccessDecision:
    payer = normalize_address(payer_wallet)
    item = await ledger.get_item(item_id)
    if item is None:
        raise ItemNotFound(item_id)

    decision = AccessDecision(has_access=False, item_id=item.id, item_title=item.title, content_url=item.content_url)
    if not item.content_url:
        decision.reason = REASON_NO_CONTENT
        return decision

    payment = await ledger.latest_payment_for(payer, item.id)
    if payment is None:
        decision.reason = REASON_NO_PAYMENT
        return decision
    decision.payment = payment

    if policy.is_trusted(payment, now):
        decision.has_access = True
        decision.trusted_recent = True
        return decision

    verification = await verifier.verify(
        payment.chain_id,
        payment.tx_hash,
        item.page.creator_wallet,
        payment.amount,
    )
    if verification.is_unavailable:
        raise ChainUnavailable(payment.chain_id, verification.error or "verification unavailable")

    decision.verification = verification
    if not verification.is_valid:
        logger.warning("Payment %s for item %s no longer verifies: %s", payment.tx_hash, item.id, verification.error)
        decision.reason = REASON_VERIFICATION_FAILED
        return decision

    decision.has_access = True
    return decision
