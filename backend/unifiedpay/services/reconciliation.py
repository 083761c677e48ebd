"""
Match scanned on-chain transfers against a creator's payment items.

Fixed-price items are matched automatically by exact smallest-unit amount.
Open items cannot be told apart by amount alone, so transfers that might
belong to one are only surfaced as candidates for manual attribution.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional
from sqlalchemy.exc import SQLAlchemyError
from unifiedpay.core.errors import DuplicateTxHash, MalformedAmount
from unifiedpay.models.page import ItemType, PaymentItem
from unifiedpay.services.ledger import PaymentLedger
from unifiedpay.services.token_amount import to_smallest_unit
from unifiedpay.services.transfer_decoder import TransferFact
from unifiedpay.services.transfer_scanner import TransferScanner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ItemRef:
    id: str
    title: str
    type: ItemType
    expected_amount: Optional[int] = None  # fixed items only


@dataclass
class MatchedTransfer:
    transfer: TransferFact
    payment_id: int
    item: ItemRef


@dataclass
class CandidateTransfer:
    transfer: TransferFact
    candidate_items: list[ItemRef]


@dataclass
class ReconciliationReport:
    matched: list[MatchedTransfer] = field(default_factory=list)
    unmatched_with_candidate: list[CandidateTransfer] = field(default_factory=list)
    unmatched: list[TransferFact] = field(default_factory=list)
    already_recorded: list[TransferFact] = field(default_factory=list)

    @property
    def counts(self) -> dict:
        return {
            "matched": len(self.matched),
            "unmatched_with_candidate": len(self.unmatched_with_candidate),
            "unmatched": len(self.unmatched),
            "already_recorded": len(self.already_recorded),
        }


def item_refs(items: list[PaymentItem], decimals: int) -> list[ItemRef]:
    """Snapshot items as plain values, pricing fixed items in smallest units.

    Fixed items whose stored price cannot be converted are left out.
    """
    refs = []
    for item in items:
        if item.type == ItemType.fixed:
            if not item.price_usdc:
                logger.warning("Fixed item %s has no price, skipping", item.id)
                continue
            try:
                expected = to_smallest_unit(item.price_usdc, decimals)
            except MalformedAmount as exc:
                logger.warning("Fixed item %s has an unusable price: %s", item.id, exc)
                continue
            refs.append(ItemRef(id=item.id, title=item.title, type=ItemType.fixed, expected_amount=expected))
        else:
            refs.append(ItemRef(id=item.id, title=item.title, type=ItemType.open))
    return refs


class ReconciliationMatcher:
    def __init__(self, ledger: PaymentLedger):
        self.ledger = ledger

    async def reconcile(self, chain_id: int, transfers: list[TransferFact], items: list[ItemRef]) -> ReconciliationReport:
        report = ReconciliationReport()
        fixed_items = [i for i in items if i.type == ItemType.fixed]
        open_items = [i for i in items if i.type == ItemType.open]

        for transfer in transfers:
            try:
                if await self.ledger.find_payment_by_tx_hash(transfer.tx_hash) is not None:
                    report.already_recorded.append(transfer)
                    continue

                item = next((i for i in fixed_items if i.expected_amount == transfer.amount), None)
                if item is not None:
                    payment = await self.ledger.create_payment(
                        item_id=item.id,
                        payer_wallet=transfer.from_address,
                        amount=transfer.amount,
                        tx_hash=transfer.tx_hash,
                        chain_id=chain_id,
                    )
                    report.matched.append(MatchedTransfer(transfer=transfer, payment_id=payment.id, item=item))
                    continue
            except DuplicateTxHash:
                report.already_recorded.append(transfer)
                continue
            except SQLAlchemyError:
                logger.exception("Could not record transfer %s, leaving it unmatched", transfer.tx_hash)
                report.unmatched.append(transfer)
                continue

            if open_items:
                report.unmatched_with_candidate.append(
                    CandidateTransfer(transfer=transfer, candidate_items=list(open_items))
                )
            else:
                report.unmatched.append(transfer)

        logger.info("Reconciled %s transfers on chain %s: %s", len(transfers), chain_id, report.counts)
        return report


@dataclass
class ScanAndReconcileResult:
    chain_id: int
    recipient: str
    from_block: int
    to_block: int
    total_transfers: int
    report: ReconciliationReport


async def scan_and_reconcile(
    scanner: TransferScanner,
    ledger: PaymentLedger,
    chain_id: int,
    recipient: str,
    from_block: Optional[int] = None,
    to_block: Optional[int] = None,
    decimals: int = 6,
) -> ScanAndReconcileResult:
    scan = await scanner.scan_transfers_to(chain_id, recipient, from_block, to_block)
    items = item_refs(await ledger.list_items_for_recipient(scan.recipient), decimals)
    report = await ReconciliationMatcher(ledger).reconcile(chain_id, scan.transfers, items)
    return ScanAndReconcileResult(
        chain_id=chain_id,
        recipient=scan.recipient,
        from_block=scan.from_block,
        to_block=scan.to_block,
        total_transfers=len(scan.transfers),
        report=report,
    )
