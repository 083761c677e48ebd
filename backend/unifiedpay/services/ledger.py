"""
Payment ledger backed by the relational store.

The unique index on payments.tx_hash is what actually prevents double
recording across processes; create_payment turns a violation of it into
DuplicateTxHash so callers can treat it as "already recorded".
"""
import logging
from typing import Optional
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from unifiedpay.core.errors import DuplicateTxHash
from unifiedpay.core.wallet import normalize_tx_hash
from unifiedpay.models.page import PaymentPage, PaymentItem
from unifiedpay.models.payment import Payment

logger = logging.getLogger(__name__)


class PaymentLedger:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_payment_by_tx_hash(self, tx_hash: str) -> Optional[Payment]:
        return await self.db.scalar(
            select(Payment)
            .where(Payment.tx_hash == normalize_tx_hash(tx_hash))
            .options(selectinload(Payment.item).selectinload(PaymentItem.page))
        )

    async def create_payment(
        self,
        item_id: str,
        payer_wallet: str,
        amount: int,
        tx_hash: str,
        chain_id: int,
    ) -> Payment:
        payment = Payment(
            item_id=item_id,
            payer_wallet=payer_wallet,
            amount=str(amount),
            tx_hash=normalize_tx_hash(tx_hash),
            chain_id=chain_id,
        )
        self.db.add(payment)
        try:
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            logger.info("Payment for %s already recorded by a concurrent writer", tx_hash)
            raise DuplicateTxHash(tx_hash) from exc
        except SQLAlchemyError:
            # Leave the session usable for the caller's next statement
            await self.db.rollback()
            raise
        await self.db.refresh(payment)
        return payment

    async def get_item(self, item_id: str) -> Optional[PaymentItem]:
        return await self.db.scalar(
            select(PaymentItem)
            .where(PaymentItem.id == item_id)
            .options(selectinload(PaymentItem.page))
        )

    async def list_items_for_recipient(self, recipient_wallet: str) -> list[PaymentItem]:
        """All items on pages owned by ``recipient_wallet``, in a stable order."""
        return list(await self.db.scalars(
            select(PaymentItem)
            .join(PaymentPage, PaymentItem.page_id == PaymentPage.id)
            .where(PaymentPage.creator_wallet == recipient_wallet)
            .order_by(PaymentItem.created_at, PaymentItem.id)
        ))

    async def latest_payment_for(self, payer_wallet: str, item_id: str) -> Optional[Payment]:
        return await self.db.scalar(
            select(Payment)
            .where(Payment.payer_wallet == payer_wallet, Payment.item_id == item_id)
            .order_by(Payment.created_at.desc(), Payment.id.desc())
            .limit(1)
        )

    async def payments_for_payer(self, payer_wallet: str) -> list[Payment]:
        return list(await self.db.scalars(
            select(Payment)
            .where(Payment.payer_wallet == payer_wallet)
            .options(selectinload(Payment.item).selectinload(PaymentItem.page))
            .order_by(Payment.created_at.desc(), Payment.id.desc())
        ))
