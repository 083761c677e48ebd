import enum
import uuid
from sqlalchemy import Column, String, DateTime, ForeignKey, Enum, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from unifiedpay.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class ItemType(str, enum.Enum):
    fixed = "fixed"
    open = "open"


class PaymentPage(Base):
    __tablename__ = "payment_pages"

    id = Column(String(36), primary_key=True, default=_uuid)
    creator_wallet = Column(String(42), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    items = relationship("PaymentItem", back_populates="page", order_by="PaymentItem.created_at")


class PaymentItem(Base):
    """Fixed items always carry a positive price_usdc; open items never do."""
    __tablename__ = "payment_items"

    id = Column(String(36), primary_key=True, default=_uuid)
    page_id = Column(String(36), ForeignKey("payment_pages.id"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(Enum(ItemType), nullable=False, default=ItemType.fixed)
    price_usdc = Column(String(40), nullable=True)  # human-readable decimal, e.g. "5.00"
    content_url = Column(String(2048), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    page = relationship("PaymentPage", back_populates="items")
    payments = relationship("Payment", back_populates="item")
