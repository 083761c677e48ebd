from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from unifiedpay.database import Base

class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True)
    item_id = Column(String(36), ForeignKey("payment_items.id"), nullable=False, index=True)
    payer_wallet = Column(String(42), nullable=False, index=True)
    amount = Column(String(78), nullable=False)  # integer, token smallest unit
    tx_hash = Column(String(66), unique=True, nullable=False, index=True)
    chain_id = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    item = relationship("PaymentItem", back_populates="payments")

    @property
    def amount_units(self) -> int:
        return int(self.amount)
