import re
from pydantic import BaseModel, Field, field_validator
from typing import Optional
from unifiedpay.core.wallet import normalize_tx_hash

TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


def _check_tx_hash(v: str) -> str:
    v = v.strip()
    if not TX_HASH_RE.match(v):
        raise ValueError("tx_hash must be a 0x-prefixed 32-byte hex string")
    return normalize_tx_hash(v)


class RecordPaymentRequest(BaseModel):
    wallet_address: str
    item_id: str = Field(min_length=1)
    tx_hash: str
    chain_id: Optional[int] = None

    @field_validator("tx_hash")
    @classmethod
    def check_tx_hash(cls, v):
        return _check_tx_hash(v)


class VerifyPaymentRequest(BaseModel):
    tx_hash: str
    recipient_address: str
    expected_amount: Optional[str] = None  # smallest units, integer string
    chain_id: Optional[int] = None

    @field_validator("tx_hash")
    @classmethod
    def check_tx_hash(cls, v):
        return _check_tx_hash(v)


class ScanRequest(BaseModel):
    wallet_address: str
    from_block: Optional[int] = Field(default=None, ge=0)
    to_block: Optional[int] = Field(default=None, ge=0)
    chain_id: Optional[int] = None
    include_timestamps: bool = False
