import enum
import logging
from dataclasses import dataclass, replace
from typing import Optional, Union
from unifiedpay.core.errors import ChainUnavailable
from unifiedpay.core.wallet import normalize_address, normalize_tx_hash
from unifiedpay.services.chains import ChainRegistry
from unifiedpay.services.token_amount import parse_smallest_unit
from unifiedpay.services.transfer_decoder import decode_transfers
from unifiedpay.services.verification_cache import VerificationCache

logger = logging.getLogger(__name__)

REASON_NOT_FOUND = "transaction not found"
REASON_REVERTED = "transaction failed or reverted"
REASON_NO_TRANSFER = "no transfer found to expected recipient"


class VerificationStatus(str, enum.Enum):
    valid = "valid"
    invalid = "invalid"
    unavailable = "unavailable"


@dataclass(frozen=True)
class VerificationResult:
    status: VerificationStatus
    tx_hash: str
    chain_id: int
    from_address: str = ""
    to_address: str = ""
    amount: int = 0
    block_number: int = 0
    timestamp: int = 0
    error: Optional[str] = None
    cached: bool = False

    @property
    def is_valid(self) -> bool:
        return self.status == VerificationStatus.valid

    @property
    def is_unavailable(self) -> bool:
        return self.status == VerificationStatus.unavailable

    def as_dict(self) -> dict:
        return {
            "status": self.status.value,
            "is_valid": self.is_valid,
            "tx_hash": self.tx_hash,
            "chain_id": self.chain_id,
            "from_address": self.from_address,
            "to_address": self.to_address,
            "amount": str(self.amount),
            "block_number": self.block_number,
            "timestamp": self.timestamp,
            "error": self.error,
            "cached": self.cached,
        }


def amount_mismatch_reason(expected, actual: int) -> str:
    return f"amount mismatch: expected {expected}, got {actual}"


class PaymentVerifier:
    """Decide whether a transaction paid ``expected_recipient`` on a chain.

    Pending -> valid | invalid(reason) | unavailable. Valid and invalid
    verdicts are definitive and cached; unavailable means the chain could not
    be asked and is never cached.
    """

    def __init__(self, chains: ChainRegistry, cache: Optional[VerificationCache] = None):
        self.chains = chains
        self.cache = cache

    async def verify(
        self,
        chain_id: int,
        tx_hash: str,
        expected_recipient: str,
        expected_amount: Optional[Union[int, str]] = None,
    ) -> VerificationResult:
        tx_hash = normalize_tx_hash(tx_hash)
        recipient = normalize_address(expected_recipient)
        expected = None
        if expected_amount is not None and expected_amount != "":
            expected = parse_smallest_unit(expected_amount)
        client = self.chains.get(chain_id)
        query = (chain_id, recipient, expected)

        if self.cache is not None:
            entry = self.cache.get(tx_hash)
            if entry is not None and entry.result is not None:
                cached_query, cached_result = entry.result
                if cached_query == query:
                    return replace(cached_result, cached=True)

        result = await self._verify_uncached(client, tx_hash, recipient, expected)

        if self.cache is not None and not result.is_unavailable:
            self.cache.put(tx_hash, result.is_valid, result=(query, result))
        return result

    async def _verify_uncached(self, client, tx_hash: str, recipient: str, expected: Optional[int]) -> VerificationResult:
        chain_id = client.chain_id
        try:
            receipt = await client.get_receipt(tx_hash)
        except ChainUnavailable as exc:
            logger.warning("Receipt fetch for %s on chain %s failed: %s", tx_hash, chain_id, exc.detail)
            return VerificationResult(
                status=VerificationStatus.unavailable,
                tx_hash=tx_hash,
                chain_id=chain_id,
                error=str(exc),
            )

        if receipt is None:
            return self._invalid(tx_hash, chain_id, REASON_NOT_FOUND)

        block_number = receipt["blockNumber"]
        if receipt["status"] != 1:
            return self._invalid(tx_hash, chain_id, REASON_REVERTED, block_number=block_number)

        # Timestamp is informational; recipient and amount are what count
        timestamp = 0
        try:
            block = await client.get_block(block_number)
            if block:
                timestamp = block["timestamp"]
        except ChainUnavailable as exc:
            logger.info("Block %s fetch failed on chain %s, timestamp left at 0: %s", block_number, chain_id, exc.detail)

        transfers = decode_transfers(
            receipt["logs"],
            client.token_address,
            tx_hash=tx_hash,
            block_number=block_number,
        )
        match = next((t for t in transfers if t.to_address == recipient), None)
        if match is None:
            return self._invalid(tx_hash, chain_id, REASON_NO_TRANSFER, block_number=block_number, timestamp=timestamp)

        if expected is not None and match.amount != expected:
            reason = amount_mismatch_reason(expected, match.amount)
        elif expected is None and match.amount <= 0:
            reason = amount_mismatch_reason("a positive amount", match.amount)
        else:
            reason = None

        return VerificationResult(
            status=VerificationStatus.invalid if reason else VerificationStatus.valid,
            tx_hash=tx_hash,
            chain_id=chain_id,
            from_address=match.from_address,
            to_address=recipient,
            amount=match.amount,
            block_number=block_number,
            timestamp=timestamp,
            error=reason,
        )

    @staticmethod
    def _invalid(tx_hash: str, chain_id: int, reason: str, block_number: int = 0, timestamp: int = 0) -> VerificationResult:
        return VerificationResult(
            status=VerificationStatus.invalid,
            tx_hash=tx_hash,
            chain_id=chain_id,
            block_number=block_number,
            timestamp=timestamp,
            error=reason,
        )
