import logging
from dataclasses import dataclass, field
from typing import Optional
from unifiedpay.core.errors import ChainUnavailable
from unifiedpay.core.wallet import normalize_address
from unifiedpay.services.chains import ChainRegistry
from unifiedpay.services.transfer_decoder import TransferFact, decode_transfer_log

logger = logging.getLogger(__name__)


class InvalidBlockRange(ValueError):
    pass


@dataclass
class ScanResult:
    chain_id: int
    recipient: str
    from_block: int
    to_block: int
    transfers: list[TransferFact] = field(default_factory=list)


class TransferScanner:
    """Find Transfer events of the chain's token addressed to a recipient.

    Without explicit bounds the scan covers the last ``lookback_blocks``
    blocks up to the chain head. Long ranges are split into chunks of at
    most ``chunk_size`` blocks to stay under provider eth_getLogs limits.
    """

    def __init__(self, chains: ChainRegistry, lookback_blocks: int = 1000, chunk_size: int = 2000):
        if lookback_blocks < 0:
            raise ValueError("lookback_blocks must be non-negative")
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.chains = chains
        self.lookback_blocks = lookback_blocks
        self.chunk_size = chunk_size

    async def resolve_range(self, chain_id: int, from_block: Optional[int], to_block: Optional[int]) -> tuple[int, int]:
        if to_block is None:
            to_block = await self.chains.get(chain_id).get_block_number()
        if from_block is None:
            from_block = max(0, to_block - self.lookback_blocks)
        if from_block < 0 or to_block < 0:
            raise InvalidBlockRange("block numbers must be non-negative")
        if from_block > to_block:
            raise InvalidBlockRange(f"from_block {from_block} is after to_block {to_block}")
        return from_block, to_block

    async def scan_transfers_to(
        self,
        chain_id: int,
        recipient: str,
        from_block: Optional[int] = None,
        to_block: Optional[int] = None,
    ) -> ScanResult:
        recipient = normalize_address(recipient)
        client = self.chains.get(chain_id)
        start, end = await self.resolve_range(chain_id, from_block, to_block)

        transfers = []
        chunk_start = start
        while chunk_start <= end:
            chunk_end = min(chunk_start + self.chunk_size - 1, end)
            logs = await client.query_transfer_logs(chunk_start, chunk_end, to_address=recipient)
            for log in logs:
                if log.get("removed"):
                    continue
                fact = decode_transfer_log(log, client.token_address)
                if fact is not None and fact.to_address == recipient:
                    transfers.append(fact)
            chunk_start = chunk_end + 1

        transfers.sort(key=lambda t: (t.block_number, t.log_index if t.log_index is not None else 0))
        logger.info(
            "Scanned blocks %s-%s on chain %s for %s: %s transfers",
            start, end, chain_id, recipient, len(transfers),
        )
        return ScanResult(chain_id=chain_id, recipient=recipient, from_block=start, to_block=end, transfers=transfers)

    async def resolve_timestamps(self, chain_id: int, transfers: list[TransferFact]) -> list[TransferFact]:
        """Fill in block timestamps, one block fetch per distinct block.

        A block that cannot be fetched leaves its transfers at timestamp 0.
        """
        client = self.chains.get(chain_id)
        timestamps: dict[int, int] = {}
        for block_number in sorted({t.block_number for t in transfers}):
            try:
                block = await client.get_block(block_number)
            except ChainUnavailable as exc:
                logger.warning("Timestamp for block %s unavailable: %s", block_number, exc.detail)
                block = None
            timestamps[block_number] = block["timestamp"] if block else 0
        return [t.with_timestamp(timestamps[t.block_number]) for t in transfers]
