"""Domain errors raised by the verification engine.

Routers translate these into HTTP responses; services never raise raw
provider or driver exceptions past their own boundary.
"""


class MalformedAmount(ValueError):
    """An amount string cannot be converted to smallest units without loss."""


class InvalidAddress(ValueError):
    """A wallet or contract address is not a valid EVM address."""


class UnsupportedChain(ValueError):
    """The chain id is unknown or has no token contract configured."""

    def __init__(self, chain_id: int, detail: str = "chain not supported"):
        super().__init__(f"{detail} (chain id {chain_id})")
        self.chain_id = chain_id


class ChainUnavailable(Exception):
    """Transient RPC failure: timeout, transport error, rate limit, bad payload.

    Means "unknown, try again"; never evidence that a payment is invalid.
    """

    def __init__(self, chain_id: int, detail: str):
        super().__init__(f"chain {chain_id} unavailable: {detail}")
        self.chain_id = chain_id
        self.detail = detail


class DuplicateTxHash(Exception):
    """The ledger already holds a payment for this transaction hash."""

    def __init__(self, tx_hash: str):
        super().__init__(f"payment already recorded for {tx_hash}")
        self.tx_hash = tx_hash


class ItemNotFound(LookupError):
    def __init__(self, item_id: str):
        super().__init__(f"payment item {item_id} not found")
        self.item_id = item_id


class PaymentRejected(Exception):
    """A submitted payment failed on-chain verification."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason
