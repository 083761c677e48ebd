from eth_utils import is_address, to_checksum_address
from unifiedpay.core.errors import InvalidAddress


def is_valid_address(address: str) -> bool:
    if not isinstance(address, str):
        return False
    return is_address(address.strip())


def normalize_address(address: str) -> str:
    """Return the EIP-55 checksum form. All address comparisons use this."""
    if not is_valid_address(address):
        raise InvalidAddress(f"invalid wallet address: {address!r}")
    return to_checksum_address(address.strip())


def normalize_tx_hash(tx_hash: str) -> str:
    """Canonical lowercase form; nodes treat hex hashes case-insensitively."""
    return tx_hash.strip().lower()
