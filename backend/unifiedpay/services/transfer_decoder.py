"""
Decode ERC-20 Transfer(from, to, value) events out of raw receipt logs.

Logs that are not Transfer events of the configured token are not errors:
a payment transaction can carry events from routers, permit helpers or
other tokens, and those are skipped.
"""
from dataclasses import dataclass, replace
from typing import Iterable, Optional
from eth_utils import to_checksum_address
from unifiedpay.core.wallet import normalize_tx_hash
from unifiedpay.services.chains import TRANSFER_EVENT_TOPIC

_WORD_HEX_LEN = 64


@dataclass(frozen=True)
class TransferFact:
    tx_hash: str
    from_address: str
    to_address: str
    amount: int  # smallest unit
    block_number: int
    timestamp: Optional[int] = None  # unix seconds, None until resolved
    log_index: Optional[int] = None

    def with_timestamp(self, timestamp: int) -> "TransferFact":
        return replace(self, timestamp=timestamp)


def _strip_word(value) -> Optional[str]:
    if not isinstance(value, str):
        return None
    body = value.lower().removeprefix("0x")
    if len(body) != _WORD_HEX_LEN:
        return None
    try:
        int(body, 16)
    except ValueError:
        return None
    return body


def _word_to_address(word: str) -> Optional[str]:
    # Indexed address topics are left-padded with 12 zero bytes
    if word[:24] != "0" * 24:
        return None
    return to_checksum_address("0x" + word[24:])


def _optional_int(value) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    try:
        return int(value, 16)
    except (TypeError, ValueError):
        return None


def decode_transfer_log(log: dict, token_address: str, tx_hash: Optional[str] = None, block_number: Optional[int] = None) -> Optional[TransferFact]:
    """Return the TransferFact carried by ``log``, or None if it is not one."""
    if not isinstance(log, dict):
        return None
    address = log.get("address")
    if not isinstance(address, str) or address.lower() != token_address.lower():
        return None

    topics = log.get("topics") or []
    if len(topics) != 3 or not isinstance(topics[0], str) or topics[0].lower() != TRANSFER_EVENT_TOPIC:
        return None

    from_word = _strip_word(topics[1])
    to_word = _strip_word(topics[2])
    data_word = _strip_word(log.get("data"))
    if from_word is None or to_word is None or data_word is None:
        return None

    from_address = _word_to_address(from_word)
    to_address = _word_to_address(to_word)
    if from_address is None or to_address is None:
        return None

    fact_block = block_number if block_number is not None else _optional_int(log.get("blockNumber"))
    fact_hash = tx_hash or log.get("transactionHash")
    if fact_block is None or not isinstance(fact_hash, str) or not fact_hash:
        return None

    return TransferFact(
        tx_hash=normalize_tx_hash(fact_hash),
        from_address=from_address,
        to_address=to_address,
        amount=int(data_word, 16),
        block_number=fact_block,
        log_index=_optional_int(log.get("logIndex")),
    )


def decode_transfers(logs: Iterable[dict], token_address: str, tx_hash: Optional[str] = None, block_number: Optional[int] = None) -> list[TransferFact]:
    facts = []
    for log in logs:
        fact = decode_transfer_log(log, token_address, tx_hash=tx_hash, block_number=block_number)
        if fact is not None:
            facts.append(fact)
    return facts
