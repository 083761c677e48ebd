"""
Chain access layer.

One long-lived JSON-RPC client per chain id, created on first use and kept
until shutdown. Every transport or provider failure surfaces as
ChainUnavailable so callers can tell "unknown" apart from "invalid".
"""
import logging
import threading
from dataclasses import dataclass
from typing import Optional
import httpx
from eth_utils import keccak
from unifiedpay.config import Settings
from unifiedpay.core.errors import ChainUnavailable, UnsupportedChain

logger = logging.getLogger(__name__)

TRANSFER_EVENT_TOPIC = "0x" + keccak(text="Transfer(address,address,uint256)").hex()

ARC_TESTNET = 5042002
ETHEREUM_SEPOLIA = 11155111
POLYGON_AMOY = 80002
AVALANCHE_FUJI = 43113
BASE_SEPOLIA = 84532


@dataclass(frozen=True)
class ChainConfig:
    chain_id: int
    name: str
    rpc_url: str
    token_address: str
    token_decimals: int = 6


def chains_from_settings(settings: Settings) -> dict[int, ChainConfig]:
    """Build the chain table; chains without an RPC URL or token are skipped."""
    table = [
        (ARC_TESTNET, "Arc Testnet", settings.ARC_RPC_URL, settings.USDC_ADDRESS_ARC_TESTNET),
        (ETHEREUM_SEPOLIA, "Ethereum Sepolia", settings.ETHEREUM_SEPOLIA_RPC_URL, settings.USDC_ADDRESS_ETHEREUM_SEPOLIA),
        (POLYGON_AMOY, "Polygon Amoy", settings.POLYGON_AMOY_RPC_URL, settings.USDC_ADDRESS_POLYGON_AMOY),
        (AVALANCHE_FUJI, "Avalanche Fuji", settings.AVALANCHE_FUJI_RPC_URL, settings.USDC_ADDRESS_AVALANCHE_FUJI),
        (BASE_SEPOLIA, "Base Sepolia", settings.BASE_SEPOLIA_RPC_URL, settings.USDC_ADDRESS_BASE_SEPOLIA),
    ]
    chains = {}
    for chain_id, name, rpc_url, token in table:
        if not rpc_url or not token:
            continue
        chains[chain_id] = ChainConfig(
            chain_id=chain_id,
            name=name,
            rpc_url=rpc_url,
            token_address=token,
            token_decimals=settings.TOKEN_DECIMALS,
        )
    return chains


def _hex_to_int(value) -> int:
    if isinstance(value, int):
        return value
    return int(value, 16)


class ChainClient:
    """Minimal async JSON-RPC client for one EVM chain."""

    def __init__(self, config: ChainConfig, timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._request_id = 0

    @property
    def chain_id(self) -> int:
        return self.config.chain_id

    @property
    def token_address(self) -> str:
        return self.config.token_address

    async def _call(self, method: str, params: list):
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "method": method, "params": params, "id": self._request_id}
        try:
            resp = await self.client.post(self.config.rpc_url, json=payload)
        except httpx.TimeoutException as exc:
            logger.warning("RPC %s timed out on chain %s", method, self.chain_id)
            raise ChainUnavailable(self.chain_id, f"{method} timed out") from exc
        except httpx.HTTPError as exc:
            logger.warning("RPC %s failed on chain %s: %s", method, self.chain_id, exc)
            raise ChainUnavailable(self.chain_id, f"{method} failed: {exc}") from exc

        if resp.status_code != 200:
            raise ChainUnavailable(self.chain_id, f"{method} returned HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise ChainUnavailable(self.chain_id, f"{method} returned invalid JSON") from exc

        if not isinstance(data, dict):
            raise ChainUnavailable(self.chain_id, f"{method} returned an unexpected payload")
        if data.get("error"):
            error = data["error"]
            message = error.get("message", error) if isinstance(error, dict) else error
            raise ChainUnavailable(self.chain_id, f"{method} error: {message}")
        return data.get("result")

    async def get_receipt(self, tx_hash: str) -> Optional[dict]:
        """Return the receipt with numeric fields decoded, or None if unknown."""
        receipt = await self._call("eth_getTransactionReceipt", [tx_hash])
        if not receipt:
            return None
        try:
            return {
                "transactionHash": receipt.get("transactionHash", tx_hash),
                "status": _hex_to_int(receipt.get("status", "0x0")),
                "blockNumber": _hex_to_int(receipt["blockNumber"]),
                "logs": receipt.get("logs") or [],
            }
        except (KeyError, TypeError, ValueError) as exc:
            raise ChainUnavailable(self.chain_id, "malformed receipt") from exc

    async def get_block(self, block_number: int) -> Optional[dict]:
        block = await self._call("eth_getBlockByNumber", [hex(block_number), False])
        if not block:
            return None
        try:
            return {"number": block_number, "timestamp": _hex_to_int(block["timestamp"])}
        except (KeyError, TypeError, ValueError) as exc:
            raise ChainUnavailable(self.chain_id, "malformed block") from exc

    async def get_block_number(self) -> int:
        result = await self._call("eth_blockNumber", [])
        try:
            return _hex_to_int(result)
        except (TypeError, ValueError) as exc:
            raise ChainUnavailable(self.chain_id, "malformed block number") from exc

    async def query_transfer_logs(
        self,
        from_block: int,
        to_block: int,
        from_address: Optional[str] = None,
        to_address: Optional[str] = None,
    ) -> list[dict]:
        """eth_getLogs on the token's Transfer event, filtered by indexed topics."""
        topics = [
            TRANSFER_EVENT_TOPIC,
            _address_topic(from_address) if from_address else None,
            _address_topic(to_address) if to_address else None,
        ]
        while topics and topics[-1] is None:
            topics.pop()
        result = await self._call("eth_getLogs", [{
            "address": self.token_address,
            "topics": topics,
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
        }])
        if not isinstance(result, list):
            raise ChainUnavailable(self.chain_id, "eth_getLogs returned an unexpected payload")
        return result

    async def aclose(self):
        await self.client.aclose()


def _address_topic(address: str) -> str:
    return "0x" + "0" * 24 + address.lower().removeprefix("0x")


class ChainRegistry:
    """Per-chain client cache owned by the application.

    Creation is idempotent under concurrent callers: if two callers race to
    build a client for the same chain, one wins and the other is discarded.
    """

    def __init__(self, chains: dict[int, ChainConfig], timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._chains = dict(chains)
        self._timeout = timeout
        self._transport = transport
        self._clients: dict[int, ChainClient] = {}
        self._lock = threading.Lock()
        self._discarded: list[ChainClient] = []

    @classmethod
    def from_settings(cls, settings: Settings) -> "ChainRegistry":
        return cls(chains_from_settings(settings), timeout=settings.RPC_TIMEOUT_SECONDS)

    def config(self, chain_id: int) -> ChainConfig:
        config = self._chains.get(chain_id)
        if config is None:
            raise UnsupportedChain(chain_id, "USDC address or RPC URL not configured")
        return config

    def supported_chain_ids(self) -> list[int]:
        return sorted(self._chains)

    def get(self, chain_id: int) -> ChainClient:
        client = self._clients.get(chain_id)
        if client is not None:
            return client

        config = self.config(chain_id)
        candidate = ChainClient(config, timeout=self._timeout, transport=self._transport)
        with self._lock:
            winner = self._clients.setdefault(chain_id, candidate)
            if winner is not candidate:
                self._discarded.append(candidate)
        return winner

    async def aclose(self):
        with self._lock:
            clients = list(self._clients.values()) + self._discarded
            self._clients.clear()
            self._discarded.clear()
        for client in clients:
            await client.aclose()
