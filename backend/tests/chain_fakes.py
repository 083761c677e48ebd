import json
import httpx
from eth_utils import to_checksum_address
from unifiedpay.services.chains import ChainConfig, ChainRegistry, TRANSFER_EVENT_TOPIC

CHAIN_ID = 11155111
TOKEN = "0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238"
OTHER_TOKEN = "0x41E94Eb019C0762f9Bfcf9Fb1E58725BfB0e7582"

CREATOR = to_checksum_address("0xabcdef1234567890abcdef1234567890abcdef12")
PAYER = to_checksum_address("0x1234567890abcdef1234567890abcdef12345678")
STRANGER = to_checksum_address("0x9999999999999999999999999999999999999999")


def tx_hash(n: int) -> str:
    return "0x" + format(n, "064x")


def address_topic(address: str) -> str:
    return "0x" + "0" * 24 + address.lower()[2:]


def transfer_log(from_address, to_address, amount, tx, block_number=100, token=TOKEN, log_index=0):
    return {
        "address": token.lower(),
        "topics": [TRANSFER_EVENT_TOPIC, address_topic(from_address), address_topic(to_address)],
        "data": "0x" + format(amount, "064x"),
        "transactionHash": tx,
        "blockNumber": hex(block_number),
        "logIndex": hex(log_index),
        "removed": False,
    }


def receipt(tx, logs, block_number=100, status=1):
    return {
        "transactionHash": tx,
        "status": hex(status),
        "blockNumber": hex(block_number),
        "logs": logs,
    }


class FakeRpc:
    """In-memory JSON-RPC node served through httpx.MockTransport."""

    def __init__(self):
        self.receipts = {}
        self.blocks = {}
        self.logs = []
        self.head = 0
        self.calls = []
        self.timeouts = set()
        self.errors = {}

    def add_payment(self, tx, logs, block_number=100, status=1, timestamp=1_700_000_000):
        self.receipts[tx] = receipt(tx, logs, block_number=block_number, status=status)
        self.blocks[block_number] = timestamp

    def count(self, method: str) -> int:
        return self.calls.count(method)

    def handler(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        method, params = payload["method"], payload["params"]
        self.calls.append(method)

        if method in self.timeouts:
            raise httpx.ReadTimeout("timed out", request=request)
        if method in self.errors:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "error": {"code": -32005, "message": self.errors[method]}})

        if method == "eth_getTransactionReceipt":
            result = self.receipts.get(params[0])
        elif method == "eth_getBlockByNumber":
            number = int(params[0], 16)
            ts = self.blocks.get(number)
            result = {"number": params[0], "timestamp": hex(ts)} if ts is not None else None
        elif method == "eth_blockNumber":
            result = hex(self.head)
        elif method == "eth_getLogs":
            result = self._filter_logs(params[0])
        else:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "error": {"code": -32601, "message": "method not found"}})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": result})

    def _filter_logs(self, flt):
        lo, hi = int(flt["fromBlock"], 16), int(flt["toBlock"], 16)
        topics = flt.get("topics", [])
        out = []
        for log in self.logs:
            if log["address"].lower() != flt["address"].lower():
                continue
            if not lo <= int(log["blockNumber"], 16) <= hi:
                continue
            if any(want is not None and (i >= len(log["topics"]) or log["topics"][i].lower() != want.lower())
                   for i, want in enumerate(topics)):
                continue
            out.append(log)
        return out

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def make_registry(rpc: FakeRpc, timeout: float = 5.0) -> ChainRegistry:
    chains = {CHAIN_ID: ChainConfig(chain_id=CHAIN_ID, name="Ethereum Sepolia", rpc_url="https://rpc.test", token_address=TOKEN)}
    return ChainRegistry(chains, timeout=timeout, transport=rpc.transport())
