import pytest
from unittest.mock import AsyncMock, patch, MagicMock
from unifiedpay.core.errors import InvalidAddress, MalformedAmount, UnsupportedChain
from unifiedpay.services.chains import ChainConfig, ChainRegistry
from unifiedpay.services.payment_verifier import (
    PaymentVerifier, VerificationStatus, REASON_NOT_FOUND, REASON_REVERTED, REASON_NO_TRANSFER,
)
from tests.chain_fakes import CHAIN_ID, TOKEN, OTHER_TOKEN, CREATOR, PAYER, STRANGER, tx_hash, transfer_log


def _json_response(result):
    response = MagicMock()
    response.status_code = 200
    response.json.return_value = {"jsonrpc": "2.0", "id": 1, "result": result}
    return response


@pytest.mark.asyncio
async def test_verify_valid_payment():
    transfer_topic = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
    to_addr_padded = "0x" + "0" * 24 + "abcdef1234567890abcdef1234567890abcdef12"
    from_addr_padded = "0x" + "0" * 24 + "1234567890abcdef1234567890abcdef12345678"
    tx = tx_hash(1)

    mock_receipt = {
        "transactionHash": tx,
        "status": "0x1",
        "blockNumber": "0x64",
        "logs": [
            {
                "address": TOKEN.lower(),
                "topics": [transfer_topic, from_addr_padded, to_addr_padded],
                "data": "0x0000000000000000000000000000000000000000000000000000000002faf080",
            }
        ],
    }

    with patch("unifiedpay.services.chains.httpx.AsyncClient") as MockClient:
        mock_client = AsyncMock()
        mock_client.post = AsyncMock(side_effect=[
            _json_response(mock_receipt),
            _json_response({"number": "0x64", "timestamp": "0x6553f100"}),
        ])
        mock_client.aclose = AsyncMock()
        MockClient.return_value = mock_client

        config = ChainConfig(chain_id=CHAIN_ID, name="Ethereum Sepolia", rpc_url="https://rpc.test", token_address=TOKEN)
        verifier = PaymentVerifier(ChainRegistry({CHAIN_ID: config}))
        result = await verifier.verify(
            CHAIN_ID, tx,
            expected_recipient="0xabcdef1234567890abcdef1234567890abcdef12",
            expected_amount=50_000_000,
        )
        assert result.is_valid is True
        assert result.amount == 50_000_000
        assert result.from_address == PAYER
        assert result.to_address == CREATOR
        assert result.block_number == 100
        assert result.timestamp == 0x6553f100
        await verifier.chains.aclose()
        mock_client.aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_verify_wrong_recipient(rpc, verifier):
    tx = tx_hash(2)
    rpc.add_payment(tx, [transfer_log(PAYER, STRANGER, 50_000_000, tx)])

    result = await verifier.verify(CHAIN_ID, tx, CREATOR, 50_000_000)
    assert result.status == VerificationStatus.invalid
    assert result.error == REASON_NO_TRANSFER
    assert result.block_number == 100


@pytest.mark.asyncio
async def test_recipient_comparison_ignores_case(rpc, verifier):
    tx = tx_hash(3)
    rpc.add_payment(tx, [transfer_log(PAYER, CREATOR, 1_000_000, tx)])

    result = await verifier.verify(CHAIN_ID, tx, CREATOR.lower(), "1000000")
    assert result.is_valid
    assert result.to_address == CREATOR


@pytest.mark.asyncio
async def test_amount_one_unit_short_is_rejected(rpc, verifier):
    tx = tx_hash(4)
    rpc.add_payment(tx, [transfer_log(PAYER, CREATOR, 999_999, tx)])

    result = await verifier.verify(CHAIN_ID, tx, CREATOR, 1_000_000)
    assert not result.is_valid
    assert result.error == "amount mismatch: expected 1000000, got 999999"
    # the observed transfer is still reported
    assert result.amount == 999_999
    assert result.from_address == PAYER


@pytest.mark.asyncio
async def test_overpayment_is_also_a_mismatch(rpc, verifier):
    tx = tx_hash(5)
    rpc.add_payment(tx, [transfer_log(PAYER, CREATOR, 1_000_001, tx)])

    result = await verifier.verify(CHAIN_ID, tx, CREATOR, 1_000_000)
    assert result.error == "amount mismatch: expected 1000000, got 1000001"


@pytest.mark.asyncio
async def test_without_expected_amount_any_positive_transfer_is_valid(rpc, verifier):
    tx = tx_hash(6)
    rpc.add_payment(tx, [transfer_log(PAYER, CREATOR, 7_300_000, tx)])

    result = await verifier.verify(CHAIN_ID, tx, CREATOR)
    assert result.is_valid
    assert result.amount == 7_300_000


@pytest.mark.asyncio
async def test_zero_value_transfer_is_not_a_payment(rpc, verifier):
    tx = tx_hash(7)
    rpc.add_payment(tx, [transfer_log(PAYER, CREATOR, 0, tx)])

    result = await verifier.verify(CHAIN_ID, tx, CREATOR, "")
    assert not result.is_valid
    assert result.error.startswith("amount mismatch")


@pytest.mark.asyncio
async def test_transaction_not_found(verifier):
    result = await verifier.verify(CHAIN_ID, tx_hash(404), CREATOR, 1)
    assert result.status == VerificationStatus.invalid
    assert result.error == REASON_NOT_FOUND


@pytest.mark.asyncio
async def test_reverted_transaction(rpc, verifier):
    tx = tx_hash(8)
    rpc.add_payment(tx, [transfer_log(PAYER, CREATOR, 1_000_000, tx)], status=0)

    result = await verifier.verify(CHAIN_ID, tx, CREATOR, 1_000_000)
    assert result.error == REASON_REVERTED
    assert rpc.count("eth_getBlockByNumber") == 0


@pytest.mark.asyncio
async def test_transfer_of_another_token_does_not_count(rpc, verifier):
    tx = tx_hash(9)
    rpc.add_payment(tx, [transfer_log(PAYER, CREATOR, 1_000_000, tx, token=OTHER_TOKEN)])

    result = await verifier.verify(CHAIN_ID, tx, CREATOR, 1_000_000)
    assert result.error == REASON_NO_TRANSFER


@pytest.mark.asyncio
async def test_first_transfer_to_recipient_decides(rpc, verifier):
    tx = tx_hash(10)
    rpc.add_payment(tx, [
        transfer_log(PAYER, STRANGER, 50_000, tx, log_index=0),
        transfer_log(PAYER, CREATOR, 500_000, tx, log_index=1),
        transfer_log(PAYER, CREATOR, 1_000_000, tx, log_index=2),
    ])

    result = await verifier.verify(CHAIN_ID, tx, CREATOR, 1_000_000)
    assert not result.is_valid
    assert result.amount == 500_000


@pytest.mark.asyncio
async def test_timeout_is_unavailable_not_invalid(rpc, verifier, cache):
    tx = tx_hash(11)
    rpc.add_payment(tx, [transfer_log(PAYER, CREATOR, 1_000_000, tx)])
    rpc.timeouts.add("eth_getTransactionReceipt")

    result = await verifier.verify(CHAIN_ID, tx, CREATOR, 1_000_000)
    assert result.status == VerificationStatus.unavailable
    assert not result.is_valid
    assert cache.get(tx) is None

    # once the node answers again the same query verifies
    rpc.timeouts.clear()
    result = await verifier.verify(CHAIN_ID, tx, CREATOR, 1_000_000)
    assert result.is_valid
    assert result.cached is False


@pytest.mark.asyncio
async def test_rate_limit_error_is_unavailable(rpc, verifier):
    rpc.errors["eth_getTransactionReceipt"] = "rate limit exceeded"
    result = await verifier.verify(CHAIN_ID, tx_hash(12), CREATOR, 1)
    assert result.is_unavailable
    assert "rate limit exceeded" in result.error


@pytest.mark.asyncio
async def test_block_fetch_failure_keeps_verdict(rpc, verifier):
    tx = tx_hash(13)
    rpc.add_payment(tx, [transfer_log(PAYER, CREATOR, 1_000_000, tx)])
    rpc.timeouts.add("eth_getBlockByNumber")

    result = await verifier.verify(CHAIN_ID, tx, CREATOR, 1_000_000)
    assert result.is_valid
    assert result.timestamp == 0


@pytest.mark.asyncio
async def test_cached_verdict_skips_rpc(rpc, verifier):
    tx = tx_hash(14)
    rpc.add_payment(tx, [transfer_log(PAYER, CREATOR, 1_000_000, tx)], timestamp=1_700_000_500)

    first = await verifier.verify(CHAIN_ID, tx, CREATOR, 1_000_000)
    calls = len(rpc.calls)
    second = await verifier.verify(CHAIN_ID, tx, CREATOR, 1_000_000)

    assert len(rpc.calls) == calls
    assert second.cached is True
    assert first.cached is False
    assert second.status == first.status
    assert second.amount == first.amount
    assert second.timestamp == 1_700_000_500


@pytest.mark.asyncio
async def test_invalid_verdicts_are_cached_too(rpc, verifier):
    tx = tx_hash(15)
    rpc.add_payment(tx, [transfer_log(PAYER, CREATOR, 999_999, tx)])

    await verifier.verify(CHAIN_ID, tx, CREATOR, 1_000_000)
    second = await verifier.verify(CHAIN_ID, tx, CREATOR, 1_000_000)
    assert second.cached is True
    assert not second.is_valid
    assert rpc.count("eth_getTransactionReceipt") == 1


@pytest.mark.asyncio
async def test_cache_does_not_answer_a_different_question(rpc, verifier):
    tx = tx_hash(16)
    rpc.add_payment(tx, [transfer_log(PAYER, CREATOR, 1_000_000, tx)])

    assert (await verifier.verify(CHAIN_ID, tx, CREATOR, 1_000_000)).is_valid
    other = await verifier.verify(CHAIN_ID, tx, STRANGER, 1_000_000)
    assert other.cached is False
    assert other.error == REASON_NO_TRANSFER
    assert rpc.count("eth_getTransactionReceipt") == 2


@pytest.mark.asyncio
async def test_repeated_verification_is_deterministic(rpc, chains):
    tx = tx_hash(17)
    rpc.add_payment(tx, [transfer_log(PAYER, CREATOR, 2_500_000, tx)])
    verifier = PaymentVerifier(chains)  # no cache

    results = [await verifier.verify(CHAIN_ID, tx, CREATOR, 2_500_000) for _ in range(3)]
    assert len(set(results)) == 1
    assert rpc.count("eth_getTransactionReceipt") == 3


@pytest.mark.asyncio
async def test_rejects_bad_inputs_before_any_rpc(rpc, verifier):
    with pytest.raises(InvalidAddress):
        await verifier.verify(CHAIN_ID, tx_hash(1), "0xnot-an-address", 1)
    with pytest.raises(MalformedAmount):
        await verifier.verify(CHAIN_ID, tx_hash(1), CREATOR, "1.5")
    with pytest.raises(UnsupportedChain):
        await verifier.verify(1, tx_hash(1), CREATOR, 1)
    assert rpc.calls == []


@pytest.mark.asyncio
async def test_result_serializes_amount_as_string(rpc, verifier):
    tx = tx_hash(18)
    big = 10 ** 30
    rpc.add_payment(tx, [transfer_log(PAYER, CREATOR, big, tx)])

    result = await verifier.verify(CHAIN_ID, tx, CREATOR, str(big))
    data = result.as_dict()
    assert data["amount"] == str(big)
    assert data["status"] == "valid"
    assert data["is_valid"] is True
