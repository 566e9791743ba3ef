from __future__ import annotations

import json
from decimal import Decimal

import httpx
import pytest

from claimledger.domain.errors import ExternalServiceError
from claimledger.domain.models import TransferStatus
from claimledger.infrastructure.escrow_client import HttpEscrowClient
from claimledger.infrastructure.ledger_client import (
    HttpLedgerClient,
    TransferSubmissionError,
    classify_status,
    parse_transaction,
)
from claimledger.infrastructure.price_client import HttpPriceSource

RPC_URL = "http://rpc.test"
SIGNER_URL = "http://signer.test"


def _rpc_result(result):
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": result})


def test_parse_transaction_computes_balance_deltas() -> None:
    result = {
        "meta": {"err": None, "preBalances": [1_000, 500, 7], "postBalances": [400, 1_100, 7]},
        "transaction": {"message": {"accountKeys": ["payer", {"pubkey": "fee"}, "program"]}},
    }

    tx = parse_transaction("sig1", result)

    assert tx.payer == "payer"
    assert tx.error is None
    assert tx.balance_changes == {"payer": -600, "fee": 600, "program": 0}


def test_parse_transaction_keeps_error() -> None:
    tx = parse_transaction("sig1", {"meta": {"err": {"InstructionError": [0, "Custom"]}}})

    assert tx.error is not None
    assert tx.payer is None


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, TransferStatus.PENDING),
        ({"err": None, "confirmationStatus": "processed"}, TransferStatus.PENDING),
        ({"err": None, "confirmationStatus": "confirmed"}, TransferStatus.CONFIRMED),
        ({"err": None, "confirmationStatus": "finalized"}, TransferStatus.CONFIRMED),
        ({"err": {"code": 1}, "confirmationStatus": "confirmed"}, TransferStatus.FAILED),
    ],
)
def test_classify_status(value, expected) -> None:
    assert classify_status(value) is expected


@pytest.mark.asyncio
async def test_ledger_client_reads_over_json_rpc() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        seen.append(body["method"])
        if body["method"] == "getTransaction":
            return _rpc_result(None)
        if body["method"] == "getSignatureStatuses":
            return _rpc_result({"value": [{"err": None, "confirmationStatus": "finalized"}]})
        return _rpc_result({"value": {"blockhash": "hash-1"}})

    client = HttpLedgerClient(
        RPC_URL, SIGNER_URL, client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )

    assert await client.get_transaction("sig1") is None
    assert await client.confirm_transaction("sig1") is TransferStatus.CONFIRMED
    assert await client.get_freshness_token() == "hash-1"
    assert seen == ["getTransaction", "getSignatureStatuses", "getLatestBlockhash"]
    await client.aclose()


@pytest.mark.asyncio
async def test_ledger_client_maps_rpc_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32000}})

    client = HttpLedgerClient(
        RPC_URL, SIGNER_URL, client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )

    with pytest.raises(ExternalServiceError) as excinfo:
        await client.get_transaction_status("sig1")
    assert excinfo.value.context["method"] == "getSignatureStatuses"


@pytest.mark.asyncio
async def test_submit_token_transfer_posts_to_signer() -> None:
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"signature": "transfer-sig"})

    client = HttpLedgerClient(
        RPC_URL,
        SIGNER_URL + "/",
        token_mint="Mint1",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )

    signature = await client.submit_token_transfer("dest", 1_500, "hash-1")

    assert signature == "transfer-sig"
    assert captured["url"] == f"{SIGNER_URL}/transfers"
    assert captured["body"]["amount"] == "1500"
    assert captured["body"]["mint"] == "Mint1"
    assert captured["body"]["recentBlockhash"] == "hash-1"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [httpx.Response(503, text="busy"), httpx.Response(200, json={})],
)
async def test_submit_token_transfer_rejections(response: httpx.Response) -> None:
    client = HttpLedgerClient(
        RPC_URL,
        SIGNER_URL,
        client=httpx.AsyncClient(transport=httpx.MockTransport(lambda request: response)),
    )

    with pytest.raises(TransferSubmissionError):
        await client.submit_token_transfer("dest", 1, "hash-1")


def _price_source(handler) -> HttpPriceSource:
    return HttpPriceSource(
        "http://pyth.test/latest",
        "http://gecko.test/price",
        feed_id="feed-1",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


@pytest.mark.asyncio
async def test_price_from_primary_oracle() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.host == "pyth.test"
        return httpx.Response(200, json={"parsed": [{"price": {"price": "15012345678", "expo": -8}}]})

    assert await _price_source(handler).native_price_usd() == Decimal("150.12345678")


@pytest.mark.asyncio
async def test_price_falls_back_when_primary_fails() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "pyth.test":
            return httpx.Response(500)
        return httpx.Response(200, json={"solana": {"usd": 142.5}})

    assert await _price_source(handler).native_price_usd() == Decimal("142.5")


@pytest.mark.asyncio
async def test_price_unavailable_when_both_sources_fail() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "pyth.test":
            return httpx.Response(200, json={"parsed": []})
        return httpx.Response(200, json={"solana": {"usd": 0}})

    with pytest.raises(ExternalServiceError):
        await _price_source(handler).native_price_usd()


@pytest.mark.asyncio
async def test_escrow_client_reads_stream_amounts() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/streams/missing":
            return httpx.Response(404)
        return httpx.Response(200, json={"vestedAmount": "700", "withdrawnAmount": "100"})

    client = HttpEscrowClient(
        "http://escrow.test/", client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )

    assert await client.get_vested_amount("e1") == 700
    assert await client.get_withdrawn_amount("e1") == 100
    with pytest.raises(ExternalServiceError) as excinfo:
        await client.get_vested_amount("missing")
    assert excinfo.value.context["escrow_id"] == "missing"
