"""Tests for the Solana JSON-RPC client."""

import json
from decimal import Decimal
from unittest.mock import AsyncMock

import httpx
import pytest

from copytrade_replicator.chain.base import RateLimitedError, RPCError
from copytrade_replicator.chain.solana import SolanaRpcClient
from copytrade_replicator.models import Network

PRIMARY = "https://primary.rpc"
FALLBACK = "https://fallback.rpc"
WALLET = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"

TRANSACTION = {
    "blockTime": 1760000000,
    "meta": {
        "err": None,
        "preBalances": [5000000000, 3000000000],
        "postBalances": [4999995000, 1000000000],
        "preTokenBalances": [],
        "postTokenBalances": [
            {
                "accountIndex": 2,
                "mint": "EPjFWr6bLqVgZ5mN8dT4cR3yH2xK9pQ1sA7uJ6wE5iO",
                "owner": WALLET,
                "uiTokenAmount": {"uiAmountString": "42.5"},
            }
        ],
    },
    "transaction": {
        "signatures": ["sig1"],
        "message": {"accountKeys": ["feePayer111", WALLET]},
    },
}


class RpcStub:
    """Routes JSON-RPC methods to canned responses and records calls."""

    def __init__(self, handlers: dict) -> None:
        self.handlers = handlers
        self.calls: list[tuple[str, str]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        url = str(request.url).rstrip("/")
        self.calls.append((url, body["method"]))
        handler = self.handlers[body["method"]]
        return handler(url, body)


def result(value):
    return lambda url, body: httpx.Response(
        200, json={"jsonrpc": "2.0", "id": body["id"], "result": value}
    )


def make_client(stub: RpcStub, **kwargs) -> SolanaRpcClient:
    return SolanaRpcClient(
        PRIMARY,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(stub)),
        retry_delay_seconds=0,
        **kwargs,
    )


class TestSolanaRpcClient:
    @pytest.mark.asyncio
    async def test_list_recent_transactions(self) -> None:
        stub = RpcStub(
            {
                "getSignaturesForAddress": result(
                    [{"signature": "sig1", "slot": 10, "blockTime": 1760000000, "err": None}]
                )
            }
        )
        client = make_client(stub)

        refs = await client.list_recent_transactions(WALLET, limit=1)

        assert [r.tx_id for r in refs] == ["sig1"]
        assert refs[0].slot == 10
        assert not refs[0].failed
        assert client.network == Network.SOLANA

    @pytest.mark.asyncio
    async def test_get_transaction_parses_and_caches(self) -> None:
        redis = AsyncMock()
        redis.get = AsyncMock(return_value=None)
        stub = RpcStub({"getTransaction": result(TRANSACTION)})
        client = make_client(stub, redis=redis)

        raw = await client.get_transaction("sig1")

        assert raw is not None
        assert raw.tx_id == "sig1"
        assert raw.account_keys == ("feePayer111", WALLET)
        assert raw.pre_balances[1] - raw.post_balances[1] == 2 * 10**9
        assert raw.post_token_balances[0].amount == Decimal("42.5")
        redis.set.assert_awaited_once()
        assert redis.set.await_args.args[0] == "solana:tx:sig1"

    @pytest.mark.asyncio
    async def test_cached_transaction_skips_rpc(self) -> None:
        redis = AsyncMock()
        redis.get = AsyncMock(return_value=json.dumps(TRANSACTION).encode())
        stub = RpcStub({})
        client = make_client(stub, redis=redis)

        raw = await client.get_transaction("sig1")

        assert raw is not None
        assert stub.calls == []

    @pytest.mark.asyncio
    async def test_missing_transaction(self) -> None:
        client = make_client(RpcStub({"getTransaction": result(None)}))

        assert await client.get_transaction("nope") is None

    @pytest.mark.asyncio
    async def test_native_balance(self) -> None:
        client = make_client(
            RpcStub({"getBalance": result({"context": {"slot": 1}, "value": 1500000000})})
        )

        assert await client.get_native_balance(WALLET) == Decimal("1.5")

    @pytest.mark.asyncio
    async def test_http_429_is_not_retried(self) -> None:
        stub = RpcStub({"getBalance": lambda url, body: httpx.Response(429)})
        client = make_client(stub)

        with pytest.raises(RateLimitedError):
            await client.get_native_balance(WALLET)

        assert len(stub.calls) == 1

    @pytest.mark.asyncio
    async def test_rpc_error_message_with_rate_limit(self) -> None:
        def throttled(url, body):
            return httpx.Response(
                200,
                json={"jsonrpc": "2.0", "id": body["id"], "error": {"message": "Too Many Requests"}},
            )

        client = make_client(RpcStub({"getBalance": throttled}))

        with pytest.raises(RateLimitedError):
            await client.get_native_balance(WALLET)

    @pytest.mark.asyncio
    async def test_failover_to_fallback(self) -> None:
        def flaky(url, body):
            if url == PRIMARY:
                return httpx.Response(503)
            return result(7 * 10**9)(url, body)

        stub = RpcStub({"getBalance": flaky})
        client = make_client(stub, fallback_rpc_url=FALLBACK, max_retries=2)

        assert await client.get_native_balance(WALLET) == Decimal("7")
        assert [url for url, _ in stub.calls] == [PRIMARY, PRIMARY, FALLBACK]

        # The unhealthy primary is skipped until the recovery interval passes.
        await client.get_native_balance(WALLET)
        assert stub.calls[-1][0] == FALLBACK

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise(self) -> None:
        stub = RpcStub({"getBalance": lambda url, body: httpx.Response(500)})
        client = make_client(stub, max_retries=3)

        with pytest.raises(RPCError, match="failed after all retries"):
            await client.get_native_balance(WALLET)

        assert len(stub.calls) == 3
