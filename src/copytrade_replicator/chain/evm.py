"""EVM (Ethereum / BSC) client with connection pooling and failover.

This module provides the EVM ``ChainDataSource`` used by the wallet poller:
- Recent activity discovered from ERC20 ``Transfer`` logs touching a wallet
- Transactions normalised into ``RawTx`` from the receipt and as-of-block
  native balances
- Retry logic with exponential backoff
- Failover to secondary RPC URL
"""

from __future__ import annotations

import asyncio
import logging
import time
from decimal import Decimal
from typing import Any

from web3 import AsyncWeb3
from web3.exceptions import TransactionNotFound, Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware
from web3.providers import AsyncHTTPProvider

from copytrade_replicator.chain.base import RateLimitedError, RPCError, is_rate_limit_message
from copytrade_replicator.models import Network, RawTx, TokenBalance, TxRef

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 1.0
DEFAULT_LOOKBACK_BLOCKS = 200

# keccak("Transfer(address,address,uint256)")
TRANSFER_EVENT_SIGNATURE = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
WEI_PER_GWEI = Decimal(10) ** 9
WEI_PER_ETHER = Decimal(10) ** 18


def _hex(value: Any) -> str:
    hexed = value.hex() if hasattr(value, "hex") else str(value)
    return hexed if hexed.startswith("0x") else "0x" + hexed


def _pad_topic_address(address: str) -> str:
    return "0x" + address.lower().replace("0x", "").zfill(64)


def _topic_to_address(topic: Any) -> str:
    # topic may be HexBytes or bytes-like.
    hexed = topic.hex() if hasattr(topic, "hex") else str(topic)
    if hexed.startswith("0x"):
        hexed = hexed[2:]
    return ("0x" + hexed[-40:]).lower()


def _log_amount(data: Any) -> Decimal:
    hexed = _hex(data)[2:]
    return Decimal(int(hexed, 16)) if hexed else Decimal("0")


class EvmChainClient:
    """EVM data source with retry and failover.

    Example:
        ```python
        client = EvmChainClient(Network.ETHEREUM, "https://eth.llamarpc.com")
        refs = await client.list_recent_transactions("0x...", limit=1)
        tx = await client.get_transaction(refs[0].tx_id)
        ```
    """

    def __init__(
        self,
        network: Network,
        rpc_url: str,
        *,
        fallback_rpc_url: str | None = None,
        lookback_blocks: int = DEFAULT_LOOKBACK_BLOCKS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
    ) -> None:
        if not network.is_evm:
            raise ValueError(f"{network.value} is not an EVM network")
        self.network = network
        self._rpc_url = rpc_url
        self._lookback_blocks = lookback_blocks
        self._max_retries = max_retries
        self._retry_delay = retry_delay_seconds

        self._w3 = self._new_web3_client(rpc_url)
        self._w3_fallback: AsyncWeb3[AsyncHTTPProvider] | None = None
        if fallback_rpc_url:
            self._w3_fallback = self._new_web3_client(fallback_rpc_url)

        # Track primary RPC health
        self._primary_healthy = True
        self._last_primary_check = 0.0
        self._primary_recovery_interval = 60.0

    def _new_web3_client(self, rpc_url: str) -> AsyncWeb3[AsyncHTTPProvider]:
        client = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        if self.network == Network.BSC:
            # BSC blocks carry PoA extraData
            try:
                client.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
            except Exception as e:
                logger.warning("Failed to inject PoA middleware (rpc=%s): %s", rpc_url, e)
        return client

    def _should_try_primary(self) -> bool:
        if self._primary_healthy:
            return True
        now = time.monotonic()
        if now - self._last_primary_check > self._primary_recovery_interval:
            self._last_primary_check = now
            return True
        return False

    async def _execute_with_retry(self, func_name: str, *args: Any) -> Any:
        """Execute a web3.eth call with retry and failover logic.

        Raises:
            RateLimitedError: If the provider throttles the call.
            RPCError: If all retries and failover fail.
        """
        last_error: Exception | None = None

        clients: list[tuple[AsyncWeb3[AsyncHTTPProvider], bool]] = []
        if self._should_try_primary():
            clients.append((self._w3, True))
        if self._w3_fallback is not None:
            clients.append((self._w3_fallback, False))

        for w3, is_primary in clients:
            delay = self._retry_delay
            for attempt in range(self._max_retries):
                try:
                    method = getattr(w3.eth, func_name)
                    result = await method(*args)
                    if is_primary:
                        self._primary_healthy = True
                    return result
                except TransactionNotFound:
                    raise
                except (Web3Exception, OSError, asyncio.TimeoutError) as e:
                    if is_rate_limit_message(str(e)):
                        raise RateLimitedError(f"{func_name}: {e}") from e
                    last_error = e
                    logger.warning(
                        "%s RPC %s failed (attempt %d/%d): %s",
                        "Primary" if is_primary else "Fallback",
                        func_name,
                        attempt + 1,
                        self._max_retries,
                        e,
                    )
                    if attempt < self._max_retries - 1:
                        await asyncio.sleep(delay)
                        delay *= 2
            if is_primary:
                self._primary_healthy = False
                self._last_primary_check = time.monotonic()

        raise RPCError(f"RPC call {func_name} failed after all retries: {last_error}")

    async def _transfer_logs(self, topics: list[Any], from_block: int, to_block: int) -> list[Any]:
        return list(
            await self._execute_with_retry(
                "get_logs",
                {"topics": topics, "fromBlock": from_block, "toBlock": to_block},
            )
        )

    async def list_recent_transactions(self, address: str, limit: int = 1) -> list[TxRef]:
        """Most recent transactions moving ERC20 tokens in or out of a wallet."""
        latest = int(await self._execute_with_retry("get_block_number"))
        from_block = max(0, latest - self._lookback_blocks)
        padded = _pad_topic_address(address)

        outgoing = await self._transfer_logs([TRANSFER_EVENT_SIGNATURE, padded], from_block, latest)
        incoming = await self._transfer_logs(
            [TRANSFER_EVENT_SIGNATURE, None, padded], from_block, latest
        )

        ordered = sorted(
            [*outgoing, *incoming],
            key=lambda log: (int(log["blockNumber"]), int(log.get("logIndex") or 0)),
            reverse=True,
        )
        refs: list[TxRef] = []
        seen: set[str] = set()
        for log in ordered:
            tx_hash = _hex(log["transactionHash"]).lower()
            if tx_hash in seen:
                continue
            seen.add(tx_hash)
            refs.append(TxRef(tx_id=tx_hash, slot=int(log["blockNumber"])))
            if len(refs) >= limit:
                break
        return refs

    async def get_transaction(self, tx_id: str) -> RawTx | None:
        """Normalise a transaction and its receipt into a ``RawTx``.

        Account keys are the sender and recipient. Incoming token transfers
        are reported as post-balances of the recipient and outgoing ones as
        pre-balances of the sender, so token attribution follows the same
        owner lookup as on Solana.
        """
        try:
            tx = await self._execute_with_retry("get_transaction", tx_id)
            receipt = await self._execute_with_retry("get_transaction_receipt", tx_id)
        except TransactionNotFound:
            return None

        block_number = int(receipt["blockNumber"])
        keys: list[str] = [str(tx["from"]).lower()]
        if tx.get("to") and str(tx["to"]).lower() not in keys:
            keys.append(str(tx["to"]).lower())

        pre: list[int] = []
        post: list[int] = []
        for key in keys:
            checksum = AsyncWeb3.to_checksum_address(key)
            pre.append(int(await self._execute_with_retry("get_balance", checksum, block_number - 1)))
            post.append(int(await self._execute_with_retry("get_balance", checksum, block_number)))

        incoming: list[TokenBalance] = []
        outgoing: list[TokenBalance] = []
        for log in receipt.get("logs") or []:
            topics = log.get("topics") or []
            if len(topics) < 3 or _hex(topics[0]).lower() != TRANSFER_EVENT_SIGNATURE:
                continue
            mint = str(log["address"]).lower()
            amount = _log_amount(log.get("data"))
            outgoing.append(TokenBalance(mint=mint, owner=_topic_to_address(topics[1]), amount=amount))
            incoming.append(TokenBalance(mint=mint, owner=_topic_to_address(topics[2]), amount=amount))

        gas_price = tx.get("gasPrice") or receipt.get("effectiveGasPrice")
        return RawTx(
            tx_id=_hex(tx["hash"]).lower(),
            network=self.network,
            account_keys=tuple(keys),
            pre_balances=tuple(pre),
            post_balances=tuple(post),
            pre_token_balances=tuple(outgoing),
            post_token_balances=tuple(incoming),
            failed=int(receipt.get("status", 1)) == 0,
            gas_price_gwei=Decimal(int(gas_price)) / WEI_PER_GWEI if gas_price is not None else None,
        )

    async def get_native_balance(self, address: str) -> Decimal:
        """Latest native balance (ETH / BNB) of an address."""
        balance = await self._execute_with_retry(
            "get_balance", AsyncWeb3.to_checksum_address(address)
        )
        return Decimal(int(balance)) / WEI_PER_ETHER

    async def aclose(self) -> None:
        """Close async HTTP provider sessions."""
        providers = [self._w3.provider]
        if self._w3_fallback is not None:
            providers.append(self._w3_fallback.provider)

        for provider in providers:
            disconnect = getattr(provider, "disconnect", None)
            if not callable(disconnect):
                continue
            try:
                result = disconnect()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.warning("Failed to close RPC provider session: %s", e)
