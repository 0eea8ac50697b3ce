"""Chain access layer - Recent wallet activity per network."""

from copytrade_replicator.chain.base import (
    ChainClientError,
    ChainDataSource,
    RateLimitedError,
    RPCError,
)
from copytrade_replicator.chain.evm import EvmChainClient
from copytrade_replicator.chain.solana import SolanaRpcClient

__all__ = [
    "ChainClientError",
    "ChainDataSource",
    "EvmChainClient",
    "RPCError",
    "RateLimitedError",
    "SolanaRpcClient",
]
