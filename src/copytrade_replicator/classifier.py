"""Balance-delta trade classifier.

Turns a raw transaction into a ``TradeIntent`` for a tracked wallet without
decoding swap instructions: a native outflow beyond a noise threshold is a
buy, a native inflow is a sell. The traded token is whichever mint the
wallet holds a balance entry for. The result is approximate.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from decimal import Decimal

from copytrade_replicator.models import (
    UNKNOWN_TOKEN,
    RawTx,
    TokenBalance,
    TradeAction,
    TradeIntent,
)

logger = logging.getLogger(__name__)

# Native-currency movements at or below this size are treated as fee noise.
DEFAULT_MIN_NATIVE_DELTA = Decimal("0.01")


def _same_address(a: str | None, b: str, *, case_insensitive: bool) -> bool:
    if a is None:
        return False
    return a.lower() == b.lower() if case_insensitive else a == b


class TradeClassifier:
    """Classifies transactions for a given wallet."""

    def __init__(self, *, min_native_delta: Decimal = DEFAULT_MIN_NATIVE_DELTA) -> None:
        self._min_delta = min_native_delta

    def classify(self, raw_tx: RawTx, wallet: str) -> TradeIntent:
        """Classify a transaction from the point of view of ``wallet``.

        Returns:
            A ``TradeIntent``; its action is ``UNKNOWN`` when the transaction
            failed, does not involve the wallet, or moves no meaningful
            native amount.
        """
        if raw_tx.failed:
            return TradeIntent.unknown(raw_tx, wallet)

        case_insensitive = raw_tx.network.is_evm
        index = next(
            (
                i
                for i, key in enumerate(raw_tx.account_keys)
                if _same_address(key, wallet, case_insensitive=case_insensitive)
            ),
            None,
        )
        if (
            index is None
            or index >= len(raw_tx.pre_balances)
            or index >= len(raw_tx.post_balances)
        ):
            logger.debug("Wallet %s not found in transaction %s", wallet, raw_tx.tx_id)
            return TradeIntent.unknown(raw_tx, wallet)

        scale = Decimal(10) ** raw_tx.network.native_decimals
        delta = Decimal(raw_tx.post_balances[index] - raw_tx.pre_balances[index]) / scale

        if delta < -self._min_delta:
            action = TradeAction.BUY
        elif delta > self._min_delta:
            action = TradeAction.SELL
        else:
            return TradeIntent.unknown(raw_tx, wallet)

        return TradeIntent(
            source_wallet=wallet,
            network=raw_tx.network,
            action=action,
            token_address=self._token_address(raw_tx, wallet, case_insensitive=case_insensitive),
            native_amount=abs(delta),
            tx_id=raw_tx.tx_id,
            observed_at=raw_tx.block_time or datetime.now(UTC),
            gas_price_gwei=raw_tx.gas_price_gwei,
        )

    @staticmethod
    def _token_address(raw_tx: RawTx, wallet: str, *, case_insensitive: bool) -> str:
        def owned(balances: tuple[TokenBalance, ...]) -> TokenBalance | None:
            return next(
                (
                    b
                    for b in balances
                    if _same_address(b.owner, wallet, case_insensitive=case_insensitive)
                ),
                None,
            )

        match = owned(raw_tx.post_token_balances) or owned(raw_tx.pre_token_balances)
        return match.mint if match and match.mint else UNKNOWN_TOKEN
