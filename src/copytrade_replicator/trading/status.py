"""Per-(user, source wallet) trading status state machine.

States are ``active`` (the default when nothing is stored), ``paused``
(optionally until ``resume_at``) and ``stopped``. A pause whose
``resume_at`` has passed turns back into ``active`` the next time the
status is evaluated; there is no timer.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from copytrade_replicator.trading.models import (
    TradingState,
    UserSettingsStore,
    WalletStatusRecord,
)

logger = logging.getLogger(__name__)


class WalletTradingStatus:
    """Gate deciding whether intents from a source wallet reach a user."""

    def __init__(self, store: UserSettingsStore) -> None:
        self._store = store

    async def get(self, user_id: str, wallet: str) -> WalletStatusRecord:
        record = await self._store.get_wallet_status(user_id, wallet)
        return record or WalletStatusRecord(user_id=user_id, source_wallet=wallet)

    async def set_state(
        self,
        user_id: str,
        wallet: str,
        state: TradingState,
        resume_at: datetime | None = None,
    ) -> WalletStatusRecord:
        """Apply a user command.

        ``resume_at`` is only kept for ``paused``.
        """
        if resume_at is not None and resume_at.tzinfo is None:
            raise ValueError("resume_at must be timezone-aware")
        record = WalletStatusRecord(
            user_id=user_id,
            source_wallet=wallet,
            state=state,
            resume_at=resume_at if state == TradingState.PAUSED else None,
        )
        await self._store.save_wallet_status(record)
        logger.info(
            "Wallet %s for user %s set to %s%s",
            wallet,
            user_id,
            state.value,
            f" until {resume_at.isoformat()}" if record.resume_at else "",
        )
        return record

    async def pause(
        self,
        user_id: str,
        wallet: str,
        *,
        resume_at: datetime | None = None,
        duration: timedelta | None = None,
    ) -> WalletStatusRecord:
        if resume_at is not None and duration is not None:
            raise ValueError("Pass either resume_at or duration, not both")
        if duration is not None:
            resume_at = datetime.now(UTC) + duration
        return await self.set_state(user_id, wallet, TradingState.PAUSED, resume_at)

    async def resume(self, user_id: str, wallet: str) -> WalletStatusRecord:
        return await self.set_state(user_id, wallet, TradingState.ACTIVE)

    begin = resume

    async def stop(self, user_id: str, wallet: str) -> WalletStatusRecord:
        return await self.set_state(user_id, wallet, TradingState.STOPPED)

    async def is_active(self, user_id: str, wallet: str, *, now: datetime | None = None) -> bool:
        """Evaluate the gate, resuming an expired pause as a side effect."""
        record = await self._store.get_wallet_status(user_id, wallet)
        if record is None or record.state == TradingState.ACTIVE:
            return True
        if record.state == TradingState.STOPPED:
            return False

        now = now or datetime.now(UTC)
        if record.resume_at is not None and record.resume_at <= now:
            await self._store.save_wallet_status(
                WalletStatusRecord(user_id=user_id, source_wallet=wallet)
            )
            logger.info("Pause expired for wallet %s, user %s; trading resumed", wallet, user_id)
            return True
        return False
