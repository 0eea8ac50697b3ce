"""Pre-trade checks applied to copied buys."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from copytrade_replicator.models import TokenData, TradeIntent
from copytrade_replicator.trading.models import AutoBuyChecks

MEV_RISK_LIMIT = 70.0
SMART_SLIPPAGE_LOW_LIQUIDITY = Decimal("50000")
SMART_SLIPPAGE_LOW_LIQUIDITY_BUMP = Decimal("5")
SMART_SLIPPAGE_CAP = Decimal("50")


@dataclass(frozen=True)
class CheckResult:
    passed: bool
    issues: tuple[str, ...] = field(default_factory=tuple)


def run_safety_checks(intent: TradeIntent) -> CheckResult:
    """Flag intents whose origin looks manipulated.

    Fields the data source could not determine are not treated as failures.
    """
    issues: list[str] = []
    if intent.mempool_origin == "suspicious":
        issues.append("Suspicious mempool origin")
    if intent.tx_verified is False:
        issues.append("Transaction not verified")
    if intent.mev_risk is not None and intent.mev_risk > MEV_RISK_LIMIT:
        issues.append(f"High MEV risk ({intent.mev_risk:.0f})")
    return CheckResult(passed=not issues, issues=tuple(issues))


def run_auto_buy_checks(token: TokenData, checks: AutoBuyChecks) -> CheckResult:
    """Compare token market data with the user's eligibility thresholds."""
    issues: list[str] = []
    if token.market_cap < checks.min_market_cap:
        issues.append(f"Market cap too low: ${token.market_cap:,.0f}")
    if token.market_cap > checks.max_market_cap:
        issues.append(f"Market cap too high: ${token.market_cap:,.0f}")
    if token.liquidity < checks.min_liquidity:
        issues.append(f"Liquidity too low: ${token.liquidity:,.0f}")
    buy_tax = token.buy_tax or Decimal("0")
    sell_tax = token.sell_tax or Decimal("0")
    if buy_tax > checks.buy_tax_limit:
        issues.append(f"Buy tax too high: {buy_tax}%")
    if sell_tax > checks.sell_tax_limit:
        issues.append(f"Sell tax too high: {sell_tax}%")
    return CheckResult(passed=not issues, issues=tuple(issues))


def smart_slippage(base: Decimal, token: TokenData | None) -> Decimal:
    """Slippage widened for taxed or thin tokens, capped at 50%."""
    if token is None:
        return base
    slippage = base + (token.buy_tax or Decimal("0"))
    if token.liquidity < SMART_SLIPPAGE_LOW_LIQUIDITY:
        slippage += SMART_SLIPPAGE_LOW_LIQUIDITY_BUMP
    return min(slippage, SMART_SLIPPAGE_CAP)
