# /safeliq/core/evaluator.py
from typing import Dict, Optional

from safeliq.adapters.ledger import MarketAccounting
from safeliq.core.config import MANTISSA
from safeliq.core.errors import LiquidationError, PriceUnavailable
from safeliq.core.logger import get_logger
from safeliq.core.types import AccountLiquidity, Market, Pool

log = get_logger(__name__)


def usd_value(amount: int, price: int, decimals: int) -> int:
    """Value of ``amount`` base units at an 18-decimal price per whole token."""
    return amount * price // 10**decimals


class CollateralPositionEvaluator:
    """
    Computes an account's USD-denominated liquidity in one pool.

    Read-only. Balances and prices are read under the ledger lock and each
    asset is priced once per evaluation, so one result reflects a single
    snapshot. A market whose price cannot be read fails the whole evaluation.
    """
    def __init__(self, ledger: MarketAccounting):
        self.ledger = ledger

    def price_of(self, pool: Pool, market: Market, cache: Optional[Dict[str, int]] = None) -> int:
        if cache is not None and market.underlying in cache:
            return cache[market.underlying]
        try:
            price = pool.oracle.get_underlying_price(market.underlying)
        except LiquidationError as e:
            raise PriceUnavailable(f"no price for {market.symbol or market.underlying}: {e}") from e
        if price <= 0:
            raise PriceUnavailable(f"oracle returned {price} for {market.symbol or market.underlying}")
        if cache is not None:
            cache[market.underlying] = price
        return price

    def evaluate(self, pool: Pool, borrower: str, prices: Optional[Dict[str, int]] = None) -> AccountLiquidity:
        return self.evaluate_hypothetical(pool, borrower, prices=prices)

    def evaluate_hypothetical(
        self,
        pool: Pool,
        account: str,
        market: Optional[Market] = None,
        redeem_tokens: int = 0,
        borrow_amount: int = 0,
        prices: Optional[Dict[str, int]] = None,
    ) -> AccountLiquidity:
        """
        Liquidity of ``account`` as if it also redeemed/borrowed the given amounts in ``market``.
        Prices already in ``prices`` are reused and new reads are added to it.
        """
        collateral = 0
        borrowed = 0
        if prices is None:
            prices = {}
        with self.ledger.lock:
            entered = self.ledger.markets_of(pool, account)
            for m in entered:
                price = self.price_of(pool, m, prices)
                tokens = self.ledger.supply_of(pool, m, account)
                debt = self.ledger.borrow_of(pool, m, account)
                if market is not None and m.underlying == market.underlying:
                    tokens -= redeem_tokens
                    debt += borrow_amount
                supplied = tokens * self.ledger.exchange_rate(pool, m) // MANTISSA
                collateral += usd_value(supplied, price, m.decimals) * m.collateral_factor_mantissa // MANTISSA
                borrowed += usd_value(debt, price, m.decimals)

            # Effects on a market the account has not entered still count against it
            if market is not None and borrow_amount and all(m.underlying != market.underlying for m in entered):
                borrowed += usd_value(borrow_amount, self.price_of(pool, market, prices), market.decimals)

        return AccountLiquidity(
            collateral_value_usd=collateral,
            borrow_value_usd=borrowed,
            liquidity=max(0, collateral - borrowed),
            shortfall=max(0, borrowed - collateral),
        )

    def is_liquidatable(self, pool: Pool, borrower: str) -> bool:
        return self.evaluate(pool, borrower).is_liquidatable
