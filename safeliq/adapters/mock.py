# /safeliq/adapters/mock.py
# In-process stand-ins for the external collaborators of the liquidation core:
# a reference ledger and a venue with scripted quotes.
# They make the whole pipeline runnable in simulations and tests.

import threading
from contextlib import contextmanager
from copy import deepcopy
from typing import Dict, List, Optional

from safeliq.core.config import MANTISSA
from safeliq.core.errors import (
    InsufficientBalance,
    InsufficientCollateral,
    InsufficientLiquidity,
    MarketPaused,
    RepayTooLarge,
    SwapSlippageExceeded,
    UnsupportedVenue,
    VenueUnavailable,
)
from safeliq.core.evaluator import CollateralPositionEvaluator
from safeliq.core.logger import get_logger
from safeliq.core.types import NATIVE, Market, Pool, address_for, to_asset

log = get_logger(__name__)


class MockMarketAccounting:
    """
    Reference in-memory ledger.

    Wallet balances, supply balances, borrow balances, entered markets and
    exchange rates are kept in one state dict so a transaction can snapshot
    and restore all of it. Market cash is the wallet balance of the market
    address. Borrows and redeems are rejected when they would leave the
    account with a shortfall.
    """
    def __init__(self, wrapped_native: Optional[str] = None):
        self.wrapped_native = to_asset(wrapped_native or address_for("WRAPPED_NATIVE"))
        self._lock = threading.RLock()
        self._depth = 0
        self._state: Dict[str, dict] = {
            "wallets": {},
            "supply": {},
            "borrows": {},
            "entered": {},
            "rates": {},
        }
        self.evaluator = CollateralPositionEvaluator(self)
        log.info("MOCK_LEDGER_INITIALIZED", wrapped_native=self.wrapped_native)

    # --- atomicity ---

    @property
    def lock(self):
        return self._lock

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextmanager
    def transaction(self):
        with self._lock:
            snapshot = deepcopy(self._state)
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._state = snapshot
                log.debug("MOCK_LEDGER_ROLLED_BACK", depth=self._depth)
                raise
            finally:
                self._depth -= 1

    def snapshot(self) -> Dict[str, dict]:
        """Deep copy of every balance the ledger holds."""
        with self._lock:
            return deepcopy(self._state)

    # --- listing and setup ---

    def list_market(self, pool: Pool, market: Market, exchange_rate: int = MANTISSA) -> Market:
        with self._lock:
            pool.list_market(market)
            self._state["rates"][(pool.address, market.underlying)] = exchange_rate
        log.info("MOCK_MARKET_LISTED", pool=pool.name, market=market.symbol, underlying=market.underlying)
        return market

    def set_exchange_rate(self, pool: Pool, market: Market, exchange_rate: int):
        with self._lock:
            self._state["rates"][(pool.address, market.underlying)] = exchange_rate

    def credit(self, asset: str, account: str, amount: int):
        """Mints wallet balance out of thin air. Setup only."""
        key = (to_asset(asset), to_asset(account))
        with self._lock:
            self._state["wallets"][key] = self._state["wallets"].get(key, 0) + amount

    # --- wallets ---

    def balance_of(self, asset: str, account: str) -> int:
        return self._state["wallets"].get((to_asset(asset), to_asset(account)), 0)

    def transfer(self, asset: str, sender: str, recipient: str, amount: int):
        if amount < 0:
            raise ValueError("transfer amount must be non-negative")
        asset, sender, recipient = to_asset(asset), to_asset(sender), to_asset(recipient)
        with self._lock:
            wallets = self._state["wallets"]
            available = wallets.get((asset, sender), 0)
            if available < amount:
                raise InsufficientBalance(f"{sender} holds {available} of {asset}, needs {amount}")
            wallets[(asset, sender)] = available - amount
            wallets[(asset, recipient)] = wallets.get((asset, recipient), 0) + amount

    def wrap_native(self, account: str, amount: int):
        with self.transaction():
            self.transfer(NATIVE, account, self.wrapped_native, amount)
            self.credit(self.wrapped_native, account, amount)

    def unwrap_native(self, account: str, amount: int):
        with self.transaction():
            self.transfer(self.wrapped_native, account, self.wrapped_native, amount)
            self.transfer(NATIVE, self.wrapped_native, account, amount)

    # --- positions ---

    def supply_of(self, pool: Pool, market: Market, account: str) -> int:
        return self._state["supply"].get((pool.address, market.underlying, to_asset(account)), 0)

    def borrow_of(self, pool: Pool, market: Market, account: str) -> int:
        return self._state["borrows"].get((pool.address, market.underlying, to_asset(account)), 0)

    def exchange_rate(self, pool: Pool, market: Market) -> int:
        return self._state["rates"].get((pool.address, market.underlying), MANTISSA)

    def markets_of(self, pool: Pool, account: str) -> List[Market]:
        entered = self._state["entered"].get((pool.address, to_asset(account)), [])
        return [pool.markets[u] for u in entered]

    def enter_market(self, pool: Pool, market: Market, account: str):
        pool.market_for(market.underlying)
        key = (pool.address, to_asset(account))
        with self._lock:
            entered = self._state["entered"].setdefault(key, [])
            if market.underlying not in entered:
                entered.append(market.underlying)

    def _add(self, table: str, pool: Pool, market: Market, account: str, delta: int):
        key = (pool.address, market.underlying, to_asset(account))
        self._state[table][key] = self._state[table].get(key, 0) + delta

    def supply(self, pool: Pool, market: Market, account: str, amount: int, enter: bool = True) -> int:
        """Deposits underlying from the account's wallet. Returns balance units minted."""
        if market.mint_paused:
            raise MarketPaused(f"minting is paused for {market.symbol}")
        with self.transaction():
            self.transfer(market.underlying, account, market.address, amount)
            tokens = amount * MANTISSA // self.exchange_rate(pool, market)
            self._add("supply", pool, market, account, tokens)
            if enter:
                self.enter_market(pool, market, account)
        log.info("MOCK_SUPPLY", pool=pool.name, market=market.symbol, account=to_asset(account), amount=amount, tokens=tokens)
        return tokens

    def borrow(self, pool: Pool, market: Market, account: str, amount: int):
        if market.borrow_paused:
            raise MarketPaused(f"borrowing is paused for {market.symbol}")
        with self.transaction():
            if self.balance_of(market.underlying, market.address) < amount:
                raise InsufficientLiquidity(f"market {market.symbol} has insufficient cash")
            liquidity = self.evaluator.evaluate_hypothetical(pool, account, market, borrow_amount=amount)
            if liquidity.shortfall > 0:
                raise InsufficientLiquidity(f"borrow would leave a shortfall of {liquidity.shortfall}")
            self.enter_market(pool, market, account)
            self._add("borrows", pool, market, account, amount)
            self.transfer(market.underlying, market.address, account, amount)
        log.info("MOCK_BORROW", pool=pool.name, market=market.symbol, account=to_asset(account), amount=amount)

    def repay(self, pool: Pool, market: Market, account: str, amount: int) -> int:
        return self.transfer_repay(pool, market, account, account, amount)

    def transfer_repay(self, pool: Pool, market: Market, payer: str, borrower: str, amount: int) -> int:
        with self.transaction():
            outstanding = self.borrow_of(pool, market, borrower)
            if amount > outstanding:
                raise RepayTooLarge(f"repay {amount} exceeds borrow balance {outstanding}")
            self.transfer(market.underlying, payer, market.address, amount)
            self._add("borrows", pool, market, borrower, -amount)
        return amount

    def transfer_seize(self, pool: Pool, market: Market, borrower: str, liquidator: str, tokens: int):
        with self.transaction():
            held = self.supply_of(pool, market, borrower)
            if held < tokens:
                raise InsufficientCollateral(f"borrower holds {held} {market.symbol} balance units, seize needs {tokens}")
            self._add("supply", pool, market, borrower, -tokens)
            self._add("supply", pool, market, liquidator, tokens)

    def redeem(self, pool: Pool, market: Market, account: str, tokens: int) -> int:
        with self.transaction():
            held = self.supply_of(pool, market, account)
            if held < tokens:
                raise InsufficientBalance(f"{to_asset(account)} holds {held} {market.symbol} balance units, redeem needs {tokens}")
            if any(m.underlying == market.underlying for m in self.markets_of(pool, account)):
                liquidity = self.evaluator.evaluate_hypothetical(pool, account, market, redeem_tokens=tokens)
                if liquidity.shortfall > 0:
                    raise InsufficientLiquidity(f"redeem would leave a shortfall of {liquidity.shortfall}")
            underlying = tokens * self.exchange_rate(pool, market) // MANTISSA
            if self.balance_of(market.underlying, market.address) < underlying:
                raise InsufficientLiquidity(f"market {market.symbol} has insufficient cash")
            self._add("supply", pool, market, account, -tokens)
            self.transfer(market.underlying, market.address, account, underlying)
        return underlying


class MockVenue:
    """
    A venue with scripted output amounts.
    Quotes are set per path; executions pay out of the venue's own wallet on the ledger.
    """
    def __init__(self, ledger: MockMarketAccounting, name: str = "mock"):
        self.ledger = ledger
        self.name = name
        self.address = address_for(f"MOCK_VENUE:{name}")
        self.quotes: Dict[str, int] = {}
        self.short_fill = 0 # amount withheld from the next execution
        self._unavailable = 0

    def set_quote(self, path: List[str], amount_out: int):
        """Set a predictable output amount for a given trade path."""
        self.quotes["-".join(to_asset(a) for a in path)] = amount_out
        log.info("MOCK_VENUE_QUOTE_SET", venue=self.name, path=path, amount_out=amount_out)

    def fail_next_quotes(self, count: int):
        self._unavailable = count

    def quote(self, input_asset: str, input_amount: int, path: List[str]) -> int:
        if self._unavailable:
            self._unavailable -= 1
            raise VenueUnavailable(f"{self.name} is not responding")
        key = "-".join(to_asset(a) for a in path)
        if key not in self.quotes:
            raise UnsupportedVenue(f"{self.name} has no quote for {path}")
        return self.quotes[key]

    def execute(self, input_asset: str, input_amount: int, path: List[str], account: str) -> int:
        amount_out = self.quote(input_asset, input_amount, path) - self.short_fill
        self.short_fill = 0
        if amount_out < 0:
            raise SwapSlippageExceeded("venue returned nothing")
        self.ledger.transfer(path[0], account, self.address, input_amount)
        self.ledger.transfer(path[-1], self.address, account, amount_out)
        return amount_out
