# /test/conftest.py
# Shared pool fixture: one pool with two ERC20 markets and a native market,
# priced by a SimplePriceOracle behind the pool's aggregator.

import pytest

from safeliq.adapters.dex import CollateralSwapRouter, UniswapV2Venue
from safeliq.adapters.flashloan import UniswapV2FlashLender
from safeliq.adapters.mock import MockMarketAccounting
from safeliq.adapters.oracle import PriceOracleAggregator, SimplePriceOracle
from safeliq.core import kill, logger
from safeliq.core.types import NATIVE, Market, Pool, address_for
from safeliq.strategies.liquidation import LiquidationEngine

E18 = 10**18

TOKEN_A = address_for("TOKEN_A")
TOKEN_B = address_for("TOKEN_B")

ADMIN = address_for("admin")
ALICE = address_for("alice") # supplies lendable liquidity
BOB = address_for("bob") # the borrower
RANDO = address_for("rando") # the liquidator
LP = address_for("liquidity-provider")


@pytest.fixture(autouse=True)
def isolated_session(tmp_path, monkeypatch):
    """Keeps the kill switch flag and the audit log of each test in its own directory."""
    monkeypatch.setattr(kill, "KILL_SWITCH_FILE", str(tmp_path / ".system_kill_activated"))
    monkeypatch.setattr(logger, "AUDIT_FILE", str(tmp_path / "audit.log"))
    yield tmp_path


class World:
    def __init__(self):
        self.ledger = MockMarketAccounting()
        self.price_feed = SimplePriceOracle(ADMIN)
        self.oracle = PriceOracleAggregator()
        self.oracle.initialize(
            [TOKEN_A, TOKEN_B, NATIVE, self.ledger.wrapped_native],
            [self.price_feed] * 4,
            None,
            ADMIN,
            True,
        )
        self.pool = Pool(name="test pool", address=address_for("POOL"), admin=ADMIN, oracle=self.oracle)
        self.market_a = self.ledger.list_market(self.pool, Market(
            address=address_for("cTOKEN_A"), underlying=TOKEN_A, symbol="A", collateral_factor_mantissa=E18 // 2,
        ))
        self.market_b = self.ledger.list_market(self.pool, Market(
            address=address_for("cTOKEN_B"), underlying=TOKEN_B, symbol="B", collateral_factor_mantissa=E18 // 2,
        ))
        self.market_eth = self.ledger.list_market(self.pool, Market(
            address=address_for("cETH"), underlying=NATIVE, symbol="ETH", collateral_factor_mantissa=3 * E18 // 4,
        ))
        self.price_feed.set_direct_price(TOKEN_A, 10 * E18)
        self.price_feed.set_direct_price(TOKEN_B, 1 * E18)
        self.price_feed.set_direct_price(NATIVE, 2 * E18)
        self.price_feed.set_direct_price(self.ledger.wrapped_native, 2 * E18)

        self.venue = UniswapV2Venue.from_preset(self.ledger, "uniswap")
        self.router = CollateralSwapRouter(self.ledger, {"uniswap": self.venue})
        self.lender = UniswapV2FlashLender(address_for("FLASH_LENDER"))
        self.engine = LiquidationEngine(self.ledger, router=self.router, lender=self.lender)

    def open_position(self):
        """Bob: 1 A supplied ($10, CF 0.5) and 4 B borrowed ($1). Alice supplies the B that Bob borrows."""
        self.ledger.credit(TOKEN_B, ALICE, 100 * E18)
        self.ledger.supply(self.pool, self.market_b, ALICE, 100 * E18)
        self.ledger.credit(TOKEN_A, BOB, 1 * E18)
        self.ledger.supply(self.pool, self.market_a, BOB, 1 * E18)
        self.ledger.borrow(self.pool, self.market_b, BOB, 4 * E18)

    def crash_collateral(self, price: int = 4 * E18):
        self.price_feed.set_direct_price(TOKEN_A, price)

    def seed_venue(self, a_reserve: int = 1_000 * E18, b_reserve: int = 4_000 * E18):
        self.ledger.credit(TOKEN_A, LP, a_reserve)
        self.ledger.credit(TOKEN_B, LP, b_reserve)
        self.venue.add_liquidity(LP, TOKEN_A, a_reserve, TOKEN_B, b_reserve)

    def seed_native_pair(self, native_reserve: int = 500 * E18, b_reserve: int = 1_000 * E18):
        self.ledger.credit(NATIVE, LP, native_reserve)
        self.ledger.wrap_native(LP, native_reserve)
        self.ledger.credit(TOKEN_B, LP, b_reserve)
        self.venue.add_liquidity(LP, self.ledger.wrapped_native, native_reserve, TOKEN_B, b_reserve)

    def seed_lender(self, amount: int = 1_000_000 * E18):
        self.ledger.credit(TOKEN_B, self.lender.address, amount)


@pytest.fixture
def world():
    return World()


@pytest.fixture
def unsafe_world(world):
    world.open_position()
    world.crash_collateral()
    return world
