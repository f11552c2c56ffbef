# /test/test_liquidation.py
# - Direct (liquidator-funded) and flash-loan-funded liquidations against the mock ledger.
# - Every failing case checks that no balance anywhere moved.

import threading

import pytest

from safeliq.core.errors import (
    BorrowerHealthy,
    FlashLoanNotRepaid,
    InsufficientCollateral,
    InsufficientProfit,
    NothingToRepay,
    RepayTooLarge,
    SwapSlippageExceeded,
    UnsupportedVenue,
)
from safeliq.core.evaluator import CollateralPositionEvaluator
from safeliq.core.kill import activate_kill_switch
from safeliq.core.tx import TransactionKillSwitchError
from safeliq.core.types import NATIVE, LiquidationRequest, address_for

from conftest import ADMIN, BOB, E18, RANDO, TOKEN_A, TOKEN_B


def request_for(world, **overrides) -> LiquidationRequest:
    params = dict(
        borrower=BOB,
        pool=world.pool,
        debt_market=world.market_b,
        collateral_market=world.market_a,
        liquidator=RANDO,
    )
    params.update(overrides)
    return LiquidationRequest(**params)


# --- Direct liquidation ---

def test_healthy_borrower_cannot_be_liquidated(world):
    world.open_position()
    world.ledger.credit(TOKEN_B, RANDO, 10 * E18)
    before = world.ledger.snapshot()

    with pytest.raises(BorrowerHealthy):
        world.engine.liquidate(request_for(world, repay_amount=E18))
    assert world.ledger.snapshot() == before


def test_repay_above_close_factor_is_rejected(unsafe_world):
    unsafe_world.ledger.credit(TOKEN_B, RANDO, 10 * E18)
    before = unsafe_world.ledger.snapshot()

    # 4 B borrowed, close factor 0.5
    result = unsafe_world.engine.try_liquidate(request_for(unsafe_world, repay_amount=2 * E18 + 1))
    assert not result.ok
    assert isinstance(result.error, RepayTooLarge)
    with pytest.raises(RepayTooLarge):
        result.unwrap()
    assert unsafe_world.ledger.snapshot() == before


def test_zero_repay_uses_bounded_maximum(unsafe_world):
    """
    GIVEN a borrower with a shortfall of 2
    WHEN a liquidator asks for repay_amount=0
    THEN the close-factor maximum (2 B) is repaid, 0.54 A is seized and the shortfall shrinks
    """
    world = unsafe_world
    world.ledger.credit(TOKEN_B, RANDO, 10 * E18)
    evaluator = CollateralPositionEvaluator(world.ledger)
    shortfall_before = evaluator.evaluate(world.pool, BOB).shortfall

    result = world.engine.liquidate(request_for(world))

    assert result.repay_amount == 2 * E18
    # 2 B * $1 * 1.08 / $4
    assert result.seize_underlying == 54 * E18 // 100
    assert result.seize_tokens == 54 * E18 // 100
    assert result.seize_tokens > 0
    assert result.output_asset == world.market_a.address
    assert result.net_amount == result.seize_tokens

    assert world.ledger.borrow_of(world.pool, world.market_b, BOB) == 2 * E18
    assert world.ledger.supply_of(world.pool, world.market_a, BOB) == E18 - result.seize_tokens
    assert world.ledger.supply_of(world.pool, world.market_a, RANDO) == result.seize_tokens
    assert world.ledger.balance_of(TOKEN_B, RANDO) == 8 * E18
    assert evaluator.evaluate(world.pool, BOB).shortfall < shortfall_before


def test_zero_repay_is_capped_by_available_collateral(world):
    world.open_position()
    world.crash_collateral(E18) # collateral now worth $1 against $4 of debt
    world.ledger.credit(TOKEN_B, RANDO, 10 * E18)

    result = world.engine.liquidate(request_for(world))

    # The whole 1 A covers 1 / 1.08 B of repay, less than the 2 B close-factor bound
    assert result.repay_amount == E18 * E18 // (108 * E18 // 100)
    assert result.seize_tokens <= E18
    assert world.ledger.supply_of(world.pool, world.market_a, BOB) == E18 - result.seize_tokens


def test_seize_beyond_collateral_is_rejected(world):
    world.open_position()
    world.crash_collateral(E18)
    world.ledger.credit(TOKEN_B, RANDO, 10 * E18)
    before = world.ledger.snapshot()

    with pytest.raises(InsufficientCollateral):
        world.engine.liquidate(request_for(world, repay_amount=2 * E18))
    assert world.ledger.snapshot() == before


def test_nothing_owed_in_debt_market(unsafe_world):
    with pytest.raises(NothingToRepay):
        unsafe_world.engine.liquidate(request_for(unsafe_world, debt_market=unsafe_world.market_a))


def test_seize_amount_round_trip_after_price_restore(unsafe_world):
    world = unsafe_world
    world.ledger.credit(TOKEN_B, RANDO, 10 * E18)
    repay = E18

    result = world.engine.liquidate(request_for(world, repay_amount=repay))
    world.crash_collateral(7 * E18)
    world.crash_collateral(4 * E18)

    _, recomputed = world.engine.seize_amount(world.pool, world.market_b, world.market_a, repay)
    assert recomputed == result.seize_tokens
    assert world.ledger.supply_of(world.pool, world.market_a, RANDO) == recomputed


def test_direct_liquidation_with_settlement_swap(unsafe_world):
    world = unsafe_world
    world.seed_venue()
    world.ledger.credit(TOKEN_B, RANDO, 10 * E18)
    expected = world.router.quote(TOKEN_A, 54 * E18 // 100, TOKEN_B, "uniswap")

    result = world.engine.liquidate(request_for(world, settlement_asset=TOKEN_B, venue="uniswap"))

    assert result.output_asset == TOKEN_B
    assert result.net_amount == expected
    assert world.ledger.balance_of(TOKEN_B, RANDO) == 8 * E18 + expected
    # Nothing is left behind with the executor
    assert world.ledger.balance_of(TOKEN_A, world.engine.executor) == 0
    assert world.ledger.balance_of(TOKEN_B, world.engine.executor) == 0


def test_settlement_in_collateral_underlying_needs_no_venue(unsafe_world):
    world = unsafe_world
    world.ledger.credit(TOKEN_B, RANDO, 10 * E18)

    result = world.engine.liquidate(request_for(world, settlement_asset=TOKEN_A))

    assert result.net_amount == result.seize_underlying
    assert world.ledger.balance_of(TOKEN_A, RANDO) == result.seize_underlying


def test_slippage_rolls_back_repay_and_seize(unsafe_world):
    world = unsafe_world
    world.seed_venue()
    world.ledger.credit(TOKEN_B, RANDO, 10 * E18)
    before = world.ledger.snapshot()

    with pytest.raises(SwapSlippageExceeded):
        world.engine.liquidate(request_for(
            world, settlement_asset=TOKEN_B, venue="uniswap", min_output_amount=100 * E18,
        ))
    assert world.ledger.snapshot() == before


def test_unknown_venue_rolls_back(unsafe_world):
    world = unsafe_world
    world.ledger.credit(TOKEN_B, RANDO, 10 * E18)
    before = world.ledger.snapshot()

    with pytest.raises(UnsupportedVenue):
        world.engine.liquidate(request_for(world, settlement_asset=TOKEN_B, venue="curve"))
    assert world.ledger.snapshot() == before


def test_minimum_profit_is_enforced(unsafe_world):
    world = unsafe_world
    world.ledger.credit(TOKEN_B, RANDO, 10 * E18)
    before = world.ledger.snapshot()

    with pytest.raises(InsufficientProfit):
        world.engine.liquidate(request_for(world, min_profit_amount=E18))
    assert world.ledger.snapshot() == before


def test_kill_switch_blocks_liquidation(unsafe_world):
    unsafe_world.ledger.credit(TOKEN_B, RANDO, 10 * E18)
    activate_kill_switch("test")

    with pytest.raises(TransactionKillSwitchError):
        unsafe_world.engine.liquidate(request_for(unsafe_world))
    assert unsafe_world.ledger.borrow_of(unsafe_world.pool, unsafe_world.market_b, BOB) == 4 * E18


def test_preview_matches_execution_without_moving_funds(unsafe_world):
    world = unsafe_world
    world.ledger.credit(TOKEN_B, RANDO, 10 * E18)
    before = world.ledger.snapshot()

    preview = world.engine.preview(request_for(world))
    assert world.ledger.snapshot() == before
    assert preview.shortfall == 2 * E18

    result = world.engine.liquidate(request_for(world))
    assert (result.repay_amount, result.seize_tokens) == (preview.repay_amount, preview.seize_tokens)


def test_concurrent_liquidators_cannot_both_take_the_close_factor(unsafe_world):
    world = unsafe_world
    other = address_for("other-liquidator")
    world.ledger.credit(TOKEN_B, RANDO, 10 * E18)
    world.ledger.credit(TOKEN_B, other, 10 * E18)
    barrier = threading.Barrier(2)
    results = []

    def attempt(liquidator):
        barrier.wait()
        results.append(world.engine.try_liquidate(request_for(world, liquidator=liquidator, repay_amount=2 * E18)))

    threads = [threading.Thread(target=attempt, args=(who,)) for who in (RANDO, other)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(r.ok for r in results) == [False, True]
    assert world.ledger.borrow_of(world.pool, world.market_b, BOB) == 2 * E18


# --- Flash-loan liquidation ---

def test_flash_loan_liquidation_pays_profit_to_caller(unsafe_world):
    """
    GIVEN an unsafe borrower and a liquidator holding nothing
    WHEN the liquidation is funded by a flash loan
    THEN the loan and its fee are repaid from the seized collateral and the rest goes to the liquidator
    """
    world = unsafe_world
    world.seed_venue()
    world.seed_lender()
    lender_before = world.ledger.balance_of(TOKEN_B, world.lender.address)

    result = world.engine.liquidate_with_flash_loan(request_for(world, venue="uniswap"))

    fee = 2 * E18 * 3 // 997 + 1
    assert result.repay_amount == 2 * E18
    assert result.flash_loan_fee == fee
    assert result.output_asset == TOKEN_B
    assert result.net_amount > 0
    assert world.ledger.balance_of(TOKEN_B, RANDO) == result.net_amount
    assert world.ledger.balance_of(TOKEN_B, world.lender.address) == lender_before + fee
    assert world.ledger.balance_of(TOKEN_B, world.engine.executor) == 0
    assert world.ledger.borrow_of(world.pool, world.market_b, BOB) == 2 * E18


def test_flash_loan_not_repaid_leaves_no_trace(unsafe_world):
    world = unsafe_world
    # A trades at $2 on the venue, so 0.54 A cannot buy back 2 B plus the fee
    world.seed_venue(a_reserve=1_000 * E18, b_reserve=2_000 * E18)
    world.seed_lender()
    before = world.ledger.snapshot()

    result = world.engine.try_liquidate_with_flash_loan(request_for(world, venue="uniswap"))

    assert not result.ok
    assert isinstance(result.error, FlashLoanNotRepaid)
    assert world.ledger.snapshot() == before


def test_flash_loan_liquidation_settles_in_native(unsafe_world):
    world = unsafe_world
    world.seed_venue()
    world.seed_native_pair()
    world.seed_lender()

    result = world.engine.liquidate_with_flash_loan(request_for(
        world, venue="uniswap", settlement_asset=NATIVE,
    ))

    assert result.output_asset == NATIVE
    assert result.net_amount > 0
    assert world.ledger.balance_of(NATIVE, RANDO) == result.net_amount
    assert world.ledger.balance_of(world.ledger.wrapped_native, RANDO) == 0


def test_flash_loan_liquidation_of_healthy_borrower(world):
    world.open_position()
    world.seed_venue()
    world.seed_lender()
    before = world.ledger.snapshot()

    with pytest.raises(BorrowerHealthy):
        world.engine.liquidate_with_flash_loan(request_for(world, venue="uniswap"))
    assert world.ledger.snapshot() == before


def test_flash_loan_minimum_profit_rolls_back_loan(unsafe_world):
    world = unsafe_world
    world.seed_venue()
    world.seed_lender()
    before = world.ledger.snapshot()

    with pytest.raises(InsufficientProfit):
        world.engine.liquidate_with_flash_loan(request_for(world, venue="uniswap", min_profit_amount=E18))
    assert world.ledger.snapshot() == before


def test_flash_loan_cannot_draw_on_executor_funds(unsafe_world):
    """
    GIVEN an executor already holding some of the debt asset
    WHEN the seized collateral buys back less than the loan plus its fee
    THEN the liquidation rolls back instead of covering the gap from the executor's balance
    """
    world = unsafe_world
    world.ledger.credit(TOKEN_B, world.engine.executor, 5 * E18)
    world.seed_venue(a_reserve=1_000 * E18, b_reserve=2_000 * E18)
    world.seed_lender()
    before = world.ledger.snapshot()

    result = world.engine.try_liquidate_with_flash_loan(request_for(world, venue="uniswap"))

    assert isinstance(result.error, FlashLoanNotRepaid)
    assert world.ledger.snapshot() == before
    assert world.ledger.balance_of(TOKEN_B, world.engine.executor) == 5 * E18


def test_flash_loan_profit_excludes_executor_funds(unsafe_world):
    world = unsafe_world
    world.ledger.credit(TOKEN_B, world.engine.executor, 5 * E18)
    world.seed_venue()
    world.seed_lender()

    result = world.engine.liquidate_with_flash_loan(request_for(world, venue="uniswap"))

    assert result.net_amount > 0
    assert world.ledger.balance_of(TOKEN_B, RANDO) == result.net_amount
    assert world.ledger.balance_of(TOKEN_B, world.engine.executor) == 5 * E18


class SteppingOracle:
    """Answers each read with the next price in line, then keeps repeating the last one."""
    def __init__(self, *prices):
        self.prices = list(prices)
        self.reads = 0

    def get_underlying_price(self, asset):
        self.reads += 1
        if len(self.prices) > 1:
            return self.prices.pop(0)
        return self.prices[0]


def test_one_liquidation_prices_each_asset_once(unsafe_world):
    world = unsafe_world
    world.ledger.credit(TOKEN_B, RANDO, 10 * E18)
    moving = SteppingOracle(4 * E18, 2 * E18, 1 * E18)
    world.oracle.add([TOKEN_A], [moving], caller=ADMIN)

    result = world.engine.liquidate(request_for(world))

    # Eligibility, the repay bound and the seize all use the first read of $4
    assert moving.reads == 1
    assert result.repay_amount == 2 * E18
    assert result.seize_tokens == 54 * E18 // 100
