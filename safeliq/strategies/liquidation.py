# /safeliq/strategies/liquidation.py
# Repays an unsafe borrower's debt, seizes collateral and settles the proceeds,
# either funded by the liquidator or by a flash loan, always as one atomic execution.

from typing import Dict, Optional, Tuple

from safeliq.adapters.dex import CollateralSwapRouter
from safeliq.adapters.flashloan import FlashLender, FlashLoanCoordinator
from safeliq.adapters.ledger import MarketAccounting
from safeliq.core.config import MANTISSA, settings
from safeliq.core.errors import (
    BorrowerHealthy,
    FlashLoanNotRepaid,
    InsufficientCollateral,
    InsufficientProfit,
    NothingToRepay,
    RepayTooLarge,
)
from safeliq.core.evaluator import CollateralPositionEvaluator
from safeliq.core.logger import get_logger, LIQUIDATIONS_EXECUTED
from safeliq.core.tx import ExecutionResult, TransactionManager
from safeliq.core.types import LiquidationPreview, LiquidationRequest, LiquidationResult, Market, Pool, to_asset

log = get_logger(__name__)


class LiquidationEngine:
    """
    Orchestrates liquidations for every pool on one ledger.

    The pipeline is eligibility, repay bound, repay, seize and settlement.
    ``liquidate`` has the liquidator fund the repay; ``liquidate_with_flash_loan``
    borrows it and pays the loan back out of the seized collateral. Both run
    under the transaction manager, so a failure at any step leaves every
    balance exactly as it was.
    """
    def __init__(
        self,
        ledger: MarketAccounting,
        router: Optional[CollateralSwapRouter] = None,
        lender: Optional[FlashLender] = None,
        executor: Optional[str] = None,
        evaluator: Optional[CollateralPositionEvaluator] = None,
        tx_manager: Optional[TransactionManager] = None,
    ):
        self.ledger = ledger
        self.executor = to_asset(executor or settings.EXECUTOR_ADDRESS)
        self.evaluator = evaluator or CollateralPositionEvaluator(ledger)
        self.tx_manager = tx_manager or TransactionManager(ledger)
        self.router = router or CollateralSwapRouter(ledger)
        self.flash = FlashLoanCoordinator(ledger, lender, self.executor) if lender is not None else None
        log.info("LIQUIDATION_ENGINE_INITIALIZED", executor=self.executor, flash_loans=self.flash is not None)

    # -----------------------------------------------------------
    # Amount calculations (read-only)
    # -----------------------------------------------------------

    def seize_amount(
        self,
        pool: Pool,
        debt_market: Market,
        collateral_market: Market,
        repay_amount: int,
        prices: Optional[Dict[str, int]] = None,
    ) -> Tuple[int, int]:
        """
        Collateral owed for repaying ``repay_amount`` of debt:
        ``repay * price(debt) * incentive / price(collateral)``.
        Returns (underlying units, collateral balance units).
        """
        price_debt = self.evaluator.price_of(pool, debt_market, prices)
        price_collateral = self.evaluator.price_of(pool, collateral_market, prices)
        numerator = repay_amount * price_debt * pool.liquidation_incentive_mantissa * 10**collateral_market.decimals
        denominator = price_collateral * 10**debt_market.decimals * MANTISSA
        seize_underlying = numerator // denominator
        seize_tokens = seize_underlying * MANTISSA // self.ledger.exchange_rate(pool, collateral_market)
        return seize_underlying, seize_tokens

    def max_repay(
        self,
        pool: Pool,
        debt_market: Market,
        collateral_market: Market,
        borrower: str,
        prices: Optional[Dict[str, int]] = None,
    ) -> int:
        """Largest repay the close factor allows that the borrower's collateral can still cover."""
        max_close = self.ledger.borrow_of(pool, debt_market, borrower) * pool.close_factor_mantissa // MANTISSA
        held_tokens = self.ledger.supply_of(pool, collateral_market, borrower)
        held_underlying = held_tokens * self.ledger.exchange_rate(pool, collateral_market) // MANTISSA
        price_debt = self.evaluator.price_of(pool, debt_market, prices)
        price_collateral = self.evaluator.price_of(pool, collateral_market, prices)
        coverable = (
            held_underlying * price_collateral * 10**debt_market.decimals * MANTISSA
            // (price_debt * pool.liquidation_incentive_mantissa * 10**collateral_market.decimals)
        )
        return min(max_close, coverable)

    def preview(self, request: LiquidationRequest) -> LiquidationPreview:
        with self.ledger.lock:
            return self._plan(request)

    def _plan(self, request: LiquidationRequest) -> LiquidationPreview:
        pool, borrower = request.pool, request.borrower
        debt_market = pool.market_for(request.debt_market.underlying)
        collateral_market = pool.market_for(request.collateral_market.underlying)
        # Every amount in one plan is priced from the same reads
        prices: Dict[str, int] = {}

        # 1. Eligibility
        liquidity = self.evaluator.evaluate(pool, borrower, prices)
        if not liquidity.is_liquidatable:
            raise BorrowerHealthy(f"{borrower} has no shortfall in pool {pool.name}")

        # 2. Repay bound
        outstanding = self.ledger.borrow_of(pool, debt_market, borrower)
        if outstanding == 0:
            raise NothingToRepay(f"{borrower} owes nothing in {debt_market.symbol or debt_market.underlying}")
        max_close = outstanding * pool.close_factor_mantissa // MANTISSA
        repay_amount = request.repay_amount or self.max_repay(pool, debt_market, collateral_market, borrower, prices)
        if repay_amount > max_close:
            raise RepayTooLarge(f"repay {repay_amount} exceeds close factor bound {max_close}")
        if repay_amount == 0:
            raise NothingToRepay(f"{borrower} has no seizable collateral in {collateral_market.symbol}")

        seize_underlying, seize_tokens = self.seize_amount(pool, debt_market, collateral_market, repay_amount, prices)
        held = self.ledger.supply_of(pool, collateral_market, borrower)
        if held < seize_tokens:
            raise InsufficientCollateral(f"seize of {seize_tokens} exceeds the borrower's {held} balance units")

        return LiquidationPreview(
            repay_amount=repay_amount,
            seize_tokens=seize_tokens,
            seize_underlying=seize_underlying,
            shortfall=liquidity.shortfall,
        )

    # -----------------------------------------------------------
    # Pipeline steps (run inside an open transaction)
    # -----------------------------------------------------------

    def _repay_and_seize(self, request: LiquidationRequest, plan: LiquidationPreview, payer: str, seize_to: str):
        pool = request.pool
        debt_market = pool.market_for(request.debt_market.underlying)
        collateral_market = pool.market_for(request.collateral_market.underlying)

        # 3. Repay
        self.ledger.transfer_repay(pool, debt_market, payer, request.borrower, plan.repay_amount)
        # 4. Seize
        self.ledger.transfer_seize(pool, collateral_market, request.borrower, seize_to, plan.seize_tokens)
        log.info(
            "BORROW_REPAID_AND_COLLATERAL_SEIZED",
            borrower=request.borrower,
            repay_amount=plan.repay_amount,
            seize_tokens=plan.seize_tokens,
            seize_to=seize_to,
        )

    def _pay_out(self, request: LiquidationRequest, asset: str, amount: int) -> int:
        if amount < request.min_profit_amount:
            raise InsufficientProfit(f"payout {amount} below minimum profit {request.min_profit_amount}")
        if amount:
            self.ledger.transfer(asset, self.executor, request.liquidator, amount)
        return amount

    def _liquidate_direct(self, request: LiquidationRequest) -> LiquidationResult:
        plan = self._plan(request)
        pool = request.pool
        collateral_market = pool.market_for(request.collateral_market.underlying)

        # 5. Settlement
        if request.settlement_asset is None:
            self._repay_and_seize(request, plan, payer=request.liquidator, seize_to=request.liquidator)
            if plan.seize_tokens < request.min_profit_amount:
                raise InsufficientProfit(f"seized {plan.seize_tokens} below minimum profit {request.min_profit_amount}")
            output_asset, net_amount = collateral_market.address, plan.seize_tokens
        else:
            self._repay_and_seize(request, plan, payer=request.liquidator, seize_to=self.executor)
            redeemed = self.ledger.redeem(pool, collateral_market, self.executor, plan.seize_tokens)
            output = self.router.swap(
                collateral_market.underlying,
                redeemed,
                request.settlement_asset,
                request.venue,
                self.executor,
                path=request.path,
                min_output=request.min_output_amount,
            )
            output_asset = request.settlement_asset
            net_amount = self._pay_out(request, output_asset, output)

        return LiquidationResult(
            borrower=request.borrower,
            repay_amount=plan.repay_amount,
            seize_tokens=plan.seize_tokens,
            seize_underlying=plan.seize_underlying,
            output_asset=output_asset,
            net_amount=net_amount,
        )

    def _liquidate_with_flash_loan(self, request: LiquidationRequest) -> LiquidationResult:
        if self.flash is None:
            raise RuntimeError("engine was created without a flash lender")
        plan = self._plan(request)
        pool = request.pool
        debt_market = pool.market_for(request.debt_market.underlying)
        collateral_market = pool.market_for(request.collateral_market.underlying)
        debt_asset = debt_market.underlying

        held_before = self.ledger.balance_of(debt_asset, self.executor)
        fee = self.flash.quote_fee(debt_asset, plan.repay_amount)

        def repay_with_borrowed_funds(borrowed: int) -> int:
            self._repay_and_seize(request, plan, payer=self.executor, seize_to=self.executor)
            redeemed = self.ledger.redeem(pool, collateral_market, self.executor, plan.seize_tokens)
            # Everything seized goes towards the loan; the coordinator checks it covers amount + fee
            return self.router.swap(
                collateral_market.underlying,
                redeemed,
                debt_asset,
                request.venue,
                self.executor,
                path=request.path,
            )

        self.flash.execute_with_flash_loan(debt_asset, plan.repay_amount, repay_with_borrowed_funds)

        profit = self.ledger.balance_of(debt_asset, self.executor) - held_before
        if profit < 0:
            raise FlashLoanNotRepaid(f"loan settlement drew {-profit} of {debt_asset} from the executor's own funds")
        output_asset = request.settlement_asset or debt_asset
        output = 0
        if profit > 0:
            output = self.router.swap(
                debt_asset,
                profit,
                output_asset,
                request.venue,
                self.executor,
                min_output=request.min_output_amount,
            )
        net_amount = self._pay_out(request, output_asset, output)

        return LiquidationResult(
            borrower=request.borrower,
            repay_amount=plan.repay_amount,
            seize_tokens=plan.seize_tokens,
            seize_underlying=plan.seize_underlying,
            output_asset=output_asset,
            net_amount=net_amount,
            flash_loan_fee=fee,
        )

    # -----------------------------------------------------------
    # Caller-facing entry points
    # -----------------------------------------------------------

    def _run(self, mode: str, step, request: LiquidationRequest) -> ExecutionResult:
        result = self.tx_manager.execute(f"{mode}_liquidation", step, request)
        if result.ok:
            LIQUIDATIONS_EXECUTED.labels(mode).inc()
            outcome: LiquidationResult = result.value
            log.info(
                "LIQUIDATION_EXECUTED",
                mode=mode,
                pool=request.pool.name,
                borrower=outcome.borrower,
                liquidator=request.liquidator,
                repay_amount=outcome.repay_amount,
                seize_tokens=outcome.seize_tokens,
                output_asset=outcome.output_asset,
                net_amount=outcome.net_amount,
                flash_loan_fee=outcome.flash_loan_fee,
            )
        return result

    def try_liquidate(self, request: LiquidationRequest) -> ExecutionResult:
        return self._run("direct", self._liquidate_direct, request)

    def try_liquidate_with_flash_loan(self, request: LiquidationRequest) -> ExecutionResult:
        return self._run("flash_loan", self._liquidate_with_flash_loan, request)

    def liquidate(self, request: LiquidationRequest) -> LiquidationResult:
        """Liquidator-funded liquidation. Raises the typed error of the failing step."""
        return self.try_liquidate(request).unwrap()

    def liquidate_with_flash_loan(self, request: LiquidationRequest) -> LiquidationResult:
        """Zero-capital liquidation: the repay is borrowed and paid back from the seized collateral."""
        return self.try_liquidate_with_flash_loan(request).unwrap()
