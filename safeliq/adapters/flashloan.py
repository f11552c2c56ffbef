# /safeliq/adapters/flashloan.py
# Sources repay capital for a liquidation from an external liquidity venue for the
# duration of one atomic execution.

from typing import Callable, Protocol, TypeVar

from safeliq.adapters.ledger import MarketAccounting
from safeliq.core.errors import FlashLoanNotRepaid, InsufficientLiquidity
from safeliq.core.kill import check, KillSwitchActiveError
from safeliq.core.logger import get_logger, FLASH_LOANS_SETTLED
from safeliq.core.tx import TransactionKillSwitchError
from safeliq.core.types import to_asset

log = get_logger(__name__)

T = TypeVar("T")


class FlashLender(Protocol):
    address: str

    def fee_for(self, asset: str, amount: int) -> int: ...


class UniswapV2FlashLender:
    """
    A lender whose liquidity is its own wallet balance on the ledger.
    The fee matches a constant-product flash swap: ``amount * 3 / 997 + 1``.
    """
    def __init__(self, address: str):
        self.address = to_asset(address)

    def fee_for(self, asset: str, amount: int) -> int:
        return amount * 3 // 997 + 1


class FlashLoanCoordinator:
    """
    Lends ``amount`` to the receiver, runs the callback, then collects
    ``amount + fee`` back from the receiver.

    Must run inside an open ledger transaction: if the receiver cannot pay
    back in full the raised ``FlashLoanNotRepaid`` unwinds the loan together
    with everything the callback did. Only what the receiver gained over its
    balance at loan time counts towards repayment.
    """
    def __init__(self, ledger: MarketAccounting, lender: FlashLender, receiver: str):
        self.ledger = ledger
        self.lender = lender
        self.receiver = to_asset(receiver)
        log.info("FLASHLOAN_COORDINATOR_INITIALIZED", lender=lender.address, receiver=self.receiver)

    def _check_kill_switch(self):
        try:
            check()
        except KillSwitchActiveError:
            raise TransactionKillSwitchError("Flash loan blocked by system kill switch.")

    def quote_fee(self, asset: str, amount: int) -> int:
        return self.lender.fee_for(to_asset(asset), amount)

    def execute_with_flash_loan(self, asset: str, amount: int, callback: Callable[[int], T]) -> T:
        self._check_kill_switch()
        if not self.ledger.in_transaction:
            raise RuntimeError("flash loans can only be issued inside an atomic execution")
        if amount <= 0:
            raise ValueError("flash loan amount must be positive")

        asset = to_asset(asset)
        available = self.ledger.balance_of(asset, self.lender.address)
        if available < amount:
            raise InsufficientLiquidity(f"lender holds {available} of {asset}, loan needs {amount}")

        fee = self.quote_fee(asset, amount)
        log.info("FLASHLOAN_INITIATED", asset=asset, amount=amount, fee=fee, lender=self.lender.address)
        # Funds the receiver held before the loan are not available for repayment
        baseline = self.ledger.balance_of(asset, self.receiver)
        self.ledger.transfer(asset, self.lender.address, self.receiver, amount)

        result = callback(amount)

        owed = amount + fee
        gathered = self.ledger.balance_of(asset, self.receiver) - baseline
        if gathered < owed:
            raise FlashLoanNotRepaid(f"receiver gathered {gathered} of {asset}, owes {owed}")
        self.ledger.transfer(asset, self.receiver, self.lender.address, owed)
        FLASH_LOANS_SETTLED.inc()
        log.info("FLASHLOAN_REPAID", asset=asset, amount=amount, fee=fee)
        return result
