# /safeliq/adapters/ledger.py
# The lending-pool ledger as this core sees it. Balances and market state are owned
# by the ledger; the core only reads them and asks for the transfers a liquidation needs.
from typing import ContextManager, List, Protocol

from safeliq.core.types import Market, Pool


class MarketAccounting(Protocol):
    """
    Read/write surface of the ledger.

    Every method is an atomic, consistent primitive. ``transaction()`` groups
    several of them: it holds ``lock`` for its duration and restores the
    pre-transaction state if the block raises.
    """

    wrapped_native: str

    @property
    def lock(self) -> ContextManager: ...

    @property
    def in_transaction(self) -> bool: ...

    def transaction(self) -> ContextManager: ...

    # --- positions ---
    def supply_of(self, pool: Pool, market: Market, account: str) -> int:
        """Supplied balance in market balance units."""
        ...

    def borrow_of(self, pool: Pool, market: Market, account: str) -> int:
        """Outstanding borrow in underlying units."""
        ...

    def exchange_rate(self, pool: Pool, market: Market) -> int:
        """Underlying per balance unit, 18-decimal mantissa."""
        ...

    def markets_of(self, pool: Pool, account: str) -> List[Market]: ...

    def enter_market(self, pool: Pool, market: Market, account: str) -> None: ...

    def transfer_repay(self, pool: Pool, market: Market, payer: str, borrower: str, amount: int) -> int: ...

    def transfer_seize(self, pool: Pool, market: Market, borrower: str, liquidator: str, tokens: int) -> None: ...

    def redeem(self, pool: Pool, market: Market, account: str, tokens: int) -> int:
        """Burns supply balance and pays the underlying to ``account``. Returns underlying paid."""
        ...

    # --- wallets ---
    def balance_of(self, asset: str, account: str) -> int: ...

    def transfer(self, asset: str, sender: str, recipient: str, amount: int) -> None: ...

    def wrap_native(self, account: str, amount: int) -> None: ...

    def unwrap_native(self, account: str, amount: int) -> None: ...
