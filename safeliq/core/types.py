# /safeliq/core/types.py
# Value objects shared by the oracle layer, the evaluator and the liquidation engine.
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from web3 import Web3

from safeliq.core.config import MANTISSA, settings
from safeliq.core.errors import MarketNotListed

NATIVE = "0x0000000000000000000000000000000000000000"


def to_asset(address: str) -> str:
    """Normalises an asset or account address to its checksummed form."""
    return Web3.to_checksum_address(address)


def address_for(label: str) -> str:
    """Deterministic address derived from a label, for accounts and contracts created in-process."""
    digest = Web3.keccak(text=label)
    return Web3.to_checksum_address("0x" + bytes(digest[-20:]).hex())


def is_native(asset: str) -> bool:
    return to_asset(asset) == NATIVE


class Market(BaseModel):
    """One lending market of a pool. Balances live in the ledger, not here."""
    address: str
    underlying: str
    symbol: str = ""
    decimals: int = 18
    collateral_factor_mantissa: int = 0
    borrow_paused: bool = False
    mint_paused: bool = False

    @field_validator("address", "underlying")
    @classmethod
    def _checksum(cls, v: str) -> str:
        return to_asset(v)

    @field_validator("collateral_factor_mantissa")
    @classmethod
    def _collateral_factor_in_range(cls, v: int) -> int:
        if not 0 <= v < MANTISSA:
            raise ValueError("collateral factor must be in [0, 1)")
        return v


class Pool(BaseModel):
    """A named set of markets sharing one oracle and one set of risk parameters."""
    name: str
    address: str
    admin: str
    oracle: Any
    close_factor_mantissa: int = Field(default_factory=lambda: settings.default_close_factor_mantissa)
    liquidation_incentive_mantissa: int = Field(default_factory=lambda: settings.default_liquidation_incentive_mantissa)
    markets: Dict[str, Market] = Field(default_factory=dict)

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @field_validator("address", "admin")
    @classmethod
    def _checksum(cls, v: str) -> str:
        return to_asset(v)

    @field_validator("close_factor_mantissa")
    @classmethod
    def _close_factor_in_range(cls, v: int) -> int:
        if not 0 < v <= MANTISSA:
            raise ValueError("close factor must be in (0, 1]")
        return v

    @field_validator("liquidation_incentive_mantissa")
    @classmethod
    def _incentive_above_one(cls, v: int) -> int:
        if v <= MANTISSA:
            raise ValueError("liquidation incentive must be greater than 1")
        return v

    def list_market(self, market: Market) -> Market:
        if market.underlying in self.markets:
            raise ValueError(f"{market.underlying} is already listed in pool {self.name}")
        self.markets[market.underlying] = market
        return market

    def market_for(self, asset: str) -> Market:
        try:
            return self.markets[to_asset(asset)]
        except KeyError:
            raise MarketNotListed(f"no market for {asset} in pool {self.name}") from None


class LiquidationRequest(BaseModel):
    """Everything one liquidation attempt needs. Lives for a single execution."""
    borrower: str
    pool: Pool
    debt_market: Market
    collateral_market: Market
    liquidator: str
    repay_amount: int = 0 # 0 = largest amount the close factor and the collateral allow
    settlement_asset: Optional[str] = None # None = keep the seized supply balance
    venue: Optional[str] = None
    path: Optional[List[str]] = None
    min_output_amount: int = 0
    min_profit_amount: int = 0

    model_config = ConfigDict(frozen=True)

    @field_validator("borrower", "liquidator", "settlement_asset")
    @classmethod
    def _checksum(cls, v):
        return to_asset(v) if v is not None else v

    @field_validator("repay_amount", "min_output_amount", "min_profit_amount")
    @classmethod
    def _non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("amounts must be non-negative")
        return v


class AccountLiquidity(BaseModel):
    collateral_value_usd: int
    borrow_value_usd: int
    liquidity: int
    shortfall: int

    model_config = ConfigDict(frozen=True)

    @property
    def is_liquidatable(self) -> bool:
        return self.shortfall > 0


class LiquidationPreview(BaseModel):
    """Amounts a liquidation would move if executed against the current ledger."""
    repay_amount: int
    seize_tokens: int
    seize_underlying: int
    shortfall: int

    model_config = ConfigDict(frozen=True)


class LiquidationResult(BaseModel):
    borrower: str
    repay_amount: int
    seize_tokens: int
    seize_underlying: int
    output_asset: str
    net_amount: int
    flash_loan_fee: int = 0

    model_config = ConfigDict(frozen=True)
