# /safeliq/adapters/oracle.py
# Price resolution for pool markets: a per-pool aggregator that delegates each asset
# to a registered oracle, falling back to a default one.
from typing import Dict, List, Optional, Protocol

from safeliq.core.errors import (
    AlreadyInitialized,
    ArgumentLengthMismatch,
    OracleNotConfigured,
    OverwriteNotPermitted,
    Unauthorized,
)
from safeliq.core.logger import get_logger, ORACLE_BINDINGS_UPDATED
from safeliq.core.types import to_asset

log = get_logger(__name__)


class PriceOracle(Protocol):
    """Anything that can price an underlying asset (18-decimal, common unit per whole token)."""

    def get_underlying_price(self, asset: str) -> int: ...


class FixedPriceOracle:
    """Returns the same price for every asset."""
    def __init__(self, price: int):
        self.price = price

    def get_underlying_price(self, asset: str) -> int:
        return self.price


class SimplePriceOracle:
    """Prices set directly by its admin. Unknown assets price at 0, which callers treat as unavailable."""
    def __init__(self, admin: str):
        self.admin = to_asset(admin)
        self.prices: Dict[str, int] = {}

    def set_direct_price(self, asset: str, price: int, caller: Optional[str] = None):
        if caller is not None and to_asset(caller) != self.admin:
            raise Unauthorized("only the oracle admin can set prices")
        if price < 0:
            raise ValueError("price must be non-negative")
        asset = to_asset(asset)
        old = self.prices.get(asset, 0)
        self.prices[asset] = price
        log.info("DIRECT_PRICE_SET", asset=asset, old_price=old, new_price=price)

    def get_underlying_price(self, asset: str) -> int:
        return self.prices.get(to_asset(asset), 0)


class PriceOracleAggregator:
    """
    Resolves prices for one pool.

    Resolution order is the explicit binding for the asset, then the default
    oracle. Bindings are mutated only by the pool admin. When initialized with
    ``can_admin_overwrite=False`` an existing binding can never be replaced by
    a different oracle, although re-adding the same one is accepted.
    """
    def __init__(self):
        self.oracles: Dict[str, PriceOracle] = {}
        self.default_oracle: Optional[PriceOracle] = None
        self.admin: Optional[str] = None
        self.can_admin_overwrite = False
        self.initialized = False

    def initialize(
        self,
        assets: List[str],
        oracles: List[PriceOracle],
        default_oracle: Optional[PriceOracle],
        admin: str,
        can_admin_overwrite: bool,
    ):
        if self.initialized:
            raise AlreadyInitialized("oracle aggregator is already initialized")
        if len(assets) != len(oracles):
            raise ArgumentLengthMismatch(f"{len(assets)} assets but {len(oracles)} oracles")

        self.admin = to_asset(admin)
        self.can_admin_overwrite = can_admin_overwrite
        self.default_oracle = default_oracle
        for asset, oracle in zip(assets, oracles):
            self.oracles[to_asset(asset)] = oracle
        self.initialized = True
        ORACLE_BINDINGS_UPDATED.inc(len(assets))
        log.info(
            "ORACLE_AGGREGATOR_INITIALIZED",
            admin=self.admin,
            assets=[to_asset(a) for a in assets],
            has_default=default_oracle is not None,
            can_admin_overwrite=can_admin_overwrite,
        )

    def _only_admin(self, caller: str):
        if not self.initialized:
            raise OracleNotConfigured("oracle aggregator is not initialized")
        if to_asset(caller) != self.admin:
            raise Unauthorized("sender is not the oracle admin")

    def add(self, assets: List[str], oracles: List[PriceOracle], caller: str):
        """Registers or replaces per-asset oracles. Validates the whole batch before writing any of it."""
        self._only_admin(caller)
        if len(assets) != len(oracles):
            raise ArgumentLengthMismatch(f"{len(assets)} assets but {len(oracles)} oracles")

        normalized = [to_asset(a) for a in assets]
        if not self.can_admin_overwrite:
            for asset, oracle in zip(normalized, oracles):
                current = self.oracles.get(asset)
                if current is not None and current is not oracle:
                    raise OverwriteNotPermitted(f"admin cannot overwrite the oracle for {asset}")

        changed = []
        for asset, oracle in zip(normalized, oracles):
            if self.oracles.get(asset) is not oracle:
                self.oracles[asset] = oracle
                changed.append(asset)
        if changed:
            ORACLE_BINDINGS_UPDATED.inc(len(changed))
        log.info("ORACLE_BINDINGS_ADDED", assets=normalized, changed=changed)

    def set_default_oracle(self, oracle: Optional[PriceOracle], caller: str):
        self._only_admin(caller)
        self.default_oracle = oracle
        log.info("DEFAULT_ORACLE_SET", has_default=oracle is not None)

    def change_admin(self, new_admin: str, caller: str):
        self._only_admin(caller)
        old = self.admin
        self.admin = to_asset(new_admin)
        log.warning("ORACLE_ADMIN_CHANGED", old_admin=old, new_admin=self.admin)

    def oracle_for(self, asset: str) -> Optional[PriceOracle]:
        return self.oracles.get(to_asset(asset), self.default_oracle)

    def get_underlying_price(self, asset: str) -> int:
        oracle = self.oracle_for(asset)
        if oracle is None:
            raise OracleNotConfigured(f"no oracle bound for {asset} and no default oracle")
        return oracle.get_underlying_price(to_asset(asset))
