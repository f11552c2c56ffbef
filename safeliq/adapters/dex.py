# /safeliq/adapters/dex.py
# Converts seized collateral into the asset a liquidation has to pay out in,
# through a venue chosen per call.
from typing import Dict, List, Optional, Protocol, Tuple
from web3 import Web3

from safeliq.adapters.ledger import MarketAccounting
from safeliq.core.decorators import retriable_venue_read
from safeliq.core.errors import InsufficientLiquidity, SwapSlippageExceeded, UnsupportedVenue
from safeliq.core.logger import get_logger, SWAPS_EXECUTED
from safeliq.core.types import NATIVE, is_native, to_asset

log = get_logger(__name__)

# (router, factory) pairs of the constant-product venues liquidations can route through
VENUE_PRESETS: Dict[str, Dict[str, str]] = {
    "uniswap": {
        "router": "0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D",
        "factory": "0x5C69bEe701ef814a2B6a3EDD4B1652CB9cc5aA6f",
    },
    "sushiswap": {
        "router": "0xd9e1cE17f2641f24aE83637ab66a2cca9C378B9F",
        "factory": "0xC0AEe478e3658e2610c5F7A4A2E1777cE9e4f2Ac",
    },
    "pancakeswap": {
        "router": "0x10ED43C718714eb63d5aA57B78B54704E256024E",
        "factory": "0xcA143Ce32Fe78f1f7019d7d551a6402fC5350c73",
    },
}


class Venue(Protocol):
    """An exchange back end. ``path`` is the list of assets hopped through, wrapped-native in place of native."""

    name: str

    def quote(self, input_asset: str, input_amount: int, path: List[str]) -> int: ...

    def execute(self, input_asset: str, input_amount: int, path: List[str], account: str) -> int: ...


def get_amount_out(amount_in: int, reserve_in: int, reserve_out: int, fee_bps: int = 30) -> int:
    if reserve_in <= 0 or reserve_out <= 0:
        raise InsufficientLiquidity("pair has no reserves")
    amount_in_with_fee = amount_in * (10_000 - fee_bps)
    return amount_in_with_fee * reserve_out // (reserve_in * 10_000 + amount_in_with_fee)


class UniswapV2Venue:
    """
    Constant-product venue identified by its (router, factory) pair.
    Pair reserves are the pair address's wallet balances on the ledger, so
    swaps roll back together with everything else in the execution.
    """
    def __init__(self, ledger: MarketAccounting, name: str, router_address: str, factory_address: str, fee_bps: int = 30):
        self.ledger = ledger
        self.name = name
        self.router_address = to_asset(router_address)
        self.factory_address = to_asset(factory_address)
        self.fee_bps = fee_bps
        self.pairs: Dict[Tuple[str, str], str] = {}
        log.info("UNISWAP_V2_VENUE_INITIALIZED", venue=name, router=self.router_address, factory=self.factory_address)

    @classmethod
    def from_preset(cls, ledger: MarketAccounting, name: str) -> "UniswapV2Venue":
        try:
            preset = VENUE_PRESETS[name]
        except KeyError:
            raise UnsupportedVenue(f"no preset for venue {name}") from None
        return cls(ledger, name, preset["router"], preset["factory"])

    def _sorted(self, token_a: str, token_b: str) -> Tuple[str, str]:
        a, b = to_asset(token_a), to_asset(token_b)
        if a == b:
            raise ValueError("identical tokens")
        return (a, b) if a.lower() < b.lower() else (b, a)

    def create_pair(self, token_a: str, token_b: str) -> str:
        key = self._sorted(token_a, token_b)
        if key not in self.pairs:
            digest = Web3.solidity_keccak(["address", "address", "address"], [self.factory_address, *key])
            self.pairs[key] = Web3.to_checksum_address("0x" + bytes(digest[-20:]).hex())
            log.info("PAIR_CREATED", venue=self.name, token0=key[0], token1=key[1], pair=self.pairs[key])
        return self.pairs[key]

    def pair_for(self, token_a: str, token_b: str) -> str:
        try:
            return self.pairs[self._sorted(token_a, token_b)]
        except KeyError:
            raise UnsupportedVenue(f"{self.name} has no pair for {token_a}/{token_b}") from None

    def add_liquidity(self, provider: str, token_a: str, amount_a: int, token_b: str, amount_b: int) -> str:
        pair = self.create_pair(token_a, token_b)
        with self.ledger.transaction():
            self.ledger.transfer(token_a, provider, pair, amount_a)
            self.ledger.transfer(token_b, provider, pair, amount_b)
        return pair

    def get_reserves(self, token_in: str, token_out: str) -> Tuple[int, int]:
        pair = self.pair_for(token_in, token_out)
        return self.ledger.balance_of(token_in, pair), self.ledger.balance_of(token_out, pair)

    def get_amounts_out(self, amount_in: int, path: List[str]) -> List[int]:
        if len(path) < 2:
            raise UnsupportedVenue("path needs at least two assets")
        amounts = [amount_in]
        for token_in, token_out in zip(path, path[1:]):
            reserve_in, reserve_out = self.get_reserves(token_in, token_out)
            amounts.append(get_amount_out(amounts[-1], reserve_in, reserve_out, self.fee_bps))
        return amounts

    def quote(self, input_asset: str, input_amount: int, path: List[str]) -> int:
        return self.get_amounts_out(input_amount, path)[-1]

    def execute(self, input_asset: str, input_amount: int, path: List[str], account: str) -> int:
        amounts = self.get_amounts_out(input_amount, path)
        hops = list(zip(path, path[1:]))
        with self.ledger.transaction():
            self.ledger.transfer(path[0], account, self.pair_for(*hops[0]), input_amount)
            for i, (token_in, token_out) in enumerate(hops):
                recipient = self.pair_for(*hops[i + 1]) if i + 1 < len(hops) else account
                self.ledger.transfer(token_out, self.pair_for(token_in, token_out), recipient, amounts[i + 1])
        return amounts[-1]


class CollateralSwapRouter:
    """
    Routes a swap to the venue named by the caller.

    Native input is wrapped before the venue sees it and native output is
    unwrapped, so callers asking for ``NATIVE`` receive native units. The
    minimum output is checked against both the quote and the actual fill.
    """
    def __init__(self, ledger: MarketAccounting, venues: Optional[Dict[str, Venue]] = None):
        self.ledger = ledger
        self.venues: Dict[str, Venue] = dict(venues or {})

    def register_venue(self, name: str, venue: Venue):
        self.venues[name] = venue
        log.info("VENUE_REGISTERED", venue=name)

    def _venue(self, name: Optional[str]) -> Venue:
        if name not in self.venues:
            raise UnsupportedVenue(f"unknown venue {name!r}")
        return self.venues[name]

    def _wrapped(self, asset: str) -> str:
        return self.ledger.wrapped_native if is_native(asset) else to_asset(asset)

    def resolve_path(self, input_asset: str, output_asset: str, path: Optional[List[str]] = None) -> List[str]:
        start, end = self._wrapped(input_asset), self._wrapped(output_asset)
        if not path:
            return [start] if start == end else [start, end]
        resolved = [self._wrapped(a) for a in path]
        if resolved[0] != start or resolved[-1] != end:
            raise UnsupportedVenue(f"path {path} does not lead from {input_asset} to {output_asset}")
        return resolved

    @retriable_venue_read
    def quote(self, input_asset: str, input_amount: int, output_asset: str, venue: Optional[str], path: Optional[List[str]] = None) -> int:
        resolved = self.resolve_path(input_asset, output_asset, path)
        if len(resolved) == 1:
            return input_amount
        return self._venue(venue).quote(resolved[0], input_amount, resolved)

    def swap(
        self,
        input_asset: str,
        input_amount: int,
        output_asset: str,
        venue: Optional[str],
        account: str,
        path: Optional[List[str]] = None,
        min_output: int = 0,
    ) -> int:
        if min_output < 0:
            raise ValueError("min_output must be non-negative")
        input_asset, output_asset = to_asset(input_asset), to_asset(output_asset)
        if input_asset == output_asset:
            if input_amount < min_output:
                raise SwapSlippageExceeded(f"amount {input_amount} below minimum {min_output}")
            return input_amount

        resolved = self.resolve_path(input_asset, output_asset, path)
        # Quote retries back off, so they must not run with the ledger locked
        quoted = self.quote(input_asset, input_amount, output_asset, venue, path)
        if quoted < min_output:
            raise SwapSlippageExceeded(f"quote {quoted} below minimum {min_output}")

        with self.ledger.transaction():
            if is_native(input_asset):
                self.ledger.wrap_native(account, input_amount)
            if len(resolved) == 1:
                amount_out = input_amount
            else:
                amount_out = self._venue(venue).execute(resolved[0], input_amount, resolved, account)
                if amount_out < min_output:
                    raise SwapSlippageExceeded(f"filled {amount_out} below minimum {min_output}")
            if output_asset == NATIVE:
                self.ledger.unwrap_native(account, amount_out)

        if len(resolved) > 1:
            SWAPS_EXECUTED.labels(venue).inc()
        log.info(
            "COLLATERAL_SWAPPED",
            venue=venue,
            input_asset=input_asset,
            input_amount=input_amount,
            output_asset=output_asset,
            output_amount=amount_out,
            path=resolved,
        )
        return amount_out
