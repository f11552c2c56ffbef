# /safeliq/core/errors.py
# Typed failures raised by the oracle layer, the ledger and the liquidation pipeline.
# Any of these raised inside an atomic execution rolls the whole execution back.


class LiquidationError(Exception):
    """Base class for every failure the core surfaces to a caller."""


# --- Eligibility: the caller can pick different parameters, never retried automatically ---

class EligibilityError(LiquidationError):
    pass

class BorrowerHealthy(EligibilityError):
    pass

class RepayTooLarge(EligibilityError):
    pass

class NothingToRepay(EligibilityError):
    pass


# --- Configuration: surfaced to the admin caller ---

class ConfigurationError(LiquidationError):
    pass

class OracleNotConfigured(ConfigurationError):
    pass

class OverwriteNotPermitted(ConfigurationError):
    pass

class ArgumentLengthMismatch(ConfigurationError):
    pass

class AlreadyInitialized(ConfigurationError):
    pass

class Unauthorized(ConfigurationError):
    pass

class MarketNotListed(ConfigurationError):
    pass


# --- Execution: full rollback of the atomic sequence ---

class ExecutionError(LiquidationError):
    pass

class InsufficientCollateral(ExecutionError):
    pass

class FlashLoanNotRepaid(ExecutionError):
    pass

class SwapSlippageExceeded(ExecutionError):
    pass

class UnsupportedVenue(ExecutionError):
    pass

class VenueUnavailable(ExecutionError):
    """Transient venue failure; quote reads retry on it."""

class PriceUnavailable(ExecutionError):
    pass

class InsufficientProfit(ExecutionError):
    pass

class InsufficientLiquidity(ExecutionError):
    pass

class InsufficientBalance(ExecutionError):
    pass

class MarketPaused(ExecutionError):
    pass
