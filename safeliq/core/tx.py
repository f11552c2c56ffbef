# /safeliq/core/tx.py
# Runs a multi-step liquidation as one indivisible unit of work over the ledger.
import uuid
from typing import Any, Callable, Optional
from pydantic import BaseModel, ConfigDict

from safeliq.adapters.ledger import MarketAccounting
from safeliq.core.errors import LiquidationError
from safeliq.core.kill import is_kill_switch_active
from safeliq.core.logger import get_logger, bind_execution, clear_execution, EXECUTIONS_REVERTED

log = get_logger(__name__)

class TransactionKillSwitchError(Exception):
    pass

class ExecutionResult(BaseModel):
    """Outcome of one atomic execution: either committed with a value, or rolled back with the error."""
    execution_id: str
    label: str
    committed: bool
    value: Any = None
    error: Optional[LiquidationError] = None

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    @property
    def ok(self) -> bool:
        return self.committed

    def unwrap(self) -> Any:
        if not self.committed:
            raise self.error
        return self.value

class TransactionManager:
    """
    Owns the transaction-scoped context of every liquidation.

    ``execute`` opens a ledger transaction, runs the step function inside it
    and commits only if the function returns. A ``LiquidationError`` rolls the
    ledger back and comes back as a rolled-back ``ExecutionResult``; any other
    exception rolls back as well and propagates unchanged.
    """
    def __init__(self, ledger: MarketAccounting):
        self.ledger = ledger

    def execute(self, label: str, fn: Callable[..., Any], *args, **kwargs) -> ExecutionResult:
        if is_kill_switch_active():
            log.critical("EXECUTION_BLOCKED_BY_KILL_SWITCH", label=label)
            raise TransactionKillSwitchError("Kill switch is active. Halting execution.")

        execution_id = uuid.uuid4().hex
        bind_execution(label, execution_id)
        try:
            with self.ledger.transaction():
                value = fn(*args, **kwargs)
            log.info("EXECUTION_COMMITTED", label=label)
        except LiquidationError as e:
            EXECUTIONS_REVERTED.labels(type(e).__name__).inc()
            log.warning("EXECUTION_ROLLED_BACK", label=label, reason=type(e).__name__, error=str(e))
            return ExecutionResult(execution_id=execution_id, label=label, committed=False, error=e)
        except Exception as e:
            EXECUTIONS_REVERTED.labels(type(e).__name__).inc()
            log.error("EXECUTION_FAILED", label=label, error=str(e), exc_info=True)
            raise
        finally:
            clear_execution()

        return ExecutionResult(execution_id=execution_id, label=label, committed=True, value=value)
