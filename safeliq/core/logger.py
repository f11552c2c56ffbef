# /safeliq/core/logger.py
import logging
import structlog
from structlog.contextvars import bind_contextvars
import sentry_sdk
from prometheus_client import Counter
from safeliq.core.config import settings
import json
import hmac
import hashlib
import os

# --- Prometheus Metrics ---
LIQUIDATIONS_EXECUTED = Counter("safeliq_liquidations_executed_total", "Total number of liquidations committed", ["mode"])
EXECUTIONS_REVERTED = Counter("safeliq_executions_reverted_total", "Total number of atomic executions rolled back", ["reason"])
FLASH_LOANS_SETTLED = Counter("safeliq_flash_loans_settled_total", "Total number of flash loans repaid in full")
SWAPS_EXECUTED = Counter("safeliq_swaps_executed_total", "Total number of collateral swaps", ["venue"])
ORACLE_BINDINGS_UPDATED = Counter("safeliq_oracle_bindings_updated_total", "Oracle bindings written by a pool admin")
KILL_TRIGGERED = Counter("safeliq_kill_triggered_total", "Times the kill switch has halted execution")

SIGNING_KEY = (
    settings.LOG_SIGNING_KEY.get_secret_value().encode()
    if settings.LOG_SIGNING_KEY
    else b"insecure"
)

AUDIT_FILE = os.path.join(settings.SESSION_DIR, "audit.log")

def _append_audit_line(line: str):
    os.makedirs(os.path.dirname(AUDIT_FILE) or ".", exist_ok=True)
    with open(AUDIT_FILE, "a", encoding="utf-8") as f:
        f.write(line + "\n")

def sign_and_append(logger, method_name: str, event_dict: dict) -> dict:
    """Structlog processor that signs each event and appends it to the audit log.

    Every line of the audit log is ``<json payload>|<hmac-sha256 hex>`` so a
    liquidation trail can be verified offline with the signing key.
    """
    payload = json.dumps(event_dict, sort_keys=True, default=str)
    sig = hmac.new(SIGNING_KEY, payload.encode(), hashlib.sha256).hexdigest()
    _append_audit_line(payload + "|" + sig)
    event_dict["signature"] = sig
    return event_dict

def configure_logging():
    if settings.SENTRY_DSN:
        sentry_sdk.init(dsn=settings.SENTRY_DSN.get_secret_value(), traces_sample_rate=1.0)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            sign_and_append,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(settings.LOG_LEVEL)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

def get_logger(name: str):
    return structlog.get_logger(name)

def bind_execution(label: str, execution_id: str):
    """Tags every event emitted during one atomic execution."""
    bind_contextvars(execution=label, execution_id=execution_id)

def clear_execution():
    structlog.contextvars.unbind_contextvars("execution", "execution_id")

configure_logging()
log = get_logger("safeliq.System")
