# /safeliq/core/config.py
from decimal import Decimal
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import SecretStr

MANTISSA = 10**18


def to_mantissa(value) -> int:
    """Converts a human-readable fraction ("0.5", Decimal("1.08")) into an 18-decimal mantissa."""
    return int(Decimal(str(value)) * MANTISSA)


class Settings(BaseSettings):
    # Risk parameters applied to pools created without explicit values
    DEFAULT_CLOSE_FACTOR: Decimal = Decimal("0.5")
    DEFAULT_LIQUIDATION_INCENTIVE: Decimal = Decimal("1.08")

    # Account that holds funds while a liquidation is in flight
    EXECUTOR_ADDRESS: str = "0x00000000000000000000000000000000005AFE11"

    # Venue quote reads are retried on transient failures
    QUOTE_RETRY_ATTEMPTS: int = 3

    LOG_SIGNING_KEY: SecretStr | None = None
    SENTRY_DSN: SecretStr | None = None

    # Operational Settings
    LOG_LEVEL: str = "INFO"
    HEALTH_PORT: int = 8080
    SESSION_DIR: str = "/tmp/safeliq_session" # audit log and kill switch flag
    CONTROL_API_TOKEN: str | None = None

    @property
    def default_close_factor_mantissa(self) -> int:
        return to_mantissa(self.DEFAULT_CLOSE_FACTOR)

    @property
    def default_liquidation_incentive_mantissa(self) -> int:
        return to_mantissa(self.DEFAULT_LIQUIDATION_INCENTIVE)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

try:
    settings = Settings()
except Exception as e:
    # Late import to avoid circular dependency only for logging the failure
    try:
        from safeliq.core.logger import get_logger, configure_logging
        configure_logging()
        log = get_logger("safeliq.Config")
        log.critical("FAILED_TO_LOAD_SETTINGS", error=str(e))
    except Exception:
        print("FAILED_TO_LOAD_SETTINGS", e)
    raise SystemExit(1)
