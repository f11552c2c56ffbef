# /safeliq/core/decorators.py
# Reusable decorators for operational resilience.
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential, before_sleep_log
from safeliq.core.config import settings
from safeliq.core.errors import VenueUnavailable
from safeliq.core.logger import get_logger
import logging

log = get_logger(__name__)

# Read-only venue calls only. Anything that moves funds must fail the execution instead.
retriable_venue_read = retry(
    retry=retry_if_exception_type(VenueUnavailable),
    stop=stop_after_attempt(settings.QUOTE_RETRY_ATTEMPTS),
    wait=wait_exponential(multiplier=0.05, min=0.05, max=0.5),
    before_sleep=before_sleep_log(log, logging.WARNING),
    reraise=True
)
