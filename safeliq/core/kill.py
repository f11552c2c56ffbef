# /safeliq/core/kill.py
import os
from datetime import datetime, timezone
from safeliq.core.config import settings
from safeliq.core.logger import get_logger, KILL_TRIGGERED

log = get_logger(__name__)

KILL_SWITCH_FILE = os.path.join(settings.SESSION_DIR, ".system_kill_activated")

class KillSwitchActiveError(Exception):
    pass

def is_kill_switch_active() -> bool:
    return os.path.exists(KILL_SWITCH_FILE)

def activate_kill_switch(reason: str):
    timestamp = datetime.now(timezone.utc).isoformat()
    content = f"ACTIVATED at {timestamp}\nREASON: {reason}\n"
    os.makedirs(os.path.dirname(KILL_SWITCH_FILE), exist_ok=True)
    with open(KILL_SWITCH_FILE, "w") as f:
        f.write(content)
    log.critical("KILL_SWITCH_ACTIVATED", reason=reason)

def deactivate_kill_switch():
    if os.path.exists(KILL_SWITCH_FILE):
        os.remove(KILL_SWITCH_FILE)
        log.warning("KILL_SWITCH_DEACTIVATED")

def check():
    """Raises if the kill switch is active. Call before moving funds."""
    if is_kill_switch_active():
        KILL_TRIGGERED.inc()
        raise KillSwitchActiveError("System kill switch is active.")
