# /safeliq/core/control_api.py
from fastapi import FastAPI, HTTPException, Header, Depends
from safeliq.core.kill import activate_kill_switch, deactivate_kill_switch, is_kill_switch_active
from safeliq.core.logger import get_logger
from safeliq.core.config import settings

app = FastAPI()
log = get_logger(__name__)

def verify(authorization: str | None = Header(None)):
    token = settings.CONTROL_API_TOKEN
    if not token:
        raise HTTPException(status_code=500, detail="Control token not configured")
    if authorization != f"Bearer {token}":
        raise HTTPException(status_code=401, detail="Unauthorized")

@app.get("/healthz")
async def healthz():
    return {"status": "ok", "kill_switch_active": is_kill_switch_active()}

@app.post("/kill/toggle")
async def toggle_kill(reason: str = "", auth: None = Depends(verify)):
    if is_kill_switch_active():
        deactivate_kill_switch()
    else:
        activate_kill_switch(reason or "manual override")
    log.warning("KILL_SWITCH_TOGGLED", active=is_kill_switch_active())
    return {"kill_switch_active": is_kill_switch_active()}
