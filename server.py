#!/usr/bin/env python3
"""
FastTrack Server: FastAPI + WebSocket front for the fasting session engine.

Proxies fast start/end/pause/resume to the backend of record, keeps the
local session reconciled with it, and pushes milestone and hydration
notifications to connected clients over WebSocket.

Usage:
    FASTTRACK_API_URL=https://example.com/wp-json/fasttrack/v1 \
    FASTTRACK_API_NONCE=... python3 server.py
    # Open ws://<host>:8000/ws for live updates
"""

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_validator

import config
from fast_session import MAX_BACKDATE_MINUTES, FastInProgressError, FastSession
from fasting_zones import FASTING_ZONES, MILESTONE_HOURS, PROTOCOLS
from notifications import NotificationGateway
from schedulers import HydrationReminderScheduler, MilestoneScheduler
from session_store import HttpSessionStore, RemoteStoreError

logging.basicConfig(level=logging.INFO)
log = logging.getLogger("fasttrack")


@asynccontextmanager
async def lifespan(application):
    global store, gateway, sess, milestones, reminders

    store = HttpSessionStore()
    gateway = NotificationGateway(deliver=manager.broadcast, permission_requester=ask_client_permission)
    sess = FastSession(store, notifier=gateway)
    state["hydration_goal_ml"] = config.get("hydration_goal_ml")
    milestones, reminders = build_schedulers()

    await sess.initialize_from_remote()
    milestones.start()
    reminders.start()
    state["running"] = True
    sync_task = asyncio.create_task(_sync_loop())

    log.info("Server started, connect to ws://<host>:8000/ws for live updates")

    yield

    # Shutdown
    state["running"] = False
    sync_task.cancel()
    milestones.stop()
    reminders.stop()
    await store.close()
    log.info("Server stopped")


app = FastAPI(title="FastTrack Session Engine", lifespan=lifespan)

# CORS for Vite dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

store: HttpSessionStore = None
gateway: NotificationGateway = None
sess: FastSession = None
milestones: MilestoneScheduler = None
reminders: HydrationReminderScheduler = None

# --- Shared state ---
state = {
    "running": False,
    "hydration_ml": 0,
    "hydration_goal_ml": 2500,
    "hydration_date": "",
}


def _today():
    return time.strftime("%Y-%m-%d")


def current_hydration():
    """Today's intake; rolls over to zero on a new local day."""
    today = _today()
    if state["hydration_date"] != today:
        state["hydration_date"] = today
        state["hydration_ml"] = 0
    return state["hydration_ml"]


def build_schedulers():
    async def on_milestone(hours, label):
        await manager.broadcast({"type": "milestone", "hours": hours, "zone": label, "fast_id": sess.fast_id})

    milestone_sched = MilestoneScheduler(
        sess,
        gateway,
        thresholds=MILESTONE_HOURS,
        interval=config.get("milestone_interval"),
        on_milestone=on_milestone,
    )
    reminder_sched = HydrationReminderScheduler(
        gateway,
        get_current=current_hydration,
        get_goal=lambda: state["hydration_goal_ml"],
        interval=config.get("hydration_interval"),
        active_hours=(config.get("active_hours_start"), config.get("active_hours_end")),
        threshold=config.get("hydration_threshold"),
    )
    return milestone_sched, reminder_sched


async def _sync_loop():
    """Re-reconcile with the backend to pick up changes from other devices."""
    interval = config.get("sync_interval")
    while state["running"]:
        await asyncio.sleep(interval)
        try:
            await sess.sync_with_remote()
            await manager.broadcast(sess.to_dict())
        except Exception:
            log.exception("Background sync failed")


# --- WebSocket manager ---


class ConnectionManager:
    def __init__(self):
        self.connections: list[WebSocket] = []

    async def connect(self, ws: WebSocket):
        await ws.accept()
        self.connections.append(ws)

    def disconnect(self, ws: WebSocket):
        if ws in self.connections:
            self.connections.remove(ws)

    async def broadcast(self, msg: dict):
        data = json.dumps(msg)
        dead = []
        for ws in self.connections:
            try:
                await ws.send_text(data)
            except Exception:
                dead.append(ws)
        for ws in dead:
            self.disconnect(ws)


manager = ConnectionManager()


# --- Notification permission ---

# Futures waiting on a client's answer to a permission_request
permission_waiters: list[asyncio.Future] = []
background_tasks = set()


async def ask_client_permission():
    """Broadcast a permission_request and wait for the first client answer.

    Raises asyncio.TimeoutError when nobody answers, which leaves the
    permission undecided.
    """
    fut = asyncio.get_running_loop().create_future()
    permission_waiters.append(fut)
    try:
        await manager.broadcast({"type": "permission_request"})
        return await asyncio.wait_for(fut, timeout=config.get("permission_timeout"))
    finally:
        if fut in permission_waiters:
            permission_waiters.remove(fut)


def answer_permission(granted):
    while permission_waiters:
        fut = permission_waiters.pop()
        if not fut.done():
            fut.set_result(granted)


async def _prompt_permission():
    await gateway.request_permission()
    await manager.broadcast({"type": "permission", "permission": gateway.permission})


def _handle_client_message(text):
    try:
        msg = json.loads(text)
    except ValueError:
        log.debug(f"Ignoring non-JSON client message: {text[:80]!r}")
        return
    if isinstance(msg, dict) and msg.get("type") == "permission":
        answer_permission(bool(msg.get("granted")))


# --- Pydantic models ---


class StartRequest(BaseModel):
    protocol: str | None = None
    backdate_minutes: int = 0

    @field_validator("protocol")
    @classmethod
    def validate_protocol(cls, v):
        if v is not None and v not in PROTOCOLS:
            raise ValueError(f"Unknown protocol (expected one of {', '.join(PROTOCOLS)})")
        return v

    @field_validator("backdate_minutes")
    @classmethod
    def validate_backdate(cls, v):
        if not 0 <= v <= MAX_BACKDATE_MINUTES:
            raise ValueError(f"Backdate must be between 0 and {MAX_BACKDATE_MINUTES} minutes")
        return v


class EndRequest(BaseModel):
    notes: str | None = None
    mood: str | None = None


class ProtocolRequest(BaseModel):
    protocol: str


class CustomHoursRequest(BaseModel):
    hours: float


class HydrationRequest(BaseModel):
    amount_ml: int

    @field_validator("amount_ml")
    @classmethod
    def validate_amount(cls, v):
        if v <= 0:
            raise ValueError("amount_ml must be positive")
        return v


class PermissionRequest(BaseModel):
    granted: bool


def _error(e, status_code):
    return JSONResponse({"error": str(e)}, status_code=status_code)


async def _broadcast_fast():
    await manager.broadcast(sess.to_dict())


# --- Fast endpoints ---


@app.get("/api/fast")
async def get_fast():
    return sess.to_dict()


@app.post("/api/fast/start")
async def api_start_fast(req: StartRequest):
    try:
        await sess.start_fast(req.protocol, req.backdate_minutes)
    except RemoteStoreError as e:
        return _error(e, 502)
    except ValueError as e:
        return _error(e, 400)
    await _broadcast_fast()
    return sess.to_dict()


@app.post("/api/fast/end")
async def api_end_fast(req: EndRequest):
    result = await sess.end_fast(req.notes, req.mood)
    await _broadcast_fast()
    return {"freeze_earned": result.freeze_earned, "streak": result.streak, **sess.to_dict()}


@app.post("/api/fast/pause")
async def api_pause_fast():
    await sess.pause_fast()
    await _broadcast_fast()
    return sess.to_dict()


@app.post("/api/fast/resume")
async def api_resume_fast():
    await sess.resume_fast()
    await _broadcast_fast()
    return sess.to_dict()


@app.post("/api/fast/sync")
async def api_sync_fast():
    """Force a reconcile with the backend (ignores the sync debounce)."""
    await sess.initialize_from_remote()
    await _broadcast_fast()
    return sess.to_dict()


@app.post("/api/fast/protocol")
async def api_set_protocol(req: ProtocolRequest):
    try:
        sess.set_protocol(req.protocol)
    except FastInProgressError as e:
        return _error(e, 409)
    except ValueError as e:
        return _error(e, 400)
    return sess.to_dict()


@app.post("/api/fast/custom-hours")
async def api_set_custom_hours(req: CustomHoursRequest):
    try:
        sess.set_custom_hours(req.hours)
    except FastInProgressError as e:
        return _error(e, 409)
    except ValueError as e:
        return _error(e, 400)
    return sess.to_dict()


@app.get("/api/zones")
async def get_zones():
    return {"zones": [z.to_dict() for z in FASTING_ZONES]}


@app.get("/api/protocols")
async def get_protocols():
    return {"protocols": PROTOCOLS}


# --- Hydration & notifications ---


@app.get("/api/hydration")
async def get_hydration():
    return {"current_ml": current_hydration(), "goal_ml": state["hydration_goal_ml"]}


@app.post("/api/hydration")
async def log_hydration(req: HydrationRequest):
    state["hydration_ml"] = current_hydration() + req.amount_ml
    return {"current_ml": state["hydration_ml"], "goal_ml": state["hydration_goal_ml"]}


@app.post("/api/notifications/permission")
async def set_notification_permission(req: PermissionRequest):
    """Record the client's answer to the notification permission prompt."""
    gateway.set_permission(req.granted)
    answer_permission(req.granted)
    return {"permission": gateway.permission}


@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    await manager.connect(ws)
    try:
        await ws.send_text(json.dumps(sess.to_dict()))
    except Exception:
        pass
    if gateway.permission == "default" and not permission_waiters:
        task = asyncio.create_task(_prompt_permission())
        background_tasks.add(task)
        task.add_done_callback(background_tasks.discard)
    try:
        while True:
            _handle_client_message(await ws.receive_text())
    except WebSocketDisconnect:
        manager.disconnect(ws)
    except Exception:
        manager.disconnect(ws)
    if not manager.connections:
        for fut in list(permission_waiters):
            fut.cancel()
        permission_waiters.clear()


if __name__ == "__main__":
    uvicorn.run(app, host=config.get("host"), port=config.get("port"))
