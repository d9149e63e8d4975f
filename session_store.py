#!/usr/bin/env python3
"""
Async client for the fasting backend's REST API.

The backend is the record of truth for fasts. This module only speaks the
wire format: it turns responses into RemoteSession / EndResult models and
every failure (transport, HTTP status, error body, bad payload) into
RemoteStoreError. Fallback policy lives in fast_session.

Usage:
    from session_store import HttpSessionStore

    store = HttpSessionStore("https://example.com/wp-json/fasttrack/v1", nonce="...")
    active = await store.fetch_active_session()
    ...
    await store.close()
"""

import logging

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

import config

log = logging.getLogger("session_store")


class RemoteStoreError(Exception):
    """A remote call failed. status_code is None for transport errors."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class RemoteSession(BaseModel):
    """Active fast as reported by the backend."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int | None = None
    start_time: str | None = Field(default=None, alias="startTime")
    target_hours: float | None = Field(default=None, alias="targetHours")
    protocol: str | None = None
    status: str | None = None
    paused_at: str | None = Field(default=None, alias="pausedAt")
    # Seconds on the wire
    paused_duration: int = Field(default=0, alias="pausedDuration")

    @field_validator("paused_duration", mode="before")
    @classmethod
    def default_paused_duration(cls, v):
        return 0 if v is None else v

    @property
    def paused_duration_ms(self):
        return max(self.paused_duration, 0) * 1000


class EndResult(BaseModel):
    """Streak outcome of ending a fast."""

    model_config = ConfigDict(extra="ignore")

    freeze_earned: bool = False
    streak: int = 0

    @field_validator("freeze_earned", "streak", mode="before")
    @classmethod
    def none_to_default(cls, v, info):
        if v is None:
            return False if info.field_name == "freeze_earned" else 0
        return v


class HttpSessionStore:
    def __init__(self, base_url=None, nonce=None, timeout=None, transport=None):
        self.base_url = base_url or config.get("api_url")
        headers = {"Content-Type": "application/json"}
        nonce = config.get("api_nonce") if nonce is None else nonce
        if nonce:
            headers["X-WP-Nonce"] = nonce
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout or config.get("request_timeout"),
            transport=transport,
        )

    async def close(self):
        await self._client.aclose()

    async def _request(self, method, path, payload=None):
        """Send one request, return decoded JSON (or None for an empty body)."""
        try:
            resp = await self._client.request(method, path, json=payload)
        except httpx.HTTPError as e:
            log.warning(f"{method} {path} failed: {e}")
            raise RemoteStoreError(f"Network error: {e}") from e

        data = None
        if resp.text.strip():
            try:
                data = resp.json()
            except ValueError:
                if resp.is_success:
                    return None
                raise RemoteStoreError("Invalid server response", resp.status_code)

        if not resp.is_success:
            message = None
            if isinstance(data, dict):
                message = data.get("message") or data.get("error")
            raise RemoteStoreError(message or f"HTTP error! status: {resp.status_code}", resp.status_code)

        # WordPress can answer 200 with an error object
        if isinstance(data, dict) and "code" in data and "message" in data:
            raise RemoteStoreError(data["message"], resp.status_code)
        return data

    @staticmethod
    def _parse(model, data):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise RemoteStoreError(f"Invalid server response: {e.error_count()} field error(s)") from e

    async def fetch_active_session(self):
        data = await self._request("GET", "/fasts/active")
        if not data:
            return None
        return self._parse(RemoteSession, data)

    async def create_session(self, protocol, target_hours, backdate_minutes=0):
        payload = {"protocol": protocol, "targetHours": target_hours, "backdateMinutes": backdate_minutes}
        data = await self._request("POST", "/fasts", payload)
        if not data:
            raise RemoteStoreError("Failed to start fast")
        return self._parse(RemoteSession, data)

    async def end_session(self, fast_id, notes=None, mood=None):
        payload = {k: v for k, v in (("notes", notes), ("mood", mood)) if v is not None}
        data = await self._request("POST", f"/fasts/{fast_id}/end", payload)
        return self._parse(EndResult, data if isinstance(data, dict) else {})

    async def pause_session(self, fast_id):
        await self._request("POST", f"/fasts/{fast_id}/pause")

    async def resume_session(self, fast_id):
        await self._request("POST", f"/fasts/{fast_id}/resume")
