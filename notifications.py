"""
Permission-gated notification gateway.

The gateway decides nothing about *when* to notify; callers (the session
and the schedulers) do. It only checks permission and hands a message
dict to the delivery callback supplied by the host (the server pushes it
over WebSocket). An ungranted permission is a silent no-op, never an error.
"""

import logging

log = logging.getLogger("notifications")

MILESTONE_MESSAGES = {
    "fed": "Your body is still processing food.",
    "early": "Blood sugar is starting to drop. Stay hydrated!",
    "fasting": "You're now in the fasting state! Fat burning begins.",
    "fat-burning": "Fat burning mode activated! Keep going!",
    "ketosis": "Entering ketosis! Your body is using fat for fuel.",
    "deep-ketosis": "Deep ketosis! Maximum mental clarity.",
    "autophagy": "Autophagy activated! Cellular renewal in progress.",
}


class NotificationGateway:
    """Sends titled alerts through `deliver` once permission is granted.

    deliver:  async callable(message_dict)
    permission_requester:  async callable() -> bool, asks the user
    """

    def __init__(self, deliver=None, permission_requester=None):
        self.permission = "default"
        self._deliver = deliver
        self._permission_requester = permission_requester

    @property
    def enabled(self):
        return self.permission == "granted"

    def set_permission(self, granted):
        self.permission = "granted" if granted else "denied"

    async def request_permission(self):
        if self.enabled or self._permission_requester is None:
            return self.enabled
        try:
            granted = bool(await self._permission_requester())
        except Exception:
            log.warning("Permission request failed", exc_info=True)
            return False
        self.set_permission(granted)
        return granted

    async def send(self, title, body, tag=None, require_interaction=False):
        """Deliver one notification. Returns False when skipped or failed."""
        if not self.enabled or self._deliver is None:
            log.debug(f"Notification skipped (permission={self.permission}): {title}")
            return False
        msg = {
            "type": "notification",
            "title": title,
            "body": body,
            "tag": tag,
            "require_interaction": require_interaction,
        }
        try:
            await self._deliver(msg)
        except Exception:
            log.warning(f"Notification delivery failed: {title}", exc_info=True)
            return False
        return True

    async def notify_fast_start(self, protocol):
        return await self.send(
            "Fast Started!",
            f"Your {protocol} fast has begun. Stay strong!",
            tag="fast-start",
        )

    async def notify_fast_complete(self, hours):
        return await self.send(
            "Fast Complete!",
            f"Congratulations! You completed a {hours:.1f} hour fast!",
            tag="fast-complete",
            require_interaction=True,
        )

    async def notify_fast_milestone(self, hours, zone):
        body = MILESTONE_MESSAGES.get(zone, f"You've reached {hours} hours!")
        return await self.send(f"{hours}h Milestone!", body, tag=f"milestone-{hours}")

    async def notify_achievement(self, title, body):
        return await self.send(title, body, tag="achievement", require_interaction=True)

    async def notify_hydration(self, current_ml, goal_ml):
        if goal_ml <= 0:
            return False
        pct = round(current_ml / goal_ml * 100)
        left = max(round(goal_ml - current_ml), 0)
        if pct < 25:
            body = f"Time to drink some water! You're at {pct}% of your daily goal."
        elif pct < 50:
            body = f"Keep hydrating! {left}ml to go."
        elif pct < 75:
            body = f"Great progress! Only {left}ml left to reach your goal."
        else:
            body = f"Almost there! Just {left}ml more to hit your goal!"
        return await self.send("Hydration Reminder", body, tag="hydration-reminder")
