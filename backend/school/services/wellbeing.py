"""Student self-service: study goals, the 40-day tracker, mood check-ins and feedback."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Mapping

from ..errors import RecordNotFoundError, ValidationError
from ..gateway import TableGateway
from ..schema import MOODS
from .common import Caller, clean_text, parse_date, require_text, require_uuid, utcnow_iso

TRACKER_DAYS = 40
DAILY_CHECKS = ("study_done", "homework_done", "sleep_done")


@dataclass
class WellbeingService:
    gateway: TableGateway

    # --- Goals ------------------------------------------------------------------

    def list_goals(self, caller: Caller) -> List[dict]:
        return self.gateway.select(caller.actor, "goals", eq={"user_id": caller.sub}, order_by="created_at", desc=True)

    def create_goal(self, caller: Caller, data: Mapping[str, Any]) -> dict:
        hours = data.get("hours_target")
        try:
            target = float(hours)
        except (TypeError, ValueError):
            raise ValidationError(code="invalid_hours_target") from None
        if isinstance(hours, bool) or target <= 0:
            raise ValidationError(code="invalid_hours_target")
        deadline = parse_date(data.get("deadline"), code="invalid_deadline")
        if deadline is None:
            raise ValidationError(code="invalid_deadline")
        row = {
            "user_id": caller.sub,
            "subject": require_text(data.get("subject"), max_len=200, code="invalid_subject"),
            "hours_target": target,
            "deadline": deadline,
        }
        return self.gateway.insert(caller.actor, "goals", [row])[0]

    def toggle_goal(self, caller: Caller, goal_id: object) -> dict:
        gid = require_uuid(goal_id, code="invalid_goal_id")
        rows = self.gateway.select(caller.actor, "goals", eq={"id": gid, "user_id": caller.sub}, limit=1)
        if not rows:
            raise RecordNotFoundError(code="goal_not_found")
        return self.gateway.update(
            caller.actor, "goals", {"completed": not bool(rows[0].get("completed"))}, eq={"id": gid}
        )[0]

    def delete_goal(self, caller: Caller, goal_id: object) -> None:
        gid = require_uuid(goal_id, code="invalid_goal_id")
        if not self.gateway.delete(caller.actor, "goals", eq={"id": gid, "user_id": caller.sub}):
            raise RecordNotFoundError(code="goal_not_found")

    # --- Progress tracker ---------------------------------------------------------

    def tracker(self, caller: Caller) -> dict:
        rows = self.gateway.select(caller.actor, "progress_tracker", eq={"user_id": caller.sub}, limit=1)
        if rows:
            return rows[0]
        return self.gateway.upsert(caller.actor, "progress_tracker", {"user_id": caller.sub}, on_conflict=("user_id",))

    def set_checks(self, caller: Caller, checks: Mapping[str, Any]) -> dict:
        current = self.tracker(caller)
        values = {k: bool(checks[k]) for k in DAILY_CHECKS if k in checks}
        if not values:
            raise ValidationError(code="empty_update")
        values["last_updated"] = utcnow_iso()
        return self.gateway.update(caller.actor, "progress_tracker", values, eq={"id": current["id"]})[0]

    def advance_day(self, caller: Caller) -> dict:
        """Move to the next day once all daily checks are done."""
        current = self.tracker(caller)
        if not all(current.get(k) for k in DAILY_CHECKS):
            raise ValidationError(code="checks_incomplete")
        values = {
            "current_day": min(int(current.get("current_day") or 0) + 1, TRACKER_DAYS),
            "streak": int(current.get("streak") or 0) + 1,
            "last_updated": utcnow_iso(),
            **{k: False for k in DAILY_CHECKS},
        }
        return self.gateway.update(caller.actor, "progress_tracker", values, eq={"id": current["id"]})[0]

    # --- Mood ---------------------------------------------------------------------

    def record_mood(self, caller: Caller, mood: object, note: object = None) -> dict:
        value = clean_text(mood, max_len=16, code="invalid_mood")
        if value not in MOODS:
            raise ValidationError(code="invalid_mood")
        return self.gateway.insert(
            caller.actor,
            "mood_entries",
            [{"user_id": caller.sub, "mood": value, "note": clean_text(note, max_len=1000, code="invalid_note")}],
        )[0]

    def list_moods(self, caller: Caller, *, limit: int = 30) -> List[dict]:
        return self.gateway.select(
            caller.actor, "mood_entries", eq={"user_id": caller.sub}, order_by="created_at", desc=True, limit=limit
        )

    # --- Feedback -----------------------------------------------------------------

    def submit_feedback(self, caller: Caller, name: object, message: object) -> dict:
        row = {
            "user_id": caller.sub or None,
            "name": require_text(name, max_len=200, code="invalid_name"),
            "message": require_text(message, max_len=4000, code="invalid_message"),
        }
        return self.gateway.insert(caller.actor, "feedback", [row])[0]

    def list_feedback(self, caller: Caller) -> List[dict]:
        return self.gateway.select(caller.actor, "feedback", order_by="created_at", desc=True)
