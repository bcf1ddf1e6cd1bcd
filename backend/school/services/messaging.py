"""Direct messages between portal users."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List

from ..errors import RecordNotFoundError, ValidationError
from ..gateway import TableGateway
from .common import Caller, require_text, require_uuid


@dataclass
class MessagingService:
    gateway: TableGateway

    def send(self, caller: Caller, receiver_id: object, message: object) -> dict:
        receiver = require_uuid(receiver_id, code="invalid_receiver")
        body = require_text(message, max_len=4000, code="invalid_message")
        if receiver == caller.sub:
            raise ValidationError(code="invalid_receiver")
        if not self.gateway.select(caller.actor, "profiles", columns=["id"], eq={"id": receiver}, limit=1):
            raise RecordNotFoundError(code="receiver_not_found")
        return self.gateway.insert(
            caller.actor, "messages", [{"sender_id": caller.sub, "receiver_id": receiver, "message": body}]
        )[0]

    def inbox(self, caller: Caller) -> List[dict]:
        sent = self.gateway.select(caller.actor, "messages", eq={"sender_id": caller.sub})
        received = self.gateway.select(caller.actor, "messages", eq={"receiver_id": caller.sub})
        seen: Dict[str, dict] = {}
        for row in sent + received:
            seen[str(row["id"])] = row
        return sorted(seen.values(), key=lambda r: str(r.get("created_at") or ""), reverse=True)

    def conversation(self, caller: Caller, partner_id: object) -> List[dict]:
        """Return the thread with `partner_id` oldest first and mark inbound unread rows read."""
        partner = require_uuid(partner_id, code="invalid_partner")
        outbound = self.gateway.select(caller.actor, "messages", eq={"sender_id": caller.sub, "receiver_id": partner})
        inbound = self.gateway.select(caller.actor, "messages", eq={"sender_id": partner, "receiver_id": caller.sub})
        unread_ids = [str(r["id"]) for r in inbound if not r.get("read")]
        if unread_ids:
            self.gateway.update(caller.actor, "messages", {"read": True}, in_={"id": unread_ids})
            for row in inbound:
                if str(row["id"]) in unread_ids:
                    row["read"] = True
        return sorted(outbound + inbound, key=lambda r: str(r.get("created_at") or ""))

    def contacts(self, caller: Caller) -> List[dict]:
        profiles = self.gateway.select(caller.actor, "profiles", columns=["id", "full_name", "avatar_url"])
        unread = self.gateway.select(
            caller.actor, "messages", columns=["sender_id"], eq={"receiver_id": caller.sub, "read": False}
        )
        counts: Dict[str, int] = {}
        for row in unread:
            sender = str(row["sender_id"])
            counts[sender] = counts.get(sender, 0) + 1
        out = [
            {
                "id": str(p["id"]),
                "full_name": p.get("full_name") or "",
                "avatar_url": p.get("avatar_url"),
                "unread": counts.get(str(p["id"]), 0),
            }
            for p in profiles
            if str(p["id"]) != caller.sub
        ]
        out.sort(key=lambda c: (-c["unread"], c["full_name"].lower()))
        return out
