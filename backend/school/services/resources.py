"""Teaching resources (links) and class announcements."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Mapping

from ..errors import AccessDeniedError, ValidationError
from ..gateway import TableGateway
from .common import (
    Caller,
    check_url,
    clean_text,
    fetch_one,
    require_class_access,
    require_text,
    require_uuid,
)

RESOURCE_TYPES = ("link", "document", "video", "presentation", "other")


def _resource_type(value: object) -> str:
    kind = (clean_text(value, max_len=32, code="invalid_resource_type") or "link").lower()
    if kind not in RESOURCE_TYPES:
        raise ValidationError(code="invalid_resource_type")
    return kind


@dataclass
class ResourceService:
    gateway: TableGateway

    def _owned(self, caller: Caller, resource_id: object) -> dict:
        rid = require_uuid(resource_id, code="invalid_resource_id")
        resource = fetch_one(self.gateway, caller.actor, "resources", rid, code="resource_not_found")
        if not caller.is_admin and str(resource.get("uploaded_by") or "") != caller.sub:
            raise AccessDeniedError(code="not_resource_owner")
        return resource

    def list_own(self, caller: Caller) -> List[dict]:
        return self.gateway.select(
            caller.actor, "resources", eq={"uploaded_by": caller.sub}, order_by="created_at", desc=True
        )

    def create(self, caller: Caller, data: Mapping[str, Any]) -> dict:
        class_id = None
        if data.get("class_id"):
            class_id = str(require_class_access(self.gateway, caller, data.get("class_id"))["id"])
        row = {
            "class_id": class_id,
            "title": require_text(data.get("title"), max_len=200, code="invalid_title"),
            "description": clean_text(data.get("description"), max_len=4000, code="invalid_description"),
            "resource_type": _resource_type(data.get("resource_type")),
            "resource_url": check_url(data.get("resource_url")),
            "subject": clean_text(data.get("subject"), max_len=200, code="invalid_subject"),
            "uploaded_by": caller.sub,
        }
        return self.gateway.insert(caller.actor, "resources", [row])[0]

    def update(self, caller: Caller, resource_id: object, changes: Mapping[str, Any]) -> dict:
        resource = self._owned(caller, resource_id)
        values: dict = {}
        if "title" in changes:
            values["title"] = require_text(changes["title"], max_len=200, code="invalid_title")
        if "description" in changes:
            values["description"] = clean_text(changes["description"], max_len=4000, code="invalid_description")
        if "resource_type" in changes:
            values["resource_type"] = _resource_type(changes["resource_type"])
        if "resource_url" in changes:
            values["resource_url"] = check_url(changes["resource_url"])
        if "subject" in changes:
            values["subject"] = clean_text(changes["subject"], max_len=200, code="invalid_subject")
        if "class_id" in changes:
            values["class_id"] = (
                str(require_class_access(self.gateway, caller, changes["class_id"])["id"]) if changes["class_id"] else None
            )
        if not values:
            raise ValidationError(code="empty_update")
        return self.gateway.update(caller.actor, "resources", values, eq={"id": resource["id"]})[0]

    def delete(self, caller: Caller, resource_id: object) -> None:
        resource = self._owned(caller, resource_id)
        self.gateway.delete(caller.actor, "resources", eq={"id": resource["id"]})


@dataclass
class AnnouncementService:
    gateway: TableGateway

    def list_own(self, caller: Caller) -> List[dict]:
        return self.gateway.select(
            caller.actor, "announcements", eq={"teacher_id": caller.sub}, order_by="created_at", desc=True
        )

    def create(self, caller: Caller, data: Mapping[str, Any]) -> dict:
        if not data.get("class_id"):
            raise ValidationError(code="invalid_class_id")
        cls = require_class_access(self.gateway, caller, data.get("class_id"))
        row = {
            "class_id": str(cls["id"]),
            "teacher_id": caller.sub,
            "title": require_text(data.get("title"), max_len=200, code="invalid_title"),
            "content": require_text(data.get("content"), max_len=10000, code="invalid_content"),
        }
        return self.gateway.insert(caller.actor, "announcements", [row])[0]

    def delete(self, caller: Caller, announcement_id: object) -> None:
        aid = require_uuid(announcement_id, code="invalid_announcement_id")
        announcement = fetch_one(self.gateway, caller.actor, "announcements", aid, code="announcement_not_found")
        if not caller.is_admin and str(announcement.get("teacher_id") or "") != caller.sub:
            raise AccessDeniedError(code="not_announcement_owner")
        self.gateway.delete(caller.actor, "announcements", eq={"id": aid})
