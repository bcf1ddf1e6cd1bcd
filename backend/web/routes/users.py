"""
Users API routes: admin user management and profile directory search.

Why:
    Admins list accounts with their roles and switch the role of a user;
    teachers and admins search profiles by name (e.g. to enroll or message).
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field, field_validator

from school.services.users import UserAdminService

from .common import SERVICE_ERRORS, csrf_guard, error_response, get_gateway, json_private, require_roles

users_router = APIRouter(tags=["Users"])
logger = logging.getLogger("eduportal.web.users")


class RoleChange(BaseModel):
    role: str = Field(..., max_length=32)

    @field_validator("role")
    @classmethod
    def _normalize(cls, v: str) -> str:
        return v.strip().lower()


@users_router.get("/api/admin/users")
async def admin_list_users(request: Request):
    """List profiles with their roles and primary role (admin only)."""
    caller, error = require_roles(request, "admin")
    if error:
        return error
    try:
        users = UserAdminService(get_gateway()).list_users(caller)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="list_users")
    return json_private(users)


@users_router.put("/api/admin/users/{user_id}/role")
async def admin_set_role(request: Request, user_id: str, payload: RoleChange):
    """
    Replace the role of a user with a single role.

    Behavior:
        - 200 with the updated user role row; 400 `invalid_role`;
          404 `user_not_found`.
        - Every change is written to the activity log.
    """
    caller, error = require_roles(request, "admin")
    if error:
        return error
    csrf = csrf_guard(request)
    if csrf:
        return csrf
    try:
        row = UserAdminService(get_gateway()).set_role(caller, user_id, payload.role)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="set_role")
    logger.info("Role changed user=%s role=%s by=%s", user_id, payload.role, caller.sub)
    return json_private(row)


@users_router.get("/api/users/search")
async def users_search(request: Request, q: str = "", limit: int = 20):
    """Search profiles by display name (teachers and admins, min 2 characters)."""
    caller, error = require_roles(request, "teacher", "admin")
    if error:
        return error
    try:
        results = UserAdminService(get_gateway()).search_profiles(caller, q, limit=limit)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="search_profiles")
    return json_private(results)
