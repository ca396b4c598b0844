from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from projects.errors import PermissionDenied

logger = logging.getLogger(__name__)


class Role(str, Enum):
    PLAYER = "player"
    GM = "gm"
    ADMIN = "admin"


class Operation(str, Enum):
    VIEW = "view"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    REORDER = "reorder"


@dataclass(frozen=True)
class AccessRequest:
    acting_user_id: int
    role: Role
    is_campaign_member: bool
    owns_character: bool


def resolve_role(is_admin: bool, membership_role: str | None) -> Role:
    if is_admin:
        return Role.ADMIN
    if (membership_role or "").strip().lower() == Role.GM.value:
        return Role.GM
    return Role.PLAYER


def _is_admin(request: AccessRequest) -> bool:
    return request.role is Role.ADMIN


def _is_campaign_gm(request: AccessRequest) -> bool:
    return request.role is Role.GM and request.is_campaign_member


def _owns_in_campaign(request: AccessRequest) -> bool:
    return request.is_campaign_member and request.owns_character


def can_view(request: AccessRequest) -> bool:
    return _is_admin(request) or request.is_campaign_member


def can_create(request: AccessRequest) -> bool:
    return _is_admin(request) or _is_campaign_gm(request) or _owns_in_campaign(request)


def can_update(request: AccessRequest) -> bool:
    return _is_admin(request) or _is_campaign_gm(request) or _owns_in_campaign(request)


def can_delete(request: AccessRequest) -> bool:
    return _is_admin(request) or _is_campaign_gm(request) or _owns_in_campaign(request)


def can_reorder(request: AccessRequest) -> bool:
    return _is_admin(request) or _is_campaign_gm(request)


PREDICATES: dict[Operation, Callable[[AccessRequest], bool]] = {
    Operation.VIEW: can_view,
    Operation.CREATE: can_create,
    Operation.UPDATE: can_update,
    Operation.DELETE: can_delete,
    Operation.REORDER: can_reorder,
}


def is_allowed(operation: Operation, request: AccessRequest) -> bool:
    return PREDICATES[Operation(operation)](request)


def require(operation: Operation, request: AccessRequest) -> None:
    if is_allowed(operation, request):
        return
    action = Operation(operation).value
    logger.warning(
        "Denied %s for user %s (role=%s)",
        action,
        request.acting_user_id,
        request.role.value,
    )
    raise PermissionDenied(f"You do not have permission to {action} this project.")
