"""
Role override: let owners and general managers preview the app as another role.

The override is a single cookie holding a role code. It is a UI testing aid,
not an account switch: the authenticated identity never changes, and the
permissions of the override role are always re-derived from its own rule set.

Only the actual roles in PRIVILEGED_ROLE_OVERRIDES may override, and only to a
role in the ROLE_OPTIONS catalog.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass

from viso.auth.permissions import (
    PermissionContext,
    QueryClient,
    check_permission,
    is_permission_allowed_for_role,
)

logger = logging.getLogger("viso")

ROLE_OVERRIDE_COOKIE = "nexo_role_override"
ROLE_OVERRIDE_MAX_AGE = 60 * 60 * 24 * 30  # 30 days

PRIVILEGED_ROLE_OVERRIDES = frozenset({
    "propietario",
    "gerente_general",
})


@dataclass(frozen=True)
class RoleOption:
    value: str
    label: str


ROLE_OPTIONS = [
    RoleOption("propietario", "Propietario"),
    RoleOption("gerente_general", "Gerente general"),
    RoleOption("gerente", "Gerente"),
    RoleOption("bodeguero", "Bodeguero"),
    RoleOption("cajero", "Cajero"),
    RoleOption("barista", "Barista"),
    RoleOption("cocinero", "Cocinero"),
    RoleOption("repostero", "Repostero"),
    RoleOption("panadero", "Panadero"),
    RoleOption("pastelero", "Pastelero"),
    RoleOption("logistica", "Logistica"),
]

KNOWN_ROLES = frozenset(option.value for option in ROLE_OPTIONS)


@dataclass(frozen=True)
class EmployeeIdentity:
    role: str = ""
    site_id: str | None = None

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLE_OVERRIDES


async def load_employee_identity(client: QueryClient, user_id: str) -> EmployeeIdentity:
    """Role and default site of the employee behind `user_id`. Empty on failure."""
    result = await client.select("employees", "role,site_id", {"id": user_id}, single=True)
    if result.error:
        logger.warning(f"[OVERRIDE] Employee lookup failed for {user_id}: {result.error}")
    row = result.data or {}
    return EmployeeIdentity(role=str(row.get("role") or ""), site_id=row.get("site_id"))


def get_role_override(cookies: Mapping[str, str]) -> str | None:
    """The override role from the cookie, or None when unset or blank."""
    value = (cookies.get(ROLE_OVERRIDE_COOKIE) or "").strip()
    return value or None


def can_use_role_override(actual_role: str | None, override_role: str | None) -> bool:
    if not override_role:
        return False
    if not actual_role:
        return False
    if actual_role not in PRIVILEGED_ROLE_OVERRIDES:
        return False
    if override_role not in KNOWN_ROLES:
        logger.warning(f"[OVERRIDE] Ignoring unknown override role {override_role!r}")
        return False
    return True


async def check_permission_with_role_override(
    client: QueryClient,
    cookies: Mapping[str, str],
    app_id: str,
    code: str,
    actual_role: str,
    context: PermissionContext | None = None,
) -> bool:
    """
    Check one permission, honouring the override cookie.

    With a usable override the rule table is evaluated for the override role;
    otherwise the session's own permissions are asked through the RPC.
    """
    override_role = get_role_override(cookies)
    if can_use_role_override(actual_role, override_role):
        return await is_permission_allowed_for_role(client, override_role, app_id, code, context)
    return await check_permission(client, app_id, code, context)
