"""
Permission evaluation.

Permission codes are namespaced per app: `<appId>.<action>` (e.g. `viso.access`).

Two ways to answer "may this user do X":

- check_permission(): ask the database through the `has_permission` RPC, for
  the role of the authenticated session. This is the normal path.
- evaluate_permission_for_role(): evaluate the `role_permissions` rule table
  for an arbitrary role in Python. Used when a privileged user previews the app
  as another role, where the RPC would answer for the wrong role.

Rule table semantics:
- Only `is_allowed = true` rows are loaded; a missing rule is a deny.
- Several rows for the same code are OR-ed: any matching scope grants.
- Scope types: global/absent, site, site_type, area, area_kind. Anything else
  never matches.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from viso.services.supabase_client import QueryResult

logger = logging.getLogger("viso")

ROLE_PERMISSIONS_COLUMNS = (
    "scope_type,scope_site_id,scope_area_id,scope_site_type,scope_area_kind,"
    "permission:app_permissions(code,app:apps(code))"
)


class QueryClient(Protocol):
    async def rpc(self, name: str, params: dict[str, Any]) -> QueryResult: ...

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        single: bool = False,
    ) -> QueryResult: ...


def normalize_permission_code(app_id: str, code: str) -> str:
    """Prefix `code` with `<app_id>.` unless it already is."""
    if code.startswith(f"{app_id}."):
        return code
    return f"{app_id}.{code}"


# =============================================================================
# MODELS
# =============================================================================

class ScopeType(str, Enum):
    GLOBAL = "global"
    SITE = "site"
    SITE_TYPE = "site_type"
    AREA = "area"
    AREA_KIND = "area_kind"


@dataclass(frozen=True)
class PermissionContext:
    """Where the action happens. Both parts are optional."""
    site_id: str | None = None
    area_id: str | None = None


@dataclass(frozen=True)
class RolePermissionEntry:
    code: str
    scope_type: str | None = None
    scope_site_id: str | None = None
    scope_area_id: str | None = None
    scope_site_type: str | None = None
    scope_area_kind: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "RolePermissionEntry | None":
        """Build from a `role_permissions` row; None if the code can't be resolved."""
        permission = row.get("permission") or {}
        app = permission.get("app") or {}
        app_code = app.get("code") or ""
        perm_code = permission.get("code") or ""
        if not app_code or not perm_code:
            return None

        return cls(
            code=f"{app_code}.{perm_code}",
            scope_type=row.get("scope_type"),
            scope_site_id=row.get("scope_site_id"),
            scope_area_id=row.get("scope_area_id"),
            scope_site_type=row.get("scope_site_type"),
            scope_area_kind=row.get("scope_area_kind"),
        )


class RuleSetStatus(str, Enum):
    LOADED = "loaded"
    FETCH_FAILED = "fetch_failed"


@dataclass
class RuleSet:
    """Allowed rules of one role. A failed fetch is an empty set that remembers why."""
    role: str
    status: RuleSetStatus = RuleSetStatus.LOADED
    entries: list[RolePermissionEntry] = field(default_factory=list)
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.status == RuleSetStatus.FETCH_FAILED

    def for_code(self, code: str) -> list[RolePermissionEntry]:
        return [e for e in self.entries if e.code == code]


@dataclass(frozen=True)
class ScopeMeta:
    site_type: str | None = None
    area_kind: str | None = None


class PermissionDecision(str, Enum):
    ALLOWED = "allowed"
    NO_RULE = "no_rule"
    SCOPE_MISMATCH = "scope_mismatch"
    FETCH_FAILED = "fetch_failed"

    @property
    def allowed(self) -> bool:
        return self is PermissionDecision.ALLOWED


# =============================================================================
# LOADING
# =============================================================================

async def load_role_permissions(client: QueryClient, role: str) -> RuleSet:
    """Load every allowed rule for `role`."""
    if not role:
        return RuleSet(role=role)

    result = await client.select(
        "role_permissions",
        ROLE_PERMISSIONS_COLUMNS,
        {"role": role, "is_allowed": True},
    )
    if result.error or result.data is None:
        logger.warning(f"[RBAC] Could not load permissions for role {role}: {result.error}")
        return RuleSet(role=role, status=RuleSetStatus.FETCH_FAILED, error=result.error)

    entries = []
    for row in result.data:
        entry = RolePermissionEntry.from_row(row)
        if entry:
            entries.append(entry)

    return RuleSet(role=role, entries=entries)


async def resolve_context_meta(
    client: QueryClient,
    context: PermissionContext,
    need_site_type: bool,
    need_area_kind: bool,
) -> ScopeMeta:
    """Look up the site type and/or area kind, skipping what no rule needs."""
    site_type = None
    area_kind = None

    if need_site_type and context.site_id:
        result = await client.select("sites", "site_type", {"id": context.site_id}, single=True)
        if result.error:
            logger.warning(f"[RBAC] Site lookup failed for {context.site_id}: {result.error}")
        site_type = (result.data or {}).get("site_type")

    if need_area_kind and context.area_id:
        result = await client.select("areas", "kind", {"id": context.area_id}, single=True)
        if result.error:
            logger.warning(f"[RBAC] Area lookup failed for {context.area_id}: {result.error}")
        area_kind = (result.data or {}).get("kind")

    return ScopeMeta(site_type=site_type, area_kind=area_kind)


# =============================================================================
# MATCHING
# =============================================================================

def scope_matches(entry: RolePermissionEntry, context: PermissionContext, meta: ScopeMeta) -> bool:
    scope_type = entry.scope_type
    if not scope_type or scope_type == ScopeType.GLOBAL:
        return True

    if scope_type == ScopeType.SITE:
        if not context.site_id:
            return False
        if entry.scope_site_id and entry.scope_site_id != context.site_id:
            return False
        return True

    if scope_type == ScopeType.SITE_TYPE:
        if not context.site_id or not meta.site_type:
            return False
        if entry.scope_site_type and entry.scope_site_type != meta.site_type:
            return False
        return True

    if scope_type == ScopeType.AREA:
        if not context.area_id:
            return False
        if entry.scope_area_id and entry.scope_area_id != context.area_id:
            return False
        return True

    if scope_type == ScopeType.AREA_KIND:
        if not context.area_id or not meta.area_kind:
            return False
        if entry.scope_area_kind and entry.scope_area_kind != meta.area_kind:
            return False
        return True

    return False


async def evaluate_permission_for_role(
    client: QueryClient,
    role: str,
    app_id: str,
    code: str,
    context: PermissionContext | None = None,
) -> PermissionDecision:
    context = context or PermissionContext()
    normalized = normalize_permission_code(app_id, code)

    rules = await load_role_permissions(client, role)
    if rules.failed:
        return PermissionDecision.FETCH_FAILED

    matching = rules.for_code(normalized)
    if not matching:
        return PermissionDecision.NO_RULE

    scope_types = {entry.scope_type for entry in matching}
    need_site_type = ScopeType.SITE_TYPE.value in scope_types
    need_area_kind = ScopeType.AREA_KIND.value in scope_types

    if need_site_type or need_area_kind:
        meta = await resolve_context_meta(client, context, need_site_type, need_area_kind)
    else:
        meta = ScopeMeta()

    if any(scope_matches(entry, context, meta) for entry in matching):
        return PermissionDecision.ALLOWED

    return PermissionDecision.SCOPE_MISMATCH


async def is_permission_allowed_for_role(
    client: QueryClient,
    role: str,
    app_id: str,
    code: str,
    context: PermissionContext | None = None,
) -> bool:
    decision = await evaluate_permission_for_role(client, role, app_id, code, context)
    if not decision.allowed:
        logger.debug(f"[RBAC] {role} denied {normalize_permission_code(app_id, code)}: {decision.value}")
    return decision.allowed


async def check_permission(
    client: QueryClient,
    app_id: str,
    code: str,
    context: PermissionContext | None = None,
) -> bool:
    """Ask `has_permission` for the session's own role. Errors deny."""
    context = context or PermissionContext()
    result = await client.rpc(
        "has_permission",
        {
            "p_permission_code": normalize_permission_code(app_id, code),
            "p_site_id": context.site_id,
            "p_area_id": context.area_id,
        },
    )
    if result.error:
        return False
    return bool(result.data)
