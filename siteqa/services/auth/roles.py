from __future__ import annotations

from enum import StrEnum

from siteqa.domain.enums import Role


class Capability(StrEnum):
    VIEW_TEAM = "view_team"
    CREATE_REPORTS = "create_reports"
    INVITE_MEMBERS = "invite_members"
    MANAGE_BILLING = "manage_billing"
    MANAGE_TEAM = "manage_team"


# Single source of truth for what each team role may do.
ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.OWNER: frozenset(Capability),
    Role.MEMBER: frozenset({Capability.VIEW_TEAM, Capability.CREATE_REPORTS}),
}


def normalize_role(role: str) -> Role:
    # Enforce the closed, lowercased role vocabulary.
    try:
        return Role(role.strip().lower())
    except ValueError as exc:
        raise ValueError(f"Unsupported role: {role}") from exc


def role_allows(role: str | Role, capability: Capability) -> bool:
    try:
        resolved = normalize_role(str(role))
    except ValueError:
        return False
    return capability in ROLE_CAPABILITIES[resolved]
