"""
Fixed Queries - Closed, Typed Query Language

🔎 Named Query Kinds:
The metadata layer never accepts ad-hoc queries. Each entity module defines a
handful of immutable descriptors, one per query kind, and every backend
registers a translator that turns a descriptor into its native query.
"""

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Sequence, Tuple


class FixedQueryType(Enum):
    """Every query kind understood by at least one entity type"""
    REPOSITORY_GET_ALL = "RepositoryGetAll"
    REPOSITORY_GET_BY_ID = "RepositoryGetById"
    REPOSITORY_BY_ORGANIZATION_ID = "RepositoryByOrganizationId"

    TEAM_JOIN_ALL = "TeamJoinAll"
    TEAM_JOIN_ACTIVE = "TeamJoinActive"
    TEAM_JOIN_ACTIVE_BY_TEAM = "TeamJoinActiveByTeam"
    TEAM_JOIN_ACTIVE_BY_TEAMS = "TeamJoinActiveByTeams"
    TEAM_JOIN_ACTIVE_BY_THIRD_PARTY_ID = "TeamJoinActiveByThirdPartyId"

    AUDIT_LOG_BY_REPOSITORY_ID = "AuditLogByRepositoryId"
    AUDIT_LOG_BY_TEAM_ID = "AuditLogByTeamId"
    AUDIT_LOG_BY_ACTOR_ID = "AuditLogByActorId"
    AUDIT_LOG_BY_USER_ID = "AuditLogByUserId"
    AUDIT_LOG_UNDO_CANDIDATES = "AuditLogUndoCandidates"

    TOKEN_BY_CORPORATE_ID = "TokenByCorporateId"
    TOKEN_GET_ALL = "TokenGetAll"

    ORGANIZATION_SETTING_GET_ALL = "OrganizationSettingGetAll"
    ORGANIZATION_SETTING_MOST_RECENT_ACTIVE = "OrganizationSettingMostRecentActive"

    ORGANIZATION_MEMBER_CACHE_GET_ALL = "OrganizationMemberCacheGetAll"
    ORGANIZATION_MEMBER_CACHE_BY_ORGANIZATION_ID = "OrganizationMemberCacheByOrganizationId"
    ORGANIZATION_MEMBER_CACHE_BY_USER_ID = "OrganizationMemberCacheByUserId"


@dataclass(frozen=True)
class FixedQuery:
    """Base for immutable query descriptors; subclasses set ``fixed_query_type``"""
    fixed_query_type: ClassVar[FixedQueryType]


def require_text(value: object, name: str) -> str:
    """Validate a required string parameter of a query descriptor"""
    if not isinstance(value, str) or not value:
        raise ValueError(f"{name} must be a non-empty string")
    return value


def require_text_sequence(values: Sequence[str], name: str) -> Tuple[str, ...]:
    """Validate a list parameter and return it as a tuple"""
    if isinstance(values, str):
        raise ValueError(f"{name} must be a sequence of strings, not a string")
    return tuple(require_text(value, name) for value in values)


__all__ = ['FixedQueryType', 'FixedQuery', 'require_text', 'require_text_sequence']
