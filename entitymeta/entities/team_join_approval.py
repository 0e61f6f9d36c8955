"""
Team Join Approvals - Requests to Join a Team

🙋 Team Join Request Entity:
A request by a linked user to join a team, plus the decision made on it.
Active requests are those still waiting for a decision. Table rows share the
``pending`` table with repository requests and are told apart by
``tickettype``.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from pydantic import Field

from ..persistence.backends.memory import memory_filter
from ..persistence.backends.postgres import (
    PostgresQuery, PostgresQueryContext, postgres_get_all_entities, postgres_json_entity_query, postgres_json_field_in,
)
from ..persistence.backends.table import TableQuery, TableQueryContext, table_query
from ..persistence.declarations import (
    EntityMetadataMappings, MemorySettings, MetadataMappingDefinition, PostgresSettings, TableSettings,
)
from ..persistence.errors import ConfigurationError
from ..persistence.provider import EntityMetadataProvider
from ..persistence.queries import FixedQuery, FixedQueryType, require_text, require_text_sequence
from ..persistence.records import EntityMetadata, EntityMetadataType, MetadataEntity

ENTITY_TYPE = EntityMetadataType.TEAM_JOIN_REQUEST
ID_FIELD = "approval_id"


def _new_approval_id() -> str:
    return str(uuid.uuid4())


class TeamJoinApprovalEntity(MetadataEntity):
    approval_id: str = Field(default_factory=_new_approval_id)

    third_party_id: Optional[str] = None
    third_party_username: Optional[str] = None
    corporate_display_name: Optional[str] = None
    corporate_id: Optional[str] = None
    corporate_username: Optional[str] = None

    active: Optional[bool] = None
    created: Optional[datetime] = None
    justification: Optional[str] = None
    organization_name: Optional[str] = None
    team_id: Optional[str] = None
    team_name: Optional[str] = None
    mail_sent_to: Optional[str] = None
    mail_sent_to_approvers: Optional[str] = None

    decision: Optional[str] = None
    decision_message: Optional[str] = None
    decision_time: Optional[datetime] = None
    decision_third_party_username: Optional[str] = None
    decision_third_party_id: Optional[str] = None
    decision_corporate_username: Optional[str] = None
    decision_corporate_id: Optional[str] = None


@dataclass(frozen=True)
class TeamJoinRequestFixedQueryAll(FixedQuery):
    fixed_query_type = FixedQueryType.TEAM_JOIN_ALL


@dataclass(frozen=True)
class TeamJoinRequestFixedQueryAllActiveRequests(FixedQuery):
    fixed_query_type = FixedQueryType.TEAM_JOIN_ACTIVE


@dataclass(frozen=True)
class TeamJoinRequestFixedQueryByTeam(FixedQuery):
    fixed_query_type = FixedQueryType.TEAM_JOIN_ACTIVE_BY_TEAM
    team_id: str

    def __post_init__(self):
        require_text(self.team_id, "team_id")


@dataclass(frozen=True)
class TeamJoinRequestFixedQueryByTeams(FixedQuery):
    fixed_query_type = FixedQueryType.TEAM_JOIN_ACTIVE_BY_TEAMS
    team_ids: Tuple[str, ...]

    def __post_init__(self):
        object.__setattr__(self, "team_ids", require_text_sequence(self.team_ids, "team_ids"))


@dataclass(frozen=True)
class TeamJoinRequestFixedQueryByThirdPartyUserId(FixedQuery):
    fixed_query_type = FixedQueryType.TEAM_JOIN_ACTIVE_BY_THIRD_PARTY_ID
    third_party_id: str

    def __post_init__(self):
        require_text(self.third_party_id, "third_party_id")


def _unsupported(query: FixedQuery, backend: str) -> ConfigurationError:
    return ConfigurationError(
        f"Fixed query {query.fixed_query_type} is not implemented for {ENTITY_TYPE} on the {backend} backend")


def table_queries(query: FixedQuery, context: TableQueryContext) -> TableQuery:
    kind = query.fixed_query_type
    if kind is FixedQueryType.TEAM_JOIN_ALL:
        return table_query(context)
    if kind is FixedQueryType.TEAM_JOIN_ACTIVE:
        return table_query(context, {"active": True})
    if kind is FixedQueryType.TEAM_JOIN_ACTIVE_BY_TEAM:
        return table_query(context, {"active": True, "teamid": query.team_id})
    if kind is FixedQueryType.TEAM_JOIN_ACTIVE_BY_TEAMS:
        return table_query(context, {"active": True}, any_of=("teamid", query.team_ids))
    if kind is FixedQueryType.TEAM_JOIN_ACTIVE_BY_THIRD_PARTY_ID:
        return table_query(context, {"active": True, "ghid": query.third_party_id})
    raise _unsupported(query, "table")


def postgres_queries(query: FixedQuery, context: PostgresQueryContext) -> PostgresQuery:
    kind = query.fixed_query_type
    if kind is FixedQueryType.TEAM_JOIN_ALL:
        return postgres_get_all_entities(context)
    if kind is FixedQueryType.TEAM_JOIN_ACTIVE:
        return postgres_json_entity_query(context, {"active": True})
    if kind is FixedQueryType.TEAM_JOIN_ACTIVE_BY_TEAM:
        return postgres_json_entity_query(context, {"active": True, "teamid": query.team_id})
    if kind is FixedQueryType.TEAM_JOIN_ACTIVE_BY_TEAMS:
        return postgres_json_field_in(context, "teamid", query.team_ids, {"active": True})
    if kind is FixedQueryType.TEAM_JOIN_ACTIVE_BY_THIRD_PARTY_ID:
        return postgres_json_entity_query(context, {"active": True, "thirdpartyid": query.third_party_id})
    raise _unsupported(query, "postgres")


def memory_queries(query: FixedQuery, records: List[EntityMetadata]) -> List[EntityMetadata]:
    kind = query.fixed_query_type
    if kind is FixedQueryType.TEAM_JOIN_ALL:
        return records
    if kind is FixedQueryType.TEAM_JOIN_ACTIVE:
        return memory_filter(records, active=True)
    if kind is FixedQueryType.TEAM_JOIN_ACTIVE_BY_TEAM:
        return memory_filter(records, active=True, teamid=query.team_id)
    if kind is FixedQueryType.TEAM_JOIN_ACTIVE_BY_TEAMS:
        return [record for record in memory_filter(records, active=True) if record.fields.get("teamid") in query.team_ids]
    if kind is FixedQueryType.TEAM_JOIN_ACTIVE_BY_THIRD_PARTY_ID:
        return memory_filter(records, active=True, ghid=query.third_party_id)
    raise _unsupported(query, "memory")


# table and memory share the legacy column names
LEGACY_COLUMNS = {
    "third_party_id": "ghid",
    "third_party_username": "ghu",
    "corporate_display_name": "name",
    "corporate_id": "aadid",
    "corporate_username": "email",
    "justification": "justification",
    "active": "active",
    "created": "requested",
    "organization_name": "org",
    "team_id": "teamid",
    "team_name": "teamname",
    "mail_sent_to": "mailSentTo",
    "mail_sent_to_approvers": "mailSentToApprovers",
    "decision": "decision",
    "decision_time": "decisionTime",
    "decision_message": "decisionNote",
    "decision_third_party_username": "decisionBy",
    "decision_third_party_id": "decisionById",
    "decision_corporate_username": "decisionEmail",
    "decision_corporate_id": "decisionCorporateId",
}


def register(registry: EntityMetadataMappings) -> None:
    field_names = TeamJoinApprovalEntity.declared_field_names()
    registry.register(ENTITY_TYPE, MetadataMappingDefinition.ENTITY_INSTANTIATE, TeamJoinApprovalEntity)
    registry.register(ENTITY_TYPE, MetadataMappingDefinition.ENTITY_ID_FIELD_NAME, ID_FIELD)

    registry.register(ENTITY_TYPE, TableSettings.DEFAULT_TABLE_NAME, "pending")
    registry.register(ENTITY_TYPE, TableSettings.FIXED_PARTITION_KEY, "pk")
    registry.register(ENTITY_TYPE, TableSettings.TYPE_DISCRIMINATOR, ("tickettype", "joinTeam"))
    registry.register(ENTITY_TYPE, TableSettings.MAPPING, dict(LEGACY_COLUMNS))
    registry.register(ENTITY_TYPE, TableSettings.QUERIES, table_queries)
    registry.validate_mappings(ENTITY_TYPE, TableSettings.MAPPING, field_names, [ID_FIELD], TableSettings.FIELD_CODECS)

    registry.register(ENTITY_TYPE, MemorySettings.MAPPING, dict(LEGACY_COLUMNS))
    registry.register(ENTITY_TYPE, MemorySettings.QUERIES, memory_queries)
    registry.validate_mappings(ENTITY_TYPE, MemorySettings.MAPPING, field_names, [ID_FIELD])

    registry.register(ENTITY_TYPE, PostgresSettings.DEFAULT_TABLE_NAME, "approvals")
    registry.register(ENTITY_TYPE, PostgresSettings.TYPE_COLUMN_VALUE, "teamjoin")
    registry.register(ENTITY_TYPE, PostgresSettings.MAPPING, {
        name: name.replace("_", "") for name in field_names if name != ID_FIELD
    })
    registry.register(ENTITY_TYPE, PostgresSettings.QUERIES, postgres_queries)
    registry.validate_mappings(ENTITY_TYPE, PostgresSettings.MAPPING, field_names, [ID_FIELD])


class TeamJoinApprovalProvider(EntityMetadataProvider[TeamJoinApprovalEntity]):
    entity_type = ENTITY_TYPE

    async def get_approval_entity(self, approval_id: str) -> TeamJoinApprovalEntity:
        return await self.get_entity(approval_id)

    async def create_team_join_approval_entity(self, approval: TeamJoinApprovalEntity) -> str:
        return await self.create_entity(approval)

    async def update_team_join_approval_entity(self, approval: TeamJoinApprovalEntity) -> None:
        await self.update_entity(approval)

    async def delete_team_join_approval_entity(self, approval: TeamJoinApprovalEntity) -> None:
        await self.delete_entity(approval)

    async def query_pending_approvals_for_team(self, team_id: str) -> List[TeamJoinApprovalEntity]:
        return await self.fixed_query(TeamJoinRequestFixedQueryByTeam(team_id))

    async def query_pending_approvals_for_teams(self, team_ids: Sequence[str]) -> List[TeamJoinApprovalEntity]:
        if not team_ids:
            return []
        return await self.fixed_query(TeamJoinRequestFixedQueryByTeams(tuple(team_ids)))

    async def query_pending_approvals_for_third_party_id(self, third_party_id: str) -> List[TeamJoinApprovalEntity]:
        return await self.fixed_query(TeamJoinRequestFixedQueryByThirdPartyUserId(third_party_id))

    async def query_all_active_approvals(self) -> List[TeamJoinApprovalEntity]:
        return await self.fixed_query(TeamJoinRequestFixedQueryAllActiveRequests())

    async def query_all_approvals(self) -> List[TeamJoinApprovalEntity]:
        return await self.fixed_query(TeamJoinRequestFixedQueryAll())

    async def delete_all_requests(self) -> None:
        await self.clear_all()
