"""
Audit Log Records - Organization Events With Actor and Target

📜 Audit Log Record Entity:
One row per observed organization event (from webhooks or an audit log
import) with the acting user, the affected user, repository or team, and free
form additional data. Every query returns the newest records first.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field

from ..persistence.backends.memory import memory_filter, memory_sort_descending
from ..persistence.backends.postgres import PostgresQuery, PostgresQueryContext, postgres_json_entity_query
from ..persistence.declarations import (
    EntityMetadataMappings, MemorySettings, MetadataMappingDefinition, PostgresSettings,
)
from ..persistence.errors import ConfigurationError
from ..persistence.provider import EntityMetadataProvider
from ..persistence.queries import FixedQuery, FixedQueryType, require_text
from ..persistence.records import EntityMetadata, EntityMetadataType, MetadataEntity

ENTITY_TYPE = EntityMetadataType.AUDIT_LOG_RECORD
ID_FIELD = "record_id"
UNDO_CANDIDATE_KEY = "undoCandidate"


class AuditLogSource(Enum):
    WEBHOOK = "webhook"
    AUDIT_LOG_IMPORT = "import"


def _new_record_id() -> str:
    return str(uuid.uuid4())


class AuditLogRecord(MetadataEntity):
    record_id: str = Field(default_factory=_new_record_id)
    record_source: Optional[AuditLogSource] = None
    action: Optional[str] = None
    additional_data: Dict[str, Any] = Field(default_factory=dict)

    repository_id: Optional[str] = None
    repository_name: Optional[str] = None
    organization_id: Optional[str] = None
    organization_name: Optional[str] = None

    created: Optional[datetime] = None
    inserted: Optional[datetime] = None

    actor_username: Optional[str] = None
    actor_id: Optional[str] = None
    actor_corporate_id: Optional[str] = None
    actor_corporate_username: Optional[str] = None

    user_username: Optional[str] = None
    user_id: Optional[str] = None
    user_corporate_id: Optional[str] = None
    user_corporate_username: Optional[str] = None

    incoming_username: Optional[str] = None
    incoming_id: Optional[str] = None
    team_name: Optional[str] = None
    team_id: Optional[str] = None


@dataclass(frozen=True)
class AuditLogRecordQueryRecordsByRepositoryId(FixedQuery):
    fixed_query_type = FixedQueryType.AUDIT_LOG_BY_REPOSITORY_ID
    repository_id: str

    def __post_init__(self):
        require_text(self.repository_id, "repository_id")


@dataclass(frozen=True)
class AuditLogRecordQueryRecordsByTeamId(FixedQuery):
    fixed_query_type = FixedQueryType.AUDIT_LOG_BY_TEAM_ID
    team_id: str

    def __post_init__(self):
        require_text(self.team_id, "team_id")


@dataclass(frozen=True)
class AuditLogRecordQueryRecordsByActorThirdPartyId(FixedQuery):
    fixed_query_type = FixedQueryType.AUDIT_LOG_BY_ACTOR_ID
    third_party_id: str

    def __post_init__(self):
        require_text(self.third_party_id, "third_party_id")


@dataclass(frozen=True)
class AuditLogRecordQueryRecordsByUserThirdPartyId(FixedQuery):
    fixed_query_type = FixedQueryType.AUDIT_LOG_BY_USER_ID
    third_party_id: str

    def __post_init__(self):
        require_text(self.third_party_id, "third_party_id")


@dataclass(frozen=True)
class AuditLogRecordQueryUndoCandidatesByThirdPartyId(FixedQuery):
    fixed_query_type = FixedQueryType.AUDIT_LOG_UNDO_CANDIDATES
    third_party_id: str

    def __post_init__(self):
        require_text(self.third_party_id, "third_party_id")


def _unsupported(query: FixedQuery, backend: str) -> ConfigurationError:
    return ConfigurationError(
        f"Fixed query {query.fixed_query_type} is not implemented for {ENTITY_TYPE} on the {backend} backend")


def _newest_first(context: PostgresQueryContext, containment: Dict[str, Any]) -> PostgresQuery:
    return postgres_json_entity_query(context, containment, order_by_field="created", descending=True)


def postgres_queries(query: FixedQuery, context: PostgresQueryContext) -> PostgresQuery:
    kind = query.fixed_query_type
    if kind is FixedQueryType.AUDIT_LOG_BY_REPOSITORY_ID:
        return _newest_first(context, {"repositoryid": query.repository_id})
    if kind is FixedQueryType.AUDIT_LOG_BY_TEAM_ID:
        return _newest_first(context, {"teamid": query.team_id})
    if kind is FixedQueryType.AUDIT_LOG_BY_ACTOR_ID:
        return _newest_first(context, {"actorid": query.third_party_id})
    if kind is FixedQueryType.AUDIT_LOG_BY_USER_ID:
        return _newest_first(context, {"userid": query.third_party_id})
    if kind is FixedQueryType.AUDIT_LOG_UNDO_CANDIDATES:
        return _newest_first(context, {
            "actorid": query.third_party_id,
            "additionaldata": {UNDO_CANDIDATE_KEY: True},
        })
    raise _unsupported(query, "postgres")


def memory_queries(query: FixedQuery, records: List[EntityMetadata]) -> List[EntityMetadata]:
    kind = query.fixed_query_type
    if kind is FixedQueryType.AUDIT_LOG_BY_REPOSITORY_ID:
        matches = memory_filter(records, repositoryid=query.repository_id)
    elif kind is FixedQueryType.AUDIT_LOG_BY_TEAM_ID:
        matches = memory_filter(records, teamid=query.team_id)
    elif kind is FixedQueryType.AUDIT_LOG_BY_ACTOR_ID:
        matches = memory_filter(records, actorid=query.third_party_id)
    elif kind is FixedQueryType.AUDIT_LOG_BY_USER_ID:
        matches = memory_filter(records, userid=query.third_party_id)
    elif kind is FixedQueryType.AUDIT_LOG_UNDO_CANDIDATES:
        matches = [
            record for record in memory_filter(records, actorid=query.third_party_id)
            if (record.fields.get("additionaldata") or {}).get(UNDO_CANDIDATE_KEY) is True
        ]
    else:
        raise _unsupported(query, "memory")
    return memory_sort_descending(matches, "created")


def register(registry: EntityMetadataMappings) -> None:
    field_names = AuditLogRecord.declared_field_names()
    columns = {name: name.replace("_", "") for name in field_names if name != ID_FIELD}
    registry.register(ENTITY_TYPE, MetadataMappingDefinition.ENTITY_INSTANTIATE, AuditLogRecord)
    registry.register(ENTITY_TYPE, MetadataMappingDefinition.ENTITY_ID_FIELD_NAME, ID_FIELD)

    registry.register(ENTITY_TYPE, MemorySettings.MAPPING, dict(columns))
    registry.register(ENTITY_TYPE, MemorySettings.QUERIES, memory_queries)
    registry.validate_mappings(ENTITY_TYPE, MemorySettings.MAPPING, field_names, [ID_FIELD])

    registry.register(ENTITY_TYPE, PostgresSettings.DEFAULT_TABLE_NAME, "auditlog")
    registry.register(ENTITY_TYPE, PostgresSettings.TYPE_COLUMN_VALUE, "auditlogrecord")
    registry.register(ENTITY_TYPE, PostgresSettings.MAPPING, dict(columns))
    registry.register(ENTITY_TYPE, PostgresSettings.QUERIES, postgres_queries)
    registry.validate_mappings(ENTITY_TYPE, PostgresSettings.MAPPING, field_names, [ID_FIELD])


class AuditLogRecordProvider(EntityMetadataProvider[AuditLogRecord]):
    entity_type = ENTITY_TYPE

    async def get_record(self, record_id: str) -> AuditLogRecord:
        return await self.get_entity(record_id)

    async def insert_record(self, record: AuditLogRecord) -> str:
        return await self.create_entity(record)

    async def query_audit_log_for_repository_operations(self, repository_id: str) -> List[AuditLogRecord]:
        return await self.fixed_query(AuditLogRecordQueryRecordsByRepositoryId(repository_id))

    async def query_audit_log_for_team_operations(self, team_id: str) -> List[AuditLogRecord]:
        return await self.fixed_query(AuditLogRecordQueryRecordsByTeamId(team_id))

    async def query_audit_log_for_actor_third_party_id(self, third_party_id: str) -> List[AuditLogRecord]:
        return await self.fixed_query(AuditLogRecordQueryRecordsByActorThirdPartyId(third_party_id))

    async def query_audit_log_for_user_third_party_id(self, third_party_id: str) -> List[AuditLogRecord]:
        return await self.fixed_query(AuditLogRecordQueryRecordsByUserThirdPartyId(third_party_id))

    async def query_audit_log_for_third_party_id_undo_operations(self, third_party_id: str) -> List[AuditLogRecord]:
        return await self.fixed_query(AuditLogRecordQueryUndoCandidatesByThirdPartyId(third_party_id))
