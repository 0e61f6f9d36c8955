"""
Repository Metadata - Requests and Settings of Newly Created Repositories

📁 Repository Metadata Entity:
Records who asked for a repository, where it lives, the initial permissions
and settings requested for it, and its lockdown state.

Legacy table rows share the ``pending`` table with other ticket types, are
keyed by a generated row key and keep the repository id in ``repoId``; the
table backend therefore has no point queries for this type and lookups by id
go through ``RepositoryMetadataFixedQueryByRepositoryId``.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from ..persistence.backends.memory import memory_filter
from ..persistence.backends.postgres import (
    PostgresQuery, PostgresQueryContext, postgres_get_all_entities, postgres_get_by_id, postgres_json_entity_query,
)
from ..persistence.backends.table import TableQuery, TableQueryContext, table_query
from ..persistence.codecs import IndexedListCodec, JsonStringCodec
from ..persistence.declarations import (
    EntityMetadataMappings, MemorySettings, MetadataMappingDefinition, PostgresSettings, TableSettings,
)
from ..persistence.errors import ConfigurationError
from ..persistence.provider import EntityMetadataProvider
from ..persistence.queries import FixedQuery, FixedQueryType, require_text
from ..persistence.records import EntityMetadata, EntityMetadataType, MetadataEntity

ENTITY_TYPE = EntityMetadataType.REPOSITORY_METADATA
ID_FIELD = "repository_id"
TABLE_REPOSITORY_ID_COLUMN = "repoId"


class GitHubRepositoryPermission(Enum):
    PULL = "pull"
    TRIAGE = "triage"
    PUSH = "push"
    MAINTAIN = "maintain"
    ADMIN = "admin"


class GitHubRepositoryVisibility(Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    INTERNAL = "internal"


class RepositoryLockdownState(Enum):
    LOCKED = "locked"
    UNLOCKED = "unlocked"
    ADMINISTRATOR_LOCKED = "administratorLocked"
    DELETED = "deleted"
    COMPLIANCE_LOCKED = "complianceLocked"


class InitialTeamPermission(BaseModel):
    team_id: str
    permission: GitHubRepositoryPermission
    team_name: Optional[str] = None


class RepositoryMetadataEntity(MetadataEntity):
    repository_id: Optional[str] = None
    repository_name: Optional[str] = None
    organization_id: Optional[str] = None
    organization_name: Optional[str] = None

    created_by_third_party_id: Optional[str] = None
    created_by_third_party_username: Optional[str] = None
    created_by_corporate_display_name: Optional[str] = None
    created_by_corporate_id: Optional[str] = None
    created_by_corporate_username: Optional[str] = None
    created: Optional[datetime] = None

    initial_team_permissions: List[InitialTeamPermission] = Field(default_factory=list)
    initial_administrators: List[str] = Field(default_factory=list)
    initial_repository_description: Optional[str] = None
    initial_repository_visibility: GitHubRepositoryVisibility = GitHubRepositoryVisibility.PUBLIC
    initial_repository_homepage: Optional[str] = None
    initial_license: Optional[str] = None
    initial_template: Optional[str] = None
    initial_git_ignore_template: Optional[str] = None
    initial_correlation_id: Optional[str] = None

    project_type: Optional[str] = None
    release_review_justification: Optional[str] = None
    release_review_type: Optional[str] = None
    release_review_url: Optional[str] = None

    lockdown_state: Optional[RepositoryLockdownState] = None
    transfer_source: Optional[str] = None


@dataclass(frozen=True)
class RepositoryMetadataFixedQueryAll(FixedQuery):
    fixed_query_type = FixedQueryType.REPOSITORY_GET_ALL


@dataclass(frozen=True)
class RepositoryMetadataFixedQueryByRepositoryId(FixedQuery):
    fixed_query_type = FixedQueryType.REPOSITORY_GET_BY_ID
    repository_id: str

    def __post_init__(self):
        require_text(self.repository_id, "repository_id")


@dataclass(frozen=True)
class RepositoryMetadataFixedQueryByOrganizationId(FixedQuery):
    fixed_query_type = FixedQueryType.REPOSITORY_BY_ORGANIZATION_ID
    organization_id: str

    def __post_init__(self):
        require_text(self.organization_id, "organization_id")


def _unsupported(query: FixedQuery, backend: str) -> ConfigurationError:
    return ConfigurationError(
        f"Fixed query {query.fixed_query_type} is not implemented for {ENTITY_TYPE} on the {backend} backend")


def table_queries(query: FixedQuery, context: TableQueryContext) -> TableQuery:
    if query.fixed_query_type is FixedQueryType.REPOSITORY_GET_ALL:
        return table_query(context)
    if query.fixed_query_type is FixedQueryType.REPOSITORY_GET_BY_ID:
        return table_query(context, {TABLE_REPOSITORY_ID_COLUMN: query.repository_id})
    if query.fixed_query_type is FixedQueryType.REPOSITORY_BY_ORGANIZATION_ID:
        return table_query(context, {"orgid": query.organization_id})
    raise _unsupported(query, "table")


def postgres_queries(query: FixedQuery, context: PostgresQueryContext) -> PostgresQuery:
    if query.fixed_query_type is FixedQueryType.REPOSITORY_GET_ALL:
        return postgres_get_all_entities(context)
    if query.fixed_query_type is FixedQueryType.REPOSITORY_GET_BY_ID:
        return postgres_get_by_id(context, query.repository_id)
    if query.fixed_query_type is FixedQueryType.REPOSITORY_BY_ORGANIZATION_ID:
        return postgres_json_entity_query(context, {"organizationid": query.organization_id})
    raise _unsupported(query, "postgres")


def memory_queries(query: FixedQuery, records: List[EntityMetadata]) -> List[EntityMetadata]:
    if query.fixed_query_type is FixedQueryType.REPOSITORY_GET_ALL:
        return records
    if query.fixed_query_type is FixedQueryType.REPOSITORY_GET_BY_ID:
        return [record for record in records if record.entity_id == query.repository_id]
    if query.fixed_query_type is FixedQueryType.REPOSITORY_BY_ORGANIZATION_ID:
        return memory_filter(records, orgid=query.organization_id)
    raise _unsupported(query, "memory")


def register(registry: EntityMetadataMappings) -> None:
    field_names = RepositoryMetadataEntity.declared_field_names()
    registry.register(ENTITY_TYPE, MetadataMappingDefinition.ENTITY_INSTANTIATE, RepositoryMetadataEntity)
    registry.register(ENTITY_TYPE, MetadataMappingDefinition.ENTITY_ID_FIELD_NAME, ID_FIELD)

    registry.register(ENTITY_TYPE, TableSettings.DEFAULT_TABLE_NAME, "pending")
    registry.register(ENTITY_TYPE, TableSettings.FIXED_PARTITION_KEY, "pk")
    registry.register(ENTITY_TYPE, TableSettings.TYPE_DISCRIMINATOR, ("tickettype", "repo"))
    registry.register(ENTITY_TYPE, TableSettings.NO_POINT_QUERIES, True)
    registry.register(ENTITY_TYPE, TableSettings.ALTERNATE_ID_COLUMN, TABLE_REPOSITORY_ID_COLUMN)
    registry.register(ENTITY_TYPE, TableSettings.FIELD_CODECS, {
        "initial_team_permissions": IndexedListCodec(
            "teamsCount", "teamid", {"team_id": "", "permission": "p", "team_name": "n"},
            optional_attributes={"team_name"}),
        "initial_administrators": JsonStringCodec("initialAdministrators"),
    })
    registry.register(ENTITY_TYPE, TableSettings.MAPPING, {
        "created_by_third_party_id": "ghid",
        "created_by_third_party_username": "ghu",
        "created_by_corporate_display_name": "name",
        "created_by_corporate_id": "aadid",
        "created_by_corporate_username": "mail",
        "created": "requested",
        "organization_name": "org",
        "organization_id": "orgid",
        "repository_name": "repoName",
        "initial_team_permissions": None,
        "initial_administrators": None,
        "initial_repository_description": "repoDescription",
        "initial_repository_visibility": "repoVisibility",
        "initial_repository_homepage": "repoHomepage",
        "initial_license": "license",
        "initial_template": "template",
        "initial_git_ignore_template": "gitignore_template",
        "initial_correlation_id": "correlationId",
        "project_type": "projectType",
        "release_review_justification": "justification",
        "release_review_type": "approvalType",
        "release_review_url": "approvalUrl",
        "lockdown_state": "lockdownstate",
        "transfer_source": "transfersource",
    })
    registry.register(ENTITY_TYPE, TableSettings.QUERIES, table_queries)
    registry.validate_mappings(ENTITY_TYPE, TableSettings.MAPPING, field_names, [ID_FIELD], TableSettings.FIELD_CODECS)

    registry.register(ENTITY_TYPE, MemorySettings.MAPPING, {
        "created_by_third_party_id": "ghid",
        "created_by_third_party_username": "ghu",
        "created_by_corporate_display_name": "name",
        "created_by_corporate_id": "aadid",
        "created_by_corporate_username": "mail",
        "created": "requested",
        "organization_name": "org",
        "organization_id": "orgid",
        "repository_name": "repoName",
        "initial_team_permissions": "itp",
        "initial_administrators": "initialAdministrators",
        "initial_repository_description": "repoDescription",
        "initial_repository_visibility": "repoVisibility",
        "initial_repository_homepage": "repoHomepage",
        "initial_license": "license",
        "initial_template": "template",
        "initial_git_ignore_template": "gitignore_template",
        "initial_correlation_id": "correlationId",
        "project_type": "projecttype",
        "release_review_justification": "justification",
        "release_review_type": "approvalType",
        "release_review_url": "approvalUrl",
        "lockdown_state": "lockdownstate",
        "transfer_source": "transfersource",
    })
    registry.register(ENTITY_TYPE, MemorySettings.QUERIES, memory_queries)
    registry.validate_mappings(ENTITY_TYPE, MemorySettings.MAPPING, field_names, [ID_FIELD])

    registry.register(ENTITY_TYPE, PostgresSettings.DEFAULT_TABLE_NAME, "repositorymetadata")
    registry.register(ENTITY_TYPE, PostgresSettings.TYPE_COLUMN_VALUE, "repository")
    registry.register(ENTITY_TYPE, PostgresSettings.MAPPING, {
        name: name.replace("_", "") for name in field_names if name != ID_FIELD
    })
    registry.register(ENTITY_TYPE, PostgresSettings.QUERIES, postgres_queries)
    registry.validate_mappings(ENTITY_TYPE, PostgresSettings.MAPPING, field_names, [ID_FIELD])


class RepositoryMetadataProvider(EntityMetadataProvider[RepositoryMetadataEntity]):
    entity_type = ENTITY_TYPE

    def point_query_fallback(self, entity_id: str) -> FixedQuery:
        return RepositoryMetadataFixedQueryByRepositoryId(entity_id)

    async def get_repository_metadata(self, repository_id: str) -> RepositoryMetadataEntity:
        return await self.get_entity(repository_id)

    async def create_repository_metadata(self, metadata: RepositoryMetadataEntity) -> str:
        return await self.create_entity(metadata)

    async def update_repository_metadata(self, metadata: RepositoryMetadataEntity) -> None:
        await self.update_entity(metadata)

    async def delete_repository_metadata(self, metadata: RepositoryMetadataEntity) -> None:
        await self.delete_entity(metadata)

    async def query_all_repository_metadatas(self) -> List[RepositoryMetadataEntity]:
        return await self.fixed_query(RepositoryMetadataFixedQueryAll())

    async def query_repository_metadatas_by_organization_id(self, organization_id: str) -> List[RepositoryMetadataEntity]:
        return await self.fixed_query(RepositoryMetadataFixedQueryByOrganizationId(organization_id))

    async def clear_all_repository_metadatas(self) -> None:
        await self.clear_all()
