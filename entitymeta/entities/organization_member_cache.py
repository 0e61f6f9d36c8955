"""
Organization Member Cache - Cached Organization Memberships

👥 Organization Member Cache Entity:
One record per (organization, user) pair with the member's role, refreshed by
background jobs. The identifier is ``"{organization_id}:{user_id}"``.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from ..persistence.backends.memory import memory_filter
from ..persistence.backends.postgres import (
    PostgresQuery, PostgresQueryContext, postgres_get_all_entities, postgres_json_entity_query,
)
from ..persistence.declarations import (
    EntityMetadataMappings, MemorySettings, MetadataMappingDefinition, PostgresSettings,
)
from ..persistence.errors import ConfigurationError
from ..persistence.provider import EntityMetadataProvider
from ..persistence.queries import FixedQuery, FixedQueryType, require_text
from ..persistence.records import EntityMetadata, EntityMetadataType, MetadataEntity

ENTITY_TYPE = EntityMetadataType.ORGANIZATION_MEMBER_CACHE
ID_FIELD = "unique_id"


class OrganizationMembershipRole(Enum):
    MEMBER = "member"
    ADMIN = "admin"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrganizationMemberCacheEntity(MetadataEntity):
    unique_id: Optional[str] = None
    cache_updated: Optional[datetime] = None
    organization_id: Optional[str] = None
    user_id: Optional[str] = None
    role: Optional[OrganizationMembershipRole] = None

    @staticmethod
    def generate_identifier(organization_id: str, user_id: str) -> str:
        if not organization_id:
            raise ValueError("organization_id required")
        if not user_id:
            raise ValueError("user_id required")
        return f"{organization_id}:{user_id}"

    @classmethod
    def for_member(cls, organization_id: str, user_id: str, role: OrganizationMembershipRole) -> "OrganizationMemberCacheEntity":
        return cls(
            unique_id=cls.generate_identifier(organization_id, user_id),
            organization_id=organization_id,
            user_id=user_id,
            role=role,
            cache_updated=_utcnow(),
        )


@dataclass(frozen=True)
class OrganizationMemberCacheFixedQueryAll(FixedQuery):
    fixed_query_type = FixedQueryType.ORGANIZATION_MEMBER_CACHE_GET_ALL


@dataclass(frozen=True)
class OrganizationMemberCacheFixedQueryByOrganizationId(FixedQuery):
    fixed_query_type = FixedQueryType.ORGANIZATION_MEMBER_CACHE_BY_ORGANIZATION_ID
    organization_id: str

    def __post_init__(self):
        require_text(self.organization_id, "organization_id")


@dataclass(frozen=True)
class OrganizationMemberCacheFixedQueryByUserId(FixedQuery):
    fixed_query_type = FixedQueryType.ORGANIZATION_MEMBER_CACHE_BY_USER_ID
    user_id: str

    def __post_init__(self):
        require_text(self.user_id, "user_id")


def _unsupported(query: FixedQuery, backend: str) -> ConfigurationError:
    return ConfigurationError(
        f"Fixed query {query.fixed_query_type} is not implemented for {ENTITY_TYPE} on the {backend} backend")


def postgres_queries(query: FixedQuery, context: PostgresQueryContext) -> PostgresQuery:
    kind = query.fixed_query_type
    if kind is FixedQueryType.ORGANIZATION_MEMBER_CACHE_GET_ALL:
        return postgres_get_all_entities(context)
    if kind is FixedQueryType.ORGANIZATION_MEMBER_CACHE_BY_ORGANIZATION_ID:
        return postgres_json_entity_query(context, {"organizationid": query.organization_id})
    if kind is FixedQueryType.ORGANIZATION_MEMBER_CACHE_BY_USER_ID:
        return postgres_json_entity_query(context, {"userid": query.user_id})
    raise _unsupported(query, "postgres")


def memory_queries(query: FixedQuery, records: List[EntityMetadata]) -> List[EntityMetadata]:
    kind = query.fixed_query_type
    if kind is FixedQueryType.ORGANIZATION_MEMBER_CACHE_GET_ALL:
        return records
    if kind is FixedQueryType.ORGANIZATION_MEMBER_CACHE_BY_ORGANIZATION_ID:
        return memory_filter(records, orgid=query.organization_id)
    if kind is FixedQueryType.ORGANIZATION_MEMBER_CACHE_BY_USER_ID:
        return memory_filter(records, userid=query.user_id)
    raise _unsupported(query, "memory")


def register(registry: EntityMetadataMappings) -> None:
    field_names = OrganizationMemberCacheEntity.declared_field_names()
    registry.register(ENTITY_TYPE, MetadataMappingDefinition.ENTITY_INSTANTIATE, OrganizationMemberCacheEntity)
    registry.register(ENTITY_TYPE, MetadataMappingDefinition.ENTITY_ID_FIELD_NAME, ID_FIELD)

    registry.register(ENTITY_TYPE, MemorySettings.MAPPING, {
        "cache_updated": "cached",
        "organization_id": "orgid",
        "user_id": "userid",
        "role": "role",
    })
    registry.register(ENTITY_TYPE, MemorySettings.QUERIES, memory_queries)
    registry.validate_mappings(ENTITY_TYPE, MemorySettings.MAPPING, field_names, [ID_FIELD])

    registry.register(ENTITY_TYPE, PostgresSettings.DEFAULT_TABLE_NAME, "organizationmembercache")
    registry.register(ENTITY_TYPE, PostgresSettings.TYPE_COLUMN_VALUE, "organizationmembercache")
    registry.register(ENTITY_TYPE, PostgresSettings.MAPPING, {
        name: name.replace("_", "") for name in field_names if name != ID_FIELD
    })
    registry.register(ENTITY_TYPE, PostgresSettings.QUERIES, postgres_queries)
    registry.validate_mappings(ENTITY_TYPE, PostgresSettings.MAPPING, field_names, [ID_FIELD])


class OrganizationMemberCacheProvider(EntityMetadataProvider[OrganizationMemberCacheEntity]):
    entity_type = ENTITY_TYPE

    async def get_organization_member_cache(self, unique_id: str) -> OrganizationMemberCacheEntity:
        return await self.get_entity(unique_id)

    async def get_organization_member_cache_by_user_id(self, organization_id: str, user_id: str) -> OrganizationMemberCacheEntity:
        return await self.get_entity(OrganizationMemberCacheEntity.generate_identifier(organization_id, user_id))

    async def query_all_organization_members(self) -> List[OrganizationMemberCacheEntity]:
        return await self.fixed_query(OrganizationMemberCacheFixedQueryAll())

    async def query_organization_members_by_organization_id(self, organization_id: str) -> List[OrganizationMemberCacheEntity]:
        return await self.fixed_query(OrganizationMemberCacheFixedQueryByOrganizationId(organization_id))

    async def query_organization_members_by_user_id(self, user_id: str) -> List[OrganizationMemberCacheEntity]:
        return await self.fixed_query(OrganizationMemberCacheFixedQueryByUserId(user_id))

    async def create_organization_member_cache(self, member: OrganizationMemberCacheEntity) -> str:
        return await self.create_entity(member)

    async def update_organization_member_cache(self, member: OrganizationMemberCacheEntity) -> None:
        await self.update_entity(member)

    async def delete_organization_member_cache(self, member: OrganizationMemberCacheEntity) -> None:
        await self.delete_entity(member)
