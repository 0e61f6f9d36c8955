"""
Tokens - API Keys Issued to People and Services

🔑 Personal Access Token Entity:
Only a hash of the key is stored; it doubles as the entity identifier. The
plain key is available once, on the object returned by ``create_new_token``.
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import Field, PrivateAttr

from ..persistence.backends.memory import memory_filter, memory_sort_descending
from ..persistence.backends.postgres import PostgresQuery, PostgresQueryContext, postgres_json_entity_query
from ..persistence.backends.table import TableQuery, TableQueryContext, table_query
from ..persistence.declarations import (
    EntityMetadataMappings, MemorySettings, MetadataMappingDefinition, PostgresSettings, TableSettings,
)
from ..persistence.errors import ConfigurationError
from ..persistence.provider import EntityMetadataProvider
from ..persistence.queries import FixedQuery, FixedQueryType, require_text
from ..persistence.records import EntityMetadata, EntityMetadataType, MetadataEntity

ENTITY_TYPE = EntityMetadataType.TOKEN
ID_FIELD = "token"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def hash_key(key: str) -> str:
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def _as_list(value: Optional[str]) -> List[str]:
    return [item.strip().lower() for item in (value or "").split(",") if item.strip()]


class PersonalAccessToken(MetadataEntity):
    token: Optional[str] = None
    active: Optional[bool] = None
    corporate_id: Optional[str] = None
    created: Optional[datetime] = None
    description: Optional[str] = None
    expires: Optional[datetime] = None
    source: Optional[str] = None
    organization_scopes: Optional[str] = None
    warning: Optional[str] = None
    scopes: Optional[str] = None

    display_username: Optional[str] = Field(default=None, exclude=True)

    _key: Optional[str] = PrivateAttr(default=None)

    @classmethod
    def create_new_token(cls, **values) -> "PersonalAccessToken":
        """New token with a freshly generated key; only the key hash is persisted"""
        key = secrets.token_hex(32)
        values.setdefault("created", _utcnow())
        pat = cls(token=hash_key(key), **values)
        pat._key = key
        return pat

    def get_private_key(self) -> Optional[str]:
        return self._key

    def get_identifier(self) -> str:
        """Short, non-secret identifier suitable for display and logs"""
        created = self.created.isoformat() if self.created else ""
        return hashlib.sha1(f"{created}{self.token}".encode("utf-8")).hexdigest()[:10]

    def is_revoked(self) -> bool:
        return self.active is False

    def is_expired(self) -> bool:
        # tokens without an expiration never expire
        if self.expires is None:
            return False
        expires = self.expires if self.expires.tzinfo else self.expires.replace(tzinfo=timezone.utc)
        return expires < _utcnow()

    def has_scope(self, scope: str) -> bool:
        return scope.lower() in _as_list(self.scopes)

    def has_organization_scope(self, organization_name: str) -> bool:
        if self.organization_scopes == "*":
            return True
        return organization_name.lower() in _as_list(self.organization_scopes)


@dataclass(frozen=True)
class QueryTokensByCorporateId(FixedQuery):
    fixed_query_type = FixedQueryType.TOKEN_BY_CORPORATE_ID
    corporate_id: str

    def __post_init__(self):
        require_text(self.corporate_id, "corporate_id")


@dataclass(frozen=True)
class QueryTokensGetAll(FixedQuery):
    fixed_query_type = FixedQueryType.TOKEN_GET_ALL


def _unsupported(query: FixedQuery, backend: str) -> ConfigurationError:
    return ConfigurationError(
        f"Fixed query {query.fixed_query_type} is not implemented for {ENTITY_TYPE} on the {backend} backend")


def table_queries(query: FixedQuery, context: TableQueryContext) -> TableQuery:
    if query.fixed_query_type is FixedQueryType.TOKEN_BY_CORPORATE_ID:
        return table_query(context, {"owner": query.corporate_id})
    if query.fixed_query_type is FixedQueryType.TOKEN_GET_ALL:
        return table_query(context)
    raise _unsupported(query, "table")


def postgres_queries(query: FixedQuery, context: PostgresQueryContext) -> PostgresQuery:
    if query.fixed_query_type is FixedQueryType.TOKEN_BY_CORPORATE_ID:
        return postgres_json_entity_query(context, {"corporateid": query.corporate_id}, "created", descending=True)
    if query.fixed_query_type is FixedQueryType.TOKEN_GET_ALL:
        return postgres_json_entity_query(context, {}, "created", descending=True)
    raise _unsupported(query, "postgres")


def memory_queries(query: FixedQuery, records: List[EntityMetadata]) -> List[EntityMetadata]:
    if query.fixed_query_type is FixedQueryType.TOKEN_BY_CORPORATE_ID:
        return memory_sort_descending(memory_filter(records, corporateid=query.corporate_id), "created")
    if query.fixed_query_type is FixedQueryType.TOKEN_GET_ALL:
        return memory_sort_descending(records, "created")
    raise _unsupported(query, "memory")


def register(registry: EntityMetadataMappings) -> None:
    field_names = PersonalAccessToken.declared_field_names()
    columns = {name: name.replace("_", "") for name in field_names if name != ID_FIELD}
    registry.register(ENTITY_TYPE, MetadataMappingDefinition.ENTITY_INSTANTIATE, PersonalAccessToken)
    registry.register(ENTITY_TYPE, MetadataMappingDefinition.ENTITY_ID_FIELD_NAME, ID_FIELD)

    registry.register(ENTITY_TYPE, TableSettings.DEFAULT_TABLE_NAME, "settings")
    registry.register(ENTITY_TYPE, TableSettings.FIXED_PARTITION_KEY, "apiKey")
    registry.register(ENTITY_TYPE, TableSettings.ROW_KEY_PREFIX, "apiKey")
    registry.register(ENTITY_TYPE, TableSettings.MAPPING, {
        "active": "active",
        "corporate_id": "owner",
        "created": "entityCreated",
        "description": "description",
        "source": "service",
        "organization_scopes": "orgs",
        "expires": "expires",
        "warning": "warning",
        "scopes": "apis",
    })
    registry.register(ENTITY_TYPE, TableSettings.QUERIES, table_queries)
    registry.validate_mappings(ENTITY_TYPE, TableSettings.MAPPING, field_names, [ID_FIELD], TableSettings.FIELD_CODECS)

    registry.register(ENTITY_TYPE, MemorySettings.MAPPING, dict(columns))
    registry.register(ENTITY_TYPE, MemorySettings.QUERIES, memory_queries)
    registry.validate_mappings(ENTITY_TYPE, MemorySettings.MAPPING, field_names, [ID_FIELD])

    registry.register(ENTITY_TYPE, PostgresSettings.DEFAULT_TABLE_NAME, "usersettings")
    registry.register(ENTITY_TYPE, PostgresSettings.TYPE_COLUMN_VALUE, "apiKey")
    registry.register(ENTITY_TYPE, PostgresSettings.MAPPING, dict(columns))
    registry.register(ENTITY_TYPE, PostgresSettings.QUERIES, postgres_queries)
    registry.validate_mappings(ENTITY_TYPE, PostgresSettings.MAPPING, field_names, [ID_FIELD])


class TokenProvider(EntityMetadataProvider[PersonalAccessToken]):
    entity_type = ENTITY_TYPE

    async def get_token(self, token: str) -> PersonalAccessToken:
        return await self.get_entity(token)

    async def get_token_by_key(self, key: str) -> PersonalAccessToken:
        return await self.get_entity(hash_key(key))

    async def save_new_token(self, token: PersonalAccessToken) -> str:
        return await self.create_entity(token)

    async def update_token(self, token: PersonalAccessToken) -> None:
        await self.update_entity(token)

    async def delete_token(self, token: PersonalAccessToken) -> None:
        await self.delete_entity(token)

    async def query_tokens_for_corporate_id(self, corporate_id: str) -> List[PersonalAccessToken]:
        return await self.fixed_query(QueryTokensByCorporateId(corporate_id))

    async def get_all_tokens(self) -> List[PersonalAccessToken]:
        return await self.fixed_query(QueryTokensGetAll())
