"""
Postgres Backend - Relational Store With a JSON Document Column

🐘 Entity Metadata in jsonb:
Each logical group of entity types lives in one table with the columns
``entitytype``, ``entityid``, ``entitycreated`` and ``metadata`` (jsonb).
Mapped fields are stored inside the ``metadata`` document; fixed queries are
translated into parameterized SQL against it.

Key Features:
- SQLAlchemy async engine on asyncpg, pool shared by every entity type
- Containment (``@>``) and ``IN`` query helpers, always parameterized
- Unique violations and zero-row updates mapped to metadata errors
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import bindparam, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from ..declarations import EntityMetadataMappings, PostgresSettings
from ..errors import (
    AmbiguousEntityError, BackendError, ConfigurationError,
    EntityAlreadyExistsError, EntityNotFoundError,
)
from ..queries import FixedQuery
from ..records import EntityMetadata, EntityMetadataType
from .interface import EntityMetadataBackend

logger = logging.getLogger(__name__)

TYPE_COLUMN = "entitytype"
ID_COLUMN = "entityid"
CREATED_COLUMN = "entitycreated"
METADATA_COLUMN = "metadata"
UNIQUE_VIOLATION = "23505"

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _sqlstate(error: IntegrityError) -> Optional[str]:
    return getattr(error.orig, "sqlstate", None) or getattr(error.orig, "pgcode", None)


def _require_identifier(name: str) -> str:
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise ConfigurationError(f"'{name}' is not a valid Postgres table name")
    return name


@dataclass
class PostgresQuery:
    """Parameterized SQL statement; names in ``expanding`` bind lists for IN"""
    sql: str
    params: Dict[str, Any] = field(default_factory=dict)
    expanding: Tuple[str, ...] = ()

    def statement(self):
        statement = text(self.sql)
        if self.expanding:
            statement = statement.bindparams(*[bindparam(name, expanding=True) for name in self.expanding])
        return statement


@dataclass(frozen=True)
class PostgresQueryContext:
    """Where an entity type lives; handed to query translators"""
    table_name: str
    type_value: str


PostgresQueryTranslator = Callable[[FixedQuery, PostgresQueryContext], PostgresQuery]


@dataclass
class PostgresResult:
    rows: List[Mapping[str, Any]]
    rowcount: int = 0


def postgres_get_all_entities(context: PostgresQueryContext) -> PostgresQuery:
    return PostgresQuery(
        f"SELECT * FROM {context.table_name} WHERE {TYPE_COLUMN} = :entity_type",
        {"entity_type": context.type_value},
    )


def postgres_get_by_id(context: PostgresQueryContext, entity_id: str) -> PostgresQuery:
    return PostgresQuery(
        f"SELECT * FROM {context.table_name} WHERE {TYPE_COLUMN} = :entity_type AND {ID_COLUMN} = :entity_id",
        {"entity_type": context.type_value, "entity_id": entity_id},
    )


def _order_clause(order_by_field: Optional[str], descending: bool, limit: Optional[int]) -> Tuple[str, Dict[str, Any]]:
    sql = ""
    params: Dict[str, Any] = {}
    if order_by_field:
        sql += f" ORDER BY {METADATA_COLUMN}->>:order_field {'DESC' if descending else 'ASC'} NULLS LAST"
        params["order_field"] = order_by_field
    if limit is not None:
        sql += " LIMIT :limit"
        params["limit"] = limit
    return sql, params


def postgres_json_entity_query(
    context: PostgresQueryContext,
    containment: Dict[str, Any],
    order_by_field: Optional[str] = None,
    descending: bool = False,
    limit: Optional[int] = None,
) -> PostgresQuery:
    """
    Records whose metadata document contains ``containment``.

    Args:
        context: Table and type value of the entity type
        containment: JSON object matched with the ``@>`` operator
        order_by_field: Optional metadata key to sort on
        descending: Sort direction
        limit: Optional maximum number of rows
    """
    order_sql, order_params = _order_clause(order_by_field, descending, limit)
    return PostgresQuery(
        f"SELECT * FROM {context.table_name} WHERE {TYPE_COLUMN} = :entity_type "
        f"AND {METADATA_COLUMN} @> CAST(:containment AS jsonb){order_sql}",
        {"entity_type": context.type_value, "containment": json.dumps(containment), **order_params},
    )


def postgres_json_entity_query_multiple(
    context: PostgresQueryContext,
    containments: Sequence[Dict[str, Any]],
    order_by_field: Optional[str] = None,
    descending: bool = False,
) -> PostgresQuery:
    """Records whose metadata contains any one of ``containments``"""
    if not containments:
        raise ConfigurationError("At least one containment object is required")
    params: Dict[str, Any] = {"entity_type": context.type_value}
    clauses = []
    for index, containment in enumerate(containments):
        clauses.append(f"{METADATA_COLUMN} @> CAST(:containment{index} AS jsonb)")
        params[f"containment{index}"] = json.dumps(containment)
    order_sql, order_params = _order_clause(order_by_field, descending, None)
    params.update(order_params)
    return PostgresQuery(
        f"SELECT * FROM {context.table_name} WHERE {TYPE_COLUMN} = :entity_type "
        f"AND ({' OR '.join(clauses)}){order_sql}",
        params,
    )


def postgres_json_field_in(
    context: PostgresQueryContext,
    field_name: str,
    values: Sequence[str],
    containment: Optional[Dict[str, Any]] = None,
) -> PostgresQuery:
    """Records whose metadata field is one of ``values``, optionally also matching ``containment``"""
    params: Dict[str, Any] = {
        "entity_type": context.type_value,
        "field_name": field_name,
        "values": list(values),
    }
    sql = (
        f"SELECT * FROM {context.table_name} WHERE {TYPE_COLUMN} = :entity_type "
        f"AND {METADATA_COLUMN}->>:field_name IN :values"
    )
    if containment:
        sql += f" AND {METADATA_COLUMN} @> CAST(:containment AS jsonb)"
        params["containment"] = json.dumps(containment)
    return PostgresQuery(sql, params, expanding=("values",))


class PostgresEntityMetadataBackend(EntityMetadataBackend):
    """
    Postgres backend over a SQLAlchemy async engine.

    The engine, and so the connection pool, belongs to the backend and is
    disposed on shutdown.
    """

    name = "postgres"
    mapping_definition = PostgresSettings.MAPPING
    dump_mode = "json"

    def __init__(
        self,
        registry: EntityMetadataMappings,
        engine: AsyncEngine,
        table_names: Optional[Dict[str, str]] = None,
        type_values: Optional[Dict[str, str]] = None,
    ):
        super().__init__(registry)
        if engine is None:
            raise ConfigurationError("A database engine is required for the postgres backend")
        self.engine = engine
        self._table_names = dict(table_names or {})
        self._type_values = dict(type_values or {})

    @classmethod
    def from_config(cls, registry: EntityMetadataMappings, config) -> "PostgresEntityMetadataBackend":
        """Build the backend and its engine from a ``PostgresConfig``"""
        engine = create_async_engine(
            config.database_url,
            pool_size=config.pool_size,
            max_overflow=config.max_overflow,
            pool_timeout=config.pool_timeout,
            pool_recycle=config.pool_recycle,
            echo=config.echo,
        )
        return cls(registry, engine, config.table_names, config.type_values)

    async def _do_shutdown(self) -> None:
        await self.engine.dispose()

    def context(self, entity_type: EntityMetadataType) -> PostgresQueryContext:
        table_name = self._table_names.get(entity_type.value) or self.registry.lookup(
            entity_type, PostgresSettings.DEFAULT_TABLE_NAME, required=True)
        type_value = self._type_values.get(entity_type.value) or self.registry.lookup(
            entity_type, PostgresSettings.TYPE_COLUMN_VALUE, required=True)
        return PostgresQueryContext(_require_identifier(table_name), type_value)

    async def _execute(self, entity_type: EntityMetadataType, operation: str, query: PostgresQuery) -> PostgresResult:
        try:
            async with self.engine.begin() as connection:
                result = await connection.execute(query.statement(), query.params)
                rows = [dict(row) for row in result.mappings()] if result.returns_rows else []
                return PostgresResult(rows, result.rowcount)
        except IntegrityError as e:
            if _sqlstate(e) == UNIQUE_VIOLATION:
                raise EntityAlreadyExistsError(f"{entity_type} record already exists: {e.orig}") from e
            logger.error(f"Integrity error during postgres {operation} for {entity_type}: {e}")
            raise BackendError(f"Postgres {operation} failed for {entity_type}", entity_type, operation) from e
        except SQLAlchemyError as e:
            logger.error(f"Error during postgres {operation} for {entity_type}: {e}")
            raise BackendError(f"Postgres {operation} failed for {entity_type}", entity_type, operation) from e

    def _to_record(self, entity_type: EntityMetadataType, row: Mapping[str, Any]) -> EntityMetadata:
        document = row.get(METADATA_COLUMN) or {}
        if isinstance(document, str):
            document = json.loads(document)
        return EntityMetadata(entity_type, str(row[ID_COLUMN]), dict(document), row.get(CREATED_COLUMN))

    async def get_metadata(self, entity_type: EntityMetadataType, entity_id: str) -> Optional[EntityMetadata]:
        result = await self._execute(entity_type, "get", postgres_get_by_id(self.context(entity_type), entity_id))
        if not result.rows:
            return None
        if len(result.rows) > 1:
            raise AmbiguousEntityError(f"{len(result.rows)} rows found for {entity_type} {entity_id}")
        return self._to_record(entity_type, result.rows[0])

    async def set_metadata(self, metadata: EntityMetadata, uniqueness_verified: bool = False) -> None:
        context = self.context(metadata.entity_type)
        query = PostgresQuery(
            f"INSERT INTO {context.table_name} ({TYPE_COLUMN}, {ID_COLUMN}, {CREATED_COLUMN}, {METADATA_COLUMN}) "
            f"VALUES (:entity_type, :entity_id, :created, CAST(:metadata AS jsonb))",
            {
                "entity_type": context.type_value,
                "entity_id": metadata.entity_id,
                "created": metadata.created or datetime.now(timezone.utc),
                "metadata": json.dumps(metadata.fields),
            },
        )
        await self._execute(metadata.entity_type, "insert", query)
        logger.debug(f"Inserted {metadata.entity_type} {metadata.entity_id} into {context.table_name}")

    async def update_metadata(self, metadata: EntityMetadata) -> None:
        context = self.context(metadata.entity_type)
        query = PostgresQuery(
            f"UPDATE {context.table_name} SET {METADATA_COLUMN} = CAST(:metadata AS jsonb) "
            f"WHERE {TYPE_COLUMN} = :entity_type AND {ID_COLUMN} = :entity_id",
            {
                "entity_type": context.type_value,
                "entity_id": metadata.entity_id,
                "metadata": json.dumps(metadata.fields),
            },
        )
        result = await self._execute(metadata.entity_type, "update", query)
        if result.rowcount == 0:
            raise EntityNotFoundError(f"{metadata.entity_type} {metadata.entity_id} not found")

    async def delete_metadata(self, metadata: EntityMetadata) -> None:
        context = self.context(metadata.entity_type)
        query = PostgresQuery(
            f"DELETE FROM {context.table_name} WHERE {TYPE_COLUMN} = :entity_type AND {ID_COLUMN} = :entity_id",
            {"entity_type": context.type_value, "entity_id": metadata.entity_id},
        )
        result = await self._execute(metadata.entity_type, "delete", query)
        if result.rowcount == 0:
            raise EntityNotFoundError(f"{metadata.entity_type} {metadata.entity_id} not found")

    async def fixed_query_metadata(self, entity_type: EntityMetadataType, query: FixedQuery) -> List[EntityMetadata]:
        translate: PostgresQueryTranslator = self._query_translator(entity_type, PostgresSettings.QUERIES)
        result = await self._execute(entity_type, "query", translate(query, self.context(entity_type)))
        return [self._to_record(entity_type, row) for row in result.rows]

    async def clear_metadata_store(self, entity_type: EntityMetadataType) -> None:
        context = self.context(entity_type)
        query = PostgresQuery(
            f"DELETE FROM {context.table_name} WHERE {TYPE_COLUMN} = :entity_type",
            {"entity_type": context.type_value},
        )
        result = await self._execute(entity_type, "clear", query)
        logger.info(f"Cleared {result.rowcount} {entity_type} rows from {context.table_name}")


__all__ = [
    'PostgresEntityMetadataBackend',
    'PostgresQuery',
    'PostgresQueryContext',
    'PostgresQueryTranslator',
    'PostgresResult',
    'postgres_get_all_entities',
    'postgres_get_by_id',
    'postgres_json_entity_query',
    'postgres_json_entity_query_multiple',
    'postgres_json_field_in',
]
