"""
Table Backend - Partition/Row Key Entity Metadata Store

📋 Azure Table Storage:
Every entity type is stored under one fixed partition key in a named table.
The row key is an optional prefix followed by the entity identifier. Types
whose legacy rows use generated row keys are flagged as having no point
queries: their identifier lives in an alternate column and lookups go through
a query instead.

Only scalar columns are stored. Numbers are written as strings, list-valued
fields need a registered field codec, and every query is a parameterized
conjunction of equality predicates.
"""

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from azure.core.exceptions import HttpResponseError, ResourceExistsError, ResourceNotFoundError
from azure.data.tables import UpdateMode
from azure.data.tables.aio import TableServiceClient

from ..declarations import EntityMetadataMappings, TableSettings
from ..errors import (
    AmbiguousEntityError, BackendError, ConfigurationError,
    EntityAlreadyExistsError, EntityNotFoundError,
)
from ..queries import FixedQuery
from ..records import EntityMetadata, EntityMetadataType
from .interface import EntityMetadataBackend

logger = logging.getLogger(__name__)

PARTITION_KEY = "PartitionKey"
ROW_KEY = "RowKey"
SYSTEM_COLUMNS = {PARTITION_KEY, ROW_KEY, "Timestamp", "etag"}

_COLUMN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _require_column(name: str) -> str:
    if not _COLUMN.match(name):
        raise ConfigurationError(f"'{name}' is not a valid table column name")
    return name


def to_table_value(column: str, value: Any) -> Any:
    """Convert a serialized field value into a value the table store accepts"""
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, (bool, str, datetime)):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    raise ConfigurationError(
        f"Column '{column}' holds a {type(value).__name__}; register a field codec for it")


@dataclass
class TableQuery:
    """OData filter with ``@name`` placeholders and their values"""
    filter: str
    parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TableQueryContext:
    partition_key: str
    discriminator: Optional[Tuple[str, str]] = None


TableQueryTranslator = Callable[[FixedQuery, TableQueryContext], TableQuery]


def table_query(
    context: TableQueryContext,
    equals: Optional[Dict[str, Any]] = None,
    any_of: Optional[Tuple[str, Sequence[Any]]] = None,
) -> TableQuery:
    """
    Build a filter matching the entity type's partition and discriminator.

    Args:
        context: Partition key and discriminator of the entity type
        equals: Column values that must all match
        any_of: (column, values) pair; the column must match one of the values
    """
    clauses = [f"{PARTITION_KEY} eq @pk"]
    parameters: Dict[str, Any] = {"pk": context.partition_key}
    if context.discriminator:
        column, value = context.discriminator
        clauses.append(f"{_require_column(column)} eq @discriminator")
        parameters["discriminator"] = value
    for index, (column, value) in enumerate((equals or {}).items()):
        clauses.append(f"{_require_column(column)} eq @p{index}")
        parameters[f"p{index}"] = to_table_value(column, value)
    if any_of is not None:
        column, values = any_of
        if not values:
            raise ConfigurationError(f"At least one value is required to match {column}")
        alternatives = []
        for index, value in enumerate(values):
            alternatives.append(f"{_require_column(column)} eq @in{index}")
            parameters[f"in{index}"] = to_table_value(column, value)
        clauses.append(f"({' or '.join(alternatives)})")
    return TableQuery(" and ".join(clauses), parameters)


class TableEntityMetadataBackend(EntityMetadataBackend):
    """Azure Table Storage backend over the async ``TableServiceClient``"""

    name = "table"
    mapping_definition = TableSettings.MAPPING
    codecs_definition = TableSettings.FIELD_CODECS
    dump_mode = "python"

    def __init__(
        self,
        registry: EntityMetadataMappings,
        service_client: TableServiceClient,
        table_names: Optional[Dict[str, str]] = None,
        create_tables: bool = False,
    ):
        super().__init__(registry)
        if service_client is None:
            raise ConfigurationError("A table service client is required for the table backend")
        self.service_client = service_client
        self._table_names = dict(table_names or {})
        self._create_tables = create_tables

    @classmethod
    def from_config(cls, registry: EntityMetadataMappings, config) -> "TableEntityMetadataBackend":
        """Build the backend from a ``TableConfig``"""
        if not config.connection_string:
            raise ConfigurationError("A table connection string is required for the table backend")
        service_client = TableServiceClient.from_connection_string(config.connection_string)
        return cls(registry, service_client, config.table_names, config.create_tables)

    def _type_supports_point_query(self, entity_type: EntityMetadataType) -> bool:
        return not self.registry.lookup(entity_type, TableSettings.NO_POINT_QUERIES)

    async def _do_initialize(self) -> None:
        if not self._create_tables:
            return
        table_names = {
            self.table_name(entity_type) for entity_type in self.registry.registered_types()
            if self.supports_entity_type(entity_type)
        }
        for table_name in sorted(table_names):
            await self.service_client.create_table_if_not_exists(table_name)
            logger.info(f"Ensured table {table_name} exists")

    async def _do_shutdown(self) -> None:
        await self.service_client.close()

    def table_name(self, entity_type: EntityMetadataType) -> str:
        return self._table_names.get(entity_type.value) or self.registry.lookup(
            entity_type, TableSettings.DEFAULT_TABLE_NAME, required=True)

    def context(self, entity_type: EntityMetadataType) -> TableQueryContext:
        return TableQueryContext(
            self.registry.lookup(entity_type, TableSettings.FIXED_PARTITION_KEY, required=True),
            self.registry.lookup(entity_type, TableSettings.TYPE_DISCRIMINATOR),
        )

    def _row_key(self, entity_type: EntityMetadataType, entity_id: str) -> str:
        prefix = self.registry.lookup(entity_type, TableSettings.ROW_KEY_PREFIX) or ""
        return f"{prefix}{entity_id}"

    def _alternate_id_column(self, entity_type: EntityMetadataType) -> str:
        return self.registry.lookup(entity_type, TableSettings.ALTERNATE_ID_COLUMN, required=True)

    def _client(self, entity_type: EntityMetadataType):
        return self.service_client.get_table_client(self.table_name(entity_type))

    def _to_table_entity(self, metadata: EntityMetadata, row_key: str) -> Dict[str, Any]:
        entity_type = metadata.entity_type
        context = self.context(entity_type)
        row: Dict[str, Any] = {PARTITION_KEY: context.partition_key, ROW_KEY: row_key}
        for column, value in metadata.fields.items():
            if value is not None:
                row[column] = to_table_value(column, value)
        if context.discriminator:
            column, value = context.discriminator
            row[column] = value
        if not self.supports_point_query_for_type(entity_type):
            row[self._alternate_id_column(entity_type)] = metadata.entity_id
        return row

    def _to_record(self, entity_type: EntityMetadataType, row: Dict[str, Any]) -> EntityMetadata:
        skip = set(SYSTEM_COLUMNS)
        discriminator = self.registry.lookup(entity_type, TableSettings.TYPE_DISCRIMINATOR)
        if discriminator:
            skip.add(discriminator[0])
        if self.supports_point_query_for_type(entity_type):
            prefix = self.registry.lookup(entity_type, TableSettings.ROW_KEY_PREFIX) or ""
            entity_id = row[ROW_KEY][len(prefix):]
        else:
            alternate_column = self._alternate_id_column(entity_type)
            skip.add(alternate_column)
            entity_id = row.get(alternate_column)
        metadata = getattr(row, "metadata", None) or {}
        fields = {column: value for column, value in row.items() if column not in skip}
        return EntityMetadata(entity_type, str(entity_id), fields, metadata.get("timestamp"))

    def _wrap(self, entity_type: EntityMetadataType, operation: str, error: HttpResponseError) -> BackendError:
        logger.error(f"Error during table {operation} for {entity_type}: {error}")
        return BackendError(f"Table {operation} failed for {entity_type}", entity_type, operation)

    async def _query_rows(self, entity_type: EntityMetadataType, query: TableQuery) -> List[Dict[str, Any]]:
        client = self._client(entity_type)
        try:
            return [row async for row in client.query_entities(query.filter, parameters=query.parameters)]
        except HttpResponseError as e:
            raise self._wrap(entity_type, "query", e) from e

    async def _locate_row_key(self, metadata: EntityMetadata) -> str:
        entity_type = metadata.entity_type
        if self.supports_point_query_for_type(entity_type):
            return self._row_key(entity_type, metadata.entity_id)
        query = table_query(self.context(entity_type), {self._alternate_id_column(entity_type): metadata.entity_id})
        rows = await self._query_rows(entity_type, query)
        if not rows:
            raise EntityNotFoundError(f"{entity_type} {metadata.entity_id} not found")
        if len(rows) > 1:
            raise AmbiguousEntityError(f"{len(rows)} rows found for {entity_type} {metadata.entity_id}")
        return rows[0][ROW_KEY]

    async def get_metadata(self, entity_type: EntityMetadataType, entity_id: str) -> Optional[EntityMetadata]:
        if not self.supports_point_query_for_type(entity_type):
            raise ConfigurationError(f"{entity_type} does not support point queries in the table backend")
        client = self._client(entity_type)
        try:
            row = await client.get_entity(self.context(entity_type).partition_key, self._row_key(entity_type, entity_id))
        except ResourceNotFoundError:
            return None
        except HttpResponseError as e:
            raise self._wrap(entity_type, "get", e) from e
        return self._to_record(entity_type, row)

    async def set_metadata(self, metadata: EntityMetadata, uniqueness_verified: bool = False) -> None:
        entity_type = metadata.entity_type
        if self.supports_point_query_for_type(entity_type):
            row_key = self._row_key(entity_type, metadata.entity_id)
        elif uniqueness_verified:
            row_key = str(uuid.uuid4())
        else:
            raise ConfigurationError(
                f"{entity_type} has no point queries; uniqueness must be verified before inserting")
        client = self._client(entity_type)
        try:
            await client.create_entity(self._to_table_entity(metadata, row_key))
        except ResourceExistsError as e:
            raise EntityAlreadyExistsError(f"{entity_type} {metadata.entity_id} already exists") from e
        except HttpResponseError as e:
            raise self._wrap(entity_type, "insert", e) from e
        logger.debug(f"Inserted {entity_type} {metadata.entity_id} into table {self.table_name(entity_type)}")

    async def update_metadata(self, metadata: EntityMetadata) -> None:
        entity_type = metadata.entity_type
        row_key = await self._locate_row_key(metadata)
        client = self._client(entity_type)
        try:
            await client.update_entity(self._to_table_entity(metadata, row_key), mode=UpdateMode.REPLACE)
        except ResourceNotFoundError as e:
            raise EntityNotFoundError(f"{entity_type} {metadata.entity_id} not found") from e
        except HttpResponseError as e:
            raise self._wrap(entity_type, "update", e) from e

    async def delete_metadata(self, metadata: EntityMetadata) -> None:
        entity_type = metadata.entity_type
        row_key = await self._locate_row_key(metadata)
        client = self._client(entity_type)
        partition_key = self.context(entity_type).partition_key
        try:
            if self.supports_point_query_for_type(entity_type):
                # the table service treats deleting a missing row as success
                await client.get_entity(partition_key, row_key)
            await client.delete_entity(partition_key=partition_key, row_key=row_key)
        except ResourceNotFoundError as e:
            raise EntityNotFoundError(f"{entity_type} {metadata.entity_id} not found") from e
        except HttpResponseError as e:
            raise self._wrap(entity_type, "delete", e) from e

    async def fixed_query_metadata(self, entity_type: EntityMetadataType, query: FixedQuery) -> List[EntityMetadata]:
        translate: TableQueryTranslator = self._query_translator(entity_type, TableSettings.QUERIES)
        rows = await self._query_rows(entity_type, translate(query, self.context(entity_type)))
        return [self._to_record(entity_type, row) for row in rows]

    async def clear_metadata_store(self, entity_type: EntityMetadataType) -> None:
        rows = await self._query_rows(entity_type, table_query(self.context(entity_type)))
        client = self._client(entity_type)
        try:
            for row in rows:
                await client.delete_entity(partition_key=row[PARTITION_KEY], row_key=row[ROW_KEY])
        except HttpResponseError as e:
            raise self._wrap(entity_type, "clear", e) from e
        logger.info(f"Cleared {len(rows)} {entity_type} rows from table {self.table_name(entity_type)}")


__all__ = [
    'TableEntityMetadataBackend',
    'TableQuery',
    'TableQueryContext',
    'TableQueryTranslator',
    'table_query',
    'to_table_value',
]
