"""
Shared fixtures: a built registry, and in-process stand-ins for the Azure
table service and for Postgres statement execution.
"""

import copy
import json
import re
from typing import Any, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError

from entitymeta.entities import build_registry
from entitymeta.persistence.backends.memory import MemoryEntityMetadataBackend
from entitymeta.persistence.backends.postgres import (
    PostgresEntityMetadataBackend, PostgresQuery, PostgresResult,
)
from entitymeta.persistence.backends.table import TableEntityMetadataBackend
from entitymeta.persistence.errors import EntityAlreadyExistsError

BACKEND_NAMES = ["memory", "postgres", "table"]


# Table service

class FakeTableClient:
    """Implements the subset of ``azure.data.tables.aio.TableClient`` the backend uses"""

    def __init__(self, rows: Dict[Tuple[str, str], Dict[str, Any]]):
        self.rows = rows

    async def create_entity(self, entity):
        key = (entity["PartitionKey"], entity["RowKey"])
        if key in self.rows:
            raise ResourceExistsError("The specified entity already exists.")
        self.rows[key] = dict(entity)

    async def update_entity(self, entity, mode=None):
        key = (entity["PartitionKey"], entity["RowKey"])
        if key not in self.rows:
            raise ResourceNotFoundError("The specified resource does not exist.")
        self.rows[key] = dict(entity)

    async def get_entity(self, partition_key, row_key):
        row = self.rows.get((partition_key, row_key))
        if row is None:
            raise ResourceNotFoundError("The specified resource does not exist.")
        return dict(row)

    async def delete_entity(self, partition_key, row_key):
        self.rows.pop((partition_key, row_key), None)

    def query_entities(self, query_filter, parameters=None):
        parameters = parameters or {}
        matches = [dict(row) for row in self.rows.values() if _matches_filter(row, query_filter, parameters)]

        async def iterate():
            for row in matches:
                yield row
        return iterate()


def _matches_atom(row, atom, parameters):
    column, operator, placeholder = atom.strip().split(" ")
    assert operator == "eq" and placeholder.startswith("@")
    return row.get(column) == parameters[placeholder[1:]]


def _matches_filter(row, query_filter, parameters):
    for term in query_filter.split(" and "):
        term = term.strip()
        if term.startswith("("):
            if not any(_matches_atom(row, atom, parameters) for atom in term[1:-1].split(" or ")):
                return False
        elif not _matches_atom(row, term, parameters):
            return False
    return True


class FakeTableServiceClient:
    def __init__(self):
        self.tables: Dict[str, Dict[Tuple[str, str], Dict[str, Any]]] = {}
        self.closed = False

    def get_table_client(self, table_name):
        return FakeTableClient(self.tables.setdefault(table_name, {}))

    async def create_table_if_not_exists(self, table_name):
        self.tables.setdefault(table_name, {})

    async def close(self):
        self.closed = True


# Postgres

def _contains(document, containment):
    if isinstance(containment, dict):
        return isinstance(document, dict) and all(
            key in document and _contains(document[key], value) for key, value in containment.items())
    return document == containment


class FakePostgresBackend(PostgresEntityMetadataBackend):
    """
    Postgres backend whose statements run against a dictionary.

    Understands exactly the statements the backend and its query helpers
    generate; every executed statement is kept in ``executed``.
    """

    def __init__(self, registry, **kwargs):
        super().__init__(registry, engine=object(), **kwargs)
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.executed: List[PostgresQuery] = []

    async def _do_shutdown(self):
        pass

    async def _execute(self, entity_type, operation, query: PostgresQuery) -> PostgresResult:
        self.executed.append(query)
        params = query.params
        table = re.search(r"(?:INTO|FROM|UPDATE) (\w+)", query.sql).group(1)
        rows = self.tables.setdefault(table, [])

        def selected():
            return [
                row for row in rows
                if row["entitytype"] == params["entity_type"]
                and ("entity_id" not in params or row["entityid"] == params["entity_id"])
            ]

        if query.sql.startswith("INSERT"):
            if selected():
                raise EntityAlreadyExistsError(f"{entity_type} record already exists")
            rows.append({
                "entitytype": params["entity_type"],
                "entityid": params["entity_id"],
                "entitycreated": params["created"],
                "metadata": params["metadata"],
            })
            return PostgresResult([], 1)

        if query.sql.startswith("UPDATE"):
            matches = selected()
            for row in matches:
                row["metadata"] = params["metadata"]
            return PostgresResult([], len(matches))

        if query.sql.startswith("DELETE"):
            matches = selected()
            for row in matches:
                rows.remove(row)
            return PostgresResult([], len(matches))

        matches = selected()
        containments = [json.loads(value) for key, value in sorted(params.items()) if key.startswith("containment")]
        if len(containments) > 1:
            matches = [row for row in matches if any(_contains(json.loads(row["metadata"]), c) for c in containments)]
        elif containments:
            matches = [row for row in matches if _contains(json.loads(row["metadata"]), containments[0])]
        if "values" in params:
            matches = [row for row in matches if json.loads(row["metadata"]).get(params["field_name"]) in params["values"]]
        if "order_field" in params:
            # Postgres treats NULL as larger than any value unless NULLS FIRST/LAST says otherwise
            descending = "DESC" in query.sql
            nulls_last = "NULLS LAST" in query.sql or (not descending and "NULLS FIRST" not in query.sql)
            value = lambda row: json.loads(row["metadata"]).get(params["order_field"])
            present = sorted((row for row in matches if value(row) is not None), key=value, reverse=descending)
            missing = [row for row in matches if value(row) is None]
            matches = present + missing if nulls_last else missing + present
        if "limit" in params:
            matches = matches[:params["limit"]]
        return PostgresResult([copy.deepcopy(row) for row in matches], len(matches))


# Fixtures

@pytest.fixture
def registry():
    return build_registry()


@pytest.fixture
def table_service():
    return FakeTableServiceClient()


def make_backend(name: str, registry, table_service: Optional[FakeTableServiceClient] = None):
    if name == "memory":
        return MemoryEntityMetadataBackend(registry)
    if name == "postgres":
        return FakePostgresBackend(registry)
    if name == "table":
        return TableEntityMetadataBackend(registry, table_service or FakeTableServiceClient())
    raise ValueError(name)


@pytest_asyncio.fixture(params=BACKEND_NAMES)
async def backend(request, registry, table_service):
    instance = make_backend(request.param, registry, table_service)
    await instance.initialize()
    yield instance
    await instance.shutdown()
