#    Copyright 2025 FAO
#
#    Licensed under the Apache License, Version 2.0 (the "License");
#    you may not use this file except in compliance with the License.
#    You may obtain a copy of the License at
#
#        http://www.apache.org/licenses/LICENSE-2.0
#
#    Unless required by applicable law or agreed to in writing, software
#    distributed under the License is distributed on an "AS IS" BASIS,
#    WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#    See the License for the specific language governing permissions and
#    limitations under the License.
#
#    Author: Carlo Cancellieri (ccancellieri@gmail.com)
#    Company: FAO, Viale delle Terme di Caracalla, 00100 Rome, Italy
#    Contact: copyright@fao.org - http://fao.org/contact-us/terms/en/

from types import SimpleNamespace

import pytest

from geovault.models.exceptions import InternalError, NotFoundError
from geovault.modules.db_config.exceptions import (
    PermissionDeniedError,
    QueryExecutionError,
    UniqueViolationError,
)
from geovault.modules.db_config.query_executor import (
    DDLQuery,
    DQLQuery,
    ResultHandler,
    TemplateQueryBuilder,
    managed_transaction,
)
from geovault.tools.identifiers import InvalidIdentifierError

from conftest import RecordingConnection, make_result


def driver_error(sqlstate):
    error = Exception("driver failure")
    error.orig = SimpleNamespace(sqlstate=sqlstate)
    return error


def test_template_identifiers_are_validated_and_quoted():
    query, params = TemplateQueryBuilder(
        "SELECT * FROM {schema}.collections WHERE canonical_name = :name"
    ).build(None, {"schema": "geovault", "name": "alice:roads"})
    assert str(query) == 'SELECT * FROM "geovault".collections WHERE canonical_name = :name'
    assert params == {"name": "alice:roads"}


def test_template_rejects_unsafe_identifiers():
    with pytest.raises(InvalidIdentifierError):
        TemplateQueryBuilder("DROP TABLE {schema}.t").build(None, {"schema": 'x"; DROP SCHEMA public; --'})


def test_template_requires_every_identifier():
    with pytest.raises(TypeError):
        TemplateQueryBuilder("SELECT * FROM {schema}.{table}").build(None, {"schema": "a"})


def test_doubled_braces_survive_as_literals():
    query, _ = TemplateQueryBuilder("SELECT '{{}}'::jsonb FROM {schema}.t").build(None, {"schema": "a"})
    assert str(query) == "SELECT '{}'::jsonb FROM \"a\".t"


@pytest.mark.asyncio
async def test_dql_applies_result_handler():
    conn = RecordingConnection([make_result(rows=[{"id": 1, "name": "x"}])])
    row = await DQLQuery("SELECT id, name FROM {schema}.t", result_handler=ResultHandler.ONE_DICT).execute(
        conn, schema="a"
    )
    assert row == {"id": 1, "name": "x"}
    assert conn.statements == ['SELECT id, name FROM "a".t']


@pytest.mark.asyncio
@pytest.mark.parametrize("sqlstate, expected", [
    ("42501", PermissionDeniedError),
    ("23505", UniqueViolationError),
    ("XX000", QueryExecutionError),
])
async def test_driver_errors_are_mapped_by_sqlstate(sqlstate, expected):
    conn = RecordingConnection([driver_error(sqlstate)])
    with pytest.raises(expected) as exc_info:
        await DQLQuery("SELECT 1", result_handler=ResultHandler.SCALAR).execute(conn)
    assert isinstance(exc_info.value, InternalError)
    assert exc_info.value.pgcode == sqlstate


@pytest.mark.asyncio
async def test_ddl_errors_are_mapped():
    conn = RecordingConnection([driver_error("42501")])
    with pytest.raises(PermissionDeniedError):
        await DDLQuery("CREATE SCHEMA {schema}").execute(conn, schema="a")


@pytest.mark.asyncio
async def test_core_errors_raised_by_handlers_pass_through():
    def handler(result):
        raise NotFoundError("nothing here")

    conn = RecordingConnection()
    with pytest.raises(NotFoundError):
        await DQLQuery("SELECT 1", result_handler=handler).execute(conn)


@pytest.mark.asyncio
async def test_managed_transaction_refuses_closed_connections():
    conn = RecordingConnection()
    conn.closed = True
    with pytest.raises(InternalError):
        async with managed_transaction(conn):
            pass


@pytest.mark.asyncio
async def test_statement_queries_keep_braces_and_binds():
    statement = "SELECT '{}'::jsonb || CAST(:properties AS JSONB)"
    conn = RecordingConnection([make_result(scalar='{"a": 1}')])
    value = await DQLQuery.from_statement(statement, result_handler=ResultHandler.SCALAR_ONE).execute(
        conn, properties='{"a": 1}'
    )
    assert value == '{"a": 1}'
    assert conn.params == [{"properties": '{"a": 1}'}]
