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

"""
Query objects over SQLAlchemy's async core.

A query couples a builder (how the SQL text and its bind parameters are
produced) with an executor (how the result is consumed). Driver errors are
translated into the exceptions of `geovault.modules.db_config.exceptions`
by SQLSTATE.
"""

import inspect
import re
import logging
from abc import abstractmethod, ABC
from contextlib import asynccontextmanager
from sqlalchemy import text
from sqlalchemy.sql.elements import TextClause
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine
from sqlalchemy.exc import PendingRollbackError
from typing import Union, Callable, Any, Tuple

from geovault.models.exceptions import GeoVaultError
from geovault.tools.identifiers import validate_identifier, quote_identifier
from .exceptions import QueryExecutionError, PGCODE_EXCEPTION_MAP, DatabaseConnectionError

DbConnection = AsyncConnection
DbResource = Union[AsyncEngine, AsyncConnection]
BuilderResult = Tuple[TextClause, dict]

logger = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"{(\w+)}")


class ResultHandler:
    """Ready-made result consumers."""
    SCALAR = lambda r: r.scalar()
    SCALAR_ONE = lambda r: r.scalar_one()
    SCALAR_ONE_OR_NONE = lambda r: r.scalar_one_or_none()
    ROWCOUNT = lambda r: r.rowcount
    ALL_DICTS = lambda r: [row._asdict() for row in r.all()]
    ONE_DICT = lambda r: (row._asdict() if (row := r.fetchone()) else None)
    NONE = lambda r: None


def translate_db_error(error: Exception) -> GeoVaultError:
    """The catalog exception for a driver error, chosen by its SQLSTATE."""
    driver_error = getattr(error, 'orig', None)
    sqlstate = getattr(driver_error, 'pgcode', None) or getattr(driver_error, 'sqlstate', None)
    exception_class = PGCODE_EXCEPTION_MAP.get(sqlstate)
    if exception_class is None:
        return QueryExecutionError("Database query failed.", original_exception=driver_error or error)
    return exception_class(f"Database error ({sqlstate})", original_exception=driver_error or error)


# --- Builders ---

class QueryBuilderStrategy(ABC):
    @abstractmethod
    def build(self, db_resource: DbResource, raw_params: dict) -> BuilderResult:
        pass


class TemplateQueryBuilder(QueryBuilderStrategy):
    """
    SQL from a template with `{name}` placeholders for identifiers.

    A parameter named after a placeholder must be a valid identifier; it is
    quoted into the text. All other parameters stay bind values. Literal
    braces in the template are written doubled.
    """
    def __init__(self, query_template: str):
        self.query_template = query_template

    def build(self, db_resource: DbResource, raw_params: dict):
        placeholders = set(_PLACEHOLDER_RE.findall(self.query_template))
        identifiers = {
            name: quote_identifier(validate_identifier(str(value), name))
            for name, value in raw_params.items() if name in placeholders
        }
        unbound = placeholders - identifiers.keys()
        if unbound:
            raise TypeError(f"TemplateQueryBuilder: no value for identifier(s) {sorted(unbound)}.")
        binds = {name: value for name, value in raw_params.items() if name not in placeholders}
        return text(self.query_template.format(**identifiers)), binds


class StatementQueryBuilder(QueryBuilderStrategy):
    """An already assembled statement: the text is used as is, with no placeholder handling."""
    def __init__(self, statement: str):
        self.statement = statement

    def build(self, db_resource: DbResource, raw_params: dict):
        return text(self.statement), dict(raw_params)


# --- Executors ---

class BaseExecutor:
    def __init__(self, query_builder_strategy: QueryBuilderStrategy):
        self.query_builder_strategy = query_builder_strategy

    async def __call__(self, db_resource: DbResource, raw_params: dict):
        if isinstance(db_resource, str):
            raise TypeError(f"Expected an engine or a connection, got the string '{db_resource}'.")
        if isinstance(db_resource, AsyncEngine):
            async with db_resource.begin() as conn:
                return await self._run(conn, raw_params)
        return await self._run(db_resource, raw_params)

    async def _run(self, conn: DbConnection, raw_params: dict):
        statement, params = self.query_builder_strategy.build(conn, raw_params)
        return await self._execute(conn, statement, params)

    @abstractmethod
    async def _execute(self, conn: DbConnection, statement: TextClause, params: dict):
        pass


class DQLExecutor(BaseExecutor):
    """Runs a statement and hands its result to `result_handler`."""
    def __init__(self, query_builder_strategy: QueryBuilderStrategy, result_handler: Callable):
        super().__init__(query_builder_strategy)
        self.result_handler = result_handler

    async def _execute(self, conn: DbConnection, statement: TextClause, params: dict):
        try:
            result = await conn.execute(statement, params)
            value = self.result_handler(result)
            return await value if inspect.isawaitable(value) else value
        except GeoVaultError:
            raise
        except Exception as e:
            raise translate_db_error(e) from e


class DDLExecutor(BaseExecutor):
    async def _execute(self, conn: DbConnection, statement: TextClause, params: dict):
        try:
            await conn.execute(statement, params)
        except Exception as e:
            raise translate_db_error(e) from e


@asynccontextmanager
async def managed_transaction(db_resource: DbResource):
    """
    Yields a connection inside a transaction.

    Engines get a new connection and transaction. A connection already in a
    transaction nests a SAVEPOINT, so calls compose.
    """
    if isinstance(db_resource, AsyncEngine):
        async with db_resource.begin() as conn:
            yield conn
        return

    conn = db_resource
    if getattr(conn, "closed", False) is True or getattr(conn, "invalidated", False) is True:
        raise DatabaseConnectionError("Cannot start transaction: connection is closed.")

    try:
        async with (conn.begin_nested() if conn.in_transaction() else conn.begin()):
            yield conn
    except PendingRollbackError as e:
        logger.warning("Connection left with a pending rollback; rolling back.")
        await conn.rollback()
        raise DatabaseConnectionError("Transaction was left in an invalid state.", original_exception=e) from e


# --- Queries ---

class BaseQuery:
    def __init__(self, executor: BaseExecutor):
        self._executor = executor

    async def execute(self, conn: DbResource, **params) -> Any:
        return await self._executor(conn, params)


class DQLQuery(BaseQuery):
    """
    A query whose result is consumed.

    Example:
        _select_collection = DQLQuery(
            "SELECT * FROM {schema}.collections WHERE canonical_name = :name;",
            result_handler=ResultHandler.ONE_DICT
        )
        row = await _select_collection.execute(conn, schema="geovault", name="alice:roads")
    """
    def __init__(self, sql_template: str, *, result_handler: Callable):
        super().__init__(DQLExecutor(TemplateQueryBuilder(sql_template), result_handler))

    @classmethod
    def _with_builder(cls, builder: QueryBuilderStrategy, result_handler: Callable) -> "DQLQuery":
        query = cls.__new__(cls)
        BaseQuery.__init__(query, DQLExecutor(builder, result_handler))
        return query

    @classmethod
    def from_statement(cls, statement: str, *, result_handler: Callable = ResultHandler.NONE) -> "DQLQuery":
        """A query over a statement assembled by the caller from validated, quoted identifiers."""
        return cls._with_builder(StatementQueryBuilder(statement), result_handler)


class DDLQuery(BaseQuery):
    def __init__(self, sql_template: str):
        super().__init__(DDLExecutor(TemplateQueryBuilder(sql_template)))
