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

import hashlib
import logging
from contextlib import asynccontextmanager

from geovault.modules.db_config.query_executor import (
    DDLQuery, DQLQuery, DbResource, ResultHandler, managed_transaction
)

logger = logging.getLogger(__name__)

_advisory_lock_query = DQLQuery(
    "SELECT pg_advisory_xact_lock(:lock_id);", result_handler=ResultHandler.NONE
)


def advisory_lock_id(key: str) -> int:
    """Stable signed 64-bit lock id derived from a text key."""
    digest = hashlib.sha256(key.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


@asynccontextmanager
async def startup_lock(conn: DbResource, key: str):
    """
    Serializes concurrent bootstrap DDL across instances.

    Takes a transaction-scoped advisory lock on `key` and yields the
    transactional connection; the lock is released at commit.
    """
    async with managed_transaction(conn) as tx_conn:
        await _advisory_lock_query.execute(tx_conn, lock_id=advisory_lock_id(key))
        logger.debug(f"Acquired startup lock '{key}'")
        yield tx_conn


async def execute_ddl_block(conn: DbResource, ddl_block: str, **kwargs):
    """
    Executes a block of DDL statements one by one, split on semicolons.

    asyncpg prepared statements only accept a single command per execution.
    Blocks must not contain semicolons inside string literals or function bodies.
    """
    for statement in ddl_block.split(';'):
        if stmt := statement.strip():
            await DDLQuery(stmt).execute(conn, **kwargs)


async def ensure_db_extension(conn: DbResource, extension_name: str):
    """Ensures a database extension exists."""
    try:
        logger.info(f"Ensuring extension '{extension_name}' exists...")
        async with startup_lock(conn, f"extension_{extension_name}") as tx_conn:
            await DDLQuery('CREATE EXTENSION IF NOT EXISTS {extension_name} CASCADE').execute(
                tx_conn, extension_name=extension_name
            )
    except Exception as e:
        logger.error(f"Failed to ensure extension '{extension_name}': {e}")
        raise


async def ensure_schema_exists(conn: DbResource, schema_name: str):
    """
    Ensures a database schema exists, serialized by an advisory lock on the
    schema name so that concurrently starting instances do not race.
    """
    try:
        logger.info(f"Ensuring schema '{schema_name}' exists ...")
        async with startup_lock(conn, f"schema_{schema_name}") as tx_conn:
            await DDLQuery('CREATE SCHEMA IF NOT EXISTS {schema_name}').execute(
                tx_conn, schema_name=schema_name
            )
        logger.info(f"Schema '{schema_name}' is ready.")
    except Exception as e:
        logger.error(f"Failed to create or verify schema '{schema_name}': {e}")
        raise
