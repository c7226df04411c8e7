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

import logging
from contextlib import asynccontextmanager
from typing import Optional, AsyncIterator

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from geovault.models.auth import Principal
from geovault.modules import ModuleProtocol, geovault_module
from geovault.modules.db_config.db_config import DBConfig
from geovault.modules.db_config.query_executor import DDLQuery
from geovault.modules.db_config.tools import get_config, ensure_init_db, normalize_db_url
from geovault.models.protocols import DatabaseProtocol

logger = logging.getLogger(__name__)

# SET LOCAL takes no bind parameters; the role is a validated, quoted identifier.
_set_local_role = DDLQuery("SET LOCAL ROLE {role}")


@geovault_module
class DBService(ModuleProtocol, DatabaseProtocol):
    app_state: object

    def __init__(self, app_state: object):
        self.app_state = app_state

    @property
    def priority(self) -> int:
        return 10

    @property
    def engine(self) -> Optional[AsyncEngine]:
        """DatabaseProtocol implementation."""
        return getattr(self.app_state, 'engine', None)

    def _config(self) -> DBConfig:
        return getattr(self.app_state, 'db_config', None) or DBConfig()

    def get_metadata_schema(self) -> str:
        return self._config().metadata_schema

    def get_default_srid(self) -> int:
        return self._config().default_srid

    def impersonates_principals(self) -> bool:
        return self._config().role_impersonation

    @asynccontextmanager
    async def principal_session(self, principal: Principal) -> AsyncIterator[AsyncConnection]:
        """
        One connection, one transaction, running as the principal's role.

        Every statement of the request must be issued on the yielded
        connection. Commit or rollback resets the role, so the connection goes
        back to the pool clean. With GEOVAULT_ROLE_IMPERSONATION disabled the
        transaction runs as the service role.
        """
        if self.engine is None:
            raise RuntimeError("DBService: engine is not initialized.")

        async with self.engine.begin() as conn:
            if self.impersonates_principals():
                await _set_local_role.execute(conn, role=principal.username)
            yield conn

    @asynccontextmanager
    async def lifespan(self, app_state: object):
        """Manages the lifespan of the async database engine."""
        logger.info("DBService: Async database connection startup initiated...")

        if not getattr(app_state, 'db_config', None):
            raise RuntimeError("db_config not found in app_state. Ensure 'db_config' module is loaded before 'db'.")

        db_config: DBConfig = get_config(app_state)

        # Tests may inject their own engine.
        existing_engine = getattr(app_state, 'engine', None)
        engine_created_by_service = False

        try:
            if existing_engine:
                logger.info("DBService: Using existing engine from app_state.")
            else:
                logger.info(f"DBService: Using DB configuration: {db_config!r}")
                app_state.engine = create_async_engine(
                    normalize_db_url(db_config.database_url, is_async=True),
                    pool_size=db_config.pool_min_size,
                    max_overflow=db_config.pool_max_size - db_config.pool_min_size,
                    pool_timeout=db_config.pool_command_timeout,
                    pool_pre_ping=True
                )
                engine_created_by_service = True
                logger.info("DBService: ASYNC Database connection pool established successfully.")

            await ensure_init_db(app_state.engine)

            yield

        except Exception as e:
            logger.critical(f"DBService: FATAL: Failed to initialize the database: {e}", exc_info=True)
            raise
        finally:
            if engine_created_by_service and getattr(app_state, 'engine', None):
                await app_state.engine.dispose()
                app_state.engine = None
                logger.info("DBService: Database connection pool closed.")
            logger.info("DBService: Database connection shutdown completed.")
