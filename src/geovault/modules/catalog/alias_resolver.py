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
from typing import Any, Optional

from geovault.models.exceptions import NotFoundError
from geovault.modules.catalog.models import ResolvedName
from geovault.modules.db_config.db_config import DBConfig
from geovault.modules.db_config.query_executor import (
    DQLQuery, DbResource, ResultHandler, managed_transaction
)

logger = logging.getLogger(__name__)

_collection_exists_query = DQLQuery(
    "SELECT EXISTS (SELECT 1 FROM {schema}.collections WHERE canonical_name = :name);",
    result_handler=ResultHandler.SCALAR_ONE
)

_alias_target_query = DQLQuery(
    "SELECT new_name FROM {schema}.collection_aliases WHERE old_name = :name;",
    result_handler=ResultHandler.SCALAR_ONE_OR_NONE
)


class AliasResolver:
    """
    Maps a possibly superseded collection name to the live one.

    A live collection always wins over an alias with the same old name, and
    only one hop is followed: renames cascade into existing aliases, so the
    stored target is already the live name.
    """

    priority: int = 90

    def __init__(self, engine: Optional[DbResource] = None, metadata_schema: Optional[str] = None):
        self.engine = engine
        self.metadata_schema = metadata_schema or DBConfig.metadata_schema

    async def initialize(self, app_state: Any, db_resource: Optional[DbResource] = None):
        if not self.engine:
            self.engine = db_resource
        config = getattr(app_state, 'db_config', None)
        if config:
            self.metadata_schema = config.metadata_schema

    def is_available(self) -> bool:
        return self.engine is not None

    async def resolve(self, name: str, db_resource: Optional[DbResource] = None) -> ResolvedName:
        """
        Returns the live name for `name`.

        Raises:
            NotFoundError: when neither a collection nor an alias has that name.
        """
        async with managed_transaction(db_resource or self.engine) as conn:
            if await _collection_exists_query.execute(conn, schema=self.metadata_schema, name=name):
                return ResolvedName(name=name, redirected=False)
            target = await _alias_target_query.execute(conn, schema=self.metadata_schema, name=name)

        if target is None:
            raise NotFoundError(f"Collection '{name}' not found.")
        logger.debug(f"Alias '{name}' resolved to '{target}'")
        return ResolvedName(name=target, redirected=True)
