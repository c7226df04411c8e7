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
CatalogModule: composition root of the resource catalog.

Registers, as protocol providers:
- CollectionService (collection lifecycle, metadata schema bootstrap)
- AliasResolver (renamed collection lookup)
- ItemService (vector features, raster/pointcloud items and assets)
- SharingService (collection sharing through table grants)
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from geovault.modules import geovault_module, ModuleProtocol
from geovault.modules.catalog.alias_resolver import AliasResolver
from geovault.modules.catalog.collection_service import CollectionService
from geovault.modules.catalog.item_service import ItemService
from geovault.modules.catalog.sharing_service import SharingService
from geovault.tools.discovery import Provider

logger = logging.getLogger(__name__)


@geovault_module
class CatalogModule(ModuleProtocol):

    priority: int = 10

    # Initialized highest priority first: the metadata schema must exist
    # before the other services touch it.
    collection_service = Provider(CollectionService, priority=90)
    alias_resolver = Provider(AliasResolver, priority=85)
    item_service = Provider(ItemService, priority=85)
    sharing_service = Provider(SharingService, priority=80)

    def __init__(self):
        self.app_state: Optional[Any] = None

    @asynccontextmanager
    async def lifespan(self, app_state: object):
        self.app_state = app_state
        if getattr(app_state, 'engine', None) is None:
            logger.critical("CatalogModule: No DB engine found during startup.")
        else:
            logger.info("CatalogModule: catalog services registered.")
        yield
