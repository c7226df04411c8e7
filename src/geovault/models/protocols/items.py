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
Item and feature protocol definitions.
"""

from typing import Protocol, Optional, Any, Dict, runtime_checkable, TYPE_CHECKING

if TYPE_CHECKING:
    from geovault.models.auth import Principal
    from geovault.modules.catalog.feature_query import FeatureQueryParams
    from geovault.modules.catalog.models import Item, ItemCollection


@runtime_checkable
class ItemsProtocol(Protocol):
    """
    Protocol for reading and mutating the rows (vector features or
    raster/pointcloud items) of a collection.
    """

    async def list_items(
        self,
        principal: "Principal",
        collection_name: str,
        params: "FeatureQueryParams",
    ) -> "ItemCollection":
        ...

    async def get_item(
        self,
        principal: "Principal",
        collection_name: str,
        item_id: Any,
    ) -> "Item":
        ...

    async def create_item(
        self,
        principal: "Principal",
        collection_name: str,
        data: Dict[str, Any],
    ) -> "Item":
        ...

    async def update_item(
        self,
        principal: "Principal",
        collection_name: str,
        item_id: Any,
        data: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> "Item":
        ...

    async def delete_item(
        self,
        principal: "Principal",
        collection_name: str,
        item_id: Any,
        expected_version: Optional[int] = None,
    ) -> None:
        ...
