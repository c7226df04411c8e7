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
Collection-related protocol definitions.
"""

from typing import Protocol, Optional, Any, List, runtime_checkable, TYPE_CHECKING

if TYPE_CHECKING:
    from geovault.models.auth import Principal
    from geovault.modules.catalog.models import Collection, CollectionType, Extent
    from geovault.modules.catalog.storage import StorageTarget


@runtime_checkable
class CollectionsProtocol(Protocol):
    """
    Protocol for collection lifecycle operations.
    """

    async def create_collection(
        self,
        principal: "Principal",
        canonical_name: str,
        *,
        title: str,
        collection_type: "CollectionType",
        owner: Optional[str] = None,
        description: Optional[str] = None,
        srid: Optional[int] = None,
        db_resource: Optional[Any] = None
    ) -> "Collection":
        ...

    async def get_collection(
        self,
        canonical_name: str,
        db_resource: Optional[Any] = None
    ) -> "Collection":
        """
        Retrieves a collection by canonical name. Raises NotFoundError.
        """
        ...

    async def update_collection(
        self,
        principal: "Principal",
        canonical_name: str,
        *,
        expected_version: Optional[int] = None,
        title: Optional[str] = None,
        description: Optional[str] = None,
        new_name: Optional[str] = None,
        db_resource: Optional[Any] = None
    ) -> "Collection":
        ...

    async def replace_collection(
        self,
        principal: "Principal",
        canonical_name: str,
        *,
        title: str,
        description: Optional[str],
        expected_version: Optional[int] = None,
        new_name: Optional[str] = None,
        db_resource: Optional[Any] = None
    ) -> "Collection":
        ...

    async def delete_collection(
        self,
        principal: "Principal",
        canonical_name: str,
        *,
        expected_version: Optional[int] = None,
        db_resource: Optional[Any] = None
    ) -> None:
        ...

    async def list_collections(
        self,
        principal: "Principal",
        limit: int = 10,
        offset: int = 0,
        db_resource: Optional[Any] = None
    ) -> List["Collection"]:
        ...

    async def compute_extent(
        self,
        collection: "Collection",
        db_resource: Optional[Any] = None
    ) -> "Extent":
        ...

    async def get_storage_target(
        self,
        collection: "Collection",
        db_resource: Optional[Any] = None
    ) -> "StorageTarget":
        ...
