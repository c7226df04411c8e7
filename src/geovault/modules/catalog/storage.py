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
Decides which physical table holds the rows of a collection.

Vector collections get a dedicated table named after the collection; raster
and pointcloud collections share the metadata schema's `items` table, scoped
by collection id.
"""

from dataclasses import dataclass
from typing import Any, Optional

from geovault.modules.catalog.models import Collection, CollectionType, StorageDescriptor
from geovault.tools.identifiers import split_canonical_name, validate_identifier

SHARED_ITEMS_TABLE = "items"
GEOMETRY_COLUMN = "geometry"
SCOPE_COLUMN = "collection_id"
DEFAULT_SRID = 4326


@dataclass(frozen=True)
class StorageTarget:
    schema: str
    table: str
    geometry_column: str = GEOMETRY_COLUMN
    srid: int = DEFAULT_SRID
    scope_column: Optional[str] = None
    scope_value: Optional[Any] = None
    has_datetime: bool = False

    @property
    def is_shared(self) -> bool:
        return self.scope_column is not None


def storage_descriptor_for(
    canonical_name: str, collection_type: CollectionType, metadata_schema: str
) -> StorageDescriptor:
    """
    The storage descriptor recorded at creation time.

    The name is validated for every type, so that a raster collection can
    later be addressed with the same naming rules as a vector one.
    """
    schema_name, table_name = split_canonical_name(canonical_name)
    if collection_type == CollectionType.VECTOR:
        return StorageDescriptor(schema_name=schema_name, table_name=table_name)
    if collection_type in (CollectionType.RASTER, CollectionType.POINTCLOUD):
        return StorageDescriptor(
            schema_name=validate_identifier(metadata_schema, "metadata schema"),
            table_name=SHARED_ITEMS_TABLE,
        )
    raise ValueError(f"Unknown collection type: {collection_type!r}")


def resolve_storage(collection: Collection, srid: Optional[int] = None) -> StorageTarget:
    """
    The physical target of a collection's rows.

    `srid` is the SRID discovered from a vector table's geometry column, if
    any; shared tables are always in EPSG:4326.
    """
    descriptor = collection.storage_descriptor
    if collection.collection_type == CollectionType.VECTOR:
        return StorageTarget(
            schema=descriptor.schema_name,
            table=descriptor.table_name,
            srid=srid or DEFAULT_SRID,
        )
    if collection.collection_type in (CollectionType.RASTER, CollectionType.POINTCLOUD):
        return StorageTarget(
            schema=descriptor.schema_name,
            table=descriptor.table_name,
            srid=DEFAULT_SRID,
            scope_column=SCOPE_COLUMN,
            scope_value=collection.id,
            has_datetime=True,
        )
    raise ValueError(f"Unknown collection type: {collection.collection_type!r}")
