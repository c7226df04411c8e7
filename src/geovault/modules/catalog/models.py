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

import datetime as dt
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CollectionType(str, Enum):
    VECTOR = "vector"
    RASTER = "raster"
    POINTCLOUD = "pointcloud"


class StorageDescriptor(BaseModel):
    schema_name: str
    table_name: str


class Collection(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    canonical_name: str
    owner: str
    storage_descriptor: StorageDescriptor
    collection_type: CollectionType
    title: str
    description: Optional[str] = None
    version: int = 1
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    @property
    def schema_name(self) -> str:
        return self.storage_descriptor.schema_name

    @property
    def table_name(self) -> str:
        return self.storage_descriptor.table_name

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Collection":
        return cls(
            id=row["id"],
            canonical_name=row["canonical_name"],
            owner=row["owner"],
            storage_descriptor=StorageDescriptor(
                schema_name=row["schema_name"], table_name=row["table_name"]
            ),
            collection_type=row["collection_type"],
            title=row["title"],
            description=row.get("description"),
            version=row["version"],
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )


class ResolvedName(BaseModel):
    """The live canonical name for a requested name, and whether an alias was followed."""
    name: str
    redirected: bool = False


class SpatialExtent(BaseModel):
    bbox: List[List[float]]
    crs: str = "http://www.opengis.net/def/crs/OGC/1.3/CRS84"


class TemporalExtent(BaseModel):
    interval: List[List[Optional[dt.datetime]]]


class Extent(BaseModel):
    spatial: Optional[SpatialExtent] = None
    temporal: Optional[TemporalExtent] = None


class Asset(BaseModel):
    key: str
    href: str
    type: Optional[str] = Field(None, description="Media type of the asset.")
    title: Optional[str] = None
    description: Optional[str] = None
    roles: List[str] = Field(default_factory=list)
    file_size: Optional[int] = Field(None, ge=0)
    extra_fields: Dict[str, Any] = Field(default_factory=dict)


class Item(BaseModel):
    """
    A GeoJSON-like row of a collection.

    Vector features never carry `datetime` or `assets`; raster and
    pointcloud items may.
    """
    id: uuid.UUID
    collection: str
    geometry: Optional[Dict[str, Any]] = None
    properties: Dict[str, Any] = Field(default_factory=dict)
    datetime: Optional[dt.datetime] = None
    version: int = 1
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None
    assets: Dict[str, Asset] = Field(default_factory=dict)

    def to_geojson(self) -> Dict[str, Any]:
        properties = dict(self.properties)
        if self.datetime is not None:
            properties["datetime"] = self.datetime.isoformat()
        feature = {
            "type": "Feature",
            "id": str(self.id),
            "collection": self.collection,
            "geometry": self.geometry,
            "properties": properties,
        }
        if self.assets:
            feature["assets"] = {k: a.model_dump(exclude_none=True) for k, a in self.assets.items()}
        return feature


class ItemCollection(BaseModel):
    features: List[Item] = Field(default_factory=list)
    number_matched: Optional[int] = None
    number_returned: int = 0
