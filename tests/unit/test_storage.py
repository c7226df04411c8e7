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

import uuid

import pytest

from geovault.models.exceptions import BadRequestError
from geovault.modules.catalog.models import Collection, CollectionType, StorageDescriptor
from geovault.modules.catalog.storage import (
    SCOPE_COLUMN,
    SHARED_ITEMS_TABLE,
    resolve_storage,
    storage_descriptor_for,
)


def make_collection(collection_type, schema_name="alice", table_name="roads"):
    return Collection(
        id=uuid.uuid4(),
        canonical_name="alice:roads",
        owner="alice",
        storage_descriptor=StorageDescriptor(schema_name=schema_name, table_name=table_name),
        collection_type=collection_type,
        title="Roads",
    )


def test_vector_descriptor_is_derived_from_name():
    descriptor = storage_descriptor_for("alice:europe:roads", CollectionType.VECTOR, "geovault")
    assert descriptor.schema_name == "alice"
    assert descriptor.table_name == "europe_roads"


@pytest.mark.parametrize("collection_type", [CollectionType.RASTER, CollectionType.POINTCLOUD])
def test_shared_descriptor_points_at_items_table(collection_type):
    descriptor = storage_descriptor_for("alice:scenes", collection_type, "geovault")
    assert descriptor.schema_name == "geovault"
    assert descriptor.table_name == SHARED_ITEMS_TABLE


def test_descriptor_validates_name_for_every_type():
    with pytest.raises(BadRequestError):
        storage_descriptor_for("alice:bad name", CollectionType.RASTER, "geovault")


def test_vector_target_is_dedicated_table():
    target = resolve_storage(make_collection(CollectionType.VECTOR), srid=3857)
    assert (target.schema, target.table, target.srid) == ("alice", "roads", 3857)
    assert not target.is_shared
    assert not target.has_datetime


def test_vector_target_defaults_to_4326():
    assert resolve_storage(make_collection(CollectionType.VECTOR)).srid == 4326


@pytest.mark.parametrize("collection_type", [CollectionType.RASTER, CollectionType.POINTCLOUD])
def test_shared_target_is_scoped_by_collection(collection_type):
    collection = make_collection(collection_type, schema_name="geovault", table_name=SHARED_ITEMS_TABLE)
    target = resolve_storage(collection, srid=3857)
    assert target.is_shared
    assert target.scope_column == SCOPE_COLUMN
    assert target.scope_value == collection.id
    assert target.srid == 4326
    assert target.has_datetime
