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
from typing import Any, Dict, List, Optional

from async_lru import alru_cache

from geovault.models.auth import Principal
from geovault.models.exceptions import (
    BadRequestError, ForbiddenError, NotFoundError, PreconditionFailedError
)
from geovault.models.protocols import RolesProtocol
from geovault.modules.catalog.metadata_schema import (
    VECTOR_TABLE_DROP_DDL, VECTOR_TABLE_INDEX_DDL, VECTOR_TABLE_INDEX_RENAME_DDL, VECTOR_TABLE_OWNER_GRANT_DDL,
    VECTOR_TABLE_PKEY_RENAME_DDL, VECTOR_TABLE_RENAME_DDL,
    ensure_metadata_schema, primary_key_name, spatial_index_name, vector_table_ddl
)
from geovault.modules.catalog.models import (
    Collection, CollectionType, Extent, SpatialExtent, TemporalExtent
)
from geovault.modules.catalog.storage import (
    DEFAULT_SRID, StorageTarget, resolve_storage, storage_descriptor_for
)
from geovault.modules.db_config.db_config import DBConfig
from geovault.modules.db_config.query_executor import (
    DDLQuery, DQLQuery, DbResource, ResultHandler, managed_transaction
)
from geovault.tools.discovery import get_protocol
from geovault.tools.identifiers import owner_segment, split_canonical_name, validate_identifier

logger = logging.getLogger(__name__)

# --- Queries ---

_select_collection = DQLQuery(
    "SELECT * FROM {schema}.collections WHERE canonical_name = :name;",
    result_handler=ResultHandler.ONE_DICT
)

_select_collection_for_update = DQLQuery(
    "SELECT * FROM {schema}.collections WHERE canonical_name = :name FOR UPDATE;",
    result_handler=ResultHandler.ONE_DICT
)

_insert_collection = DQLQuery(
    """
    INSERT INTO {schema}.collections
        (canonical_name, owner, schema_name, table_name, collection_type, title, description)
    VALUES
        (:canonical_name, :owner, :schema_name, :table_name, :collection_type, :title, :description)
    RETURNING *;
    """,
    result_handler=ResultHandler.ONE_DICT
)

_update_collection = DQLQuery(
    """
    UPDATE {schema}.collections
    SET canonical_name = :canonical_name,
        schema_name = :schema_name,
        table_name = :table_name,
        title = :title,
        description = :description,
        version = version + 1,
        updated_at = NOW()
    WHERE id = :id
    RETURNING *;
    """,
    result_handler=ResultHandler.ONE_DICT
)

_delete_collection = DQLQuery(
    "DELETE FROM {schema}.collections WHERE id = :id;",
    result_handler=ResultHandler.ROWCOUNT
)

# Upsert: a name can be renamed away, reused by a new collection and renamed
# away again.
_upsert_alias = DQLQuery(
    """
    INSERT INTO {schema}.collection_aliases (old_name, new_name)
    VALUES (:old_name, :new_name)
    ON CONFLICT (old_name) DO UPDATE SET new_name = EXCLUDED.new_name, created_at = NOW();
    """,
    result_handler=ResultHandler.NONE
)

# Renaming back to a former name turns its alias into a self-reference.
_delete_self_alias = DQLQuery(
    "DELETE FROM {schema}.collection_aliases WHERE old_name = :name AND new_name = :name;",
    result_handler=ResultHandler.NONE
)

_list_collections = DQLQuery(
    """
    SELECT c.* FROM {schema}.collections c
    WHERE c.owner = :username
       OR c.owner = ANY(CAST(:groups AS TEXT[]))
       OR (
           c.collection_type = 'vector'
           AND CASE
               WHEN EXISTS (SELECT 1 FROM pg_roles WHERE rolname = :username)
                    AND to_regclass(format('%I.%I', c.schema_name, c.table_name)) IS NOT NULL
               THEN has_table_privilege(:username, format('%I.%I', c.schema_name, c.table_name), 'SELECT')
               ELSE FALSE
           END
       )
    ORDER BY c.canonical_name
    LIMIT :limit OFFSET :offset;
    """,
    result_handler=ResultHandler.ALL_DICTS
)

_storage_srid_query = DQLQuery(
    """
    SELECT srid FROM geometry_columns
    WHERE f_table_schema = :schema_name AND f_table_name = :table_name AND f_geometry_column = :column;
    """,
    result_handler=ResultHandler.SCALAR_ONE_OR_NONE
)

_columns_query = DQLQuery(
    """
    SELECT column_name, data_type, udt_name, is_nullable
    FROM information_schema.columns
    WHERE table_schema = :schema_name AND table_name = :table_name
    ORDER BY ordinal_position;
    """,
    result_handler=ResultHandler.ALL_DICTS
)

SYSTEM_COLUMNS = frozenset({"id", "version", "created_at", "updated_at"})

GEOMETRY_SCHEMA_REF = "https://geojson.org/schema/Geometry.json"

_JSON_SCHEMA_TYPES = {
    "smallint": {"type": "integer"},
    "integer": {"type": "integer"},
    "bigint": {"type": "integer"},
    "numeric": {"type": "number"},
    "real": {"type": "number"},
    "double precision": {"type": "number"},
    "boolean": {"type": "boolean"},
    "uuid": {"type": "string", "format": "uuid"},
    "date": {"type": "string", "format": "date"},
    "timestamp with time zone": {"type": "string", "format": "date-time"},
    "timestamp without time zone": {"type": "string", "format": "date-time"},
    "json": {"type": "object"},
    "jsonb": {"type": "object"},
    "ARRAY": {"type": "array"},
}


def column_json_schema(column: Dict[str, Any]) -> Dict[str, Any]:
    """JSON Schema fragment for an information_schema.columns row."""
    if column.get("udt_name") in ("geometry", "geography"):
        return {"$ref": GEOMETRY_SCHEMA_REF}
    return dict(_JSON_SCHEMA_TYPES.get(column.get("data_type"), {"type": "string"}))


# Raster and pointcloud items all share the same, fixed, columns.
SHARED_ITEM_PROPERTIES = {
    "geometry": {"$ref": GEOMETRY_SCHEMA_REF},
    "datetime": {"type": "string", "format": "date-time"},
    "properties": {"type": "object"},
}


class CollectionService:
    """Lifecycle of collections: the catalog row plus, for vector, its dedicated table."""

    priority: int = 90

    def __init__(
        self,
        engine: Optional[DbResource] = None,
        metadata_schema: Optional[str] = None,
        roles: Optional[RolesProtocol] = None,
    ):
        self.engine = engine
        self.metadata_schema = metadata_schema or DBConfig.metadata_schema
        self.roles = roles
        self.default_srid = DBConfig.default_srid
        self._get_storage_srid_cached = alru_cache(maxsize=1024)(self._get_storage_srid_db)

    async def initialize(self, app_state: Any, db_resource: Optional[DbResource] = None):
        """Binds the engine and bootstraps the metadata schema."""
        if not self.engine:
            self.engine = db_resource
        config = getattr(app_state, 'db_config', None)
        if config:
            self.metadata_schema = config.metadata_schema
            self.default_srid = config.default_srid
        if self.engine:
            await ensure_metadata_schema(self.engine, self.metadata_schema)

    def is_available(self) -> bool:
        return self.engine is not None

    def _roles(self) -> RolesProtocol:
        roles = self.roles or get_protocol(RolesProtocol)
        if roles is None:
            raise RuntimeError("CollectionService: no RolesProtocol provider available.")
        return roles

    # --- Reads ---

    async def get_collection(self, canonical_name: str, db_resource: Optional[DbResource] = None) -> Collection:
        """Unlocked point read by canonical name."""
        async with managed_transaction(db_resource or self.engine) as conn:
            row = await _select_collection.execute(conn, schema=self.metadata_schema, name=canonical_name)
        if not row:
            raise NotFoundError(f"Collection '{canonical_name}' not found.")
        return Collection.from_row(row)

    async def list_collections(
        self, principal: Principal, limit: int = 10, offset: int = 0, db_resource: Optional[DbResource] = None
    ) -> List[Collection]:
        """Collections the principal owns, owns through a group, or can read through a grant."""
        if limit < 1 or offset < 0:
            raise BadRequestError("limit must be positive and offset non-negative.")
        async with managed_transaction(db_resource or self.engine) as conn:
            rows = await _list_collections.execute(
                conn, schema=self.metadata_schema,
                username=principal.username, groups=list(principal.groups),
                limit=limit, offset=offset
            )
        return [Collection.from_row(r) for r in rows]

    async def _get_storage_srid_db(self, schema_name: str, table_name: str) -> int:
        async with managed_transaction(self.engine) as conn:
            srid = await _storage_srid_query.execute(
                conn, schema_name=schema_name, table_name=table_name, column="geometry"
            )
        return srid or DEFAULT_SRID

    async def get_storage_crs(self, collection: Collection, db_resource: Optional[DbResource] = None) -> int:
        """SRID of the collection's stored geometries (4326 when undiscoverable)."""
        if collection.collection_type != CollectionType.VECTOR:
            return DEFAULT_SRID
        if db_resource is not None:
            async with managed_transaction(db_resource) as conn:
                srid = await _storage_srid_query.execute(
                    conn, schema_name=collection.schema_name, table_name=collection.table_name, column="geometry"
                )
            return srid or DEFAULT_SRID
        return await self._get_storage_srid_cached(collection.schema_name, collection.table_name)

    async def get_storage_target(self, collection: Collection, db_resource: Optional[DbResource] = None) -> StorageTarget:
        srid = await self.get_storage_crs(collection, db_resource=db_resource)
        return resolve_storage(collection, srid=srid)

    async def compute_extent(self, collection: Collection, db_resource: Optional[DbResource] = None) -> Extent:
        """Spatial extent in CRS84 and, for shared storage, the temporal interval."""
        target = resolve_storage(collection)
        inner_temporal = ", MIN(datetime) AS tmin, MAX(datetime) AS tmax" if target.has_datetime else ""
        outer_temporal = ", tmin, tmax" if target.has_datetime else ""
        scope_clause = f"WHERE {target.scope_column} = :scope_value" if target.is_shared else ""
        query = DQLQuery(
            f"""
            SELECT ST_XMin(e) AS xmin, ST_YMin(e) AS ymin, ST_XMax(e) AS xmax, ST_YMax(e) AS ymax{outer_temporal}
            FROM (
                SELECT ST_Extent(ST_Transform(geometry, 4326)) AS e{inner_temporal}
                FROM {{schema}}.{{table}}
                {scope_clause}
            ) s;
            """,
            result_handler=ResultHandler.ONE_DICT
        )
        params = {"schema": target.schema, "table": target.table}
        if target.is_shared:
            params["scope_value"] = target.scope_value

        async with managed_transaction(db_resource or self.engine) as conn:
            row = await query.execute(conn, **params)

        extent = Extent()
        if row and row.get("xmin") is not None:
            extent.spatial = SpatialExtent(bbox=[[row["xmin"], row["ymin"], row["xmax"], row["ymax"]]])
        if row and target.has_datetime and (row.get("tmin") is not None or row.get("tmax") is not None):
            extent.temporal = TemporalExtent(interval=[[row.get("tmin"), row.get("tmax")]])
        return extent

    async def get_collection_schema(self, canonical_name: str, db_resource: Optional[DbResource] = None) -> Dict[str, Any]:
        """JSON Schema of the rows of a collection, from the physical columns."""
        collection = await self.get_collection(canonical_name, db_resource=db_resource)
        if collection.collection_type != CollectionType.VECTOR:
            properties = {"id": {"type": "string", "format": "uuid"}, **SHARED_ITEM_PROPERTIES}
        else:
            async with managed_transaction(db_resource or self.engine) as conn:
                columns = await _columns_query.execute(
                    conn, schema_name=collection.schema_name, table_name=collection.table_name
                )
            properties = {c["column_name"]: column_json_schema(c) for c in columns}
        return {
            "$schema": "https://json-schema.org/draft/2019-09/schema",
            "type": "object",
            "title": collection.title,
            "properties": properties,
        }

    async def get_queryables(self, canonical_name: str, db_resource: Optional[DbResource] = None) -> Dict[str, Any]:
        """The collection schema without the system-managed columns."""
        schema = await self.get_collection_schema(canonical_name, db_resource=db_resource)
        schema["properties"] = {
            name: definition for name, definition in schema["properties"].items()
            if name not in SYSTEM_COLUMNS
        }
        schema["additionalProperties"] = True
        return schema

    # --- Mutations ---

    async def create_collection(
        self,
        principal: Principal,
        canonical_name: str,
        *,
        title: str,
        collection_type: CollectionType = CollectionType.VECTOR,
        owner: Optional[str] = None,
        description: Optional[str] = None,
        srid: Optional[int] = None,
        db_resource: Optional[DbResource] = None
    ) -> Collection:
        """
        Registers a collection and, for vector, creates its dedicated table in
        the owner's schema. `srid` defaults to GEOVAULT_DEFAULT_SRID.
        """
        owner = owner or principal.username
        validate_identifier(owner, "owner")
        if not principal.can_act_for(owner):
            raise ForbiddenError(f"Principal '{principal.username}' cannot create collections for '{owner}'.")
        if owner_segment(canonical_name) != owner:
            raise BadRequestError(f"Collection name '{canonical_name}' must start with its owner '{owner}'.")
        if not title or not title.strip():
            raise BadRequestError("A collection title is required.")
        collection_type = CollectionType(collection_type)
        srid = self.default_srid if srid is None else srid
        if isinstance(srid, bool) or not isinstance(srid, int) or srid <= 0:
            raise BadRequestError(f"Invalid SRID: {srid!r}")

        descriptor = storage_descriptor_for(canonical_name, collection_type, self.metadata_schema)

        await self._roles().ensure_principal_roles(principal, db_resource=db_resource)

        async with managed_transaction(db_resource or self.engine) as conn:
            row = await _insert_collection.execute(
                conn, schema=self.metadata_schema,
                canonical_name=canonical_name, owner=owner,
                schema_name=descriptor.schema_name, table_name=descriptor.table_name,
                collection_type=collection_type.value, title=title, description=description
            )
            if collection_type == CollectionType.VECTOR:
                await self._create_vector_table(conn, descriptor.schema_name, descriptor.table_name, owner, srid)

        self._get_storage_srid_cached.cache_invalidate(descriptor.schema_name, descriptor.table_name)
        logger.info(f"[LIFECYCLE] Created {collection_type.value} collection '{canonical_name}' owned by '{owner}'")
        return Collection.from_row(row)

    async def _create_vector_table(self, conn: DbResource, schema_name: str, table_name: str, owner: str, srid: int) -> None:
        await DDLQuery(vector_table_ddl(srid)).execute(
            conn, schema=schema_name, table=table_name, pkey=primary_key_name(table_name)
        )
        await DDLQuery(VECTOR_TABLE_INDEX_DDL).execute(
            conn, index=spatial_index_name(table_name), schema=schema_name, table=table_name
        )
        await DDLQuery(VECTOR_TABLE_OWNER_GRANT_DDL).execute(
            conn, schema=schema_name, table=table_name, role=owner
        )

    async def _lock_for_mutation(
        self, conn: DbResource, principal: Principal, canonical_name: str, expected_version: Optional[int]
    ) -> Dict[str, Any]:
        """Locks the row, then checks existence, version and ownership, in that order."""
        row = await _select_collection_for_update.execute(conn, schema=self.metadata_schema, name=canonical_name)
        if not row:
            raise NotFoundError(f"Collection '{canonical_name}' not found.")
        if expected_version is not None and row["version"] != expected_version:
            raise PreconditionFailedError(
                f"Collection '{canonical_name}' is at version {row['version']}, not {expected_version}.",
                expected_version=expected_version,
                current_version=row["version"],
            )
        if not principal.can_act_for(row["owner"]):
            raise ForbiddenError(f"Principal '{principal.username}' does not own collection '{canonical_name}'.")
        return row

    def _validate_new_name(self, row: Dict[str, Any], new_name: Optional[str]) -> str:
        if new_name is None or new_name == row["canonical_name"]:
            return row["canonical_name"]
        split_canonical_name(new_name)
        if owner_segment(new_name) != row["owner"]:
            raise BadRequestError(f"Collection name '{new_name}' must start with its owner '{row['owner']}'.")
        return new_name

    async def _rename_vector_table(self, conn: DbResource, schema_name: str, table_name: str, new_table: str) -> None:
        """Moves a vector table, its primary key and its spatial index to the names derived from `new_table`."""
        await DDLQuery(VECTOR_TABLE_RENAME_DDL).execute(
            conn, schema=schema_name, table=table_name, new_table=new_table
        )
        await DDLQuery(VECTOR_TABLE_PKEY_RENAME_DDL).execute(
            conn, schema=schema_name, table=new_table,
            pkey=primary_key_name(table_name), new_pkey=primary_key_name(new_table)
        )
        await DDLQuery(VECTOR_TABLE_INDEX_RENAME_DDL).execute(
            conn, schema=schema_name,
            index=spatial_index_name(table_name), new_index=spatial_index_name(new_table)
        )

    async def _apply_update(
        self, conn: DbResource, row: Dict[str, Any], new_name: str, title: str, description: Optional[str]
    ) -> Collection:
        old_name = row["canonical_name"]
        schema_name, table_name = row["schema_name"], row["table_name"]
        # A vector table follows its collection name, so the old name can be reused.
        if new_name != old_name and row["collection_type"] == CollectionType.VECTOR.value:
            descriptor = storage_descriptor_for(new_name, CollectionType.VECTOR, self.metadata_schema)
            if descriptor.table_name != table_name:
                await self._rename_vector_table(conn, schema_name, table_name, descriptor.table_name)
                self._get_storage_srid_cached.cache_invalidate(schema_name, table_name)
                self._get_storage_srid_cached.cache_invalidate(schema_name, descriptor.table_name)
            schema_name, table_name = descriptor.schema_name, descriptor.table_name

        updated = await _update_collection.execute(
            conn, schema=self.metadata_schema,
            id=row["id"], canonical_name=new_name, schema_name=schema_name, table_name=table_name,
            title=title, description=description
        )
        if new_name != old_name:
            await _delete_self_alias.execute(conn, schema=self.metadata_schema, name=new_name)
            await _upsert_alias.execute(conn, schema=self.metadata_schema, old_name=old_name, new_name=new_name)
            logger.info(f"[LIFECYCLE] Renamed collection '{old_name}' to '{new_name}'")
        return Collection.from_row(updated)

    async def update_collection(
        self,
        principal: Principal,
        canonical_name: str,
        *,
        expected_version: Optional[int] = None,
        title: Optional[str] = None,
        description: Optional[str] = None,
        new_name: Optional[str] = None,
        db_resource: Optional[DbResource] = None
    ) -> Collection:
        """Partial update: fields left as None keep their value."""
        async with managed_transaction(db_resource or self.engine) as conn:
            row = await self._lock_for_mutation(conn, principal, canonical_name, expected_version)
            target_name = self._validate_new_name(row, new_name)
            if title is not None and not title.strip():
                raise BadRequestError("A collection title cannot be empty.")
            return await self._apply_update(
                conn, row, target_name,
                title if title is not None else row["title"],
                description if description is not None else row["description"],
            )

    async def replace_collection(
        self,
        principal: Principal,
        canonical_name: str,
        *,
        title: str,
        description: Optional[str],
        expected_version: Optional[int] = None,
        new_name: Optional[str] = None,
        db_resource: Optional[DbResource] = None
    ) -> Collection:
        """Full replacement: a missing description clears the stored one."""
        async with managed_transaction(db_resource or self.engine) as conn:
            row = await self._lock_for_mutation(conn, principal, canonical_name, expected_version)
            target_name = self._validate_new_name(row, new_name)
            if not title or not title.strip():
                raise BadRequestError("A collection title is required.")
            return await self._apply_update(conn, row, target_name, title, description)

    async def delete_collection(
        self,
        principal: Principal,
        canonical_name: str,
        *,
        expected_version: Optional[int] = None,
        db_resource: Optional[DbResource] = None
    ) -> None:
        async with managed_transaction(db_resource or self.engine) as conn:
            row = await self._lock_for_mutation(conn, principal, canonical_name, expected_version)
            collection = Collection.from_row(row)
            if collection.collection_type == CollectionType.VECTOR:
                await DDLQuery(VECTOR_TABLE_DROP_DDL).execute(
                    conn, schema=collection.schema_name, table=collection.table_name
                )
            await _delete_collection.execute(conn, schema=self.metadata_schema, id=collection.id)

        self._get_storage_srid_cached.cache_invalidate(collection.schema_name, collection.table_name)
        logger.info(f"[LIFECYCLE] Deleted {collection.collection_type.value} collection '{canonical_name}'")
