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
Rows of a collection.

Vector features live in the collection's dedicated table and are read and
written inside the principal's session, so PostgreSQL grants decide who
sees what. Raster and pointcloud items (and their assets) live in the shared
items table, scoped by collection id, and are restricted to the owner.
"""

import datetime as dt
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Tuple

from dateutil.parser import isoparse
from geoalchemy2.shape import from_shape
from pydantic import ValidationError
from shapely import force_2d
from shapely.errors import GEOSException
from shapely.geometry import shape

from geovault.models.auth import Principal
from geovault.models.exceptions import (
    BadRequestError, ForbiddenError, NotFoundError, PreconditionFailedError
)
from geovault.models.protocols import CollectionsProtocol, DatabaseProtocol, RolesProtocol
from geovault.modules.catalog.feature_query import FeatureQueryParams, SortField
from geovault.modules.catalog.models import Asset, Collection, CollectionType, Item, ItemCollection
from geovault.modules.catalog.storage import DEFAULT_SRID, GEOMETRY_COLUMN, StorageTarget
from geovault.modules.db_config.db_config import DBConfig
from geovault.modules.db_config.exceptions import PermissionDeniedError
from geovault.modules.db_config.query_executor import (
    DQLQuery, DbResource, ResultHandler, managed_transaction
)
from geovault.modules.tools.cql import (
    DOCUMENT_COLUMN, ArrayLiteral, Operation, Property, compile_filter, escape_bind_markers, parse_filter,
    quote_literal
)
from geovault.tools.discovery import get_protocol
from geovault.tools.identifiers import quote_identifier, quote_validated
from geovault.tools.json import dumps, loads_maybe

logger = logging.getLogger(__name__)

ITEM_ALIAS = "t"
VECTOR_COLUMNS = frozenset({"id", "geometry", "properties", "version", "created_at", "updated_at"})
SHARED_COLUMNS = VECTOR_COLUMNS | {"collection_id", "datetime"}

# --- Asset queries (metadata schema) ---

_ASSET_COLUMNS = "item_id, key, href, type, title, description, roles, file_size, extra_fields"

_insert_asset = DQLQuery(
    "INSERT INTO {schema}.assets (item_id, key, href, type, title, description, roles, file_size, extra_fields) "
    "VALUES (:item_id, :key, :href, :type, :title, :description, CAST(:roles AS TEXT[]), :file_size, "
    "CAST(:extra_fields AS JSONB)) "
    f"RETURNING {_ASSET_COLUMNS};",
    result_handler=ResultHandler.ONE_DICT
)

_asset_exists = DQLQuery(
    "SELECT EXISTS (SELECT 1 FROM {schema}.assets WHERE item_id = :item_id AND key = :key);",
    result_handler=ResultHandler.SCALAR_ONE
)

_select_assets = DQLQuery(
    f"SELECT {_ASSET_COLUMNS} FROM {{schema}}.assets "
    "WHERE item_id = ANY(CAST(:item_ids AS UUID[])) ORDER BY item_id, key;",
    result_handler=ResultHandler.ALL_DICTS
)


# --- Conversions ---

def parse_item_id(value: Any) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError) as e:
        raise BadRequestError(f"Invalid item id: {value!r}") from e


def geometry_to_wkb(geometry: Any) -> bytes:
    """GeoJSON geometry (CRS84) to 2D WKB, rejecting empty or malformed input."""
    if not isinstance(geometry, dict):
        raise BadRequestError("geometry must be a GeoJSON geometry object.")
    try:
        geom = force_2d(shape(geometry))
    except (GEOSException, ValueError, TypeError, KeyError, AttributeError, IndexError) as e:
        raise BadRequestError(f"Invalid geometry: {e}") from e
    if geom.is_empty:
        raise BadRequestError("geometry must not be empty.")
    return bytes(from_shape(geom, srid=DEFAULT_SRID).data)


def parse_item_datetime(value: Any) -> Optional[dt.datetime]:
    if value is None:
        return None
    if isinstance(value, dt.datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = isoparse(value)
        except (ValueError, OverflowError) as e:
            raise BadRequestError(f"Invalid datetime: {value!r}") from e
    else:
        raise BadRequestError(f"Invalid datetime: {value!r}")
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=dt.timezone.utc)


def scope_to_properties(node: Any, columns: Iterable[str]) -> Any:
    """
    Rewrites references to names that are not physical columns into
    `properties.<name>` paths, so that `city = 'Rome'` reads the document.
    """
    if isinstance(node, Property):
        if node.name.split(".", 1)[0] in columns:
            return node
        return Property(f"{DOCUMENT_COLUMN}.{node.name}")
    if isinstance(node, Operation):
        return Operation(node.op, tuple(scope_to_properties(a, columns) for a in node.args))
    if isinstance(node, ArrayLiteral):
        return ArrayLiteral(tuple(scope_to_properties(i, columns) for i in node.items))
    return node


def _asset_from_row(row: Dict[str, Any]) -> Asset:
    return Asset(
        key=row["key"],
        href=row["href"],
        type=row.get("type"),
        title=row.get("title"),
        description=row.get("description"),
        roles=list(row.get("roles") or []),
        file_size=row.get("file_size"),
        extra_fields=loads_maybe(row.get("extra_fields")) or {},
    )


def _parse_assets(value: Any) -> List[Asset]:
    if value is None:
        return []
    if not isinstance(value, dict):
        raise BadRequestError("assets must be an object keyed by asset key.")
    assets = []
    for key, asset in value.items():
        if isinstance(asset, Asset):
            assets.append(asset.model_copy(update={"key": key}))
            continue
        if not isinstance(asset, dict):
            raise BadRequestError(f"Asset '{key}' must be an object.")
        assets.append(_validate_asset({**asset, "key": key}))
    return assets


def _validate_asset(value: Dict[str, Any]) -> Asset:
    try:
        asset = Asset.model_validate(value)
    except ValidationError as e:
        raise BadRequestError(f"Invalid asset: {e.errors()[0]['msg']}") from e
    if not asset.key or not asset.key.strip():
        raise BadRequestError("An asset key is required.")
    return asset


class ItemService:
    """Features of vector collections and items of raster/pointcloud collections."""

    priority: int = 90

    def __init__(
        self,
        engine: Optional[DbResource] = None,
        metadata_schema: Optional[str] = None,
        collections: Optional[CollectionsProtocol] = None,
        roles: Optional[RolesProtocol] = None,
        database: Optional[DatabaseProtocol] = None,
    ):
        self.engine = engine
        self.metadata_schema = metadata_schema or DBConfig.metadata_schema
        self.collections = collections
        self.roles = roles
        self.database = database

    async def initialize(self, app_state: Any, db_resource: Optional[DbResource] = None):
        if not self.engine:
            self.engine = db_resource
        config = getattr(app_state, 'db_config', None)
        if config:
            self.metadata_schema = config.metadata_schema

    def is_available(self) -> bool:
        return self.engine is not None

    def _collections(self) -> CollectionsProtocol:
        collections = self.collections or get_protocol(CollectionsProtocol)
        if collections is None:
            raise RuntimeError("ItemService: no CollectionsProtocol provider available.")
        return collections

    def _roles(self) -> RolesProtocol:
        roles = self.roles or get_protocol(RolesProtocol)
        if roles is None:
            raise RuntimeError("ItemService: no RolesProtocol provider available.")
        return roles

    def _database(self) -> DatabaseProtocol:
        database = self.database or get_protocol(DatabaseProtocol)
        if database is None:
            raise RuntimeError("ItemService: no DatabaseProtocol provider available.")
        return database

    async def _resolve(self, collection_name: str) -> Tuple[Collection, StorageTarget]:
        collections = self._collections()
        collection = await collections.get_collection(collection_name, db_resource=self.engine)
        return collection, await collections.get_storage_target(collection)

    @asynccontextmanager
    async def _session(self, principal: Principal, collection: Collection) -> AsyncIterator[DbResource]:
        """
        The connection the request runs on.

        Vector data goes through the principal session; a privilege error
        from PostgreSQL surfaces as Forbidden. Shared-table items, and vector
        data when impersonation is off, require the principal to act for the
        owner.
        """
        if collection.collection_type != CollectionType.VECTOR:
            self._require_owner(principal, collection)
            async with managed_transaction(self.engine) as conn:
                yield conn
            return

        database = self._database()
        if database.impersonates_principals():
            await self._roles().ensure_principal_roles(principal, db_resource=self.engine)
        else:
            self._require_owner(principal, collection)
        try:
            async with database.principal_session(principal) as conn:
                yield conn
        except PermissionDeniedError as e:
            raise ForbiddenError(
                f"Principal '{principal.username}' lacks access to collection '{collection.canonical_name}'."
            ) from e

    @staticmethod
    def _require_owner(principal: Principal, collection: Collection) -> None:
        if not principal.can_act_for(collection.owner):
            raise ForbiddenError(
                f"Principal '{principal.username}' does not own collection '{collection.canonical_name}'."
            )

    # --- SQL assembly ---

    @staticmethod
    def _table(target: StorageTarget) -> str:
        return f"{quote_validated(target.schema, 'schema')}.{quote_validated(target.table, 'table')} AS {ITEM_ALIAS}"

    @staticmethod
    def _columns(target: StorageTarget) -> frozenset:
        return SHARED_COLUMNS if target.is_shared else VECTOR_COLUMNS

    @staticmethod
    def _select_list(target: StorageTarget) -> str:
        columns = [
            f"{ITEM_ALIAS}.id",
            f"ST_AsGeoJSON({ITEM_ALIAS}.{GEOMETRY_COLUMN}) AS geometry",
            f"{ITEM_ALIAS}.properties",
            f"{ITEM_ALIAS}.version",
            f"{ITEM_ALIAS}.created_at",
            f"{ITEM_ALIAS}.updated_at",
        ]
        if target.has_datetime:
            columns.append(f"{ITEM_ALIAS}.datetime")
        return ", ".join(columns)

    @staticmethod
    def _geometry_expression(target: StorageTarget) -> str:
        return f"ST_Transform(ST_GeomFromWKB(:geometry, {DEFAULT_SRID}), {int(target.srid)})"

    @staticmethod
    def _key_conditions(target: StorageTarget, params: Dict[str, Any]) -> List[str]:
        conditions = [f"{ITEM_ALIAS}.id = :id"]
        if target.is_shared:
            conditions.append(f"{ITEM_ALIAS}.{quote_identifier(target.scope_column)} = :scope_value")
            params["scope_value"] = target.scope_value
        return conditions

    def _where(self, target: StorageTarget, query: FeatureQueryParams) -> Tuple[str, Dict[str, Any]]:
        conditions: List[str] = []
        params: Dict[str, Any] = {}

        if target.is_shared:
            conditions.append(f"{ITEM_ALIAS}.{quote_identifier(target.scope_column)} = :scope_value")
            params["scope_value"] = target.scope_value

        if query.bbox:
            conditions.append(
                f"ST_Intersects({ITEM_ALIAS}.{GEOMETRY_COLUMN}, ST_Transform("
                f"ST_MakeEnvelope(:bbox_minx, :bbox_miny, :bbox_maxx, :bbox_maxy, {DEFAULT_SRID}), {int(target.srid)}))"
            )
            params.update(zip(("bbox_minx", "bbox_miny", "bbox_maxx", "bbox_maxy"), query.bbox))

        time_range = query.time_range()
        if time_range:
            if not target.has_datetime:
                raise BadRequestError("datetime filtering applies to raster and pointcloud items only.")
            start, end = time_range
            if start is not None:
                conditions.append(f"{ITEM_ALIAS}.datetime >= :dt_start")
                params["dt_start"] = start
            if end is not None:
                conditions.append(f"{ITEM_ALIAS}.datetime <= :dt_end")
                params["dt_end"] = end

        if query.filter is not None:
            node = scope_to_properties(parse_filter(query.filter, query.filter_lang), self._columns(target))
            predicate = compile_filter(node, alias=ITEM_ALIAS, srid=target.srid)
            conditions.append(f"({escape_bind_markers(predicate)})")

        return (f"WHERE {' AND '.join(conditions)}" if conditions else ""), params

    def _order_by(self, target: StorageTarget, sortby: Optional[List[SortField]]) -> str:
        columns = self._columns(target)
        terms = []
        for sort in sortby or []:
            if sort.field in columns:
                expression = f"{ITEM_ALIAS}.{quote_identifier(sort.field)}"
            else:
                expression = f"{ITEM_ALIAS}.{DOCUMENT_COLUMN}->>{quote_literal(sort.field)}"
            terms.append(f"{expression} {'DESC' if sort.descending else 'ASC'}")
        if not sortby:
            terms.append(f"{ITEM_ALIAS}.created_at ASC")
        terms.append(f"{ITEM_ALIAS}.id ASC")
        return ", ".join(terms)

    # --- Row mapping ---

    @staticmethod
    def _item(row: Dict[str, Any], collection_name: str, assets: Optional[Dict[str, Asset]] = None) -> Item:
        return Item(
            id=row["id"],
            collection=collection_name,
            geometry=loads_maybe(row.get("geometry")),
            properties=loads_maybe(row.get("properties")) or {},
            datetime=row.get("datetime"),
            version=row["version"],
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            assets=assets or {},
        )

    async def _load_assets(self, conn: DbResource, item_ids: List[uuid.UUID]) -> Dict[uuid.UUID, Dict[str, Asset]]:
        grouped: Dict[uuid.UUID, Dict[str, Asset]] = {}
        if not item_ids:
            return grouped
        rows = await _select_assets.execute(conn, schema=self.metadata_schema, item_ids=item_ids)
        for row in rows:
            grouped.setdefault(row["item_id"], {})[row["key"]] = _asset_from_row(row)
        return grouped

    async def _fetch(self, conn: DbResource, target: StorageTarget, item_id: uuid.UUID) -> Optional[Dict[str, Any]]:
        params: Dict[str, Any] = {"id": item_id}
        conditions = self._key_conditions(target, params)
        statement = f"SELECT {self._select_list(target)} FROM {self._table(target)} WHERE {' AND '.join(conditions)}"
        return await DQLQuery.from_statement(statement, result_handler=ResultHandler.ONE_DICT).execute(conn, **params)

    async def _lock(
        self, conn: DbResource, target: StorageTarget, collection_name: str,
        item_id: uuid.UUID, expected_version: Optional[int]
    ) -> int:
        """Locks the row, then checks existence and version, in that order."""
        params: Dict[str, Any] = {"id": item_id}
        conditions = self._key_conditions(target, params)
        statement = (
            f"SELECT {ITEM_ALIAS}.version FROM {self._table(target)} "
            f"WHERE {' AND '.join(conditions)} FOR UPDATE"
        )
        version = await DQLQuery.from_statement(statement, result_handler=ResultHandler.SCALAR_ONE_OR_NONE).execute(conn, **params)
        if version is None:
            raise NotFoundError(f"Item '{item_id}' not found in collection '{collection_name}'.")
        if expected_version is not None and version != expected_version:
            raise PreconditionFailedError(
                f"Item '{item_id}' is at version {version}, not {expected_version}.",
                expected_version=expected_version,
                current_version=version,
            )
        return version

    def _split_payload(
        self, target: StorageTarget, data: Dict[str, Any]
    ) -> Tuple[Dict[str, Any], Optional[dt.datetime], bool]:
        """Properties, item datetime and whether a datetime was supplied."""
        if not isinstance(data, dict):
            raise BadRequestError("Item body must be a GeoJSON Feature object.")
        properties = data.get("properties")
        if properties is None:
            properties = {}
        if not isinstance(properties, dict):
            raise BadRequestError("properties must be an object.")
        properties = dict(properties)

        if not target.has_datetime:
            if data.get("assets"):
                raise BadRequestError("Vector features do not carry assets.")
            return properties, None, False

        has_datetime = "datetime" in data or "datetime" in properties
        raw = data["datetime"] if "datetime" in data else properties.get("datetime")
        properties.pop("datetime", None)
        return properties, parse_item_datetime(raw), has_datetime

    # --- Reads ---

    async def list_items(
        self, principal: Principal, collection_name: str, params: Optional[FeatureQueryParams] = None
    ) -> ItemCollection:
        params = params or FeatureQueryParams()
        collection, target = await self._resolve(collection_name)
        where, bind = self._where(target, params)
        table = self._table(target)
        count_statement = f"SELECT COUNT(*) FROM {table} {where}"
        page_statement = (
            f"SELECT {self._select_list(target)} FROM {table} {where} "
            f"ORDER BY {self._order_by(target, params.sortby)} LIMIT :limit OFFSET :offset"
        )

        async with self._session(principal, collection) as conn:
            matched = await DQLQuery.from_statement(count_statement, result_handler=ResultHandler.SCALAR_ONE).execute(conn, **bind)
            rows = await DQLQuery.from_statement(page_statement, result_handler=ResultHandler.ALL_DICTS).execute(
                conn, **bind, limit=params.limit, offset=params.offset
            )
            assets = await self._load_assets(conn, [r["id"] for r in rows]) if target.is_shared else {}

        items = [self._item(r, collection.canonical_name, assets.get(r["id"])) for r in rows]
        if params.properties is not None:
            wanted = set(params.properties)
            for item in items:
                item.properties = {k: v for k, v in item.properties.items() if k in wanted}
        return ItemCollection(features=items, number_matched=matched, number_returned=len(items))

    async def get_item(self, principal: Principal, collection_name: str, item_id: Any) -> Item:
        item_id = parse_item_id(item_id)
        collection, target = await self._resolve(collection_name)
        async with self._session(principal, collection) as conn:
            row = await self._fetch(conn, target, item_id)
            if not row:
                raise NotFoundError(f"Item '{item_id}' not found in collection '{collection_name}'.")
            assets = (await self._load_assets(conn, [item_id])).get(item_id) if target.is_shared else None
        return self._item(row, collection.canonical_name, assets)

    async def list_assets(self, principal: Principal, collection_name: str, item_id: Any) -> List[Asset]:
        """Assets of a raster or pointcloud item, ordered by key."""
        item_id = parse_item_id(item_id)
        collection, target = await self._resolve(collection_name)
        self._require_shared(collection, target)
        async with self._session(principal, collection) as conn:
            if not await self._fetch(conn, target, item_id):
                raise NotFoundError(f"Item '{item_id}' not found in collection '{collection_name}'.")
            assets = (await self._load_assets(conn, [item_id])).get(item_id, {})
        return list(assets.values())

    # --- Mutations ---

    async def create_item(self, principal: Principal, collection_name: str, data: Dict[str, Any]) -> Item:
        collection, target = await self._resolve(collection_name)
        properties, item_datetime, _ = self._split_payload(target, data)
        item_id = parse_item_id(data["id"]) if data.get("id") is not None else None
        geometry = data.get("geometry")
        if geometry is None and not target.is_shared:
            raise BadRequestError("A vector feature requires a geometry.")
        assets = _parse_assets(data.get("assets")) if target.is_shared else []

        params: Dict[str, Any] = {
            "id": item_id,
            "geometry": geometry_to_wkb(geometry) if geometry is not None else None,
            "properties": dumps(properties),
        }
        columns = ["id", GEOMETRY_COLUMN, "properties"]
        values = ["COALESCE(CAST(:id AS UUID), gen_random_uuid())", self._geometry_expression(target),
                  "CAST(:properties AS JSONB)"]
        if target.is_shared:
            columns += [target.scope_column, "datetime"]
            values += ["CAST(:scope_value AS UUID)", "CAST(:datetime AS TIMESTAMPTZ)"]
            params.update(scope_value=target.scope_value, datetime=item_datetime)

        statement = (
            f"INSERT INTO {self._table(target)} ({', '.join(quote_identifier(c) for c in columns)}) "
            f"VALUES ({', '.join(values)}) RETURNING {self._select_list(target)}"
        )
        async with self._session(principal, collection) as conn:
            row = await DQLQuery.from_statement(statement, result_handler=ResultHandler.ONE_DICT).execute(conn, **params)
            created_assets = {}
            for asset in assets:
                asset_row = await self._insert_asset(conn, row["id"], asset)
                created_assets[asset.key] = _asset_from_row(asset_row)

        logger.info(f"Created item '{row['id']}' in '{collection.canonical_name}'")
        return self._item(row, collection.canonical_name, created_assets)

    async def _write(
        self,
        principal: Principal,
        collection_name: str,
        item_id: Any,
        data: Dict[str, Any],
        expected_version: Optional[int],
        replace: bool,
    ) -> Item:
        item_id = parse_item_id(item_id)
        collection, target = await self._resolve(collection_name)
        properties, item_datetime, has_datetime = self._split_payload(target, data)
        if data.get("id") is not None and parse_item_id(data["id"]) != item_id:
            raise BadRequestError(f"Item id '{data['id']}' does not match '{item_id}'.")

        params: Dict[str, Any] = {"id": item_id}
        assignments = [f"version = {ITEM_ALIAS}.version + 1", "updated_at = NOW()"]

        geometry = data.get("geometry")
        if geometry is not None:
            assignments.append(f"{GEOMETRY_COLUMN} = {self._geometry_expression(target)}")
            params["geometry"] = geometry_to_wkb(geometry)
        elif replace:
            if not target.is_shared:
                raise BadRequestError("A vector feature requires a geometry.")
            assignments.append(f"{GEOMETRY_COLUMN} = NULL")

        if replace:
            assignments.append("properties = CAST(:properties AS JSONB)")
            params["properties"] = dumps(properties)
        elif "properties" in data:
            assignments.append(
                f"properties = COALESCE({ITEM_ALIAS}.properties, jsonb_build_object()) || CAST(:properties AS JSONB)"
            )
            params["properties"] = dumps(properties)

        if target.has_datetime and (replace or has_datetime):
            assignments.append("datetime = CAST(:datetime AS TIMESTAMPTZ)")
            params["datetime"] = item_datetime

        conditions = self._key_conditions(target, params)
        statement = (
            f"UPDATE {self._table(target)} SET {', '.join(assignments)} "
            f"WHERE {' AND '.join(conditions)} RETURNING {self._select_list(target)}"
        )
        async with self._session(principal, collection) as conn:
            await self._lock(conn, target, collection_name, item_id, expected_version)
            row = await DQLQuery.from_statement(statement, result_handler=ResultHandler.ONE_DICT).execute(conn, **params)
            assets = (await self._load_assets(conn, [item_id])).get(item_id) if target.is_shared else None

        logger.info(f"Updated item '{item_id}' in '{collection.canonical_name}' to version {row['version']}")
        return self._item(row, collection.canonical_name, assets)

    async def update_item(
        self,
        principal: Principal,
        collection_name: str,
        item_id: Any,
        data: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Item:
        """Partial update: supplied properties are merged into the stored ones."""
        return await self._write(principal, collection_name, item_id, data, expected_version, replace=False)

    async def replace_item(
        self,
        principal: Principal,
        collection_name: str,
        item_id: Any,
        data: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Item:
        return await self._write(principal, collection_name, item_id, data, expected_version, replace=True)

    async def delete_item(
        self,
        principal: Principal,
        collection_name: str,
        item_id: Any,
        expected_version: Optional[int] = None,
    ) -> None:
        item_id = parse_item_id(item_id)
        collection, target = await self._resolve(collection_name)
        params: Dict[str, Any] = {"id": item_id}
        conditions = self._key_conditions(target, params)
        statement = f"DELETE FROM {self._table(target)} WHERE {' AND '.join(conditions)}"
        async with self._session(principal, collection) as conn:
            await self._lock(conn, target, collection_name, item_id, expected_version)
            await DQLQuery.from_statement(statement, result_handler=ResultHandler.ROWCOUNT).execute(conn, **params)
        logger.info(f"Deleted item '{item_id}' from '{collection.canonical_name}'")

    @staticmethod
    def _require_shared(collection: Collection, target: StorageTarget) -> None:
        if not target.is_shared:
            raise BadRequestError(
                f"Collection '{collection.canonical_name}' is a vector collection; assets belong to raster "
                "and pointcloud items."
            )

    async def _insert_asset(self, conn: DbResource, item_id: uuid.UUID, asset: Asset) -> Dict[str, Any]:
        return await _insert_asset.execute(
            conn, schema=self.metadata_schema,
            item_id=item_id, key=asset.key, href=asset.href, type=asset.type, title=asset.title,
            description=asset.description, roles=list(asset.roles), file_size=asset.file_size,
            extra_fields=dumps(asset.extra_fields),
        )

    async def add_asset(
        self,
        principal: Principal,
        collection_name: str,
        item_id: Any,
        asset: Any,
        expected_version: Optional[int] = None,
    ) -> Asset:
        """Attaches an asset to an item; keys are unique per item."""
        item_id = parse_item_id(item_id)
        asset = asset if isinstance(asset, Asset) else _validate_asset(asset)
        collection, target = await self._resolve(collection_name)
        self._require_shared(collection, target)

        params: Dict[str, Any] = {"id": item_id}
        conditions = self._key_conditions(target, params)
        bump = f"UPDATE {self._table(target)} SET version = {ITEM_ALIAS}.version + 1, updated_at = NOW() WHERE {' AND '.join(conditions)}"
        async with self._session(principal, collection) as conn:
            await self._lock(conn, target, collection_name, item_id, expected_version)
            if await _asset_exists.execute(conn, schema=self.metadata_schema, item_id=item_id, key=asset.key):
                raise BadRequestError(f"Item '{item_id}' already has an asset '{asset.key}'.")
            row = await self._insert_asset(conn, item_id, asset)
            await DQLQuery.from_statement(bump, result_handler=ResultHandler.ROWCOUNT).execute(conn, **params)

        logger.info(f"Added asset '{asset.key}' to item '{item_id}' in '{collection.canonical_name}'")
        return _asset_from_row(row)
