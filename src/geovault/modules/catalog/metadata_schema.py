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
DDL of the metadata schema and of the dedicated vector tables.

Templates use the query executor's `{identifier}` placeholders; literal braces
are doubled.
"""

import logging

from geovault.modules.db_config.query_executor import DbResource
from geovault.modules.db_config.maintenance_tools import (
    ensure_schema_exists, execute_ddl_block, startup_lock
)

logger = logging.getLogger(__name__)

COLLECTIONS_DDL = """
CREATE TABLE IF NOT EXISTS {schema}.collections (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    canonical_name VARCHAR NOT NULL UNIQUE,
    owner VARCHAR NOT NULL,
    schema_name VARCHAR NOT NULL,
    table_name VARCHAR NOT NULL,
    collection_type VARCHAR NOT NULL CHECK (collection_type IN ('vector', 'raster', 'pointcloud')),
    title VARCHAR NOT NULL,
    description TEXT,
    version BIGINT NOT NULL DEFAULT 1,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_collections_owner ON {schema}.collections (owner)
"""

# Renaming a collection cascades into the aliases that point at its old name,
# so older aliases follow the live name.
COLLECTION_ALIASES_DDL = """
CREATE TABLE IF NOT EXISTS {schema}.collection_aliases (
    old_name VARCHAR PRIMARY KEY,
    new_name VARCHAR NOT NULL REFERENCES {schema}.collections (canonical_name)
        ON UPDATE CASCADE ON DELETE CASCADE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_collection_aliases_new_name ON {schema}.collection_aliases (new_name)
"""

ITEMS_DDL = """
CREATE TABLE IF NOT EXISTS {schema}.items (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    collection_id UUID NOT NULL REFERENCES {schema}.collections (id) ON DELETE CASCADE,
    geometry geometry(Geometry, 4326),
    datetime TIMESTAMPTZ,
    properties JSONB NOT NULL DEFAULT '{{}}'::jsonb,
    version BIGINT NOT NULL DEFAULT 1,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_items_collection_id ON {schema}.items (collection_id);
CREATE INDEX IF NOT EXISTS idx_items_geometry ON {schema}.items USING GIST (geometry);
CREATE INDEX IF NOT EXISTS idx_items_datetime ON {schema}.items (datetime)
"""

ASSETS_DDL = """
CREATE TABLE IF NOT EXISTS {schema}.assets (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    item_id UUID NOT NULL REFERENCES {schema}.items (id) ON DELETE CASCADE,
    key VARCHAR NOT NULL,
    href TEXT NOT NULL,
    type VARCHAR,
    title VARCHAR,
    description TEXT,
    roles TEXT[] NOT NULL DEFAULT ARRAY[]::TEXT[],
    file_size BIGINT,
    extra_fields JSONB NOT NULL DEFAULT '{{}}'::jsonb,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (item_id, key)
)
"""

METADATA_DDL_BLOCKS = (COLLECTIONS_DDL, COLLECTION_ALIASES_DDL, ITEMS_DDL, ASSETS_DDL)

# Dedicated table of a vector collection. The SRID is validated as an int by
# the caller before being formatted in.
VECTOR_TABLE_DDL = """
CREATE TABLE {schema}.{table} (
    id UUID DEFAULT gen_random_uuid(),
    geometry geometry(Geometry, %(srid)d) NOT NULL,
    properties JSONB NOT NULL DEFAULT '{{}}'::jsonb,
    version BIGINT NOT NULL DEFAULT 1,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CONSTRAINT {pkey} PRIMARY KEY (id)
)
"""

VECTOR_TABLE_INDEX_DDL = "CREATE INDEX {index} ON {schema}.{table} USING GIST (geometry)"

VECTOR_TABLE_OWNER_GRANT_DDL = "GRANT ALL ON {schema}.{table} TO {role}"

VECTOR_TABLE_DROP_DDL = "DROP TABLE IF EXISTS {schema}.{table}"

# Index names live in the schema namespace, so they follow the table on rename.
VECTOR_TABLE_RENAME_DDL = "ALTER TABLE {schema}.{table} RENAME TO {new_table}"

VECTOR_TABLE_PKEY_RENAME_DDL = "ALTER TABLE {schema}.{table} RENAME CONSTRAINT {pkey} TO {new_pkey}"

VECTOR_TABLE_INDEX_RENAME_DDL = "ALTER INDEX {schema}.{index} RENAME TO {new_index}"


def vector_table_ddl(srid: int) -> str:
    return VECTOR_TABLE_DDL % {"srid": int(srid)}


def spatial_index_name(table: str) -> str:
    # PostgreSQL truncates names longer than 63 bytes.
    return f"{table[:50]}_geom_idx"


def primary_key_name(table: str) -> str:
    return f"{table[:50]}_pkey"


async def ensure_metadata_schema(conn: DbResource, schema: str) -> None:
    """Creates the metadata schema and its tables if missing."""
    await ensure_schema_exists(conn, schema)
    async with startup_lock(conn, f"{schema}.metadata_tables") as tx_conn:
        for ddl in METADATA_DDL_BLOCKS:
            await execute_ddl_block(tx_conn, ddl, schema=schema)
    logger.info(f"Metadata schema '{schema}' is ready.")
