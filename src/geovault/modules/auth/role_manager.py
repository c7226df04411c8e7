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
Bridges application principals onto PostgreSQL roles.

Every user and group is a NOLOGIN role owning a schema of the same name.
Sharing a collection is a native table GRANT to another role, so the list of
shares is never stored: it is read back from the privilege catalogs.
"""

import logging
from typing import Any, List, Optional, Sequence

from geovault.models.exceptions import NotFoundError, BadRequestError
from geovault.models.shares import ShareEntry, PermissionLevel, PrincipalType, WRITE_PRIVILEGES
from geovault.modules.db_config.query_executor import (
    DDLQuery, DQLQuery, DbResource, ResultHandler, managed_transaction
)
from geovault.modules.db_config.db_config import DBConfig
from geovault.modules.db_config.tools import get_config
from geovault.tools.identifiers import validate_identifier

logger = logging.getLogger(__name__)

TABLE_PRIVILEGES = frozenset({
    "SELECT", "INSERT", "UPDATE", "DELETE", "TRUNCATE", "REFERENCES", "TRIGGER", "MAINTAIN", "ALL"
})

# The body is dollar-quoted so the whole definition is a single statement.
# Newly created roles are granted to the session (login) role so that the
# service can SET ROLE to them and create objects in their schemas.
ENSURE_ROLE_FUNCTION_DDL = """
CREATE OR REPLACE FUNCTION {schema}.ensure_role(role_name TEXT, is_group BOOLEAN DEFAULT FALSE)
RETURNS VOID
LANGUAGE plpgsql
SECURITY DEFINER
AS $fn$
BEGIN
    IF NOT EXISTS (SELECT 1 FROM pg_roles WHERE rolname = role_name) THEN
        BEGIN
            EXECUTE format('CREATE ROLE %I WITH NOLOGIN', role_name);
            EXECUTE format('GRANT %I TO %I', role_name, session_user);
        EXCEPTION WHEN duplicate_object THEN
            NULL;
        END;
    END IF;
    EXECUTE format('CREATE SCHEMA IF NOT EXISTS %I AUTHORIZATION %I', role_name, role_name);
END;
$fn$
"""

_role_exists_query = DQLQuery(
    "SELECT EXISTS (SELECT 1 FROM pg_roles WHERE rolname = :name);",
    result_handler=ResultHandler.SCALAR_ONE
)

_ensure_role_query = DQLQuery(
    "SELECT {schema}.ensure_role(CAST(:name AS TEXT), CAST(:is_group AS BOOLEAN));",
    result_handler=ResultHandler.NONE
)

_grant_schema_usage = DDLQuery("GRANT USAGE ON SCHEMA {schema} TO {role}")
_revoke_table_all = DDLQuery("REVOKE ALL ON {schema}.{table} FROM {role}")
_grant_role_membership = DDLQuery("GRANT {role} TO {member}")
_revoke_role_membership = DDLQuery("REVOKE {role} FROM {member}")

# A grantee counts as a group when some role other than the service's own
# login role is a member of it. This is a heuristic: a user that has been
# granted to another user would be reported as a group.
_list_shares_query = DQLQuery(
    """
    SELECT tp.grantee AS grantee,
           array_agg(DISTINCT tp.privilege_type) AS privileges,
           EXISTS (
               SELECT 1
               FROM pg_auth_members m
               JOIN pg_roles r ON r.oid = m.roleid
               WHERE r.rolname = tp.grantee
                 AND m.member <> (SELECT oid FROM pg_roles WHERE rolname = session_user)
           ) AS is_group
    FROM information_schema.table_privileges tp
    WHERE tp.table_schema = :schema_name
      AND tp.table_name = :table_name
      AND tp.grantee <> :owner
      AND tp.grantee <> 'PUBLIC'
      AND tp.grantee IS DISTINCT FROM (
          SELECT tableowner FROM pg_tables
          WHERE schemaname = :schema_name AND tablename = :table_name
      )
    GROUP BY tp.grantee
    ORDER BY tp.grantee;
    """,
    result_handler=ResultHandler.ALL_DICTS
)


def _validate_privileges(privileges: Sequence[str]) -> List[str]:
    normalized = [str(p).strip().upper() for p in privileges]
    if not normalized:
        raise BadRequestError("At least one privilege is required.")
    invalid = [p for p in normalized if p not in TABLE_PRIVILEGES]
    if invalid:
        raise BadRequestError(f"Invalid table privilege(s): {', '.join(invalid)}")
    return normalized


class RoleManager:
    """Creates roles, grants and revokes table privileges, lists shares."""

    priority: int = 50

    def __init__(self, engine: Optional[DbResource] = None, metadata_schema: Optional[str] = None):
        self.engine = engine
        self.metadata_schema = metadata_schema or DBConfig.metadata_schema

    async def initialize(self, app_state: Any, db_resource: Optional[DbResource] = None):
        """Installs the role bootstrap function in the metadata schema."""
        if not self.engine:
            self.engine = db_resource
        config = getattr(app_state, 'db_config', None)
        if config:
            self.metadata_schema = get_config(app_state).metadata_schema
        if self.engine:
            await self.install(self.engine)

    def is_available(self) -> bool:
        return self.engine is not None

    async def install(self, db_resource: DbResource) -> None:
        from geovault.modules.db_config.maintenance_tools import ensure_schema_exists, startup_lock

        await ensure_schema_exists(db_resource, self.metadata_schema)
        async with startup_lock(db_resource, "geovault.ensure_role") as conn:
            await DDLQuery(ENSURE_ROLE_FUNCTION_DDL).execute(conn, schema=self.metadata_schema)
        logger.info(f"RoleManager: ensure_role function installed in schema '{self.metadata_schema}'.")

    def _resource(self, db_resource: Optional[DbResource]) -> DbResource:
        resource = db_resource or self.engine
        if resource is None:
            raise RuntimeError("RoleManager: no database resource available.")
        return resource

    async def _ensure_role(self, name: str, is_group: bool, db_resource: Optional[DbResource]) -> None:
        validate_identifier(name, "group name" if is_group else "username")
        async with managed_transaction(self._resource(db_resource)) as conn:
            await _ensure_role_query.execute(conn, schema=self.metadata_schema, name=name, is_group=is_group)
        logger.debug(f"Ensured {'group' if is_group else 'user'} role '{name}'")

    async def ensure_user_role(self, name: str, db_resource: Optional[DbResource] = None) -> None:
        await self._ensure_role(name, False, db_resource)

    async def ensure_group_role(self, name: str, db_resource: Optional[DbResource] = None) -> None:
        await self._ensure_role(name, True, db_resource)

    async def ensure_principal_roles(self, principal, db_resource: Optional[DbResource] = None) -> None:
        """Ensures the principal's user role, its group roles and the memberships between them."""
        async with managed_transaction(self._resource(db_resource)) as conn:
            await self.ensure_user_role(principal.username, db_resource=conn)
            for group in principal.groups:
                await self.ensure_group_role(group, db_resource=conn)
                await _grant_role_membership.execute(conn, role=group, member=principal.username)

    async def role_exists(self, name: str, db_resource: Optional[DbResource] = None) -> bool:
        validate_identifier(name, "role name")
        async with managed_transaction(self._resource(db_resource)) as conn:
            return await _role_exists_query.execute(conn, name=name)

    async def _require_role(self, name: str, conn: DbResource) -> None:
        if not await self.role_exists(name, db_resource=conn):
            raise NotFoundError(f"Principal '{name}' not found.")

    async def grant_table_privileges(
        self, schema: str, table: str, role: str, privileges: Sequence[str], db_resource: Optional[DbResource] = None
    ) -> None:
        privilege_list = _validate_privileges(privileges)
        async with managed_transaction(self._resource(db_resource)) as conn:
            await self._require_role(role, conn)
            await _grant_schema_usage.execute(conn, schema=schema, role=role)
            await DDLQuery(f"GRANT {', '.join(privilege_list)} ON {{schema}}.{{table}} TO {{role}}").execute(
                conn, schema=schema, table=table, role=role
            )
        logger.info(f"Granted {privilege_list} on '{schema}.{table}' to '{role}'")

    async def revoke_table_privileges(
        self, schema: str, table: str, role: str, db_resource: Optional[DbResource] = None
    ) -> None:
        async with managed_transaction(self._resource(db_resource)) as conn:
            await self._require_role(role, conn)
            await _revoke_table_all.execute(conn, schema=schema, table=table, role=role)
        logger.info(f"Revoked all privileges on '{schema}.{table}' from '{role}'")

    async def list_shares(
        self, schema: str, table: str, owner: str, db_resource: Optional[DbResource] = None
    ) -> List[ShareEntry]:
        validate_identifier(schema, "schema")
        validate_identifier(table, "table")
        async with managed_transaction(self._resource(db_resource)) as conn:
            rows = await _list_shares_query.execute(
                conn, schema_name=schema, table_name=table, owner=owner
            )

        shares = []
        for row in rows:
            privileges = {p.upper() for p in (row["privileges"] or [])}
            shares.append(ShareEntry(
                principal=row["grantee"],
                principal_type=PrincipalType.GROUP if row["is_group"] else PrincipalType.USER,
                permission=PermissionLevel.WRITE if privileges & WRITE_PRIVILEGES else PermissionLevel.READ,
            ))
        return shares

    async def grant_role_to_user(self, role: str, user: str, db_resource: Optional[DbResource] = None) -> None:
        """Adds `user` to the group `role`."""
        async with managed_transaction(self._resource(db_resource)) as conn:
            await self._require_role(role, conn)
            await self._require_role(user, conn)
            await _grant_role_membership.execute(conn, role=role, member=user)
        logger.info(f"Granted role '{role}' to '{user}'")

    async def revoke_role_from_user(self, role: str, user: str, db_resource: Optional[DbResource] = None) -> None:
        """Removes `user` from the group `role`."""
        async with managed_transaction(self._resource(db_resource)) as conn:
            await self._require_role(role, conn)
            await self._require_role(user, conn)
            await _revoke_role_membership.execute(conn, role=role, member=user)
        logger.info(f"Revoked role '{role}' from '{user}'")
