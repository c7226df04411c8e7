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

import pytest

from geovault.models.auth import Principal
from geovault.models.exceptions import BadRequestError, NotFoundError
from geovault.models.shares import PermissionLevel, PrincipalType
from geovault.modules.auth.role_manager import RoleManager
from geovault.tools.identifiers import InvalidIdentifierError

from conftest import RecordingConnection, make_result


@pytest.fixture
def manager():
    return RoleManager(metadata_schema="geovault")


@pytest.mark.asyncio
async def test_ensure_principal_roles(manager):
    conn = RecordingConnection()
    await manager.ensure_principal_roles(Principal(username="alice", groups=["team"]), db_resource=conn)

    assert conn.statements == [
        'SELECT "geovault".ensure_role(CAST(:name AS TEXT), CAST(:is_group AS BOOLEAN));',
        'SELECT "geovault".ensure_role(CAST(:name AS TEXT), CAST(:is_group AS BOOLEAN));',
        'GRANT "team" TO "alice"',
    ]
    assert conn.params[0] == {"name": "alice", "is_group": False}
    assert conn.params[1] == {"name": "team", "is_group": True}


@pytest.mark.asyncio
async def test_ensure_role_rejects_unsafe_names(manager):
    conn = RecordingConnection()
    with pytest.raises(InvalidIdentifierError):
        await manager.ensure_user_role('bob"; DROP ROLE postgres; --', db_resource=conn)
    assert conn.statements == []


@pytest.mark.asyncio
async def test_grant_table_privileges(manager):
    conn = RecordingConnection([make_result(scalar=True)])
    await manager.grant_table_privileges("alice", "roads", "bob", ["select", "update"], db_resource=conn)

    assert conn.statements[1:] == [
        'GRANT USAGE ON SCHEMA "alice" TO "bob"',
        'GRANT SELECT, UPDATE ON "alice"."roads" TO "bob"',
    ]


@pytest.mark.asyncio
async def test_grant_to_unknown_role(manager):
    conn = RecordingConnection([make_result(scalar=False)])
    with pytest.raises(NotFoundError):
        await manager.grant_table_privileges("alice", "roads", "ghost", ["SELECT"], db_resource=conn)
    assert len(conn.statements) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("privileges", [[], ["SELECT; DROP TABLE x"], ["OWNER"]])
async def test_grant_rejects_invalid_privileges(manager, privileges):
    conn = RecordingConnection()
    with pytest.raises(BadRequestError):
        await manager.grant_table_privileges("alice", "roads", "bob", privileges, db_resource=conn)
    assert conn.statements == []


@pytest.mark.asyncio
async def test_revoke_table_privileges(manager):
    conn = RecordingConnection([make_result(scalar=True)])
    await manager.revoke_table_privileges("alice", "roads", "bob", db_resource=conn)
    assert conn.statements[-1] == 'REVOKE ALL ON "alice"."roads" FROM "bob"'


@pytest.mark.asyncio
async def test_list_shares_derives_type_and_permission(manager):
    conn = RecordingConnection([make_result(rows=[
        {"grantee": "bob", "privileges": ["SELECT"], "is_group": False},
        {"grantee": "team", "privileges": ["SELECT", "UPDATE"], "is_group": True},
    ])])
    shares = await manager.list_shares("alice", "roads", "alice", db_resource=conn)

    assert [(s.principal, s.principal_type, s.permission) for s in shares] == [
        ("bob", PrincipalType.USER, PermissionLevel.READ),
        ("team", PrincipalType.GROUP, PermissionLevel.WRITE),
    ]
    assert conn.params[0] == {"schema_name": "alice", "table_name": "roads", "owner": "alice"}


@pytest.mark.asyncio
async def test_group_membership(manager):
    conn = RecordingConnection([make_result(scalar=True), make_result(scalar=True)])
    await manager.grant_role_to_user("team", "bob", db_resource=conn)
    assert conn.statements[-1] == 'GRANT "team" TO "bob"'

    conn = RecordingConnection([make_result(scalar=True), make_result(scalar=True)])
    await manager.revoke_role_from_user("team", "bob", db_resource=conn)
    assert conn.statements[-1] == 'REVOKE "team" FROM "bob"'


def test_resource_is_required():
    with pytest.raises(RuntimeError):
        RoleManager()._resource(None)
