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
from unittest.mock import AsyncMock, MagicMock

import pytest

from geovault.models.auth import Principal
from geovault.models.exceptions import BadRequestError, ForbiddenError, NotFoundError
from geovault.models.shares import PermissionLevel, PrincipalType, ShareEntry
from geovault.modules.catalog.models import Collection, CollectionType, StorageDescriptor
from geovault.modules.catalog.sharing_service import SharingService


def _collection(collection_type=CollectionType.VECTOR, owner="alice"):
    return Collection(
        id=uuid.uuid4(),
        canonical_name=f"{owner}.roads",
        owner=owner,
        storage_descriptor=StorageDescriptor(schema_name=owner, table_name="roads"),
        collection_type=collection_type,
        title="Roads",
    )


def _service(collection, role_exists=True, shares=None):
    collections = MagicMock()
    collections.get_collection = AsyncMock(return_value=collection)
    roles = MagicMock()
    roles.role_exists = AsyncMock(return_value=role_exists)
    roles.grant_table_privileges = AsyncMock()
    roles.revoke_table_privileges = AsyncMock()
    roles.list_shares = AsyncMock(return_value=shares or [])
    engine = object()
    return SharingService(engine=engine, collections=collections, roles=roles), roles


ALICE = Principal(username="alice")


@pytest.mark.asyncio
async def test_add_share_revokes_then_grants():
    entry = ShareEntry(principal="bob", principal_type=PrincipalType.USER, permission=PermissionLevel.READ)
    service, roles = _service(_collection(), shares=[entry])

    calls = []
    roles.revoke_table_privileges.side_effect = lambda *a, **k: calls.append("revoke")
    roles.grant_table_privileges.side_effect = lambda *a, **k: calls.append("grant")

    result = await service.add_share(ALICE, "alice:roads", "bob", PermissionLevel.READ)

    assert result == entry
    assert calls == ["revoke", "grant"]
    args = roles.grant_table_privileges.await_args.args
    assert args[:3] == ("alice", "roads", "bob")
    assert tuple(args[3]) == ("SELECT",)


@pytest.mark.asyncio
async def test_write_share_grants_dml():
    entry = ShareEntry(principal="team", principal_type=PrincipalType.GROUP, permission=PermissionLevel.WRITE)
    service, roles = _service(_collection(), shares=[entry])

    result = await service.add_share(ALICE, "alice:roads", "team", "write")

    assert result.permission == PermissionLevel.WRITE
    assert set(roles.grant_table_privileges.await_args.args[3]) == {"SELECT", "INSERT", "UPDATE", "DELETE"}


@pytest.mark.asyncio
async def test_group_member_may_share_group_collection():
    entry = ShareEntry(principal="bob", principal_type=PrincipalType.USER, permission=PermissionLevel.READ)
    service, _ = _service(_collection(owner="team"), shares=[entry])

    result = await service.add_share(Principal(username="carol", groups=["team"]), "team:roads", "bob", "read")
    assert result.principal == "bob"


@pytest.mark.asyncio
async def test_non_owner_is_forbidden():
    service, roles = _service(_collection())
    with pytest.raises(ForbiddenError):
        await service.add_share(Principal(username="mallory"), "alice:roads", "mallory", "write")
    with pytest.raises(ForbiddenError):
        await service.list_shares(Principal(username="mallory"), "alice:roads")
    roles.grant_table_privileges.assert_not_awaited()


@pytest.mark.asyncio
async def test_sharing_with_owner_is_rejected():
    service, roles = _service(_collection())
    with pytest.raises(BadRequestError):
        await service.add_share(ALICE, "alice:roads", "alice", "read")
    roles.role_exists.assert_not_awaited()


@pytest.mark.asyncio
async def test_unknown_grantee():
    service, roles = _service(_collection(), role_exists=False)
    with pytest.raises(NotFoundError):
        await service.add_share(ALICE, "alice:roads", "ghost", "read")
    with pytest.raises(NotFoundError):
        await service.remove_share(ALICE, "alice:roads", "ghost")
    roles.revoke_table_privileges.assert_not_awaited()


@pytest.mark.asyncio
async def test_unsafe_grantee_is_rejected():
    service, roles = _service(_collection())
    with pytest.raises(BadRequestError):
        await service.add_share(ALICE, "alice:roads", 'bob"; --', "read")
    roles.role_exists.assert_not_awaited()


@pytest.mark.asyncio
async def test_non_vector_collections_are_not_shareable():
    service, roles = _service(_collection(CollectionType.RASTER))
    with pytest.raises(BadRequestError):
        await service.add_share(ALICE, "alice:roads", "bob", "read")
    with pytest.raises(BadRequestError):
        await service.remove_share(ALICE, "alice:roads", "bob")
    assert await service.list_shares(ALICE, "alice:roads") == []
    roles.list_shares.assert_not_awaited()


@pytest.mark.asyncio
async def test_remove_share():
    service, roles = _service(_collection())
    await service.remove_share(ALICE, "alice:roads", "bob")
    roles.revoke_table_privileges.assert_awaited_once()
    assert roles.revoke_table_privileges.await_args.args[:3] == ("alice", "roads", "bob")
