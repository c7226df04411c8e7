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
Collection-level sharing on top of native table grants.

Grants and revokes are committed on their own, outside any catalog
transaction: they take effect immediately and are idempotent, but a later
catalog rollback does not undo them.
"""

import logging
from typing import Any, List, Optional

from geovault.models.auth import Principal
from geovault.models.exceptions import BadRequestError, ForbiddenError, InternalError, NotFoundError
from geovault.models.protocols import CollectionsProtocol, RolesProtocol
from geovault.models.shares import PERMISSION_PRIVILEGES, PermissionLevel, ShareEntry
from geovault.modules.catalog.models import Collection, CollectionType
from geovault.modules.db_config.query_executor import DbResource
from geovault.tools.discovery import get_protocol
from geovault.tools.identifiers import validate_identifier

logger = logging.getLogger(__name__)


class SharingService:
    priority: int = 80

    def __init__(
        self,
        engine: Optional[DbResource] = None,
        collections: Optional[CollectionsProtocol] = None,
        roles: Optional[RolesProtocol] = None,
    ):
        self.engine = engine
        self.collections = collections
        self.roles = roles

    async def initialize(self, app_state: Any, db_resource: Optional[DbResource] = None):
        if not self.engine:
            self.engine = db_resource

    def is_available(self) -> bool:
        return self.engine is not None

    def _collections(self) -> CollectionsProtocol:
        collections = self.collections or get_protocol(CollectionsProtocol)
        if collections is None:
            raise RuntimeError("SharingService: no CollectionsProtocol provider available.")
        return collections

    def _roles(self) -> RolesProtocol:
        roles = self.roles or get_protocol(RolesProtocol)
        if roles is None:
            raise RuntimeError("SharingService: no RolesProtocol provider available.")
        return roles

    async def _owned_collection(self, principal: Principal, canonical_name: str) -> Collection:
        collection = await self._collections().get_collection(canonical_name, db_resource=self.engine)
        if not principal.can_act_for(collection.owner):
            raise ForbiddenError(f"Principal '{principal.username}' does not own collection '{canonical_name}'.")
        return collection

    @staticmethod
    def _require_vector(collection: Collection) -> None:
        if collection.collection_type != CollectionType.VECTOR:
            raise BadRequestError(
                f"Collection '{collection.canonical_name}' is a {collection.collection_type.value} collection; "
                "only vector collections can be shared."
            )

    async def list_shares(self, principal: Principal, canonical_name: str) -> List[ShareEntry]:
        collection = await self._owned_collection(principal, canonical_name)
        if collection.collection_type != CollectionType.VECTOR:
            return []
        return await self._roles().list_shares(
            collection.schema_name, collection.table_name, collection.owner, db_resource=self.engine
        )

    async def add_share(
        self, principal: Principal, canonical_name: str, grantee: str, permission: PermissionLevel
    ) -> ShareEntry:
        collection = await self._owned_collection(principal, canonical_name)
        self._require_vector(collection)
        validate_identifier(grantee, "principal")
        permission = PermissionLevel(permission)
        if grantee == collection.owner:
            raise BadRequestError(f"Collection '{canonical_name}' is already owned by '{grantee}'.")

        roles = self._roles()
        if not await roles.role_exists(grantee, db_resource=self.engine):
            raise NotFoundError(f"Principal '{grantee}' not found.")

        # Revoke first so that a downgrade from write to read takes effect.
        await roles.revoke_table_privileges(
            collection.schema_name, collection.table_name, grantee, db_resource=self.engine
        )
        await roles.grant_table_privileges(
            collection.schema_name, collection.table_name, grantee,
            PERMISSION_PRIVILEGES[permission], db_resource=self.engine
        )
        logger.info(f"Shared '{canonical_name}' with '{grantee}' ({permission.value})")

        for share in await roles.list_shares(
            collection.schema_name, collection.table_name, collection.owner, db_resource=self.engine
        ):
            if share.principal == grantee:
                return share
        raise InternalError(f"Grant to '{grantee}' on '{canonical_name}' is not visible in the privilege catalog.")

    async def remove_share(self, principal: Principal, canonical_name: str, grantee: str) -> None:
        collection = await self._owned_collection(principal, canonical_name)
        self._require_vector(collection)
        validate_identifier(grantee, "principal")

        roles = self._roles()
        if not await roles.role_exists(grantee, db_resource=self.engine):
            raise NotFoundError(f"Principal '{grantee}' not found.")

        await roles.revoke_table_privileges(
            collection.schema_name, collection.table_name, grantee, db_resource=self.engine
        )
        logger.info(f"Removed share of '{canonical_name}' from '{grantee}'")
