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
Role and grant management protocol definitions.
"""

from typing import Protocol, Optional, Any, List, Sequence, runtime_checkable, TYPE_CHECKING

if TYPE_CHECKING:
    from geovault.models.shares import ShareEntry


@runtime_checkable
class RolesProtocol(Protocol):
    """
    Protocol bridging application principals onto database roles and grants.
    """

    async def ensure_user_role(self, name: str, db_resource: Optional[Any] = None) -> None:
        ...

    async def ensure_group_role(self, name: str, db_resource: Optional[Any] = None) -> None:
        ...

    async def ensure_principal_roles(self, principal: Any, db_resource: Optional[Any] = None) -> None:
        """Ensures the user role, its group roles and the memberships between them."""
        ...

    async def role_exists(self, name: str, db_resource: Optional[Any] = None) -> bool:
        ...

    async def grant_table_privileges(
        self, schema: str, table: str, role: str, privileges: Sequence[str], db_resource: Optional[Any] = None
    ) -> None:
        ...

    async def revoke_table_privileges(
        self, schema: str, table: str, role: str, db_resource: Optional[Any] = None
    ) -> None:
        ...

    async def list_shares(
        self, schema: str, table: str, owner: str, db_resource: Optional[Any] = None
    ) -> List["ShareEntry"]:
        ...
