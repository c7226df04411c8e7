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

from enum import Enum

from pydantic import BaseModel


class PermissionLevel(str, Enum):
    READ = "read"
    WRITE = "write"


class PrincipalType(str, Enum):
    USER = "user"
    GROUP = "group"


# Table privileges each permission level grants.
PERMISSION_PRIVILEGES = {
    PermissionLevel.READ: ("SELECT",),
    PermissionLevel.WRITE: ("SELECT", "INSERT", "UPDATE", "DELETE"),
}

WRITE_PRIVILEGES = frozenset({"INSERT", "UPDATE", "DELETE"})


class ShareEntry(BaseModel):
    """A grant on a collection's table, derived from the live privilege catalogs."""
    principal: str
    principal_type: PrincipalType
    permission: PermissionLevel

