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

from typing import List

from pydantic import BaseModel, Field, field_validator

from geovault.tools.identifiers import validate_identifier


class Principal(BaseModel):
    """
    An authenticated identity as handed over by the auth layer.

    Token validation happens upstream; the core only trusts that `username`
    and `groups` are the caller's. Both are validated as role names because
    they end up as PostgreSQL roles.
    """
    username: str
    groups: List[str] = Field(default_factory=list)

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        return validate_identifier(v, "username")

    @field_validator("groups")
    @classmethod
    def validate_groups(cls, v: List[str]) -> List[str]:
        return [validate_identifier(g, "group name") for g in v]

    def can_act_for(self, owner: str) -> bool:
        """True when `owner` is this principal or one of its groups."""
        return owner == self.username or owner in self.groups
