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
Centralized protocol definitions for GeoVault.

- database.py: engine and principal session access
- collections.py: collection lifecycle
- items.py: features and items
- roles.py: database roles and grants
"""

from geovault.models.protocols.database import DatabaseProtocol
from geovault.models.protocols.collections import CollectionsProtocol
from geovault.models.protocols.items import ItemsProtocol
from geovault.models.protocols.roles import RolesProtocol

__all__ = [
    "DatabaseProtocol",
    "CollectionsProtocol",
    "ItemsProtocol",
    "RolesProtocol",
]
