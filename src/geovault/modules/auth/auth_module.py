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

import logging
from contextlib import asynccontextmanager

from geovault.modules import geovault_module, ModuleProtocol
from geovault.modules.auth.role_manager import RoleManager
from geovault.tools.discovery import Provider

logger = logging.getLogger(__name__)


@geovault_module
class AuthModule(ModuleProtocol):
    """Registers the RoleManager, which installs the role bootstrap function on startup."""

    priority: int = 10

    role_manager = Provider(RoleManager, priority=50)

    @asynccontextmanager
    async def lifespan(self, app_state: object):
        self.app_state = app_state
        logger.info("AuthModule: role management enabled.")
        yield
