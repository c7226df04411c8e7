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

# geovault/modules/protocols.py

from typing import Protocol, AsyncGenerator
from contextlib import asynccontextmanager


class ModuleProtocol(Protocol):
    """
    Contract for a GeoVault module.

    Modules are reusable services (database access, role management, the
    resource catalog) with a lifecycle bound to the application's. They are
    independent of FastAPI.

    ---
    Conventional Members:

    - `__init__(self, app_state: object)`: optional. If the constructor
      accepts `app_state`, the loader passes the shared state object.

    - `lifespan(self, app_state: object)`: async context manager run at
      startup, exited at shutdown.
    ---

    Example:
    ```python
    @geovault_module
    class MyModule:
        @asynccontextmanager
        async def lifespan(self, app_state: object):
            app_state.my_service = MyService()
            try:
                yield
            finally:
                del app_state.my_service
    ```
    """

    @asynccontextmanager
    async def lifespan(self, app_state: object) -> AsyncGenerator[None, None]:
        """A context manager to manage the module's lifecycle."""
        yield

    _registered_name: str = "unregistered_module"
    priority: int = 0

    def is_available(self) -> bool:
        """Whether the module currently provides its protocol capability."""
        return True

    @classmethod
    def get_name(cls) -> str:
        """The name set by the @geovault_module decorator."""
        return cls._registered_name
