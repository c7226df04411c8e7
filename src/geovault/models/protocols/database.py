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

from typing import Protocol, Any, runtime_checkable
from contextlib import AbstractAsyncContextManager


@runtime_checkable
class DatabaseProtocol(Protocol):
    """
    Protocol for centralized database engine access, facilitating decoupled
    discovery of the engine and of principal-scoped sessions.
    """

    @property
    def engine(self) -> Any:
        ...

    def principal_session(self, principal: Any) -> AbstractAsyncContextManager:
        """
        Yields a transactional connection on which every statement runs with
        the principal's PostgreSQL role.
        """
        ...

    def get_metadata_schema(self) -> str:
        ...

    def get_default_srid(self) -> int:
        ...

    def impersonates_principals(self) -> bool:
        """Whether principal sessions switch to the principal's role."""
        ...
