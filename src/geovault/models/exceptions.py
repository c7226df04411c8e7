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
Error kinds surfaced by the GeoVault core.

Every failure raised to a caller belongs to exactly one of five kinds:
NotFound, BadRequest, Forbidden, PreconditionFailed and Internal. The HTTP
layer maps each kind to a status code (see
`geovault.extensions.tools.exception_handlers`).
"""


class GeoVaultError(Exception):
    """Base class for all errors raised by the core."""
    kind: str = "Internal"


class NotFoundError(GeoVaultError):
    """A collection, item, role or share does not exist."""
    kind = "NotFound"


class BadRequestError(GeoVaultError, ValueError):
    """Malformed input: invalid identifier, bad name, filter compile error."""
    kind = "BadRequest"


class ForbiddenError(GeoVaultError):
    """The calling principal does not own the resource."""
    kind = "Forbidden"


class PreconditionFailedError(GeoVaultError):
    """The expected version does not match the current version."""
    kind = "PreconditionFailed"

    def __init__(self, message: str, expected_version: int = None, current_version: int = None):
        super().__init__(message)
        self.expected_version = expected_version
        self.current_version = current_version


class InternalError(GeoVaultError):
    """Unexpected backend failure. Details are logged, never returned."""
    kind = "Internal"
