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
Backend failures raised by the query executor.

All of them are `InternalError`s: the message shown to callers is generic,
while `details` (the driver's own message) is kept for server-side logs.
"""

from geovault.models.exceptions import InternalError


class DatabaseError(InternalError):
    """Base class for all database-related exceptions."""
    def __init__(self, message, original_exception=None):
        super().__init__(message)
        self.original_exception = original_exception
        self.details = str(original_exception) if original_exception else "No additional details."

    @property
    def pgcode(self):
        return getattr(self.original_exception, 'pgcode', None) or getattr(self.original_exception, 'sqlstate', None)


class QueryExecutionError(DatabaseError):
    """Raised for general or unrecognized errors during query execution."""
    pass


class DatabaseConnectionError(DatabaseError):
    """Raised when the connection to the database cannot be established or is lost."""
    pass


class TableNotFoundError(DatabaseError):
    """Raised when a query references a table that does not exist (pgcode: 42P01)."""
    pass


class SchemaNotFoundError(DatabaseError):
    """Raised when a query references a schema that does not exist (pgcode: 3F000)."""
    pass


class DuplicateTableError(DatabaseError):
    """Raised when attempting to create a table that already exists (pgcode: 42P07)."""
    pass


class DuplicateObjectError(DatabaseError):
    """Raised when attempting to create an object that already exists (pgcode: 42710)."""
    pass


class PermissionDeniedError(DatabaseError):
    """Raised when the current role has insufficient privileges (pgcode: 42501)."""
    pass


class UndefinedRoleError(DatabaseError):
    """Raised when a statement names a role that does not exist (pgcode: 42704)."""
    pass


class UniqueViolationError(DatabaseError):
    """Raised on violation of a unique constraint (pgcode: 23505)."""
    pass


class ForeignKeyViolationError(DatabaseError):
    """Raised on violation of a foreign key constraint (pgcode: 23503)."""
    pass


class LockNotAvailableError(DatabaseError):
    """Raised when a row or table lock cannot be acquired in time (pgcode: 55P03)."""
    pass


PGCODE_EXCEPTION_MAP = {
    '42P01': TableNotFoundError,
    '3F000': SchemaNotFoundError,
    '42P07': DuplicateTableError,
    '42501': PermissionDeniedError,
    '42704': UndefinedRoleError,
    '42710': DuplicateObjectError,
    '23505': UniqueViolationError,
    '23503': ForeignKeyViolationError,
    '55P03': LockNotAvailableError,
    # Connection issues
    '08000': DatabaseConnectionError,
    '08003': DatabaseConnectionError,
    '08006': DatabaseConnectionError,
}
