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

import re
from typing import Tuple

from geovault.models.exceptions import BadRequestError

MAX_IDENTIFIER_LENGTH = 63

# First char: ASCII letter or underscore. Then letters, digits, underscore or hyphen.
_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_\-]*$")

CANONICAL_NAME_SEPARATOR = ":"
TABLE_NAME_JOINER = "_"


class InvalidIdentifierError(BadRequestError):
    """Raised when an identifier fails validation."""
    pass


def is_valid_identifier(name: str) -> bool:
    """
    True iff `name` is safe to interpolate (quoted) into DDL as a role, schema
    or table name: non-empty, at most 63 characters, starting with an ASCII
    letter or underscore, followed by ASCII letters, digits, '_' or '-'.
    """
    if not isinstance(name, str) or not name:
        return False
    if len(name) > MAX_IDENTIFIER_LENGTH:
        return False
    return _IDENTIFIER_RE.match(name) is not None


def quote_identifier(name: str) -> str:
    """Wraps an identifier in double quotes, doubling any embedded quote."""
    return '"' + name.replace('"', '""') + '"'


def validate_identifier(name: str, kind: str = "identifier") -> str:
    """
    Validates an identifier and returns it unchanged.

    Raises:
        InvalidIdentifierError: if the name is not a safe identifier.
    """
    if not is_valid_identifier(name):
        raise InvalidIdentifierError(f"Invalid {kind}: {name!r}")
    return name


def quote_validated(name: str, kind: str = "identifier") -> str:
    """Validates, then quotes."""
    return quote_identifier(validate_identifier(name, kind))


def split_canonical_name(canonical_name: str) -> Tuple[str, str]:
    """
    Derives the physical (schema, table) pair from a canonical collection name.

    `owner:seg1:seg2` maps to schema `owner` and table `seg1_seg2`. Both parts
    are validated.

    Raises:
        InvalidIdentifierError: if the name has fewer than two segments or a
            derived part is not a valid identifier.
    """
    if not isinstance(canonical_name, str) or not canonical_name:
        raise InvalidIdentifierError("Invalid collection name: empty")
    parts = canonical_name.split(CANONICAL_NAME_SEPARATOR)
    schema_name = parts[0]
    table_name = TABLE_NAME_JOINER.join(parts[1:])
    if not table_name:
        raise InvalidIdentifierError(
            f"Collection name must have at least two segments: {canonical_name!r}"
        )
    validate_identifier(schema_name, "schema name")
    validate_identifier(table_name, "table name")
    return schema_name, table_name


def owner_segment(canonical_name: str) -> str:
    """Returns the first segment of a canonical name."""
    return canonical_name.split(CANONICAL_NAME_SEPARATOR, 1)[0]
