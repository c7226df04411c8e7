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

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional, Union

import orjson


def orjson_default(obj: Any) -> Any:
    """
    Fallback serializer for orjson.dumps().

    Handles the types that show up in feature properties and query rows:
    dates, UUIDs, decimals, shapely geometries and pydantic models.
    """
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, uuid.UUID):
        return str(obj)
    if isinstance(obj, Decimal):
        return float(obj)
    if hasattr(obj, '__geo_interface__'):
        return obj.__geo_interface__
    if hasattr(obj, 'model_dump') and callable(obj.model_dump):
        return obj.model_dump(exclude_none=True)
    raise TypeError(f"Type is not JSON serializable: {type(obj).__name__}")


def dumps(obj: Any) -> str:
    """Serializes to a JSON string (for JSONB bind parameters)."""
    return orjson.dumps(obj, default=orjson_default).decode("utf-8")


def loads_maybe(value: Optional[Union[str, bytes, dict, list]]) -> Any:
    """
    Decodes a JSON column value. asyncpg returns json/jsonb as text when the
    statement carries no type information, so strings are parsed and already
    decoded values are returned as they are.
    """
    if value is None:
        return None
    if isinstance(value, (str, bytes)):
        return orjson.loads(value)
    return value
