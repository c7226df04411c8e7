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
from typing import Any

import orjson
from fastapi.responses import JSONResponse

from geovault.tools.json import orjson_default

logger = logging.getLogger(__name__)


class ORJSONResponse(JSONResponse):
    """
    JSON response rendered with orjson, using the application's `default`
    serializer for UUIDs, datetimes and shapely geometries.
    """
    media_type = "application/json"

    def render(self, content: Any) -> bytes:
        return orjson.dumps(content, default=orjson_default, option=orjson.OPT_NON_STR_KEYS)


def etag_for(version: int) -> str:
    """Entity tag of a resource version: the raw integer, quoted."""
    return f'"{int(version)}"'
