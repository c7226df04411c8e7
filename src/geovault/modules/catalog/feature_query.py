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
Query parameters of feature and item listings.

Accepts the raw query-string forms (`bbox=0,0,10,10`, `sortby=-name,+id`,
`datetime=2020-01-01T00:00:00Z/..`) as well as already parsed values.
"""

import datetime as dt
import math
import re
from typing import Any, Dict, List, Optional, Tuple, Union

from dateutil.parser import isoparse
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from geovault.models.exceptions import BadRequestError
from geovault.modules.tools.cql import CQL2_JSON, CQL2_TEXT, FILTER_LANGUAGES

MAX_LIMIT = 10000
DEFAULT_LIMIT = 10
OPEN_END = ".."

_SORT_FIELD_RE = re.compile(r"^[a-zA-Z0-9_]+$")


class SortField(BaseModel):
    field: str
    descending: bool = False

    @field_validator("field")
    @classmethod
    def validate_field(cls, v: str) -> str:
        if not _SORT_FIELD_RE.match(v):
            raise ValueError(f"Invalid sort field: {v!r}")
        return v



def _parse_instant(value: str) -> dt.datetime:
    try:
        parsed = isoparse(value)
    except (TypeError, ValueError, OverflowError) as e:
        raise ValueError(f"Invalid datetime: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


def parse_datetime_interval(value: str) -> Tuple[Optional[dt.datetime], Optional[dt.datetime]]:
    """
    Parses an instant (returned as a closed, zero-length interval) or a
    `start/end` interval where either side may be `..` or empty.
    """
    if "/" not in value:
        instant = _parse_instant(value.strip())
        return instant, instant

    parts = value.split("/")
    if len(parts) != 2:
        raise ValueError(f"Invalid datetime interval: {value!r}")
    start_str, end_str = (p.strip() for p in parts)
    start = None if start_str in ("", OPEN_END) else _parse_instant(start_str)
    end = None if end_str in ("", OPEN_END) else _parse_instant(end_str)
    if start is None and end is None:
        raise ValueError("A datetime interval needs at least one bound.")
    if start is not None and end is not None and start > end:
        raise ValueError(f"Datetime interval start is after its end: {value!r}")
    return start, end


class FeatureQueryParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    limit: int = Field(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT)
    offset: int = Field(0, ge=0)
    bbox: Optional[Tuple[float, float, float, float]] = None
    datetime: Optional[str] = None
    properties: Optional[List[str]] = None
    sortby: Optional[List[SortField]] = None
    filter: Optional[Union[str, Dict[str, Any]]] = None
    filter_lang: Optional[str] = Field(None, alias="filter-lang")

    @field_validator("bbox", mode="before")
    @classmethod
    def parse_bbox(cls, v: Any) -> Any:
        if v is None or v == "":
            return None
        if isinstance(v, str):
            try:
                v = [float(p) for p in v.split(",")]
            except ValueError as e:
                raise ValueError("bbox must be four comma-separated numbers.") from e
        values = list(v)
        if len(values) != 4:
            raise ValueError("bbox must have exactly four values: minx,miny,maxx,maxy.")
        if not all(isinstance(x, (int, float)) and not isinstance(x, bool) and math.isfinite(x) for x in values):
            raise ValueError("bbox values must be finite numbers.")
        minx, miny, maxx, maxy = values
        if minx >= maxx or miny >= maxy:
            raise ValueError("bbox minimum values must be lower than maximum values.")
        return tuple(values)

    @field_validator("datetime")
    @classmethod
    def validate_datetime(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        parse_datetime_interval(v)
        return v

    @field_validator("properties", mode="before")
    @classmethod
    def parse_properties(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [p.strip() for p in v.split(",") if p.strip()]
        return v

    @field_validator("sortby", mode="before")
    @classmethod
    def parse_sortby(cls, v: Any) -> Any:
        if v is None or v == "":
            return None
        if not isinstance(v, str):
            return v
        fields = []
        for token in v.split(","):
            token = token.strip()
            if not token:
                continue
            descending = token.startswith("-")
            name = token.lstrip("+-")
            if not _SORT_FIELD_RE.match(name):
                raise ValueError(f"Invalid sort field: {name!r}")
            fields.append(SortField(field=name, descending=descending))
        return fields or None

    @field_validator("filter_lang")
    @classmethod
    def validate_filter_lang(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        if v.lower() not in FILTER_LANGUAGES:
            raise ValueError(f"Unsupported filter-lang: {v!r}")
        return v.lower()

    @model_validator(mode="after")
    def default_filter_lang(self) -> "FeatureQueryParams":
        if self.filter is not None and self.filter_lang is None:
            self.filter_lang = CQL2_JSON if isinstance(self.filter, dict) else CQL2_TEXT
        return self

    def time_range(self) -> Optional[Tuple[Optional[dt.datetime], Optional[dt.datetime]]]:
        return parse_datetime_interval(self.datetime) if self.datetime else None

    @classmethod
    def from_query(cls, **raw: Any) -> "FeatureQueryParams":
        """Validates raw request parameters, reporting problems as BadRequestError."""
        try:
            return cls.model_validate({k: v for k, v in raw.items() if v is not None})
        except ValidationError as e:
            details = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'params'}: {err['msg']}" for err in e.errors()
            )
            raise BadRequestError(f"Invalid query parameters: {details}") from e
