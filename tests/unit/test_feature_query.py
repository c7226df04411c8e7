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

import datetime as dt

import pytest
from pydantic import ValidationError

from geovault.models.exceptions import BadRequestError
from geovault.modules.catalog.feature_query import (
    MAX_LIMIT,
    FeatureQueryParams,
    SortField,
    parse_datetime_interval,
)

UTC = dt.timezone.utc


def test_defaults():
    params = FeatureQueryParams()
    assert params.limit == 10
    assert params.offset == 0
    assert params.bbox is None
    assert params.time_range() is None


@pytest.mark.parametrize("limit", [0, MAX_LIMIT + 1, -1])
def test_limit_bounds(limit):
    with pytest.raises(BadRequestError):
        FeatureQueryParams.from_query(limit=limit)


def test_negative_offset():
    with pytest.raises(BadRequestError):
        FeatureQueryParams.from_query(offset=-1)


def test_bbox_from_query_string():
    assert FeatureQueryParams.from_query(bbox="0,1,10,11").bbox == (0.0, 1.0, 10.0, 11.0)


@pytest.mark.parametrize("bbox", ["0,0,10", "a,b,c,d", "10,0,0,10", "0,10,10,0", "0,0,inf,10", "0,0,nan,10"])
def test_invalid_bbox(bbox):
    with pytest.raises(BadRequestError):
        FeatureQueryParams.from_query(bbox=bbox)


def test_instant_datetime():
    start, end = parse_datetime_interval("2020-01-01T00:00:00Z")
    assert start == end == dt.datetime(2020, 1, 1, tzinfo=UTC)


def test_naive_datetime_is_utc():
    start, _ = parse_datetime_interval("2020-01-01T12:00:00")
    assert start.tzinfo == UTC


def test_open_intervals():
    assert parse_datetime_interval("../2020-01-01T00:00:00Z") == (None, dt.datetime(2020, 1, 1, tzinfo=UTC))
    assert parse_datetime_interval("2020-01-01T00:00:00Z/") == (dt.datetime(2020, 1, 1, tzinfo=UTC), None)


@pytest.mark.parametrize("value", ["../..", "/", "2021-01-01/2020-01-01", "not-a-date", "a/b/c"])
def test_invalid_datetime(value):
    with pytest.raises(BadRequestError):
        FeatureQueryParams.from_query(datetime=value)


def test_time_range():
    params = FeatureQueryParams.from_query(datetime="2020-01-01T00:00:00Z/2020-12-31T00:00:00Z")
    assert params.time_range() == (dt.datetime(2020, 1, 1, tzinfo=UTC), dt.datetime(2020, 12, 31, tzinfo=UTC))


def test_sortby_directions():
    params = FeatureQueryParams.from_query(sortby="-name,+pop,id")
    assert [(s.field, s.descending) for s in params.sortby] == [("name", True), ("pop", False), ("id", False)]


def test_sortby_rejects_unsafe_fields():
    with pytest.raises(BadRequestError):
        FeatureQueryParams.from_query(sortby="name;drop")


def test_properties_list():
    assert FeatureQueryParams.from_query(properties="name, pop").properties == ["name", "pop"]


def test_filter_lang_defaults_from_filter_type():
    assert FeatureQueryParams.from_query(filter="a = 1").filter_lang == "cql2-text"
    assert FeatureQueryParams.from_query(filter={"op": "=", "args": [{"property": "a"}, 1]}).filter_lang == "cql2-json"


def test_filter_lang_alias_and_validation():
    assert FeatureQueryParams.from_query(**{"filter": "a = 1", "filter-lang": "CQL2-TEXT"}).filter_lang == "cql2-text"
    with pytest.raises(BadRequestError):
        FeatureQueryParams.from_query(**{"filter": "a = 1", "filter-lang": "sql"})


@pytest.mark.parametrize("sortby", [
    [{"field": "x' || pg_sleep(10) || '"}],
    [{"field": "name", "descending": True}, {"field": "name desc"}],
])
def test_sortby_objects_are_validated(sortby):
    with pytest.raises(BadRequestError):
        FeatureQueryParams.from_query(sortby=sortby)


def test_sort_field_rejects_unsafe_names():
    with pytest.raises(ValidationError):
        SortField(field="name'--")
