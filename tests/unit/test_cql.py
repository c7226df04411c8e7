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

import pytest

from geovault.models.exceptions import BadRequestError
from geovault.modules.tools.cql import (
    CQL2_JSON,
    CQL2_TEXT,
    CqlCompileError,
    Literal,
    Operation,
    Property,
    compile_cql2,
    compile_filter,
    escape_bind_markers,
    parse_filter,
)


def cql_json(expr, **kwargs):
    return compile_cql2(expr, CQL2_JSON, **kwargs)


def prop(name):
    return {"property": name}


class TestComparisons:

    def test_equality_with_string(self):
        assert cql_json({"op": "=", "args": [prop("name"), "Rome"]}) == "(\"name\" = 'Rome')"

    def test_alias_prefixes_columns(self):
        assert cql_json({"op": "=", "args": [prop("name"), "Rome"]}, alias="t") == "(t.\"name\" = 'Rome')"

    def test_non_plain_alias_is_quoted(self):
        sql = cql_json({"op": "=", "args": [prop("name"), 1]}, alias="my-alias")
        assert sql == '("my-alias"."name" = 1)'

    def test_operators_are_case_insensitive(self):
        assert cql_json({"op": "isNull", "args": [prop("code")]}) == '("code" IS NULL)'

    def test_logical_combination(self):
        expr = {"op": "and", "args": [
            {"op": ">", "args": [prop("pop"), 1000]},
            {"op": "not", "args": [{"op": "isNull", "args": [prop("code")]}]},
        ]}
        assert cql_json(expr) == '(("pop" > 1000) AND NOT (("code" IS NULL)))'

    def test_between_and_in(self):
        assert cql_json({"op": "between", "args": [prop("pop"), 1, 10]}) == '("pop" BETWEEN 1 AND 10)'
        assert cql_json({"op": "in", "args": [prop("code"), ["a", "b"]]}) == "(\"code\" IN ('a', 'b'))"

    def test_like(self):
        assert cql_json({"op": "like", "args": [prop("name"), "Ro%"]}) == "(\"name\" LIKE 'Ro%')"

    def test_literals(self):
        assert cql_json({"op": "=", "args": [prop("flag"), True]}) == '("flag" = TRUE)'
        assert cql_json({"op": "=", "args": [prop("v"), None]}) == '("v" = NULL)'
        assert cql_json({"op": "=", "args": [prop("v"), 1.5]}) == '("v" = 1.5)'

    def test_string_quotes_are_escaped(self):
        sql = cql_json({"op": "=", "args": [prop("name"), "O'Brien'; DROP TABLE x; --"]})
        assert sql == "(\"name\" = 'O''Brien''; DROP TABLE x; --')"

    def test_property_quotes_are_escaped(self):
        assert compile_filter(Property('we"ird')) == '"we""ird"'


class TestProperties:

    def test_document_path(self):
        sql = cql_json({"op": "=", "args": [prop("properties.address.city"), "Rome"]}, alias="t")
        assert sql == "(t.properties->'address'->>'city' = 'Rome')"

    def test_document_path_is_cast_for_typed_literals(self):
        assert cql_json({"op": ">", "args": [prop("properties.pop"), 1000000]}, alias="t") == \
            "((t.properties->>'pop')::numeric > 1000000)"
        assert cql_json({"op": "=", "args": [prop("properties.open"), True]}) == \
            "((properties->>'open')::boolean = TRUE)"
        assert cql_json({"op": "between", "args": [prop("properties.pop"), 1, 10]}) == \
            "((properties->>'pop')::numeric BETWEEN 1 AND 10)"
        assert cql_json({"op": "in", "args": [prop("properties.code"), [1, 2]]}) == \
            "((properties->>'code')::numeric IN (1, 2))"
        assert cql_json({"op": "<", "args": [prop("properties.day"), {"date": "2020-01-31"}]}) == \
            "((properties->>'day')::date < DATE '2020-01-31')"

    def test_document_path_stays_text_for_strings_and_columns(self):
        assert cql_json({"op": "=", "args": [prop("properties.type"), "city"]}) == \
            "(properties->>'type' = 'city')"
        assert cql_json({"op": "like", "args": [prop("properties.type"), "ci%"]}) == \
            "(properties->>'type' LIKE 'ci%')"
        assert cql_json({"op": ">", "args": [prop("pop"), 5]}) == '("pop" > 5)'

    def test_geometry_column_is_bare(self):
        assert compile_filter(Property("geometry"), alias="t") == "t.geometry"


class TestTemporal:

    def test_date_literal(self):
        assert cql_json({"op": "=", "args": [prop("day"), {"date": "2020-01-31"}]}) == "(\"day\" = DATE '2020-01-31')"

    def test_invalid_date_literal(self):
        with pytest.raises(CqlCompileError):
            cql_json({"op": "=", "args": [prop("day"), {"date": "2020-02-31"}]})

    def test_timestamp_literal_is_normalized(self):
        sql = cql_json({"op": ">", "args": [prop("ts"), {"timestamp": "2020-01-01T00:00:00Z"}]})
        assert sql == "(\"ts\" > TIMESTAMP '2020-01-01T00:00:00+00:00')"

    def test_open_interval(self):
        sql = cql_json({"op": "t_intersects", "args": [prop("period"), {"interval": ["2020-01-01", ".."]}]})
        assert sql == "(\"period\" && TSTZRANGE('2020-01-01T00:00:00', NULL))"

    def test_interval_needs_two_bounds(self):
        with pytest.raises(CqlCompileError):
            cql_json({"op": "t_intersects", "args": [prop("period"), {"interval": ["2020-01-01"]}]})


class TestSpatial:

    def test_bbox(self):
        sql = cql_json({"op": "s_intersects", "args": [prop("geometry"), {"bbox": [0, 0, 10, 10]}]})
        assert sql == "ST_Intersects(geometry, ST_MakeEnvelope(0, 0, 10, 10, 4326))"

    def test_bbox_uses_storage_srid(self):
        sql = cql_json({"op": "s_intersects", "args": [prop("geometry"), {"bbox": [0, 0, 10, 10]}]}, srid=3857)
        assert sql.endswith("ST_MakeEnvelope(0, 0, 10, 10, 3857))")

    def test_six_value_bbox_drops_z(self):
        sql = cql_json({"op": "s_intersects", "args": [prop("geometry"), {"bbox": [0, 0, -5, 10, 10, 5]}]})
        assert sql == "ST_Intersects(geometry, ST_MakeEnvelope(0, 0, 10, 10, 4326))"

    def test_geojson_literal(self):
        sql = cql_json({"op": "s_within", "args": [prop("geometry"), {"type": "Point", "coordinates": [1, 2]}]})
        assert sql.startswith("ST_Within(geometry, ST_GeomFromGeoJSON('")
        assert '"Point"' in sql

    def test_geojson_literal_with_other_srid(self):
        sql = cql_json({"op": "s_within", "args": [prop("geometry"), {"type": "Point", "coordinates": [1, 2]}]},
                       srid=3857)
        assert "ST_SetSRID(ST_GeomFromGeoJSON(" in sql
        assert sql.endswith(", 3857))")

    def test_invalid_geojson(self):
        with pytest.raises(CqlCompileError):
            cql_json({"op": "s_within", "args": [prop("geometry"), {"type": "Polygon"}]})

    def test_dwithin(self):
        sql = cql_json({"op": "s_dwithin", "args": [prop("geometry"), {"bbox": [0, 0, 1, 1]}, 100]})
        assert sql == "ST_DWithin(geometry, ST_MakeEnvelope(0, 0, 1, 1, 4326), 100)"


class TestFunctionsAndErrors:

    def test_function_call(self):
        sql = cql_json({"op": "=", "args": [{"function": {"name": "upper", "args": [prop("name")]}}, "ROME"]})
        assert sql == "(UPPER(\"name\") = 'ROME')"

    def test_unknown_operator_must_be_plain(self):
        with pytest.raises(CqlCompileError):
            cql_json({"op": "pg_sleep(10); --", "args": []})

    def test_arity(self):
        with pytest.raises(CqlCompileError):
            cql_json({"op": "not", "args": []})
        with pytest.raises(CqlCompileError):
            cql_json({"op": "=", "args": [prop("a")]})

    def test_non_finite_numbers(self):
        with pytest.raises(CqlCompileError):
            compile_filter(Operation("=", (Property("a"), Literal(float("nan")))))
        with pytest.raises(CqlCompileError):
            compile_filter(Operation("=", (Property("a"), Literal(float("inf")))))

    def test_compile_error_is_bad_request(self):
        with pytest.raises(BadRequestError):
            cql_json({"op": "and", "args": []})

    def test_invalid_json(self):
        with pytest.raises(CqlCompileError):
            compile_cql2("{not json", CQL2_JSON)

    def test_unsupported_language(self):
        with pytest.raises(CqlCompileError):
            parse_filter("a = 1", "sql")

    def test_dict_input_is_always_json(self):
        node = parse_filter({"op": "=", "args": [prop("a"), 1]}, CQL2_TEXT)
        assert node == Operation("=", (Property("a"), Literal(1)))

    def test_escape_bind_markers(self):
        assert escape_bind_markers("TIMESTAMP '10:00'") == "TIMESTAMP '10\\:00'"


class TestCql2Text:

    def test_comparison_and_logic(self):
        sql = compile_cql2("name = 'Rome' AND pop > 1000", CQL2_TEXT)
        assert sql == "((\"name\" = 'Rome') AND (\"pop\" > 1000))"

    def test_spatial_predicate_with_wkt(self):
        sql = compile_cql2("S_INTERSECTS(geometry, POINT(1 2))", CQL2_TEXT, alias="t")
        assert sql == "ST_Intersects(t.geometry, ST_GeomFromText('POINT (1 2)', 4326))"

    def test_invalid_text(self):
        with pytest.raises(CqlCompileError):
            compile_cql2("name = = 'x'", CQL2_TEXT)

    def test_empty_text(self):
        with pytest.raises(CqlCompileError):
            compile_cql2("   ", CQL2_TEXT)
