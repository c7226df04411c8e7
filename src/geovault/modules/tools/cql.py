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
CQL2 filter compiler.

CQL2 text (parsed with pygeofilter) and CQL2 JSON are both turned into a small
neutral AST, which is then compiled into a PostGIS predicate string:

    compile_cql2("city = 'Berlin' AND population > 1000")
    # -> (("city" = 'Berlin') AND ("population" > 1000))

Literals are inlined (strings escaped, numbers checked, geometries
re-serialized through shapely) so the predicate can be spliced into a larger
statement. Column names come only from property references and are always
quoted. When the predicate is embedded in a SQLAlchemy `text()` clause, pass it
through `escape_bind_markers` first.
"""

import logging
import math
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Optional, Tuple, Union

import orjson
from dateutil.parser import isoparse
from shapely import wkt as shapely_wkt
from shapely.errors import ShapelyError
from shapely.geometry import mapping, shape

from geovault.models.exceptions import BadRequestError
from geovault.tools.identifiers import quote_identifier, validate_identifier

logger = logging.getLogger(__name__)

DEFAULT_SRID = 4326
DOCUMENT_COLUMN = "properties"
GEOMETRY_COLUMN = "geometry"
OPEN_BOUND = ".."

CQL2_TEXT = "cql2-text"
CQL2_JSON = "cql2-json"
FILTER_LANGUAGES = (CQL2_TEXT, CQL2_JSON)

_PLAIN_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class CqlCompileError(BadRequestError):
    """Raised for filters that cannot be parsed or compiled."""


# --- Neutral AST ---

@dataclass(frozen=True)
class Property:
    name: str


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class DateLiteral:
    value: str


@dataclass(frozen=True)
class TimestampLiteral:
    value: str


@dataclass(frozen=True)
class IntervalLiteral:
    values: Tuple[Any, ...]


@dataclass(frozen=True)
class BBoxLiteral:
    values: Tuple[Any, ...]


@dataclass(frozen=True)
class GeometryLiteral:
    wkt: Optional[str] = None
    geojson: Optional[dict] = None


@dataclass(frozen=True)
class ArrayLiteral:
    items: Tuple[Any, ...]


@dataclass(frozen=True)
class Operation:
    op: str
    args: Tuple[Any, ...]


Node = Union[
    Operation, Property, Literal, DateLiteral, TimestampLiteral,
    IntervalLiteral, BBoxLiteral, GeometryLiteral, ArrayLiteral
]


# --- CQL2 JSON ---

_GEOJSON_TYPES = frozenset({
    "Point", "MultiPoint", "LineString", "MultiLineString",
    "Polygon", "MultiPolygon", "GeometryCollection",
})


def from_cql2_json(expr: Any) -> Node:
    """Maps a decoded CQL2 JSON expression onto the neutral AST."""
    if isinstance(expr, list):
        return ArrayLiteral(tuple(from_cql2_json(e) for e in expr))
    if not isinstance(expr, dict):
        return Literal(expr)

    if "op" in expr:
        args = expr.get("args", [])
        if not isinstance(args, list):
            raise CqlCompileError(f"Operator '{expr['op']}' expects a list of arguments.")
        return Operation(str(expr["op"]).lower(), tuple(from_cql2_json(a) for a in args))
    if "function" in expr:
        function = expr["function"] or {}
        return Operation(str(function.get("name", "")).lower(), tuple(from_cql2_json(a) for a in function.get("args", [])))
    if "property" in expr:
        return Property(str(expr["property"]))
    if "date" in expr:
        return DateLiteral(str(expr["date"]))
    if "timestamp" in expr:
        return TimestampLiteral(str(expr["timestamp"]))
    if "interval" in expr:
        values = expr["interval"]
        if not isinstance(values, list):
            raise CqlCompileError("An interval must be a list of two instants.")
        return IntervalLiteral(tuple(
            from_cql2_json(v) if isinstance(v, dict) else v for v in values
        ))
    if "bbox" in expr:
        values = expr["bbox"]
        if not isinstance(values, list):
            raise CqlCompileError("A bbox must be a list of numbers.")
        return BBoxLiteral(tuple(values))
    if expr.get("type") in _GEOJSON_TYPES:
        return GeometryLiteral(geojson=expr)
    raise CqlCompileError(f"Unsupported CQL2 JSON expression: {sorted(expr.keys())}")


def parse_cql2_json(value: Union[str, bytes, dict]) -> Node:
    if isinstance(value, (str, bytes)):
        try:
            value = orjson.loads(value)
        except orjson.JSONDecodeError as e:
            raise CqlCompileError(f"Invalid CQL2 JSON: {e}") from e
    return from_cql2_json(value)


# --- CQL2 text (pygeofilter) ---

# pygeofilter AST class name -> neutral operator name.
_PYGEOFILTER_BINARY = {
    "Equal": "=", "NotEqual": "<>",
    "LessThan": "<", "LessEqual": "<=",
    "GreaterThan": ">", "GreaterEqual": ">=",
    "Add": "+", "Sub": "-", "Mul": "*", "Div": "/",
    "GeometryIntersects": "s_intersects", "GeometryDisjoint": "s_disjoint",
    "GeometryContains": "s_contains", "GeometryWithin": "s_within",
    "GeometryTouches": "s_touches", "GeometryCrosses": "s_crosses",
    "GeometryOverlaps": "s_overlaps", "GeometryEquals": "s_equals",
    "TimeOverlaps": "t_intersects",
    "TimeBefore": "t_before", "TimeAfter": "t_after",
    "TimeMeets": "t_meets", "TimeMetBy": "t_metby",
    "TimeOverlappedBy": "t_overlappedby", "TimeBegins": "t_starts",
    "TimeBegunBy": "t_startedby", "TimeDuring": "t_during",
    "TimeContains": "t_contains", "TimeEnds": "t_finishes",
    "TimeEndedBy": "t_finishedby", "TimeEquals": "t_equals",
    "ArrayEquals": "a_equals", "ArrayContains": "a_contains",
    "ArrayContainedBy": "a_containedby", "ArrayOverlaps": "a_overlaps",
}


def _negate(node: Node, negated: bool) -> Node:
    return Operation("not", (node,)) if negated else node


def from_pygeofilter(node: Any) -> Node:
    """Maps a pygeofilter AST node (or value) onto the neutral AST."""
    if node is None or isinstance(node, (bool, int, float, Decimal, str)):
        return Literal(node)
    if isinstance(node, datetime):
        return TimestampLiteral(node.isoformat())
    if isinstance(node, date):
        return DateLiteral(node.isoformat())
    if isinstance(node, (list, tuple)):
        return ArrayLiteral(tuple(from_pygeofilter(n) for n in node))

    name = type(node).__name__

    if name in _PYGEOFILTER_BINARY:
        return Operation(_PYGEOFILTER_BINARY[name], (from_pygeofilter(node.lhs), from_pygeofilter(node.rhs)))
    if name == "And":
        return Operation("and", (from_pygeofilter(node.lhs), from_pygeofilter(node.rhs)))
    if name == "Or":
        return Operation("or", (from_pygeofilter(node.lhs), from_pygeofilter(node.rhs)))
    if name == "Not":
        return Operation("not", (from_pygeofilter(node.sub_node),))
    if name == "Attribute":
        return Property(node.name)
    if name == "Like":
        op = "ilike" if getattr(node, "nocase", False) else "like"
        like = Operation(op, (from_pygeofilter(node.lhs), Literal(node.pattern)))
        return _negate(like, getattr(node, "not_", False))
    if name == "Between":
        between = Operation("between", (
            from_pygeofilter(node.lhs), from_pygeofilter(node.low), from_pygeofilter(node.high)
        ))
        return _negate(between, getattr(node, "not_", False))
    if name == "In":
        in_op = Operation("in", (from_pygeofilter(node.lhs),) + tuple(from_pygeofilter(n) for n in node.sub_nodes))
        return _negate(in_op, getattr(node, "not_", False))
    if name == "IsNull":
        return _negate(Operation("isnull", (from_pygeofilter(node.lhs),)), getattr(node, "not_", False))
    if name in ("DistanceWithin", "DistanceBeyond"):
        dwithin = Operation("s_dwithin", (
            from_pygeofilter(node.lhs), from_pygeofilter(node.rhs), Literal(node.distance)
        ))
        return _negate(dwithin, name == "DistanceBeyond")
    if name == "BBox":
        return Operation("s_intersects", (
            from_pygeofilter(node.lhs),
            BBoxLiteral((node.minx, node.miny, node.maxx, node.maxy)),
        ))
    if name == "Function":
        return Operation(str(node.name).lower(), tuple(from_pygeofilter(a) for a in node.arguments))
    if name == "Geometry":
        try:
            return GeometryLiteral(wkt=shape(node.geometry).wkt)
        except (ShapelyError, ValueError, TypeError, AttributeError) as e:
            raise CqlCompileError(f"Invalid geometry literal: {e}") from e
    if name == "Envelope":
        return BBoxLiteral((node.x1, node.y1, node.x2, node.y2))
    if name == "Interval":
        return IntervalLiteral((
            _interval_bound(node.start), _interval_bound(node.end)
        ))

    raise CqlCompileError(f"Unsupported filter construct: {name}")


def _interval_bound(value: Any) -> Any:
    if value is None:
        return OPEN_BOUND
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, str):
        return value
    raise CqlCompileError(f"Unsupported interval bound: {value!r}")


def parse_cql2_text(text: str) -> Node:
    from pygeofilter.parsers.cql2_text import parse

    try:
        parsed = parse(text)
    except Exception as e:
        raise CqlCompileError(f"Invalid CQL2 text filter: {e}") from e
    return from_pygeofilter(parsed)


# --- Compiler ---

_BINARY_OPERATORS = {
    "=": "=", "eq": "=",
    "<>": "<>", "!=": "<>", "neq": "<>",
    "<": "<", "lt": "<",
    "<=": "<=", "lte": "<=",
    ">": ">", "gt": ">",
    ">=": ">=", "gte": ">=",
    "+": "+", "-": "-", "*": "*", "/": "/", "%": "%",
    "like": "LIKE", "ilike": "ILIKE",
}

_SPATIAL_FUNCTIONS = {
    "s_intersects": "ST_Intersects",
    "s_contains": "ST_Contains",
    "s_within": "ST_Within",
    "s_crosses": "ST_Crosses",
    "s_overlaps": "ST_Overlaps",
    "s_touches": "ST_Touches",
    "s_disjoint": "ST_Disjoint",
    "s_equals": "ST_Equals",
}

_RANGE_OPERATORS = {
    "t_intersects": "&&",
    "a_contains": "@>",
    "a_containedby": "<@",
    "a_overlaps": "&&",
    "a_equals": "=",
}


def _is_document_path(name: str) -> bool:
    root, _, path = name.partition(".")
    return root == DOCUMENT_COLUMN and bool(path) and all(path.split("."))


def _literal_type(node: Any) -> Optional[str]:
    if isinstance(node, Literal):
        value = node.value
        if isinstance(value, bool):
            return "boolean"
        if isinstance(value, (int, float, Decimal)):
            return "numeric"
        if isinstance(value, datetime):
            return "timestamp"
        if isinstance(value, date):
            return "date"
        return None
    if isinstance(node, TimestampLiteral):
        return "timestamp"
    if isinstance(node, DateLiteral):
        return "date"
    return None


def quote_literal(value: Any) -> str:
    return "'" + str(value).replace("'", "''") + "'"


class FilterCompiler:
    """
    Compiles a neutral AST into a predicate string.

    `alias` prefixes every column reference; `srid` is the SRID given to
    geometry and bbox literals.
    """

    def __init__(self, alias: Optional[str] = None, srid: int = DEFAULT_SRID):
        if alias:
            if not _PLAIN_IDENTIFIER_RE.match(alias):
                alias = quote_identifier(validate_identifier(alias, "table alias"))
            self.prefix = f"{alias}."
        else:
            self.prefix = ""
        self.srid = int(srid)

    def compile(self, node: Node) -> str:
        if isinstance(node, Operation):
            return self._operation(node)
        if isinstance(node, Property):
            return self._property(node.name)
        if isinstance(node, Literal):
            return self._literal(node.value)
        if isinstance(node, DateLiteral):
            return f"DATE {self._quote(self._parse_date(node.value))}"
        if isinstance(node, TimestampLiteral):
            return f"TIMESTAMP {self._quote(self._parse_timestamp(node.value))}"
        if isinstance(node, IntervalLiteral):
            return self._interval(node.values)
        if isinstance(node, BBoxLiteral):
            return self._bbox(node.values)
        if isinstance(node, GeometryLiteral):
            return self._geometry(node)
        if isinstance(node, ArrayLiteral):
            return f"ARRAY[{', '.join(self.compile(i) for i in node.items)}]"
        raise CqlCompileError(f"Unsupported filter node: {type(node).__name__}")

    # Operations

    @staticmethod
    def _expect(op: str, args: Tuple[Any, ...], count: int) -> None:
        if len(args) != count:
            raise CqlCompileError(f"Operator '{op}' expects {count} argument(s), got {len(args)}.")

    def _operation(self, node: Operation) -> str:
        op, args = node.op.lower(), node.args

        if op in ("and", "or"):
            if not args:
                raise CqlCompileError(f"Operator '{op}' expects at least 1 argument, got 0.")
            return "(" + f" {op.upper()} ".join(self.compile(a) for a in args) + ")"

        if op == "not":
            self._expect(op, args, 1)
            return f"NOT ({self.compile(args[0])})"

        if op in _BINARY_OPERATORS:
            self._expect(op, args, 2)
            if op in ("like", "ilike"):
                left, right = self.compile(args[0]), self.compile(args[1])
            else:
                left, right = self._typed_operands(args)
            return f"({left} {_BINARY_OPERATORS[op]} {right})"

        if op == "between":
            self._expect(op, args, 3)
            value, lower, upper = self._typed_operands(args)
            return f"({value} BETWEEN {lower} AND {upper})"

        if op == "in":
            if len(args) < 2:
                raise CqlCompileError(f"Operator 'in' expects at least 2 arguments, got {len(args)}.")
            candidates = args[1:]
            if len(candidates) == 1 and isinstance(candidates[0], ArrayLiteral):
                candidates = candidates[0].items
            if not candidates:
                raise CqlCompileError("Operator 'in' expects a non-empty list of values.")
            value, *compiled = self._typed_operands((args[0],) + tuple(candidates))
            return f"({value} IN ({', '.join(compiled)}))"

        if op == "isnull":
            self._expect(op, args, 1)
            return f"({self.compile(args[0])} IS NULL)"

        if op in _SPATIAL_FUNCTIONS:
            self._expect(op, args, 2)
            return f"{_SPATIAL_FUNCTIONS[op]}({self.compile(args[0])}, {self.compile(args[1])})"

        if op == "s_dwithin":
            self._expect(op, args, 3)
            return f"ST_DWithin({', '.join(self.compile(a) for a in args)})"

        if op in _RANGE_OPERATORS:
            self._expect(op, args, 2)
            return f"({self.compile(args[0])} {_RANGE_OPERATORS[op]} {self.compile(args[1])})"

        # Anything else is passed through as a backend function call.
        if not _PLAIN_IDENTIFIER_RE.match(op):
            raise CqlCompileError(f"Unsupported operator: {node.op!r}")
        return f"{op.upper()}({', '.join(self.compile(a) for a in args)})"

    # Properties

    def _typed_operands(self, args: Tuple[Any, ...]) -> List[str]:
        """
        Compiles comparison operands. Document paths yield text, so they are
        cast to the type of the first typed literal they are compared with.
        """
        cast = next((c for c in map(_literal_type, args) if c), None)
        compiled = []
        for arg in args:
            sql = self.compile(arg)
            if cast and isinstance(arg, Property) and _is_document_path(arg.name):
                sql = f"({sql})::{cast}"
            compiled.append(sql)
        return compiled

    def _property(self, name: str) -> str:
        if not name:
            raise CqlCompileError("Empty property name.")
        if "." in name:
            root, *path = name.split(".")
            if root == DOCUMENT_COLUMN and path and all(path):
                accessors = [f"->{self._quote(p)}" for p in path[:-1]]
                accessors.append(f"->>{self._quote(path[-1])}")
                return f"{self.prefix}{DOCUMENT_COLUMN}{''.join(accessors)}"
            return f"{self.prefix}{quote_identifier(root)}"
        if name == GEOMETRY_COLUMN:
            return f"{self.prefix}{GEOMETRY_COLUMN}"
        return f"{self.prefix}{quote_identifier(name)}"

    # Literals

    @staticmethod
    def _quote(value: str) -> str:
        return quote_literal(value)

    @staticmethod
    def _number(value: Any) -> str:
        if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
            raise CqlCompileError(f"Expected a number, got {value!r}.")
        if isinstance(value, float) and not math.isfinite(value):
            raise CqlCompileError(f"Non-finite number in filter: {value!r}.")
        if isinstance(value, Decimal) and not value.is_finite():
            raise CqlCompileError(f"Non-finite number in filter: {value!r}.")
        return str(value)

    def _literal(self, value: Any) -> str:
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            return "TRUE" if value else "FALSE"
        if isinstance(value, (int, float, Decimal)):
            return self._number(value)
        if isinstance(value, str):
            return self._quote(value)
        if isinstance(value, datetime):
            return f"TIMESTAMP {self._quote(value.isoformat())}"
        if isinstance(value, date):
            return f"DATE {self._quote(value.isoformat())}"
        raise CqlCompileError(f"Unsupported literal: {value!r}")

    @staticmethod
    def _parse_date(value: str) -> str:
        try:
            return date.fromisoformat(value).isoformat()
        except (TypeError, ValueError) as e:
            raise CqlCompileError(f"Invalid date literal: {value!r}") from e

    @staticmethod
    def _parse_timestamp(value: str) -> str:
        try:
            return isoparse(value).isoformat()
        except (TypeError, ValueError, OverflowError) as e:
            raise CqlCompileError(f"Invalid timestamp literal: {value!r}") from e

    def _interval(self, values: Tuple[Any, ...]) -> str:
        if len(values) != 2:
            raise CqlCompileError(f"An interval expects exactly 2 elements, got {len(values)}.")
        bounds = []
        for v in values:
            if v is None or v == OPEN_BOUND:
                bounds.append("NULL")
            elif isinstance(v, (DateLiteral, TimestampLiteral)):
                bounds.append(self._quote(self._parse_timestamp(v.value)))
            elif isinstance(v, (Property, Operation)):
                bounds.append(self.compile(v))
            elif isinstance(v, str):
                bounds.append(self._quote(self._parse_timestamp(v)))
            else:
                raise CqlCompileError(f"Invalid interval bound: {v!r}")
        return f"TSTZRANGE({bounds[0]}, {bounds[1]})"

    def _bbox(self, values: Tuple[Any, ...]) -> str:
        if len(values) not in (4, 6):
            raise CqlCompileError(f"A bbox expects 4 or 6 numbers, got {len(values)}.")
        numbers = [self._number(v) for v in values]
        if len(numbers) == 6:
            minx, miny, maxx, maxy = numbers[0], numbers[1], numbers[3], numbers[4]
        else:
            minx, miny, maxx, maxy = numbers
        return f"ST_MakeEnvelope({minx}, {miny}, {maxx}, {maxy}, {self.srid})"

    def _geometry(self, node: GeometryLiteral) -> str:
        if node.wkt is not None:
            try:
                normalized = shapely_wkt.loads(node.wkt).wkt
            except (ShapelyError, ValueError, TypeError) as e:
                raise CqlCompileError(f"Invalid WKT geometry: {e}") from e
            return f"ST_GeomFromText({self._quote(normalized)}, {self.srid})"

        if node.geojson is not None:
            try:
                normalized = orjson.dumps(mapping(shape(node.geojson))).decode("utf-8")
            except (ShapelyError, ValueError, TypeError, KeyError, AttributeError) as e:
                raise CqlCompileError(f"Invalid GeoJSON geometry: {e}") from e
            sql = f"ST_GeomFromGeoJSON({self._quote(normalized)})"
            if self.srid != DEFAULT_SRID:
                sql = f"ST_SetSRID({sql}, {self.srid})"
            return sql

        raise CqlCompileError("Empty geometry literal.")


def compile_filter(node: Node, alias: Optional[str] = None, srid: int = DEFAULT_SRID) -> str:
    return FilterCompiler(alias=alias, srid=srid).compile(node)


def parse_filter(value: Union[str, bytes, dict], filter_lang: Optional[str] = None) -> Node:
    """Parses a filter in `filter_lang` (default cql2-text; dicts are always JSON)."""
    lang = (filter_lang or CQL2_TEXT).lower()
    if lang not in FILTER_LANGUAGES:
        raise CqlCompileError(f"Unsupported filter-lang: {filter_lang!r}")
    if lang == CQL2_JSON or isinstance(value, dict):
        return parse_cql2_json(value)
    if not isinstance(value, str) or not value.strip():
        raise CqlCompileError("Empty filter.")
    return parse_cql2_text(value)


def compile_cql2(
    value: Union[str, bytes, dict],
    filter_lang: Optional[str] = None,
    alias: Optional[str] = None,
    srid: int = DEFAULT_SRID,
) -> str:
    """Parses and compiles a CQL2 filter into a predicate string."""
    sql = compile_filter(parse_filter(value, filter_lang), alias=alias, srid=srid)
    logger.debug(f"Compiled filter: {sql}")
    return sql


def escape_bind_markers(sql: str) -> str:
    """Escapes colons so that `text()` does not read inlined literals as bind parameters."""
    return sql.replace(":", "\\:")
