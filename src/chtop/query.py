"""
Query templates and the row decoding contract.

A QueryTemplate pairs query text with an explicit mapping from result
columns to semantic fields. Every view decodes the same raw row shape
(a column-name mapping) through its own template, producing Rows tagged
with the template name.

Templates are immutable and owned by the view that declares them; the
engine only reads them. A malformed declaration raises TemplateError at
construction time.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping

from chtop.errors import RowDecodeError, TemplateError
from chtop.types import HostId, Row

Converter = Callable[[Any], Any]

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def to_micros(value: datetime) -> int:
    """Exact microseconds since the Unix epoch (naive values are local time)."""
    if value.tzinfo is None:
        value = value.astimezone()
    return (value - _EPOCH) // timedelta(microseconds=1)


def to_int(value: Any) -> int:
    """Convert a server value to int (64-bit integers may arrive quoted)."""
    if value is None:
        return 0
    return int(value)


def to_float(value: Any) -> float:
    if value is None:
        return 0.0
    return float(value)


def to_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() in ("1", "true")
    return bool(value)


def to_counters(value: Any) -> dict[str, int]:
    """Convert a Map(String, UInt64) value to a dict of ints."""
    if not value:
        return {}
    return {str(k): int(v) for k, v in dict(value).items()}


@dataclass(frozen=True)
class Column:
    """
    One entry of a decoding contract.

    Attributes:
        name: Column name as returned by the server
        field: Semantic field name on the Row (defaults to name)
        convert: Conversion applied to the raw value (identity if None)
    """

    name: str
    field: str = ""
    convert: Converter | None = None

    @property
    def field_name(self) -> str:
        return self.field or self.name


@dataclass(frozen=True)
class QueryTemplate:
    """
    Parameterized query plus its decoding contract.

    Attributes:
        name: Unique template name, also used as the view/series name
        sql: Query text with {name:Type} placeholders
        columns: Decoding contract, in display order
        key: Semantic field holding the per-host native identifier
        rate_fields: Numeric fields (or counter-map entries written as
            "field.entry") that get a derived per-second rate
        windowed: True if the query reads {start_us:Int64}/{end_us:Int64}
        order_by: Default ordering field for views (descending)
        title: Display title

    Example:
        QueryTemplate(
            name="merges",
            sql="SELECT database, table, result_part_name, elapsed FROM system.merges",
            columns=(
                Column("result_part_name", "part"),
                Column("elapsed", convert=to_float),
            ),
            key="part",
        )
    """

    name: str
    sql: str
    columns: tuple[Column, ...]
    key: str
    rate_fields: tuple[str, ...] = ()
    windowed: bool = False
    order_by: str | None = None
    title: str = ""
    field_names: tuple[str, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.name:
            raise TemplateError("Template name must not be empty")
        if not self.columns:
            raise TemplateError(f"Template {self.name} declares no columns")

        names = tuple(c.field_name for c in self.columns)
        if len(set(names)) != len(names):
            raise TemplateError(f"Template {self.name} declares duplicate fields")
        object.__setattr__(self, "field_names", names)

        if self.key not in names:
            raise TemplateError(f"Template {self.name}: key '{self.key}' is not a declared field")
        for rate_field in self.rate_fields:
            if rate_field.split(".", 1)[0] not in names:
                raise TemplateError(
                    f"Template {self.name}: rate field '{rate_field}' is not a declared field"
                )
        if self.order_by is not None and self.order_by not in names:
            raise TemplateError(
                f"Template {self.name}: order_by '{self.order_by}' is not a declared field"
            )

    def decode(self, host_id: HostId, raw: Mapping[str, Any]) -> Row:
        """
        Decode one raw row through the contract.

        Args:
            host_id: Host the row came from
            raw: Column name to raw value mapping

        Returns:
            Row tagged with this template's name.

        Raises:
            RowDecodeError: If a declared column is missing or fails conversion.
        """
        fields: dict[str, Any] = {}
        for column in self.columns:
            if column.name not in raw:
                raise RowDecodeError(self.name, column.name, "column missing from result")
            value = raw[column.name]
            if column.convert is not None:
                try:
                    value = column.convert(value)
                except (TypeError, ValueError) as e:
                    raise RowDecodeError(self.name, column.name, str(e)) from e
            fields[column.field_name] = value

        return Row(
            template=self.name,
            host_id=host_id,
            native_id=str(fields[self.key]),
            fields=fields,
        )

    def parameters(
        self,
        start: datetime,
        end: datetime,
        extra: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Build query parameters for a resolved time window.

        Window bounds are bound as microsecond Unix timestamps so that the
        server timezone does not matter.
        """
        params: dict[str, Any] = {}
        if self.windowed:
            params["start_us"] = to_micros(start)
            params["end_us"] = to_micros(end)
        if extra:
            params.update(extra)
        return params


def rate_value(row: Row, rate_field: str) -> float | None:
    """
    Read the numeric value behind a rate field.

    "field" reads a plain numeric field; "field.entry" reads one entry of a
    counter map (a missing entry counts as 0).
    """
    if "." in rate_field:
        name, entry = rate_field.split(".", 1)
        counters = row.fields.get(name)
        if not isinstance(counters, Mapping):
            return None
        return float(counters.get(entry, 0))
    value = row.fields.get(rate_field)
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
