from __future__ import annotations

import operator as op
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

from metricbridge.packages.federation.errors import ValidationError
from metricbridge.packages.federation.models.catalog import DataType
from metricbridge.packages.federation.models.plans import Operator, Predicate, Scalar
from metricbridge.packages.federation.table.columnar import parse_string

DOUBLE_EPSILON = 1e-6

_NATIVE: dict[Operator, Callable[[Any, Any], bool]] = {
    Operator.EQ: op.eq,
    Operator.NEQ: op.ne,
    Operator.GT: op.gt,
    Operator.GTE: op.ge,
    Operator.LT: op.lt,
    Operator.LTE: op.le,
}


@dataclass(frozen=True, slots=True)
class BoundPredicate:
    """A predicate whose literal has been converted to the column's data type."""

    column: str
    operator: Operator
    data_type: DataType
    value: Any

    def matches(self, cell: Any) -> bool:
        return compare(self.data_type, self.operator, cell, self.value)


def bind_predicate(predicate: Predicate, data_type: DataType, *, column: str | None = None) -> BoundPredicate:
    target = column or predicate.column
    if predicate.operator.is_ordering and data_type in (DataType.STRING, DataType.BOOLEAN):
        raise ValidationError(
            f"Operator '{predicate.operator.value}' is not supported on {data_type.value} column '{target}'."
        )
    if predicate.operator == Operator.IN:
        raw_values = predicate.value if isinstance(predicate.value, tuple) else (predicate.value,)
        value: Any = tuple(_convert_literal(target, data_type, item) for item in raw_values)
    else:
        if isinstance(predicate.value, tuple):
            raise ValidationError(
                f"Operator '{predicate.operator.value}' on column '{target}' expects a single value."
            )
        value = _convert_literal(target, data_type, predicate.value)
    return BoundPredicate(column=target, operator=predicate.operator, data_type=data_type, value=value)


def bind_predicates(
    predicates: Sequence[Predicate],
    column_types: Mapping[str, DataType],
) -> list[BoundPredicate]:
    bound = []
    for predicate in predicates:
        data_type = column_types.get(predicate.column)
        if data_type is None:
            raise ValidationError(
                f"Column '{predicate.column}' not found. Available columns: {', '.join(column_types)}."
            )
        bound.append(bind_predicate(predicate, data_type))
    return bound


def compare(data_type: DataType, operator: Operator, cell: Any, value: Any) -> bool:
    if cell is None:
        return False
    if operator == Operator.IN:
        return any(compare(data_type, Operator.EQ, cell, item) for item in value)
    if data_type == DataType.DOUBLE:
        return _compare_double(operator, float(cell), float(value))
    return _NATIVE[operator](cell, value)


def _compare_double(operator: Operator, cell: float, value: float) -> bool:
    if operator == Operator.EQ:
        return abs(cell - value) <= DOUBLE_EPSILON
    if operator == Operator.NEQ:
        return abs(cell - value) > DOUBLE_EPSILON
    if operator == Operator.LTE:
        return cell <= value + DOUBLE_EPSILON
    if operator == Operator.GTE:
        return cell >= value - DOUBLE_EPSILON
    if operator == Operator.LT:
        return cell < value
    return cell > value


def _convert_literal(column: str, data_type: DataType, literal: Scalar) -> Any:
    if data_type == DataType.STRING:
        return literal if isinstance(literal, str) else str(literal)
    if isinstance(literal, str):
        converted = parse_string(data_type, literal)
        if converted is None and data_type == DataType.LONG:
            number = parse_string(DataType.DOUBLE, literal)
            if number is not None:
                return _convert_literal(column, data_type, number)
    elif data_type == DataType.BOOLEAN:
        converted = bool(literal) if literal in (0, 1) else None
    elif data_type == DataType.DOUBLE:
        converted = float(literal)
    elif isinstance(literal, float) and not literal.is_integer():
        # keep the fractional part so 5 > 4.5 compares as written
        converted = literal
    else:
        converted = int(literal)
    if converted is None:
        raise ValidationError(
            f"Value {literal!r} is not a valid {data_type.value} literal for column '{column}'."
        )
    return converted
