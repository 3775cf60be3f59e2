from __future__ import annotations

import logging
import re
from typing import Sequence

from metricbridge.packages.federation.errors import ValidationError
from metricbridge.packages.federation.executor.predicates import bind_predicates
from metricbridge.packages.federation.models.plans import Operator, Predicate
from metricbridge.packages.federation.table.columnar import ColumnarTable

logger = logging.getLogger(__name__)

_EXPRESSION = re.compile(r"^\s*([A-Za-z_][\w.]*)\s*(==|!=|<=|>=|<|>|=)\s*(.*?)\s*$")

_OPERATORS = {
    "==": Operator.EQ,
    "=": Operator.EQ,
    "!=": Operator.NEQ,
    "<": Operator.LT,
    "<=": Operator.LTE,
    ">": Operator.GT,
    ">=": Operator.GTE,
}


def parse_filter_expression(expression: str) -> Predicate:
    """Parse ``<column> <op> <literal>``. The literal may be single- or double-quoted."""
    match = _EXPRESSION.match(expression)
    if match is None:
        raise ValidationError(f"Invalid filter expression '{expression}'. Expected '<column> <op> <value>'.")
    column, symbol, literal = match.groups()
    if len(literal) >= 2 and literal[0] == literal[-1] and literal[0] in {"'", '"'}:
        literal = literal[1:-1]
    elif not literal or any(char.isspace() for char in literal):
        raise ValidationError(f"Invalid literal in filter expression '{expression}'.")
    return Predicate(column=column, operator=_OPERATORS[symbol], value=literal)


def evaluate(table: ColumnarTable, expression: str | None) -> ColumnarTable:
    """Return the rows of ``table`` matching ``expression``. A blank expression returns ``table`` itself."""
    if expression is None or not expression.strip():
        return table
    return apply_predicates(table, [parse_filter_expression(expression)])


def apply_predicates(table: ColumnarTable, predicates: Sequence[Predicate]) -> ColumnarTable:
    """Filter rows matching every predicate into a fresh table. No predicates returns ``table`` itself."""
    if not predicates:
        return table
    column_types = {spec.name: spec.data_type for spec in table.schema}
    bound = bind_predicates(predicates, column_types)
    checks = [(table.get_column(predicate.column), predicate) for predicate in bound]
    indices = [
        row
        for row in range(table.row_count)
        if all(predicate.matches(column.get(row)) for column, predicate in checks)
    ]
    logger.debug(
        "Filter %s kept %d of %d rows",
        [predicate.cache_token() for predicate in predicates],
        len(indices),
        table.row_count,
    )
    return table.take(indices)
