from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Type, TypeVar

import sqlglot
from sqlglot import exp
from sqlglot.errors import ParseError as SqlglotParseError
from sqlglot.errors import TokenError

from metricbridge.packages.federation.errors import QuerySyntaxError, ResourceNotFound, ValidationError
from metricbridge.packages.federation.models.catalog import LogicalTableDefinition
from metricbridge.packages.federation.models.plans import Operator, Predicate, QueryPlan, Scalar
from metricbridge.packages.federation.registry import CatalogRegistry

E = TypeVar("E", bound=exp.Expression)

_COMPARISONS: dict[Type[exp.Expression], Operator] = {
    exp.EQ: Operator.EQ,
    exp.NEQ: Operator.NEQ,
    exp.GT: Operator.GT,
    exp.GTE: Operator.GTE,
    exp.LT: Operator.LT,
    exp.LTE: Operator.LTE,
}

_FLIPPED = {
    Operator.EQ: Operator.EQ,
    Operator.NEQ: Operator.NEQ,
    Operator.GT: Operator.LT,
    Operator.GTE: Operator.LTE,
    Operator.LT: Operator.GT,
    Operator.LTE: Operator.GTE,
}

_UNSUPPORTED_CLAUSES: tuple[tuple[Type[exp.Expression], str], ...] = (
    (exp.Join, "JOIN"),
    (exp.Lateral, "LATERAL"),
    (exp.With, "WITH"),
    (exp.Distinct, "DISTINCT"),
    (exp.Group, "GROUP BY"),
    (exp.Having, "HAVING"),
    (exp.Qualify, "QUALIFY"),
    (exp.Order, "ORDER BY"),
    (exp.Limit, "LIMIT"),
    (exp.Fetch, "FETCH"),
    (exp.Offset, "OFFSET"),
)


@dataclass(slots=True)
class ParsedSql:
    select: exp.Select
    table: exp.Table


def parse_sql(sql: str, *, dialect: str | None = None) -> ParsedSql:
    """Parse ``sql`` into a single restricted SELECT over one table."""
    if not sql or not sql.strip():
        raise QuerySyntaxError("SQL text cannot be empty.")
    try:
        statements = [statement for statement in sqlglot.parse(sql, read=dialect) if statement is not None]
    except (SqlglotParseError, TokenError) as exc:
        raise QuerySyntaxError(f"Invalid SQL: {exc}") from exc

    if len(statements) != 1:
        raise QuerySyntaxError(f"Expected exactly one SQL statement, found {len(statements)}.")
    select = statements[0]
    if not isinstance(select, exp.Select):
        raise QuerySyntaxError(f"Only SELECT statements are supported, got {select.key.upper()}.")

    for value in select.args.values():
        for item in _as_list(value):
            for node_type, label in _UNSUPPORTED_CLAUSES:
                if isinstance(item, node_type):
                    raise ValidationError(f"{label} is not supported; joins are performed across metrics by the engine.")

    for node in select.find_all(exp.Select, exp.Subquery):
        if node is not select:
            raise ValidationError("Subqueries are not supported.")

    from_clause = _child_of_type(select, exp.From)
    if from_clause is None:
        raise ValidationError("Query must include a FROM clause.")
    table = from_clause.this
    if not isinstance(table, exp.Table) or not table.name:
        raise ValidationError("FROM must reference a single logical table.")
    return ParsedSql(select=select, table=table)


def compile_sql(sql: str, *, registry: CatalogRegistry, dialect: str | None = None) -> QueryPlan:
    parsed = parse_sql(sql, dialect=dialect)
    table_name = parsed.table.name
    definition = registry.get_table(table_name)
    if definition is None:
        raise ResourceNotFound(f"Table '{table_name}' not found.")

    resolver = _FieldResolver(definition, qualifiers={table_name, parsed.table.alias_or_name})
    select_fields = _select_fields(parsed.select, resolver)

    field_metric_map: dict[str, str] = {}
    for field in select_fields:
        metric = definition.metric_for(field)
        if metric is None:
            raise ValidationError(f"Field '{field}' does not map to a metric in table '{definition.name}'.")
        field_metric_map[field] = metric

    where = _child_of_type(parsed.select, exp.Where)
    predicates = [
        _predicate(node, resolver) for node in split_conjunctive_predicates(where.this if where is not None else None)
    ]
    return QueryPlan(
        sql=sql,
        table=definition,
        select_fields=select_fields,
        field_metric_map=field_metric_map,
        predicates=predicates,
    )


def split_conjunctive_predicates(where_clause: exp.Expression | None) -> list[exp.Expression]:
    if where_clause is None:
        return []

    predicates: list[exp.Expression] = []

    def _walk(node: exp.Expression) -> None:
        node = _unwrap(node)
        if isinstance(node, exp.And):
            _walk(node.left)
            _walk(node.right)
            return
        predicates.append(node)

    _walk(where_clause)
    return predicates


class _FieldResolver:
    def __init__(self, table: LogicalTableDefinition, *, qualifiers: Iterable[str]) -> None:
        self.table = table
        self._qualifiers = {qualifier.lower() for qualifier in qualifiers if qualifier}
        self._by_lower = {field.lower(): field for field in table.fields}

    def resolve(self, column: exp.Column) -> str:
        qualifier = column.table
        if qualifier and qualifier.lower() not in self._qualifiers:
            raise ValidationError(f"Unknown table qualifier '{qualifier}' in '{column.sql()}'.")
        name = column.name
        if name in self.table.field_to_metric:
            return name
        field = self._by_lower.get(name.lower())
        if field is None:
            raise ValidationError(f"Field '{name}' is not defined in table '{self.table.name}'.")
        return field


def _select_fields(select: exp.Select, resolver: _FieldResolver) -> list[str]:
    table = resolver.table
    fields: list[str] = []
    for expression in select.expressions:
        if isinstance(expression, exp.Star) or (
            isinstance(expression, exp.Column) and isinstance(expression.this, exp.Star)
        ):
            fields.extend(table.fields)
        elif isinstance(expression, exp.Alias):
            raise ValidationError(f"Aliases are not supported in the select list: '{expression.sql()}'.")
        elif isinstance(expression, exp.Column):
            fields.append(resolver.resolve(expression))
        else:
            raise ValidationError(
                f"Unsupported select expression '{expression.sql()}'; only plain column references are allowed."
            )
    return list(dict.fromkeys(fields))


def _predicate(node: exp.Expression, resolver: _FieldResolver) -> Predicate:
    if isinstance(node, exp.In):
        column = node.this
        if not isinstance(column, exp.Column) or node.args.get("query") is not None:
            raise ValidationError(f"Unsupported IN predicate '{node.sql()}'.")
        values = tuple(_literal(item) for item in node.expressions)
        if not values:
            raise ValidationError(f"IN predicate '{node.sql()}' needs at least one value.")
        return Predicate(column=resolver.resolve(column), operator=Operator.IN, value=values)

    operator = _COMPARISONS.get(type(node))
    if operator is None:
        raise ValidationError(
            f"Unsupported WHERE condition '{node.sql()}'; use AND-ed comparisons of a column with a literal."
        )
    left, right = _unwrap(node.this), _unwrap(node.expression)
    if isinstance(left, exp.Column) and not isinstance(right, exp.Column):
        return Predicate(column=resolver.resolve(left), operator=operator, value=_literal(right))
    if isinstance(right, exp.Column) and not isinstance(left, exp.Column):
        return Predicate(column=resolver.resolve(right), operator=_FLIPPED[operator], value=_literal(left))
    raise ValidationError(f"Condition '{node.sql()}' must compare one column with one literal.")


def _literal(node: exp.Expression) -> Scalar:
    node = _unwrap(node)
    negate = False
    if isinstance(node, exp.Neg):
        negate = True
        node = _unwrap(node.this)
    if isinstance(node, exp.Literal):
        if node.is_string:
            if negate:
                raise ValidationError(f"Cannot negate string literal '{node.sql()}'.")
            return node.this
        text = node.this
        value: int | float = int(text) if node.is_int else float(text)
        return -value if negate else value
    raise ValidationError(f"Unsupported literal '{node.sql()}'; only numbers and quoted strings are allowed.")


def _unwrap(node: exp.Expression) -> exp.Expression:
    while isinstance(node, exp.Paren):
        node = node.this
    return node


def _child_of_type(parent: exp.Expression, node_type: Type[E]) -> E | None:
    for value in parent.args.values():
        for item in _as_list(value):
            if isinstance(item, node_type):
                return item
    return None


def _as_list(value: object) -> list:
    if isinstance(value, list):
        return value
    return [] if value is None else [value]
