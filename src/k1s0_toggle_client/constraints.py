"""ストラテジー制約の評価"""

from __future__ import annotations

import operator
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

from .models import Constraint, ConstraintOperator, EvaluationContext

_NUMERIC: dict[ConstraintOperator, Callable[[float, float], bool]] = {
    ConstraintOperator.NUM_EQ: operator.eq,
    ConstraintOperator.NUM_GT: operator.gt,
    ConstraintOperator.NUM_GTE: operator.ge,
    ConstraintOperator.NUM_LT: operator.lt,
    ConstraintOperator.NUM_LTE: operator.le,
}

_DATE: dict[ConstraintOperator, Callable[[datetime, datetime], bool]] = {
    ConstraintOperator.DATE_AFTER: operator.gt,
    ConstraintOperator.DATE_BEFORE: operator.lt,
}


def _parse_number(raw: str | None) -> float | None:
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def _parse_date(raw: str | None) -> datetime | None:
    if raw is None:
        return None
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _target(constraint: Constraint) -> str | None:
    if constraint.value is not None:
        return constraint.value
    return constraint.values[0] if constraint.values else None


def _match_strings(constraint: Constraint, actual: str) -> bool:
    candidates: Iterable[str] = constraint.values
    if constraint.case_insensitive:
        actual = actual.casefold()
        candidates = [v.casefold() for v in constraint.values]
    op = constraint.operator
    if op is ConstraintOperator.STR_CONTAINS:
        return any(v in actual for v in candidates)
    if op is ConstraintOperator.STR_STARTS_WITH:
        return any(actual.startswith(v) for v in candidates)
    return any(actual.endswith(v) for v in candidates)


def _apply(constraint: Constraint, actual: str) -> bool:
    op = constraint.operator
    if op is ConstraintOperator.IN:
        return actual in constraint.values
    if op is ConstraintOperator.NOT_IN:
        return actual not in constraint.values
    if op in _NUMERIC:
        left = _parse_number(actual)
        right = _parse_number(_target(constraint))
        if left is None or right is None:
            return False
        return _NUMERIC[op](left, right)
    if op in _DATE:
        left_date = _parse_date(actual)
        right_date = _parse_date(_target(constraint))
        if left_date is None or right_date is None:
            return False
        return _DATE[op](left_date, right_date)
    return _match_strings(constraint, actual)


def evaluate_constraint(constraint: Constraint, context: EvaluationContext) -> bool:
    """単一の制約を評価する。

    コンテキストにフィールドが無い場合は inverted に関わらず False を返す。
    inverted は最後に適用する。
    """
    actual = context.get_field(constraint.context_name)
    if actual is None:
        return False
    result = _apply(constraint, actual)
    return not result if constraint.inverted else result


def evaluate_constraints(constraints: Iterable[Constraint], context: EvaluationContext) -> bool:
    """全ての制約が True の場合のみ True（AND）。"""
    return all(evaluate_constraint(c, context) for c in constraints)
