"""Evaluation of step guard conditions against an execution context."""

from typing import Any, Iterable, Mapping, Union

from loguru import logger

from ..models.workflow import ConditionOperator, LogicalOperator, WorkflowCondition

ConditionLike = Union[WorkflowCondition, Mapping[str, Any]]

_MISSING = object()


def get_context_value(context: Mapping[str, Any], path: str) -> Any:
    """Resolve a dot path such as ``tenant.address.city``; ``None`` if absent."""
    value: Any = context
    for part in path.split("."):
        if isinstance(value, Mapping):
            value = value.get(part, _MISSING)
        elif isinstance(value, (list, tuple)) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            return None
        if value is _MISSING:
            return None
    return value


def _compare(actual: Any, operator: ConditionOperator, expected: Any) -> bool:
    if operator == ConditionOperator.EQ:
        return actual == expected
    if operator == ConditionOperator.NE:
        return actual != expected
    if operator == ConditionOperator.EXISTS:
        return actual is not None
    if operator == ConditionOperator.IN:
        return isinstance(expected, (list, tuple, set, frozenset)) and actual in expected
    if operator == ConditionOperator.CONTAINS:
        if actual is None:
            return False
        if isinstance(actual, (list, tuple, set, frozenset, dict)):
            return expected in actual
        return str(expected) in str(actual)

    # Ordering operators: incomparable values never match
    if actual is None:
        return False
    try:
        if operator == ConditionOperator.GT:
            return actual > expected
        if operator == ConditionOperator.GTE:
            return actual >= expected
        if operator == ConditionOperator.LT:
            return actual < expected
        if operator == ConditionOperator.LTE:
            return actual <= expected
    except TypeError:
        return False
    return False


def _coerce(condition: ConditionLike) -> WorkflowCondition:
    if isinstance(condition, WorkflowCondition):
        return condition
    return WorkflowCondition.model_validate(condition)


def evaluate_condition(condition: ConditionLike, context: Mapping[str, Any]) -> bool:
    """Evaluate one condition."""
    condition = _coerce(condition)
    actual = get_context_value(context, condition.field)
    return _compare(actual, condition.operator, condition.value)


def evaluate_conditions(
    conditions: Iterable[ConditionLike], context: Mapping[str, Any]
) -> bool:
    """
    Fold conditions left to right.

    The accumulator starts at ``True`` joined with AND. After each condition
    the join used for the *next* condition becomes that condition's
    ``logical_operator`` (AND when unset), so ``[a(OR), b, c]`` reads as
    ``((True and a) or b) and c``. An empty list is ``True``.
    """
    result = True
    join = LogicalOperator.AND

    for raw in conditions:
        condition = _coerce(raw)
        outcome = evaluate_condition(condition, context)
        result = (result and outcome) if join == LogicalOperator.AND else (result or outcome)
        join = condition.logical_operator or LogicalOperator.AND

    logger.debug(f"Conditions evaluated to {result}")
    return result
