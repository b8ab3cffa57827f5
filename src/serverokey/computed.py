"""
Computed-field engine.

Rules run in declaration order in a single forward pass over a connector
value; each freshly computed target is visible to later rules. A target is
always overwritten: with the numeric result (optionally formatted), or with
the rule's default value when the result is not a finite number.

Formulas:
    sum(items, price)      sum of a field over an array (quotes optional)
    count(items)           length of an array
    anything else          evaluated as an expression with the document as context
    (no formula)           the existing target value coerced to a number

Formats:
    toFixed(2) / fixed:2   fixed-point string with N decimals
"""

import logging
import math
import re
from typing import Any, Dict, Iterable, List, Optional

from .expressions import Evaluator
from .manifest import ComputedRule


logger = logging.getLogger(__name__)

_FUNCTION_CALL = re.compile(r"^\s*(\w+)\((.*)\)\s*$")
_FORMAT = re.compile(r"^(?:toFixed\((\d+)\)|fixed:(\d+))$")


def to_number(value: Any) -> Optional[float]:
    """Return a finite number for numeric values or numeric strings, else None."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = value
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if isinstance(number, float) and not math.isfinite(number):
        return None
    return number


def _sum(document: Dict[str, Any], array_name: str, field: str) -> Optional[float]:
    array = document.get(array_name)
    if not isinstance(array, list):
        return 0
    total = 0
    for item in array:
        raw = item.get(field) if isinstance(item, dict) else None
        if raw is None or raw == "" or raw is False:
            continue
        number = to_number(raw)
        if number is None:
            return None
        total += number
    return total


def _count(document: Dict[str, Any], array_name: str) -> int:
    array = document.get(array_name)
    return len(array) if isinstance(array, list) else 0


_FUNCTIONS = {"sum": (_sum, 2), "count": (_count, 1)}


def _format(value: float, fmt: Optional[str]) -> Any:
    if not fmt:
        return value
    match = _FORMAT.match(fmt.strip())
    if match is None:
        logger.warning(f"Unknown computed format '{fmt}', leaving value unformatted")
        return value
    digits = int(match.group(1) or match.group(2))
    return f"{value:.{digits}f}"


class ComputedFields:
    """
    Apply computed rules to a connector value.

    Example:
        >>> rules = [ComputedRule(target="total", formula="sum(items, 'price')")]
        >>> ComputedFields(rules).apply({"items": [{"price": 10}, {"price": 2.5}]})
        {'items': [{'price': 10}, {'price': 2.5}], 'total': 12.5}
    """

    def __init__(self, rules: Optional[Iterable[ComputedRule]] = None, evaluator: Optional[Evaluator] = None):
        self.rules: List[ComputedRule] = list(rules or [])
        self._evaluator = evaluator or Evaluator()

    def apply(self, document: Dict[str, Any]) -> Dict[str, Any]:
        """
        Compute every rule target on ``document`` in place and return it.

        Rules read from a working scope that holds unformatted numbers, so a
        rule after ``total`` with ``format: toFixed(2)`` sees ``12.5`` rather
        than ``"12.50"``. Only ``document`` receives formatted values.
        """
        if not self.rules or not isinstance(document, dict):
            return document
        scope = dict(document)
        for rule in self.rules:
            number = to_number(self._compute(rule, scope))
            if number is None:
                scope[rule.target] = rule.default_value
                document[rule.target] = rule.default_value
            else:
                scope[rule.target] = number
                document[rule.target] = _format(number, rule.format)
        return document

    def _compute(self, rule: ComputedRule, scope: Dict[str, Any]) -> Any:
        if not rule.formula:
            return scope.get(rule.target)

        match = _FUNCTION_CALL.match(rule.formula)
        if match and match.group(1) in _FUNCTIONS:
            function, arity = _FUNCTIONS[match.group(1)]
            args = [
                arg.strip().strip("'\"")
                for arg in match.group(2).split(",")
                if arg.strip().strip("'\"")
            ]
            if len(args) != arity:
                logger.warning(
                    f"Formula '{rule.formula}' expects {arity} argument(s), got {len(args)}"
                )
                return None
            return function(scope, *args)

        return self._evaluator.evaluate(rule.formula, scope)
