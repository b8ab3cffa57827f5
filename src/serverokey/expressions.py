"""
Sandboxed expression evaluation for action steps using Jinja2.

Every ``to``, ``if``, ``forEach``, ``url``, ``auth:login`` and
``client:redirect`` value in a step is an expression evaluated against the
action context. Expressions are compiled with Jinja2's
``ImmutableSandboxedEnvironment`` so the grammar is bounded and the context
cannot be mutated from inside an expression.

Supported:

- Member access: ``data.cart.items``, ``body['id']``, ``items.length``
- Arithmetic, comparisons, ``in``, ``and`` / ``or`` / ``not``
- Ternary: ``'yes' if user else 'no'``
- ``and`` / ``or`` / ``not`` and the ternary use ``is_truthy``, so ``[]`` and ``{}`` are truthy
- Literals: ``{'id': body.id, 'qty': 1}``, ``[1, 2, 3]``
- Collection filters with a predicate sub-expression over ``item``:
  ``data.items | find('item.id == body.id')``,
  ``data.items | reduce('acc + item.price', 0)``
- ``require('password')`` / ``require('schema')`` and the ``schema`` global

Failure policy:
    A ValidationError raised by the schema namespace aborts the run.
    Every other failure is logged and resolves to None.

Example:
    >>> evaluator = Evaluator()
    >>> evaluator.evaluate("data.items | filter('item.qty > 1') | length",
    ...                    {"data": {"items": [{"qty": 1}, {"qty": 3}]}})
    1
"""

import logging
import math
from collections.abc import Mapping
from typing import Any, Callable, Dict, List, Optional

from jinja2 import ChainableUndefined, nodes, pass_context
from jinja2.compiler import CodeGenerator, Frame
from jinja2.runtime import Context, Undefined
from jinja2.sandbox import ImmutableSandboxedEnvironment

from .exceptions import EvaluationError, ValidationError
from .utilities import build_namespaces


logger = logging.getLogger(__name__)

_NO_INITIAL = object()


def is_truthy(value: Any) -> bool:
    """
    Condition truthiness used by ``if`` steps.

    Falsy values are exactly: 0, 0.0, NaN, '', None and False. Empty lists
    and mappings are truthy, as is the string '0'.
    """
    if value is None or value is False:
        return False
    if isinstance(value, Undefined):
        return False
    if isinstance(value, bool):
        return True
    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return False
        return value != 0
    if isinstance(value, str):
        return value != ""
    return True


class TruthinessCodeGenerator(CodeGenerator):
    """
    Compile ``and``, ``or``, ``not`` and inline ``if`` through ``is_truthy``.

    ``[] or 'x'`` yields ``[]`` and ``not {}`` is False, matching ``if`` steps.
    ``and`` / ``or`` still short-circuit and return an operand.
    """

    def visit_Or(self, node: nodes.Or, frame: Frame) -> None:
        self.write("environment.either(")
        self.visit(node.left, frame)
        self.write(", lambda: ")
        self.visit(node.right, frame)
        self.write(")")

    def visit_And(self, node: nodes.And, frame: Frame) -> None:
        self.write("environment.both(")
        self.visit(node.left, frame)
        self.write(", lambda: ")
        self.visit(node.right, frame)
        self.write(")")

    def visit_Not(self, node: nodes.Not, frame: Frame) -> None:
        self.write("(not environment.truthy(")
        self.visit(node.node, frame)
        self.write("))")

    def visit_CondExpr(self, node: nodes.CondExpr, frame: Frame) -> None:
        frame = frame.soft()
        self.write("(")
        self.visit(node.expr1, frame)
        self.write(" if environment.truthy(")
        self.visit(node.test, frame)
        self.write(") else ")
        if node.expr2 is not None:
            self.visit(node.expr2, frame)
        else:
            self.write("None")
        self.write(")")


class ExpressionEnvironment(ImmutableSandboxedEnvironment):
    """
    Jinja2 sandbox tuned for JSON documents.

    Mapping keys always win over attributes, so ``data.receipt.items``
    returns the stored list rather than ``dict.items``. Missing keys are
    undefined (and resolve to None) instead of exposing dict methods.
    Sequences and strings expose ``length``.

    Constant folding is disabled because Jinja's optimizer folds boolean
    operators with Python truthiness.
    """

    code_generator_class = TruthinessCodeGenerator

    def __init__(self) -> None:
        super().__init__(undefined=ChainableUndefined, optimized=False)
        self._compiled: Dict[str, Callable[..., Any]] = {}

    @staticmethod
    def truthy(value: Any) -> bool:
        return is_truthy(value)

    @staticmethod
    def either(left: Any, right: Callable[[], Any]) -> Any:
        return left if is_truthy(left) else right()

    @staticmethod
    def both(left: Any, right: Callable[[], Any]) -> Any:
        return right() if is_truthy(left) else left

    def getattr(self, obj: Any, attribute: str) -> Any:
        if isinstance(obj, Mapping):
            if attribute in obj:
                return obj[attribute]
            return self.undefined(obj=obj, name=attribute)
        if attribute == "length" and isinstance(obj, (str, list, tuple)):
            return len(obj)
        return super().getattr(obj, attribute)

    def compile_cached(self, source: str) -> Callable[..., Any]:
        compiled = self._compiled.get(source)
        if compiled is None:
            compiled = self.compile_expression(source, undefined_to_none=True)
            self._compiled[source] = compiled
        return compiled


def _call(ctx: Context, expression: str, bindings: Dict[str, Any]) -> Any:
    variables = ctx.get_all()
    variables.update(bindings)
    return ctx.environment.compile_cached(expression)(**variables)


def _elements(value: Any) -> List[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    if value is None or isinstance(value, Undefined):
        return []
    raise TypeError(f"Expected a list, got {type(value).__name__}")


@pass_context
def find(ctx: Context, value: Any, predicate: str, name: str = "item") -> Any:
    for element in _elements(value):
        if is_truthy(_call(ctx, predicate, {name: element})):
            return element
    return None


@pass_context
def find_index(ctx: Context, value: Any, predicate: str, name: str = "item") -> int:
    for index, element in enumerate(_elements(value)):
        if is_truthy(_call(ctx, predicate, {name: element})):
            return index
    return -1


@pass_context
def filter_items(ctx: Context, value: Any, predicate: str, name: str = "item") -> List[Any]:
    return [
        element
        for element in _elements(value)
        if is_truthy(_call(ctx, predicate, {name: element}))
    ]


@pass_context
def some(ctx: Context, value: Any, predicate: str, name: str = "item") -> bool:
    return any(
        is_truthy(_call(ctx, predicate, {name: element}))
        for element in _elements(value)
    )


@pass_context
def every(ctx: Context, value: Any, predicate: str, name: str = "item") -> bool:
    return all(
        is_truthy(_call(ctx, predicate, {name: element}))
        for element in _elements(value)
    )


@pass_context
def reduce_items(
    ctx: Context,
    value: Any,
    expression: str,
    initial: Any = _NO_INITIAL,
    name: str = "item",
) -> Any:
    elements = _elements(value)
    if initial is _NO_INITIAL:
        if not elements:
            raise TypeError("reduce of empty list with no initial value")
        accumulator, elements = elements[0], elements[1:]
    else:
        accumulator = initial
    for element in elements:
        accumulator = _call(ctx, expression, {"acc": accumulator, name: element})
    return accumulator


def concat(value: Any, *others: Any) -> Any:
    if isinstance(value, str):
        return value + "".join(str(other) for other in others)
    result = list(_elements(value))
    for other in others:
        if isinstance(other, (list, tuple)):
            result.extend(other)
        else:
            result.append(other)
    return result


COLLECTION_FILTERS: Dict[str, Callable[..., Any]] = {
    "find": find,
    "find_index": find_index,
    "filter": filter_items,
    "some": some,
    "every": every,
    "reduce": reduce_items,
    "concat": concat,
}


class Evaluator:
    """
    Evaluate expressions against an action context.

    Compiled expressions are cached per evaluator instance, so a single
    evaluator should be shared across an engine.

    Attributes:
        verbose: Log swallowed failures at WARNING instead of DEBUG.
    """

    def __init__(self, verbose: bool = False, namespaces: Optional[Dict[str, Any]] = None):
        self.verbose = verbose
        self._namespaces = namespaces if namespaces is not None else build_namespaces()
        self._env = ExpressionEnvironment()
        self._env.filters.update(COLLECTION_FILTERS)
        self._env.globals["require"] = self.require
        self._env.globals["schema"] = self._namespaces.get("schema")

    def require(self, name: str) -> Any:
        """Resolve a whitelisted utility namespace."""
        try:
            return self._namespaces[name]
        except KeyError:
            raise EvaluationError(f"require('{name}')") from None

    def evaluate(self, expression: Any, context: Mapping) -> Any:
        """
        Evaluate ``expression`` against ``context``.

        Args:
            expression: Expression source. Non-string values are returned as is.
            context: Mapping whose keys become the expression's top-level names.

        Returns:
            The evaluated value, or None when evaluation failed.

        Raises:
            ValidationError: A schema check inside the expression rejected its input.
        """
        if not isinstance(expression, str):
            return expression
        try:
            return self._env.compile_cached(expression)(**context)
        except ValidationError:
            raise
        except Exception as e:
            log = logger.warning if self.verbose else logger.debug
            log(f"Expression evaluation failed for '{expression}': {e}")
            return None

    def check(self, expression: str) -> None:
        """Compile ``expression`` and raise EvaluationError on a syntax error."""
        try:
            self._env.compile_cached(expression)
        except Exception as e:
            raise EvaluationError(expression, e) from e
