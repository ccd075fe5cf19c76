"""Built-in condition validators.

* ``ACTION_SUCCESS`` -- an action of the task succeeded.
* ``FIELD_COMPARE`` -- a field of an action's output compares to a value.
* ``EXPRESSION`` -- a restricted boolean expression over the task's results.

Expressions see one namespace per phase prefix, keyed by the part of the
action id after the first dot, plus ``ACTIONS`` keyed by full action id::

    STEP["1"].exitCode == 0 and "ready" in PREREQ["1"].stdout
    len(STEP["2"].body) > 0

Each entry holds the action's data plus ``success``, ``error``,
``durationMs``, ``errorCount`` (``error`` occurrences in stderr) and
``warningCount`` (``warning`` occurrences in stdout).  JavaScript-style
operators (``===``, ``&&``, ``||``, ``!``, ``true``/``false``/``null``,
``STEP.1``, ``.length``) are accepted for older specification files.
"""

from __future__ import annotations

import ast
import operator
import re
from collections.abc import Mapping
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from specrun.engine.context import ContextView, resolve_path
from specrun.models import ActionResult
from specrun.plugins.base import BaseValidator
from specrun.spec.models import Condition

_NAMESPACES = ("PREREQ", "STEP", "CLEANUP")


class ExpressionError(ValueError):
    pass


class _ConditionParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, extra="ignore")


class ActionSuccessParams(_ConditionParams):
    action_id: str


class FieldCompareParams(_ConditionParams):
    action_id: str
    field: str = ""
    operator: str = "eq"
    value: Any = None


class ExpressionParams(_ConditionParams):
    expression: str


# ---------------------------------------------------------------------------
# ACTION_SUCCESS / FIELD_COMPARE
# ---------------------------------------------------------------------------


def _matches(actual: Any, pattern: Any) -> bool:
    return isinstance(actual, str) and re.search(str(pattern), actual) is not None


def _contains(actual: Any, expected: Any) -> bool:
    try:
        return expected in actual
    except TypeError:
        return False


_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "eq": operator.eq,
    "ne": operator.ne,
    "gt": operator.gt,
    "ge": operator.ge,
    "lt": operator.lt,
    "le": operator.le,
    "contains": _contains,
    "matches": _matches,
}


class ActionSuccessValidator(BaseValidator):
    name = "action-success-validator"
    condition_types = ("ACTION_SUCCESS",)

    async def validate(self, condition: Condition, context: ContextView) -> bool:
        p = ActionSuccessParams.model_validate(condition.params)
        result = context.get(p.action_id)
        return result is not None and result.success


class FieldCompareValidator(BaseValidator):
    name = "field-compare-validator"
    condition_types = ("FIELD_COMPARE",)

    async def validate(self, condition: Condition, context: ContextView) -> bool:
        p = FieldCompareParams.model_validate(condition.params)
        if p.operator != "exists" and p.operator not in _OPERATORS:
            raise ValueError(f"Unknown operator: {p.operator}")

        result = context.get(p.action_id)
        if result is None:
            return False
        try:
            actual = resolve_path(result, p.field.split(".") if p.field else [])
        except KeyError:
            return False

        if p.operator == "exists":
            return actual is not None
        try:
            return bool(_OPERATORS[p.operator](actual, p.value))
        except TypeError:
            return False


# ---------------------------------------------------------------------------
# EXPRESSION
# ---------------------------------------------------------------------------

_JS_REWRITES: list[tuple[re.Pattern, str]] = [
    (re.compile(r"==="), "=="),
    (re.compile(r"!=="), "!="),
    (re.compile(r"&&"), " and "),
    (re.compile(r"\|\|"), " or "),
    (re.compile(r"!(?!=)"), " not "),
    (re.compile(r"\btrue\b"), "True"),
    (re.compile(r"\bfalse\b"), "False"),
    (re.compile(r"\b(?:null|undefined)\b"), "None"),
    (re.compile(r"\b(PREREQ|STEP|CLEANUP)\.(\w+)"), r'\1["\2"]'),
]

_BIN_OPS: dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
}

_CMP_OPS: dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}

_FUNCTIONS: dict[str, Callable[..., Any]] = {"len": len, "any": any, "all": all}


_STRING_LITERAL = re.compile(r"""("(?:\\.|[^"\\])*"|'(?:\\.|[^'\\])*')""")


def normalize_expression(expression: str) -> str:
    """Rewrite JavaScript-flavoured syntax into the Python subset.

    String literals are left untouched.
    """
    parts = _STRING_LITERAL.split(expression)
    # Even indexes are code, odd indexes the literals captured by the split.
    for index in range(0, len(parts), 2):
        for pattern, replacement in _JS_REWRITES:
            parts[index] = pattern.sub(replacement, parts[index])
    return "".join(parts).strip()


def _lookup(container: Any, key: Any) -> Any:
    """Subscript that yields ``None`` for missing keys, like an undefined field."""
    if isinstance(container, Mapping):
        if key in container:
            return container[key]
        return container.get(str(key))
    if isinstance(container, (list, tuple, str)) and isinstance(key, int):
        try:
            return container[key]
        except IndexError:
            return None
    if container is None:
        return None
    raise ExpressionError(f"Cannot index {type(container).__name__}")


class _Evaluator:
    """Walks a parsed expression, allowing only a small set of node types."""

    def __init__(self, names: Mapping[str, Any]) -> None:
        self.names = names

    def eval(self, node: ast.AST) -> Any:
        handler = getattr(self, f"_{type(node).__name__}", None)
        if handler is None:
            raise ExpressionError(f"Unsupported expression syntax: {type(node).__name__}")
        return handler(node)

    def _Expression(self, node: ast.Expression) -> Any:
        return self.eval(node.body)

    def _Constant(self, node: ast.Constant) -> Any:
        return node.value

    def _Name(self, node: ast.Name) -> Any:
        if node.id in self.names:
            return self.names[node.id]
        raise ExpressionError(f"Unknown name: {node.id}")

    def _List(self, node: ast.List) -> list:
        return [self.eval(e) for e in node.elts]

    def _Tuple(self, node: ast.Tuple) -> tuple:
        return tuple(self.eval(e) for e in node.elts)

    def _BoolOp(self, node: ast.BoolOp) -> Any:
        value: Any = None
        for operand in node.values:
            value = self.eval(operand)
            if isinstance(node.op, ast.And) and not value:
                return value
            if isinstance(node.op, ast.Or) and value:
                return value
        return value

    def _UnaryOp(self, node: ast.UnaryOp) -> Any:
        operand = self.eval(node.operand)
        if isinstance(node.op, ast.Not):
            return not operand
        if isinstance(node.op, ast.USub):
            return -operand
        if isinstance(node.op, ast.UAdd):
            return +operand
        raise ExpressionError(f"Unsupported operator: {type(node.op).__name__}")

    def _BinOp(self, node: ast.BinOp) -> Any:
        op = _BIN_OPS.get(type(node.op))
        if op is None:
            raise ExpressionError(f"Unsupported operator: {type(node.op).__name__}")
        return op(self.eval(node.left), self.eval(node.right))

    def _Compare(self, node: ast.Compare) -> bool:
        left = self.eval(node.left)
        for op_node, comparator in zip(node.ops, node.comparators):
            right = self.eval(comparator)
            try:
                held = _CMP_OPS[type(op_node)](left, right)
            except TypeError:
                # Comparing against a missing field is simply false.
                return False
            if not held:
                return False
            left = right
        return True

    def _Subscript(self, node: ast.Subscript) -> Any:
        return _lookup(self.eval(node.value), self.eval(node.slice))

    def _Attribute(self, node: ast.Attribute) -> Any:
        value = self.eval(node.value)
        if isinstance(value, Mapping):
            if node.attr in value:
                return value[node.attr]
            if node.attr == "length":
                return len(value)
            return None
        if node.attr == "length" and isinstance(value, (list, tuple, str)):
            return len(value)
        if value is None:
            return None
        raise ExpressionError(f"Attribute access is only allowed on mappings: .{node.attr}")

    def _Call(self, node: ast.Call) -> Any:
        if not isinstance(node.func, ast.Name) or node.func.id not in _FUNCTIONS or node.keywords:
            raise ExpressionError("Only len(), any() and all() may be called")
        return _FUNCTIONS[node.func.id](*(self.eval(arg) for arg in node.args))


def _entry(result: ActionResult) -> dict[str, Any]:
    stderr = result.data.get("stderr") or ""
    stdout = result.data.get("stdout") or ""
    return {
        **result.data,
        "success": result.success,
        "error": result.error,
        "durationMs": result.duration_ms,
        "errorCount": len(re.findall("error", str(stderr), re.IGNORECASE)),
        "warningCount": len(re.findall("warning", str(stdout), re.IGNORECASE)),
    }


def build_namespace(results: tuple[ActionResult, ...] | list[ActionResult]) -> dict[str, Any]:
    names: dict[str, Any] = {ns: {} for ns in _NAMESPACES}
    names["ACTIONS"] = {}
    for result in results:
        entry = _entry(result)
        names["ACTIONS"][result.action_id] = entry
        prefix, _, suffix = result.action_id.partition(".")
        if prefix in _NAMESPACES and suffix:
            names[prefix][suffix] = entry
    return names


def evaluate_expression(expression: str, results: tuple[ActionResult, ...] | list[ActionResult]) -> bool:
    """Evaluate *expression* against *results*; raises :class:`ExpressionError`."""
    source = normalize_expression(expression)
    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as exc:
        raise ExpressionError(f"Invalid expression {expression!r}: {exc.msg}") from exc
    return bool(_Evaluator(build_namespace(results)).eval(tree))


class ExpressionValidator(BaseValidator):
    name = "expression-validator"
    condition_types = ("EXPRESSION",)

    async def validate(self, condition: Condition, context: ContextView) -> bool:
        p = ExpressionParams.model_validate(condition.params)
        return evaluate_expression(p.expression, context.results)
