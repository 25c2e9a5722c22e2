"""Formula-based test values.

Formulas are parsed once into a small AST and evaluated against a mapping of
dependency tokens (test short names) to numbers. Grammar::

    expr   := term (("+" | "-") term)*
    term   := factor (("*" | "/") factor)*
    factor := ("+" | "-") factor | NUMBER | TOKEN | "(" expr ")"

TOKEN is an identifier (``HDL``, ``T_CHOL``) or a braced name
(``{Total Cholesterol}``). Cycles among formulas are rejected when a formula
is registered, so evaluation never has to guard against them.
"""

from __future__ import annotations

import logging
import math
import re
from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Mapping, Union

from lab_reporting.errors import EvaluationError, EvaluationErrorKind
from lab_reporting.schemas.catalog import Formula
from lab_reporting.schemas.pipeline import ItemIssue
from lab_reporting.schemas.result import CategoryResult, TestEntry, iter_category_tests

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(
    r"\s*(?:(?P<number>\d+(?:\.\d*)?|\.\d+)"
    r"|(?P<name>[A-Za-z_][A-Za-z0-9_]*)"
    r"|\{(?P<braced>[^{}]+)\}"
    r"|(?P<op>[-+*/()]))"
)


@dataclass(frozen=True)
class Number:
    value: float


@dataclass(frozen=True)
class Reference:
    token: str


@dataclass(frozen=True)
class UnaryOp:
    op: str
    operand: "Node"


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: "Node"
    right: "Node"


Node = Union[Number, Reference, UnaryOp, BinaryOp]


def _invalid(message: str, formula_string: str) -> EvaluationError:
    return EvaluationError(
        EvaluationErrorKind.INVALID_EXPRESSION, message, {"formula": formula_string}
    )


def tokenize(text: str) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None or match.end() == pos:
            raise _invalid(f"unexpected character {text[pos:].strip()[:1]!r} at {pos}", text)
        kind = match.lastgroup
        value = match.group(kind).strip()
        tokens.append(("name" if kind == "braced" else kind, value))
        pos = match.end()
    return tokens


class _Parser:
    def __init__(self, text: str) -> None:
        self.text = text
        self.tokens = tokenize(text)
        self.pos = 0

    def _peek(self) -> tuple[str, str] | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _take(self) -> tuple[str, str]:
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def parse(self) -> Node:
        if not self.tokens:
            raise _invalid("empty expression", self.text)
        node = self._expr()
        if self._peek() is not None:
            raise _invalid(f"unexpected {self._peek()[1]!r}", self.text)
        return node

    def _expr(self) -> Node:
        node = self._term()
        while self._peek() in (("op", "+"), ("op", "-")):
            op = self._take()[1]
            node = BinaryOp(op, node, self._term())
        return node

    def _term(self) -> Node:
        node = self._factor()
        while self._peek() in (("op", "*"), ("op", "/")):
            op = self._take()[1]
            node = BinaryOp(op, node, self._factor())
        return node

    def _factor(self) -> Node:
        token = self._peek()
        if token is None:
            raise _invalid("unexpected end of expression", self.text)
        kind, value = self._take()
        if kind == "number":
            return Number(float(value))
        if kind == "name":
            return Reference(value)
        if value in ("+", "-"):
            return UnaryOp(value, self._factor())
        if value == "(":
            node = self._expr()
            if self._peek() != ("op", ")"):
                raise _invalid("missing closing parenthesis", self.text)
            self._take()
            return node
        raise _invalid(f"unexpected {value!r}", self.text)


def parse_expression(text: str) -> Node:
    return _Parser(text).parse()


def referenced_tokens(node: Node) -> set[str]:
    if isinstance(node, Reference):
        return {node.token}
    if isinstance(node, UnaryOp):
        return referenced_tokens(node.operand)
    if isinstance(node, BinaryOp):
        return referenced_tokens(node.left) | referenced_tokens(node.right)
    return set()


@dataclass(frozen=True)
class CompiledFormula:
    formula: Formula
    tree: Node
    tokens: frozenset[str]

    @property
    def test_id(self) -> str:
        return self.formula.test_id

    @property
    def dependency_ids(self) -> list[str]:
        return [dep.test_id for dep in self.formula.dependencies]

    @property
    def token_map(self) -> dict[str, str]:
        """Dependency token -> test id."""
        return {dep.token: dep.test_id for dep in self.formula.dependencies}


def compile_formula(formula: Formula) -> CompiledFormula:
    tree = parse_expression(formula.formula_string)
    tokens = referenced_tokens(tree)
    declared = {dep.token for dep in formula.dependencies}
    undeclared = sorted(tokens - declared)
    if undeclared:
        raise EvaluationError(
            EvaluationErrorKind.INVALID_EXPRESSION,
            f"{formula.test_name}: tokens {undeclared} are not declared dependencies",
            {"formula": formula.formula_string, "undeclared": undeclared},
        )
    return CompiledFormula(formula=formula, tree=tree, tokens=frozenset(tokens))


def _eval(node: Node, values: Mapping[str, float], compiled: CompiledFormula) -> float:
    if isinstance(node, Number):
        return node.value
    if isinstance(node, Reference):
        value = values.get(node.token)
        if value is None:
            raise EvaluationError(
                EvaluationErrorKind.MISSING_DEPENDENCY,
                f"{compiled.formula.test_name}: no value for {node.token!r}",
                {"test_id": compiled.test_id, "token": node.token},
            )
        return value
    if isinstance(node, UnaryOp):
        operand = _eval(node.operand, values, compiled)
        return -operand if node.op == "-" else operand

    left = _eval(node.left, values, compiled)
    right = _eval(node.right, values, compiled)
    if node.op == "+":
        return left + right
    if node.op == "-":
        return left - right
    if node.op == "*":
        return left * right
    if right == 0:
        raise EvaluationError(
            EvaluationErrorKind.DIVISION_BY_ZERO,
            f"{compiled.formula.test_name}: division by zero",
            {"test_id": compiled.test_id},
        )
    return left / right


def evaluate(compiled: CompiledFormula, values_by_token: Mapping[str, float]) -> float:
    return _eval(compiled.tree, values_by_token, compiled)


_WHITE, _GREY, _BLACK = 0, 1, 2


def _visit_order(
    graph: Mapping[str, list[str]], roots: Iterable[str]
) -> tuple[list[str], list[str] | None]:
    """Three-colour depth-first visit.

    Returns the post-order (dependencies first) and the first cycle found,
    as a path that starts and ends with the same node.
    """
    colour: dict[str, int] = {}
    order: list[str] = []
    stack: list[str] = []

    def visit(node: str) -> list[str] | None:
        colour[node] = _GREY
        stack.append(node)
        for dep in graph.get(node, []):
            state = colour.get(dep, _WHITE)
            if state == _GREY:
                return stack[stack.index(dep):] + [dep]
            if state == _WHITE:
                cycle = visit(dep)
                if cycle:
                    return cycle
        stack.pop()
        colour[node] = _BLACK
        order.append(node)
        return None

    for root in roots:
        if colour.get(root, _WHITE) == _WHITE:
            cycle = visit(root)
            if cycle:
                return order, cycle
    return order, None


class FormulaRegistry:
    """Formulas of one branch or session, kept free of dependency cycles."""

    def __init__(self, formulas: Iterable[Formula] = ()) -> None:
        self._compiled: dict[str, CompiledFormula] = {}
        for formula in formulas:
            self.register(formula)

    def __contains__(self, test_id: str) -> bool:
        return test_id in self._compiled

    def __len__(self) -> int:
        return len(self._compiled)

    def get(self, test_id: str) -> CompiledFormula | None:
        return self._compiled.get(test_id)

    def _graph(self, compiled: Mapping[str, CompiledFormula]) -> dict[str, list[str]]:
        return {test_id: c.dependency_ids for test_id, c in compiled.items()}

    def register(self, formula: Formula) -> CompiledFormula | None:
        """Compile and add ``formula``, replacing any formula for the same test.

        Inactive formulas are skipped. Raises ``EvaluationError`` with
        ``CYCLIC_DEPENDENCY`` when the formula would close a dependency
        cycle; the registry is left unchanged in that case.
        """
        if formula.status != "Active":
            logger.debug("formula: %s inactive, not registered", formula.test_name)
            return None
        compiled = compile_formula(formula)
        candidate = dict(self._compiled)
        candidate[formula.test_id] = compiled

        _, cycle = _visit_order(self._graph(candidate), [formula.test_id])
        if cycle:
            logger.warning("formula: rejected %s, cycle %s", formula.test_name, " -> ".join(cycle))
            raise EvaluationError(
                EvaluationErrorKind.CYCLIC_DEPENDENCY,
                f"{formula.test_name} depends on itself via {' -> '.join(cycle)}",
                {"test_id": formula.test_id, "cycle": cycle},
            )
        self._compiled = candidate
        return compiled

    def evaluation_order(self, test_ids: Iterable[str] | None = None) -> list[CompiledFormula]:
        """Formulas in dependency order, restricted to ``test_ids`` when given."""
        roots = list(self._compiled) if test_ids is None else list(test_ids)
        order, _ = _visit_order(self._graph(self._compiled), roots)
        wanted = None if test_ids is None else set(test_ids)
        return [
            self._compiled[node]
            for node in order
            if node in self._compiled and (wanted is None or node in wanted)
        ]


def parse_value(text: str | None) -> float | None:
    """Numeric reading of an entered value, or None for blanks and free text."""
    if not text:
        return None
    try:
        value = float(text.strip())
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def format_value(value: float, precision: int = 2) -> str:
    text = f"{value:.{precision}f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def apply_formulas(
    categories: list[CategoryResult], registry: FormulaRegistry, precision: int = 2
) -> tuple[int, list[ItemIssue]]:
    """Fill formula-test values in place, dependencies first.

    A formula that cannot be evaluated leaves its value blank with ``error``
    set; the remaining formulas still run. Returns the number of values
    computed and the per-item issues.
    """
    entries_by_test: dict[str, list[TestEntry]] = defaultdict(list)
    for _, entry in iter_category_tests(categories):
        entries_by_test[entry.test_id].append(entry)

    values: dict[str, float] = {}
    for test_id, entries in entries_by_test.items():
        for entry in entries:
            value = parse_value(entry.params[0].value) if entry.params else None
            if value is not None:
                values[test_id] = value
                break

    computed = 0
    issues: list[ItemIssue] = []
    for compiled in registry.evaluation_order(entries_by_test):
        targets = entries_by_test[compiled.test_id]
        values.pop(compiled.test_id, None)
        token_values = {
            token: values[test_id]
            for token, test_id in compiled.token_map.items()
            if test_id in values
        }
        try:
            result = evaluate(compiled, token_values)
        except EvaluationError as exc:
            logger.warning("formula: %s unavailable - %s", compiled.formula.test_name, exc.message)
            for entry in targets:
                entry.is_formula = True
                if entry.params:
                    entry.params[0].value = ""
                    entry.params[0].error = exc.kind.value
            issues.append(
                ItemIssue(
                    item_id=compiled.test_id,
                    item_name=compiled.formula.test_name,
                    code=exc.kind.value,
                    message=exc.message,
                )
            )
            continue

        values[compiled.test_id] = result
        text = format_value(result, precision)
        for entry in targets:
            entry.is_formula = True
            if entry.params:
                entry.params[0].value = text
                entry.params[0].error = None
        computed += 1

    return computed, issues
