"""Declarative event filters.

Filters are written as Mongo/sift-style dicts and compiled once into a tree
of predicate nodes::

    {"eventName": "httpRequest", "hostname": {"$in": ["a.com", "b.com"]}}
    {"$or": [{"tags": "auth"}, {"pathname": re.compile(r"^/api/")}]}
    {"hostname": lambda self: self.base_hostname}

Callables anywhere in a filter become resolver nodes. They are bound to the
owning instance and evaluated (sync or async) at dispatch time, before the
resolved tree is matched against an event record.
"""

import inspect
import operator
import re
from dataclasses import dataclass
from typing import Any, Callable, Mapping

_MISSING = object()

_LOGICAL_OPERATORS = ("$and", "$or", "$nor")
_COMPARISONS = {
    "$gt": operator.gt,
    "$gte": operator.ge,
    "$lt": operator.lt,
    "$lte": operator.le,
}


def _lookup(record: Any, path: str) -> Any:
    """Fetch a dotted path from a mapping (or attributes of an object)."""
    current = record
    for part in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(part, _MISSING)
        elif isinstance(current, (list, tuple)) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else _MISSING
        else:
            current = getattr(current, part, _MISSING)
        if current is _MISSING:
            return _MISSING
    return current


def _values_equal(actual: Any, expected: Any) -> bool:
    if isinstance(expected, re.Pattern):
        return isinstance(actual, str) and expected.search(actual) is not None
    return actual == expected


def _field_equals(actual: Any, expected: Any) -> bool:
    """Equality with array semantics: a list field matches if any item does."""
    if actual is _MISSING:
        return expected is None
    if _values_equal(actual, expected):
        return True
    if isinstance(actual, (list, tuple)):
        return any(_values_equal(item, expected) for item in actual)
    return False


def _has_callables(value: Any) -> bool:
    if callable(value) and not isinstance(value, (re.Pattern, type)):
        return True
    if isinstance(value, Mapping):
        return any(_has_callables(v) for v in value.values())
    if isinstance(value, (list, tuple, set)):
        return any(_has_callables(v) for v in value)
    return False


async def resolve_value(value: Any, instance: Any) -> Any:
    """Replace every callable in value by its (awaited) result for instance."""
    if callable(value) and not isinstance(value, (re.Pattern, type)):
        result = value(instance) if instance is not None else value()
        if inspect.isawaitable(result):
            result = await result
        return result
    if isinstance(value, Mapping):
        return {k: await resolve_value(v, instance) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [await resolve_value(v, instance) for v in value]
    return value


class Predicate:
    """A node of a compiled filter."""

    dynamic = False

    async def resolve(self, instance: Any) -> "Predicate":
        """Evaluate resolver nodes for instance, returning a static tree."""
        return self

    def matches(self, record: Any) -> bool:
        raise NotImplementedError


@dataclass(frozen=True)
class MatchAll(Predicate):
    def matches(self, record: Any) -> bool:
        return True


@dataclass(frozen=True)
class _FieldPredicate(Predicate):
    path: str
    value: Any

    @property
    def dynamic(self) -> bool:
        return _has_callables(self.value)

    async def resolve(self, instance: Any) -> Predicate:
        if not self.dynamic:
            return self
        return type(self)(self.path, await resolve_value(self.value, instance))


@dataclass(frozen=True)
class Equals(_FieldPredicate):
    def matches(self, record: Any) -> bool:
        return _field_equals(_lookup(record, self.path), self.value)


@dataclass(frozen=True)
class NotEquals(_FieldPredicate):
    def matches(self, record: Any) -> bool:
        return not _field_equals(_lookup(record, self.path), self.value)


@dataclass(frozen=True)
class In(_FieldPredicate):
    def matches(self, record: Any) -> bool:
        actual = _lookup(record, self.path)
        return any(_field_equals(actual, candidate) for candidate in self.value)


@dataclass(frozen=True)
class NotIn(_FieldPredicate):
    def matches(self, record: Any) -> bool:
        actual = _lookup(record, self.path)
        return not any(_field_equals(actual, candidate) for candidate in self.value)


@dataclass(frozen=True)
class Regex(_FieldPredicate):
    flags: int = 0

    async def resolve(self, instance: Any) -> Predicate:
        if not self.dynamic:
            return self
        return Regex(self.path, await resolve_value(self.value, instance), self.flags)

    def matches(self, record: Any) -> bool:
        pattern = self.value
        if not isinstance(pattern, re.Pattern):
            pattern = re.compile(str(pattern), self.flags)
        actual = _lookup(record, self.path)
        items = actual if isinstance(actual, (list, tuple)) else [actual]
        return any(isinstance(item, str) and pattern.search(item) for item in items)


@dataclass(frozen=True)
class Exists(_FieldPredicate):
    def matches(self, record: Any) -> bool:
        return (_lookup(record, self.path) is not _MISSING) == bool(self.value)


@dataclass(frozen=True)
class Compare(_FieldPredicate):
    op: str = "$eq"

    async def resolve(self, instance: Any) -> Predicate:
        if not self.dynamic:
            return self
        return Compare(self.path, await resolve_value(self.value, instance), self.op)

    def matches(self, record: Any) -> bool:
        actual = _lookup(record, self.path)
        if actual is _MISSING or actual is None:
            return False
        try:
            return _COMPARISONS[self.op](actual, self.value)
        except TypeError:
            return False


@dataclass(frozen=True)
class And(Predicate):
    children: tuple[Predicate, ...]

    @property
    def dynamic(self) -> bool:
        return any(child.dynamic for child in self.children)

    async def resolve(self, instance: Any) -> Predicate:
        if not self.dynamic:
            return self
        return type(self)(tuple([await c.resolve(instance) for c in self.children]))

    def matches(self, record: Any) -> bool:
        return all(child.matches(record) for child in self.children)


@dataclass(frozen=True)
class Or(And):
    def matches(self, record: Any) -> bool:
        return any(child.matches(record) for child in self.children)


@dataclass(frozen=True)
class Nor(And):
    def matches(self, record: Any) -> bool:
        return not any(child.matches(record) for child in self.children)


@dataclass(frozen=True)
class Not(Predicate):
    child: Predicate

    @property
    def dynamic(self) -> bool:
        return self.child.dynamic

    async def resolve(self, instance: Any) -> Predicate:
        if not self.dynamic:
            return self
        return Not(await self.child.resolve(instance))

    def matches(self, record: Any) -> bool:
        return not self.child.matches(record)


@dataclass(frozen=True)
class Resolver(Predicate):
    """A field whose whole condition comes from an instance-bound function.

    The function's result is compiled as if it had been written in place,
    so it may return a plain value or an operator dict.
    """

    path: str
    fn: Callable[..., Any]

    dynamic = True

    async def resolve(self, instance: Any) -> Predicate:
        value = await resolve_value(self.fn, instance)
        return await compile_field(self.path, value).resolve(instance)

    def matches(self, record: Any) -> bool:
        raise RuntimeError(f"Resolver for {self.path!r} must be resolved before matching")


def compile_filter(query: Mapping[str, Any] | Predicate | None) -> Predicate:
    """Compile a filter dict into a predicate tree."""
    if isinstance(query, Predicate):
        return query
    if not query:
        return MatchAll()

    nodes: list[Predicate] = []
    for key, value in query.items():
        if key in _LOGICAL_OPERATORS:
            children = tuple(compile_filter(item) for item in value)
            nodes.append({"$and": And, "$or": Or, "$nor": Nor}[key](children))
        elif key == "$not":
            nodes.append(Not(compile_filter(value)))
        elif key.startswith("$"):
            raise ValueError(f"Unsupported top-level filter operator: {key}")
        else:
            nodes.append(compile_field(key, value))

    return nodes[0] if len(nodes) == 1 else And(tuple(nodes))


def _is_operator_dict(value: Any) -> bool:
    return isinstance(value, Mapping) and bool(value) and all(
        isinstance(k, str) and k.startswith("$") for k in value
    )


def compile_field(path: str, condition: Any) -> Predicate:
    """Compile the condition attached to one field."""
    if callable(condition) and not isinstance(condition, (re.Pattern, type)):
        return Resolver(path, condition)
    if isinstance(condition, re.Pattern):
        return Regex(path, condition)
    if not _is_operator_dict(condition):
        return Equals(path, condition)

    options = condition.get("$options", "")
    flags = re.IGNORECASE if "i" in options else 0
    if "m" in options:
        flags |= re.MULTILINE

    nodes: list[Predicate] = []
    for op, operand in condition.items():
        if op == "$eq":
            nodes.append(Equals(path, operand))
        elif op == "$ne":
            nodes.append(NotEquals(path, operand))
        elif op == "$in":
            nodes.append(In(path, tuple(operand) if not callable(operand) else operand))
        elif op == "$nin":
            nodes.append(NotIn(path, tuple(operand) if not callable(operand) else operand))
        elif op == "$regex":
            nodes.append(Regex(path, operand, flags))
        elif op == "$options":
            continue
        elif op == "$exists":
            nodes.append(Exists(path, operand))
        elif op in _COMPARISONS:
            nodes.append(Compare(path, operand, op))
        elif op == "$not":
            nodes.append(Not(compile_field(path, operand)))
        else:
            raise ValueError(f"Unsupported filter operator: {op}")

    return nodes[0] if len(nodes) == 1 else And(tuple(nodes))
