"""
Strict parser for model-produced filters and updates (the safety check).

Model output is untrusted. Instead of asking a second model whether a filter is
safe, the raw JSON is parsed into a closed set of shapes:

    Filter      := Clause*                       (implicit AND)
    Clause      := FieldPredicate | Logical
    FieldPredicate := field -> Condition+
    Condition   := Comparison ($eq $ne $gt $gte $lt $lte)
                 | Membership ($in $nin)
                 | Pattern    ($regex [+ $options])
    Logical     := $and | $or over Filter+
    Mutation    := $set { field: value }

Anything else is rejected with SecurityRejectedError. What gets executed is the
re-serialized parse (``Filter.to_mongo()``), never the raw model output.
"""

from dataclasses import dataclass
from typing import Any, Union

from querychain.core.config import EMBEDDING_FIELD, REEMBED_MARKER_FIELD
from querychain.core.errors import SecurityRejectedError

SAFE_QUERY_REASON = "Query uses safe find operators."
SAFE_UPDATE_REASON = "Update uses $set operator and a specific filter."

COMPARISON_OPERATORS = frozenset({"$eq", "$ne", "$gt", "$gte", "$lt", "$lte"})
MEMBERSHIP_OPERATORS = frozenset({"$in", "$nin"})
PATTERN_OPERATOR = "$regex"
PATTERN_OPTIONS = "$options"
ALLOWED_REGEX_OPTIONS = frozenset("imsx")
LOGICAL_OPERATORS = frozenset({"$and", "$or"})
MUTATION_OPERATOR = "$set"

# Server-side code execution and cross-collection access
DANGEROUS_OPERATORS = frozenset({
    "$where",
    "$function",
    "$accumulator",
    "$eval",
    "$expr",
    "$jsonSchema",
    "$lookup",
    "$graphLookup",
    "$unionWith",
})

AGGREGATION_STAGES = frozenset({
    "$match",
    "$group",
    "$project",
    "$addFields",
    "$replaceRoot",
    "$replaceWith",
    "$unwind",
    "$sort",
    "$limit",
    "$skip",
    "$facet",
    "$bucket",
    "$bucketAuto",
    "$sample",
    "$count",
    "$out",
    "$merge",
    "$vectorSearch",
    "$search",
    "$unset",
})

PROTECTED_FIELDS = frozenset({"_id", EMBEDDING_FIELD, REEMBED_MARKER_FIELD})

_FOLDED_OPS = {"$eq": "$in", "$ne": "$nin"}

Scalar = Union[str, int, float, bool, None]


@dataclass(frozen=True)
class Comparison:
    op: str
    value: Scalar


@dataclass(frozen=True)
class Membership:
    op: str
    values: tuple


@dataclass(frozen=True)
class Pattern:
    pattern: str
    options: str = ""


Condition = Union[Comparison, Membership, Pattern]


@dataclass(frozen=True)
class FieldPredicate:
    field: str
    conditions: tuple


@dataclass(frozen=True)
class Logical:
    op: str
    branches: tuple


@dataclass(frozen=True)
class Filter:
    clauses: tuple = ()

    @property
    def is_empty(self) -> bool:
        return not self.clauses

    def fields(self) -> frozenset[str]:
        names: set[str] = set()
        for clause in self.clauses:
            if isinstance(clause, FieldPredicate):
                names.add(clause.field)
            else:
                for branch in clause.branches:
                    names |= branch.fields()
        return frozenset(names)

    def literals(self) -> frozenset[tuple]:
        """
        (field, op, value) for every non-pattern constant, with $eq folded into $in
        and $ne into $nin, so {"$or": [{"a": 1}, {"a": 2}]} and {"a": {"$in": [1, 2]}}
        compare equal. Regex patterns are left out.
        """
        out: set[tuple] = set()
        for clause in self.clauses:
            if isinstance(clause, FieldPredicate):
                for cond in clause.conditions:
                    if isinstance(cond, Comparison):
                        op = _FOLDED_OPS.get(cond.op, cond.op)
                        out.add((clause.field, op, cond.value))
                    elif isinstance(cond, Membership):
                        out.update((clause.field, cond.op, v) for v in cond.values)
            else:
                for branch in clause.branches:
                    out |= branch.literals()
        return frozenset(out)

    def to_mongo(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for clause in self.clauses:
            if isinstance(clause, FieldPredicate):
                out[clause.field] = _conditions_to_mongo(clause.conditions)
            else:
                out[clause.op] = [branch.to_mongo() for branch in clause.branches]
        return out


@dataclass(frozen=True)
class Mutation:
    assignments: tuple = ()

    @property
    def is_empty(self) -> bool:
        return not self.assignments

    def fields(self) -> frozenset[str]:
        return frozenset(name for name, _ in self.assignments)

    def to_mongo(self) -> dict[str, Any]:
        return {MUTATION_OPERATOR: {name: value for name, value in self.assignments}}


def _conditions_to_mongo(conditions: tuple) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for cond in conditions:
        if isinstance(cond, Comparison):
            out[cond.op] = cond.value
        elif isinstance(cond, Membership):
            out[cond.op] = list(cond.values)
        else:
            out[PATTERN_OPERATOR] = cond.pattern
            if cond.options:
                out[PATTERN_OPTIONS] = cond.options
    return out


def _is_scalar(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float, bool))


def find_denied_operator(raw: Any) -> str | None:
    """Return the first deny-listed operator or aggregation stage anywhere in raw, else None."""
    if isinstance(raw, dict):
        for key, value in raw.items():
            if isinstance(key, str) and (key in DANGEROUS_OPERATORS or key in AGGREGATION_STAGES):
                return key
            found = find_denied_operator(value)
            if found:
                return found
    elif isinstance(raw, list):
        for item in raw:
            found = find_denied_operator(item)
            if found:
                return found
    return None


def _denied_reason(op: str) -> str:
    if op in DANGEROUS_OPERATORS:
        return f"Query contains potentially dangerous operator {op}."
    return f"Query contains aggregation pipeline stage {op}."


def _check_field_name(name: Any, stage: str) -> str:
    if not isinstance(name, str) or not name.strip():
        raise SecurityRejectedError("Field names must be non-empty strings.", stage=stage)
    if any(part.startswith("$") or not part for part in name.split(".")):
        raise SecurityRejectedError(f"Invalid field path {name!r}.", stage=stage)
    return name


def _parse_conditions(field: str, raw: dict, stage: str) -> tuple:
    conditions: list = []
    if PATTERN_OPTIONS in raw and PATTERN_OPERATOR not in raw:
        raise SecurityRejectedError(f"{PATTERN_OPTIONS} without {PATTERN_OPERATOR} on {field!r}.", stage=stage)
    for op, value in raw.items():
        if op == PATTERN_OPTIONS:
            continue
        if op in COMPARISON_OPERATORS:
            if not _is_scalar(value):
                raise SecurityRejectedError(f"{op} on {field!r} must compare against a plain value.", stage=stage)
            conditions.append(Comparison(op, value))
        elif op in MEMBERSHIP_OPERATORS:
            if not isinstance(value, list) or not all(_is_scalar(v) for v in value):
                raise SecurityRejectedError(f"{op} on {field!r} must be a list of plain values.", stage=stage)
            conditions.append(Membership(op, tuple(value)))
        elif op == PATTERN_OPERATOR:
            options = raw.get(PATTERN_OPTIONS, "")
            if not isinstance(value, str):
                raise SecurityRejectedError(f"{op} on {field!r} must be a string pattern.", stage=stage)
            if not isinstance(options, str) or not set(options) <= ALLOWED_REGEX_OPTIONS:
                raise SecurityRejectedError(f"Unsupported regex options {options!r} on {field!r}.", stage=stage)
            conditions.append(Pattern(value, options))
        else:
            raise SecurityRejectedError(f"Query uses unsupported operator {op}.", stage=stage)
    return tuple(conditions)


def _parse_field(field: str, value: Any, stage: str) -> FieldPredicate:
    if _is_scalar(value):
        return FieldPredicate(field, (Comparison("$eq", value),))
    if isinstance(value, list):
        raise SecurityRejectedError(f"Array match on {field!r} is not supported; use $in.", stage=stage)
    if not isinstance(value, dict) or not value:
        raise SecurityRejectedError(f"Empty or invalid condition for {field!r}.", stage=stage)
    op_keys = [k for k in value if isinstance(k, str) and k.startswith("$")]
    if len(op_keys) != len(value):
        raise SecurityRejectedError(f"Embedded document match on {field!r} is not supported.", stage=stage)
    return FieldPredicate(field, _parse_conditions(field, value, stage))


def _parse_filter_body(raw: Any, stage: str) -> Filter:
    if not isinstance(raw, dict):
        raise SecurityRejectedError("Filter must be a JSON object.", stage=stage)
    clauses: list = []
    for key, value in raw.items():
        if isinstance(key, str) and key in LOGICAL_OPERATORS:
            if not isinstance(value, list) or not value:
                raise SecurityRejectedError(f"{key} requires a non-empty list of filters.", stage=stage)
            branches = tuple(_parse_filter_body(branch, stage) for branch in value)
            if any(branch.is_empty for branch in branches):
                raise SecurityRejectedError(f"{key} contains an empty filter.", stage=stage)
            clauses.append(Logical(key, branches))
        elif isinstance(key, str) and key.startswith("$"):
            raise SecurityRejectedError(f"Query uses unsupported operator {key}.", stage=stage)
        else:
            clauses.append(_parse_field(_check_field_name(key, stage), value, stage))
    return Filter(tuple(clauses))


def parse_filter(raw: Any, stage: str = "query") -> Filter:
    """
    Parse an untrusted filter into a Filter. Raises SecurityRejectedError naming the
    offending operator (deny-listed operators are reported before any shape error).
    """
    denied = find_denied_operator(raw)
    if denied:
        raise SecurityRejectedError(_denied_reason(denied), stage=stage)
    return _parse_filter_body(raw, stage)


def parse_mutation(raw: Any) -> Mutation:
    """Parse an untrusted update document. Only {"$set": {...}} is accepted."""
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise SecurityRejectedError("Update must be a JSON object.", stage="update")
    for op in raw:
        if op == MUTATION_OPERATOR:
            continue
        if isinstance(op, str) and op.startswith("$"):
            raise SecurityRejectedError(f"Update uses a dangerous operator other than $set: {op}.", stage="update")
        raise SecurityRejectedError("Update must use the $set operator; replacement documents are not allowed.", stage="update")
    assignments = raw.get(MUTATION_OPERATOR) or {}
    if not isinstance(assignments, dict):
        raise SecurityRejectedError("$set must map field names to values.", stage="update")
    parsed: list = []
    for name, value in assignments.items():
        name = _check_field_name(name, "update")
        if name.split(".")[0] in PROTECTED_FIELDS:
            raise SecurityRejectedError(f"Update may not modify protected field {name!r}.", stage="update")
        if not (_is_scalar(value) or (isinstance(value, list) and all(_is_scalar(v) for v in value))):
            raise SecurityRejectedError(f"Value for {name!r} must be a plain value.", stage="update")
        parsed.append((name, value))
    return Mutation(tuple(parsed))


def parse_update(raw: Any) -> tuple[Filter, Mutation]:
    """
    Safety check for update requests. Rejects, in order: any operator other than
    $set, an unsafe filter, an empty filter (would touch the whole collection),
    and a $set with no fields.
    """
    if not isinstance(raw, dict):
        raise SecurityRejectedError("Update request must be an object with 'filter' and 'update'.", stage="update")
    mutation = parse_mutation(raw.get("update"))
    flt = parse_filter(raw.get("filter") or {}, stage="update")
    if flt.is_empty:
        raise SecurityRejectedError("Update filter is empty. This is too broad.", stage="update")
    if mutation.is_empty:
        raise SecurityRejectedError("Update sets no fields.", stage="update")
    return flt, mutation
