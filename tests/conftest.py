"""
Shared fixtures: in-memory document store, scripted LLM, deterministic embedder.

Pipelines run for real (LangGraph, query parser, audit, re-embedding); only
MongoDB and the model endpoints are replaced.
"""

import copy
import hashlib
import math
import random
import re
from typing import Any, Callable

import pytest

from querychain.agent import retrieval, structured_query, update
from querychain.core.caller import Caller
from querychain.core.config import EMBEDDING_DIMENSIONS, EMBEDDING_FIELD, REEMBED_MARKER_FIELD
from querychain.services import reembedding
from querychain.services.reembedding import record_summary


def fake_vector(text: str) -> list[float]:
    """Deterministic pseudo-random unit vector for text."""
    rnd = random.Random(hashlib.sha256(text.encode("utf-8")).digest())
    vec = [rnd.uniform(-1.0, 1.0) for _ in range(EMBEDDING_DIMENSIONS)]
    norm = math.sqrt(sum(x * x for x in vec)) or 1.0
    return [x / norm for x in vec]


def _matches_condition(value: Any, op: str, arg: Any, options: str) -> bool:
    if op == "$eq":
        return value == arg
    if op == "$ne":
        return value != arg
    if op == "$exists":
        return (value is not _MISSING) == bool(arg)
    if value is _MISSING or value is None:
        return False
    if op == "$gt":
        return value > arg
    if op == "$gte":
        return value >= arg
    if op == "$lt":
        return value < arg
    if op == "$lte":
        return value <= arg
    if op == "$in":
        return value in arg
    if op == "$nin":
        return value not in arg
    if op == "$regex":
        flags = re.IGNORECASE if "i" in options else 0
        return re.search(arg, str(value), flags) is not None
    raise AssertionError(f"fake store does not support {op}")


_MISSING = object()


def matches(doc: dict[str, Any], flt: dict[str, Any]) -> bool:
    for key, cond in flt.items():
        if key == "$and":
            if not all(matches(doc, sub) for sub in cond):
                return False
            continue
        if key == "$or":
            if not any(matches(doc, sub) for sub in cond):
                return False
            continue
        value = doc.get(key, _MISSING)
        if isinstance(cond, dict) and cond and all(k.startswith("$") for k in cond):
            options = cond.get("$options", "")
            for op, arg in cond.items():
                if op == "$options":
                    continue
                if not _matches_condition(value, op, arg, options):
                    return False
        elif value != cond:
            return False
    return True


def _hide(doc: dict[str, Any]) -> dict[str, Any]:
    return {k: copy.deepcopy(v) for k, v in doc.items() if k not in (EMBEDDING_FIELD, REEMBED_MARKER_FIELD)}


class FakeStore:
    """In-memory stand-in for DocumentStore with the same async interface."""

    def __init__(self) -> None:
        self.collections: dict[str, list[dict[str, Any]]] = {}
        self.permissions: dict[str, list[str]] = {}
        self.audit: list[dict[str, Any]] = []
        self.reads: list[tuple[str, dict]] = []
        self.embedding_writes: list[Any] = []

    def add(self, collection: str, doc: dict[str, Any], embedded: bool = True) -> dict[str, Any]:
        doc = dict(doc)
        if embedded:
            doc[EMBEDDING_FIELD] = fake_vector(record_summary(doc))
        self.collections.setdefault(collection, []).append(doc)
        return doc

    def get(self, collection: str, doc_id: Any) -> dict[str, Any]:
        return next(d for d in self.collections[collection] if d["_id"] == doc_id)

    async def find(self, collection: str, flt: dict[str, Any]) -> list[dict[str, Any]]:
        self.reads.append((collection, flt))
        return [_hide(d) for d in self.collections.get(collection, []) if matches(d, flt)]

    async def find_for_embedding(self, collection: str, flt: dict[str, Any]) -> list[dict[str, Any]]:
        return [
            {k: copy.deepcopy(v) for k, v in d.items() if k != EMBEDDING_FIELD}
            for d in self.collections.get(collection, [])
            if matches(d, flt)
        ]

    async def find_needing_embedding(self, collection: str) -> list[dict[str, Any]]:
        flt = {"$or": [{EMBEDDING_FIELD: {"$exists": False}}, {REEMBED_MARKER_FIELD: True}]}
        return await self.find_for_embedding(collection, flt)

    async def update_many(self, collection: str, flt: dict[str, Any], update: dict[str, Any]) -> int:
        assert set(update) == {"$set"}
        modified = 0
        for doc in self.collections.get(collection, []):
            if not matches(doc, flt):
                continue
            changed = any(doc.get(k, _MISSING) != v for k, v in update["$set"].items())
            doc.update(copy.deepcopy(update["$set"]))
            modified += int(changed)
        return modified

    async def set_embedding(self, collection: str, doc_id: Any, vector: list[float]) -> None:
        doc = self.get(collection, doc_id)
        doc[EMBEDDING_FIELD] = list(vector)
        doc.pop(REEMBED_MARKER_FIELD, None)
        self.embedding_writes.append(doc_id)

    async def vector_search(
        self, collection: str, vector: list[float], num_candidates: int, limit: int
    ) -> list[dict[str, Any]]:
        scored = []
        for doc in self.collections.get(collection, [])[:num_candidates]:
            emb = doc.get(EMBEDDING_FIELD)
            if not emb:
                continue
            cosine = sum(a * b for a, b in zip(vector, emb))
            scored.append(dict(_hide(doc), score=(cosine + 1.0) / 2.0))
        scored.sort(key=lambda d: -d["score"])
        return scored[:limit]

    async def find_permission(self, role: str) -> dict[str, Any] | None:
        if role not in self.permissions:
            return None
        return {"role": role, "allowedCollections": list(self.permissions[role])}

    async def insert_audit(self, entry: dict[str, Any]) -> None:
        self.audit.append(dict(entry))


MANAGERS = [
    {"_id": 1, "Name": "Vidit Tayal", "CGPA": 8.9, "Branch": "IT", "Role": "Engineering Manager",
     "Company": "Acme", "CTC": 72, "Details": "Leads the platform team."},
    {"_id": 2, "Name": " Kangan Gupta ", "CGPA": 9.1, "Branch": "CO", "Role": "Product Manager",
     "Company": "Globex", "CTC": 45, "Details": "Owns the payments roadmap."},
    {"_id": 3, "Name": "Riya Sharma", "CGPA": 8.2, "Branch": "ECE", "Role": "Program Manager",
     "Company": "Initech", "CTC": 55, "Details": "Runs hardware launches."},
    {"_id": 4, "Name": "Arjun Mehta", "CGPA": 7.8, "Branch": "CO", "Role": "Engineering Manager",
     "Company": "Acme", "CTC": 38, "Details": "Manages the data team."},
]


@pytest.fixture
def store(monkeypatch) -> FakeStore:
    fake = FakeStore()
    for doc in MANAGERS:
        fake.add("managers", doc)
    fake.permissions = {"Admin": ["*"], "Analyst": ["managers"], "Guest": ["reports"]}
    for module in (structured_query, retrieval, update):
        monkeypatch.setattr(module, "get_document_store", lambda: fake)
    return fake


class ScriptedLLM:
    """
    Async stand-in for agent.llm.complete. Responses are keyed by system
    instruction; a callable response receives the input text.
    """

    def __init__(self) -> None:
        self.responses: dict[str, Any] = {}
        self.calls: list[tuple[str, str, bool]] = []

    def on(self, instruction: str, response: Any | Callable[[str], Any]) -> "ScriptedLLM":
        self.responses[instruction] = response
        return self

    def calls_for(self, instruction: str) -> list[str]:
        return [text for instr, text, _ in self.calls if instr == instruction]

    async def __call__(self, instruction: str, text: str, structured: bool = True) -> Any:
        self.calls.append((instruction, text, structured))
        if instruction not in self.responses:
            raise AssertionError(f"unexpected model call: {instruction[:60]!r}")
        response = self.responses[instruction]
        if isinstance(response, BaseException):
            raise response
        return response(text) if callable(response) else copy.deepcopy(response)


@pytest.fixture
def llm(monkeypatch) -> ScriptedLLM:
    scripted = ScriptedLLM()
    for module in (structured_query, retrieval, update):
        monkeypatch.setattr(module, "complete", scripted)
    return scripted


class FakeEmbedder:
    def __init__(self) -> None:
        self.calls: list[str] = []
        self.fail_after: int | None = None
        self.error: BaseException | None = None

    async def __call__(self, text: str) -> list[float]:
        if self.fail_after is not None and len(self.calls) >= self.fail_after:
            raise self.error or RuntimeError("embedding failed")
        self.calls.append(text)
        return fake_vector(text)


@pytest.fixture
def embedder(monkeypatch) -> FakeEmbedder:
    fake = FakeEmbedder()
    monkeypatch.setattr(retrieval, "embed", fake)
    monkeypatch.setattr(reembedding, "embed", fake)
    return fake


@pytest.fixture
def admin() -> Caller:
    return Caller(id="user-123", role="Admin")


@pytest.fixture
def guest() -> Caller:
    return Caller(id="guest-1", role="Guest")
