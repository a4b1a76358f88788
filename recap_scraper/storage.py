"""Document store for events and groups.

The store exposes single-document operations only (query, get, add, update,
delete). There are no multi-document transactions: callers read, decide and
write, and must tolerate partial writes.
"""

import json
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog

from recap_scraper.exceptions import StoreWriteError

logger = structlog.get_logger(__name__)

EVENTS = "events"
GROUPS = "groups"

# Keys whose values are timestamps in stored documents
DATE_KEYS = frozenset({"date"})


class Filter:
    """Composable query filter, evaluated against one document's fields.

    Example:
        Filter.and_(
            Filter.or_(
                Filter.where("name", "==", "Saratoga HS"),
                Filter.where("aliases", "array-contains", "Saratoga HS"),
            ),
            Filter.where("division", "==", "Percussion Scholastic World"),
        )
    """

    OPERATORS = ("==", "array-contains")

    def matches(self, data: dict[str, Any]) -> bool:
        raise NotImplementedError

    @staticmethod
    def where(field: str, op: str, value: Any) -> "FieldFilter":
        return FieldFilter(field, op, value)

    @staticmethod
    def or_(*filters: "Filter") -> "CompositeFilter":
        return CompositeFilter("or", list(filters))

    @staticmethod
    def and_(*filters: "Filter") -> "CompositeFilter":
        return CompositeFilter("and", list(filters))


class FieldFilter(Filter):
    def __init__(self, field: str, op: str, value: Any) -> None:
        if op not in self.OPERATORS:
            raise ValueError(f"Unsupported filter operator: {op}")
        self.field = field
        self.op = op
        self.value = value

    def matches(self, data: dict[str, Any]) -> bool:
        if self.field not in data:
            return False
        actual = data[self.field]
        if self.op == "==":
            return actual == self.value
        return isinstance(actual, list) and self.value in actual

    def __repr__(self) -> str:
        return f"FieldFilter({self.field!r} {self.op} {self.value!r})"


class CompositeFilter(Filter):
    def __init__(self, operator: str, filters: list[Filter]) -> None:
        self.operator = operator
        self.filters = filters

    def matches(self, data: dict[str, Any]) -> bool:
        if self.operator == "or":
            return any(f.matches(data) for f in self.filters)
        return all(f.matches(data) for f in self.filters)

    def __repr__(self) -> str:
        return f"CompositeFilter({self.operator}, {self.filters!r})"


@dataclass
class Document:
    id: str
    data: dict[str, Any]


class Collection:
    """One named collection of documents, kept in memory.

    Returned documents are deep copies; mutating them never changes the
    stored state. Subclasses persist changes by overriding ``_persist``.
    """

    def __init__(
        self, name: str, documents: dict[str, dict[str, Any]] | None = None
    ) -> None:
        self.name = name
        self._documents: dict[str, dict[str, Any]] = documents or {}
        self._lock = threading.Lock()

    @staticmethod
    def _copy(data: dict[str, Any]) -> dict[str, Any]:
        # Documents hold JSON-like values and datetimes only
        return _decode(_encode(data))

    def where(self, query: Filter) -> list[Document]:
        with self._lock:
            return [
                Document(doc_id, self._copy(data))
                for doc_id, data in self._documents.items()
                if query.matches(data)
            ]

    def all(self) -> list[Document]:
        with self._lock:
            return [
                Document(doc_id, self._copy(data))
                for doc_id, data in self._documents.items()
            ]

    def get(self, doc_id: str) -> Document | None:
        with self._lock:
            data = self._documents.get(doc_id)
            return Document(doc_id, self._copy(data)) if data is not None else None

    def add(self, data: dict[str, Any]) -> str:
        """Adds a document and returns its generated id."""
        doc_id = uuid.uuid4().hex[:20]
        with self._lock:
            self._documents[doc_id] = self._copy(data)
            try:
                self._commit("add", doc_id)
            except StoreWriteError:
                del self._documents[doc_id]
                raise
        return doc_id

    def update(self, doc_id: str, fields: dict[str, Any]) -> None:
        """Overwrites the given top-level fields of an existing document."""
        with self._lock:
            if doc_id not in self._documents:
                raise StoreWriteError(
                    f"No document {doc_id} in {self.name}",
                    collection=self.name,
                    doc_id=doc_id,
                    operation="update",
                )
            previous = self._documents[doc_id]
            self._documents[doc_id] = {**previous, **self._copy(fields)}
            try:
                self._commit("update", doc_id)
            except StoreWriteError:
                self._documents[doc_id] = previous
                raise

    def delete(self, doc_id: str) -> None:
        with self._lock:
            previous = self._documents.pop(doc_id, None)
            try:
                self._commit("delete", doc_id)
            except StoreWriteError:
                if previous is not None:
                    self._documents[doc_id] = previous
                raise

    def _commit(self, operation: str, doc_id: str) -> None:
        try:
            self._persist()
        except (OSError, TypeError, ValueError) as e:
            raise StoreWriteError(
                f"Failed to {operation} {self.name}/{doc_id}: {e}",
                collection=self.name,
                doc_id=doc_id,
                operation=operation,
            ) from e

    def _persist(self) -> None:
        pass


class MemoryStore:
    """In-process store, used for tests and dry runs."""

    def __init__(self) -> None:
        self._collections: dict[str, Collection] = {}

    def collection(self, name: str) -> Collection:
        if name not in self._collections:
            self._collections[name] = self._open(name)
        return self._collections[name]

    def _open(self, name: str) -> Collection:
        return Collection(name)


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items()}
    if isinstance(value, list | tuple | set):
        return [_encode(v) for v in value]
    return value


def _decode(value: Any, key: str | None = None) -> Any:
    if key in DATE_KEYS and isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return value
    if isinstance(value, dict):
        return {k: _decode(v, k) for k, v in value.items()}
    if isinstance(value, list):
        return [_decode(v) for v in value]
    return value


class JsonCollection(Collection):
    """Collection persisted as one JSON file, rewritten on every write."""

    def __init__(self, name: str, path: Path) -> None:
        self.path = path
        super().__init__(name, self._load())

    def _load(self) -> dict[str, dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as e:
            logger.error("collection_load_failed", path=str(self.path), error=str(e))
            raise
        documents = raw.get("documents", {})
        return {doc_id: _decode(data) for doc_id, data in documents.items()}

    def _persist(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Sort by ID for stable git diffs
        output = {
            "collection": self.name,
            "documents": {
                doc_id: _encode(self._documents[doc_id])
                for doc_id in sorted(self._documents)
            },
        }
        tmp_path = self.path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(output, f, indent=2, ensure_ascii=False)
            f.write("\n")
        tmp_path.replace(self.path)


class JsonStore(MemoryStore):
    """Store whose collections live in ``{root}/{collection}.json``."""

    def __init__(self, root: str) -> None:
        super().__init__()
        self.root = Path(root)

    def _open(self, name: str) -> Collection:
        path = self.root / f"{name}.json"
        logger.debug("collection_opened", path=str(path))
        return JsonCollection(name, path)
