"""
Persisted state for the pipeline.

Every component receives a StateStore explicitly; there is no module-level
store. JsonStateStore re-reads the file on every access so that state survives
the process being torn down between invocations.
"""
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Generic, Iterable, List, Optional, Protocol, Type, TypeVar

from pydantic import BaseModel


logger = logging.getLogger(__name__)

# State keys
ACTIVE_FILTER_KEY = "active_filter"
PAGING_CURSOR_KEY = "paging_cursor"
UNIVERSE_KEY = "universe"
RUN_STATUS_KEY = "last_run_status"
LEDGER_FILTER_KEY = "ledger_filter"
STAGING_TABLE_KEY = "table:staging"
FILTER_TABLE_KEY = "table:filters"
MARKET_CACHE_TABLE_KEY = "table:market_cache"


class StateStore(Protocol):
    """Key-value store for pipeline state. Values must be JSON-serializable."""

    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def set_many(self, values: Dict[str, Any]) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self) -> List[str]: ...


class MemoryStateStore:
    """In-process store, used by tests and dry runs."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = {}
        for key, value in (initial or {}).items():
            self.set(key, value)

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        # Round-trip through JSON so callers never share mutable state with the store
        return json.loads(self._data[key])

    def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value, default=str)

    def set_many(self, values: Dict[str, Any]) -> None:
        encoded = {key: json.dumps(value, default=str) for key, value in values.items()}
        self._data.update(encoded)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data.keys())


class JsonStateStore:
    """Single JSON file store with atomic replace on write."""

    def __init__(self, path: str):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        with open(self.path) as f:
            content = f.read()
        if not content.strip():
            return {}
        return json.loads(content)

    def _write(self, data: Dict[str, Any]) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2, default=str)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get(self, key: str, default: Any = None) -> Any:
        return self._read().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def set_many(self, values: Dict[str, Any]) -> None:
        """Update several keys with one atomic file replace."""
        data = self._read()
        data.update(values)
        self._write(data)

    def delete(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)

    def keys(self) -> List[str]:
        return list(self._read().keys())


ModelT = TypeVar("ModelT", bound=BaseModel)


class KeyedTable(Generic[ModelT]):
    """
    Ordered table of pydantic rows, unique by `key_field`, persisted under a
    single state key. Storage order is insertion order.

    This is the only place rows are mapped to and from plain dicts.
    """

    def __init__(self, store: StateStore, state_key: str, model: Type[ModelT], key_field: str):
        self.store = store
        self.state_key = state_key
        self.model = model
        self.key_field = key_field

    def _load_raw(self) -> List[Dict[str, Any]]:
        return self.store.get(self.state_key, []) or []

    def dump(self, rows: Iterable[ModelT]) -> List[Dict[str, Any]]:
        """Rows in their stored form, for callers batching several tables into one write."""
        return [r.model_dump(mode="json") for r in rows]

    def _save(self, rows: Iterable[ModelT]) -> None:
        self.store.set(self.state_key, self.dump(rows))

    def _key_of(self, row: ModelT) -> str:
        return getattr(row, self.key_field)

    def all(self) -> List[ModelT]:
        return [self.model.model_validate(r) for r in self._load_raw()]

    def as_dict(self) -> Dict[str, ModelT]:
        """Rows keyed by key field, in storage order."""
        return {self._key_of(r): r for r in self.all()}

    def get(self, key: str) -> Optional[ModelT]:
        for raw in self._load_raw():
            if raw.get(self.key_field) == key:
                return self.model.model_validate(raw)
        return None

    def contains(self, key: str) -> bool:
        return any(raw.get(self.key_field) == key for raw in self._load_raw())

    def count(self) -> int:
        return len(self._load_raw())

    def append(self, row: ModelT) -> bool:
        """Append a row. Returns False (and writes nothing) if the key already exists."""
        rows = self.all()
        key = self._key_of(row)
        if any(self._key_of(r) == key for r in rows):
            return False
        rows.append(row)
        self._save(rows)
        return True

    def upsert(self, row: ModelT) -> None:
        """Replace the row with the same key in place, or append it."""
        rows = self.all()
        key = self._key_of(row)
        for i, existing in enumerate(rows):
            if self._key_of(existing) == key:
                rows[i] = row
                break
        else:
            rows.append(row)
        self._save(rows)

    def replace_all(self, rows: Iterable[ModelT]) -> None:
        """Persist a full set of rows, keeping the first occurrence of each key."""
        seen = set()
        unique = []
        for row in rows:
            key = self._key_of(row)
            if key in seen:
                logger.warning(f"Dropping duplicate {self.key_field}={key} in {self.state_key}")
                continue
            seen.add(key)
            unique.append(row)
        self._save(unique)

    def clear(self) -> None:
        self.store.delete(self.state_key)
