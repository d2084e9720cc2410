"""
An LRU cache that writes its full contents to a text file after every change.

File layout (UTF-8, one record per line):

    lru-cache 1 <capacity>
    <json key>\t<json value>
    ...

Entries run from least to most recently used, so loading them in file order
rebuilds the exact recency order. Both fields are JSON, which escapes tabs and
newlines inside strings, so the tab separator and the line break are never
ambiguous. JSON arrays read back as keys become tuples.

Without custom serializers, only values that JSON reads back unchanged are
accepted: str, int, float, bool, None, lists and str-keyed dicts of those.
Keys may also be tuples of such scalars. Anything else (a tuple value, a dict
with int keys, a set) makes the write fail with IoFailure.
"""

import json
import logging
import os
from collections.abc import Callable
from typing import Any, Generic, Hashable, List, Optional, Tuple, TypeVar, Union

from cache_errors import DecodeFailure, IoFailure
from lru_cache import LRUCache

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

MAGIC = "lru-cache"
FORMAT_VERSION = 1
SEPARATOR = "\t"

log = logging.getLogger(__name__)


def _identity(x):
    return x


def _key_from_json(data):
    if isinstance(data, list):
        return tuple(_key_from_json(item) for item in data)
    return data


_JSON_SCALARS = (str, int, float, bool, type(None))


def _check_json_exact(data, as_key):
    """
    Raise TypeError if `data` would not read back unchanged from plain JSON.

    Only exact builtin types survive. Keys may hold tuples (read back from
    arrays); values may hold lists and dicts with str keys.
    """
    kind = type(data)
    if kind in _JSON_SCALARS:
        return
    if kind is (tuple if as_key else list):
        for item in data:
            _check_json_exact(item, as_key)
        return
    if kind is dict and not as_key:
        for k, v in data.items():
            if type(k) is not str:
                raise TypeError(f"dict key {k!r} would be read back as a string")
            _check_json_exact(v, as_key)
        return
    raise TypeError(f"{kind.__name__} {data!r} would not be read back unchanged")


def encode_entries(
    capacity: int,
    entries: List[Tuple[Any, Any]],
    key_serializer: Callable[[Any], Any] = _identity,
    value_serializer: Callable[[Any], Any] = _identity,
) -> str:
    """
    Render entries (least recently used first) in the storage format.

    Keys and values encoded without a serializer must be made of types that
    read back unchanged (see _check_json_exact).

    Raises:
        TypeError: If a key or value is not JSON serializable after the
                   serializer has been applied, or would change type when
                   read back.
    """
    lines = [f"{MAGIC} {FORMAT_VERSION} {capacity}"]
    for key, value in entries:
        if key_serializer is _identity:
            _check_json_exact(key, as_key=True)
        if value_serializer is _identity:
            _check_json_exact(value, as_key=False)
        encoded_key = json.dumps(key_serializer(key), ensure_ascii=False)
        encoded_value = json.dumps(value_serializer(value), ensure_ascii=False)
        lines.append(f"{encoded_key}{SEPARATOR}{encoded_value}")
    return "\n".join(lines) + "\n"


def decode_entries(
    text: str,
    path: Optional[str] = None,
    key_deserializer: Callable[[Any], Any] = _key_from_json,
    value_deserializer: Callable[[Any], Any] = _identity,
) -> Tuple[int, List[Tuple[Any, Any]]]:
    """
    Parse the storage format back into (stored capacity, entries).

    Raises:
        DecodeFailure: On a malformed header or entry line, or a key that
                       appears twice.
    """
    lines = text.split("\n")
    # A trailing newline leaves one empty element behind
    if lines and lines[-1] == "":
        lines.pop()
    if not lines:
        raise DecodeFailure("missing header", path, 1)

    header = lines[0].split(" ")
    if len(header) != 3 or header[0] != MAGIC:
        raise DecodeFailure(f"unrecognized header {lines[0]!r}", path, 1)
    if header[1] != str(FORMAT_VERSION):
        raise DecodeFailure(f"unsupported format version {header[1]!r}", path, 1)
    try:
        stored_capacity = int(header[2])
    except ValueError as e:
        raise DecodeFailure(f"invalid capacity {header[2]!r}", path, 1) from e

    entries = []
    seen = set()
    for line_number, line in enumerate(lines[1:], start=2):
        fields = line.split(SEPARATOR)
        if len(fields) != 2:
            raise DecodeFailure("expected exactly one tab separating key and value", path, line_number)
        try:
            key = key_deserializer(json.loads(fields[0]))
            value = value_deserializer(json.loads(fields[1]))
            duplicate = key in seen
        except (ValueError, TypeError) as e:
            raise DecodeFailure(f"invalid entry: {e}", path, line_number) from e
        if duplicate:
            raise DecodeFailure(f"duplicate key {key!r}", path, line_number)
        seen.add(key)
        entries.append((key, value))

    return stored_capacity, entries


class PersistentLRUCache(Generic[K, V]):
    """
    Wraps an LRUCache and keeps a file in sync with it.

    Every call that can change the cache contents or their order (`put`,
    `remove`, `clear` and, unless disabled, a `get` that hits) rewrites the
    whole file once the in-memory change is done. Writes go to a temp file
    which then replaces the target, so a crash never leaves a half-written
    file behind.

    A failed write raises IoFailure but does not undo the in-memory change.
    Memory and disk then disagree until the next successful write (or
    `flush()`); restarting before that loses the change.

    No file locking is done; two processes sharing a path will race.
    """

    def __init__(
        self,
        capacity: int,
        path: Union[str, "os.PathLike[str]"],
        persist_on_read: bool = True,
        key_serializer: Callable[[K], Any] = _identity,
        key_deserializer: Callable[[Any], K] = _key_from_json,
        value_serializer: Callable[[V], Any] = _identity,
        value_deserializer: Callable[[Any], V] = _identity,
    ):
        """
        Creates the cache, loading any state previously saved at `path`.

        Args:
            capacity: Maximum number of entries. Must be at least 1.
            path: File holding the cache contents. It need not exist yet; it
                  is created by the first persisted change.
            persist_on_read: Rewrite the file after a `get` hit so the
                  promoted order survives a restart. Turning this off makes
                  reads cheaper at the cost of recency fidelity across restarts.
            key_serializer: Converts keys to JSON-serializable data.
            key_deserializer: Inverse of key_serializer. The default turns
                  lists back into tuples.
            value_serializer: Converts values to JSON-serializable data.
            value_deserializer: Inverse of value_serializer.

        Raises:
            CapacityError: If capacity is below 1.
            IoFailure: If an existing file cannot be read.
            DecodeFailure: If an existing file is malformed.
        """
        self._path = os.fspath(path)
        self._persist_on_read = persist_on_read
        self._key_serializer = key_serializer
        self._key_deserializer = key_deserializer
        self._value_serializer = value_serializer
        self._value_deserializer = value_deserializer
        self._cache: LRUCache[K, V] = LRUCache(capacity)
        self._load()

    @classmethod
    def new_persistent(
        cls, capacity: int, path: Union[str, "os.PathLike[str]"], **kwargs
    ) -> "PersistentLRUCache[K, V]":
        """Same as the constructor."""
        return cls(capacity, path, **kwargs)

    @property
    def path(self) -> str:
        return self._path

    @property
    def capacity(self) -> int:
        return self._cache.capacity

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, key) -> bool:
        return key in self._cache

    def __repr__(self) -> str:
        return f"{type(self).__name__}(capacity={self.capacity}, size={len(self)}, path={self._path!r})"

    def is_empty(self) -> bool:
        return self._cache.is_empty()

    def contains(self, key: K) -> bool:
        return self._cache.contains(key)

    def peek(self, key: K) -> Optional[V]:
        return self._cache.peek(key)

    def items(self) -> List[Tuple[K, V]]:
        return self._cache.items()

    def keys(self) -> List[K]:
        return self._cache.keys()

    def get_stats(self) -> dict:
        return self._cache.get_stats()

    def get(self, key: K) -> Optional[V]:
        """
        Return the value for `key`, marking it as recently used.

        A hit rewrites the file when persist_on_read is enabled; a miss never
        touches storage.

        Raises:
            IoFailure: If the rewrite after a hit fails.
        """
        hit = key in self._cache
        value = self._cache.get(key)
        if hit and self._persist_on_read:
            self.flush()
        return value

    def put(self, key: K, value: V) -> Optional[V]:
        """
        Insert or update `key`, then rewrite the file.

        Returns:
            The previous value for `key`, or None.

        Raises:
            IoFailure: If the file could not be written. The entry is
                       already in memory at that point.
        """
        previous = self._cache.put(key, value)
        self.flush()
        return previous

    def insert(self, key: K, value: V) -> Optional[V]:
        return self.put(key, value)

    def remove(self, key: K) -> Optional[V]:
        """
        Remove `key` and rewrite the file. Removing a missing key is a no-op
        that does not touch storage.
        """
        if key not in self._cache:
            return None
        value = self._cache.remove(key)
        self.flush()
        return value

    def clear(self) -> None:
        """Remove all entries and rewrite the file."""
        self._cache.clear()
        self.flush()

    def flush(self) -> None:
        """
        Write the current state to disk, replacing the previous contents.

        Raises:
            IoFailure: If the file could not be written.
        """
        entries = self._cache.items()
        try:
            data = encode_entries(
                self._cache.capacity, entries, self._key_serializer, self._value_serializer
            ).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise IoFailure(f"Cannot serialize cache contents: {e}", self._path) from e

        # Atomic write via temp file to avoid partial corruption
        temp_path = self._path + ".tmp"
        try:
            with open(temp_path, "wb") as f:
                f.write(data)
            os.replace(temp_path, self._path)
        except OSError as e:
            if os.path.exists(temp_path):
                try:
                    os.unlink(temp_path)
                except OSError:
                    log.warning("Could not remove temp file %s", temp_path)
            log.warning("Failed to write cache file %s: %s", self._path, e)
            raise IoFailure(f"Failed to write cache file {self._path}: {e}", self._path) from e

        log.debug("Wrote %d entries to %s", len(entries), self._path)

    def _load(self) -> None:
        try:
            with open(self._path, "r", encoding="utf-8", newline="") as f:
                text = f.read()
        except FileNotFoundError:
            log.debug("No cache file at %s, starting empty", self._path)
            return
        except UnicodeDecodeError as e:
            raise DecodeFailure(f"cache file is not valid UTF-8: {e}", self._path) from e
        except OSError as e:
            raise IoFailure(f"Failed to read cache file {self._path}: {e}", self._path) from e

        if not text:
            return

        # Tolerate files edited on Windows
        text = text.replace("\r\n", "\n")
        _, entries = decode_entries(text, self._path, self._key_deserializer, self._value_deserializer)

        capacity = self._cache.capacity
        if len(entries) > capacity:
            log.warning(
                "Cache file %s holds %d entries but capacity is %d; keeping the %d most recently used",
                self._path,
                len(entries),
                capacity,
                capacity,
            )
        self._cache = LRUCache.from_items(capacity, entries)
        log.debug("Loaded %d entries from %s", len(self._cache), self._path)
