"""Keyed JSON document collections (JSON + fcntl.flock + atomic write).

Each document lives in ``<root>/<collection>/<key>.json`` as
``{"version": n, "data": {...}}``, with the key percent-encoded into a
single filename segment. Writers take an exclusive lock on
``<root>/.lock``; readers take a shared one.

Multi-document commits go through ``journal.json``: the full set of writes
is made durable there first, then applied file by file, then the journal is
removed. A commit interrupted after the journal landed is replayed by the
next store access, so readers see either none or all of its documents.
"""

import copy
import fcntl
import json
import os
import tempfile
import urllib.parse
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar

import structlog

from learning_progress.errors import ConcurrencyConflict, DataValidationError, TransientStoreError

logger = structlog.get_logger()

T = TypeVar("T")

LOCK_FILENAME = ".lock"
JOURNAL_FILENAME = "journal.json"

DocKey = tuple[str, str]


def _check_key(collection: str, key: str) -> None:
    if not collection or not key:
        raise DataValidationError(f"Invalid document key: {collection}/{key}")


def _encode_key(key: str) -> str:
    """Filename for a document key. Any non-empty key maps to a single path segment."""
    encoded = urllib.parse.quote(key, safe="")
    if encoded.startswith("."):
        encoded = "%2E" + encoded[1:]
    return encoded


class Transaction:
    """Optimistic read-modify-write over one or more documents.

    Reads record the version they observed; ``commit`` fails with
    ``ConcurrencyConflict`` when any of them moved in the meantime.
    """

    def __init__(self, store: "DocumentStore"):
        self._store = store
        self._reads: dict[DocKey, int] = {}
        self._writes: dict[DocKey, dict[str, Any]] = {}

    def get(self, collection: str, key: str) -> dict[str, Any] | None:
        if (collection, key) in self._writes:
            return copy.deepcopy(self._writes[(collection, key)])
        version, data = self._store.read_versioned(collection, key)
        self._reads.setdefault((collection, key), version)
        return data

    def set(self, collection: str, key: str, data: dict[str, Any]) -> None:
        _check_key(collection, key)
        self._writes[(collection, key)] = copy.deepcopy(data)

    def commit(self) -> None:
        if not self._writes:
            return
        self._store.commit(self._reads, self._writes)


class DocumentStore:
    """File-backed store of keyed JSON document collections.

    Args:
        root: Directory holding the collections, lock file and journal.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock_path = self.root / LOCK_FILENAME
        self._journal_path = self.root / JOURNAL_FILENAME

    # -- reads --------------------------------------------------------------

    def get(self, collection: str, key: str) -> dict[str, Any] | None:
        return self.read_versioned(collection, key)[1]

    def read_versioned(self, collection: str, key: str) -> tuple[int, dict[str, Any] | None]:
        """Current version (0 when absent) and data of one document."""
        _check_key(collection, key)
        return self._read_consistent(lambda: self._load(collection, key))

    def get_many(self, collection: str, keys: list[str]) -> list[dict[str, Any] | None]:
        """Several documents of one collection read under a single lock."""
        for key in keys:
            _check_key(collection, key)
        return self._read_consistent(lambda: [self._load(collection, key)[1] for key in keys])

    # -- writes -------------------------------------------------------------

    def transaction(self) -> Transaction:
        return Transaction(self)

    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        """Run ``fn`` against a fresh transaction and commit its writes."""
        txn = self.transaction()
        result = fn(txn)
        txn.commit()
        return result

    def commit(self, reads: dict[DocKey, int], writes: dict[DocKey, dict[str, Any]]) -> None:
        """Atomically write ``writes`` if every document in ``reads`` is unchanged.

        Raises:
            ConcurrencyConflict: A read document changed since it was read.
            TransientStoreError: The filesystem rejected the write.
        """
        try:
            with self._locked(exclusive=True):
                self._recover()
                for (collection, key), expected in reads.items():
                    current, _ = self._load(collection, key)
                    if current != expected:
                        logger.info(
                            "transaction_conflict",
                            collection=collection,
                            key=key,
                            expected_version=expected,
                            current_version=current,
                        )
                        raise ConcurrencyConflict(collection, key)

                entries = []
                for (collection, key), data in writes.items():
                    current, _ = self._load(collection, key)
                    entries.append({
                        "collection": collection,
                        "key": key,
                        "version": current + 1,
                        "data": data,
                    })

                self._write_journal(entries)
                self._apply(entries)
                self._journal_path.unlink()
        except OSError as e:
            logger.warning("store_write_failed", error=str(e))
            raise TransientStoreError(f"Store write failed: {e}") from e

        logger.debug("transaction_committed", documents=[f"{c}/{k}" for c, k in writes])

    # -- internals ----------------------------------------------------------

    @contextmanager
    def _locked(self, exclusive: bool) -> Iterator[None]:
        with open(self._lock_path, "a") as lock_file:
            fcntl.flock(lock_file, fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
            try:
                yield
            finally:
                fcntl.flock(lock_file, fcntl.LOCK_UN)

    def _read_consistent(self, read: Callable[[], T]) -> T:
        try:
            with self._locked(exclusive=False):
                if not self._journal_path.exists():
                    return read()
            with self._locked(exclusive=True):
                self._recover()
                return read()
        except OSError as e:
            logger.warning("store_read_failed", error=str(e))
            raise TransientStoreError(f"Store read failed: {e}") from e

    def _path(self, collection: str, key: str) -> Path:
        return self.root / collection / f"{_encode_key(key)}.json"

    def _read_file(self, path: Path) -> dict[str, Any]:
        with open(path, encoding="utf-8") as f:
            return json.load(f)

    def _load(self, collection: str, key: str) -> tuple[int, dict[str, Any] | None]:
        path = self._path(collection, key)
        if not path.exists():
            return 0, None
        doc = self._read_file(path)
        return doc["version"], doc["data"]

    def _write_document(self, collection: str, key: str, doc: dict[str, Any]) -> None:
        path = self._path(collection, key)
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w", dir=path.parent, delete=False, suffix=".tmp", encoding="utf-8"
        ) as tmp:
            json.dump(doc, tmp)
        os.replace(tmp.name, path)

    def _write_journal(self, entries: list[dict[str, Any]]) -> None:
        with tempfile.NamedTemporaryFile(
            "w", dir=self.root, delete=False, suffix=".tmp", encoding="utf-8"
        ) as tmp:
            json.dump({"entries": entries}, tmp)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp.name, self._journal_path)

    def _apply(self, entries: list[dict[str, Any]]) -> None:
        for entry in entries:
            self._write_document(
                entry["collection"],
                entry["key"],
                {"version": entry["version"], "data": entry["data"]},
            )

    def _recover(self) -> None:
        """Replay a journal left behind by an interrupted commit. Caller holds the write lock."""
        if not self._journal_path.exists():
            return
        entries = self._read_file(self._journal_path)["entries"]
        self._apply(entries)
        self._journal_path.unlink()
        logger.warning("journal_replayed", documents=len(entries))
