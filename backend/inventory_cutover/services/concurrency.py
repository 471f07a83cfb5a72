# Overview: Service-layer helpers for concurrency; retries for database units of work and bounded read fan-out.

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Sequence, TypeVar

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import StorageError
from ..extensions import db

T = TypeVar("T")
R = TypeVar("R")


def lock_for_update(query):
    """
    SELECT ... FOR UPDATE on the session row while a batch is approved.

    SQLite has no row locks and ignores it; there the version_id column on
    ExtractionSession and Cutover catches concurrent writers instead.
    """
    return query.with_for_update()


def run_with_retry(func: Callable[[], T], *, attempts: int = 3, backoff_base: float = 0.1) -> T:
    """
    Execute a DB unit of work with retry on concurrency-related failures.

    Lock timeouts and deadlocks surface as OperationalError, version_id
    conflicts as StaleDataError; both are retried. The session is rolled
    back before each retry, so func must redo all of its writes (and its own
    commit), not just the commit.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
    raise RuntimeError("run_with_retry called with attempts < 1")


def run_in_transaction(func: Callable[[], T], *, attempts: int = 3, backoff_base: float = 0.1) -> T:
    """
    run_with_retry + commit, surfacing exhausted/unexpected DB failures as StorageError.
    """
    def _op():
        result = func()
        db.session.commit()
        return result

    try:
        return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise StorageError(
            f"Database operation failed: {exc}",
            user_message="The change could not be saved.",
        ) from exc


def chunked(values: Sequence[T], size: int) -> list[list[T]]:
    size = max(1, int(size))
    return [list(values[i:i + size]) for i in range(0, len(values), size)]


@dataclass
class FanOutResult:
    results: list[Any] = field(default_factory=list)
    # (chunk, exception) for every chunk that raised
    failures: list[tuple[list[Any], Exception]] = field(default_factory=list)


def fan_out(func: Callable[[list[T]], R], chunks: Iterable[list[T]], *, max_workers: int = 4) -> FanOutResult:
    """
    Run a read-only function over chunks concurrently.

    Only for external reads (catalog HTTP calls). Database sessions are bound
    to the request thread and must not be used inside func.
    Failures are collected per chunk instead of aborting the others.
    """
    chunks = [c for c in chunks if c]
    out = FanOutResult()
    if not chunks:
        return out

    workers = max(1, min(int(max_workers), len(chunks)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [(chunk, pool.submit(func, chunk)) for chunk in chunks]
        for chunk, future in futures:
            try:
                out.results.append(future.result())
            except Exception as exc:  # noqa: BLE001
                out.failures.append((chunk, exc))
    return out
