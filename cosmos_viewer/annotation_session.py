"""UI-side annotation cache for the active dataset.

Every list/create/update/delete is tagged with a per-dataset sequence number
when it is requested. Mutations are applied to the cache optimistically and
kept in a journal until acknowledged; a list response replaces the cache with
the server copy and then replays the journal in request order, so a write
that completes after the list was read is never lost and the visible state
always reflects the latest requested operation rather than the latest
completion.
"""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol, Set, Tuple

from annotation_model import Annotation, validate_annotation, with_created_at
from cosmos_errors import CosmosError, UpstreamUnavailable, ValidationError

_LOGGER = logging.getLogger("Cosmos.Viewer.AnnotationSession")

Completion = Callable[[Optional[object], Optional[BaseException]], None]

CREATE = "create"
UPDATE = "update"
DELETE = "delete"


class AnnotationBackend(Protocol):
    def list(self, dataset_id: str) -> List[Annotation]: ...
    def create(self, dataset_id: str, annotation: Annotation) -> None: ...
    def update(self, dataset_id: str, annotation: Annotation) -> None: ...
    def delete(self, dataset_id: str, annotation_id: str) -> None: ...


class Dispatcher(Protocol):
    def submit(self, work: Callable[[], object], on_done: Completion) -> None: ...


class ImmediateDispatcher:
    """Runs work inline; completion fires before ``submit`` returns."""

    def submit(self, work: Callable[[], object], on_done: Completion) -> None:
        try:
            result = work()
        except Exception as exc:
            on_done(None, exc)
            return
        on_done(result, None)


class ThreadedDispatcher:
    """Runs work on a thread pool and hands completions to ``deliver``.

    ``deliver`` receives a zero-argument callable and is expected to run it on
    the UI thread. Without one the completion runs on the worker thread.
    """

    def __init__(self, max_workers: int = 4, deliver: Optional[Callable[[Callable[[], None]], None]] = None) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="Cosmos-Annotations")
        self._deliver = deliver or (lambda callback: callback())

    def submit(self, work: Callable[[], object], on_done: Completion) -> None:
        future = self._executor.submit(work)

        def _finished(done: Future) -> None:
            exc = done.exception()
            result = None if exc is not None else done.result()
            self._deliver(lambda: on_done(result, exc))

        future.add_done_callback(_finished)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


@dataclass(frozen=True)
class FailedWrite:
    dataset_id: str
    operation: str
    annotation_id: str
    error: BaseException


@dataclass
class _Mutation:
    seq: int
    dataset_id: str
    operation: str
    annotation_id: str
    annotation: Optional[Annotation] = None
    attempts: int = 0
    acknowledged: bool = False
    failed: bool = False
    error: Optional[BaseException] = None

    def apply(self, entries: List[Annotation]) -> List[Annotation]:
        if self.operation == DELETE:
            return [entry for entry in entries if entry.id != self.annotation_id]
        assert self.annotation is not None
        updated = list(entries)
        for index, entry in enumerate(updated):
            if entry.id == self.annotation_id:
                updated[index] = self.annotation
                return updated
        updated.append(self.annotation)
        return updated


Listener = Callable[["AnnotationSession"], None]
ErrorCallback = Callable[[CosmosError], None]


class AnnotationSession:
    """Cache plus write queue for the active dataset.

    Writes for one dataset are sent one at a time in request order; the next
    journal entry goes out only once the previous one is acknowledged,
    rejected or has given up. A write that gives up after its retries halts
    that dataset's queue until ``retry_failed_writes`` is called.
    """

    def __init__(
        self,
        backend: AnnotationBackend,
        dispatcher: Optional[Dispatcher] = None,
        *,
        max_write_attempts: int = 3,
        retry_backoff: float = 0.5,
        on_error: Optional[ErrorCallback] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._backend = backend
        self._dispatcher = dispatcher or ImmediateDispatcher()
        self._max_write_attempts = max(1, int(max_write_attempts))
        self._retry_backoff = max(0.0, float(retry_backoff))
        self._on_error = on_error
        self._sleep = sleep
        self._lock = threading.RLock()
        self._listeners: List[Listener] = []
        self._dataset_id: Optional[str] = None
        # Last server list for the active dataset with acknowledged writes folded in.
        self._base: List[Annotation] = []
        self._annotations: List[Annotation] = []
        self._loaded = False
        self._sequence: Dict[str, int] = {}
        self._latest_load: Dict[str, int] = {}
        self._load_outstanding: Dict[str, Set[int]] = {}
        self._journal: Dict[str, List[_Mutation]] = {}
        self._in_flight: Dict[str, _Mutation] = {}

    # Observers -----------------------------------------------------------

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # State ---------------------------------------------------------------

    @property
    def dataset_id(self) -> Optional[str]:
        return self._dataset_id

    @property
    def annotations(self) -> Tuple[Annotation, ...]:
        return tuple(self._annotations)

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def is_loading(self) -> bool:
        dataset_id = self._dataset_id
        return dataset_id is not None and dataset_id in self._load_outstanding

    @property
    def pending_writes(self) -> int:
        with self._lock:
            return sum(1 for mutations in self._journal.values() for mutation in mutations if not mutation.acknowledged)

    @property
    def failed_writes(self) -> Tuple[FailedWrite, ...]:
        failed: List[FailedWrite] = []
        for mutations in self._journal.values():
            for mutation in mutations:
                if mutation.failed:
                    failed.append(
                        FailedWrite(
                            mutation.dataset_id,
                            mutation.operation,
                            mutation.annotation_id,
                            mutation.error or UpstreamUnavailable("write failed"),
                        )
                    )
        return tuple(failed)

    def find(self, annotation_id: str) -> Optional[Annotation]:
        return next((entry for entry in self._annotations if entry.id == annotation_id), None)

    # Loading -------------------------------------------------------------

    def select_dataset(self, dataset_id: str) -> None:
        """Make ``dataset_id`` active; loads still in flight for another dataset are ignored."""

        if not dataset_id:
            raise ValueError("dataset id must be a non-empty string")
        with self._lock:
            if dataset_id != self._dataset_id:
                self._dataset_id = dataset_id
                self._base = []
                self._annotations = []
                self._loaded = False
        self.refresh()

    def refresh(self) -> None:
        with self._lock:
            dataset_id = self._dataset_id
            if dataset_id is None:
                return
            seq = self._next_seq(dataset_id)
            self._latest_load[dataset_id] = seq
            self._load_outstanding[dataset_id] = {
                mutation.seq for mutation in self._journal.get(dataset_id, ()) if not mutation.acknowledged
            }
        _LOGGER.debug("Loading annotations for %s (seq=%d)", dataset_id, seq)
        self._notify()
        self._dispatcher.submit(
            lambda: self._backend.list(dataset_id),
            lambda result, exc: self._load_finished(dataset_id, seq, result, exc),
        )

    def _load_finished(self, dataset_id: str, seq: int, result: object, exc: Optional[BaseException]) -> None:
        with self._lock:
            if seq != self._latest_load.get(dataset_id):
                _LOGGER.debug("Discarding superseded annotation list for %s (seq=%d)", dataset_id, seq)
                return
            self._load_outstanding.pop(dataset_id, None)
            if dataset_id != self._dataset_id:
                self._prune(dataset_id)
                _LOGGER.debug("Discarding annotation list for inactive dataset %s", dataset_id)
                return
            if exc is not None:
                _LOGGER.warning("Annotation load failed for %s: %s", dataset_id, exc)
                error = exc if isinstance(exc, CosmosError) else UpstreamUnavailable(str(exc))
            else:
                error = None
                self._base = list(result or [])
                self._rebuild(dataset_id)
                self._loaded = True
                self._prune(dataset_id)
        if error is not None:
            self._report(error)
        self._notify()

    # Mutations -----------------------------------------------------------

    def create(self, annotation: Annotation) -> Annotation:
        """Validate, stamp and optimistically add ``annotation``; the write runs in the background."""

        validate_annotation(annotation)
        stamped = with_created_at(annotation)
        self._mutate(CREATE, stamped.id, stamped)
        return stamped

    def update(self, annotation: Annotation) -> Annotation:
        validate_annotation(annotation)
        existing = self.find(annotation.id)
        if existing is not None and not annotation.created_at and existing.created_at:
            annotation = with_created_at(annotation, existing.created_at)
        self._mutate(UPDATE, annotation.id, annotation)
        return annotation

    def delete(self, annotation_id: str) -> None:
        if not annotation_id:
            raise ValueError("annotation id must be a non-empty string")
        self._mutate(DELETE, annotation_id, None)

    def retry_failed_writes(self) -> int:
        """Resume queues halted by writes that exhausted their attempts; returns how many were reset."""

        with self._lock:
            retry = [mutation for mutations in self._journal.values() for mutation in mutations if mutation.failed]
            for mutation in retry:
                mutation.failed = False
                mutation.error = None
                mutation.attempts = 0
            datasets = sorted({mutation.dataset_id for mutation in retry})
        for dataset_id in datasets:
            self._send_next(dataset_id)
        return len(retry)

    def _mutate(self, operation: str, annotation_id: str, annotation: Optional[Annotation]) -> None:
        with self._lock:
            dataset_id = self._dataset_id
            if dataset_id is None:
                raise RuntimeError("no dataset selected")
            mutation = _Mutation(
                seq=self._next_seq(dataset_id),
                dataset_id=dataset_id,
                operation=operation,
                annotation_id=annotation_id,
                annotation=annotation,
            )
            self._journal.setdefault(dataset_id, []).append(mutation)
            self._annotations = mutation.apply(self._annotations)
        self._notify()
        self._send_next(dataset_id)

    # Write queue ---------------------------------------------------------

    def _send_next(self, dataset_id: str) -> None:
        with self._lock:
            if dataset_id in self._in_flight:
                return
            mutation = next(
                (entry for entry in self._journal.get(dataset_id, ()) if not entry.acknowledged), None
            )
            if mutation is None or mutation.failed:
                return
            self._in_flight[dataset_id] = mutation
        self._dispatch_write(mutation)

    def _dispatch_write(self, mutation: _Mutation) -> None:
        mutation.attempts += 1
        delay = self._retry_delay(mutation.attempts)
        self._dispatcher.submit(
            lambda: self._perform(mutation, delay),
            lambda _result, exc: self._write_finished(mutation, exc),
        )

    def _retry_delay(self, attempt: int) -> float:
        if attempt <= 1 or self._retry_backoff <= 0:
            return 0.0
        return self._retry_backoff * (2 ** (attempt - 2))

    def _perform(self, mutation: _Mutation, delay: float) -> None:
        if delay > 0:
            self._sleep(delay)
        if mutation.operation == CREATE:
            self._backend.create(mutation.dataset_id, mutation.annotation)
        elif mutation.operation == UPDATE:
            self._backend.update(mutation.dataset_id, mutation.annotation)
        else:
            self._backend.delete(mutation.dataset_id, mutation.annotation_id)

    def _write_finished(self, mutation: _Mutation, exc: Optional[BaseException]) -> None:
        dataset_id = mutation.dataset_id
        if exc is None:
            with self._lock:
                mutation.acknowledged = True
                self._in_flight.pop(dataset_id, None)
                self._prune(dataset_id)
            _LOGGER.debug("%s %s acknowledged for %s", mutation.operation, mutation.annotation_id, dataset_id)
            self._send_next(dataset_id)
            return
        if isinstance(exc, UpstreamUnavailable) and mutation.attempts < self._max_write_attempts:
            _LOGGER.info(
                "Retrying %s of %s (attempt %d/%d): %s",
                mutation.operation,
                mutation.annotation_id,
                mutation.attempts + 1,
                self._max_write_attempts,
                exc,
            )
            self._dispatch_write(mutation)
            return
        if isinstance(exc, ValidationError):
            with self._lock:
                self._in_flight.pop(dataset_id, None)
                journal = self._journal.get(dataset_id, [])
                if mutation in journal:
                    journal.remove(mutation)
                if not journal:
                    self._journal.pop(dataset_id, None)
                if dataset_id == self._dataset_id:
                    self._rebuild(dataset_id)
            _LOGGER.warning("Server rejected %s of %s: %s", mutation.operation, mutation.annotation_id, exc)
            self._report(exc)
            self._notify()
            self._send_next(dataset_id)
            return
        error = exc if isinstance(exc, CosmosError) else UpstreamUnavailable(str(exc))
        with self._lock:
            mutation.failed = True
            mutation.error = error
            self._in_flight.pop(dataset_id, None)
        _LOGGER.error("Annotation %s of %s failed: %s", mutation.operation, mutation.annotation_id, error)
        self._report(error)
        self._notify()

    # Internal helpers ----------------------------------------------------

    def _next_seq(self, dataset_id: str) -> int:
        seq = self._sequence.get(dataset_id, 0) + 1
        self._sequence[dataset_id] = seq
        return seq

    def _rebuild(self, dataset_id: str) -> None:
        entries = list(self._base)
        for mutation in self._journal.get(dataset_id, ()):
            entries = mutation.apply(entries)
        self._annotations = entries

    def _prune(self, dataset_id: str) -> None:
        outstanding = self._load_outstanding.get(dataset_id, set())
        journal = self._journal.get(dataset_id)
        if not journal:
            return
        active = dataset_id == self._dataset_id
        # Only an acknowledged prefix can go; later entries must replay in order.
        while journal and journal[0].acknowledged and journal[0].seq not in outstanding:
            done = journal.pop(0)
            if active:
                self._base = done.apply(self._base)
        if not journal:
            del self._journal[dataset_id]

    def _report(self, error: CosmosError) -> None:
        if self._on_error is not None:
            self._on_error(error)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)
