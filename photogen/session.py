"""Reconstruction session interface and its event stream.

A session is bound to an input folder and a configuration when it is created.
Callers submit requests with ``process`` and observe progress by iterating
``outputs``, which yields events strictly in the order the engine emitted them.
"""

from __future__ import annotations

import logging
import queue
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from photogen.options import ModelFileRequest, ReconstructionConfiguration

logger = logging.getLogger(__name__)


class SessionError(Exception):
    """Raised when the engine cannot create a session or accept requests."""


class EngineUnsupportedError(SessionError):
    """Raised when the reconstruction engine is unavailable on this host."""


class OutputStreamError(Exception):
    """Raised from the output iterator when the event stream itself fails."""


# === Results ===

class RequestResult:
    """Base class for request results."""


@dataclass(frozen=True)
class ModelFileResult(RequestResult):
    url: Path


# === Events ===

class SessionOutput:
    """Base class for everything a session emits."""

    def describe(self) -> str:
        return repr(self)


@dataclass(frozen=True)
class InputComplete(SessionOutput):
    pass


@dataclass(frozen=True)
class InvalidSample(SessionOutput):
    id: int
    reason: str


@dataclass(frozen=True)
class SkippedSample(SessionOutput):
    id: int


@dataclass(frozen=True)
class AutomaticDownsampling(SessionOutput):
    pass


@dataclass(frozen=True)
class RequestProgress(SessionOutput):
    request: ModelFileRequest
    fraction_complete: float


@dataclass(frozen=True)
class RequestComplete(SessionOutput):
    request: ModelFileRequest
    result: RequestResult


@dataclass(frozen=True)
class RequestError(SessionOutput):
    request: ModelFileRequest
    error: Exception


@dataclass(frozen=True)
class ProcessingComplete(SessionOutput):
    pass


@dataclass(frozen=True)
class ProcessingCancelled(SessionOutput):
    pass


# === Channel ===

_END = object()


class _Failure:
    def __init__(self, error: BaseException):
        self.error = error


class OutputChannel:
    """Ordered single-consumer channel carrying session events.

    The channel terminates exactly once: either ``close`` ends iteration
    normally or ``fail`` makes the iterator raise ``OutputStreamError``.
    Anything put after termination is dropped.
    """

    def __init__(self):
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._lock = threading.Lock()
        self._terminated = False

    @property
    def terminated(self) -> bool:
        return self._terminated

    def put(self, event: SessionOutput) -> None:
        with self._lock:
            if self._terminated:
                logger.debug(f"Dropping event after stream end: {event!r}")
                return
            self._queue.put(event)

    def fail(self, error: BaseException) -> None:
        self._terminate(_Failure(error))

    def close(self) -> None:
        self._terminate(_END)

    def _terminate(self, marker: Any) -> None:
        with self._lock:
            if self._terminated:
                return
            self._terminated = True
            self._queue.put(marker)

    def __iter__(self) -> Iterator[SessionOutput]:
        while True:
            item = self._queue.get()
            if item is _END:
                return
            if isinstance(item, _Failure):
                raise OutputStreamError(str(item.error)) from item.error
            yield item


# === Session ===

class PhotogrammetrySession(ABC):
    """Abstract reconstruction session.

    Subclasses implement ``_start`` to begin work on a background thread and
    publish events through ``self.channel``. Closing the session, directly or
    by leaving a ``with`` block, cancels any work still in flight.
    """

    def __init__(
        self,
        input_folder: Path,
        configuration: ReconstructionConfiguration,
        config: Optional[Dict] = None
    ):
        self.input_folder = Path(input_folder)
        self.configuration = configuration
        self.config = config or {}
        self.channel = OutputChannel()
        self._started = False
        self._cancelled = threading.Event()

    @classmethod
    def is_supported(cls, config: Optional[Dict] = None) -> bool:
        """Whether this host can run the engine."""
        return True

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def process(self, requests: List[ModelFileRequest]) -> None:
        """Queue requests for processing and return immediately.

        Raises:
            SessionError: If the request list is empty, the session has
                already been started or cancelled, or the engine fails to start
        """
        if not requests:
            raise SessionError("No requests to process")
        if self._started:
            raise SessionError("Session is already processing")
        if self.cancelled:
            raise SessionError("Session was cancelled")
        self._started = True
        try:
            self._start(list(requests))
        except (OSError, RuntimeError) as e:
            # Nothing is running, so cancel() can still end the stream
            self._started = False
            raise SessionError(f"Failed to start processing: {e}") from e

    def outputs(self) -> Iterator[SessionOutput]:
        """Iterate the session's events in emission order."""
        return iter(self.channel)

    def cancel(self) -> None:
        """Cancel outstanding work.

        A session that never started ends its stream right away.
        """
        if self.cancelled:
            return
        self._cancelled.set()
        if not self._started:
            self.channel.put(ProcessingCancelled())
            self.channel.close()
        else:
            self._on_cancel()

    def close(self) -> None:
        if not self.channel.terminated:
            self.cancel()

    def __enter__(self) -> "PhotogrammetrySession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @abstractmethod
    def _start(self, requests: List[ModelFileRequest]) -> None:
        """Begin processing ``requests`` without blocking."""

    def _on_cancel(self) -> None:
        """Interrupt running work after ``cancel`` on a started session."""
