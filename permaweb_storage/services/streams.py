"""
Tarball byte streams.

``UploadTarball`` and ``ReadTarball`` are what the host gets back from
``write_tarball`` / ``read_tarball``. Each one owns a worker task and a chunk
channel (``asyncio.Queue``) and reports progress through listeners::

    open, data, content-length, end, success, error

The one law: exactly one of ``success`` or ``error`` fires per stream, and
nothing fires after it. ``abort()`` on a stream that has not finished fires
``error`` (``UploadAborted``) and cancels the worker, so ``success`` can no
longer follow.

Listeners are called synchronously in registration order and their exceptions
are never swallowed. A progress listener (``open``/``data``/...) that raises
fails the stream. Errors reach ``error`` listeners and ``done()`` as
``StorageError``: anything else is wrapped in ``InternalError`` with the
original as ``__cause__``. A terminal listener that raises
propagates to whoever fired the event: the caller of ``abort()``, or the
worker task, in which case ``done()`` re-raises it.

Hosts that prefer awaiting over callbacks use ``wait_open()`` and ``done()``;
``ReadTarball`` is also an async iterator over chunks, with ``read_all()``.
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from ..errors import InternalError, StorageError, UploadAborted
from ..logging import get_logger

log = get_logger(__name__)

EVENTS = ("open", "data", "content-length", "end", "success", "error")
CHUNK_SIZE = 64 * 1024

Listener = Callable[..., Any]

_EOF = object()


class _TarballStream:
    kind = "stream"

    def __init__(self, file_name: str) -> None:
        loop = asyncio.get_running_loop()
        self.file_name = file_name
        self._listeners: Dict[str, List[Listener]] = {e: [] for e in EVENTS}
        self._outcome: asyncio.Future = loop.create_future()
        # Callers that never await done() must not trigger "exception never retrieved".
        self._outcome.add_done_callback(lambda f: f.cancelled() or f.exception())
        self._opened = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._terminal = False

    # ---------- listeners ----------

    def on(self, event: str, listener: Listener) -> "_TarballStream":
        if event not in self._listeners:
            raise ValueError(f"unknown stream event {event!r}; expected one of {EVENTS}")
        self._listeners[event].append(listener)
        return self

    def _emit(self, event: str, *args: Any) -> None:
        for listener in list(self._listeners[event]):
            listener(*args)

    # ---------- lifecycle ----------

    @property
    def finished(self) -> bool:
        return self._terminal

    @property
    def listener_error(self) -> Optional[BaseException]:
        """Exception a terminal listener raised inside the worker, if any."""
        task = self._task
        if task is None or not task.done() or task.cancelled():
            return None
        return task.exception()

    @property
    def opened(self) -> bool:
        return self._opened.is_set()

    def _start(self, work: Callable[[], Awaitable[Any]]) -> None:
        self._task = asyncio.ensure_future(self._run(work))
        self._task.add_done_callback(self._on_task_done)

    async def _run(self, work: Callable[[], Awaitable[Any]]) -> None:
        try:
            result = await work()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if not isinstance(exc, StorageError):
                log.error("stream.failed", kind=self.kind, file=self.file_name, error=repr(exc))
            self._fail(StorageError.from_unexpected(exc))
        else:
            self._succeed(result)

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("stream.listener_failed", kind=self.kind, file=self.file_name, error=repr(exc))

    def _mark_open(self) -> None:
        self._opened.set()
        self._emit("open")

    def _succeed(self, result: Any = None) -> None:
        if self._terminal:
            return
        self._terminal = True
        self._outcome.set_result(result)
        self._emit("success")

    def _fail(self, exc: BaseException) -> None:
        if self._terminal:
            return
        self._terminal = True
        self._outcome.set_exception(exc)
        self._emit("error", exc)

    def _abort(self, exc: StorageError) -> None:
        if self._terminal:
            return
        log.warning("stream.aborted", kind=self.kind, file=self.file_name)
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._fail(exc)

    # ---------- awaitables ----------

    async def wait_open(self) -> None:
        """Return once ``open`` fired; raise the stream's error if it failed first."""
        if self._opened.is_set():
            return
        opener = asyncio.ensure_future(self._opened.wait())
        try:
            await asyncio.wait({opener, self._outcome}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            opener.cancel()
        if not self._opened.is_set():
            self._outcome.result()

    async def done(self) -> Any:
        """Await the terminal event: return the result on success, raise the error otherwise."""
        try:
            return await asyncio.shield(self._outcome)
        finally:
            if self._task is not None and not self._task.done():
                # Let the worker finish emitting the terminal event.
                await asyncio.wait({self._task})
            failure = self.listener_error
            if failure is not None:
                raise failure


class UploadTarball(_TarballStream):
    """
    Writable side. ``write()`` chunks, then ``end()``. The whole payload is
    buffered by the worker and handed to ``commit`` in one piece once input
    ends; ``prepare`` runs first and gates ``open`` (e.g. a duplicate check).
    """

    kind = "upload"

    def __init__(
        self,
        file_name: str,
        *,
        prepare: Callable[[], Awaitable[None]],
        commit: Callable[[bytes], Awaitable[Any]],
    ) -> None:
        super().__init__(file_name)
        self._queue: asyncio.Queue = asyncio.Queue()
        self._ended = False
        self._prepare = prepare
        self._commit = commit
        self.bytes_received = 0
        self._start(self._work)

    def write(self, chunk: bytes) -> bool:
        """Queue ``chunk``. Returns False when the stream already finished and the chunk is dropped."""
        if self._ended:
            raise InternalError("write after end", details={"file": self.file_name})
        if self._terminal:
            return False
        self._queue.put_nowait(bytes(chunk))
        return True

    def end(self, chunk: Optional[bytes] = None) -> None:
        if chunk:
            self.write(chunk)
        if self._ended:
            return
        self._ended = True
        self._queue.put_nowait(_EOF)

    def abort(self) -> None:
        self._abort(UploadAborted(self.file_name))

    async def _work(self) -> Any:
        await self._prepare()
        self._mark_open()

        buffer: List[bytes] = []
        while True:
            chunk = await self._queue.get()
            if chunk is _EOF:
                break
            buffer.append(chunk)
            self.bytes_received += len(chunk)
            self._emit("data", chunk)

        self._emit("end")
        payload = b"".join(buffer)
        buffer.clear()
        return await self._commit(payload)


class ReadTarball(_TarballStream):
    """
    Readable side. The worker fetches the payload with ``fetch``, announces
    ``content-length`` and ``open``, then emits it as ``data`` chunks and
    ``end``. Chunks are also queued for async iteration.
    """

    kind = "download"

    def __init__(
        self,
        file_name: str,
        *,
        fetch: Callable[[], Awaitable[bytes]],
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        super().__init__(file_name)
        self._chunks: asyncio.Queue = asyncio.Queue()
        self._fetch = fetch
        self._chunk_size = chunk_size
        self.content_length: Optional[int] = None
        self._outcome.add_done_callback(lambda _f: self._chunks.put_nowait(_EOF))
        self._start(self._work)

    def abort(self) -> None:
        self._abort(UploadAborted(self.file_name, what="download"))

    async def _work(self) -> int:
        data = await self._fetch()
        self.content_length = len(data)
        self._emit("content-length", self.content_length)
        self._mark_open()
        view = memoryview(data)
        for start in range(0, len(data), self._chunk_size):
            chunk = bytes(view[start:start + self._chunk_size])
            self._chunks.put_nowait(chunk)
            self._emit("data", chunk)
        self._emit("end")
        return len(data)

    async def __aiter__(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._chunks.get()
            if chunk is _EOF:
                break
            yield chunk
        # Surface the terminal error to the iterating caller.
        if self._outcome.done() and not self._outcome.cancelled() and self._outcome.exception():
            raise self._outcome.exception()

    async def read_all(self) -> bytes:
        return b"".join([chunk async for chunk in self])


__all__ = ["UploadTarball", "ReadTarball", "EVENTS", "CHUNK_SIZE"]
