"""Streaming zip packaging of converted outputs.

The archive is written front to back without seeking, so it can go
straight to a socket. The central directory is only emitted by
:meth:`ArchiveBuilder.finalize_archive`; an archive that was aborted or cut
short never gets one and fails ``zipfile.is_zipfile``.
"""

from __future__ import annotations

import io
from contextlib import closing
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import BinaryIO, Iterable, Iterator, Protocol
from zipfile import ZIP_DEFLATED, ZIP_STORED, ZipFile

from .config import OutputConfig
from .detection import split_extension
from .errors import ArchiveError
from .models import ConversionOutcome


class Sink(Protocol):
    def write(self, data: bytes, /) -> object:  # pragma: no cover - interface
        ...


class ChunkSink:
    """In-memory sink drained by the streaming generator after every chunk."""

    def __init__(self) -> None:
        self._chunks: list[bytes] = []

    def write(self, data: bytes) -> int:
        chunk = bytes(data)
        self._chunks.append(chunk)
        return len(chunk)

    def flush(self) -> None:
        return None

    def drain(self) -> bytes:
        payload = b"".join(self._chunks)
        self._chunks.clear()
        return payload


class _SinkWriter:
    """Forward-only wrapper giving :class:`ZipFile` a position to report."""

    def __init__(self, sink: Sink) -> None:
        self._sink = sink
        self._offset = 0
        self.discarding = False

    def tell(self) -> int:
        return self._offset

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        raise io.UnsupportedOperation("archive sink is not seekable")

    def write(self, data) -> int:  # type: ignore[override]
        size = memoryview(data).nbytes
        if self.discarding:
            return size
        try:
            self._sink.write(bytes(data))
        except OSError as exc:
            self.discarding = True
            raise ArchiveError("SINK_UNWRITABLE", f"Archive sink rejected write: {exc}") from exc
        self._offset += size
        return size

    def flush(self) -> None:
        if self.discarding:
            return
        flush = getattr(self._sink, "flush", None)
        if flush is None:
            return
        try:
            flush()
        except OSError as exc:
            self.discarding = True
            raise ArchiveError("SINK_UNWRITABLE", f"Archive sink rejected flush: {exc}") from exc


@dataclass(slots=True)
class ArchiveHandle:
    archive: ZipFile
    writer: _SinkWriter
    state: str = "open"
    names: set[str] = field(default_factory=set)
    entries: list[str] = field(default_factory=list)


class ArchiveBuilder:
    def __init__(self, output: OutputConfig | None = None) -> None:
        output = output or OutputConfig()
        self._suffix = output.suffix
        self._compression = ZIP_STORED if output.compression == "stored" else ZIP_DEFLATED
        self._compresslevel = output.compresslevel
        self._chunk_size = max(1, output.chunk_size_kb) * 1024

    def begin_archive(self, sink: Sink) -> ArchiveHandle:
        writer = _SinkWriter(sink)
        archive = ZipFile(writer, mode="w", compression=self._compression, compresslevel=self._compresslevel)
        return ArchiveHandle(archive=archive, writer=writer)

    def add_entry(self, handle: ArchiveHandle, name: str, content: BinaryIO) -> str:
        arcname = self.reserve_name(handle, name)
        for _ in self._copy_entry(handle, arcname, content):
            pass
        return arcname

    def finalize_archive(self, handle: ArchiveHandle) -> None:
        self._ensure_open(handle)
        try:
            handle.archive.close()
            handle.writer.flush()
        except ArchiveError:
            handle.state = "aborted"
            raise
        handle.state = "finalized"

    def abort_archive(self, handle: ArchiveHandle) -> None:
        if handle.state != "open":
            return
        handle.state = "aborted"
        handle.writer.discarding = True
        handle.archive.close()

    def reserve_name(self, handle: ArchiveHandle, name: str) -> str:
        self._ensure_open(handle)
        arcname = self._unique_name(name, handle.names)
        handle.names.add(arcname)
        return arcname

    def plan_names(self, names: Iterable[str]) -> list[str]:
        """Resolve collisions up front, in the order *names* are given.

        Feeding the planned names to :meth:`stream_archive` keeps them
        unchanged whatever order the entries arrive in.
        """

        taken: set[str] = set()
        planned: list[str] = []
        for name in names:
            arcname = self._unique_name(name, taken)
            taken.add(arcname)
            planned.append(arcname)
        return planned

    def _unique_name(self, name: str, taken: set[str]) -> str:
        arcname = PurePosixPath(name.replace("\\", "/")).name or "output"
        if arcname not in taken:
            return arcname
        base, extension = self._split_name(arcname)
        counter = 1
        while f"{base}_{counter}{extension}" in taken:
            counter += 1
        return f"{base}_{counter}{extension}"

    def stream_archive(self, outcomes: Iterable[ConversionOutcome]) -> Iterator[bytes]:
        """Pull outcomes and yield archive bytes as each chunk is compressed.

        Only successful outcomes become entries; each output is released
        once it has been copied. Stopping the iteration early aborts the
        archive.
        """

        sink = ChunkSink()
        handle = self.begin_archive(sink)
        try:
            for outcome in outcomes:
                if not outcome.succeeded or outcome.output_name is None:
                    continue
                arcname = self.reserve_name(handle, outcome.output_name)
                outcome.output_name = arcname
                with outcome.open() as content, closing(self._copy_entry(handle, arcname, content)) as copier:
                    for _ in copier:
                        chunk = sink.drain()
                        if chunk:
                            yield chunk
                outcome.release()
            self.finalize_archive(handle)
            chunk = sink.drain()
            if chunk:
                yield chunk
        finally:
            self.abort_archive(handle)

    def _copy_entry(self, handle: ArchiveHandle, arcname: str, content: BinaryIO) -> Iterator[int]:
        self._ensure_open(handle)
        try:
            with handle.archive.open(arcname, mode="w", force_zip64=True) as destination:
                while True:
                    block = content.read(self._chunk_size)
                    if not block:
                        break
                    destination.write(block)
                    yield len(block)
        except ArchiveError:
            self.abort_archive(handle)
            raise
        handle.entries.append(arcname)
        yield 0

    def _split_name(self, arcname: str) -> tuple[str, str]:
        if self._suffix and arcname.endswith(self._suffix) and len(arcname) > len(self._suffix):
            return arcname[: -len(self._suffix)], self._suffix
        return split_extension(arcname)

    def _ensure_open(self, handle: ArchiveHandle) -> None:
        if handle.state != "open":
            raise ArchiveError("TRUNCATED", f"Archive is {handle.state}; no further writes accepted")


__all__ = ["ArchiveBuilder", "ArchiveHandle", "ChunkSink"]
