"""Tape - an append-only, replayable sequence of Batches.

A tape is filled once through its writer and is read-only afterwards. Reads
are forward iterators that may be replayed any number of times.

Where the batches live is a configuration choice (TapeBackend), not a
subclass:

- MEMORY keeps every Batch as given. Replay is random-access and the
  batches keep their autograd history, so a memory tape can sit in the
  middle of a differentiable computation (network outputs, objectives).
- COMPRESSED detaches each Batch, encodes it to raw bytes and zlib-compresses
  it into segments of ``checkpoint_interval`` steps. Each segment boundary
  is a checkpoint: replay from step k inflates the segment holding k and
  skips forward. This is what keeps long observation streams (frames) from
  exhausting RAM.

Usage:
    tape = Tape()
    with tape.writer() as w:
        w.append(Batch.from_lists([True, True], [1.0, 2.0]))
        w.append(Batch.from_lists([True, False], [3.0]))

    for batch in tape.read_tape():
        ...
"""

from __future__ import annotations

import logging
import zlib
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Protocol

import numpy as np
import torch

from tapepg.constants import DEFAULT_CHECKPOINT_INTERVAL, DEFAULT_COMPRESSION_LEVEL
from tapepg.errors import BatchShapeError, TapeClosedError, TapeReadError
from tapepg.tape.batch import Batch

if TYPE_CHECKING:
    from tapepg.config import TapeConfig

logger = logging.getLogger(__name__)


class TapeBackend(str, Enum):
    """Storage backend for a tape."""

    MEMORY = "memory"
    COMPRESSED = "compressed"


class _TapeStore(Protocol):
    """Storage contract shared by both backends."""

    def append(self, batch: Batch) -> None: ...

    def seal(self) -> None: ...

    def __len__(self) -> int: ...

    def iter_from(self, start: int) -> Iterator[Batch]: ...


# =============================================================================
# Memory backend
# =============================================================================


@dataclass(slots=True)
class _MemoryStore:
    batches: list[Batch] = field(default_factory=list)

    def append(self, batch: Batch) -> None:
        self.batches.append(batch)

    def seal(self) -> None:
        pass

    def __len__(self) -> int:
        return len(self.batches)

    def iter_from(self, start: int) -> Iterator[Batch]:
        # Index by position so batches appended mid-iteration are still seen
        i = start
        while i < len(self.batches):
            yield self.batches[i]
            i += 1


# =============================================================================
# Compressed backend
# =============================================================================


@dataclass(frozen=True, slots=True)
class _RecordHeader:
    """Decoding metadata for one compressed batch."""

    num_lanes: int
    shape: tuple[int, ...]
    stored_dtype: str  # numpy dtype string of the bytes in the payload
    torch_dtype: torch.dtype  # dtype handed back to readers
    device: str

    @property
    def present_nbytes(self) -> int:
        return self.num_lanes

    @property
    def packed_nbytes(self) -> int:
        count = 1
        for dim in self.shape:
            count *= dim
        return count * np.dtype(self.stored_dtype).itemsize


@dataclass(slots=True)
class _Segment:
    headers: list[_RecordHeader] = field(default_factory=list)
    payload: bytes = b""


@dataclass(slots=True)
class _CompressedStore:
    compression_level: int = DEFAULT_COMPRESSION_LEVEL
    checkpoint_interval: int = DEFAULT_CHECKPOINT_INTERVAL
    quantize_uint8: bool = False

    segments: list[_Segment] = field(default_factory=list)
    _open: _Segment | None = field(default=None, init=False)
    _chunks: list[bytes] = field(default_factory=list, init=False)
    _compressor: "zlib._Compress | None" = field(default=None, init=False)
    _length: int = field(default=0, init=False)

    def append(self, batch: Batch) -> None:
        if self._open is None:
            self._open = _Segment()
            self._compressor = zlib.compressobj(self.compression_level)
        assert self._compressor is not None
        packed = batch.packed.detach()
        if self.quantize_uint8:
            stored = packed.round().clamp(0, 255).to(torch.uint8)
        else:
            stored = packed
        stored_np = stored.cpu().contiguous().numpy()
        present_np = batch.present.cpu().numpy()
        self._open.headers.append(
            _RecordHeader(
                num_lanes=batch.num_lanes,
                shape=tuple(packed.shape),
                stored_dtype=stored_np.dtype.str,
                torch_dtype=packed.dtype,
                device=str(packed.device),
            )
        )
        self._chunks.append(self._compressor.compress(present_np.tobytes()))
        self._chunks.append(self._compressor.compress(stored_np.tobytes()))
        self._length += 1
        if len(self._open.headers) >= self.checkpoint_interval:
            self._flush_segment()

    def _flush_segment(self) -> None:
        if self._open is None:
            return
        assert self._compressor is not None
        self._chunks.append(self._compressor.flush())
        self._open.payload = b"".join(self._chunks)
        self._chunks = []
        self.segments.append(self._open)
        self._open = None
        self._compressor = None

    def seal(self) -> None:
        self._flush_segment()
        logger.debug(
            f"Sealed compressed tape: {self._length} steps in {len(self.segments)} segments, "
            f"{sum(len(s.payload) for s in self.segments)} bytes"
        )

    def __len__(self) -> int:
        return self._length

    def _segment_bytes(self, index: int) -> tuple[list[_RecordHeader], bytes]:
        if index < len(self.segments):
            segment = self.segments[index]
            return segment.headers, zlib.decompress(segment.payload)
        # Trailing segment still being written: finish a copy of the stream
        assert self._open is not None and self._compressor is not None
        payload = b"".join(self._chunks) + self._compressor.copy().flush()
        return list(self._open.headers), zlib.decompress(payload)

    def _decode(self, header: _RecordHeader, raw: bytes, offset: int) -> tuple[Batch, int]:
        present_np = np.frombuffer(raw, dtype=np.bool_, count=header.num_lanes, offset=offset)
        offset += header.present_nbytes
        count = header.packed_nbytes // np.dtype(header.stored_dtype).itemsize
        packed_np = np.frombuffer(raw, dtype=np.dtype(header.stored_dtype), count=count, offset=offset)
        offset += header.packed_nbytes
        packed = torch.from_numpy(packed_np.copy()).reshape(header.shape).to(header.torch_dtype)
        present = torch.from_numpy(present_np.copy())
        return Batch(present=present.to(header.device), packed=packed.to(header.device)), offset

    def iter_from(self, start: int) -> Iterator[Batch]:
        # Segments are checkpoint_interval long except possibly the open one
        index = start // self.checkpoint_interval
        skip = start % self.checkpoint_interval
        while index * self.checkpoint_interval < self._length:
            headers, raw = self._segment_bytes(index)
            offset = 0
            for i, header in enumerate(headers):
                batch, offset = self._decode(header, raw, offset)
                if i >= skip:
                    yield batch
            skip = 0
            index += 1


# =============================================================================
# Tape and writer
# =============================================================================


class Tape:
    """Write-once, multiply-readable sequence of time-indexed batches."""

    def __init__(
        self,
        backend: TapeBackend = TapeBackend.MEMORY,
        *,
        compression_level: int = DEFAULT_COMPRESSION_LEVEL,
        checkpoint_interval: int = DEFAULT_CHECKPOINT_INTERVAL,
        quantize_uint8: bool = False,
    ) -> None:
        self.backend = TapeBackend(backend)
        self.compression_level = compression_level
        self.checkpoint_interval = checkpoint_interval
        self.quantize_uint8 = quantize_uint8
        self._store: _TapeStore
        if self.backend is TapeBackend.MEMORY:
            self._store = _MemoryStore()
        else:
            if checkpoint_interval < 1:
                raise ValueError(f"checkpoint_interval must be >= 1, got {checkpoint_interval}")
            self._store = _CompressedStore(
                compression_level=compression_level,
                checkpoint_interval=checkpoint_interval,
                quantize_uint8=quantize_uint8,
            )
        self._writer: TapeWriter | None = None
        self._closed = False

    @classmethod
    def from_config(cls, config: TapeConfig) -> Tape:
        return cls(
            config.backend,
            compression_level=config.compression_level,
            checkpoint_interval=config.checkpoint_interval,
            quantize_uint8=config.quantize_uint8,
        )

    def empty_like(self) -> Tape:
        """A new, unwritten tape with the same backend settings."""
        return Tape(
            self.backend,
            compression_level=self.compression_level,
            checkpoint_interval=self.checkpoint_interval,
            quantize_uint8=self.quantize_uint8,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def differentiable(self) -> bool:
        """True if read batches keep their autograd history."""
        return self.backend is TapeBackend.MEMORY

    def writer(self) -> TapeWriter:
        """Return the tape's single writer."""
        if self._closed:
            raise TapeClosedError("Tape is closed; it can no longer be written")
        if self._writer is None:
            self._writer = TapeWriter(self)
        return self._writer

    def __len__(self) -> int:
        return len(self._store)

    def read_tape(self, start: int = 0, end: int | None = None) -> Iterator[Batch]:
        """Iterate over steps ``[start, end)``; ``end=None`` reads to the end."""
        length = len(self._store)
        stop = length if end is None else end
        if start < 0 or stop < start or stop > length:
            raise TapeReadError(start, stop, length)
        return self._read(start, stop)

    def _read(self, start: int, stop: int) -> Iterator[Batch]:
        for i, batch in enumerate(self._store.iter_from(start), start=start):
            if i >= stop:
                return
            yield batch

    def rereader(self) -> tuple[Batch, ...]:
        """Random-access view of every step for use inside a computation graph.

        Memory tapes hand back the stored batches, so gradients of anything
        computed from them flow into whatever produced the tape. Compressed
        tapes decode detached copies.
        """
        if isinstance(self._store, _MemoryStore):
            return tuple(self._store.batches)
        return tuple(self._store.iter_from(0))

    def __iter__(self) -> Iterator[Batch]:
        return self.read_tape()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"Tape(backend={self.backend.value}, steps={len(self)}, {state})"


class TapeWriter:
    """Appends batches to a tape in time order, then closes it.

    Enforces the structural invariants readers rely on: every batch has the
    same lane count, and a lane that becomes absent never comes back.
    """

    def __init__(self, tape: Tape) -> None:
        self._tape = tape
        self._last_present: torch.Tensor | None = None

    def append(self, batch: Batch) -> None:
        if self._tape._closed:
            raise TapeClosedError("Cannot append to a closed tape")
        if self._last_present is not None:
            if batch.num_lanes != self._last_present.shape[0]:
                raise BatchShapeError(
                    f"Batch has {batch.num_lanes} lanes, tape has {self._last_present.shape[0]}"
                )
            if bool((batch.present & ~self._last_present.to(batch.present.device)).any()):
                raise BatchShapeError("A lane cannot become present again after it ended")
        self._tape._store.append(batch)
        self._last_present = batch.present

    def close(self) -> None:
        if self._tape._closed:
            return
        self._tape._store.seal()
        self._tape._closed = True

    def __enter__(self) -> TapeWriter:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = ["Tape", "TapeBackend", "TapeWriter"]
