"""Tests for Tape writing, replay and the compressed backend."""

import pytest
import torch

from tapepg.config import TapeConfig
from tapepg.errors import BatchShapeError, TapeClosedError, TapeReadError
from tapepg.tape import Batch, Tape, TapeBackend


def _frames(num_steps: int, num_lanes: int = 3, ends=None) -> list[Batch]:
    """Image-like batches; lane i ends after ``ends[i]`` steps."""
    ends = ends if ends is not None else [num_steps] * num_lanes
    batches = []
    for t in range(num_steps):
        present = torch.tensor([t < e for e in ends], dtype=torch.bool)
        n = int(present.sum())
        packed = torch.arange(n * 2 * 2, dtype=torch.float32).reshape(n, 2, 2) + 10 * t
        batches.append(Batch(present=present, packed=packed))
    return batches


def _write(tape: Tape, batches) -> Tape:
    with tape.writer() as writer:
        for batch in batches:
            writer.append(batch)
    return tape


def _assert_same(left, right):
    left, right = list(left), list(right)
    assert len(left) == len(right)
    for a, b in zip(left, right):
        assert torch.equal(a.present, b.present)
        assert a.packed.dtype == b.packed.dtype
        assert torch.equal(a.packed, b.packed)


class TestTapeLifecycle:
    """Tapes are written once and read many times."""

    def test_replay_is_repeatable(self):
        tape = _write(Tape(), _frames(4))
        _assert_same(tape.read_tape(), tape.read_tape())
        assert len(tape) == 4

    def test_writer_is_single_instance(self):
        tape = Tape()
        assert tape.writer() is tape.writer()

    def test_append_after_close_fails(self):
        tape = Tape()
        writer = tape.writer()
        writer.append(_frames(1)[0])
        writer.close()
        assert tape.closed
        with pytest.raises(TapeClosedError):
            writer.append(_frames(1)[0])
        with pytest.raises(TapeClosedError):
            tape.writer()

    def test_close_is_idempotent(self):
        tape = Tape()
        writer = tape.writer()
        writer.close()
        writer.close()
        assert len(tape) == 0

    def test_lane_count_must_not_change(self):
        tape = Tape()
        writer = tape.writer()
        writer.append(Batch.from_lists([True, True], [1.0, 2.0]))
        with pytest.raises(BatchShapeError):
            writer.append(Batch.from_lists([True], [1.0]))

    def test_ended_lane_cannot_return(self):
        tape = Tape()
        writer = tape.writer()
        writer.append(Batch.from_lists([True, False], [1.0]))
        with pytest.raises(BatchShapeError):
            writer.append(Batch.from_lists([True, True], [1.0, 2.0]))

    def test_reading_before_close_sees_written_steps(self):
        tape = Tape(TapeBackend.COMPRESSED, checkpoint_interval=2)
        writer = tape.writer()
        for batch in _frames(3):
            writer.append(batch)
        assert len(list(tape.read_tape())) == 3
        writer.close()


class TestReadRange:
    """read_tape(start, end) replays a sub-range."""

    @pytest.mark.parametrize("backend", list(TapeBackend))
    def test_mid_tape_start(self, backend):
        batches = _frames(7, ends=[7, 5, 2])
        tape = _write(Tape(backend, checkpoint_interval=3), batches)
        _assert_same(tape.read_tape(4), batches[4:])
        _assert_same(tape.read_tape(2, 6), batches[2:6])

    @pytest.mark.parametrize("backend", list(TapeBackend))
    def test_empty_range_at_end(self, backend):
        tape = _write(Tape(backend), _frames(3))
        assert list(tape.read_tape(3)) == []

    def test_out_of_range_raises(self):
        tape = _write(Tape(), _frames(3))
        with pytest.raises(TapeReadError) as exc_info:
            tape.read_tape(2, 5)
        assert exc_info.value.length == 3
        with pytest.raises(TapeReadError):
            tape.read_tape(-1)


class TestCompressedBackend:
    """Compressed tapes replay what was written, detached."""

    @pytest.mark.parametrize("interval", [1, 2, 5, 64])
    def test_matches_memory_tape(self, interval):
        batches = _frames(9, ends=[9, 4, 0])
        memory = _write(Tape(), batches)
        compressed = _write(Tape(TapeBackend.COMPRESSED, checkpoint_interval=interval), batches)
        _assert_same(memory.read_tape(), compressed.read_tape())

    def test_preserves_integer_dtype(self):
        batch = Batch(present=torch.tensor([True, True]), packed=torch.tensor([[1, 2], [3, 4]]))
        tape = _write(Tape(TapeBackend.COMPRESSED), [batch])
        (replayed,) = list(tape.read_tape())
        assert replayed.packed.dtype == torch.int64
        assert torch.equal(replayed.packed, batch.packed)

    def test_drops_autograd_history(self):
        packed = torch.ones(2, 3, requires_grad=True)
        tape = _write(Tape(TapeBackend.COMPRESSED), [Batch(present=torch.ones(2, dtype=torch.bool), packed=packed)])
        (replayed,) = list(tape.read_tape())
        assert not replayed.packed.requires_grad
        assert not tape.differentiable
        assert Tape().differentiable

    def test_uint8_quantization_rounds_and_clamps(self):
        packed = torch.tensor([[-3.0, 0.4], [127.6, 300.0]])
        batch = Batch(present=torch.ones(2, dtype=torch.bool), packed=packed)
        tape = _write(Tape(TapeBackend.COMPRESSED, quantize_uint8=True), [batch])
        (replayed,) = list(tape.read_tape())
        assert replayed.packed.dtype == torch.float32
        assert replayed.packed.tolist() == [[0.0, 0.0], [128.0, 255.0]]

    def test_invalid_checkpoint_interval(self):
        with pytest.raises(ValueError):
            Tape(TapeBackend.COMPRESSED, checkpoint_interval=0)

    def test_from_config_and_empty_like(self):
        config = TapeConfig(backend=TapeBackend.COMPRESSED, checkpoint_interval=8, quantize_uint8=True)
        tape = Tape.from_config(config)
        twin = tape.empty_like()
        assert twin.backend is TapeBackend.COMPRESSED
        assert twin.checkpoint_interval == 8
        assert twin.quantize_uint8
        assert len(twin) == 0 and not twin.closed


class TestRereader:
    """rereader() exposes every step for differentiable computations."""

    def test_memory_keeps_autograd_history(self):
        weight = torch.tensor(3.0, requires_grad=True)
        batch = Batch(present=torch.ones(2, dtype=torch.bool), packed=torch.ones(2) * weight)
        tape = _write(Tape(), [batch, batch])
        total = sum(b.packed.sum() for b in tape.rereader())
        total.backward()
        assert weight.grad.item() == pytest.approx(4.0)

    def test_compressed_is_detached_copy(self):
        batches = _frames(5)
        tape = _write(Tape(TapeBackend.COMPRESSED, checkpoint_interval=2), batches)
        view = tape.rereader()
        assert len(view) == 5
        _assert_same(view, batches)
        assert all(not b.packed.requires_grad for b in view)
