# singe_tensor_test.py
from __future__ import annotations

import numpy as np
import pytest

from singe.singe_elem_kind import ElemKind
from singe.singe_errors import (
    ElemKindMismatch,
    InvalidShape,
    OutOfBounds,
    ShapeMismatch,
    SingeError,
)
from singe.singe_tensor import SingeTensor


# ------------------------------------------------------------
# Construction
# ------------------------------------------------------------

@pytest.mark.parametrize("shape", [(1,), (3,), (2, 3), (4, 1, 5), (2, 3, 4, 5)])
@pytest.mark.parametrize("kind, elem_size", [(ElemKind.FLOAT, 4), (ElemKind.INDEX, 8)])
def test_storage_size_is_product_times_elem_size(shape, kind, elem_size):
    t = SingeTensor(shape, kind=kind)

    assert t.shape == shape
    assert t.rank == len(shape)
    assert t.size == int(np.prod(shape))
    assert t.elem_size == elem_size
    assert t.storage_size == int(np.prod(shape)) * elem_size
    assert t.data.dtype == kind.dtype
    assert not np.any(t.data)


def test_int_shape_is_rank_one():
    t = SingeTensor(5)
    assert t.shape == (5,)


@pytest.mark.parametrize("shape", [(), (0,), (2, 0), (-1,), (2.5,), ("a",), (True, 2)])
def test_invalid_shapes(shape):
    with pytest.raises(InvalidShape):
        SingeTensor(shape)


def test_unknown_kind():
    with pytest.raises(InvalidShape):
        SingeTensor((2,), kind="double")


def test_errors_are_catchable_as_builtin_types():
    assert issubclass(InvalidShape, ValueError)
    assert issubclass(OutOfBounds, IndexError)
    assert issubclass(ShapeMismatch, ValueError)
    assert issubclass(ElemKindMismatch, TypeError)
    assert issubclass(OutOfBounds, SingeError)


def test_shape_and_kind_are_read_only():
    t = SingeTensor((2, 2))
    with pytest.raises(AttributeError):
        t.shape = (4,)
    with pytest.raises(AttributeError):
        t.kind = ElemKind.INDEX


def test_from_numpy_infers_kind_and_copies():
    src = np.arange(6).reshape(2, 3)
    t = SingeTensor.from_numpy(src)

    assert t.kind is ElemKind.INDEX
    assert t.shape == (2, 3)

    src[0, 0] = 99
    assert t.data[0, 0] == 0

    f = SingeTensor.from_numpy([[0.5, 1.5]])
    assert f.kind is ElemKind.FLOAT
    assert f.data.dtype == np.float32


def test_from_numpy_rejects_negative_index_values():
    with pytest.raises(OutOfBounds):
        SingeTensor.from_numpy(np.array([1, -1]))

    with pytest.raises(SingeError):
        SingeTensor.from_numpy(np.array([[-3.0]]), kind=ElemKind.INDEX)

    # Negative floats are fine
    t = SingeTensor.from_numpy(np.array([-1.5], dtype=np.float32))
    assert t.data[0] == -1.5


def test_clone_and_to_numpy_never_alias():
    t = SingeTensor.from_numpy(np.ones((2, 2), dtype=np.float32))

    c = t.clone()
    c.data[...] = 7.0
    assert np.all(t.data == 1.0)

    arr = t.to_numpy()
    arr[...] = 3.0
    assert np.all(t.data == 1.0)


# ------------------------------------------------------------
# Handle access
# ------------------------------------------------------------

def test_handle_round_trip_every_position():
    t = SingeTensor((2, 3, 4))
    h = t.get_handle()

    for i in range(2):
        for j in range(3):
            for k in range(4):
                h.set((i, j, k), i * 100 + j * 10 + k)

    for i in range(2):
        for j in range(3):
            for k in range(4):
                assert h.at((i, j, k)) == pytest.approx(i * 100 + j * 10 + k)
                assert h[i, j, k] == pytest.approx(i * 100 + j * 10 + k)


def test_handle_is_row_major():
    t = SingeTensor((2, 3, 4))
    h = t.get_handle()

    assert h.offset((1, 2, 3)) == 1 * 12 + 2 * 4 + 3
    assert h.offset((0, 0, 1)) == 1
    assert h.offset((0, 1, 0)) == 4

    h[1, 2, 3] = 5.0
    assert t.data.reshape(-1)[23] == 5.0


def test_handle_index_kind_round_trip():
    t = SingeTensor((3,), kind=ElemKind.INDEX)
    h = t.get_handle(ElemKind.INDEX)

    h[2] = 2 ** 40
    assert h[2] == 2 ** 40
    assert isinstance(h[2], int)


@pytest.mark.parametrize("indices", [(2, 0, 0), (0, 3, 0), (0, 0, 4), (0, 0), (0, 0, 0, 0), (0, -1, 0)])
def test_handle_out_of_bounds(indices):
    h = SingeTensor((2, 3, 4)).get_handle()

    with pytest.raises(OutOfBounds):
        h.at(indices)

    with pytest.raises(OutOfBounds):
        h.set(indices, 1.0)


def test_handle_kind_mismatch():
    t = SingeTensor((2,))
    with pytest.raises(ElemKindMismatch):
        t.get_handle(ElemKind.INDEX)


def test_handle_clear():
    t = SingeTensor((2, 2))
    h = t.get_handle()
    h.clear(3.5)
    assert np.all(t.data == 3.5)
    h.clear()
    assert not np.any(t.data)


# ------------------------------------------------------------
# Slices
# ------------------------------------------------------------

def make_counting_tensor(shape, kind=ElemKind.FLOAT) -> SingeTensor:
    t = SingeTensor(shape, kind=kind)
    t.data[...] = np.arange(t.size).reshape(shape).astype(kind.dtype)
    return t


def test_extract_slice_is_rank_lower_copy():
    src = make_counting_tensor((5, 2, 3))
    h = src.get_handle()

    s = h.extract_slice(3)
    assert s.shape == (2, 3)
    assert np.array_equal(s.data, src.data[3])

    s.data[...] = -1.0
    assert src.data[3, 0, 0] == 18.0

    with pytest.raises(OutOfBounds):
        h.extract_slice(5)
    with pytest.raises(OutOfBounds):
        h.extract_slice(-1)


def test_extract_slice_of_rank_one():
    src = make_counting_tensor((4,), kind=ElemKind.INDEX)
    s = src.get_handle().extract_slice(2)

    assert s.shape == (1,)
    assert s.kind is ElemKind.INDEX
    assert int(s.data[0]) == 2


def test_copy_consecutive_slices_agrees_with_extract_slice():
    src = make_counting_tensor((6, 2, 3))

    for i in range(6):
        dst = SingeTensor((1, 2, 3))
        dst.get_handle().copy_consecutive_slices(src, i)
        s = src.get_handle().extract_slice(i)
        assert np.array_equal(dst.data[0], s.data)


def test_copy_consecutive_slices_takes_a_window():
    src = make_counting_tensor((5, 2))
    dst = SingeTensor((3, 2))
    h = dst.get_handle()

    h.copy_consecutive_slices(src, 2)
    assert np.array_equal(dst.data, src.data[2:5])

    with pytest.raises(OutOfBounds):
        h.copy_consecutive_slices(src, 3)

    with pytest.raises(ShapeMismatch):
        h.copy_consecutive_slices(make_counting_tensor((5, 3)), 0)

    with pytest.raises(ElemKindMismatch):
        h.copy_consecutive_slices(make_counting_tensor((5, 2), kind=ElemKind.INDEX), 0)


# ------------------------------------------------------------
# max_arg / dump
# ------------------------------------------------------------

def test_max_arg_first_wins_on_ties():
    t = SingeTensor.from_numpy(np.array([0.1, 0.7, 0.2, 0.7], dtype=np.float32))
    assert t.get_handle().max_arg() == 1

    labels = SingeTensor.from_numpy(np.array([[3, 9], [9, 1]]))
    assert labels.get_handle().max_arg() == 1


def test_max_arg_on_softmax_row():
    probs = SingeTensor.from_numpy(np.array([[0.1, 0.2, 0.6, 0.1]], dtype=np.float32))
    row = probs.get_handle().extract_slice(0)
    assert row.get_handle().max_arg() == 2


def test_dump_prints_title_and_values(capsys):
    t = SingeTensor.from_numpy(np.array([1, 2, 3]))
    t.get_handle().dump("labels: ")

    out = capsys.readouterr().out
    assert out.strip() == "labels: [1, 2, 3]"


def test_dump_truncates_long_tensors(capsys):
    t = SingeTensor((100,))
    t.get_handle().dump(max_values=4)

    out = capsys.readouterr().out
    assert "..." in out
    assert out.count("0.000000") == 4
