# singe/singe_handle.py
from __future__ import annotations

from numbers import Integral
from typing import Iterable, Tuple

import numpy as np

from singe.singe_elem_kind import ElemKind
from singe.singe_errors import (
    ElemKindMismatch,
    EmptyTensor,
    OutOfBounds,
    ShapeMismatch,
)
from singe.singe_tensor import SingeTensor


class SingeHandle:
    """
    Bounds-checked, typed accessor over one SingeTensor.

    A handle never owns storage. It is bound to a tensor and to that
    tensor's element kind; asking for a handle of another kind fails
    with ElemKindMismatch. One class serves FLOAT and INDEX tensors alike,
    the kind only decides how values are converted on the way in and out.

    Addressing is row-major:

        offset = sum(indices[d] * stride[d])
        stride[last] = 1
        stride[d]    = stride[d + 1] * shape[d + 1]

    so the last listed dimension varies fastest and the leading
    dimension slowest.
    """

    def __init__(self, tensor: SingeTensor, kind: ElemKind | str | None = None):
        if kind is not None:
            kind = ElemKind.from_value(kind)
            if kind is not tensor.kind:
                raise ElemKindMismatch(
                    f"Requested a {kind.value} handle over a {tensor.kind.value} tensor"
                )

        self.tensor = tensor
        self._flat = tensor.data.reshape(-1)

        strides = [1] * tensor.rank
        for d in range(tensor.rank - 2, -1, -1):
            strides[d] = strides[d + 1] * tensor.shape[d + 1]
        self._strides: Tuple[int, ...] = tuple(strides)

    # --------------------------------------------------
    # Introspection
    # --------------------------------------------------
    @property
    def dims(self) -> Tuple[int, ...]:
        return self.tensor.shape

    @property
    def kind(self) -> ElemKind:
        return self.tensor.kind

    @property
    def size(self) -> int:
        return self.tensor.size

    # --------------------------------------------------
    # Indexed access
    # --------------------------------------------------
    def offset(self, indices: int | Iterable[int]) -> int:
        """
        Linear offset of a multi-index. Raises OutOfBounds if the index
        count differs from the rank or any index is outside its dimension.
        """
        if isinstance(indices, Integral):
            idx = (indices,)
        else:
            idx = tuple(indices)

        dims = self.tensor.shape
        if len(idx) != len(dims):
            raise OutOfBounds(
                f"Expected {len(dims)} indices for shape {dims}, got {len(idx)}"
            )

        off = 0
        for d, (i, bound) in enumerate(zip(idx, dims)):
            if isinstance(i, bool) or not isinstance(i, Integral):
                raise OutOfBounds(f"Index {i!r} in dimension {d} is not an integer")
            if i < 0 or i >= bound:
                raise OutOfBounds(
                    f"Index {int(i)} out of range for dimension {d} of size {bound}"
                )
            off += int(i) * self._strides[d]
        return off

    def at(self, indices: int | Iterable[int]):
        """Read one element; returns a Python float or int."""
        return self._flat[self.offset(indices)].item()

    def set(self, indices: int | Iterable[int], value) -> None:
        """Write one element, converted to the tensor's dtype."""
        self._flat[self.offset(indices)] = value

    def __getitem__(self, indices):
        return self.at(indices)

    def __setitem__(self, indices, value) -> None:
        self.set(indices, value)

    def clear(self, value=0) -> None:
        self._flat.fill(value)

    # --------------------------------------------------
    # Slicing along the leading dimension
    # --------------------------------------------------
    def extract_slice(self, index: int) -> SingeTensor:
        """
        Copy the index-th leading-dimension slice into a new tensor.

        The result is one rank lower: shape[1:]. A rank-1 tensor yields
        a (1,) tensor holding the single element. Never aliases.
        """
        lead = self.tensor.shape[0]
        if isinstance(index, bool) or not isinstance(index, Integral):
            raise OutOfBounds(f"Slice index {index!r} is not an integer")
        if index < 0 or index >= lead:
            raise OutOfBounds(
                f"Slice index {int(index)} out of range for leading dimension {lead}"
            )

        slice_shape = self.tensor.shape[1:] or (1,)
        out = SingeTensor(slice_shape, kind=self.tensor.kind)
        out.data[...] = self.tensor.data[int(index)].reshape(slice_shape)
        return out

    def copy_consecutive_slices(self, src: SingeTensor, offset: int) -> None:
        """
        Fill this tensor with shape[0] consecutive leading-dimension slices
        of src, starting at src slice `offset`.

        src must have the same kind and the same trailing dimensions.
        """
        if src.kind is not self.tensor.kind:
            raise ElemKindMismatch(
                f"Cannot copy {src.kind.value} slices into a "
                f"{self.tensor.kind.value} tensor"
            )

        if src.shape[1:] != self.tensor.shape[1:]:
            raise ShapeMismatch(
                f"Slice shape {src.shape[1:]} of source {src.shape} does not "
                f"match destination slice shape {self.tensor.shape[1:]}"
            )

        count = self.tensor.shape[0]
        if isinstance(offset, bool) or not isinstance(offset, Integral):
            raise OutOfBounds(f"Slice offset {offset!r} is not an integer")
        if offset < 0 or offset + count > src.shape[0]:
            raise OutOfBounds(
                f"Cannot copy {count} slices starting at {int(offset)} from a "
                f"source with leading dimension {src.shape[0]}"
            )

        np.copyto(self.tensor.data, src.data[int(offset):int(offset) + count])

    # --------------------------------------------------
    # Reductions
    # --------------------------------------------------
    def max_arg(self) -> int:
        """
        Flat position of the largest element.
        Ties go to the lowest position (np.argmax keeps the first).
        """
        if self._flat.size == 0:
            raise EmptyTensor("max_arg on a zero-element tensor")
        return int(np.argmax(self._flat))

    # --------------------------------------------------
    # Debugging
    # --------------------------------------------------
    def dump(self, title: str = "", separator: str = ", ", max_values: int = 64) -> None:
        """
        Print the flat contents, e.g. handle.dump("softmax: ").
        Long tensors are truncated in the middle.
        """
        flat = self._flat
        if self.kind is ElemKind.FLOAT:
            fmt = lambda v: f"{float(v):.6f}"
        else:
            fmt = lambda v: str(int(v))

        if flat.size <= max_values:
            text = separator.join(fmt(v) for v in flat)
        else:
            half = max_values // 2
            head = separator.join(fmt(v) for v in flat[:half])
            tail = separator.join(fmt(v) for v in flat[-half:])
            text = f"{head}{separator}...{separator}{tail}"

        print(f"{title}[{text}]")

    def __repr__(self) -> str:
        return f"SingeHandle(shape={self.dims}, kind={self.kind.value})"
