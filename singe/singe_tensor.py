# singe/singe_tensor.py
from __future__ import annotations

from numbers import Integral
from typing import Iterable, Optional, Tuple, TYPE_CHECKING

import numpy as np

from singe.singe_elem_kind import ElemKind
from singe.singe_errors import InvalidShape, OutOfBounds

if TYPE_CHECKING:
    from singe.singe_handle import SingeHandle


def normalize_shape(shape: int | Iterable[int]) -> Tuple[int, ...]:
    """
    Turn an int or a sequence of ints into a validated shape tuple.

    Raises InvalidShape for an empty shape, a non-integer dimension,
    or any dimension that is zero or negative.
    """
    if isinstance(shape, Integral):
        dims = (int(shape),)
    else:
        try:
            dims = tuple(shape)
        except TypeError as e:
            raise InvalidShape(f"Shape must be an int or a sequence of ints, got {shape!r}") from e

    if len(dims) == 0:
        raise InvalidShape("Shape must have at least one dimension, got ()")

    for d in dims:
        if isinstance(d, bool) or not isinstance(d, Integral):
            raise InvalidShape(f"Dimensions must be integers, got {dims!r}")
        if d <= 0:
            raise InvalidShape(f"Dimensions must be positive, got {dims!r}")

    return tuple(int(d) for d in dims)


class SingeTensor:
    """
    Dense N-dimensional typed buffer.

    Internal Rules:
    - Storage is one contiguous, zero-initialized numpy buffer of
      product(shape) elements of the kind's dtype.
    - Layout is row-major: the last dimension varies fastest.
    - Shape and kind never change after construction. A different
      shape means a different SingeTensor.

    `data` is a writable numpy view over the storage. Engine code works on
    it in place; callers should go through get_handle() instead.
    """

    def __init__(
        self,
        shape: int | Iterable[int],
        kind: ElemKind | str = ElemKind.FLOAT,
        name: Optional[str] = None,
    ):
        self._kind = ElemKind.from_value(kind)
        self._shape = normalize_shape(shape)
        self.name = name

        count = int(np.prod(self._shape, dtype=np.int64))
        self._storage = np.zeros((count,), dtype=self._kind.dtype)
        self._data = self._storage.reshape(self._shape)

    # ===============================================================
    # numpy → SingeTensor
    # ===============================================================
    @classmethod
    def from_numpy(
        cls,
        array,
        kind: ElemKind | str | None = None,
        name: Optional[str] = None,
    ) -> "SingeTensor":
        """
        Copy a numpy array (or anything array-like) into a new SingeTensor.

        When kind is None it is inferred: integer arrays become INDEX,
        everything else becomes FLOAT.
        """
        arr = np.asarray(array)

        if kind is None:
            if np.issubdtype(arr.dtype, np.integer) or arr.dtype == np.bool_:
                kind = ElemKind.INDEX
            else:
                kind = ElemKind.FLOAT
        kind = ElemKind.from_value(kind)

        if kind is ElemKind.INDEX and arr.size > 0 and np.any(arr < 0):
            raise OutOfBounds("INDEX tensors cannot hold negative values")

        shape = arr.shape if arr.ndim > 0 else (1,)
        tensor = cls(shape, kind=kind, name=name)
        tensor._data[...] = arr.reshape(shape).astype(kind.dtype)
        return tensor

    # ===============================================================
    # Introspection
    # ===============================================================
    @property
    def shape(self) -> Tuple[int, ...]:
        return self._shape

    @property
    def kind(self) -> ElemKind:
        return self._kind

    @property
    def rank(self) -> int:
        return len(self._shape)

    @property
    def size(self) -> int:
        """Number of elements."""
        return int(self._storage.size)

    @property
    def elem_size(self) -> int:
        return self._kind.elem_size

    @property
    def storage_size(self) -> int:
        """Storage length in bytes: product(shape) * elem_size."""
        return int(self._storage.nbytes)

    @property
    def data(self) -> np.ndarray:
        return self._data

    # ===============================================================
    # Access
    # ===============================================================
    def get_handle(self, kind: ElemKind | str | None = None) -> "SingeHandle":
        from singe.singe_handle import SingeHandle
        return SingeHandle(self, kind=kind)

    def zero(self) -> None:
        self._storage.fill(0)

    def clone(self) -> "SingeTensor":
        other = SingeTensor(self._shape, kind=self._kind, name=self.name)
        np.copyto(other._storage, self._storage)
        return other

    def to_numpy(self) -> np.ndarray:
        """Return a copy; mutating it never touches this tensor."""
        return self._data.copy()

    def __repr__(self) -> str:
        label = f"{self.name}, " if self.name else ""
        return f"SingeTensor({label}shape={self._shape}, kind={self._kind.value})"
