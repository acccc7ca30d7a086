# singe/singe_elem_kind.py
from __future__ import annotations
from enum import Enum

import numpy as np

from singe.singe_errors import InvalidShape


class ElemKind(str, Enum):
    """
    Element kind of a SingeTensor.

    - FLOAT  => 32-bit float, used for activations, parameters, gradients
    - INDEX  => unsigned 64-bit integer, used for labels and argmax records
    """

    FLOAT = "float"
    INDEX = "index"

    @property
    def dtype(self) -> np.dtype:
        return _DTYPES[self]

    @property
    def elem_size(self) -> int:
        """Byte width of one element."""
        return int(self.dtype.itemsize)

    @staticmethod
    def from_value(val: str | ElemKind) -> ElemKind:
        """
        Accepts either:
            - an ElemKind enum value
            - or a string ("float", "index")

        Anything else is rejected with InvalidShape, since a Tensor cannot
        be laid out without a known element width.
        """
        if isinstance(val, ElemKind):
            return val

        if isinstance(val, str):
            val_lower = val.lower()
            for kind in ElemKind:
                if kind.value == val_lower:
                    return kind

        raise InvalidShape(
            f"Unsupported element kind: {val!r}. "
            f"Expected one of: {[k.value for k in ElemKind]}"
        )


_DTYPES = {
    ElemKind.FLOAT: np.dtype(np.float32),
    ElemKind.INDEX: np.dtype(np.uint64),
}
