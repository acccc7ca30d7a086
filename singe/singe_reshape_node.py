# singe/singe_reshape_node.py
from __future__ import annotations

from typing import Iterable, Optional

import numpy as np

from singe.singe_errors import ShapeMismatch
from singe.singe_node import NodeKind, SingeNode
from singe.singe_tensor import normalize_shape


class SingeReshapeNode(SingeNode):
    """
    Same elements, new shape. The leading (batch) dim must stay the same
    and the element count must match; row-major order is preserved.
    """

    kind = NodeKind.RESHAPE

    def __init__(
        self,
        index: int,
        input_node: SingeNode,
        shape: Iterable[int],
        name: Optional[str] = None,
    ):
        user = name or f"{self.kind.value}{index}"
        SingeNode.require_float(input_node, user)

        new_shape = normalize_shape(shape)
        old_shape = input_node.shape

        if new_shape[0] != old_shape[0] or np.prod(new_shape) != np.prod(old_shape):
            raise ShapeMismatch(
                f"{user}: cannot reshape {old_shape} into {new_shape}"
            )

        super().__init__(index, (input_node.index,), new_shape, name=name)

    def forward(self, network) -> None:
        self.output.data[...] = self.input_data(network).reshape(self.shape)

    def backward(self, network) -> None:
        # accumulate_input_grad reshapes to the input's shape
        self.accumulate_input_grad(network, self.grad.data)
