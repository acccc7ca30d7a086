# singe/singe_relu_node.py
from __future__ import annotations

from typing import Optional

import numpy as np

from singe.singe_node import NodeKind, SingeNode


class SingeReLUNode(SingeNode):
    """
    Elementwise ReLU activation:

        y = max(0, x)

    Forward:
        - Works on any shape.
        - Stores a mask (x > 0) for backward.

    Backward:
        - grad_input = grad_output * (x > 0)
    """

    kind = NodeKind.RELU

    def __init__(self, index: int, input_node: SingeNode, name: Optional[str] = None):
        SingeNode.require_float(input_node, name or f"{self.kind.value}{index}")
        super().__init__(index, (input_node.index,), input_node.shape, name=name)
        self._mask: np.ndarray | None = None

    def forward(self, network) -> None:
        x = self.input_data(network)

        # 1 where x > 0, 0 elsewhere
        self._mask = (x > 0).astype(np.float32)

        # ReLU: max(0, x) == x * (x > 0)
        self.output.data[...] = x * self._mask

    def backward(self, network) -> None:
        if self._mask is None:
            raise RuntimeError(f"{self.name}: backward called before forward.")

        self.accumulate_input_grad(network, self.grad.data * self._mask)
