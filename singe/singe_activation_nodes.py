# singe/singe_activation_nodes.py
from __future__ import annotations

from typing import Optional

import numpy as np

from singe.singe_node import NodeKind, SingeNode


class SingeSigmoidNode(SingeNode):
    """
    Elementwise logistic sigmoid:
        y = 1 / (1 + exp(-x))

    Backward:
        dL/dx = dL/dy * y * (1 - y)
    """

    kind = NodeKind.SIGMOID

    def __init__(self, index: int, input_node: SingeNode, name: Optional[str] = None):
        SingeNode.require_float(input_node, name or f"{self.kind.value}{index}")
        super().__init__(index, (input_node.index,), input_node.shape, name=name)

    def forward(self, network) -> None:
        x = self.input_data(network)
        # Split by sign so exp never overflows
        e = np.exp(-np.abs(x))
        y = np.where(x >= 0, 1.0 / (1.0 + e), e / (1.0 + e))
        self.output.data[...] = y

    def backward(self, network) -> None:
        y = self.output.data
        self.accumulate_input_grad(network, self.grad.data * y * (1.0 - y))


class SingeTanhNode(SingeNode):
    """
    Elementwise hyperbolic tangent.

    Backward:
        dL/dx = dL/dy * (1 - y^2)
    """

    kind = NodeKind.TANH

    def __init__(self, index: int, input_node: SingeNode, name: Optional[str] = None):
        SingeNode.require_float(input_node, name or f"{self.kind.value}{index}")
        super().__init__(index, (input_node.index,), input_node.shape, name=name)

    def forward(self, network) -> None:
        self.output.data[...] = np.tanh(self.input_data(network))

    def backward(self, network) -> None:
        y = self.output.data
        self.accumulate_input_grad(network, self.grad.data * (1.0 - y * y))
