# singe/singe_regression_node.py
from __future__ import annotations

from typing import Optional

import numpy as np

from singe.singe_errors import ShapeMismatch
from singe.singe_node import NodeKind, SingeNode


class SingeRegressionNode(SingeNode):
    """
    Squared-error loss against a float target.

        input:     (N, ...) predictions
        expected:  float variable of the same shape
        output:    the predictions, unchanged

        loss  = sum((x - e)^2) / (2 * N)
        dL/dx = (x - e) / N
    """

    kind = NodeKind.REGRESSION
    is_loss = True

    def __init__(
        self,
        index: int,
        input_node: SingeNode,
        expected_node: SingeNode,
        name: Optional[str] = None,
    ):
        user = name or f"{self.kind.value}{index}"
        SingeNode.require_float(input_node, user)
        SingeNode.require_float(expected_node, user)

        if expected_node.shape != input_node.shape:
            raise ShapeMismatch(
                f"{user}: expected shape {expected_node.shape} does not match "
                f"input shape {input_node.shape}"
            )

        super().__init__(
            index,
            (input_node.index, expected_node.index),
            input_node.shape,
            name=name,
        )
        self.loss: float | None = None

    def forward(self, network) -> None:
        x = self.input_data(network, 0)
        e = self.input_data(network, 1)
        self.output.data[...] = x

        N = self.shape[0]
        diff = x - e
        self.loss = float(np.sum(diff * diff) / (2.0 * N))

    def backward(self, network) -> None:
        if self.loss is None:
            raise RuntimeError(f"{self.name}: backward called before forward.")

        N = self.shape[0]
        diff = self.output.data - self.input_data(network, 1)
        self.accumulate_input_grad(network, diff / float(N), slot=0)
