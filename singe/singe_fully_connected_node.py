# singe/singe_fully_connected_node.py
from __future__ import annotations

import math
from typing import List, Optional

import numpy as np

from singe.singe_errors import InvalidShape
from singe.singe_node import NodeKind, SingeNode
from singe.singe_param import SingeParam
from singe.singe_tensor import SingeTensor


class SingeFullyConnectedNode(SingeNode):
    """
    Fully-connected (dense) layer over flattened examples:

        y = flatten(x) @ W + b

    where:
        x: (N, ...)       input, everything after the batch dim is flattened
        D = product(x.shape[1:])
        W: (D, C)         weight matrix
        b: (C,)           bias vector
        y: (N, C)         output activations

    Backprop equations:

        Given:
            g = dL/dy   shape (N, C)

        Gradients:
            dL/dW = x^T @ g
            dL/db = column sum of g
            dL/dx = g @ W^T          (reshaped back to x's shape)
    """

    kind = NodeKind.FULLY_CONNECTED

    def __init__(
        self,
        index: int,
        input_node: SingeNode,
        outputs: int,
        rng: np.random.RandomState | None = None,
        name: Optional[str] = None,
    ):
        SingeNode.require_float(input_node, name or f"{self.kind.value}{index}")

        self.out_features = int(outputs)
        if self.out_features < 1:
            raise InvalidShape(f"Fully connected node needs at least one output, got {outputs}")

        batch = input_node.shape[0]
        self.in_features = int(np.prod(input_node.shape[1:])) if len(input_node.shape) > 1 else 1

        super().__init__(
            index,
            (input_node.index,),
            (batch, self.out_features),
            name=name,
        )

        # Xavier-ish uniform init:
        # W_ij ~ U(-1/sqrt(D), 1/sqrt(D))
        rng = rng if rng is not None else np.random.RandomState(0)
        limit = 1.0 / math.sqrt(self.in_features)

        weights = SingeTensor((self.in_features, self.out_features), name=f"{self.name}.W")
        weights.data[...] = rng.uniform(
            -limit, +limit, size=weights.shape
        ).astype(np.float32)

        self.W = SingeParam(name=f"{self.name}.W", value=weights)
        self.b = SingeParam(
            name=f"{self.name}.b",
            value=SingeTensor((self.out_features,), name=f"{self.name}.b"),
        )

        # Cache for backward
        self._last_x: np.ndarray | None = None

    # ------------------------------------------------------
    # Forward
    # ------------------------------------------------------
    def forward(self, network) -> None:
        x = self.input_data(network).reshape(self.shape[0], self.in_features)
        self._last_x = x
        self.output.data[...] = x @ self.W.value.data + self.b.value.data

    # ------------------------------------------------------
    # Backward
    # ------------------------------------------------------
    def backward(self, network) -> None:
        if self._last_x is None:
            raise RuntimeError(f"{self.name}: backward called before forward.")

        g = self.grad.data                  # (N, C)
        x = self._last_x                    # (N, D)

        # Accumulate into buffers so several backward passes can add up
        self.W.grad.data[...] += x.T @ g
        self.b.grad.data[...] += g.sum(axis=0)

        self.accumulate_input_grad(network, g @ self.W.value.data.T)

    # ------------------------------------------------------
    # Parameter handling
    # ------------------------------------------------------
    def parameters(self) -> List[SingeParam]:
        return [self.W, self.b]

    def __repr__(self) -> str:
        return (
            f"SingeFullyConnectedNode({self.name}, "
            f"{self.in_features}->{self.out_features}, W={self.W.shape})"
        )
