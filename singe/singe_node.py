# singe/singe_node.py
from __future__ import annotations

from enum import Enum
from typing import List, Optional, Sequence, Tuple, TYPE_CHECKING

import numpy as np

from singe.singe_elem_kind import ElemKind
from singe.singe_errors import ElemKindMismatch
from singe.singe_param import SingeParam
from singe.singe_tensor import SingeTensor

if TYPE_CHECKING:
    from singe.singe_network import SingeNetwork


class NodeKind(str, Enum):
    """
    Tag selecting the operator a SingeNode implements.
    The set is closed: every kind has exactly one node class.
    """

    VARIABLE = "variable"
    CONVOLUTION = "convolution"
    RELU = "relu"
    POOL = "pool"
    FULLY_CONNECTED = "fully_connected"
    SOFTMAX = "softmax"
    SIGMOID = "sigmoid"
    TANH = "tanh"
    REGRESSION = "regression"
    RESHAPE = "reshape"


class SingeNode:
    """
    Minimal base class for every graph node.

    A node owns:
      - output: the SingeTensor its forward() writes
      - grad:   dL/d(output), same shape, float32 (None for INDEX outputs)
      - its parameters, if it is trainable

    It does NOT own its predecessors. `inputs` holds their indices in the
    owning SingeNetwork, which always precede this node's own index.

    Subclasses override:
      - forward(self, network)
      - backward(self, network)
      - parameters(self)         (if they have learnable params)

    Forward = compute self.output from the inputs' outputs
    Backward = read self.grad, ADD dL/d(input) into each input's grad,
               and accumulate parameter gradients
    """

    kind: NodeKind

    # Loss nodes seed their own gradient in backward() instead of reading
    # self.grad, and expose the last computed loss.
    is_loss: bool = False

    def __init__(
        self,
        index: int,
        inputs: Sequence[int],
        output_shape: Sequence[int],
        output_kind: ElemKind = ElemKind.FLOAT,
        name: Optional[str] = None,
    ):
        self.index = int(index)
        self.inputs: Tuple[int, ...] = tuple(int(i) for i in inputs)
        self.name = name or f"{self.kind.value}{self.index}"

        self.output = SingeTensor(output_shape, kind=output_kind, name=self.name)
        self.grad: SingeTensor | None = None
        if output_kind is ElemKind.FLOAT:
            self.grad = SingeTensor(output_shape, name=f"{self.name}.grad")

    # --------------------------------------------------
    # Graph helpers
    # --------------------------------------------------
    def input_node(self, network: "SingeNetwork", slot: int = 0) -> "SingeNode":
        return network.node(self.inputs[slot])

    def input_data(self, network: "SingeNetwork", slot: int = 0) -> np.ndarray:
        return self.input_node(network, slot).output.data

    def accumulate_input_grad(
        self, network: "SingeNetwork", grad: np.ndarray, slot: int = 0
    ) -> None:
        """Add grad into the predecessor's output-gradient buffer."""
        target = self.input_node(network, slot).grad
        if target is not None:
            target.data[...] += grad.reshape(target.shape)

    @staticmethod
    def require_float(node: "SingeNode", user: str) -> None:
        if node.output.kind is not ElemKind.FLOAT:
            raise ElemKindMismatch(
                f"{user}: input '{node.name}' holds {node.output.kind.value} "
                f"elements, expected float"
            )

    @property
    def shape(self) -> Tuple[int, ...]:
        return self.output.shape

    # --------------------------------------------------
    # Forward / backward
    # --------------------------------------------------
    def forward(self, network: "SingeNetwork") -> None:
        raise NotImplementedError(f"{self.__class__.__name__}.forward not implemented.")

    def backward(self, network: "SingeNetwork") -> None:
        raise NotImplementedError(f"{self.__class__.__name__}.backward not implemented.")

    # --------------------------------------------------
    # Parameter handling
    # --------------------------------------------------
    def parameters(self) -> List[SingeParam]:
        """
        Learnable parameters owned by this node.
        Nodes without parameters inherit this default (empty list).
        """
        return []

    def zero_grad(self) -> None:
        for p in self.parameters():
            p.zero_grad()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name}, shape={self.shape})"
