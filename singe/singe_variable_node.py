# singe/singe_variable_node.py
from __future__ import annotations

import math
from typing import List, Optional, Sequence

import numpy as np

from singe.singe_elem_kind import ElemKind
from singe.singe_errors import ElemKindMismatch, ShapeMismatch
from singe.singe_node import NodeKind, SingeNode
from singe.singe_param import SingeParam
from singe.singe_tensor import SingeTensor


class SingeVariableNode(SingeNode):
    """
    Graph input (leaf).

    Forward is the identity: the output is whatever was bound or copied in
    before the pass. Backward is a no-op unless the variable is trainable,
    in which case the gradient that reached it is accumulated into its
    parameter gradient and the optimizer updates it like any weight.

    Shapes:
        output: exactly the shape given at creation, leading dim = minibatch
    """

    kind = NodeKind.VARIABLE

    def __init__(
        self,
        index: int,
        shape: Sequence[int],
        elem_kind: ElemKind = ElemKind.FLOAT,
        trainable: bool = False,
        rng: np.random.RandomState | None = None,
        name: Optional[str] = None,
    ):
        super().__init__(index, (), shape, output_kind=elem_kind, name=name)

        self.trainable = bool(trainable)
        self._own_output = self.output
        self._param: SingeParam | None = None

        if self.trainable:
            if elem_kind is not ElemKind.FLOAT:
                raise ElemKindMismatch(
                    f"{self.name}: only float variables can be trainable"
                )

            # Same uniform init as the weight layers, fan-in = one example
            fan_in = int(np.prod(self.output.shape[1:])) if self.output.rank > 1 else 1
            limit = 1.0 / math.sqrt(fan_in)
            rng = rng if rng is not None else np.random.RandomState(0)
            self.output.data[...] = rng.uniform(
                -limit, +limit, size=self.output.shape
            ).astype(np.float32)

            self._param = SingeParam(name=self.name, value=self.output)

    # --------------------------------------------------------------
    # Binding
    # --------------------------------------------------------------
    def check_compatible(self, tensor: SingeTensor, whole_shape: bool) -> None:
        """
        whole_shape=True:  tensor must match this variable's shape exactly.
        whole_shape=False: only the trailing dims must match (dataset tensor
                           that gets sliced into minibatches).
        """
        if tensor.kind is not self._own_output.kind:
            raise ElemKindMismatch(
                f"{self.name}: bound tensor holds {tensor.kind.value} elements, "
                f"variable holds {self._own_output.kind.value}"
            )

        mine = self._own_output.shape
        if whole_shape:
            if tensor.shape != mine:
                raise ShapeMismatch(
                    f"{self.name}: bound tensor shape {tensor.shape} does not "
                    f"match variable shape {mine}"
                )
        else:
            if tensor.shape[1:] != mine[1:]:
                raise ShapeMismatch(
                    f"{self.name}: dataset example shape {tensor.shape[1:]} does "
                    f"not match variable example shape {mine[1:]}"
                )
            if tensor.shape[0] < mine[0]:
                raise ShapeMismatch(
                    f"{self.name}: dataset holds {tensor.shape[0]} examples, "
                    f"fewer than one minibatch of {mine[0]}"
                )

    def bind(self, tensor: SingeTensor) -> None:
        """Reference a caller tensor as this variable's output (no copy)."""
        self.check_compatible(tensor, whole_shape=True)
        self.output = tensor

    def unbind(self) -> None:
        self.output = self._own_output

    def load_slices(self, dataset: SingeTensor, offset: int) -> None:
        """Copy one minibatch of examples, starting at `offset`, into the output."""
        self._own_output.get_handle().copy_consecutive_slices(dataset, offset)

    # --------------------------------------------------------------
    # Forward / backward
    # --------------------------------------------------------------
    def forward(self, network) -> None:
        pass

    def backward(self, network) -> None:
        if self._param is not None:
            self._param.grad.data[...] += self.grad.data

    def parameters(self) -> List[SingeParam]:
        return [self._param] if self._param is not None else []

    def __repr__(self) -> str:
        flag = ", trainable" if self.trainable else ""
        return (
            f"SingeVariableNode({self.name}, shape={self.shape}, "
            f"kind={self.output.kind.value}{flag})"
        )
