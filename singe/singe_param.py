# singe/singe_param.py
from __future__ import annotations

from dataclasses import dataclass, field

from singe.singe_tensor import SingeTensor


@dataclass
class SingeParam:
    """
    One trainable parameter owned by a node.

    value:    the weights themselves
    grad:     gradient accumulator, filled by the owning node's backward()
    velocity: momentum buffer, only ever touched by the optimizer

    All three share the same shape and are float32.
    """
    name: str
    value: SingeTensor
    grad: SingeTensor = field(init=False)
    velocity: SingeTensor = field(init=False)

    def __post_init__(self) -> None:
        self.grad = SingeTensor(self.value.shape, name=f"{self.name}.grad")
        self.velocity = SingeTensor(self.value.shape, name=f"{self.name}.velocity")

    @property
    def shape(self):
        return self.value.shape

    def zero_grad(self) -> None:
        self.grad.zero()
