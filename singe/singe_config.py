# singe/singe_config.py
from __future__ import annotations

from dataclasses import dataclass


@dataclass
class SingeConfig:
    """
    Training hyperparameters, one record per SingeNetwork.

    learning_rate: step size (eta)
    momentum:      momentum coefficient (mu), 0 disables momentum
    l2_decay:      L2 weight decay (lambda) folded into the gradient
    report_rate:   print the minibatch loss every this many iterations,
                   0 keeps training silent

    The record is mutable: set fields before calling train(). The optimizer
    re-reads it on every step.
    """
    learning_rate: float = 0.001
    momentum: float = 0.9
    l2_decay: float = 0.0
    report_rate: int = 0

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if not self.learning_rate >= 0.0:
            raise ValueError(f"Invalid learning_rate: {self.learning_rate}")
        if not 0.0 <= self.momentum < 1.0:
            raise ValueError(f"Invalid momentum: {self.momentum}")
        if not self.l2_decay >= 0.0:
            raise ValueError(f"Invalid l2_decay: {self.l2_decay}")
        if int(self.report_rate) != self.report_rate or self.report_rate < 0:
            raise ValueError(f"Invalid report_rate: {self.report_rate}")
