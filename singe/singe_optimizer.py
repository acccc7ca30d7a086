# singe/singe_optimizer.py
from __future__ import annotations

from typing import Iterable, List

from singe.singe_config import SingeConfig
from singe.singe_param import SingeParam


class SingeOptimizer:
    """
    Minimal optimizer base class.

    - Holds a flat list of SingeParam objects.
    - Provides zero_grad().
    - Child classes implement step(config).

    Hyperparameters are not stored here: they are read from the
    SingeConfig passed to every step(), so edits to the config between
    train() calls take effect on the next update.
    """

    def __init__(self, params: Iterable[SingeParam]) -> None:
        self.params: List[SingeParam] = list(params)

    def zero_grad(self) -> None:
        """
        Set all gradient accumulators to zero (in-place).
        """
        for p in self.params:
            p.zero_grad()

    def step(self, config: SingeConfig) -> None:
        """
        Perform a single optimization step.

        Must be overridden by subclasses.
        """
        raise NotImplementedError("SingeOptimizer.step() must be implemented by subclasses.")


class SingeSGD(SingeOptimizer):
    """
    Stochastic gradient descent with momentum and L2 weight decay.

    Per element, with w the weight, g its accumulated gradient,
    v its momentum buffer:

        g' = g + l2_decay * w
        v  = momentum * v - learning_rate * g'
        w  = w + v

    The momentum buffer lives on the SingeParam, so a fresh SingeSGD over
    the same params continues where the last one stopped.
    """

    def step(self, config: SingeConfig) -> None:
        lr = float(config.learning_rate)
        mu = float(config.momentum)
        wd = float(config.l2_decay)

        for p in self.params:
            w = p.value.data
            g = p.grad.data
            v = p.velocity.data

            # L2 weight decay (classic, folded into the gradient)
            if wd != 0.0:
                g = g + wd * w

            # v <- mu * v - lr * grad
            v[...] = mu * v - lr * g

            # w <- w + v
            w += v

    def __repr__(self) -> str:
        return f"SingeSGD(params={len(self.params)})"
