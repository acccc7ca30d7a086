# singe/grad_check.py
from __future__ import annotations

from typing import Iterable, Tuple

import numpy as np

from singe.singe_network import SingeNetwork
from singe.singe_node import SingeNode
from singe.singe_param import SingeParam
from singe.singe_variable_node import SingeVariableNode


def compute_loss(network: SingeNetwork, root: SingeNode) -> float:
    """
    Forward up to the loss node and return its scalar loss.
    No gradient computation here, pure forward.
    """
    network.forward(root)
    return float(root.loss)


def compute_loss_and_backprop(network: SingeNetwork, root: SingeNode) -> float:
    """
    Forward + backward on whatever the variables currently hold.
    Returns the loss and leaves fresh gradients in every parameter
    and every output-gradient buffer.
    """
    network.zero_grads()
    loss = compute_loss(network, root)
    network.backward(root)
    return loss


def numeric_gradient(
    network: SingeNetwork,
    root: SingeNode,
    array: np.ndarray,
    index: Tuple[int, ...],
    eps: float = 1e-2,
) -> float:
    """
    Central finite difference of the loss with respect to array[index].
    `array` must be the live storage of a parameter or a variable.
    """
    original = float(array[index])

    array[index] = original + eps
    loss_plus = compute_loss(network, root)

    array[index] = original - eps
    loss_minus = compute_loss(network, root)

    # Restore original value
    array[index] = original

    return (loss_plus - loss_minus) / (2.0 * eps)


def grad_check_param(
    network: SingeNetwork,
    root: SingeNode,
    param: SingeParam,
    index: Tuple[int, ...],
    eps: float = 1e-2,
    verbose: bool = False,
) -> Tuple[float, float]:
    """
    Compare analytic param.grad[index] vs numeric finite-difference gradient.
    """
    # --- 1) Analytic gradient via backprop ---
    compute_loss_and_backprop(network, root)
    analytic = float(param.grad.data[index])

    # --- 2) Numeric gradient via finite differences ---
    numeric = numeric_gradient(network, root, param.value.data, index, eps=eps)

    if verbose:
        print(f"[grad_check] {param.name}{list(index)}")
        print(f"  analytic: {analytic}")
        print(f"  numeric : {numeric}")
        print(f"  diff    : {abs(analytic - numeric)}")

    return analytic, numeric


def grad_check_input(
    network: SingeNetwork,
    root: SingeNode,
    variable: SingeVariableNode,
    index: Tuple[int, ...],
    eps: float = 1e-2,
    verbose: bool = False,
) -> Tuple[float, float]:
    """
    Compare the gradient that reached variable[index] with a finite difference.
    """
    compute_loss_and_backprop(network, root)
    analytic = float(variable.grad.data[index])

    numeric = numeric_gradient(network, root, variable.output.data, index, eps=eps)

    if verbose:
        print(f"[grad_check] {variable.name}{list(index)}")
        print(f"  analytic: {analytic}")
        print(f"  numeric : {numeric}")
        print(f"  diff    : {abs(analytic - numeric)}")

    return analytic, numeric


def random_indices(
    shape: Tuple[int, ...],
    count: int,
    rng: np.random.RandomState,
) -> Iterable[Tuple[int, ...]]:
    """`count` random multi-indices into `shape` (repeats allowed)."""
    for _ in range(count):
        yield tuple(int(rng.randint(0, d)) for d in shape)
