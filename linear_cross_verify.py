# linear_cross_verify.py

from __future__ import annotations

import numpy as np
import pytest
import torch
import torch.nn as nn

from singe.singe_elem_kind import ElemKind
from singe.singe_errors import ElemKindMismatch, InvalidShape
from singe.singe_fully_connected_node import SingeFullyConnectedNode
from singe.singe_network import SingeNetwork


# --------------------------------------------------
# Config
# --------------------------------------------------

NUM_TRIALS = 255


# --------------------------------------------------
# Helpers
# --------------------------------------------------

def assert_allclose(a, b, atol=1e-3, rtol=1e-4):
    if not np.allclose(a, b, atol=atol, rtol=rtol):
        diff = np.abs(a - b)
        max_diff = float(diff.max())
        raise AssertionError(
            f"Arrays differ: max |a-b| = {max_diff}, "
            f"atol={atol}, rtol={rtol}"
        )


def sync_singe_to_torch(
    singe_node: SingeFullyConnectedNode,
    torch_layer: nn.Linear,
) -> None:
    """
    Copy parameters from a SingeFullyConnectedNode into a torch.nn.Linear.
    Shapes:
        singe W: (in_features, out_features)  → torch weight: (out, in)
        b: (out_features,)
    """
    W, b = singe_node.parameters()
    with torch.no_grad():
        torch_layer.weight.data.copy_(torch.from_numpy(W.value.data.T.copy()))
        torch_layer.bias.data.copy_(torch.from_numpy(b.value.data.copy()))


def make_random_input_shape():
    """
    (N, D1, ..., Dk) with rank 2..4; every dim in [1, 6].
    The node flattens everything after N.
    """
    rank = int(np.random.randint(2, 5))
    shape = tuple(int(np.random.randint(1, 7)) for _ in range(rank))
    in_features = int(np.prod(shape[1:]))
    return shape, in_features


def make_random_input(shape) -> np.ndarray:
    """
    Create random input with given shape, values in (-10, 10).
    """
    return np.random.uniform(low=-10.0, high=10.0, size=shape).astype(np.float32)


# --------------------------------------------------
# Core cross-verify
# --------------------------------------------------

def cross_verify_linear_once(trial_index: int) -> None:
    """
    Run a single random test comparing:
      - SingeFullyConnectedNode
      - torch.nn.Linear on the flattened input

    Asserts outputs, input-gradients and parameter gradients match.
    """
    x_shape, in_features = make_random_input_shape()
    out_features = int(np.random.randint(1, 11))

    net = SingeNetwork(seed=trial_index)
    x_node = net.create_variable(x_shape)
    fc = net.create_fully_connected_node(x_node, out_features)
    torch_lin = nn.Linear(in_features, out_features)

    assert fc.in_features == in_features
    assert fc.shape == (x_shape[0], out_features)

    sync_singe_to_torch(fc, torch_lin)

    x = make_random_input(x_shape)
    x_torch = torch.from_numpy(x.copy()).requires_grad_(True)

    # ------------------------------
    # Forward
    # ------------------------------
    x_node.output.data[...] = x
    net.forward(fc)

    y_torch = torch_lin(x_torch.reshape(x_shape[0], in_features))
    assert_allclose(fc.output.data, y_torch.detach().numpy())

    # ------------------------------
    # Backward
    # ------------------------------
    grad_out = np.random.randn(*fc.shape).astype(np.float32)

    x_node.grad.zero()
    fc.zero_grad()
    fc.grad.data[...] = grad_out
    fc.backward(net)

    y_torch.backward(torch.from_numpy(grad_out.copy()))
    gx = x_torch.grad.detach().numpy()

    if x_node.grad.shape != gx.shape:
        raise AssertionError(
            f"Input-grad shape mismatch on trial {trial_index}: "
            f"singe={x_node.grad.shape}, torch={gx.shape}"
        )

    assert_allclose(x_node.grad.data, gx)

    # ------------------------------
    # Parameter gradients
    # ------------------------------
    assert_allclose(fc.W.grad.data, torch_lin.weight.grad.detach().numpy().T)
    assert_allclose(fc.b.grad.data, torch_lin.bias.grad.detach().numpy())


def test_linear_cross_verify():
    np.random.seed(0)
    torch.manual_seed(0)

    for i in range(NUM_TRIALS):
        cross_verify_linear_once(i)


def test_linear_param_grads_accumulate_until_zeroed():
    net = SingeNetwork()
    x_node = net.create_variable((2, 3))
    fc = net.create_fully_connected_node(x_node, 2)

    x_node.output.data[...] = np.arange(6, dtype=np.float32).reshape(2, 3)
    net.forward(fc)
    fc.grad.data[...] = 1.0

    fc.backward(net)
    once = fc.W.grad.data.copy()
    fc.backward(net)

    assert np.allclose(fc.W.grad.data, 2.0 * once)

    net.zero_grads()
    assert not np.any(fc.W.grad.data)
    assert not np.any(fc.b.grad.data)


def test_linear_rejects_bad_config():
    net = SingeNetwork()
    x_node = net.create_variable((2, 3))
    labels = net.create_variable((2, 1), kind=ElemKind.INDEX)

    with pytest.raises(InvalidShape):
        net.create_fully_connected_node(x_node, 0)

    with pytest.raises(ElemKindMismatch):
        net.create_fully_connected_node(labels, 4)


if __name__ == "__main__":
    np.random.seed(0)
    torch.manual_seed(0)

    print("Running fully connected cross-verification...")
    for i in range(NUM_TRIALS):
        cross_verify_linear_once(i)
        print(f"  [OK] trial {i+1}/{NUM_TRIALS}")

    print("All fully connected trials passed ✔")
