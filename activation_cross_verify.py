# activation_cross_verify.py

from __future__ import annotations
import numpy as np
import pytest
import torch

from singe.singe_errors import ShapeMismatch
from singe.singe_network import SingeNetwork


NUM_TRIALS = 128


def assert_allclose(a, b, atol=1e-5, rtol=1e-4):
    if not np.allclose(a, b, atol=atol, rtol=rtol):
        diff = np.abs(a - b)
        raise AssertionError(
            f"Arrays differ: max diff={diff.max()}, atol={atol}, rtol={rtol}"
        )


def make_random_nd_input():
    """
    rank = 1 to 4, each dimension = 1 to 8, values in (-8, 8)
    """
    rank = int(np.random.randint(1, 5))
    shape = tuple(int(np.random.randint(1, 9)) for _ in range(rank))
    return np.random.uniform(-8.0, 8.0, size=shape).astype(np.float32)


def cross_verify_activation_once(trial_index: int, create, torch_fn):
    x = make_random_nd_input()

    net = SingeNetwork(seed=trial_index)
    x_node = net.create_variable(x.shape)
    node = create(net, x_node)

    x_node.output.data[...] = x
    net.forward(node)

    x_torch = torch.from_numpy(x.copy()).requires_grad_(True)
    y_torch = torch_fn(x_torch)

    assert_allclose(node.output.data, y_torch.detach().numpy())

    grad_out = np.random.randn(*x.shape).astype(np.float32)

    x_node.grad.zero()
    node.grad.data[...] = grad_out
    node.backward(net)

    y_torch.backward(torch.from_numpy(grad_out.copy()))
    assert_allclose(x_node.grad.data, x_torch.grad.numpy())


def test_sigmoid_cross_verify():
    np.random.seed(0)
    for i in range(NUM_TRIALS):
        cross_verify_activation_once(
            i, lambda net, x: net.create_sigmoid_node(x), torch.sigmoid
        )


def test_tanh_cross_verify():
    np.random.seed(1)
    for i in range(NUM_TRIALS):
        cross_verify_activation_once(
            i, lambda net, x: net.create_tanh_node(x), torch.tanh
        )


def test_sigmoid_saturates_without_overflow():
    net = SingeNetwork()
    x_node = net.create_variable((1, 2))
    sig = net.create_sigmoid_node(x_node)

    x_node.output.data[...] = [[-1e4, 1e4]]
    with np.errstate(over="raise"):
        net.forward(sig)

    assert sig.output.data[0, 0] == pytest.approx(0.0)
    assert sig.output.data[0, 1] == pytest.approx(1.0)


# ------------------------------------------------------------
# Reshape
# ------------------------------------------------------------

def test_reshape_keeps_row_major_order_both_ways():
    net = SingeNetwork()
    x_node = net.create_variable((2, 3, 4))
    reshaped = net.create_reshape_node(x_node, (2, 12))

    x = np.arange(24, dtype=np.float32).reshape(2, 3, 4)
    x_node.output.data[...] = x
    net.forward(reshaped)

    assert reshaped.shape == (2, 12)
    assert np.array_equal(reshaped.output.data, x.reshape(2, 12))

    g = np.arange(24, dtype=np.float32).reshape(2, 12) * 0.5
    x_node.grad.zero()
    reshaped.grad.data[...] = g
    reshaped.backward(net)

    assert np.array_equal(x_node.grad.data, g.reshape(2, 3, 4))


def test_reshape_rejects_bad_shapes():
    net = SingeNetwork()
    x_node = net.create_variable((2, 3, 4))

    with pytest.raises(ShapeMismatch):
        net.create_reshape_node(x_node, (2, 10))

    with pytest.raises(ShapeMismatch):
        net.create_reshape_node(x_node, (4, 6))


if __name__ == "__main__":
    np.random.seed(0)

    print("Running activation cross-verification...")
    for name, create, fn in (
        ("sigmoid", lambda net, x: net.create_sigmoid_node(x), torch.sigmoid),
        ("tanh", lambda net, x: net.create_tanh_node(x), torch.tanh),
    ):
        for i in range(NUM_TRIALS):
            cross_verify_activation_once(i, create, fn)
            print(f"  [OK] {name} trial {i+1}/{NUM_TRIALS}")

    print("All activation trials passed ✔")
