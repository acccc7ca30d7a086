# relu_cross_verify.py

from __future__ import annotations
import numpy as np
import torch
import torch.nn as nn

from singe.singe_network import SingeNetwork


NUM_TRIALS = 255


def assert_allclose(a, b, atol=1e-4, rtol=1e-4):
    if not np.allclose(a, b, atol=atol, rtol=rtol):
        diff = np.abs(a - b)
        raise AssertionError(
            f"Arrays differ: max diff={diff.max()}, atol={atol}, rtol={rtol}"
        )


def make_random_nd_input():
    """
    Generates an input with random shape:
      rank = 1 to 4
      each dimension = 1 to 10
    values in (-5, 5)
    """
    rank = int(np.random.randint(1, 5))  # 1D…4D
    shape = tuple(int(np.random.randint(1, 11)) for _ in range(rank))
    x = np.random.uniform(-5.0, 5.0, size=shape).astype(np.float32)
    return x


def cross_verify_relu_once(trial_index: int):
    x = make_random_nd_input()

    net = SingeNetwork(seed=trial_index)
    x_node = net.create_variable(x.shape)
    relu = net.create_relu_node(x_node)
    torch_relu = nn.ReLU()

    x_torch = torch.from_numpy(x.copy()).requires_grad_(True)

    # --------------
    # Forward
    # --------------
    x_node.output.data[...] = x
    net.forward(relu)

    y2_t = torch_relu(x_torch)
    y2 = y2_t.detach().numpy()

    assert relu.shape == x.shape
    assert_allclose(relu.output.data, y2)

    # --------------
    # Backward
    # --------------
    grad_out = np.random.randn(*x.shape).astype(np.float32)

    x_node.grad.zero()
    relu.grad.data[...] = grad_out
    relu.backward(net)

    y2_t.backward(torch.from_numpy(grad_out.copy()))
    gx2 = x_torch.grad.detach().numpy()

    assert_allclose(x_node.grad.data, gx2)


def test_relu_cross_verify():
    np.random.seed(0)
    torch.manual_seed(0)

    for i in range(NUM_TRIALS):
        cross_verify_relu_once(i)


def test_relu_gradient_accumulates_into_shared_input():
    # Two consumers of one input: both contributions must land
    net = SingeNetwork()
    x_node = net.create_variable((2, 3))
    a = net.create_relu_node(x_node)
    b = net.create_relu_node(x_node)

    x_node.output.data[...] = np.array([[1.0, -1.0, 2.0], [-3.0, 4.0, 0.5]], dtype=np.float32)
    net.forward()

    x_node.grad.zero()
    a.grad.data[...] = 1.0
    b.grad.data[...] = 2.0
    a.backward(net)
    b.backward(net)

    expected = np.array([[3.0, 0.0, 3.0], [0.0, 3.0, 3.0]], dtype=np.float32)
    assert np.array_equal(x_node.grad.data, expected)


if __name__ == "__main__":
    np.random.seed(0)
    torch.manual_seed(0)

    print("Running ReLU cross-verification...")
    for i in range(NUM_TRIALS):
        cross_verify_relu_once(i)
        print(f"  [OK] trial {i+1}/{NUM_TRIALS}")

    print("All ReLU trials passed ✔")
