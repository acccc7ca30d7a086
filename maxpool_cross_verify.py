# maxpool_cross_verify.py
from __future__ import annotations

import numpy as np
import pytest
import torch
import torch.nn as nn

from singe.singe_errors import InvalidShape, ShapeMismatch
from singe.singe_network import SingeNetwork
from singe.singe_pool_node import PoolKind


# ------------------------------------------------------------
# Config
# ------------------------------------------------------------

NUM_TRIALS = 128


# ------------------------------------------------------------
# Utility: tolerant equality check
# ------------------------------------------------------------

def assert_allclose(a, b, atol=1e-4, rtol=1e-4, name=""):
    if not np.allclose(a, b, atol=atol, rtol=rtol):
        diff = np.abs(a - b)
        max_diff = float(diff.max())
        raise AssertionError(
            f"[{name}] max |a-b| = {max_diff}, "
            f"atol={atol}, rtol={rtol}"
        )


# ------------------------------------------------------------
# Random param + input generators
# ------------------------------------------------------------

def random_int(low: int, high: int) -> int:
    """
    Inclusive integer RNG: [low, high].
    """
    return int(np.random.randint(low, high + 1))


def make_random_pool_params():
    """
    Random (but valid) square pooling hyperparameters.

    Constraints:
      - pad <= floor(size / 2) to satisfy PyTorch's pooling padding rule
        (stricter than pad < size, which is all SingePoolNode needs).
      - Output size must be >= 1x1.
    """
    while True:
        N = random_int(1, 3)
        C = random_int(1, 4)

        H = random_int(4, 14)
        W = random_int(4, 14)

        k = random_int(1, 4)
        stride = random_int(1, 3)
        pad = random_int(0, k // 2)

        H_out = (H + 2 * pad - k) // stride + 1
        W_out = (W + 2 * pad - k) // stride + 1

        if H_out <= 0 or W_out <= 0:
            continue

        return {
            "N": N, "C": C, "H": H, "W": W,
            "size": k, "stride": stride, "pad": pad,
            "H_out": H_out, "W_out": W_out,
        }


def to_nchw(x: np.ndarray) -> np.ndarray:
    return np.ascontiguousarray(x.transpose(0, 3, 1, 2))


def to_nhwc(x: np.ndarray) -> np.ndarray:
    return np.ascontiguousarray(x.transpose(0, 2, 3, 1))


# ------------------------------------------------------------
# Core test
# ------------------------------------------------------------

def cross_verify_once(trial_index: int, kind: PoolKind):
    p = make_random_pool_params()
    N, H, W, C = p["N"], p["H"], p["W"], p["C"]

    net = SingeNetwork(seed=trial_index)
    x_node = net.create_variable((N, H, W, C))
    pool = net.create_max_pool_node(
        x_node, kind=kind, size=p["size"], stride=p["stride"], pad=p["pad"]
    )

    assert pool.shape == (N, p["H_out"], p["W_out"], C)

    if kind is PoolKind.MAX:
        pool_torch = nn.MaxPool2d(
            kernel_size=p["size"], stride=p["stride"], padding=p["pad"]
        )
    else:
        pool_torch = nn.AvgPool2d(
            kernel_size=p["size"], stride=p["stride"], padding=p["pad"],
            count_include_pad=True,
        )

    # Random floats: ties have probability ~0, so routing is unambiguous
    x = np.random.randn(N, H, W, C).astype(np.float32)
    x_node.output.data[...] = x
    net.forward(pool)

    x_torch = torch.from_numpy(to_nchw(x)).requires_grad_(True)
    y_torch = pool_torch(x_torch)

    assert_allclose(pool.output.data, to_nhwc(y_torch.detach().numpy()), name=f"{kind.value} forward")

    grad_out = np.random.randn(*pool.shape).astype(np.float32)

    x_node.grad.zero()
    pool.grad.data[...] = grad_out
    pool.backward(net)

    y_torch.backward(torch.from_numpy(to_nchw(grad_out)))
    gx_torch = to_nhwc(x_torch.grad.detach().numpy())

    assert_allclose(x_node.grad.data, gx_torch, name=f"{kind.value} grad_x")


def test_maxpool_cross_verify():
    np.random.seed(0)
    torch.manual_seed(0)
    for i in range(NUM_TRIALS):
        cross_verify_once(i, PoolKind.MAX)


def test_avgpool_cross_verify():
    np.random.seed(1)
    torch.manual_seed(1)
    for i in range(NUM_TRIALS):
        cross_verify_once(i, PoolKind.AVG)


# ------------------------------------------------------------
# Gradient routing, checked window by window
# ------------------------------------------------------------

def test_maxpool_routes_whole_gradient_to_argmax():
    N, H, W, C = 2, 6, 6, 3
    k = 2

    net = SingeNetwork()
    x_node = net.create_variable((N, H, W, C))
    pool = net.create_max_pool_node(x_node, size=k, stride=k)

    # Distinct values, shuffled
    rng = np.random.RandomState(3)
    x = rng.permutation(N * H * W * C).astype(np.float32).reshape(N, H, W, C)
    x_node.output.data[...] = x
    net.forward(pool)

    g = rng.uniform(0.5, 1.5, size=pool.shape).astype(np.float32)
    x_node.grad.zero()
    pool.grad.data[...] = g
    pool.backward(net)

    gx = x_node.grad.data
    for n in range(N):
        for oy in range(pool.shape[1]):
            for ox in range(pool.shape[2]):
                for c in range(C):
                    window = x[n, oy * k:(oy + 1) * k, ox * k:(ox + 1) * k, c]
                    gwin = gx[n, oy * k:(oy + 1) * k, ox * k:(ox + 1) * k, c]

                    ky, kx = np.unravel_index(np.argmax(window), window.shape)
                    assert pool.output.data[n, oy, ox, c] == window.max()
                    assert int(pool.argmax.data[n, oy, ox, c]) == ky * k + kx

                    assert gwin[ky, kx] == pytest.approx(g[n, oy, ox, c])
                    assert np.count_nonzero(gwin) == 1


def test_maxpool_tie_goes_to_first_position():
    net = SingeNetwork()
    x_node = net.create_variable((1, 2, 2, 1))
    pool = net.create_max_pool_node(x_node, size=2, stride=2)

    x_node.output.data[...] = 1.0
    net.forward(pool)

    pool.grad.data[...] = 1.0
    x_node.grad.zero()
    pool.backward(net)

    assert int(pool.argmax.data[0, 0, 0, 0]) == 0
    assert x_node.grad.data[0, :, :, 0].tolist() == [[1.0, 0.0], [0.0, 0.0]]


def test_maxpool_padding_never_wins():
    net = SingeNetwork()
    x_node = net.create_variable((1, 2, 2, 1))
    pool = net.create_max_pool_node(x_node, size=2, stride=2, pad=1)

    x_node.output.data[...] = -5.0
    net.forward(pool)

    assert pool.shape == (1, 2, 2, 1)
    assert np.all(pool.output.data == -5.0)


def test_pool_rejects_bad_config():
    net = SingeNetwork()
    image = net.create_variable((1, 4, 4, 2))
    flat = net.create_variable((1, 8))

    with pytest.raises(InvalidShape):
        net.create_max_pool_node(image, size=2, stride=2, pad=2)

    with pytest.raises(InvalidShape):
        net.create_max_pool_node(image, size=0)

    with pytest.raises(InvalidShape):
        net.create_max_pool_node(image, size=5, stride=1)

    with pytest.raises(InvalidShape):
        net.create_max_pool_node(image, kind="median")

    with pytest.raises(ShapeMismatch):
        net.create_max_pool_node(flat)

    # String kinds are accepted case-insensitively
    avg = net.create_max_pool_node(image, kind="AVG")
    assert avg.pool_kind is PoolKind.AVG
    assert avg.argmax is None


# ------------------------------------------------------------
# Entry point
# ------------------------------------------------------------

if __name__ == "__main__":
    np.random.seed(0)
    torch.manual_seed(0)

    print(f"[maxpool_cross_verify] Running {NUM_TRIALS} random trials per pool kind...\n")

    for kind in PoolKind:
        for i in range(NUM_TRIALS):
            cross_verify_once(i, kind)
            print(f"  [OK] {kind.value} trial {i+1}/{NUM_TRIALS}")

    print("\n[maxpool_cross_verify] All pooling tests passed!")
