# convo_cross_verify.py
from __future__ import annotations

import numpy as np
import pytest
import torch
import torch.nn as nn

from singe.singe_elem_kind import ElemKind
from singe.singe_errors import ElemKindMismatch, InvalidShape, ShapeMismatch
from singe.singe_network import SingeNetwork


# ------------------------------------------------------------
# Config
# ------------------------------------------------------------

NUM_TRIALS = 64


# ------------------------------------------------------------
# Utility: tolerant equality check
# ------------------------------------------------------------

def assert_allclose(a, b, atol=1e-3, rtol=1e-4, name=""):
    if not np.allclose(a, b, atol=atol, rtol=rtol):
        diff = np.abs(a - b)
        max_diff = float(diff.max())
        raise AssertionError(
            f"[{name}] max |a-b| = {max_diff}, "
            f"atol={atol}, rtol={rtol}"
        )


# ------------------------------------------------------------
# Random input generators
# ------------------------------------------------------------

def random_int(low, high):
    return int(np.random.randint(low, high + 1))


def make_random_conv_params():
    """
    Random (but valid) convolution hyperparameters.

    Ensures H_out >= 1 and W_out >= 1 so that both engines accept
    the configuration.
    """
    while True:
        in_ch = random_int(1, 4)
        filters = random_int(1, 4)

        H = random_int(5, 12)
        W = random_int(5, 12)

        k = random_int(1, 5)
        stride = random_int(1, 3)
        pad = random_int(0, 2)

        batch = random_int(1, 3)

        H_out = ((H + 2 * pad - k) // stride) + 1
        W_out = ((W + 2 * pad - k) // stride) + 1

        if H_out <= 0 or W_out <= 0:
            continue

        return {
            "N": batch,
            "C_in": in_ch,
            "H": H,
            "W": W,
            "filters": filters,
            "kernel": k,
            "stride": stride,
            "pad": pad,
            "H_out": H_out,
            "W_out": W_out,
        }


def make_random_input(N, H, W, C):
    return np.random.uniform(-3, 3, size=(N, H, W, C)).astype(np.float32)


# ------------------------------------------------------------
# NHWC <-> NCHW
# ------------------------------------------------------------

def to_nchw(x: np.ndarray) -> np.ndarray:
    return np.ascontiguousarray(x.transpose(0, 3, 1, 2))


def to_nhwc(x: np.ndarray) -> np.ndarray:
    return np.ascontiguousarray(x.transpose(0, 2, 3, 1))


# ------------------------------------------------------------
# Core test
# ------------------------------------------------------------

def cross_verify_once(trial_index: int):
    p = make_random_conv_params()

    N, H, W, C_in = p["N"], p["H"], p["W"], p["C_in"]

    net = SingeNetwork(seed=trial_index)
    x_node = net.create_variable((N, H, W, C_in))
    conv = net.create_conv_node(
        x_node,
        filters=p["filters"],
        kernel=p["kernel"],
        stride=p["stride"],
        pad=p["pad"],
    )

    assert conv.shape == (N, p["H_out"], p["W_out"], p["filters"])

    conv_torch = nn.Conv2d(
        C_in, p["filters"],
        kernel_size=p["kernel"],
        stride=p["stride"],
        padding=p["pad"],
        bias=True,
    )

    # --------------------------------------------------------
    # Sync weights & biases for exact comparison
    # Singe W: (F, k, k, C) → torch (F, C, k, k)
    # --------------------------------------------------------
    with torch.no_grad():
        conv_torch.weight[:] = torch.from_numpy(to_nchw(conv.W.value.data))
        conv_torch.bias[:] = torch.from_numpy(conv.b.value.data.copy())

    # --------------------------------------------------------
    # Forward
    # --------------------------------------------------------
    x = make_random_input(N, H, W, C_in)
    x_node.output.data[...] = x
    net.forward(conv)

    x_torch = torch.from_numpy(to_nchw(x)).requires_grad_(True)
    y_torch = conv_torch(x_torch)
    y_np = to_nhwc(y_torch.detach().numpy())

    assert_allclose(conv.output.data, y_np, name="forward")

    # --------------------------------------------------------
    # Backward
    # --------------------------------------------------------
    grad_out = np.random.randn(*conv.shape).astype(np.float32)

    x_node.grad.zero()
    conv.grad.data[...] = grad_out
    conv.backward(net)

    y_torch.backward(torch.from_numpy(to_nchw(grad_out)))
    gx_torch = to_nhwc(x_torch.grad.detach().numpy())

    assert_allclose(x_node.grad.data, gx_torch, name="grad_x")

    # --------------------------------------------------------
    # Weight gradients
    # --------------------------------------------------------
    gW_torch = conv_torch.weight.grad.detach().numpy().transpose(0, 2, 3, 1)
    gb_torch = conv_torch.bias.grad.detach().numpy()

    assert_allclose(conv.W.grad.data, gW_torch, name="grad_W")
    assert_allclose(conv.b.grad.data, gb_torch, name="grad_b")


def test_conv_cross_verify():
    np.random.seed(1337)
    torch.manual_seed(1337)
    for i in range(NUM_TRIALS):
        cross_verify_once(i)


# ------------------------------------------------------------
# Shape rules
# ------------------------------------------------------------

@pytest.mark.parametrize("size", [5, 8, 32])
@pytest.mark.parametrize("kernel", [1, 3, 5])
@pytest.mark.parametrize("stride", [1, 2, 3])
@pytest.mark.parametrize("pad", [0, 1, 2])
def test_conv_output_size(size, kernel, stride, pad):
    net = SingeNetwork()
    x = net.create_variable((2, size, size + 1, 3))
    conv = net.create_conv_node(x, filters=4, kernel=kernel, stride=stride, pad=pad)

    expected_h = (size + 2 * pad - kernel) // stride + 1
    expected_w = (size + 1 + 2 * pad - kernel) // stride + 1
    assert conv.shape == (2, expected_h, expected_w, 4)


def test_conv_rejects_bad_inputs():
    net = SingeNetwork()
    flat = net.create_variable((2, 12))
    image = net.create_variable((2, 4, 4, 3))
    labels = net.create_variable((2, 1), kind=ElemKind.INDEX)

    with pytest.raises(ShapeMismatch):
        net.create_conv_node(flat, filters=2, kernel=3)

    with pytest.raises(InvalidShape):
        net.create_conv_node(image, filters=2, kernel=7)

    with pytest.raises(InvalidShape):
        net.create_conv_node(image, filters=0, kernel=3)

    with pytest.raises(InvalidShape):
        net.create_conv_node(image, filters=2, kernel=3, stride=0)

    with pytest.raises(ElemKindMismatch):
        net.create_conv_node(labels, filters=2, kernel=1)

    # Nothing half-built was left in the arena
    assert len(net) == 3


# ------------------------------------------------------------
# Entry point
# ------------------------------------------------------------

if __name__ == "__main__":
    np.random.seed(1337)
    torch.manual_seed(1337)

    print(f"[convo_cross_verify] Running {NUM_TRIALS} random trials...\n")

    try:
        for i in range(NUM_TRIALS):
            cross_verify_once(i)
            print(f"  [OK] trial {i+1}/{NUM_TRIALS}")
    except AssertionError as e:
        print(f"\n[FAILED] trial {i}: {e}")
        raise
    else:
        print("\n[convo_cross_verify] All convolution tests passed!")
