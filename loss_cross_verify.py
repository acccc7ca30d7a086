# loss_cross_verify.py
from __future__ import annotations

import numpy as np
import pytest
import torch
import torch.nn.functional as F

from singe.singe_elem_kind import ElemKind
from singe.singe_errors import ElemKindMismatch, OutOfBounds, ShapeMismatch
from singe.singe_network import SingeNetwork


# ------------------------------------------------------------
# Config
# ------------------------------------------------------------

NUM_TRIALS = 128


def assert_allclose(a, b, atol=1e-5, rtol=1e-4, name=""):
    if not np.allclose(a, b, atol=atol, rtol=rtol):
        diff = np.abs(np.asarray(a) - np.asarray(b))
        max_diff = float(diff.max())
        raise AssertionError(
            f"[{name}] max |a-b| = {max_diff}, "
            f"atol={atol}, rtol={rtol}"
        )


def random_int(low, high):
    return int(np.random.randint(low, high + 1))


# ------------------------------------------------------------
# Softmax + cross-entropy
# ------------------------------------------------------------

def cross_verify_softmax_once(trial_index: int):
    N = random_int(1, 8)
    C = random_int(2, 10)
    labels_shape = (N, 1) if trial_index % 2 == 0 else (N,)

    net = SingeNetwork(seed=trial_index)
    logits_node = net.create_variable((N, C))
    labels_node = net.create_variable(labels_shape, kind=ElemKind.INDEX)
    sm = net.create_softmax_node(logits_node, labels_node)

    logits = np.random.uniform(-5, 5, size=(N, C)).astype(np.float32)
    labels = np.random.randint(0, C, size=N)

    logits_node.output.data[...] = logits
    labels_node.output.data[...] = labels.reshape(labels_shape).astype(np.uint64)

    net.zero_grads()
    net.forward(sm)
    net.backward(sm)

    logits_torch = torch.from_numpy(logits.copy()).requires_grad_(True)
    loss_torch = F.cross_entropy(logits_torch, torch.from_numpy(labels.astype(np.int64)))
    loss_torch.backward()

    probs_torch = torch.softmax(logits_torch.detach(), dim=1).numpy()

    assert sm.shape == (N, C)
    assert_allclose(sm.output.data, probs_torch, name="probs")
    assert_allclose(sm.output.data.sum(axis=1), np.ones(N), name="row sums")
    assert_allclose(sm.loss, float(loss_torch.item()), name="loss")
    assert_allclose(logits_node.grad.data, logits_torch.grad.numpy(), name="grad_logits")


def test_softmax_cross_verify():
    np.random.seed(0)
    torch.manual_seed(0)
    for i in range(NUM_TRIALS):
        cross_verify_softmax_once(i)


def test_softmax_is_stable_for_large_logits():
    net = SingeNetwork()
    logits_node = net.create_variable((1, 3))
    labels_node = net.create_variable((1, 1), kind=ElemKind.INDEX)
    sm = net.create_softmax_node(logits_node, labels_node)

    logits_node.output.data[...] = [[1000.0, 0.0, -1000.0]]
    net.forward(sm)

    assert np.all(np.isfinite(sm.output.data))
    assert sm.output.data[0, 0] == pytest.approx(1.0)
    assert sm.loss == pytest.approx(0.0, abs=1e-6)


def test_softmax_label_out_of_range():
    net = SingeNetwork()
    logits_node = net.create_variable((2, 3))
    labels_node = net.create_variable((2, 1), kind=ElemKind.INDEX)
    sm = net.create_softmax_node(logits_node, labels_node)

    labels_node.output.data[...] = [[0], [3]]
    with pytest.raises(OutOfBounds):
        net.forward(sm)


def test_softmax_rejects_bad_expected():
    net = SingeNetwork()
    logits_node = net.create_variable((4, 3))
    float_labels = net.create_variable((4, 1))
    wrong_batch = net.create_variable((3, 1), kind=ElemKind.INDEX)

    with pytest.raises(ElemKindMismatch):
        net.create_softmax_node(logits_node, float_labels)

    with pytest.raises(ShapeMismatch):
        net.create_softmax_node(logits_node, wrong_batch)


# ------------------------------------------------------------
# Squared-error regression
# ------------------------------------------------------------

def cross_verify_regression_once(trial_index: int):
    N = random_int(1, 8)
    D = random_int(1, 6)

    net = SingeNetwork(seed=trial_index)
    x_node = net.create_variable((N, D))
    e_node = net.create_variable((N, D))
    reg = net.create_regression_node(x_node, e_node)

    x = np.random.randn(N, D).astype(np.float32)
    e = np.random.randn(N, D).astype(np.float32)
    x_node.output.data[...] = x
    e_node.output.data[...] = e

    net.forward(reg)
    net.backward(reg)

    x_torch = torch.from_numpy(x.copy()).requires_grad_(True)
    loss_torch = 0.5 * F.mse_loss(x_torch, torch.from_numpy(e), reduction="sum") / N
    loss_torch.backward()

    assert_allclose(reg.output.data, x, name="passthrough")
    assert_allclose(reg.loss, float(loss_torch.item()), name="loss")
    assert_allclose(x_node.grad.data, x_torch.grad.numpy(), name="grad_x")

    # The target never receives a gradient
    assert not np.any(e_node.grad.data)


def test_regression_cross_verify():
    np.random.seed(1)
    torch.manual_seed(1)
    for i in range(NUM_TRIALS):
        cross_verify_regression_once(i)


def test_regression_rejects_shape_mismatch():
    net = SingeNetwork()
    x_node = net.create_variable((4, 3))
    e_node = net.create_variable((4, 2))
    labels = net.create_variable((4, 3), kind=ElemKind.INDEX)

    with pytest.raises(ShapeMismatch):
        net.create_regression_node(x_node, e_node)

    with pytest.raises(ElemKindMismatch):
        net.create_regression_node(x_node, labels)


if __name__ == "__main__":
    np.random.seed(0)
    torch.manual_seed(0)

    print(f"[loss_cross_verify] Running {NUM_TRIALS} random trials per loss...\n")

    for i in range(NUM_TRIALS):
        cross_verify_softmax_once(i)
        cross_verify_regression_once(i)
        print(f"  [OK] trial {i+1}/{NUM_TRIALS}")

    print("\n[loss_cross_verify] All loss tests passed!")
