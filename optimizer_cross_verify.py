# optimizer_cross_verify.py
from __future__ import annotations

import numpy as np
import pytest
import torch

from singe.singe_config import SingeConfig
from singe.singe_optimizer import SingeSGD
from singe.singe_param import SingeParam
from singe.singe_tensor import SingeTensor


# ------------------------------------------------------------
# Config
# ------------------------------------------------------------

NUM_TRIALS = 32
NUM_STEPS = 20


def assert_allclose(a, b, atol=1e-5, rtol=1e-4, name=""):
    if not np.allclose(a, b, atol=atol, rtol=rtol):
        diff = np.abs(a - b)
        raise AssertionError(
            f"[{name}] max |a-b| = {float(diff.max())}, atol={atol}, rtol={rtol}"
        )


def make_param(name: str, values: np.ndarray) -> SingeParam:
    return SingeParam(name=name, value=SingeTensor.from_numpy(values.astype(np.float32)))


# ------------------------------------------------------------
# Core test
# ------------------------------------------------------------

def cross_verify_sgd_once(trial_index: int):
    """
    SingeSGD vs torch.optim.SGD(momentum, weight_decay, dampening=0).

    With a constant learning rate the two formulations agree:
        torch:  buf = mu*buf + g';  w -= lr*buf
        singe:  v   = mu*v - lr*g'; w += v        (v == -lr*buf)
    """
    config = SingeConfig(
        learning_rate=float(np.random.uniform(0.001, 0.1)),
        momentum=float(np.random.choice([0.0, 0.5, 0.9])),
        l2_decay=float(np.random.choice([0.0, 1e-4, 1e-2])),
    )

    shapes = [(3, 4), (4,), (2, 3, 3, 2)]
    init = [np.random.randn(*s).astype(np.float32) for s in shapes]

    params = [make_param(f"p{i}", w) for i, w in enumerate(init)]
    opt = SingeSGD(params)

    torch_params = [torch.nn.Parameter(torch.from_numpy(w.copy())) for w in init]
    torch_opt = torch.optim.SGD(
        torch_params,
        lr=config.learning_rate,
        momentum=config.momentum,
        weight_decay=config.l2_decay,
    )

    for step in range(NUM_STEPS):
        grads = [np.random.randn(*s).astype(np.float32) for s in shapes]

        for p, g in zip(params, grads):
            p.grad.data[...] = g
        opt.step(config)
        opt.zero_grad()

        for tp, g in zip(torch_params, grads):
            tp.grad = torch.from_numpy(g.copy())
        torch_opt.step()
        torch_opt.zero_grad()

        for p, tp in zip(params, torch_params):
            assert_allclose(p.value.data, tp.detach().numpy(), name=f"{p.name} step {step}")
            assert not np.any(p.grad.data)


def test_sgd_cross_verify():
    np.random.seed(0)
    for i in range(NUM_TRIALS):
        cross_verify_sgd_once(i)


def test_sgd_single_step_by_hand():
    # w=1, g=0.5, lr=0.1, mu=0.9, wd=0.01, v starts at 0
    # g' = 0.5 + 0.01 = 0.51, v = -0.051, w = 0.949
    p = make_param("w", np.array([1.0]))
    p.grad.data[...] = 0.5

    SingeSGD([p]).step(SingeConfig(learning_rate=0.1, momentum=0.9, l2_decay=0.01))

    assert p.velocity.data[0] == pytest.approx(-0.051, abs=1e-6)
    assert p.value.data[0] == pytest.approx(0.949, abs=1e-6)

    # Second step with zero gradient: only momentum and decay act
    p.grad.zero()
    SingeSGD([p]).step(SingeConfig(learning_rate=0.1, momentum=0.9, l2_decay=0.01))

    expected_v = 0.9 * -0.051 - 0.1 * (0.01 * 0.949)
    assert p.velocity.data[0] == pytest.approx(expected_v, abs=1e-6)
    assert p.value.data[0] == pytest.approx(0.949 + expected_v, abs=1e-6)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"learning_rate": -0.1},
        {"momentum": 1.0},
        {"momentum": -0.5},
        {"l2_decay": -1e-4},
        {"report_rate": -1},
    ],
)
def test_config_rejects_invalid_values(kwargs):
    with pytest.raises(ValueError):
        SingeConfig(**kwargs)


def test_config_defaults():
    config = SingeConfig()
    assert config.learning_rate == 0.001
    assert config.momentum == 0.9
    assert config.l2_decay == 0.0
    assert config.report_rate == 0


if __name__ == "__main__":
    np.random.seed(0)

    print(f"[optimizer_cross_verify] Running {NUM_TRIALS} random trials...\n")
    for i in range(NUM_TRIALS):
        cross_verify_sgd_once(i)
        print(f"  [OK] trial {i+1}/{NUM_TRIALS}")

    print("\n[optimizer_cross_verify] SingeSGD matches torch.optim.SGD!")
