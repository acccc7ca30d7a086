# singe_network_test.py
from __future__ import annotations

import numpy as np
import pytest

from singe.singe_config import SingeConfig
from singe.singe_elem_kind import ElemKind
from singe.singe_errors import ElemKindMismatch, InvalidShape, OutOfBounds, ShapeMismatch
from singe.singe_network import SingeNetwork
from singe.singe_node import NodeKind
from singe.singe_tensor import SingeTensor


# ------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------

X_TOY = np.array(
    [
        [2.0, 0.0, 1.0],
        [0.0, 2.0, 1.0],
        [2.0, 0.5, 1.0],
        [0.5, 2.0, 1.0],
    ],
    dtype=np.float32,
)
Y_TOY = np.array([[0], [1], [0], [1]], dtype=np.uint64)


def build_classifier(config: SingeConfig | None = None, seed: int = 0, batch: int = 4):
    """Variable → FC(2) → SoftMax, plus its label variable."""
    net = SingeNetwork(config=config, seed=seed)
    x = net.create_variable((batch, 3), name="input")
    y = net.create_variable((batch, 1), kind=ElemKind.INDEX, name="expected")
    fc = net.create_fully_connected_node(x, 2)
    sm = net.create_softmax_node(fc, y)
    return net, x, y, fc, sm


def snapshot(net: SingeNetwork):
    return [(p.value.to_numpy(), p.velocity.to_numpy()) for p in net.parameters()]


# ------------------------------------------------------------
# Construction
# ------------------------------------------------------------

def test_nodes_are_created_in_topological_order():
    net, x, y, fc, sm = build_classifier()

    assert [n.index for n in net.nodes] == [0, 1, 2, 3]
    assert fc.inputs == (x.index,)
    assert sm.inputs == (fc.index, y.index)
    assert all(i < node.index for node in net.nodes for i in node.inputs)

    assert x.kind is NodeKind.VARIABLE
    assert sm.kind is NodeKind.SOFTMAX
    assert sm.is_loss and not fc.is_loss
    assert net.node(2) is fc
    assert len(net) == 4


def test_nodes_can_be_referenced_by_index():
    net = SingeNetwork()
    net.create_variable((2, 3))
    fc = net.create_fully_connected_node(0, 4)

    assert fc.inputs == (0,)

    with pytest.raises(ShapeMismatch):
        net.create_relu_node(7)


def test_foreign_nodes_are_rejected():
    net_a, x_a, _, _, _ = build_classifier()
    net_b, _, _, _, _ = build_classifier()

    with pytest.raises(ShapeMismatch):
        net_b.create_relu_node(x_a)

    with pytest.raises(ShapeMismatch):
        net_b.forward(x_a)


def test_invalid_variable_shape():
    net = SingeNetwork()
    with pytest.raises(InvalidShape):
        net.create_variable((0, 3))
    with pytest.raises(InvalidShape):
        net.create_variable((2, 3), kind="complex")


def test_parameters_in_creation_order():
    net = SingeNetwork()
    x = net.create_variable((2, 4, 4, 1))
    conv = net.create_conv_node(x, filters=2, kernel=3)
    relu = net.create_relu_node(conv)
    fc = net.create_fully_connected_node(relu, 3)

    assert net.parameters() == [conv.W, conv.b, fc.W, fc.b]
    assert relu.parameters() == []
    assert conv.W.shape == (2, 3, 3, 1)
    assert fc.W.shape == (2 * 2 * 2, 3)


# ------------------------------------------------------------
# Passes
# ------------------------------------------------------------

def test_forward_only_evaluates_ancestors():
    net = SingeNetwork()
    x = net.create_variable((1, 2))
    a = net.create_relu_node(x)
    b = net.create_sigmoid_node(x)

    x.output.data[...] = [[-1.0, 2.0]]
    net.forward(a)

    assert a.output.data.tolist() == [[0.0, 2.0]]
    # b is not an ancestor of a
    assert not np.any(b.output.data)

    net.forward()
    assert b.output.data[0, 0] == pytest.approx(1.0 / (1.0 + np.exp(1.0)))


def test_backward_needs_a_loss_root():
    net, _, _, fc, _ = build_classifier()
    with pytest.raises(ValueError):
        net.backward(fc)


def test_backward_clears_stale_output_gradients():
    net, x, y, fc, sm = build_classifier()
    x.output.data[...] = X_TOY
    y.output.data[...] = Y_TOY

    net.forward(sm)
    net.backward(sm)
    first = x.grad.to_numpy()

    net.backward(sm)
    assert np.allclose(x.grad.data, first)


# ------------------------------------------------------------
# Training
# ------------------------------------------------------------

def test_training_drives_toy_loss_to_zero():
    config = SingeConfig(learning_rate=0.01, momentum=0.9, l2_decay=0.0001)
    net, x, y, fc, sm = build_classifier(config)

    xs = SingeTensor.from_numpy(X_TOY)
    ys = SingeTensor.from_numpy(Y_TOY)

    first = net.train(sm, 1, [x, y], [xs, ys])
    last = net.train(sm, 999, [x, y], [xs, ys])

    assert first is not None and last is not None
    assert last < first
    assert last < 0.05
    assert net.iteration == 1000

    probs = net.infer(sm, [x], [xs])
    predicted = [probs.get_handle().extract_slice(i).get_handle().max_arg() for i in range(4)]
    assert predicted == [0, 1, 0, 1]


def test_zero_iterations_changes_nothing():
    config = SingeConfig(learning_rate=0.05, momentum=0.9)
    net, x, y, fc, sm = build_classifier(config)
    xs = SingeTensor.from_numpy(X_TOY)
    ys = SingeTensor.from_numpy(Y_TOY)

    net.train(sm, 3, [x, y], [xs, ys])
    before = snapshot(net)
    cursor = net.train_cursor

    assert net.train(sm, 0, [x, y], [xs, ys]) is None

    for (w0, v0), (w1, v1) in zip(before, snapshot(net)):
        assert np.array_equal(w0, w1)
        assert np.array_equal(v0, v1)
    assert net.train_cursor == cursor
    assert net.iteration == 3


def test_train_rejects_bad_arguments():
    net, x, y, fc, sm = build_classifier()
    xs = SingeTensor.from_numpy(X_TOY)
    ys = SingeTensor.from_numpy(Y_TOY)

    with pytest.raises(ValueError):
        net.train(fc, 1, [x, y], [xs, ys])

    with pytest.raises(ValueError):
        net.train(sm, -1, [x, y], [xs, ys])

    # Parallel lists must have the same length
    with pytest.raises(ShapeMismatch):
        net.train(sm, 1, [x, y], [xs])

    # Only variables can be bound
    with pytest.raises(ShapeMismatch):
        net.train(sm, 1, [fc], [xs])

    # Example shape differs
    with pytest.raises(ShapeMismatch):
        net.train(sm, 1, [x], [SingeTensor((8, 4))])

    # Fewer examples than one minibatch
    with pytest.raises(ShapeMismatch):
        net.train(sm, 1, [x], [SingeTensor((3, 3))])

    # Datasets disagree on example count
    with pytest.raises(ShapeMismatch):
        net.train(sm, 1, [x, y], [SingeTensor((8, 3)), ys])

    # Kind differs
    with pytest.raises(ElemKindMismatch):
        net.train(sm, 1, [y], [SingeTensor((4, 1))])

    assert net.iteration == 0


def test_train_surfaces_out_of_range_labels():
    net, x, y, fc, sm = build_classifier()
    xs = SingeTensor.from_numpy(X_TOY)
    ys = SingeTensor.from_numpy(np.array([[0], [1], [2], [0]], dtype=np.uint64))

    with pytest.raises(OutOfBounds):
        net.train(sm, 1, [x, y], [xs, ys])


def test_cursor_wraps_and_skips_incomplete_tail():
    config = SingeConfig(learning_rate=0.0)
    net, x, y, fc, sm = build_classifier(config)

    data = np.arange(30, dtype=np.float32).reshape(10, 3)
    labels = np.zeros((10, 1), dtype=np.uint64)
    xs = SingeTensor.from_numpy(data)
    ys = SingeTensor.from_numpy(labels)

    net.train(sm, 1, [x, y], [xs, ys])
    assert np.array_equal(x.output.data, data[0:4])
    assert net.train_cursor == 4

    net.train(sm, 1, [x, y], [xs, ys])
    assert np.array_equal(x.output.data, data[4:8])
    assert net.train_cursor == 8

    # rows 8..9 are not a full minibatch: start over
    net.train(sm, 1, [x, y], [xs, ys])
    assert np.array_equal(x.output.data, data[0:4])
    assert net.train_cursor == 4

    net.reset_cursor()
    assert net.train_cursor == 0


def test_cursor_runs_through_several_epochs_in_one_call():
    config = SingeConfig(learning_rate=0.0)
    net, x, y, fc, sm = build_classifier(config)

    data = np.arange(24, dtype=np.float32).reshape(8, 3)
    xs = SingeTensor.from_numpy(data)
    ys = SingeTensor.from_numpy(np.zeros((8, 1), dtype=np.uint64))

    net.train(sm, 5, [x, y], [xs, ys])

    # 0, 4, 0, 4, 0 → the last minibatch was rows 0..3
    assert np.array_equal(x.output.data, data[0:4])
    assert net.train_cursor == 4


def test_zero_learning_rate_leaves_weights_alone():
    config = SingeConfig(learning_rate=0.0, momentum=0.9, l2_decay=0.1)
    net, x, y, fc, sm = build_classifier(config)
    before = fc.W.value.to_numpy()

    net.train(sm, 5, [x, y], [SingeTensor.from_numpy(X_TOY), SingeTensor.from_numpy(Y_TOY)])

    assert np.array_equal(fc.W.value.data, before)


def test_report_rate_prints_loss(capsys):
    config = SingeConfig(learning_rate=0.01, report_rate=2)
    net, x, y, fc, sm = build_classifier(config)

    net.train(sm, 4, [x, y], [SingeTensor.from_numpy(X_TOY), SingeTensor.from_numpy(Y_TOY)])

    out = capsys.readouterr().out
    assert "[SingeNetwork] iteration 2: loss=" in out
    assert "[SingeNetwork] iteration 4: loss=" in out
    assert "iteration 3" not in out


def test_silent_by_default(capsys):
    net, x, y, fc, sm = build_classifier()
    net.train(sm, 3, [x, y], [SingeTensor.from_numpy(X_TOY), SingeTensor.from_numpy(Y_TOY)])
    assert capsys.readouterr().out == ""


def test_config_edits_apply_on_next_train():
    net, x, y, fc, sm = build_classifier(SingeConfig(learning_rate=0.0))
    xs = SingeTensor.from_numpy(X_TOY)
    ys = SingeTensor.from_numpy(Y_TOY)

    before = fc.W.value.to_numpy()
    net.train(sm, 1, [x, y], [xs, ys])
    assert np.array_equal(fc.W.value.data, before)

    net.config.learning_rate = 0.1
    net.train(sm, 1, [x, y], [xs, ys])
    assert not np.array_equal(fc.W.value.data, before)

    net.config.momentum = 2.0
    with pytest.raises(ValueError):
        net.train(sm, 1, [x, y], [xs, ys])


def test_trainable_variable_is_fitted_to_target():
    config = SingeConfig(learning_rate=0.1, momentum=0.9)
    net = SingeNetwork(config=config, seed=3)
    w = net.create_variable((1, 3), trainable=True)
    target = net.create_variable((1, 3))
    reg = net.create_regression_node(w, target)

    goal = np.array([[0.5, -1.0, 2.0]], dtype=np.float32)
    loss = net.train(reg, 300, [target], [SingeTensor.from_numpy(goal)])

    assert np.allclose(w.output.data, goal, atol=1e-3)
    assert loss < 1e-5
    assert net.parameters()[0].value is w.output


def test_training_without_bindings_uses_current_values():
    config = SingeConfig(learning_rate=0.05)
    net, x, y, fc, sm = build_classifier(config)
    x.output.data[...] = X_TOY
    y.output.data[...] = Y_TOY

    first = net.train(sm, 1, [], [])
    last = net.train(sm, 200, [], [])

    assert last < first
    assert net.train_cursor == 0


def test_backward_writes_parameter_and_input_gradients():
    net = SingeNetwork(seed=4)
    x = net.create_variable((2, 3))
    target = net.create_variable((2, 2))
    fc = net.create_fully_connected_node(x, 2)
    reg = net.create_regression_node(fc, target)

    xv = np.array([[1.0, -2.0, 0.5], [0.0, 3.0, -1.0]], dtype=np.float32)
    ev = np.array([[0.5, -0.5], [1.0, 2.0]], dtype=np.float32)
    x.output.data[...] = xv
    target.output.data[...] = ev

    net.forward(reg)
    net.backward(reg)

    g = (xv @ fc.W.value.data + fc.b.value.data - ev) / 2.0
    assert np.allclose(fc.W.grad.data, xv.T @ g, atol=1e-5)
    assert np.allclose(fc.b.grad.data, g.sum(axis=0), atol=1e-5)
    assert np.allclose(x.grad.data, g @ fc.W.value.data.T, atol=1e-5)

    # Parameter gradients accumulate across backward passes
    net.backward(reg)
    assert np.allclose(fc.W.grad.data, 2.0 * (xv.T @ g), atol=1e-5)


def test_trainable_variable_gradient_reaches_its_parameter():
    net = SingeNetwork(seed=6)
    w = net.create_variable((1, 2), trainable=True)
    target = net.create_variable((1, 2))
    reg = net.create_regression_node(w, target)

    target.output.data[...] = [[1.0, -1.0]]
    net.forward(reg)
    net.backward(reg)

    (param,) = w.parameters()
    assert np.allclose(param.grad.data, w.output.data - target.output.data)


def test_trainable_variables_cannot_be_bound():
    config = SingeConfig(learning_rate=0.1)
    net = SingeNetwork(config=config, seed=3)
    w = net.create_variable((1, 3), trainable=True)
    target = net.create_variable((1, 3))
    reg = net.create_regression_node(w, target)

    before = w.output.to_numpy()
    data = SingeTensor.from_numpy(np.ones((4, 3), dtype=np.float32))

    with pytest.raises(ShapeMismatch):
        net.train(reg, 1, [w], [data])

    with pytest.raises(ShapeMismatch):
        net.infer(reg, [w], [SingeTensor((1, 3))])

    # The learned values were left alone
    assert np.array_equal(w.output.data, before)
    assert net.iteration == 0


def test_regression_backward_before_forward():
    net = SingeNetwork()
    x = net.create_variable((2, 2))
    target = net.create_variable((2, 2))
    reg = net.create_regression_node(x, target)

    with pytest.raises(RuntimeError):
        reg.backward(net)


# ------------------------------------------------------------
# Inference
# ------------------------------------------------------------

def test_infer_on_a_bound_variable_returns_the_bound_tensor():
    net = SingeNetwork()
    x = net.create_variable((2, 2))
    xs = SingeTensor.from_numpy(np.array([[1.0, 2.0], [3.0, 4.0]], dtype=np.float32))

    result = net.infer(x, [x], [xs])

    assert result is xs
    assert result.data.tolist() == [[1.0, 2.0], [3.0, 4.0]]
    assert not np.any(x.output.data)


def test_infer_is_deterministic_for_a_seed():
    xs = SingeTensor.from_numpy(X_TOY)

    net_a, x_a, _, _, sm_a = build_classifier(seed=42)
    net_b, x_b, _, _, sm_b = build_classifier(seed=42)

    out_a = net_a.infer(sm_a, [x_a], [xs]).clone()
    out_b = net_b.infer(sm_b, [x_b], [xs]).clone()
    again = net_a.infer(sm_a, [x_a], [xs])

    assert np.array_equal(out_a.data, out_b.data)
    assert np.array_equal(out_a.data, again.data)
    assert np.allclose(out_a.data.sum(axis=1), 1.0, atol=1e-6)


def test_different_seeds_give_different_weights():
    net_a, _, _, fc_a, _ = build_classifier(seed=1)
    net_b, _, _, fc_b, _ = build_classifier(seed=2)
    assert not np.array_equal(fc_a.W.value.data, fc_b.W.value.data)


def test_infer_binds_without_copy_and_restores():
    net, x, y, fc, sm = build_classifier()
    own = x.output
    xs = SingeTensor.from_numpy(X_TOY)

    result = net.infer(fc, [x], [xs])

    assert result is fc.output
    assert x.output is own
    assert not np.any(own.data)

    expected = X_TOY @ fc.W.value.data + fc.b.value.data
    assert np.allclose(result.data, expected, atol=1e-5)


def test_infer_requires_exact_shapes():
    net, x, y, fc, sm = build_classifier()

    with pytest.raises(ShapeMismatch):
        net.infer(sm, [x], [SingeTensor((8, 3))])

    with pytest.raises(ShapeMismatch):
        net.infer(sm, [x], [SingeTensor((4, 2))])

    with pytest.raises(ElemKindMismatch):
        net.infer(sm, [x], [SingeTensor((4, 3), kind=ElemKind.INDEX)])

    with pytest.raises(ShapeMismatch):
        net.infer(sm, [x, y], [SingeTensor((4, 3))])


def test_infer_restores_variables_when_forward_fails():
    net, x, y, fc, sm = build_classifier()
    own = y.output
    bad = SingeTensor.from_numpy(np.array([[5], [0], [0], [0]], dtype=np.uint64))

    with pytest.raises(OutOfBounds):
        net.infer(sm, [y], [bad])

    assert y.output is own


# ------------------------------------------------------------
# A small CIFAR-style stack end to end
# ------------------------------------------------------------

def test_small_image_classifier_trains_and_infers():
    batch = 2
    config = SingeConfig(learning_rate=0.01, momentum=0.9, l2_decay=0.0001)
    net = SingeNetwork(config=config, seed=5)

    images = net.create_variable((batch, 8, 8, 3), name="images")
    labels = net.create_variable((batch, 1), kind=ElemKind.INDEX, name="labels")

    c1 = net.create_conv_node(images, filters=4, kernel=5, stride=1, pad=2)
    r1 = net.create_relu_node(c1)
    p1 = net.create_max_pool_node(r1, size=2, stride=2)

    c2 = net.create_conv_node(p1, filters=6, kernel=3, stride=1, pad=1)
    r2 = net.create_relu_node(c2)
    p2 = net.create_max_pool_node(r2, size=2, stride=2)

    fc = net.create_fully_connected_node(p2, 10)
    sm = net.create_softmax_node(fc, labels)

    assert c1.shape == (batch, 8, 8, 4)
    assert p1.shape == (batch, 4, 4, 4)
    assert p2.shape == (batch, 2, 2, 6)
    assert sm.shape == (batch, 10)

    rng = np.random.RandomState(0)
    data = SingeTensor.from_numpy(rng.uniform(0, 1, size=(6, 8, 8, 3)).astype(np.float32))
    expected = SingeTensor.from_numpy(rng.randint(0, 10, size=(6, 1)).astype(np.uint64))

    loss = net.train(sm, 12, [images, labels], [data, expected])
    assert loss is not None and np.isfinite(loss)
    # 12 minibatches of 2 over 6 rows: exactly four passes
    assert net.train_cursor == 6

    sample = SingeTensor((batch, 8, 8, 3))
    sample.get_handle().copy_consecutive_slices(data, 0)
    probs = net.infer(sm, [images], [sample])

    assert probs.shape == (batch, 10)
    assert np.allclose(probs.data.sum(axis=1), 1.0, atol=1e-5)
    assert 0 <= probs.get_handle().extract_slice(0).get_handle().max_arg() < 10
