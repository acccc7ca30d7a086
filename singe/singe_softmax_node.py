# singe/singe_softmax_node.py
from __future__ import annotations

from typing import Optional

import numpy as np

from singe.singe_elem_kind import ElemKind
from singe.singe_errors import ElemKindMismatch, OutOfBounds, ShapeMismatch
from singe.singe_node import NodeKind, SingeNode


def softmax(logits: np.ndarray) -> np.ndarray:
    """Row-wise softmax of (N, C) logits, shifted by the row max for stability."""
    shifted = logits - np.max(logits, axis=1, keepdims=True)
    exp = np.exp(shifted, dtype=np.float32)
    return exp / np.sum(exp, axis=1, keepdims=True)


def check_labels(labels: np.ndarray, num_classes: int, user: str) -> np.ndarray:
    """Return labels as intp, raising OutOfBounds for any label >= num_classes."""
    labels = labels.reshape(-1)
    if labels.size and int(labels.max()) >= num_classes:
        raise OutOfBounds(
            f"{user}: label {int(labels.max())} out of range for "
            f"{num_classes} classes"
        )
    return labels.astype(np.intp)


class SingeSoftMaxNode(SingeNode):
    """
    Softmax over the class axis, fused with cross-entropy loss.

        input:     (N, ...) logits, flattened to (N, C)
        expected:  INDEX variable of shape (N, 1) or (N,), class indices
        output:    (N, C) probabilities

    Forward also computes:
        loss = mean over the batch of -log(p[n, label[n]])

    Backward (the node seeds its own gradient, it never reads self.grad):
        dL/d(logits) = (softmax - one_hot(expected)) / N
    """

    kind = NodeKind.SOFTMAX
    is_loss = True

    def __init__(
        self,
        index: int,
        input_node: SingeNode,
        expected_node: SingeNode,
        name: Optional[str] = None,
    ):
        user = name or f"{self.kind.value}{index}"
        SingeNode.require_float(input_node, user)

        batch = input_node.shape[0]
        classes = int(np.prod(input_node.shape[1:])) if len(input_node.shape) > 1 else 1

        if expected_node.output.kind is not ElemKind.INDEX:
            raise ElemKindMismatch(
                f"{user}: expected-label node '{expected_node.name}' must hold "
                f"index elements, got {expected_node.output.kind.value}"
            )
        if expected_node.shape not in ((batch,), (batch, 1)):
            raise ShapeMismatch(
                f"{user}: expected-label shape {expected_node.shape} does not "
                f"match batch size {batch}, want ({batch}, 1)"
            )

        super().__init__(
            index,
            (input_node.index, expected_node.index),
            (batch, classes),
            name=name,
        )

        self.num_classes = classes
        self.loss: float | None = None
        self._last_labels: np.ndarray | None = None

    # ------------------------------------
    # Forward
    # ------------------------------------
    def forward(self, network) -> None:
        logits = self.input_data(network, 0).reshape(self.shape)
        probs = softmax(logits)
        self.output.data[...] = probs

        labels = check_labels(self.input_data(network, 1), self.num_classes, self.name)
        N = self.shape[0]

        eps = 1e-12
        p_correct = probs[np.arange(N), labels] + eps
        self.loss = float(np.mean(-np.log(p_correct)))
        self._last_labels = labels

    # ------------------------------------
    # Backward
    # ------------------------------------
    def backward(self, network) -> None:
        if self._last_labels is None:
            raise RuntimeError(f"{self.name}: backward called before forward.")

        N = self.shape[0]
        grad_logits = self.output.data.copy()                    # (N, C)
        grad_logits[np.arange(N), self._last_labels] -= 1.0      # probs - one_hot
        grad_logits /= float(N)

        self.accumulate_input_grad(network, grad_logits, slot=0)

    def __repr__(self) -> str:
        return f"SingeSoftMaxNode({self.name}, classes={self.num_classes}, shape={self.shape})"
