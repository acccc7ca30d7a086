# singe/singe_pool_node.py
from __future__ import annotations

from enum import Enum
from typing import Optional

import numpy as np

from singe.singe_elem_kind import ElemKind
from singe.singe_errors import InvalidShape, ShapeMismatch
from singe.singe_node import NodeKind, SingeNode
from singe.singe_tensor import SingeTensor


class PoolKind(str, Enum):
    """How a pooling window is reduced."""

    MAX = "max"
    AVG = "avg"

    @staticmethod
    def from_value(val: str | PoolKind) -> PoolKind:
        if isinstance(val, PoolKind):
            return val

        if isinstance(val, str):
            val_lower = val.lower()
            for kind in PoolKind:
                if kind.value == val_lower:
                    return kind

        raise InvalidShape(
            f"Invalid pool kind: {val!r}. "
            f"Expected one of: {[k.value for k in PoolKind]}"
        )


class SingePoolNode(SingeNode):
    """
    2D pooling over NHWC tensors, per example and per channel.

        Input:   (N, H_in, W_in, C)
        Output:  (N, H_out, W_out, C)

        H_out = floor((H_in + 2*pad - size) / stride) + 1

    MAX:
        - Pads with -inf (so padded region never wins max).
        - Records, per window, the position (ky * size + kx) that held the
          max in `argmax`, an INDEX tensor shaped like the output.
        - Backward routes each window's gradient to that position only.
        - Ties keep the first position in (ky, kx) scan order.

    AVG:
        - Pads with zeros, padding counts toward the window mean.
        - Backward spreads grad / (size*size) over the whole window.
    """

    kind = NodeKind.POOL

    def __init__(
        self,
        index: int,
        input_node: SingeNode,
        pool_kind: PoolKind | str = PoolKind.MAX,
        size: int = 2,
        stride: int = 2,
        pad: int = 0,
        name: Optional[str] = None,
    ):
        SingeNode.require_float(input_node, name or f"{self.kind.value}{index}")

        in_shape = input_node.shape
        if len(in_shape) != 4:
            raise ShapeMismatch(
                f"Pooling expects a 4D (N,H,W,C) input, "
                f"'{input_node.name}' has shape {in_shape}"
            )

        self.pool_kind = PoolKind.from_value(pool_kind)
        self.k = int(size)
        self.s = int(stride)
        self.p = int(pad)

        if self.k < 1 or self.s < 1 or self.p < 0:
            raise InvalidShape(
                f"Invalid pool config: size={size}, stride={stride}, pad={pad}"
            )

        # A window made only of padding would have no real maximum
        if self.p >= self.k:
            raise InvalidShape(f"Pool padding {self.p} must be smaller than size {self.k}")

        N, H, W, C = in_shape
        self.h_out = (H + 2 * self.p - self.k) // self.s + 1
        self.w_out = (W + 2 * self.p - self.k) // self.s + 1

        if self.h_out <= 0 or self.w_out <= 0:
            raise InvalidShape(
                f"Non-positive output size H_out={self.h_out}, W_out={self.w_out} "
                f"for input (H={H},W={W})"
            )

        super().__init__(
            index,
            (input_node.index,),
            (N, self.h_out, self.w_out, C),
            name=name,
        )

        self.argmax: SingeTensor | None = None
        if self.pool_kind is PoolKind.MAX:
            self.argmax = SingeTensor(self.shape, kind=ElemKind.INDEX, name=f"{self.name}.argmax")

        self._forward_done = False

    # ----------------------------------------------------------
    # Window views
    # ----------------------------------------------------------
    def _window(self, padded: np.ndarray, ky: int, kx: int) -> np.ndarray:
        """Strided view of `padded` at kernel offset (ky, kx): (N, H_out, W_out, C)."""
        y_end = ky + self.s * (self.h_out - 1) + 1
        x_end = kx + self.s * (self.w_out - 1) + 1
        return padded[:, ky:y_end:self.s, kx:x_end:self.s, :]

    # ----------------------------------------------------------
    # Forward
    # ----------------------------------------------------------
    def forward(self, network) -> None:
        x = self.input_data(network)
        p = self.p

        if self.pool_kind is PoolKind.MAX:
            x_padded = np.pad(
                x,
                pad_width=((0, 0), (p, p), (p, p), (0, 0)),
                mode="constant",
                constant_values=-np.inf,
            )

            best = np.full(self.shape, -np.inf, dtype=np.float32)
            best_pos = np.zeros(self.shape, dtype=np.int64)

            for ky in range(self.k):
                for kx in range(self.k):
                    v = self._window(x_padded, ky, kx)
                    # IMPORTANT: strict ">" so the first max wins
                    better = v > best
                    best = np.where(better, v, best)
                    best_pos = np.where(better, ky * self.k + kx, best_pos)

            self.output.data[...] = best
            self.argmax.data[...] = best_pos.astype(np.uint64)

        else:
            x_padded = np.pad(
                x,
                pad_width=((0, 0), (p, p), (p, p), (0, 0)),
                mode="constant",
            )

            acc = np.zeros(self.shape, dtype=np.float32)
            for ky in range(self.k):
                for kx in range(self.k):
                    acc += self._window(x_padded, ky, kx)

            self.output.data[...] = acc / float(self.k * self.k)

        self._forward_done = True

    # ----------------------------------------------------------
    # Backward
    # ----------------------------------------------------------
    def backward(self, network) -> None:
        if not self._forward_done:
            raise RuntimeError(f"{self.name}: backward called before forward.")

        N, H, W, C = self.input_node(network).shape
        p = self.p
        g = self.grad.data

        # Grad wrt *padded* input
        grad_x_padded = np.zeros((N, H + 2 * p, W + 2 * p, C), dtype=np.float32)

        if self.pool_kind is PoolKind.MAX:
            pos = self.argmax.data.astype(np.int64)
            for ky in range(self.k):
                for kx in range(self.k):
                    routed = np.where(pos == ky * self.k + kx, g, 0.0)
                    self._window(grad_x_padded, ky, kx)[...] += routed
        else:
            share = g / float(self.k * self.k)
            for ky in range(self.k):
                for kx in range(self.k):
                    self._window(grad_x_padded, ky, kx)[...] += share

        # Remove padding
        grad_x = grad_x_padded[:, p:p + H, p:p + W, :]
        self.accumulate_input_grad(network, grad_x)

    def __repr__(self) -> str:
        return (
            f"SingePoolNode({self.name}, kind={self.pool_kind.value}, size={self.k}, "
            f"stride={self.s}, pad={self.p}, shape={self.shape})"
        )
