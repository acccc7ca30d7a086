# singe/singe_conv_node.py
from __future__ import annotations

from typing import List, Optional

import numpy as np

from singe.singe_errors import InvalidShape, ShapeMismatch
from singe.singe_node import NodeKind, SingeNode
from singe.singe_param import SingeParam
from singe.singe_tensor import SingeTensor


def conv_output_size(in_size: int, kernel: int, stride: int, pad: int) -> int:
    """floor((in + 2*pad - kernel) / stride) + 1"""
    return (in_size + 2 * pad - kernel) // stride + 1


def im2col(x: np.ndarray, k: int, s: int, p: int, h_out: int, w_out: int) -> np.ndarray:
    """
    Convert (N, H, W, C) → (N*H_out*W_out, k*k*C).

    Row r = (n, oy, ox) holds the padded input window under output pixel
    (oy, ox), flattened in (ky, kx, c) order to match the weight layout.
    """
    N, H, W, C = x.shape

    x_padded = np.pad(
        x,
        pad_width=((0, 0), (p, p), (p, p), (0, 0)),
        mode="constant",
    )

    cols = np.empty((N, h_out, w_out, k, k, C), dtype=np.float32)

    # One strided view per kernel offset instead of one loop per output pixel
    for ky in range(k):
        y_end = ky + s * (h_out - 1) + 1
        for kx in range(k):
            x_end = kx + s * (w_out - 1) + 1
            cols[:, :, :, ky, kx, :] = x_padded[:, ky:y_end:s, kx:x_end:s, :]

    return cols.reshape(N * h_out * w_out, k * k * C)


def col2im(
    cols: np.ndarray,
    x_shape: tuple,
    k: int, s: int, p: int,
    h_out: int, w_out: int,
) -> np.ndarray:
    """
    Inverse of im2col:
    Convert (N*H_out*W_out, k*k*C) → (N, H, W, C)
    by adding every window contribution back into padded input space.
    """
    N, H, W, C = x_shape
    cols = cols.reshape(N, h_out, w_out, k, k, C)

    x_padded = np.zeros((N, H + 2 * p, W + 2 * p, C), dtype=np.float32)

    for ky in range(k):
        y_end = ky + s * (h_out - 1) + 1
        for kx in range(k):
            x_end = kx + s * (w_out - 1) + 1
            x_padded[:, ky:y_end:s, kx:x_end:s, :] += cols[:, :, :, ky, kx, :]

    # Remove padding
    return x_padded[:, p:p + H, p:p + W, :]


class SingeConvNode(SingeNode):
    """
    2D convolution over NHWC tensors, im2col + matmul.

        input:   (N, H_in,  W_in,  C_in)
        weight:  (filters, k, k, C_in)
        bias:    (filters,)
        output:  (N, H_out, W_out, filters)

        H_out = floor((H_in + 2*pad - k) / stride) + 1
        W_out = floor((W_in + 2*pad - k) / stride) + 1

    Zero padding. Square kernels, one stride and one pad for both axes.
    """

    kind = NodeKind.CONVOLUTION

    def __init__(
        self,
        index: int,
        input_node: SingeNode,
        filters: int,
        kernel: int,
        stride: int = 1,
        pad: int = 0,
        rng: np.random.RandomState | None = None,
        name: Optional[str] = None,
    ):
        SingeNode.require_float(input_node, name or f"{self.kind.value}{index}")

        in_shape = input_node.shape
        if len(in_shape) != 4:
            raise ShapeMismatch(
                f"Convolution expects a 4D (N,H,W,C) input, "
                f"'{input_node.name}' has shape {in_shape}"
            )

        self.filters = int(filters)
        self.k = int(kernel)
        self.s = int(stride)
        self.p = int(pad)

        if self.filters < 1 or self.k < 1 or self.s < 1 or self.p < 0:
            raise InvalidShape(
                f"Invalid convolution config: filters={filters}, kernel={kernel}, "
                f"stride={stride}, pad={pad}"
            )

        N, H, W, C = in_shape
        self.in_channels = C
        self.h_out = conv_output_size(H, self.k, self.s, self.p)
        self.w_out = conv_output_size(W, self.k, self.s, self.p)

        if self.h_out <= 0 or self.w_out <= 0:
            raise InvalidShape(
                f"Kernel {self.k} does not fit input {H}x{W} with pad {self.p}"
            )

        super().__init__(
            index,
            (input_node.index,),
            (N, self.h_out, self.w_out, self.filters),
            name=name,
        )

        # ----------------------------------------------------------
        # Parameter initialization (Kaiming-ish)
        # W shape: (filters, k, k, C_in)
        # b shape: (filters,)
        # ----------------------------------------------------------
        rng = rng if rng is not None else np.random.RandomState(0)
        fan_in = C * self.k * self.k
        limit = 1.0 / np.sqrt(fan_in)

        weights = SingeTensor((self.filters, self.k, self.k, C), name=f"{self.name}.W")
        weights.data[...] = rng.uniform(
            -limit, +limit, size=weights.shape
        ).astype(np.float32)

        self.W = SingeParam(name=f"{self.name}.W", value=weights)
        self.b = SingeParam(
            name=f"{self.name}.b",
            value=SingeTensor((self.filters,), name=f"{self.name}.b"),
        )

        # Cache for backward
        self._last_cols: np.ndarray | None = None
        self._last_x_shape: tuple | None = None

    # --------------------------------------------------------------
    # Forward
    # --------------------------------------------------------------
    def forward(self, network) -> None:
        x = self.input_data(network)

        cols = im2col(x, self.k, self.s, self.p, self.h_out, self.w_out)
        W_col = self.W.value.data.reshape(self.filters, -1)   # (F, k*k*C)

        y = cols @ W_col.T + self.b.value.data                 # (N*Ho*Wo, F)
        self.output.data[...] = y.reshape(self.output.shape)

        self._last_cols = cols
        self._last_x_shape = x.shape

    # --------------------------------------------------------------
    # Backward
    # --------------------------------------------------------------
    def backward(self, network) -> None:
        """
        grad_b += sum of grad_out over batch and space
        grad_W += grad_out^T @ cols
        grad_x += col2im(grad_out @ W)
        """
        if self._last_cols is None:
            raise RuntimeError(f"{self.name}: backward called before forward.")

        g = self.grad.data.reshape(-1, self.filters)           # (N*Ho*Wo, F)
        W_col = self.W.value.data.reshape(self.filters, -1)

        self.b.grad.data[...] += g.sum(axis=0)
        self.W.grad.data[...] += (g.T @ self._last_cols).reshape(self.W.shape)

        d_cols = g @ W_col                                     # (N*Ho*Wo, k*k*C)
        grad_x = col2im(
            d_cols, self._last_x_shape,
            self.k, self.s, self.p,
            self.h_out, self.w_out,
        )
        self.accumulate_input_grad(network, grad_x)

    # --------------------------------------------------------------
    # Parameter handling
    # --------------------------------------------------------------
    def parameters(self) -> List[SingeParam]:
        return [self.W, self.b]

    def __repr__(self) -> str:
        return (
            f"SingeConvNode({self.name}, filters={self.filters}, kernel={self.k}, "
            f"stride={self.s}, pad={self.p}, shape={self.shape})"
        )
