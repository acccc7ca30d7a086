# singe/singe_network.py
from __future__ import annotations

from numbers import Integral
from typing import Iterable, List, Optional, Sequence, Set, Tuple

import numpy as np

from singe.singe_config import SingeConfig
from singe.singe_elem_kind import ElemKind
from singe.singe_errors import ShapeMismatch
from singe.singe_node import SingeNode
from singe.singe_optimizer import SingeSGD
from singe.singe_param import SingeParam
from singe.singe_tensor import SingeTensor
from singe.singe_variable_node import SingeVariableNode
from singe.singe_conv_node import SingeConvNode
from singe.singe_relu_node import SingeReLUNode
from singe.singe_pool_node import PoolKind, SingePoolNode
from singe.singe_fully_connected_node import SingeFullyConnectedNode
from singe.singe_softmax_node import SingeSoftMaxNode
from singe.singe_activation_nodes import SingeSigmoidNode, SingeTanhNode
from singe.singe_regression_node import SingeRegressionNode
from singe.singe_reshape_node import SingeReshapeNode

NodeRef = SingeNode | int


class SingeNetwork:
    """
    Owns a feed-forward graph of SingeNodes and trains it.

    Graph:
        Nodes live in one list (the arena). Each create_* call appends a node
        whose predecessors are already in the list, so creation order is a
        valid evaluation order:

            forward:  node_0 → node_1 → ... → node_N
            backward: node_N → ... → node_1 → node_0

        Nodes refer to their predecessors by arena index, never by ownership.

    Training:
        train(root, iterations, input_nodes, input_tensors) slices one
        minibatch per bound dataset tensor, runs forward, runs backward from
        the loss node `root`, then applies SingeSGD using self.config.

    Minibatch cursor:
        The cursor counts examples and persists across train() calls.
        When the next minibatch would run past the end of the dataset the
        cursor goes back to 0 first, so an incomplete tail is skipped.
        reset_cursor() rewinds it explicitly.

    Parameter initialization draws from a RandomState seeded with `seed`,
    so two networks built the same way with the same seed are identical.
    """

    def __init__(self, config: Optional[SingeConfig] = None, seed: int = 0):
        self.config = config if config is not None else SingeConfig()
        self.seed = int(seed)
        self._rng = np.random.RandomState(self.seed)
        self._nodes: List[SingeNode] = []

        self.train_cursor = 0
        self.iteration = 0

    # ------------------------------------------------------
    # Arena access
    # ------------------------------------------------------
    @property
    def nodes(self) -> Tuple[SingeNode, ...]:
        return tuple(self._nodes)

    def node(self, index: int) -> SingeNode:
        return self._nodes[index]

    def __len__(self) -> int:
        return len(self._nodes)

    def _resolve(self, ref: NodeRef) -> SingeNode:
        """Accept a node of this network or its arena index."""
        if isinstance(ref, SingeNode):
            if ref.index < len(self._nodes) and self._nodes[ref.index] is ref:
                return ref
            raise ShapeMismatch(f"Node '{ref.name}' does not belong to this network")

        if isinstance(ref, Integral) and not isinstance(ref, bool):
            if 0 <= ref < len(self._nodes):
                return self._nodes[int(ref)]
            raise ShapeMismatch(f"No node with index {ref} (network has {len(self._nodes)})")

        raise ShapeMismatch(f"Expected a SingeNode or a node index, got {ref!r}")

    def _append(self, node: SingeNode) -> SingeNode:
        self._nodes.append(node)
        return node

    @property
    def _next_index(self) -> int:
        return len(self._nodes)

    # ------------------------------------------------------
    # Graph construction
    # ------------------------------------------------------
    def create_variable(
        self,
        shape: Sequence[int],
        kind: ElemKind | str = ElemKind.FLOAT,
        trainable: bool = False,
        name: Optional[str] = None,
    ) -> SingeVariableNode:
        return self._append(SingeVariableNode(
            self._next_index,
            shape,
            elem_kind=ElemKind.from_value(kind),
            trainable=trainable,
            rng=self._rng,
            name=name,
        ))

    def create_conv_node(
        self,
        input: NodeRef,
        filters: int,
        kernel: int,
        stride: int = 1,
        pad: int = 0,
        name: Optional[str] = None,
    ) -> SingeConvNode:
        return self._append(SingeConvNode(
            self._next_index,
            self._resolve(input),
            filters=filters,
            kernel=kernel,
            stride=stride,
            pad=pad,
            rng=self._rng,
            name=name,
        ))

    def create_relu_node(self, input: NodeRef, name: Optional[str] = None) -> SingeReLUNode:
        return self._append(SingeReLUNode(self._next_index, self._resolve(input), name=name))

    def create_max_pool_node(
        self,
        input: NodeRef,
        kind: PoolKind | str = PoolKind.MAX,
        size: int = 2,
        stride: int = 2,
        pad: int = 0,
        name: Optional[str] = None,
    ) -> SingePoolNode:
        return self._append(SingePoolNode(
            self._next_index,
            self._resolve(input),
            pool_kind=kind,
            size=size,
            stride=stride,
            pad=pad,
            name=name,
        ))

    def create_fully_connected_node(
        self,
        input: NodeRef,
        outputs: int,
        name: Optional[str] = None,
    ) -> SingeFullyConnectedNode:
        return self._append(SingeFullyConnectedNode(
            self._next_index,
            self._resolve(input),
            outputs=outputs,
            rng=self._rng,
            name=name,
        ))

    def create_softmax_node(
        self,
        input: NodeRef,
        expected: NodeRef,
        name: Optional[str] = None,
    ) -> SingeSoftMaxNode:
        return self._append(SingeSoftMaxNode(
            self._next_index,
            self._resolve(input),
            self._resolve(expected),
            name=name,
        ))

    def create_sigmoid_node(self, input: NodeRef, name: Optional[str] = None) -> SingeSigmoidNode:
        return self._append(SingeSigmoidNode(self._next_index, self._resolve(input), name=name))

    def create_tanh_node(self, input: NodeRef, name: Optional[str] = None) -> SingeTanhNode:
        return self._append(SingeTanhNode(self._next_index, self._resolve(input), name=name))

    def create_regression_node(
        self,
        input: NodeRef,
        expected: NodeRef,
        name: Optional[str] = None,
    ) -> SingeRegressionNode:
        return self._append(SingeRegressionNode(
            self._next_index,
            self._resolve(input),
            self._resolve(expected),
            name=name,
        ))

    def create_reshape_node(
        self,
        input: NodeRef,
        shape: Sequence[int],
        name: Optional[str] = None,
    ) -> SingeReshapeNode:
        return self._append(SingeReshapeNode(
            self._next_index,
            self._resolve(input),
            shape,
            name=name,
        ))

    # ------------------------------------------------------
    # Parameter management
    # ------------------------------------------------------
    def parameters(self) -> List[SingeParam]:
        """
        Collect parameters from every node into a single flat list,
        in creation order.
        """
        params = []
        for node in self._nodes:
            params.extend(node.parameters())
        return params

    def zero_grads(self) -> None:
        """Reset every parameter gradient accumulator."""
        for node in self._nodes:
            node.zero_grad()

    # ------------------------------------------------------
    # Passes
    # ------------------------------------------------------
    def _ancestors(self, root: SingeNode) -> Set[int]:
        """Indices of root and everything it depends on."""
        seen = {root.index}
        stack = [root.index]
        while stack:
            for i in self._nodes[stack.pop()].inputs:
                if i not in seen:
                    seen.add(i)
                    stack.append(i)
        return seen

    def forward(self, root: Optional[NodeRef] = None) -> None:
        """
        Run forward() in creation order. With a root, only the nodes the
        root depends on are evaluated.
        """
        if root is None:
            for node in self._nodes:
                node.forward(self)
            return

        wanted = self._ancestors(self._resolve(root))
        for node in self._nodes:
            if node.index in wanted:
                node.forward(self)

    def backward(self, root: NodeRef) -> None:
        """
        Clear every output gradient, then run backward() in reverse creation
        order over root and its ancestors. The loss node `root` seeds the
        gradient; parameter gradients accumulate until zero_grads().
        """
        root = self._resolve(root)
        if not root.is_loss:
            raise ValueError(
                f"{root.name}: backward needs a loss node "
                f"(softmax or regression) as root, got {root.kind.value}"
            )

        for node in self._nodes:
            if node.grad is not None:
                node.grad.zero()

        wanted = self._ancestors(root)
        for node in reversed(self._nodes[:root.index + 1]):
            if node.index in wanted:
                node.backward(self)

    # ------------------------------------------------------
    # Bindings
    # ------------------------------------------------------
    def _bindings(
        self,
        input_nodes: Sequence[NodeRef],
        input_tensors: Sequence[SingeTensor],
        whole_shape: bool,
    ) -> List[Tuple[SingeVariableNode, SingeTensor]]:
        input_nodes = list(input_nodes)
        input_tensors = list(input_tensors)

        if len(input_nodes) != len(input_tensors):
            raise ShapeMismatch(
                f"Got {len(input_nodes)} input nodes but {len(input_tensors)} tensors"
            )

        bindings = []
        for ref, tensor in zip(input_nodes, input_tensors):
            node = self._resolve(ref)
            if not isinstance(node, SingeVariableNode):
                raise ShapeMismatch(
                    f"Only variables can be bound, '{node.name}' is a {node.kind.value} node"
                )
            if node.trainable:
                raise ShapeMismatch(
                    f"{node.name}: trainable variables hold parameters and cannot be bound"
                )
            if not isinstance(tensor, SingeTensor):
                raise ShapeMismatch(
                    f"{node.name}: expected a SingeTensor binding, got {type(tensor).__name__}"
                )
            node.check_compatible(tensor, whole_shape=whole_shape)
            bindings.append((node, tensor))

        return bindings

    # ------------------------------------------------------
    # Training
    # ------------------------------------------------------
    def train(
        self,
        root: NodeRef,
        iterations: int,
        input_nodes: Sequence[NodeRef],
        input_tensors: Sequence[SingeTensor],
    ) -> float | None:
        """
        Run `iterations` minibatch SGD steps.

        input_nodes / input_tensors are parallel: each variable is fed
        consecutive minibatch slices of its full-size dataset tensor. All
        datasets must hold the same number of examples and all bound
        variables the same minibatch size.

        Returns the root's loss on the last minibatch (None if no step ran).
        """
        root = self._resolve(root)
        if not root.is_loss:
            raise ValueError(
                f"{root.name}: train needs a loss node "
                f"(softmax or regression) as root, got {root.kind.value}"
            )

        if isinstance(iterations, bool) or not isinstance(iterations, Integral) or iterations < 0:
            raise ValueError(f"iterations must be a non-negative int, got {iterations!r}")

        self.config.validate()
        bindings = self._bindings(input_nodes, input_tensors, whole_shape=False)

        rows = {t.shape[0] for _, t in bindings}
        if len(rows) > 1:
            raise ShapeMismatch(f"Bound datasets disagree on example count: {sorted(rows)}")
        batches = {v.shape[0] for v, _ in bindings}
        if len(batches) > 1:
            raise ShapeMismatch(f"Bound variables disagree on minibatch size: {sorted(batches)}")

        num_rows = rows.pop() if rows else 0
        batch = batches.pop() if batches else 0

        optimizer = SingeSGD(self.parameters())
        report_rate = int(self.config.report_rate)
        loss = None

        for _ in range(int(iterations)):
            # (a) one minibatch per bound variable
            if bindings:
                if self.train_cursor + batch > num_rows:
                    self.train_cursor = 0
                for variable, dataset in bindings:
                    variable.load_slices(dataset, self.train_cursor)
                self.train_cursor += batch

            # (b) forward, (c) backward
            self.forward(root)
            self.backward(root)

            # (d) update, then clear the accumulators
            optimizer.step(self.config)
            optimizer.zero_grad()

            loss = root.loss
            self.iteration += 1

            if report_rate and self.iteration % report_rate == 0:
                print(f"[SingeNetwork] iteration {self.iteration}: loss={loss:.4f}")

        return loss

    def reset_cursor(self) -> None:
        self.train_cursor = 0

    # ------------------------------------------------------
    # Inference
    # ------------------------------------------------------
    def infer(
        self,
        root: NodeRef,
        input_nodes: Sequence[NodeRef],
        input_tensors: Sequence[SingeTensor],
    ) -> SingeTensor:
        """
        Forward only. Each tensor must match its variable's shape exactly
        and is used in place for the duration of the call.

        Returns root's output tensor. The network keeps owning it and will
        overwrite it on the next pass; clone() it to keep the values.
        """
        root = self._resolve(root)
        bindings = self._bindings(input_nodes, input_tensors, whole_shape=True)

        for variable, tensor in bindings:
            variable.bind(tensor)
        try:
            self.forward(root)
            # Read before unbinding: root may be one of the bound variables
            result = root.output
        finally:
            for variable, _ in bindings:
                variable.unbind()

        return result

    # ------------------------------------------------------
    # Convenience
    # ------------------------------------------------------
    def __repr__(self) -> str:
        inner = ",\n  ".join(repr(node) for node in self._nodes)
        return f"SingeNetwork(\n  {inner}\n)"
