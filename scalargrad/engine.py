"""
Scalargrad: A Scalar-Value Autograd Engine
==========================================

Reverse-mode automatic differentiation over a DAG of scalar operations.

Every call to a primitive (add, mul, pow, relu) eagerly computes its result
and records a new node in a Graph. Nodes are plain data: an Op tag, the ids
of their parents, the forward value and an accumulated gradient. Calling
backward() on any node linearizes everything that contributed to it and
walks that order in reverse, applying the local derivative of each Op to
push gradient into the parents.

The Graph is the only stateful object. It owns the node arena and hands out
ids, so two graphs never share identities and nothing lives at module level.
"""

from __future__ import annotations
import logging
from contextlib import contextmanager
from enum import Enum
from typing import Dict, Iterator, Union, Tuple, Set, List, Optional

import numpy as np

from .exceptions import GraphMismatch


logger = logging.getLogger(__name__)

# Type alias for numeric inputs
Numeric = Union[int, float, np.integer, np.floating]


class Op(Enum):
    """Tag for the operation that produced a node."""

    LEAF = ''
    ADD = '+'
    MUL = '*'
    POW = '**'
    RELU = 'relu'


class Node:
    """
    One vertex of the computation graph.

    Attributes:
        id: Unique id within its graph, never reused.
        op: The operation that produced the node.
        parents: Ids of the operand nodes, in operand order.
        value: Forward result, fixed at construction.
        grad: Accumulated gradient, 0.0 until a backward pass reaches it.
        exponent: Constant exponent for Op.POW nodes, None otherwise.
        label: Optional name for debugging.
    """

    __slots__ = ('id', 'op', 'parents', 'value', 'grad', 'exponent', 'label')

    def __init__(
        self,
        node_id: int,
        op: Op,
        value: float,
        parents: Tuple[int, ...] = (),
        exponent: Optional[float] = None,
        label: str = ''
    ) -> None:
        self.id: int = node_id
        self.op: Op = op
        self.parents: Tuple[int, ...] = parents
        self.value: float = value
        self.grad: float = 0.0
        self.exponent: Optional[float] = exponent
        self.label: str = label

    @property
    def op_label(self) -> str:
        """Short operation tag, e.g. '+' or '**-1'."""
        if self.op is Op.POW:
            return f'**{self.exponent:g}'
        return self.op.value

    def __repr__(self) -> str:
        return (
            f"Node(id={self.id}, op={self.op.name}, parents={self.parents}, "
            f"value={self.value}, grad={self.grad})"
        )


def _power(base: float, exponent: float) -> float:
    # IEEE semantics: 0 ** -1 is inf and a negative base with a fractional
    # exponent is nan, where plain floats would raise or go complex.
    with np.errstate(all='ignore'):
        return float(np.float64(base) ** np.float64(exponent))


class Graph:
    """
    Arena of nodes and the context that allocates their ids.

    Ids come from a counter that only moves forward, and a node may only
    name parents that are live in the arena, so the stored structure is
    always acyclic. Nodes built for one forward/backward pass can be
    dropped again with checkpoint()/release() or the scope() context
    manager; their ids are never handed out again.

    Example:
        >>> g = Graph()
        >>> a = g.leaf(2.0, label='a')
        >>> b = g.leaf(3.0, label='b')
        >>> c = a * b + a
        >>> c.backward()
        >>> a.grad  # dc/da = b + 1
        4.0
    """

    def __init__(self) -> None:
        self._nodes: Dict[int, Node] = {}
        self._next_id: int = 0

    def __len__(self) -> int:
        """Number of live nodes."""
        return len(self._nodes)

    def __repr__(self) -> str:
        return f"Graph(nodes={len(self._nodes)})"

    def node(self, node_id: int) -> Node:
        """
        Return the record for ``node_id``.

        Raises:
            GraphMismatch: If the id was never allocated here or has been
                released.
        """
        try:
            return self._nodes[node_id]
        except KeyError:
            raise GraphMismatch(
                f"no live node with id {node_id} in this graph"
            ) from None

    def value(self, node_id: int) -> Value:
        """Return a handle for ``node_id``."""
        self.node(node_id)
        return Value(self, node_id)

    # =========================================================================
    # Node Lifetime
    # =========================================================================

    def checkpoint(self) -> int:
        """Return a mark: the id the next node will get."""
        return self._next_id

    def release(self, mark: int) -> None:
        """
        Drop every node created since ``checkpoint()`` returned ``mark``.

        Parents always have smaller ids than their children, so nodes older
        than the mark never lose a parent. Handles to released nodes raise
        GraphMismatch when used.
        """
        if not 0 <= mark <= self._next_id:
            raise GraphMismatch(
                f"mark {mark} is outside this graph (next id is {self._next_id})"
            )
        dropped = 0
        while self._nodes and next(reversed(self._nodes)) >= mark:
            self._nodes.popitem()
            dropped += 1
        logger.debug("released %d nodes from mark %d", dropped, mark)

    @contextmanager
    def scope(self) -> Iterator[int]:
        """
        Release everything built inside the ``with`` block on exit.

        Example:
            >>> with model.graph.scope():
            ...     out = model(x)
            ...     out.backward()
            ...     grads = [p.grad for p in model.parameters()]
        """
        mark = self.checkpoint()
        try:
            yield mark
        finally:
            self.release(mark)

    # =========================================================================
    # Node Construction
    # =========================================================================

    def _insert(
        self,
        op: Op,
        value: float,
        parents: Tuple[int, ...] = (),
        exponent: Optional[float] = None,
        label: str = ''
    ) -> Value:
        for p in parents:
            if p not in self._nodes:
                raise GraphMismatch(f"parent id {p} is not a live node")
        node_id = self._next_id
        self._next_id += 1
        self._nodes[node_id] = Node(node_id, op, value, parents, exponent, label)
        return Value(self, node_id)

    def leaf(self, data: Numeric, label: str = '') -> Value:
        """
        Create a node with no parents: an input or a trainable parameter.

        Args:
            data: The scalar value to store.
            label: Optional name for debugging.

        Returns:
            Handle to the new leaf, with gradient 0.0.

        Raises:
            TypeError: If data is not a numeric type.
        """
        if not isinstance(data, (int, float, np.integer, np.floating)):
            raise TypeError(
                f"Value data must be numeric, got {type(data).__name__}"
            )
        return self._insert(Op.LEAF, float(data), label=label)

    def _lift(self, x: Union[Value, Numeric]) -> Value:
        """Return ``x`` as a handle in this graph, wrapping numbers as leaves."""
        if isinstance(x, Value):
            if x.graph is not self:
                raise GraphMismatch(
                    "cannot combine values from different graphs"
                )
            return x
        return self.leaf(x)

    # =========================================================================
    # Primitive Operations
    # =========================================================================

    def add(self, a: Union[Value, Numeric], b: Union[Value, Numeric]) -> Value:
        """
        Addition: out = a + b

        Local derivatives:
            d(out)/d(a) = 1
            d(out)/d(b) = 1
        """
        a, b = self._lift(a), self._lift(b)
        return self._insert(Op.ADD, a.data + b.data, (a.id, b.id))

    def mul(self, a: Union[Value, Numeric], b: Union[Value, Numeric]) -> Value:
        """
        Multiplication: out = a * b

        Local derivatives:
            d(out)/d(a) = b
            d(out)/d(b) = a
        """
        a, b = self._lift(a), self._lift(b)
        return self._insert(Op.MUL, a.data * b.data, (a.id, b.id))

    def pow(self, a: Union[Value, Numeric], exponent: Union[int, float]) -> Value:
        """
        Power with a constant exponent: out = a ** exponent

        Local derivative:
            d(out)/d(a) = exponent * a ** (exponent - 1)

        Zero or negative bases with negative or fractional exponents give
        inf or nan rather than raising.

        Raises:
            TypeError: If exponent is a Value or not a number.
        """
        if isinstance(exponent, Value):
            raise TypeError(
                "Power with Value exponent not supported. "
                "The exponent must be a constant."
            )
        if not isinstance(exponent, (int, float, np.integer, np.floating)):
            raise TypeError(
                f"Exponent must be numeric, got {type(exponent).__name__}"
            )
        a = self._lift(a)
        e = float(exponent)
        return self._insert(Op.POW, _power(a.data, e), (a.id,), exponent=e)

    def relu(self, a: Union[Value, Numeric]) -> Value:
        """
        Rectified Linear Unit: out = max(0, a)

        Local derivative:
            d(out)/d(a) = 1 if out > 0 else 0
        """
        a = self._lift(a)
        x = a.data
        # nan stays nan
        return self._insert(Op.RELU, 0.0 if x < 0 else x, (a.id,))

    def neg(self, a: Union[Value, Numeric]) -> Value:
        """Negation: a * -1."""
        return self.mul(a, self.leaf(-1.0))

    def sub(self, a: Union[Value, Numeric], b: Union[Value, Numeric]) -> Value:
        """Subtraction: a + (-b)."""
        return self.add(a, self.neg(b))

    def div(self, a: Union[Value, Numeric], b: Union[Value, Numeric]) -> Value:
        """Division: a * b ** -1."""
        return self.mul(a, self.pow(b, -1))

    # =========================================================================
    # Backpropagation
    # =========================================================================

    def topological_order(self, node_id: int) -> List[int]:
        """
        Ids of every node reachable from ``node_id``, parents before children.

        Depth-first post-order over each node's parents in operand order.
        Shared ancestors are emitted once, the first time they are reached,
        and ``node_id`` itself is last. Uses an explicit stack, so long
        chains do not hit the recursion limit.

        Raises:
            GraphMismatch: If ``node_id`` is not a live node of this graph.
        """
        self.node(node_id)
        order: List[int] = []
        visited: Set[int] = set()
        stack: List[Tuple[int, bool]] = [(node_id, False)]

        while stack:
            nid, expanded = stack.pop()
            if expanded:
                order.append(nid)
                continue
            if nid in visited:
                continue
            visited.add(nid)
            stack.append((nid, True))
            # Reversed so the first parent is explored first
            for parent in reversed(self._nodes[nid].parents):
                if parent not in visited:
                    stack.append((parent, False))

        return order

    def backward(self, node_id: int) -> None:
        """
        Fill in the gradient of ``node_id`` with respect to every ancestor.

        The pass seeds the root with 1.0 and visits nodes in reverse
        topological order. Every consumer of a node comes before it in that
        walk, so a node's gradient for this pass is complete before it is
        pushed further up.

        The pass works on its own gradient buffer and adds the result into
        each node's ``grad`` at the end, so repeated calls accumulate: two
        backward() calls in a row give every ancestor exactly twice the
        gradient of one. The root's ``grad`` is set to 1.0. Call zero_grad()
        first for fresh values.

        Raises:
            GraphMismatch: If ``node_id`` is not a live node of this graph.
        """
        order = self.topological_order(node_id)
        grads: Dict[int, float] = dict.fromkeys(order, 0.0)
        grads[node_id] = 1.0

        for nid in reversed(order):
            self._propagate(self._nodes[nid], grads)

        for nid, g in grads.items():
            self._nodes[nid].grad += g
        self._nodes[node_id].grad = 1.0

        logger.debug("backward from node %d visited %d nodes", node_id, len(order))

    def _propagate(self, node: Node, grads: Dict[int, float]) -> None:
        """Add ``node``'s contribution to the gradients of its parents."""
        og = grads[node.id]
        op = node.op

        if op is Op.LEAF:
            return

        if op is Op.ADD:
            a, b = node.parents
            grads[a] += og
            grads[b] += og

        elif op is Op.MUL:
            a, b = node.parents
            grads[a] += self._nodes[b].value * og
            grads[b] += self._nodes[a].value * og

        elif op is Op.POW:
            a = node.parents[0]
            e = node.exponent
            grads[a] += e * _power(self._nodes[a].value, e - 1) * og

        elif op is Op.RELU:
            if node.value > 0:
                grads[node.parents[0]] += og

        else:
            raise AssertionError(f"unhandled op {op}")

    def zero_grad(self) -> None:
        """Reset the gradient of every node in the graph to zero."""
        for node in self._nodes.values():
            node.grad = 0.0


class Value:
    """
    A handle on one node of a Graph, with arithmetic operator overloads.

    Arithmetic on Values records new nodes in the shared graph; plain
    numbers mixed in are wrapped as leaves. Two handles compare equal when
    they name the same node of the same graph.

    Attributes:
        graph: The Graph owning the node.
        id: The node's id within that graph.

    Example:
        >>> g = Graph()
        >>> x = g.leaf(2.0)
        >>> y = x ** 2 + 3 * x
        >>> y.backward()
        >>> x.grad  # dy/dx = 2x + 3
        7.0
    """

    __slots__ = ('graph', 'id')

    def __init__(self, graph: Graph, node_id: int) -> None:
        self.graph = graph
        self.id = node_id

    @property
    def node(self) -> Node:
        return self.graph.node(self.id)

    @property
    def data(self) -> float:
        """The forward value of this node."""
        return self.graph.node(self.id).value

    @property
    def grad(self) -> float:
        """The accumulated gradient of this node."""
        return self.graph.node(self.id).grad

    @grad.setter
    def grad(self, g: float) -> None:
        self.graph.node(self.id).grad = float(g)

    @property
    def label(self) -> str:
        return self.graph.node(self.id).label

    @label.setter
    def label(self, label: str) -> None:
        self.graph.node(self.id).label = label

    @property
    def op(self) -> str:
        """Tag of the operation that produced this node ('' for leaves)."""
        return self.graph.node(self.id).op_label

    @property
    def parents(self) -> Tuple[Value, ...]:
        return tuple(Value(self.graph, p) for p in self.graph.node(self.id).parents)

    def __repr__(self) -> str:
        """String representation showing data and gradient."""
        if self.label:
            return f"Value({self.label}={self.data:.4f}, grad={self.grad:.4f})"
        return f"Value(data={self.data:.4f}, grad={self.grad:.4f})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Value):
            return NotImplemented
        return self.graph is other.graph and self.id == other.id

    def __hash__(self) -> int:
        return hash((id(self.graph), self.id))

    # =========================================================================
    # Arithmetic Operations
    # =========================================================================

    def __add__(self, other: Union[Value, Numeric]) -> Value:
        return self.graph.add(self, other)

    def __radd__(self, other: Numeric) -> Value:
        """Handle numeric + Value."""
        return self.graph.add(other, self)

    def __mul__(self, other: Union[Value, Numeric]) -> Value:
        return self.graph.mul(self, other)

    def __rmul__(self, other: Numeric) -> Value:
        """Handle numeric * Value."""
        return self.graph.mul(other, self)

    def __pow__(self, n: Union[int, float]) -> Value:
        return self.graph.pow(self, n)

    def __neg__(self) -> Value:
        return self.graph.neg(self)

    def __sub__(self, other: Union[Value, Numeric]) -> Value:
        return self.graph.sub(self, other)

    def __rsub__(self, other: Numeric) -> Value:
        """Handle numeric - Value."""
        return self.graph.sub(other, self)

    def __truediv__(self, other: Union[Value, Numeric]) -> Value:
        return self.graph.div(self, other)

    def __rtruediv__(self, other: Numeric) -> Value:
        """Handle numeric / Value."""
        return self.graph.div(other, self)

    def relu(self) -> Value:
        return self.graph.relu(self)

    # =========================================================================
    # Backpropagation
    # =========================================================================

    def backward(self) -> None:
        """
        Compute d(self)/d(node) for every node this Value depends on.

        Gradients accumulate across calls: two backward() calls in a row
        double every ancestor's gradient. Call zero_grad() on the graph or
        the model first for fresh gradients.
        """
        self.graph.backward(self.id)

    def zero_grad(self) -> None:
        """Reset this node's gradient to zero."""
        self.grad = 0.0

    def item(self) -> float:
        """Return the scalar value (PyTorch compatibility)."""
        return self.data


def topological_sort(root: Value) -> List[Value]:
    """
    Compute topological ordering of the computation graph rooted at `root`.

    Args:
        root: The output node.

    Returns:
        Every Value `root` depends on, each exactly once, ancestors before
        descendants, with `root` last.

    Example:
        >>> g = Graph()
        >>> a, b = g.leaf(1.0), g.leaf(2.0)
        >>> c = a + b
        >>> d = c * a
        >>> [v.id for v in topological_sort(d)]
        [0, 1, 2, 3]
    """
    return [Value(root.graph, nid) for nid in root.graph.topological_order(root.id)]


def backward(root: Value) -> None:
    """Run a backward pass from `root`. Same as ``root.backward()``."""
    root.backward()


def _dot_escape(text: str) -> str:
    """Escape backslashes and double quotes for a quoted DOT string."""
    return text.replace('\\', '\\\\').replace('"', '\\"')


def draw_graph(root: Value, format: str = 'text') -> str:
    """
    Generate a visualization of the computation graph.

    Args:
        root: Root node of the graph to visualize.
        format: 'text' for one line per node, 'dot' for Graphviz DOT format.

    Returns:
        String representation of the graph.

    Raises:
        ValueError: If format is not 'text' or 'dot'.
    """
    if format not in ('text', 'dot'):
        raise ValueError(f"unknown format {format!r}, expected 'text' or 'dot'")

    graph = root.graph
    nodes = [graph.node(nid) for nid in graph.topological_order(root.id)]

    def name(node: Node) -> str:
        return node.label or f'v{node.id}'

    if format == 'dot':
        lines = ['digraph G {', '  rankdir=LR;']
        for node in nodes:
            lines.append(
                f'  n{node.id} [label="{_dot_escape(name(node))}\\n'
                f'data={node.value:.4f}\\n'
                f'grad={node.grad:.4f}", shape=box];'
            )
            if node.op is not Op.LEAF:
                op_id = f'op{node.id}'
                lines.append(f'  {op_id} [label="{node.op_label}", shape=circle];')
                lines.append(f'  {op_id} -> n{node.id};')
                for pid in node.parents:
                    lines.append(f'  n{pid} -> {op_id};')
        lines.append('}')
        return '\n'.join(lines)

    lines = ['Computation Graph:', '=' * 50]
    for node in reversed(nodes):
        op_str = ''
        if node.op is not Op.LEAF:
            parent_names = [name(graph.node(p)) for p in node.parents]
            op_str = f' = {node.op_label}(' + ', '.join(parent_names) + ')'
        lines.append(
            f'{name(node):>10}: data={node.value:>10.4f}, '
            f'grad={node.grad:>10.4f}{op_str}'
        )
    return '\n'.join(lines)
