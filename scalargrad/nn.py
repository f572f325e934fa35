"""
Neural Network Module
=====================

Small neural network building blocks composed from the engine's primitives.

This module provides:
- Module: Base class with parameters() and zero_grad()
- Neuron: Weighted sum of inputs plus bias, optionally through ReLU
- Layer: A collection of neurons sharing the same input
- MLP: Multi-layer perceptron (stack of layers)

All units of one model record their nodes in a single Graph. Training
(losses, optimizers, loops) is left to the caller.
"""

from __future__ import annotations
import logging
from typing import List, Optional, Sequence, Union

import numpy as np

from .engine import Graph, Numeric, Value
from .exceptions import ShapeMismatch


logger = logging.getLogger(__name__)

Inputs = Sequence[Union[Value, Numeric]]


class Module:
    """
    Base class for all neural network modules.

    Subclasses override parameters(); zero_grad() works on whatever it
    returns.
    """

    def parameters(self) -> List[Value]:
        """
        Return all trainable parameters in this module.

        Returns:
            List of Value objects in a fixed order.
        """
        return []

    def zero_grad(self) -> None:
        """Reset gradients of all parameters to zero."""
        for p in self.parameters():
            p.grad = 0.0

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class Neuron(Module):
    """
    A single artificial neuron.

    Computes: output = relu(b + sum(w_i * x_i)), or the plain sum when
    nonlin is False.

    Attributes:
        graph: Graph holding the neuron's parameters and activations.
        w: List of weight Values
        b: Bias Value
        nonlin: Whether to apply ReLU

    Example:
        >>> n = Neuron(3, rng=np.random.default_rng(0))
        >>> out = n([1.0, 2.0, 3.0])
    """

    def __init__(
        self,
        nin: int,
        nonlin: bool = True,
        graph: Optional[Graph] = None,
        rng: Optional[np.random.Generator] = None,
        weights: Optional[Sequence[Numeric]] = None,
        bias: Numeric = 0.0
    ) -> None:
        """
        Initialize a neuron.

        Args:
            nin: Number of inputs to this neuron.
            nonlin: Whether to apply ReLU to the output.
            graph: Graph to create parameters in. A new one if omitted.
            rng: Generator for weight initialisation. Weights are drawn
                uniformly from [-1, 1].
            weights: Explicit initial weights, overriding rng.
            bias: Initial bias.

        Raises:
            ShapeMismatch: If len(weights) != nin.
        """
        self.graph: Graph = graph if graph is not None else Graph()
        if weights is None:
            rng = rng if rng is not None else np.random.default_rng()
            weights = rng.uniform(-1.0, 1.0, size=nin)
        elif len(weights) != nin:
            raise ShapeMismatch(nin, len(weights), unit='Neuron weights')

        self.w: List[Value] = [
            self.graph.leaf(float(wi), label=f'w{i}')
            for i, wi in enumerate(weights)
        ]
        self.b: Value = self.graph.leaf(bias, label='b')
        self.nonlin: bool = nonlin

    def __call__(self, x: Inputs) -> Value:
        """
        Forward pass: compute neuron output.

        Args:
            x: List of inputs (Values or numbers).

        Returns:
            Single Value representing neuron output.

        Raises:
            ShapeMismatch: If input length doesn't match weight count.
        """
        if len(x) != len(self.w):
            raise ShapeMismatch(len(self.w), len(x), unit=repr(self))

        act = self.b
        for wi, xi in zip(self.w, x):
            act = act + wi * xi

        return act.relu() if self.nonlin else act

    def parameters(self) -> List[Value]:
        """Return weights and bias."""
        return self.w + [self.b]

    def __repr__(self) -> str:
        act = 'ReLU' if self.nonlin else 'Linear'
        return f"Neuron({len(self.w)}, {act})"


class Layer(Module):
    """
    A fully connected layer of neurons.

    A layer with `nout` neurons maps an input of size `nin` to an output of
    size `nout`.

    Attributes:
        neurons: List of Neuron objects
    """

    def __init__(
        self,
        nin: int,
        nout: int,
        nonlin: bool = True,
        graph: Optional[Graph] = None,
        rng: Optional[np.random.Generator] = None
    ) -> None:
        self.nin: int = nin
        self.graph: Graph = graph if graph is not None else Graph()
        rng = rng if rng is not None else np.random.default_rng()
        self.neurons: List[Neuron] = [
            Neuron(nin, nonlin=nonlin, graph=self.graph, rng=rng)
            for _ in range(nout)
        ]

    def __call__(self, x: Inputs) -> List[Value]:
        """
        Forward pass: compute all neuron outputs.

        Raises:
            ShapeMismatch: If input length doesn't match the layer's fan-in.
        """
        if len(x) != self.nin:
            raise ShapeMismatch(self.nin, len(x), unit=repr(self))
        return [n(x) for n in self.neurons]

    def parameters(self) -> List[Value]:
        """Return all parameters from all neurons."""
        return [p for n in self.neurons for p in n.parameters()]

    def __repr__(self) -> str:
        return f"Layer({self.nin} -> {len(self.neurons)})"


class MLP(Module):
    """
    Multi-Layer Perceptron: a stack of fully connected layers.

    All hidden layers use ReLU; the output layer is linear.

    Attributes:
        graph: Graph shared by every layer.
        layers: List of Layer objects

    Example:
        >>> # 3 inputs -> 4 hidden -> 4 hidden -> 1 output
        >>> model = MLP(3, [4, 4, 1], rng=np.random.default_rng(42))
        >>> out = model([1.0, -2.0, 0.5])  # Single output Value
        >>> out.backward()
    """

    def __init__(
        self,
        nin: int,
        nouts: List[int],
        graph: Optional[Graph] = None,
        rng: Optional[np.random.Generator] = None
    ) -> None:
        """
        Initialize an MLP.

        Args:
            nin: Number of input features.
            nouts: List of layer sizes. Last element is output size.
            graph: Graph to build in. A new one if omitted.
            rng: Generator for weight initialisation.
        """
        self.graph: Graph = graph if graph is not None else Graph()
        rng = rng if rng is not None else np.random.default_rng()
        sizes = [nin] + list(nouts)
        self.layers: List[Layer] = [
            Layer(
                sizes[i],
                sizes[i + 1],
                nonlin=(i != len(nouts) - 1),
                graph=self.graph,
                rng=rng
            )
            for i in range(len(nouts))
        ]
        logger.debug(
            "built MLP %s with %d parameters", sizes, len(self.parameters())
        )

    def __call__(self, x: Inputs) -> Union[Value, List[Value]]:
        """
        Forward pass through all layers.

        Returns:
            A single Value if the last layer has one neuron, otherwise a list.
        """
        for layer in self.layers:
            x = layer(x)
        return x[0] if len(x) == 1 else x

    def parameters(self) -> List[Value]:
        """Return all parameters from all layers."""
        return [p for layer in self.layers for p in layer.parameters()]

    def __repr__(self) -> str:
        layer_strs = [str(layer) for layer in self.layers]
        return f"MLP([{', '.join(layer_strs)}])"
