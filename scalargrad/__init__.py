"""Scalargrad: a scalar-value reverse-mode autograd engine."""

from .engine import Graph, Node, Op, Value, topological_sort, backward, draw_graph
from .exceptions import ScalargradError, ShapeMismatch, GraphMismatch
from .nn import Module, Neuron, Layer, MLP

__all__ = [
    "Graph",
    "Node",
    "Op",
    "Value",
    "topological_sort",
    "backward",
    "draw_graph",
    "ScalargradError",
    "ShapeMismatch",
    "GraphMismatch",
    "Module",
    "Neuron",
    "Layer",
    "MLP",
]
