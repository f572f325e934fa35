"""
Unit Tests: Neural Network Units
================================

Neuron, Layer and MLP built on the engine: initialisation, forward pass,
parameter ordering, gradient zeroing and input-arity errors.

Run with: pytest tests/test_nn.py -v
"""

import math
import pytest
import numpy as np

from scalargrad import (
    Graph, GraphMismatch, Value, Neuron, Layer, MLP, Module, ShapeMismatch
)


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(42)


class TestNeuron:
    """Single neuron."""

    def test_neuron_creation(self, rng: np.random.Generator) -> None:
        n = Neuron(3, rng=rng)
        assert len(n.w) == 3
        assert n.b.data == 0.0
        assert all(-1.0 <= w.data <= 1.0 for w in n.w)
        assert all(w.node.op.name == 'LEAF' for w in n.w)

    def test_neuron_forward(self) -> None:
        n = Neuron(2, nonlin=False, weights=[1.0, 2.0], bias=0.5)
        out = n([1.0, 1.0])
        # 1*1 + 2*1 + 0.5 = 3.5
        assert out.data == 3.5

    def test_neuron_relu(self) -> None:
        n = Neuron(2, weights=[1.0, -2.0])
        assert n([1.0, 1.0]).data == 0.0
        assert n([3.0, 1.0]).data == 1.0

    def test_neuron_accepts_values(self) -> None:
        g = Graph()
        n = Neuron(2, nonlin=False, graph=g, weights=[3.0, -1.0])
        x = [g.leaf(2.0), g.leaf(4.0)]
        out = n(x)
        out.backward()
        assert out.data == 2.0
        assert x[0].grad == 3.0
        assert x[1].grad == -1.0
        assert n.w[0].grad == 2.0
        assert n.b.grad == 1.0

    def test_neuron_parameters(self, rng: np.random.Generator) -> None:
        """Weights first, bias last."""
        n = Neuron(3, rng=rng)
        params = n.parameters()
        assert len(params) == 4
        assert params[:3] == n.w
        assert params[-1] == n.b

    def test_neuron_input_mismatch(self, rng: np.random.Generator) -> None:
        n = Neuron(3, rng=rng)
        with pytest.raises(ShapeMismatch) as exc:
            n([1.0, 2.0])
        assert exc.value.expected == 3
        assert exc.value.got == 2

    def test_shape_mismatch_is_value_error(self, rng: np.random.Generator) -> None:
        with pytest.raises(ValueError):
            Neuron(3, rng=rng)([1.0])

    def test_weight_count_mismatch(self) -> None:
        with pytest.raises(ShapeMismatch):
            Neuron(3, weights=[1.0, 2.0])

    def test_seeded_init_is_reproducible(self) -> None:
        a = Neuron(4, rng=np.random.default_rng(7))
        b = Neuron(4, rng=np.random.default_rng(7))
        assert [w.data for w in a.w] == [w.data for w in b.w]


class TestLayer:
    """Fully connected layer."""

    def test_layer_creation(self, rng: np.random.Generator) -> None:
        layer = Layer(3, 4, rng=rng)
        assert len(layer.neurons) == 4
        assert repr(layer) == 'Layer(3 -> 4)'

    def test_layer_forward(self, rng: np.random.Generator) -> None:
        layer = Layer(2, 3, rng=rng)
        out = layer([1.0, 1.0])
        assert len(out) == 3
        assert all(isinstance(o, Value) for o in out)

    def test_layer_shares_graph(self, rng: np.random.Generator) -> None:
        layer = Layer(2, 3, rng=rng)
        assert all(n.graph is layer.graph for n in layer.neurons)

    def test_layer_parameters(self, rng: np.random.Generator) -> None:
        """3 neurons * (2 weights + 1 bias), neuron by neuron."""
        layer = Layer(2, 3, rng=rng)
        params = layer.parameters()
        assert len(params) == 9
        assert params[:3] == layer.neurons[0].parameters()
        assert params[6:] == layer.neurons[2].parameters()

    def test_layer_input_mismatch(self, rng: np.random.Generator) -> None:
        with pytest.raises(ShapeMismatch):
            Layer(3, 2, rng=rng)([1.0, 2.0])


class TestMLP:
    """Multi-layer perceptron."""

    def test_mlp_creation(self, rng: np.random.Generator) -> None:
        mlp = MLP(3, [4, 4, 1], rng=rng)
        assert len(mlp.layers) == 3
        assert [n.nonlin for n in mlp.layers[0].neurons] == [True] * 4
        assert mlp.layers[-1].neurons[0].nonlin is False
        assert repr(mlp) == 'MLP([Layer(3 -> 4), Layer(4 -> 4), Layer(4 -> 1)])'

    def test_mlp_forward_single_output(self, rng: np.random.Generator) -> None:
        mlp = MLP(2, [4, 1], rng=rng)
        assert isinstance(mlp([1.0, 2.0]), Value)

    def test_mlp_forward_multiple_outputs(self, rng: np.random.Generator) -> None:
        mlp = MLP(2, [4, 3], rng=rng)
        out = mlp([1.0, 2.0])
        assert isinstance(out, list)
        assert len(out) == 3

    def test_mlp_parameters(self, rng: np.random.Generator) -> None:
        mlp = MLP(2, [3, 1], rng=rng)
        params = mlp.parameters()
        # Layer 1: 3 * (2 + 1) = 9, Layer 2: 1 * (3 + 1) = 4
        assert len(params) == 13
        assert params[:9] == mlp.layers[0].parameters()
        assert params[9:] == mlp.layers[1].parameters()

    def test_mlp_input_mismatch(self, rng: np.random.Generator) -> None:
        mlp = MLP(3, [4, 1], rng=rng)
        with pytest.raises(ShapeMismatch):
            mlp([1.0, 2.0])

    def test_end_to_end(self) -> None:
        """[3 -> 4, 4 -> 4, 4 -> 1] with fixed weights gives finite gradients."""
        mlp = MLP(3, [4, 4, 1], rng=np.random.default_rng(1337))
        x = [2.0, 3.0, -1.0]
        out = mlp(x)
        assert math.isfinite(out.data)

        out.backward()
        assert out.grad == 1.0
        for p in mlp.parameters():
            assert math.isfinite(p.grad)

    def test_end_to_end_matches_manual(self) -> None:
        """A 2 -> 1 -> 1 network against hand-derived gradients."""
        mlp = MLP(2, [1, 1], rng=np.random.default_rng(0))
        h = mlp.layers[0].neurons[0]
        o = mlp.layers[1].neurons[0]

        x = [0.5, -1.5]
        out = mlp(x)
        pre = h.b.data + h.w[0].data * x[0] + h.w[1].data * x[1]
        hidden = max(0.0, pre)
        assert math.isclose(out.data, o.b.data + o.w[0].data * hidden)

        out.backward()
        assert o.b.grad == 1.0
        assert math.isclose(o.w[0].grad, hidden)
        gate = 1.0 if hidden > 0 else 0.0
        assert math.isclose(h.w[0].grad, o.w[0].data * gate * x[0])
        assert math.isclose(h.b.grad, o.w[0].data * gate)

    def test_zero_grad(self, rng: np.random.Generator) -> None:
        mlp = MLP(2, [3, 1], rng=rng)
        out = mlp([1.0, 2.0])
        out.backward()
        assert any(p.grad != 0.0 for p in mlp.parameters())

        mlp.zero_grad()
        for p in mlp.parameters():
            assert p.grad == 0.0

    def test_repeated_backward_doubles_parameter_grads(self) -> None:
        mlp = MLP(3, [4, 4, 1], rng=np.random.default_rng(3))
        out = mlp([1.0, -0.5, 2.0])

        mlp.zero_grad()
        out.backward()
        once = [p.grad for p in mlp.parameters()]

        mlp.zero_grad()
        out.backward()
        out.backward()
        twice = [p.grad for p in mlp.parameters()]

        for a, b in zip(once, twice):
            assert math.isclose(b, 2 * a, rel_tol=1e-12, abs_tol=1e-12)

    def test_graph_size_bounded_across_passes(self) -> None:
        """Passes run in a graph scope leave only the parameters behind."""
        mlp = MLP(3, [4, 4, 1], rng=np.random.default_rng(5))
        n_params = len(mlp.parameters())
        assert len(mlp.graph) == n_params == 41

        grads = None
        for _ in range(100):
            with mlp.graph.scope():
                out = mlp([1.0, -0.5, 2.0])
                out.backward()
                step = [p.grad for p in mlp.parameters()]
                mlp.zero_grad()
            assert len(mlp.graph) == n_params
            if grads is None:
                grads = step
            assert step == grads

        with pytest.raises(GraphMismatch):
            out.data


class TestModule:
    """Base class behaviour."""

    def test_base_module_has_no_parameters(self) -> None:
        m = Module()
        assert m.parameters() == []
        m.zero_grad()
        assert repr(m) == 'Module()'

    def test_custom_module_zero_grad(self) -> None:
        g = Graph()

        class Pair(Module):
            def __init__(self) -> None:
                self.a = Neuron(1, graph=g, weights=[2.0])
                self.b = Neuron(1, graph=g, weights=[3.0])

            def parameters(self):
                return self.a.parameters() + self.b.parameters()

        pair = Pair()
        (pair.a([1.0]) * pair.b([1.0])).backward()
        assert pair.a.w[0].grad == 3.0
        pair.zero_grad()
        assert all(p.grad == 0.0 for p in pair.parameters())
