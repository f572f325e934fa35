#!/usr/bin/env python3
"""
Scalargrad Demo: Gradients by Hand and Through an MLP
=====================================================

This demo shows the complete workflow:
1. Build a small expression from leaves and print every node
2. Run backward() and check the chain rule by eye
3. Build a 3 -> 4 -> 4 -> 1 MLP, run one forward/backward pass and
   print the parameter gradients

Run: python examples/demo.py [--seed N] [--verbose]
"""

import argparse
import logging
from typing import List, Optional

import numpy as np

from scalargrad import Graph, MLP, topological_sort, draw_graph


def print_nodes(title: str, nodes) -> None:
    """Print id, op, parents, value and gradient of each node."""
    print(f"\n{title}")
    print("-" * 60)
    for v in nodes:
        parents = ', '.join(str(p.id) for p in v.parents) or '-'
        name = v.label or f'v{v.id}'
        print(
            f"  {name:>4} id={v.id:<3} op={v.op or 'leaf':<5} "
            f"parents=[{parents:<6}] data={v.data:>9.4f} grad={v.grad:>9.4f}"
        )


def chain_rule_demo() -> None:
    """y = (x1 + x2) * x3 with x1=2, x2=-3, x3=10."""
    g = Graph()
    x1 = g.leaf(2.0, label='x1')
    x2 = g.leaf(-3.0, label='x2')
    x3 = g.leaf(10.0, label='x3')
    y1 = x1 + x2
    y1.label = 'y1'
    y2 = y1 * x3
    y2.label = 'y2'

    print_nodes("Before backward", topological_sort(y2))
    y2.backward()
    print_nodes("After backward", topological_sort(y2))
    print()
    print(draw_graph(y2))


def mlp_demo(seed: int) -> None:
    """One forward and backward pass through a small MLP."""
    model = MLP(3, [4, 4, 1], rng=np.random.default_rng(seed))
    print(f"\nModel: {model}")
    print(f"Parameters: {len(model.parameters())}")

    x = [2.0, 3.0, -1.0]
    with model.graph.scope():
        out = model(x)
        out.backward()

        print(f"Input:  {x}")
        print(f"Output: {out.data:.6f}  (graph has {len(model.graph)} nodes)")

        for i, layer in enumerate(model.layers):
            grads = [p.grad for p in layer.parameters()]
            print(f"  layer {i} {layer}: |grad| max = {max(abs(g) for g in grads):.6f}")

    print(f"After release: {len(model.graph)} nodes")


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument('--seed', type=int, default=42, help='weight init seed')
    parser.add_argument('--verbose', action='store_true', help='debug logging')
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format='%(name)s: %(message)s')

    print("=" * 60)
    print("Scalargrad: reverse-mode autodiff on scalars")
    print("=" * 60)

    chain_rule_demo()
    mlp_demo(args.seed)


if __name__ == "__main__":
    main()
