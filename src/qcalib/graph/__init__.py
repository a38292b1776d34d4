"""
Floating-point graph representation and forward-pass runner.
"""

from qcalib.graph.io import load_graph
from qcalib.graph.network import Network
from qcalib.graph.spec import GraphSpec, InputSpec, LayerSpec, load_graph_spec, parse_graph_spec

__all__ = [
    "GraphSpec",
    "InputSpec",
    "LayerSpec",
    "Network",
    "load_graph",
    "load_graph_spec",
    "parse_graph_spec",
]
