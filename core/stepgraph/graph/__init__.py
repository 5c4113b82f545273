"""Graph structures: Channels, Nodes, Edges, and the Executor."""

from stepgraph.graph.builder import CompiledGraph, GraphBuilder, build_graph
from stepgraph.graph.channels import (
    CLEAR,
    Channel,
    ChannelSchema,
    Snapshot,
    append,
    last_value,
    merge_dict,
)
from stepgraph.graph.edge import END, START, ConditionalEdgeSpec, EdgeSpec
from stepgraph.graph.executor import ExecutionResult, ExecutionStatus, GraphExecutor
from stepgraph.graph.node import ErrorValue, NodeContext, NodeSpec

__all__ = [
    # Channels
    "CLEAR",
    "Channel",
    "ChannelSchema",
    "Snapshot",
    "last_value",
    "append",
    "merge_dict",
    # Node
    "NodeSpec",
    "NodeContext",
    "ErrorValue",
    # Edge
    "START",
    "END",
    "EdgeSpec",
    "ConditionalEdgeSpec",
    # Graph
    "GraphBuilder",
    "CompiledGraph",
    "build_graph",
    # Executor
    "GraphExecutor",
    "ExecutionResult",
    "ExecutionStatus",
]
