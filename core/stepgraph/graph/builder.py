"""
Graph Builder - Declares nodes and edges, validates, and compiles.

Example:
    builder = GraphBuilder(schema, graph_id="deck-generator")
    builder.add_node("research_market", research_market)
    builder.add_node("create_outline", create_outline)
    builder.add_node("error_handler", handle_error)

    builder.add_edge(START, "research_market")
    builder.add_conditional_edge(
        "research_market",
        check_error,
        {"error": "error_handler", "success": "create_outline"},
    )
    builder.add_edge("create_outline", END)
    builder.add_edge("error_handler", END)

    graph = builder.compile()

Graph-definition mistakes are raised as soon as they can be detected:
registration errors on the add_* call, reachability and outcome coverage
in validate(). A compiled graph is immutable and safe to share between
concurrent sessions.

Cycles are allowed (for example a bounded retry loop back through an
error handler). Termination is the graph author's responsibility: every
cycle must eventually take an exit outcome. ``max_steps`` only aborts a
run that never converges.
"""

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from stepgraph.errors import (
    ConflictingEdgeError,
    DanglingOutcomeError,
    DuplicateNodeError,
    UnknownChannelError,
    UnknownNodeError,
    UnreachableNodeError,
    UntrackedStepError,
)
from stepgraph.graph.channels import ChannelSchema
from stepgraph.graph.edge import END, START, ConditionalEdgeSpec, DecisionFunction, EdgeSpec
from stepgraph.graph.node import NodeFunction, NodeSpec

logger = logging.getLogger(__name__)

DEFAULT_ERROR_CHANNEL = "error"


class CompiledGraph(BaseModel):
    """
    Validated, immutable graph ready for execution.

    Holds the channel schema, the node table (id -> NodeSpec), and at most
    one outgoing edge per node.
    """

    id: str
    state_schema: ChannelSchema
    nodes: dict[str, NodeSpec]
    entry_node: str
    edges: dict[str, EdgeSpec] = Field(default_factory=dict)
    conditional_edges: dict[str, ConditionalEdgeSpec] = Field(default_factory=dict)
    error_channel: str = DEFAULT_ERROR_CHANNEL

    # Progress reporting
    progress_steps: tuple[str, ...] | None = None
    step_channel: str | None = None

    # Execution limits
    max_steps: int | None = Field(
        default=None, description="Maximum node executions per run; None uses the runtime config"
    )

    description: str = ""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    def get_node(self, node_id: str) -> NodeSpec | None:
        """Get a node by ID."""
        return self.nodes.get(node_id)

    def get_outgoing_edge(self, node_id: str) -> EdgeSpec | ConditionalEdgeSpec | None:
        """The single edge leaving a node, or None if the node ends the run."""
        return self.conditional_edges.get(node_id) or self.edges.get(node_id)

    def successors(self, node_id: str) -> list[str]:
        edge = self.get_outgoing_edge(node_id)
        return edge.targets if edge is not None else [END]

    def describe(self) -> str:
        """Human-readable outline of the graph."""
        lines = [f"Graph '{self.id}' ({len(self.nodes)} nodes, entry: {self.entry_node})"]
        lines.append(f"  channels: {', '.join(self.state_schema.channel_names)}")
        for node_id, node in self.nodes.items():
            edge = self.get_outgoing_edge(node_id)
            if isinstance(edge, ConditionalEdgeSpec):
                routes = ", ".join(f"{o} -> {t}" for o, t in edge.outcomes.items())
                lines.append(f"  {node_id} ?[{routes}]")
            else:
                target = edge.target if edge is not None else END
                lines.append(f"  {node_id} -> {target}")
            if node.description:
                lines.append(f"      {node.description}")
        return "\n".join(lines)


class GraphBuilder:
    """Mutable graph definition. Call compile() to get a CompiledGraph."""

    def __init__(
        self,
        schema: ChannelSchema,
        graph_id: str = "graph",
        error_channel: str = DEFAULT_ERROR_CHANNEL,
        description: str = "",
    ):
        self.schema = schema
        self.graph_id = graph_id
        self.error_channel = error_channel
        self.description = description
        self.entry_node: str | None = None
        self._nodes: dict[str, NodeSpec] = {}
        self._edges: dict[str, EdgeSpec] = {}
        self._conditional_edges: dict[str, ConditionalEdgeSpec] = {}
        self._progress_steps: tuple[str, ...] | None = None
        self._step_channel: str | None = None

    # === REGISTRATION ===

    def add_node(self, node_id: str, fn: NodeFunction, description: str = "") -> "GraphBuilder":
        if node_id in (START, END):
            raise DuplicateNodeError(node_id, reason="is a reserved node id")
        if node_id in self._nodes:
            raise DuplicateNodeError(node_id)
        self._nodes[node_id] = NodeSpec.create(node_id, fn, description)
        return self

    def _check_source(self, source: str) -> None:
        if source not in self._nodes:
            raise UnknownNodeError(source, "edge source")
        if source in self._edges or source in self._conditional_edges:
            raise ConflictingEdgeError(source)

    def _check_target(self, target: str, context: str) -> None:
        if target != END and target not in self._nodes:
            raise UnknownNodeError(target, context)

    def add_edge(self, source: str, target: str, description: str = "") -> "GraphBuilder":
        """Add an unconditional edge. ``add_edge(START, node)`` sets the entry."""
        if source == START:
            if self.entry_node is not None:
                raise ConflictingEdgeError(START)
            return self.set_entry(target)
        self._check_source(source)
        self._check_target(target, f"target of edge from '{source}'")
        self._edges[source] = EdgeSpec(source=source, target=target, description=description)
        return self

    def add_conditional_edge(
        self,
        source: str,
        decide: DecisionFunction,
        outcomes: Mapping[str, str],
        declared_outcomes: Sequence[str] | None = None,
        description: str = "",
    ) -> "GraphBuilder":
        """Route out of ``source`` by calling ``decide(snapshot)``."""
        self._check_source(source)
        for outcome, target in outcomes.items():
            self._check_target(target, f"target of outcome '{outcome}' from '{source}'")
        self._conditional_edges[source] = ConditionalEdgeSpec(
            source=source,
            decide=decide,
            outcomes=dict(outcomes),
            declared_outcomes=list(declared_outcomes or []),
            description=description,
        )
        return self

    def set_entry(self, node_id: str) -> "GraphBuilder":
        self._check_target(node_id, "entry node")
        if node_id == END:
            raise UnknownNodeError(node_id, "entry node")
        self.entry_node = node_id
        return self

    def set_progress(self, steps: Sequence[str], step_channel: str | None = None) -> "GraphBuilder":
        """
        Report progress against a canonical step order.

        With ``step_channel`` the current step is read from that channel after
        each node; otherwise the node id itself is the step.
        """
        self._progress_steps = tuple(steps)
        self._step_channel = step_channel
        return self

    # === VALIDATION ===

    def _reachable(self) -> set[str]:
        reachable: set[str] = set()
        to_visit = [self.entry_node] if self.entry_node else []
        while to_visit:
            current = to_visit.pop()
            if current in reachable or current == END:
                continue
            reachable.add(current)
            edge = self._conditional_edges.get(current) or self._edges.get(current)
            if edge is not None:
                to_visit.extend(edge.targets)
        return reachable

    def validate(self) -> None:
        """
        Check the whole graph.

        Raises:
            UnknownNodeError: no entry node has been set
            UnknownChannelError: error or step channel missing from the schema
            UnreachableNodeError: some node cannot be reached from the entry
            DanglingOutcomeError: a declared decision outcome has no target
            UntrackedStepError: progress is reported by node id and some
                node is not one of the steps
        """
        if self.entry_node is None:
            raise UnknownNodeError(START, "no entry node set; call set_entry()")

        if self.error_channel not in self.schema:
            raise UnknownChannelError(self.error_channel, purpose="error channel")
        if self._step_channel is not None and self._step_channel not in self.schema:
            raise UnknownChannelError(self._step_channel, purpose="step channel")

        reachable = self._reachable()
        unreachable = [node_id for node_id in self._nodes if node_id not in reachable]
        if unreachable:
            raise UnreachableNodeError(unreachable, self.entry_node)

        if self._progress_steps is not None and self._step_channel is None:
            untracked = [node_id for node_id in self._nodes if node_id not in self._progress_steps]
            if untracked:
                raise UntrackedStepError(untracked, list(self._progress_steps))

        for source, edge in self._conditional_edges.items():
            missing = edge.unmapped_outcomes()
            if missing:
                raise DanglingOutcomeError(source, missing)

    def compile(self, max_steps: int | None = None) -> CompiledGraph:
        """Validate and freeze the graph."""
        self.validate()
        graph = CompiledGraph(
            id=self.graph_id,
            state_schema=self.schema,
            nodes=dict(self._nodes),
            entry_node=self.entry_node,
            edges=dict(self._edges),
            conditional_edges=dict(self._conditional_edges),
            error_channel=self.error_channel,
            progress_steps=self._progress_steps,
            step_channel=self._step_channel,
            max_steps=max_steps,
            description=self.description,
        )
        logger.debug(f"Compiled graph '{graph.id}' with {len(graph.nodes)} nodes")
        return graph


def build_graph(
    schema: ChannelSchema,
    nodes: Mapping[str, NodeFunction],
    edges: Mapping[str, Any],
    entry_node: str,
    graph_id: str = "graph",
    error_channel: str = DEFAULT_ERROR_CHANNEL,
) -> CompiledGraph:
    """
    Compile a graph from plain mappings.

    ``edges`` maps a source node to either a target id (unconditional) or a
    ``(decide, outcomes)`` pair (conditional).
    """
    builder = GraphBuilder(schema, graph_id=graph_id, error_channel=error_channel)
    for node_id, fn in nodes.items():
        builder.add_node(node_id, fn)
    builder.set_entry(entry_node)
    for source, route in edges.items():
        if isinstance(route, str):
            builder.add_edge(source, route)
        else:
            decide, outcomes = route
            builder.add_conditional_edge(source, decide, outcomes)
    return builder.compile()
