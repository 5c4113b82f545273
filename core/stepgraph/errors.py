"""
Error taxonomy for stepgraph.

Three families:
- GraphDefinitionError: raised while building or validating a graph,
  before anything executes.
- ExecutionIntegrityError: raised at run time when the graph author or the
  caller broke a contract. The run is aborted and the session cleared.
- UnknownStepError: a programmer error in progress reporting.

Errors raised by node functions are NOT part of this hierarchy. They are
captured as ErrorValue entries in the graph's error channel.
"""


class StepGraphError(Exception):
    """Base class for all stepgraph errors."""


# === GRAPH DEFINITION ===


class GraphDefinitionError(StepGraphError):
    """The graph or its channel schema is malformed."""


class DuplicateChannelError(GraphDefinitionError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Channel '{name}' is already defined")


class UnknownChannelError(GraphDefinitionError):
    def __init__(self, name: str, purpose: str = "channel"):
        self.name = name
        super().__init__(f"Unknown {purpose} '{name}': not defined in the channel schema")


class DuplicateNodeError(GraphDefinitionError):
    def __init__(self, node_id: str, reason: str = "already registered"):
        self.node_id = node_id
        super().__init__(f"Node '{node_id}' {reason}")


class UnknownNodeError(GraphDefinitionError):
    def __init__(self, node_id: str, context: str = ""):
        self.node_id = node_id
        suffix = f" ({context})" if context else ""
        super().__init__(f"Node '{node_id}' is not registered{suffix}")


class UnreachableNodeError(GraphDefinitionError):
    def __init__(self, node_ids: list[str], entry_node: str):
        self.node_ids = node_ids
        super().__init__(f"Nodes unreachable from entry '{entry_node}': {node_ids}")


class DanglingOutcomeError(GraphDefinitionError):
    def __init__(self, source: str, outcomes: list[str]):
        self.source = source
        self.outcomes = outcomes
        super().__init__(
            f"Conditional edge from '{source}' declares outcomes with no target: {outcomes}"
        )


class ConflictingEdgeError(GraphDefinitionError):
    def __init__(self, source: str):
        self.source = source
        super().__init__(
            f"Node '{source}' already has an outgoing edge; "
            "a node may originate exactly one static or conditional edge"
        )


class UntrackedStepError(GraphDefinitionError):
    """Progress is reported by node id, but some nodes are not in the step order."""

    def __init__(self, node_ids: list[str], steps: list[str]):
        self.node_ids = node_ids
        super().__init__(f"Nodes {node_ids} are missing from the progress steps {steps}")


# === EXECUTION INTEGRITY ===


class ExecutionIntegrityError(StepGraphError):
    """A run-time contract violation. Never recovered from."""


class UnmappedOutcomeError(ExecutionIntegrityError):
    def __init__(self, source: str, outcome: object, known: list[str]):
        self.source = source
        self.outcome = outcome
        super().__init__(
            f"Decision at '{source}' returned outcome {outcome!r}, "
            f"which is not in its outcome map {known}"
        )


class SessionAlreadyActiveError(ExecutionIntegrityError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session '{session_id}' already has an active execution")


class InvalidUpdateError(ExecutionIntegrityError):
    """A node returned something that cannot be merged into the state."""


class StepLimitExceededError(ExecutionIntegrityError):
    def __init__(self, max_steps: int, node_id: str):
        self.max_steps = max_steps
        self.node_id = node_id
        super().__init__(
            f"Execution exceeded {max_steps} steps (next node '{node_id}'); "
            "check the graph for a cycle that never converges"
        )


# === PROGRESS ===


class UnknownStepError(StepGraphError):
    def __init__(self, step: object, steps: list[str]):
        self.step = step
        super().__init__(f"Unknown step {step!r}; expected one of {steps}")
