"""Ready-made graphs built on stepgraph."""

from stepgraph.templates.deck_generator import (
    DeckServices,
    build_deck_graph,
    deck_initial_state,
    deck_schema,
)

__all__ = [
    "DeckServices",
    "build_deck_graph",
    "deck_initial_state",
    "deck_schema",
]
