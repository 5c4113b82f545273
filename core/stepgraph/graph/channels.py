"""
Channel Schema - Named state slots and how updates merge into them.

Every piece of graph state lives in a channel. A channel has:
1. A name
2. A default factory (called once per fresh state)
3. A reducer: reducer(previous, incoming) -> new value

Reducers must be total and must hand back ``previous`` untouched when
``incoming`` is None. That is the "last write wins unless absent" contract
every node relies on: a node only returns the channels it changed.

Because None means "absent", a node resets a channel by writing CLEAR
instead. The schema maps CLEAR back to the channel's default without
consulting the reducer, which is how a recovered node empties the error
channel:

    return {"ok": True, "error": CLEAR}

Example:
    schema = (
        ChannelSchema()
        .define("topic", default_factory=str)
        .define("slides", default_factory=list)
        .define("messages", default_factory=list, reducer=append)
        .define("error")
    )

    state = schema.initial_state()
    state = schema.merge(state, {"topic": "solar"})
"""

from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from stepgraph.errors import DuplicateChannelError, InvalidUpdateError

Reducer = Callable[[Any, Any], Any]


class _Clear:
    """Update value that resets a channel to its default."""

    def __repr__(self) -> str:
        return "CLEAR"


CLEAR = _Clear()


# === REDUCERS ===


def last_value(previous: Any, incoming: Any) -> Any:
    """Replace the value unless the update is absent."""
    return previous if incoming is None else incoming


def append(previous: Any, incoming: Any) -> Any:
    """Concatenate list updates onto the current list."""
    if incoming is None:
        return previous
    current = list(previous or [])
    if isinstance(incoming, list | tuple):
        current.extend(incoming)
    else:
        current.append(incoming)
    return current


def merge_dict(previous: Any, incoming: Any) -> Any:
    """Shallow dict union; keys in the update win."""
    if incoming is None:
        return previous
    return {**(previous or {}), **incoming}


def _none() -> None:
    return None


# === SNAPSHOT ===


class Snapshot(Mapping[str, Any]):
    """
    Immutable point-in-time view of every channel value.

    A snapshot is never changed after it is created; merging produces a new
    one. Item assignment and deletion raise TypeError.
    """

    __slots__ = ("_values",)

    def __init__(self, values: Mapping[str, Any] | None = None):
        object.__setattr__(self, "_values", dict(values or {}))

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __setattr__(self, name: str, value: Any) -> None:
        raise TypeError("Snapshot is immutable")

    def __repr__(self) -> str:
        return f"Snapshot({self._values!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Snapshot):
            return self._values == other._values
        if isinstance(other, Mapping):
            return self._values == dict(other)
        return NotImplemented

    def to_dict(self) -> dict[str, Any]:
        """Shallow copy as a plain dict."""
        return dict(self._values)


# === SCHEMA ===


@dataclass(frozen=True)
class Channel:
    """A named state slot."""

    name: str
    default_factory: Callable[[], Any] = _none
    reducer: Reducer = last_value

    def default(self) -> Any:
        return self.default_factory()

    def reduce(self, previous: Any, incoming: Any) -> Any:
        return self.reducer(previous, incoming)


class ChannelSchema:
    """The set of channels a graph's state is made of."""

    def __init__(self, channels: Iterable[Channel] | None = None):
        self._channels: dict[str, Channel] = {}
        for channel in channels or []:
            self._add(channel)

    def _add(self, channel: Channel) -> None:
        if channel.name in self._channels:
            raise DuplicateChannelError(channel.name)
        self._channels[channel.name] = channel

    def define(
        self,
        name: str,
        default_factory: Callable[[], Any] | None = None,
        reducer: Reducer = last_value,
    ) -> "ChannelSchema":
        """Add a channel. Returns the schema so calls can be chained."""
        self._add(Channel(name=name, default_factory=default_factory or _none, reducer=reducer))
        return self

    @property
    def channel_names(self) -> list[str]:
        return list(self._channels)

    def __contains__(self, name: object) -> bool:
        return name in self._channels

    def get(self, name: str) -> Channel | None:
        return self._channels.get(name)

    def initial_state(self) -> Snapshot:
        """Every channel at its default value."""
        return Snapshot({name: ch.default() for name, ch in self._channels.items()})

    def merge(self, current: Mapping[str, Any], partial: Mapping[str, Any] | None) -> Snapshot:
        """
        Fold a partial update into the current state.

        Only channels present in ``partial`` are reduced; the rest carry over
        unchanged. A CLEAR value resets its channel to the default. The
        inputs are never modified.

        Raises:
            InvalidUpdateError: if ``partial`` is not a mapping or names a
                channel the schema does not define
        """
        if partial is None:
            return current if isinstance(current, Snapshot) else Snapshot(current)
        if not isinstance(partial, Mapping):
            raise InvalidUpdateError(
                f"State update must be a mapping of channel names, got {type(partial).__name__}"
            )

        unknown = [key for key in partial if key not in self._channels]
        if unknown:
            raise InvalidUpdateError(
                f"State update names undefined channels {unknown}; "
                f"known channels: {self.channel_names}"
            )

        values = dict(current)
        for key, incoming in partial.items():
            channel = self._channels[key]
            if incoming is CLEAR:
                values[key] = channel.default()
                continue
            previous = values[key] if key in values else channel.default()
            values[key] = channel.reduce(previous, incoming)
        return Snapshot(values)
