"""Typed builder for ffmpeg -filter_complex graphs.

Graphs are assembled from FilterChain nodes (input pads -> filters -> output
pads) and validated before rendering, so a malformed graph (dangling label,
duplicate output, reference to an undefined pad) fails in Python instead of
inside ffmpeg.
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence, Tuple, Union

ArgValue = Union[str, int, float]

# Input stream specifiers such as "0:v", "3:a", "1:a:0"
_STREAM_SPEC = re.compile(r"^\d+:[vas](:\d+)?$")
_LABEL = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _format_value(value: ArgValue) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, float):
        text = f"{value:.6f}".rstrip("0").rstrip(".")
        return text or "0"
    return str(value)


@dataclass(frozen=True)
class Filter:
    """One ffmpeg filter with positional and keyword arguments."""

    name: str
    args: Tuple[Tuple[str, ArgValue], ...] = ()
    positional: Tuple[ArgValue, ...] = ()

    @classmethod
    def of(cls, name: str, *positional: ArgValue, **kwargs: ArgValue) -> "Filter":
        return cls(name=name, args=tuple(kwargs.items()), positional=tuple(positional))

    def render(self) -> str:
        parts = [_format_value(v) for v in self.positional]
        parts += [f"{k}={_format_value(v)}" for k, v in self.args]
        if not parts:
            return self.name
        return f"{self.name}={':'.join(parts)}"


@dataclass(frozen=True)
class FilterChain:
    """Linear chain of filters from input pads to output pads."""

    inputs: Tuple[str, ...]
    filters: Tuple[Filter, ...]
    outputs: Tuple[str, ...]

    def render(self) -> str:
        ins = "".join(f"[{p}]" for p in self.inputs)
        outs = "".join(f"[{p}]" for p in self.outputs)
        return f"{ins}{','.join(f.render() for f in self.filters)}{outs}"


class FilterGraphError(ValueError):
    """The graph is malformed."""


@dataclass
class FilterGraph:
    """Ordered collection of filter chains.

    Attributes:
        chains: Chains in declaration order
        final_outputs: Labels that are mapped to the output file (-map)
    """

    chains: List[FilterChain] = field(default_factory=list)
    final_outputs: List[str] = field(default_factory=list)

    def add(
        self,
        inputs: Sequence[str],
        filters: Iterable[Filter],
        outputs: Sequence[str],
    ) -> "FilterGraph":
        self.chains.append(FilterChain(tuple(inputs), tuple(filters), tuple(outputs)))
        return self

    def mark_output(self, label: str) -> "FilterGraph":
        self.final_outputs.append(label)
        return self

    @property
    def input_indices(self) -> List[int]:
        indices = set()
        for chain in self.chains:
            for pad in chain.inputs:
                if _STREAM_SPEC.match(pad):
                    indices.add(int(pad.split(":", 1)[0]))
        return sorted(indices)

    def validate(self) -> None:
        """Check labels are defined before use, unique, and all consumed.

        Raises:
            FilterGraphError: Describing the first problem found
        """
        if not self.chains:
            raise FilterGraphError("filter graph is empty")

        defined: dict = {}
        consumed = set()
        for position, chain in enumerate(self.chains):
            if not chain.filters:
                raise FilterGraphError(f"chain {position} has no filters")
            for pad in chain.inputs:
                if _STREAM_SPEC.match(pad):
                    continue
                if pad not in defined:
                    raise FilterGraphError(f"chain {position} reads undefined label [{pad}]")
                if pad in consumed:
                    raise FilterGraphError(f"label [{pad}] consumed more than once")
                consumed.add(pad)
            for pad in chain.outputs:
                if not _LABEL.match(pad):
                    raise FilterGraphError(f"invalid output label [{pad}]")
                if pad in defined:
                    raise FilterGraphError(f"duplicate output label [{pad}]")
                defined[pad] = position

        for label in self.final_outputs:
            if label not in defined:
                raise FilterGraphError(f"final output [{label}] is never produced")
            if label in consumed:
                raise FilterGraphError(f"final output [{label}] is also consumed inside the graph")

        dangling = set(defined) - consumed - set(self.final_outputs)
        if dangling:
            raise FilterGraphError(f"dangling output labels: {sorted(dangling)}")

    def render(self) -> str:
        """Validate and render to ffmpeg's -filter_complex syntax."""
        self.validate()
        return ";".join(chain.render() for chain in self.chains)

    def map_args(self) -> List[str]:
        args: List[str] = []
        for label in self.final_outputs:
            args.extend(["-map", f"[{label}]"])
        return args
