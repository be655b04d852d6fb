from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, Sequence

DEFAULT_MESSAGES: tuple[str, ...] = (
    "Hello World!",
    "Hello World! 1",
    "Hello World! 2",
    "Hello World! 3",
    "Hello World! 4",
    "Hello World! 5",
    "Hello World! 6",
    "Hello World! 7",
    "Hello World! 8",
    "Hello World! 9",
    "What is the meaning of life?",
    "where is the bathroom?",
    "zoo",
    "kangaroo",
    "erlang",
    "elixir",
    "bun",
    "mochi",
    "typescript",
    "javascript",
)


@dataclass(frozen=True)
class Corpus:
    """Ordered, read-only set of payloads sent by every endpoint in every burst."""

    messages: tuple[str, ...]
    payloads: tuple[bytes, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.messages:
            raise ValueError("Corpus must contain at least one message")
        object.__setattr__(
            self, "payloads", tuple(message.encode("utf-8") for message in self.messages)
        )

    def __len__(self) -> int:
        return len(self.messages)

    def __iter__(self) -> Iterator[bytes]:
        return iter(self.payloads)

    @classmethod
    def from_messages(cls, messages: Iterable[str]) -> "Corpus":
        return cls(messages=tuple(messages))


def default_corpus() -> Corpus:
    return Corpus(messages=DEFAULT_MESSAGES)


def load_corpus(path: str | Path | None) -> Corpus:
    """Read one message per line; blank lines are skipped."""
    if not path:
        return default_corpus()
    text = Path(path).read_text(encoding="utf-8")
    messages: Sequence[str] = [line for line in text.splitlines() if line.strip()]
    return Corpus.from_messages(messages)


__all__ = [
    "DEFAULT_MESSAGES",
    "Corpus",
    "default_corpus",
    "load_corpus",
]
