"""Search data models."""

from array import array
from dataclasses import dataclass


@dataclass(frozen=True)
class Posting:
    """A posting represents a term occurrence in a document."""

    doc_key: str
    wdf: int = 0
    positions: array = None
    doc_length: int = 0

    def __post_init__(self) -> None:
        if self.positions is None:
            object.__setattr__(self, "positions", array("I"))

