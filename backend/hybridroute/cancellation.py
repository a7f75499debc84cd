"""Request sequence numbers and the cancellation tokens derived from them.

A build or repair captures a token when it starts. Before applying any
result it checks the token; a newer request bumps the sequence and every
older token goes stale. Nothing in flight is aborted, late results are
just dropped.
"""

from dataclasses import dataclass

from hybridroute.errors import StaleRequest


class RequestSequence:
    """Monotonic counter shared by one planning session."""

    def __init__(self):
        self.current = 0

    def next_token(self) -> "CancellationToken":
        self.current += 1
        return CancellationToken(sequence=self, number=self.current)

    def current_token(self) -> "CancellationToken":
        """Token for follow-up work that must not supersede the running request."""
        return CancellationToken(sequence=self, number=self.current)

    def invalidate(self) -> None:
        self.current += 1


@dataclass(frozen=True)
class CancellationToken:
    sequence: RequestSequence
    number: int

    def is_stale(self) -> bool:
        return self.number != self.sequence.current

    def raise_if_stale(self) -> None:
        if self.is_stale():
            raise StaleRequest(self.number, self.sequence.current)
