from __future__ import annotations

from dataclasses import dataclass, field


class StaleResultDiscarded(Exception):
    """The request behind a result was cancelled or superseded."""

    def __init__(self, field_id: str, sequence: int) -> None:
        self.field_id = field_id
        self.sequence = sequence
        super().__init__(
            f"Overlay request #{sequence} for field {field_id} is stale"
        )


@dataclass
class CancellationToken:
    """Identifies one overlay request for a field.

    Tokens are issued by `OverlayCache.issue_token`; issuing a newer token
    for the same field cancels the older one.
    """

    field_id: str
    sequence: int
    cancelled: bool = field(default=False)

    def cancel(self) -> None:
        self.cancelled = True

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise StaleResultDiscarded(self.field_id, self.sequence)
