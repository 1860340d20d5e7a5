"""
Dataclasses summarizing sync runs.
"""

from dataclasses import dataclass, field


@dataclass
class SyncSummary:
    """Result of synchronizing a single channel."""

    channel_id: str
    channel_name: str
    items_synced: int
    quota_units: int = 0


@dataclass
class SyncReport:
    """Aggregated result of a multi-channel sync run."""

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    items_synced: int = 0
    quota_units: int = 0
    breaker_reason: str | None = None
    errors: dict[str, str] = field(default_factory=dict)

    def record_success(self, summary: SyncSummary) -> None:
        self.succeeded += 1
        self.items_synced += summary.items_synced
        self.quota_units += summary.quota_units

    def record_failure(self, channel_id: str, error: str) -> None:
        self.failed += 1
        self.errors[channel_id] = error

    def record_skip(self) -> None:
        self.skipped += 1
