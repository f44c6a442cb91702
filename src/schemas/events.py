"""User-facing run events: log entries and progress snapshots."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum

from pydantic import BaseModel, Field


class LogLevel(StrEnum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class LogEntry(BaseModel):
    """One line of the run log shown to the user."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    message: str
    level: LogLevel = LogLevel.INFO


@dataclass(frozen=True)
class PipelineProgress:
    """Progress of a pipeline run after an item finishes."""

    total: int
    completed: int
    current_index: int

    @property
    def percent(self) -> int:
        if self.total <= 0:
            return 0
        # half up, so 1 of 8 reads 13%
        return math.floor(100 * self.completed / self.total + 0.5)
