from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from runwrap.util.errors import CommandExecutionError
from runwrap.util.time import duration_sec


@dataclass(frozen=True, slots=True)
class CommandResult:
    exit_code: int
    start_time: datetime
    exit_time: datetime

    @property
    def run_time(self) -> timedelta:
        return self.exit_time - self.start_time

    @property
    def run_time_sec(self) -> float:
        return duration_sec(self.start_time, self.exit_time)

    @property
    def is_success(self) -> bool:
        return self.exit_code == 0

    def ensure_success(self) -> None:
        if not self.is_success:
            raise CommandExecutionError(self.exit_code)
