"""
Append-only change audit log.

One line per server whose usage and quota were both rewritten. Lines are
written under a lock so concurrent workers never interleave mid-line.
"""

import threading
from pathlib import Path
from typing import List, Union

from .models import ChangeRecord


class AuditLog:
    """Thread-safe append-only writer for change records.

    Records already on disk are never rewritten or removed; rotation is left
    to the host's log tooling.
    """

    def __init__(self, path: Union[str, Path]):
        """Initialize the audit log.

        Args:
            path: File to append to; parent directories are created on first write
        """
        self.path = Path(path)
        self._lock = threading.Lock()
        self._records: List[ChangeRecord] = []

    @property
    def records(self) -> List[ChangeRecord]:
        """Records appended through this instance, in write order."""
        with self._lock:
            return list(self._records)

    def append(self, record: ChangeRecord) -> None:
        """Append one record as a single line.

        Args:
            record: Change to record
        """
        line = record.format_line() + "\n"
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'a', encoding='utf-8') as f:
                f.write(line)
                f.flush()
            self._records.append(record)

    def read_lines(self) -> List[str]:
        """Read every line currently in the log file."""
        if not self.path.exists():
            return []
        with open(self.path, 'r', encoding='utf-8') as f:
            return [line.rstrip("\n") for line in f if line.strip()]
