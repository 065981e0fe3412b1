from __future__ import annotations

from typing import List, Optional, Sequence, Tuple


class StewardError(RuntimeError):
    pass


class ConfigError(StewardError):
    """Malformed profile tree, item definition or plugin discovery."""


class ItemValidationError(StewardError):
    pass


class ProbeError(StewardError):
    def __init__(self, item_id: str, message: str):
        super().__init__(f"{item_id}: {message}")
        self.item_id = item_id
        self.detail = message


class ApplyError(StewardError):
    def __init__(self, item_id: str, message: str):
        super().__init__(f"{item_id}: {message}")
        self.item_id = item_id
        self.detail = message


class CleanupError(StewardError):
    """Raised after a strict cleanup pass with one or more item failures."""

    def __init__(self, failures: Sequence[Tuple[str, str]]):
        self.failures: List[Tuple[str, str]] = list(failures)
        joined = "; ".join(f"{item_id}: {msg}" for item_id, msg in self.failures)
        super().__init__(f"Cleanup failed for {len(self.failures)} item(s): {joined}")


class CommandError(StewardError):
    def __init__(self, argv: Sequence[str], returncode: int, stderr: str, message: Optional[str] = None):
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message or f"Command failed ({returncode}): {' '.join(self.argv)}\n{stderr}")
