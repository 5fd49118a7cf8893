from __future__ import annotations


class CycleLoadError(Exception):
    pass


class ConfigError(CycleLoadError):
    pass


class ReportWriteError(CycleLoadError):
    """Persisting a finished report failed; the measurements themselves are intact."""
