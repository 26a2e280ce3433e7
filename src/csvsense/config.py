"""Engine configuration.

All tunables live on :class:`EngineConfig`. Defaults are safe for local use;
deployments override them through ``CSVSENSE_*`` environment variables via
:meth:`EngineConfig.from_env`.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields


DEFAULT_TIMEOUT_MS = 30_000
MAX_FILE_SIZE_BYTES = 500 * 1024 * 1024


@dataclass(frozen=True)
class EngineConfig:
    """Configuration shared by the orchestrator and its agents."""

    # Timeouts (milliseconds)
    default_timeout_ms: int = DEFAULT_TIMEOUT_MS
    upload_timeout_ms: int = 60_000

    # Upload and parsing limits
    max_file_size_bytes: int = MAX_FILE_SIZE_BYTES
    sample_rows: int = 1000
    max_parse_rows: int = 200_000
    profile_ttl_hours: int = 24

    # Planning
    fallback_confidence_threshold: float = 0.6

    # Health reporting
    health_min_success_rate: float = 0.95
    health_max_errors: int = 10

    # Upload retries
    upload_retry_attempts: int = 2
    upload_retry_delay_ms: int = 250

    # Security scanning
    pii_confidence_threshold: float = 0.5

    @classmethod
    def from_env(cls, prefix: str = "CSVSENSE_") -> "EngineConfig":
        """Build a config, overriding defaults from the environment.

        ``CSVSENSE_SAMPLE_ROWS=500`` overrides ``sample_rows`` and so on.
        Values that are empty, unparseable or not positive keep the default.
        """
        overrides: dict[str, int | float] = {}
        for f in fields(cls):
            raw = os.environ.get(prefix + f.name.upper())
            if raw is None or raw.strip() == "":
                continue
            parsed = _parse_positive(raw, float if f.type == "float" else int)
            if parsed is not None:
                overrides[f.name] = parsed
        return cls(**overrides)


def _parse_positive(raw: str, kind: type) -> int | float | None:
    try:
        value = kind(raw.strip())
    except ValueError:
        return None
    return value if value > 0 else None
