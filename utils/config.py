"""
Application Configuration

Environment-driven runtime configuration. User-facing settings (target
currency, GST %) live in the document store, see core.records.Settings.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got '{raw}'")
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


@dataclass
class AppConfig:
    """Runtime configuration for the portfolio engine."""

    data_dir: Path = field(default_factory=lambda: Path("data"))
    log_level: str = "INFO"
    log_file: Optional[str] = None
    history_years: int = 5           # Valuation window (trailing years)
    chart_interval_days: int = 1     # Spacing between chart data points
    fetch_workers: int = 4           # Concurrent market-data requests

    @property
    def db_path(self) -> Path:
        return self.data_dir / "portfolio.db"

    @classmethod
    def from_env(cls) -> 'AppConfig':
        """Build configuration from environment variables."""
        return cls(
            data_dir=Path(os.getenv('PORTFOLIO_DATA_DIR', 'data')),
            log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
            log_file=os.getenv('LOG_FILE') or None,
            history_years=_env_int('PORTFOLIO_HISTORY_YEARS', 5),
            chart_interval_days=_env_int('PORTFOLIO_CHART_INTERVAL_DAYS', 1),
            fetch_workers=_env_int('PORTFOLIO_FETCH_WORKERS', 4),
        )
