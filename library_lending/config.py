"""
config.py

Defaults and loaders for fine configuration and logging.

Fine rates live in a small CSV (category,rate_per_day,period_days). Any category
not listed keeps its built-in preset.
"""

from __future__ import annotations
import logging
import pathlib
from typing import Dict, Optional, Union

import pandas as pd

from .exceptions import ValidationError
from .fine_policy import DEFAULT_POLICY_SETTINGS, FinePolicy
from .models import MaterialCategory

# Configuration
DEFAULT_DATA_DIR = pathlib.Path("library_data")
FINE_CONFIG_FILE = "fine_config.csv"
NOTIFICATIONS_ENABLED = True
LOG_FORMAT = "%(levelname)s: %(message)s"

FINE_CONFIG_COLUMNS = ["category", "rate_per_day", "period_days"]

logger = logging.getLogger("LibraryLending.config")


def setup_logging(level: int = logging.INFO) -> None:
    """Configure root logging for scripts; library modules only create named loggers."""
    logging.basicConfig(level=level, format=LOG_FORMAT)


def default_fine_policies() -> Dict[MaterialCategory, FinePolicy]:
    return {c: c.default_policy() for c in MaterialCategory}


def load_fine_policies(path: Optional[Union[str, pathlib.Path]] = None) -> Dict[MaterialCategory, FinePolicy]:
    """
    Load per-category fine policies from a CSV file.

    A missing file is not an error: the built-in presets are returned and a
    warning is logged. Rows for unknown categories are skipped.
    Raises ValidationError if a rate or period cannot be used.
    """
    policies = default_fine_policies()
    if path is None:
        path = DEFAULT_DATA_DIR / FINE_CONFIG_FILE
    path = pathlib.Path(path)
    if not path.exists():
        logger.warning("Fine config not found: %s (using defaults)", path)
        return policies

    df = pd.read_csv(path, dtype=str).fillna("")
    missing = [c for c in FINE_CONFIG_COLUMNS if c not in df.columns]
    if missing:
        raise ValidationError(f"Fine config {path} is missing columns: {', '.join(missing)}")

    for _, row in df.iterrows():
        name = str(row["category"]).strip().upper()
        if name not in MaterialCategory.__members__:
            logger.warning("Ignoring fine config row for unknown category %r", row["category"])
            continue
        period_raw = str(row["period_days"]).strip()
        try:
            period = int(period_raw)
        except ValueError:
            raise ValidationError(f"Invalid period_days for {name}: {period_raw!r}") from None
        policies[MaterialCategory[name]] = FinePolicy(str(row["rate_per_day"]).strip(), period)

    logger.info("Loaded fine config for %d categories from %s", len(df), path)
    return policies


def write_default_fine_config(path: Union[str, pathlib.Path]) -> pathlib.Path:
    """Write the built-in presets to `path` so they can be edited."""
    path = pathlib.Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    rows = [
        {"category": name, "rate_per_day": rate, "period_days": period}
        for name, (rate, period) in DEFAULT_POLICY_SETTINGS.items()
    ]
    pd.DataFrame(rows, columns=FINE_CONFIG_COLUMNS).to_csv(path, index=False)
    logger.info("Wrote default fine config to %s", path)
    return path
