"""
Storage configuration parameters for mtsql.

Defines the database location, SQLite connection tuning and logging.
Values come from defaults, the process environment, or a .env file.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

JOURNAL_MODES = ("DELETE", "TRUNCATE", "PERSIST", "MEMORY", "WAL", "OFF")
SYNCHRONOUS_MODES = ("OFF", "NORMAL", "FULL", "EXTRA")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class StorageConfig:
    """Storage configuration parameters"""

    # Database
    db_path: Path = Path("data/merkletree.db")
    timeout: float = 30.0  # Busy timeout for locked database, seconds

    # SQLite tuning
    journal_mode: str = "WAL"
    synchronous: str = "NORMAL"

    # Logging
    log_level: str = "INFO"
    log_dir: Optional[Path] = None  # File logging disabled when None

    def __post_init__(self):
        """Normalize and check values"""
        self.db_path = Path(self.db_path)
        if self.log_dir is not None:
            self.log_dir = Path(self.log_dir)
        self.timeout = float(self.timeout)
        if self.timeout < 0:
            raise ValueError(f"timeout must be >= 0, got {self.timeout}")
        self.journal_mode = self.journal_mode.upper()
        if self.journal_mode not in JOURNAL_MODES:
            raise ValueError(f"Unsupported journal_mode: {self.journal_mode}")
        self.synchronous = self.synchronous.upper()
        if self.synchronous not in SYNCHRONOUS_MODES:
            raise ValueError(f"Unsupported synchronous mode: {self.synchronous}")
        self.log_level = self.log_level.upper()
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"Unsupported log_level: {self.log_level}")


# Environment variable -> StorageConfig field
ENV_VARS = {
    "MTSQL_DB_PATH": "db_path",
    "MTSQL_TIMEOUT": "timeout",
    "MTSQL_JOURNAL_MODE": "journal_mode",
    "MTSQL_SYNCHRONOUS": "synchronous",
    "MTSQL_LOG_LEVEL": "log_level",
    "MTSQL_LOG_DIR": "log_dir",
}


def load_config(env_file: Optional[str] = None, **overrides) -> StorageConfig:
    """
    Load configuration from the environment and an optional .env file.

    Variables already set in the process environment take precedence over
    the .env file. Keyword overrides take precedence over both.

    Args:
        env_file: Optional path to a .env file
        **overrides: StorageConfig fields to set explicitly

    Returns:
        StorageConfig instance
    """
    if env_file:
        if not Path(env_file).exists():
            raise FileNotFoundError(f"env file not found: {env_file}")
        load_dotenv(env_file, override=False)

    values = {}
    for var, field_name in ENV_VARS.items():
        raw = os.environ.get(var)
        if raw is None or raw == "":
            continue
        if field_name == "timeout":
            try:
                values[field_name] = float(raw)
            except ValueError:
                raise ValueError(f"{var} must be a number, got {raw!r}") from None
        else:
            values[field_name] = raw

    values.update({k: v for k, v in overrides.items() if v is not None})
    return StorageConfig(**values)
