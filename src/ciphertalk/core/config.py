# CipherTalk: Runtime Configuration
#
# Settings are read from the process environment. A ``.env`` file in the
# working directory is loaded first (python-dotenv) without overriding
# variables that are already set.
#
#   CIPHERTALK_DATA_DIR           - directory for local state (default: data)
#   CIPHERTALK_KEY_DB             - key store SQLite path (default: <data_dir>/keys.db)
#   CIPHERTALK_RELAY_URL          - relay WebSocket URL
#   CIPHERTALK_DIRECTORY_TIMEOUT  - seconds to wait for a public-key response
#   CIPHERTALK_LOG_LEVEL          - logging level name (default: INFO)
#   CIPHERTALK_LOG_JSON           - "1"/"true" for JSON log lines

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import find_dotenv, load_dotenv

DEFAULT_DATA_DIR = "data"
DEFAULT_RELAY_URL = "ws://127.0.0.1:8765/ws"
DEFAULT_DIRECTORY_TIMEOUT = 10.0
DEFAULT_LOG_LEVEL = "INFO"

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Resolved runtime settings for clients and the dev relay."""

    data_dir: Path = Path(DEFAULT_DATA_DIR)
    key_db_path: Path = Path(DEFAULT_DATA_DIR) / "keys.db"
    relay_url: str = DEFAULT_RELAY_URL
    directory_timeout: float = DEFAULT_DIRECTORY_TIMEOUT
    log_level: str = DEFAULT_LOG_LEVEL
    log_json: bool = False

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        dotenv: bool = True,
    ) -> "Settings":
        """Build settings from ``environ`` (default: ``os.environ``).

        Raises:
            ValueError: If the directory timeout is not a positive number.
        """
        if environ is None:
            if dotenv:
                load_dotenv(find_dotenv(usecwd=True), override=False)
            environ = os.environ

        data_dir = Path(environ.get("CIPHERTALK_DATA_DIR") or DEFAULT_DATA_DIR)
        key_db = environ.get("CIPHERTALK_KEY_DB")

        raw_timeout = environ.get("CIPHERTALK_DIRECTORY_TIMEOUT", "")
        if raw_timeout:
            try:
                timeout = float(raw_timeout)
            except ValueError:
                raise ValueError(
                    f"CIPHERTALK_DIRECTORY_TIMEOUT must be a number, got {raw_timeout!r}"
                )
            if timeout <= 0:
                raise ValueError("CIPHERTALK_DIRECTORY_TIMEOUT must be positive")
        else:
            timeout = DEFAULT_DIRECTORY_TIMEOUT

        return cls(
            data_dir=data_dir,
            key_db_path=Path(key_db) if key_db else data_dir / "keys.db",
            relay_url=environ.get("CIPHERTALK_RELAY_URL") or DEFAULT_RELAY_URL,
            directory_timeout=timeout,
            log_level=(environ.get("CIPHERTALK_LOG_LEVEL") or DEFAULT_LOG_LEVEL).upper(),
            log_json=environ.get("CIPHERTALK_LOG_JSON", "").strip().lower() in _TRUE_VALUES,
        )
