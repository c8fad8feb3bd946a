# E2E Messaging: Local Key Store
#
# SQLite-backed storage for each local identity's RSA key pair:
#   - Two rows per identity: key_kind 'public' (base64 SPKI) and
#     'private' (base64 PKCS8)
#   - Rows are keyed by identity, so switching identities on one device
#     never reuses another identity's key material
#
# Security:
#   - Private keys stored as unencrypted PKCS8 in local SQLite
#   - Corrupted rows raise KeyStorageError; the store never regenerates
#     over existing material, since that would make self-sent history
#     unreadable
#   - WAL journal mode, thread-safe via threading.Lock
#
# Design:
#   - No network access
#   - Keys generated on first ensure_key_pair() for an identity

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.exceptions import KeyEncodingError, KeyStorageError
from .cipher_engine import KeyPair
from .key_codec import (
    export_private_key,
    export_public_key,
    fingerprint,
    import_private_key,
    import_public_key,
)

logger = logging.getLogger(__name__)

KIND_PUBLIC = "public"
KIND_PRIVATE = "private"


class KeyStore:
    """Persistent storage for local identity key pairs.

    Usage::

        store = KeyStore("data/keys.db")
        pair = store.ensure_key_pair("alice")
        encoded = store.export_public("alice")
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = Path(db_path) if db_path else Path("data/keys.db")
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_database()

    @contextmanager
    def _connect(self):
        """Open a WAL-mode SQLite connection; auto-closes on exit."""
        conn = sqlite3.connect(str(self.db_path), timeout=10)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_database(self):
        """Create tables if they don't exist."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS local_keys (
                    identity TEXT NOT NULL,
                    key_kind TEXT NOT NULL,
                    encoded_key TEXT NOT NULL,
                    created_at TEXT NOT NULL DEFAULT (datetime('now')),
                    PRIMARY KEY (identity, key_kind)
                )
            """)

    def _read_entries(self, conn, identity: str) -> Dict[str, str]:
        rows = conn.execute(
            "SELECT key_kind, encoded_key FROM local_keys WHERE identity = ?",
            (identity,),
        ).fetchall()
        return {r["key_kind"]: r["encoded_key"] for r in rows if r["encoded_key"]}

    @staticmethod
    def _import_pair(identity: str, entries: Dict[str, str]) -> KeyPair:
        try:
            private_key = import_private_key(entries[KIND_PRIVATE])
            public_key = import_public_key(entries[KIND_PUBLIC])
        except KeyEncodingError as exc:
            raise KeyStorageError(
                f"Stored key material for {identity!r} is not a valid key encoding"
            ) from exc
        return KeyPair(private_key=private_key, public_key=public_key)

    # ── Identity Keys ────────────────────────────────────────────────

    def ensure_key_pair(self, identity: str) -> KeyPair:
        """Load the key pair for ``identity``, generating it if absent.

        Raises:
            ValueError: If identity is empty.
            KeyStorageError: If both entries exist but cannot be imported.
        """
        if not identity:
            raise ValueError("identity must be a non-empty string")

        with self._lock:
            with self._connect() as conn:
                entries = self._read_entries(conn, identity)
                if KIND_PUBLIC in entries and KIND_PRIVATE in entries:
                    pair = self._import_pair(identity, entries)
                    logger.info(
                        "Loaded key pair for %s (fingerprint %s...)",
                        identity, fingerprint(pair.public_key)[:23],
                    )
                    return pair

                pair = KeyPair.generate()
                conn.execute(
                    "INSERT OR REPLACE INTO local_keys (identity, key_kind, encoded_key) "
                    "VALUES (?, ?, ?)",
                    (identity, KIND_PUBLIC, export_public_key(pair.public_key)),
                )
                conn.execute(
                    "INSERT OR REPLACE INTO local_keys (identity, key_kind, encoded_key) "
                    "VALUES (?, ?, ?)",
                    (identity, KIND_PRIVATE, export_private_key(pair.private_key)),
                )

                logger.info(
                    "Generated new key pair for %s (fingerprint %s...)",
                    identity, fingerprint(pair.public_key)[:23],
                )
                return pair

    def load_key_pair(self, identity: str) -> Optional[KeyPair]:
        """Load an existing key pair without generating one."""
        with self._lock:
            with self._connect() as conn:
                entries = self._read_entries(conn, identity)
        if KIND_PUBLIC not in entries or KIND_PRIVATE not in entries:
            return None
        return self._import_pair(identity, entries)

    def has_key_pair(self, identity: str) -> bool:
        with self._lock:
            with self._connect() as conn:
                entries = self._read_entries(conn, identity)
        return KIND_PUBLIC in entries and KIND_PRIVATE in entries

    def export_public(self, identity: str) -> Optional[str]:
        """Return the stored base64 SPKI public key for ``identity``."""
        with self._lock:
            with self._connect() as conn:
                return self._read_entries(conn, identity).get(KIND_PUBLIC)

    def list_identities(self) -> List[str]:
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT DISTINCT identity FROM local_keys ORDER BY identity",
                ).fetchall()
                return [r["identity"] for r in rows]

    # ── Statistics ───────────────────────────────────────────────────

    def stats(self) -> Dict[str, Any]:
        """Return key store statistics."""
        with self._lock:
            with self._connect() as conn:
                identities = conn.execute(
                    "SELECT COUNT(DISTINCT identity) FROM local_keys",
                ).fetchone()[0]
                return {
                    "db_path": str(self.db_path),
                    "identities": identities,
                }
