from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional

from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from keyflow.logging import get_logger
from keyflow.storage.models import ProviderProfile, User

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    provider_id BIGINT NOT NULL UNIQUE,
    login TEXT NOT NULL,
    name TEXT,
    avatar_url TEXT,
    email TEXT,
    role TEXT NOT NULL DEFAULT 'user',
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""

_UPSERT = """
INSERT INTO users (provider_id, login, name, avatar_url, email)
VALUES (%s, %s, %s, %s, %s)
ON CONFLICT (provider_id) DO UPDATE SET
    login = EXCLUDED.login,
    name = EXCLUDED.name,
    avatar_url = EXCLUDED.avatar_url,
    email = COALESCE(EXCLUDED.email, users.email),
    updated_at = now()
RETURNING *
"""


class PostgresStore:
    """Postgres-backed user directory."""

    def __init__(self, dsn: str, *, min_size: int = 1, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        """Create the ``users`` table if it is missing."""

        with self._connect() as conn:
            conn.execute(_SCHEMA)

    @staticmethod
    def _user_from_row(row: Mapping[str, Any]) -> User:
        now = datetime.now(timezone.utc)
        return User(
            id=str(row["id"]),
            provider_id=int(row["provider_id"]),
            login=row["login"],
            name=row.get("name"),
            avatar_url=row.get("avatar_url"),
            email=row.get("email"),
            role=row.get("role") or "user",
            created_at=row.get("created_at") or now,
            updated_at=row.get("updated_at") or now,
        )

    def upsert_user(self, profile: ProviderProfile) -> User:
        email = profile.email.lower() if profile.email else None
        with self._connect() as conn:
            row = conn.execute(
                _UPSERT,
                (profile.provider_id, profile.login, profile.name, profile.avatar_url, email),
            ).fetchone()
        return self._user_from_row(row)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = %s", (user_id,)).fetchone()
        return self._user_from_row(row) if row else None

    def get_user_by_login(self, login: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE login = %s ORDER BY created_at LIMIT 1", (login,)
            ).fetchone()
        return self._user_from_row(row) if row else None

    def update_user_role(self, user_id: str, role: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "UPDATE users SET role = %s, updated_at = now() WHERE id = %s RETURNING *",
                (role, user_id),
            ).fetchone()
        return self._user_from_row(row) if row else None

    def list_users(self, limit: int = 100) -> List[User]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM users ORDER BY created_at DESC LIMIT %s", (limit,)
            ).fetchall()
        return [self._user_from_row(row) for row in rows]

    def close(self) -> None:
        self.pool.close()
