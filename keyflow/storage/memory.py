from __future__ import annotations

import threading
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

from keyflow.logging import get_logger
from keyflow.storage.models import ProviderProfile, User


class MemoryStore:
    """In-process user directory for tests and local development."""

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self._lock = threading.RLock()
        self.users: Dict[str, User] = {}
        self._by_provider_id: Dict[int, str] = {}

    def upsert_user(self, profile: ProviderProfile) -> User:
        email = profile.email.lower() if profile.email else None
        now = datetime.now(timezone.utc)
        with self._lock:
            user_id = self._by_provider_id.get(profile.provider_id)
            if user_id is None:
                user = User(
                    id=str(uuid.uuid4()),
                    provider_id=profile.provider_id,
                    login=profile.login,
                    name=profile.name,
                    avatar_url=profile.avatar_url,
                    email=email,
                    created_at=now,
                    updated_at=now,
                )
                self._by_provider_id[profile.provider_id] = user.id
                self.logger.info("user_created", user_id=user.id, login=user.login)
            else:
                existing = self.users[user_id]
                user = replace(
                    existing,
                    login=profile.login,
                    name=profile.name,
                    avatar_url=profile.avatar_url,
                    # a known email is never regressed to empty
                    email=email or existing.email,
                    updated_at=now,
                )
            self.users[user.id] = user
            return user

    def get_user(self, user_id: str) -> Optional[User]:
        with self._lock:
            return self.users.get(user_id)

    def get_user_by_login(self, login: str) -> Optional[User]:
        with self._lock:
            for user in self.users.values():
                if user.login == login:
                    return user
        return None

    def update_user_role(self, user_id: str, role: str) -> Optional[User]:
        with self._lock:
            user = self.users.get(user_id)
            if not user:
                return None
            updated = replace(user, role=role, updated_at=datetime.now(timezone.utc))
            self.users[user_id] = updated
            return updated

    def list_users(self, limit: int = 100) -> List[User]:
        with self._lock:
            users = sorted(self.users.values(), key=lambda u: u.created_at, reverse=True)
        return users[:limit]
