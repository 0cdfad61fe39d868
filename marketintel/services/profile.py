"""User profile loading and the session-wide profile cache.

ProfileStore keeps profiles in memory and remembers each user's display
name and avatar URL in a small SQLite file, so a fresh process can show
them before the backend answers. All writes go through the store's methods,
which notify subscribers after the change is applied.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from marketintel.data.client import run_query
from marketintel.errors import BackendError
from marketintel.services.rbac import Role, normalize_role

logger = logging.getLogger(__name__)

AVATAR_BUCKET = "avatars"

ProfileListener = Callable[[str, "UserProfile | None"], None]

_SCHEMA = """
CREATE TABLE IF NOT EXISTS profile_cache (
    user_id TEXT NOT NULL,
    field   TEXT NOT NULL,
    value   TEXT NOT NULL,
    PRIMARY KEY (user_id, field)
)
"""


@dataclass(frozen=True)
class SessionUser:
    """The signed-in user as reported by the auth provider."""

    id: str
    email: str | None = None
    avatar_url: str | None = None


@dataclass(frozen=True)
class UserProfile:
    """Display profile and subscription role of a user."""

    id: str
    name: str
    email: str | None
    avatar: str | None
    role: Role
    is_active: bool


ANONYMOUS = UserProfile(
    id="", name="", email=None, avatar=None, role=Role.FREEMIUM, is_active=False,
)


class ProfileStore:
    """Observable profile cache keyed by user id.

    Args:
        db_path: SQLite file for persisted names and avatars. None keeps
            everything in memory.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._lock = threading.RLock()
        self._profiles: dict[str, UserProfile] = {}
        self._listeners: list[ProfileListener] = []
        self._db_path = db_path
        if db_path is not None:
            db_path.parent.mkdir(parents=True, exist_ok=True)
            with self._connect() as conn:
                conn.execute(_SCHEMA)

    # -- Persistence -------------------------------------------------------

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Connection that commits on success and is always closed."""
        assert self._db_path is not None
        conn = sqlite3.connect(self._db_path)
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _persist(self, user_id: str, field: str, value: str) -> None:
        if self._db_path is None:
            return
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO profile_cache (user_id, field, value) "
                "VALUES (?, ?, ?)",
                (user_id, field, value),
            )

    def _forget(self, user_id: str, fields: tuple[str, ...]) -> None:
        if self._db_path is None:
            return
        placeholders = ", ".join("?" for _ in fields)
        with self._connect() as conn:
            conn.execute(
                f"DELETE FROM profile_cache WHERE user_id = ? "
                f"AND field IN ({placeholders})",
                (user_id, *fields),
            )

    def _persisted(self, user_id: str, field: str) -> str | None:
        if self._db_path is None:
            return None
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM profile_cache WHERE user_id = ? AND field = ?",
                (user_id, field),
            ).fetchone()
        return row[0] if row else None

    def cached_name(self, user_id: str) -> str | None:
        return self._persisted(user_id, "name")

    def cached_avatar(self, user_id: str) -> str | None:
        return self._persisted(user_id, "avatar")

    # -- Cache API ---------------------------------------------------------

    def get(self, user_id: str) -> UserProfile | None:
        with self._lock:
            return self._profiles.get(user_id)

    def put(self, profile: UserProfile) -> None:
        """Cache a profile and persist its name and avatar."""
        with self._lock:
            self._profiles[profile.id] = profile
            self._persist(profile.id, "name", profile.name)
            if profile.avatar:
                self._persist(profile.id, "avatar", profile.avatar)
        self._notify(profile.id, profile)

    def update_avatar(self, user_id: str, avatar_url: str) -> UserProfile | None:
        """Replace the cached avatar URL. Returns the updated profile, if cached."""
        with self._lock:
            current = self._profiles.get(user_id)
            updated = replace(current, avatar=avatar_url) if current else None
            if updated is not None:
                self._profiles[user_id] = updated
            self._persist(user_id, "avatar", avatar_url)
        self._notify(user_id, updated)
        return updated

    def mark_stale(self, user_id: str) -> None:
        """Drop the cached profile and name after a profile edit; keep the avatar."""
        with self._lock:
            self._profiles.pop(user_id, None)
            self._forget(user_id, ("name",))
        self._notify(user_id, None)

    def invalidate(self, user_id: str) -> None:
        """Clear memory and persisted entries for a user (logout)."""
        with self._lock:
            self._profiles.pop(user_id, None)
            self._forget(user_id, ("name", "avatar"))
        logger.debug("Profile cache cleared for %s", user_id)
        self._notify(user_id, None)

    def subscribe(self, listener: ProfileListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unregisters it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, user_id: str, profile: UserProfile | None) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(user_id, profile)
            except Exception:
                logger.exception("Profile listener failed for %s", user_id)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _email_name(email: str | None) -> str | None:
    if not email:
        return None
    local = email.split("@")[0]
    return local or None


def _full_name(row: dict[str, Any], email: str | None) -> str:
    first = (row.get("first_name") or "").strip()
    last = (row.get("last_name") or "").strip()
    if first and last:
        return f"{first} {last}"
    return first or last or _email_name(email) or "User"


def fallback_profile(session: SessionUser | None, store: ProfileStore) -> UserProfile:
    """Profile to show before (or instead of) the backend profile.

    Uses the cached profile when present, otherwise the persisted name and
    avatar with the FREEMIUM role.
    """
    if session is None:
        return ANONYMOUS
    cached = store.get(session.id)
    if cached is not None:
        return cached
    return UserProfile(
        id=session.id,
        name=store.cached_name(session.id) or _email_name(session.email) or "User",
        email=session.email,
        avatar=store.cached_avatar(session.id),
        role=Role.FREEMIUM,
        is_active=True,
    )


def load_profile(
    backend: Any, session: SessionUser | None, store: ProfileStore,
) -> UserProfile:
    """Return the user's profile, reading ``user_profiles`` on a cache miss.

    A failed or empty read leaves the cache untouched and returns the
    fallback profile.
    """
    if session is None:
        return ANONYMOUS
    cached = store.get(session.id)
    if cached is not None:
        return cached

    try:
        rows = run_query(
            backend.table("user_profiles")
            .select("first_name, last_name, user_avatar, role, is_active")
            .eq("id", session.id)
            .limit(1),
            "Profile query",
        )
    except BackendError as e:
        logger.warning("Using fallback profile for %s: %s", session.id, e)
        return fallback_profile(session, store)

    if not rows:
        logger.info("No stored profile for %s", session.id)
        return fallback_profile(session, store)

    row = rows[0]
    profile = UserProfile(
        id=session.id,
        name=_full_name(row, session.email),
        email=session.email,
        avatar=row.get("user_avatar") or session.avatar_url or None,
        role=normalize_role(row.get("role")),
        is_active=row.get("is_active") is not False,
    )
    store.put(profile)
    return profile


def save_profile(
    backend: Any,
    session: SessionUser,
    fields: dict[str, Any],
    store: ProfileStore,
    now: datetime | None = None,
) -> None:
    """Upsert profile fields and mark the cached profile stale."""
    stamp = (now or datetime.now(UTC)).isoformat()
    run_query(
        backend.table("user_profiles").upsert(
            {"id": session.id, **fields, "updated_at": stamp},
        ),
        "Profile update",
    )
    store.mark_stale(session.id)


def upload_avatar(
    backend: Any,
    session: SessionUser,
    filename: str,
    content: bytes,
    store: ProfileStore,
    now: datetime | None = None,
) -> str:
    """Upload an avatar image and point the profile at it.

    The object is stored as ``{user_id}/{user_id}.{ext}`` in the avatars
    bucket, overwriting any previous upload.

    Returns:
        The public avatar URL, with a timestamp query to defeat caching.

    Raises:
        BackendError: If the upload or the profile update fails.
    """
    stamp = now or datetime.now(UTC)
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else "png"
    path = f"{session.id}/{session.id}.{ext}"

    bucket = backend.storage.from_(AVATAR_BUCKET)
    try:
        bucket.upload(path, content, {"upsert": "true"})
        public_url = str(bucket.get_public_url(path)).rstrip("?")
    except Exception as e:
        logger.error("Avatar upload failed for %s: %s", session.id, e)
        raise BackendError(f"Avatar upload failed: {e}") from e

    avatar_url = f"{public_url}?t={int(stamp.timestamp() * 1000)}"
    run_query(
        backend.table("user_profiles")
        .update({"user_avatar": avatar_url, "updated_at": stamp.isoformat()})
        .eq("id", session.id),
        "Avatar update",
    )
    store.update_avatar(session.id, avatar_url)
    logger.info("Avatar updated for %s", session.id)
    return avatar_url
