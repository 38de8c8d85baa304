"""
Draft Session Store — TTL-governed persistence for builder sessions.

Sessions live in two tiers:

* **active** — refreshed on every write; lapses ``session_ttl_seconds``
  after the last one.
* **archive** — a lapsed session is demoted here with ``status=expired``
  and kept for ``archive_ttl_seconds`` so it can be resumed under a
  new id. After that it is purged.

Demotion happens lazily on read and eagerly in ``cleanup()``, which the
store runs from its own background sweep task between ``start()`` and
``close()`` (or inside ``async with store``).

Writes are guarded by an optimistic ``version`` counter: ``update``
refuses a document whose version differs from the stored one.

Two backends:
    InMemorySessionStore — dicts, for development and tests
    RedisSessionStore    — one JSON document per key in Redis
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from logging import getLogger
from typing import Any, Callable, Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import WatchError

from flowdraft.config.builder_config import BuilderConfig
from flowdraft.errors import SessionClosed, SessionConflict, SessionNotFound
from flowdraft.workflow.draft_model import (
    BuilderSession,
    SessionStatus,
    new_session_id,
    parse_iso,
    utcnow,
)

logger = getLogger(__name__)

Clock = Callable[[], datetime]


class SessionStore(ABC):
    """Interface shared by every session store backend."""

    def __init__(
        self,
        config: Optional[BuilderConfig] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._config = config or BuilderConfig.get_default_instance()
        self._clock: Clock = clock or utcnow
        self._sweep_task: Optional[asyncio.Task] = None

    @property
    def config(self) -> BuilderConfig:
        return self._config

    @property
    def ttl_seconds(self) -> int:
        return self._config.session_ttl_seconds

    @property
    def archive_ttl_seconds(self) -> int:
        return self._config.archive_ttl_seconds

    def now(self) -> datetime:
        return self._clock()

    # ========================================================================
    # Backend operations
    # ========================================================================

    @abstractmethod
    async def create(self, session: BuilderSession) -> BuilderSession:
        """Persist a new active session, stamping its TTL."""

    @abstractmethod
    async def get(self, session_id: str) -> Optional[BuilderSession]:
        """Active session, else archived session, else ``None``.

        A lapsed active session is archived and returned with
        ``status=expired``.
        """

    @abstractmethod
    async def update(self, session: BuilderSession) -> BuilderSession:
        """Write back the whole document and refresh its TTL.

        Raises ``SessionConflict`` when the stored version differs from
        ``session.version``, ``SessionClosed`` when the session lapsed
        and ``SessionNotFound`` when it is gone.
        """

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        """Remove a session from both tiers. ``True`` if anything was removed."""

    @abstractmethod
    async def list(self, include_expired: bool = False) -> List[BuilderSession]:
        """Sessions ordered by ``updated_at``, most recent first."""

    @abstractmethod
    async def cleanup(self) -> int:
        """Archive lapsed sessions and purge old archive entries.

        Returns how many sessions were archived or purged.
        """

    @abstractmethod
    async def stats(self) -> Dict[str, int]:
        ...

    async def _close_backend(self) -> None:
        return None

    # ========================================================================
    # Shared behaviour
    # ========================================================================

    async def resume(self, session_id: str) -> Optional[BuilderSession]:
        """Bring a session back to life.

        An active session just gets its TTL extended. An archived one is
        copied into a brand-new active session (new id, same draft and
        history plus a ``resumed`` entry) and removed from the archive.
        """
        session = await self.get(session_id)
        if session is None:
            return None

        if session.status == SessionStatus.ACTIVE:
            return await self.update(session)

        revived = session.model_copy(deep=True, update={
            "session_id": new_session_id(),
            "status": SessionStatus.ACTIVE,
            "version": 0,
        })
        revived.log_operation("resumed", previous_session_id=session_id)
        await self.create(revived)
        await self.delete(session_id)
        logger.info(f"[{revived.session_id}] Resumed from expired session {session_id}")
        return revived

    async def summaries(self, include_expired: bool = False) -> List[Dict[str, Any]]:
        return [s.summary() for s in await self.list(include_expired)]

    def _stamp_new(self, session: BuilderSession) -> None:
        now = self.now()
        session.created_at = now.isoformat()
        session.touch(self.ttl_seconds, now)

    def _archive_lapsed(self, session: BuilderSession, now: datetime) -> bool:
        """True once an archived session is past its retention window."""
        lapsed_at = parse_iso(session.expires_at)
        return now >= lapsed_at + timedelta(seconds=self.archive_ttl_seconds)

    @staticmethod
    def _sort_recent(sessions: List[BuilderSession]) -> List[BuilderSession]:
        return sorted(sessions, key=lambda s: parse_iso(s.updated_at), reverse=True)

    # ── Background sweep ──

    def start(self) -> None:
        """Start the background sweep task (idempotent)."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.get_running_loop().create_task(
            self._sweep_loop(), name=f"{type(self).__name__}-sweep",
        )
        logger.debug(
            f"{type(self).__name__} sweep started "
            f"(every {self._config.cleanup_interval_seconds}s)"
        )

    async def close(self) -> None:
        """Stop the sweep task and release backend resources."""
        task, self._sweep_task = self._sweep_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._close_backend()

    @property
    def sweeping(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def __aenter__(self) -> "SessionStore":
        self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _sweep_loop(self) -> None:
        interval = max(1, self._config.cleanup_interval_seconds)
        while True:
            await asyncio.sleep(interval)
            try:
                cleaned = await self.cleanup()
                if cleaned:
                    logger.info(f"Session sweep: {cleaned} session(s) archived or purged")
            except Exception as e:
                logger.error(f"Session sweep failed: {e}")


# ============================================================================
# In-memory backend
# ============================================================================


class InMemorySessionStore(SessionStore):
    """Session documents held in two dicts.

    Documents are stored serialized, so a caller mutating a session it
    fetched changes nothing until it calls ``update``.
    """

    def __init__(
        self,
        config: Optional[BuilderConfig] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        super().__init__(config, clock)
        self._active: Dict[str, Dict[str, Any]] = {}
        self._archive: Dict[str, Dict[str, Any]] = {}

    async def create(self, session: BuilderSession) -> BuilderSession:
        self._stamp_new(session)
        self._active[session.session_id] = session.model_dump(mode="json")
        return session

    async def get(self, session_id: str) -> Optional[BuilderSession]:
        now = self.now()
        data = self._active.get(session_id)
        if data is not None:
            session = BuilderSession.model_validate(data)
            if not session.is_expired(now):
                return session
            return self._demote(session)

        data = self._archive.get(session_id)
        if data is None:
            return None
        session = BuilderSession.model_validate(data)
        if self._archive_lapsed(session, now):
            del self._archive[session_id]
            return None
        return session

    async def update(self, session: BuilderSession) -> BuilderSession:
        now = self.now()
        data = self._active.get(session.session_id)
        if data is None:
            if session.session_id in self._archive:
                raise SessionClosed(f"Builder session '{session.session_id}' has expired")
            raise SessionNotFound(f"Builder session '{session.session_id}' not found")

        stored = BuilderSession.model_validate(data)
        if stored.is_expired(now):
            self._demote(stored)
            raise SessionClosed(f"Builder session '{session.session_id}' has expired")
        if stored.version != session.version:
            raise SessionConflict(
                f"Builder session '{session.session_id}' was modified concurrently",
                {"expected_version": session.version, "stored_version": stored.version},
            )

        session.version += 1
        session.touch(self.ttl_seconds, now)
        self._active[session.session_id] = session.model_dump(mode="json")
        return session

    async def delete(self, session_id: str) -> bool:
        removed_active = self._active.pop(session_id, None) is not None
        removed_archive = self._archive.pop(session_id, None) is not None
        return removed_active or removed_archive

    async def list(self, include_expired: bool = False) -> List[BuilderSession]:
        sessions: List[BuilderSession] = []
        for session_id in list(self._active):
            session = await self.get(session_id)
            if session is not None and (include_expired or session.status == SessionStatus.ACTIVE):
                sessions.append(session)
        if include_expired:
            for session_id in list(self._archive):
                if any(s.session_id == session_id for s in sessions):
                    continue
                session = await self.get(session_id)
                if session is not None:
                    sessions.append(session)
        return self._sort_recent(sessions)

    async def cleanup(self) -> int:
        now = self.now()
        cleaned = 0
        for session_id, data in list(self._active.items()):
            session = BuilderSession.model_validate(data)
            if session.is_expired(now):
                self._demote(session)
                cleaned += 1
        for session_id, data in list(self._archive.items()):
            if self._archive_lapsed(BuilderSession.model_validate(data), now):
                del self._archive[session_id]
                cleaned += 1
        return cleaned

    async def stats(self) -> Dict[str, int]:
        return {"active": len(self._active), "expired": len(self._archive)}

    def _demote(self, session: BuilderSession) -> BuilderSession:
        session.status = SessionStatus.EXPIRED
        self._active.pop(session.session_id, None)
        self._archive[session.session_id] = session.model_dump(mode="json")
        logger.info(f"[{session.session_id}] Session expired, moved to archive")
        return session


# ============================================================================
# Redis backend
# ============================================================================


class RedisSessionStore(SessionStore):
    """Session documents as JSON strings in Redis.

    Keys:
        ``<prefix>:session:<id>``   active document
        ``<prefix>:expired:<id>``   archived document
        ``<prefix>:sessions``       set of active ids
        ``<prefix>:expired_sessions`` set of archived ids

    Active keys carry a Redis ``EXPIRE`` of session TTL plus archive TTL
    so an unswept key still disappears eventually; whether a session has
    lapsed is decided from its ``expires_at``.
    """

    def __init__(
        self,
        client: "redis.Redis",
        config: Optional[BuilderConfig] = None,
        clock: Optional[Clock] = None,
        prefix: str = "flowdraft:builder",
    ) -> None:
        super().__init__(config, clock)
        self._redis = client
        self._prefix = prefix

    @classmethod
    def from_url(
        cls,
        url: str,
        config: Optional[BuilderConfig] = None,
        clock: Optional[Clock] = None,
        prefix: str = "flowdraft:builder",
    ) -> "RedisSessionStore":
        return cls(redis.from_url(url, decode_responses=True), config, clock, prefix)

    # ── Keys ──

    def _session_key(self, session_id: str) -> str:
        return f"{self._prefix}:session:{session_id}"

    def _expired_key(self, session_id: str) -> str:
        return f"{self._prefix}:expired:{session_id}"

    @property
    def _index_key(self) -> str:
        return f"{self._prefix}:sessions"

    @property
    def _expired_index_key(self) -> str:
        return f"{self._prefix}:expired_sessions"

    @property
    def _active_key_ttl(self) -> int:
        return self.ttl_seconds + self.archive_ttl_seconds

    # ── Operations ──

    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    async def create(self, session: BuilderSession) -> BuilderSession:
        self._stamp_new(session)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.set(self._session_key(session.session_id), _dump(session), ex=self._active_key_ttl)
            pipe.sadd(self._index_key, session.session_id)
            await pipe.execute()
        return session

    async def get(self, session_id: str) -> Optional[BuilderSession]:
        now = self.now()
        raw = await self._redis.get(self._session_key(session_id))
        if raw is not None:
            session = _load(raw)
            if not session.is_expired(now):
                return session
            return await self._demote(session)

        raw = await self._redis.get(self._expired_key(session_id))
        if raw is None:
            return None
        session = _load(raw)
        if self._archive_lapsed(session, now):
            await self._purge_archive(session_id)
            return None
        return session

    async def update(self, session: BuilderSession) -> BuilderSession:
        key = self._session_key(session.session_id)
        now = self.now()
        async with self._redis.pipeline(transaction=True) as pipe:
            await pipe.watch(key)
            raw = await pipe.get(key)
            if raw is None:
                await pipe.unwatch()
                if await self._redis.exists(self._expired_key(session.session_id)):
                    raise SessionClosed(f"Builder session '{session.session_id}' has expired")
                raise SessionNotFound(f"Builder session '{session.session_id}' not found")

            stored = _load(raw)
            if stored.is_expired(now):
                await pipe.unwatch()
                await self._demote(stored)
                raise SessionClosed(f"Builder session '{session.session_id}' has expired")
            if stored.version != session.version:
                await pipe.unwatch()
                raise SessionConflict(
                    f"Builder session '{session.session_id}' was modified concurrently",
                    {"expected_version": session.version, "stored_version": stored.version},
                )

            session.version += 1
            session.touch(self.ttl_seconds, now)
            pipe.multi()
            pipe.set(key, _dump(session), ex=self._active_key_ttl)
            try:
                await pipe.execute()
            except WatchError as e:
                session.version -= 1
                raise SessionConflict(
                    f"Builder session '{session.session_id}' was modified concurrently",
                    {"expected_version": session.version},
                ) from e
        return session

    async def delete(self, session_id: str) -> bool:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.delete(self._session_key(session_id))
            pipe.delete(self._expired_key(session_id))
            pipe.srem(self._index_key, session_id)
            pipe.srem(self._expired_index_key, session_id)
            removed_active, removed_archive, _, _ = await pipe.execute()
        return bool(removed_active or removed_archive)

    async def list(self, include_expired: bool = False) -> List[BuilderSession]:
        sessions: List[BuilderSession] = []
        for session_id in await self._redis.smembers(self._index_key):
            session = await self.get(session_id)
            if session is None:
                await self._redis.srem(self._index_key, session_id)
            elif include_expired or session.status == SessionStatus.ACTIVE:
                sessions.append(session)

        if include_expired:
            seen = {s.session_id for s in sessions}
            for session_id in await self._redis.smembers(self._expired_index_key):
                if session_id in seen:
                    continue
                session = await self.get(session_id)
                if session is None:
                    await self._redis.srem(self._expired_index_key, session_id)
                else:
                    sessions.append(session)
        return self._sort_recent(sessions)

    async def cleanup(self) -> int:
        now = self.now()
        cleaned = 0
        for session_id in await self._redis.smembers(self._index_key):
            raw = await self._redis.get(self._session_key(session_id))
            if raw is None:
                await self._redis.srem(self._index_key, session_id)
                continue
            session = _load(raw)
            if session.is_expired(now):
                await self._demote(session)
                cleaned += 1

        for session_id in await self._redis.smembers(self._expired_index_key):
            raw = await self._redis.get(self._expired_key(session_id))
            if raw is None:
                await self._redis.srem(self._expired_index_key, session_id)
                continue
            if self._archive_lapsed(_load(raw), now):
                await self._purge_archive(session_id)
                cleaned += 1
        return cleaned

    async def stats(self) -> Dict[str, int]:
        async with self._redis.pipeline(transaction=False) as pipe:
            pipe.scard(self._index_key)
            pipe.scard(self._expired_index_key)
            active, expired = await pipe.execute()
        return {"active": int(active), "expired": int(expired)}

    async def _close_backend(self) -> None:
        await self._redis.aclose()

    # ── Internals ──

    async def _demote(self, session: BuilderSession) -> BuilderSession:
        session.status = SessionStatus.EXPIRED
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.set(self._expired_key(session.session_id), _dump(session), ex=self.archive_ttl_seconds)
            pipe.delete(self._session_key(session.session_id))
            pipe.srem(self._index_key, session.session_id)
            pipe.sadd(self._expired_index_key, session.session_id)
            await pipe.execute()
        logger.info(f"[{session.session_id}] Session expired, moved to archive")
        return session

    async def _purge_archive(self, session_id: str) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.delete(self._expired_key(session_id))
            pipe.srem(self._expired_index_key, session_id)
            await pipe.execute()
        logger.info(f"[{session_id}] Archived session purged")


def _dump(session: BuilderSession) -> str:
    return json.dumps(session.model_dump(mode="json"))


def _load(raw: str) -> BuilderSession:
    return BuilderSession.model_validate(json.loads(raw))


# ============================================================================
# Factory
# ============================================================================


async def create_session_store(
    config: Optional[BuilderConfig] = None,
    clock: Optional[Clock] = None,
) -> SessionStore:
    """Pick the backend from configuration.

    Redis is used when a Redis URL is configured (and the store type is
    not forced to ``memory``); the connection is checked with ``PING``.
    The returned store is already sweeping; release it with ``close()``.
    """
    cfg = config or BuilderConfig.get_default_instance()
    store: SessionStore
    if cfg.resolved_store_type == "redis":
        store = RedisSessionStore.from_url(cfg.redis_url, cfg, clock)
        await store.ping()
        logger.info("Session store: Redis")
    else:
        store = InMemorySessionStore(cfg, clock)
        logger.info("Session store: in-memory")
    store.start()
    return store
