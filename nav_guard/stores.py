"""Reference collaborators: in-memory sources, a recording navigation host and
an SQLite-backed setup store."""

from collections.abc import Mapping
from dataclasses import asdict, fields
from typing import Any

from loguru import logger

from nav_guard.events import TriggerBus
from nav_guard.models import (
    AuthIdentity,
    AuthSource,
    NavigationHost,
    SetupRecord,
    SetupStore,
    SubscriptionRecord,
    SubscriptionStore,
    TriggerEvent,
)
from nav_guard.routes import Route

_SETUP_COLUMNS = tuple(f.name for f in fields(SetupRecord))


class StaticAuthSource(AuthSource):
    """Holds the current identity; ``sign_in``/``sign_out`` emit AUTH_CHANGED."""

    def __init__(self, identity: AuthIdentity | None = None, bus: TriggerBus | None = None):
        self._identity = identity or AuthIdentity(id=None)
        self._bus = bus

    async def get_current_identity(self) -> AuthIdentity | None:
        return self._identity

    def set_identity(self, identity: AuthIdentity) -> None:
        self._identity = identity
        if self._bus is not None:
            self._bus.emit(TriggerEvent.AUTH_CHANGED)

    def sign_in(self, user_id: str, *, verified: bool = False) -> None:
        self.set_identity(AuthIdentity(id=user_id, is_authenticated=True, is_email_verified=verified))

    def sign_out(self) -> None:
        self.set_identity(AuthIdentity(id=None))


class InMemorySubscriptionStore(SubscriptionStore):

    def __init__(self, records: Mapping[str, SubscriptionRecord] | None = None):
        self._records = dict(records or {})

    async def get_by_user_id(self, user_id: str) -> SubscriptionRecord | None:
        return self._records.get(user_id)

    def put(self, user_id: str, record: SubscriptionRecord) -> None:
        self._records[user_id] = record


class InMemorySetupStore(SetupStore):
    """Setup records in a dict. ``update`` merges, so equal patches are no-ops."""

    def __init__(self, records: Mapping[str, SetupRecord] | None = None):
        self._records = dict(records or {})
        self.updates: list[tuple[str, dict[str, Any]]] = []

    async def get_by_user_id(self, user_id: str) -> SetupRecord | None:
        return self._records.get(user_id)

    async def update(self, user_id: str, patch: Mapping[str, Any]) -> None:
        current = self._records.get(user_id, SetupRecord())
        self._records[user_id] = current.apply(patch)
        self.updates.append((user_id, dict(patch)))

    def put(self, user_id: str, record: SetupRecord) -> None:
        self._records[user_id] = record


class InMemoryNavigationHost(NavigationHost):
    """Tracks the current route and history; emits ROUTE_CHANGED on navigation."""

    def __init__(self, initial: Route | None = None, bus: TriggerBus | None = None,
                 active_project: str | None = None):
        self._current = initial
        self._bus = bus
        self._active_project = active_project
        self.history: list[Route] = []
        self.last_params: Mapping[str, Any] | None = None

    def current_route(self) -> Route | None:
        return self._current

    def navigate(self, route: Route, params: Mapping[str, Any] | None = None) -> None:
        self._current = route
        self.last_params = params
        self.history.append(route)
        if self._bus is not None:
            self._bus.emit(TriggerEvent.ROUTE_CHANGED)

    def go_to(self, route: Route) -> None:
        """Simulate the user moving on their own."""
        self.navigate(route)

    def active_project_id(self) -> str | None:
        return self._active_project

    def select_project(self, project_id: str | None) -> None:
        self._active_project = project_id


class SqliteSetupStore(SetupStore):
    """Setup records in an SQLite table, one row per user.

    ``update`` is an upsert of the merged record, so replaying the same patch
    leaves the row unchanged.
    """

    def __init__(self, db_path: str):
        self._db_path = db_path

    async def init(self) -> None:
        import aiosqlite
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                """CREATE TABLE IF NOT EXISTS user_setup (
                       user_id TEXT PRIMARY KEY,
                       show_onboarding INTEGER NOT NULL,
                       first_time_setup INTEGER NOT NULL,
                       skipped_email_verification INTEGER NOT NULL,
                       updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                   )"""
            )
            await db.commit()

    async def get_by_user_id(self, user_id: str) -> SetupRecord | None:
        import aiosqlite
        async with aiosqlite.connect(self._db_path) as db:
            cur = await db.execute(
                f"SELECT {', '.join(_SETUP_COLUMNS)} FROM user_setup WHERE user_id = ?",
                (user_id,),
            )
            row = await cur.fetchone()
        if row is None:
            return None
        return SetupRecord(**{name: bool(value) for name, value in zip(_SETUP_COLUMNS, row)})

    async def create(self, user_id: str, record: SetupRecord | None = None) -> None:
        """Insert a record if the user has none yet."""
        await self._write(user_id, record or SetupRecord(), replace=False)

    async def update(self, user_id: str, patch: Mapping[str, Any]) -> None:
        existing = await self.get_by_user_id(user_id)
        merged = (existing or SetupRecord()).apply(patch)
        if merged == existing:
            logger.debug(f"SqliteSetupStore: update for {user_id} is a no-op")
            return
        await self._write(user_id, merged, replace=True)

    async def _write(self, user_id: str, record: SetupRecord, *, replace: bool) -> None:
        import aiosqlite
        values = asdict(record)
        placeholders = ", ".join("?" for _ in _SETUP_COLUMNS)
        conflict = (
            "DO UPDATE SET "
            + ", ".join(f"{c} = excluded.{c}" for c in _SETUP_COLUMNS)
            + ", updated_at = CURRENT_TIMESTAMP"
            if replace else "DO NOTHING"
        )
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                f"INSERT INTO user_setup (user_id, {', '.join(_SETUP_COLUMNS)}) "
                f"VALUES (?, {placeholders}) ON CONFLICT(user_id) {conflict}",
                (user_id, *(int(values[c]) for c in _SETUP_COLUMNS)),
            )
            await db.commit()
