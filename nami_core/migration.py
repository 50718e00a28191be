"""
Persisted-state migration engine.

The wallet record carries ``STORAGE.migration = {version, completed}``:
the application version that last wrote the record and the versions of the
migration scripts that have been applied to it. On startup the engine
compares the stored version with the running one and walks the script
registry up (apply scripts not yet completed) or down (revert completed
scripts, newest first).

Which scripts a pass touches is decided by :func:`plan`, a pure function
of the registry and the two versions. :class:`Migrator` executes a plan
against storage under a lock, so two passes never interleave on the same
record.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Iterable, Optional

from nami_core import __version__
from nami_core.errors import MigrationOrderError, WrongPassword
from nami_core.storage import STORAGE, Storage
from nami_core.vault import Session

logger = logging.getLogger("nami.migration")

StepFn = Callable[[Storage, Optional[str]], Awaitable[None]]


def compare_version(v1: str, v2: str) -> int:
    """Compare dotted numeric versions; returns -1, 0 or 1.

    Components are compared up to the shorter length; when those are equal
    the shorter version is the lower one (``1.0 < 1.0.1``).
    """
    if not isinstance(v1, str) or not isinstance(v2, str):
        raise TypeError("versions must be strings")
    a = [int(p) for p in v1.split(".")]
    b = [int(p) for p in v2.split(".")]
    for x, y in zip(a, b):
        if x > y:
            return 1
        if x < y:
            return -1
    if len(a) == len(b):
        return 0
    return -1 if len(a) < len(b) else 1


@dataclass(frozen=True)
class MigrationScript:
    version: str
    up: StepFn
    down: StepFn
    info: str = ""
    pwd_required: bool = False


class MigrationRegistry:
    """Immutable, version-ordered collection of migration scripts."""

    def __init__(self, scripts: Iterable[MigrationScript] = ()):
        ordered = sorted(scripts, key=_version_key)
        versions = [s.version for s in ordered]
        if len(set(versions)) != len(versions):
            raise ValueError("duplicate migration versions")
        self._scripts: tuple[MigrationScript, ...] = tuple(ordered)

    @property
    def scripts(self) -> tuple[MigrationScript, ...]:
        return self._scripts

    def get(self, version: str) -> Optional[MigrationScript]:
        return next((s for s in self._scripts if s.version == version), None)

    def __iter__(self):
        return iter(self._scripts)

    def __len__(self) -> int:
        return len(self._scripts)


def _version_key(script: MigrationScript) -> list[int]:
    return [int(p) for p in script.version.split(".")]


class Direction(Enum):
    UP = "UP"
    DOWN = "DOWN"


def _first_index(scripts: tuple[MigrationScript, ...], pred) -> int:
    return next((i for i, s in enumerate(scripts) if pred(s)), -1)


def plan(
    registry: MigrationRegistry, stored: str, running: str
) -> tuple[Direction, tuple[MigrationScript, ...]]:
    """Scripts a pass from *stored* to *running* walks over, in execution order.

    Downgrade: descending, from the first script <= stored up to (not
    including) the first script <= running. Upgrade or equal: ascending,
    from the first script >= stored up to (not including) the first script
    > running. Whether a listed script actually runs depends on the
    ``completed`` list.
    """
    if compare_version(stored, running) == 1:
        ordered = tuple(reversed(registry.scripts))
        start = _first_index(ordered, lambda s: compare_version(s.version, stored) <= 0)
        end = _first_index(ordered, lambda s: compare_version(s.version, running) <= 0)
        direction = Direction.DOWN
    else:
        ordered = registry.scripts
        start = _first_index(ordered, lambda s: compare_version(s.version, stored) >= 0)
        end = _first_index(ordered, lambda s: compare_version(s.version, running) > 0)
        direction = Direction.UP
    if start < 0:
        return direction, ()
    return direction, ordered[start:end] if end > -1 else ordered[start:]


class Migrator:
    """Runs migration passes over one storage backend."""

    def __init__(
        self,
        storage: Storage,
        registry: Optional[MigrationRegistry] = None,
        app_version: str = __version__,
    ):
        if registry is None:
            from nami_core.migrations import REGISTRY
            registry = REGISTRY
        self.storage = storage
        self.registry = registry
        self.app_version = app_version

    async def _init(self) -> dict:
        record = {"version": self.app_version, "completed": []}
        await self.storage.set({STORAGE.migration: record})
        return record

    async def need_upgrade(self) -> bool:
        """True when the stored version differs from the running one.

        A missing record is initialised to the running version (a fresh
        install has nothing to migrate).
        """
        async with self.storage.lock(STORAGE.migration):
            record = await self.storage.get(STORAGE.migration)
            if not record:
                await self._init()
                return False
        return record["version"] != self.app_version

    async def is_upgrade(self) -> bool:
        record = await self.storage.get(STORAGE.migration)
        return compare_version(record["version"], self.app_version) <= 0

    async def need_pwd(self, session: Optional[Session] = None) -> bool:
        """Would a real pass need the wallet password that *session* lacks?"""
        if session is not None and session.active:
            return False
        scheduled = {m["version"] for m in await self.migrate(dry_run=True)}
        return any(s.pwd_required for s in self.registry if s.version in scheduled)

    async def migrate(self, dry_run: bool = False, session: Optional[Session] = None) -> list[dict]:
        """Run one pass; returns ``[{"version", "info"}]`` of the steps taken.

        A dry run reports the same list without running scripts or writing
        the record. When a script fails, the steps completed before it are
        persisted (the stored version is left unchanged) and the error is
        re-raised.
        """
        async with self.storage.lock(STORAGE.migration):
            record = await self.storage.get(STORAGE.migration) or await self._init()
            stored = record["version"]
            completed: list[str] = list(record.get("completed", []))
            direction, scripts = plan(self.registry, stored, self.app_version)

            if direction is Direction.DOWN:
                pending = [s for s in scripts if s.version in completed]
            else:
                pending = [s for s in scripts if s.version not in completed]

            password: Optional[str] = None
            if not dry_run and any(s.pwd_required for s in pending):
                if session is None:
                    raise WrongPassword("A migration step requires the wallet password")
                password = session.password

            prefix = "[DRY RUN] " if dry_run else ""
            output: list[dict] = []
            try:
                for script in pending:
                    if direction is Direction.DOWN:
                        if completed[-1] != script.version:
                            raise MigrationOrderError(
                                f"Cannot revert {script.version}: last completed is {completed[-1]}"
                            )
                        if not dry_run:
                            await script.down(self.storage, password if script.pwd_required else None)
                        completed.pop()
                    else:
                        if not dry_run:
                            await script.up(self.storage, password if script.pwd_required else None)
                        completed.append(script.version)
                    logger.info(f"{prefix}Storage migration applied: {script.version} {direction.value}")
                    output.append({"version": script.version, "info": script.info})
            except Exception:
                if not dry_run:
                    logger.error(f"Migration pass {stored} -> {self.app_version} failed; saving progress")
                    await self.storage.set({
                        STORAGE.migration: {"version": stored, "completed": completed}
                    })
                raise

            if not dry_run:
                await self.storage.set({
                    STORAGE.migration: {"version": self.app_version, "completed": completed}
                })
            return output
