"""
KPI Portal
State Store — durable persistence of the AppState aggregate.

One JSON document under a fixed logical key. Three backends share the
load/save contract:

    - SqlStateStore:    ``state_documents`` table via Flask-SQLAlchemy
    - FileStateStore:   JSON file, replaced atomically
    - MemoryStateStore: process-local, for tests and previews

Contract:
    load() -> AppState
        Returns the persisted aggregate, upgraded from older schemas (and
        re-persisted when defaults were applied). Absent or unreadable
        documents fall back to the seed, which is persisted immediately.
    save(state) -> int
        Whole-document write. Succeeds only when the persisted version still
        equals ``state.version``; writes ``state.version + 1`` and returns it.
        A concurrent writer raises StaleStateError. Storage errors propagate.

Usage:
    from kpi_portal.services.state_store import build_state_store
    store = build_state_store(app.config)
    state = store.load()
    version = store.save(next_state)
"""

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from pathlib import Path

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError

from kpi_portal.core.exceptions import StaleStateError
from kpi_portal.models import db
from kpi_portal.models.state import AppState, upgrade_document
from kpi_portal.models.state_document import StateDocument
from kpi_portal.services.seed import seed_initial_state

logger = logging.getLogger(__name__)

DEFAULT_STATE_KEY = "kpi-portal-state-v1"


# ── Store Abstract Base ──────────────────────────────────────────────────────

class StateStore(ABC):
    """Abstract durable store for one AppState document."""

    def __init__(self, key: str = DEFAULT_STATE_KEY, *, seed_factory=seed_initial_state):
        self.key = key
        self.seed_factory = seed_factory

    @abstractmethod
    def _read(self) -> tuple[str | None, int]:
        """
        Return ``(payload, version)`` of the persisted document.

        ``(None, 0)`` when nothing has been written under the key yet.
        """
        ...

    @abstractmethod
    def _write(self, payload: str, *, expected_version: int, new_version: int) -> None:
        """
        Replace the document if its version still equals *expected_version*.

        Raises:
            StaleStateError: another writer advanced the document.
        """
        ...

    # ── Public contract ───────────────────────────────────────────────

    def load(self) -> AppState:
        payload, version = self._read()
        if payload is not None:
            try:
                document, upgraded = upgrade_document(json.loads(payload))
                state = replace(AppState.from_dict(document), version=version)
            except (ValueError, KeyError, TypeError) as exc:
                logger.warning(
                    "State %r v%d is unreadable, falling back to seed: %s",
                    self.key, version, exc, extra={"state_version": version},
                )
            else:
                if upgraded:
                    logger.info("State %r v%d upgraded from an older schema", self.key, version)
                    state = replace(state, version=self.save(state))
                return state

        state = replace(self.seed_factory(), version=version)
        new_version = self.save(state)
        logger.info("State %r seeded at v%d", self.key, new_version,
                    extra={"state_version": new_version})
        return replace(state, version=new_version)

    def save(self, state: AppState) -> int:
        new_version = state.version + 1
        payload = json.dumps(replace(state, version=new_version).to_dict(), ensure_ascii=False)
        self._write(payload, expected_version=state.version, new_version=new_version)
        logger.debug("State %r saved v%d (%d bytes)", self.key, new_version, len(payload),
                     extra={"state_version": new_version})
        return new_version

    def current_version(self) -> int:
        return self._read()[1]


# ── Memory ───────────────────────────────────────────────────────────────────

class MemoryStateStore(StateStore):
    """Process-local store. Two services sharing one instance behave like two tabs."""

    def __init__(self, key: str = DEFAULT_STATE_KEY, *, seed_factory=seed_initial_state):
        super().__init__(key, seed_factory=seed_factory)
        self._payload = None
        self._version = 0
        self._lock = threading.Lock()

    def _read(self):
        with self._lock:
            return self._payload, self._version

    def _write(self, payload, *, expected_version, new_version):
        with self._lock:
            if self._version != expected_version:
                raise StaleStateError(self.key, expected_version, self._version)
            self._payload = payload
            self._version = new_version

    def put_raw(self, payload: str | None, version: int = 0) -> None:
        """Install a raw document, bypassing all checks (fixtures, imports)."""
        with self._lock:
            self._payload = payload
            self._version = version


# ── JSON file ────────────────────────────────────────────────────────────────

class FileStateStore(StateStore):
    """
    JSON file store.

    The version lives inside the document. Writes go to a temporary file in
    the same directory and are moved into place with ``os.replace`` so a
    reader never sees a half-written document.
    """

    def __init__(self, path, key: str = DEFAULT_STATE_KEY, *, seed_factory=seed_initial_state):
        super().__init__(key, seed_factory=seed_factory)
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self):
        if not self.path.exists():
            return None, 0
        payload = self.path.read_text(encoding="utf-8")
        try:
            version = int(json.loads(payload).get("version") or 0)
        except (ValueError, TypeError, AttributeError):
            version = 0
        return payload, version

    def _write(self, payload, *, expected_version, new_version):
        with self._lock:
            _, actual = self._read()
            if actual != expected_version:
                raise StaleStateError(self.key, expected_version, actual)

            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(payload)
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise


# ── SQL (Flask-SQLAlchemy) ───────────────────────────────────────────────────

class SqlStateStore(StateStore):
    """
    Database store. Requires an application context.

    The compare-and-swap is a single ``UPDATE ... WHERE version = :expected``;
    zero affected rows means another writer got there first.
    """

    def _read(self):
        # Column select bypasses the identity map, so commits from other
        # sessions are always visible.
        row = db.session.execute(
            sa.select(StateDocument.payload, StateDocument.version).where(StateDocument.key == self.key)
        ).first()
        if row is None:
            return None, 0
        return row.payload, row.version

    def _write(self, payload, *, expected_version, new_version):
        try:
            if expected_version == 0 and self._read()[0] is None:
                db.session.add(StateDocument(key=self.key, version=new_version, payload=payload))
                db.session.flush()
            else:
                result = db.session.execute(
                    sa.update(StateDocument)
                    .where(StateDocument.key == self.key, StateDocument.version == expected_version)
                    .values(payload=payload, version=new_version)
                )
                if result.rowcount == 0:
                    db.session.rollback()
                    raise StaleStateError(self.key, expected_version, self._read()[1])
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise StaleStateError(self.key, expected_version, self._read()[1]) from None
        except StaleStateError:
            raise
        except Exception:
            db.session.rollback()
            logger.exception("Failed to persist state %r", self.key)
            raise


# ── Factory ──────────────────────────────────────────────────────────────────

def build_state_store(config) -> StateStore:
    """Create the store selected by ``STATE_BACKEND`` (sql | file | memory)."""
    backend = (config.get("STATE_BACKEND") or "sql").lower()
    key = config.get("STATE_KEY") or DEFAULT_STATE_KEY

    if backend == "sql":
        return SqlStateStore(key)
    if backend == "file":
        path = config.get("STATE_FILE_PATH")
        if not path:
            raise RuntimeError("STATE_FILE_PATH must be set when STATE_BACKEND=file")
        return FileStateStore(path, key)
    if backend == "memory":
        return MemoryStateStore(key)
    raise RuntimeError(f"Unknown STATE_BACKEND: {backend!r}")
