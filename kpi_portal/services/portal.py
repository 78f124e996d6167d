"""
KPI Portal
Portal Service — the single owner of the current AppState.

Wraps the pure functions (repository, cascade, lifecycle, directory,
dispatcher) behind one object with an injected StateStore. Each public
mutation computes the next aggregate from the current snapshot and calls
``store.save`` exactly once; when nothing changed no write happens.

A stale write (another process advanced the document) raises
StaleStateError after the snapshot has been refreshed, so the caller can
simply retry the command.

Usage:
    from kpi_portal.services.portal import get_portal

    portal = get_portal()
    task = portal.create_task(actor, department_code="BD", title="Call ACME")
    portal.approve_task(task.id, manager_actor)
"""

import logging
import threading
from dataclasses import replace

from flask import current_app

from kpi_portal.core.exceptions import NotFoundError, StaleStateError, ValidationError
from kpi_portal.models.kpi import KPI
from kpi_portal.models.state import AppState
from kpi_portal.services import activity, cascade, directory, repository, task_lifecycle
from kpi_portal.services.notification import scan_due_tasks
from kpi_portal.services.state_store import StateStore, build_state_store
from kpi_portal.utils.helpers import new_id

logger = logging.getLogger(__name__)

EXTENSION_KEY = "kpi_portal"


class PortalService:
    """Explicit service object owning the portal aggregate."""

    def __init__(self, store: StateStore, *, due_soon_days: int = 2):
        self.store = store
        self.due_soon_days = due_soon_days
        self._state: AppState | None = None
        self._lock = threading.RLock()

    # ── Snapshot ─────────────────────────────────────────────────────────

    @property
    def state(self) -> AppState:
        with self._lock:
            if self._state is None:
                self._state = self.store.load()
            return self._state

    @property
    def cached_version(self) -> int | None:
        """Version of the in-memory snapshot, without loading one."""
        snapshot = self._state
        return snapshot.version if snapshot is not None else None

    def refresh(self) -> AppState:
        """Reload the aggregate from the store, discarding the snapshot."""
        with self._lock:
            self._state = self.store.load()
            return self._state

    def invalidate(self) -> None:
        with self._lock:
            self._state = None

    def reset_to_seed(self) -> AppState:
        """Overwrite the persisted aggregate with fresh seed data."""
        with self._lock:
            current = self.state
            seed = replace(self.store.seed_factory(), version=current.version)
            return self._commit(current, seed)

    def _commit(self, current: AppState, next_state: AppState) -> AppState:
        if next_state is current:
            return current
        try:
            version = self.store.save(next_state)
        except StaleStateError:
            logger.warning("Stale write rejected at v%d, refreshing snapshot", current.version,
                           extra={"state_version": current.version})
            self._state = self.store.load()
            raise
        self._state = replace(next_state, version=version)
        return self._state

    def _apply(self, fn, *args, **kwargs) -> AppState:
        """Run a pure ``state -> state`` function against the snapshot and persist."""
        with self._lock:
            current = self.state
            return self._commit(current, fn(current, *args, **kwargs))

    def _apply_returning(self, fn, *args, **kwargs):
        """Like ``_apply`` for creators returning ``(state, entity)``."""
        with self._lock:
            current = self.state
            next_state, entity = fn(current, *args, **kwargs)
            self._commit(current, next_state)
            return entity

    # ── KPIs ─────────────────────────────────────────────────────────────

    def add_kpi(self, *, department_code, name, unit, target, current_value=0,
                description=None, owner_user_id=None) -> KPI:
        with self._lock:
            current = self.state
            department = repository.find_department_by_code(current, department_code)
            if department is None:
                raise ValidationError(f"Unknown department: {department_code}",
                                      details={"departmentCode": "invalid"})
            if not (name or "").strip():
                raise ValidationError("name is required", details={"name": "required"})
            kpi = KPI(
                id=new_id("k"),
                department_code=department.code,
                name=name.strip(),
                unit=unit or "",
                target=target,
                current_value=current_value,
                description=description or None,
                owner_user_id=owner_user_id or None,
            )
            state = self._commit(current, repository.add_kpi(current, kpi))
            return repository.find_kpi(state, kpi.id)

    def update_kpi(self, kpi: KPI, actor_id="system") -> AppState:
        return self._apply(repository.update_kpi, kpi, actor_id=actor_id)

    def delete_kpi(self, kpi_id) -> AppState:
        return self._apply(repository.delete_kpi, kpi_id)

    # ── Tasks ────────────────────────────────────────────────────────────

    def upsert_task(self, task) -> AppState:
        return self._apply(repository.upsert_task, task)

    def delete_task(self, task_id) -> AppState:
        return self._apply(repository.delete_task, task_id)

    def create_task(self, actor, **fields):
        return self._apply_returning(task_lifecycle.create_task, actor, **fields)

    def remove_task(self, task_id, actor) -> AppState:
        return self._apply(task_lifecycle.remove_task, task_id, actor)

    def transition_task(self, task_id, target_status, actor, **kwargs) -> AppState:
        return self._apply(task_lifecycle.transition_task, task_id, target_status, actor, **kwargs)

    def start_task(self, task_id, actor) -> AppState:
        return self._apply(task_lifecycle.start_task, task_id, actor)

    def submit_for_approval(self, task_id, actor, *, attachments=(), comment=None) -> AppState:
        return self._apply(task_lifecycle.submit_for_approval, task_id, actor,
                           attachments=attachments, comment=comment)

    def approve_task(self, task_id, actor) -> AppState:
        return self._apply(task_lifecycle.approve_task, task_id, actor)

    def reject_task(self, task_id, actor) -> AppState:
        return self._apply(task_lifecycle.reject_task, task_id, actor)

    def edit_task(self, task_id, actor, **changes) -> AppState:
        return self._apply(task_lifecycle.edit_task, task_id, actor, **changes)

    def add_task_comment(self, task_id, actor, text) -> AppState:
        return self._apply(task_lifecycle.add_task_comment, task_id, actor, text)

    # ── Activities & notifications ───────────────────────────────────────

    def add_activity(self, **entry) -> AppState:
        return self._apply(activity.add_activity, **entry)

    def add_notification(self, **fields) -> AppState:
        return self._apply(repository.add_notification, **fields)

    def mark_notification_as_read(self, notification_id) -> AppState:
        return self._apply(repository.mark_notification_as_read, notification_id)

    def mark_all_notifications_as_read(self, user_id) -> AppState:
        return self._apply(repository.mark_all_notifications_as_read, user_id)

    def remove_notification(self, notification_id) -> AppState:
        return self._apply(repository.remove_notification, notification_id)

    def scan_due_tasks(self, now=None) -> dict:
        with self._lock:
            current = self.state
            next_state, summary = scan_due_tasks(current, now=now, due_soon_days=self.due_soon_days)
            self._commit(current, next_state)
            return summary

    def purge_orphaned_references(self) -> AppState:
        return self._apply(cascade.purge_orphaned_references)

    # ── Departments ──────────────────────────────────────────────────────

    def add_department(self, *, code, name):
        return self._apply_returning(directory.add_department, code=code, name=name)

    def update_department(self, department_id, **changes) -> AppState:
        return self._apply(directory.update_department, department_id, **changes)

    def assign_department_manager(self, department_id, user_id) -> AppState:
        return self._apply(directory.assign_department_manager, department_id, user_id)

    def delete_department(self, department_id) -> AppState:
        """Cascade delete, then move the preview cursor off the removed code."""
        with self._lock:
            current = self.state
            department = repository.find_department(current, department_id)
            next_state = cascade.delete_department(current, department_id)
            if department is not None and current.preview_department_code == department.code:
                remaining = next_state.departments[0].code if next_state.departments else None
                next_state = repository.set_preview_department(next_state, remaining)
            return self._commit(current, next_state)

    def set_preview_department(self, code) -> AppState:
        with self._lock:
            current = self.state
            if code and repository.find_department_by_code(current, code) is None:
                raise NotFoundError("Department", code)
            return self._commit(current, repository.set_preview_department(current, code))

    # ── Members ──────────────────────────────────────────────────────────

    def add_member(self, **fields):
        return self._apply_returning(directory.add_member, **fields)

    def update_member(self, user_id, **changes) -> AppState:
        return self._apply(directory.update_member, user_id, **changes)

    def delete_member(self, user_id) -> AppState:
        return self._apply(directory.delete_member, user_id)

    def set_can_create_tasks(self, user_id, allowed) -> AppState:
        return self._apply(directory.set_can_create_tasks, user_id, allowed)

    def set_user_status(self, user_id, status) -> AppState:
        return self._apply(directory.set_user_status, user_id, status)

    def set_password(self, user_id, new_password) -> AppState:
        return self._apply(directory.set_password, user_id, new_password)

    def authenticate(self, username, password):
        return directory.authenticate(self.state, username, password)


# ── Flask wiring ─────────────────────────────────────────────────────────────

def init_portal(app) -> PortalService:
    """Create the store + service for *app* and register it as an extension."""
    service = PortalService(
        build_state_store(app.config),
        due_soon_days=int(app.config.get("TASK_DUE_SOON_DAYS", 2)),
    )
    app.extensions[EXTENSION_KEY] = service
    return service


def get_portal() -> PortalService:
    return current_app.extensions[EXTENSION_KEY]
