"""
KPI Portal
Directory service — departments, members and credentials.

Pure functions over AppState, same conventions as the repository:
creators return ``(state, entity)``; updates and deletes of unknown ids
return *state* unchanged. Commands whose intent cannot be applied
(duplicate code/username, unknown user for a password change) raise.
"""

import logging
from dataclasses import replace

from kpi_portal.core.exceptions import ConflictError, NotFoundError, ValidationError
from kpi_portal.models.directory import DEPARTMENT_STATUSES, ROLES, USER_STATUSES, Department, User
from kpi_portal.models.state import AppState
from kpi_portal.services.repository import (
    find_department,
    find_department_by_code,
    find_user,
    find_user_by_username,
)
from kpi_portal.utils.crypto import hash_password, verify_password
from kpi_portal.utils.helpers import new_id

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 3
# Issued to new members; must be replaced on first login.
TEMPORARY_PASSWORD = "123"

_USER_FIELDS = {"username", "display_name", "role", "department_code", "status",
                "can_create_tasks", "specialty"}
_DEPARTMENT_FIELDS = {"code", "name", "status"}


def _replace_user(state, user):
    return replace(state, users=tuple(user if u.id == user.id else u for u in state.users))


def _replace_department(state, department):
    return replace(state, departments=tuple(
        department if d.id == department.id else d for d in state.departments
    ))


def _require(value, field):
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field} is required", details={field: "required"})
    return value.strip() if isinstance(value, str) else value


def _check_choice(value, choices, field):
    if value not in choices:
        raise ValidationError(
            f"{field} must be one of {', '.join(choices)}",
            details={field: "invalid"},
        )


# ═════════════════════════════════════════════════════════════════════════════
# Departments
# ═════════════════════════════════════════════════════════════════════════════

def add_department(state: AppState, *, code, name) -> tuple[AppState, Department]:
    code = _require(code, "code").upper()
    name = _require(name, "name")
    if find_department_by_code(state, code) is not None:
        raise ConflictError("Department", "code", code)

    department = Department(id=new_id("d"), code=code, name=name)
    logger.info("Department %s created", code, extra={"department_code": code})
    return replace(state, departments=state.departments + (department,)), department


def update_department(state: AppState, department_id, **changes) -> AppState:
    """
    Rename or archive a department.

    Changing ``code`` re-points every KPI, Task and User that referenced the
    old code, since the code is the key they hold.
    """
    department = find_department(state, department_id)
    if department is None:
        return state

    unknown = set(changes) - _DEPARTMENT_FIELDS
    if unknown:
        raise ValidationError(f"Unknown department field(s): {', '.join(sorted(unknown))}")

    if "name" in changes:
        changes["name"] = _require(changes["name"], "name")
    if "status" in changes:
        _check_choice(changes["status"], DEPARTMENT_STATUSES, "status")

    old_code = department.code
    if "code" in changes:
        new_code = _require(changes["code"], "code").upper()
        clash = find_department_by_code(state, new_code)
        if clash is not None and clash.id != department.id:
            raise ConflictError("Department", "code", new_code)
        changes["code"] = new_code

    updated = replace(department, **changes)
    if updated == department:
        return state
    state = _replace_department(state, updated)

    if updated.code != old_code:
        state = replace(
            state,
            kpis=tuple(replace(k, department_code=updated.code) if k.department_code == old_code else k
                       for k in state.kpis),
            tasks=tuple(replace(t, department_code=updated.code) if t.department_code == old_code else t
                        for t in state.tasks),
            users=tuple(replace(u, department_code=updated.code) if u.department_code == old_code else u
                        for u in state.users),
        )
        if state.preview_department_code == old_code:
            state = replace(state, preview_department_code=updated.code)
        logger.info("Department code %s renamed to %s", old_code, updated.code,
                    extra={"department_code": updated.code})
    return state


def assign_department_manager(state: AppState, department_id, user_id) -> AppState:
    """Set ``managerUserId`` and promote the user to manager of that department."""
    department = find_department(state, department_id)
    if department is None:
        raise NotFoundError("Department", department_id)
    user = find_user(state, user_id)
    if user is None:
        raise NotFoundError("User", user_id)

    state = _replace_department(state, replace(department, manager_user_id=user.id))
    role = user.role if user.role == "admin" else "manager"
    promoted = replace(user, role=role, department_code=department.code, can_create_tasks=True)
    logger.info("User %s now manages %s", user.id, department.code,
                extra={"department_code": department.code})
    return _replace_user(state, promoted)


# ═════════════════════════════════════════════════════════════════════════════
# Members
# ═════════════════════════════════════════════════════════════════════════════

def add_member(state: AppState, *, username, display_name=None, role="member",
               department_code=None, specialty=None, can_create_tasks=True,
               password=None) -> tuple[AppState, User]:
    """
    Create a user. Without an explicit *password* the member gets
    TEMPORARY_PASSWORD and must change it on first login.

    Raises:
        ValidationError: missing username, bad role, unknown department.
        ConflictError: username already taken (case-insensitive).
    """
    username = _require(username, "username")
    _check_choice(role, ROLES, "role")
    if find_user_by_username(state, username) is not None:
        raise ConflictError("User", "username", username)

    if department_code:
        department = find_department_by_code(state, department_code)
        if department is None:
            raise ValidationError(f"Unknown department: {department_code}",
                                  details={"departmentCode": "invalid"})
        department_code = department.code

    if password is None:
        password = TEMPORARY_PASSWORD
    _check_password(password)

    user = User(
        id=new_id("u"),
        username=username,
        display_name=(display_name or "").strip() or username,
        role=role,
        department_code=department_code or None,
        can_create_tasks=bool(can_create_tasks),
        require_password_change=True,
        specialty=specialty or None,
        password_hash=hash_password(password),
    )
    logger.info("User %s (%s) created", user.username, user.role,
                extra={"department_code": user.department_code})
    return replace(state, users=state.users + (user,)), user


def update_member(state: AppState, user_id, **changes) -> AppState:
    user = find_user(state, user_id)
    if user is None:
        return state

    unknown = set(changes) - _USER_FIELDS
    if unknown:
        raise ValidationError(f"Unknown user field(s): {', '.join(sorted(unknown))}")

    if "role" in changes:
        _check_choice(changes["role"], ROLES, "role")
    if "status" in changes:
        _check_choice(changes["status"], USER_STATUSES, "status")
    if "username" in changes:
        changes["username"] = _require(changes["username"], "username")
        clash = find_user_by_username(state, changes["username"])
        if clash is not None and clash.id != user.id:
            raise ConflictError("User", "username", changes["username"])
    if changes.get("department_code"):
        department = find_department_by_code(state, changes["department_code"])
        if department is None:
            raise ValidationError(f"Unknown department: {changes['department_code']}",
                                  details={"departmentCode": "invalid"})
        changes["department_code"] = department.code
    elif "department_code" in changes:
        changes["department_code"] = None

    updated = replace(user, **changes)
    if updated == user:
        return state
    return _replace_user(state, updated)


def delete_member(state: AppState, user_id) -> AppState:
    """
    Remove a user. Departments they managed lose their manager; task
    assignments and notifications keep the id as a weak reference.
    """
    if find_user(state, user_id) is None:
        return state
    departments = tuple(
        replace(d, manager_user_id=None) if d.manager_user_id == user_id else d
        for d in state.departments
    )
    logger.info("User %s deleted", user_id)
    return replace(
        state,
        users=tuple(u for u in state.users if u.id != user_id),
        departments=departments,
    )


def set_can_create_tasks(state: AppState, user_id, allowed: bool) -> AppState:
    return update_member(state, user_id, can_create_tasks=bool(allowed))


def set_user_status(state: AppState, user_id, status: str) -> AppState:
    return update_member(state, user_id, status=status)


# ═════════════════════════════════════════════════════════════════════════════
# Credentials
# ═════════════════════════════════════════════════════════════════════════════

def _check_password(password):
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            details={"password": "too_short"},
        )


def set_password(state: AppState, user_id, new_password) -> AppState:
    """Store a new bcrypt hash and clear ``requirePasswordChange``."""
    user = find_user(state, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    _check_password(new_password)
    if new_password == TEMPORARY_PASSWORD:
        raise ValidationError("Choose a password different from the temporary one",
                              details={"password": "temporary"})
    return _replace_user(state, replace(
        user,
        password_hash=hash_password(new_password),
        require_password_change=False,
    ))


def authenticate(state: AppState, username, password) -> User | None:
    """
    Resolve *username* case-insensitively and check *password*.

    Returns the user, or None on unknown username, wrong password or a
    disabled account.
    """
    user = find_user_by_username(state, username)
    if user is None:
        return None
    if not user.is_active:
        logger.warning("Login refused for disabled user %s", user.id)
        return None
    if not verify_password(password or "", user.password_hash):
        return None
    return user
