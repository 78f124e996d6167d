"""
KPI Portal
Domain models.

The aggregate (AppState and its entities) is a tree of immutable dataclasses
in ``directory``, ``kpi``, ``task``, ``activity``, ``notification`` and
``state``. ``state_document`` is the only SQLAlchemy table: it holds the
serialised aggregate for the SQL-backed state store.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
