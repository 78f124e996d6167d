"""
WSGI entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi seed-state
    flask --app wsgi scan-due-tasks
"""

from kpi_portal import create_app

app = create_app()
