"""
Flask-Migrate / Alembic and WSGI entry point.

Usage:
    flask db upgrade
    flask notify-overdue-action-plans
    gunicorn wsgi:app
"""

from careaudit import create_app

app = create_app()
