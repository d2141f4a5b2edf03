"""
WSGI entry point, also used by Flask-Migrate / Alembic.

Usage:
    flask --app wsgi init-db
    flask --app wsgi db upgrade
    gunicorn wsgi:app
"""

from grc import create_app

app = create_app()
