"""
Flask-Migrate / Alembic entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi seed-default-workflow --project-id 1
"""

from issueflow import create_app

app = create_app()
