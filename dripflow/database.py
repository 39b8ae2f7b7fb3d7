"""
Database - Instância compartilhada do Flask-SQLAlchemy.

JSONB no PostgreSQL, JSON genérico nos demais dialetos (SQLite nos testes).
"""
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.dialects.postgresql import JSONB

db = SQLAlchemy()

JSONType = db.JSON().with_variant(JSONB(), 'postgresql')


def init_db(app):
    """Registra os models no metadata do app."""
    with app.app_context():
        from dripflow import models  # noqa: F401
