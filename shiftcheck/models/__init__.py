"""
ShiftCheck
SQLAlchemy instance shared by every model module.

Models are imported by the application factory so that ``db.create_all()``
and Alembic see the full metadata.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
