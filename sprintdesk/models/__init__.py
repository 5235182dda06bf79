"""
SprintDesk
Shared SQLAlchemy instance and model registry.

All model modules import ``db`` from here; ``create_app`` imports every
model module so ``db.create_all()`` and Flask-Migrate see the full schema.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
