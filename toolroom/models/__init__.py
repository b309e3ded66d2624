"""
Toolroom persistence layer.

``db`` is the single Flask-SQLAlchemy handle shared by every model and
service module. Model modules import it from here; the application factory
binds it with ``db.init_app(app)``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
