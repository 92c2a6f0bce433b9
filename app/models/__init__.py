"""
University Notice Board
SQLAlchemy model registry.

All models import the shared ``db`` handle from here:

    from app.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
