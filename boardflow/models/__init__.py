"""
Boardflow
Database handle shared by every model module.

Usage:
    from boardflow.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
