"""
Care Audit Service
SQLAlchemy extension instance shared by all domain models.

Usage:
    from careaudit.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
