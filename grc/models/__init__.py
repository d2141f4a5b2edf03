"""
GRC Compliance Tracker
SQLAlchemy extension instance shared by all model modules.

Usage:
    from grc.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
