"""
Pathway Progression Platform
SQLAlchemy extension instance shared by every model module.

Model modules:
    - auth:     Tenant, User
    - pathway:  Stage, AutomationRule (+ pathway / auto-advance constants)
    - member:   Member, StageHistory, Note, MemberTag
    - task:     Task
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
