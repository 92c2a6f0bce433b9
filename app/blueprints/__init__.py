"""
Notice Board
Blueprint registry.
"""

from app.blueprints.admin_bp import admin_bp
from app.blueprints.audit_bp import audit_bp
from app.blueprints.auth_bp import auth_bp
from app.blueprints.health_bp import health_bp
from app.blueprints.notice_bp import notice_bp

ALL_BLUEPRINTS = (auth_bp, notice_bp, admin_bp, audit_bp, health_bp)
