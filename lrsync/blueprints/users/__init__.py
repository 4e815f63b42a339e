"""
Users blueprint package.

Exposes the Blueprint object imported in lrsync.__init__.
"""

from .routes import users_bp  # noqa: F401
