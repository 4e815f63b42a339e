"""
Flask extension singletons for LR Sync.

- db:            SQLAlchemy models (profiles, sales, purchases, TIN library,
                 commission reports, notifications)
- migrate:       Alembic migrations via `flask db ...`
- login_manager: cookie session for the back-office accounts
- csrf:          CSRFProtect; JSON clients send the token from /auth/csrf-token
                 in the X-CSRFToken header

Bound to the app in create_app(); import from here to avoid circular imports.
"""

from flask_login import LoginManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from flask_wtf import CSRFProtect

db = SQLAlchemy()
migrate = Migrate()
csrf = CSRFProtect()

login_manager = LoginManager()
login_manager.login_view = "auth.login"
