from .routes import commission_bp  # noqa: F401
