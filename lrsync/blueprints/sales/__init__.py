from .routes import sales_bp  # noqa: F401
