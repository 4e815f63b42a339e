from .routes import taxpayers_bp  # noqa: F401
