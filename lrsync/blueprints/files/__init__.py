from .routes import files_bp  # noqa: F401
