import os


def get_settings_module() -> str:
    """Settings module for APP_ENV (development unless told otherwise)."""
    env = os.getenv("APP_ENV", "development").lower()

    if env in {"prod", "production"}:
        return f"{__name__}.production"

    if env in {"test", "testing"}:
        return f"{__name__}.testing"

    return f"{__name__}.development"
