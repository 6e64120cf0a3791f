from __future__ import annotations

import importlib
import logging

from dotenv import load_dotenv
from flask import Flask

from .attendance.controller import register as register_attendance
from .common.logging_setup import configure_logging
from .config import get_settings_module
from .container import build_container
from .database.bootstrap import apply_schema
from .identities.controller import register as register_identities

logger = logging.getLogger(__name__)


def create_app() -> Flask:
    load_dotenv(override=False)
    app = Flask(__name__)

    settings_module = get_settings_module()
    settings = importlib.import_module(settings_module)
    configure_logging(getattr(settings, "LOG_LEVEL", "INFO"), getattr(settings, "LOG_FILE", "") or None)

    app.secret_key = getattr(settings, "SECRET_KEY")
    app.config["DEBUG"] = bool(getattr(settings, "DEBUG", False))

    db_config = getattr(settings, "DB_CONFIG")
    logger.info(
        "settings=%s db=%s@%s:%s/%s",
        settings_module,
        db_config.get("user"),
        db_config.get("host"),
        db_config.get("port", 3306),
        db_config.get("database"),
    )

    container = build_container(settings)
    if bool(getattr(settings, "AUTO_INIT_DB", False)):
        apply_schema(container.conn)

    register_identities(app, container)
    register_attendance(app, container)

    return app


def main() -> None:
    create_app().run(host="0.0.0.0", port=5000, threaded=True)


if __name__ == "__main__":
    main()
