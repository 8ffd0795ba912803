from __future__ import annotations

import importlib
import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from flask import Flask

from .container import Container, build_container, build_memory_container
from .database.bootstrap import apply_schema, db_config_from_dict, list_tables
from .ledger.controller import register as register_ledger
from .settings import get_settings_module

logger = logging.getLogger(__name__)


def create_app(container: Optional[Container] = None) -> Flask:
    load_dotenv(override=False)
    app = Flask(__name__)

    settings_module = get_settings_module()
    settings = importlib.import_module(settings_module)
    app.secret_key = getattr(settings, "SECRET_KEY")
    app.config["DEBUG"] = bool(getattr(settings, "DEBUG", False))
    app.config["TESTING"] = bool(getattr(settings, "TESTING", False))

    logging.basicConfig(
        level=str(getattr(settings, "LOG_LEVEL", "INFO")).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if container is None:
        container = _container_from_settings(settings, settings_module)

    register_ledger(app, container)
    return app


def _container_from_settings(settings, settings_module: str) -> Container:
    db_config = getattr(settings, "DB_CONFIG")
    store_kind = str(getattr(settings, "LEDGER_STORE", "mysql")).lower()
    page_size = int(getattr(settings, "HISTORY_PAGE_SIZE", 50))
    tolerance = int(getattr(settings, "FLAG_TOLERANCE_MINUTES", 15))

    logger.info("Starting hours ledger (settings=%s, store=%s)", settings_module, store_kind)

    if store_kind == "memory":
        return build_memory_container(history_page_size=page_size, flag_tolerance_minutes=tolerance)
    if store_kind != "mysql":
        raise ValueError(f"Unknown LEDGER_STORE: {store_kind!r}")

    logger.debug("Database %s", db_config_from_dict(db_config).describe())
    if bool(getattr(settings, "AUTO_INIT_DB", False)):
        schema_path = Path(__file__).resolve().parents[2] / "database" / "schema.sql"
        apply_schema(db_config, schema_path=schema_path)
        logger.info("Schema ready (tables=%d)", len(list_tables(db_config)))

    return build_container(db_config=db_config, history_page_size=page_size, flag_tolerance_minutes=tolerance)
