from __future__ import annotations

import importlib
import logging
from pathlib import Path

from dotenv import load_dotenv

from hours_ledger.database.bootstrap import apply_schema, db_config_from_dict, list_tables
from hours_ledger.settings import get_settings_module

logger = logging.getLogger("hours_ledger.scripts.init_db")


def main() -> None:
    load_dotenv(override=False)
    settings = importlib.import_module(get_settings_module())
    logging.basicConfig(level=str(getattr(settings, "LOG_LEVEL", "INFO")).upper())
    db_config = dict(settings.DB_CONFIG)

    schema_path = Path(__file__).resolve().parents[1] / "database" / "schema.sql"
    apply_schema(db_config, schema_path=schema_path)
    tables = list_tables(db_config)
    logger.info("Applied schema.sql -> %s (tables=%d)", db_config_from_dict(db_config).describe(), len(tables))


if __name__ == "__main__":
    main()
