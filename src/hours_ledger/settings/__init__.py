import os


def get_settings_module() -> str:
    env = os.getenv("APP_ENV", "development").lower()

    if env in {"prod", "production"}:
        return "hours_ledger.settings.production"

    if env in {"test", "testing"}:
        return "hours_ledger.settings.testing"

    return "hours_ledger.settings.development"
