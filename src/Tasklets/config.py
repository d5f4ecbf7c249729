"""Settings loader for the Tasklets importer."""

from pathlib import Path
from typing import Any

import tomllib
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _toml_settings_source() -> dict[str, Any]:
    """Load settings from config.toml with keys mapped to Settings fields.

    This source has LOWER priority than env/.env so those can override TOML.
    """
    cfg_path = Path("config.toml")
    if not cfg_path.exists():
        return {}
    with cfg_path.open("rb") as f:
        t = tomllib.load(f)

    db_cfg = t.get("database", {}) or {}
    import_cfg = t.get("import", {}) or {}
    log_cfg = t.get("logging", {}) or {}

    out: dict[str, Any] = {
        "env": t.get("app", {}).get("env", "dev"),
        # Logging config
        "logging_level": log_cfg.get("level", "INFO"),
        "logging_file_path": log_cfg.get("file_path", "logs/tasklets-import.jsonl"),
        "logging_max_bytes": log_cfg.get("max_bytes", 5_000_000),
        "logging_backup_count": log_cfg.get("backup_count", 5),
    }
    if db_cfg.get("url"):
        out["database_url"] = db_cfg["url"]

    # [import] keys map onto import_* fields; absent keys keep model defaults
    for key in ("source_path", "product_name", "user_email", "epic_color", "issue_keys"):
        if key in import_cfg and import_cfg[key] is not None:
            out[f"import_{key}"] = import_cfg[key]

    # Per-handler levels: strings INFO|DEBUG|WARNING|ERROR|CRITICAL|NONE
    # Backward-compatible: booleans map True->level, False->NONE
    overall = out["logging_level"]

    def _norm_level(v, default):
        if isinstance(v, str):
            return v.upper()
        if isinstance(v, bool):
            return default if v else "NONE"
        return default

    out["logging_console"] = _norm_level(log_cfg.get("console"), overall)
    out["logging_file"] = _norm_level(log_cfg.get("to_file"), overall)
    return out


class Settings(BaseSettings):
    env: str = Field(default="dev")
    database_url: str = Field(default="sqlite+aiosqlite:///./tasklets.sqlite3")

    # --- Import ---
    import_source_path: str = ".beads/issues.jsonl"
    import_product_name: str = "Tasklets"
    import_user_email: str = "ramesh@systech.com"
    import_epic_color: str = "#3B82F6"
    # Assign per-product issue keys (e.g. TSKLTS-E001) to created records
    import_issue_keys: bool = True

    # --- Logging ---
    logging_level: str = "INFO"
    logging_console: str = "INFO"
    logging_file: str = "INFO"
    logging_file_path: str = "logs/tasklets-import.jsonl"
    logging_max_bytes: int = 5_000_000
    logging_backup_count: int = 5

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        env_file=".env",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Precedence (highest to lowest):
        # 1) init_settings (explicit overrides in code/tests)
        # 2) dotenv (.env in cwd)
        # 3) env_settings (OS env)
        # 4) TOML (config.toml)
        # 5) file_secret_settings
        return (
            init_settings,
            dotenv_settings,
            env_settings,
            _toml_settings_source,
            file_secret_settings,
        )


def load_settings(**overrides: Any) -> Settings:
    return Settings(**overrides)
