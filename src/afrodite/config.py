"""Unified server configuration backed by DB Config table.

Uses pydantic-settings ``BaseSettings`` sub-configs grouped under a top-level
``ServerConfig``.  All config values can be overridden via:

  1. env vars              (per-section prefix, highest priority)
  2. DB Config table rows  (application-level overrides)
  3. field defaults         (lowest priority)

Call ``load_config(db)`` at startup to sync the DB overrides into the
in-memory singleton.
"""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import BaseModel
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

# ---------------------------------------------------------------------------
# Single flat store of raw DB values (async -> sync bridge)
# ---------------------------------------------------------------------------
_db_values: dict[str, str] = {}


# ---------------------------------------------------------------------------
# Generic DB settings source
# ---------------------------------------------------------------------------

class DbSource(PydanticBaseSettingsSource):
    """Reads values from ``_db_values`` using a per-class key map."""

    def get_field_value(
        self, field: Any, field_name: str
    ) -> tuple[Any, str, bool]:
        key_map: dict[str, str] = getattr(self.settings_cls, "_DB_KEY_MAP", {})
        for db_key, name in key_map.items():
            if name == field_name and db_key in _db_values:
                return _db_values[db_key], field_name, False
        return None, field_name, False

    def __call__(self) -> dict[str, Any]:
        d: dict[str, Any] = {}
        for field_name in self.settings_cls.model_fields:
            val, _, _ = self.get_field_value(None, field_name)
            if val is not None:
                d[field_name] = val
        return d


class _DbSettings(BaseSettings):
    """Base for all sub-configs: wires in DbSource so env > DB > defaults."""

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (init_settings, env_settings, DbSource(settings_cls))


# ---------------------------------------------------------------------------
# Sub-configs
# ---------------------------------------------------------------------------

class GeneralConfig(_DbSettings):
    model_config = {"env_prefix": "AFRODITE_GENERAL_"}

    _DB_KEY_MAP: ClassVar[dict[str, str]] = {
        "debug_disable_api_limits": "debug_disable_api_limits",
        "debug_allow_backend_data_reset": "debug_allow_backend_data_reset",
        "api_limit_reset_interval_seconds": "api_limit_reset_interval_seconds",
    }

    debug_disable_api_limits: bool = False
    debug_allow_backend_data_reset: bool = False
    api_limit_reset_interval_seconds: int = 24 * 60 * 60


class LimitsConfig(_DbSettings):
    model_config = {"env_prefix": "AFRODITE_LIMIT_"}

    _DB_KEY_MAP: ClassVar[dict[str, str]] = {}  # auto-generated below

    # --- Daily API limits ---
    news_iterator_reset_daily_max_count: int = 200
    news_iterator_next_page_daily_max_count: int = 1000
    received_likes_iterator_reset_daily_max_count: int = 200
    received_likes_iterator_next_page_daily_max_count: int = 1000

    # --- Paging ---
    page_limit_iterator: int = 50
    default_page_size: int = 25

    # --- News ---
    news_title_max: int = 128
    news_body_max: int = 4000

    # --- Profile ---
    profile_name_max: int = 64
    profile_text_max: int = 2000

    # --- Blocks ---
    block_list_max: int = 10000


# Auto-generate the key map: limit_{field} -> field
LimitsConfig._DB_KEY_MAP = {f"limit_{f}": f for f in LimitsConfig.model_fields}


# ---------------------------------------------------------------------------
# Top-level ServerConfig
# ---------------------------------------------------------------------------

_SECTIONS: dict[str, type[BaseSettings]] = {
    "general": GeneralConfig,
    "limits": LimitsConfig,
}

# Reverse lookup: DB key -> section name
_KEY_TO_SECTION: dict[str, str] = {}
for _section_name, _cls in _SECTIONS.items():
    for _db_key in getattr(_cls, "_DB_KEY_MAP", {}):
        _KEY_TO_SECTION[_db_key] = _section_name


class ServerConfig(BaseModel):
    general: GeneralConfig = GeneralConfig()
    limits: LimitsConfig = LimitsConfig()


# Module-level singleton
config = ServerConfig()


# ---------------------------------------------------------------------------
# Reload helpers
# ---------------------------------------------------------------------------

def _reload_section(section_name: str) -> None:
    """Rebuild a single sub-config from DB values + env."""
    setattr(config, section_name, _SECTIONS[section_name]())


def _reload_all() -> None:
    for section_name in _SECTIONS:
        _reload_section(section_name)


# ---------------------------------------------------------------------------
# DB <-> memory sync
# ---------------------------------------------------------------------------

async def load_config(db: AsyncSession) -> None:
    """Load all config overrides from Config table into the in-memory singleton."""
    from afrodite.db.models import Config

    result = await db.execute(select(Config))
    _db_values.clear()
    for row in result.scalars().all():
        _db_values[row.key] = row.value
    _reload_all()


async def save_config_value(db: AsyncSession, key: str, value: str) -> None:
    """Write a single config value to DB + update in-memory.

    The caller is responsible for calling ``await db.commit()``.
    """
    from afrodite.db.models import Config

    result = await db.execute(select(Config).where(Config.key == key))
    row = result.scalar_one_or_none()
    if row:
        row.value = value
    else:
        db.add(Config(key=key, value=value))

    _db_values[key] = value

    section = _KEY_TO_SECTION.get(key)
    if section:
        _reload_section(section)


async def save_limit(db: AsyncSession, name: str, value: int) -> None:
    """Write a single limit to DB + reload in-memory.

    The caller is responsible for calling ``await db.commit()``.
    """
    await save_config_value(db, f"limit_{name}", str(value))
