"""
Global AI configuration store backed by SQLite + OS keychain (desktop)
or SQLite + env vars (web).

Public API: get_global_config, update_global_config, reset_global_config,
get_api_key_for_provider. Stage settings live in the single
``global_ai_config`` row; API keys never do.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from api.config_models import (
    AnalysisTypeEnum,
    ApiKeys,
    GlobalAIConfig,
    GlobalAIConfigUpdate,
    LLMProviderEnum,
)
from llm.prompt_defaults import default_global_config
from storage.database import Database, get_db
from storage.keychain import KeychainManager, get_keychain

logger = logging.getLogger(__name__)

REQUIRE_AUTH = os.getenv("REQUIRE_AUTH", "").lower() == "true"

_ENV_KEYS = {
    LLMProviderEnum.OPENAI: "OPENAI_API_KEY",
    LLMProviderEnum.ANTHROPIC: "ANTHROPIC_API_KEY",
    LLMProviderEnum.GOOGLE: "GOOGLE_API_KEY",
}

_INITIAL_VERSION = "1.0.0"


def bump_patch(version: str) -> str:
    """'1.2.3' -> '1.2.4'. Unparseable versions restart at 1.0.1."""
    parts = version.split(".")
    if len(parts) != 3 or not all(p.isdigit() for p in parts):
        logger.warning("Unparseable config version %r; restarting numbering", version)
        return "1.0.1"
    major, minor, patch = (int(p) for p in parts)
    return f"{major}.{minor}.{patch + 1}"


def _stage_payload(config: GlobalAIConfig) -> dict:
    return {name: cfg.model_dump(mode="json") for name, cfg in config.stage_configs().items()}


def _load_api_keys(keychain: Optional[KeychainManager]) -> ApiKeys:
    if REQUIRE_AUTH:
        return ApiKeys(**{p.value: os.getenv(env) for p, env in _ENV_KEYS.items()})
    keychain = keychain or get_keychain()
    return ApiKeys(**{p.value: keychain.get_provider_key(p.value) for p in LLMProviderEnum})


def _from_row(row: dict, keychain: Optional[KeychainManager]) -> GlobalAIConfig:
    return GlobalAIConfig(
        api_keys=_load_api_keys(keychain),
        **row["config"],
        version=row["version"],
        last_updated_by=row.get("last_updated_by"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def get_global_config(
    db: Optional[Database] = None,
    keychain: Optional[KeychainManager] = None,
) -> GlobalAIConfig:
    """Return the deployment-wide config, creating it from defaults on first access."""
    db = db or get_db()
    row = db.get_global_config()
    if row is None:
        logger.info("No global AI config found; creating defaults")
        row = db.create_global_config_if_missing(
            _stage_payload(default_global_config()), _INITIAL_VERSION,
        )
    return _from_row(row, keychain)


def _store_api_keys(api_keys: ApiKeys, keychain: Optional[KeychainManager]) -> None:
    if REQUIRE_AUTH:
        if api_keys.model_fields_set:
            logger.warning("Ignoring API key update in web mode; keys come from the environment")
        return
    keychain = keychain or get_keychain()
    for name in api_keys.model_fields_set:
        value = getattr(api_keys, name)
        if value is None or value == "":
            keychain.delete_provider_key(name)
        elif "..." in value:
            # Masked value echoed back by the settings form; keep the stored key.
            continue
        else:
            keychain.set_provider_key(name, value)


def update_global_config(
    update: GlobalAIConfigUpdate,
    user_id: str,
    db: Optional[Database] = None,
    keychain: Optional[KeychainManager] = None,
) -> GlobalAIConfig:
    """Overwrite the given stage configs, bump the patch version, record the updater."""
    db = db or get_db()
    current = get_global_config(db=db, keychain=keychain)

    if update.api_keys is not None:
        _store_api_keys(update.api_keys, keychain)

    stages = _stage_payload(current)
    for analysis_type in AnalysisTypeEnum:
        new_cfg = getattr(update, analysis_type.value)
        if new_cfg is not None:
            stages[analysis_type.value] = new_cfg.model_dump(mode="json")

    version = bump_patch(current.version)
    row = db.upsert_global_config(stages, version, user_id)
    logger.info("Global AI config updated to %s by %s", version, user_id)
    return _from_row(row, keychain)


def reset_global_config(
    user_id: str,
    db: Optional[Database] = None,
    keychain: Optional[KeychainManager] = None,
) -> GlobalAIConfig:
    """Restore default stage settings at version 1.0.0. API keys are kept."""
    db = db or get_db()
    row = db.upsert_global_config(
        _stage_payload(default_global_config()), _INITIAL_VERSION, user_id,
    )
    logger.info("Global AI config reset to defaults by %s", user_id)
    return _from_row(row, keychain)


def get_api_key_for_provider(
    provider: LLMProviderEnum | str,
    keychain: Optional[KeychainManager] = None,
) -> Optional[str]:
    """Get the API key for ``provider`` (env in web mode, keychain on desktop)."""
    provider = LLMProviderEnum(provider)
    if REQUIRE_AUTH:
        return os.getenv(_ENV_KEYS[provider])
    keychain = keychain or get_keychain()
    return keychain.get_provider_key(provider.value)
