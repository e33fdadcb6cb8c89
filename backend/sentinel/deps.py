"""Process-wide decoder wiring, shared by every request."""

from __future__ import annotations

import logging
from datetime import timedelta
from functools import lru_cache

from .config import ServiceSettings, load_settings
from .extension_settings import (
    CachingSettingsStore,
    ExtensionSettingsStore,
    InMemorySettingsStore,
    JsonFileSettingsStore,
    SqlSettingsStore,
)
from .pipeline import UplinkDecoder
from .segmentation import InMemoryContextStore

logger = logging.getLogger(__name__)


def build_settings_store(settings: ServiceSettings) -> ExtensionSettingsStore:
    if settings.settings_store == "memory":
        return InMemorySettingsStore()
    if settings.settings_store == "sql":
        from .db import AsyncSessionLocal

        return CachingSettingsStore(SqlSettingsStore(AsyncSessionLocal))
    return CachingSettingsStore(JsonFileSettingsStore(settings.settings_dir))


def build_decoder(settings: ServiceSettings) -> UplinkDecoder:
    logger.info(
        "Decoder uses the %s settings store (duplicate window %d ms, context ttl %s)",
        settings.settings_store,
        settings.duplicate_window_ms,
        settings.segment_context_ttl_seconds,
    )
    return UplinkDecoder(
        settings_store=build_settings_store(settings),
        contexts=InMemoryContextStore(ttl_seconds=settings.segment_context_ttl_seconds),
        duplicate_window=timedelta(milliseconds=settings.duplicate_window_ms),
    )


@lru_cache(maxsize=1)
def get_decoder() -> UplinkDecoder:
    return build_decoder(load_settings())
