"""Configuration module for chartspot."""

from .settings import (
    ImageCacheSettings,
    ITunesSettings,
    MetadataCacheSettings,
    ObservabilitySettings,
    RankingSettings,
    Settings,
    get_settings,
)

__all__ = [
    "ITunesSettings",
    "ImageCacheSettings",
    "MetadataCacheSettings",
    "ObservabilitySettings",
    "RankingSettings",
    "Settings",
    "get_settings",
]
