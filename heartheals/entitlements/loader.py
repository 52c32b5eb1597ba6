from __future__ import annotations

import json
import logging
from pathlib import Path
from threading import RLock
from types import MappingProxyType
from typing import Dict, FrozenSet, Mapping

from heartheals.config.settings import ConfigurationError

from .models import FeatureDescriptor, SubscriptionTier

logger = logging.getLogger(__name__)


class FeatureCatalog:
    """Parsed feature mapping loaded from config/features.json."""

    def __init__(self, features: Mapping[str, FeatureDescriptor]) -> None:
        self._features = MappingProxyType(dict(features))

    def get(self, feature_id: str) -> FeatureDescriptor:
        normalized = str(feature_id).strip()
        feature = self._features.get(normalized)
        if feature is None:
            raise KeyError(f"unknown feature_id: {normalized}")
        return feature

    def __contains__(self, feature_id: object) -> bool:
        return str(feature_id).strip() in self._features

    def __len__(self) -> int:
        return len(self._features)

    def feature_ids(self) -> FrozenSet[str]:
        return frozenset(self._features)


class FeatureCatalogLoader:
    """Loads feature descriptors from config/features.json with reload support.

    Malformed files raise ConfigurationError on construction so a bad deploy
    fails at startup instead of on the first gated request.
    """

    def __init__(self, config_path: str = "config/features.json") -> None:
        self._config_path = Path(config_path)
        self._lock = RLock()
        self._catalog: FeatureCatalog
        self.reload()

    @property
    def catalog(self) -> FeatureCatalog:
        with self._lock:
            return self._catalog

    def reload(self) -> None:
        raw = self._read_config_file()
        parsed = self._parse_config(raw)
        with self._lock:
            self._catalog = parsed
        logger.info(
            "Loaded feature catalog",
            extra={"path": str(self._config_path), "feature_count": len(parsed)},
        )

    def get_feature(self, feature_id: str) -> FeatureDescriptor:
        if not str(feature_id).strip():
            raise ValueError("feature_id is required")
        return self.catalog.get(feature_id)

    def _read_config_file(self) -> dict:
        try:
            with self._config_path.open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except FileNotFoundError as exc:
            raise ConfigurationError(f"feature catalog not found: {self._config_path}") from exc
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"feature catalog is not valid JSON: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigurationError("config/features.json must contain a top-level object")
        return raw

    @staticmethod
    def _parse_config(raw: dict) -> FeatureCatalog:
        features_raw = raw.get("features")
        if not isinstance(features_raw, dict):
            raise ConfigurationError("config/features.json must include an object field named 'features'")

        features: Dict[str, FeatureDescriptor] = {}
        for feature_id, feature_data in features_raw.items():
            if not isinstance(feature_id, str) or not feature_id.strip():
                raise ConfigurationError("each feature id must be a non-empty string")
            if not isinstance(feature_data, dict):
                raise ConfigurationError(f"feature '{feature_id}' must be an object")

            tier_raw = feature_data.get("required_tier", SubscriptionTier.FREE.value)
            try:
                required_tier = SubscriptionTier(tier_raw)
            except ValueError as exc:
                raise ConfigurationError(
                    f"feature '{feature_id}' has invalid required_tier: {tier_raw!r}"
                ) from exc

            limit = feature_data.get("free_tier_usage_limit")
            if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 0):
                raise ConfigurationError(
                    f"feature '{feature_id}' free_tier_usage_limit must be a non-negative integer or null"
                )

            descriptor = FeatureDescriptor(
                feature_id=feature_id,
                required_tier=required_tier,
                usage_limit_for_free_tier=limit,
            )
            features[descriptor.feature_id] = descriptor

        if not features:
            raise ConfigurationError("config/features.json must define at least one feature")

        return FeatureCatalog(features)
