from __future__ import annotations

import json

import pytest

from heartheals.config.settings import ConfigurationError
from heartheals.entitlements.loader import FeatureCatalogLoader
from heartheals.entitlements.models import SubscriptionTier


def _write(tmp_path, content) -> str:
    config_file = tmp_path / "features.json"
    if isinstance(content, str):
        config_file.write_text(content, encoding="utf-8")
    else:
        config_file.write_text(json.dumps(content), encoding="utf-8")
    return str(config_file)


def test_shipped_catalog_loads(catalog_loader):
    catalog = catalog_loader.catalog

    assert catalog.feature_ids() == frozenset(
        {"breathing-exercise", "emotional-log", "journal-entry", "premium-content", "emotion-analytics"}
    )
    assert catalog.get("emotional-log").usage_limit_for_free_tier == 5
    assert catalog.get("journal-entry").is_usage_limited is False
    assert catalog.get("premium-content").required_tier == SubscriptionTier.PREMIUM


def test_loader_strips_feature_ids(tmp_path):
    path = _write(tmp_path, {"features": {" emotional-log ": {"required_tier": "free", "free_tier_usage_limit": 3}}})
    loader = FeatureCatalogLoader(path)

    assert "emotional-log" in loader.catalog
    assert loader.get_feature(" emotional-log ").usage_limit_for_free_tier == 3


def test_required_tier_defaults_to_free(tmp_path):
    loader = FeatureCatalogLoader(_write(tmp_path, {"features": {"mood-check": {}}}))
    assert loader.get_feature("mood-check").required_tier == SubscriptionTier.FREE


def test_unknown_feature_raises_key_error(catalog_loader):
    with pytest.raises(KeyError):
        catalog_loader.get_feature("does-not-exist")


def test_blank_feature_id_raises_value_error(catalog_loader):
    with pytest.raises(ValueError):
        catalog_loader.get_feature("  ")


def test_missing_file_raises_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        FeatureCatalogLoader(str(tmp_path / "missing.json"))


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        "[]",
        {"plans": {}},
        {"features": []},
        {"features": {}},
        {"features": {"x": "free"}},
        {"features": {"x": {"required_tier": "gold"}}},
        {"features": {"x": {"free_tier_usage_limit": -1}}},
        {"features": {"x": {"free_tier_usage_limit": "5"}}},
        {"features": {"x": {"free_tier_usage_limit": True}}},
    ],
)
def test_malformed_catalog_raises_configuration_error(tmp_path, content):
    with pytest.raises(ConfigurationError):
        FeatureCatalogLoader(_write(tmp_path, content))


def test_reload_picks_up_changes(tmp_path):
    path = _write(tmp_path, {"features": {"emotional-log": {"free_tier_usage_limit": 5}}})
    loader = FeatureCatalogLoader(path)

    _write(tmp_path, {"features": {"emotional-log": {"free_tier_usage_limit": 7}}})
    loader.reload()

    assert loader.get_feature("emotional-log").usage_limit_for_free_tier == 7


def test_failed_reload_keeps_previous_catalog(tmp_path):
    path = _write(tmp_path, {"features": {"emotional-log": {"free_tier_usage_limit": 5}}})
    loader = FeatureCatalogLoader(path)

    _write(tmp_path, "{broken")
    with pytest.raises(ConfigurationError):
        loader.reload()

    assert loader.get_feature("emotional-log").usage_limit_for_free_tier == 5
