"""Tests for environment-driven settings."""
import pytest

from bgremover.catalog import DEFAULT_MODEL_ID, eligible_models
from bgremover.config import Settings


def test_defaults():
    settings = Settings()
    assert settings.default_model_id == DEFAULT_MODEL_ID
    assert settings.redirect_url == "https://bg-mobile.addy.ie"
    assert len(settings.sample_image_urls) == 4
    assert settings.legacy_fallback_matching is False


def test_env_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("MODELS_DIR", str(tmp_path))
    monkeypatch.setenv("FORCE_CPU", "true")
    monkeypatch.setenv("LEGACY_FALLBACK_MATCHING", "1")

    settings = Settings()

    assert settings.models_dir == tmp_path
    assert settings.force_cpu is True
    assert settings.legacy_fallback_matching is True


@pytest.mark.parametrize("model_id", ["Xenova/modnet", "Xenova/modnet-ios", "acme/unknown"])
def test_default_model_must_be_compatible(model_id):
    with pytest.raises(ValueError):
        Settings(default_model_id=model_id)


def test_edge_band_must_be_ordered():
    with pytest.raises(ValueError):
        Settings(edge_band_low=0.5, edge_band_high=0.4)


class TestCatalogEligibility:
    def test_cpu_only_device(self):
        assert [s.model_id for s in eligible_models(False, False)] == [DEFAULT_MODEL_ID]

    def test_compatible_model_always_eligible(self):
        for webgpu in (True, False):
            for ios in (True, False):
                ids = [s.model_id for s in eligible_models(webgpu, ios)]
                assert DEFAULT_MODEL_ID in ids
