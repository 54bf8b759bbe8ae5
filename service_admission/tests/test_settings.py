"""
Unit tests for admission settings and the frozen runtime config.
"""

import dataclasses

import pytest
import yaml

from shared.errors import ConfigurationError
from service_admission.app.metering.pricing import DEFAULT_PRICING
from service_admission.app.ratelimit.models import FailurePolicy, SubjectType
from service_admission.app.settings import AdmissionConfig, AdmissionSettings, load_admission_config


class TestAdmissionSettings:
    """Environment parsing."""

    def test_defaults(self):
        config = load_admission_config(AdmissionSettings())

        assert config.redis_url == "redis://localhost:6379/0"
        assert config.operation_timeout == 4.0
        assert config.pricing is DEFAULT_PRICING
        assert config.key_scheme.prefix == ""
        assert config.failure_policies[SubjectType.IP] is FailurePolicy.CLOSED
        assert config.failure_policies[SubjectType.USER] is FailurePolicy.OPEN
        assert (config.ip_config.limit, config.ip_config.window_seconds) == (200, 60)
        assert config.guarded_path_prefixes == ()

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("ADMISSION_REDIS_URL", "redis://cache:6379/2")
        monkeypatch.setenv("ADMISSION_FAIL_POLICY_USER", "closed")
        monkeypatch.setenv("ADMISSION_FAIL_POLICY_IP", "open")
        monkeypatch.setenv("ADMISSION_CACHE_KEY_PREFIX", "mk:")
        monkeypatch.setenv("ADMISSION_NORMALIZE_MODEL_NAMES", "true")
        monkeypatch.setenv("ADMISSION_STORE_OPERATION_TIMEOUT", "1.5")
        monkeypatch.setenv("ADMISSION_GUARDED_PATH_PREFIXES", '["/catalog"]')

        config = load_admission_config()

        assert config.redis_url == "redis://cache:6379/2"
        assert config.failure_policies[SubjectType.USER] is FailurePolicy.CLOSED
        assert config.failure_policies[SubjectType.IP] is FailurePolicy.OPEN
        assert config.key_scheme.prefix == "mk:"
        assert config.normalize_model_names is True
        assert config.operation_timeout == 1.5
        assert config.guarded_path_prefixes == ("/catalog",)

    def test_pricing_file_loaded(self, tmp_path):
        path = tmp_path / "pricing.yaml"
        path.write_text(yaml.safe_dump({"models": {"default": {"input_per_1k": 0.5, "output_per_1k": 0.5}}}))

        config = load_admission_config(AdmissionSettings(pricing_file=str(path)))

        assert list(config.pricing.prices) == ["default"]

    def test_bad_pricing_file_fails_startup(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_admission_config(AdmissionSettings(pricing_file=str(tmp_path / "missing.yaml")))

    def test_config_is_immutable(self):
        config = load_admission_config(AdmissionSettings())

        with pytest.raises(dataclasses.FrozenInstanceError):
            config.redis_url = "redis://elsewhere"
        with pytest.raises(TypeError):
            config.failure_policies[SubjectType.IP] = FailurePolicy.OPEN

    def test_direct_construction_for_tests(self):
        config = AdmissionConfig(redis_url="redis://fake")
        assert config.pricing is DEFAULT_PRICING
