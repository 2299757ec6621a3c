"""Tests for environment profiles functionality."""

import pytest
from pydantic import ValidationError

import featureforge.errors as errors
import featureforge.profiles as profiles


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "featureforge.yaml"
    path.write_text(
        """
default_profile: dev

profiles:
  dev:
    schema: ./schema.yaml
  production:
    schema: ${oc.env:FF_TEST_SCHEMA,/srv/default.yaml}
    staleness: raise
    on_missing: keep
    retry:
      max_attempts: 5
      base_delay: 0.5
"""
    )
    return path


# =============================================================================
# Pydantic Config Validation Tests
# =============================================================================


class TestProfileConfig:
    """Tests for ProfileConfig."""

    def test_defaults(self):
        config = profiles.ProfileConfig()
        assert config.schema_ is None
        assert config.staleness == "warn"
        assert config.validation == "raise"
        assert config.on_missing == "drop"
        assert config.retry is None

    def test_schema_alias(self):
        """The schema key maps to schema_."""
        config = profiles.ProfileConfig.model_validate({"schema": "defs.yaml"})
        assert config.schema_ == "defs.yaml"

    def test_invalid_staleness_raises(self):
        with pytest.raises(ValidationError):
            profiles.ProfileConfig(staleness="sometimes")  # type: ignore[arg-type]

    def test_retry_attempts_must_be_positive(self):
        with pytest.raises(ValidationError):
            profiles.RetryConfig(max_attempts=0)


# =============================================================================
# Loading
# =============================================================================


class TestLoadConfig:
    """Tests for load_config."""

    def test_missing_file_returns_none(self, tmp_path):
        assert profiles.load_config(tmp_path / "featureforge.yaml") is None

    def test_invalid_yaml_raises(self, tmp_path):
        path = tmp_path / "featureforge.yaml"
        path.write_text("profiles: [unclosed")

        with pytest.raises(errors.ProfileError, match="Failed to parse"):
            profiles.load_config(path)

    def test_list_document_raises(self, tmp_path):
        path = tmp_path / "featureforge.yaml"
        path.write_text("- dev\n- production\n")

        with pytest.raises(errors.ProfileError, match="Expected YAML mapping"):
            profiles.load_config(path)

    def test_schema_violation_lists_locations(self, tmp_path):
        path = tmp_path / "featureforge.yaml"
        path.write_text("profiles:\n  dev:\n    staleness: sometimes\n")

        with pytest.raises(errors.ProfileError, match="profiles.dev.staleness"):
            profiles.load_config(path)


class TestLoadProfile:
    """Tests for load_profile."""

    def test_uses_default_profile(self, config_file, monkeypatch):
        # Given no explicit profile
        monkeypatch.delenv(profiles.PROFILE_ENV_VAR, raising=False)

        # When loading
        profile = profiles.load_profile(config_path=config_file)

        # Then the default profile is used
        assert profile.schema_ == "./schema.yaml"

    def test_env_var_selects_profile(self, config_file, monkeypatch):
        # Given FEATUREFORGE_PROFILE and the variable the profile interpolates
        monkeypatch.setenv(profiles.PROFILE_ENV_VAR, "production")
        monkeypatch.setenv("FF_TEST_SCHEMA", "/srv/schema.yaml")

        # When loading
        profile = profiles.load_profile(config_path=config_file)

        # Then the env profile is resolved with its interpolations
        assert profile.schema_ == "/srv/schema.yaml"
        assert profile.staleness == "raise"
        assert profile.on_missing == "keep"
        assert profile.retry == profiles.RetryConfig(max_attempts=5, base_delay=0.5)

    def test_missing_env_var_raises(self, tmp_path, monkeypatch):
        # Given a profile interpolating an unset variable without default
        path = tmp_path / "featureforge.yaml"
        path.write_text("profiles:\n  dev:\n    schema: ${oc.env:FF_TEST_MISSING}\n")
        monkeypatch.delenv("FF_TEST_MISSING", raising=False)

        # When loading
        # Then resolution fails with a profile error
        with pytest.raises(errors.ProfileError, match="Failed to resolve"):
            profiles.load_profile(config_path=path)

    def test_unknown_profile_lists_available(self, config_file):
        with pytest.raises(errors.ProfileError, match=r"dev \(default\), production"):
            profiles.load_profile("staging", config_path=config_file)

    def test_no_config_file_raises(self, tmp_path):
        with pytest.raises(errors.ProfileError, match="No featureforge.yaml found"):
            profiles.load_profile(config_path=tmp_path / "featureforge.yaml")


def test_get_profile_info_reports_source(config_file, monkeypatch):
    monkeypatch.delenv(profiles.PROFILE_ENV_VAR, raising=False)
    name, source, _ = profiles.get_profile_info(config_file)
    assert (name, source) == ("dev", "config")

    monkeypatch.setenv(profiles.PROFILE_ENV_VAR, "production")
    name, source, _ = profiles.get_profile_info(config_file)
    assert (name, source) == ("production", "env")
