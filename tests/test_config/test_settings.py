"""Tests for settings resolution."""

import pytest
import yaml

from linkrelay.config.settings import Settings, read_credentials, resolve_settings


@pytest.fixture
def env_settings(basedir, monkeypatch) -> Settings:
    monkeypatch.setenv("LINKRELAY_BITLY_ACCESS_TOKEN", "from-env")
    monkeypatch.setenv("LINKRELAY_SOURCE_USERNAME", "env-user")
    monkeypatch.setenv("LINKRELAY_POLL_TIMEOUT_SECONDS", "30")
    return Settings(basedir=basedir)


class TestSettings:
    def test_env_prefix(self, env_settings):
        assert env_settings.bitly_access_token == "from-env"
        assert env_settings.poll_timeout_seconds == 30.0
        assert env_settings.bitly_configured is True

    def test_paths_under_basedir(self, basedir):
        settings = Settings(basedir=basedir)

        assert settings.lock_path == basedir / "link-relay.lock"
        assert settings.log_path == basedir / "link-relay.log"
        assert settings.state_path == basedir / "state.yml"
        assert settings.credentials_path == basedir / "credentials.yml"

    def test_defaults(self, basedir):
        settings = Settings(basedir=basedir)

        assert settings.stop_attempts == 120
        assert settings.stop_poll_seconds == 0.25
        assert settings.provenance_tag == "link-relay"


class TestCredentials:
    def test_read_known_keys_only(self, basedir):
        path = basedir / "credentials.yml"
        path.write_text(yaml.safe_dump({"bitly_access_token": "abc", "shell": "rm -rf"}))

        assert read_credentials(path) == {"bitly_access_token": "abc"}

    def test_missing_or_broken_file(self, basedir):
        assert read_credentials(basedir / "absent.yml") == {}

        broken = basedir / "broken.yml"
        broken.write_text("[unclosed")
        assert read_credentials(broken) == {}


class TestResolveSettings:
    def test_precedence(self, basedir, env_settings):
        """Command line beats credentials.yml, which beats the environment."""
        (basedir / "credentials.yml").write_text(
            yaml.safe_dump({"bitly_access_token": "from-file", "source_username": "file-user"})
        )

        resolved = resolve_settings(env_settings, {"source_username": "cli-user"})

        assert resolved.source_username == "cli-user"
        assert resolved.bitly_access_token == "from-file"
        assert resolved.poll_timeout_seconds == 30.0

    def test_none_overrides_ignored(self, env_settings):
        resolved = resolve_settings(env_settings, {"poll_timeout_seconds": None})

        assert resolved.poll_timeout_seconds == 30.0

    def test_basedir_override_reads_its_credentials(self, tmp_path, env_settings):
        other = tmp_path / "other"
        other.mkdir()
        (other / "credentials.yml").write_text(yaml.safe_dump({"bitly_access_token": "other"}))

        resolved = resolve_settings(env_settings, {"basedir": str(other)})

        assert resolved.basedir == other.resolve()
        assert resolved.bitly_access_token == "other"

    def test_relative_basedir_made_absolute(self, tmp_path, monkeypatch, env_settings):
        """A relative base directory is resolved against the working directory."""
        monkeypatch.chdir(tmp_path)

        resolved = resolve_settings(env_settings, {"basedir": "relay"})

        assert resolved.basedir == tmp_path.resolve() / "relay"
        assert resolved.basedir.is_absolute()

    def test_invalid_override_raises(self, env_settings):
        with pytest.raises(ValueError):
            resolve_settings(env_settings, {"poll_timeout_seconds": -1})
