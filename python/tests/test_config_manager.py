"""
Tests for configuration loading and validation.
"""

import pytest

from config_manager import ConfigManager, ConfigurationError, get_config


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Config tests must not see secrets from the developer's shell."""
    monkeypatch.delenv("KURATOR_ENCRYPTION_KEY", raising=False)
    monkeypatch.delenv("KURATOR_ADMIN_PASSWORD", raising=False)
    ConfigManager.reset_instance()
    yield
    ConfigManager.reset_instance()


def write_config(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return str(path)


class TestConfigLoading:
    """Loading sections from YAML"""

    def test_defaults_when_file_missing(self, tmp_path):
        config = ConfigManager(str(tmp_path / "missing.yaml"))
        assert config.paging.default_page_size == 50
        assert config.paging.max_page_size == 200
        assert config.security.bcrypt_rounds == 12
        assert config.security.totp_issuer == "KURATOR"
        assert config.dashboard.recent_interactions == 5
        assert config.dashboard.status_dynamics_months == 3
        assert config.seed.admin_login == "admin"
        assert config.logging.level == "INFO"

    def test_sections_are_parsed(self, tmp_path):
        path = write_config(tmp_path, """
database:
  url: "sqlite://"
  echo: true
security:
  encryption_key: "abc"
  bcrypt_rounds: 10
  totp_digits: 8
paging:
  default_page_size: 10
  max_page_size: 100
dashboard:
  top_curators: 3
seed:
  admin_login: "root"
  seed_references: false
logging:
  level: "debug"
""")
        config = ConfigManager(path)
        assert config.database.url == "sqlite://"
        assert config.database.echo is True
        assert config.security.encryption_key == "abc"
        assert config.security.bcrypt_rounds == 10
        assert config.security.totp_digits == 8
        assert config.paging.default_page_size == 10
        assert config.dashboard.top_curators == 3
        assert config.dashboard.attention_contacts == 10
        assert config.seed.admin_login == "root"
        assert config.seed.seed_references is False
        assert config.logging.level == "DEBUG"

    def test_empty_file_uses_defaults(self, tmp_path):
        config = ConfigManager(write_config(tmp_path, ""))
        assert config.paging.max_page_size == 200

    def test_shipped_config_is_valid(self):
        """The repository's config.yaml loads without errors"""
        from pathlib import Path

        shipped = Path(__file__).parent.parent / "config.yaml"
        config = ConfigManager(str(shipped))
        assert config.paging.default_page_size == 50

    def test_get_config_is_singleton(self, tmp_path):
        path = write_config(tmp_path, "paging:\n  default_page_size: 7\n")
        first = get_config(path)
        assert get_config() is first
        assert first.paging.default_page_size == 7

    def test_to_dict_masks_secrets(self, tmp_path):
        path = write_config(tmp_path, 'security:\n  encryption_key: "topsecret"\n')
        exported = ConfigManager(path).to_dict()
        assert exported['security']['encryption_key'] == '***'
        assert 'admin_password' not in exported['seed']
        assert 'topsecret' not in str(exported)


class TestEnvironmentOverrides:
    """Secrets from the environment"""

    def test_encryption_key_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("KURATOR_ENCRYPTION_KEY", "from-env")
        path = write_config(tmp_path, 'security:\n  encryption_key: "from-file"\n')
        assert ConfigManager(path).security.encryption_key == "from-env"

    def test_admin_password_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("KURATOR_ADMIN_PASSWORD", "EnvPassword1!")
        config = ConfigManager(str(tmp_path / "missing.yaml"))
        assert config.seed.admin_password == "EnvPassword1!"


class TestConfigValidation:
    """Invalid files and values raise ConfigurationError"""

    def test_invalid_yaml(self, tmp_path):
        path = write_config(tmp_path, "security: [unclosed")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            ConfigManager(path)

    def test_top_level_must_be_mapping(self, tmp_path):
        with pytest.raises(ConfigurationError):
            ConfigManager(write_config(tmp_path, "- a\n- b\n"))

    def test_section_must_be_mapping(self, tmp_path):
        with pytest.raises(ConfigurationError, match="paging"):
            ConfigManager(write_config(tmp_path, "paging: 5\n"))

    @pytest.mark.parametrize("snippet,message", [
        ("security:\n  bcrypt_rounds: 2\n", "bcrypt_rounds"),
        ("security:\n  bcrypt_rounds: \"twelve\"\n", "bcrypt_rounds"),
        ("security:\n  totp_digits: 7\n", "totp_digits"),
        ("security:\n  totp_period: 0\n", "totp_period"),
        ("paging:\n  default_page_size: 300\n  max_page_size: 100\n", "default_page_size"),
        ("paging:\n  max_page_size: 0\n", "paging sizes"),
        ("dashboard:\n  recent_interactions: 0\n", "recent_interactions"),
        ("seed:\n  admin_login: \"\"\n", "admin_login"),
        ("logging:\n  level: \"LOUD\"\n", "logging.level"),
    ])
    def test_invalid_values(self, tmp_path, snippet, message):
        with pytest.raises(ConfigurationError, match=message):
            ConfigManager(write_config(tmp_path, snippet))

    def test_errors_are_combined(self, tmp_path):
        path = write_config(tmp_path, "security:\n  totp_digits: 5\n  totp_period: -1\n")
        with pytest.raises(ConfigurationError) as exc_info:
            ConfigManager(path)
        assert "totp_digits" in str(exc_info.value)
        assert "totp_period" in str(exc_info.value)
