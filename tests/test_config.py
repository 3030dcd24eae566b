"""Tests for configuration files and the configuration to model mapping."""

import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from setupbuilder import (
    ConfigurationError,
    DebConfig,
    DmgConfig,
    MsiConfig,
    RpmConfig,
    StarterLocation,
    application_from_config,
    get_config_value,
    load_config,
    make_installer,
    notarize_config_from,
    platform_config_from,
)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdirname:
        yield Path(tmpdirname)


@pytest.fixture
def no_notarize_env(monkeypatch):
    for name in (
        "NOTARIZE_USER",
        "NOTARIZE_PASSWORD_ENV",
        "NOTARIZE_KEYCHAIN_ITEM",
        "NOTARIZE_ASC_PROVIDER",
        "KEYCHAIN_PROFILE",
    ):
        monkeypatch.delenv(name, raising=False)


SETUPBUILDER_TOML = """
[setup]
application = "Demo"
version = "2.1.0"
vendor = "Acme"
sources = ["build/install/demo"]

[[setup.services]]
id = "demod"
main_jar = "demo.jar"
main_class = "com.acme.Main"

[deb]
maintainer_email = "ops@acme.example"
init_system = "systemd"
"""


class TestLoadConfig:
    """Tests for load_config()."""

    def test_no_file(self, temp_dir, monkeypatch):
        """Test that an empty directory gives an empty config."""
        monkeypatch.chdir(temp_dir)
        assert load_config() == {}

    def test_search_order(self, temp_dir, monkeypatch):
        """Test that the hidden file wins over setupbuilder.toml."""
        (temp_dir / "setupbuilder.toml").write_text('[setup]\napplication = "Visible"\n')
        (temp_dir / ".setupbuilder.toml").write_text('[setup]\napplication = "Hidden"\n')
        monkeypatch.chdir(temp_dir)
        assert load_config()["setup"]["application"] == "Hidden"

    def test_found_in_cwd(self, temp_dir, monkeypatch):
        """Test loading setupbuilder.toml from the current directory."""
        (temp_dir / "setupbuilder.toml").write_text(SETUPBUILDER_TOML)
        monkeypatch.chdir(temp_dir)
        config = load_config()
        assert config["deb"]["init_system"] == "systemd"
        assert config["setup"]["services"][0]["id"] == "demod"

    def test_explicit_path(self, temp_dir):
        """Test loading an explicit file."""
        path = temp_dir / "release.toml"
        path.write_text('[notarize]\nkeychain_profile = "CUSTOM_PROFILE"\n')
        config = load_config(path)
        assert config["notarize"]["keychain_profile"] == "CUSTOM_PROFILE"

    def test_explicit_path_missing(self, temp_dir):
        """Test that a missing explicit file is an error."""
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(temp_dir / "missing.toml")

    def test_invalid_toml(self, temp_dir):
        """Test that a broken file is an error."""
        path = temp_dir / "broken.toml"
        path.write_text("[setup\napplication = \n")
        with pytest.raises(ConfigurationError, match="Cannot read configuration"):
            load_config(path)

    def test_get_config_value(self):
        """Test get_config_value lookups and defaults."""
        config = {"notarize": {"username": "dev", "poll_interval": 10}, "deb": "x"}
        assert get_config_value(config, "notarize", "username") == "dev"
        assert get_config_value(config, "notarize", "missing", "d") == "d"
        assert get_config_value(config, "notarize", "poll_interval", "d") == "d"
        assert get_config_value(config, "deb", "key") is None
        assert get_config_value(config, "nonexistent", "key") is None


class TestApplicationFromConfig:
    """Tests for application_from_config()."""

    def test_relative_paths(self, temp_dir):
        """Test that paths are resolved against the base directory."""
        config = {
            "setup": {
                "application": "Demo",
                "sources": ["build/install/demo"],
                "icons": "icons/demo.png",
            }
        }
        app = application_from_config(config, temp_dir)
        assert app.sources == [temp_dir / "build" / "install" / "demo"]
        assert app.icons == [temp_dir / "icons" / "demo.png"]

    def test_absolute_paths_kept(self, temp_dir):
        """Test that absolute paths are not rebased."""
        source = temp_dir / "install"
        config = {"setup": {"application": "Demo", "sources": [str(source)]}}
        app = application_from_config(config, "/elsewhere")
        assert app.sources == [source]

    def test_nested_tables(self, temp_dir):
        """Test services, starters, document types and localized files."""
        config = {
            "setup": {
                "application": "Demo",
                "vendor": "Acme",
                "main_class": "com.acme.Main",
                "services": [{"id": "demod", "main_jar": "demo.jar"}],
                "desktop_starters": [
                    {
                        "display_name": "Demo Viewer",
                        "location": "InstallDir",
                        "icons": ["viewer.png"],
                        "document_types": [
                            {"extensions": ["demo"], "name": "Demo file"}
                        ],
                    }
                ],
                "protocol_handlers": [{"schemes": ["demo"]}],
                "license_files": [{"locale": "en", "resource": "LICENSE.txt"}],
                "run_after": {"display_name": "Demo"},
            }
        }
        app = application_from_config(config, temp_dir)
        service = app.services[0]
        assert service.id == "demod"
        assert service.main_class == "com.acme.Main"
        starter = app.desktop_starters[0]
        assert starter.location is StarterLocation.INSTALL_DIR
        assert starter.icons == [temp_dir / "viewer.png"]
        assert starter.document_types[0].extensions == ["demo"]
        assert app.protocol_handlers[0].schemes == ["demo"]
        assert app.license_files[0].resource == temp_dir / "LICENSE.txt"
        assert app.run_after.display_name == "Demo"

    def test_missing_setup(self):
        """Test that a config without [setup] is rejected."""
        with pytest.raises(ConfigurationError, match=r"No \[setup\]"):
            application_from_config({"deb": {}})

    def test_unknown_key(self):
        """Test that misspelled keys are reported."""
        config = {"setup": {"application": "Demo", "venodr": "Acme"}}
        with pytest.raises(ConfigurationError, match="venodr"):
            application_from_config(config)

    def test_unknown_nested_key(self):
        """Test that unknown keys in nested tables name the table."""
        config = {"setup": {"application": "Demo", "services": [{"ident": "x"}]}}
        with pytest.raises(ConfigurationError, match=r"\[setup\.services\]"):
            application_from_config(config)

    def test_missing_application(self):
        """Test that a [setup] without application is rejected."""
        with pytest.raises(ConfigurationError):
            application_from_config({"setup": {"version": "1.0"}})

    def test_services_must_be_array(self):
        """Test that a single services table is rejected."""
        config = {"setup": {"application": "Demo", "services": {"id": "x"}}}
        with pytest.raises(ConfigurationError, match="array of tables"):
            application_from_config(config)


class TestPlatformConfigFrom:
    """Tests for platform_config_from() and notarize_config_from()."""

    def test_deb(self, temp_dir):
        """Test the [deb] table with a relative service file."""
        config = {"deb": {"init_system": "systemd", "default_service_file": "demod.conf"}}
        deb = platform_config_from(config, "deb", temp_dir)
        assert isinstance(deb, DebConfig)
        assert deb.init_system == "systemd"
        assert deb.default_service_file == temp_dir / "demod.conf"

    def test_missing_table_uses_defaults(self):
        """Test that a missing table gives the default config."""
        rpm = platform_config_from({}, "rpm")
        assert isinstance(rpm, RpmConfig)
        assert rpm.release == RpmConfig().release

    def test_msi(self, temp_dir):
        """Test the [msi] table with localization files."""
        config = {
            "msi": {
                "arch": "x86",
                "languages": ["en-US", "de-DE"],
                "localizations": [{"locale": "de-DE", "resource": "de.wxl"}],
            }
        }
        msi = platform_config_from(config, "msi", temp_dir)
        assert isinstance(msi, MsiConfig)
        assert msi.arch == "x86"
        assert msi.localizations[0].resource == temp_dir / "de.wxl"
        assert msi.signtool is None

    def test_msi_signtool(self, temp_dir):
        """Test the [msi.signtool] sub table."""
        config = {
            "msi": {
                "signtool": {
                    "certificate": "certs/code.pfx",
                    "password": "pw",
                    "timestamp_servers": "http://ts.example",
                }
            }
        }
        signtool = platform_config_from(config, "msi", temp_dir).signtool
        assert signtool.certificate == temp_dir / "certs" / "code.pfx"
        assert signtool.password == "pw"
        assert signtool.timestamp_servers == ["http://ts.example"]

    def test_msi_signtool_unknown_key(self):
        """Test that unknown signtool keys name the sub table."""
        config = {"msi": {"signtool": {"sha1": "ABCDEF", "timestamp": "x"}}}
        with pytest.raises(ConfigurationError, match=r"\[msi\.signtool\]"):
            platform_config_from(config, "msi")

    def test_dmg(self, temp_dir, no_notarize_env):
        """Test the [dmg] table with codesign and notarize sub tables."""
        config = {
            "dmg": {
                "volume_name": "Demo",
                "codesign": {
                    "identity": "Developer ID Application: Acme",
                    "entitlements": "app.entitlements",
                },
                "notarize": {
                    "username": "dev@acme.example",
                    "keychain_item": "AC",
                    "bundle_id": "com.acme.demo",
                },
            }
        }
        dmg = platform_config_from(config, "dmg", temp_dir)
        assert isinstance(dmg, DmgConfig)
        assert dmg.codesign.entitlements == temp_dir / "app.entitlements"
        assert dmg.notarize.bundle_id == "com.acme.demo"
        assert dmg.notarize.credentials.username == "dev@acme.example"

    def test_unknown_format(self):
        """Test that an unknown format is rejected."""
        with pytest.raises(ConfigurationError, match="Unknown installer format"):
            platform_config_from({}, "pkg")

    def test_unknown_platform_key(self):
        """Test that unknown platform keys are reported."""
        with pytest.raises(ConfigurationError, match=r"\[rpm\]"):
            platform_config_from({"rpm": {"relase": "2"}}, "rpm")

    def test_notarize_credentials_from_env(self, monkeypatch, no_notarize_env):
        """Test that credential keys fall back to the environment."""
        monkeypatch.setenv("NOTARIZE_USER", "env@acme.example")
        monkeypatch.setenv("NOTARIZE_KEYCHAIN_ITEM", "AC_ENV")
        config = notarize_config_from({"poll_interval": 10, "max_attempts": 3})
        assert config.credentials.username == "env@acme.example"
        assert config.credentials.keychain_item == "AC_ENV"
        assert config.poll_interval == 10
        assert config.max_attempts == 3

    def test_notarize_table_overrides_env(self, monkeypatch, no_notarize_env):
        """Test that configured credentials win over the environment."""
        monkeypatch.setenv("NOTARIZE_USER", "env@acme.example")
        config = notarize_config_from({"username": "file@acme.example"})
        assert config.credentials.username == "file@acme.example"

    def test_notarize_unknown_key(self, no_notarize_env):
        """Test that unknown notarize keys are reported."""
        with pytest.raises(ConfigurationError, match="pol_interval"):
            notarize_config_from({"pol_interval": 5})

    def test_notarize_invalid_tool(self, no_notarize_env):
        """Test that only altool and notarytool are accepted."""
        with pytest.raises(ConfigurationError, match="altool or notarytool"):
            notarize_config_from({"tool": "transporter"})


class TestMakeInstaller:
    """Tests for the make_installer() functional API."""

    def test_unknown_format(self):
        """Test that an unknown format is rejected before building."""
        with pytest.raises(ConfigurationError, match="Unknown installer format"):
            make_installer("pkg", {"setup": {"application": "Demo"}})

    def test_builds_with_matching_builder(self, temp_dir):
        """Test that the builder gets the model and platform config."""
        config = {
            "setup": {"application": "Demo", "version": "1.0", "vendor": "Acme"},
            "rpm": {"release": "3"},
        }
        with patch("setupbuilder.RpmBuilder.build", autospec=True) as mock_build:
            mock_build.side_effect = lambda builder: builder
            builder = make_installer(
                "rpm", config, output_dir=temp_dir, dry_run=True, overwrite=True
            )
        assert builder.app.application == "Demo"
        assert builder.config.release == "3"
        assert builder.dry_run
        assert builder.overwrite
