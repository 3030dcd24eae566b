"""Unit tests for the application model and the platform configs."""

import datetime
import tempfile
from pathlib import Path

import pytest

from setupbuilder import (
    Application,
    CodesignConfig,
    ConfigurationError,
    DebConfig,
    DesktopStarter,
    DocumentType,
    LocalizedResource,
    MsiConfig,
    NotarizationCredentials,
    NotarizeConfig,
    ProtocolHandler,
    RpmConfig,
    Service,
    StarterLocation,
    UnixConfig,
    find_localized,
    java_command_line,
)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdirname:
        yield Path(tmpdirname)


class TestApplication:
    """Tests for Application defaults and validation."""

    def test_defaults(self):
        """Test values derived from the application name and vendor."""
        app = Application(application="Demo", version="2.1.0", vendor="Acme")
        year = datetime.date.today().year
        assert app.app_identifier == "Demo"
        assert app.archive_name == "Demo"
        assert app.copyright == f"© Copyright {year} by Acme"
        assert app.default_resource_language == "en"
        assert app.bundle_jre_target == "jre"

    def test_explicit_values_kept(self):
        """Test that configured values are not replaced by defaults."""
        app = Application(
            application="Demo",
            app_identifier="demo",
            archive_name="demo-setup",
            copyright="(c) Acme",
        )
        assert app.app_identifier == "demo"
        assert app.archive_name == "demo-setup"
        assert app.copyright == "(c) Acme"

    def test_application_name_required(self):
        """Test that a blank application name is rejected."""
        with pytest.raises(ConfigurationError, match="application name"):
            Application(application="  ")

    def test_require_names_missing_field(self):
        """Test that require() names the missing field."""
        app = Application(application="Demo", vendor="Acme")
        with pytest.raises(ConfigurationError, match="version"):
            app.require("version", "vendor")

    def test_require_blank_vendor(self):
        """Test that a blank vendor counts as missing."""
        app = Application(application="Demo", version="1.0", vendor=" ")
        with pytest.raises(ConfigurationError, match="vendor"):
            app.require("version", "vendor")

    def test_bundle_jre_target_slashes_stripped(self):
        """Test that leading and trailing slashes are removed."""
        app = Application(application="Demo", bundle_jre_target="/runtime/")
        assert app.bundle_jre_target == "runtime"

    def test_short_version(self):
        """Test that the short version keeps two components."""
        app = Application(application="Demo", version="2.1.0.42")
        assert app.short_version == "2.1"

    def test_is_java(self):
        """Test Java detection from services and starters."""
        native = Application(
            application="Demo",
            desktop_starters=[DesktopStarter(executable="bin/demo")],
        )
        assert not native.is_java
        java = Application(
            application="Demo",
            services=[Service(id="demod", main_class="com.acme.Main")],
        )
        assert java.is_java

    def test_icon_for_type(self):
        """Test icon lookup by suffix."""
        app = Application(application="Demo", icons=["demo.png", "demo.icns"])
        assert app.icon_for_type(".icns") == Path("demo.icns")
        assert app.icon_for_type(".ico") is None

    def test_children_inherit_application_values(self):
        """Test that services and starters fall back to the application."""
        app = Application(
            application="Demo",
            description="A demo",
            main_class="com.acme.Main",
            main_jar="demo.jar",
            icons=["demo.png"],
            services=[Service()],
            desktop_starters=[DesktopStarter()],
        )
        service = app.services[0]
        starter = app.desktop_starters[0]
        assert service.id == "Demo"
        assert service.display_name == "Demo"
        assert service.main_class == "com.acme.Main"
        assert service.description == "A demo"
        assert starter.main_jar == "demo.jar"
        assert starter.icons == [Path("demo.png")]


class TestDocumentType:
    """Tests for document type normalization."""

    def test_extensions_normalized(self):
        """Test that '*.' and '.' prefixes are stripped."""
        doc = DocumentType(extensions=["*.txt", ".md", "csv"])
        assert doc.extensions == ["txt", "md", "csv"]

    def test_default_mime_type(self):
        """Test that the mime type defaults to application/<first ext>."""
        doc = DocumentType(extensions=["txt", "md"])
        assert doc.mime_type == "application/txt"

    def test_explicit_mime_type(self):
        """Test that an explicit mime type is kept."""
        doc = DocumentType(extensions=["md"], mime_type="text/markdown")
        assert doc.mime_type == "text/markdown"

    def test_extension_required(self):
        """Test that at least one extension is needed."""
        with pytest.raises(ConfigurationError, match="extension"):
            DocumentType(extensions=["*.", " "])

    def test_invalid_role(self):
        """Test that only Viewer and Editor roles are accepted."""
        with pytest.raises(ConfigurationError, match="role"):
            DocumentType(extensions=["txt"], role="Owner")

    def test_default_name_from_application(self):
        """Test the default document type name."""
        app = Application(
            application="Demo", document_types=[DocumentType(extensions=["demo"])]
        )
        assert app.document_types[0].name == "Demo file"

    def test_starter_falls_back_to_application_types(self):
        """Test that starters without types use the application's list."""
        doc = DocumentType(extensions=["demo"])
        app = Application(
            application="Demo",
            document_types=[doc],
            desktop_starters=[DesktopStarter(main_class="com.acme.Main")],
        )
        assert app.desktop_starters[0].document_types == [doc]
        assert app.all_document_types() == [doc]


class TestLaunchables:
    """Tests for services, starters and protocol handlers."""

    def test_service_wrapper_default(self):
        """Test the default procrun wrapper name."""
        app = Application(application="Demo", services=[Service(id="Demo-Server")])
        assert app.services[0].wrapper == "demo-server-service"

    def test_service_wrapper_normalized(self):
        """Test that a configured wrapper is lowercased without spaces."""
        app = Application(
            application="Demo", services=[Service(id="demod", wrapper="My Wrapper")]
        )
        assert app.services[0].wrapper == "my-wrapper"

    def test_service_id_without_spaces(self):
        """Test that service ids may not contain spaces."""
        with pytest.raises(ConfigurationError, match="without spaces"):
            Application(application="Demo", services=[Service(id="my service")])

    def test_starter_needs_executable_or_main_class(self):
        """Test that a JVM starter requires a main class."""
        with pytest.raises(ConfigurationError, match="main class"):
            Application(
                application="Demo",
                desktop_starters=[DesktopStarter(display_name="Broken")],
            )

    def test_native_starter(self):
        """Test that an executable makes a starter native."""
        app = Application(
            application="Demo",
            desktop_starters=[DesktopStarter(executable="bin/demo.sh")],
        )
        assert app.desktop_starters[0].is_native

    def test_starter_location_from_string(self):
        """Test that a location given as text is converted."""
        app = Application(
            application="Demo",
            desktop_starters=[
                DesktopStarter(executable="demo.exe", location="InstallDir")
            ],
        )
        assert app.desktop_starters[0].location is StarterLocation.INSTALL_DIR

    def test_starter_unknown_location(self):
        """Test that an unknown location is rejected."""
        with pytest.raises(ConfigurationError, match="location"):
            Application(
                application="Demo",
                desktop_starters=[DesktopStarter(executable="x", location="Desk")],
            )

    def test_starter_mime_types_split(self):
        """Test that mime types and categories accept ';' separated text."""
        app = Application(
            application="Demo",
            desktop_starters=[
                DesktopStarter(
                    executable="x",
                    mime_types="text/plain;text/markdown;",
                    categories="Office;",
                )
            ],
        )
        starter = app.desktop_starters[0]
        assert starter.mime_types == ["text/plain", "text/markdown"]
        assert starter.categories == ["Office"]

    def test_protocol_scheme_letters_only(self):
        """Test that schemes must consist of letters."""
        ProtocolHandler(schemes=["demo"])
        with pytest.raises(ConfigurationError, match="demo2"):
            ProtocolHandler(schemes=["demo2"])
        with pytest.raises(ConfigurationError, match="only letters"):
            ProtocolHandler(schemes=["my-app"])

    def test_java_command_line(self):
        """Test the JVM command line of a launchable."""
        service = Service(
            main_jar="demo.jar",
            main_class="com.acme.Main",
            start_arguments="--port 8080",
            java_vm_arguments="-Xmx512m",
        )
        assert java_command_line(service, "/usr/bin/java") == (
            '"/usr/bin/java" -Xmx512m -cp "demo.jar" com.acme.Main --port 8080'
        )


class TestLocalizedResource:
    """Tests for localized resources."""

    def test_language(self):
        """Test the primary language subtag."""
        assert LocalizedResource("de-DE", "l.txt").language == "de"
        assert LocalizedResource("pt_BR", "l.txt").language == "pt"

    def test_resolve_missing(self, temp_dir):
        """Test that a missing file is reported on resolve."""
        resource = LocalizedResource("en", temp_dir / "missing.txt")
        with pytest.raises(ConfigurationError, match="not found"):
            resource.resolve()

    def test_resolve_relative(self, temp_dir):
        """Test that relative paths are resolved against a base directory."""
        (temp_dir / "license.txt").write_text("MIT")
        resource = LocalizedResource("en", "license.txt")
        assert resource.resolve(temp_dir) == temp_dir / "license.txt"

    def test_find_localized(self):
        """Test language, default language, then first entry."""
        en = LocalizedResource("en", "en.txt")
        de = LocalizedResource("de", "de.txt")
        fr = LocalizedResource("fr", "fr.txt")
        assert find_localized([en, de], "de-AT") is de
        assert find_localized([en, de], "it") is en
        assert find_localized([fr, de], "it") is fr
        assert find_localized([], "en") is None


class TestPlatformConfigs:
    """Tests for the per-platform configuration structs."""

    def test_unix_installation_root_default(self):
        """Test the default installation root."""
        app = Application(application="My Demo App!")
        assert UnixConfig().root_for(app) == "/usr/share/mydemoapp"

    def test_unix_installation_root_trailing_slash(self):
        """Test that a trailing slash is removed."""
        app = Application(application="Demo")
        assert UnixConfig(installation_root="/opt/demo/").root_for(app) == "/opt/demo"

    def test_unix_invalid_init_system(self):
        """Test that unknown init systems are rejected."""
        with pytest.raises(ConfigurationError, match="init_system"):
            UnixConfig(init_system="upstart")

    def test_daemon_user_per_service(self):
        """Test that a service's own user overrides the config."""
        cfg = UnixConfig(daemon_user="demo")
        assert cfg.daemon_user_for(Service(daemon_user="svc")) == "svc"
        assert cfg.daemon_user_for(Service()) == "demo"

    def test_deb_defaults(self):
        """Test the Debian defaults."""
        cfg = DebConfig()
        assert cfg.section == "java"
        assert cfg.priority == "optional"
        assert cfg.architecture == "all"

    def test_rpm_defaults(self):
        """Test the RPM defaults."""
        cfg = RpmConfig()
        assert cfg.section == "Applications/Productivity"
        assert cfg.architecture == "noarch"
        assert cfg.release == "1"
        assert cfg.license == "Restricted"
        assert cfg.backward_compatible

    def test_msi_defaults(self, monkeypatch):
        """Test the MSI defaults and the WIX environment variable."""
        monkeypatch.setenv("WIX", "C:/wix")
        cfg = MsiConfig()
        assert cfg.arch == "x64"
        assert cfg.languages == ["en-US"]
        assert cfg.tool("light.exe") == str(Path("C:/wix") / "bin" / "light.exe")

    def test_msi_unknown_language(self):
        """Test that unsupported cultures are rejected."""
        with pytest.raises(ConfigurationError, match="xx-XX"):
            MsiConfig(languages=["xx-XX"])

    def test_msi_invalid_arch(self):
        """Test that unsupported architectures are rejected."""
        with pytest.raises(ConfigurationError, match="architecture"):
            MsiConfig(arch="ia64")

    def test_codesign_identity_from_env(self, monkeypatch):
        """Test the Developer ID fallback."""
        monkeypatch.setenv("DEV_ID", "Acme Inc (ABC123)")
        cfg = CodesignConfig()
        assert cfg.identity == "Developer ID Application: Acme Inc (ABC123)"

    def test_codesign_installer_identity_normalized(self, monkeypatch):
        """Test that an installer identity is turned into the application one."""
        monkeypatch.delenv("DEV_ID", raising=False)
        cfg = CodesignConfig(identity="Developer ID Installer: Acme")
        assert cfg.identity == "Developer ID Application: Acme"

    def test_notarize_invalid_tool(self):
        """Test that only altool and notarytool are accepted."""
        with pytest.raises(ConfigurationError, match="altool"):
            NotarizeConfig(credentials=NotarizationCredentials(), tool="gatekeeper")


class TestNotarizationCredentials:
    """Tests for the credential resolution."""

    def test_keychain_item(self):
        """Test the keychain password element."""
        creds = NotarizationCredentials(username="dev@acme.example", keychain_item="AC")
        assert creds.password_argument() == "@keychain:AC"

    def test_environment_variable(self):
        """Test the environment password element."""
        creds = NotarizationCredentials(username="dev", password_env="AC_PASSWORD")
        assert creds.password_argument() == "@env:AC_PASSWORD"

    def test_plaintext(self):
        """Test the plaintext password element."""
        creds = NotarizationCredentials(username="dev", password="secret")
        assert creds.password_argument() == "secret"

    def test_none_configured(self):
        """Test that a missing password source is an error."""
        creds = NotarizationCredentials(username="dev")
        with pytest.raises(ConfigurationError, match="At least one"):
            creds.password_argument()

    def test_more_than_one_configured(self):
        """Test that two password sources are an error."""
        creds = NotarizationCredentials(
            username="dev", keychain_item="AC", password="secret"
        )
        with pytest.raises(ConfigurationError, match="Only one"):
            creds.password_argument()

    def test_altool_arguments(self):
        """Test the altool authentication arguments."""
        creds = NotarizationCredentials(
            username="dev", keychain_item="AC", asc_provider="TEAM"
        )
        assert creds.altool_arguments() == [
            "-u",
            "dev",
            "-p",
            "@keychain:AC",
            "--asc-provider",
            "TEAM",
        ]

    def test_altool_requires_username(self):
        """Test that altool needs a username."""
        creds = NotarizationCredentials(keychain_item="AC")
        with pytest.raises(ConfigurationError, match="username"):
            creds.altool_arguments()

    def test_notarytool_profile(self):
        """Test that a keychain profile is preferred by notarytool."""
        creds = NotarizationCredentials(keychain_profile="AC_PROFILE")
        assert creds.notarytool_arguments() == ["--keychain-profile", "AC_PROFILE"]

    def test_notarytool_env_password(self, monkeypatch):
        """Test that notarytool reads an environment password itself."""
        monkeypatch.setenv("AC_PASSWORD", "secret")
        creds = NotarizationCredentials(username="dev", password_env="AC_PASSWORD")
        assert creds.notarytool_arguments() == [
            "--apple-id",
            "dev",
            "--password",
            "secret",
        ]

    def test_from_env(self, monkeypatch):
        """Test that NOTARIZE_* variables fill unset fields."""
        monkeypatch.setenv("NOTARIZE_USER", "env-user")
        monkeypatch.setenv("NOTARIZE_KEYCHAIN_ITEM", "ENV_ITEM")
        monkeypatch.delenv("NOTARIZE_PASSWORD_ENV", raising=False)
        creds = NotarizationCredentials.from_env(username="explicit")
        assert creds.username == "explicit"
        assert creds.keychain_item == "ENV_ITEM"
        assert creds.password_env is None
