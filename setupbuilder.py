#!/usr/bin/env python3
"""setupbuilder - native installer synthesis for DEB, RPM, MSI and macOS.

This module turns one declarative description of an application (files,
services, desktop starters, document types, protocol handlers, a bundled
JRE) into native installers:

1. Debian packages built with dpkg-deb
2. RPM packages built with rpmbuild
3. Windows MSI installers built with the WiX toolset (candle/light)
4. macOS app bundles, installer packages and DMG images, optionally
   codesigned, notarized and stapled

Each format has its own builder class which renders the platform
descriptor (control file, .spec file, .wxs document, Info.plist) and the
lifecycle scripts, lays out a staging tree and shells out to the native
packaging tool.

Usage (CLI):
    # Build a Debian package from setupbuilder.toml
    setupbuilder deb -o dist/

    # Notarize and staple an existing image
    setupbuilder notarize dist/MyApp.dmg --bundle-id com.example.myapp

Usage (API):
    from setupbuilder import Application, DebBuilder, DebConfig, Service

    app = Application(
        application="Demo",
        version="2.1.0",
        vendor="Acme",
        sources=["build/install/demo"],
        services=[Service(id="demod", main_jar="demo.jar",
                          main_class="com.acme.Main")],
    )
    DebBuilder(app, DebConfig(), output_dir="dist").build()
"""

import argparse
import dataclasses
import datetime
import email.utils
import enum
import gzip
import hashlib
import logging
import os
import plistlib
import re
import shutil
import stat
import subprocess
import sys
import tempfile
import threading
import time
import uuid
import xml.etree.ElementTree as ET
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, Protocol
from xml.parsers.expat import ExpatError

# ----------------------------------------------------------------------------
# Constants

__version__ = "0.1.0"

# Type aliases
Pathlike = Path | str

# Environment variable names
ENV_DEV_ID = "DEV_ID"
ENV_KEYCHAIN_PROFILE = "KEYCHAIN_PROFILE"
ENV_NOTARIZE_USER = "NOTARIZE_USER"
ENV_NOTARIZE_PASSWORD_ENV = "NOTARIZE_PASSWORD_ENV"
ENV_NOTARIZE_KEYCHAIN_ITEM = "NOTARIZE_KEYCHAIN_ITEM"
ENV_NOTARIZE_ASC_PROVIDER = "NOTARIZE_ASC_PROVIDER"
ENV_WIX = "WIX"
ENV_SIGNTOOL_PASSWORD = "SIGNTOOL_PASSWORD"

# Configuration file names, searched in the working directory
CONFIG_FILE_NAMES = [".setupbuilder.toml", "setupbuilder.toml"]

# Unix defaults
DEFAULT_DAEMON_USER = "root"
DEFAULT_DEB_SECTION = "java"
DEFAULT_DEB_PRIORITY = "optional"
DEFAULT_DEB_ARCHITECTURE = "all"
DEFAULT_RPM_GROUP = "Applications/Productivity"
DEFAULT_RPM_ARCHITECTURE = "noarch"
DEFAULT_RPM_RELEASE = "1"
DEFAULT_RPM_LICENSE = "Restricted"
DEFAULT_JRE_RECOMMENDS = (
    "openjdk-8-jre | openjdk-8-jdk | default-jre | default-jdk, "
    "libgtk2-perl"
)
INIT_SYSTEMS = ("sysv", "systemd")

# WiX
WIX_NAMESPACE = "http://schemas.microsoft.com/wix/2006/wi"
WIX_MAX_ID_LENGTH = 72
WIX_TRUNCATED_ID_LENGTH = 62
PROCRUN_REGISTRY_KEY = r"SOFTWARE\Apache Software Foundation\Procrun 2.0"
PROCRUN_REGISTRY_KEY_WOW64 = (
    r"SOFTWARE\Wow6432Node\Apache Software Foundation\Procrun 2.0"
)
WIX_ICON_ID = "icon.ico"

# Authenticode timestamp servers, tried in order
DEFAULT_TIMESTAMP_SERVERS = [
    "http://timestamp.digicert.com",
    "http://timestamp.sectigo.com",
    "http://time.certum.pl",
]

# Culture -> Windows language id accepted by light.exe
MSI_LANGUAGE_IDS = {
    "en-US": 1033,
    "ar-SA": 1025,
    "bg-BG": 1026,
    "ca-ES": 1027,
    "zh-TW": 1028,
    "cs-CZ": 1029,
    "da-DK": 1030,
    "de-DE": 1031,
    "el-GR": 1032,
    "es-ES": 3082,
    "fi-FI": 1035,
    "fr-FR": 1036,
    "he-IL": 1037,
    "hu-HU": 1038,
    "it-IT": 1040,
    "ja-JP": 1041,
    "ko-KR": 1042,
    "nl-NL": 1043,
    "nb-NO": 1044,
    "pl-PL": 1045,
    "pt-BR": 1046,
    "ro-RO": 1048,
    "ru-RU": 1049,
    "hr-HR": 1050,
    "sk-SK": 1051,
    "sv-SE": 1053,
    "th-TH": 1054,
    "tr-TR": 1055,
    "uk-UA": 1058,
    "sl-SI": 1060,
    "et-EE": 1061,
    "lv-LV": 1062,
    "lt-LT": 1063,
    "zh-CN": 2052,
    "pt-PT": 2070,
}

# macOS
DEFAULT_MIN_SYSTEM_VERSION = "10.13"
DEFAULT_INSTALL_LOCATION = "/Applications"
PLIST_BUDDY = "/usr/libexec/PlistBuddy"
DEFAULT_POLL_INTERVAL = 60.0

# Entitlements required by a JVM running with the hardened runtime
JVM_ENTITLEMENTS_PLIST = """\
<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE plist PUBLIC "-//Apple//DTD PLIST 1.0//EN" "http://www.apple.com/DTDs/PropertyList-1.0.dtd">
<plist version="1.0">
<dict>
    <key>com.apple.security.cs.allow-jit</key>
    <true/>
    <key>com.apple.security.cs.allow-unsigned-executable-memory</key>
    <true/>
    <key>com.apple.security.cs.disable-executable-page-protection</key>
    <true/>
    <key>com.apple.security.cs.allow-dyld-environment-variables</key>
    <true/>
</dict>
</plist>
"""

# ----------------------------------------------------------------------------
# Optional dotenv support


def _load_dotenv() -> None:
    """Attempt to load .env file if python-dotenv is available."""
    try:
        from dotenv import load_dotenv

        load_dotenv()
    except ImportError:
        pass


_load_dotenv()

# ----------------------------------------------------------------------------
# Error handling


class SetupError(Exception):
    """Base exception class for setupbuilder errors."""


class CommandError(SetupError):
    """Exception raised when a command fails."""

    def __init__(
        self, command: str, returncode: int, output: str | None = None
    ):
        self.command = command
        self.returncode = returncode
        self.output = output
        super().__init__(
            f"Command '{command}' failed with return code {returncode}"
        )


class FileError(SetupError):
    """Exception raised when a file operation fails."""


class ConfigurationError(SetupError):
    """Exception raised when configuration is invalid or incomplete."""


class CodesignError(SetupError):
    """Exception raised when codesigning fails."""


class NotarizationError(SetupError):
    """Exception raised when notarization fails."""


class PackagingError(SetupError):
    """Exception raised when a native packaging tool fails."""


class ValidationError(SetupError):
    """Exception raised when generated content is malformed."""


# ----------------------------------------------------------------------------
# Configuration file support


def load_config(config_path: Path | None = None) -> dict[str, object]:
    """Load configuration from a TOML file.

    Searches for configuration in the following order:
    1. Explicit config_path if provided
    2. .setupbuilder.toml in current directory
    3. setupbuilder.toml in current directory

    Unlike a missing file, an explicit path that does not exist or a file
    that is not valid TOML is an error.

    Args:
        config_path: Optional explicit path to config file

    Returns:
        Configuration dictionary (empty if no config found)

    Raises:
        ConfigurationError: If the file cannot be read or parsed

    Example setupbuilder.toml:
        [setup]
        application = "Demo"
        vendor = "Acme"
        version = "2.1.0"
        sources = ["build/install/demo"]

        [[setup.services]]
        id = "demod"
        main_jar = "demo.jar"
        main_class = "com.acme.Main"

        [deb]
        maintainer_email = "ops@acme.example"
        init_system = "systemd"
    """
    # Try to import tomllib (Python 3.11+) or tomli as fallback
    try:
        import tomllib
    except ImportError:
        import tomli as tomllib  # type: ignore[import-not-found,no-redef]

    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {config_path}"
            )
        paths_to_try = [config_path]
    else:
        cwd = Path.cwd()
        paths_to_try = [cwd / name for name in CONFIG_FILE_NAMES]

    for path in paths_to_try:
        if path.exists():
            try:
                with open(path, "rb") as f:
                    data: dict[str, object] = tomllib.load(f)
            except (OSError, tomllib.TOMLDecodeError) as e:
                raise ConfigurationError(
                    f"Cannot read configuration {path}: {e}"
                ) from e
            return data

    return {}


def get_config_value(
    config: dict[str, object],
    section: str,
    key: str,
    default: str | None = None,
) -> str | None:
    """Get a value from config with section.key lookup.

    Args:
        config: Configuration dictionary
        section: Section name (e.g., "deb", "notarize")
        key: Key name within section
        default: Default value if not found

    Returns:
        Configuration value or default
    """
    section_config = config.get(section, {})
    if not isinstance(section_config, dict):
        return default
    value = section_config.get(key, default)
    if value is None or isinstance(value, str):
        return value
    return default


# Global config (loaded lazily)
_config: dict[str, object] | None = None


def get_config() -> dict[str, object]:
    """Get the global configuration, loading it if necessary."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


# ----------------------------------------------------------------------------
# Logging configuration


class CustomFormatter(logging.Formatter):
    """Logging formatter with elapsed time and optional ANSI colors."""

    class color:
        """Text colors for terminal output."""

        white = "\x1b[97;20m"
        grey = "\x1b[38;20m"
        green = "\x1b[32;20m"
        yellow = "\x1b[33;20m"
        red = "\x1b[31;20m"
        bold_red = "\x1b[31;1m"
        reset = "\x1b[0m"

    cfmt = (
        f"{color.white}%(delta)s{color.reset} - "
        f"{{}}%(levelname)s{color.reset} - "
        f"{color.white}%(name)s.%(funcName)s{color.reset} - "
        f"{color.grey}%(message)s{color.reset}"
    )

    FORMATS = {
        logging.DEBUG: cfmt.format(color.grey),
        logging.INFO: cfmt.format(color.green),
        logging.WARNING: cfmt.format(color.yellow),
        logging.ERROR: cfmt.format(color.red),
        logging.CRITICAL: cfmt.format(color.bold_red),
    }

    PLAIN_FORMAT = (
        "%(delta)s - %(levelname)s - %(name)s.%(funcName)s - %(message)s"
    )

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        """Format the record, stamping it with the time since startup."""
        if self.use_color:
            log_fmt = self.FORMATS[record.levelno]
        else:
            log_fmt = self.PLAIN_FORMAT
        elapsed = datetime.datetime.fromtimestamp(
            record.relativeCreated / 1000, datetime.timezone.utc
        )
        record.delta = elapsed.strftime("%H:%M:%S")
        return logging.Formatter(log_fmt).format(record)


def setup_logging(debug: bool = False, use_color: bool = True) -> None:
    """Configure logging for the command line.

    Args:
        debug: Whether to enable debug logging
        use_color: Whether to use colored output
    """
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(CustomFormatter(use_color))
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        handlers=[stream_handler],
        force=True,
    )


# ----------------------------------------------------------------------------
# Command execution utilities


def quote_command(command: list[str]) -> str:
    """Render a command line with every argument double quoted.

    A trailing backslash is doubled so that the closing quote is not
    escaped when the line is pasted into a shell or cmd.exe.
    """
    parts = []
    for arg in command:
        if arg.endswith("\\"):
            arg += "\\"
        parts.append(f'"{arg}" ')
    return "".join(parts)


def run_command(
    command: list[str],
    cwd: Pathlike | None = None,
    input_text: str | None = None,
    capture: bool = True,
    ignore_exit: bool = False,
    dry_run: bool = False,
    timeout: float | None = None,
    log: logging.Logger | None = None,
) -> str:
    """Run a native tool and return its output.

    This is the single command execution path used by every builder. The
    full command line is logged before execution. Uses shell=False.

    Args:
        command: The command as a list of arguments
        cwd: Working directory, usually the staging build directory
        input_text: Optional text fed to the process on stdin
        capture: If True, return stdout stripped; otherwise stdout is
            written line by line to the log and "" is returned
        ignore_exit: If True, a non-zero exit status is logged, not raised
        dry_run: If True, log command but don't execute
        timeout: Optional timeout in seconds
        log: Optional logger (default: the module logger)

    Returns:
        The stripped stdout in capture mode, otherwise ""

    Raises:
        CommandError: If the command cannot be started, times out or
            exits with a non-zero status (unless ignore_exit is set)
    """
    log = log or logging.getLogger("setupbuilder")
    cmd_str = quote_command(command)
    log.info("Command: %s", cmd_str)
    if dry_run:
        log.info("[DRY RUN] %s", cmd_str)
        return ""
    try:
        result = subprocess.run(
            command,
            shell=False,
            cwd=str(cwd) if cwd is not None else None,
            input=input_text,
            text=True,
            capture_output=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise CommandError(cmd_str, -1, f"timed out after {timeout}s") from e
    except OSError as e:
        raise CommandError(cmd_str, -1, str(e)) from e

    if result.stderr:
        log.debug("%s", result.stderr.rstrip())
    if not capture and result.stdout:
        for line in result.stdout.splitlines():
            log.info("\t%s", line)

    if result.returncode != 0:
        if not ignore_exit:
            raise CommandError(
                cmd_str, result.returncode, result.stderr or result.stdout
            )
        log.debug("ignoring exit status %d", result.returncode)

    return result.stdout.strip() if capture else ""


# ----------------------------------------------------------------------------
# Templates

PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\}\}")


def render_template(template: str, **values: object) -> str:
    """Substitute {{name}} placeholders in a script template.

    Double braces are used because the templates are shell scripts
    that contain single braces of their own.

    Raises:
        ValidationError: If a placeholder has no value
    """

    def replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in values:
            raise ValidationError(f"Template placeholder has no value: {name}")
        value = values[name]
        return "" if value is None else str(value)

    text = PLACEHOLDER_PATTERN.sub(replace, template)
    if PLACEHOLDER_PATTERN.search(text):
        raise ValidationError("Rendered template still contains placeholders")
    return text


# ----------------------------------------------------------------------------
# Build directory, staging and permissions


class BuildDirectory:
    """A per-invocation staging area.

    Sub-paths are created on demand so builders can ask for the location
    of a file without caring whether its parent exists yet.
    """

    def __init__(self, root: Pathlike):
        self.root = Path(root)

    def path(self, *parts: str) -> Path:
        """Return a directory below the root, creating it."""
        path = self.root.joinpath(*parts)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def file(self, *parts: str) -> Path:
        """Return a file path below the root, creating its parent."""
        path = self.root.joinpath(*parts)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path


@contextmanager
def build_directory(
    path: Pathlike | None = None, keep: bool = False
) -> Iterator[BuildDirectory]:
    """Provide a staging directory for one build.

    Without a path a fresh temporary directory is used. The directory is
    removed when the block exits, whether normally or by an exception,
    unless keep is set.

    Args:
        path: Optional explicit directory (emptied first)
        keep: If True, leave the directory in place for inspection
    """
    log = logging.getLogger("setupbuilder")
    if path is None:
        root = Path(tempfile.mkdtemp(prefix="setupbuilder-"))
    else:
        root = Path(path)
        if root.exists():
            shutil.rmtree(root)
        root.mkdir(parents=True)
    try:
        yield BuildDirectory(root)
    finally:
        if keep:
            log.info("Keeping build directory: %s", root)
        else:
            shutil.rmtree(root, ignore_errors=True)


def is_executable_name(path: Path) -> bool:
    """Return True for files treated as executable by their name alone."""
    return path.suffix == ".sh"


def set_permissions(path: Path, executable: bool = False) -> None:
    """Set 755 on directories and executables, 644 on other files.

    A path that vanished (or a dangling symlink) is skipped.
    """
    mode = 0o755 if executable or path.is_dir() else 0o644
    try:
        os.chmod(path, mode)
    except FileNotFoundError:
        logging.getLogger("setupbuilder").debug("skipping missing %s", path)


def normalize_permissions(
    root: Pathlike,
    executables: list[Pathlike] | None = None,
    keep_executable: bool = False,
) -> None:
    """Recursively normalize the POSIX permission bits of a staged tree.

    Directories and executables get 755, regular files 644. A file is
    executable if listed in executables, named *.sh, or (when
    keep_executable is set) already executable by its owner. Symlinks are
    not followed and files that disappear during the walk are skipped.
    Running this twice gives the same result as running it once.

    Args:
        root: Top of the tree (included)
        executables: Files that must be executable
        keep_executable: Preserve existing owner-executable files as 755
    """
    root = Path(root)
    explicit = {Path(p).resolve() for p in executables or []}
    log = logging.getLogger("setupbuilder")

    def is_executable(path: Path) -> bool:
        if path.resolve() in explicit or is_executable_name(path):
            return True
        if keep_executable:
            try:
                return bool(path.stat().st_mode & stat.S_IXUSR)
            except FileNotFoundError:
                return False
        return False

    if not root.exists():
        log.debug("nothing to normalize at %s", root)
        return
    set_permissions(root, executable=root.is_file() and is_executable(root))
    for dirpath, dirnames, filenames in os.walk(root):
        base = Path(dirpath)
        for name in dirnames:
            path = base / name
            if not path.is_symlink():
                set_permissions(path)
        for name in filenames:
            path = base / name
            if path.is_symlink():
                continue
            set_permissions(path, executable=is_executable(path))


def installed_size_kb(root: Pathlike) -> int:
    """Sum the sizes of all regular files below root, in KB."""
    total = 0
    for dirpath, _dirnames, filenames in os.walk(root):
        for name in filenames:
            path = Path(dirpath) / name
            if path.is_symlink():
                continue
            try:
                total += path.stat().st_size
            except FileNotFoundError:
                continue
    return total // 1024


def _staged_names(source: Path) -> list[str]:
    """Relative paths of the files and symlinks a source contributes."""
    if not source.is_dir():
        return [source.name]
    names = []
    for root, dirs, files in os.walk(source):
        rel = Path(root).relative_to(source)
        links = [d for d in dirs if (Path(root) / d).is_symlink()]
        names.extend((rel / name).as_posix() for name in files + links)
    return names


def stage_sources(sources: list[Path], dest: Pathlike) -> Path:
    """Copy the contents of every source directory (or file) into dest.

    Raises:
        FileError: If a source is missing, two sources provide the same
            file or a source cannot be copied
    """
    dest = Path(dest)
    dest.mkdir(parents=True, exist_ok=True)
    claimed: dict[str, Path] = {}
    for source in sources:
        source = Path(source)
        if not source.exists():
            raise FileError(f"Source does not exist: {source}")
        for name in _staged_names(source):
            if name in claimed:
                raise FileError(
                    f"{name} is provided by both {claimed[name]} and {source}"
                )
            claimed[name] = source
        try:
            if source.is_dir():
                shutil.copytree(
                    source, dest, symlinks=True, dirs_exist_ok=True
                )
            else:
                shutil.copy2(source, dest / source.name)
        except (OSError, shutil.Error) as e:
            raise FileError(f"Cannot copy {source} to {dest}: {e}") from e
    return dest


def write_text(path: Path, text: str, mode: int = 0o644) -> Path:
    """Write a generated file with LF line endings and set its mode."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="\n") as f:
        f.write(text)
    os.chmod(path, mode)
    return path


def check_output_file(path: Path, overwrite: bool) -> None:
    """Refuse to replace a finished artifact unless asked to.

    Raises:
        PackagingError: If path exists and overwrite is False
    """
    if path.exists():
        if not overwrite:
            raise PackagingError(
                f"Setup file already exists: {path} (use overwrite to replace it)"
            )
        logging.getLogger("setupbuilder").warning("Replacing %s", path)
        path.unlink()


# ----------------------------------------------------------------------------
# Application model

# Protocol handler schemes may only contain letters
SCHEME_PATTERN = re.compile(r"^[a-zA-Z]+$")

MANDATORY_FIELD_MESSAGES = {
    "application": "No application name declared in the setup configuration.",
    "version": "No version declared in the setup configuration.",
    "vendor": "No vendor declared in the setup configuration.",
    "app_identifier": "No application identifier declared in the setup configuration.",
}


def _paths(values: list[Pathlike] | Pathlike | None) -> list[Path]:
    if values is None:
        return []
    if isinstance(values, (str, Path)):
        values = [values]
    return [Path(v) for v in values]


def _strings(values: list[str] | str | None, separator: str = ";") -> list[str]:
    if values is None:
        return []
    if isinstance(values, str):
        values = values.split(separator)
    return [v.strip() for v in values if v.strip()]


class StarterLocation(enum.Enum):
    """Where a desktop starter is placed on Windows."""

    START_MENU = "StartMenu"
    APPLICATION_MENU = "ApplicationMenu"
    INSTALL_DIR = "InstallDir"


@dataclass
class LocalizedResource:
    """A file (license, welcome text, description, .wxl) for one locale.

    The file is only checked when a builder actually needs it.
    """

    locale: str
    resource: Path

    def __post_init__(self) -> None:
        self.resource = Path(self.resource)

    @property
    def language(self) -> str:
        """The primary language subtag, e.g. "de" for "de-DE"."""
        return re.split(r"[-_]", self.locale)[0].lower()

    def resolve(self, base_dir: Pathlike | None = None) -> Path:
        """Return the resource as an existing file.

        Raises:
            ConfigurationError: If the file does not exist
        """
        path = self.resource
        if base_dir is not None and not path.is_absolute():
            path = Path(base_dir) / path
        if not path.is_file():
            raise ConfigurationError(
                f"Resource for locale '{self.locale}' not found: {path}"
            )
        return path


def find_localized(
    resources: list[LocalizedResource],
    language: str,
    default_language: str = "en",
) -> LocalizedResource | None:
    """Pick the resource for a language, then the default, then the first."""
    if not resources:
        return None
    for wanted in (language, default_language):
        wanted = re.split(r"[-_]", wanted)[0].lower()
        for resource in resources:
            if resource.language == wanted:
                return resource
    return resources[0]


@dataclass
class DocumentType:
    """A file type association.

    Extensions are given without the leading "*." or ".". The mime type
    defaults to application/<first extension>.
    """

    extensions: list[str]
    name: str | None = None
    mime_type: str | None = None
    role: str = "Viewer"
    icons: list[Path] = field(default_factory=list)

    def __post_init__(self) -> None:
        if isinstance(self.extensions, str):
            self.extensions = [self.extensions]
        normalized = []
        for ext in self.extensions:
            ext = ext.strip()
            if ext.startswith("*."):
                ext = ext[2:]
            elif ext.startswith("."):
                ext = ext[1:]
            if ext:
                normalized.append(ext)
        if not normalized:
            raise ConfigurationError(
                "A document type requires at least one file extension"
            )
        self.extensions = normalized
        if not self.mime_type:
            self.mime_type = f"application/{normalized[0]}"
        if self.role not in ("Viewer", "Editor"):
            raise ConfigurationError(
                f"Document type role must be 'Viewer' or 'Editor', got '{self.role}'"
            )
        self.icons = _paths(self.icons)

    def inherit(self, app: "Application") -> None:
        if not self.name:
            self.name = f"{app.application} file"
        if not self.icons:
            self.icons = list(app.icons)


@dataclass
class Launchable:
    """Fields shared by everything that starts a program.

    Empty fields are filled from the application when the model is
    assembled.
    """

    display_name: str | None = None
    main_jar: str | None = None
    main_class: str | None = None
    executable: str | None = None
    description: str | None = None
    work_dir: str | None = None
    icons: list[Path] = field(default_factory=list)
    start_arguments: str = ""
    java_vm_arguments: str = ""

    def inherit(self, app: "Application") -> None:
        if not self.display_name:
            self.display_name = app.application
        if not self.main_jar:
            self.main_jar = app.main_jar
        if not self.main_class:
            self.main_class = app.main_class
        if self.description is None:
            self.description = app.description
        self.icons = _paths(self.icons) or list(app.icons)

    @property
    def is_native(self) -> bool:
        """True if this launches a native executable instead of a JVM."""
        return bool(self.executable)

    @property
    def name(self) -> str:
        return self.display_name or ""


def java_command_line(launchable: Launchable, java: str = "java") -> str:
    """The shell command line that starts a JVM launchable."""
    parts = [f'"{java}"']
    if launchable.java_vm_arguments:
        parts.append(launchable.java_vm_arguments)
    if launchable.main_jar:
        parts.append(f'-cp "{launchable.main_jar}"')
    if launchable.main_class:
        parts.append(launchable.main_class)
    if launchable.start_arguments:
        parts.append(launchable.start_arguments)
    return " ".join(parts)


@dataclass
class Service(Launchable):
    """A background service started by the operating system."""

    id: str | None = None
    daemon_user: str | None = None
    start_on_boot: bool = True
    keep_alive: bool = False
    wrapper: str | None = None
    log_path: str | None = None
    log_prefix: str | None = None
    log_level: str | None = None
    pid_file: str | None = None
    std_output: str | None = None
    std_error: str | None = None
    library_path: str | None = None
    java_home: str | None = None
    jvm: str | None = None

    def inherit(self, app: "Application") -> None:
        super().inherit(app)
        if not self.id:
            self.id = app.app_identifier
        if not self.id or re.search(r"\s", self.id):
            raise ConfigurationError(
                f"Service id must be a non-empty word without spaces: '{self.id}'"
            )
        if not self.wrapper:
            self.wrapper = f"{self.id}-service"
        self.wrapper = self.wrapper.lower().replace(" ", "-")


@dataclass
class DesktopStarter(Launchable):
    """A desktop shortcut, menu entry or launcher.

    A starter either runs a native executable or a JVM with main class
    and jar; the executable wins if both are present.
    """

    mime_types: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)
    location: StarterLocation = StarterLocation.START_MENU
    document_types: list[DocumentType] = field(default_factory=list)

    def inherit(self, app: "Application") -> None:
        super().inherit(app)
        self.mime_types = _strings(self.mime_types)
        self.categories = _strings(self.categories)
        if not isinstance(self.location, StarterLocation):
            try:
                self.location = StarterLocation(self.location)
            except ValueError as e:
                raise ConfigurationError(
                    f"Unknown starter location: {self.location}"
                ) from e
        for doc in self.document_types:
            doc.inherit(app)
        if not self.document_types:
            self.document_types = list(app.document_types)
        if not self.is_native and not self.main_class:
            raise ConfigurationError(
                f"Desktop starter '{self.display_name}' needs an executable or a main class"
            )


@dataclass
class ProtocolHandler(Launchable):
    """Registers the application for URL schemes like myapp://."""

    schemes: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if isinstance(self.schemes, str):
            self.schemes = [self.schemes]
        for scheme in self.schemes:
            if not SCHEME_PATTERN.match(scheme):
                raise ConfigurationError(
                    f"Invalid protocol scheme '{scheme}': only letters are allowed"
                )


@dataclass
class Application:
    """The root of the model: one installable application."""

    application: str
    version: str | None = None
    vendor: str | None = None
    app_identifier: str | None = None
    description: str = ""
    copyright: str | None = None
    homepage: str | None = None
    icons: list[Path] = field(default_factory=list)
    main_class: str | None = None
    main_jar: str | None = None
    bundle_jre: str | None = None
    bundle_jre_target: str = "jre"
    document_types: list[DocumentType] = field(default_factory=list)
    services: list[Service] = field(default_factory=list)
    desktop_starters: list[DesktopStarter] = field(default_factory=list)
    protocol_handlers: list[ProtocolHandler] = field(default_factory=list)
    license_files: list[LocalizedResource] = field(default_factory=list)
    long_descriptions: list[LocalizedResource] = field(default_factory=list)
    default_resource_language: str = "en"
    run_after: DesktopStarter | None = None
    run_before_uninstall: DesktopStarter | None = None
    delete_files: list[str] = field(default_factory=list)
    delete_folders: list[str] = field(default_factory=list)
    sources: list[Path] = field(default_factory=list)
    archive_name: str | None = None

    def __post_init__(self) -> None:
        self.require("application")
        if not self.app_identifier:
            self.app_identifier = self.application
        if not self.archive_name:
            self.archive_name = self.application
        if self.copyright is None and self.vendor:
            year = datetime.date.today().year
            self.copyright = f"© Copyright {year} by {self.vendor}"
        self.bundle_jre_target = self.bundle_jre_target.strip("/") or "jre"
        self.icons = _paths(self.icons)
        self.sources = _paths(self.sources)
        for doc in self.document_types:
            doc.inherit(self)
        children: list[Launchable | None] = [
            *self.services,
            *self.desktop_starters,
            *self.protocol_handlers,
            self.run_after,
            self.run_before_uninstall,
        ]
        for child in children:
            if child is not None:
                child.inherit(self)

    def require(self, *names: str) -> None:
        """Check that mandatory fields are set and not blank.

        Raises:
            ConfigurationError: Naming the first missing field
        """
        for name in names:
            value = getattr(self, name)
            if value is None or not str(value).strip():
                raise ConfigurationError(
                    MANDATORY_FIELD_MESSAGES.get(
                        name, f"No {name} declared in the setup configuration."
                    )
                )

    @property
    def short_version(self) -> str:
        """The version cut to its first two components."""
        return ".".join((self.version or "").split(".")[:2])

    @property
    def is_java(self) -> bool:
        """True if anything in the application is started by a JVM."""
        if self.main_class:
            return True
        launchables: list[Launchable] = [*self.services, *self.desktop_starters]
        return any(not l.is_native and l.main_class for l in launchables)

    def icon_for_type(self, suffix: str) -> Path | None:
        """Return the first configured icon with the given suffix."""
        for icon in self.icons:
            if icon.suffix.lower() == suffix.lower():
                return icon
        return None

    def all_document_types(self) -> list[DocumentType]:
        """The application's document types plus those of its starters."""
        result = list(self.document_types)
        for starter in self.desktop_starters:
            for doc in starter.document_types:
                if doc not in result:
                    result.append(doc)
        return result


# ----------------------------------------------------------------------------
# Platform configuration


@dataclass
class UnixConfig:
    """Settings shared by the DEB and RPM builders."""

    installation_root: str | None = None
    daemon_user: str = DEFAULT_DAEMON_USER
    init_system: str = "sysv"
    default_service_file: Path | None = None
    additional_service_script: str = ""
    section: str | None = None
    architecture: str | None = None
    recommends: str | None = None
    depends: str | None = None
    homepage: str | None = None
    preinst: list[str] = field(default_factory=list)
    postinst: list[str] = field(default_factory=list)
    prerm: list[str] = field(default_factory=list)
    postrm: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.init_system not in INIT_SYSTEMS:
            raise ConfigurationError(
                f"init_system must be one of {', '.join(INIT_SYSTEMS)}, got '{self.init_system}'"
            )
        if self.default_service_file is not None:
            self.default_service_file = Path(self.default_service_file)
        if self.installation_root and self.installation_root != "/":
            self.installation_root = self.installation_root.rstrip("/")
        if not self.daemon_user:
            self.daemon_user = DEFAULT_DAEMON_USER

    @property
    def uses_systemd(self) -> bool:
        return self.init_system == "systemd"

    def root_for(self, app: Application) -> str:
        """The absolute installation root for the application."""
        if self.installation_root:
            return self.installation_root
        name = re.sub(r"[^a-z0-9_-]", "", app.application.lower())
        return f"/usr/share/{name}"

    def daemon_user_for(self, service: Service) -> str:
        return service.daemon_user or self.daemon_user


@dataclass
class DebConfig(UnixConfig):
    """Debian specific settings."""

    priority: str = DEFAULT_DEB_PRIORITY
    installed_size: int | None = None
    maintainer_email: str | None = None
    changes: str | None = None
    check_package: bool = False
    lintian_options: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        super().__post_init__()
        self.section = self.section or DEFAULT_DEB_SECTION
        self.architecture = self.architecture or DEFAULT_DEB_ARCHITECTURE
        self.priority = self.priority or DEFAULT_DEB_PRIORITY


@dataclass
class RpmConfig(UnixConfig):
    """RPM specific settings."""

    summary: str | None = None
    release: str = DEFAULT_RPM_RELEASE
    license: str = DEFAULT_RPM_LICENSE
    backward_compatible: bool = True
    prep: list[str] = field(default_factory=list)
    build: list[str] = field(default_factory=list)
    install: list[str] = field(default_factory=list)
    clean: list[str] = field(default_factory=list)
    spec_headers: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        super().__post_init__()
        self.section = self.section or DEFAULT_RPM_GROUP
        self.architecture = self.architecture or DEFAULT_RPM_ARCHITECTURE
        self.release = str(self.release or DEFAULT_RPM_RELEASE)
        self.license = self.license or DEFAULT_RPM_LICENSE


@dataclass
class SignToolConfig:
    """Authenticode signing of the finished MSI files with signtool.exe.

    An empty timestamp_servers list signs without a timestamp.
    """

    certificate: Path | None = None
    password: str | None = None
    sha1: str | None = None
    timestamp_servers: list[str] = field(
        default_factory=lambda: list(DEFAULT_TIMESTAMP_SERVERS)
    )
    tool: str = "signtool.exe"

    def __post_init__(self) -> None:
        if self.certificate is not None:
            self.certificate = Path(self.certificate)
        if self.password is None:
            self.password = os.getenv(ENV_SIGNTOOL_PASSWORD)
        if self.certificate is None and not self.sha1:
            raise ConfigurationError(
                "signtool needs a certificate file or a sha1 thumbprint"
            )


@dataclass
class MsiConfig:
    """Windows installer settings."""

    arch: str = "x64"
    languages: list[str] = field(default_factory=lambda: ["en-US"])
    install_scope: str = "perMachine"
    wix_home: Path | None = None
    service_wrapper: Path | None = None
    skip_validation: bool = False
    localizations: list[LocalizedResource] = field(default_factory=list)
    signtool: SignToolConfig | None = None

    def __post_init__(self) -> None:
        if self.arch not in ("x86", "x64", "arm64"):
            raise ConfigurationError(f"Unsupported MSI architecture: {self.arch}")
        if self.install_scope not in ("perMachine", "perUser"):
            raise ConfigurationError(
                f"install_scope must be perMachine or perUser, got '{self.install_scope}'"
            )
        if not self.languages:
            self.languages = ["en-US"]
        for culture in self.languages:
            if culture not in MSI_LANGUAGE_IDS:
                raise ConfigurationError(f"Unsupported MSI language: {culture}")
        if self.wix_home is None and os.getenv(ENV_WIX):
            self.wix_home = Path(os.environ[ENV_WIX])
        if self.wix_home is not None:
            self.wix_home = Path(self.wix_home)
        if self.service_wrapper is not None:
            self.service_wrapper = Path(self.service_wrapper)

    def tool(self, name: str) -> str:
        """Path of a WiX executable, found in wix_home/bin if set."""
        if self.wix_home is None:
            return name
        return str(self.wix_home / "bin" / name)


@dataclass
class CodesignConfig:
    """macOS code signing settings."""

    identity: str | None = None
    product_identity: str | None = None
    identifier: str | None = None
    keychain: str | None = None
    keychain_password: str | None = None
    deep: bool = True
    hardened: bool = True
    entitlements: Path | None = None
    ignore_errors: bool = False

    def __post_init__(self) -> None:
        if self.identity is None:
            dev_id = os.getenv(ENV_DEV_ID)
            if dev_id:
                self.identity = f"Developer ID Application: {dev_id}"
        if self.identity:
            self.identity = self.identity.replace("Installer", "Application", 1)
        if self.entitlements is not None:
            self.entitlements = Path(self.entitlements)


@dataclass
class NotarizationCredentials:
    """Apple ID credentials for the notarization service.

    For altool exactly one password source must be configured: a keychain
    item, the name of an environment variable, or the plaintext password.
    notarytool can use a stored keychain profile instead.
    """

    username: str | None = None
    keychain_item: str | None = None
    password_env: str | None = None
    password: str | None = None
    asc_provider: str | None = None
    keychain_profile: str | None = None

    @classmethod
    def from_env(cls, **overrides: str | None) -> "NotarizationCredentials":
        """Fill unset fields from the NOTARIZE_* environment variables."""
        defaults = {
            "username": os.getenv(ENV_NOTARIZE_USER),
            "keychain_item": os.getenv(ENV_NOTARIZE_KEYCHAIN_ITEM),
            "password_env": os.getenv(ENV_NOTARIZE_PASSWORD_ENV),
            "asc_provider": os.getenv(ENV_NOTARIZE_ASC_PROVIDER),
            "keychain_profile": os.getenv(ENV_KEYCHAIN_PROFILE),
        }
        for key, value in overrides.items():
            if value is not None:
                defaults[key] = value
        return cls(**defaults)

    def password_argument(self) -> str:
        """The altool password argument.

        Raises:
            ConfigurationError: Unless exactly one password source is set
        """
        sources = [
            ("keychain_item", self.keychain_item, "@keychain:{}"),
            ("password_env", self.password_env, "@env:{}"),
            ("password", self.password, "{}"),
        ]
        configured = [(name, value, fmt) for name, value, fmt in sources if value]
        if not configured:
            raise ConfigurationError(
                "At least one of the parameters has to be set: "
                "keychain_item, password_env, password"
            )
        if len(configured) > 1:
            names = ", ".join(name for name, _value, _fmt in configured)
            raise ConfigurationError(
                f"Only one password source may be set, got: {names}"
            )
        _name, value, fmt = configured[0]
        return fmt.format(value)

    def altool_arguments(self) -> list[str]:
        """Authentication arguments for xcrun altool."""
        if not self.username:
            raise ConfigurationError(
                "Notarization username required. "
                f"Set {ENV_NOTARIZE_USER} or pass username."
            )
        args = ["-u", self.username, "-p", self.password_argument()]
        if self.asc_provider:
            args += ["--asc-provider", self.asc_provider]
        return args

    def notarytool_arguments(self) -> list[str]:
        """Authentication arguments for xcrun notarytool."""
        if self.keychain_profile:
            return ["--keychain-profile", self.keychain_profile]
        if not self.username:
            raise ConfigurationError(
                "notarytool needs a keychain profile or a username. "
                f"Set {ENV_KEYCHAIN_PROFILE} or pass keychain_profile."
            )
        password = self.password_argument()
        if password.startswith("@keychain:"):
            raise ConfigurationError(
                "notarytool cannot read keychain items, use keychain_profile"
            )
        if password.startswith("@env:"):
            name = password[len("@env:"):]
            password = os.getenv(name, "")
            if not password:
                raise ConfigurationError(
                    f"Environment variable {name} is not set"
                )
        args = ["--apple-id", self.username, "--password", password]
        if self.asc_provider:
            args += ["--team-id", self.asc_provider]
        return args


@dataclass
class NotarizeConfig:
    """How to notarize a finished artifact."""

    credentials: NotarizationCredentials = field(
        default_factory=NotarizationCredentials.from_env
    )
    tool: str = "altool"
    bundle_id: str | None = None
    poll_interval: float = DEFAULT_POLL_INTERVAL
    timeout: float | None = None
    max_attempts: int | None = None
    staple: bool = True

    def __post_init__(self) -> None:
        if self.tool not in ("altool", "notarytool"):
            raise ConfigurationError(
                f"Notarization tool must be altool or notarytool, got '{self.tool}'"
            )
        if self.poll_interval < 0:
            raise ConfigurationError("poll_interval must not be negative")


@dataclass
class DmgConfig:
    """macOS bundle, package and image settings."""

    volume_name: str | None = None
    applications_link: bool = True
    min_system_version: str = DEFAULT_MIN_SYSTEM_VERSION
    install_location: str = DEFAULT_INSTALL_LOCATION
    daemon_user: str = DEFAULT_DAEMON_USER
    info_plist: dict[str, object] = field(default_factory=dict)
    welcome_pages: list[LocalizedResource] = field(default_factory=list)
    codesign: CodesignConfig | None = None
    notarize: NotarizeConfig | None = None


# ----------------------------------------------------------------------------
# Script fragments


class DebScript(enum.Enum):
    """Debian maintainer scripts."""

    PREINST = "preinst"
    POSTINST = "postinst"
    PRERM = "prerm"
    POSTRM = "postrm"


class RpmScript(enum.Enum):
    """Head and tail fragments of the RPM scriptlets."""

    PREINSTHEAD = "pre-head"
    PREINSTTAIL = "pre-tail"
    POSTINSTHEAD = "post-head"
    POSTINSTTAIL = "post-tail"
    PRERMHEAD = "preun-head"
    PRERMTAIL = "preun-tail"
    POSTRMHEAD = "postun-head"
    POSTRMTAIL = "postun-tail"


class ScriptFragments:
    """Ordered text fragments per lifecycle script section.

    Features that need install time side effects (service registration,
    mime registration, file cleanup) append to a section independently of
    each other. Rendering joins the fragments of a section with a blank
    line, in insertion order.

    Example:
        fragments = ScriptFragments()
        fragments.add(DebScript.POSTINST, "update-rc.d demod defaults")
        fragments.render(DebScript.POSTINST)
    """

    SEPARATOR = "\n\n"

    def __init__(self) -> None:
        self._fragments: dict[enum.Enum, list[str]] = {}

    def add(self, section: enum.Enum, text: str) -> None:
        """Append a fragment; blank fragments are ignored."""
        text = text.strip("\n")
        if text.strip():
            self._fragments.setdefault(section, []).append(text)

    def has(self, section: enum.Enum) -> bool:
        return bool(self._fragments.get(section))

    def get(self, section: enum.Enum) -> list[str]:
        return list(self._fragments.get(section, []))

    def render(self, section: enum.Enum) -> str:
        """All fragments of a section, or "" if none were added."""
        return self.SEPARATOR.join(self._fragments.get(section, []))

    def __contains__(self, section: enum.Enum) -> bool:
        return self.has(section)


# ----------------------------------------------------------------------------
# Unix templates and shared staging

SCRIPT_VARIABLES_TMPL = """\
APPLICATION_DISPLAY_NAME="{{displayName}}"
DAEMON_USER="{{daemonUser}}"
INSTALLATION_ROOT="{{installationRoot}}"
"""

INIT_SCRIPT_TMPL = """\
#!/bin/sh
### BEGIN INIT INFO
# Provides:          {{name}}
# Required-Start:    $remote_fs $syslog $network
# Required-Stop:     $remote_fs $syslog $network
# Default-Start:     2 3 4 5
# Default-Stop:      0 1 6
# Short-Description: {{displayName}}
# Description:       {{description}}
### END INIT INFO

NAME="{{name}}"
DISPLAY_NAME="{{displayName}}"
VERSION="{{majorversion}}"
DAEMON_USER="{{daemonUser}}"
WORKDIR="{{workdir}}"
PIDFILE="{{pidFile}}"
LOGFILE="{{logFile}}"
WAIT={{wait}}

[ -r "/etc/default/$NAME" ] && . "/etc/default/$NAME"
[ -r "/etc/sysconfig/$NAME" ] && . "/etc/sysconfig/$NAME"

{{additionalServiceScript}}

is_running() {
    [ -f "$PIDFILE" ] && kill -0 "$(cat "$PIDFILE")" 2>/dev/null
}

do_start() {
    if is_running; then
        echo "$DISPLAY_NAME is already running"
        return 0
    fi
    echo "Starting $DISPLAY_NAME"
    mkdir -p "$(dirname "$PIDFILE")" "$(dirname "$LOGFILE")"
    cd "$WORKDIR" || return 1
    if [ "$DAEMON_USER" = "root" ]; then
        nohup {{command}} >>"$LOGFILE" 2>&1 &
        echo $! >"$PIDFILE"
    else
        chown "$DAEMON_USER" "$(dirname "$PIDFILE")" "$(dirname "$LOGFILE")"
        su -s /bin/sh -c "nohup {{suCommand}} >>'$LOGFILE' 2>&1 & echo \\$! >'$PIDFILE'" "$DAEMON_USER"
    fi
}

do_stop() {
    if ! is_running; then
        echo "$DISPLAY_NAME is not running"
        rm -f "$PIDFILE"
        return 0
    fi
    echo "Stopping $DISPLAY_NAME"
    kill "$(cat "$PIDFILE")"
    i=0
    while is_running && [ $i -lt 30 ]; do
        sleep 1
        i=$((i + 1))
    done
    if is_running; then
        kill -9 "$(cat "$PIDFILE")"
    fi
    rm -f "$PIDFILE"
}

case "$1" in
    start)
        do_start
        ;;
    stop)
        do_stop
        ;;
    restart|force-reload)
        do_stop
        sleep "$WAIT"
        do_start
        ;;
    status)
        if is_running; then
            echo "$DISPLAY_NAME is running"
        else
            echo "$DISPLAY_NAME is stopped"
            exit 3
        fi
        ;;
    *)
        echo "Usage: $0 {start|stop|restart|force-reload|status}"
        exit 2
        ;;
esac
exit 0
"""

SYSTEMD_UNIT_TMPL = """\
[Unit]
Description={{displayName}}
After=network.target

[Service]
Type=simple
User={{daemonUser}}
WorkingDirectory={{workdir}}
EnvironmentFile=-{{environmentFile}}
ExecStart={{command}}
Restart={{restart}}
SuccessExitStatus=143

[Install]
WantedBy=multi-user.target
"""

LAUNCHER_TMPL = """\
#!/bin/sh
cd "{{workdir}}" || exit 1
exec {{command}} "$@"
"""

DESKTOP_ENTRY_TMPL = """\
[Desktop Entry]
Name={{displayName}}
Comment={{description}}
Exec="{{launcher}}" {{fieldCode}}
Icon={{icon}}
Terminal=false
StartupNotify=true
Type=Application
MimeType={{mimeTypes}}
Categories={{categories}}
"""

SHARED_MIME_NAMESPACE = "http://www.freedesktop.org/standards/shared-mime-info"


def script_variables(app: Application, unix: UnixConfig) -> str:
    """The variable block every generated maintainer script starts with."""
    return render_template(
        SCRIPT_VARIABLES_TMPL,
        displayName=app.application,
        daemonUser=unix.daemon_user,
        installationRoot=unix.root_for(app),
    )


def java_executable(
    app: Application, unix: UnixConfig, service: Service | None = None
) -> str:
    """The java binary a Unix launcher or service uses."""
    if service is not None and service.jvm:
        return service.jvm
    if app.bundle_jre:
        return f"{unix.root_for(app)}/{app.bundle_jre_target}/bin/java"
    if service is not None and service.java_home:
        return f"{service.java_home}/bin/java"
    return "/usr/bin/java"


def launch_command(
    app: Application,
    unix: UnixConfig,
    launchable: Launchable,
    service: Service | None = None,
) -> str:
    """The shell command starting a launchable below the install root."""
    if launchable.is_native:
        command = f'"{unix.root_for(app)}/{launchable.executable}"'
        if launchable.start_arguments:
            command += f" {launchable.start_arguments}"
        return command
    return java_command_line(launchable, java_executable(app, unix, service))


def work_dir_for(app: Application, unix: UnixConfig, launchable: Launchable) -> str:
    root = unix.root_for(app)
    if launchable.work_dir:
        return f"{root}/{launchable.work_dir.strip('/')}"
    return root


def service_file_path(unix: UnixConfig, service: Service) -> str:
    """Absolute path of the init script or systemd unit of a service."""
    if unix.uses_systemd:
        return f"/usr/lib/systemd/system/{service.id}.service"
    return f"/etc/init.d/{service.id}"


def render_init_script(
    app: Application, unix: UnixConfig, service: Service
) -> str:
    """Render the SysV init script of a service."""
    command = launch_command(app, unix, service, service)
    log_dir = service.log_path or f"/var/log/{service.id}"
    return render_template(
        INIT_SCRIPT_TMPL,
        name=service.id,
        displayName=service.display_name,
        description=service.description or service.display_name,
        majorversion=app.short_version,
        daemonUser=unix.daemon_user_for(service),
        workdir=work_dir_for(app, unix, service),
        pidFile=service.pid_file or f"/var/run/{service.id}/{service.id}.pid",
        logFile=f"{log_dir}/{service.log_prefix or service.id}.log",
        wait=2,
        additionalServiceScript=unix.additional_service_script,
        command=command,
        suCommand=command.replace("\\", "\\\\").replace('"', '\\"'),
    )


def render_systemd_unit(
    app: Application,
    unix: UnixConfig,
    service: Service,
    environment_file: str,
) -> str:
    """Render the systemd unit of a service."""
    return render_template(
        SYSTEMD_UNIT_TMPL,
        displayName=service.display_name,
        daemonUser=unix.daemon_user_for(service),
        workdir=work_dir_for(app, unix, service),
        environmentFile=environment_file,
        command=launch_command(app, unix, service, service),
        restart="always" if service.keep_alive else "on-failure",
    )


def write_service_files(
    app: Application,
    unix: UnixConfig,
    service: Service,
    fs_root: Path,
    default_file_dir: str,
) -> list[str]:
    """Write the init script or unit, plus the optional defaults file.

    Args:
        fs_root: Staging directory that mirrors "/"
        default_file_dir: /etc/default (DEB) or /etc/sysconfig (RPM)

    Returns:
        The absolute installed paths of the written files
    """
    installed = []
    environment_file = f"{default_file_dir}/{service.id}"
    path = service_file_path(unix, service)
    if unix.uses_systemd:
        text = render_systemd_unit(app, unix, service, environment_file)
        write_text(fs_root / path.lstrip("/"), text, 0o644)
    else:
        text = render_init_script(app, unix, service)
        write_text(fs_root / path.lstrip("/"), text, 0o755)
    installed.append(path)

    if unix.default_service_file is not None:
        if not unix.default_service_file.is_file():
            raise ConfigurationError(
                f"Default service file not found: {unix.default_service_file}"
            )
        dest = fs_root / environment_file.lstrip("/")
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(unix.default_service_file, dest)
        os.chmod(dest, 0o644)
        installed.append(environment_file)
    return installed


def service_register_fragment(unix: UnixConfig, service: Service) -> str:
    """Shell lines that register and start a service after installation."""
    if unix.uses_systemd:
        lines = ["systemctl daemon-reload >/dev/null 2>&1 || true"]
        if service.start_on_boot:
            lines.append(f"systemctl enable {service.id}")
        lines.append(f"systemctl start {service.id}")
        return "\n".join(lines)
    mode = "defaults" if service.start_on_boot else "defaults-disabled"
    return (
        f'[ -f "/etc/init.d/{service.id}" ] && '
        f"update-rc.d {service.id} {mode} 91 09 >/dev/null || true\n"
        f"service {service.id} start"
    )


def service_stop_fragment(unix: UnixConfig, service: Service) -> str:
    if unix.uses_systemd:
        return f"systemctl stop {service.id} >/dev/null 2>&1 || true"
    return (
        f'[ -f "/etc/init.d/{service.id}" ] && '
        f"service {service.id} stop >/dev/null 2>&1 || true"
    )


def service_deregister_fragment(unix: UnixConfig, service: Service) -> str:
    if unix.uses_systemd:
        return (
            f"systemctl disable {service.id} >/dev/null 2>&1 || true\n"
            "systemctl daemon-reload >/dev/null 2>&1 || true"
        )
    return f"update-rc.d {service.id} remove >/dev/null || true"


def daemon_user_fragments(user: str) -> tuple[str, str]:
    """Shell lines creating a system user and removing it again."""
    create = f"""\
if ! id "{user}" >/dev/null 2>&1; then
    useradd --system --user-group --no-create-home --home-dir "$INSTALLATION_ROOT" --shell /usr/sbin/nologin "{user}"
fi
chown -R "{user}:{user}" "$INSTALLATION_ROOT\""""
    remove = f"""\
userdel "{user}" >/dev/null 2>&1 || true
groupdel "{user}" >/dev/null 2>&1 || true"""
    return create, remove


def daemon_users(app: Application, unix: UnixConfig) -> list[str]:
    """All distinct non-root users the services run as."""
    users = [unix.daemon_user] + [unix.daemon_user_for(s) for s in app.services]
    result = []
    for user in users:
        if user and user != "root" and user not in result:
            result.append(user)
    return result


def delete_fragment(paths: list[str], folders: bool, prefix: str) -> str:
    """rm commands for files or folders below an installation prefix."""
    flag = "-rf" if folders else "-f"
    return "\n".join(
        f'rm {flag} "{prefix}/{p.strip("/")}"' for p in paths
    )


def safe_name(text: str) -> str:
    """A lowercase file name safe version of a display name."""
    return re.sub(r"[^A-Za-z0-9._-]+", "-", text).strip("-").lower()


def starter_command_name(starter: Launchable) -> str:
    """The launcher and .desktop file name of a starter."""
    return safe_name(starter.name)


def png_size(path: Path) -> tuple[int, int] | None:
    """Read width and height from a PNG header without decoding it."""
    try:
        with open(path, "rb") as f:
            header = f.read(24)
    except OSError:
        return None
    if len(header) < 24 or header[:8] != b"\x89PNG\r\n\x1a\n":
        return None
    return (
        int.from_bytes(header[16:20], "big"),
        int.from_bytes(header[20:24], "big"),
    )


def install_hicolor_icons(
    icons: list[Path], icon_name: str, fs_root: Path
) -> list[str]:
    """Copy PNG and SVG icons into the hicolor theme by their size."""
    installed = []
    for icon in icons:
        if icon.suffix.lower() == ".svg":
            size_dir = "scalable"
        elif icon.suffix.lower() == ".png":
            size = png_size(icon)
            if size is None:
                continue
            size_dir = f"{size[0]}x{size[1]}"
        else:
            continue
        path = f"/usr/share/icons/hicolor/{size_dir}/apps/{icon_name}{icon.suffix.lower()}"
        dest = fs_root / path.lstrip("/")
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(icon, dest)
        os.chmod(dest, 0o644)
        installed.append(path)
    return installed


def shared_mime_info(app: Application, doc_types: list[DocumentType]) -> str:
    """A freedesktop shared-mime-info document for the document types."""
    ET.register_namespace("", SHARED_MIME_NAMESPACE)
    root = ET.Element(f"{{{SHARED_MIME_NAMESPACE}}}mime-info")
    for doc in doc_types:
        mime = ET.SubElement(
            root, f"{{{SHARED_MIME_NAMESPACE}}}mime-type", type=doc.mime_type
        )
        comment = ET.SubElement(mime, f"{{{SHARED_MIME_NAMESPACE}}}comment")
        comment.text = doc.name
        for ext in doc.extensions:
            ET.SubElement(
                mime, f"{{{SHARED_MIME_NAMESPACE}}}glob", pattern=f"*.{ext}"
            )
    ET.indent(root)
    body = ET.tostring(root, encoding="unicode")
    return f'<?xml version="1.0" encoding="UTF-8"?>\n{body}\n'


def write_starter_files(
    app: Application,
    unix: UnixConfig,
    starter: DesktopStarter,
    fs_root: Path,
    url_handler: bool = False,
) -> list[str]:
    """Write the /usr/bin launcher, the .desktop entry and the icons.

    Returns:
        The absolute installed paths of the written files
    """
    name = starter_command_name(starter)
    launcher = f"/usr/bin/{name}"
    write_text(
        fs_root / launcher.lstrip("/"),
        render_template(
            LAUNCHER_TMPL,
            workdir=work_dir_for(app, unix, starter),
            command=launch_command(app, unix, starter),
        ),
        0o755,
    )
    installed = [launcher]
    installed += install_hicolor_icons(starter.icons, name, fs_root)

    mime_types = list(starter.mime_types)
    for doc in starter.document_types:
        if doc.mime_type not in mime_types:
            mime_types.append(doc.mime_type)
    desktop = f"/usr/share/applications/{name}.desktop"
    write_text(
        fs_root / desktop.lstrip("/"),
        render_template(
            DESKTOP_ENTRY_TMPL,
            displayName=starter.display_name,
            description=starter.description or starter.display_name,
            launcher=launcher,
            fieldCode="%U" if url_handler else "%F",
            icon=name,
            mimeTypes="".join(f"{m};" for m in mime_types),
            categories="".join(f"{c};" for c in starter.categories),
        ),
        0o644,
    )
    installed.append(desktop)
    return installed


def mime_file_name(app: Application) -> str:
    """Name of the shared-mime-info file, prefixed with the vendor."""
    vendor = re.sub(r"[^a-z0-9]", "", (app.vendor or "").lower()) or "setup"
    return f"{vendor}-{safe_name(app.app_identifier or app.application)}.xml"


def locate_jre(
    bundle_jre: str, dry_run: bool = False, log: logging.Logger | None = None
) -> Path:
    """Find the Java runtime to bundle.

    bundle_jre is either a directory or a version; a version must match
    the java found on PATH. A JDK's embedded jre/ directory is preferred.

    Raises:
        ConfigurationError: If no matching runtime is found
    """
    home = Path(bundle_jre).expanduser()
    if not home.is_dir():
        java = run_command(
            ["sh", "-c", 'readlink -f "$(command -v java)"'],
            dry_run=dry_run,
            log=log,
        )
        version = run_command(
            ["sh", "-c", "java -version 2>&1"], dry_run=dry_run, log=log
        )
        if dry_run:
            return home
        if not java or f'version "{bundle_jre}' not in version:
            raise ConfigurationError(
                f"bundle_jre version {bundle_jre} can not be found, java on PATH is: {version}"
            )
        home = Path(java).parent.parent
    if (home / "jre").is_dir():
        home = home / "jre"
    return home


def bundle_jre(
    app: Application,
    dest: Path,
    dry_run: bool = False,
    log: logging.Logger | None = None,
) -> Path | None:
    """Copy the configured Java runtime to dest, keeping executables."""
    if not app.bundle_jre:
        return None
    log = log or logging.getLogger("setupbuilder")
    home = locate_jre(app.bundle_jre, dry_run=dry_run, log=log)
    log.info("bundle JRE: %s", home)
    if dry_run:
        return dest
    try:
        shutil.copytree(home, dest, symlinks=True, dirs_exist_ok=True)
    except (OSError, shutil.Error) as e:
        raise FileError(f"Cannot copy JRE from {home}: {e}") from e
    normalize_permissions(dest, keep_executable=True)
    return dest


def protocol_starter(handler: ProtocolHandler) -> DesktopStarter:
    """A desktop entry that registers a protocol handler's URL schemes."""
    values = {f.name: getattr(handler, f.name) for f in dataclasses.fields(Launchable)}
    return DesktopStarter(
        **values,
        mime_types=[f"x-scheme-handler/{scheme}" for scheme in handler.schemes],
    )


def run_fragment(app: Application, unix: UnixConfig, starter: DesktopStarter) -> str:
    """Shell lines that run a starter from its working directory."""
    return (
        f'( cd "{work_dir_for(app, unix, starter)}" && '
        f"{launch_command(app, unix, starter)} )"
    )


class PackageBuilder(Protocol):
    """The interface shared by the per-format builders."""

    app: Application
    output_dir: Path

    @property
    def setup_file(self) -> Path: ...

    def build(self) -> Path: ...


JAVA_CHECK_SCRIPT = """\
if ! command -v java >/dev/null 2>&1; then
    echo "Warning: no Java runtime found on PATH. $APPLICATION_DISPLAY_NAME requires Java to run."
fi"""

ICON_CACHE_SCRIPT = """\
if command -v gtk-update-icon-cache >/dev/null 2>&1; then
    gtk-update-icon-cache -f -t /usr/share/icons/hicolor >/dev/null 2>&1 || true
fi
if command -v update-desktop-database >/dev/null 2>&1; then
    update-desktop-database -q /usr/share/applications || true
fi"""


def xdg_mime_fragment(action: str, mime_file: str) -> str:
    """Shell lines that install or uninstall a shared-mime-info file."""
    return (
        "if command -v xdg-mime >/dev/null 2>&1; then\n"
        f'    xdg-mime {action} --mode system --novendor "{mime_file}" || true\n'
        "fi"
    )


def write_desktop_integration(
    app: Application,
    unix: UnixConfig,
    fs_root: Path,
    log: logging.Logger,
) -> tuple[list[str], str | None]:
    """Write launchers, .desktop entries, icons and the mime database file.

    Protocol handlers become desktop entries for x-scheme-handler types.

    Returns:
        The installed paths outside the installation root, and the
        absolute path of the mime file (None without document types)
    """
    installed: list[str] = []
    starters = [(s, False) for s in app.desktop_starters]
    starters += [(protocol_starter(h), True) for h in app.protocol_handlers]
    for starter, url_handler in starters:
        log.info("adding desktop starter %s", starter.display_name)
        installed += write_starter_files(app, unix, starter, fs_root, url_handler)

    doc_types = app.all_document_types()
    if not doc_types:
        return installed, None
    mime_file = f"{unix.root_for(app)}/{mime_file_name(app)}"
    write_text(fs_root / mime_file.lstrip("/"), shared_mime_info(app, doc_types))
    return installed, mime_file


# ----------------------------------------------------------------------------
# Debian packages


def _debian_paragraph(lines: list[str]) -> str:
    """Indent text for a multi-line control field; blank lines become " ."."""
    return "\n".join(f" {line}" if line.strip() else " ." for line in lines)


class DebBuilder:
    """Build a Debian package with dpkg-deb.

    The staging tree mirrors the target filesystem: the application goes
    to the installation root (default /usr/share/<name>), services to
    /etc/init.d or the systemd unit directory, starters to /usr/bin and
    /usr/share/applications, and the control area to DEBIAN/.

    Args:
        app: The application model
        config: Debian settings
        output_dir: Directory receiving the .deb file
        build_dir: Optional staging directory (default: a temporary one)
        keep_build_dir: If True, keep the staging directory
        dry_run: If True, log tool invocations without running them
        overwrite: If True, replace an existing package file

    Example:
        builder = DebBuilder(app, DebConfig(init_system="systemd"), "dist")
        builder.build()
    """

    def __init__(
        self,
        app: Application,
        config: DebConfig | None = None,
        output_dir: Pathlike = ".",
        build_dir: Pathlike | None = None,
        keep_build_dir: bool = False,
        dry_run: bool = False,
        overwrite: bool = False,
    ) -> None:
        self.app = app
        self.config = config or DebConfig()
        self.output_dir = Path(output_dir)
        self.build_dir = Path(build_dir) if build_dir else None
        self.keep_build_dir = keep_build_dir
        self.dry_run = dry_run
        self.overwrite = overwrite
        self.head = ScriptFragments()
        self.tail = ScriptFragments()
        self.conffiles: list[str] = []
        self.log = logging.getLogger(self.__class__.__name__)

    def run_command(self, command: list[str], **kwargs: object) -> str:
        """Run a command with this builder's logger and dry-run flag."""
        return run_command(command, dry_run=self.dry_run, log=self.log, **kwargs)  # type: ignore[arg-type]

    @property
    def setup_file(self) -> Path:
        return self.output_dir / f"{self.app.archive_name}-{self.app.version}.deb"

    @property
    def installation_root(self) -> str:
        return self.config.root_for(self.app)

    def validate(self) -> None:
        """Check the mandatory control fields before anything is written."""
        self.app.require("app_identifier", "version", "vendor")

    # --- control area ---------------------------------------------------

    def control_text(self, installed_size: int) -> str:
        """Render the DEBIAN/control file.

        Args:
            installed_size: Size in KB, used unless configured explicitly
        """
        self.validate()
        app, cfg = self.app, self.config
        lines = [
            f"Package: {app.app_identifier}",
            f"Version: {app.version}",
            f"Section: {cfg.section}",
            f"Priority: {cfg.priority}",
            f"Architecture: {cfg.architecture}",
            f"Installed-Size: {cfg.installed_size or installed_size}",
        ]
        recommends = cfg.recommends
        if not recommends and app.is_java and not app.bundle_jre:
            recommends = DEFAULT_JRE_RECOMMENDS
        if recommends:
            lines.append(f"Recommends: {recommends}")
        lines.append("Pre-Depends: debconf")
        if cfg.depends:
            lines.append(f"Depends: {cfg.depends}")
        if cfg.maintainer_email:
            lines.append(f"Maintainer: {app.vendor} <{cfg.maintainer_email}>")
        else:
            self.log.warning("No maintainer_email configured for %s", app.vendor)
            lines.append(f"Maintainer: {app.vendor}")

        summary = app.description or app.application
        if app.long_descriptions:
            for resource in app.long_descriptions:
                lang = resource.language
                suffix = (
                    ""
                    if lang == app.default_resource_language.lower()
                    else f"-{lang}"
                )
                text = resource.resolve().read_text(encoding="utf-8")
                lines.append(f"Description{suffix}: {summary}")
                lines.append(_debian_paragraph(text.splitlines()))
        else:
            lines.append(f"Description: {summary}")

        homepage = cfg.homepage or app.homepage
        if homepage:
            lines.append(f"Homepage: {homepage}")
        return "\n".join(lines) + "\n"

    def script_text(self, script: DebScript) -> str | None:
        """Render a maintainer script, or None if it has no content.

        A written script always starts with the interpreter line and the
        variable block, even if only a head or tail fragment exists.
        """
        user_lines = getattr(self.config, script.value)
        parts = [
            self.head.render(script),
            "\n".join(user_lines),
            self.tail.render(script),
        ]
        parts = [part for part in parts if part.strip()]
        if not parts:
            return None
        header = "#!/bin/sh\nset -e\n\n" + script_variables(self.app, self.config)
        return header + "\n" + "\n\n".join(parts) + "\n"

    def templates_text(self) -> str:
        """Render the debconf templates for the license agreement."""
        app_id = self.app.app_identifier
        resource = find_localized(
            self.app.license_files, self.app.default_resource_language
        )
        if resource is None:
            raise ConfigurationError("No license file configured")
        text = resource.resolve().read_text(encoding="utf-8")
        blocks = [
            f"Template: {app_id}/license\n"
            "Type: note\n"
            "Description: License agreement\n"
            + _debian_paragraph(text.splitlines())
        ]
        for other in self.app.license_files:
            if other is resource:
                continue
            other_text = other.resolve().read_text(encoding="utf-8")
            blocks[0] += (
                f"\nDescription-{other.language}.UTF-8: License agreement\n"
                + _debian_paragraph(other_text.splitlines())
            )
        blocks.append(
            f"Template: {app_id}/accept-license\n"
            "Type: boolean\n"
            "Description: Do you accept the license agreement?"
        )
        blocks.append(
            f"Template: {app_id}/error-license\n"
            "Type: error\n"
            "Description: License not accepted\n"
            f" The license agreement has to be accepted to install {self.app.application}."
        )
        return "\n\n".join(blocks) + "\n"

    def changelog_text(self, when: datetime.datetime | None = None) -> str:
        """Render the Debian changelog entry of this version."""
        app, cfg = self.app, self.config
        when = when or datetime.datetime.now(datetime.timezone.utc)
        changes = cfg.changes or "* no changes"
        change_lines = [
            f"  {line.strip()}" for line in changes.splitlines() if line.strip()
        ]
        maintainer = f"{app.vendor} <{cfg.maintainer_email or ''}>"
        return (
            f"{app.app_identifier} ({app.version}) unstable; urgency=low\n\n"
            + "\n".join(change_lines)
            + f"\n\n -- {maintainer}  {email.utils.format_datetime(when)}\n"
        )

    def copyright_text(self) -> str:
        """Render a machine-readable (DEP-5) copyright file."""
        app, cfg = self.app, self.config
        lines = [
            "Format: https://www.debian.org/doc/packaging-manuals/copyright-format/1.0/",
            f"Upstream-Name: {app.application}",
            f"Upstream-Contact: {app.vendor} <{cfg.maintainer_email or ''}>",
        ]
        homepage = cfg.homepage or app.homepage
        if homepage:
            lines.append(f"Source: {homepage}")
        lines += ["", "Files: *", f"Copyright: {app.copyright}"]
        resource = find_localized(
            app.license_files, app.default_resource_language
        )
        if resource is None:
            lines.append("License: proprietary")
        else:
            text = resource.resolve().read_text(encoding="utf-8")
            lines.append("License: proprietary")
            lines.append(_debian_paragraph(text.splitlines()))
        return "\n".join(lines) + "\n"

    # --- features ---------------------------------------------------------

    def add_services(self, fs_root: Path) -> None:
        cfg = self.config
        for service in self.app.services:
            self.log.info("adding service %s", service.id)
            installed = write_service_files(
                self.app, cfg, service, fs_root, "/etc/default"
            )
            self.conffiles += [p for p in installed if p.startswith("/etc/default/")]
            if not cfg.uses_systemd:
                self.conffiles.append(service_file_path(cfg, service))
            self.tail.add(DebScript.POSTINST, service_register_fragment(cfg, service))
            self.head.add(DebScript.PRERM, service_stop_fragment(cfg, service))
            if cfg.uses_systemd:
                self.head.add(
                    DebScript.PRERM,
                    'if [ "$1" = "remove" ] || [ "$1" = "purge" ]; then\n'
                    f"{service_deregister_fragment(cfg, service)}\nfi",
                )
            else:
                self.tail.add(
                    DebScript.POSTRM,
                    'if [ "$1" = "purge" ]; then\n'
                    f"{service_deregister_fragment(cfg, service)}\nfi",
                )

    def add_starters(self, fs_root: Path) -> None:
        _installed, mime_file = write_desktop_integration(
            self.app, self.config, fs_root, self.log
        )
        if mime_file:
            self.tail.add(DebScript.POSTINST, xdg_mime_fragment("install", mime_file))
            self.head.add(DebScript.PRERM, xdg_mime_fragment("uninstall", mime_file))

    def add_license_agreement(self, debian_dir: Path) -> None:
        """Ask for license acceptance through debconf before installing."""
        app_id = self.app.app_identifier
        write_text(debian_dir / "templates", self.templates_text())
        self.head.add(
            DebScript.PREINST,
            f"""\
if [ -e /usr/share/debconf/confmodule ]; then
    . /usr/share/debconf/confmodule
    db_version 2.0
    db_input critical {app_id}/license || true
    db_go || true
    db_input critical {app_id}/accept-license || true
    db_go || true
    db_get {app_id}/accept-license
    if [ "$RET" != "true" ]; then
        db_input critical {app_id}/error-license || true
        db_go || true
        db_purge
        exit 1
    fi
fi""",
        )
        self.tail.add(
            DebScript.POSTRM,
            'if [ "$1" = "purge" ] && [ -e /usr/share/debconf/confmodule ]; then\n'
            "    . /usr/share/debconf/confmodule\n"
            "    db_purge\n"
            "fi",
        )

    def prepare(self, fs_root: Path) -> None:
        """Stage the files and collect the script fragments."""
        app, cfg = self.app, self.config
        install_dir = fs_root / self.installation_root.lstrip("/")
        stage_sources(app.sources, install_dir)
        normalize_permissions(install_dir)

        if app.bundle_jre:
            bundle_jre(
                app, install_dir / app.bundle_jre_target, self.dry_run, self.log
            )
        elif app.is_java:
            self.head.add(DebScript.PREINST, JAVA_CHECK_SCRIPT)

        for user in daemon_users(app, cfg):
            create, remove = daemon_user_fragments(user)
            self.head.add(DebScript.POSTINST, create)
            self.tail.add(
                DebScript.POSTRM, f'if [ "$1" = "purge" ]; then\n{remove}\nfi'
            )

        self.add_services(fs_root)
        self.add_starters(fs_root)
        if app.license_files:
            self.add_license_agreement(fs_root / "DEBIAN")

        for script in (DebScript.PREINST, DebScript.PRERM):
            self.head.add(
                script,
                delete_fragment(app.delete_files, False, "$INSTALLATION_ROOT"),
            )
            self.head.add(
                script,
                delete_fragment(app.delete_folders, True, "$INSTALLATION_ROOT"),
            )

        if app.run_after is not None:
            self.tail.add(
                DebScript.POSTINST,
                'if [ "$1" = "configure" ]; then\n'
                f"    {run_fragment(app, cfg, app.run_after)} >/dev/null 2>&1 &\n"
                "fi",
            )
        if app.desktop_starters or app.protocol_handlers:
            self.tail.add(DebScript.POSTINST, ICON_CACHE_SCRIPT)
        if app.run_before_uninstall is not None:
            self.head.add(
                DebScript.PRERM,
                'case "$1" in\n'
                "    remove|purge)\n"
                f"        {run_fragment(app, cfg, app.run_before_uninstall)} || true\n"
                "        ;;\n"
                "esac",
            )

    def write_documentation(self, fs_root: Path) -> None:
        doc_dir = fs_root / "usr" / "share" / "doc" / str(self.app.app_identifier)
        doc_dir.mkdir(parents=True, exist_ok=True)
        changelog = doc_dir / "changelog.gz"
        with gzip.open(changelog, "wt", encoding="utf-8") as f:
            f.write(self.changelog_text())
        os.chmod(changelog, 0o644)
        write_text(doc_dir / "copyright", self.copyright_text())

    def write_control_area(self, fs_root: Path) -> Path:
        """Write control, conffiles and the maintainer scripts."""
        debian_dir = fs_root / "DEBIAN"
        debian_dir.mkdir(parents=True, exist_ok=True)
        size = installed_size_kb(fs_root)
        control = write_text(debian_dir / "control", self.control_text(size))
        if self.conffiles:
            write_text(
                debian_dir / "conffiles",
                "".join(f"{path}\n" for path in self.conffiles),
            )
        for script in DebScript:
            text = self.script_text(script)
            if text is not None:
                write_text(debian_dir / script.value, text, 0o755)
        return control

    def check_package(self) -> None:
        """Run lintian on the finished package."""
        command = ["lintian", *self.config.lintian_options, str(self.setup_file)]
        try:
            self.run_command(command, capture=False)
        except CommandError as e:
            raise PackagingError(f"lintian rejected {self.setup_file}: {e}") from e

    def build(self) -> Path:
        """Build the package and return the path of the .deb file.

        Raises:
            ConfigurationError: If a mandatory field is missing
            PackagingError: If dpkg-deb or lintian fail
        """
        self.validate()
        check_output_file(self.setup_file, self.overwrite)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.log.info("Building %s", self.setup_file)

        with build_directory(self.build_dir, keep=self.keep_build_dir) as tmp:
            fs_root = tmp.path("deb")
            self.prepare(fs_root)
            self.write_documentation(fs_root)
            control = self.write_control_area(fs_root)
            normalize_permissions(fs_root, keep_executable=True)

            command = [
                "fakeroot",
                "dpkg-deb",
                "--build",
                str(fs_root.resolve()),
                str(self.setup_file.resolve()),
            ]
            try:
                self.run_command(command, cwd=tmp.root, capture=False)
            except CommandError as e:
                self.log.error("control file:\n%s", control.read_text())
                raise PackagingError(
                    f"dpkg-deb failed for {self.setup_file}: {e}"
                ) from e

        if self.config.check_package:
            self.check_package()
        self.log.info("Created: %s", self.setup_file)
        return self.setup_file


# ----------------------------------------------------------------------------
# RPM packages

RPM_BACKWARD_COMPATIBLE_DEFINES = [
    "%define _binary_payload w9.gzdio",
    "%define _source_payload w9.gzdio",
    "%define _binary_filedigest_algorithm 1",
    "%define _source_filedigest_algorithm 1",
]

# scriptlet -> (head, user lines attribute, tail, only on full removal)
RPM_SCRIPTLETS = {
    "%pre": (RpmScript.PREINSTHEAD, "preinst", RpmScript.PREINSTTAIL, False),
    "%post": (RpmScript.POSTINSTHEAD, "postinst", RpmScript.POSTINSTTAIL, False),
    "%preun": (RpmScript.PRERMHEAD, "prerm", RpmScript.PRERMTAIL, True),
    "%postun": (RpmScript.POSTRMHEAD, "postrm", RpmScript.POSTRMTAIL, True),
}


class RpmBuilder:
    """Build an RPM package with rpmbuild.

    Files are staged below STAGE/ in the rpmbuild top directory and copied
    into the build root by the %install section. Scriptlets are emitted
    only for sections that received content; %preun and %postun only act
    on a full removal ($1 = 0), not on an upgrade.

    Example:
        RpmBuilder(app, RpmConfig(init_system="systemd"), "dist").build()
    """

    def __init__(
        self,
        app: Application,
        config: RpmConfig | None = None,
        output_dir: Pathlike = ".",
        build_dir: Pathlike | None = None,
        keep_build_dir: bool = False,
        dry_run: bool = False,
        overwrite: bool = False,
    ) -> None:
        self.app = app
        self.config = config or RpmConfig()
        self.output_dir = Path(output_dir)
        self.build_dir = Path(build_dir) if build_dir else None
        self.keep_build_dir = keep_build_dir
        self.dry_run = dry_run
        self.overwrite = overwrite
        self.fragments = ScriptFragments()
        self.files: list[str] = []
        self.config_files: list[str] = []
        self.log = logging.getLogger(self.__class__.__name__)

    def run_command(self, command: list[str], **kwargs: object) -> str:
        return run_command(command, dry_run=self.dry_run, log=self.log, **kwargs)  # type: ignore[arg-type]

    @property
    def rpm_name(self) -> str:
        """File name rpmbuild gives the binary package."""
        cfg = self.config
        return (
            f"{self.app.app_identifier}-{self.app.version}-{cfg.release}"
            f".{cfg.architecture}.rpm"
        )

    @property
    def setup_file(self) -> Path:
        cfg = self.config
        return self.output_dir / (
            f"{self.app.archive_name}-{self.app.version}-{cfg.release}"
            f".{cfg.architecture}.rpm"
        )

    @property
    def installation_root(self) -> str:
        return self.config.root_for(self.app)

    def validate(self) -> None:
        self.app.require("app_identifier", "version", "vendor")

    # --- spec file ----------------------------------------------------------

    def header_lines(self) -> list[str]:
        """The preamble tags in the order rpmbuild expects them."""
        self.validate()
        app, cfg = self.app, self.config
        lines = [
            f"Summary: {cfg.summary or app.application}",
            f"Name: {app.app_identifier}",
            f"Version: {app.version}",
            f"Release: {cfg.release}",
            f"License: {cfg.license}",
            f"Group: {cfg.section}",
            "BuildRoot: %{_builddir}/%{name}-root",
        ]
        homepage = cfg.homepage or app.homepage
        if homepage:
            lines.append(f"URL: {homepage}")
        lines += [
            f"Vendor: {app.vendor}",
            f"Packager: {app.vendor}",
            f"Prefix: {self.installation_root}",
        ]
        if cfg.depends and cfg.depends.strip():
            lines.append(f"Requires: {cfg.depends}")
        lines.append(f"BuildArchitectures: {cfg.architecture}")
        lines += cfg.spec_headers
        return lines

    def description_sections(self) -> list[str]:
        app = self.app
        sections = []
        for resource in app.long_descriptions:
            lang = resource.language
            tag = (
                "%description"
                if lang == app.default_resource_language.lower()
                else f"%description -l {lang}"
            )
            text = resource.resolve().read_text(encoding="utf-8").rstrip()
            sections.append(f"{tag}\n{text}")
        if not any(s.startswith("%description\n") for s in sections):
            sections.insert(0, f"%description\n{app.description or app.application}")
        return sections

    def scriptlet(self, tag: str) -> str | None:
        """Render one install scriptlet, or None if it has no content."""
        head, attribute, tail, removal_only = RPM_SCRIPTLETS[tag]
        parts = [
            self.fragments.render(head),
            "\n".join(getattr(self.config, attribute)),
            self.fragments.render(tail),
        ]
        parts = [part for part in parts if part.strip()]
        if not parts:
            return None
        body = script_variables(self.app, self.config) + "\n" + "\n\n".join(parts)
        if removal_only:
            body = f"if [ $1 -eq 0 ]; then\n{body}\nfi"
        return f"{tag}\n{body}"

    def spec_text(self) -> str:
        """Render the complete .spec file."""
        cfg = self.config
        variables = script_variables(self.app, cfg)
        sections = ["\n".join(self.header_lines())]
        if cfg.backward_compatible:
            sections.append("\n".join(RPM_BACKWARD_COMPATIBLE_DEFINES))
        sections.append("%define __jar_repack %{nil}")
        sections += self.description_sections()
        sections.append("%prep\n" + variables + "\n".join(cfg.prep))
        sections.append("%build\n" + variables + "\n".join(cfg.build))
        sections.append(
            "%install\n"
            "mkdir -p '%{buildroot}'\n"
            "cp -R '%{_topdir}/STAGE/.' '%{buildroot}'\n"
            + variables
            + "\n".join(cfg.install)
        )
        sections.append("%clean\n" + variables + "\n".join(cfg.clean))

        files = ["%files", "%defattr(-,root,root,-)", f'"{self.installation_root}"']
        files += [f'"{path}"' for path in self.files]
        files += [f'%config(noreplace) "{path}"' for path in self.config_files]
        sections.append("\n".join(files))

        for tag in RPM_SCRIPTLETS:
            text = self.scriptlet(tag)
            if text is not None:
                sections.append(text)
        return "\n\n".join(section.rstrip() for section in sections) + "\n"

    # --- features -------------------------------------------------------------

    def add_service(self, fs_root: Path, service: Service) -> None:
        cfg = self.config
        self.log.info("adding service %s", service.id)
        installed = write_service_files(
            self.app, cfg, service, fs_root, "/etc/sysconfig"
        )
        service_file = installed[0]
        self.files.append(service_file)
        self.config_files += installed[1:]

        self.fragments.add(
            RpmScript.PREINSTHEAD,
            f"if [ $1 -gt 1 ]; then\n{service_stop_fragment(cfg, service)}\nfi",
        )
        root = self.installation_root
        self.fragments.add(
            RpmScript.POSTINSTTAIL,
            f'if [ -n "$RPM_INSTALL_PREFIX" ] && [ "{root}" != "$RPM_INSTALL_PREFIX" ]; then\n'
            f"    sed -i 's|{root}|'\"$RPM_INSTALL_PREFIX\"'|g' \"{service_file}\"\n"
            "fi",
        )
        if cfg.uses_systemd:
            self.fragments.add(
                RpmScript.POSTINSTTAIL, service_register_fragment(cfg, service)
            )
        else:
            lines = [f'[ -f "{service_file}" ] && chkconfig --add {service.id} || true']
            if not service.start_on_boot:
                lines.append(f"chkconfig {service.id} off || true")
            lines.append(f'[ -f "{service_file}" ] && {service_file} start || true')
            self.fragments.add(RpmScript.POSTINSTTAIL, "\n".join(lines))

        self.fragments.add(RpmScript.PRERMHEAD, service_stop_fragment(cfg, service))
        if cfg.uses_systemd:
            deregister = service_deregister_fragment(cfg, service)
        else:
            deregister = (
                f'[ -f "{service_file}" ] && chkconfig --del {service.id} || true'
            )
        self.fragments.add(RpmScript.PRERMHEAD, deregister)

    def copy_licenses(self, fs_root: Path) -> None:
        app = self.app
        for resource in app.license_files:
            source = resource.resolve()
            path = f"/usr/share/licenses/{app.application}/{source.name}"
            dest = fs_root / path.lstrip("/")
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, dest)
            os.chmod(dest, 0o644)
            self.files.append(path)

    def prepare(self, fs_root: Path) -> None:
        """Stage the files and collect the scriptlet fragments."""
        app, cfg = self.app, self.config
        install_dir = fs_root / self.installation_root.lstrip("/")
        stage_sources(app.sources, install_dir)
        normalize_permissions(install_dir)

        if app.bundle_jre:
            bundle_jre(
                app, install_dir / app.bundle_jre_target, self.dry_run, self.log
            )
        elif app.is_java:
            self.fragments.add(RpmScript.PREINSTHEAD, JAVA_CHECK_SCRIPT)

        for user in daemon_users(app, cfg):
            create, remove = daemon_user_fragments(user)
            self.fragments.add(RpmScript.POSTINSTHEAD, create)
            self.fragments.add(RpmScript.POSTRMTAIL, remove)

        for service in app.services:
            self.add_service(fs_root, service)

        installed, mime_file = write_desktop_integration(app, cfg, fs_root, self.log)
        self.files += installed
        if mime_file:
            self.fragments.add(
                RpmScript.POSTINSTTAIL, xdg_mime_fragment("install", mime_file)
            )
            self.fragments.add(
                RpmScript.PRERMHEAD, xdg_mime_fragment("uninstall", mime_file)
            )

        self.copy_licenses(fs_root)

        prefix = "${RPM_INSTALL_PREFIX}"
        for script in (RpmScript.PREINSTTAIL, RpmScript.PRERMTAIL):
            self.fragments.add(script, delete_fragment(app.delete_files, False, prefix))
            self.fragments.add(script, delete_fragment(app.delete_folders, True, prefix))

        if app.run_after is not None:
            self.fragments.add(
                RpmScript.POSTINSTTAIL,
                f"{run_fragment(app, cfg, app.run_after)} >/dev/null 2>&1 &",
            )
        if app.desktop_starters or app.protocol_handlers:
            self.fragments.add(RpmScript.POSTINSTTAIL, ICON_CACHE_SCRIPT)
        if app.run_before_uninstall is not None:
            self.fragments.add(
                RpmScript.PRERMTAIL,
                f"{run_fragment(app, cfg, app.run_before_uninstall)} || true",
            )

    def build(self) -> Path:
        """Build the package and return the path of the .rpm file.

        Raises:
            ConfigurationError: If a mandatory field is missing
            PackagingError: If rpmbuild fails or produces no package
        """
        self.validate()
        check_output_file(self.setup_file, self.overwrite)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.log.info("Building %s", self.setup_file)

        with build_directory(self.build_dir, keep=self.keep_build_dir) as tmp:
            fs_root = tmp.path("STAGE")
            for name in ("BUILD", "RPMS", "SRPMS", "SOURCES", "SPECS"):
                tmp.path(name)
            self.prepare(fs_root)
            spec = write_text(
                tmp.file("SPECS", f"{self.app.app_identifier}.spec"),
                self.spec_text(),
            )
            normalize_permissions(fs_root, keep_executable=True)

            command = [
                "rpmbuild",
                "-ba",
                "-v",
                "--clean",
                f"--define=_topdir {tmp.root.resolve()}",
                f"SPECS/{spec.name}",
            ]
            try:
                self.run_command(command, cwd=tmp.root, capture=False)
            except CommandError as e:
                self.log.error("spec file:\n%s", spec.read_text())
                raise PackagingError(
                    f"rpmbuild failed for {self.setup_file}: {e}"
                ) from e

            if not self.dry_run:
                built = tmp.root / "RPMS" / str(self.config.architecture) / self.rpm_name
                if not built.is_file():
                    raise PackagingError(f"rpmbuild did not create {built}")
                shutil.move(str(built), self.setup_file)

        self.log.info("Created: %s", self.setup_file)
        return self.setup_file


# ----------------------------------------------------------------------------
# Windows installer (WiX)


def wix_guid(*parts: str | None) -> str:
    """A reproducible name-based GUID (UUID version 3) for the parts."""
    data = "".join(part or "" for part in parts).encode("utf-8")
    return str(uuid.UUID(bytes=hashlib.md5(data).digest(), version=3))


def text_to_rtf(text: str) -> str:
    """Wrap plain text in a minimal RTF document using Courier New 9pt."""
    out = []
    for ch in text:
        if ch in "\\{}":
            out.append("\\" + ch)
        elif ch == "\n":
            out.append("\\par\n")
        elif ch == "\r":
            continue
        elif ord(ch) > 127:
            code = ord(ch)
            if code > 32767:
                code -= 65536
            out.append(f"\\u{code}?")
        else:
            out.append(ch)
    return (
        "{\\rtf1\\ansi\\deff0{\\fonttbl{\\f0\\fmodern Courier New;}}\n"
        "\\f0\\fs18\n" + "".join(out) + "\n}\n"
    )


@dataclass
class WindowsCommand:
    """The parts of a Windows command line for a launchable.

    relative_target is the executable below INSTALLDIR (or an absolute
    target), target is what a shortcut points at and full is the whole
    quoted command line.
    """

    relative_target: str
    target: str
    arguments: str
    full: str
    work_dir: str


def windows_command(launchable: Launchable, java_dir: str | None = None) -> WindowsCommand:
    work_dir = (launchable.work_dir or "").replace("/", "\\")
    if work_dir and not work_dir.endswith("\\"):
        work_dir += "\\"
    arguments = launchable.start_arguments
    target = launchable.executable
    if not target:
        if java_dir:
            target = f"[INSTALLDIR]{java_dir}\\bin\\javaw.exe"
        else:
            target = "javaw.exe"
        directory = ""
        arguments = " ".join(
            part
            for part in (
                launchable.java_vm_arguments.strip(),
                f'-cp "[INSTALLDIR]{work_dir}{launchable.main_jar}"',
                launchable.main_class or "",
                launchable.start_arguments,
            )
            if part
        )
    elif target.startswith("["):
        directory = ""
    else:
        directory = "[INSTALLDIR]"
        target = work_dir + target.replace("/", "\\")
    full_target = directory + target
    if " " in full_target or "[" in full_target:
        full = f'"{full_target}" {arguments}'
    else:
        full = f"{full_target} {arguments}"
    return WindowsCommand(target, full_target, arguments, full.strip(), work_dir)


def _segments(path: str) -> list[str]:
    return [s for s in re.split(r"[/\\]", path) if s]


class WxsBuilder:
    """Assemble the WiX source document for an application.

    The document is built with ElementTree. Every installed file gets its
    own component; component GUIDs and the upgrade code are derived from
    vendor, application and the component id so that rebuilding the same
    product yields the same codes.

    Args:
        app: The application model
        config: MSI settings
        files_dir: Staged installation directory (sources, bundled JRE)
        build_dir: Build directory for generated resources
    """

    def __init__(
        self,
        app: Application,
        config: MsiConfig,
        files_dir: Path,
        build_dir: Path,
    ) -> None:
        self.app = app
        self.config = config
        self.files_dir = Path(files_dir)
        self.build_dir = Path(build_dir)
        self.ids: dict[str, str] = {}
        self.components: list[str] = []
        self.file_ids: dict[str, str] = {}
        self.java_dir: str | None = None
        self.jvm_dll: str | None = None
        self._product: ET.Element | None = None
        self._install_dir: ET.Element | None = None
        self.log = logging.getLogger(self.__class__.__name__)

    @property
    def product(self) -> ET.Element:
        """The Product element.

        Raises:
            PackagingError: If build() has not created the document yet
        """
        if self._product is None:
            raise PackagingError("The WiX document has no Product element yet, call build()")
        return self._product

    @property
    def install_dir(self) -> ET.Element:
        """The DirectoryRef to INSTALLDIR that receives the installed files."""
        if self._install_dir is None:
            raise PackagingError("The WiX document has no INSTALLDIR yet, call build()")
        return self._install_dir

    # --- identifiers ------------------------------------------------------

    def id(self, text: str) -> str:
        """Turn text into a valid, unique WiX identifier.

        Letters and underscores are kept, digits and dots are kept unless
        leading, everything else becomes "_". Ids longer than 72 characters
        keep their last 62 characters. A different text that maps to an
        id already taken gets a hash suffix.
        """
        result = "".join(
            ch if ch.isascii() and (ch.isalnum() or ch in "_.") else "_"
            for ch in text
        )
        if len(result) > WIX_MAX_ID_LENGTH:
            result = result[-WIX_TRUNCATED_ID_LENGTH:]
        if result and (result[0].isdigit() or result[0] == "."):
            result = "_" + result
        if not result:
            result = "_"
        owner = self.ids.setdefault(result, text)
        if owner == text:
            return result
        suffix = hashlib.md5(text.encode("utf-8")).hexdigest()[:8]
        return f"{result}_{suffix}"

    def guid(self, component_id: str) -> str:
        return wix_guid(self.app.vendor, self.app.application, component_id)

    # --- element helpers ----------------------------------------------------

    @staticmethod
    def tag(name: str) -> str:
        return f"{{{WIX_NAMESPACE}}}{name}"

    def child(
        self,
        parent: ET.Element,
        name: str,
        key: str | None = None,
        value: str | None = None,
        **attributes: str,
    ) -> ET.Element:
        """Get or create a child element, matched by tag and key attribute."""
        for element in parent.findall(self.tag(name)):
            if key is None or element.get(key) == value:
                break
        else:
            element = ET.SubElement(parent, self.tag(name))
            if key is not None and value is not None:
                element.set(key, value)
        for attr, attr_value in attributes.items():
            if attr_value is not None and attr not in element.attrib:
                element.set(attr, attr_value)
        return element

    def by_id(self, parent: ET.Element, name: str, id: str, **attributes: str) -> ET.Element:
        return self.child(parent, name, "Id", id, **attributes)

    def directory(self, segments: list[str]) -> ET.Element:
        """The Directory element for a relative path below INSTALLDIR."""
        parent = self.install_dir
        for i, segment in enumerate(segments):
            parent = self.by_id(
                parent, "Directory", self.id("_".join(segments[: i + 1])), Name=segment
            )
        return parent

    def component(self, parent: ET.Element, component_id: str) -> ET.Element:
        if component_id not in self.components:
            self.components.append(component_id)
        return self.by_id(
            parent, "Component", component_id, Guid=self.guid(component_id)
        )

    def registry_key(
        self, component: ET.Element, root: str, id: str, key: str
    ) -> ET.Element:
        return self.by_id(
            component,
            "RegistryKey",
            id,
            Root=root,
            Key=key,
            ForceDeleteOnUninstall="yes",
        )

    def registry_value(
        self,
        regkey: ET.Element,
        name: str | None,
        value: str,
        type: str = "string",
    ) -> ET.Element:
        if name is None:
            element = ET.SubElement(regkey, self.tag("RegistryValue"))
        else:
            element = self.child(regkey, "RegistryValue", "Name", name)
        element.set("Type", type)
        element.set("Value", value)
        return element

    # --- content ------------------------------------------------------------

    def add_file(self, source: Path, relative: str) -> str:
        """Add one file in its own component and return the File id."""
        segments = _segments(relative)
        parent = self.directory(segments[:-1])
        file_id = self.id("_".join(segments))
        component = self.component(parent, file_id)
        self.by_id(
            component,
            "File",
            file_id,
            Source=str(source.resolve()),
            Name=segments[-1],
            KeyPath="yes",
        )
        self.file_ids[relative.replace("/", "\\")] = file_id
        if segments[-1].lower() == "jvm.dll" and self.jvm_dll is None:
            self.jvm_dll = "\\".join(segments)
        return file_id

    def add_files(self) -> None:
        if not self.files_dir.is_dir():
            return
        for path in sorted(self.files_dir.rglob("*")):
            if path.is_file():
                self.add_file(path, path.relative_to(self.files_dir).as_posix())
        if self.app.bundle_jre:
            self.java_dir = self.app.bundle_jre_target.replace("/", "\\")

    def add_gui(self, license_rtf: Path | None) -> None:
        product = self.product
        self.by_id(product, "Property", "WIXUI_INSTALLDIR", Value="INSTALLDIR")
        self.child(product, "UIRef", Id="WixUI_InstallDir")
        if license_rtf is not None:
            self.by_id(
                product, "WixVariable", "WixUILicenseRtf", Value=str(license_rtf)
            )
            return
        ui = self.child(product, "UI")
        for dialog, control, target in (
            ("WelcomeDlg", "Next", "InstallDirDlg"),
            ("InstallDirDlg", "Back", "WelcomeDlg"),
        ):
            publish = self.child(ui, "Publish", "Dialog", dialog)
            publish.set("Control", control)
            publish.set("Event", "NewDialog")
            publish.set("Value", target)
            publish.set("Order", "2")
            publish.text = "1"

    def add_icon(self) -> str | None:
        icon = self.app.icon_for_type(".ico")
        if icon is None:
            return None
        self.by_id(self.product, "Icon", WIX_ICON_ID, SourceFile=str(icon.resolve()))
        self.by_id(self.product, "Property", "ARPPRODUCTICON", Value=WIX_ICON_ID)
        return WIX_ICON_ID

    def add_services(self) -> None:
        services = self.app.services
        if not services:
            return
        cfg = self.config
        if cfg.service_wrapper is None:
            raise ConfigurationError(
                "msi service_wrapper (prunsrv.exe) is required to install services"
            )
        base_key = (
            PROCRUN_REGISTRY_KEY_WOW64 if cfg.arch == "x64" else PROCRUN_REGISTRY_KEY
        )
        for service in services:
            name = str(service.id)
            id = self.id(name.replace("-", "_")) + "_service"
            sub_dir = (service.work_dir or "").replace("/", "\\")
            if sub_dir and not sub_dir.endswith("\\"):
                sub_dir += "\\"
            segments = _segments(sub_dir) + [f"{service.wrapper}.exe"]
            directory = self.directory(segments[:-1])
            component = self.component(directory, id)
            self.by_id(
                component,
                "File",
                id,
                Source=str(cfg.service_wrapper.resolve()),
                Name=segments[-1],
                KeyPath="yes",
            )
            self.by_id(
                component,
                "ServiceInstall",
                f"{id}_install",
                Name=name,
                DisplayName=service.display_name,
                Description=service.description or service.display_name,
                Start="auto" if service.start_on_boot else "demand",
                Type="ownProcess",
                ErrorControl="normal",
                Arguments=f' "//RS//{name}"',
            )
            self.by_id(
                component,
                "RegistryKey",
                f"{id}_RegParameters",
                Root="HKLM",
                Key=f"SYSTEM\\CurrentControlSet\\Services\\{name}\\Parameters",
                ForceDeleteOnUninstall="yes",
                ForceCreateOnInstall="yes",
            )

            key = f"{base_key}\\{name}\\Parameters"
            java = self.registry_key(component, "HKLM", f"{id}_RegJava", f"{key}\\Java")
            self.registry_value(java, "Classpath", service.main_jar or "")
            if service.java_vm_arguments:
                self.registry_value(
                    java,
                    "Options",
                    "[~]".join(service.java_vm_arguments.split()),
                    "multiString",
                )
            if self.java_dir:
                self.registry_value(java, "JavaHome", f"[INSTALLDIR]{self.java_dir}")
                if self.jvm_dll:
                    self.registry_value(java, "Jvm", f"[INSTALLDIR]{self.jvm_dll}")
            start = self.registry_key(
                component, "HKLM", f"{id}_RegStart", f"{key}\\Start"
            )
            self.registry_value(start, "Class", service.main_class or "")
            self.registry_value(start, "Mode", "jvm")
            self.registry_value(start, "WorkingPath", f"[INSTALLDIR]{sub_dir}")
            if service.start_arguments:
                self.registry_value(
                    start,
                    "Params",
                    "[~]".join(service.start_arguments.split()),
                    "multiString",
                )
            log = self.registry_key(component, "HKLM", f"{id}_RegLog", f"{key}\\Log")
            self.registry_value(
                log, "Path", service.log_path or f"[INSTALLDIR]{sub_dir}"
            )
            self.registry_value(log, "Prefix", service.log_prefix or "service")
            if service.log_level:
                self.registry_value(log, "Level", service.log_level)
            if service.std_output:
                self.registry_value(log, "StdOutput", service.std_output)
            if service.std_error:
                self.registry_value(log, "StdError", service.std_error)
            stop = self.registry_key(component, "HKLM", f"{id}_RegStop", f"{key}\\Stop")
            self.registry_value(stop, "Class", "java.lang.System")
            self.registry_value(stop, "Mode", "jvm")

            control = self.by_id(
                component,
                "ServiceControl",
                f"{id}_control",
                Name=name,
                Stop="both",
                Remove="uninstall",
                Wait="yes",
            )
            if service.start_on_boot:
                control.set("Start", "install")
            self.add_remove_file(f"{sub_dir}service.*.log")

    def shortcut_component(self, starter: DesktopStarter) -> tuple[ET.Element, str]:
        product = self.product
        target_dir = self.by_id(product, "Directory", "TARGETDIR")
        remove_on_uninstall = False
        if starter.location is StarterLocation.APPLICATION_MENU:
            ref_dir = "ApplicationProgramsFolder"
            menu = self.by_id(target_dir, "Directory", "ProgramMenuFolder")
            self.by_id(menu, "Directory", ref_dir, Name=self.app.application)
            remove_on_uninstall = True
            location = f"[{ref_dir}]"
        elif starter.location is StarterLocation.INSTALL_DIR:
            ref_dir = "INSTALLDIR"
            location = "[INSTALLDIR]"
        else:
            ref_dir = "ProgramMenuFolder"
            self.by_id(target_dir, "Directory", ref_dir)
            location = f"[{ref_dir}]"
        dir_ref = self.by_id(product, "DirectoryRef", ref_dir)
        component = self.component(dir_ref, f"shortcuts_{ref_dir}")
        if remove_on_uninstall:
            self.by_id(component, "RemoveFolder", ref_dir, On="uninstall")
        reg = self.registry_key(
            component,
            "HKCU",
            f"shortcuts_reg_{ref_dir}",
            f"Software\\{self.app.vendor}\\{self.app.application}",
        )
        self.registry_value(reg, f"shortcut_{ref_dir}", "").set("KeyPath", "yes")
        return component, location

    def work_dir_id(self, launchable: Launchable) -> str:
        if not launchable.work_dir:
            return "INSTALLDIR"
        segments = _segments(launchable.work_dir)
        return str(self.directory(segments).get("Id"))

    def add_shortcuts(self, app_icon: str | None) -> None:
        for starter in self.app.desktop_starters:
            component, _location = self.shortcut_component(starter)
            shortcut_id = self.id(f"{starter.location.value}_{starter.display_name}")
            command = windows_command(starter, self.java_dir)
            icon_id = app_icon
            own_icons = [i for i in starter.icons if i.suffix.lower() == ".ico"]
            if own_icons and own_icons[0] != self.app.icon_for_type(".ico"):
                icon_id = self.id(f"{starter.display_name}.ico")
                self.by_id(
                    self.product, "Icon", icon_id, SourceFile=str(own_icons[0].resolve())
                )
            self.by_id(
                component,
                "Shortcut",
                shortcut_id,
                Name=str(starter.display_name).replace("[", "_").replace("]", "_"),
                Description=starter.description or starter.display_name,
                WorkingDirectory=self.work_dir_id(starter),
                Target=command.target,
                Arguments=command.arguments or None,
                Icon=icon_id,
            )

    def add_document_types(self) -> None:
        """Register file extensions with a ProgId and an open command."""
        for starter in self.app.desktop_starters:
            command = windows_command(starter, self.java_dir)
            for doc in starter.document_types:
                component = self.component(self.install_dir, "_file_extension")
                self.child(component, "CreateFolder")
                for ext in doc.extensions:
                    prog_id = self.id(f"{self.app.app_identifier}.{ext}")
                    element = self.by_id(
                        component,
                        "ProgId",
                        prog_id,
                        Description=doc.name,
                        Advertise="no",
                    )
                    self.by_id(element, "Extension", ext, ContentType=doc.mime_type)
                    reg = self.registry_key(
                        component,
                        "HKCR",
                        self.id(f"{prog_id}\\shell\\open"),
                        f"{prog_id}\\shell\\open",
                    )
                    self.registry_value(reg, "FriendlyAppName", self.app.application)
                    cmd = self.registry_key(
                        component,
                        "HKCR",
                        self.id(f"{prog_id}\\shell\\open\\command"),
                        f"{prog_id}\\shell\\open\\command",
                    )
                    self.registry_value(cmd, None, f'{command.full} "%1"')

    def add_protocol_handlers(self) -> None:
        for handler in self.app.protocol_handlers:
            command = windows_command(handler, self.java_dir)
            for scheme in handler.schemes:
                component = self.component(self.install_dir, self.id(f"protocol_{scheme}"))
                reg = self.registry_key(component, "HKCR", self.id(f"protocol_{scheme}_key"), scheme)
                self.registry_value(reg, None, f"URL:{handler.display_name}")
                self.registry_value(reg, "URL Protocol", "")
                cmd = self.registry_key(
                    component,
                    "HKCR",
                    self.id(f"protocol_{scheme}_command"),
                    f"{scheme}\\shell\\open\\command",
                )
                self.registry_value(cmd, None, f'{command.full} "%1"').set(
                    "KeyPath", "yes"
                )

    def add_run(self, launchable: Launchable, id: str, ret: str, execute: str | None) -> None:
        """A custom action that starts a program without a console window."""
        product = self.product
        command = windows_command(launchable, self.java_dir)
        action = self.by_id(
            product,
            "CustomAction",
            id,
            Execute=execute or "deferred",
            Impersonate="no",
            Return=ret,
        )
        if ret == "asyncNoWait":
            action.set("Directory", self.work_dir_id(launchable))
            action.set("ExeCommand", f'"{command.target}" {command.arguments}'.strip())
            return
        if command.arguments:
            target_id = id
            dll_entry = "CAQuietExec"
            value = (
                f'"[SystemFolder]cmd.exe" /C "cd /D "[INSTALLDIR]{command.work_dir}" '
                f'& {command.full}"'
            )
        else:
            target_id = "WixShellExecTarget"
            dll_entry = "WixShellExec"
            value = command.full
        target = self.child(product, "SetProperty", "Action", f"{id}_target")
        target.set("Id", target_id)
        target.set("Before", id)
        target.set("Sequence", "execute")
        target.set("Value", value)
        action.set("BinaryKey", "WixCA")
        action.set("DllEntry", dll_entry)

    def add_to_sequence(
        self, id: str, action: str, after: bool = True, condition: str | None = None
    ) -> None:
        sequence = self.child(self.product, "InstallExecuteSequence")
        custom = self.child(sequence, "Custom", "Action", id)
        custom.set("After" if after else "Before", action)
        if condition:
            custom.text = condition

    def add_run_actions(self) -> None:
        app = self.app
        if app.run_before_uninstall is not None:
            self.add_run(app.run_before_uninstall, "runBeforeUninstall", "ignore", None)
            self.add_to_sequence(
                "runBeforeUninstall",
                "StopServices",
                condition='REMOVE="ALL" AND NOT UPGRADINGPRODUCTCODE',
            )
        if app.run_after is not None:
            self.add_run(app.run_after, "runAfter", "asyncNoWait", "immediate")
            ui = self.child(self.product, "UI")
            publish = self.child(ui, "Publish", "Dialog", "ExitDialog")
            publish.set("Control", "Finish")
            publish.set("Event", "DoAction")
            publish.set("Value", "runAfter")
            publish.text = "NOT Installed OR REINSTALL OR UPGRADINGPRODUCTCODE"

    def add_remove_file(self, pattern: str) -> None:
        segments = _segments(pattern)
        directory = self.directory(segments[:-1])
        id = self.id(pattern)
        component = self.component(directory, f"deleteFiles{id}")
        self.by_id(
            component, "RemoveFile", f"removeFile{id}", On="both", Name=segments[-1]
        )

    def add_delete_files(self) -> None:
        for pattern in self.app.delete_files:
            self.add_remove_file(pattern)
        for folder in self.app.delete_folders:
            folder = folder.replace("/", "\\").rstrip("\\")
            id = self.id(f"rmdir_{folder}")
            rmdir = Launchable(
                executable="[SystemFolder]cmd.exe",
                start_arguments=f'/C rmdir /S /Q "[INSTALLDIR]{folder}"',
            )
            self.add_run(rmdir, id, "ignore", None)
            self.add_to_sequence(id, "RemoveFolders")

    def build(self, license_rtf: Path | None = None) -> str:
        """Build the document and return it as pretty-printed XML."""
        app, cfg = self.app, self.config
        app.require("version", "vendor")
        ET.register_namespace("", WIX_NAMESPACE)
        wix = ET.Element(self.tag("Wix"))
        product = ET.SubElement(
            wix,
            self.tag("Product"),
            Id="*",
            Language=str(MSI_LANGUAGE_IDS[cfg.languages[0]]),
            Manufacturer=str(app.vendor),
            Name=app.application,
            Version=str(app.version),
            UpgradeCode=self.guid("UpgradeCode"),
        )
        self._product = product
        package = ET.SubElement(
            product,
            self.tag("Package"),
            Compressed="yes",
            InstallerVersion="500",
            InstallScope=cfg.install_scope,
        )
        if app.description:
            package.set("Comments", app.description)
        ET.SubElement(
            product, self.tag("Media"), Id="1", Cabinet="media1.cab", EmbedCab="yes"
        )
        ET.SubElement(product, self.tag("MajorUpgrade"), AllowDowngrades="yes")

        target_dir = self.by_id(product, "Directory", "TARGETDIR", Name="SourceDir")
        program_files = self.by_id(
            target_dir,
            "Directory",
            "ProgramFilesFolder" if cfg.arch == "x86" else "ProgramFiles64Folder",
        )
        self.by_id(program_files, "Directory", "INSTALLDIR", Name=app.application)
        self._install_dir = self.by_id(product, "DirectoryRef", "INSTALLDIR")

        self.add_files()
        self.add_gui(license_rtf)
        app_icon = self.add_icon()
        self.add_services()
        self.add_shortcuts(app_icon)
        self.add_document_types()
        self.add_protocol_handlers()
        self.add_run_actions()
        self.add_delete_files()

        feature = self.by_id(product, "Feature", "MainApplication", Level="1")
        for component_id in self.components:
            self.by_id(feature, "ComponentRef", component_id)

        ET.indent(wix)
        body = ET.tostring(wix, encoding="unicode")
        return f'<?xml version="1.0" encoding="UTF-8"?>\n{body}\n'


class MsiBuilder:
    """Build a Windows installer with the WiX toolset (candle and light).

    One MSI is linked per configured language; the first is the setup
    file, further languages are written next to it with the culture in
    the file name.
    """

    def __init__(
        self,
        app: Application,
        config: MsiConfig | None = None,
        output_dir: Pathlike = ".",
        build_dir: Pathlike | None = None,
        keep_build_dir: bool = False,
        dry_run: bool = False,
        overwrite: bool = False,
    ) -> None:
        self.app = app
        self.config = config or MsiConfig()
        self.output_dir = Path(output_dir)
        self.build_dir = Path(build_dir) if build_dir else None
        self.keep_build_dir = keep_build_dir
        self.dry_run = dry_run
        self.overwrite = overwrite
        self.log = logging.getLogger(self.__class__.__name__)

    def run_command(self, command: list[str], **kwargs: object) -> str:
        return run_command(command, dry_run=self.dry_run, log=self.log, **kwargs)  # type: ignore[arg-type]

    @property
    def setup_file(self) -> Path:
        return self.output_dir / f"{self.app.archive_name}-{self.app.version}.msi"

    def localized_setup_file(self, culture: str) -> Path:
        return self.output_dir / f"{self.app.archive_name}-{self.app.version}_{culture}.msi"

    def destinations(self) -> list[Path]:
        """The output file of every configured language, the setup file first."""
        return [self.setup_file] + [
            self.localized_setup_file(culture) for culture in self.config.languages[1:]
        ]

    def validate(self) -> None:
        self.app.require("version", "vendor")
        if self.app.services and self.config.service_wrapper is None:
            raise ConfigurationError(
                "msi service_wrapper (prunsrv.exe) is required to install services"
            )

    def license_rtf(self, tmp: BuildDirectory) -> Path | None:
        """The license as RTF, converted from plain text if needed."""
        resource = find_localized(
            self.app.license_files,
            self.config.languages[0],
            self.app.default_resource_language,
        )
        if resource is None:
            return None
        source = resource.resolve()
        data = source.read_bytes()
        if data.startswith(b"{\\rtf"):
            return source.resolve()
        rtf = tmp.file("license.rtf")
        rtf.write_text(text_to_rtf(data.decode("utf-8")), encoding="ascii")
        return rtf.resolve()

    def candle(self, tmp: BuildDirectory, wxs: Path) -> None:
        command = [
            self.config.tool("candle.exe"),
            "-nologo",
            "-arch",
            self.config.arch,
            "-out",
            str(tmp.root.resolve()) + "\\",
            str(wxs.resolve()),
            "-ext",
            "WixUtilExtension",
        ]
        self.run_command(command, cwd=tmp.root, capture=False)

    def light(self, tmp: BuildDirectory, culture: str) -> Path:
        out = tmp.root / f"{self.app.archive_name}_{culture}.msi"
        command = [
            self.config.tool("light.exe"),
            "-nologo",
            "-sice:ICE60",
            "-ext",
            "WixUIExtension",
            "-ext",
            "WixUtilExtension",
            "-out",
            str(out.resolve()),
            "-spdb",
            f"-cultures:{culture};neutral",
        ]
        for resource in self.config.localizations:
            if resource.locale in (culture, culture.split("-")[0]):
                command += ["-loc", str(resource.resolve().resolve())]
        if self.config.skip_validation:
            command.append("-sval")
        command.append("*.wixobj")
        self.run_command(command, cwd=tmp.root, capture=False)
        return out

    def sign(self, msi: Path) -> None:
        """Sign an MSI with signtool and add a timestamp.

        The timestamp servers are tried in order until one succeeds.

        Raises:
            CodesignError: If signing fails or every timestamp server fails
        """
        sign = self.config.signtool
        if sign is None:
            return
        path = str(msi.resolve())
        command = [sign.tool, "sign"]
        if sign.certificate is not None:
            command += ["/f", str(sign.certificate.resolve())]
        if sign.password:
            command += ["/p", sign.password]
        if sign.sha1:
            command += ["/sha1", sign.sha1]
        # the description replaces the random temp name in the UAC prompt
        command += ["/fd", "sha256", "/d", self.app.application, path]
        self.log.info("signing %s", msi)
        try:
            self.run_command(command, capture=False)
        except CommandError as e:
            raise CodesignError(f"Signing failed for {msi}: {e}") from e

        failures = []
        for server in sign.timestamp_servers:
            try:
                self.run_command([sign.tool, "timestamp", "/t", server, path], capture=False)
                return
            except CommandError as e:
                self.log.warning("Timestamp failed with %s: %s", server, e)
                failures.append(server)
        if failures:
            raise CodesignError(
                f"Timestamping {msi} failed with every server: {', '.join(failures)}"
            )

    def build(self) -> Path:
        """Build the MSI file(s) and return the path of the setup file.

        Raises:
            ConfigurationError: If a mandatory field is missing
            PackagingError: If candle or light fail
            CodesignError: If signtool fails
        """
        self.validate()
        for dest in self.destinations():
            check_output_file(dest, self.overwrite)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.log.info("Building %s", self.setup_file)

        with build_directory(self.build_dir, keep=self.keep_build_dir) as tmp:
            files_dir = tmp.path("files")
            stage_sources(self.app.sources, files_dir)
            if self.app.bundle_jre:
                bundle_jre(
                    self.app,
                    files_dir / self.app.bundle_jre_target,
                    self.dry_run,
                    self.log,
                )
            wxs_text = WxsBuilder(self.app, self.config, files_dir, tmp.root).build(
                self.license_rtf(tmp)
            )
            wxs = write_text(tmp.file(f"{self.app.archive_name}.wxs"), wxs_text)
            try:
                self.candle(tmp, wxs)
                outputs = [self.light(tmp, c) for c in self.config.languages]
            except CommandError as e:
                raise PackagingError(f"WiX failed for {self.setup_file}: {e}") from e

            for msi, dest in zip(outputs, self.destinations()):
                if not self.dry_run and not msi.is_file():
                    raise PackagingError(f"light did not create {msi}")
                self.sign(msi)
                if not self.dry_run:
                    shutil.move(str(msi), dest)

        self.log.info("Created: %s", self.setup_file)
        return self.setup_file


# ----------------------------------------------------------------------------
# macOS bundles, packages and images

PKG_INFO_CONTENT = "APPL????"

APP_LAUNCHER_TMPL = """\
#!/bin/sh
APP_ROOT="$(cd "$(dirname "$0")/../.." && pwd)"
cd "{{workdir}}" || exit 1
exec {{command}} "$@"
"""

LAUNCHD_PREINSTALL_TMPL = """\
PLIST="/Library/LaunchDaemons/{{label}}.plist"
if [ -f "$PLIST" ]; then
    launchctl unload "$PLIST" >/dev/null 2>&1 || true
fi
"""

LAUNCHD_POSTINSTALL_TMPL = """\
PLIST="/Library/LaunchDaemons/{{label}}.plist"
cp "$(dirname "$0")/{{label}}.plist" "$PLIST"
chown root:wheel "$PLIST"
chmod 644 "$PLIST"
launchctl load -w "$PLIST"
"""

MAC_CREATE_USER_TMPL = """\
if ! dscl . -read "/Users/{{user}}" >/dev/null 2>&1; then
    USER_ID=$(dscl . -list /Users UniqueID | awk '$2 < 500 { print $2 }' | sort -n | tail -1)
    USER_ID=$((USER_ID + 1))
    dscl . -create "/Users/{{user}}"
    dscl . -create "/Users/{{user}}" UniqueID "$USER_ID"
    dscl . -create "/Users/{{user}}" PrimaryGroupID 20
    dscl . -create "/Users/{{user}}" UserShell /usr/bin/false
    dscl . -create "/Users/{{user}}" NFSHomeDirectory "{{home}}"
    dscl . -create "/Users/{{user}}" IsHidden 1
fi
mkdir -p "{{home}}"
chown "{{user}}" "{{home}}"
"""

MAC_DELETE_USER_TMPL = """\
dscl . -delete "/Users/{{user}}" >/dev/null 2>&1 || true
"""

MAC_CONSOLE_USER_TMPL = """\
CONSOLE_USER="$(stat -f %Su /dev/console)"
if [ -n "$CONSOLE_USER" ] && [ "$CONSOLE_USER" != "root" ]; then
    sudo -u "$CONSOLE_USER" {{command}}
fi
"""

MAC_UNINSTALL_TMPL = """\
#!/bin/sh
if [ "$(id -u)" != "0" ]; then
    echo "Run this script as root: sudo \\"$0\\"" >&2
    exit 1
fi
{{body}}
echo "{{application}} has been removed."
"""

MAC_INSTALL_UNINSTALLER_TMPL = """\
mkdir -p "{{home}}"
cp "$(dirname "$0")/uninstall.sh" "{{home}}/uninstall.sh"
chmod 755 "{{home}}/uninstall.sh"
"""


def plist_key(key: str) -> str:
    """PlistBuddy entry path for a top-level or ':'-separated key."""
    return key if key.startswith(":") else f":{key}"


class PlistBuddy:
    """Edit a property list through /usr/libexec/PlistBuddy.

    Example:
        buddy = PlistBuddy("MyApp.app/Contents/Info.plist")
        buddy.delete("LSUIElement")
        buddy.add("LSUIElement", "bool", "true")
    """

    def __init__(self, path: Pathlike, dry_run: bool = False) -> None:
        self.path = Path(path)
        self.dry_run = dry_run
        self.log = logging.getLogger(self.__class__.__name__)

    def command(self, text: str, ignore_exit: bool = False) -> str:
        return run_command(
            [PLIST_BUDDY, "-c", text, str(self.path)],
            ignore_exit=ignore_exit,
            dry_run=self.dry_run,
            log=self.log,
        )

    def set(self, key: str, value: object) -> None:
        """Change the value of an existing entry."""
        self.command(f"Set {plist_key(key)} {self.text(value)}")

    def add(self, key: str, type_name: str, value: object = None) -> None:
        """Add an entry; containers (array, dict) are added without value."""
        text = f"Add {plist_key(key)} {type_name}"
        if value is not None:
            text += f" {self.text(value)}"
        self.command(text)

    def delete(self, key: str) -> None:
        """Remove an entry; a missing entry is not an error."""
        self.command(f"Delete {plist_key(key)}", ignore_exit=True)

    @staticmethod
    def text(value: object) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    @staticmethod
    def type_of(value: object) -> str:
        """The PlistBuddy type name for a Python value."""
        if isinstance(value, bool):
            return "bool"
        if isinstance(value, int):
            return "integer"
        if isinstance(value, float):
            return "real"
        if isinstance(value, (list, tuple)):
            return "array"
        if isinstance(value, dict):
            return "dict"
        return "string"

    def add_value(self, key: str, value: object) -> None:
        """Add a value of any supported type, recursing into containers."""
        type_name = self.type_of(value)
        if type_name == "array":
            self.add(key, "array")
            for index, item in enumerate(value):  # type: ignore[arg-type]
                self.add_value(f"{plist_key(key)}:{index}", item)
        elif type_name == "dict":
            self.add(key, "dict")
            for name, item in value.items():  # type: ignore[union-attr]
                self.add_value(f"{plist_key(key)}:{name}", item)
        else:
            self.add(key, type_name, value)

    def apply(self, entries: dict[str, object]) -> None:
        """Replace top-level entries: delete each key, then add it again."""
        for key, value in entries.items():
            self.delete(key)
            self.add_value(key, value)


class CodeSigner:
    """Sign bundles, disk images and installer packages.

    Bundles are signed with codesign, using the hardened runtime and the
    JVM entitlements unless configured otherwise; installer packages
    with productsign and the matching "Developer ID Installer" identity.

    Args:
        config: Signing settings
        dry_run: If True, only log the commands

    Example:
        signer = CodeSigner(CodesignConfig(identity="Developer ID Application: Acme"))
        signer.sign(Path("build/Demo.app"))
    """

    def __init__(self, config: CodesignConfig, dry_run: bool = False) -> None:
        self.config = config
        self.dry_run = dry_run
        self.log = logging.getLogger(self.__class__.__name__)
        if not config.identity:
            raise ConfigurationError(
                "Codesign identity required. "
                f"Set {ENV_DEV_ID} or pass identity."
            )

    def run_command(self, command: list[str], **kwargs: object) -> str:
        return run_command(command, dry_run=self.dry_run, log=self.log, **kwargs)  # type: ignore[arg-type]

    @property
    def product_identity(self) -> str:
        """The installer identity used for productsign."""
        if self.config.product_identity:
            return self.config.product_identity
        return (self.config.identity or "").replace("Application", "Installer", 1)

    def unlock_keychain(self) -> None:
        """Unlock the configured keychain if a password is given."""
        if not (self.config.keychain and self.config.keychain_password):
            return
        self.log.info("unlocking keychain %s", self.config.keychain)
        self.run_command(
            [
                "security",
                "-v",
                "unlock-keychain",
                "-p",
                self.config.keychain_password,
                self.config.keychain,
            ]
        )

    def codesign_command(
        self,
        path: Path,
        identifier: str | None = None,
        entitlements: Path | None = None,
    ) -> list[str]:
        """The codesign command line for one path."""
        cfg = self.config
        command = ["codesign", "-f", "--timestamp"]
        if cfg.deep:
            command.append("--deep")
        command += ["-s", cfg.identity or ""]
        if identifier or cfg.identifier:
            command += ["-i", identifier or cfg.identifier or ""]
        if cfg.keychain:
            command += ["--keychain", cfg.keychain]
        if cfg.hardened:
            command += ["--options", "runtime"]
        if entitlements is not None:
            command += ["--entitlements", str(entitlements)]
        command.append(str(path))
        return command

    def sign(
        self,
        path: Path,
        identifier: str | None = None,
        use_entitlements: bool = True,
    ) -> None:
        """Sign a bundle or disk image.

        Raises:
            CodesignError: If codesign fails and errors are not ignored
        """
        self.log.info("signing: %s", path)
        with tempfile.TemporaryDirectory(prefix="setupbuilder-") as tmp:
            entitlements = None
            if use_entitlements and self.config.hardened:
                entitlements = self.config.entitlements
                if entitlements is None:
                    entitlements = write_text(
                        Path(tmp) / "entitlements.plist", JVM_ENTITLEMENTS_PLIST
                    )
                elif not entitlements.is_file():
                    raise ConfigurationError(
                        f"Entitlements file not found: {entitlements}"
                    )
            command = self.codesign_command(path, identifier, entitlements)
            try:
                self.run_command(command, capture=False)
            except CommandError as e:
                if self.config.ignore_errors:
                    self.log.warning("signing %s failed, ignored: %s", path, e)
                    return
                raise CodesignError(f"Signing failed for {path}: {e}") from e

    def sign_package(self, path: Path) -> None:
        """Sign an installer package in place with productsign."""
        signed = path.with_name(f"signed.{path.name}")
        command = ["productsign", "--sign", self.product_identity]
        if self.config.keychain:
            command += ["--keychain", self.config.keychain]
        command += [str(path), str(signed)]
        self.log.info("signing package: %s", path)
        try:
            self.run_command(command, capture=False)
        except CommandError as e:
            if self.config.ignore_errors:
                self.log.warning("signing %s failed, ignored: %s", path, e)
                return
            raise CodesignError(f"Signing failed for {path}: {e}") from e
        if not self.dry_run:
            shutil.move(str(signed), path)


def mac_launch_command(app: Application, launchable: Launchable) -> str:
    """The launcher command line, relative to the bundle's $APP_ROOT."""
    if launchable.is_native:
        command = f'"$APP_ROOT/Contents/Java/{launchable.executable}"'
        if launchable.start_arguments:
            command += f" {launchable.start_arguments}"
        return command
    if app.bundle_jre:
        java = f"$APP_ROOT/Contents/PlugIns/{app.bundle_jre_target}/bin/java"
    else:
        java = "/usr/bin/java"
    return java_command_line(launchable, java)


class AppBundleBuilder:
    """Create one macOS .app bundle for a desktop starter or a service.

    Layout:
        <name>.app/Contents/Info.plist
        <name>.app/Contents/PkgInfo
        <name>.app/Contents/MacOS/<executable>   launcher script
        <name>.app/Contents/Java/                application payload
        <name>.app/Contents/PlugIns/<jre>/       bundled Java runtime
        <name>.app/Contents/Resources/<icon>.icns

    Args:
        app: The application model
        config: macOS settings
        launchable: The starter or service the bundle launches
        dest_dir: Directory receiving the bundle
        payload_dir: Staged application files copied to Contents/Java
        url_schemes: Protocol handler schemes registered by the bundle
        name: Bundle file name, defaults to the display name
        dry_run: If True, external tools are only logged
    """

    def __init__(
        self,
        app: Application,
        config: DmgConfig,
        launchable: Launchable,
        dest_dir: Pathlike,
        payload_dir: Pathlike | None = None,
        url_schemes: list[str] | None = None,
        dry_run: bool = False,
        name: str | None = None,
    ) -> None:
        self.app = app
        self.config = config
        self.launchable = launchable
        self.name = name or launchable.display_name or app.application
        self.payload_dir = Path(payload_dir) if payload_dir else None
        self.url_schemes = url_schemes or []
        self.dry_run = dry_run
        self.log = logging.getLogger(self.__class__.__name__)

        self.bundle = Path(dest_dir) / f"{self.name}.app"
        self.contents = self.bundle / "Contents"
        self.macos = self.contents / "MacOS"
        self.java = self.contents / "Java"
        self.resources = self.contents / "Resources"
        self.info_plist = self.contents / "Info.plist"
        self.pkg_info = self.contents / "PkgInfo"
        self.executable = self.macos / self.executable_name

    @property
    def executable_name(self) -> str:
        if isinstance(self.launchable, Service):
            return self.launchable.id or ""
        return safe_name(self.app.app_identifier or self.app.application)

    @property
    def identifier(self) -> str:
        """Bundle identifier, extended by the bundle name for extra bundles."""
        identifier = self.app.app_identifier or self.app.application
        if self.name != self.app.application:
            identifier += "." + re.sub(r"[^A-Za-z0-9]", "", self.name)
        return identifier

    @property
    def icon(self) -> Path:
        """The .icns file of the bundle.

        Raises:
            ConfigurationError: If neither launchable nor application has one
        """
        for icon in [*self.launchable.icons, *self.app.icons]:
            if icon.suffix.lower() == ".icns":
                return icon
        raise ConfigurationError(
            f"An .icns icon is required for the macOS bundle '{self.launchable.display_name}'"
        )

    @property
    def document_types(self) -> list[DocumentType]:
        if isinstance(self.launchable, DesktopStarter):
            return self.launchable.document_types
        return []

    @property
    def work_dir(self) -> str:
        work_dir = "$APP_ROOT/Contents/Java"
        if self.launchable.work_dir:
            work_dir += "/" + self.launchable.work_dir.strip("/")
        return work_dir

    def info(self) -> dict[str, object]:
        """The Info.plist content."""
        app = self.app
        name = self.launchable.display_name or app.application
        info: dict[str, object] = {
            "CFBundleDevelopmentRegion": "English",
            "CFBundleDisplayName": name,
            "CFBundleExecutable": self.executable_name,
            "CFBundleIconFile": self.icon.name,
            "CFBundleIdentifier": self.identifier,
            "CFBundleInfoDictionaryVersion": "6.0",
            "CFBundleName": name,
            "CFBundlePackageType": "APPL",
            "CFBundleShortVersionString": app.short_version,
            "CFBundleSignature": "????",
            "CFBundleVersion": app.version or "",
            "LSMinimumSystemVersion": self.config.min_system_version,
            "NSHighResolutionCapable": True,
            "NSHumanReadableCopyright": app.copyright or "",
        }
        if self.document_types:
            info["CFBundleDocumentTypes"] = [
                {
                    "CFBundleTypeExtensions": list(doc.extensions),
                    "CFBundleTypeIconFile": self.icon.name,
                    "CFBundleTypeMIMETypes": [doc.mime_type],
                    "CFBundleTypeName": doc.name,
                    "CFBundleTypeRole": doc.role,
                }
                for doc in self.document_types
            ]
        if self.url_schemes:
            info["CFBundleURLTypes"] = [
                {
                    "CFBundleURLName": self.identifier,
                    "CFBundleURLSchemes": list(self.url_schemes),
                }
            ]
        return info

    def create_info_plist(self) -> None:
        self.info_plist.parent.mkdir(parents=True, exist_ok=True)
        with open(self.info_plist, "wb") as f:
            plistlib.dump(self.info(), f)

    def create_pkg_info(self) -> None:
        write_text(self.pkg_info, PKG_INFO_CONTENT)

    def create_executable(self) -> None:
        """Write the launcher script into Contents/MacOS."""
        write_text(
            self.executable,
            render_template(
                APP_LAUNCHER_TMPL,
                workdir=self.work_dir,
                command=mac_launch_command(self.app, self.launchable),
            ),
            0o755,
        )

    def create_resources(self) -> None:
        self.resources.mkdir(parents=True, exist_ok=True)
        shutil.copy2(self.icon, self.resources / self.icon.name)

    def create(self) -> Path:
        """Create the complete bundle.

        Returns:
            Path to the created bundle
        """
        self.log.info("Creating bundle at %s", self.bundle)
        if self.bundle.exists():
            shutil.rmtree(self.bundle)
        self.macos.mkdir(parents=True)
        self.create_info_plist()
        self.create_pkg_info()
        self.create_executable()
        self.create_resources()
        if self.payload_dir is not None:
            stage_sources([self.payload_dir], self.java)
        else:
            self.java.mkdir(parents=True, exist_ok=True)
        if self.app.bundle_jre:
            bundle_jre(
                self.app,
                self.contents / "PlugIns" / self.app.bundle_jre_target,
                self.dry_run,
                self.log,
            )
        normalize_permissions(
            self.bundle, executables=[self.executable], keep_executable=True
        )
        if self.config.info_plist:
            PlistBuddy(self.info_plist, dry_run=self.dry_run).apply(
                self.config.info_plist
            )
        self.log.info("Bundle created: %s", self.bundle)
        return self.bundle


class DmgBuilder:
    """Build a macOS disk image.

    Without services the image holds the application bundles and a link
    to /Applications for drag installation. With services the bundles are
    wrapped into an installer package that installs them below the
    install location and registers a launchd daemon per service; the
    image then holds that package.

    The bundles, the package and the image are signed when a codesign
    configuration is present, and the image is notarized and stapled
    when a notarize configuration is present.

    Example:
        config = DmgConfig(codesign=CodesignConfig(identity="Developer ID Application: Acme"))
        DmgBuilder(app, config, output_dir="dist").build()
    """

    def __init__(
        self,
        app: Application,
        config: DmgConfig | None = None,
        output_dir: Pathlike = ".",
        build_dir: Pathlike | None = None,
        keep_build_dir: bool = False,
        dry_run: bool = False,
        overwrite: bool = False,
    ) -> None:
        self.app = app
        self.config = config or DmgConfig()
        self.output_dir = Path(output_dir)
        self.build_dir = Path(build_dir) if build_dir else None
        self.keep_build_dir = keep_build_dir
        self.dry_run = dry_run
        self.overwrite = overwrite
        self.log = logging.getLogger(self.__class__.__name__)
        self.signer = (
            CodeSigner(self.config.codesign, dry_run)
            if self.config.codesign is not None
            else None
        )

    def run_command(self, command: list[str], **kwargs: object) -> str:
        return run_command(command, dry_run=self.dry_run, log=self.log, **kwargs)  # type: ignore[arg-type]

    @property
    def setup_file(self) -> Path:
        return self.output_dir / f"{self.app.archive_name}-{self.app.version}.dmg"

    @property
    def volume_name(self) -> str:
        return self.config.volume_name or self.app.application

    def validate(self) -> None:
        """Check the model before any tool runs.

        Raises:
            ConfigurationError: If the model is incomplete, two bundles
                would share a name or the notarization credentials
                are incomplete
        """
        self.app.require("version", "vendor")
        if not self.app.services and not self.app.desktop_starters:
            raise ConfigurationError(
                "No service or desktop starter declared, nothing to bundle for macOS."
            )
        self.bundle_names()
        if self.config.notarize is not None:
            Notarizer(self.setup_file, self.config.notarize).auth_arguments()

    # --- bundles --------------------------------------------------------

    def bundle_names(self) -> list[tuple[Launchable, str]]:
        """The bundle name of every desktop starter and service.

        Starters are named by their display name. A service whose display
        name is already taken by a starter is named by its id.

        Raises:
            ConfigurationError: If two bundles would get the same name
        """
        taken: dict[str, Launchable] = {}
        names: list[tuple[Launchable, str]] = []
        for starter in self.app.desktop_starters:
            name = starter.display_name or self.app.application
            if name.lower() in taken:
                raise ConfigurationError(
                    f"Two desktop starters are named '{name}', "
                    "macOS bundles need distinct display names"
                )
            taken[name.lower()] = starter
            names.append((starter, name))
        for service in self.app.services:
            name = service.display_name or self.app.application
            if name.lower() in taken:
                name = service.id or ""
            if name.lower() in taken:
                other = taken[name.lower()]
                raise ConfigurationError(
                    f"The bundle name '{name}' of service '{service.id}' is also "
                    f"used by '{other.display_name}', set a distinct display_name"
                )
            taken[name.lower()] = service
            names.append((service, name))
        return names

    def create_bundles(self, dest: Path, payload: Path) -> list[AppBundleBuilder]:
        """Create one bundle per desktop starter and service.

        The URL schemes of all protocol handlers are registered by the
        first bundle.
        """
        schemes = [s for h in self.app.protocol_handlers for s in h.schemes]
        builders = []
        for index, (launchable, name) in enumerate(self.bundle_names()):
            builder = AppBundleBuilder(
                self.app,
                self.config,
                launchable,
                dest,
                payload,
                url_schemes=schemes if index == 0 else None,
                dry_run=self.dry_run,
                name=name,
            )
            builder.create()
            if self.signer is not None:
                self.signer.sign(builder.bundle, builder.identifier)
            builders.append(builder)
        return builders

    # --- services -------------------------------------------------------

    @property
    def support_dir(self) -> str:
        """Home of the daemon users and location of the uninstall script."""
        return f"/Library/Application Support/{self.app.application}"

    def installed(self, builder: AppBundleBuilder) -> str:
        return f"{self.config.install_location}/{builder.bundle.name}"

    def daemon_users(self) -> list[str]:
        """All distinct non-root users the services run as."""
        users = [s.daemon_user or self.config.daemon_user for s in self.app.services]
        result = []
        for user in users:
            if user and user != "root" and user not in result:
                result.append(user)
        return result

    def starter_bundle(
        self, builders: list[AppBundleBuilder], starter: DesktopStarter
    ) -> AppBundleBuilder:
        """The bundle launching a starter, the first bundle if none matches."""
        for builder in builders:
            if (
                isinstance(builder.launchable, DesktopStarter)
                and builder.launchable.display_name == starter.display_name
            ):
                return builder
        return builders[0]

    def open_fragment(
        self, builders: list[AppBundleBuilder], starter: DesktopStarter, wait: bool
    ) -> str:
        """Shell lines opening a starter's bundle as the logged in user."""
        command = ["open"]
        if wait:
            command.append("-W")
        command.append(f'"{self.installed(self.starter_bundle(builders, starter))}"')
        if starter.start_arguments:
            command += ["--args", starter.start_arguments]
        if not wait:
            command.append(">/dev/null 2>&1 &")
        return render_template(MAC_CONSOLE_USER_TMPL, command=" ".join(command))

    def launchd_plist(self, bundle: AppBundleBuilder, service: Service) -> dict[str, object]:
        """The launchd daemon definition of a service."""
        installed = self.installed(bundle)
        log_dir = service.log_path or f"/Library/Logs/{service.id}"
        log_file = f"{log_dir}/{service.log_prefix or service.id}.log"
        work_dir = f"{installed}/Contents/Java"
        if service.work_dir:
            work_dir += "/" + service.work_dir.strip("/")
        return {
            "Label": service.id,
            "ProgramArguments": [f"{installed}/Contents/MacOS/{bundle.executable_name}"],
            "RunAtLoad": service.start_on_boot,
            "KeepAlive": service.keep_alive,
            "WorkingDirectory": work_dir,
            "StandardOutPath": service.std_output or log_file,
            "StandardErrorPath": service.std_error or log_file,
            "UserName": service.daemon_user or self.config.daemon_user,
        }

    def uninstall_script(self, builders: list[AppBundleBuilder]) -> str:
        """The script installed to the support folder that removes everything again."""
        app = self.app
        body = []
        if app.run_before_uninstall is not None:
            body.append(self.open_fragment(builders, app.run_before_uninstall, wait=True))
        for builder in builders:
            service = builder.launchable
            if isinstance(service, Service):
                body.append(
                    f'launchctl unload "/Library/LaunchDaemons/{service.id}.plist" '
                    ">/dev/null 2>&1 || true\n"
                    f'rm -f "/Library/LaunchDaemons/{service.id}.plist"\n'
                )
        for builder in builders:
            payload = f"{self.installed(builder)}/Contents/Java"
            for fragment in (
                delete_fragment(app.delete_files, False, payload),
                delete_fragment(app.delete_folders, True, payload),
            ):
                if fragment:
                    body.append(fragment + "\n")
            body.append(f'rm -rf "{self.installed(builder)}"\n')
        for user in self.daemon_users():
            body.append(render_template(MAC_DELETE_USER_TMPL, user=user))
        body.append(
            f"pkgutil --forget {app.app_identifier or app.application} "
            ">/dev/null 2>&1 || true\n"
            f'rm -rf "{self.support_dir}"\n'
        )
        return render_template(
            MAC_UNINSTALL_TMPL, body="".join(body).rstrip("\n"), application=app.application
        )

    def write_service_scripts(
        self, builders: list[AppBundleBuilder], scripts: Path
    ) -> None:
        """Write the launchd plists, the package scripts and the uninstaller.

        preinstall creates the daemon users and stops running daemons,
        postinstall registers the daemons, installs the uninstall script
        and opens the run_after starter.
        """
        preinstall = ["#!/bin/sh"]
        postinstall = ["#!/bin/sh", "set -e"]
        for user in self.daemon_users():
            preinstall.append(
                render_template(MAC_CREATE_USER_TMPL, user=user, home=self.support_dir)
            )
        for builder in builders:
            service = builder.launchable
            if not isinstance(service, Service):
                continue
            with open(scripts / f"{service.id}.plist", "wb") as f:
                plistlib.dump(self.launchd_plist(builder, service), f)
            preinstall.append(
                render_template(LAUNCHD_PREINSTALL_TMPL, label=service.id)
            )
            user = service.daemon_user or self.config.daemon_user
            if user and user != "root":
                postinstall.append(f'chown -R "{user}" "{self.installed(builder)}"\n')
            postinstall.append(
                render_template(LAUNCHD_POSTINSTALL_TMPL, label=service.id)
            )
        write_text(scripts / "uninstall.sh", self.uninstall_script(builders), 0o755)
        postinstall.append(
            render_template(MAC_INSTALL_UNINSTALLER_TMPL, home=self.support_dir)
        )
        if self.app.run_after is not None:
            postinstall.append(self.open_fragment(builders, self.app.run_after, wait=False))
        preinstall.append("exit 0\n")
        write_text(scripts / "preinstall", "\n".join(preinstall), 0o755)
        write_text(scripts / "postinstall", "\n".join(postinstall), 0o755)

    def patch_distribution(self, distribution: Path, resources: Path) -> None:
        """Add the title and localized license and welcome pages."""
        if not distribution.is_file():
            self.log.debug("no distribution file to patch at %s", distribution)
            return
        tree = ET.parse(distribution)
        root = tree.getroot()
        title = root.find("title")
        if title is None:
            title = ET.Element("title")
            root.insert(0, title)
        title.text = self.app.application

        pages = [
            ("welcome", self.config.welcome_pages),
            ("license", self.app.license_files),
        ]
        for tag, localized in pages:
            if not localized:
                continue
            default = find_localized(
                localized,
                self.app.default_resource_language,
                self.app.default_resource_language,
            )
            if default is None:
                continue
            name = f"{tag}{default.resolve().suffix}"
            for resource in localized:
                dest = resources / f"{resource.language}.lproj" / name
                dest.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(resource.resolve(), dest)
            shutil.copyfile(default.resolve(), resources / name)
            ET.SubElement(root, tag, file=name)
        ET.indent(tree)
        tree.write(distribution, encoding="utf-8", xml_declaration=True)

    def create_package(
        self, tmp: BuildDirectory, builders: list[AppBundleBuilder], dest: Path
    ) -> Path:
        """Wrap the bundles into a signed installer package.

        Returns:
            The product archive inside dest
        """
        root = tmp.root / "root"
        scripts = tmp.path("scripts")
        packages = tmp.path("packages")
        resources = tmp.path("resources")
        component_plist = tmp.file("components.plist")
        component_pkg = packages / f"{self.app.app_identifier}.pkg"
        distribution = tmp.file("distribution.xml")
        product = dest / f"{self.app.application}.pkg"

        self.write_service_scripts(builders, scripts)
        self.run_command(
            ["pkgbuild", "--analyze", "--root", str(root), str(component_plist)]
        )
        # installed bundles must not be relocated to another copy on disk
        buddy = PlistBuddy(component_plist, dry_run=self.dry_run)
        for index in range(len(builders)):
            buddy.set(f":{index}:BundleIsRelocatable", False)
        self.run_command(
            [
                "pkgbuild",
                "--root",
                str(root),
                "--component-plist",
                str(component_plist),
                "--identifier",
                self.app.app_identifier or self.app.application,
                "--version",
                self.app.version or "",
                "--scripts",
                str(scripts),
                "--install-location",
                self.config.install_location,
                str(component_pkg),
            ],
            capture=False,
        )
        self.run_command(
            [
                "productbuild",
                "--synthesize",
                "--package",
                str(component_pkg),
                str(distribution),
            ]
        )
        self.patch_distribution(distribution, resources)
        self.run_command(
            [
                "productbuild",
                "--distribution",
                str(distribution),
                "--package-path",
                str(packages),
                "--resources",
                str(resources),
                str(product),
            ],
            capture=False,
        )
        if self.signer is not None:
            self.signer.sign_package(product)
        return product

    # --- image ----------------------------------------------------------

    def create_image(self, source: Path) -> Path:
        """Create the compressed disk image from a folder."""
        self.log.info("Creating DMG: %s", self.setup_file)
        self.run_command(
            [
                "hdiutil",
                "create",
                "-volname",
                self.volume_name,
                "-srcfolder",
                str(source),
                "-ov",
                "-format",
                "UDZO",
                str(self.setup_file),
            ],
            capture=False,
        )
        if not self.dry_run and not self.setup_file.exists():
            raise PackagingError(f"Failed to create DMG: {self.setup_file}")
        return self.setup_file

    def notarize(self) -> None:
        notarize = self.config.notarize
        if notarize is None:
            return
        if notarize.bundle_id is None:
            notarize = dataclasses.replace(notarize, bundle_id=self.app.app_identifier)
        Notarizer(self.setup_file, notarize, dry_run=self.dry_run).run()

    def build(self) -> Path:
        """Build the disk image and return its path.

        Raises:
            ConfigurationError: If the model is incomplete
            PackagingError: If a packaging tool fails
            CodesignError: If signing fails
            NotarizationError: If notarization fails
        """
        self.validate()
        check_output_file(self.setup_file, self.overwrite)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.log.info("Building %s", self.setup_file)

        if self.signer is not None:
            self.signer.unlock_keychain()

        with build_directory(self.build_dir, keep=self.keep_build_dir) as tmp:
            payload = stage_sources(self.app.sources, tmp.path("payload"))
            image = tmp.path("image")
            try:
                if self.app.services:
                    builders = self.create_bundles(tmp.path("root"), payload)
                    self.create_package(tmp, builders, image)
                else:
                    self.create_bundles(image, payload)
                    if self.config.applications_link:
                        (image / "Applications").symlink_to("/Applications")
                self.create_image(image)
            except CommandError as e:
                raise PackagingError(
                    f"Creating {self.setup_file} failed: {e}"
                ) from e

        if self.signer is not None:
            self.signer.sign(self.setup_file, use_entitlements=False)
        self.notarize()
        self.log.info("Created: %s", self.setup_file)
        return self.setup_file


# ----------------------------------------------------------------------------
# Notarization


class NotarizationState(enum.Enum):
    """States of one notarization request."""

    SUBMITTING = "submitting"
    UPLOADED = "uploaded"
    POLLING = "polling"
    SUCCESS = "success"
    INVALID = "invalid"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (
            NotarizationState.SUCCESS,
            NotarizationState.INVALID,
            NotarizationState.ERROR,
        )


SUCCESS_STATUSES = ("success", "accepted")
INVALID_STATUSES = ("invalid", "rejected")


@dataclass
class NotarizationResponse:
    """The fields of an altool or notarytool answer we act on."""

    request_id: str | None = None
    status: str | None = None
    log_url: str | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def normalized_status(self) -> str:
        return (self.status or "").strip().lower()

    @property
    def in_progress(self) -> bool:
        """Anything that is neither success nor invalid, a missing status included."""
        return not (self.succeeded or self.invalid)

    @property
    def succeeded(self) -> bool:
        return self.normalized_status in SUCCESS_STATUSES

    @property
    def invalid(self) -> bool:
        return self.normalized_status in INVALID_STATUSES


def parse_notarization_response(text: str) -> NotarizationResponse:
    """Parse the XML property list printed by altool or notarytool.

    altool nests the request id in "notarization-upload" and the status in
    "notarization-info"; notarytool uses top level "id" and "status".

    Raises:
        NotarizationError: If the text is not a property list
    """
    start = text.find("<?xml")
    if start < 0:
        raise NotarizationError(f"No property list in notarization response: {text!r}")
    try:
        data = plistlib.loads(text[start:].encode("utf-8"))
    except (plistlib.InvalidFileException, ExpatError, ValueError) as e:
        raise NotarizationError(f"Invalid notarization response: {e}") from e
    if not isinstance(data, dict):
        raise NotarizationError("Notarization response is not a dictionary")

    response = NotarizationResponse()
    for error in data.get("product-errors") or []:
        if isinstance(error, dict):
            response.errors.append(str(error.get("message", error)))
        else:
            response.errors.append(str(error))

    upload = data.get("notarization-upload") or {}
    response.request_id = upload.get("RequestUUID") or data.get("id")

    info = data.get("notarization-info") or {}
    response.status = info.get("Status") or data.get("status")
    response.log_url = info.get("LogFileURL")
    if not response.request_id:
        response.request_id = info.get("RequestUUID")
    return response


class Notarizer:
    """Submit a file to Apple's notarization service and wait for the result.

    The submission and the polling loop run on a worker thread while the
    caller blocks on a condition until a terminal state is reached:

        SUBMITTING -> UPLOADED -> POLLING -> SUCCESS | INVALID | ERROR

    Product errors in the submission response end in ERROR without
    polling. An in-progress status sleeps poll_interval seconds and polls
    again. Any failure while polling is fatal and not retried. After
    SUCCESS the ticket is stapled to the file; a staple failure is only
    logged.

    Args:
        file: The .dmg, .pkg or zipped .app to notarize
        config: Credentials, tool and polling limits
        dry_run: If True, only log the commands
        sleep: Function used to wait between polls (default: time.sleep,
            or cancel.wait when a cancel event is given)
        cancel: Optional event; setting it ends the wait in ERROR
        clock: Monotonic clock used for the timeout

    Example:
        notarizer = Notarizer("dist/Demo.dmg", NotarizeConfig(bundle_id="com.acme.demo"))
        notarizer.run()
    """

    def __init__(
        self,
        file: Pathlike,
        config: NotarizeConfig,
        dry_run: bool = False,
        sleep: Callable[[float], object] | None = None,
        cancel: threading.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.file = Path(file)
        self.config = config
        self.dry_run = dry_run
        self.sleep = sleep
        self.cancel = cancel
        self.clock = clock
        self.log = logging.getLogger(self.__class__.__name__)

        self.state = NotarizationState.SUBMITTING
        self.request_id: str | None = None
        self.response: NotarizationResponse | None = None
        self.polls = 0
        self.error: BaseException | None = None
        self._condition = threading.Condition()
        self._auth: list[str] = []

    def run_command(self, command: list[str], **kwargs: object) -> str:
        return run_command(command, dry_run=self.dry_run, log=self.log, **kwargs)  # type: ignore[arg-type]

    @property
    def bundle_id(self) -> str:
        return self.config.bundle_id or self.file.name

    # --- commands -------------------------------------------------------

    def auth_arguments(self) -> list[str]:
        """Resolve the credentials.

        Raises:
            ConfigurationError: If the credentials are incomplete
        """
        credentials = self.config.credentials
        if self.config.tool == "notarytool":
            return credentials.notarytool_arguments()
        return credentials.altool_arguments()

    def submit_command(self) -> list[str]:
        if self.config.tool == "notarytool":
            return [
                "xcrun",
                "notarytool",
                "submit",
                str(self.file.resolve()),
                *self._auth,
                "--output-format",
                "plist",
            ]
        return [
            "xcrun",
            "altool",
            "--notarize-app",
            "-f",
            str(self.file.resolve()),
            "--primary-bundle-id",
            self.bundle_id,
            *self._auth,
            "--output-format",
            "xml",
        ]

    def info_command(self, request_id: str) -> list[str]:
        if self.config.tool == "notarytool":
            return [
                "xcrun",
                "notarytool",
                "info",
                request_id,
                *self._auth,
                "--output-format",
                "plist",
            ]
        return [
            "xcrun",
            "altool",
            "--notarize-info",
            request_id,
            *self._auth,
            "--output-format",
            "xml",
        ]

    def staple_command(self) -> list[str]:
        return ["xcrun", "stapler", "staple", "-v", str(self.file.resolve())]

    # --- state ----------------------------------------------------------

    def set_state(self, state: NotarizationState) -> None:
        with self._condition:
            self.state = state
            self.log.info("notarization %s", state.value)
            self._condition.notify_all()

    def fail(self, state: NotarizationState, error: BaseException) -> None:
        with self._condition:
            self.error = error
        self.set_state(state)

    def check_limits(self, started: float) -> None:
        """Raise if the request was cancelled or ran out of time or attempts."""
        if self.cancel is not None and self.cancel.is_set():
            raise NotarizationError(f"Notarization of {self.file} was cancelled")
        if self.config.timeout is not None and self.clock() - started >= self.config.timeout:
            raise NotarizationError(
                f"Notarization of {self.file} timed out after {self.config.timeout}s"
            )
        if self.config.max_attempts is not None and self.polls >= self.config.max_attempts:
            raise NotarizationError(
                f"Notarization of {self.file} still in progress after {self.polls} polls"
            )

    def pause(self, started: float) -> None:
        """Wait poll_interval seconds, but not beyond the timeout."""
        seconds = self.config.poll_interval
        if self.config.timeout is not None:
            remaining = self.config.timeout - (self.clock() - started)
            seconds = max(0.0, min(seconds, remaining))
        if self.sleep is not None:
            self.sleep(seconds)
        elif self.cancel is not None:
            self.cancel.wait(seconds)
        else:
            time.sleep(seconds)

    # --- steps ----------------------------------------------------------

    def submit(self) -> str:
        """Upload the file and return the request id.

        altool prints its answer, product errors included, as a property
        list on stdout and exits non-zero on errors, so the output is
        parsed regardless of the exit status.

        Raises:
            NotarizationError: If the service reports product errors or
                the response has no request id
        """
        self.log.info("Notarizing %s", self.file)
        try:
            output = self.run_command(self.submit_command(), ignore_exit=True)
        except CommandError as e:
            raise NotarizationError(f"Submitting {self.file} failed: {e}") from e
        response = parse_notarization_response(output)
        self.response = response
        if response.errors:
            raise NotarizationError(
                f"Notarization of {self.file} rejected: " + "; ".join(response.errors)
            )
        if not response.request_id:
            raise NotarizationError(f"No request id in notarization response: {output!r}")
        return response.request_id

    def poll(self, request_id: str) -> NotarizationResponse:
        """Query the status of the request once."""
        self.polls += 1
        self.log.info("polling notarization status (%d): %s", self.polls, request_id)
        try:
            output = self.run_command(self.info_command(request_id), ignore_exit=True)
        except CommandError as e:
            raise NotarizationError(f"Polling {request_id} failed: {e}") from e
        response = parse_notarization_response(output)
        self.response = response
        if response.errors:
            raise NotarizationError("; ".join(response.errors))
        return response

    def work(self) -> None:
        """The worker thread body: submit, then poll to a terminal state."""
        started = self.clock()
        try:
            self.request_id = self.submit()
            self.log.info("request id: %s", self.request_id)
            self.set_state(NotarizationState.UPLOADED)
            self.set_state(NotarizationState.POLLING)
            while True:
                self.check_limits(started)
                response = self.poll(self.request_id)
                if response.succeeded:
                    self.set_state(NotarizationState.SUCCESS)
                    return
                if response.invalid:
                    log_url = response.log_url or f"xcrun notarytool log {self.request_id}"
                    self.log.error("notarization invalid, log: %s", log_url)
                    self.fail(
                        NotarizationState.INVALID,
                        NotarizationError(
                            f"Notarization of {self.file} is invalid, see {log_url}"
                        ),
                    )
                    return
                self.log.info("notarization status: %s", response.status or "unknown")
                self.pause(started)
        except Exception as e:  # re-raised by run() in the calling thread
            self.fail(NotarizationState.ERROR, e)

    def staple(self) -> None:
        """Staple the ticket to the file; failures are logged only."""
        try:
            self.run_command(self.staple_command(), capture=False)
        except CommandError as e:
            self.log.warning("Stapling %s failed: %s", self.file, e)

    def run(self) -> NotarizationState:
        """Notarize the file and block until a terminal state is reached.

        Returns:
            NotarizationState.SUCCESS

        Raises:
            ConfigurationError: If the credentials are incomplete, before
                any tool is called
            NotarizationError: On product errors, an invalid status, a
                polling failure, cancellation or timeout
        """
        self._auth = self.auth_arguments()
        if self.dry_run:
            self.run_command(self.submit_command())
            self.set_state(NotarizationState.SUCCESS)
            if self.config.staple:
                self.staple()
            return self.state

        worker = threading.Thread(
            target=self.work, name=f"notarize-{self.file.name}", daemon=True
        )
        worker.start()
        with self._condition:
            self._condition.wait_for(lambda: self.state.is_terminal)
        worker.join()

        if self.error is not None:
            raise self.error
        if self.config.staple:
            self.staple()
        self.log.info("Notarization complete: %s", self.file)
        return self.state


# ----------------------------------------------------------------------------
# Configuration to model

CREDENTIAL_KEYS = [f.name for f in dataclasses.fields(NotarizationCredentials)]


def _table(value: object, section: str) -> dict[str, object]:
    if not isinstance(value, dict):
        raise ConfigurationError(f"[{section}] must be a table")
    return value


def _tables(value: object, section: str) -> list[dict[str, object]]:
    if not isinstance(value, list):
        raise ConfigurationError(f"[[{section}]] must be an array of tables")
    return [_table(item, section) for item in value]


def _from_table(
    cls: type,
    table: dict[str, object],
    section: str,
    **converters: Callable[[object], object],
) -> object:
    """Create a dataclass from a TOML table, rejecting unknown keys.

    Args:
        cls: The dataclass to create
        table: The TOML table
        section: Table name used in error messages
        converters: Per-key functions applied to present values
    """
    names = {f.name for f in dataclasses.fields(cls)}
    unknown = sorted(set(table) - names)
    if unknown:
        raise ConfigurationError(
            f"Unknown key(s) in [{section}]: {', '.join(unknown)}"
        )
    values = dict(table)
    for key, convert in converters.items():
        if values.get(key) is not None:
            values[key] = convert(values[key])
    try:
        return cls(**values)
    except TypeError as e:
        raise ConfigurationError(f"Invalid [{section}] table: {e}") from e


class _Resolver:
    """Converters that resolve configured paths against the config file."""

    def __init__(self, base_dir: Pathlike | None):
        self.base_dir = Path(base_dir) if base_dir is not None else Path.cwd()

    def path(self, value: object) -> Path:
        path = Path(str(value)).expanduser()
        return path if path.is_absolute() else self.base_dir / path

    def paths(self, value: object) -> list[Path]:
        return [self.path(v) for v in _paths(value)]  # type: ignore[arg-type]

    def localized(self, section: str) -> Callable[[object], object]:
        def convert(value: object) -> list[LocalizedResource]:
            return [
                _from_table(
                    LocalizedResource, t, section, resource=self.path
                )  # type: ignore[misc]
                for t in _tables(value, section)
            ]

        return convert


def _document_types(section: str, resolver: _Resolver) -> Callable[[object], object]:
    def convert(value: object) -> list[DocumentType]:
        return [
            _from_table(DocumentType, t, section, icons=resolver.paths)  # type: ignore[misc]
            for t in _tables(value, section)
        ]

    return convert


def _launchables(
    cls: type, section: str, resolver: _Resolver
) -> Callable[[object], object]:
    converters: dict[str, Callable[[object], object]] = {"icons": resolver.paths}
    if cls is DesktopStarter:
        converters["document_types"] = _document_types(
            f"{section}.document_types", resolver
        )

    def convert(value: object) -> list[object]:
        return [
            _from_table(cls, t, section, **converters)
            for t in _tables(value, section)
        ]

    return convert


def application_from_config(
    config: dict[str, object], base_dir: Pathlike | None = None
) -> Application:
    """Create the application model from the [setup] table.

    Relative paths are resolved against base_dir (default: the current
    directory).

    Raises:
        ConfigurationError: If the table is missing, has unknown keys or
            describes an invalid model
    """
    if "setup" not in config:
        raise ConfigurationError("No [setup] table in the configuration")
    resolver = _Resolver(base_dir)

    def single_starter(section: str) -> Callable[[object], object]:
        def convert(value: object) -> object:
            return _launchables(DesktopStarter, section, resolver)([value])[0]

        return convert

    return _from_table(  # type: ignore[return-value]
        Application,
        _table(config["setup"], "setup"),
        "setup",
        icons=resolver.paths,
        sources=resolver.paths,
        document_types=_document_types("setup.document_types", resolver),
        services=_launchables(Service, "setup.services", resolver),
        desktop_starters=_launchables(
            DesktopStarter, "setup.desktop_starters", resolver
        ),
        protocol_handlers=_launchables(
            ProtocolHandler, "setup.protocol_handlers", resolver
        ),
        license_files=resolver.localized("setup.license_files"),
        long_descriptions=resolver.localized("setup.long_descriptions"),
        run_after=single_starter("setup.run_after"),
        run_before_uninstall=single_starter("setup.run_before_uninstall"),
    )


def notarize_config_from(
    table: dict[str, object], section: str = "notarize"
) -> NotarizeConfig:
    """Create a NotarizeConfig; credential keys fall back to the environment."""
    table = dict(_table(table, section))
    credentials = {key: table.pop(key) for key in CREDENTIAL_KEYS if key in table}
    unknown = sorted(set(table) - {f.name for f in dataclasses.fields(NotarizeConfig)})
    if unknown:
        raise ConfigurationError(
            f"Unknown key(s) in [{section}]: {', '.join(unknown)}"
        )
    table["credentials"] = NotarizationCredentials.from_env(**credentials)  # type: ignore[arg-type]
    return _from_table(NotarizeConfig, table, section)  # type: ignore[return-value]


def platform_config_from(
    config: dict[str, object], fmt: str, base_dir: Pathlike | None = None
) -> object:
    """Create the platform config for "deb", "rpm", "msi" or "dmg"."""
    resolver = _Resolver(base_dir)
    table = _table(config.get(fmt, {}), fmt)
    if fmt == "deb":
        return _from_table(
            DebConfig, table, fmt, default_service_file=resolver.path
        )
    if fmt == "rpm":
        return _from_table(
            RpmConfig, table, fmt, default_service_file=resolver.path
        )
    if fmt == "msi":
        return _from_table(
            MsiConfig,
            table,
            fmt,
            wix_home=resolver.path,
            service_wrapper=resolver.path,
            localizations=resolver.localized("msi.localizations"),
            signtool=lambda t: _from_table(
                SignToolConfig,
                _table(t, "msi.signtool"),
                "msi.signtool",
                certificate=resolver.path,
                timestamp_servers=_strings,
            ),
        )
    if fmt == "dmg":
        return _from_table(
            DmgConfig,
            table,
            fmt,
            welcome_pages=resolver.localized("dmg.welcome_pages"),
            codesign=lambda t: _from_table(
                CodesignConfig,
                _table(t, "dmg.codesign"),
                "dmg.codesign",
                entitlements=resolver.path,
            ),
            notarize=lambda t: notarize_config_from(t, "dmg.notarize"),  # type: ignore[arg-type]
        )
    raise ConfigurationError(f"Unknown installer format: {fmt}")


# ----------------------------------------------------------------------------
# Functional API

BUILDERS: dict[str, type] = {
    "deb": DebBuilder,
    "rpm": RpmBuilder,
    "msi": MsiBuilder,
    "dmg": DmgBuilder,
}


def make_installer(
    fmt: str,
    config: dict[str, object],
    output_dir: Pathlike = ".",
    base_dir: Pathlike | None = None,
    build_dir: Pathlike | None = None,
    keep_build_dir: bool = False,
    dry_run: bool = False,
    overwrite: bool = False,
) -> Path:
    """Build one installer from a loaded configuration.

    This is a convenience function that creates the model and the
    platform config and calls build() on the matching builder.

    Args:
        fmt: "deb", "rpm", "msi" or "dmg"
        config: Configuration dictionary, as returned by load_config()
        output_dir: Directory receiving the installer
        base_dir: Directory relative paths in config are resolved against
        build_dir: Optional staging directory
        keep_build_dir: If True, keep the staging directory
        dry_run: If True, log tool invocations without running them
        overwrite: If True, replace an existing installer

    Returns:
        Path to the created installer

    Example:
        make_installer("deb", load_config(Path("setupbuilder.toml")), "dist")
    """
    if fmt not in BUILDERS:
        raise ConfigurationError(f"Unknown installer format: {fmt}")
    app = application_from_config(config, base_dir)
    builder: PackageBuilder = BUILDERS[fmt](
        app,
        platform_config_from(config, fmt, base_dir),
        output_dir=output_dir,
        build_dir=build_dir,
        keep_build_dir=keep_build_dir,
        dry_run=dry_run,
        overwrite=overwrite,
    )
    return builder.build()


# ----------------------------------------------------------------------------
# Command-line interface


def _add_common_options(parser: argparse.ArgumentParser) -> None:
    """Add common options to a parser."""
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="show commands without executing",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="enable verbose/debug logging",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="disable colored output",
    )


def _add_build_options(parser: argparse.ArgumentParser) -> None:
    """Add the options shared by the installer subcommands."""
    parser.add_argument(
        "-c",
        "--config",
        metavar="FILE",
        type=Path,
        help="configuration file (default: .setupbuilder.toml or setupbuilder.toml)",
    )
    parser.add_argument(
        "-o",
        "--output",
        metavar="DIR",
        default=".",
        help="output directory (default: current directory)",
    )
    parser.add_argument(
        "--build-dir",
        metavar="DIR",
        help="staging directory (default: a temporary directory)",
    )
    parser.add_argument(
        "--keep-build-dir",
        action="store_true",
        help="keep the staging directory after the build",
    )
    parser.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="overwrite an existing installer",
    )
    _add_common_options(parser)


def _cmd_build(args: argparse.Namespace) -> None:
    """Handle the 'deb', 'rpm', 'msi' and 'dmg' subcommands."""
    setup_logging(args.verbose, not args.no_color)
    log = logging.getLogger("setupbuilder")

    if args.config is not None:
        config = load_config(args.config)
        base_dir = args.config.resolve().parent
    else:
        config = get_config()
        base_dir = Path.cwd()
    if not config:
        raise ConfigurationError(
            "No configuration found. Create setupbuilder.toml or pass --config."
        )

    setup_file = make_installer(
        args.command,
        config,
        output_dir=args.output,
        base_dir=base_dir,
        build_dir=args.build_dir,
        keep_build_dir=args.keep_build_dir,
        dry_run=args.dry_run,
        overwrite=args.force,
    )
    log.info("Created: %s", setup_file)


def _cmd_notarize(args: argparse.Namespace) -> None:
    """Handle 'notarize' subcommand."""
    setup_logging(args.verbose, not args.no_color)
    log = logging.getLogger("setupbuilder")

    file = Path(args.file)
    if not file.exists():
        log.error("File does not exist: %s", file)
        sys.exit(1)

    # Load config and apply defaults
    config = load_config(args.config) if args.config else get_config()
    string_keys = CREDENTIAL_KEYS + ["tool", "bundle_id"]
    table = {
        key: value
        for key, value in _table(config.get("notarize", {}), "notarize").items()
        if key not in string_keys
    }
    for key in string_keys:
        value = getattr(args, key)
        if value is None:
            value = get_config_value(config, "notarize", key)
        if value is not None:
            table[key] = value
    for key in ("poll_interval", "timeout"):
        if getattr(args, key) is not None:
            table[key] = getattr(args, key)
    if args.no_staple:
        table["staple"] = False

    notarizer = Notarizer(file, notarize_config_from(table), dry_run=args.dry_run)
    notarizer.run()
    log.info("Notarized: %s", file)


def main() -> None:
    """Command line interface for setupbuilder."""
    try:
        parser = argparse.ArgumentParser(
            prog="setupbuilder",
            description="Build native DEB, RPM, MSI and macOS installers.",
            epilog=(
                "Examples:\n"
                "  setupbuilder deb -o dist/\n"
                "  setupbuilder rpm --config release.toml --keep-build-dir\n"
                "  setupbuilder notarize dist/Demo-2.1.0.dmg --bundle-id com.acme.demo\n"
            ),
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        parser.add_argument(
            "--version",
            action="version",
            version=f"%(prog)s {__version__}",
        )

        subparsers = parser.add_subparsers(
            title="commands",
            dest="command",
            required=True,
        )

        # --- installer subcommands ---
        formats = [
            ("deb", "build a Debian package with dpkg-deb"),
            ("rpm", "build an RPM package with rpmbuild"),
            ("msi", "build a Windows installer with WiX"),
            ("dmg", "build a macOS disk image"),
        ]
        for name, help_text in formats:
            build_parser = subparsers.add_parser(
                name,
                help=help_text,
                description=help_text[0].upper() + help_text[1:] + ".",
            )
            _add_build_options(build_parser)
            build_parser.set_defaults(func=_cmd_build)

        # --- notarize subcommand ---
        notarize_parser = subparsers.add_parser(
            "notarize",
            help="notarize and staple a disk image or package",
            description="Submit a file to Apple for notarization, wait, and staple.",
            epilog=(
                "Examples:\n"
                "  setupbuilder notarize Demo.dmg --bundle-id com.acme.demo -u dev@acme.example \\\n"
                "      --keychain-item AC_PASSWORD\n"
                "  setupbuilder notarize Demo.dmg --tool notarytool -k AC_PROFILE\n"
            ),
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        notarize_parser.add_argument(
            "file",
            help="path to the .dmg, .pkg or .zip to notarize",
        )
        notarize_parser.add_argument(
            "-c",
            "--config",
            metavar="FILE",
            type=Path,
            help="configuration file with a [notarize] table",
        )
        notarize_parser.add_argument(
            "--bundle-id",
            dest="bundle_id",
            metavar="ID",
            help="primary bundle id (default: the file name)",
        )
        notarize_parser.add_argument(
            "-u",
            "--username",
            metavar="APPLE_ID",
            help="Apple ID (or set NOTARIZE_USER env var)",
        )
        notarize_parser.add_argument(
            "--keychain-item",
            dest="keychain_item",
            metavar="ITEM",
            help="keychain item holding the app specific password",
        )
        notarize_parser.add_argument(
            "--password-env",
            dest="password_env",
            metavar="VAR",
            help="environment variable holding the password",
        )
        notarize_parser.add_argument(
            "--password",
            metavar="PASSWORD",
            help="plaintext app specific password",
        )
        notarize_parser.add_argument(
            "--asc-provider",
            dest="asc_provider",
            metavar="PROVIDER",
            help="App Store Connect provider / team id",
        )
        notarize_parser.add_argument(
            "-k",
            "--keychain-profile",
            dest="keychain_profile",
            metavar="PROFILE",
            help="keychain profile for notarytool (or set KEYCHAIN_PROFILE env var)",
        )
        notarize_parser.add_argument(
            "--tool",
            choices=["altool", "notarytool"],
            help="submission tool (default: altool)",
        )
        notarize_parser.add_argument(
            "--poll-interval",
            dest="poll_interval",
            type=float,
            metavar="SECONDS",
            help=f"seconds between status polls (default: {DEFAULT_POLL_INTERVAL:g})",
        )
        notarize_parser.add_argument(
            "--timeout",
            type=float,
            metavar="SECONDS",
            help="give up after this many seconds (default: wait forever)",
        )
        notarize_parser.add_argument(
            "--no-staple",
            action="store_true",
            help="skip stapling",
        )
        _add_common_options(notarize_parser)
        notarize_parser.set_defaults(func=_cmd_notarize)

        args = parser.parse_args()
        args.func(args)

    except SetupError as e:
        logging.error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        sys.exit(130)
    except Exception as e:
        logging.error("Unexpected error: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
