"""Tests for the notarization state machine."""

import plistlib
import tempfile
import threading
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from setupbuilder import (
    ConfigurationError,
    NotarizationCredentials,
    NotarizationError,
    NotarizationState,
    NotarizeConfig,
    Notarizer,
    parse_notarization_response,
)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdirname:
        yield Path(tmpdirname)


@pytest.fixture
def image(temp_dir):
    path = temp_dir / "Demo-2.1.0.dmg"
    path.write_bytes(b"dmg")
    return path


def plist(data):
    return plistlib.dumps(data).decode("utf-8")


def uploaded(request_id="2a6f1c2e-0000-4000-8000-000000000001"):
    return plist(
        {
            "notarization-upload": {"RequestUUID": request_id},
            "success-message": "No errors uploading.",
        }
    )


def info(status, log_url=None):
    data = {"notarization-info": {"Status": status, "RequestUUID": "x"}}
    if log_url:
        data["notarization-info"]["LogFileURL"] = log_url
    return plist(data)


def altool_config(**kwargs):
    credentials = NotarizationCredentials(username="dev@acme.example", keychain_item="AC")
    return NotarizeConfig(credentials=credentials, bundle_id="com.acme.demo", **kwargs)


class FakeTools:
    """Stand-in for xcrun: answers submit and info calls from a script."""

    def __init__(self, outputs, staple_returncode=0):
        self.outputs = list(outputs)
        self.staple_returncode = staple_returncode
        self.commands = []
        self.lock = threading.Lock()

    def __call__(self, command, **kwargs):
        with self.lock:
            self.commands.append(command)
            if "stapler" in command:
                return MagicMock(
                    returncode=self.staple_returncode, stdout="", stderr="staple"
                )
            returncode, stdout = self.outputs.pop(0)
            return MagicMock(returncode=returncode, stdout=stdout, stderr="")

    @property
    def stapled(self):
        return any("stapler" in c for c in self.commands)


class Sleeps:
    """Records the waits instead of sleeping."""

    def __init__(self, clock=None):
        self.calls = []
        self.clock = clock

    def __call__(self, seconds):
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.now += seconds


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestParseResponse:
    """Tests for parse_notarization_response()."""

    def test_altool_upload(self):
        """Test the request id of an altool upload."""
        response = parse_notarization_response(uploaded("abc"))
        assert response.request_id == "abc"
        assert response.errors == []

    def test_altool_info(self):
        """Test status and log URL of an altool info answer."""
        response = parse_notarization_response(
            info("invalid", "https://osxapps.example/log.json")
        )
        assert response.status == "invalid"
        assert response.invalid
        assert response.log_url == "https://osxapps.example/log.json"

    def test_notarytool(self):
        """Test the flat notarytool answer."""
        response = parse_notarization_response(plist({"id": "n1", "status": "Accepted"}))
        assert response.request_id == "n1"
        assert response.succeeded

    def test_in_progress(self):
        """Test that status matching ignores case."""
        assert parse_notarization_response(info("In Progress")).in_progress

    def test_other_status_is_in_progress(self):
        """Test that statuses other than success and invalid mean in progress."""
        assert parse_notarization_response(info("pending")).in_progress
        assert parse_notarization_response(plist({"id": "n1"})).in_progress
        assert not parse_notarization_response(info("Accepted")).in_progress
        assert not parse_notarization_response(info("Rejected")).in_progress

    def test_leading_text_skipped(self):
        """Test that output before the XML declaration is ignored."""
        response = parse_notarization_response("No errors.\n" + uploaded("abc"))
        assert response.request_id == "abc"

    def test_product_errors(self):
        """Test that product error messages are collected."""
        text = plist(
            {
                "product-errors": [
                    {"code": 15, "message": "The software asset has already been uploaded."}
                ]
            }
        )
        response = parse_notarization_response(text)
        assert response.errors == ["The software asset has already been uploaded."]

    def test_no_xml(self):
        """Test that output without a property list is an error."""
        with pytest.raises(NotarizationError, match="No property list"):
            parse_notarization_response("Error: unable to connect")

    def test_broken_xml(self):
        """Test that a truncated property list is an error."""
        with pytest.raises(NotarizationError, match="Invalid"):
            parse_notarization_response('<?xml version="1.0"?><plist><dict><key>a</key>')

    def test_not_a_dictionary(self):
        """Test that a top level array is rejected."""
        with pytest.raises(NotarizationError, match="dictionary"):
            parse_notarization_response(plist(["a"]))


class TestNotarizer:
    """Tests for the submit and poll state machine."""

    def test_success_after_polling(self, image):
        """Test polling until success, then stapling."""
        tools = FakeTools(
            [
                (0, uploaded()),
                (0, info("in progress")),
                (0, info("in progress")),
                (0, info("success")),
            ]
        )
        sleeps = Sleeps()
        notarizer = Notarizer(image, altool_config(poll_interval=30), sleep=sleeps)
        with patch("subprocess.run", side_effect=tools):
            state = notarizer.run()
        assert state is NotarizationState.SUCCESS
        assert notarizer.polls == 3
        assert sleeps.calls == [30, 30]
        assert notarizer.request_id == "2a6f1c2e-0000-4000-8000-000000000001"
        assert tools.commands[-1][:3] == ["xcrun", "stapler", "staple"]

    def test_submit_command(self, image):
        """Test the altool upload and info command lines."""
        tools = FakeTools([(0, uploaded("abc")), (0, info("success"))])
        notarizer = Notarizer(image, altool_config(staple=False), sleep=Sleeps())
        with patch("subprocess.run", side_effect=tools):
            notarizer.run()
        submit, poll = tools.commands
        assert submit[:3] == ["xcrun", "altool", "--notarize-app"]
        assert submit[submit.index("-f") + 1] == str(image.resolve())
        assert submit[submit.index("--primary-bundle-id") + 1] == "com.acme.demo"
        assert submit[submit.index("-p") + 1] == "@keychain:AC"
        assert poll[:4] == ["xcrun", "altool", "--notarize-info", "abc"]
        assert not tools.stapled

    def test_product_errors_end_without_polling(self, image):
        """Test that upload errors end in ERROR without polling."""
        errors = plist({"product-errors": [{"message": "Package is invalid."}]})
        tools = FakeTools([(1, errors)])
        sleeps = Sleeps()
        notarizer = Notarizer(image, altool_config(), sleep=sleeps)
        with patch("subprocess.run", side_effect=tools):
            with pytest.raises(NotarizationError, match="Package is invalid"):
                notarizer.run()
        assert notarizer.state is NotarizationState.ERROR
        assert notarizer.polls == 0
        assert sleeps.calls == []
        assert not tools.stapled

    def test_invalid(self, image):
        """Test that an invalid status ends in INVALID without stapling."""
        tools = FakeTools(
            [(0, uploaded()), (0, info("invalid", "https://osxapps.example/log.json"))]
        )
        notarizer = Notarizer(image, altool_config(), sleep=Sleeps())
        with patch("subprocess.run", side_effect=tools):
            with pytest.raises(NotarizationError, match="log.json"):
                notarizer.run()
        assert notarizer.state is NotarizationState.INVALID
        assert not tools.stapled

    def test_other_status_keeps_polling(self, image):
        """Test that any other status, or none, is treated as in progress."""
        tools = FakeTools(
            [
                (0, uploaded()),
                (0, info("pending")),
                (0, plist({"notarization-info": {"RequestUUID": "x"}})),
                (0, info("success")),
            ]
        )
        sleeps = Sleeps()
        notarizer = Notarizer(image, altool_config(poll_interval=10), sleep=sleeps)
        with patch("subprocess.run", side_effect=tools):
            assert notarizer.run() is NotarizationState.SUCCESS
        assert notarizer.polls == 3
        assert sleeps.calls == [10, 10]

    def test_unparsable_poll_output(self, image):
        """Test that a polling failure is fatal."""
        tools = FakeTools([(0, uploaded()), (1, "Error: network unreachable")])
        notarizer = Notarizer(image, altool_config(), sleep=Sleeps())
        with patch("subprocess.run", side_effect=tools):
            with pytest.raises(NotarizationError, match="No property list"):
                notarizer.run()
        assert notarizer.state is NotarizationState.ERROR
        assert notarizer.polls == 1

    def test_missing_credentials(self, image):
        """Test that incomplete credentials fail before any tool runs."""
        config = NotarizeConfig(credentials=NotarizationCredentials(username="dev"))
        notarizer = Notarizer(image, config)
        with patch("subprocess.run") as mock_run:
            with pytest.raises(ConfigurationError, match="At least one"):
                notarizer.run()
        mock_run.assert_not_called()

    def test_max_attempts(self, image):
        """Test that polling stops after max_attempts."""
        tools = FakeTools([(0, uploaded())] + [(0, info("in progress"))] * 5)
        notarizer = Notarizer(image, altool_config(max_attempts=2), sleep=Sleeps())
        with patch("subprocess.run", side_effect=tools):
            with pytest.raises(NotarizationError, match="still in progress"):
                notarizer.run()
        assert notarizer.polls == 2
        assert notarizer.state is NotarizationState.ERROR

    def test_timeout(self, image):
        """Test that the last wait is cut to the remaining time."""
        clock = FakeClock()
        sleeps = Sleeps(clock)
        tools = FakeTools([(0, uploaded())] + [(0, info("in progress"))] * 5)
        notarizer = Notarizer(
            image,
            altool_config(poll_interval=60, timeout=100),
            sleep=sleeps,
            clock=clock,
        )
        with patch("subprocess.run", side_effect=tools):
            with pytest.raises(NotarizationError, match="timed out"):
                notarizer.run()
        assert sleeps.calls == [60, 40]
        assert notarizer.polls == 2

    def test_cancel(self, image):
        """Test that setting the cancel event ends the wait."""
        cancel = threading.Event()
        tools = FakeTools([(0, uploaded())] + [(0, info("in progress"))] * 5)
        notarizer = Notarizer(
            image,
            altool_config(poll_interval=3600),
            sleep=lambda seconds: cancel.set(),
            cancel=cancel,
        )
        with patch("subprocess.run", side_effect=tools):
            with pytest.raises(NotarizationError, match="cancelled"):
                notarizer.run()
        assert notarizer.polls == 1
        assert notarizer.state is NotarizationState.ERROR

    def test_cancel_event_used_for_waiting(self, image):
        """Test that the cancel event is waited on without a sleep function."""
        cancel = MagicMock()
        cancel.is_set.side_effect = [False, False, True]
        tools = FakeTools([(0, uploaded())] + [(0, info("in progress"))] * 5)
        notarizer = Notarizer(image, altool_config(poll_interval=5), cancel=cancel)
        with patch("subprocess.run", side_effect=tools):
            with pytest.raises(NotarizationError, match="cancelled"):
                notarizer.run()
        cancel.wait.assert_called_with(5)

    def test_staple_failure_tolerated(self, image):
        """Test that a staple failure does not fail the notarization."""
        tools = FakeTools([(0, uploaded()), (0, info("success"))], staple_returncode=65)
        notarizer = Notarizer(image, altool_config(), sleep=Sleeps())
        with patch("subprocess.run", side_effect=tools):
            assert notarizer.run() is NotarizationState.SUCCESS
        assert tools.stapled

    def test_notarytool(self, image):
        """Test the notarytool command lines and answers."""
        tools = FakeTools(
            [
                (0, plist({"id": "n1", "message": "Successfully uploaded file"})),
                (0, plist({"id": "n1", "status": "In Progress"})),
                (0, plist({"id": "n1", "status": "Accepted"})),
            ]
        )
        config = NotarizeConfig(
            credentials=NotarizationCredentials(keychain_profile="AC_PROFILE"),
            tool="notarytool",
        )
        notarizer = Notarizer(image, config, sleep=Sleeps())
        with patch("subprocess.run", side_effect=tools):
            assert notarizer.run() is NotarizationState.SUCCESS
        submit = tools.commands[0]
        assert submit[:3] == ["xcrun", "notarytool", "submit"]
        assert submit[submit.index("--keychain-profile") + 1] == "AC_PROFILE"
        assert submit[-2:] == ["--output-format", "plist"]
        assert tools.commands[1][:4] == ["xcrun", "notarytool", "info", "n1"]

    def test_bundle_id_defaults_to_file_name(self, image):
        """Test the primary bundle id fallback."""
        config = NotarizeConfig(
            credentials=NotarizationCredentials(username="dev", password="pw")
        )
        assert Notarizer(image, config).bundle_id == "Demo-2.1.0.dmg"

    def test_dry_run(self, image):
        """Test that a dry run executes nothing and succeeds."""
        notarizer = Notarizer(image, altool_config(), dry_run=True)
        with patch("subprocess.run") as mock_run:
            assert notarizer.run() is NotarizationState.SUCCESS
        mock_run.assert_not_called()

    def test_states_are_terminal(self):
        """Test which states end the wait."""
        terminal = {s for s in NotarizationState if s.is_terminal}
        assert terminal == {
            NotarizationState.SUCCESS,
            NotarizationState.INVALID,
            NotarizationState.ERROR,
        }
