"""Tests for the command-line entry points."""

import argparse
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from afzoffline import _cmd_test_email

SMTP_CONFIG = """contact:
  admin_email: admin@afz.org.zm
  smtp:
    enabled: true
    host: smtp.example.com
    port: 587
    username: mailer
    password: secret
"""


@pytest.fixture(autouse=True)
def clear_smtp_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("AFZ_SMTP_USER", raising=False)
    monkeypatch.delenv("AFZ_SMTP_PASSWORD", raising=False)


@pytest.fixture
def smtp_args(tmp_path: Path) -> argparse.Namespace:
    config_file = tmp_path / "config.yaml"
    config_file.write_text(SMTP_CONFIG)
    return argparse.Namespace(config=str(config_file), verbose=False)


class TestTestEmail:
    """Tests for the test-email command."""

    @patch("afzoffline.mailer.smtplib.SMTP")
    def test_verifies_before_sending(
        self, mock_smtp: MagicMock, smtp_args: argparse.Namespace, capsys: pytest.CaptureFixture
    ) -> None:
        """The SMTP login is checked before the test message goes out."""
        server = mock_smtp.return_value

        _cmd_test_email(smtp_args)

        calls = [name for name, _, _ in server.method_calls]
        assert calls.index("noop") < calls.index("sendmail")
        assert server.sendmail.call_args[0][1] == ["admin@afz.org.zm"]
        assert "SUCCESS" in capsys.readouterr().out

    @patch("afzoffline.mailer.smtplib.SMTP")
    def test_unreachable_server_exits_without_sending(
        self, mock_smtp: MagicMock, smtp_args: argparse.Namespace, capsys: pytest.CaptureFixture
    ) -> None:
        """A failed connection check stops the command before any send."""
        mock_smtp.side_effect = OSError("unreachable")

        with pytest.raises(SystemExit) as exc_info:
            _cmd_test_email(smtp_args)

        assert exc_info.value.code == 1
        assert mock_smtp.call_count == 1
        assert "FAILED" in capsys.readouterr().out

    def test_development_mode_exits(self) -> None:
        """Without SMTP credentials there is nothing to test."""
        args = argparse.Namespace(config=None, verbose=False)

        with patch("afzoffline.mailer.smtplib.SMTP") as mock_smtp:
            with pytest.raises(SystemExit):
                _cmd_test_email(args)

        mock_smtp.assert_not_called()
