"""Unit tests for the SMTP notifier.

smtplib.SMTP is patched; no mail server is contacted.
"""

import smtplib
from unittest.mock import MagicMock, patch

import pytest

from vigil_core.providers.notifier import SmtpConfig, SmtpNotifier, get_notifier


@pytest.fixture
def smtp_config():
    return SmtpConfig(
        host="smtp.test",
        port=2525,
        username="mailer",
        password="secret",
        use_tls=True,
        sender="Moderation <moderation@example.com>",
    )


@pytest.fixture
def mock_smtp():
    """Patch smtplib.SMTP and yield the server used inside ``with``."""
    with patch("vigil_core.providers.notifier.smtplib.SMTP") as smtp_cls:
        server = MagicMock()
        server.send_message.return_value = {}
        smtp_cls.return_value.__enter__.return_value = server
        yield smtp_cls, server


def send(notifier):
    return notifier.send(
        "content-flagged",
        "ada@example.com",
        "Ada",
        {"content_kind": "COMMENT", "reason": "threat"},
    )


class TestSmtpConfig:
    """Tests for SMTP configuration."""

    def test_host_required(self):
        with pytest.raises(ValueError):
            SmtpConfig(host="")

    def test_from_settings(self, monkeypatch):
        monkeypatch.setenv("SMTP_HOST", "mail.internal")
        monkeypatch.setenv("SMTP_PORT", "25")
        monkeypatch.setenv("SMTP_USE_TLS", "false")

        notifier = get_notifier()

        assert notifier.config.host == "mail.internal"
        assert notifier.config.port == 25
        assert notifier.config.use_tls is False


class TestBuildMessage:
    """Tests for message rendering."""

    def test_multipart_alternative(self, smtp_config):
        msg = SmtpNotifier(smtp_config).build_message(
            "content-rejected", "ada@example.com", "Ada", {"content_kind": "REVIEW", "reason": "spam"}
        )

        assert msg.get_content_subtype() == "alternative"
        assert msg["Subject"] == "Your content has been rejected"
        assert msg["To"] == "ada@example.com"
        assert msg["From"] == "Moderation <moderation@example.com>"
        assert msg["Message-ID"]
        plain, html_part = msg.get_payload()
        assert plain.get_content_type() == "text/plain"
        assert html_part.get_content_type() == "text/html"
        assert "spam" in plain.get_payload(decode=True).decode()

    def test_unknown_kind(self, smtp_config):
        with pytest.raises(ValueError):
            SmtpNotifier(smtp_config).build_message("content-deleted", "a@example.com", "A", {})


class TestSend:
    """Tests for delivery results."""

    def test_success(self, smtp_config, mock_smtp):
        smtp_cls, server = mock_smtp

        result = send(SmtpNotifier(smtp_config))

        assert result.success
        assert result.message_id
        smtp_cls.assert_called_once_with("smtp.test", 2525, timeout=10.0)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("mailer", "secret")
        server.send_message.assert_called_once()

    def test_no_tls_no_login(self, mock_smtp):
        _, server = mock_smtp

        send(SmtpNotifier(SmtpConfig(host="smtp.test", use_tls=False)))

        server.starttls.assert_not_called()
        server.login.assert_not_called()

    def test_recipient_refused_is_permanent(self, smtp_config, mock_smtp):
        _, server = mock_smtp
        server.send_message.side_effect = smtplib.SMTPRecipientsRefused(
            {"ada@example.com": (550, b"no such user")}
        )

        result = send(SmtpNotifier(smtp_config))

        assert not result.success
        assert not result.retryable

    def test_partial_refusal_reported(self, smtp_config, mock_smtp):
        _, server = mock_smtp
        server.send_message.return_value = {"ada@example.com": (550, b"no such user")}

        result = send(SmtpNotifier(smtp_config))

        assert not result.success
        assert not result.retryable

    def test_4xx_reply_is_retryable(self, smtp_config, mock_smtp):
        _, server = mock_smtp
        server.send_message.side_effect = smtplib.SMTPDataError(451, b"try again later")

        result = send(SmtpNotifier(smtp_config))

        assert not result.success
        assert result.retryable
        assert "451" in result.error_message
        assert "try again later" in result.error_message

    def test_5xx_reply_is_permanent(self, smtp_config, mock_smtp):
        _, server = mock_smtp
        server.send_message.side_effect = smtplib.SMTPDataError(554, b"rejected")

        assert send(SmtpNotifier(smtp_config)).retryable is False

    def test_connection_failure_is_retryable(self, smtp_config):
        with patch(
            "vigil_core.providers.notifier.smtplib.SMTP",
            side_effect=ConnectionRefusedError("refused"),
        ):
            result = send(SmtpNotifier(smtp_config))

        assert not result.success
        assert result.retryable
