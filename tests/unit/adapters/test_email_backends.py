"""
Tests for the email delivery backends.

SMTP delivery is exercised against a fake ``smtplib.SMTP`` so no server is
contacted.
"""

import smtplib
from email.message import EmailMessage

import pytest

from adapters.email.backends import (
    ConsoleEmailBackend,
    SMTPEmailBackend,
    build_message,
    get_email_backend,
)
from bpcare.config import EmailConfig
from bpcare.domain.errors import NotifierError

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 8


class FakeSMTP:
    """Records the SMTP conversation instead of opening a socket."""

    instances: list["FakeSMTP"] = []
    fail_with: Exception | None = None

    def __init__(self, host: str, port: int, timeout: float) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout
        self.started_tls = False
        self.logged_in: tuple[str, str] | None = None
        self.messages: list[EmailMessage] = []
        FakeSMTP.instances.append(self)

    def __enter__(self) -> "FakeSMTP":
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None

    def starttls(self) -> None:
        self.started_tls = True

    def login(self, user: str, password: str) -> None:
        if FakeSMTP.fail_with is not None:
            raise FakeSMTP.fail_with
        self.logged_in = (user, password)

    def send_message(self, msg: EmailMessage) -> None:
        self.messages.append(msg)


@pytest.fixture
def fake_smtp(monkeypatch: pytest.MonkeyPatch) -> type[FakeSMTP]:
    FakeSMTP.instances = []
    FakeSMTP.fail_with = None
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


@pytest.fixture
def smtp_config() -> EmailConfig:
    return EmailConfig(
        backend="smtp",
        smtp_host="smtp.example.com",
        smtp_port=2525,
        smtp_user="reports@example.com",
        smtp_password="secret",
    )


class TestBuildMessage:
    def test_plain_text_only(self) -> None:
        msg = build_message("a@example.com", "b@example.com", "Subject", "Hello")

        assert msg["From"] == "a@example.com"
        assert msg["To"] == "b@example.com"
        assert msg["Subject"] == "Subject"
        assert msg.get_content_type() == "text/plain"
        assert msg.get_content().strip() == "Hello"

    def test_html_alternative_with_inline_chart(self) -> None:
        msg = build_message(
            "a@example.com", "b@example.com", "Subject", "Hello", "<p>Hello</p>", PNG_BYTES
        )

        assert msg.get_content_type() == "multipart/alternative"
        images = [p for p in msg.walk() if p.get_content_type() == "image/png"]
        assert len(images) == 1
        assert images[0]["Content-ID"] == "<bp_chart>"
        assert images[0].get_content() == PNG_BYTES

    def test_chart_without_html_is_attached(self) -> None:
        msg = build_message("a@example.com", "b@example.com", "Subject", "Hello", image=PNG_BYTES)

        attachments = list(msg.iter_attachments())
        assert [a.get_filename() for a in attachments] == ["bp_chart.png"]


async def test_console_backend_records_and_prints(capsys: pytest.CaptureFixture[str]) -> None:
    backend = ConsoleEmailBackend(sender="dev@localhost")

    result = await backend.send("b@example.com", "Report", "Body text")

    assert result.is_ok()
    assert len(backend.sent) == 1
    assert backend.sent[0]["From"] == "dev@localhost"
    out = capsys.readouterr().out
    assert "To: b@example.com" in out
    assert "Body text" in out


async def test_smtp_backend_delivers_with_tls(
    fake_smtp: type[FakeSMTP], smtp_config: EmailConfig
) -> None:
    backend = SMTPEmailBackend(smtp_config)

    result = await backend.send("b@example.com", "Report", "Body", "<p>Body</p>", PNG_BYTES)

    assert result.is_ok()
    (server,) = fake_smtp.instances
    assert (server.host, server.port) == ("smtp.example.com", 2525)
    assert server.started_tls is True
    assert server.logged_in == ("reports@example.com", "secret")
    assert server.messages[0]["To"] == "b@example.com"
    assert server.messages[0]["From"] == "reports@example.com"


async def test_smtp_backend_without_tls(
    fake_smtp: type[FakeSMTP], smtp_config: EmailConfig
) -> None:
    backend = SMTPEmailBackend(smtp_config.model_copy(update={"use_tls": False}))

    await backend.send("b@example.com", "Report", "Body")

    assert fake_smtp.instances[0].started_tls is False


@pytest.mark.parametrize(
    "error",
    [smtplib.SMTPAuthenticationError(535, b"bad credentials"), ConnectionRefusedError()],
)
async def test_smtp_failure_is_error_result(
    fake_smtp: type[FakeSMTP], smtp_config: EmailConfig, error: Exception
) -> None:
    fake_smtp.fail_with = error
    backend = SMTPEmailBackend(smtp_config)

    result = await backend.send("b@example.com", "Report", "Body")

    assert result.is_err()
    assert isinstance(result.unwrap_err(), NotifierError)


def test_get_email_backend_selects_by_config(smtp_config: EmailConfig) -> None:
    assert isinstance(get_email_backend(EmailConfig()), ConsoleEmailBackend)
    assert isinstance(get_email_backend(smtp_config), SMTPEmailBackend)
