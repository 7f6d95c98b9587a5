import pytest
import requests

from common.errors import UpstreamError
from config import MailConfig, parse_duration
from services import email_service
from services.email_service import EmailService, format_vnd, render_placeholders
from services.location_client import LocationClient


class _Response:
    def __init__(self, data, status=200):
        self._data = data
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def json(self):
        return self._data


class _FakeHttp:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, params))
        return self.response


def test_provinces_are_trimmed_to_code_and_name():
    http = _FakeHttp(_Response([{"code": 1, "name": "Thành phố Hà Nội", "division_type": "thành phố trung ương"}]))
    client = LocationClient("https://provinces.test/api/", session=http)
    assert client.provinces() == [{"code": 1, "name": "Thành phố Hà Nội"}]
    assert http.calls[0][0] == "https://provinces.test/api/p/"


def test_districts_request_depth_two():
    http = _FakeHttp(_Response({"code": 79, "districts": [{"code": 760, "name": "Quận 1"}]}))
    assert LocationClient("https://provinces.test/api", session=http).districts(79) == [{"code": 760, "name": "Quận 1"}]
    assert http.calls[0] == ("https://provinces.test/api/p/79", {"depth": 2})


def test_upstream_failure_is_wrapped():
    client = LocationClient("https://provinces.test/api", session=_FakeHttp(_Response({}, status=503)))
    with pytest.raises(UpstreamError):
        client.wards(760)


def test_placeholders_and_currency_format():
    assert render_placeholders("Chào {{name}}!", {"name": "Lan"}) == "Chào Lan!"
    assert format_vnd(1250000) == "1.250.000₫"


def test_email_skipped_without_smtp():
    assert EmailService(MailConfig(user="", password="")).send_email("a@example.com", "Hi", "<p>x</p>") is False


class _FakeSMTP:
    sent = []

    def __init__(self, host, port, timeout=None):
        self.host = host

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        pass

    def login(self, user, password):
        pass

    def sendmail(self, sender, recipients, message):
        if recipients[0].startswith("bounce"):
            raise email_service.smtplib.SMTPRecipientsRefused({recipients[0]: (550, b"no such user")})
        self.sent.append((sender, recipients, message))


def test_marketing_campaign_counts_successes(monkeypatch):
    _FakeSMTP.sent = []
    monkeypatch.setattr(email_service.smtplib, "SMTP", _FakeSMTP)
    mailer = EmailService(MailConfig(user="shop@example.com", password="app-pass"))
    result = mailer.send_marketing(
        [{"email": "lan@example.com", "full_name": "Lan"}, {"email": "bounce@example.com", "full_name": "X"}],
        "Ưu đãi tháng 10",
        "<p>Chào {{name}}</p>",
    )
    assert result == {"total": 2, "success": 1}
    assert _FakeSMTP.sent[0][1] == ["lan@example.com"]


def test_parse_duration():
    assert parse_duration("24h") == 86400
    assert parse_duration("7d") == 7 * 86400
    assert parse_duration("30m") == 1800
    assert parse_duration("3600") == 3600
    assert parse_duration(None, 60) == 60
    with pytest.raises(ValueError):
        parse_duration("soon")
