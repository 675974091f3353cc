"""Tests for the operational CLI."""

import json
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from conftest import PDF_SECRET, make_settings
from convention_fulfillment import cli as cli_module
from convention_fulfillment.cli import FulfillmentCli
from convention_fulfillment.security.download_tokens import SecureDownloadService
from convention_fulfillment.security.rate_limit import InMemoryQuotaStore


@pytest.fixture
def cli(monkeypatch):
    monkeypatch.setattr(cli_module, "get_settings", make_settings)
    return FulfillmentCli()


class TestParser:
    def test_no_command_prints_help(self, cli, capsys):
        assert cli.run([]) == 1
        assert "validate-qr" in capsys.readouterr().out

    def test_secure_link_defaults(self, cli):
        args = cli.parser.parse_args(["secure-link", "DINNER_1735000000000_2348012345678"])

        assert args.expires_in == 86400
        assert args.max_downloads == 10

    def test_metrics_format_choices(self, cli):
        with pytest.raises(SystemExit):
            cli.parser.parse_args(["metrics", "--format", "xml"])


class TestValidateQR:
    """Desk-side code checks."""

    def test_valid_code(self, cli, qr_service, capsys):
        issued = qr_service.issue("dinner", "rec-1", "user-1", lifetime=timedelta(days=1))

        code = cli.run(["validate-qr", issued.code])

        output = json.loads(capsys.readouterr().out)
        assert code == 0
        assert output["valid"] is True
        assert output["data"]["id"] == "rec-1"

    def test_forged_code(self, cli, capsys):
        code = cli.run(["validate-qr", '{"type":"dinner","id":"1","userId":"2","validUntil":"x"}'])

        output = json.loads(capsys.readouterr().out)
        assert code == 1
        assert output["valid"] is False
        assert output["error"] == "Invalid QR code signature"


class TestSecureLink:
    def test_prints_verifiable_url(self, cli, capsys):
        code = cli.run(
            ["secure-link", "DINNER_1735000000000_2348012345678", "--max-downloads", "2"]
        )

        url = urlparse(capsys.readouterr().out.strip())
        token = parse_qs(url.query)["token"][0]
        claims = SecureDownloadService(PDF_SECRET, InMemoryQuotaStore()).parse_token(token)
        assert code == 0
        assert url.netloc == "convention.test"
        assert claims.max_downloads == 2

    def test_invalid_reference(self, cli, capsys):
        assert cli.run(["secure-link", "bad"]) == 1
        assert "Invalid payment reference format" in capsys.readouterr().err

    def test_non_positive_lifetime(self, cli, capsys):
        code = cli.run(
            ["secure-link", "DINNER_1735000000000_2348012345678", "--expires-in", "-5"]
        )
        assert code == 1
        assert "ERROR" in capsys.readouterr().err
