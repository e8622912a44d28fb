"""Tests for registration file generation."""

import re
import stat

import yaml

from as_webhook import main
from as_webhook.registration import generate_registration, write_registration

HEX_TOKEN = re.compile(r"^[0-9a-f]{64}$")


class TestGenerate:
    """Building the registration descriptor."""

    def test_generates_tokens(self):
        reg = generate_registration("http://localhost:8080")

        assert reg.id == "matrix-as-webhook"
        assert reg.url == "http://localhost:8080"
        assert HEX_TOKEN.match(reg.as_token)
        assert HEX_TOKEN.match(reg.hs_token)
        assert reg.as_token != reg.hs_token
        assert reg.rate_limited is False

    def test_keeps_given_as_token(self):
        reg = generate_registration("https://app.example.com", as_token="my-token")
        assert reg.as_token == "my-token"
        assert HEX_TOKEN.match(reg.hs_token)

    def test_tokens_unique(self):
        assert generate_registration("http://a").hs_token != generate_registration("http://a").hs_token


class TestWrite:
    """Writing the registration YAML."""

    def test_write(self, tmp_path):
        reg = generate_registration("http://localhost:8080", as_token="tok")
        path = write_registration(reg, tmp_path / "nested" / "dir" / "registration.yaml")

        data = yaml.safe_load(path.read_text())
        assert data["id"] == "matrix-as-webhook"
        assert data["url"] == "http://localhost:8080"
        assert data["as_token"] == "tok"
        assert data["rate_limited"] is False
        assert data["namespaces"] == {}
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_cli_generate_registration(self, tmp_path, capsys):
        path = tmp_path / "registration.yaml"

        main.run(["--generate-registration", str(path), "--server", "https://as.example.com"])

        data = yaml.safe_load(path.read_text())
        assert data["url"] == "https://as.example.com"
        assert HEX_TOKEN.match(data["as_token"])
        assert "Registration file generated" in capsys.readouterr().out
