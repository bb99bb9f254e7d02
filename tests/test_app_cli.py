"""
Tests for the command line tools.
"""

import json

import pytest
from jwcrypto import jwt

from study.applelogin.siwa.app import cli

from tests.helpers import BUNDLE_ID, KEY_ID, TEAM_ID, make_unsigned_token


class TestDecode:
    def test_prints_payloads(self, capsys):
        cli.decode([make_unsigned_token({"email": "a@b.com"}), "garbage"])

        lines = capsys.readouterr().out.splitlines()
        assert [json.loads(line) for line in lines] == [{"email": "a@b.com"}, {}]


class TestSecret:
    def test_prints_verifiable_secret(self, monkeypatch, capsys, private_key_pem, public_key):
        monkeypatch.setenv("TEAM_ID", TEAM_ID)
        monkeypatch.setenv("BUNDLE_ID", BUNDLE_ID)
        monkeypatch.setenv("KEY_ID", KEY_ID)
        monkeypatch.setenv("PRIVATE_KEY", private_key_pem.decode("utf-8"))

        cli.secret([])

        token = capsys.readouterr().out.strip()
        claims = json.loads(jwt.JWT(key=public_key, jwt=token).claims)
        assert claims["iss"] == TEAM_ID
        assert claims["sub"] == BUNDLE_ID

    def test_invalid_configuration_exits(self, monkeypatch):
        for name in ("TEAM_ID", "BUNDLE_ID", "KEY_ID", "PRIVATE_KEY"):
            monkeypatch.delenv(name, raising=False)

        with pytest.raises(SystemExit) as exc_info:
            cli.secret([])

        assert exc_info.value.code == 2


@pytest.mark.asyncio
class TestRealRevoke:
    async def test_confirmed(self, settings, apple):
        assert await cli.realRevoke(settings, "R1")
        assert apple.revoke_requests[0]["token"] == "R1"

    async def test_unconfirmed(self, settings, apple):
        apple.revoke_status = 400
        assert not await cli.realRevoke(settings, "R1")
