"""Tests for credential decoding."""

import base64

import pytest

from replcraft.credential import parse_credential, strip_credential
from replcraft.errors import CraftCredentialError

from .helpers import make_token


class TestStripCredential:
    def test_plain_token_untouched(self):
        assert strip_credential("a.b.c") == "a.b.c"

    def test_strips_whitespace_and_scheme(self):
        assert strip_credential("  http://  a.b.c") == "a.b.c"

    def test_only_leading_run_removed(self):
        assert strip_credential("http://a.b.c http://") == "a.b.c http://"


class TestParseCredential:
    def test_host_and_endpoint(self):
        cred = parse_credential(make_token("mc.example.net:28080"))
        assert cred.host == "mc.example.net:28080"
        assert cred.endpoint == "ws://mc.example.net:28080/gateway"

    def test_claims_kept(self):
        cred = parse_credential(make_token(structure=42))
        assert cred.claims["structure"] == 42

    def test_token_is_stripped_credential(self):
        raw = make_token()
        cred = parse_credential(" http://" + raw)
        assert cred.token == raw

    def test_padded_standard_base64(self):
        middle = base64.b64encode(b'{"host": "h:1"}').decode()
        cred = parse_credential(f"x.{middle}.y")
        assert cred.host == "h:1"

    @pytest.mark.parametrize(
        "raw",
        [
            "",
            "only-one-segment",
            "two.segments",
            "a..c",
            "a.!!!notbase64!!!.c",
            "a." + base64.urlsafe_b64encode(b"not json").decode() + ".c",
            "a." + base64.urlsafe_b64encode(b"[1, 2]").decode() + ".c",
            "a." + base64.urlsafe_b64encode(b'{"port": 1}').decode() + ".c",
        ],
    )
    def test_invalid_credential(self, raw):
        with pytest.raises(CraftCredentialError) as exc_info:
            parse_credential(raw)
        assert exc_info.value.kind == "invalid credential"

    def test_non_string_rejected(self):
        with pytest.raises(CraftCredentialError):
            parse_credential(None)

    def test_characters_outside_alphabet_rejected(self):
        header, claims, signature = make_token().split(".")
        corrupted = f"{header}.{claims[:8]}$#!*{claims[8:]}.{signature}"
        with pytest.raises(CraftCredentialError) as exc_info:
            parse_credential(corrupted)
        assert exc_info.value.kind == "invalid credential"
