"""Tests for HMAC request signing."""

import pytest

from services.webhook_auth import (
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    SignatureError,
    compute_signature,
    sign_request,
    verify_bearer,
    verify_signature,
)

SECRET = "s3cret"
BODY = b'{"galleryId":"deadbeef_x","imageIndex":1}'
NOW = 1_760_000_000


def _verify(headers, body=BODY, secret=SECRET, now=NOW, tolerance=300):
    verify_signature(
        secret,
        body,
        headers.get(TIMESTAMP_HEADER),
        headers.get(SIGNATURE_HEADER),
        tolerance_seconds=tolerance,
        now=now,
    )


class TestVerifySignature:
    def test_valid_signature(self):
        headers = sign_request(SECRET, BODY, now=NOW)
        assert headers[SIGNATURE_HEADER].startswith("sha256=")
        _verify(headers)

    def test_within_tolerance(self):
        _verify(sign_request(SECRET, BODY, now=NOW - 299))

    def test_wrong_secret(self):
        with pytest.raises(SignatureError):
            _verify(sign_request("other", BODY, now=NOW))

    def test_tampered_body(self):
        with pytest.raises(SignatureError):
            _verify(sign_request(SECRET, BODY, now=NOW), body=BODY.replace(b"1", b"2"))

    @pytest.mark.parametrize("offset", [-301, 301])
    def test_stale_or_future_timestamp(self, offset):
        with pytest.raises(SignatureError, match="tolerance"):
            _verify(sign_request(SECRET, BODY, now=NOW + offset))

    def test_missing_headers(self):
        with pytest.raises(SignatureError, match="Missing"):
            _verify({})

    def test_unconfigured_secret_rejects_everything(self):
        headers = sign_request("", BODY, now=NOW)
        with pytest.raises(SignatureError, match="not configured"):
            _verify(headers, secret=None)

    def test_non_numeric_timestamp(self):
        headers = {TIMESTAMP_HEADER: "yesterday", SIGNATURE_HEADER: compute_signature(SECRET, "yesterday", BODY)}
        with pytest.raises(SignatureError):
            _verify(headers)

    def test_non_ascii_signature(self):
        headers = {TIMESTAMP_HEADER: str(NOW), SIGNATURE_HEADER: "sha256=ü"}
        with pytest.raises(SignatureError, match="mismatch"):
            _verify(headers)


class TestBearer:
    def test_matching_token(self):
        assert verify_bearer("cron", "Bearer cron")

    @pytest.mark.parametrize("header", [None, "", "Bearer wrong", "cron", "bearer cron"])
    def test_rejected(self, header):
        assert not verify_bearer("cron", header)

    def test_unset_token_rejects(self):
        assert not verify_bearer(None, "Bearer ")
