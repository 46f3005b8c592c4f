from __future__ import annotations

from pyopmon._redact import redact_for_log, redact_url


def test_redact_for_log_redacts_sensitive_keys() -> None:
    payload = {
        "videoId": "v1",
        "token": "abc",
        "Authorization": "Bearer xyz",
        "nested": {"password": "pw", "percent": 12},
    }

    redacted = redact_for_log(payload)
    assert redacted["videoId"] == "v1"
    assert redacted["token"] == "<redacted>"
    assert redacted["Authorization"] == "<redacted>"
    assert redacted["nested"]["password"] == "<redacted>"
    assert redacted["nested"]["percent"] == 12


def test_redact_for_log_masks_signed_urls() -> None:
    redacted = redact_for_log({"videoUrl": "https://user:pw@cdn.example/v.mp4?X-Amz-Signature=abc"})
    assert redacted["videoUrl"] == "https://cdn.example/v.mp4?<redacted>"


def test_redact_url_keeps_plain_urls() -> None:
    assert redact_url("http://localhost:3000/admin/api/logs/stream") == "http://localhost:3000/admin/api/logs/stream"


def test_redact_for_log_truncates_long_strings() -> None:
    long_value = "x" * 600
    redacted = redact_for_log({"value": long_value}, max_string=10)
    assert redacted["value"].startswith("x" * 10)
    assert "<truncated>" in redacted["value"]
