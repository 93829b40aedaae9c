from __future__ import annotations

from farmguard._redact import redact_for_log, redact_url


def test_redact_for_log_redacts_sensitive_keys() -> None:
    payload = {
        "topic": "realtime:fire_zones",
        "event": "phx_join",
        "payload": {
            "access_token": "eyJhbGciOi",
            "config": {"postgres_changes": [{"event": "*", "schema": "public", "table": "fire_zones"}]},
        },
        "headers": {"apikey": "anon", "Authorization": "Bearer anon"},
    }

    redacted = redact_for_log(payload)
    assert redacted["payload"]["access_token"] == "<redacted>"
    assert redacted["headers"]["apikey"] == "<redacted>"
    assert redacted["headers"]["Authorization"] == "<redacted>"
    assert redacted["payload"]["config"]["postgres_changes"][0]["table"] == "fire_zones"
    assert redacted["topic"] == "realtime:fire_zones"


def test_redact_for_log_truncates_long_strings() -> None:
    long_value = "x" * 600
    redacted = redact_for_log({"value": long_value}, max_string=10)
    assert redacted["value"].startswith("x" * 10)
    assert "<truncated>" in redacted["value"]


def test_redact_url_masks_api_key_only() -> None:
    url = "wss://demo.supabase.co/realtime/v1/websocket?apikey=secret&vsn=1.0.0"
    assert redact_url(url) == "wss://demo.supabase.co/realtime/v1/websocket?apikey=<redacted>&vsn=1.0.0"
    assert redact_url("https://demo.supabase.co/rest/v1/fire_zones") == "https://demo.supabase.co/rest/v1/fire_zones"
