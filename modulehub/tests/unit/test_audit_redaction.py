from __future__ import annotations

from modulehub.services.audit import sanitize_metadata


def test_audit_redacts_tokens_and_secrets() -> None:
    payload = {
        "api_key": "mhk_abc_secret",
        "client_secret": "super-secret",
        "nested": {"authorization": "Bearer abc", "module_slug": "simple-text"},
        "items": [{"password": "pw"}, {"permissions": ["read"]}],
        "safe": "value",
    }
    sanitized = sanitize_metadata(payload)
    assert sanitized["api_key"] == "[REDACTED]"
    assert sanitized["client_secret"] == "[REDACTED]"
    assert sanitized["nested"]["authorization"] == "[REDACTED]"
    assert sanitized["nested"]["module_slug"] == "simple-text"
    assert sanitized["items"][0]["password"] == "[REDACTED]"
    assert sanitized["items"][1]["permissions"] == ["read"]
    assert sanitized["safe"] == "value"


def test_audit_redacts_business_content() -> None:
    # Text bodies never reach the audit log.
    sanitized = sanitize_metadata({"content": "confidential note", "text_id": "t1"})
    assert sanitized == {"content": "[REDACTED]", "text_id": "t1"}
