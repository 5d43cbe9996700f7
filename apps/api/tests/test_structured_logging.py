"""Tests for the PII-safe logging helpers."""

from aris.core.structured_logging import build_log_context, mask_email, safe_url


def test_log_context_keeps_only_given_fields():
    assert build_log_context(org_id="org-7", method="POST") == {"org_id": "org-7", "method": "POST"}
    assert build_log_context() == {}


def test_log_context_with_every_field():
    context = build_log_context(
        user_id="u", org_id="o", request_id="r", route="/api/emails", method="GET"
    )
    assert set(context) == {"user_id", "org_id", "request_id", "route", "method"}


def test_mask_email():
    assert mask_email("jonathan@acme.com") == "jon...@acme.com"
    assert mask_email("al@acme.com") == "al...@acme.com"
    assert mask_email("no-domain") == "no-..."
    assert mask_email(None) == ""


def test_safe_url_drops_query_and_fragment():
    assert safe_url("https://graph.microsoft.com/v1.0/me?access_token=x#frag") == "https://graph.microsoft.com/v1.0/me"
    assert safe_url("") == ""
