import hashlib
import hmac

from backoffice.services.clickup_webhooks import (
    extract_event_type,
    filter_forwarded_headers,
    verify_clickup_signature,
)

SECRET = "shared-secret"
BODY = b'{"event":"taskStatusUpdated","task_id":"9hz"}'


def test_no_secret_accepts_everything():
    assert verify_clickup_signature(BODY, {}, None) is True
    assert verify_clickup_signature(BODY, {}, "") is True


def test_hmac_hex_signature_is_accepted():
    signature = hmac.new(SECRET.encode(), BODY, hashlib.sha256).hexdigest()

    assert verify_clickup_signature(BODY, {"X-Signature": signature}, SECRET) is True


def test_signature_header_lookup_is_case_insensitive():
    signature = hmac.new(SECRET.encode(), BODY, hashlib.sha256).hexdigest()

    assert verify_clickup_signature(BODY, {"x-clickup-signature": signature}, SECRET) is True


def test_body_plus_secret_digest_is_accepted():
    signature = hashlib.sha256(BODY + SECRET.encode()).hexdigest()

    assert verify_clickup_signature(BODY, {"x-signature": signature}, SECRET) is True


def test_missing_signature_is_rejected():
    assert verify_clickup_signature(BODY, {"content-type": "application/json"}, SECRET) is False


def test_signature_for_different_body_is_rejected():
    signature = hmac.new(SECRET.encode(), b"{}", hashlib.sha256).hexdigest()

    assert verify_clickup_signature(BODY, {"X-Signature": signature}, SECRET) is False


def test_non_ascii_signature_is_rejected_without_raising():
    assert verify_clickup_signature(BODY, {"X-Signature": "ünïcode"}, SECRET) is False


def test_extract_event_type_prefers_event_then_type():
    assert extract_event_type({"event": "taskCreated", "type": "x"}) == "taskCreated"
    assert extract_event_type({"type": "taskDeleted"}) == "taskDeleted"
    assert extract_event_type({}) == "unknown"
    assert extract_event_type(["not", "a", "dict"]) == "unknown"


def test_filter_forwarded_headers_keeps_only_x_headers():
    headers = {
        "x-signature": "abc",
        "X-Webhook-Id": "1",
        "content-type": "application/json",
        "authorization": "Bearer nope",
    }

    assert filter_forwarded_headers(headers) == {"x-signature": "abc", "X-Webhook-Id": "1"}
