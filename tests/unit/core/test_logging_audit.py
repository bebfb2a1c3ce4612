from unittest.mock import MagicMock, patch

from resgrid.shared.core.logging import audit_log, pii_redactor, setup_logging


def test_pii_redactor_nested():
    """Credentials are redacted by key, emails by value, at any depth."""
    event_dict = {
        "user_id": 123,
        "email": "pii@example.com",
        "nested": {"token": "secret_123", "safe": "data"},
        "list": [{"password": "pass"}, "safe_item"],
    }

    redacted = pii_redactor(None, None, event_dict)

    assert redacted["email"] == "[EMAIL_REDACTED]"
    assert redacted["nested"]["token"] == "[REDACTED]"
    assert redacted["nested"]["safe"] == "data"
    assert redacted["list"][0]["password"] == "[REDACTED]"
    assert redacted["list"][1] == "safe_item"
    assert redacted["user_id"] == 123


def test_pii_redactor_bearer_tokens_in_text():
    event_dict = {"event": "request_failed", "error": "header was Bearer eyJhbGciOi.abc.def"}

    redacted = pii_redactor(None, None, event_dict)

    assert "eyJhbGciOi" not in redacted["error"]
    assert "Bearer [REDACTED]" in redacted["error"]


def test_pii_redactor_suffix_keys():
    redacted = pii_redactor(None, None, {"jwt_secret": "s", "refresh_token": "t", "cursor": "res-1"})

    assert redacted["jwt_secret"] == "[REDACTED]"
    assert redacted["refresh_token"] == "[REDACTED]"
    assert redacted["cursor"] == "res-1"


def test_setup_logging_uses_console_renderer_in_debug():
    settings = MagicMock(DEBUG=True)
    with patch("resgrid.shared.core.logging.get_settings", return_value=settings), \
         patch("resgrid.shared.core.logging.structlog.configure") as mock_configure:
        setup_logging()

    processors = mock_configure.call_args.kwargs["processors"]
    assert pii_redactor in processors
    assert processors[-1].__class__.__name__ == "ConsoleRenderer"


def test_setup_logging_uses_json_renderer_by_default():
    settings = MagicMock(DEBUG=False)
    with patch("resgrid.shared.core.logging.get_settings", return_value=settings), \
         patch("resgrid.shared.core.logging.structlog.configure") as mock_configure:
        setup_logging()

    processors = mock_configure.call_args.kwargs["processors"]
    assert processors[-1].__class__.__name__ == "JSONRenderer"


def test_audit_log_emits_on_audit_logger():
    mock_logger = MagicMock()
    with patch("resgrid.shared.core.logging.structlog.get_logger", return_value=mock_logger) as get_logger:
        audit_log("user_role_changed", "user-1", {"new_role": "ADMIN"})

    get_logger.assert_called_once_with("audit")
    mock_logger.info.assert_called_once_with(
        "user_role_changed", user_id="user-1", metadata={"new_role": "ADMIN"}
    )
