"""Tests for security utilities (updatewatch/utils/security.py).

Tests log sanitization and secret masking:
- Log injection prevention via sanitize_log_message()
- Secret masking for exposed trigger configuration
"""

from updatewatch.utils.security import mask, sanitize_log_message


class TestSanitizeLogMessage:
    """Test suite for log injection prevention."""

    def test_removes_newlines(self):
        """Test sanitize_log_message() removes newline characters."""
        assert sanitize_log_message("Container\nmalicious\nlog") == "Containermaliciouslog"

    def test_removes_carriage_returns_and_tabs(self):
        """Test sanitize_log_message() removes carriage returns and tabs."""
        assert sanitize_log_message("User: admin\r\nPassword:\tsecret") == "User: adminPassword:secret"

    def test_removes_control_characters(self):
        """Test sanitize_log_message() removes control characters and ANSI escapes."""
        sanitized = sanitize_log_message("text\x00null\x01control\x1b[31mred\x7f")

        assert "\x00" not in sanitized
        assert "\x1b" not in sanitized
        assert "\x7f" not in sanitized

    def test_preserves_normal_text(self):
        """Test sanitize_log_message() preserves normal text."""
        message = "New tag found for container homeassistant (2021.6.4 -> 2021.6.5)!"
        assert sanitize_log_message(message) == message

    def test_handles_non_string_input(self):
        """Test sanitize_log_message() handles None and numbers."""
        assert sanitize_log_message(None) == ""
        assert sanitize_log_message(123) == "123"
        assert sanitize_log_message(45.67) == "45.67"

    def test_prevents_log_injection_attacks(self):
        """Test forged log lines end up on a single line."""
        malicious = "nginx\n[ERROR] Fake error message\n[CRITICAL] System compromised"
        sanitized = sanitize_log_message(malicious)

        assert "\n" not in sanitized
        assert sanitized.count("[ERROR]") == 1


class TestMask:
    """Test suite for mask()."""

    def test_masks_middle_of_secret(self):
        """Test only the first and last characters stay visible."""
        assert mask("token") == "t***n"
        assert mask("xoxb-1234-abcd") == "x************d"

    def test_masks_with_custom_visible_chars(self):
        """Test the number of visible characters is configurable."""
        assert mask("secret-token", visible_chars=2) == "se********en"

    def test_masks_short_values_completely(self):
        """Test values shorter than the visible parts are fully masked."""
        assert mask("a") == "*"
        assert mask("abc", visible_chars=2) == "***"

    def test_masks_empty_values(self):
        """Test empty values give None."""
        assert mask(None) is None
        assert mask("") is None

    def test_custom_mask_character(self):
        """Test a custom mask character."""
        assert mask("password", mask_char="#") == "p######d"

    def test_keeps_length(self):
        """Test the masked value keeps the secret length."""
        secret = "https://discord.com/api/webhooks/123/abc"
        assert len(mask(secret)) == len(secret)
