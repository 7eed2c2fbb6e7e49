"""Tests for notification trigger providers (updatewatch/services/triggers/).

HTTP providers are tested by patching their client's ``request``; the SMTP
provider by patching ``aiosmtplib.send``.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import aiosmtplib
import httpx
import pytest
from pydantic import ValidationError

from updatewatch.exceptions import SSRFProtectionError, TriggerDeliveryError
from updatewatch.schemas.trigger import (
    DiscordConfiguration,
    GotifyConfiguration,
    NtfyConfiguration,
    PushoverConfiguration,
    SlackConfiguration,
    SmtpConfiguration,
    TelegramConfiguration,
    TriggerConfiguration,
)
from updatewatch.services.triggers.base import compose_batch_message, compose_message
from updatewatch.services.triggers.discord import DiscordTrigger
from updatewatch.services.triggers.email import SmtpTrigger
from updatewatch.services.triggers.gotify import GotifyTrigger
from updatewatch.services.triggers.ntfy import NtfyTrigger
from updatewatch.services.triggers.pushover import PUSHOVER_API_URL, PushoverTrigger
from updatewatch.services.triggers.slack import SlackTrigger
from updatewatch.services.triggers.telegram import TelegramTrigger, escape_markdown

TITLE = "New tag found for container nginx"
BODY = "Container nginx running with tag 1.2.3 can be updated to tag 1.3.0"


def json_response(data, url="https://example.com", status_code=200):
    return httpx.Response(status_code, json=data, request=httpx.Request("POST", url))


def mock_request(provider, response):
    """Replace the provider's HTTP client request with an AsyncMock."""
    request = AsyncMock(return_value=response)
    provider.client.request = request
    return request


class TestNtfy:
    """Test suite for the ntfy provider."""

    @pytest.mark.asyncio
    async def test_publishes_json_message(self, trigger_context, make_container):
        """Test the rendered title and body are published to the topic."""
        provider = NtfyTrigger("home", NtfyConfiguration(topic="updates", priority=4), trigger_context)
        request = mock_request(provider, json_response({"id": "msg-1"}))

        result = await provider.trigger(make_container())

        assert result == {"id": "msg-1"}
        request.assert_awaited_once_with(
            "POST",
            "https://ntfy.sh",
            json={"topic": "updates", "title": TITLE, "message": BODY, "priority": 4},
        )

    @pytest.mark.asyncio
    async def test_batch_message(self, trigger_context, make_container):
        """Test batch messages list every container."""
        provider = NtfyTrigger("home", NtfyConfiguration(topic="updates"), trigger_context)
        request = mock_request(provider, json_response({"id": "msg-1"}))
        containers = [make_container(), make_container(container_id="c2", name="redis")]

        await provider.trigger_batch(containers)

        payload = request.call_args.kwargs["json"]
        assert payload["title"] == "2 updates available"
        assert payload["message"] == (
            f"- {BODY}\n\n"
            "- Container redis running with tag 1.2.3 can be updated to tag 1.3.0\n"
        )

    def test_token_auth_header(self, trigger_context):
        """Test token authentication uses a bearer header."""
        provider = NtfyTrigger(
            "home", NtfyConfiguration(topic="updates", auth={"token": "tk_secret"}), trigger_context
        )
        assert provider.client.headers["Authorization"] == "Bearer tk_secret"
        assert provider.mask_configuration()["auth"]["token"] == "t*******t"

    @pytest.mark.asyncio
    async def test_http_error_raises_delivery_error(self, trigger_context, make_container):
        """Test HTTP error statuses raise TriggerDeliveryError."""
        provider = NtfyTrigger("home", NtfyConfiguration(topic="updates"), trigger_context)
        mock_request(provider, json_response({"error": "forbidden"}, status_code=403))

        with pytest.raises(TriggerDeliveryError, match="HTTP 403"):
            await provider.trigger(make_container())

    @pytest.mark.asyncio
    async def test_connection_error_raises_delivery_error(self, trigger_context, make_container):
        """Test connection failures raise TriggerDeliveryError."""
        provider = NtfyTrigger("home", NtfyConfiguration(topic="updates"), trigger_context)
        provider.client.request = AsyncMock(side_effect=httpx.ConnectError("Connection refused"))

        with pytest.raises(TriggerDeliveryError, match="Connection error"):
            await provider.trigger(make_container())

    def test_rejects_non_http_scheme(self, trigger_context):
        """Test the server URL must be http(s)."""
        with pytest.raises(SSRFProtectionError):
            NtfyTrigger("home", NtfyConfiguration(topic="t", url="ftp://ntfy.lan"), trigger_context)


class TestGotify:
    """Test suite for the Gotify provider."""

    @pytest.mark.asyncio
    async def test_creates_message(self, trigger_context, make_container):
        """Test messages are posted to /message with the app token header."""
        provider = GotifyTrigger(
            "home", GotifyConfiguration(url="http://gotify.lan/", token="AbCdEf", priority=5), trigger_context
        )
        request = mock_request(provider, json_response({"id": 12}))

        result = await provider.trigger(make_container())

        assert result == {"id": 12}
        assert provider.client.headers["X-Gotify-Key"] == "AbCdEf"
        request.assert_awaited_once_with(
            "POST", "http://gotify.lan/message", json={"title": TITLE, "message": BODY, "priority": 5}
        )


class TestPushover:
    """Test suite for the Pushover provider."""

    @pytest.mark.asyncio
    async def test_sends_form_message(self, trigger_context, make_container):
        """Test messages are sent as form data with credentials."""
        provider = PushoverTrigger(
            "phone", PushoverConfiguration(user="u-key", token="app-token", device="pixel"), trigger_context
        )
        request = mock_request(provider, json_response({"status": 1}, url=PUSHOVER_API_URL))

        result = await provider.trigger(make_container())

        assert result == {
            "title": TITLE,
            "message": BODY,
            "priority": 0,
            "sound": "pushover",
            "html": 0,
            "device": "pixel",
        }
        data = request.call_args.kwargs["data"]
        assert data["token"] == "app-token"
        assert data["user"] == "u-key"

    def test_emergency_priority_requires_retry_and_expire(self):
        """Test priority 2 configuration validation."""
        with pytest.raises(ValidationError):
            PushoverConfiguration(user="u", token="t", priority=2)
        configuration = PushoverConfiguration(user="u", token="t", priority=2, retry=60, expire=3600)
        assert configuration.retry == 60

    def test_emergency_message_includes_retry(self, trigger_context):
        """Test emergency messages carry retry and expire."""
        provider = PushoverTrigger(
            "phone",
            PushoverConfiguration(user="u", token="t", priority=2, retry=60, expire=3600),
            trigger_context,
        )
        message = provider.build_message("title", "body")
        assert (message["retry"], message["expire"]) == (60, 3600)


class TestSlack:
    """Test suite for the Slack provider."""

    @pytest.mark.asyncio
    async def test_posts_message(self, trigger_context, make_container):
        """Test chat.postMessage is called with the formatted text."""
        provider = SlackTrigger("ops", SlackConfiguration(token="xoxb-1", channel="C123"), trigger_context)
        request = mock_request(provider, json_response({"ok": True, "channel": "C123", "ts": "1.5"}))

        result = await provider.trigger(make_container())

        assert result["ts"] == "1.5"
        request.assert_awaited_once_with(
            "POST",
            "https://slack.com/api/chat.postMessage",
            json={"channel": "C123", "text": f"*{TITLE}*\n\n{BODY}"},
        )

    @pytest.mark.asyncio
    async def test_disabletitle_sends_body_only(self, trigger_context, make_container):
        """Test disabletitle drops the title."""
        provider = SlackTrigger(
            "ops", SlackConfiguration(token="xoxb-1", channel="C123", disabletitle=True), trigger_context
        )
        request = mock_request(provider, json_response({"ok": True}))

        await provider.trigger(make_container())

        assert request.call_args.kwargs["json"]["text"] == BODY

    @pytest.mark.asyncio
    async def test_api_error_raises(self, trigger_context, make_container):
        """Test ok=false responses raise TriggerDeliveryError."""
        provider = SlackTrigger("ops", SlackConfiguration(token="xoxb-1", channel="C123"), trigger_context)
        mock_request(provider, json_response({"ok": False, "error": "channel_not_found"}))

        with pytest.raises(TriggerDeliveryError, match="channel_not_found"):
            await provider.trigger(make_container())

    @pytest.mark.asyncio
    async def test_dismiss_deletes_message(self, trigger_context):
        """Test dismiss deletes the posted message."""
        provider = SlackTrigger("ops", SlackConfiguration(token="xoxb-1", channel="C123"), trigger_context)
        request = mock_request(provider, json_response({"ok": True}))

        await provider.dismiss("local_nginx", {"ok": True, "channel": "C999", "ts": "1.5"})
        await provider.dismiss("local_nginx", {"ok": True})

        request.assert_awaited_once_with(
            "POST", "https://slack.com/api/chat.delete", json={"channel": "C999", "ts": "1.5"}
        )


class TestDiscord:
    """Test suite for the Discord provider."""

    WEBHOOK = "https://discord.com/api/webhooks/1/abc"

    @pytest.mark.asyncio
    async def test_posts_embed(self, trigger_context, make_container):
        """Test the webhook receives an embed card."""
        with patch("updatewatch.utils.url_validation.resolve_hostname", return_value="162.159.128.233"):
            provider = DiscordTrigger(
                "dev", DiscordConfiguration(url=self.WEBHOOK, cardlabel="Update"), trigger_context
            )
        request = mock_request(provider, httpx.Response(204, request=httpx.Request("POST", self.WEBHOOK)))

        result = await provider.trigger(make_container())

        assert result == {
            "username": "UpdateWatch",
            "embeds": [{"title": TITLE, "color": 65280, "fields": [{"name": "Update", "value": BODY}]}],
        }
        assert request.call_args.args == ("POST", self.WEBHOOK)

    def test_rejects_plain_http(self, trigger_context):
        """Test webhooks must use https."""
        with pytest.raises(SSRFProtectionError):
            DiscordTrigger("dev", DiscordConfiguration(url="http://discord.com/api/webhooks/1"), trigger_context)

    def test_rejects_private_address(self, trigger_context):
        """Test webhooks resolving to private addresses are blocked."""
        with patch("updatewatch.utils.url_validation.resolve_hostname", return_value="10.0.0.5"):
            with pytest.raises(SSRFProtectionError):
                DiscordTrigger("dev", DiscordConfiguration(url="https://hooks.internal/x"), trigger_context)

    def test_masks_webhook_url(self, trigger_context):
        """Test the webhook URL (which embeds a secret) is masked."""
        with patch("updatewatch.utils.url_validation.resolve_hostname", return_value="162.159.128.233"):
            provider = DiscordTrigger("dev", DiscordConfiguration(url=self.WEBHOOK), trigger_context)
        assert provider.mask_configuration()["url"] != self.WEBHOOK


class TestTelegram:
    """Test suite for the Telegram provider."""

    def test_escape_markdown(self):
        """Test MarkdownV2 special characters are escaped."""
        assert escape_markdown("v1.2.3-rc_1") == "v1\\.2\\.3\\-rc\\_1"

    @pytest.mark.asyncio
    async def test_sends_markdown_message(self, trigger_context, make_container):
        """Test markdown messages are escaped and sent to the bot API."""
        provider = TelegramTrigger(
            "chat", TelegramConfiguration(bottoken="123:abc", chatid="42"), trigger_context
        )
        request = mock_request(provider, json_response({"ok": True, "result": {"message_id": 7}}))

        await provider.trigger(make_container())

        url = request.call_args.args[1]
        payload = request.call_args.kwargs["json"]
        assert url == "https://api.telegram.org/bot123:abc/sendMessage"
        assert payload["chat_id"] == "42"
        assert payload["parse_mode"] == "MarkdownV2"
        assert payload["text"].startswith(f"*{TITLE}*\n\n")
        assert "1\\.3\\.0" in payload["text"]

    @pytest.mark.asyncio
    async def test_sends_html_message(self, trigger_context, make_container):
        """Test html format wraps the title in bold tags."""
        provider = TelegramTrigger(
            "chat", TelegramConfiguration(bottoken="123:abc", chatid="42", messageformat="HTML"), trigger_context
        )
        request = mock_request(provider, json_response({"ok": True}))

        await provider.trigger(make_container())

        payload = request.call_args.kwargs["json"]
        assert payload["parse_mode"] == "HTML"
        assert payload["text"] == f"<b>{TITLE}</b>\n\n{BODY}"


class TestSmtp:
    """Test suite for the SMTP provider."""

    CONFIGURATION = {
        "host": "smtp.example.com",
        "port": "587",
        "user": "mailer",
        "pass": "s3cret",
        "from": "updatewatch@example.com",
        "to": "admin@example.com",
        "tls": {"enabled": "true", "verify": "false"},
    }

    @pytest.mark.asyncio
    async def test_sends_mail(self, trigger_context, make_container):
        """Test the message is sent with the configured server settings."""
        provider = SmtpTrigger("admin", SmtpConfiguration.model_validate(self.CONFIGURATION), trigger_context)

        with patch("aiosmtplib.send", new_callable=AsyncMock) as mock_send:
            result = await provider.trigger(make_container())

        assert result == {"to": "admin@example.com", "subject": TITLE}
        message = mock_send.call_args.args[0]
        assert message["Subject"] == TITLE
        assert message["From"] == "updatewatch@example.com"
        assert mock_send.call_args.kwargs == {
            "hostname": "smtp.example.com",
            "port": 587,
            "username": "mailer",
            "password": "s3cret",
            "use_tls": True,
            "validate_certs": False,
        }

    @pytest.mark.asyncio
    async def test_smtp_error_raises_delivery_error(self, trigger_context, make_container):
        """Test SMTP failures raise TriggerDeliveryError."""
        provider = SmtpTrigger("admin", SmtpConfiguration.model_validate(self.CONFIGURATION), trigger_context)

        with patch("aiosmtplib.send", new_callable=AsyncMock, side_effect=aiosmtplib.SMTPException("auth failed")):
            with pytest.raises(TriggerDeliveryError, match="SMTP error"):
                await provider.trigger(make_container())

    def test_invalid_address_rejected(self):
        """Test email addresses are validated."""
        with pytest.raises(ValidationError):
            SmtpConfiguration.model_validate({**self.CONFIGURATION, "to": "not an address"})

    def test_password_is_masked(self, trigger_context):
        """Test the password is masked in the exposed configuration."""
        provider = SmtpTrigger("admin", SmtpConfiguration.model_validate(self.CONFIGURATION), trigger_context)
        assert provider.mask_configuration()["pass"] == "s****t"

    def test_smtp_is_not_reentrant(self):
        """Test emails are serialized by the dispatcher."""
        assert SmtpTrigger.reentrant is False


class TestComposeMessage:
    """Test suite for the shared title and body composition."""

    def test_joins_title_and_body(self, make_container):
        """Test title and body are separated by a blank line."""
        assert compose_message(TriggerConfiguration(), make_container()) == f"{TITLE}\n\n{BODY}"

    def test_disabletitle_keeps_formatted_body(self, make_container):
        """Test the title is dropped and never rendered when disabletitle is set."""
        format_title = MagicMock()

        message = compose_message(
            TriggerConfiguration(disabletitle=True),
            make_container(),
            format_title=format_title,
            format_body=str.upper,
        )

        assert message == BODY.upper()
        format_title.assert_not_called()

    def test_batch_message_applies_markup(self, make_container):
        """Test provider markup is applied to the batch title."""
        containers = [make_container(), make_container(container_id="c2", name="redis")]

        message = compose_batch_message(
            TriggerConfiguration(), containers, format_title=lambda title: f"<b>{title}</b>"
        )

        assert message.startswith("<b>2 updates available</b>\n\n- Container nginx")

    @pytest.mark.asyncio
    async def test_slack_batch_uses_bold_title(self, trigger_context, make_container):
        """Test the Slack batch message goes through the shared composition."""
        provider = SlackTrigger("ops", SlackConfiguration(token="xoxb-1", channel="C123"), trigger_context)
        request = mock_request(provider, json_response({"ok": True}))

        await provider.trigger_batch([make_container()])

        assert request.call_args.kwargs["json"]["text"] == f"*1 updates available*\n\n- {BODY}\n"
