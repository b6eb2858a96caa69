import os
import unittest
from unittest.mock import Mock, patch

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("S3_ENDPOINT", "http://localhost:9000")
os.environ.setdefault("S3_ACCESS_KEY", "test")
os.environ.setdefault("S3_SECRET_KEY", "test")
os.environ.setdefault("S3_BUCKET", "test")

from app.core.config import settings
from app.services.email_service import EmailAttachment, EmailDeliveryError, send_email


class EmailServiceTests(unittest.TestCase):
    def setUp(self):
        self._backup = {
            "EMAIL_PROVIDER": settings.EMAIL_PROVIDER,
            "EMAIL_SERVICE_URL": settings.EMAIL_SERVICE_URL,
            "INTERNAL_SERVICE_TOKEN": settings.INTERNAL_SERVICE_TOKEN,
            "SMTP_HOST": settings.SMTP_HOST,
            "SMTP_FROM": settings.SMTP_FROM,
        }

    def tearDown(self):
        for key, value in self._backup.items():
            setattr(settings, key, value)

    def test_dummy_provider_mocks_send(self):
        settings.EMAIL_PROVIDER = "dummy"
        payload = send_email(to=" Client@Example.com ", subject="Invoice", html_body="<p>hi</p>")
        self.assertEqual(payload.get("provider"), "mock_email")
        self.assertTrue(bool(payload.get("mocked")))
        self.assertFalse(bool(payload.get("sent")))

    def test_service_provider_posts_attachments_as_base64(self):
        settings.EMAIL_PROVIDER = "service"
        settings.EMAIL_SERVICE_URL = "http://email-service:8010/"
        settings.INTERNAL_SERVICE_TOKEN = "token"

        mock_response = Mock()
        mock_response.status_code = 200
        mock_response.content = b'{"status":"sent"}'
        mock_response.json.return_value = {"status": "sent"}

        mock_client = Mock()
        mock_client.__enter__ = Mock(return_value=mock_client)
        mock_client.__exit__ = Mock(return_value=False)
        mock_client.post.return_value = mock_response

        attachments = [
            EmailAttachment("BILL-2026-00001.pdf", b"%PDF", "application/pdf"),
            EmailAttachment("upi-qr.png", b"png", "image/png", content_id="upi-qr"),
        ]
        with patch("app.services.email_service.httpx.Client", return_value=mock_client):
            payload = send_email(to="client@example.com", subject="Invoice", html_body="<p>hi</p>", attachments=attachments)

        self.assertEqual(payload.get("provider"), "email-service")
        self.assertTrue(bool(payload.get("sent")))
        url = mock_client.post.call_args.args[0]
        body = mock_client.post.call_args.kwargs["json"]
        self.assertEqual(url, "http://email-service:8010/internal/send")
        self.assertEqual(body["attachments"][0]["content"], "JVBERg==")
        self.assertEqual(body["attachments"][0]["disposition"], "attachment")
        self.assertEqual(body["attachments"][1]["disposition"], "inline")

    def test_service_error_status_raises(self):
        settings.EMAIL_PROVIDER = "service"
        settings.INTERNAL_SERVICE_TOKEN = "token"
        mock_response = Mock()
        mock_response.status_code = 503
        mock_response.content = b'{"detail":"down"}'
        mock_response.json.return_value = {"detail": "down"}
        mock_client = Mock()
        mock_client.__enter__ = Mock(return_value=mock_client)
        mock_client.__exit__ = Mock(return_value=False)
        mock_client.post.return_value = mock_response

        with patch("app.services.email_service.httpx.Client", return_value=mock_client):
            with self.assertRaises(EmailDeliveryError):
                send_email(to="client@example.com", subject="Invoice", html_body="<p>hi</p>")

    def test_smtp_requires_host_and_sender(self):
        settings.EMAIL_PROVIDER = "smtp"
        settings.SMTP_HOST = ""
        settings.SMTP_FROM = ""
        with self.assertRaises(EmailDeliveryError):
            send_email(to="client@example.com", subject="Invoice", html_body="<p>hi</p>")

    def test_empty_recipient_and_unknown_provider_raise(self):
        settings.EMAIL_PROVIDER = "unknown"
        with self.assertRaises(EmailDeliveryError):
            send_email(to="  ", subject="Invoice", html_body="")
        with self.assertRaises(EmailDeliveryError):
            send_email(to="client@example.com", subject="Invoice", html_body="")


if __name__ == "__main__":
    unittest.main()
