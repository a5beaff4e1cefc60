"""Tests for the SendGrid email service. Sends never raise and report False on failure."""

from unittest.mock import MagicMock, patch

import pytest

from app.schemas.email import (
    TrialWarningEmailData,
    TrialDeletionWarningEmailData,
    AccountDeletedEmailData,
)
from app.services.email_service import EmailService


def _configured(status_code=202, side_effect=None):
    client = MagicMock()
    client.send.return_value = MagicMock(status_code=status_code, body=b"")
    if side_effect:
        client.send.side_effect = side_effect
    with patch("app.services.email_service.SendGridAPIClient", return_value=client):
        service = EmailService(api_key="SG.test")
    return service, client


@pytest.mark.asyncio
async def test_email_skipped_without_api_key():
    service = EmailService(api_key="")

    assert service.enabled is False
    assert await service.send_email("mario@example.com", "Hello", "<p>Hi</p>") is False


@pytest.mark.asyncio
async def test_email_skipped_without_recipient():
    service, client = _configured()

    assert await service.send_email("", "Hello", "<p>Hi</p>") is False
    client.send.assert_not_called()


@pytest.mark.asyncio
async def test_email_sent():
    service, client = _configured()

    assert await service.send_email("mario@example.com", "Hello", "<p>Hi</p>", "Hi") is True
    client.send.assert_called_once()


@pytest.mark.asyncio
async def test_sendgrid_error_status_is_a_failure():
    service, _ = _configured(status_code=401)

    assert await service.send_email("mario@example.com", "Hello", "<p>Hi</p>") is False


@pytest.mark.asyncio
async def test_sendgrid_exception_is_a_failure():
    service, _ = _configured(side_effect=ConnectionError("sendgrid down"))

    assert await service.send_email("mario@example.com", "Hello", "<p>Hi</p>") is False


@pytest.mark.asyncio
async def test_trial_warning_email_content():
    service = EmailService(api_key="")
    with patch.object(service, "send_email", return_value=True) as send:
        await service.send_trial_warning_email(TrialWarningEmailData(
            first_name="Mario", email="mario@example.com", restaurant_name="Pizza Mario",
            calls_used=8, calls_remaining=2, days_remaining=7,
        ))

    to, subject, html_body, plain_body = send.call_args.args
    assert to == "mario@example.com"
    assert "Pizza Mario" in subject
    assert "2 appels" in html_body
    assert "7 jours" in plain_body


@pytest.mark.asyncio
async def test_deletion_emails_content():
    service = EmailService(api_key="")
    with patch.object(service, "send_email", return_value=True) as send:
        await service.send_trial_deletion_warning_email(TrialDeletionWarningEmailData(
            first_name="Mario", email="mario@example.com", restaurant_name="Pizza Mario",
            days_until_deletion=2,
        ))
        await service.send_account_deleted_email(AccountDeletedEmailData(
            first_name="Mario", email="mario@example.com", restaurant_name="Pizza Mario",
            deletion_date="06/03/2026",
        ))

    warning, deleted = send.call_args_list
    assert "2 jours" in warning.args[1]
    assert "06/03/2026" in deleted.args[2]
