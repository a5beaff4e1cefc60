"""Trial lifecycle emails sent through SendGrid.

Every send returns True/False and never raises: the trial engine treats a
False as "not sent yet" and the next sweep tries again.
"""

import logging
from typing import Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from app.core.config import settings
from app.schemas.email import (
    WelcomeEmailData,
    TrialWarningEmailData,
    TrialBlockedEmailData,
    TrialDeletionWarningEmailData,
    AccountDeletedEmailData,
)

logger = logging.getLogger(__name__)

_LAYOUT = """
<html>
    <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
        <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
            {content}
            <p style="color: #666; font-size: 14px; margin-top: 40px;">
                {company} - Solution IA pour restaurants
            </p>
        </div>
    </body>
</html>
"""


class EmailService:
    """Email service for trial notifications."""

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = settings.SENDGRID_API_KEY if api_key is None else api_key
        self.from_email = settings.SENDGRID_FROM_EMAIL
        self.from_name = settings.SENDGRID_FROM_NAME

        if not self.api_key:
            logger.warning("SENDGRID_API_KEY not configured. Emails will not be sent.")
            self.client = None
            self.enabled = False
        else:
            self.client = SendGridAPIClient(self.api_key)
            self.enabled = True

    async def send_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        plain_body: Optional[str] = None,
    ) -> bool:
        """
        Send an email.

        Args:
            to: Recipient email address
            subject: Email subject
            html_body: HTML body content
            plain_body: Plain text body (optional)

        Returns:
            True if sent successfully, False otherwise
        """
        if not to:
            logger.warning("No recipient address for '%s'; email skipped", subject)
            return False

        if not self.enabled:
            logger.info("Email service disabled. Would have sent to %s: %s", to, subject)
            return False

        try:
            message = Mail(
                from_email=(self.from_email, self.from_name),
                to_emails=to,
                subject=subject,
                html_content=html_body,
            )

            if plain_body:
                message.plain_text_content = plain_body

            response = self.client.send(message)

            if 200 <= response.status_code < 300:
                logger.info("Email sent to %s: %s", to, subject)
                return True

            logger.error("Failed to send email to %s: %s %s", to, response.status_code, response.body)
            return False

        except Exception as e:
            logger.error("Error sending email to %s: %s", to, e)
            return False

    def _render(self, content: str) -> str:
        return _LAYOUT.format(content=content, company=self.from_name)

    async def send_welcome_email(self, data: WelcomeEmailData) -> bool:
        subject = f"Bienvenue sur {self.from_name} - {data.company}"
        until = ""
        if data.trial_end_date:
            until = f" (jusqu'au {data.trial_end_date.strftime('%d/%m/%Y')})"
        html_body = self._render(f"""
            <h2 style="color: #4A90E2;">Bienvenue {data.first_name} !</h2>
            <p>Votre période d'essai pour {data.company} est active.</p>
            <p>Elle comprend <strong>{data.calls_limit} appels</strong> sur
               <strong>{data.days_limit} jours</strong>{until}.</p>
        """)
        plain_body = (
            f"Bienvenue {data.first_name} !\n"
            f"Votre période d'essai pour {data.company} comprend {data.calls_limit} appels "
            f"sur {data.days_limit} jours."
        )
        return await self.send_email(data.email, subject, html_body, plain_body)

    async def send_trial_warning_email(self, data: TrialWarningEmailData) -> bool:
        subject = f"⚠️ Période d'essai bientôt terminée - {data.restaurant_name}"
        html_body = self._render(f"""
            <h2 style="color: #E2A04A;">Votre essai se termine bientôt</h2>
            <p>Bonjour {data.first_name},</p>
            <p>{data.restaurant_name} a utilisé {data.calls_used} appels.
               Il reste <strong>{data.calls_remaining} appels</strong> et
               <strong>{data.days_remaining} jours</strong> d'essai.</p>
            <p>Passez à un plan payant pour éviter toute interruption de service.</p>
        """)
        plain_body = (
            f"Bonjour {data.first_name},\n"
            f"Il reste {data.calls_remaining} appels et {data.days_remaining} jours d'essai "
            f"pour {data.restaurant_name}."
        )
        return await self.send_email(data.email, subject, html_body, plain_body)

    async def send_trial_blocked_email(self, data: TrialBlockedEmailData) -> bool:
        subject = f"🔒 Service suspendu - {data.restaurant_name}"
        html_body = self._render(f"""
            <h2 style="color: #E24A4A;">Service suspendu</h2>
            <p>Bonjour {data.first_name},</p>
            <p>Votre période d'essai est terminée après {data.total_calls_used} appels.
               Vos numéros ne reçoivent plus d'appels.</p>
            <p>Activez un plan depuis votre espace client pour réactiver le service.</p>
        """)
        plain_body = (
            f"Bonjour {data.first_name},\n"
            f"Le service de {data.restaurant_name} est suspendu. "
            "Activez un plan depuis votre espace client pour le réactiver."
        )
        return await self.send_email(data.email, subject, html_body, plain_body)

    async def send_trial_deletion_warning_email(self, data: TrialDeletionWarningEmailData) -> bool:
        subject = f"🚨 URGENT - Compte supprimé dans {data.days_until_deletion} jours"
        html_body = self._render(f"""
            <h2 style="color: #E24A4A;">Suppression programmée</h2>
            <p>Bonjour {data.first_name},</p>
            <p>Le compte {data.restaurant_name} sera supprimé dans
               <strong>{data.days_until_deletion} jour(s)</strong>.</p>
            <p>Activez un plan maintenant pour conserver vos données.</p>
        """)
        plain_body = (
            f"Bonjour {data.first_name},\n"
            f"Le compte {data.restaurant_name} sera supprimé dans {data.days_until_deletion} jour(s)."
        )
        return await self.send_email(data.email, subject, html_body, plain_body)

    async def send_account_deleted_email(self, data: AccountDeletedEmailData) -> bool:
        subject = f"Compte supprimé - {data.restaurant_name}"
        html_body = self._render(f"""
            <h2>Compte supprimé</h2>
            <p>Bonjour {data.first_name},</p>
            <p>Le compte {data.restaurant_name} a été supprimé le {data.deletion_date}.</p>
        """)
        plain_body = (
            f"Bonjour {data.first_name},\n"
            f"Le compte {data.restaurant_name} a été supprimé le {data.deletion_date}."
        )
        return await self.send_email(data.email, subject, html_body, plain_body)


# Global email service instance
email_service = EmailService()
