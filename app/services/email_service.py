"""
AWS SES Email Service for sending one-time passcodes.

Handles template rendering and AWS SES integration.
"""

import logging
from typing import Any, Dict, Optional, Protocol
import boto3
from botocore.exceptions import ClientError, BotoCoreError
from app.core.config import settings

logger = logging.getLogger(__name__)


class Mailer(Protocol):
    def send_email(
        self,
        to_email: str,
        subject: str,
        template_name: str,
        context: Dict[str, Any],
    ) -> bool: ...


class EmailDeliveryError(Exception):
    """Raised when a mail that must be delivered was not accepted."""


# template name -> (heading, intro line, footer note)
TEMPLATES = {
    "user-activation-mail": (
        "Activate Your Account",
        "Thank you for signing up! To complete your registration, please use the code below:",
        "If you didn't create an account, you can safely ignore this email.",
    ),
    "forgot-password-user-mail": (
        "Reset Your Password",
        "We received a request to reset your password. Use the code below to continue:",
        "If you didn't request a password reset, you can safely ignore this email.",
    ),
}


class EmailService:
    """
    Service for sending emails via AWS SES.

    With EMAIL_ENABLED=false the rendered message is logged instead of
    sent, which keeps local development off the SES quota.
    """

    def __init__(self):
        """Initialize AWS SES client"""
        session_kwargs = {
            'region_name': settings.AWS_REGION,
        }

        # Add credentials if provided (otherwise uses IAM role)
        if settings.AWS_ACCESS_KEY_ID and settings.AWS_SECRET_ACCESS_KEY:
            session_kwargs['aws_access_key_id'] = settings.AWS_ACCESS_KEY_ID
            session_kwargs['aws_secret_access_key'] = settings.AWS_SECRET_ACCESS_KEY

        self.ses_client = boto3.client('ses', **session_kwargs)

    def send_email(
        self,
        to_email: str,
        subject: str,
        template_name: str,
        context: Dict[str, Any],
    ) -> bool:
        """
        Render a template and send it to a single recipient.

        Args:
            to_email: Recipient email address
            subject: Email subject line
            template_name: Key into TEMPLATES
            context: Template variables (name, email, otp)

        Returns:
            bool: True if the email was accepted by SES, False otherwise

        Raises:
            ValueError: If template_name is unknown
        """
        html_body = self.render_html(template_name, context)
        text_body = self.render_text(template_name, context)

        if not settings.EMAIL_ENABLED:
            logger.info(f"EMAIL_ENABLED=false, not sending '{subject}' to {to_email}:\n{text_body}")
            return True

        try:
            response = self.ses_client.send_email(
                Source=f"{settings.AWS_SES_FROM_NAME} <{settings.AWS_SES_FROM_EMAIL}>",
                Destination={'ToAddresses': [to_email]},
                Message={
                    'Subject': {'Data': subject, 'Charset': 'UTF-8'},
                    'Body': {
                        'Html': {'Data': html_body, 'Charset': 'UTF-8'},
                        'Text': {'Data': text_body, 'Charset': 'UTF-8'}
                    }
                }
            )

            message_id = response.get('MessageId')
            logger.info(f"Email '{template_name}' sent to {to_email} (MessageId: {message_id})")
            return True

        except ClientError as e:
            error_code = e.response['Error']['Code']
            error_message = e.response['Error']['Message']
            logger.error(f"AWS SES ClientError: {error_code} - {error_message}")

            if error_code == 'MessageRejected':
                logger.error(f"Email rejected: {error_message}")
            elif error_code == 'MailFromDomainNotVerified':
                logger.error("Sender email not verified in SES")

            return False

        except BotoCoreError as e:
            logger.error(f"AWS BotoCoreError: {str(e)}")
            return False

    @staticmethod
    def _template(template_name: str):
        try:
            return TEMPLATES[template_name]
        except KeyError:
            raise ValueError(f"Unknown email template: {template_name}")

    def render_html(self, template_name: str, context: Dict[str, Any]) -> str:
        heading, intro, footer = self._template(template_name)
        greeting = self._greeting(context.get("name"))
        code = context["otp"]

        return f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{heading}</title>
</head>
<body style="margin: 0; padding: 0; font-family: Arial, sans-serif; background-color: #f4f4f4;">
    <table role="presentation" style="width: 100%; border-collapse: collapse;">
        <tr>
            <td align="center" style="padding: 40px 0;">
                <table role="presentation" style="width: 600px; border-collapse: collapse; background-color: #ffffff; border-radius: 8px;">
                    <tr>
                        <td style="padding: 40px 40px 20px 40px; text-align: center;">
                            <h1 style="margin: 0; color: #333333; font-size: 28px; font-weight: 600;">{heading}</h1>
                        </td>
                    </tr>
                    <tr>
                        <td style="padding: 0 40px 40px 40px;">
                            <p style="margin: 0 0 20px 0; color: #666666; font-size: 16px;">{greeting}</p>
                            <p style="margin: 0 0 30px 0; color: #666666; font-size: 16px;">{intro}</p>
                            <div style="background-color: #f8f9fa; border-radius: 8px; padding: 30px; text-align: center; margin: 0 0 30px 0;">
                                <div style="font-size: 36px; font-weight: 700; letter-spacing: 8px; color: #4F46E5; font-family: 'Courier New', monospace;">
                                    {code}
                                </div>
                            </div>
                            <p style="margin: 0 0 20px 0; color: #666666; font-size: 14px;">
                                This code will expire in <strong>5 minutes</strong>.
                            </p>
                            <p style="margin: 0; color: #999999; font-size: 13px;">{footer}</p>
                        </td>
                    </tr>
                </table>
            </td>
        </tr>
    </table>
</body>
</html>
"""

    def render_text(self, template_name: str, context: Dict[str, Any]) -> str:
        """Plain text fallback body."""
        _, intro, footer = self._template(template_name)

        return f"""{self._greeting(context.get("name"))}

{intro}

{context["otp"]}

This code will expire in 5 minutes.

{footer}

---
{settings.PROJECT_NAME}
"""

    @staticmethod
    def _greeting(name: Optional[str]) -> str:
        return f"Hi {name}," if name else "Hi there,"


# Singleton instance
email_service = EmailService()


def get_mailer() -> Mailer:
    """FastAPI dependency returning the process-wide mailer."""
    return email_service
