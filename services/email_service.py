import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from core.config import settings
from utils.logger import get_logger

# Setup logger
logger = get_logger(__name__)


def send_email(to_email: str, subject: str, body: str):
    # Skip email sending in test environment
    if settings.ENV == "testing":
        logger.info(
            "[TEST MODE] Email skipped",
            extra={"recipient": to_email, "subject": subject}
        )
        return

    logger.debug(
        "Attempting to send email",
        extra={"recipient": to_email, "subject": subject}
    )

    message = MIMEMultipart("alternative")
    message["Subject"] = subject
    message["From"] = settings.MAIL_FROM
    message["To"] = to_email
    message.attach(MIMEText(body, "html"))

    try:
        with smtplib.SMTP(settings.MAIL_SERVER, settings.MAIL_PORT) as server:
            server.starttls()  # Upgrade to secure connection
            if settings.MAIL_USERNAME:
                server.login(settings.MAIL_USERNAME, settings.MAIL_PASSWORD)
            server.sendmail(settings.MAIL_FROM, to_email, message.as_string())

        logger.info(
            "Email sent successfully",
            extra={"recipient": to_email, "subject": subject}
        )

    except (smtplib.SMTPException, OSError) as e:
        logger.error(
            f"Failed to send email: {str(e)}",
            extra={
                "recipient": to_email,
                "subject": subject,
                "error": str(e),
                "error_type": type(e).__name__
            },
            exc_info=True  # Include stack trace
        )
        raise


def send_email_safely(to_email: str, subject: str, body: str) -> bool:
    """
    Background-task entry point: delivery failures are logged, never raised.

    Returns:
        True if the message was handed to the mail server (or skipped in tests)
    """
    try:
        send_email(to_email=to_email, subject=subject, body=body)
        return True
    except (smtplib.SMTPException, OSError):
        # Already logged with stack trace by send_email
        return False


def build_password_reset_email(name: str, reset_url: str, expires_minutes: int) -> tuple[str, str]:
    subject = "Reset Your Password"
    body = f"""
    <html>
    <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
        <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
            <h2 style="color: #2c3e50;">Password Reset Request</h2>
            <p>Hello {name},</p>
            <p>We received a request to reset your password.</p>

            <div style="margin: 30px 0;">
                <a href="{reset_url}"
                style="display: inline-block; padding: 14px 28px; background-color: #3498db;
                        color: white; text-decoration: none; border-radius: 4px; margin: 10px 0;
                        font-weight: bold;">
                    Reset Password
                </a>
            </div>

            <p style="color: #666; font-size: 14px; margin-top: 30px;">
                This link expires in {expires_minutes} minutes and can be used once.
                Resetting your password signs you out of every device.
            </p>

            <p style="color: #999; font-size: 12px;">
                If you didn't request this password reset, please ignore this email.
                <br><br>
                {reset_url}
            </p>
        </div>
    </body>
    </html>
    """
    return subject, body
