"""Email notification sink for reconciliation summaries."""

import os
import logging
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional

logger = logging.getLogger(__name__)


class ReconciliationNotifier:
    """Sends reconciliation summaries to the operator address over SMTP."""

    def __init__(
        self,
        smtp_host: Optional[str] = None,
        smtp_port: Optional[int] = None,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        from_email: Optional[str] = None,
    ):
        """Initialize the notifier.

        Args:
            smtp_host: SMTP server. Falls back to SMTP_HOST env var.
            smtp_port: SMTP port. Falls back to SMTP_PORT env var.
            smtp_user: Login user. Falls back to SMTP_USER env var.
            smtp_password: Login password. Falls back to SMTP_PASSWORD env var.
            from_email: Sender address. Falls back to SMTP_FROM_EMAIL, then the login user.
        """
        self.smtp_host = smtp_host or os.getenv("SMTP_HOST", "localhost")
        self.smtp_port = smtp_port or int(os.getenv("SMTP_PORT", "587"))
        self.smtp_user = smtp_user or os.getenv("SMTP_USER")
        self.smtp_password = smtp_password or os.getenv("SMTP_PASSWORD")
        self.from_email = from_email or os.getenv("SMTP_FROM_EMAIL", self.smtp_user)

        if not self.smtp_user or not self.smtp_password:
            logger.warning("SMTP credentials not configured - reconciliation notifications disabled")
            self.enabled = False
        else:
            self.enabled = True

    def is_enabled(self) -> bool:
        """Return True if SMTP credentials are configured."""
        return self.enabled

    def send_summary(self, report_id: str, diff_count: int, to_address: Optional[str]) -> bool:
        """Send a reconciliation summary. Failures are logged, never raised.

        Args:
            report_id: Report the summary describes.
            diff_count: Number of diffs found in the run.
            to_address: Recipient address.

        Returns:
            True if the email was sent.
        """
        if not self.is_enabled():
            logger.warning(f"Notifications disabled - skipping summary for report {report_id}")
            return False
        if not to_address:
            logger.warning(f"No notification address configured - skipping summary for report {report_id}")
            return False

        msg = MIMEMultipart()
        msg["Subject"] = f"Billing reconciliation: {diff_count} discrepancies found"
        msg["From"] = self.from_email
        msg["To"] = to_address
        msg.attach(MIMEText(self._render_body(report_id, diff_count), "plain", "utf-8"))

        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                server.starttls()
                server.login(self.smtp_user, self.smtp_password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send reconciliation summary for report {report_id}: {e}")
            return False

        logger.info(f"Sent reconciliation summary for report {report_id} to {to_address}")
        return True

    @staticmethod
    def _render_body(report_id: str, diff_count: int) -> str:
        """Plain-text body pointing the operator at the pending diffs."""
        return (
            f"Reconciliation report {report_id} completed with {diff_count} discrepancies.\n"
            f"Review pending diffs via GET /reconciliation/reports/{report_id}/diffs.\n"
        )
