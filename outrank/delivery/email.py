"""
Email Delivery Module

Sends scan notifications via Resend:
- verification email (free tier, gates report access)
- scan complete email (paying tiers, with score change since last scan)

Delivery failures are returned as EmailResult(success=False); nothing
here raises.
"""

import os
import logging
from typing import Optional
from dataclasses import dataclass
from datetime import datetime

import resend

logger = logging.getLogger(__name__)


@dataclass
class EmailResult:
    """Result of email delivery."""
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {"success": self.success, "message_id": self.message_id, "error": self.error}


def describe_score_change(score: int, previous_score: Optional[int]) -> str:
    """"Up 5 points since your last scan" style wording."""
    if previous_score is None:
        return "This is your first tracked scan."
    delta = score - previous_score
    if delta > 0:
        return f"Up {delta} point{'s' if delta != 1 else ''} since your last scan."
    if delta < 0:
        return f"Down {-delta} point{'s' if delta != -1 else ''} since your last scan."
    return "No change since your last scan."


class EmailDelivery:
    """
    Email delivery service using Resend.
    """

    DEFAULT_FROM_EMAIL = "reports@outrankllm.io"
    DEFAULT_FROM_NAME = "outrankllm"
    DEFAULT_APP_URL = "https://outrankllm.io"

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        app_url: Optional[str] = None,
    ):
        """
        Initialize email delivery.

        Args:
            api_key: Resend API key (defaults to env var)
            from_email: Sender email address
            app_url: Public base URL used in links
        """
        self.api_key = api_key or os.getenv("RESEND_API_KEY")
        if not self.api_key:
            logger.warning("RESEND_API_KEY not set - email delivery disabled")

        self.from_email = from_email or os.getenv("FROM_EMAIL", self.DEFAULT_FROM_EMAIL)
        self.app_url = (app_url or os.getenv("APP_URL", self.DEFAULT_APP_URL)).rstrip("/")

        if self.api_key:
            resend.api_key = self.api_key

    def _send(self, to_email: str, subject: str, html: str, text: str) -> EmailResult:
        if not self.api_key:
            return EmailResult(
                success=False,
                error="Email delivery not configured (missing API key)"
            )

        try:
            params = {
                "from": f"{self.DEFAULT_FROM_NAME} <{self.from_email}>",
                "to": [to_email],
                "subject": subject,
                "html": html,
                "text": text,
            }

            response = resend.Emails.send(params)

            logger.info(f"Email sent to {to_email}: {response.get('id', 'unknown')}")

            return EmailResult(
                success=True,
                message_id=response.get("id"),
            )

        except Exception as e:
            logger.error(f"Email delivery failed: {e}")
            return EmailResult(
                success=False,
                error=str(e),
            )

    async def send_verification_email(
        self,
        to_email: str,
        verification_token: str,
        domain: str,
    ) -> EmailResult:
        """
        Send the magic link that unlocks a free report.

        Args:
            to_email: Recipient email
            verification_token: Token stored in email_verification_tokens
            domain: Scanned domain
        """
        verification_url = f"{self.app_url}/api/verify?token={verification_token}"
        subject = f"Verify your email to see your AI visibility report for {domain}"

        html = self._wrap_html(
            "Your AI Visibility Report is Ready",
            domain,
            f"""
            <p>We've finished checking how ChatGPT, Claude, Gemini and Perplexity talk about <strong>{domain}</strong>.</p>
            <p>Confirm your email address to open the report:</p>
            <p><a class="cta" href="{verification_url}">View my report</a></p>
            <p style="font-size: 12px; color: #666;">This link expires in 24 hours.</p>
            """,
        )
        text = (
            f"Your AI visibility report for {domain} is ready.\n\n"
            f"Verify your email to view it: {verification_url}\n\n"
            "This link expires in 24 hours."
        )
        return self._send(to_email, subject, html, text)

    async def send_scan_complete_email(
        self,
        to_email: str,
        report_token: str,
        domain: str,
        score: int,
        previous_score: Optional[int] = None,
    ) -> EmailResult:
        """
        Notify a subscriber that a scan finished.

        Args:
            to_email: Recipient email
            report_token: Report url token
            domain: Scanned domain
            score: Overall visibility score
            previous_score: Score of the most recent earlier scan, if any
        """
        report_url = f"{self.app_url}/report/{report_token}"
        change = describe_score_change(score, previous_score)
        subject = f"Your AI visibility scan for {domain} is complete - {score}%"

        html = self._wrap_html(
            "Your Scan is Complete",
            domain,
            f"""
            <div class="highlight">
                <div class="metric-value">{score}%</div>
                <div class="metric-label">AI visibility score</div>
                <p>{change}</p>
            </div>
            <p>Your report includes updated platform scores, competitor mentions and your action plan.</p>
            <p><a class="cta" href="{report_url}">Open report</a></p>
            """,
        )
        text = (
            f"Your AI visibility scan for {domain} is complete.\n\n"
            f"Score: {score}%\n{change}\n\n"
            f"View your report: {report_url}"
        )
        return self._send(to_email, subject, html, text)

    def _wrap_html(self, heading: str, domain: str, body: str) -> str:
        return f"""
        <!DOCTYPE html>
        <html>
        <head>
            <style>
                body {{ font-family: 'Helvetica Neue', Arial, sans-serif; line-height: 1.6; color: #333; margin: 0; padding: 0; }}
                .container {{ max-width: 600px; margin: 0 auto; }}
                .header {{ background: #111; color: white; padding: 40px 20px; text-align: center; }}
                .header h1 {{ margin: 0; font-size: 24px; }}
                .content {{ padding: 40px 30px; }}
                .highlight {{ background: #f8f9fa; padding: 20px; border-radius: 8px; margin: 20px 0; text-align: center; }}
                .cta {{ display: inline-block; background: #22c55e; color: white; padding: 15px 30px; text-decoration: none; border-radius: 5px; margin: 20px 0; }}
                .metric-value {{ font-size: 36px; font-weight: bold; color: #22c55e; }}
                .metric-label {{ font-size: 12px; color: #666; }}
                .footer {{ background: #f5f5f5; padding: 30px; text-align: center; font-size: 12px; color: #666; }}
            </style>
        </head>
        <body>
            <div class="container">
                <div class="header">
                    <h1>{heading}</h1>
                    <p style="margin: 10px 0 0; opacity: 0.9;">{domain}</p>
                </div>
                <div class="content">
                    {body}
                </div>
                <div class="footer">
                    <p>&copy; {datetime.now().year} outrankllm. All rights reserved.</p>
                </div>
            </div>
        </body>
        </html>
        """
