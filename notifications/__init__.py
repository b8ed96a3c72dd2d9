"""Email notifications for marketplace events.

Sending is fire-and-forget: ``EmailNotifier.dispatch`` schedules the SMTP
exchange on a worker thread and returns immediately. A failed send is logged
and never reaches the request that triggered it. With ``email_enabled = false``
messages are only logged.
"""
import asyncio
import logging
import smtplib
from dataclasses import dataclass
from decimal import Decimal
from email.mime.text import MIMEText
from typing import Any, Dict, Optional, Set

from config import settings_conf

logger = logging.getLogger(__name__)


@dataclass
class EmailResult:
    """Result of an email send attempt."""
    success: bool
    message: str
    error: Optional[str] = None


def bid_received_email(nft_name: str, amount: Decimal, bidder_name: str, app_url: str) -> tuple:
    subject = f"New bid on {nft_name}"
    body = (
        f"{bidder_name} placed a bid of {amount} on your NFT \"{nft_name}\".\n\n"
        f"View the auction: {app_url}/auctions"
    )
    return subject, body


def nft_sold_email(nft_name: str, price: Decimal, buyer_name: str, app_url: str) -> tuple:
    subject = f"Your NFT {nft_name} has been sold"
    body = (
        f"\"{nft_name}\" was purchased by {buyer_name} for {price}.\n\n"
        f"View your transactions: {app_url}/transactions"
    )
    return subject, body


def auction_settled_email(nft_name: str, amount: Optional[Decimal], app_url: str) -> tuple:
    if amount is None:
        subject = f"Auction for {nft_name} closed without a sale"
        body = f"The auction for \"{nft_name}\" ended without a qualifying bid.\n\n{app_url}/auctions"
    else:
        subject = f"Auction for {nft_name} settled"
        body = f"The auction for \"{nft_name}\" settled at {amount}.\n\n{app_url}/auctions"
    return subject, body


def withdrawal_reviewed_email(amount: Decimal, currency: str, status: str, app_url: str) -> tuple:
    subject = f"Withdrawal request {status.lower()}"
    body = (
        f"Your withdrawal request for {amount} {currency} was {status.lower()}.\n\n"
        f"View your requests: {app_url}/withdrawals"
    )
    return subject, body


class EmailNotifier:
    """Sends plain text notification emails over SMTP."""

    def __init__(self, settings: Optional[Dict[str, Any]] = None) -> None:
        self.settings = settings or settings_conf
        # Keep references so pending sends aren't garbage collected
        self._tasks: Set[asyncio.Future] = set()

    @property
    def app_url(self) -> str:
        return self.settings['app_url']

    def send(self, to: str, subject: str, body: str) -> EmailResult:
        """Send an email synchronously. Never throws, returns EmailResult."""
        if not self.settings['email_enabled']:
            logger.info(f"Email disabled, would send to {to}: {subject}")
            return EmailResult(success=True, message="Email disabled - logged only")

        message = MIMEText(body, 'plain', 'utf-8')
        message['Subject'] = subject
        message['From'] = self.settings['email_from']
        message['To'] = to

        try:
            with smtplib.SMTP(self.settings['smtp_host'], self.settings['smtp_port'], timeout=30) as server:
                server.starttls()
                if self.settings['smtp_user']:
                    server.login(self.settings['smtp_user'], self.settings['smtp_password'])
                server.send_message(message)
            logger.info(f"Sent email to {to}: {subject}")
            return EmailResult(success=True, message="Email sent")
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {to}: {e}")
            return EmailResult(success=False, message="SMTP error", error=str(e))

    def dispatch(self, to: Optional[str], subject: str, body: str) -> None:
        """Schedule an email on a worker thread and return immediately."""
        if not to:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.send(to, subject, body)
            return

        future = loop.run_in_executor(None, self.send, to, subject, body)
        self._tasks.add(future)
        future.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for scheduled sends, used on shutdown."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


__all__ = [
    'EmailNotifier',
    'EmailResult',
    'bid_received_email',
    'nft_sold_email',
    'auction_settled_email',
    'withdrawal_reviewed_email'
]
