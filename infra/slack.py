"""Slack client for run notifications."""

import os
from typing import Optional

import httpx
from loguru import logger

from services.discovery.stats import RunStats


def get_webhook_url() -> Optional[str]:
    """Webhook URL from SLACK_WEBHOOK_URL, or None if not configured."""
    return os.getenv("SLACK_WEBHOOK_URL") or None


def send_message(text: str, webhook_url: Optional[str] = None) -> bool:
    """Send a message to Slack.

    Returns:
        True if sent successfully, False otherwise
    """
    url = webhook_url or get_webhook_url()
    if not url:
        logger.debug("Slack webhook URL not configured")
        return False

    try:
        response = httpx.post(url, json={"text": text}, timeout=10.0)
    except httpx.HTTPError as e:
        logger.error(f"Failed to send Slack message: {e}")
        return False

    if response.status_code == 200:
        logger.info("Sent Slack message")
        return True
    logger.error(f"Slack API error: {response.status_code} - {response.text}")
    return False


def format_run_summary(stats: RunStats, completed: bool, destination: str) -> str:
    status = "Complete" if completed else "Stopped (resumable)"
    return f"""*Business Discovery {status}*
• Businesses: {stats.total_entities}
• Websites: {stats.websites_found}
• Contacts: {stats.emails_total} ({stats.emails_verified} MX-verified)
• New businesses (<2yr): {stats.new_businesses}
• Output: `{destination}`"""


def send_run_notification(
    stats: RunStats,
    completed: bool,
    destination: str,
    webhook_url: Optional[str] = None,
) -> bool:
    return send_message(format_run_summary(stats, completed, destination), webhook_url)
