import requests
import logging
from typing import Optional

logger = logging.getLogger(__name__)

SLACK_TIMEOUT_SECONDS = 10


class Notifications:
    def __init__(self, slack_webhook_url: Optional[str] = None):
        self.slack_webhook_url = slack_webhook_url or ""

    def send_slack_message(self, message: str):
        """
        Send a message to Slack via a webhook URL.
        """
        if not self.slack_webhook_url:
            logger.debug("Slack webhook URL not configured. Skipping Slack notification.")
            return
        payload = {"text": message}
        try:
            response = requests.post(self.slack_webhook_url, json=payload, timeout=SLACK_TIMEOUT_SECONDS)
            if response.status_code != 200:
                logger.error(f"Failed to send Slack message. Code: {response.status_code}, Resp: {response.text}")
            else:
                logger.info("Slack message sent successfully.")
        except requests.RequestException as e:
            logger.error(f"Exception while sending Slack message: {e}")

    def notify_deploy_event(self, repo: str, branch: str, status: str, details: Optional[str] = ""):
        """
        Notify about a deployment outcome, only for successful or failed runs.
        """
        if status not in ["successful", "failed"]:
            return

        message = (
            f"🚀 Deploy Event\n"
            f"Repository: {repo}\n"
            f"Branch: {branch}\n"
            f"Status: {status.capitalize()}\n"
            f"Details: {details}"
        )
        self.send_slack_message(message)
