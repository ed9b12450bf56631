import unittest
from unittest.mock import MagicMock, patch

import requests

import support  # noqa: F401

from notifications import Notifications

SLACK_URL = "https://hooks.slack.com/services/T000/B000/XXXX"


class NotificationsTests(unittest.TestCase):
    @patch("notifications.requests.post")
    def test_successful_deploy_posts_to_slack(self, post):
        post.return_value = MagicMock(status_code=200)
        Notifications(SLACK_URL).notify_deploy_event("octo-org/octo-repo", "main", "successful", "done")

        post.assert_called_once()
        self.assertEqual(post.call_args.args[0], SLACK_URL)
        text = post.call_args.kwargs["json"]["text"]
        self.assertIn("Repository: octo-org/octo-repo", text)
        self.assertIn("Branch: main", text)
        self.assertIn("Status: Successful", text)

    @patch("notifications.requests.post")
    def test_other_statuses_are_not_sent(self, post):
        Notifications(SLACK_URL).notify_deploy_event("octo-org/octo-repo", "main", "ignored", "wrong branch")
        post.assert_not_called()

    @patch("notifications.requests.post")
    def test_without_url_nothing_is_sent(self, post):
        Notifications(None).notify_deploy_event("octo-org/octo-repo", "main", "failed", "boom")
        post.assert_not_called()

    @patch("notifications.requests.post", side_effect=requests.ConnectionError("unreachable"))
    def test_request_errors_are_logged_not_raised(self, post):
        with self.assertLogs("notifications", level="ERROR"):
            Notifications(SLACK_URL).notify_deploy_event("octo-org/octo-repo", "main", "failed", "boom")


if __name__ == "__main__":
    unittest.main()
