import logging
from datetime import datetime, timezone
from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError
from app.config import config

logger = logging.getLogger(__name__)

class SlackService:
    def __init__(self, token: str = None, channel: str = None, mentions: str = None, client: WebClient = None):
        self.token = token if token is not None else config.SLACK_BOT_TOKEN
        self.status_channel = channel if channel is not None else config.SLACK_CHANNEL_JOB_STATUS
        self.client = client or (WebClient(token=self.token) if self.token else None)

        # Format mentions: <@U123>, <@U456>
        raw_mentions = (mentions if mentions is not None else config.SLACK_MENTIONS) or ""
        self.mentions = " ".join([f"<@{m.strip()}>" for m in raw_mentions.split(",") if m.strip()])

        if not self.client:
            logger.warning("SLACK_BOT_TOKEN not provided. Slack notifications will be disabled.")

    @property
    def enabled(self) -> bool:
        return self.client is not None and bool(self.status_channel)

    def _get_timestamp_block(self):
        utc_now = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        return {
            "type": "context",
            "elements": [
                {
                    "type": "mrkdwn",
                    "text": f"🕒 *UTC Time:* {utc_now}"
                }
            ]
        }

    def send_job_status(self, title: str, status: str, message: str):
        """
        Sends a job status notification to the status channel.
        """
        blocks = [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": title,
                    "emoji": True
                }
            },
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": f"*Status:* {status}\n*Message:* {message}"
                }
            }
        ]

        if status.lower() == "failed" and self.mentions:
            blocks.append({
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": f"🚨 Attention: {self.mentions}"
                }
            })

        blocks.append(self._get_timestamp_block())
        return self._send_blocks(self.status_channel, blocks, f"{title}: {status}")

    def _send_blocks(self, channel: str, blocks: list, fallback_text: str):
        if not self.enabled:
            return None

        try:
            response = self.client.chat_postMessage(
                channel=channel,
                blocks=blocks,
                text=fallback_text
            )
            logger.info(f"Slack blocks sent successfully to {channel}")
            return response
        except SlackApiError as e:
            logger.error(f"Error sending Slack blocks to {channel}: {e.response['error']}")
            return None

slack_service = SlackService()
