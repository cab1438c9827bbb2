import logging
import httpx
from app.config import config

logger = logging.getLogger(__name__)

class WebhookService:
    def __init__(self, timeout: float = None, transport: httpx.BaseTransport = None):
        self.timeout = timeout if timeout is not None else config.WEBHOOK_TIMEOUT_SECONDS
        self.transport = transport

    def post(self, url: str, payload: dict) -> bool:
        """
        Posts a JSON payload to a caller-supplied URL. Failures are logged, never raised.
        """
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(url, json=payload)
                response.raise_for_status()
            logger.info(f"Webhook delivered to {url} ({response.status_code})")
            return True
        except httpx.HTTPError as e:
            logger.error(f"Webhook delivery to {url} failed: {e}")
            return False

webhook_service = WebhookService()
