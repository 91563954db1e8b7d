"""Prize notifications posted to a staff MS Teams channel."""
import aiohttp
from typing import Optional, Dict, Any
from navconfig.logging import logging

from ..conf import REWARDS_WEBHOOK_TIMEOUT
from ..exceptions import RewardsError
from ..prizes.collaborators import Notifier


ADAPTIVE_CARD = "application/vnd.microsoft.card.adaptive"


class TeamsWebhook:
    """Posts Adaptive Cards to an incoming Teams webhook.

    Delivery problems are logged and reported as ``False``; they never
    reach the prize flow.
    """

    def __init__(self, webhook_url: str, timeout: int = REWARDS_WEBHOOK_TIMEOUT):
        self.webhook_url = webhook_url
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.logger = logging.getLogger('Rewards.TeamsWebhook')

    @staticmethod
    def wrap(card: Dict[str, Any]) -> Dict[str, Any]:
        """Teams expects cards inside a ``message`` attachment."""
        return {
            "type": "message",
            "attachments": [
                {"contentType": ADAPTIVE_CARD, "contentUrl": None, "content": card}
            ]
        }

    async def send_adaptive_card(self, card: Dict[str, Any]) -> bool:
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(self.webhook_url, json=self.wrap(card)) as response:
                    if 200 <= response.status < 300:
                        self.logger.debug(
                            f"Prize card delivered ({response.status})"
                        )
                        return True
                    body = await response.text()
                    self.logger.error(
                        f"Teams rejected prize card: {response.status} - {body}"
                    )
        except aiohttp.ClientError as err:
            self.logger.error(f"Cannot reach Teams webhook: {err}")
        return False


class TeamsWebhookNotifier(Notifier):
    """Notifier that posts prize events to a staff Teams channel.

    Usage:
        notifier = TeamsWebhookNotifier(webhook_url=REWARDS_TEAMS_WEBHOOK)
        engine = PrizeEngine(store, clients, notifier=notifier)
    """

    def __init__(self, webhook_url: str, webhook: Optional[TeamsWebhook] = None):
        self.webhook = webhook or TeamsWebhook(webhook_url)

    def build_card(
        self,
        client_id: int,
        title: str,
        message: str,
        related_id: Optional[int] = None
    ) -> Dict[str, Any]:
        facts = [{"title": "Client", "value": str(client_id)}]
        if related_id is not None:
            facts.append({"title": "Winning", "value": str(related_id)})
        return {
            "$schema": "http://adaptivecards.io/schemas/adaptive-card.json",
            "type": "AdaptiveCard",
            "version": "1.5",
            "body": [
                {
                    "type": "TextBlock",
                    "text": f"🎁 {title}",
                    "weight": "Bolder",
                    "size": "Large",
                    "color": "Accent"
                },
                {
                    "type": "TextBlock",
                    "text": message,
                    "wrap": True,
                    "spacing": "Medium"
                },
                {
                    "type": "FactSet",
                    "facts": facts
                }
            ]
        }

    async def notify(
        self,
        client_id: int,
        category: str,
        title: str,
        message: str,
        priority: str = 'high',
        related_id: Optional[int] = None
    ) -> None:
        card = self.build_card(client_id, title, message, related_id)
        if priority == 'high':
            card["body"][0]["color"] = "Attention"
        if not await self.webhook.send_adaptive_card(card):
            raise RewardsError(
                f"Teams did not accept the '{category}' notification "
                f"for client {client_id}"
            )
