"""Per-group alert filtering, rendering and delivery."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from dex_buy_tracker.alerter.formatter import AlertFormatter
from dex_buy_tracker.alerter.models import AlertButton, FormattedAlert, MediaChoice, MediaKind
from dex_buy_tracker.groups import GroupConfig
from dex_buy_tracker.tracker.models import PremiumAlert

logger = logging.getLogger(__name__)

ANIMATION_EXTENSION = ".gif"


class MessagingGateway(Protocol):
    async def send_text(
        self, chat_id: str, text: str, keyboard: Sequence[Sequence[AlertButton]] = ()
    ) -> bool: ...

    async def send_image(
        self,
        chat_id: str,
        image: str,
        caption: str,
        keyboard: Sequence[Sequence[AlertButton]] = (),
    ) -> bool: ...

    async def send_animation(
        self,
        chat_id: str,
        animation: str,
        caption: str,
        keyboard: Sequence[Sequence[AlertButton]] = (),
    ) -> bool: ...


@dataclass
class DispatchStats:
    """Statistics for alert dispatch."""

    sent: int = 0
    below_min: int = 0
    above_max: int = 0
    delivery_failures: int = 0
    dry_run: int = 0


def select_media(config: GroupConfig) -> MediaChoice:
    """Pick the richest media the group configured.

    Priority: uploaded animation, uploaded image, image URL (an animation
    when it ends in .gif), plain text.
    """
    if config.animation_file_id:
        return MediaChoice(MediaKind.ANIMATION, config.animation_file_id)
    if config.image_file_id:
        return MediaChoice(MediaKind.IMAGE, config.image_file_id)
    if config.image_url:
        path = config.image_url.split("?", 1)[0].lower()
        kind = MediaKind.ANIMATION if path.endswith(ANIMATION_EXTENSION) else MediaKind.IMAGE
        return MediaChoice(kind, config.image_url)
    return MediaChoice(MediaKind.TEXT)


class AlertDispatcher:
    """Applies group filters and delivers formatted alerts.

    Example:
        ```python
        dispatcher = AlertDispatcher(formatter, gateway)
        sent = await dispatcher.maybe_alert(group_id, config, alert)
        ```
    """

    def __init__(
        self,
        formatter: AlertFormatter,
        gateway: MessagingGateway | None,
        *,
        dry_run: bool = False,
    ) -> None:
        self._formatter = formatter
        self._gateway = gateway
        self._dry_run = dry_run or gateway is None
        self._stats = DispatchStats()

    @property
    def stats(self) -> DispatchStats:
        return self._stats

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    async def maybe_alert(self, group_id: str, config: GroupConfig, alert: PremiumAlert) -> bool:
        """Filter, render and deliver an alert to one group.

        Returns:
            True if the alert was delivered (or logged in dry-run mode).
        """
        if alert.usd_value < config.min_buy_usd:
            self._stats.below_min += 1
            logger.debug(
                "Group %s: buy $%.2f below minimum $%s",
                group_id,
                alert.usd_value,
                config.min_buy_usd,
            )
            return False
        if config.max_buy_usd is not None and alert.usd_value > config.max_buy_usd:
            self._stats.above_max += 1
            logger.debug(
                "Group %s: buy $%.2f above maximum $%s",
                group_id,
                alert.usd_value,
                config.max_buy_usd,
            )
            return False

        formatted = self._formatter.format(alert, config)
        media = select_media(config)

        if self._dry_run:
            self._stats.dry_run += 1
            logger.info(
                "[DRY RUN] Would send %s alert to %s: tx=%s, usd=%.2f, tier=%s\n%s",
                media.kind.value,
                group_id,
                alert.tx_hash,
                alert.usd_value,
                formatted.tier.value,
                formatted.plain_text,
            )
            return True

        delivered = await self.deliver(group_id, formatted, media)
        if delivered:
            self._stats.sent += 1
            logger.info(
                "Alert sent to %s: tx=%s, usd=%.2f, tier=%s",
                group_id,
                alert.tx_hash,
                alert.usd_value,
                formatted.tier.value,
            )
        else:
            self._stats.delivery_failures += 1
        return delivered

    async def deliver(self, group_id: str, formatted: FormattedAlert, media: MediaChoice) -> bool:
        """Send a rendered alert with the chosen media, ignoring filters and dry-run."""
        gateway = self._gateway
        if gateway is None:
            return False
        try:
            if media.kind == MediaKind.ANIMATION and media.reference:
                return await gateway.send_animation(
                    group_id, media.reference, formatted.html, formatted.keyboard
                )
            if media.kind == MediaKind.IMAGE and media.reference:
                return await gateway.send_image(
                    group_id, media.reference, formatted.html, formatted.keyboard
                )
            return await gateway.send_text(group_id, formatted.html, formatted.keyboard)
        except Exception as e:
            # Not retried.
            logger.error("Delivery to %s failed: %s", group_id, e)
            return False
