"""Alert rendering and delivery."""

from dex_buy_tracker.alerter.dispatcher import AlertDispatcher, DispatchStats, select_media
from dex_buy_tracker.alerter.formatter import AlertFormatter, emoji_count, truncate_address
from dex_buy_tracker.alerter.gateway import TelegramGateway
from dex_buy_tracker.alerter.models import (
    AlertButton,
    BuyTier,
    FormattedAlert,
    MediaChoice,
    MediaKind,
)

__all__ = [
    "AlertButton",
    "AlertDispatcher",
    "AlertFormatter",
    "BuyTier",
    "DispatchStats",
    "FormattedAlert",
    "MediaChoice",
    "MediaKind",
    "TelegramGateway",
    "emoji_count",
    "select_media",
    "truncate_address",
]
