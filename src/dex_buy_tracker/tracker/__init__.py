"""Buy tracking: subscriptions, resync, classification and enrichment."""

from dex_buy_tracker.tracker.classifier import classify
from dex_buy_tracker.tracker.enrichment import MetricsEnricher
from dex_buy_tracker.tracker.models import BuySignal, PositionChange, PremiumAlert
from dex_buy_tracker.tracker.registry import PoolResolutionError, PoolSubscriptionRegistry
from dex_buy_tracker.tracker.resync import ResyncLoop, ResyncState, ResyncStats

__all__ = [
    "BuySignal",
    "MetricsEnricher",
    "PoolResolutionError",
    "PoolSubscriptionRegistry",
    "PositionChange",
    "PremiumAlert",
    "ResyncLoop",
    "ResyncState",
    "ResyncStats",
    "classify",
]
