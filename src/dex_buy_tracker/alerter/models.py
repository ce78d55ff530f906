"""Data models for rendered alerts."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class BuyTier(str, Enum):
    """Severity tier of a buy, by USD value."""

    NEW = "new_buy"
    STRONG = "strong_buy"
    BIG = "big_buy"
    WHALE = "whale"


class MediaKind(str, Enum):
    """How an alert is delivered."""

    ANIMATION = "animation"
    IMAGE = "image"
    TEXT = "text"


@dataclass(frozen=True)
class AlertButton:
    """An inline URL button under the alert."""

    text: str
    url: str


@dataclass(frozen=True)
class FormattedAlert:
    """A buy alert rendered for delivery.

    Attributes:
        tier: Severity tier that selected the headline.
        html: Telegram HTML body (also used as media caption).
        plain_text: Markup-free version for logs and previews.
        emoji_count: Number of glyphs in the magnitude bar.
        keyboard: Rows of inline buttons.
        links: Named links embedded in the body.
    """

    tier: BuyTier
    html: str
    plain_text: str
    emoji_count: int
    keyboard: tuple[tuple[AlertButton, ...], ...] = ()
    links: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class MediaChoice:
    """The media a group's alert is sent with."""

    kind: MediaKind
    reference: str | None = None
