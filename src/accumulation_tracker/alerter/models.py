"""Data models for the alerter module."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, ClassVar


class AlertType(str, Enum):
    ACCUMULATION_SIGNAL = "ACCUMULATION_SIGNAL"
    WHALE_BUY = "WHALE_BUY"
    WHALE_SELL = "WHALE_SELL"
    EXCHANGE_DEPOSIT = "EXCHANGE_DEPOSIT"
    EXCHANGE_WITHDRAWAL = "EXCHANGE_WITHDRAWAL"
    SELL_WALL_CREATED = "SELL_WALL_CREATED"
    SELL_WALL_REMOVED = "SELL_WALL_REMOVED"
    TOKEN_BREAKOUT = "TOKEN_BREAKOUT"


class AlertStatus(str, Enum):
    PENDING = "PENDING"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class AlertChannels:
    """Per-alert delivery channel flags."""

    telegram: bool = False
    email: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> AlertChannels:
        if not data:
            return cls()
        return cls(telegram=bool(data.get("telegram", False)), email=bool(data.get("email", False)))

    def to_dict(self) -> dict[str, bool]:
        return {"telegram": self.telegram, "email": self.email}

    def enabled(self) -> list[str]:
        return [name for name, on in self.to_dict().items() if on]


DEFAULT_CHANNELS = AlertChannels()


class _Payload:
    """Shared (de)serialization for alert payloads.

    Stored alert metadata carries the payload fields plus a `kind` tag;
    unknown keys are kept in `extra`.
    """

    kind: ClassVar[str]

    def to_metadata(self) -> dict[str, Any]:
        data = asdict(self)  # type: ignore[call-overload]
        extra = data.pop("extra", {}) or {}
        return {**extra, **data, "kind": self.kind}

    @classmethod
    def from_metadata(cls, metadata: dict[str, Any]) -> Any:
        names = {f.name for f in fields(cls)}  # type: ignore[arg-type]
        known = {k: v for k, v in metadata.items() if k in names and k != "extra"}
        extra = {k: v for k, v in metadata.items() if k not in names and k != "kind"}
        return cls(**known, extra=extra)


@dataclass(frozen=True)
class SignalAlertPayload(_Payload):
    kind: ClassVar[str] = "signal"

    signal_id: str
    score: float
    signal_type: str
    window: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class WhaleTransferPayload(_Payload):
    """Large transfer attributed to one wallet (WHALE_BUY / WHALE_SELL)."""

    kind: ClassVar[str] = "whale_transfer"

    wallet_address: str
    amount: float
    transaction_hash: str | None = None
    timestamp: str | None = None
    token_symbol: str | None = None
    chain: str | None = None
    source: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ExchangeFlowPayload(_Payload):
    kind: ClassVar[str] = "exchange_flow"

    exchange: str
    amount: float
    transaction_hash: str | None = None
    timestamp: str | None = None
    token_symbol: str | None = None
    chain: str | None = None
    source: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SellWallPayload(_Payload):
    kind: ClassVar[str] = "sell_wall"

    sell_wall_id: str
    size: float | None = None
    price: float | None = None
    exchange: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BreakoutPayload(_Payload):
    kind: ClassVar[str] = "breakout"

    volume_24h: float
    price_change: float
    extra: dict[str, Any] = field(default_factory=dict)


AlertPayload = (
    SignalAlertPayload
    | WhaleTransferPayload
    | ExchangeFlowPayload
    | SellWallPayload
    | BreakoutPayload
)

PAYLOAD_TYPES: dict[AlertType, type[_Payload]] = {
    AlertType.ACCUMULATION_SIGNAL: SignalAlertPayload,
    AlertType.WHALE_BUY: WhaleTransferPayload,
    AlertType.WHALE_SELL: WhaleTransferPayload,
    AlertType.EXCHANGE_DEPOSIT: ExchangeFlowPayload,
    AlertType.EXCHANGE_WITHDRAWAL: ExchangeFlowPayload,
    AlertType.SELL_WALL_CREATED: SellWallPayload,
    AlertType.SELL_WALL_REMOVED: SellWallPayload,
    AlertType.TOKEN_BREAKOUT: BreakoutPayload,
}


def check_payload(alert_type: AlertType, payload: AlertPayload) -> None:
    """Raise TypeError when the payload variant does not match the alert type."""
    expected = PAYLOAD_TYPES[alert_type]
    if not isinstance(payload, expected):
        raise TypeError(
            f"{alert_type.value} alerts take {expected.__name__}, got {type(payload).__name__}"
        )


def payload_from_metadata(alert_type: str, metadata: dict[str, Any]) -> AlertPayload | None:
    """Rebuild the typed payload stored on an alert row.

    Returns:
        The payload, or None if the metadata does not fit the alert type.
    """
    try:
        payload_type = PAYLOAD_TYPES[AlertType(alert_type)]
    except ValueError:
        return None
    try:
        return payload_type.from_metadata(metadata)  # type: ignore[no-any-return]
    except TypeError:
        return None


@dataclass(frozen=True)
class FormattedAlert:
    """Alert rendered for every delivery channel.

    Attributes:
        title: Short headline.
        subject: Email subject line.
        body: Main body used by the plain text rendering.
        plain_text: Plain text rendering (email text part, logs).
        telegram_html: Telegram message using HTML parse mode.
        email_html: Standalone HTML email document.
        links: Named links referenced in the message.
    """

    title: str
    subject: str
    body: str
    plain_text: str
    telegram_html: str
    email_html: str
    links: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of one dispatch attempt."""

    alert_id: str
    status: AlertStatus
    errors: tuple[str, ...] = ()
    channel_results: dict[str, bool] = field(default_factory=dict)
    dry_run: bool = False

    @property
    def delivered(self) -> bool:
        return self.status is AlertStatus.DELIVERED

    def to_dict(self) -> dict[str, object]:
        return {
            "alert_id": self.alert_id,
            "status": self.status.value,
            "errors": list(self.errors),
            "channel_results": self.channel_results,
            "dry_run": self.dry_run,
        }
