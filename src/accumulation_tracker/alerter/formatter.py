"""Alert message formatter for multi-channel delivery.

This module transforms accumulation signals and event alerts into
human-readable messages for Telegram (HTML parse mode), email (HTML and
plain text) and logs.
"""

from __future__ import annotations

from html import escape

from accumulation_tracker.alerter.models import (
    AlertPayload,
    AlertType,
    BreakoutPayload,
    ExchangeFlowPayload,
    FormattedAlert,
    SellWallPayload,
    SignalAlertPayload,
    WhaleTransferPayload,
)
from accumulation_tracker.storage.repos import AlertDTO, SignalDTO, TokenDTO

# Score bands used for emphasis
HIGH_SCORE_THRESHOLD = 75.0
MEDIUM_SCORE_THRESHOLD = 60.0

# Email score badge colors
COLOR_HIGH = "#dc2626"
COLOR_MEDIUM = "#d97706"
COLOR_LOW = "#16a34a"

EVENT_TITLES: dict[AlertType, str] = {
    AlertType.WHALE_BUY: "🐋 Whale Buy",
    AlertType.WHALE_SELL: "🐋 Whale Sell",
    AlertType.EXCHANGE_DEPOSIT: "🏦 Exchange Deposit",
    AlertType.EXCHANGE_WITHDRAWAL: "🏦 Exchange Withdrawal",
    AlertType.SELL_WALL_CREATED: "🧱 Sell Wall Created",
    AlertType.SELL_WALL_REMOVED: "🧱 Sell Wall Removed",
    AlertType.TOKEN_BREAKOUT: "🚀 Token Breakout",
}


def truncate_address(address: str, chars: int = 4) -> str:
    """Truncate an Ethereum address to 0x1234...5678 format."""
    if len(address) < chars * 2 + 4:
        return address
    return f"{address[: chars + 2]}...{address[-chars:]}"


def format_usd(amount: float) -> str:
    """Format a USD amount with commas and 2 decimal places."""
    return f"${amount:,.2f}"


def score_emoji(score: float) -> str:
    if score >= HIGH_SCORE_THRESHOLD:
        return "🚨"
    if score >= MEDIUM_SCORE_THRESHOLD:
        return "⚠️"
    return "📊"


def score_color(score: float) -> str:
    if score >= HIGH_SCORE_THRESHOLD:
        return COLOR_HIGH
    if score >= MEDIUM_SCORE_THRESHOLD:
        return COLOR_MEDIUM
    return COLOR_LOW


def _token_label(token: TokenDTO | None, token_id: str) -> str:
    if token is None:
        return token_id
    return f"{token.symbol} ({token.name})"


class AlertFormatter:
    """Formats signals and event alerts into multi-channel messages."""

    def __init__(self, frontend_url: str = "http://localhost:3000") -> None:
        self.frontend_url = frontend_url.rstrip("/")

    def format(
        self,
        alert: AlertDTO,
        payload: AlertPayload | None,
        *,
        token: TokenDTO | None = None,
        signal: SignalDTO | None = None,
    ) -> FormattedAlert:
        """Format a stored alert.

        Signal alerts render from the signal row when available; every other
        alert type renders from its payload.

        Args:
            alert: The alert being delivered.
            payload: Typed payload decoded from the alert metadata.
            token: Token row, if known.
            signal: Signal row for accumulation alerts.

        Returns:
            FormattedAlert with all channel formats.
        """
        if signal is not None:
            return self.format_signal(signal, token)
        if isinstance(payload, SignalAlertPayload):
            return self.format_signal_payload(payload, alert.token_id, token)
        return self.format_event(AlertType(alert.alert_type), payload, alert.token_id, token)

    def format_signal(self, signal: SignalDTO, token: TokenDTO | None) -> FormattedAlert:
        return self.format_signal_payload(
            SignalAlertPayload(
                signal_id=signal.id or "",
                score=float(signal.score),
                signal_type=signal.signal_type,
                window=signal.metadata.get("window"),
                extra={"wallets": len(signal.wallets_involved)},
            ),
            signal.token_id,
            token,
        )

    def format_signal_payload(
        self, payload: SignalAlertPayload, token_id: str, token: TokenDTO | None
    ) -> FormattedAlert:
        score = payload.score
        links = {"dashboard": f"{self.frontend_url}/signals/{payload.signal_id}"}
        symbol = token.symbol if token else token_id
        title = f"{score_emoji(score)} Accumulation Signal Detected"
        subject = f"🚨 Accumulation Signal: {symbol} (Score: {score:.2f})"

        rows: list[tuple[str, str]] = [("Token", _token_label(token, token_id))]
        if token is not None:
            rows.append(("Chain", token.chain))
        rows.append(("Score", f"{score:.2f}/100"))
        rows.append(("Type", payload.signal_type))
        if payload.window:
            rows.append(("Window", payload.window))
        wallets = payload.extra.get("wallets")
        if wallets:
            rows.append(("Wallets Involved", str(wallets)))

        return self._render(title, subject, rows, links, color=score_color(score))

    def format_event(
        self,
        alert_type: AlertType,
        payload: AlertPayload | None,
        token_id: str,
        token: TokenDTO | None,
    ) -> FormattedAlert:
        headline = EVENT_TITLES.get(alert_type, alert_type.value.replace("_", " ").title())
        symbol = token.symbol if token else token_id
        title = f"{headline}: {symbol}"
        links = {"token": f"{self.frontend_url}/tokens/{token_id}"}

        rows: list[tuple[str, str]] = [("Token", _token_label(token, token_id))]
        if token is not None:
            rows.append(("Chain", token.chain))
        rows.extend(self._event_rows(payload))

        return self._render(title, title, rows, links, color=COLOR_MEDIUM)

    def _event_rows(self, payload: AlertPayload | None) -> list[tuple[str, str]]:
        if isinstance(payload, WhaleTransferPayload):
            rows = [
                ("Wallet", truncate_address(payload.wallet_address)),
                ("Amount", format_usd(payload.amount)),
            ]
            if payload.transaction_hash:
                rows.append(("Transaction", truncate_address(payload.transaction_hash, 6)))
            return rows
        if isinstance(payload, ExchangeFlowPayload):
            return [("Exchange", payload.exchange), ("Amount", format_usd(payload.amount))]
        if isinstance(payload, SellWallPayload):
            rows = [("Sell Wall", payload.sell_wall_id)]
            if payload.exchange:
                rows.append(("Exchange", payload.exchange))
            if payload.size is not None:
                rows.append(("Size", f"{payload.size:,.2f}"))
            if payload.price is not None:
                rows.append(("Price", f"${payload.price:,.6g}"))
            return rows
        if isinstance(payload, BreakoutPayload):
            return [
                ("24h Volume", format_usd(payload.volume_24h)),
                ("Price Change", f"{payload.price_change:+.2f}%"),
            ]
        return []

    def _render(
        self,
        title: str,
        subject: str,
        rows: list[tuple[str, str]],
        links: dict[str, str],
        *,
        color: str,
    ) -> FormattedAlert:
        body = "\n".join(f"{label}: {value}" for label, value in rows)
        link = next(iter(links.values()), None)

        plain_lines = [title, "", body]
        if link:
            plain_lines += ["", f"View on Dashboard: {link}"]
        plain_text = "\n".join(plain_lines)

        telegram_lines = [f"<b>{escape(title)}</b>", ""]
        telegram_lines += [f"<b>{escape(label)}:</b> {escape(value)}" for label, value in rows]
        if link:
            telegram_lines += ["", f'<a href="{escape(link)}">View on Dashboard →</a>']
        telegram_html = "\n".join(telegram_lines)

        return FormattedAlert(
            title=title,
            subject=subject,
            body=body,
            plain_text=plain_text,
            telegram_html=telegram_html,
            email_html=self._build_email_html(title, rows, link, color),
            links=links,
        )

    def _build_email_html(
        self, title: str, rows: list[tuple[str, str]], link: str | None, color: str
    ) -> str:
        row_html = "\n".join(
            f'<div class="info-row"><span class="label">{escape(label)}:</span> '
            f"{escape(value)}</div>"
            for label, value in rows
        )
        button = (
            f'<a href="{escape(link)}" class="button">View on Dashboard</a>' if link else ""
        )
        return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<style>
  body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
  .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
  .header {{ background: {color}; color: white; padding: 20px; border-radius: 8px 8px 0 0; }}
  .content {{ background: #f9fafb; padding: 20px; border: 1px solid #e5e7eb; }}
  .info-row {{ margin: 10px 0; }}
  .label {{ font-weight: bold; color: #6b7280; }}
  .button {{ display: inline-block; padding: 12px 24px; background: #3b82f6; color: white;
             text-decoration: none; border-radius: 6px; margin-top: 20px; }}
</style>
</head>
<body>
<div class="container">
  <div class="header"><h1>{escape(title)}</h1></div>
  <div class="content">
{row_html}
{button}
  </div>
</div>
</body>
</html>
"""
