"""Alert rendering: subject, plain text and HTML for each signal type."""

from __future__ import annotations

from html import escape
from typing import Any, List, Mapping, Optional, Sequence

from insider_signals.compute.scoring import strength_label
from insider_signals.models import RenderedMessage

_FOOTER_TEXT = "Manage alert preferences: {url}/settings/alerts"


def format_number(value: Optional[float]) -> str:
    if not value:
        return "0"
    return f"{float(value):,.0f}"


def format_price(value: Optional[float]) -> str:
    if value is None:
        return "N/A"
    return f"{float(value):,.2f}"


def _symbol(info: Mapping[str, Any]) -> str:
    return str(info.get("trading_symbol") or info.get("issuer_cik") or "")


def _html_shell(title: str, banner: str, body: str, app_url: str, color: str = "#2563eb") -> str:
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        f'<div style="background: {color}; color: white; padding: 20px; border-radius: 8px 8px 0 0;">'
        f'<h2 style="margin: 0;">{escape(title)}</h2>'
        f'<p style="margin: 5px 0 0 0; font-size: 16px; font-weight: bold;">{escape(banner)}</p>'
        "</div>"
        f'<div style="padding: 20px; background: #f9fafb;">{body}</div>'
        '<div style="padding: 15px; background: #f3f4f6; text-align: center; font-size: 12px; color: #6b7280;">'
        f'<p>SEC Insider Trading Alerts | <a href="{escape(app_url)}/settings/alerts">Manage Preferences</a></p>'
        "</div></div>"
    )


def _role_info(info: Mapping[str, Any]) -> List[str]:
    roles: List[str] = []
    if info.get("is_officer") and info.get("officer_title"):
        roles.append(str(info["officer_title"]))
    elif info.get("is_officer"):
        roles.append("Officer")
    if info.get("is_director"):
        roles.append("Director")
    if info.get("is_ten_percent_owner"):
        roles.append("10% Owner")
    return roles


def render_cluster_buy(cluster: Mapping[str, Any], trades: Sequence[Mapping[str, Any]], app_url: str) -> RenderedMessage:
    symbol = _symbol(cluster)
    label = strength_label(int(cluster["signal_strength"]))
    link = f"{app_url.rstrip('/')}/company/{cluster['issuer_cik']}"
    key_buyers = list(trades)[:5]

    subject = f"{label} Cluster Buy Alert: {cluster['total_insiders']} Insiders Buying {symbol}"

    lines = [
        f"CLUSTER BUY ALERT - {label}",
        "",
        f"{cluster['issuer_name']} ({symbol})",
        f"{cluster['total_insiders']} insiders purchased shares on {cluster['transaction_date']}",
        "",
        f"Total Value: ${format_number(cluster['total_value'])}",
        f"Total Shares: {format_number(cluster['total_shares'])}",
        f"Signal Strength: {cluster['signal_strength']}/100",
        "",
        "KEY BUYERS:",
    ]
    for t in key_buyers:
        title = f" ({t['officer_title']})" if t.get("officer_title") else ""
        lines.append(f"- {t['person_name']}{title}: ${format_number(t['transaction_value'])}")
    notes = []
    if cluster.get("has_ceo_buy"):
        notes.append("CEO participated in this cluster buy!")
    if cluster.get("has_cfo_buy"):
        notes.append("CFO participated in this cluster buy!")
    if notes:
        lines.append("")
        lines.extend(notes)
    lines += ["", f"View full details: {link}", "", _FOOTER_TEXT.format(url=app_url.rstrip("/"))]

    buyers_html = "".join(
        '<li style="padding: 8px; background: white; margin: 5px 0; border-left: 3px solid #2563eb;">'
        f"<strong>{escape(str(t['person_name']))}</strong>"
        + (f" ({escape(str(t['officer_title']))})" if t.get("officer_title") else "")
        + f'<br><span style="color: #059669; font-weight: bold;">${format_number(t["transaction_value"])}</span></li>'
        for t in key_buyers
    )
    notes_html = (
        '<div style="background: #fef3c7; border-left: 4px solid #f59e0b; padding: 10px; margin: 15px 0;">'
        + "".join(f'<p style="margin: 5px 0;">{escape(n)}</p>' for n in notes)
        + "</div>"
        if notes
        else ""
    )
    body = (
        f'<h3 style="margin: 0 0 10px 0;">{escape(str(cluster["issuer_name"]))}</h3>'
        f"<p>Symbol: <strong>{escape(symbol)}</strong></p>"
        f"<p><strong>{cluster['total_insiders']}</strong> insiders purchased shares on "
        f"<strong>{escape(str(cluster['transaction_date']))}</strong></p>"
        f"<p>Total Value: <strong>${format_number(cluster['total_value'])}</strong></p>"
        f"<p>Total Shares: <strong>{format_number(cluster['total_shares'])}</strong></p>"
        f"<p>Signal Strength: <strong>{cluster['signal_strength']}/100</strong></p>"
        f'<h4>Key Buyers:</h4><ul style="list-style: none; padding: 0;">{buyers_html}</ul>'
        f"{notes_html}"
        f'<a href="{escape(link)}">View Full Details</a>'
    )
    html = _html_shell("Cluster Buy Alert", label, body, app_url.rstrip("/"), color="#4f46e5")
    return RenderedMessage(subject=subject, text="\n".join(lines), html=html)


def render_important_trade(trade: Mapping[str, Any], app_url: str) -> RenderedMessage:
    symbol = _symbol(trade)
    action = "BUY" if trade.get("acquired_disposed_code") == "A" else "SELL"
    link = f"{app_url.rstrip('/')}/filing/{trade['accession_number']}"
    roles = _role_info(trade)

    subject = f"Important Insider {action}: {trade['person_name']} @ {symbol}"

    notes = []
    if trade.get("is_first_buy"):
        notes.append("This is a FIRST BUY by this insider!")
    if int(trade.get("cluster_size") or 0) > 1:
        notes.append(f"Part of a cluster with {trade['cluster_size']} insiders")

    lines = [
        f"IMPORTANT INSIDER {action}",
        "",
        str(trade["person_name"]),
        ", ".join(roles),
        "",
        f"Company: {trade['issuer_name']} ({symbol})",
        f"Transaction Date: {trade['transaction_date']}",
        "",
        f"Amount: ${format_number(trade['transaction_value'])}",
        f"Shares: {format_number(trade['shares_transacted'])} @ ${format_price(trade.get('price_per_share'))}",
        f"Importance Score: {trade['importance_score']}/100",
    ]
    if notes:
        lines.append("")
        lines.extend(notes)
    lines += ["", f"View filing: {link}", "", _FOOTER_TEXT.format(url=app_url.rstrip("/"))]

    amount_color = "#059669" if action == "BUY" else "#dc2626"
    notes_html = "".join(f'<p style="margin: 5px 0;">{escape(n)}</p>' for n in notes)
    body = (
        f'<h3 style="margin: 0 0 5px 0;">{escape(str(trade["person_name"]))}</h3>'
        f'<p style="color: #6b7280;">{escape(", ".join(roles))}</p>'
        f"<p>Company: <strong>{escape(str(trade['issuer_name']))}</strong> ({escape(symbol)})</p>"
        f"<p>Date: <strong>{escape(str(trade['transaction_date']))}</strong></p>"
        f'<p>Amount: <strong style="color: {amount_color};">${format_number(trade["transaction_value"])}</strong></p>'
        f"<p>Shares: <strong>{format_number(trade['shares_transacted'])}</strong> @ ${format_price(trade.get('price_per_share'))}</p>"
        + (f'<div style="background: #fef3c7; padding: 10px; margin: 15px 0;">{notes_html}</div>' if notes else "")
        + f'<a href="{escape(link)}">View Full Filing</a>'
    )
    html = _html_shell(
        f"Important Insider {action}",
        f"Score: {trade['importance_score']}/100",
        body,
        app_url.rstrip("/"),
        color="#10b981" if action == "BUY" else "#ef4444",
    )
    return RenderedMessage(subject=subject, text="\n".join(lines), html=html)


def render_first_buy(first_buy: Mapping[str, Any], app_url: str) -> RenderedMessage:
    symbol = _symbol(first_buy)
    link = f"{app_url.rstrip('/')}/filing/{first_buy['accession_number']}"
    roles = _role_info(first_buy)

    subject = f"First Buy Alert: {first_buy['person_name']} buys {symbol}"

    lines = [
        "FIRST BUY ALERT",
        "",
        f"{first_buy['person_name']} made their first open-market purchase of "
        f"{first_buy['issuer_name']} ({symbol}) in {first_buy['lookback_days']} days.",
        ", ".join(roles),
        "",
        f"Transaction Date: {first_buy['transaction_date']}",
        f"Amount: ${format_number(first_buy['transaction_value'])}",
        f"Shares: {format_number(first_buy['shares_transacted'])} @ ${format_price(first_buy.get('price_per_share'))}",
        f"Importance Score: {first_buy['importance_score']}/100",
    ]
    if first_buy.get("is_part_of_cluster"):
        lines += ["", f"Part of a cluster with {first_buy['cluster_size']} insiders"]
    lines += ["", f"View filing: {link}", "", _FOOTER_TEXT.format(url=app_url.rstrip("/"))]

    body = (
        f'<h3 style="margin: 0 0 5px 0;">{escape(str(first_buy["person_name"]))}</h3>'
        f'<p style="color: #6b7280;">{escape(", ".join(roles))}</p>'
        f"<p>First open-market purchase of <strong>{escape(str(first_buy['issuer_name']))}</strong> "
        f"({escape(symbol)}) in {first_buy['lookback_days']} days</p>"
        f"<p>Date: <strong>{escape(str(first_buy['transaction_date']))}</strong></p>"
        f"<p>Amount: <strong>${format_number(first_buy['transaction_value'])}</strong></p>"
        + (
            f"<p>Part of a cluster with {first_buy['cluster_size']} insiders</p>"
            if first_buy.get("is_part_of_cluster")
            else ""
        )
        + f'<a href="{escape(link)}">View Full Filing</a>'
    )
    html = _html_shell(
        "First Buy Alert", f"Score: {first_buy['importance_score']}/100", body, app_url.rstrip("/"), color="#0ea5e9"
    )
    return RenderedMessage(subject=subject, text="\n".join(lines), html=html)


def render_digest(entries: Sequence[Mapping[str, Any]], digest_date: str, app_url: str) -> RenderedMessage:
    """Combine queued alerts into one message, in queue order."""
    n = len(entries)
    subject = f"Insider Alerts Digest {digest_date}: {n} new alert{'s' if n != 1 else ''}"

    sep = "\n\n" + "-" * 40 + "\n\n"
    text = f"DAILY DIGEST - {digest_date}\n\n" + sep.join(
        f"{e['subject']}\n\n{e['body_text']}" for e in entries
    )

    sections: List[str] = []
    for e in entries:
        inner = e.get("body_html") or f"<pre>{escape(str(e['body_text']))}</pre>"
        sections.append(
            f'<div style="margin-bottom: 20px;"><h3>{escape(str(e["subject"]))}</h3>{inner}</div>'
        )
    html = _html_shell("Daily Digest", f"{n} alerts - {digest_date}", "".join(sections), app_url.rstrip("/"))
    return RenderedMessage(subject=subject, text=text, html=html)


def render_test_email(to: str, app_url: str) -> RenderedMessage:
    subject = "Test alert from Insider Signals"
    text = (
        f"This is a test message sent to {to}.\n\n"
        "If you received it, alert delivery is configured correctly.\n\n"
        + _FOOTER_TEXT.format(url=app_url.rstrip("/"))
    )
    html = _html_shell(
        "Test Alert",
        "Delivery check",
        f"<p>This is a test message sent to <strong>{escape(to)}</strong>.</p>"
        "<p>If you received it, alert delivery is configured correctly.</p>",
        app_url.rstrip("/"),
    )
    return RenderedMessage(subject=subject, text=text, html=html)

