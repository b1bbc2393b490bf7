from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from http.client import HTTPException
from typing import Optional, Protocol
from urllib.request import Request, urlopen

from jinja2 import DictLoader, Environment, select_autoescape

from config import Settings
from store import MonthlyStats


logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"


@dataclass(frozen=True)
class SendResult:
    success: bool
    error: Optional[str] = None
    message_id: Optional[str] = None


class NotificationSender(Protocol):
    def send(self, to: str, subject: str, body: str) -> SendResult: ...


class EmailSender:
    def __init__(self, settings: Settings) -> None:
        self.api_key = settings.resend_api_key
        self.sender = settings.email_from
        self.timeout = settings.email_timeout_secs

    def send(self, to: str, subject: str, body: str) -> SendResult:
        if not self.api_key:
            logger.error("email_send: missing Resend API key")
            return SendResult(False, "Missing API key")
        if not to or not subject or not body:
            logger.error("email_send: missing required email parameters")
            return SendResult(False, "Invalid email parameters")

        payload = json.dumps(
            {"from": self.sender, "to": [to], "subject": subject, "html": body}
        ).encode("utf-8")
        req = Request(
            RESEND_URL,
            data=payload,
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                data = json.loads(resp.read().decode("utf-8") or "{}")
        except (OSError, HTTPException, ValueError) as exc:
            logger.error(f"email_send: failed to={to} subject={subject!r} error={exc}")
            return SendResult(False, str(exc) or "Failed to send email")
        message_id = data.get("id") if isinstance(data, dict) else None
        return SendResult(True, message_id=message_id)


_TEMPLATES = {
    "budget_alert.html": """\
<h1>Budget Alert</h1>
<p>Hello {{ user_name or "there" }},</p>
<p>You have used <strong>{{ "%.1f"|format(percentage_used) }}%</strong>
of your monthly budget on <strong>{{ account_name }}</strong>.</p>
<table>
  <tr><td>Budget</td><td>{{ budget_amount|money }}</td></tr>
  <tr><td>Spent so far</td><td>{{ total_expenses|money }}</td></tr>
  <tr><td>Remaining</td><td>{{ (budget_amount - total_expenses)|money }}</td></tr>
</table>
""",
    "monthly_report.html": """\
<h1>Your Monthly Financial Report</h1>
<p>Hello {{ user_name or "there" }},</p>
<p>Here is your financial summary for {{ month }}.</p>
<table>
  <tr><td>Total income</td><td>{{ stats.total_income|money }}</td></tr>
  <tr><td>Total expenses</td><td>{{ stats.total_expenses|money }}</td></tr>
  <tr><td>Net</td><td>{{ stats.net|money }}</td></tr>
  <tr><td>Transactions</td><td>{{ stats.transaction_count }}</td></tr>
</table>
{% if stats.by_category %}
<h2>Expenses by category</h2>
<ul>
{% for category, amount in stats.by_category|dictsort %}
  <li>{{ category }}: {{ amount|money }}</li>
{% endfor %}
</ul>
{% endif %}
<h2>Insights</h2>
<ul>
{% for insight in insights %}
  <li>{{ insight }}</li>
{% endfor %}
</ul>
""",
}


def format_money(amount: Decimal) -> str:
    return f"{Decimal(amount):,.2f}"


_env = Environment(
    loader=DictLoader(_TEMPLATES),
    autoescape=select_autoescape(["html"]),
)
_env.filters["money"] = format_money


def render_budget_alert(
    *,
    user_name: Optional[str],
    account_name: str,
    percentage_used: Decimal,
    budget_amount: Decimal,
    total_expenses: Decimal,
) -> tuple[str, str]:
    body = _env.get_template("budget_alert.html").render(
        user_name=user_name,
        account_name=account_name,
        percentage_used=float(percentage_used),
        budget_amount=budget_amount,
        total_expenses=total_expenses,
    )
    return f"Budget Alert for {account_name}", body


def render_monthly_report(
    *,
    user_name: Optional[str],
    month: str,
    stats: MonthlyStats,
    insights: list[str],
) -> tuple[str, str]:
    body = _env.get_template("monthly_report.html").render(
        user_name=user_name, month=month, stats=stats, insights=insights
    )
    return f"Your Monthly Financial Report - {month}", body
