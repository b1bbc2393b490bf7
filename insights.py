import json
import logging
import re
from typing import Optional

import google.generativeai as genai

from config import Settings
from store import MonthlyStats


logger = logging.getLogger(__name__)

FALLBACK_INSIGHTS = [
    "Your highest expense category this month might need attention.",
    "Consider setting up a budget for better financial management.",
    "Track your recurring expenses to identify potential savings.",
]

_FENCE_RE = re.compile(r"```(?:json)?\n?")


class InsightParseError(ValueError):
    pass


def build_prompt(stats: MonthlyStats, month_label: str) -> str:
    categories = ", ".join(
        f"{name}: {amount}" for name, amount in sorted(stats.by_category.items())
    )
    return f"""
Analyze this financial data and provide 3 concise, actionable insights.
Focus on spending patterns and practical advice.
Keep it friendly and conversational.

Financial Data for {month_label}:
- Total Income: {stats.total_income}
- Total Expenses: {stats.total_expenses}
- Net Income: {stats.net}
- Expense Categories: {categories or "none"}

Format the response as a JSON array of strings, like this:
["insight 1", "insight 2", "insight 3"]
"""


def parse_insights(text: Optional[str]) -> list[str]:
    if not text:
        raise InsightParseError("Empty response")
    cleaned = _FENCE_RE.sub("", text).strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise InsightParseError("Response is not valid JSON") from exc
    if not isinstance(data, list):
        raise InsightParseError("Expected a JSON array")
    insights = [item.strip() for item in data if isinstance(item, str) and item.strip()]
    if not insights:
        raise InsightParseError("No insights in response")
    return insights


class InsightGenerator:
    def __init__(self, settings: Settings) -> None:
        self.api_key = settings.gemini_api_key
        self.model_name = settings.gemini_model
        self._model = None

    def _get_model(self):
        if self._model is None:
            if not self.api_key:
                raise RuntimeError("Missing Gemini API key")
            genai.configure(api_key=self.api_key)
            self._model = genai.GenerativeModel(self.model_name)
        return self._model

    def generate(self, stats: MonthlyStats, month_label: str) -> list[str]:
        response = self._get_model().generate_content(build_prompt(stats, month_label))
        return parse_insights(response.text)

