"""Date helpers for prompts."""

from datetime import datetime
from zoneinfo import ZoneInfo


def get_current_date() -> str:
    """
    Get current date in a readable format for prompts.

    Returns:
        Current date string in format: "December 29, 2024"
    """
    return datetime.now(ZoneInfo("UTC")).strftime("%B %d, %Y")
