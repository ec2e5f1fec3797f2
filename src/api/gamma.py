"""Gamma API client for market metadata."""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config import API_TIMEOUT, GAMMA_API_URL, MAX_RETRY_ATTEMPTS

logger = logging.getLogger(__name__)


def _parse_json_list(value: Any) -> list:
    """Gamma encodes some list fields as JSON strings."""
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return []
        return parsed if isinstance(parsed, list) else []
    return list(value or [])


def parse_timestamp(date_str: Any) -> Optional[float]:
    """Parse an ISO date string (or unix seconds) into a unix timestamp."""
    if date_str is None or date_str == "":
        return None
    if isinstance(date_str, (int, float)):
        return float(date_str)

    text = str(date_str).replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        try:
            parsed = datetime.strptime(str(date_str), "%Y-%m-%d")
        except ValueError:
            return None
    return parsed.timestamp()


@dataclass
class MarketInfo:
    """
    Normalized market metadata.

    Attributes:
        condition_id: Market condition identifier.
        question: Market title.
        token_ids: Outcome token ids, indexed like outcomes.
        outcomes: Outcome labels (e.g. ["Yes", "No"]).
        end_date: Scheduled end time as unix seconds (if known).
    """

    condition_id: str
    question: str = ""
    token_ids: list[str] = field(default_factory=list)
    outcomes: list[str] = field(default_factory=list)
    end_date: Optional[float] = None

    def token_for_outcome(self, outcome_index: Optional[int]) -> Optional[str]:
        """Token id for an outcome index, or None if out of range."""
        if outcome_index is None or not 0 <= outcome_index < len(self.token_ids):
            return None
        return self.token_ids[outcome_index]


class GammaClient:
    """
    Client for Polymarket Gamma API.

    Used for:
    - Recovering token ids for trades that arrive without an asset
    - Market end dates for positions awaiting resolution
    """

    def __init__(self, base_url: str = GAMMA_API_URL, timeout: float = API_TIMEOUT):
        self.base_url = base_url
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})

    @retry(
        stop=stop_after_attempt(MAX_RETRY_ATTEMPTS),
        wait=wait_exponential(multiplier=1, min=0.5, max=2.0),
        retry=retry_if_exception_type(requests.RequestException),
        reraise=True,
    )
    def _get(self, endpoint: str, params: Optional[dict] = None) -> Any:
        """Make GET request."""
        response = self.session.get(f"{self.base_url}{endpoint}", params=params, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def get_market(self, condition_id: str) -> Optional[MarketInfo]:
        """
        Get market metadata by condition ID.

        Returns:
            MarketInfo or None if the market is unknown or the API failed.
        """
        try:
            data = self._get("/markets", {"condition_ids": condition_id})
        except requests.RequestException as e:
            logger.warning(f"Failed to fetch market {condition_id}: {e}")
            return None

        if isinstance(data, list):
            data = data[0] if data else None
        if not data:
            return None
        return self.extract_market_info(data, condition_id)

    @staticmethod
    def extract_market_info(market: dict, condition_id: str = "") -> MarketInfo:
        """Normalize a raw Gamma market object."""
        return MarketInfo(
            condition_id=market.get("conditionId") or market.get("condition_id") or condition_id,
            question=market.get("question", ""),
            token_ids=[str(t) for t in _parse_json_list(market.get("clobTokenIds"))],
            outcomes=[str(o) for o in _parse_json_list(market.get("outcomes"))],
            end_date=parse_timestamp(market.get("endDate") or market.get("endDateIso")),
        )
