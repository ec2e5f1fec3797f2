"""
Public CLOB endpoints: market resolution and live prices.

No authentication is needed. Lookups are retried with exponential backoff
since they are read-only.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import requests
from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config import API_TIMEOUT, CLOB_BASE_URL, MAX_RETRY_ATTEMPTS

logger = logging.getLogger(__name__)


class ResolutionLookupError(Exception):
    """Raised when the resolution status of a market cannot be determined."""

    pass


@dataclass(frozen=True)
class ResolutionStatus:
    """Resolution state of a market."""

    resolved: bool
    winning_outcome: Optional[str] = None


class ClobPublicClient:
    """
    Read-only client for the Polymarket CLOB REST API.

    Example:
        clob = ClobPublicClient()
        status = clob.get_resolution("0xabc...")
        if status.resolved:
            print(status.winning_outcome)
    """

    def __init__(self, base_url: str = CLOB_BASE_URL, timeout: float = API_TIMEOUT):
        self.base_url = base_url
        self.timeout = timeout
        self.session = requests.Session()

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

    def get_resolution(self, condition_id: str) -> ResolutionStatus:
        """
        Check whether a market has resolved.

        A market counts as resolved once a token is marked winner or the
        market is archived. The winner is marked before archiving.

        Raises:
            ResolutionLookupError: If the API could not be reached.
        """
        try:
            data = self._get(f"/markets/{condition_id}")
        except (requests.RequestException, RetryError) as e:
            raise ResolutionLookupError(f"Resolution lookup failed for {condition_id}: {e}") from e

        return self.parse_resolution(data or {})

    @staticmethod
    def parse_resolution(data: dict) -> ResolutionStatus:
        winner = next((t for t in data.get("tokens") or [] if t.get("winner") is True), None)
        if not (data.get("archived") is True or winner):
            return ResolutionStatus(resolved=False)
        return ResolutionStatus(resolved=True, winning_outcome=winner.get("outcome") if winner else None)

    def get_midpoint(self, token_id: str) -> Optional[Decimal]:
        """
        Get the current midpoint price for a token.

        Returns:
            Price in [0, 1] or None if unavailable.
        """
        try:
            data = self._get("/midpoint", {"token_id": token_id})
        except requests.RequestException as e:
            logger.warning(f"Midpoint lookup failed for {token_id[:16]}...: {e}")
            return None

        try:
            price = Decimal(str((data or {}).get("mid")))
        except (InvalidOperation, ValueError):
            return None
        if price < 0 or price > 1:
            return None
        return price

    def get_price(self, token_id: str, side: Any) -> Optional[Decimal]:
        """
        Get the executable price for trading a token on one side of the book.

        Args:
            token_id: Outcome token.
            side: "BUY" or "SELL" (an OrderSide works too).

        Returns:
            Price in [0, 1] or None if unavailable.
        """
        side_name = str(side).upper()
        try:
            data = self._get("/price", {"token_id": token_id, "side": side_name})
        except requests.RequestException as e:
            logger.warning(f"{side_name} price lookup failed for {token_id[:16]}...: {e}")
            return None

        try:
            price = Decimal(str((data or {}).get("price")))
        except (InvalidOperation, ValueError):
            return None
        if price <= 0 or price > 1:
            return None
        return price
