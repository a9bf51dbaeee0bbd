"""
REST client for the game platform.

This module handles asset listing and game-join requests against the platform
API. It performs no decision logic - only data fetching, request packaging and
normalization of responses into structured Python objects.
"""

import json
import logging
from typing import Any, Optional

import requests
from requests.exceptions import RequestException, Timeout, ConnectionError

from stash_agent.config import Config
from stash_agent.errors import PlatformError, SubmissionError
from stash_agent.models import Asset, Wager

# Configure module logger
logger = logging.getLogger(__name__)


class PlatformClient:
    """
    Authenticated client for the game platform's REST API.

    A single requests session carries the bearer token for every call.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the client.

        Args:
            api_key: Platform API key. If None, uses Config.STASH_API_KEY
            base_url: Platform base URL. If None, uses Config.PLATFORM_API_URL
            timeout: Per-request timeout in seconds. If None, uses Config.API_TIMEOUT
            session: Pre-built session (mainly for tests)
        """
        self.base_url = (base_url or Config.PLATFORM_API_URL).rstrip("/")
        self.timeout = timeout or Config.API_TIMEOUT
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {api_key or Config.STASH_API_KEY or ''}",
            "Accept": "application/json",
            "User-Agent": "StashAgent/1.0",
        })

    def fetch_assets(self) -> list[Asset]:
        """
        Fetch the currently listed assets.

        Returns:
            Assets in the order the platform lists them

        Raises:
            PlatformError: On transport failure, non-success status or an
                unexpected response shape
        """
        url = f"{self.base_url}/api/tokens"
        logger.debug(f"Requesting asset list from {url}")

        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()

        except Timeout as e:
            raise PlatformError(f"asset list request timed out after {self.timeout}s") from e

        except ConnectionError as e:
            raise PlatformError(f"connection error while fetching assets: {e}") from e

        except RequestException as e:
            raise PlatformError(f"asset list request failed: {e}") from e

        except ValueError as e:
            raise PlatformError(f"asset list response is not JSON: {e}") from e

        assets = _normalize_assets(data)
        logger.info(f"Fetched {len(assets)} assets")
        return assets

    def join_game(self, wager: Wager) -> Any:
        """
        Submit a join request for a game.

        Args:
            wager: Game id, selections and stake to submit

        Returns:
            The platform's confirmation payload (not interpreted)

        Raises:
            SubmissionError: If the request is rejected or cannot be delivered
        """
        url = f"{self.base_url}/api/games/{wager.game_id}/join"
        payload = wager.to_payload()
        logger.debug(f"Submitting join for game {wager.game_id}: {json.dumps(payload)}")

        try:
            response = self.session.patch(url, json=payload, timeout=self.timeout)

        except Timeout as e:
            raise SubmissionError(wager.game_id, f"join request timed out after {self.timeout}s") from e

        except RequestException as e:
            raise SubmissionError(wager.game_id, f"join request failed: {e}") from e

        if not response.ok:
            raise SubmissionError(
                wager.game_id,
                f"join rejected with status {response.status_code}: {response.text[:500]}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError:
            return response.text


def _normalize_assets(api_data: Any) -> list[Asset]:
    """
    Normalize the raw asset listing into Asset dataclass objects.

    Entries without a usable symbol are skipped with a warning.

    Args:
        api_data: Decoded JSON body of the asset listing

    Returns:
        List of Asset objects

    Raises:
        PlatformError: If the body has no "tokens" list
    """
    if not isinstance(api_data, dict) or not isinstance(api_data.get("tokens"), list):
        raise PlatformError(f"expected an object with a 'tokens' list, got {type(api_data).__name__}")

    assets: list[Asset] = []
    seen: set[str] = set()

    for idx, item in enumerate(api_data["tokens"]):
        if not isinstance(item, dict):
            logger.warning(f"Skipping asset at index {idx}: not an object")
            continue

        symbol = item.get("symbol")
        if not isinstance(symbol, str) or not symbol.strip():
            logger.warning(f"Skipping asset at index {idx}: missing symbol")
            continue

        asset = Asset(
            symbol=symbol.strip(),
            display_name=str(item.get("name") or ""),
            description=str(item.get("description") or ""),
            icon_ref=str(item.get("logo") or ""),
        )

        if asset.key in seen:
            logger.warning(f"Skipping duplicate asset {asset.symbol}")
            continue

        seen.add(asset.key)
        assets.append(asset)

    return assets
