"""
Forecast aggregation for the listed assets.

This module queries the external forecast service once per asset, concurrently,
and returns the successful forecasts ordered by confidence. A failure for one
asset never fails the batch: the asset is dropped and logged.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Optional

import requests
from requests.exceptions import RequestException, Timeout

from stash_agent.config import Config
from stash_agent.errors import ForecastError
from stash_agent.models import Asset, Forecast, UP, DOWN
from stash_agent.utils import is_number, safe_float, safe_int

# Configure module logger
logger = logging.getLogger(__name__)


class ForecastClient:
    """Client for the per-symbol forecast endpoint."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url or Config.FORECAST_API_URL).rstrip("/")
        self.timeout = timeout or Config.API_TIMEOUT
        self.session = session or requests.Session()

    def fetch_forecast(self, symbol: str) -> Forecast:
        """
        Fetch the forecast for a single symbol.

        Args:
            symbol: Asset symbol (sent lower-cased)

        Returns:
            Decoded Forecast

        Raises:
            ForecastError: On transport failure, non-success status or an
                invalid response body
        """
        url = f"{self.base_url}/api/token/{symbol.lower()}"

        try:
            response = self.session.get(url, timeout=self.timeout)
        except Timeout as e:
            raise ForecastError(symbol, f"request timed out after {self.timeout}s") from e
        except RequestException as e:
            raise ForecastError(symbol, f"request failed: {e}") from e

        if not response.ok:
            raise ForecastError(symbol, f"service returned status {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise ForecastError(symbol, "response is not JSON") from e

        return parse_forecast(symbol, data)


def parse_forecast(symbol: str, data: Any) -> Forecast:
    """
    Decode a forecast response body.

    Direction and confidence are validated strictly; the descriptive fields
    are kept when they are numeric and left as None otherwise.

    Raises:
        ForecastError: If direction or confidence is missing or invalid
    """
    if not isinstance(data, dict):
        raise ForecastError(symbol, f"expected an object, got {type(data).__name__}")

    raw_direction = data.get("direction")
    if raw_direction == "up":
        direction = UP
    elif raw_direction == "down":
        direction = DOWN
    else:
        raise ForecastError(symbol, f"invalid direction {raw_direction!r}")

    confidence = data.get("confidence")
    if not is_number(confidence) or not (0.0 <= confidence <= 1.0):
        raise ForecastError(symbol, f"invalid confidence {confidence!r}")

    timestamp = data.get("timestamp")

    return Forecast(
        symbol=symbol,
        direction=direction,
        confidence=float(confidence),
        current_price=safe_float(data.get("current_price")),
        predicted_price=safe_float(data.get("predicted_price")),
        sample_count=safe_int(data.get("data_points")),
        observed_pct_change=safe_float(data.get("price_change_pct")),
        timestamp=timestamp if isinstance(timestamp, str) else None,
    )


def aggregate_forecasts(
    assets: list[Asset],
    client: ForecastClient,
    max_workers: Optional[int] = None,
) -> list[Forecast]:
    """
    Fetch forecasts for all assets concurrently.

    One request is issued per asset and every attempt is awaited before
    returning, regardless of individual outcomes.

    Args:
        assets: Assets to forecast
        client: Forecast service client
        max_workers: Thread pool size. If None, uses Config.FORECAST_MAX_WORKERS

    Returns:
        Successful forecasts sorted by descending confidence (stable for
        ties). Empty if every asset failed.
    """
    if not assets:
        return []

    workers = min(max_workers or Config.FORECAST_MAX_WORKERS, len(assets))
    logger.info(f"Fetching forecasts for {len(assets)} assets")

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="forecast") as executor:
        futures: list[tuple[Asset, Future]] = [
            (asset, executor.submit(client.fetch_forecast, asset.symbol))
            for asset in assets
        ]
        wait([future for _, future in futures])

    forecasts: list[Forecast] = []
    failures: list[str] = []

    for asset, future in futures:
        error = future.exception()
        if error is None:
            forecasts.append(future.result())
        elif isinstance(error, ForecastError):
            logger.warning(f"Forecast unavailable for {asset.symbol}: {error}")
            failures.append(asset.symbol)
        else:
            logger.error(f"Unexpected error forecasting {asset.symbol}: {error}", exc_info=error)
            failures.append(asset.symbol)

    forecasts.sort(key=lambda f: f.confidence, reverse=True)

    if failures:
        logger.info(f"Dropped {len(failures)} assets without forecasts: {', '.join(failures)}")
    logger.info(f"Collected {len(forecasts)} forecasts")

    return forecasts
