"""LaMetric Time egress module - formats and pushes power data via HTTP"""
import logging
from concurrent.futures import ThreadPoolExecutor

import requests

from sinks.dispatch import POWER_TOPIC

logger = logging.getLogger(__name__)

ICON_POWER = 26337  # Drawing power
ICON_SOLAR = 54077  # Feeding power


def _perform_http_request(url, api_key, payload):
    """
    Executes the HTTP Push to LaMetric Time.
    Is ran in a thread to not block the main loop.
    """
    try:
        r = requests.post(
            url,
            json=payload,
            auth=("dev", api_key),
            timeout=2
        )
        r.raise_for_status()
    except requests.RequestException as e:
        logger.warning(f"LaMetric: Failed HTTP POST {e}")


def format_power_frame(power: int) -> dict:
    """
    Build the LaMetric frames payload for a power value in Watts.

    Args:
        power: Watts, negative when feeding power back to the grid
    """
    # Are we importing power, or exporting it?
    if power < 0:
        icon = ICON_SOLAR
    else:
        icon = ICON_POWER

    # If power is more than 10000 W, show in kW with one decimal
    if abs(power) >= 10000:
        power_kw = power / 1000
        text = f"{power_kw:.1f} kW"
    else:
        text = f"{power} W"

    # Build the frame in the LaMetric push format
    return {
        "frames": [
            {
                "text": text,
                "icon": icon,
                "index": 0
            }
        ]
    }


class LaMetricSink:
    """
    LaMetric Time sink.

    Only the power topic is shown; the display has no use for energy totals.
    """

    def __init__(self, url: str, api_key: str):
        self.url = url
        self.api_key = api_key
        # Single worker keeps pushes in order
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="lametric")

    def publish(self, topic: str, payload: str) -> None:
        if topic != POWER_TOPIC:
            logger.debug(f"LaMetric: Ignoring {topic}")
            return

        # Offload the blocking HTTP request, don't wait for it
        self._executor.submit(_perform_http_request, self.url, self.api_key, format_power_frame(int(payload)))

    def close(self) -> None:
        """Wait for pushes still in flight."""
        self._executor.shutdown(wait=True)
