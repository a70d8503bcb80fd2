"""
Simple Hub API Client for HeatBrain

Minimal client for a Home Assistant style hub: reads temperature sensors and
the heat-demand signal, and switches relay entities.
"""

import logging
from typing import Any

import requests

from .exceptions import HubConnectionError, SensorError

logger = logging.getLogger(__name__)

_TRUTHY_STATES = {"on", "true", "heat", "heating", "1"}
_UNAVAILABLE_STATES = {"unavailable", "unknown", "none", ""}


class HubClient:
    """Simple hub REST API client."""

    def __init__(self, base_url: str, token: str, timeout: float = 5):
        """Initialize hub client.

        Args:
            base_url: Hub URL (e.g., "http://supervisor/core")
            token: Long-lived access token
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.session = requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        })
        self.timeout = timeout

    def get_state(self, entity_id: str) -> dict[str, Any]:
        """Get current state of an entity.

        Args:
            entity_id: Entity ID (e.g., "sensor.tank_top")

        Returns:
            State dictionary with 'state', 'attributes', etc.

        Raises:
            SensorError: If entity not found
            HubConnectionError: If API request fails
        """
        url = f"{self.base_url}/api/states/{entity_id}"
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.HTTPError as e:
            if e.response is not None and e.response.status_code == 404:
                raise SensorError(f"Entity not found: {entity_id}") from e
            raise HubConnectionError(f"Failed to get state for {entity_id}: {e}") from e
        except requests.exceptions.RequestException as e:
            raise HubConnectionError(f"Hub API request failed: {e}") from e

    def get_temperature(self, entity_id: str) -> float:
        """Get temperature from a sensor entity.

        Falls back to the `current_temperature` attribute for climate-style
        entities.

        Raises:
            SensorError: If the entity has no usable temperature
            HubConnectionError: If API request fails
        """
        state = self.get_state(entity_id)
        try:
            return float(state["state"])
        except (ValueError, KeyError, TypeError) as e:
            try:
                return float(state["attributes"]["current_temperature"])
            except (ValueError, KeyError, TypeError):
                raise SensorError(f"Cannot read temperature from {entity_id}: {e}") from e

    def is_heating_demanded(self, entity_id: str) -> bool:
        """Read the heat-demand signal.

        Raises:
            SensorError: If the entity is unavailable or missing
            HubConnectionError: If API request fails
        """
        state = str(self.get_state(entity_id).get("state", "")).strip().lower()
        if state in _UNAVAILABLE_STATES:
            raise SensorError(f"Heat demand entity {entity_id} is {state or 'empty'}")
        return state in _TRUTHY_STATES

    def set_switch(self, entity_id: str, on: bool) -> None:
        """Turn a switch entity on or off.

        Raises:
            HubConnectionError: If service call fails
        """
        service = "turn_on" if on else "turn_off"
        domain = entity_id.split(".", 1)[0] if "." in entity_id else "switch"
        url = f"{self.base_url}/api/services/{domain}/{service}"
        data = {"entity_id": entity_id}

        try:
            logger.debug(f"Calling {url} with data: {data}")
            response = self.session.post(url, json=data, timeout=self.timeout)
            response.raise_for_status()
            logger.info(f"Set {entity_id} {'on' if on else 'off'} - Response: {response.status_code}")
        except requests.exceptions.RequestException as e:
            raise HubConnectionError(f"Failed to switch {entity_id}: {e}") from e
