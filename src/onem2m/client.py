"""
oneM2M protocol client

Registers the application entity and its container on the CSE and reads or
toggles device state through content instances. Every operation is a single
HTTP round trip; failures are logged and returned as results, never raised.
"""

import asyncio
import json
import logging
import uuid
from typing import Any, Dict, Optional, Tuple

import aiohttp

from discovery.models import Endpoint
from errors import ParseError, ProtocolError, TransportError
from http_helper import create_cse_session
from .models import (
    ContentInstance,
    RegistrationOutcome,
    StateRead,
    TY_AE,
    TY_CONTAINER,
    TY_CONTENT_INSTANCE,
)

logger = logging.getLogger(__name__)

class OneM2MClient:
    """HTTP binding for the handful of oneM2M operations the server needs"""

    def __init__(self, config: Dict[str, Any], session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self.host = config['host']
        self.port = config.get('port', 8080)
        self.base_path = '/' + config.get('base_path', '/cse-in').strip('/')
        self.namespace = config.get('namespace', 'm2m')
        self.originator = config.get('originator', 'CAdmin3')
        self.release_version = str(config.get('release_version', '3'))
        self.entity_name = config.get('entity_name', 'Notebook-AE')
        self.app_id = config.get('app_id', 'NnotebookAE')
        self.container_name = config.get('container_name', 'Container')
        self.target_entity = config.get('target_entity', self.entity_name)
        self.target_container = config.get('target_container', self.container_name)
        self.request_timeout = config.get('request_timeout', 5)
        self.address_devices_directly = config.get('address_devices_directly', True)

        self._own_session = session is None
        self.session = session

    async def __aenter__(self) -> "OneM2MClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self):
        if self._own_session and self.session is not None and not self.session.closed:
            await self.session.close()
        if self._own_session:
            self.session = None

    # ================== URL BUILDING ==================

    @property
    def cse_url(self) -> str:
        return f"http://{self.host}:{self.port}{self.base_path}"

    def device_base_url(self, endpoint: Endpoint) -> str:
        """Base URL used for state reads and writes of an endpoint"""
        if self.address_devices_directly:
            return f"http://{endpoint.host}:{endpoint.port}{self.base_path}"
        return self.cse_url

    def state_url(self, endpoint: Endpoint) -> str:
        return f"{self.device_base_url(endpoint)}/{self.target_entity}/{self.target_container}"

    def _headers(self, resource_type: Optional[int] = None) -> Dict[str, str]:
        headers = {
            'X-M2M-Origin': self.originator,
            'X-M2M-RI': uuid.uuid4().hex,
            'X-M2M-RVI': self.release_version,
            'Accept': 'application/json',
        }
        if resource_type is not None:
            headers['Content-Type'] = f'application/json;ty={resource_type}'
        return headers

    # ================== TRANSPORT ==================

    def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = create_cse_session(self.request_timeout)
            self._own_session = True
        return self.session

    async def _request(
        self,
        method: str,
        url: str,
        resource_type: Optional[int] = None,
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Tuple[int, str]:
        """Perform one request and return (status, body). Raises TransportError."""
        session = self._get_session()
        data = json.dumps(payload) if payload is not None else None
        try:
            async with session.request(
                method, url,
                headers=self._headers(resource_type),
                data=data,
                params=params,
            ) as response:
                body = await response.text()
                logger.debug(f"[CSE] {method} {url} -> {response.status}")
                return response.status, body
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"{method} {url} failed: {str(e) or type(e).__name__}") from e

    @staticmethod
    def _registration_outcome(status: int, allow_forbidden: bool) -> RegistrationOutcome:
        if status in (200, 201):
            return RegistrationOutcome.CREATED
        if status == 409:
            return RegistrationOutcome.ALREADY_EXISTS
        if status == 403 and allow_forbidden:
            return RegistrationOutcome.FORBIDDEN
        raise ProtocolError(status)

    # ================== REGISTRATION ==================

    async def register_entity(self) -> RegistrationOutcome:
        """Create the application entity. 409 means it already exists, which is fine."""
        payload = {
            f"{self.namespace}:ae": {
                "rn": self.entity_name,
                "api": self.app_id,
                "rr": True,
                "srv": ["3"],
            }
        }
        try:
            status, _ = await self._request("POST", self.cse_url, TY_AE, payload)
            outcome = self._registration_outcome(status, allow_forbidden=True)
        except (TransportError, ProtocolError) as e:
            logger.error(f"[CSE] Entity registration for {self.entity_name} failed: {e}")
            return RegistrationOutcome.FAILED

        if outcome is RegistrationOutcome.FORBIDDEN:
            logger.warning(f"[CSE] Entity registration for {self.entity_name} forbidden (403), continuing degraded")
        else:
            logger.info(f"[CSE] Entity {self.entity_name}: {outcome.value}")
        return outcome

    async def entity_exists(self) -> bool:
        """Best-effort check: the discovery listing mentions our entity name"""
        try:
            status, body = await self._request(
                "GET", self.cse_url, params={"fu": "1", "ty": str(TY_AE)}
            )
        except TransportError as e:
            logger.warning(f"[CSE] Entity lookup failed: {e}")
            return False

        if status != 200:
            logger.debug(f"[CSE] Entity lookup returned HTTP {status}")
            return False
        return self.entity_name in body

    async def register_container(self) -> RegistrationOutcome:
        """Create the container under our entity. 409 means it already exists."""
        url = f"{self.cse_url}/{self.entity_name}"
        payload = {f"{self.namespace}:cnt": {"rn": self.container_name}}
        try:
            status, _ = await self._request("POST", url, TY_CONTAINER, payload)
            outcome = self._registration_outcome(status, allow_forbidden=False)
        except (TransportError, ProtocolError) as e:
            logger.error(f"[CSE] Container registration for {self.container_name} failed: {e}")
            return RegistrationOutcome.FAILED

        logger.info(f"[CSE] Container {self.entity_name}/{self.container_name}: {outcome.value}")
        return outcome

    # ================== STATE ==================

    async def write_state(self, endpoint: Endpoint, current_state: bool) -> bool:
        """
        Toggle a device: writes a content instance holding the inverse of
        ``current_state``. There is no compare-and-swap against the remote
        resource, so two writers racing on a stale state both flip it.
        """
        new_state = not current_state
        url = self.state_url(endpoint)
        payload = ContentInstance(con=new_state, cnf="text/plain:0").to_payload(self.namespace)
        try:
            status, body = await self._request("POST", url, TY_CONTENT_INSTANCE, payload)
        except TransportError as e:
            logger.error(f"[CSE] State write for {endpoint.name} failed: {e}")
            return False

        if status not in (200, 201):
            logger.error(f"[CSE] State write for {endpoint.name} rejected: HTTP {status} {body[:200]}")
            return False

        logger.info(f"[CSE] {endpoint.name} switched {'on' if new_state else 'off'}")
        return True

    async def read_state(self, endpoint: Endpoint) -> StateRead:
        """Read the latest content instance (``/la``) of the target container"""
        url = f"{self.state_url(endpoint)}/la"
        try:
            status, body = await self._request("GET", url)
            if status != 200:
                raise ProtocolError(status)
            try:
                parsed = json.loads(body)
            except ValueError as e:
                raise ParseError(f"Invalid JSON: {e}") from e
            instance = ContentInstance.from_response(parsed, self.namespace)
        except (TransportError, ProtocolError, ParseError) as e:
            logger.warning(f"[CSE] State read for {endpoint.name} failed: {e}")
            return StateRead(ok=False, error=str(e))

        return StateRead(ok=True, state=instance.state)
