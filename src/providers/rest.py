"""HTTP provider for a generic resource API.

Endpoints:
    GET    /health
    POST   /resources/{type}              body {"name", "attributes"}
    GET    /resources/{type}/{id}
    PUT    /resources/{type}/{id}         body {"attributes"}
    DELETE /resources/{type}/{id}
    GET    /resources/{type}?name={name}  -> list

Responses carry {"id": ..., "outputs": {...}}. Connection failures, timeouts,
429 and 5xx map to TransientError; 404 to NotFoundError; any other error
status to TerminalError.
"""

import logging
from typing import Optional

import requests

from providers.base import NotFoundError, ProviderResponse, TerminalError, TransientError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30


def _error_message(resp: requests.Response) -> str:
    """Extract an error message from a response body."""
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:200] or resp.reason
    error = data.get('error', data) if isinstance(data, dict) else data
    if isinstance(error, dict):
        return error.get('message', str(error))
    return str(error)


class RestProvider:
    """Provider backed by a JSON-over-HTTP resource API."""

    name = 'rest'

    def __init__(
        self,
        endpoint: str,
        token: Optional[str] = None,
        timeout: int = DEFAULT_TIMEOUT,
        verify: bool = True,
        session: Optional[requests.Session] = None,
    ):
        self.endpoint = endpoint.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.verify = verify
        self.session.headers['Accept'] = 'application/json'
        if token:
            self.session.headers['Authorization'] = f'Bearer {token}'

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f'{self.endpoint}{path}'
        logger.debug(f"{method} {url}")
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientError(f"{method} {path}: {e}") from e

        if resp.status_code == 404:
            raise NotFoundError(f"{method} {path}: {_error_message(resp)}")
        if resp.status_code == 429 or resp.status_code >= 500:
            raise TransientError(f"{method} {path}: {resp.status_code} {_error_message(resp)}", status=resp.status_code)
        try:
            resp.raise_for_status()
        except requests.HTTPError as e:
            raise TerminalError(f"{method} {path}: {resp.status_code} {_error_message(resp)}",
                                status=resp.status_code) from e
        return resp

    @staticmethod
    def _parse(resp: requests.Response) -> ProviderResponse:
        data = resp.json()
        return ProviderResponse(external_id=data['id'], outputs=data.get('outputs', {}))

    def health(self) -> bool:
        """True when the API answers its health endpoint."""
        try:
            self._request('GET', '/health')
        except (TransientError, TerminalError) as e:
            logger.debug(f"Health check failed: {e}")
            return False
        return True

    def create(self, resource_type: str, name: str, attributes: dict) -> ProviderResponse:
        resp = self._request('POST', f'/resources/{resource_type}', json={'name': name, 'attributes': attributes})
        return self._parse(resp)

    def read(self, resource_type: str, external_id: str) -> ProviderResponse:
        return self._parse(self._request('GET', f'/resources/{resource_type}/{external_id}'))

    def update(self, resource_type: str, external_id: str, attributes: dict) -> ProviderResponse:
        resp = self._request('PUT', f'/resources/{resource_type}/{external_id}', json={'attributes': attributes})
        return self._parse(resp)

    def delete(self, resource_type: str, external_id: str) -> None:
        self._request('DELETE', f'/resources/{resource_type}/{external_id}')

    def find(self, resource_type: str, name: str) -> Optional[ProviderResponse]:
        resp = self._request('GET', f'/resources/{resource_type}', params={'name': name})
        items = resp.json()
        if not items:
            return None
        return ProviderResponse(external_id=items[0]['id'], outputs=items[0].get('outputs', {}))
