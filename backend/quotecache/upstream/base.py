"""Shared HTTP plumbing for upstream quote providers."""

from typing import Any, Callable, Dict, List, Optional
import logging

import requests

from ..errors import RateLimitError, UpstreamCallFailed

logger = logging.getLogger(__name__)

# (endpoint, success, status_code) for every outbound HTTP request
RequestHook = Callable[[str, bool, Optional[int]], None]


class UpstreamClient:
    """
    Base class for a metered quote API.

    Subclasses implement the logical operations the sync engine needs:
    resolve_ids(symbols), fetch_metadata(ids) and fetch_quotes(ids).
    Providers that map symbols to their own catalog IDs set resolves_ids;
    providers with a name/logo endpoint set fetches_metadata.

    A logical operation may send several HTTP requests. Each one is reported
    to on_request, which the sync executor points at the usage ledger.
    """

    provider = ''
    base_url = ''
    resolves_ids = False
    fetches_metadata = False

    # Endpoint recorded in the usage ledger for each call category
    endpoints: Dict[str, str] = {}

    def __init__(
        self,
        api_key: str,
        session: Optional[Any] = None,
        base_url: Optional[str] = None,
        timeout: float = 10
    ):
        self.api_key = api_key
        self.session = session or requests
        if base_url is not None:
            self.base_url = base_url
        self.timeout = timeout
        self.last_status_code: Optional[int] = None
        self.on_request: Optional[RequestHook] = None

    def _require_key(self) -> None:
        if not self.api_key:
            raise UpstreamCallFailed(f"{self.provider} API key is not set")

    def _headers(self) -> Dict[str, str]:
        return {}

    def _record_request(self, endpoint: str, success: bool, status_code: Optional[int]) -> None:
        if self.on_request is not None:
            self.on_request(endpoint, success, status_code)

    def _get(self, path: str, params: Optional[Dict] = None) -> Any:
        """
        GET a JSON document.

        Raises:
            RateLimitError: on HTTP 429
            UpstreamCallFailed: on network errors, other non-2xx statuses
                or an unparseable body
        """
        self._require_key()
        url = f"{self.base_url}{path}"
        self.last_status_code = None

        try:
            response = self.session.get(
                url,
                params=params or {},
                headers=self._headers(),
                timeout=self.timeout
            )
        except requests.RequestException as e:
            self._record_request(path, False, None)
            raise UpstreamCallFailed(f"{self.provider} request to {path} failed: {e}") from e

        self.last_status_code = response.status_code
        ok = 200 <= response.status_code < 300
        self._record_request(path, ok, response.status_code)

        if response.status_code == 429:
            raise RateLimitError(f"{self.provider} rate limit exceeded on {path}")

        if not ok:
            raise UpstreamCallFailed(
                f"{self.provider} {path} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code
            )

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamCallFailed(
                f"{self.provider} {path} returned invalid JSON",
                status_code=response.status_code
            ) from e

    def resolve_ids(self, symbols: List[str]) -> Dict[str, str]:
        """Map symbols to provider-internal IDs."""
        return {s: s for s in symbols}

    def fetch_metadata(self, internal_ids: List[str]) -> Dict[str, Dict]:
        """Return {internal_id: {'name': ..., 'logo': ...}}."""
        return {}

    def fetch_quotes(self, internal_ids: List[str]) -> Dict[str, Dict]:
        """Return {internal_id: {'symbol', 'name', 'price', 'percent_change', 'change'}}."""
        raise NotImplementedError
