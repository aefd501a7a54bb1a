"""Remote adapter: reads rows from the data server over HTTP.

The server exposes two bearer-protected endpoints:

    GET <data_path>?page&pageSize&sortBy&sortDir&<column>=<pattern>  -> {"rows": [...]}
    GET <count_path>?<same parameters>                                -> {"count": n}
"""

import json
import logging
from typing import Any, Dict, List, Mapping, Optional

import requests

from .base import RowStoreAdapter
from ..models.query import QueryDescriptor
from ..models.row import Row, normalize_row
from ..utils.error_handling import SourceUnavailable, Unauthorized

logger = logging.getLogger(__name__)


class RemoteAdapter(RowStoreAdapter):
    """Row store backed by the remote data server."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        data_path: str = "/data",
        count_path: str = "/data/count",
        timeout: float = 30.0,
        http: Optional[requests.Session] = None,
    ):
        """Initialize the remote adapter.

        Args:
            base_url: Server root, e.g. http://127.0.0.1:3000
            token: Bearer token; requests are sent unauthenticated if None
            data_path: Path of the paginated rows endpoint
            count_path: Path of the count endpoint
            timeout: Per-request timeout in seconds
            http: Session to use (a new requests.Session if None)
        """
        self.base_url = base_url.rstrip("/")
        self.data_path = data_path
        self.count_path = count_path
        self.timeout = timeout
        self._http = http or requests.Session()
        if token:
            self._http.headers["Authorization"] = f"Bearer {token}"

    @property
    def name(self) -> str:
        return "remote"

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _get_json(self, path: str, params: Mapping[str, Any]) -> Dict[str, Any]:
        """Issue a GET and decode the JSON body.

        Args:
            path: Endpoint path
            params: Query parameters

        Returns:
            Decoded JSON object

        Raises:
            Unauthorized: On 401/403
            SourceUnavailable: On any other failure
        """
        url = self._url(path)
        try:
            response = self._http.get(url, params=dict(params), timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("Request to %s failed: %s", url, e)
            raise SourceUnavailable(f"Could not reach {url}: {e}") from e

        if response.status_code in (401, 403):
            raise Unauthorized(
                f"{url} rejected the credentials (HTTP {response.status_code})",
                status_code=response.status_code,
            )

        try:
            response.raise_for_status()
        except requests.HTTPError as e:
            logger.warning("Request to %s returned HTTP %s", url, response.status_code)
            raise SourceUnavailable(
                f"{url} returned HTTP {response.status_code}",
                status_code=response.status_code,
            ) from e

        try:
            body = response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise SourceUnavailable(f"{url} returned a malformed response") from e

        if not isinstance(body, dict):
            raise SourceUnavailable(f"{url} returned an unexpected payload")
        return body

    def count(self, filters: Optional[Mapping[str, str]] = None) -> int:
        body = self._get_json(self.count_path, dict(filters or {}))
        try:
            return max(0, int(body.get("count") or 0))
        except (TypeError, ValueError) as e:
            raise SourceUnavailable(f"Invalid count in response: {body.get('count')!r}") from e

    def fetch_page(self, descriptor: QueryDescriptor) -> List[Row]:
        body = self._get_json(self.data_path, descriptor.to_params())
        rows = body.get("rows")
        if not isinstance(rows, list):
            rows = []

        logger.debug(
            "Fetched %d rows (page %d, size %d) from %s",
            len(rows), descriptor.page, descriptor.page_size, self.base_url,
        )

        # Guard against servers that ignore pageSize
        return [normalize_row(r) for r in rows[:descriptor.page_size] if isinstance(r, dict)]

    def close(self) -> None:
        self._http.close()
