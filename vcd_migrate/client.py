"""vCloud Director REST client wrapper with session handling and error mapping."""

from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, field
from typing import Any
from xml.parsers.expat import ExpatError

import httpx
import structlog

from vcd_migrate.config import VcdEndpointConfig
from vcd_migrate.credentials import CredentialProvider
from vcd_migrate.exceptions import AuthError, RestError
from vcd_migrate.xmldoc import parse_document

logger = structlog.get_logger(__name__)

ACCESS_TOKEN_HEADER = "X-VMWARE-VCLOUD-ACCESS-TOKEN"
LEGACY_TOKEN_HEADER = "x-vcloud-authorization"


@dataclass(slots=True)
class ManagementSession:
    """An authenticated session against one vCD endpoint."""

    endpoint: str
    username: str
    base_url: str
    api_version: str
    token_header: str
    token: str = field(repr=False)

    def auth_headers(self) -> dict[str, str]:
        if self.token_header == ACCESS_TOKEN_HEADER:
            return {"Authorization": f"Bearer {self.token}"}
        return {LEGACY_TOKEN_HEADER: self.token}


class VcdClient:
    """Thin async wrapper around httpx for the vCD XML API.

    Provides:
    - Session login/logout
    - Typed GET/POST calls with the session credential
    - Mapping of failures to AuthError / RestError
    - Structured logging

    REST failures are never retried: the caller's task is aborted.
    """

    def __init__(
        self,
        endpoint_config: VcdEndpointConfig,
        credentials: CredentialProvider | None = None,
        name: str = "target",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            endpoint_config: Host, login and API version of the endpoint.
            credentials: Asked for the login password when the config has none.
            name: Human-readable role of this endpoint (source/target).
            transport: Optional httpx transport, used by tests.
        """
        self.endpoint_config = endpoint_config
        self.credentials = credentials
        self.name = name
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None
        self._session: ManagementSession | None = None
        self._logger = logger.bind(endpoint=name, host=endpoint_config.host)

    async def __aenter__(self) -> "VcdClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @property
    def session(self) -> ManagementSession:
        if self._session is None:
            raise AuthError(f"Not connected to {self.name}")
        return self._session

    @property
    def base_url(self) -> str:
        return self.endpoint_config.base_url

    @property
    def api_version(self) -> str:
        return self.endpoint_config.api_version

    @property
    def accept(self) -> str:
        return f"application/*+xml;version={self.api_version}"

    def api_url(self, path: str) -> str:
        """Absolute URL for a documented, stable API path."""
        return f"{self.base_url}/api/{path.lstrip('/')}"

    async def connect(self) -> ManagementSession:
        """Open a session, or return the open one.

        Raises:
            AuthError: On rejected credentials, a missing token or a transport failure.
        """
        if self._session is not None:
            return self._session

        self._logger.info("Connecting to vCloud Director")
        self._http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.endpoint_config.timeout),
            verify=self.endpoint_config.verify_ssl,
            transport=self._transport,
        )

        secret = None
        if self.endpoint_config.password is not None:
            password = self.endpoint_config.password.get_secret_value()
        elif self.credentials is not None:
            secret = self.credentials.endpoint_password(
                self.endpoint_config.host, self.endpoint_config.login
            )
            password = secret.reveal()
        else:
            await self.close()
            raise AuthError(f"No password available for {self.endpoint_config.login}")

        try:
            response = await self._http_client.post(
                self.api_url("sessions"),
                auth=(self.endpoint_config.login, password),
                headers={"Accept": self.accept},
            )
        except httpx.HTTPError as e:
            await self.close()
            raise AuthError(f"Failed to connect to {self.name}: {e}") from e
        finally:
            del password
            if secret is not None:
                secret.wipe()

        if response.status_code in (401, 403):
            await self.close()
            raise AuthError(
                f"Authentication rejected by {self.name} ({response.status_code})"
            )
        if not response.is_success:
            await self.close()
            raise AuthError(
                f"Login to {self.name} failed: [{response.status_code}] "
                f"{_error_message(response)}"
            )

        if ACCESS_TOKEN_HEADER in response.headers:
            header = ACCESS_TOKEN_HEADER
        elif LEGACY_TOKEN_HEADER in response.headers:
            header = LEGACY_TOKEN_HEADER
        else:
            await self.close()
            raise AuthError(f"Login to {self.name} returned no session token")

        self._session = ManagementSession(
            endpoint=self.endpoint_config.host,
            username=self.endpoint_config.login,
            base_url=self.base_url,
            api_version=self.api_version,
            token_header=header,
            token=response.headers[header],
        )
        self._logger.info("Connected to vCloud Director", api_version=self.api_version)
        return self._session

    async def close(self) -> None:
        """Log out and close the transport."""
        if self._session is not None and self._http_client is not None:
            try:
                await self._http_client.delete(
                    self.api_url("session"), headers=self._headers()
                )
            except httpx.HTTPError as e:
                self._logger.warning("Error logging out", error=str(e))
            finally:
                self._session = None

        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
            self._logger.info("Closed connection to vCloud Director")

    def _headers(self, content_type: str | None = None) -> dict[str, str]:
        headers = {"Accept": self.accept, **self.session.auth_headers()}
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    async def rest_call(
        self,
        method: str,
        url: str,
        content_type: str | None = None,
        body: bytes | bytearray | str | None = None,
        params: Mapping[str, str] | None = None,
    ) -> dict[str, Any] | None:
        """Perform one authenticated REST call.

        Args:
            method: HTTP method.
            url: Absolute URL.
            content_type: Media type of ``body``.
            body: Serialized XML request body. A bytearray is streamed as
                one chunk so the caller can zero it afterwards.
            params: Query string parameters.

        Returns:
            Parsed response document, or None for an empty body.

        Raises:
            RestError: On a non-2xx response or a transport failure.
        """
        if self._http_client is None:
            raise AuthError(f"Not connected to {self.name}")

        headers = self._headers(content_type)
        content: Any = body
        if isinstance(body, bytearray):
            headers["Content-Length"] = str(len(body))
            content = _single_chunk(body)

        self._logger.debug("REST call", method=method, url=url)
        try:
            response = await self._http_client.request(
                method,
                url,
                headers=headers,
                content=content,
                params=params,
            )
        except httpx.HTTPError as e:
            raise RestError(str(e), method=method, url=url) from e

        if not response.is_success:
            message = _error_message(response)
            self._logger.error(
                "REST call failed",
                method=method,
                url=url,
                status_code=response.status_code,
                error=message,
            )
            raise RestError(
                message, method=method, url=url, status_code=response.status_code
            )

        if not response.content.strip():
            return None
        return parse_document(response.content)

    async def get(
        self, url: str, params: Mapping[str, str] | None = None
    ) -> dict[str, Any]:
        document = await self.rest_call("GET", url, params=params)
        if document is None:
            raise RestError("Empty response body", method="GET", url=url)
        return document

    async def post(
        self, url: str, content_type: str, body: bytes | bytearray | str
    ) -> dict[str, Any] | None:
        return await self.rest_call("POST", url, content_type=content_type, body=body)

    async def delete(self, url: str) -> dict[str, Any] | None:
        return await self.rest_call("DELETE", url)


async def _single_chunk(buffer: bytearray) -> AsyncIterator[bytearray]:
    yield buffer


def _error_message(response: httpx.Response) -> str:
    """Server error message, verbatim from the vCD Error document when present."""
    try:
        document = parse_document(response.content) if response.content else {}
    except ExpatError:
        document = {}
    error = document.get("Error")
    if isinstance(error, Mapping) and error.get("@message"):
        return error["@message"]
    return response.text or response.reason_phrase


class SessionGateway:
    """Registry of open clients; one session per endpoint and login per run."""

    def __init__(
        self,
        credentials: CredentialProvider | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.credentials = credentials
        self._transport = transport
        self._clients: dict[tuple[str, str], VcdClient] = {}

    async def connect(self, endpoint_config: VcdEndpointConfig, name: str) -> VcdClient:
        """Return a connected client, reusing an open session for the same endpoint."""
        key = (endpoint_config.host, endpoint_config.login)
        client = self._clients.get(key)
        if client is not None:
            logger.info(
                "Reusing open session", endpoint=name, host=endpoint_config.host
            )
            return client

        client = VcdClient(endpoint_config, self.credentials, name, self._transport)
        await client.connect()
        self._clients[key] = client
        return client

    async def close_all(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()
