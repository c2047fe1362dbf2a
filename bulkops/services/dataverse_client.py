"""Dataverse Web API client implementing the remote data-service contract."""

from __future__ import annotations

import threading
import time
from http.cookiejar import DefaultCookiePolicy
from typing import TYPE_CHECKING, Any

import requests
import structlog
from azure.core.exceptions import ClientAuthenticationError
from azure.identity import ClientSecretCredential
from requests.adapters import HTTPAdapter
from requests.auth import AuthBase
from tenacity import RetryError

from bulkops.core.connection_string import parse_connection_string
from bulkops.core.errors import (
    TRANSPORT_ERROR,
    JobPollingError,
    ProvisioningError,
    RemoteError,
    ServiceConnectionError,
)
from bulkops.core.transformers import (
    DOP_HINT_HEADER,
    ENTITY_ID_HEADER,
    async_status_name,
    build_bulk_delete_payload,
    build_delete_multiple_payload,
    build_entity_metadata,
    build_request_headers,
    build_request_params,
    entity_set_name,
    is_async_job_complete,
    parse_entity_id,
    parse_error_body,
)
from bulkops.models.config import ClientSettings
from bulkops.models.connection import AuthType, ConnectionDescriptor
from bulkops.utils.retry import poll_until, retry_with_logging

if TYPE_CHECKING:
    from azure.core.credentials import AccessToken, TokenCredential

    from bulkops.models.record import Record, RecordReference, RequestHints

logger = structlog.get_logger(__name__)

DEFAULT_RECOMMENDED_PARALLELISM = 4
AFFINITY_COOKIES = frozenset({"ARRAffinity", "ARRAffinitySameSite"})
# Renew credential tokens this long before they expire
TOKEN_REFRESH_MARGIN_SECONDS = 300


class _NoAffinityCookiePolicy(DefaultCookiePolicy):
    """Cookie policy that refuses the load balancer's server-affinity cookies."""

    def set_ok(self, cookie: Any, request: Any) -> bool:
        if cookie.name in AFFINITY_COOKIES:
            return False
        return super().set_ok(cookie, request)


class BearerTokenAuth(AuthBase):
    """Attach a bearer token to every request, renewing it shortly before it expires.

    A static token from the connection string is sent as is. Tokens from a
    credential are cached and shared by all worker threads.
    """

    def __init__(
        self,
        scope: str,
        credential: TokenCredential | None = None,
        access_token: str | None = None,
    ) -> None:
        if credential is None and access_token is None:
            msg = "either credential or access_token is required"
            raise ValueError(msg)
        self.scope = scope
        self.credential = credential
        self._static_token = access_token
        self._token: AccessToken | None = None
        self._lock = threading.Lock()

    def token(self) -> str:
        if self.credential is None:
            return str(self._static_token)
        with self._lock:
            if self._token is None or self._token.expires_on - TOKEN_REFRESH_MARGIN_SECONDS <= time.time():
                self._token = self.credential.get_token(self.scope)
                logger.info("access_token_acquired", scope=self.scope, expires_on=self._token.expires_on)
            return self._token.token

    def __call__(self, request: requests.PreparedRequest) -> requests.PreparedRequest:
        request.headers["Authorization"] = f"Bearer {self.token()}"
        return request


class AsyncOperationJob:
    """A submitted asyncoperation, polled until it reaches a terminal state."""

    def __init__(
        self,
        client: DataverseClient,
        job_id: str,
        poll_interval: float = 5.0,
        max_attempts: int = 120,
    ) -> None:
        self.client = client
        self.job_id = job_id
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.last_status: str | None = None

    def fetch_state(self) -> dict[str, Any]:
        """Read statecode and statuscode of the job."""
        response = self.client.request(
            "GET",
            f"asyncoperations({self.job_id})",
            params={"$select": "statecode,statuscode"},
        )
        body = response.json()
        self.last_status = async_status_name(body.get("statuscode"))
        logger.debug(
            "async_job_polled",
            job_id=self.job_id,
            statecode=body.get("statecode"),
            status=self.last_status,
        )
        return body

    def poll_until_complete(self) -> str:
        """Block until the job completes and return its terminal status name.

        Transient failures of a poll count against the poll budget. Raises
        JobPollingError when the budget runs out first; any other RemoteError
        propagates.
        """
        try:
            state = poll_until(
                self.fetch_state,
                lambda body: is_async_job_complete(body.get("statecode")),
                interval=self.poll_interval,
                max_attempts=self.max_attempts,
                retry_on=_is_transient_remote_error,
            )
        except RetryError as exc:
            raise JobPollingError(self.job_id, self.last_status, self.max_attempts) from exc

        status = async_status_name(state.get("statuscode"))
        logger.info("async_job_completed", job_id=self.job_id, status=status)
        return status


def _is_transient_remote_error(exc: BaseException) -> bool:
    return isinstance(exc, RemoteError) and exc.is_transient


class DataverseClient:
    """Client for Dataverse Web API record and metadata operations.

    The session and its connection pool are shared by every worker thread;
    nothing on the client changes once connect() has returned.
    """

    def __init__(
        self,
        descriptor: ConnectionDescriptor,
        settings: ClientSettings | None = None,
        session: requests.Session | None = None,
        job_poll_interval: float = 5.0,
        job_poll_max_attempts: int = 120,
        credential: TokenCredential | None = None,
    ) -> None:
        self.descriptor = descriptor
        self.credential = credential
        self.settings = settings or ClientSettings()
        self.base_url = f"{descriptor.url}/api/data/v{self.settings.api_version}/"
        self.job_poll_interval = job_poll_interval
        self.job_poll_max_attempts = job_poll_max_attempts
        self.session = session or self._build_session()
        self._recommended_parallelism: int | None = None
        self._user_id: str | None = None

    def _build_session(self) -> requests.Session:
        session = requests.Session()
        adapter = HTTPAdapter(
            pool_connections=self.settings.max_connections,
            pool_maxsize=self.settings.max_connections,
        )
        session.mount("https://", adapter)
        session.headers.update(
            {
                "Accept": "application/json",
                "Content-Type": "application/json; charset=utf-8",
                "OData-MaxVersion": "4.0",
                "OData-Version": "4.0",
            }
        )
        if not self.settings.enable_affinity_cookie:
            session.cookies.set_policy(_NoAffinityCookiePolicy())
        return session

    # --- connection ---

    def connect(self) -> DataverseClient:
        """Authenticate and negotiate the recommended degree of parallelism.

        Raises ServiceConnectionError on bad credentials or an unreachable host.
        """
        auth = self._build_auth()
        try:
            auth.token()
        except ClientAuthenticationError as exc:
            msg = f"token request failed: {exc.message}"
            raise ServiceConnectionError(msg) from exc
        self.session.auth = auth

        try:
            response = self._who_am_i()
        except requests.RequestException as exc:
            msg = f"cannot reach {self.descriptor.url}: {exc}"
            raise ServiceConnectionError(msg) from exc

        if response.status_code in (401, 403):
            msg = f"credentials rejected by {self.descriptor.url} (HTTP {response.status_code})"
            raise ServiceConnectionError(msg)
        if not response.ok:
            msg = f"WhoAmI failed with HTTP {response.status_code}"
            raise ServiceConnectionError(msg)

        self._user_id = response.json().get("UserId")
        dop_hint = response.headers.get(DOP_HINT_HEADER)
        try:
            self._recommended_parallelism = max(1, int(dop_hint)) if dop_hint else DEFAULT_RECOMMENDED_PARALLELISM
        except ValueError:
            self._recommended_parallelism = DEFAULT_RECOMMENDED_PARALLELISM

        logger.info(
            "connected",
            url=self.descriptor.url,
            user_id=self._user_id,
            recommended_parallelism=self._recommended_parallelism,
        )
        return self

    def _build_auth(self) -> BearerTokenAuth:
        """Static token from the connection string, or a client-secret credential."""
        if self.descriptor.access_token:
            return BearerTokenAuth(self.descriptor.scope, access_token=self.descriptor.access_token)
        if self.descriptor.auth_type != AuthType.CLIENT_SECRET:
            msg = "no access token and no client credentials in connection descriptor"
            raise ServiceConnectionError(msg)
        credential = self.credential or ClientSecretCredential(
            str(self.descriptor.tenant_id),
            str(self.descriptor.client_id),
            str(self.descriptor.client_secret),
            authority=self.descriptor.authority,
        )
        return BearerTokenAuth(self.descriptor.scope, credential=credential)

    @retry_with_logging(max_attempts=3)
    def _who_am_i(self) -> requests.Response:
        return self.session.get(f"{self.base_url}WhoAmI", timeout=self.settings.timeout_seconds)

    def is_ready(self) -> bool:
        return self._recommended_parallelism is not None

    def recommended_parallelism(self) -> int:
        """Server-advised degree of parallelism, negotiated once per connection."""
        if self._recommended_parallelism is None:
            msg = "client is not connected"
            raise ServiceConnectionError(msg)
        return self._recommended_parallelism

    def close(self) -> None:
        self.session.close()
        self._recommended_parallelism = None

    def __enter__(self) -> DataverseClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # --- transport ---

    def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> requests.Response:
        """Send one Web API request, raising RemoteError on any failure."""
        try:
            response = self.session.request(
                method,
                f"{self.base_url}{path}",
                json=json,
                params=params,
                headers=headers,
                timeout=self.settings.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise RemoteError(str(exc), error_code=TRANSPORT_ERROR) from exc
        except ClientAuthenticationError as exc:
            raise RemoteError(exc.message, error_code="AuthenticationFailed", status_code=401) from exc

        if not response.ok:
            try:
                code, message = parse_error_body(response.json())
            except ValueError:
                code, message = None, None
            raise RemoteError(
                message or f"{method} {path} failed with HTTP {response.status_code}",
                error_code=code,
                status_code=response.status_code,
            )
        return response

    # --- record operations ---

    def create(self, record: Record, hints: RequestHints | None = None) -> str:
        """Create a record and return the server-assigned identifier."""
        response = self.request(
            "POST",
            entity_set_name(record.table),
            json=record.fields,
            params=build_request_params(hints),
            headers=build_request_headers(hints),
        )
        record_id = parse_entity_id(response.headers.get(ENTITY_ID_HEADER))
        if record_id is None:
            msg = "create response carried no OData-EntityId"
            raise RemoteError(msg, error_code="MissingEntityId", status_code=response.status_code)
        return record_id

    def update(self, record: Record, hints: RequestHints | None = None) -> None:
        """Update an existing record; If-Match prevents an accidental upsert."""
        reference = record.reference()
        headers = {"If-Match": "*", **build_request_headers(hints)}
        self.request(
            "PATCH",
            f"{entity_set_name(reference.table)}({reference.id})",
            json=record.fields,
            params=build_request_params(hints),
            headers=headers,
        )

    def delete(self, reference: RecordReference, hints: RequestHints | None = None) -> None:
        self.request(
            "DELETE",
            f"{entity_set_name(reference.table)}({reference.id})",
            params=build_request_params(hints),
            headers=build_request_headers(hints),
        )

    def bulk_delete(
        self,
        references: list[RecordReference],
        hints: RequestHints | None = None,
    ) -> str:
        """Delete a set of records with one DeleteMultiple call per table."""
        by_table: dict[str, list[RecordReference]] = {}
        for reference in references:
            by_table.setdefault(reference.table, []).append(reference)

        for table, table_refs in by_table.items():
            self.request(
                "POST",
                f"{entity_set_name(table)}/Microsoft.Dynamics.CRM.DeleteMultiple",
                json=build_delete_multiple_payload(table_refs),
                params=build_request_params(hints),
                headers=build_request_headers(hints),
            )
            logger.info("delete_multiple_sent", table=table, count=len(table_refs))
        return "Succeeded"

    def submit_async_delete_job(
        self,
        table: str,
        ids: list[str],
        job_name: str,
    ) -> AsyncOperationJob:
        """Start a BulkDelete system job over the given primary keys."""
        response = self.request(
            "POST",
            "BulkDelete",
            json=build_bulk_delete_payload(table, ids, job_name),
        )
        job_id = response.json().get("JobId")
        if not job_id:
            msg = "BulkDelete response carried no JobId"
            raise RemoteError(msg, error_code="MissingJobId", status_code=response.status_code)
        logger.info("bulk_delete_job_submitted", table=table, count=len(ids), job_id=job_id)
        return AsyncOperationJob(
            self,
            job_id,
            poll_interval=self.job_poll_interval,
            max_attempts=self.job_poll_max_attempts,
        )

    # --- schema provisioning ---

    def table_exists(self, schema_name: str) -> bool:
        try:
            self.request(
                "GET",
                f"EntityDefinitions(LogicalName='{schema_name.lower()}')",
                params={"$select": "LogicalName"},
            )
        except RemoteError as exc:
            if exc.status_code == 404:
                return False
            msg = f"cannot read table {schema_name}: {exc}"
            raise ProvisioningError(msg) from exc
        return True

    def create_table(self, schema_name: str, elastic: bool) -> None:
        """Create the example table unless it already exists."""
        if self.table_exists(schema_name):
            logger.info("table_already_exists", schema_name=schema_name)
            return
        try:
            self.request("POST", "EntityDefinitions", json=build_entity_metadata(schema_name, elastic))
        except RemoteError as exc:
            msg = f"cannot create table {schema_name}: {exc}"
            raise ProvisioningError(msg) from exc
        logger.info("table_created", schema_name=schema_name, elastic=elastic)

    def drop_table(self, schema_name: str) -> None:
        """Drop the example table; a table that is already gone is not an error."""
        try:
            self.request("DELETE", f"EntityDefinitions(LogicalName='{schema_name.lower()}')")
        except RemoteError as exc:
            if exc.status_code == 404:
                logger.info("table_already_dropped", schema_name=schema_name)
                return
            msg = f"cannot drop table {schema_name}: {exc}"
            raise ProvisioningError(msg) from exc
        logger.info("table_dropped", schema_name=schema_name)


def connect(
    connection: str | ConnectionDescriptor,
    settings: ClientSettings | None = None,
    session: requests.Session | None = None,
    job_poll_interval: float = 5.0,
    job_poll_max_attempts: int = 120,
    credential: TokenCredential | None = None,
) -> DataverseClient:
    """Open a connected client from a connection string or descriptor."""
    descriptor = (
        parse_connection_string(connection) if isinstance(connection, str) else connection
    )
    client = DataverseClient(
        descriptor,
        settings=settings,
        session=session,
        job_poll_interval=job_poll_interval,
        job_poll_max_attempts=job_poll_max_attempts,
        credential=credential,
    )
    return client.connect()
