"""
Job Client
==========

Generic submit/poll adapter for asynchronous job services.

Every job service follows the same contract:

    POST {base_url}/{endpoint_id}/run              {"input": {...}} -> {"id", "status"}
    GET  {base_url}/{endpoint_id}/status/{job_id}  -> {"status", "output"?, "error"?}

The client holds no state across calls beyond the shared HTTP connection.
"""

import asyncio
import inspect
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any, Callable

import httpx

from ..core.exceptions import (
    SubmissionError,
    TransientPollError,
    JobFailedError,
    PollTimeoutError,
)
from ..core.config import Config, JobServiceConfig
from ..core.security import redact_api_key

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================


DEFAULT_BASE_URL = "https://api.runpod.ai/v2"
DEFAULT_TIMEOUT = 60.0
DEFAULT_POLL_INTERVAL = 2.0


# =============================================================================
# Data Classes
# =============================================================================


class JobStatus(Enum):
    """Status reported by a job service."""

    IN_QUEUE = "IN_QUEUE"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)

    @classmethod
    def from_service_status(cls, status: Any) -> Optional["JobStatus"]:
        """
        Normalize a service status string.

        Returns None for anything unrecognized so the caller can treat it
        as a transient condition instead of a terminal failure.
        """
        if not isinstance(status, str):
            return None
        normalized = status.strip().upper()
        for member in cls:
            if member.value == normalized:
                return member
        return None


@dataclass
class PollResult:
    """One status check of a job."""

    job_id: str
    status: JobStatus
    output: Any = None
    error: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


ProgressCallback = Callable[[JobStatus], Any]


# =============================================================================
# Job Client
# =============================================================================


class JobClient:
    """
    Submit/poll client for one job API.

    Usage:
        async with JobClient(api_key="...") as client:
            result = await client.generate_until_done(
                "wan-2-2-t2v-720",
                {"prompt": "..."},
                poll_interval=5.0,
            )
            print(result.output)
    """

    env_key_name = "RUNPOD_API_KEY"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            api_key: API key (or read from environment)
            base_url: Base URL for the job API
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used to fake the service in tests)
        """
        self.api_key = api_key or os.getenv(self.env_key_name, "")
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.timeout = timeout
        self._transport = transport

        # HTTP client with lock for concurrent poll loops
        self._client: Optional[httpx.AsyncClient] = None
        self._client_lock = asyncio.Lock()

        if not self.api_key:
            logger.warning(
                f"No API key found for job service. "
                f"Set {self.env_key_name} environment variable or pass api_key parameter."
            )

    # -------------------------------------------------------------------------
    # Submit / Poll
    # -------------------------------------------------------------------------

    async def submit(self, endpoint_id: str, payload: Dict[str, Any]) -> str:
        """
        Submit a job.

        Args:
            endpoint_id: Service endpoint identifier
            payload: Service-specific input (wrapped in {"input": ...})

        Returns:
            The job id assigned by the service

        Raises:
            SubmissionError: On transport failure, non-2xx response or missing id
        """
        url = f"{self.base_url}/{endpoint_id}/run"
        client = await self._get_client()

        logger.debug(f"Submitting job to {endpoint_id}: {list(payload.keys())}")
        try:
            response = await client.post(url, json={"input": payload})
        except httpx.HTTPError as e:
            raise SubmissionError(
                f"Submit to {endpoint_id} failed: {redact_api_key(str(e))}",
                provider=endpoint_id,
            ) from e

        if not response.is_success:
            raise SubmissionError(
                f"Submit to {endpoint_id} failed with status {response.status_code}",
                provider=endpoint_id,
                status_code=response.status_code,
                response_body=redact_api_key(response.text),
            )

        try:
            data = response.json()
        except ValueError as e:
            raise SubmissionError(
                f"Submit to {endpoint_id} returned invalid JSON",
                provider=endpoint_id,
                response_body=response.text,
            ) from e

        job_id = self._extract_job_id(data)
        if not job_id:
            raise SubmissionError(
                f"Submit to {endpoint_id} returned no job id",
                provider=endpoint_id,
                response_body=str(data),
            )

        logger.info(f"Submitted job {job_id} to {endpoint_id}")
        return job_id

    async def poll(self, endpoint_id: str, job_id: str) -> PollResult:
        """
        Check a job's status once.

        Raises:
            TransientPollError: On transport failure, non-2xx response,
                malformed JSON or an unrecognized status string
        """
        url = f"{self.base_url}/{endpoint_id}/status/{job_id}"
        client = await self._get_client()

        try:
            response = await client.get(url)
        except httpx.HTTPError as e:
            raise TransientPollError(
                f"Status check for {job_id} failed: {redact_api_key(str(e))}",
                job_id=job_id,
                provider=endpoint_id,
            ) from e

        if not response.is_success:
            raise TransientPollError(
                f"Status check for {job_id} returned {response.status_code}",
                job_id=job_id,
                provider=endpoint_id,
                status_code=response.status_code,
                response_body=redact_api_key(response.text),
            )

        try:
            data = response.json()
        except ValueError as e:
            raise TransientPollError(
                f"Status check for {job_id} returned invalid JSON",
                job_id=job_id,
                provider=endpoint_id,
                response_body=response.text,
            ) from e

        if not isinstance(data, dict):
            raise TransientPollError(
                f"Status check for {job_id} returned a non-object body",
                job_id=job_id,
                provider=endpoint_id,
            )

        raw_status = self._extract_status(data)
        status = JobStatus.from_service_status(raw_status)
        if status is None:
            raise TransientPollError(
                f"Unrecognized status for {job_id}: {raw_status!r}",
                job_id=job_id,
                provider=endpoint_id,
            )

        return PollResult(
            job_id=job_id,
            status=status,
            output=data.get("output"),
            error=self._extract_error(data) if status == JobStatus.FAILED else None,
            raw=data,
        )

    async def wait_for_completion(
        self,
        endpoint_id: str,
        job_id: str,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        on_progress: Optional[ProgressCallback] = None,
        max_attempts: Optional[int] = None,
    ) -> PollResult:
        """
        Poll a job on a fixed interval until it reaches a terminal status.

        Transient poll errors are logged and retried on the same interval.

        Args:
            endpoint_id: Service endpoint identifier
            job_id: The job to wait for
            poll_interval: Seconds between status checks
            on_progress: Called with the status on every recognized tick
            max_attempts: Bound on status checks (None waits indefinitely)

        Returns:
            The COMPLETED PollResult

        Raises:
            JobFailedError: If the service reports FAILED
            PollTimeoutError: If max_attempts checks pass without a terminal status
        """
        attempts = 0

        while True:
            attempts += 1
            try:
                result = await self.poll(endpoint_id, job_id)
            except TransientPollError as e:
                logger.warning(f"Transient poll error (attempt {attempts}): {e.message}")
                result = None

            if result is not None:
                logger.debug(f"Job {job_id} status: {result.status.value}")
                await self._notify(on_progress, result.status)

                if result.status == JobStatus.COMPLETED:
                    return result
                if result.status == JobStatus.FAILED:
                    logger.error(f"Job {job_id} failed: {result.error}")
                    raise JobFailedError(
                        f"Job {job_id} failed: {result.error}",
                        job_id=job_id,
                        service_error=result.error,
                    )

            if max_attempts is not None and attempts >= max_attempts:
                raise PollTimeoutError(
                    f"Job {job_id} did not finish after {attempts} status checks",
                    job_id=job_id,
                    attempts=attempts,
                )

            await asyncio.sleep(poll_interval)

    async def generate_until_done(
        self,
        endpoint_id: str,
        payload: Dict[str, Any],
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        on_progress: Optional[ProgressCallback] = None,
        max_attempts: Optional[int] = None,
    ) -> PollResult:
        """Submit once, then wait for the job to finish."""
        job_id = await self.submit(endpoint_id, payload)
        return await self.wait_for_completion(
            endpoint_id,
            job_id,
            poll_interval=poll_interval,
            on_progress=on_progress,
            max_attempts=max_attempts,
        )

    # -------------------------------------------------------------------------
    # Helper Methods
    # -------------------------------------------------------------------------

    @staticmethod
    async def _notify(on_progress: Optional[ProgressCallback], status: JobStatus) -> None:
        if on_progress is None:
            return
        outcome = on_progress(status)
        if inspect.isawaitable(outcome):
            await outcome

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self.timeout),
                    headers=self._get_headers(),
                    transport=self._transport,
                )
            return self._client

    def _get_headers(self) -> Dict[str, str]:
        """Get default headers for requests."""
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _extract_job_id(self, data: Any) -> str:
        """Extract job ID from response."""
        if not isinstance(data, dict):
            return ""
        return data.get("id") or data.get("job_id") or ""

    def _extract_status(self, data: Dict[str, Any]) -> Any:
        """Extract status string from response."""
        return data.get("status")

    def _extract_error(self, data: Dict[str, Any]) -> str:
        """Extract error message from response."""
        error = data.get("error")
        if isinstance(error, dict):
            error = error.get("message") or str(error)
        return error or data.get("message") or "Unknown error"

    # -------------------------------------------------------------------------
    # Context Manager Protocol
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Close the HTTP client."""
        async with self._client_lock:
            if self._client:
                await self._client.aclose()
                self._client = None

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()


# =============================================================================
# Job Service Base Class
# =============================================================================


class JobService(ABC):
    """
    One job endpoint bound to its payload format and output extraction.

    Subclasses register themselves with ``register_service`` and only
    implement ``build_payload`` and ``extract_output``; submission and
    polling come from the shared JobClient.
    """

    name: str = ""

    def __init__(
        self,
        client: JobClient,
        settings: JobServiceConfig,
        config: Optional[Config] = None,
    ):
        self.client = client
        self.settings = settings
        self.config = config or Config()

    @property
    def endpoint_id(self) -> str:
        return self.settings.endpoint_id

    @abstractmethod
    def build_payload(self, **kwargs) -> Dict[str, Any]:
        """Build the service-specific job input."""
        pass

    @abstractmethod
    def extract_output(self, result: PollResult) -> Any:
        """
        Pull the artifact out of a COMPLETED poll result.

        Raises:
            JobFailedError: If the job completed without a usable output
        """
        pass

    async def submit(self, **kwargs) -> str:
        """Submit a job and return its id."""
        return await self.client.submit(self.endpoint_id, self.build_payload(**kwargs))

    async def wait(self, job_id: str, on_progress: Optional[ProgressCallback] = None) -> Any:
        """Wait for a submitted job using the configured interval and bound."""
        result = await self.client.wait_for_completion(
            self.endpoint_id,
            job_id,
            poll_interval=self.settings.poll_interval,
            on_progress=on_progress,
            max_attempts=self.settings.max_poll_attempts,
        )
        return self.extract_output(result)

    async def run(self, on_progress: Optional[ProgressCallback] = None, **kwargs) -> Any:
        """Submit, wait and extract the output."""
        job_id = await self.submit(**kwargs)
        return await self.wait(job_id, on_progress=on_progress)

    def _missing_output(self, result: PollResult, expected: str) -> JobFailedError:
        logger.error(f"{self.name} job {result.job_id} completed without {expected}")
        return JobFailedError(
            f"{self.name} job {result.job_id} completed without {expected}",
            job_id=result.job_id,
            service_error=f"missing {expected}",
        )
