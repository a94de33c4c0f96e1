"""Endpoint probing with retries, success policy and certificate inspection."""

import logging
import re
import socket
import ssl
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol
from urllib.parse import urlparse

import requests
from cryptography import x509

from .config import Config, ConfigError, EndpointConfig, ServiceConfig, normalize_method
from .models import EndpointResult, ServiceResult, TriState
from .params import ParameterResolver

logger = logging.getLogger(__name__)


class ProbeSink(Protocol):
    """Destination for probe progress messages.

    Request lines may contain resolved secrets, so they only go to debug().
    """

    def debug(self, msg: str, *args: object) -> None: ...

    def failure(self, msg: str, *args: object) -> None: ...


class QuietSink:
    """Drops request-level detail but always logs failures at WARNING."""

    def debug(self, msg: str, *args: object) -> None:
        pass

    def failure(self, msg: str, *args: object) -> None:
        logger.warning(msg, *args)


class VerboseSink(QuietSink):
    """Logs every attempt, certificate lookup and success."""

    def debug(self, msg: str, *args: object) -> None:
        logger.info(msg, *args)


def evaluate(expected_status_code: int, expected_regex: str, actual_status_code: int, response_body: str) -> bool:
    """Decide whether a completed response counts as a success.

    Precedence:
    1. A set regex that does not match the body is a failure, whatever the status.
    2. Nothing configured: success only for HTTP 200.
    3. Only a regex configured (and it matched): success.
    4. A status code configured: success only on an exact match.

    Args:
        expected_status_code: Expected status, 0 for unset.
        expected_regex: Pattern searched in the body, empty for unset.
        actual_status_code: Status code received.
        response_body: Decoded response body.

    Returns:
        True if the response satisfies the policy.

    Raises:
        ConfigError: If expected_regex is not a valid pattern.
    """
    if expected_regex:
        try:
            matched = re.search(expected_regex, response_body) is not None
        except re.error as e:
            raise ConfigError(f"Invalid response_regex '{expected_regex}': {e}")
        if not matched:
            return False

    if expected_status_code == 0 and not expected_regex:
        return actual_status_code == 200

    if expected_status_code == 0:
        return True

    return actual_status_code == expected_status_code


@dataclass(frozen=True)
class CertificateInfo:
    """Leaf certificate expiry of an HTTPS endpoint.

    Attributes:
        expires_at: Certificate notAfter timestamp (UTC).
        remaining_days: Whole days until expiration (negative once expired).
        is_expired: True when remaining_days <= 0.
    """

    expires_at: datetime
    remaining_days: int
    is_expired: bool


def inspect_certificate(
    url: str,
    timeout: float,
    now: datetime | None = None,
) -> tuple[CertificateInfo | None, str | None]:
    """Read the leaf certificate expiry of an HTTPS URL.

    Chain verification is disabled so expired or self-signed certificates
    still report their dates. The raw DER certificate is decoded with
    cryptography because getpeercert() returns nothing without verification.

    Args:
        url: The URL to inspect.
        timeout: Connection timeout in seconds.
        now: Reference time, defaults to the current UTC time.

    Returns:
        Tuple of (CertificateInfo, None) on success, (None, None) for non-HTTPS
        URLs, or (None, error_message) on failure.
    """
    parsed = urlparse(url)
    if parsed.scheme != "https":
        return None, None

    hostname = parsed.hostname
    if not hostname:
        return None, "Invalid URL: no hostname"

    try:
        port = parsed.port or 443

        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

        with socket.create_connection((hostname, port), timeout=timeout) as sock:
            with context.wrap_socket(sock, server_hostname=hostname) as ssl_sock:
                cert_der = ssl_sock.getpeercert(binary_form=True)

        if not cert_der:
            return None, "No certificate returned by server"

        cert = x509.load_der_x509_certificate(cert_der)
        expires_at = cert.not_valid_after_utc

    except ssl.SSLError as e:
        return None, f"SSL error: {e}"
    except TimeoutError:
        return None, "SSL connection timeout"
    except socket.gaierror as e:
        return None, f"DNS resolution failed: {e}"
    except OSError as e:
        return None, f"Connection failed: {e}"
    except ValueError as e:
        return None, f"Invalid certificate: {e}"

    remaining_days = (expires_at - (now or datetime.now(UTC))).days
    return CertificateInfo(
        expires_at=expires_at,
        remaining_days=remaining_days,
        is_expired=remaining_days <= 0,
    ), None


def probe_endpoint(
    endpoint: EndpointConfig,
    timeout: float,
    max_retry_times: int,
    service_name: str = "",
    sink: ProbeSink | None = None,
    resolver: ParameterResolver | None = None,
) -> EndpointResult:
    """Probe one endpoint, retrying until the first success.

    Each attempt gets its own timeout. Transport and body read errors are
    recorded in failure_details and retried. The certificate of an HTTPS
    endpoint is inspected once up front and never uses up an attempt.

    Args:
        endpoint: Endpoint to probe.
        timeout: Seconds allowed for each HTTP attempt.
        max_retry_times: Maximum number of attempts. Zero or less makes no
            attempt and yields a DOWN result.
        service_name: Owning service, used in log lines.
        sink: Where progress messages go. Defaults to QuietSink.
        resolver: Resolver used to build the display URL.

    Returns:
        EndpointResult summarising all attempts.

    Raises:
        ConfigError: For an unsupported method or a malformed response_regex.
    """
    sink = sink or QuietSink()
    method = normalize_method(endpoint.method)
    url = endpoint.request_url
    headers = endpoint.request_headers
    body = endpoint.request_body

    failure_details: list[str] = []
    attempt_num = 0
    success_num = 0
    status_code: int | None = None
    response_body: str | None = None
    max_response_ms = 0

    display_url, highlight_segments = (resolver or ParameterResolver()).highlight(endpoint.url)

    is_https = urlparse(url).scheme == "https"
    cert_remaining_days = 0
    is_cert_expired = False
    if is_https:
        cert_info, cert_error = inspect_certificate(url, timeout)
        if cert_error:
            is_https = False
            sink.debug("SSL certificate check failed for %s: %s", url, cert_error)
            failure_details.append(f"SSL Certificate Error: {cert_error}")
        elif cert_info:
            cert_remaining_days = cert_info.remaining_days
            is_cert_expired = cert_info.is_expired
            sink.debug(
                "SSL Certificate Info for %s: %d days remaining, expired: %s",
                url,
                cert_info.remaining_days,
                cert_info.is_expired,
            )

    start_time = datetime.now(UTC)
    for attempt in range(1, max_retry_times + 1):
        attempt_num += 1
        sink.debug("[%s] %s %s (attempt %d/%d)", service_name, method, url, attempt, max_retry_times)

        request_start = time.monotonic()
        try:
            response = requests.request(
                method,
                url,
                headers=headers,
                data=body.encode("utf-8") if body else None,
                timeout=timeout,
                stream=True,
            )
        except (requests.RequestException, ValueError) as e:
            # http.client raises UnicodeEncodeError for non latin-1 header values
            failure_details.append(f"StatusCode: N/A, Error: {e}")
            sink.failure("FAILED - Error: %s", e)
            continue
        elapsed_ms = int((time.monotonic() - request_start) * 1000)

        try:
            try:
                text = response.text
            except requests.RequestException as e:
                failure_details.append(f"StatusCode: {response.status_code}, Error: {e}")
                sink.failure("FAILED - StatusCode: %d, Error: %s", response.status_code, e)
                continue

            status_code = response.status_code
            response_body = text

            if evaluate(endpoint.status_code, endpoint.response_regex, status_code, text):
                success_num += 1
                max_response_ms = max(max_response_ms, elapsed_ms)
                response_body = None
                sink.debug(
                    "SUCCESS - %s %s (attempt %d/%d) - Response Time: %d ms, Status Code: %d",
                    method,
                    url,
                    attempt,
                    max_retry_times,
                    elapsed_ms,
                    status_code,
                )
                break

            failure_details.append(f"StatusCode or ResponseRegex mismatch: {status_code}")
            sink.failure("FAILED - StatusCode or ResponseRegex mismatch: %d", status_code)
        finally:
            response.close()

    end_time = datetime.now(UTC)

    return EndpointResult(
        url=endpoint.url,
        method=method,
        status=TriState.UP if success_num > 0 else TriState.DOWN,
        start_time=start_time,
        end_time=end_time,
        status_code=status_code,
        response_time_ms=max_response_ms,
        attempt_num=attempt_num,
        success_num=success_num,
        failure_details=failure_details,
        response_body=response_body,
        is_https=is_https,
        cert_remaining_days=cert_remaining_days,
        is_cert_expired=is_cert_expired,
        display_url=display_url,
        highlight_segments=highlight_segments,
        body=endpoint.body,
    )


def check_service(
    service: ServiceConfig,
    timeout: float,
    max_retry_times: int,
    sink: ProbeSink | None = None,
    resolver: ParameterResolver | None = None,
) -> ServiceResult:
    """Probe the endpoints of one service in order."""
    started_at = datetime.now(UTC)
    endpoints = [
        probe_endpoint(endpoint, timeout, max_retry_times, service.name, sink, resolver)
        for endpoint in service.endpoints
    ]
    return ServiceResult.from_endpoints(service.name, endpoints, started_at, datetime.now(UTC))


def _crashed_result(endpoint: EndpointConfig, error: Exception) -> EndpointResult:
    now = datetime.now(UTC)
    return EndpointResult(
        url=endpoint.url,
        method=endpoint.method.upper() or "GET",
        status=TriState.DOWN,
        start_time=now,
        end_time=now,
        failure_details=[f"StatusCode: N/A, Error: {error}"],
        display_url=endpoint.url,
        body=endpoint.body,
    )


def run_checks(
    config: Config,
    sink: ProbeSink | None = None,
    resolver: ParameterResolver | None = None,
    max_workers: int | None = None,
) -> list[ServiceResult]:
    """Probe every configured endpoint concurrently and group the results.

    All probes are joined before this returns, so callers can update the
    history without any locking.

    Args:
        config: Loaded configuration.
        sink: Progress sink shared by all probes.
        resolver: Resolver used to build display URLs.
        max_workers: Thread pool size, defaults to config.max_workers.

    Returns:
        One ServiceResult per configured service, in configuration order.

    Raises:
        ConfigError: If any endpoint has an unsupported method or bad regex.
    """
    slots: dict[str, list[EndpointResult | None]] = {
        service.name: [None] * len(service.endpoints) for service in config.services
    }

    with ThreadPoolExecutor(max_workers=max_workers or config.max_workers) as executor:
        futures = {
            executor.submit(
                probe_endpoint,
                endpoint,
                config.timeout,
                config.max_retry_times,
                service.name,
                sink,
                resolver,
            ): (service.name, index, endpoint)
            for service in config.services
            for index, endpoint in enumerate(service.endpoints)
        }

        for future in as_completed(futures):
            service_name, index, endpoint = futures[future]
            try:
                result = future.result()
            except ConfigError:
                raise
            except Exception as e:
                logger.error("Failed to check %s (%s): %s", endpoint.url, service_name, e)
                result = _crashed_result(endpoint, e)
            slots[service_name][index] = result

    results: list[ServiceResult] = []
    for service in config.services:
        endpoints = [result for result in slots[service.name] if result is not None]
        service_result = ServiceResult.from_endpoints(
            service.name,
            endpoints,
            min(ep.start_time for ep in endpoints),
            max(ep.end_time for ep in endpoints),
        )
        logger.debug(
            "%s: %s (%d/%d attempts succeeded)",
            service.name,
            service_result.status.value,
            service_result.success_num,
            service_result.attempt_num,
        )
        results.append(service_result)
    return results
