"""
Base HTTP client and common functionality.

This module holds the HTTP plumbing shared by the console and storage clients:
connection handling, SSL/truststore setup, JSON encoding and decoding, and
status code checking.
"""

import json
import ssl
import logging
import http.client
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, Union
from urllib.parse import urlparse, urlencode
from http.client import HTTPSConnection, HTTPConnection

from salsa_sync.signals import CancellationToken

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Raised when an HTTP exchange with a remote API fails."""

    def __init__(self, message: str, status: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.body = body


class MalformedResponseError(ApiError):
    """Raised when a response body cannot be decoded into the expected structure."""
    pass


class ApiClientBase(ABC):
    """
    Base class for the remote API clients.

    Keeps one persistent connection to the configured host and sends JSON
    requests over it. Subclasses provide their authentication headers.
    """

    def __init__(self, name: str, base_url: str, timeout: float = 30,
                 verify_ssl: bool = True, ca_file: Optional[str] = None,
                 cancellation: Optional[CancellationToken] = None):
        """
        Initialize API client.

        Args:
            name: Human readable name used in logs and errors
            base_url: Endpoint URL; request paths are appended to its path
            timeout: Socket timeout in seconds
            verify_ssl: Verify server certificates for https URLs
            ca_file: Optional PEM or PKCS12 truststore
            cancellation: Token checked before every request
        """
        self.name = name
        self.base_url = base_url
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self.ca_file = ca_file
        self.cancellation = cancellation or CancellationToken()

        self.parsed_url = urlparse(self.base_url)
        self.host = self.parsed_url.netloc
        self.base_path = self.parsed_url.path

        self.connection = None
        self.ssl_context = None
        self._setup_ssl_context()

    def _setup_ssl_context(self):
        """Set up SSL context based on configuration."""
        if self.parsed_url.scheme != 'https':
            return

        if not self.verify_ssl:
            self.ssl_context = ssl._create_unverified_context()
            logger.warning(f"SSL verification disabled for {self.name}")
            return

        self.ssl_context = ssl.create_default_context()
        if self.ca_file:
            self._load_truststore(self.ca_file)

    def _load_truststore(self, truststore_file: str):
        """Load custom CA certificates from a PEM or PKCS12 file."""
        try:
            if truststore_file.lower().endswith(('.p12', '.pfx')):
                from cryptography.hazmat.primitives import serialization
                from cryptography.hazmat.primitives.serialization import pkcs12

                with open(truststore_file, 'rb') as f:
                    p12_data = f.read()

                _, certificate, additional_certificates = pkcs12.load_key_and_certificates(p12_data, None)

                ca_certs = []
                if certificate:
                    ca_certs.append(certificate.public_bytes(serialization.Encoding.PEM))
                for cert in (additional_certificates or []):
                    ca_certs.append(cert.public_bytes(serialization.Encoding.PEM))

                if not ca_certs:
                    raise ApiError(f"No certificates found in {truststore_file}")

                self.ssl_context.load_verify_locations(cadata=b'\n'.join(ca_certs).decode('ascii'))
                logger.info(f"Loaded PKCS12 truststore for {self.name}: {truststore_file}")
            else:
                self.ssl_context.load_verify_locations(cafile=truststore_file)
                logger.info(f"Loaded PEM truststore for {self.name}: {truststore_file}")

        except ApiError:
            raise
        except Exception as e:
            logger.error(f"Failed to load truststore {truststore_file}: {e}")
            raise ApiError(f"Truststore loading failed: {e}")

    @abstractmethod
    def auth_headers(self) -> Dict[str, str]:
        """Headers carrying the client's credentials."""
        pass

    def _get_connection(self) -> Union[HTTPSConnection, HTTPConnection]:
        """Get or create HTTP connection."""
        if self.connection:
            return self.connection

        if self.parsed_url.scheme == 'https':
            self.connection = HTTPSConnection(self.host, context=self.ssl_context, timeout=self.timeout)
        else:
            self.connection = HTTPConnection(self.host, timeout=self.timeout)

        return self.connection

    def build_path(self, path: str = '', params: Optional[Dict[str, Any]] = None) -> str:
        """Append path (and query parameters) to the base URL path."""
        base = self.base_path or '/'
        if path:
            full_path = base.rstrip('/') + '/' + path.lstrip('/')
        else:
            full_path = base
        if self.parsed_url.query:
            full_path += '?' + self.parsed_url.query
        if params:
            full_path += ('&' if '?' in full_path else '?') + urlencode(params)
        return full_path

    def request(self, method: str, path: str = '', body: Optional[Any] = None,
                params: Optional[Dict[str, Any]] = None,
                expected_status: Optional[int] = None) -> str:
        """
        Make HTTP request to the API.

        Args:
            method: HTTP method (GET, POST, PUT, PATCH, DELETE)
            path: API endpoint path (relative to base_url)
            body: JSON-serializable request body
            params: Query string parameters
            expected_status: Exact status to accept instead of any 2xx

        Returns:
            Raw response body as text

        Raises:
            ApiError: If the request cannot be sent or the status is not accepted
            SyncCancelled: If the run has been cancelled
        """
        self.cancellation.raise_if_cancelled()

        full_path = self.build_path(path, params)

        headers = {
            'Accept': 'application/json',
            'Content-Type': 'application/json',
        }
        headers.update(self.auth_headers())

        request_body = None
        if body is not None:
            try:
                request_body = json.dumps(body)
            except (TypeError, ValueError) as e:
                raise ApiError(f"Could not encode request body for {self.name}: {e}")

        try:
            conn = self._get_connection()

            logger.debug(f"Making {method} request to {self.host}{full_path}")
            conn.request(method, full_path, request_body, headers)

            response = conn.getresponse()
            response_data = response.read().decode('utf-8', errors='replace')
        except (OSError, http.client.HTTPException) as e:
            self.close_connection()
            raise ApiError(f"Connection error to {self.name}: {e}")

        logger.debug(f"Response status: {response.status} {response.reason}")

        if expected_status is not None:
            accepted = response.status == expected_status
        else:
            accepted = 200 <= response.status <= 299

        if not accepted:
            raise ApiError(
                f"{self.name} returned unexpected status code: {response.status}, with body:\n{response_data}",
                status=response.status,
                body=response_data
            )

        return response_data

    def request_json(self, method: str, path: str = '', body: Optional[Any] = None,
                     params: Optional[Dict[str, Any]] = None,
                     expected_status: Optional[int] = None) -> Any:
        """Make a request and decode the JSON response body."""
        response_data = self.request(method, path, body, params, expected_status)
        try:
            return json.loads(response_data)
        except json.JSONDecodeError as e:
            raise MalformedResponseError(f"Invalid JSON response from {self.name}: {e}", body=response_data)

    def close_connection(self):
        """Close HTTP connection."""
        if self.connection:
            try:
                self.connection.close()
            except Exception as e:
                logger.warning(f"Error closing connection for {self.name}: {e}")
            finally:
                self.connection = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close_connection()
