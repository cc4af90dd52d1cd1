"""
CardDAV client for reading remote address books.

Provides a read-only interface to a CardDAV server (iCloud by default):
- Principal and address book home discovery
- Listing address books
- Fetching every vCard in an address book with one REPORT request
- Exponential backoff retry for rate limits and server errors
"""

import logging
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urljoin

import requests

from icontact_sync import __version__

# XML namespaces used in WebDAV / CardDAV responses
NS = {"d": "DAV:", "card": "urn:ietf:params:xml:ns:carddav"}

PRINCIPAL_QUERY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:">'
    "<d:prop><d:current-user-principal/></d:prop>"
    "</d:propfind>"
)

HOME_SET_QUERY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:" xmlns:card="urn:ietf:params:xml:ns:carddav">'
    "<d:prop><card:addressbook-home-set/></d:prop>"
    "</d:propfind>"
)

ADDRESS_BOOKS_QUERY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:">'
    "<d:prop><d:resourcetype/><d:displayname/></d:prop>"
    "</d:propfind>"
)

VCARDS_QUERY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<card:addressbook-query xmlns:d="DAV:" '
    'xmlns:card="urn:ietf:params:xml:ns:carddav">'
    "<d:prop><d:getetag/><card:address-data/></d:prop>"
    "</card:addressbook-query>"
)

DEFAULT_SERVER_URL = "https://contacts.icloud.com"

# Connect/read timeout for each request (seconds)
DEFAULT_TIMEOUT = 30.0

# Retry configuration defaults
DEFAULT_MAX_RETRIES = 5
DEFAULT_INITIAL_RETRY_DELAY = 1.0  # seconds
DEFAULT_MAX_RETRY_DELAY = 60.0  # seconds

logger = logging.getLogger(__name__)


class CardDAVError(Exception):
    """Raised when a CardDAV operation fails."""

    pass


class CardDAVAuthError(CardDAVError):
    """Raised when the server rejects the credentials."""

    pass


class RateLimitError(CardDAVError):
    """Raised when rate limit is exceeded and retries are exhausted."""

    pass


@dataclass(frozen=True)
class AddressBook:
    """An address book collection on the server."""

    url: str
    display_name: str = ""


class CardDAVClient:
    """
    Read-only CardDAV client.

    Attributes:
        server_url: Base URL of the CardDAV service
        session: requests session carrying Basic auth

    Usage:
        with CardDAVClient(username, app_password) as client:
            for book in client.list_address_books():
                vcards = client.list_vcards(book)
    """

    def __init__(
        self,
        username: str,
        password: str,
        server_url: str = DEFAULT_SERVER_URL,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_retry_delay: float = DEFAULT_INITIAL_RETRY_DELAY,
        max_retry_delay: float = DEFAULT_MAX_RETRY_DELAY,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the client.

        Args:
            username: Account name (Apple ID for iCloud)
            password: Account password (app-specific password for iCloud)
            server_url: CardDAV base URL (default iCloud)
            timeout: Connect/read timeout per request in seconds
            max_retries: Maximum attempts for rate-limited or failing requests
            initial_retry_delay: Initial backoff delay in seconds
            max_retry_delay: Maximum backoff delay in seconds
            session: Optional preconfigured requests session
        """
        self.server_url = server_url if server_url.endswith("/") else server_url + "/"
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.initial_retry_delay = initial_retry_delay
        self.max_retry_delay = max_retry_delay

        self.session = session or requests.Session()
        self.session.auth = (username, password)
        self.session.headers.update({"User-Agent": f"icontact-sync/{__version__}"})

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self.session.close()

    def __enter__(self) -> "CardDAVClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # =========================================================================
    # HTTP
    # =========================================================================

    def _retry_delay(self, response: Optional[requests.Response], delay: float) -> float:
        """Honor a numeric Retry-After header, capped at max_retry_delay."""
        if response is not None:
            retry_after = response.headers.get("Retry-After", "")
            if retry_after.isdigit():
                return min(float(retry_after), self.max_retry_delay)
        return delay

    def _request(
        self, method: str, url: str, body: str, depth: str, operation_name: str
    ) -> requests.Response:
        """
        Send a WebDAV request with exponential backoff retry.

        Raises:
            CardDAVAuthError: On 401/403
            RateLimitError: If 429 persists after all retries
            CardDAVError: For other failures
        """
        headers = {"Depth": depth, "Content-Type": "application/xml; charset=utf-8"}
        delay = self.initial_retry_delay

        for attempt in range(self.max_retries):
            is_last = attempt == self.max_retries - 1
            try:
                response = self.session.request(
                    method,
                    url,
                    data=body.encode("utf-8"),
                    headers=headers,
                    timeout=self.timeout,
                )
            except requests.Timeout as e:
                if is_last:
                    raise CardDAVError(f"{operation_name} timed out: {e}") from e
                logger.warning(
                    f"{operation_name} timed out, retrying in {delay:.1f}s "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )
                time.sleep(delay)
                delay = min(delay * 2, self.max_retry_delay)
                continue
            except requests.RequestException as e:
                raise CardDAVError(f"{operation_name} failed: {e}") from e

            status_code = response.status_code

            if status_code in (401, 403):
                raise CardDAVAuthError(
                    f"{operation_name} rejected credentials (HTTP {status_code})"
                )

            if status_code == 429:
                if is_last:
                    raise RateLimitError(
                        f"Rate limit exceeded for {operation_name} "
                        f"after {self.max_retries} retries"
                    )
                wait = self._retry_delay(response, delay)
                logger.warning(
                    f"{operation_name} rate limited, retrying in {wait:.1f}s "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )
                time.sleep(wait)
                delay = min(delay * 2, self.max_retry_delay)
                continue

            if status_code >= 500 and not is_last:
                logger.warning(
                    f"{operation_name} server error ({status_code}), "
                    f"retrying in {delay:.1f}s"
                )
                time.sleep(delay)
                delay = min(delay * 2, self.max_retry_delay)
                continue

            if status_code >= 400:
                logger.error(f"{operation_name} failed with status {status_code}")
                raise CardDAVError(f"{operation_name} failed: HTTP {status_code}")

            return response

        raise CardDAVError(f"{operation_name} failed after all retries")

    def _multistatus(
        self, method: str, url: str, body: str, depth: str, operation_name: str
    ) -> ET.Element:
        response = self._request(method, url, body, depth, operation_name)
        try:
            return ET.fromstring(response.content)
        except ET.ParseError as e:
            raise CardDAVError(f"{operation_name} returned invalid XML: {e}") from e

    # =========================================================================
    # Discovery
    # =========================================================================

    def _find_href(self, root: ET.Element, path: str) -> Optional[str]:
        node = root.find(path, NS)
        if node is None or not (node.text or "").strip():
            return None
        return node.text.strip()

    def discover_principal(self) -> str:
        """Return the current user principal URL, or the server URL."""
        root = self._multistatus(
            "PROPFIND", self.server_url, PRINCIPAL_QUERY, "0", "discover_principal"
        )
        href = self._find_href(root, ".//d:current-user-principal/d:href")
        if href is None:
            logger.debug("No current-user-principal, using server URL")
            return self.server_url
        return urljoin(self.server_url, href)

    def discover_home_set(self, principal_url: str) -> str:
        """Return the address book home set URL, or the principal URL."""
        root = self._multistatus(
            "PROPFIND", principal_url, HOME_SET_QUERY, "0", "discover_home_set"
        )
        href = self._find_href(root, ".//card:addressbook-home-set/d:href")
        if href is None:
            logger.debug("No addressbook-home-set, using principal URL")
            return principal_url
        home = urljoin(principal_url, href)
        return home if home.endswith("/") else home + "/"

    # =========================================================================
    # Address Books
    # =========================================================================

    def list_address_books(self) -> list[AddressBook]:
        """
        List address book collections for the account.

        Returns:
            Address books in server order. If the home set contains no
            collection marked as an address book, the home set itself is
            returned as the only book.

        Raises:
            CardDAVError: If discovery or listing fails
        """
        home_url = self.discover_home_set(self.discover_principal())
        root = self._multistatus(
            "PROPFIND", home_url, ADDRESS_BOOKS_QUERY, "1", "list_address_books"
        )

        books: list[AddressBook] = []
        for response in root.findall(".//d:response", NS):
            href = self._find_href(response, "d:href")
            resource_type = response.find(".//d:resourcetype", NS)
            if href is None or resource_type is None:
                continue
            if resource_type.find("card:addressbook", NS) is None:
                continue
            name_node = response.find(".//d:displayname", NS)
            display_name = (name_node.text or "").strip() if name_node is not None else ""
            books.append(AddressBook(url=urljoin(home_url, href), display_name=display_name))

        if not books:
            logger.debug("No address book collections found, using home set URL")
            books.append(AddressBook(url=home_url))

        logger.info(f"Found {len(books)} address book(s)")
        return books

    def list_vcards(self, address_book: AddressBook) -> list[str]:
        """
        Fetch every vCard in an address book.

        Args:
            address_book: Book returned by list_address_books()

        Returns:
            Raw vCard strings in server order; entries without address
            data (such as the collection itself) are skipped

        Raises:
            CardDAVError: If the request fails
        """
        root = self._multistatus(
            "REPORT", address_book.url, VCARDS_QUERY, "1", "list_vcards"
        )

        vcards: list[str] = []
        for response in root.findall(".//d:response", NS):
            data_node = response.find(".//card:address-data", NS)
            if data_node is None or not (data_node.text or "").strip():
                continue
            vcards.append(data_node.text)

        logger.debug(
            f"Fetched {len(vcards)} vCards from {address_book.display_name or address_book.url}"
        )
        return vcards

    def fetch_all_vcards(self) -> list[str]:
        """
        Fetch the vCards of every address book, book by book.

        Books are read in discovery order and records keep server order
        within a book. Any failure aborts the whole fetch.

        Raises:
            CardDAVError: If discovery or any listing fails
        """
        books = self.list_address_books()
        vcards: list[str] = []
        for book in books:
            vcards.extend(self.list_vcards(book))
        logger.info(f"Fetched {len(vcards)} records from {len(books)} address book(s)")
        return vcards
