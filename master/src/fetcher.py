import logging
from typing import Optional

import requests
from bs4 import BeautifulSoup

from .constants import FETCH_TIMEOUT


class FetchError(RuntimeError):
    """Raised when one document cannot be retrieved"""


class HttpFetcher:
    """Retrieves document text over HTTP(S)."""

    def __init__(self, timeout: Optional[float] = FETCH_TIMEOUT, session: Optional[requests.Session] = None):
        self.logger = logging.getLogger(__name__)
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch(self, location: str) -> str:
        try:
            response = self.session.get(location, timeout=self.timeout)
        except requests.RequestException as e:
            raise FetchError(f"Error fetching {location}: {e}") from e

        if not 200 <= response.status_code < 300:
            raise FetchError(
                f"Failed to retrieve {location} with status code {response.status_code}"
            )

        content_type = response.headers.get("Content-Type", "")
        self.logger.info(f"Fetched {location} ({content_type or 'unknown type'})")
        if "html" in content_type:
            return self.extract_text(response.text)
        return response.text

    @staticmethod
    def extract_text(html: str) -> str:
        """Reduce an HTML page to its visible text"""
        soup = BeautifulSoup(html, "html.parser")
        for element in soup(["script", "style", "noscript"]):
            element.decompose()
        return soup.get_text(separator=" ", strip=True)
