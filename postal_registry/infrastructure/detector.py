"""HTTP implementation of the UpdateDetector port."""

import re
from datetime import date, datetime
from typing import Callable, Dict, Optional

import httpx
from bs4 import BeautifulSoup
from pydantic import ValidationError

from ..application.domain import UpdateCheck, UpdateDetector, VersionIdentifier
from ..application.exceptions import NetworkError, ParseError

from .base_client import BaseClient
from .decorators import BackoffPolicy, call_with_backoff, is_retryable
from .page_models import FormState

_FORM_FIELDS = ("__VIEWSTATE", "__VIEWSTATEGENERATOR", "__EVENTVALIDATION")

# Tried in order; the first match wins. Dates on the page are day-first.
_DATE_PATTERNS = (
    re.compile(r"actualiz.*?(\d{1,2}/\d{1,2}/\d{4})", re.IGNORECASE),
    re.compile(r"fecha.*?(\d{1,2}/\d{1,2}/\d{4})", re.IGNORECASE),
    re.compile(r"(\d{1,2}/\d{1,2}/\d{4})"),
)


def find_file_date(page_text: str) -> Optional[str]:
    """Returns the first publication date (``d/m/yyyy``) found in the text."""
    for pattern in _DATE_PATTERNS:
        match = pattern.search(page_text)
        if match:
            return match.group(1)
    return None


def version_from_date(
    file_date: Optional[str], today: date
) -> VersionIdentifier:
    """
    Derives the ``YYYYMMDD`` version key for a scraped publication date.

    A missing or impossible date falls back to ``today``, which is the only
    freshness signal left in that case.
    """
    parsed = today
    if file_date:
        try:
            parsed = datetime.strptime(file_date, "%d/%m/%Y").date()
        except ValueError:
            parsed = today
    return parsed.strftime("%Y%m%d")


class HttpUpdateDetector(BaseClient, UpdateDetector):
    """Probes the registry's export page for a new publication."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        user_agent: str,
        timeout: float,
        retry_policy: Optional[BackoffPolicy] = None,
        clock: Callable[[], date] = date.today,
    ):
        """Initializes the detector adapter."""
        super().__init__(client, user_agent, timeout, retry_policy)
        self.url = url
        self.clock = clock

    async def _fetch_page(self) -> str:
        """Executes the raw HTTP GET request for the export page."""
        try:
            response = await self.client.get(
                self.url, headers=self._headers(), timeout=self.timeout
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NetworkError(
                f"Source page returned HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            raise NetworkError(
                f"Could not reach source page: {type(e).__name__}: {e}",
                retryable=is_retryable(e),
            ) from e
        return response.text

    def _parse_form_state(self, soup: BeautifulSoup) -> FormState:
        """Validates the hidden ASP.NET fields the download postback needs."""
        values: Dict[str, str] = {}
        for name in _FORM_FIELDS:
            field = soup.find("input", id=name) or soup.find(
                "input", attrs={"name": name}
            )
            if field is not None and field.get("value"):
                values[name] = field.get("value")

        try:
            return FormState.model_validate(values)
        except ValidationError as e:
            missing = sorted(set(_FORM_FIELDS) - set(values))
            raise ParseError(
                f"Source page is missing required form state {missing}"
            ) from e

    async def check_for_update(
        self, last_known_version: Optional[VersionIdentifier]
    ) -> UpdateCheck:
        """
        Probes the export page and decides whether a new extract exists.

        This method serves as the public contract fulfillment for the
        UpdateDetector port. It has no side effects besides the request.

        Args:
            last_known_version: The pointer's version, or None if nothing
                has been ingested yet.

        Returns:
            The detected version, whether it differs from the last known
            one, and the session tokens needed to download it.

        Raises:
            NetworkError: If the page cannot be fetched after all retries.
            ParseError: If the page lacks the required session tokens.
        """

        self.logger.info(f"Querying source page {self.url}...")
        html = await call_with_backoff(self._fetch_page, policy=self.retry_policy)

        soup = BeautifulSoup(html, "html.parser")
        form_state = self._parse_form_state(soup)
        self.logger.info("ASP.NET form state detected.")

        body = soup.body or soup
        file_date = find_file_date(body.get_text())
        current_version = version_from_date(file_date, self.clock())
        if file_date is None:
            self.logger.warning(
                f"No publication date found on the page; "
                f"using today's date as version {current_version}."
            )

        has_update = (
            not last_known_version or current_version != last_known_version
        )
        self.logger.info(
            f"Source version {current_version} (file date {file_date}), "
            f"last known {last_known_version}: "
            f"{'update available' if has_update else 'up to date'}."
        )

        return UpdateCheck(
            has_update=has_update,
            current_version=current_version,
            target_url=self.url,
            source_file_date=file_date,
            session=form_state.to_session(),
        )
