"""People-search broker scanners (plain HTTP and browser-driven)."""

import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

import httpx
from playwright.async_api import async_playwright, Error as PlaywrightError

from engine.config import settings
from sources.base import (
    IdentityProfile,
    OutcomeStatus,
    CheckResult,
    RawHit,
    ScannerType,
    SourceScanner,
    calculate_severity,
    classify_status_code,
    looks_blocked,
    looks_empty,
    mask_data,
)

logger = logging.getLogger(__name__)

PROFILE_INDICATORS = ["age", "address", "phone", "lives in", "related to", "associated with"]


@dataclass(frozen=True)
class BrokerSearch:
    """How to look a person up on one broker."""
    source: str
    name: str
    search_url_pattern: str
    result_selector: Optional[str] = None  # browser scanners only


def build_search_url(pattern: str, identity: IdentityProfile) -> str:
    return pattern.format(
        first_name=quote(identity.first_name.lower()),
        last_name=quote(identity.last_name.lower()),
        city=quote(identity.city.lower().replace(" ", "-")),
        state=quote(identity.state.lower()),
    )


def extract_listing(content: str, identity: IdentityProfile) -> Optional[dict]:
    """Pull the identity fields a results page shows. None when the person isn't there."""
    content_lower = content.lower()
    if looks_empty(content):
        return None

    names = [n for n in (identity.full_name, *identity.aliases) if n]
    listed_name = next((n for n in names if n.lower() in content_lower), None)
    if listed_name is None and identity.first_name and identity.last_name:
        both_present = identity.first_name.lower() in content_lower and identity.last_name.lower() in content_lower
        if both_present and any(ind in content_lower for ind in PROFILE_INDICATORS):
            listed_name = f"{identity.first_name} {identity.last_name}"
    if listed_name is None:
        return None

    digits = re.sub(r"\D", "", content)
    listing = {
        "name": listed_name,
        "emails": [e for e in identity.emails if e.lower() in content_lower],
        "phones": [p for p in identity.phones if len(re.sub(r"\D", "", p)) >= 7 and re.sub(r"\D", "", p)[-10:] in digits],
    }
    for address in identity.addresses:
        if address.city and address.city.lower() in content_lower:
            listing["city"] = address.city
        if address.state and re.search(rf"\b{re.escape(address.state.lower())}\b", content_lower):
            listing["state"] = address.state
        if address.street and address.street.lower() in content_lower:
            listing["street"] = address.street
        if "city" in listing:
            break
    return listing


def listing_to_hit(search: BrokerSearch, url: str, listing: dict) -> RawHit:
    kinds = ["COMBINED_PROFILE"]
    if listing.get("phones"):
        kinds.append("PHONE")
    if listing.get("emails"):
        kinds.append("EMAIL")
    if listing.get("street"):
        kinds.append("ADDRESS")

    preview = mask_data(listing["name"], "NAME")
    locality = ", ".join(v for v in (listing.get("city"), listing.get("state")) if v)
    if locality:
        preview = f"{preview} - {locality}"

    return RawHit(
        source=search.source,
        source_name=search.name,
        source_url=url,
        data_type="COMBINED_PROFILE",
        data_preview=preview,
        severity=calculate_severity(kinds),
        listing=listing,
    )


class StaticBrokerScanner(SourceScanner):
    """Scans a people-search site that renders results server-side."""

    scanner_type = ScannerType.STATIC_BROKER

    def __init__(self, search: BrokerSearch, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.search_config = search
        self.name = search.name
        self.source = search.source
        self.transport = transport

    async def check(self, identity: IdentityProfile) -> CheckResult:
        if not identity.first_name or not identity.last_name:
            return CheckResult(OutcomeStatus.EMPTY, error_type="NO_NAME")

        search_url = build_search_url(self.search_config.search_url_pattern, identity)

        async with httpx.AsyncClient(
            transport=self.transport,
            timeout=self.timeout_budget,
            follow_redirects=True,
            headers={
                "User-Agent": settings.scanner_user_agent,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
                "Accept-Language": "en-US,en;q=0.5",
            },
        ) as client:
            response = await client.get(search_url)

        failed = classify_status_code(response.status_code)
        if failed:
            return failed

        content = response.text
        if looks_blocked(content):
            return CheckResult(OutcomeStatus.BLOCKED, http_status=200, error_type="BOT_CHALLENGE")

        listing = extract_listing(content, identity)
        if listing is None:
            return CheckResult(OutcomeStatus.EMPTY, http_status=200)
        return CheckResult(
            OutcomeStatus.SUCCESS,
            hits=[listing_to_hit(self.search_config, str(response.url), listing)],
            http_status=200,
        )


class BrowserBrokerScanner(SourceScanner):
    """Scans a people-search site that only renders results with JavaScript."""

    scanner_type = ScannerType.DYNAMIC_BROKER

    def __init__(self, search: BrokerSearch):
        self.search_config = search
        self.name = search.name
        self.source = search.source

    async def check(self, identity: IdentityProfile) -> CheckResult:
        if not identity.first_name or not identity.last_name:
            return CheckResult(OutcomeStatus.EMPTY, error_type="NO_NAME")

        search_url = build_search_url(self.search_config.search_url_pattern, identity)
        timeout_ms = int(self.timeout_budget * 1000)

        try:
            async with async_playwright() as p:
                browser = await p.chromium.launch(headless=True)
                try:
                    context = await browser.new_context(user_agent=settings.scanner_user_agent)
                    page = await context.new_page()

                    response = await page.goto(search_url, timeout=timeout_ms)
                    await page.wait_for_load_state("networkidle", timeout=timeout_ms)

                    status_code = response.status if response else 200
                    content = await page.content()
                    current_url = page.url

                    cards = []
                    if self.search_config.result_selector:
                        cards = await page.query_selector_all(self.search_config.result_selector)
                finally:
                    await browser.close()
        except PlaywrightError as e:
            error_type = "TIMEOUT" if "timeout" in str(e).lower() else "BROWSER"
            return CheckResult(OutcomeStatus.ERROR, error_type=error_type, error_message=str(e))

        failed = classify_status_code(status_code)
        if failed:
            return failed
        if looks_blocked(content):
            return CheckResult(OutcomeStatus.BLOCKED, http_status=status_code, error_type="BOT_CHALLENGE")

        listing = extract_listing(content, identity)
        if listing is None:
            return CheckResult(OutcomeStatus.EMPTY, http_status=status_code)

        logger.debug("%s matched %d result cards", self.name, len(cards))
        return CheckResult(
            OutcomeStatus.SUCCESS,
            hits=[listing_to_hit(self.search_config, current_url, listing)],
            http_status=status_code,
        )


STATIC_BROKERS = [
    BrokerSearch(
        "TRUEPEOPLESEARCH",
        "TruePeopleSearch",
        "https://www.truepeoplesearch.com/results?name={first_name}%20{last_name}&citystatezip={city}%20{state}",
    ),
    BrokerSearch(
        "FASTPEOPLESEARCH",
        "FastPeopleSearch",
        "https://www.fastpeoplesearch.com/name/{first_name}-{last_name}_{city}-{state}",
    ),
    BrokerSearch(
        "WHITEPAGES",
        "WhitePages",
        "https://www.whitepages.com/name/{first_name}-{last_name}/{city}-{state}",
    ),
    BrokerSearch(
        "RADARIS",
        "Radaris",
        "https://radaris.com/p/{first_name}/{last_name}/",
    ),
    BrokerSearch(
        "USPHONEBOOK",
        "USPhoneBook",
        "https://www.usphonebook.com/{first_name}-{last_name}/{state}/{city}",
    ),
    BrokerSearch(
        "THATSTHEM",
        "ThatsThem",
        "https://thatsthem.com/name/{first_name}-{last_name}/{city}-{state}",
    ),
    # Network sites sharing a parent's records
    BrokerSearch("CENTEDA", "Centeda", "https://centeda.com/p/{first_name}-{last_name}/"),
    BrokerSearch("PUBLICREPORTS", "PublicReports", "https://publicreports.com/p/{first_name}-{last_name}/"),
    BrokerSearch("PEOPLELOOKUP", "PeopleLookup", "https://www.peoplelookup.com/people-search/{first_name}-{last_name}/{state}"),
    BrokerSearch("RECORDSFINDER", "RecordsFinder", "https://recordsfinder.com/people-search/{first_name}-{last_name}/{state}/"),
]

DYNAMIC_BROKERS = [
    BrokerSearch(
        "SPOKEO",
        "Spokeo",
        "https://www.spokeo.com/{first_name}-{last_name}/{state}/{city}",
        result_selector='[data-testid="person-card"], .person-card, .search-result',
    ),
    BrokerSearch(
        "BEENVERIFIED",
        "BeenVerified",
        "https://www.beenverified.com/people/{first_name}-{last_name}/{state}/{city}/",
        result_selector=".person-search-result, .result-card",
    ),
    BrokerSearch(
        "INTELIUS",
        "Intelius",
        "https://www.intelius.com/people-search/{first_name}-{last_name}/{state}/{city}",
        result_selector=".person-card, .search-result",
    ),
]
