"""Breach database and dark-web dump scanners."""

import logging
import re
from typing import Optional
from urllib.parse import quote

import httpx

from engine.config import settings
from sources.base import (
    IdentityProfile,
    OutcomeStatus,
    CheckResult,
    RawHit,
    ScannerType,
    SourceScanner,
    classify_status_code,
    mask_data,
)

logger = logging.getLogger(__name__)

HIBP_URL = "https://haveibeenpwned.com/api/v3/breachedaccount/{account}?truncateResponse=false"
DEHASHED_URL = "https://api.dehashed.com/v2/search"


# HIBP data class names, compared whole so "Email addresses" is not an address
CRITICAL_DATA_CLASSES = {
    "passwords",
    "credit cards",
    "partial credit card data",
    "social security numbers",
    "bank account numbers",
    "government issued ids",
}
HIGH_DATA_CLASSES = {"physical addresses", "phone numbers", "dates of birth"}
MEDIUM_DATA_CLASSES = {"email addresses", "names", "usernames"}


def breach_severity(data_classes: list[str]) -> str:
    classes = {d.strip().lower() for d in data_classes}
    if classes & CRITICAL_DATA_CLASSES:
        return "CRITICAL"
    if classes & HIGH_DATA_CLASSES:
        return "HIGH"
    if classes & MEDIUM_DATA_CLASSES:
        return "MEDIUM"
    return "LOW"


class BreachScanner(SourceScanner):
    """Looks each identity email up in the Have I Been Pwned breach index."""

    name = "Have I Been Pwned"
    source = "HAVEIBEENPWNED"
    scanner_type = ScannerType.BREACH_DB

    def __init__(self, api_key: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = settings.hibp_api_key if api_key is None else api_key
        self.transport = transport

    async def check(self, identity: IdentityProfile) -> CheckResult:
        if not identity.emails:
            return CheckResult(OutcomeStatus.EMPTY, error_type="NO_EMAIL")

        hits = []
        async with httpx.AsyncClient(
            transport=self.transport,
            timeout=self.timeout_budget,
            headers={"hibp-api-key": self.api_key, "User-Agent": settings.app_name},
        ) as client:
            for email in identity.emails:
                response = await client.get(HIBP_URL.format(account=quote(email)))
                if response.status_code == 404:
                    continue
                if response.status_code == 401:
                    return CheckResult(OutcomeStatus.BLOCKED, http_status=401, error_type="AUTH")
                failed = classify_status_code(response.status_code)
                if failed:
                    return failed

                breaches = response.json()
                if not isinstance(breaches, list):
                    return CheckResult(OutcomeStatus.ERROR, http_status=200, error_type="PARSE",
                                 error_message="Expected a list of breaches")
                for breach in breaches:
                    title = breach.get("Title") or breach.get("Name") or "Unknown"
                    hits.append(RawHit(
                        source=self.source,
                        source_name=f"Have I Been Pwned - {title}",
                        source_url=f"https://haveibeenpwned.com/account/{quote(email)}",
                        data_type="EMAIL",
                        data_preview=mask_data(email, "EMAIL"),
                        severity=breach_severity(breach.get("DataClasses") or []),
                        listing={
                            "emails": [email],
                            "breach": breach.get("Name"),
                            "breach_date": breach.get("BreachDate"),
                            "data_classes": breach.get("DataClasses") or [],
                        },
                    ))

        return CheckResult(OutcomeStatus.SUCCESS, hits=hits, http_status=200)


class DarkWebScanner(SourceScanner):
    """Searches leaked-database dumps through the Dehashed API."""

    name = "Dehashed"
    source = "DEHASHED"
    scanner_type = ScannerType.DARK_WEB

    def __init__(self, api_key: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = settings.dehashed_api_key if api_key is None else api_key
        self.transport = transport

    async def check(self, identity: IdentityProfile) -> CheckResult:
        if not self.api_key:
            return CheckResult(OutcomeStatus.EMPTY, error_type="NOT_CONFIGURED")

        queries = [("email", e, "EMAIL") for e in identity.emails]
        queries += [("phone", re.sub(r"\D", "", p), "PHONE") for p in identity.phones]
        if not queries:
            return CheckResult(OutcomeStatus.EMPTY, error_type="NO_IDENTIFIERS")

        hits = []
        async with httpx.AsyncClient(
            transport=self.transport,
            timeout=self.timeout_budget,
            headers={"Dehashed-Api-Key": self.api_key, "Content-Type": "application/json"},
        ) as client:
            for field_name, value, data_type in queries:
                response = await client.post(
                    DEHASHED_URL,
                    json={"query": f"{field_name}:{value}", "page": 1, "size": 100},
                )
                if response.status_code == 401:
                    return CheckResult(OutcomeStatus.BLOCKED, http_status=401, error_type="AUTH")
                failed = classify_status_code(response.status_code)
                if failed:
                    if failed.status == OutcomeStatus.EMPTY:
                        continue
                    return failed

                data = response.json()
                if not isinstance(data, dict):
                    return CheckResult(OutcomeStatus.ERROR, http_status=200, error_type="PARSE",
                                 error_message="Expected a JSON object")
                if not data.get("success", True):
                    logger.warning("Dehashed returned success=false for a %s query", field_name)
                    continue
                hits.extend(self._entries_to_hits(data.get("entries") or [], value, data_type))

        return CheckResult(OutcomeStatus.SUCCESS, hits=hits, http_status=200)

    def _entries_to_hits(self, entries: list[dict], value: str, data_type: str) -> list[RawHit]:
        hits = []
        seen = set()
        for entry in entries:
            database = entry.get("database_name") or "Unknown Breach"
            if database in seen:
                continue
            seen.add(database)

            exposed = [k for k in ("email", "username", "phone", "address", "name") if entry.get(k)]
            if entry.get("password") or entry.get("hashed_password"):
                severity = "CRITICAL"
            elif len([k for k in ("phone", "address", "name", "ip_address") if entry.get(k)]) >= 2:
                severity = "HIGH"
            elif entry.get("email") and entry.get("username"):
                severity = "MEDIUM"
            else:
                severity = "LOW"

            listing = {"exposed_fields": exposed, "database": database}
            if data_type == "EMAIL":
                listing["emails"] = [value]
            else:
                listing["phones"] = [value]

            hits.append(RawHit(
                source=self.source,
                source_name=f"Dehashed - {database}",
                source_url="https://dehashed.com",
                data_type="COMBINED_PROFILE" if len(exposed) >= 3 else data_type,
                data_preview=mask_data(value, data_type),
                severity=severity,
                listing=listing,
            ))
        return hits
