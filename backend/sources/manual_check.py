"""Scanners for bot-protected sites that can't be queried automatically.

They don't touch the network. Each one emits a single hit carrying a search
link for the user and the identity values the link was built from.
"""

import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

from sources.base import (
    IdentityProfile,
    OutcomeStatus,
    CheckResult,
    RawHit,
    ScannerType,
    SourceScanner,
    mask_data,
)

STATE_ABBREVIATIONS = {
    "alabama": "al", "alaska": "ak", "arizona": "az", "arkansas": "ar",
    "california": "ca", "colorado": "co", "connecticut": "ct", "delaware": "de",
    "florida": "fl", "georgia": "ga", "hawaii": "hi", "idaho": "id",
    "illinois": "il", "indiana": "in", "iowa": "ia", "kansas": "ks",
    "kentucky": "ky", "louisiana": "la", "maine": "me", "maryland": "md",
    "massachusetts": "ma", "michigan": "mi", "minnesota": "mn", "mississippi": "ms",
    "missouri": "mo", "montana": "mt", "nebraska": "ne", "nevada": "nv",
    "new hampshire": "nh", "new jersey": "nj", "new mexico": "nm",
    "new york": "ny", "north carolina": "nc", "north dakota": "nd",
    "ohio": "oh", "oklahoma": "ok", "oregon": "or", "pennsylvania": "pa",
    "rhode island": "ri", "south carolina": "sc", "south dakota": "sd",
    "tennessee": "tn", "texas": "tx", "utah": "ut", "vermont": "vt",
    "virginia": "va", "washington": "wa", "west virginia": "wv",
    "wisconsin": "wi", "wyoming": "wy", "district of columbia": "dc",
}


def state_code(state: str) -> str:
    normalized = state.lower().strip()
    if len(normalized) == 2:
        return normalized
    return STATE_ABBREVIATIONS.get(normalized, normalized)


def url_name(name: str) -> str:
    return re.sub(r"\s+", "-", re.sub(r"[^a-z\s]", "", name.lower().strip()))


@dataclass(frozen=True)
class ManualCheckSite:
    source: str
    name: str
    search_url_pattern: str
    # What the search is keyed on: name, email or phone
    lookup: str = "name"


class ManualCheckScanner(SourceScanner):
    """Returns a "check this link" hit for a site with advanced bot protection."""

    scanner_type = ScannerType.MANUAL_CHECK

    def __init__(self, site: ManualCheckSite):
        self.site = site
        self.name = site.name
        self.source = site.source

    def _build(self, identity: IdentityProfile) -> Optional[tuple[str, str, dict]]:
        """Search URL, preview and listing for this identity, or None when the key is missing.

        Nothing is fetched, so the listing is the identity's own lookup key.
        Email and phone lookups therefore score as a hard-identifier match and
        get a proactive opt-out: those sites key their records on the exact
        value, so filing the opt-out does not depend on reading the page.
        """
        if self.site.lookup == "email":
            if not identity.emails:
                return None
            email = identity.emails[0]
            url = self.site.search_url_pattern.format(email=quote(email))
            return url, mask_data(email, "EMAIL"), {"emails": [email]}

        if self.site.lookup == "phone":
            if not identity.phones:
                return None
            phone = identity.phones[0]
            digits = re.sub(r"\D", "", phone)
            url = self.site.search_url_pattern.format(phone=digits)
            return url, mask_data(phone, "PHONE"), {"phones": [phone]}

        if not identity.first_name or not identity.last_name:
            return None
        url = self.site.search_url_pattern.format(
            first_name=url_name(identity.first_name),
            last_name=url_name(identity.last_name),
            city=url_name(identity.city),
            state=state_code(identity.state),
        )
        listing = {"name": identity.full_name}
        if identity.city:
            listing["city"] = identity.city
        if identity.state:
            listing["state"] = identity.state
        return url, mask_data(identity.full_name, "NAME"), listing

    async def check(self, identity: IdentityProfile) -> CheckResult:
        built = self._build(identity)
        if built is None:
            return CheckResult(OutcomeStatus.EMPTY, error_type="MISSING_LOOKUP_FIELD")

        search_url, preview, listing = built
        hit = RawHit(
            source=self.source,
            source_name=self.name,
            source_url=search_url,
            data_type="COMBINED_PROFILE",
            data_preview=f"Manual check required - {preview}",
            severity="LOW",
            manual_check_required=True,
            listing=listing,
        )
        return CheckResult(OutcomeStatus.SUCCESS, hits=[hit])


MANUAL_CHECK_SITES = [
    ManualCheckSite(
        "PEOPLEFINDERS",
        "PeopleFinders",
        "https://www.peoplefinders.com/name/{first_name}-{last_name}/{state}/{city}",
    ),
    ManualCheckSite(
        "TRUTHFINDER",
        "TruthFinder",
        "https://www.truthfinder.com/results/?firstName={first_name}&lastName={last_name}&state={state}",
    ),
    ManualCheckSite(
        "MYLIFE",
        "MyLife",
        "https://www.mylife.com/pub-multisearch.pubview?searchFirstName={first_name}&searchLastName={last_name}",
    ),
    ManualCheckSite(
        "NUWBER",
        "Nuwber",
        "https://nuwber.com/search?name={first_name}%20{last_name}&state={state}",
    ),
    ManualCheckSite(
        "PEOPLELOOKER",
        "PeopleLooker",
        "https://www.peoplelooker.com/reverse-email-lookup/?email={email}",
        lookup="email",
    ),
    ManualCheckSite(
        "SYNC_ME",
        "Sync.me",
        "https://sync.me/search/?number={phone}",
        lookup="phone",
    ),
]
