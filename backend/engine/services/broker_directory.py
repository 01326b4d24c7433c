"""Static data broker directory and consolidation lookups.

Many people-search sites are run by one operator. An opt-out filed with the
parent removes the listing from every site it runs, so removal requests are
consolidated at the parent. Parent links are the only relationship stored;
subsidiary lists are derived from them.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Optional


@dataclass(frozen=True)
class BrokerEntry:
    """Directory record for one source."""
    source: str
    name: str
    removal_method: str  # FORM, EMAIL, BOTH, MONITOR
    estimated_days: int
    opt_out_url: Optional[str] = None
    privacy_email: Optional[str] = None
    parent: Optional[str] = None
    difficulty: int = 2  # 1-5
    notes: Optional[str] = None


def _entry(source, name, method, days, url=None, email=None, parent=None, difficulty=2, notes=None):
    return BrokerEntry(source, name, method, days, url, email, parent, difficulty, notes)


DATA_BROKER_DIRECTORY: dict[str, BrokerEntry] = {e.source: e for e in [
    # Major people-search sites
    _entry("SPOKEO", "Spokeo", "BOTH", 3, "https://www.spokeo.com/optout", "privacy@spokeo.com",
           notes="Requires verification via email link"),
    _entry("WHITEPAGES", "WhitePages", "BOTH", 5, "https://www.whitepages.com/suppression-requests",
           "privacy@whitepages.com", notes="May require phone verification"),
    _entry("BEENVERIFIED", "BeenVerified", "BOTH", 7, "https://www.beenverified.com/opt-out/",
           "privacy@beenverified.com"),
    _entry("PEOPLELOOKER", "PeopleLooker", "FORM", 7, "https://www.peoplelooker.com/f/optout/search",
           parent="BEENVERIFIED"),
    _entry("TRUEPEOPLESEARCH", "TruePeopleSearch", "FORM", 1, "https://www.truepeoplesearch.com/removal",
           "privacy@truepeoplesearch.com", difficulty=1, notes="Usually processes within 24 hours"),
    _entry("FASTPEOPLESEARCH", "FastPeopleSearch", "FORM", 2, "https://www.fastpeoplesearch.com/removal",
           "privacy@fastpeoplesearch.com"),
    _entry("PEOPLEFINDERS", "PeopleFinders", "FORM", 5, "https://www.peoplefinders.com/opt-out",
           "privacy@peoplefinders.com"),
    _entry("MYLIFE", "MyLife", "EMAIL", 14, "https://www.mylife.com/ccpa/index.pubview",
           "privacy@mylife.com", difficulty=4),
    _entry("NUWBER", "Nuwber", "FORM", 3, "https://nuwber.com/removal/link", "support@nuwber.com"),
    _entry("USPHONEBOOK", "USPhoneBook", "FORM", 2, "https://www.usphonebook.com/opt-out"),
    _entry("THATSTHEM", "ThatsThem", "FORM", 7, "https://thatsthem.com/optout", "privacy@thatsthem.com"),
    _entry("SYNC_ME", "Sync.me", "FORM", 3, "https://sync.me/optout/"),

    # PeopleConnect network, opt-out handled by Intelius
    _entry("INTELIUS", "Intelius", "BOTH", 7, "https://suppression.peopleconnect.us/login",
           "privacy@intelius.com", notes="One suppression covers every PeopleConnect site"),
    _entry("TRUTHFINDER", "TruthFinder", "FORM", 7, "https://www.truthfinder.com/opt-out/", parent="INTELIUS"),
    _entry("PEOPLELOOKUP", "PeopleLookup", "FORM", 7, "https://www.peoplelookup.com/opt-out",
           "privacy@peoplelookup.com", parent="INTELIUS"),
    _entry("SNOOPSTATION", "SnoopStation", "FORM", 7, "https://www.snoopstation.com/opt-out", parent="INTELIUS"),
    _entry("ONLINESEARCHES", "OnlineSearches", "FORM", 7, "https://www.onlinesearches.com/opt-out",
           parent="INTELIUS"),
    _entry("USAPEOPLEDATA", "USAPeopleData", "FORM", 7, "https://usapeopledata.com/opt-out", parent="INTELIUS"),

    # Radaris network
    _entry("RADARIS", "Radaris", "BOTH", 14, "https://radaris.com/control/privacy", "privacy@radaris.com",
           difficulty=4, notes="May require multiple follow-ups"),
    _entry("CENTEDA", "Centeda", "FORM", 14, "https://centeda.com/ng/privacy", "support@centeda.com",
           parent="RADARIS"),
    _entry("PUBLICREPORTS", "PublicReports", "FORM", 14, "https://publicreports.com/ng/privacy",
           "support@publicreports.com", parent="RADARIS"),
    _entry("VIRTORY", "Virtory", "FORM", 14, "https://virtory.com/ng/privacy", parent="RADARIS"),
    _entry("CLUBSET", "Clubset", "FORM", 14, "https://clubset.com/ng/privacy", parent="RADARIS"),
    _entry("PERSONTRUST", "PersonTrust", "FORM", 14, "https://persontrust.com/ng/privacy", parent="RADARIS"),

    # InfoPay network, opt-out handled by InfoTracer
    _entry("INFOTRACER", "InfoTracer", "BOTH", 10, "https://infotracer.com/optout/", "privacy@infotracer.com"),
    _entry("RECORDSFINDER", "RecordsFinder", "FORM", 10, "https://recordsfinder.com/optout",
           "privacy@recordsfinder.com", parent="INFOTRACER"),
    _entry("COURTCASEFINDER", "CourtCaseFinder", "FORM", 10, "https://courtcasefinder.com/optout",
           "privacy@courtcasefinder.com", parent="INFOTRACER"),
    _entry("STATERECORDS", "StateRecords", "FORM", 10, "https://staterecords.org/optout",
           "privacy@staterecords.org", parent="INFOTRACER"),

    # Breach and dark-web sources can only be monitored
    _entry("HAVEIBEENPWNED", "Have I Been Pwned", "MONITOR", 0, difficulty=5,
           notes="Breach data can't be removed; change affected passwords"),
    _entry("DEHASHED", "Dehashed", "MONITOR", 0, difficulty=5,
           notes="Leaked dump data can't be removed; rotate exposed credentials"),
]}


def _validate(directory: dict[str, BrokerEntry]) -> None:
    """Refuse to load a directory with dangling parent links or cycles."""
    for source, entry in directory.items():
        if entry.parent is not None and entry.parent not in directory:
            raise ValueError(f"{source} names unknown parent {entry.parent}")

        seen = {source}
        current = entry.parent
        while current is not None:
            if current in seen:
                raise ValueError(f"Consolidation cycle through {source}")
            seen.add(current)
            current = directory[current].parent


_validate(DATA_BROKER_DIRECTORY)

# Every source reaches its root within this many parent hops
MAX_CONSOLIDATION_DEPTH = len(DATA_BROKER_DIRECTORY)

def _index_subsidiaries(directory: dict[str, BrokerEntry]) -> dict[str, list[str]]:
    index = defaultdict(list)
    for entry in directory.values():
        if entry.parent:
            index[entry.parent].append(entry.source)
    return dict(index)


_SUBSIDIARIES = _index_subsidiaries(DATA_BROKER_DIRECTORY)


def get_data_broker_info(source: str) -> Optional[BrokerEntry]:
    return DATA_BROKER_DIRECTORY.get(source)


def get_subsidiaries(source: str) -> list[str]:
    """Sources whose opt-out is handled by ``source``."""
    return list(_SUBSIDIARIES.get(source, []))


def get_consolidation_parent(source: str) -> Optional[str]:
    entry = DATA_BROKER_DIRECTORY.get(source)
    return entry.parent if entry else None


def is_parent_broker(source: str) -> bool:
    return bool(_SUBSIDIARIES.get(source))


def get_ultimate_parent(source: str) -> str:
    """Root of the consolidation chain; the source itself when it has no parent."""
    current = source
    for _ in range(MAX_CONSOLIDATION_DEPTH + 1):
        parent = get_consolidation_parent(current)
        if parent is None:
            return current
        current = parent
    raise ValueError(f"Consolidation chain from {source} does not terminate")


def is_removable(source: str) -> bool:
    """False for sources we can only monitor, such as breach databases."""
    entry = DATA_BROKER_DIRECTORY.get(source)
    return entry is None or entry.removal_method != "MONITOR"


@dataclass
class ExposureGroup:
    """Exposures that one removal at ``parent`` would resolve."""
    parent: str
    parent_name: str
    exposures: list = field(default_factory=list)

    @property
    def sources(self) -> list[str]:
        return sorted({e.source for e in self.exposures})

    @property
    def removable(self) -> bool:
        return is_removable(self.parent)


def group_exposures_by_parent(exposures: Iterable) -> list[ExposureGroup]:
    """Group exposures by the ultimate parent of their source, preserving first-seen order."""
    groups: dict[str, ExposureGroup] = {}
    for exposure in exposures:
        parent = get_ultimate_parent(exposure.source)
        if parent not in groups:
            entry = DATA_BROKER_DIRECTORY.get(parent)
            groups[parent] = ExposureGroup(parent, entry.name if entry else exposure.source_name)
        groups[parent].exposures.append(exposure)
    return list(groups.values())


@dataclass
class BulkRemovalPlan:
    """One parent-level removal: a request on ``primary`` that also covers ``covered``."""
    target_source: str
    primary: object
    covered: list = field(default_factory=list)

    @property
    def exposures(self) -> list:
        return [self.primary, *self.covered]


def plan_bulk_removal(exposures: Iterable) -> list[BulkRemovalPlan]:
    """Minimal set of parent-level removals covering every given exposure.

    The request is attached to the exposure found at the parent itself when
    there is one, otherwise to the first exposure in the group. Sources that
    can only be monitored are left out.
    """
    plans = []
    for group in group_exposures_by_parent(exposures):
        if not group.removable:
            continue
        at_parent = [e for e in group.exposures if e.source == group.parent]
        primary = at_parent[0] if at_parent else group.exposures[0]
        covered = [e for e in group.exposures if e is not primary]
        plans.append(BulkRemovalPlan(group.parent, primary, covered))
    return plans
