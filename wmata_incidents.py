# wmata_incidents.py
#
# WMATA incident feeds -> fresh incidents -> alert text
# - Pulls rail / bus / elevator incident feeds concurrently (all-or-nothing)
# - Keeps incidents updated inside the trailing check window (US Eastern)
# - Formats per-category alert text, capped at 500 chars
# - Builds a single " | " joined summary for summary-mode deployments
#
# Timezone policy:
#   WMATA publishes DateUpdated as Eastern wall time without an offset.
#   Naive feed timestamps are read as America/New_York, offset-carrying ones
#   are honoured, and the cutoff is "now" in America/New_York rounded down to
#   the minute. Both sides are converted to UTC before comparing, so DST
#   changes do not shift the window.
#
import datetime as dt
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

import requests

from wmata_errors import FetchError
from wmata_settings import FeedSource, Settings

logger = logging.getLogger(__name__)


# ----------------------------
# Constants
# ----------------------------
EASTERN = ZoneInfo("America/New_York")
CHECK_INTERVAL_MINUTES = 5
MAX_MESSAGE_LENGTH = 500
ELLIPSIS = "..."
SUMMARY_SEPARATOR = " | "

CATEGORY_ORDER = ("rail", "bus", "elevator")


# ----------------------------
# Alert templates
# ----------------------------
ALERT_TEMPLATES = {
    "rail": "🚇 Rail Alert: {description}",
    "bus": "🚌 Bus Alert: {description}",
    "elevator": "🛗 {unit_type} Alert at {station_name}: {symptom}",
}
RAIL_LINES_LINE = "\nLines affected: {lines}"
BUS_ROUTES_LINE = "\nRoutes affected: {routes}"
ELEVATOR_RETURN_LINE = "\nEstimated return to service: {when}"


@dataclass(frozen=True)
class FormattedAlert:
    category: str
    text: str


# ----------------------------
# Generic helpers
# ----------------------------
def now_eastern() -> dt.datetime:
    return dt.datetime.now(EASTERN)


def text_field(incident: Dict[str, Any], key: str) -> str:
    value = incident.get(key)
    if value is None:
        return ""
    return str(value)


def truncate_message(text: str, max_len: int = MAX_MESSAGE_LENGTH) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - len(ELLIPSIS)] + ELLIPSIS


def parse_feed_timestamp(value: Any) -> Optional[dt.datetime]:
    """Parse an ISO-8601 feed timestamp into an aware Eastern datetime.

    Returns None for anything that does not parse.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = dt.datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=EASTERN)
    return parsed.astimezone(EASTERN)


# ----------------------------
# Feed client
# ----------------------------
def fetch_incidents(
    url: str,
    expected_key: str,
    *,
    api_key: str,
    timeout: float = 5.0,
    session: Optional[Any] = None,
    category: str = "",
) -> List[Dict[str, Any]]:
    """GET one incident feed and return the list stored under `expected_key`.

    Transport failures and non-2xx answers raise FetchError. A 2xx answer with
    a missing or malformed field yields an empty list.
    """
    http = session or requests
    try:
        r = http.get(url, headers={"api_key": api_key}, timeout=timeout)
    except requests.RequestException as e:
        raise FetchError(f"Failed to fetch {expected_key}: {e}", category=category) from e

    if not (200 <= r.status_code < 300):
        raise FetchError(f"Failed to fetch {expected_key}", status=r.status_code, category=category)

    try:
        payload = r.json()
    except ValueError:
        logger.debug("%s feed returned a non-JSON body; treating as empty", category or expected_key)
        return []

    data = payload.get(expected_key) if isinstance(payload, dict) else None
    if not isinstance(data, list):
        logger.debug("%s feed has no %r list; treating as empty", category or expected_key, expected_key)
        return []
    return [item for item in data if isinstance(item, dict)]


# ----------------------------
# Freshness filter
# ----------------------------
def freshness_cutoff(now: Optional[dt.datetime] = None, minutes: int = CHECK_INTERVAL_MINUTES) -> dt.datetime:
    if now is None:
        n = now_eastern()
    elif now.tzinfo is None:
        n = now.replace(tzinfo=EASTERN)
    else:
        n = now.astimezone(EASTERN)
    n = n.replace(second=0, microsecond=0).astimezone(dt.timezone.utc)
    return n - dt.timedelta(minutes=minutes)


def filter_fresh(incidents: Sequence[Dict[str, Any]], cutoff: dt.datetime) -> List[Dict[str, Any]]:
    fresh = []
    for incident in incidents:
        updated = parse_feed_timestamp(incident.get("DateUpdated"))
        if updated is None:
            logger.warning("Invalid date format for incident: %r", incident.get("DateUpdated"))
            continue
        if updated.astimezone(dt.timezone.utc) > cutoff.astimezone(dt.timezone.utc):
            fresh.append(incident)
    return fresh


# ----------------------------
# Message formatting
# ----------------------------
ORDINAL_SUFFIXES = {1: "st", 2: "nd", 3: "rd"}


def _ordinal(day: int) -> str:
    if 11 <= day % 100 <= 13:
        return f"{day}th"
    return f"{day}{ORDINAL_SUFFIXES.get(day % 10, 'th')}"


def format_long_datetime(when: dt.datetime) -> str:
    """April 5th, 2024 at 3:45 PM"""
    hour = when.hour % 12 or 12
    meridiem = "AM" if when.hour < 12 else "PM"
    return f"{when:%B} {_ordinal(when.day)}, {when.year} at {hour}:{when:%M} {meridiem}"


def format_return_to_service(value: Any) -> str:
    when = parse_feed_timestamp(value)
    if when is None:
        return ""
    return format_long_datetime(when)


def format_incident_message(incident: Dict[str, Any], category: str) -> str:
    if category == "rail":
        text = ALERT_TEMPLATES["rail"].format(description=text_field(incident, "Description"))
        lines = text_field(incident, "LinesAffected")
        if lines.strip():
            text += RAIL_LINES_LINE.format(lines=lines)
    elif category == "bus":
        text = ALERT_TEMPLATES["bus"].format(description=text_field(incident, "Description"))
        routes = incident.get("RoutesAffected")
        if not isinstance(routes, (list, tuple)):
            routes = []
        routes = [str(r).strip() for r in routes if str(r).strip()]
        if routes:
            text += BUS_ROUTES_LINE.format(routes=", ".join(routes))
    elif category == "elevator":
        text = ALERT_TEMPLATES["elevator"].format(
            unit_type=text_field(incident, "UnitType"),
            station_name=text_field(incident, "StationName"),
            symptom=text_field(incident, "SymptomDescription"),
        )
        when = format_return_to_service(incident.get("EstimatedReturnToService"))
        if when:
            text += ELEVATOR_RETURN_LINE.format(when=when)
    else:
        raise ValueError(f"Unknown incident category: {category!r}")

    return truncate_message(text)


def primary_text(incident: Dict[str, Any], category: str) -> str:
    if category == "elevator":
        return text_field(incident, "SymptomDescription")
    return text_field(incident, "Description")


# ----------------------------
# Aggregator
# ----------------------------
class IncidentAggregator:
    """Owns the current incident snapshot for one run.

    The snapshot maps category -> incidents in feed order and is replaced
    wholesale by every fetch_all() call.
    """

    def __init__(self, settings: Settings, session: Optional[Any] = None) -> None:
        self.settings = settings
        self.feeds: Sequence[FeedSource] = settings.feeds
        self.session = session
        self.snapshot: Dict[str, List[Dict[str, Any]]] = {}

    def _fetch_one(self, feed: FeedSource) -> List[Dict[str, Any]]:
        return fetch_incidents(
            feed.url,
            feed.expected_key,
            api_key=self.settings.wmata_api_key,
            timeout=self.settings.feed_timeout_ms / 1000.0,
            session=self.session,
            category=feed.category,
        )

    def fetch_all(self) -> Dict[str, List[Dict[str, Any]]]:
        self.snapshot = {}
        if not self.feeds:
            return self.snapshot

        with ThreadPoolExecutor(max_workers=len(self.feeds)) as ex:
            results = list(ex.map(self._fetch_one, self.feeds))

        self.snapshot = {feed.category: items for feed, items in zip(self.feeds, results)}
        for category, items in self.snapshot.items():
            logger.info("Fetched %d %s incidents", len(items), category)
        return self.snapshot

    def new_incidents(self, now: Optional[dt.datetime] = None) -> Dict[str, List[Dict[str, Any]]]:
        cutoff = freshness_cutoff(now, self.settings.check_interval_minutes)
        logger.info("Calculated cutoff time: %s", cutoff.isoformat())
        return {category: filter_fresh(items, cutoff) for category, items in self.snapshot.items()}

    def formatted_alerts(self, incidents: Optional[Dict[str, List[Dict[str, Any]]]] = None) -> List[FormattedAlert]:
        if incidents is None:
            incidents = self.new_incidents()
        alerts = []
        for category in _ordered_categories(incidents):
            for incident in incidents[category]:
                alerts.append(FormattedAlert(category, format_incident_message(incident, category)))
        return alerts

    def summary_text(self, incidents: Optional[Dict[str, List[Dict[str, Any]]]] = None) -> Optional[str]:
        """Join every fresh incident's primary text with " | ".

        Returns None when there is nothing to publish.
        """
        if incidents is None:
            incidents = self.new_incidents()
        parts = []
        for category in _ordered_categories(incidents):
            for incident in incidents[category]:
                text = primary_text(incident, category)
                if text.strip():
                    parts.append(text)
        if not parts:
            return None
        return truncate_message(SUMMARY_SEPARATOR.join(parts))


def _ordered_categories(incidents: Dict[str, Any]) -> List[str]:
    known = [c for c in CATEGORY_ORDER if c in incidents]
    extra = [c for c in incidents if c not in CATEGORY_ORDER]
    return known + extra
