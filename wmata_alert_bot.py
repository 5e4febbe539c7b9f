# wmata_alert_bot.py
#
# WMATA Incident Alert Bot
# - Pulls WMATA rail / bus / elevator incident feeds (one run per invocation)
# - Keeps incidents updated in the last CHECK_INTERVAL_MINUTES (US Eastern)
# - Posts to Threads, either one post per incident or one combined summary
# - Per-incident mode: a failed post is logged and the batch continues
# - Summary mode: a failed post aborts the run
#
# Scheduling is external (cron / workflow timer every CHECK_INTERVAL_MINUTES).
# See wmata_settings.py for the env vars.
#
# Exit codes:
#   0  run completed (including per-incident publish failures)
#   1  feed fetch failed, or the summary / test post failed
#   2  configuration missing or invalid
#
import datetime as dt
import logging
import sys
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from threads_gate import ThreadsPublisher
from wmata_errors import AlertBotError, ConfigError, FetchError, PublishError, ValidationError
from wmata_incidents import FormattedAlert, IncidentAggregator
from wmata_settings import MODE_SUMMARY, Settings, load_settings

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
TEST_POST_TEXT = "Test post from WMATA alert bot ✅"


# ----------------------------
# Run bookkeeping
# ----------------------------
@dataclass
class PublishOutcome:
    category: str
    text: str
    post_id: Optional[str] = None
    error: Optional[AlertBotError] = None
    dry_run: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RunReport:
    mode: str
    fetched: Dict[str, int] = field(default_factory=dict)
    fresh: int = 0
    outcomes: List[PublishOutcome] = field(default_factory=list)
    aborted: Optional[AlertBotError] = None

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.ok)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.ok)

    @property
    def exit_code(self) -> int:
        return 1 if self.aborted is not None else 0


def preview(text: str) -> str:
    return text.replace("\n", " | ")


# ----------------------------
# Publishing
# ----------------------------
def publish_alerts(
    alerts: Sequence[FormattedAlert],
    publisher: Optional[ThreadsPublisher],
    delay_seconds: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> List[PublishOutcome]:
    """Publish alerts one at a time; a failed alert never stops the rest.

    With no publisher (posting disabled) each alert is only logged.
    """
    outcomes: List[PublishOutcome] = []
    for i, alert in enumerate(alerts):
        logger.info("Social preview (%s): %s", alert.category, preview(alert.text))
        if publisher is None:
            outcomes.append(PublishOutcome(alert.category, alert.text, dry_run=True))
            continue

        try:
            logger.info("Publishing %s incident to Threads", alert.category)
            post_id = publisher.publish_post(alert.text)
        except (PublishError, ValidationError) as e:
            logger.error("Failed to publish %s incident: %s", alert.category, e)
            outcomes.append(PublishOutcome(alert.category, alert.text, error=e))
            continue

        logger.info("Successfully published %s incident with ID: %s", alert.category, post_id)
        outcomes.append(PublishOutcome(alert.category, alert.text, post_id=post_id))
        if delay_seconds > 0 and i < len(alerts) - 1:
            sleep(delay_seconds)
    return outcomes


def publish_summary(text: str, publisher: Optional[ThreadsPublisher]) -> PublishOutcome:
    """Publish the combined summary. Publish failures propagate to the caller."""
    logger.info("Social preview (summary): %s", preview(text))
    if publisher is None:
        return PublishOutcome("summary", text, dry_run=True)
    post_id = publisher.publish_post(text)
    logger.info("Successfully published summary with ID: %s", post_id)
    return PublishOutcome("summary", text, post_id=post_id)


# ----------------------------
# Run coordinator
# ----------------------------
def run_once(
    settings: Settings,
    aggregator: Optional[IncidentAggregator] = None,
    publisher: Optional[ThreadsPublisher] = None,
    now: Optional[dt.datetime] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RunReport:
    report = RunReport(mode=settings.post_mode)
    if publisher is None and settings.enable_posting:
        publisher = ThreadsPublisher.from_settings(settings)
    elif not settings.enable_posting:
        publisher = None
    aggregator = aggregator or IncidentAggregator(settings)

    logger.info("Starting check for WMATA incidents")
    try:
        snapshot = aggregator.fetch_all()
    except FetchError as e:
        logger.error("Error in WMATA incident check: %s", e)
        report.aborted = e
        return report
    report.fetched = {category: len(items) for category, items in snapshot.items()}

    fresh = aggregator.new_incidents(now)
    report.fresh = sum(len(items) for items in fresh.values())

    if settings.post_mode == MODE_SUMMARY:
        text = aggregator.summary_text(fresh)
        if text is None:
            logger.info("No new incidents found")
            return report
        try:
            report.outcomes.append(publish_summary(text, publisher))
        except (PublishError, ValidationError) as e:
            logger.error("Failed to publish summary: %s", e)
            report.outcomes.append(PublishOutcome("summary", text, error=e))
            report.aborted = e
        return report

    alerts = aggregator.formatted_alerts(fresh)
    if not alerts:
        logger.info("No new incidents found")
        return report

    logger.info("Found %d new incidents to publish", len(alerts))
    report.outcomes = publish_alerts(alerts, publisher, settings.post_delay_ms / 1000.0, sleep)
    return report


def send_test_post(settings: Settings, publisher: Optional[ThreadsPublisher] = None) -> int:
    logger.info("TEST_POST enabled.")
    publisher = publisher or ThreadsPublisher.from_settings(settings)
    try:
        post_id = publisher.publish_post(TEST_POST_TEXT)
    except (PublishError, ValidationError) as e:
        logger.error("Test post failed: %s", e)
        return 1
    logger.info("Test post published with ID: %s", post_id)
    return 0


def log_run_summary(report: RunReport) -> None:
    fetched = " ".join(f"{k}={v}" for k, v in report.fetched.items()) or "none"
    logger.info(
        "Run summary: mode=%s fetched=[%s] fresh=%d posted=%d failed=%d aborted=%s",
        report.mode,
        fetched,
        report.fresh,
        report.succeeded,
        report.failed,
        report.aborted.kind.value if report.aborted else "no",
    )


# ----------------------------
# Main
# ----------------------------
def main() -> int:
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)

    try:
        settings = load_settings()
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 2
    logging.getLogger().setLevel(settings.log_level)

    if not settings.enable_posting and not settings.test_post:
        logger.info("ENABLE_THREADS_POSTING=false; previews only, nothing will be posted.")

    try:
        if settings.test_post:
            return send_test_post(settings)
        report = run_once(settings)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 2
    log_run_summary(report)
    return report.exit_code


if __name__ == "__main__":
    sys.exit(main())
