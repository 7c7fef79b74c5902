# app/services/scheduler.py
"""
Daily AI analysis.

run_daily_analysis() is one sweep over every consenting user with a push
token: aggregate the last 24h, generate insights, store them, push one
notification. DailyScheduler runs that sweep once a day at a fixed local time
on a background thread and can be stopped while it sleeps.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from typing import Any, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from app.services.aggregator import fetch_spending_data
from app.services.errors import PushDeliveryError
from app.services.insights import notification_text, store_insights
from models import User

logger = logging.getLogger(__name__)

INTER_USER_DELAY_SECONDS = 0.5


@dataclass
class SweepResult:
    visited: int = 0
    success: int = 0
    errors: int = 0
    skipped: int = 0  # nothing to analyze in the window
    push_failures: int = 0


def _pause(delay: float, stop_event: Optional[threading.Event]) -> None:
    if delay <= 0:
        return
    if stop_event is not None:
        stop_event.wait(delay)
    else:
        time.sleep(delay)


def run_daily_analysis(
    session_factory: Callable[[], Any],
    generator: Any,
    dispatcher: Any = None,
    delay: float = INTER_USER_DELAY_SECONDS,
    stop_event: Optional[threading.Event] = None,
    now: Optional[datetime] = None,
) -> SweepResult:
    """
    Process all users with consent and a push token. A failure for one user
    is logged and counted; the sweep always moves on to the next user.
    """
    logger.info("Starting daily AI analysis job...")
    result = SweepResult()

    db = session_factory()
    try:
        try:
            users = (
                db.query(User.id, User.fcm_token)
                .filter(
                    User.consent_given.is_(True),
                    User.fcm_token.isnot(None),
                    User.fcm_token != "",
                )
                .order_by(User.created_at)
                .all()
            )
        except SQLAlchemyError as e:
            logger.error("Failed to fetch users: %s", e)
            return result

        for user_id, fcm_token in users:
            if stop_event is not None and stop_event.is_set():
                logger.info("Daily analysis interrupted by shutdown")
                break

            result.visited += 1

            try:
                data = fetch_spending_data(db, user_id, "daily", now=now)
            except SQLAlchemyError as e:
                db.rollback()
                logger.error("Failed to aggregate spending for user %s: %s", user_id, e)
                result.errors += 1
                continue

            if data.is_empty:
                result.skipped += 1
                continue

            try:
                insights = generator.analyze_spending(data)
            except Exception:
                logger.exception("AI analysis failed for user %s", user_id)
                result.errors += 1
                _pause(delay, stop_event)
                continue

            try:
                store_insights(db, user_id, insights)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error("Failed to store insights for user %s: %s", user_id, e)
                result.errors += 1
                _pause(delay, stop_event)
                continue

            if fcm_token and dispatcher is not None:
                title, body = notification_text(insights)
                try:
                    dispatcher.send(fcm_token, title, body, {"type": "daily_insight"})
                except PushDeliveryError as e:
                    logger.warning("Push failed for user %s: %s", user_id, e)
                    result.push_failures += 1

            result.success += 1

            # Rate limit to avoid overwhelming the AI and push APIs
            _pause(delay, stop_event)
    finally:
        db.close()

    logger.info(
        "Daily analysis complete: %d visited, %d success, %d errors, %d skipped, %d push failures",
        result.visited, result.success, result.errors, result.skipped, result.push_failures,
    )
    return result


class DailyScheduler:
    """
    Two states: sleeping (waiting for the next hour:minute instant) and
    running (executing the job). The job receives the scheduler's stop event
    so a shutdown also cuts short its inter-user delays.
    """

    SLEEPING = "sleeping"
    RUNNING = "running"

    def __init__(
        self,
        job: Callable[..., Any],
        hour: int = 6,
        minute: int = 0,
        tz: Optional[tzinfo] = None,
    ):
        self.job = job
        self.hour = hour
        self.minute = minute
        self.tz = tz
        self.state = self.SLEEPING
        self.stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _now(self) -> datetime:
        return datetime.now(self.tz) if self.tz is not None else datetime.now()

    def next_run_at(self, now: Optional[datetime] = None) -> datetime:
        now = now or self._now()
        target = now.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
        if target <= now:
            target += timedelta(days=1)
        return target

    def seconds_until_next_run(self, now: Optional[datetime] = None) -> float:
        now = now or self._now()
        return (self.next_run_at(now) - now).total_seconds()

    def run_now(self) -> Any:
        self.state = self.RUNNING
        try:
            return self.job(stop_event=self.stop_event)
        except Exception:
            logger.exception("Scheduled AI analysis failed")
            return None
        finally:
            self.state = self.SLEEPING

    def _loop(self) -> None:
        logger.info("Daily AI analysis scheduler started")
        while not self.stop_event.is_set():
            wait = self.seconds_until_next_run()
            logger.info("Next AI analysis scheduled in %s", timedelta(seconds=round(wait)))
            if self.stop_event.wait(wait):
                break
            logger.info("Running scheduled AI analysis...")
            self.run_now()
        logger.info("Daily AI analysis scheduler stopped")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self.stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="daily-analysis-scheduler", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self.stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
