"""
ForecastStore - persistence for the single live forecast document.

The whole payload lives in one JSON column and is swapped in a single
UPDATE guarded by the row's version, so readers see either the previous
document or the new one and never a mix. Losing writers retry a few
times after a short random pause and then give up loudly.
"""

import logging
import random
import time
from typing import Callable, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from . import db
from .exceptions import ConflictError
from .models import ForecastDocument, utcnow

logger = logging.getLogger(__name__)

SINGLETON_KEY = 'current'


class ForecastStore:
    """Upsert-only store for the current forecast document."""

    def __init__(
        self,
        session=None,
        max_retries: int = 3,
        backoff_range=(0.05, 0.25),
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None
    ):
        self.session = session or db.session
        self.max_retries = max_retries
        self.backoff_range = backoff_range
        self._sleep = sleep
        self._rng = rng or random.Random()

    def _current_row(self) -> Optional[ForecastDocument]:
        # populate_existing: the identity map may hold a version another writer has moved past
        return (
            self.session.query(ForecastDocument)
            .filter_by(singleton_key=SINGLETON_KEY)
            .populate_existing()
            .first()
        )

    def get(self) -> Optional[Dict]:
        """Most recently committed document, or None before the first refresh"""
        row = self._current_row()
        if row is None:
            return None
        document = dict(row.payload)
        document['version'] = row.version
        return document

    def _write(self, payload: Dict, expected_version: Optional[int]) -> ForecastDocument:
        """
        Write ``payload`` over the document last read at ``expected_version``.

        None means no document existed when it was read. Raises
        StaleDataError when the stored version has moved on since.
        """
        row = self._current_row()
        current_version = row.version if row is not None else None
        if current_version != expected_version:
            raise StaleDataError(
                f"Forecast document is at v{current_version}, expected v{expected_version}"
            )

        if row is None:
            row = ForecastDocument(singleton_key=SINGLETON_KEY, payload=payload)
            self.session.add(row)
        else:
            row.payload = payload
            row.updated_at = utcnow()
        self.session.commit()
        return row

    def _commit(self, build: Callable[[Optional[Dict]], Optional[Dict]]) -> Optional[Dict]:
        """
        Read the current document, build the new payload from it and write it.

        Each attempt re-reads the document, so ``build`` always sees the
        latest committed state. Returns None without writing when ``build``
        does. Raises ConflictError once ``max_retries`` retries have all
        lost to concurrent writers.
        """
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                current = self.get()
                payload = build(current)
                if payload is None:
                    return None
                row = self._write(payload, current['version'] if current else None)
                logger.info(f"Saved forecast document v{row.version}")
                return self.get()
            except (StaleDataError, IntegrityError) as e:
                self.session.rollback()
                if attempt == attempts:
                    logger.error(f"Giving up on forecast write after {attempt} attempts: {e}")
                    raise ConflictError(details={'attempts': attempt}) from e
                delay = self._rng.uniform(*self.backoff_range)
                logger.warning(
                    f"Forecast write conflict (attempt {attempt}/{attempts}), retrying in {delay:.3f}s"
                )
                self._sleep(delay)

    def save(self, payload: Dict) -> Dict:
        """Replace the current document with ``payload``"""
        return self._commit(lambda current: payload)

    def update_configuration(self, configuration: Dict) -> Optional[Dict]:
        """Replace the configuration section of the current document, if any"""
        def apply(current):
            if current is None:
                return None
            document = dict(current)
            document.pop('version', None)
            document['configuration'] = configuration
            return document

        return self._commit(apply)
