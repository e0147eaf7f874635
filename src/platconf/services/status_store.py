"""In-memory status record for the status service and the pipeline."""

import logging
from typing import Optional

from platconf.api.models import StatusUpdate
from platconf.models.status import StatusRecord
from platconf.utils.rwlock import ReaderWriterLock


class StatusStore:
    """Owns the single StatusRecord of a process.

    One instance is created at startup and handed to every transport and
    pipeline stage. Readers get a copy; writers hold the write lock only for
    the field assignment. Every write commits all three fields together, so a
    reader never sees a half-applied write.
    """

    def __init__(self, record: Optional[StatusRecord] = None):
        self.logger = logging.getLogger("platconf.status_store")
        self._lock = ReaderWriterLock()
        record = record or StatusRecord()
        self._status: str = record.status
        self._progress: Optional[float] = record.progress
        self._what: Optional[str] = record.what

    def snapshot(self) -> StatusRecord:
        """Get a consistent copy of the current record (for GET /json)."""
        with self._lock.read_locked():
            status, progress, what = self._status, self._progress, self._what
        return StatusRecord(status=status, progress=progress, what=what)

    def set(
        self,
        status: str,
        progress: Optional[float] = None,
        what: Optional[str] = None,
    ) -> None:
        """Replace all three fields.

        Args:
            status: Phase name
            progress: Numeric progress, None for unset
            what: Sub-activity description, None for unset
        """
        with self._lock.write_locked():
            self._status = status
            self._progress = progress
            self._what = what
        self.logger.debug(f"Status set: status={status}, progress={progress}, what={what}")

    def replace(self, record: StatusRecord) -> None:
        """Full replace from a complete record (status file ingest)."""
        self.set(record.status, record.progress, record.what)

    def merge(self, update: StatusUpdate) -> None:
        """Overwrite only the fields present in the update (PUT /status).

        Fields missing from the payload keep their previous value.
        """
        fields = update.present_fields()
        with self._lock.write_locked():
            if "status" in fields:
                self._status = fields["status"] if fields["status"] is not None else ""
            if "progress" in fields:
                self._progress = fields["progress"]
            if "what" in fields:
                self._what = fields["what"]
        self.logger.debug(f"Status merged: {fields}")
