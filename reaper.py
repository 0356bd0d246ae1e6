import logging

from blobstore import BlobStoreError
from utils import utcnow

log = logging.getLogger(__name__)

JOB_ID = "blob_reaper_job"


class BlobReaper:
    """
    Drains the ``blobDeletions`` queue written by soft deletes.

    Deleting a blob is idempotent, so a row that fails simply stays pending
    with its attempt count bumped and is picked up again on the next pass.
    """

    def __init__(self, database, blobs, audit, clock=utcnow):
        self.database = database
        self.blobs = blobs
        self.audit = audit
        self.clock = clock

    def pending(self, limit=None):
        return self.database.query(
            "blobDeletions", {"status": "pending"},
            order_by="requested_at", limit=limit,
        )

    def run_once(self, max_items=25):
        processed = []
        for row in self.pending(limit=max_items):
            try:
                self.blobs.delete(row["blob_storage_path"])
            except BlobStoreError as exc:
                self.audit.record_error(exc, f"Failed to delete blob {row['blob_storage_path']}")
                self.database.update_by_id("blobDeletions", row["id"], {
                    "attempts": row["attempts"] + 1,
                    "last_error": str(exc)[:1000],
                })
                continue
            self.database.update_by_id("blobDeletions", row["id"], {
                "status": "done",
                "attempts": row["attempts"] + 1,
                "completed_at": self.clock(),
            })
            processed.append(row["blob_storage_path"])
        if processed:
            log.info("reaped %d blob(s)", len(processed))
        return processed

    def schedule(self, scheduler, app, minutes=5):
        def job():
            with app.app_context():
                self.run_once()

        if not scheduler.get_job(JOB_ID):
            scheduler.add_job(job, "interval", minutes=minutes, id=JOB_ID, replace_existing=True)
