"""Bulk migration: rewrite every stale row of a document type in place."""

from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable

from versadoc.errors import AccessDeniedError, BulkMigrationError, VersadocError
from versadoc.migration import detect_version
from versadoc.storage import Caller, DocumentStoreProtocol
from versadoc.types import Migratable

logger = logging.getLogger(__name__)

__all__ = ["BulkMigrationJob", "BulkMigrationReport", "RowFailure", "migrate_all"]


@dataclass(frozen=True)
class RowFailure:
    """One row the job could not migrate."""

    id: str
    error: str
    error_type: str


@dataclass
class BulkMigrationReport:
    """Outcome of one bulk migration run."""

    type_name: str
    target_version: int
    dry_run: bool
    scanned: int = 0
    migrated: int = 0
    skipped: int = 0
    batches: int = 0
    aborted: bool = False
    from_versions: dict[int, int] = field(default_factory=dict)
    failures: list[RowFailure] = field(default_factory=list)
    duration_s: float = 0.0

    @property
    def success(self) -> bool:
        return not self.failures and not self.aborted

    @property
    def failed_ids(self) -> list[str]:
        return [f.id for f in self.failures]

    def raise_for_failures(self) -> None:
        if self.failures:
            raise BulkMigrationError(self.type_name, self.failed_ids)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type_name": self.type_name,
            "target_version": self.target_version,
            "dry_run": self.dry_run,
            "scanned": self.scanned,
            "migrated": self.migrated,
            "skipped": self.skipped,
            "batches": self.batches,
            "aborted": self.aborted,
            "success": self.success,
            "from_versions": {str(k): v for k, v in sorted(self.from_versions.items())},
            "failures": [{"id": f.id, "error_type": f.error_type, "error": f.error} for f in self.failures],
            "duration_s": round(self.duration_s, 3),
        }


class BulkMigrationJob:
    """Offline rewrite of all rows of one type stored below its current version.

    Runs privileged (every owner's rows) and walks stale rows in id order,
    one batch at a time. Each row is migrated independently; a failure is
    recorded and the job moves on, unless ``fail_fast`` is set, in which
    case the job stops at the first failure. In ``dry_run`` mode nothing is
    written.

    Writes are guarded by the row's ``updated_at``: if a user wrote the row
    after it was selected, the row is counted as skipped rather than
    overwritten. Re-running the job picks up skipped and failed rows again.
    """

    def __init__(
        self,
        store: DocumentStoreProtocol,
        doc_type: Migratable[Any],
        *,
        batch_size: int = 100,
        dry_run: bool = True,
        fail_fast: bool = False,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self.store = store
        self.doc_type = doc_type
        self.batch_size = batch_size
        self.dry_run = dry_run
        self.fail_fast = fail_fast

    def pending(self) -> int:
        """Number of rows currently stored below the current version."""
        return self.store.count(self.doc_type.type_name, stale_below=self.doc_type.version)

    def run(self) -> BulkMigrationReport:
        type_name = self.doc_type.type_name
        target = self.doc_type.version
        report = BulkMigrationReport(type_name=type_name, target_version=target, dry_run=self.dry_run)
        caller = Caller.service()
        from_versions: Counter[int] = Counter()
        start = time.monotonic()
        mode = "dry run" if self.dry_run else "apply"
        logger.info("Bulk migration of %s to v%d started (%s)", type_name, target, mode)

        after_id: str | None = None
        while not report.aborted:
            batch = self.store.select_stale(
                type_name, target, after_id=after_id, limit=self.batch_size
            )
            if not batch:
                break
            report.batches += 1
            for row in batch:
                report.scanned += 1
                try:
                    found = detect_version(row.data, type_name)
                    payload = self.doc_type.migrate(row.data)
                    written = self.dry_run or self.store.update(
                        row.id, type_name, payload, caller, expected_updated_at=row.updated_at
                    )
                except AccessDeniedError:
                    # The service caller is only denied rows that no longer exist.
                    report.skipped += 1
                    logger.info("Skipped %s row %s: deleted during migration", type_name, row.id)
                    continue
                except VersadocError as e:
                    report.failures.append(
                        RowFailure(id=row.id, error=str(e), error_type=type(e).__name__)
                    )
                    logger.warning("Bulk migration of %s row %s failed: %s", type_name, row.id, e)
                    if self.fail_fast:
                        report.aborted = True
                        break
                    continue

                from_versions[found] += 1
                if self.dry_run:
                    logger.info("Would migrate %s row %s v%d -> v%d", type_name, row.id, found, target)
                    report.migrated += 1
                elif written:
                    report.migrated += 1
                else:
                    report.skipped += 1
                    logger.info("Skipped %s row %s: changed during migration", type_name, row.id)
            after_id = batch[-1].id
            logger.info(
                "Bulk migration of %s: batch %d done (%d scanned, %d failed)",
                type_name,
                report.batches,
                report.scanned,
                len(report.failures),
            )

        report.from_versions = dict(from_versions)
        report.duration_s = time.monotonic() - start
        logger.info(
            "Bulk migration of %s finished: %d migrated, %d skipped, %d failed%s",
            type_name,
            report.migrated,
            report.skipped,
            len(report.failures),
            " (aborted)" if report.aborted else "",
        )
        return report


def migrate_all(
    store: DocumentStoreProtocol,
    doc_types: Iterable[Migratable[Any]],
    **job_kwargs: Any,
) -> list[BulkMigrationReport]:
    """Run a bulk migration job for each document type in turn."""
    return [BulkMigrationJob(store, dt, **job_kwargs).run() for dt in doc_types]
