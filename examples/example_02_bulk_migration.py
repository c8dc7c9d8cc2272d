"""Example 02: Bulk Migration - rewriting stale rows offline.

This example demonstrates:
- Counting rows stored below the current schema version
- A dry run that reports without writing
- Applying the migration in batches
- Continue-and-report handling of rows that cannot be migrated

The same job is available from the command line:
    versadoc --db app.db migrate --types myapp.doctypes          # dry run
    versadoc --db app.db migrate --types myapp.doctypes --apply
"""

import logging
import tempfile
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

from versadoc import (
    BulkMigrationJob,
    Caller,
    DocumentData,
    DocumentType,
    SqliteDocumentStore,
    singleton_id,
    upgrader,
)


class Notifications(BaseModel):
    model_config = ConfigDict(strict=True, extra="forbid", frozen=True)

    email: bool
    push: bool
    sms: bool


class SettingsData(DocumentData):
    theme: Literal["light", "dark", "auto"]
    notifications: Notifications
    language: str


@upgrader(1, type_name="user_settings")
def settings_v1_to_v2(data: dict[str, Any]) -> dict[str, Any]:
    return {
        "theme": data["theme"] if data["theme"] in ("light", "dark") else "auto",
        "notifications": {"email": data.get("emailNotifications", False), "push": False, "sms": False},
        "language": "en",
    }


SETTINGS = DocumentType("user_settings", SettingsData, version=2, upgraders=[settings_v1_to_v2])


def main():
    """Run the bulk migration example."""
    logging.basicConfig(level=logging.INFO, format="  %(levelname)s %(message)s")

    print("=" * 80)
    print("VERSADOC BULK MIGRATION EXAMPLE")
    print("=" * 80)

    with tempfile.TemporaryDirectory() as tmp:
        store = SqliteDocumentStore(str(Path(tmp) / "settings.db"))
        service = Caller.service()
        for i, theme in enumerate(["dark", "light", "blue", "dark"]):
            store.insert(
                f"user-{i}",
                "user_settings",
                {"theme": theme, "emailNotifications": i % 2 == 0},
                service,
                row_id=singleton_id("user_settings", f"user-{i}"),
            )
        # Missing "theme": this row cannot be upgraded
        store.insert(
            "user-9",
            "user_settings",
            {"language": "fr"},
            service,
            row_id=singleton_id("user_settings", "user-9"),
        )

        job = BulkMigrationJob(store, SETTINGS, batch_size=2)
        print(f"\n1. Stale rows: {job.pending()}")

        print("\n2. Dry run")
        report = job.run()
        print(f"   would migrate {report.migrated}, failed {len(report.failures)}")

        print("\n3. Apply")
        report = BulkMigrationJob(store, SETTINGS, batch_size=2, dry_run=False).run()
        print(f"   migrated {report.migrated} in {report.batches} batches")
        for failure in report.failures:
            print(f"   FAILED {failure.id}: {failure.error_type}")
        print(f"   still stale: {job.pending()}")

        store.close()

    print("\n" + "=" * 80)
    print("Example complete!")
    print("=" * 80)


if __name__ == "__main__":
    main()
