"""Example 01: Projects - lazy migration on read.

This example demonstrates:
- Defining a document type with three schema versions and its upgraders
- Reading rows written by older releases through a Repository
- Access rules: private rows, publicRead and publicUpdate

Scenario: a projects table that started with a single owner per project
  v1: title, owner, description
  v2: owner became members, priority added (default 5)
  v3: tags added (default [])
"""

import tempfile
from pathlib import Path
from typing import Any

from versadoc import (
    Caller,
    ContextAuth,
    DocumentData,
    DocumentType,
    Repository,
    SqliteDocumentStore,
    upgrader,
)


class ProjectData(DocumentData):
    title: str
    members: list[str]
    description: str
    priority: int
    tags: list[str] = []


@upgrader(1, type_name="projects")
def projects_v1_to_v2(data: dict[str, Any]) -> dict[str, Any]:
    data["members"] = [data.pop("owner")]
    data["priority"] = 5
    return data


@upgrader(2, type_name="projects")
def projects_v2_to_v3(data: dict[str, Any]) -> dict[str, Any]:
    data["tags"] = []
    return data


PROJECTS = DocumentType(
    "projects", ProjectData, version=3, upgraders=[projects_v1_to_v2, projects_v2_to_v3]
)


def main():
    """Run the projects example."""
    print("=" * 80)
    print("VERSADOC PROJECTS EXAMPLE")
    print("=" * 80)

    with tempfile.TemporaryDirectory() as tmp:
        store = SqliteDocumentStore(str(Path(tmp) / "projects.db"))
        auth = ContextAuth()
        projects = Repository(store, PROJECTS, auth)

        # A row written before versioning existed
        legacy_id = store.insert(
            "alice",
            "projects",
            {"title": "Website", "owner": "alice", "description": "Relaunch"},
            Caller.service(),
        ).id
        print("\n1. Stored a legacy v1 row (no version key)")

        with auth.acting_as("alice"):
            doc = projects.get(legacy_id)
            print(f"   Read back as v{doc.version}: {doc.to_payload()}")

            shared = doc.evolve(public_read=True, public_update=True, tags=["web"])
            projects.update(legacy_id, shared)
            print("\n2. Saved it back at v3, readable and editable by everyone")

            private_id = projects.save(
                PROJECTS.create(title="Payroll", members=["alice"], description="", priority=1)
            )

        with auth.acting_as("bob"):
            visible = [item.document.data.title for item in projects.list()]
            print(f"\n3. bob sees: {visible}")
            print(f"   bob reading alice's private project: {projects.get(private_id)}")

            edited = projects.get(legacy_id).evolve(members=["alice", "bob"])
            projects.update(legacy_id, edited)
            print(f"   bob joined the shared project: {edited.data.members}")

        store.close()

    print("\n" + "=" * 80)
    print("Example complete!")
    print("=" * 80)


if __name__ == "__main__":
    main()
