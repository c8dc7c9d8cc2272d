"""Document type loader: import a Python module and discover DocumentType instances."""

from __future__ import annotations

import importlib
import sys
from pathlib import Path
from typing import Any

from versadoc.doctype import DocumentType


def load_document_types(
    types_module: str | None = None,
    types_path: str | None = None,
) -> dict[str, DocumentType[Any]]:
    """Load every module-level DocumentType from a module.

    Args:
        types_module: Dotted Python import path (e.g. 'myapp.doctypes')
        types_path: Filesystem path to a Python file

    Returns:
        DocumentType instances keyed by type name
    """
    if types_path:
        path = Path(types_path).resolve()
        if not path.exists():
            raise FileNotFoundError(f"Types path not found: {types_path}")
        parent = str(path.parent)
        if parent not in sys.path:
            sys.path.insert(0, parent)
        module = importlib.import_module(path.stem)
    elif types_module:
        module = importlib.import_module(types_module)
    else:
        raise ValueError("One of --types or --types-path is required")

    found: dict[str, DocumentType[Any]] = {}
    for attr_name in dir(module):
        obj = getattr(module, attr_name)
        if isinstance(obj, DocumentType):
            existing = found.get(obj.type_name)
            if existing is not None and existing is not obj:
                raise ValueError(f"Document type '{obj.type_name}' is defined twice in {module.__name__}")
            found[obj.type_name] = obj
    return found
