"""JSON Schema validation for exposed protocol documents.

Provides:
- A registry of every packaged `*.schema.json` for `$ref` resolution
- Cached Draft 2020-12 validators
- Error lists with JSON paths, suitable for surfacing to callers
"""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, List

from jsonschema import Draft202012Validator
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

SCHEMAS_DIR = Path(__file__).resolve().parent / "schemas"


def _load_schema(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


@lru_cache(maxsize=1)
def _schema_registry() -> Registry:
    """Build a registry for all packaged schemas (cached)."""
    resources = []
    for schema_path in sorted(SCHEMAS_DIR.glob("*.schema.json")):
        schema = _load_schema(schema_path)
        schema_id = schema.get("$id") or f"https://schemas.zkaddr.dev/{schema_path.name}"
        resources.append((schema_id, Resource.from_contents(schema, default_specification=DRAFT202012)))
    return Registry().with_resources(resources)


@lru_cache(maxsize=None)
def schema_validator(name: str) -> Draft202012Validator:
    """Validator for a packaged schema, e.g. ``schema_validator("credential")``."""
    path = SCHEMAS_DIR / f"{name}.schema.json"
    if not path.exists():
        raise FileNotFoundError(f"Unknown schema: {name}")
    return Draft202012Validator(_load_schema(path), registry=_schema_registry())


def validate_document(obj: Any, name: str) -> List[str]:
    """Validate `obj` against a packaged schema.

    Returns:
        List of validation error messages (empty if valid)
    """
    validator = schema_validator(name)
    return [
        f"{error.json_path}: {error.message}"
        for error in sorted(validator.iter_errors(obj), key=lambda e: e.json_path)
    ]
