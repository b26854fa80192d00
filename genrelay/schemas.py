from __future__ import annotations
from pathlib import Path
import json
from typing import Any, Dict

from jsonschema import Draft202012Validator

SCHEMAS_DIR = Path(__file__).resolve().parents[1] / "configs" / "schemas"


class SchemaValidator:
    """Validates config documents against the JSON schemas in ``configs/schemas``.

    A schema named ``chain`` lives in ``chain.schema.json``.
    """

    def __init__(self, schemas_dir: Path = SCHEMAS_DIR) -> None:
        self._schemas: Dict[str, Draft202012Validator] = {}
        for path in sorted(Path(schemas_dir).glob("*.schema.json")):
            name = path.name[: -len(".schema.json")]
            schema = json.loads(path.read_text(encoding="utf-8"))
            Draft202012Validator.check_schema(schema)
            self._schemas[name] = Draft202012Validator(schema)

    @property
    def names(self) -> list[str]:
        return sorted(self._schemas)

    def validate(self, name: str, data: Any) -> list[str]:
        if name not in self._schemas:
            raise KeyError(f"Unknown schema {name}")
        errors = sorted(self._schemas[name].iter_errors(data), key=lambda e: [str(p) for p in e.path])
        return [f"{'/'.join(map(str, e.path)) or '<root>'}: {e.message}" for e in errors]
