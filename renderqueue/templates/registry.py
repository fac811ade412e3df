"""Template pairs (.aep project + .json job description) and their data fields."""
from __future__ import annotations

import copy
import csv
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import jsonschema
import orjson
import structlog

LOGGER = structlog.get_logger(__name__)

DEFAULT_SCHEMA_PATH = Path("config/schemas/template.schema.json")


@dataclass
class RenderTemplate:
    """A validated template pair ready to be filled with dataset rows."""

    template_id: str
    composition: str
    output_ext: str
    data_fields: List[str]
    aep_path: Path
    json_path: Path
    document: Dict[str, Any] = field(repr=False, default_factory=dict)

    def summary(self) -> Dict[str, object]:
        return {
            "id": self.template_id,
            "name": self.template_id,
            "composition": self.composition,
            "output_ext": self.output_ext,
            "data_fields": list(self.data_fields),
            "aep_file": self.aep_path.name,
            "json_file": self.json_path.name,
        }

    def build_render_job(self, row: Dict[str, str]) -> Dict[str, Any]:
        """Copy the job description and fill data assets from one row."""
        job = copy.deepcopy(self.document)
        for asset in job.get("assets", []):
            if asset.get("type") != "data":
                continue
            value = row.get(asset.get("layerName", ""))
            if value:
                asset["value"] = value
        return job


def extract_data_fields(document: Dict[str, Any]) -> List[str]:
    """Distinct layer names of `data` assets, in template order."""
    names: List[str] = []
    for asset in document.get("assets", []):
        name = asset.get("layerName")
        if asset.get("type") == "data" and name and name not in names:
            names.append(name)
    return names


class TemplateRegistry:
    """Lazily loads and validates the templates under a directory."""

    def __init__(self, root: Path, *, schema_path: Path = DEFAULT_SCHEMA_PATH) -> None:
        self._root = root
        self._schema_path = schema_path
        self._validator: Optional[jsonschema.Draft202012Validator] = None
        self._cache: Dict[str, RenderTemplate] = {}

    def _schema_validator(self) -> jsonschema.Draft202012Validator:
        if self._validator is None:
            if not self._schema_path.exists():
                raise FileNotFoundError(f"Template schema not found: {self._schema_path}")
            schema = orjson.loads(self._schema_path.read_bytes())
            self._validator = jsonschema.Draft202012Validator(schema)
        return self._validator

    def validate(self, document: Dict[str, Any]) -> List[str]:
        """Return schema violations for a template document."""
        validator = self._schema_validator()
        return [f"{error.json_path}: {error.message}" for error in validator.iter_errors(document)]

    def get(self, template_id: str) -> RenderTemplate:
        if template_id in self._cache:
            return self._cache[template_id]
        aep_path = self._root / f"{template_id}.aep"
        json_path = self._root / f"{template_id}.json"
        if not json_path.exists():
            raise FileNotFoundError(f"Template configuration not found: {json_path}")
        try:
            document = orjson.loads(json_path.read_bytes())
        except orjson.JSONDecodeError as exc:
            raise ValueError(f"Template {template_id} is not valid JSON: {exc}") from exc
        errors = self.validate(document)
        if errors:
            raise ValueError(f"Template {template_id} failed validation: {'; '.join(errors)}")
        header = document["template"]
        template = RenderTemplate(
            template_id=template_id,
            composition=header.get("composition", "Unknown"),
            output_ext=header.get("outputExt") or "mp4",
            data_fields=extract_data_fields(document),
            aep_path=aep_path,
            json_path=json_path,
            document=document,
        )
        self._cache[template_id] = template
        return template

    def list_templates(self) -> List[RenderTemplate]:
        """Templates whose .aep has a sibling .json; broken pairs are logged and skipped."""
        if not self._root.exists():
            return []
        templates: List[RenderTemplate] = []
        for aep_path in sorted(self._root.glob("*.aep")):
            template_id = aep_path.stem
            if not (self._root / f"{template_id}.json").exists():
                LOGGER.warning("template_json_missing", template_id=template_id)
                continue
            try:
                templates.append(self.get(template_id))
            except (ValueError, FileNotFoundError) as exc:
                LOGGER.error("template_invalid", template_id=template_id, error=str(exc))
        return templates


def write_data_model(template: RenderTemplate, path: Path) -> Path:
    """Write a header-only CSV listing the template's data fields."""
    if not template.data_fields:
        raise ValueError(f"No data fields found in template {template.template_id}")
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=template.data_fields)
        writer.writeheader()
    return path
