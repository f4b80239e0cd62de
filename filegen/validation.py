"""Schema validation for finished files and individual records.

XML output is checked against an XSD with lxml; JSON output and
per-record dictionaries against a JSON Schema with jsonschema. Compiled
schemas live in a ``SchemaCache`` owned by the caller. XML files are
validated while lxml streams them; JSON files in the writer's layout are
read one record line at a time.

In strict mode a file that fails validation raises
``ContentValidationError``; in lenient mode the failure is logged and
returned, and the job carries on.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, TextIO, Union

import jsonschema
from lxml import etree

from filegen.exceptions import ConfigValidationError, ContentValidationError
from filegen.writers.json_writer import JSON_HEADER

logger = logging.getLogger(__name__)

MAX_REPORTED_ERRORS = 20


def _secure_parser() -> etree.XMLParser:
    # No DTD entity expansion, no network fetches
    return etree.XMLParser(resolve_entities=False, no_network=True, load_dtd=False, huge_tree=True)


@dataclass
class ContentValidationResult:
    file_path: str
    schema_path: str
    valid: bool
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_path": self.file_path,
            "schema_path": self.schema_path,
            "valid": self.valid,
            "errors": list(self.errors),
        }


class SchemaCache:
    """Compiled XSD and JSON Schema objects keyed by resolved path."""

    def __init__(self) -> None:
        self._xsd: Dict[str, etree.XMLSchema] = {}
        self._json: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._xsd) + len(self._json)

    def xsd(self, path: Union[str, Path]) -> etree.XMLSchema:
        key = str(Path(path).resolve())
        with self._lock:
            schema = self._xsd.get(key)
            if schema is None:
                try:
                    doc = etree.parse(key, _secure_parser())
                    schema = etree.XMLSchema(doc)
                except (OSError, etree.XMLSyntaxError, etree.XMLSchemaParseError) as exc:
                    raise ConfigValidationError(
                        f"Cannot load XSD schema: {exc}", config_path=key, key="xsd_schema_file"
                    ) from exc
                self._xsd[key] = schema
                logger.info("Compiled XSD schema %s", key)
            return schema

    def json_validator(self, path: Union[str, Path]) -> Any:
        key = str(Path(path).resolve())
        with self._lock:
            validator = self._json.get(key)
            if validator is None:
                try:
                    with open(key, "r", encoding="utf-8") as handle:
                        schema = json.load(handle)
                    validator_cls = jsonschema.validators.validator_for(schema)
                    validator_cls.check_schema(schema)
                except (OSError, ValueError, jsonschema.SchemaError) as exc:
                    raise ConfigValidationError(
                        f"Cannot load JSON schema: {exc}", config_path=key, key="json_schema_file"
                    ) from exc
                validator = validator_cls(schema)
                self._json[key] = validator
                logger.info("Compiled JSON schema %s", key)
            return validator

    def clear(self) -> None:
        with self._lock:
            self._xsd.clear()
            self._json.clear()
        logger.info("Schema cache cleared.")


def _json_errors(
    validator: Any, document: Any, schema: Optional[Dict[str, Any]] = None, prefix: Sequence[Any] = ()
) -> List[str]:
    found = validator.iter_errors(document) if schema is None else validator.descend(document, schema)
    errors = sorted(found, key=lambda e: [str(p) for p in e.path])
    messages = []
    for error in errors[:MAX_REPORTED_ERRORS]:
        location = "/".join(str(p) for p in [*prefix, *error.path]) or "<root>"
        messages.append(f"{location}: {error.message}")
    return messages


def _xml_errors(file_path: Union[str, Path], schema: etree.XMLSchema) -> List[str]:
    # The parser validates while streaming; finished subtrees are released
    context = etree.iterparse(
        str(file_path),
        events=("end",),
        schema=schema,
        resolve_entities=False,
        no_network=True,
        load_dtd=False,
        huge_tree=True,
    )
    try:
        for _, element in context:
            element.clear(keep_tail=True)
            while element.getprevious() is not None:
                del element.getparent()[0]
    except etree.XMLSyntaxError as exc:
        log = list(exc.error_log or [])
        if not log or any(entry.domain == etree.ErrorDomains.PARSER for entry in log):
            return [f"XML syntax error: {exc}"]
        return [f"line {entry.line}: {entry.message}" for entry in log[:MAX_REPORTED_ERRORS]]
    return []


def _envelope_schema(schema: Dict[str, Any]) -> Dict[str, Any]:
    properties = dict(schema["properties"])
    properties["records"] = {"type": "array"}
    return dict(schema, properties=properties)


def _streamed_json_errors(validator: Any, handle: TextIO) -> Optional[List[str]]:
    """Validate a file in the one-record-per-line layout ``JsonWriter`` emits.

    Each record is checked on its own against the ``records`` item schema,
    then the envelope against the rest of the document schema. Returns
    None when the file or the schema has some other shape.
    """
    schema = validator.schema
    records_schema = schema.get("properties", {}).get("records") if isinstance(schema, dict) else None
    items_schema = records_schema.get("items") if isinstance(records_schema, dict) else None
    if not isinstance(items_schema, dict) or handle.readline().strip() != JSON_HEADER:
        return None

    errors: List[str] = []
    count = 0
    footer = None
    for line in handle:
        if footer is not None:
            if line.strip():
                raise ValueError("unexpected content after the closing ']'")
            continue
        if line.startswith("]"):
            footer = line
            continue
        record = json.loads(line[1:] if line.startswith(",") else line)
        if len(errors) < MAX_REPORTED_ERRORS:
            errors.extend(_json_errors(validator, record, items_schema, ("records", count)))
        count += 1
    if footer is None:
        raise ValueError("document ends before the closing ']'")

    envelope = json.loads(JSON_HEADER + footer)
    errors.extend(_json_errors(validator.evolve(schema=_envelope_schema(schema)), envelope))
    return errors[:MAX_REPORTED_ERRORS]


class ContentValidator:
    """Validate finished XML or JSON files against their schema."""

    def __init__(self, strict: bool = True, cache: Optional[SchemaCache] = None):
        self.strict = strict
        self.cache = cache or SchemaCache()

    def validate_xml(self, file_path: Union[str, Path], xsd_path: Union[str, Path]) -> ContentValidationResult:
        errors = _xml_errors(file_path, self.cache.xsd(xsd_path))
        return self._finish(ContentValidationResult(str(file_path), str(xsd_path), not errors, errors))

    def validate_json(self, file_path: Union[str, Path], schema_path: Union[str, Path]) -> ContentValidationResult:
        """Stream files in the writer's layout; load anything else whole."""
        validator = self.cache.json_validator(schema_path)
        try:
            with open(file_path, "r", encoding="utf-8") as handle:
                errors = _streamed_json_errors(validator, handle)
                if errors is None:
                    handle.seek(0)
                    errors = _json_errors(validator, json.load(handle))
        except ValueError as exc:
            errors = [f"JSON syntax error: {exc}"]
        return self._finish(ContentValidationResult(str(file_path), str(schema_path), not errors, errors))

    def _finish(self, result: ContentValidationResult) -> ContentValidationResult:
        if result.valid:
            logger.info("%s is valid against %s", result.file_path, result.schema_path)
            return result
        for message in result.errors:
            logger.warning("Validation error in %s: %s", result.file_path, message)
        if self.strict:
            raise ContentValidationError(
                f"{result.file_path} failed validation against {result.schema_path}",
                file_path=result.file_path,
                errors=result.errors,
            )
        logger.warning(
            "Lenient mode: keeping %s despite %d validation error(s)",
            result.file_path,
            len(result.errors),
        )
        return result


def json_record_validator(schema_path: Union[str, Path], cache: Optional[SchemaCache] = None):
    """Build a record validator (dict -> list of messages) from a JSON Schema file."""
    validator = (cache or SchemaCache()).json_validator(schema_path)

    def validate(record: Dict[str, Any]) -> List[str]:
        return _json_errors(validator, record)

    return validate


__all__ = [
    "ContentValidationResult",
    "ContentValidator",
    "SchemaCache",
    "json_record_validator",
]
