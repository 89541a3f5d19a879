"""Loaders for normalized item datasets (one JSON object per line)."""

from __future__ import annotations

import json
from collections.abc import Iterator
from dataclasses import asdict, dataclass
from pathlib import Path

from pydantic import ValidationError

from painflow.schemas import IngestedItem

ITEMS_JSONL_SCHEMA_VERSION = "1.0.0"


class ItemsDatasetError(ValueError):
    """Raised when an items dataset fails schema or integrity checks."""


@dataclass(frozen=True)
class ValidationErrorRecord:
    """One validation error discovered while scanning a JSONL input file."""

    line_number: int
    code: str
    message: str


@dataclass(frozen=True)
class ItemsValidationReport:
    """Validation results for an items JSONL file."""

    schema_version: str
    input_path: str
    total_lines: int
    non_empty_lines: int
    valid_item_count: int
    invalid_line_count: int
    duplicate_reddit_id_count: int
    error_count: int
    dropped_error_count: int
    is_valid: bool
    errors: list[ValidationErrorRecord]

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["errors"] = [asdict(item) for item in self.errors]
        return payload


def _iter_payloads(file_path: Path) -> Iterator[tuple[int, str]]:
    with file_path.open(encoding="utf-8") as handle:
        for line_number, line in enumerate(handle, start=1):
            yield line_number, line.strip()


def _require_file(path: str | Path) -> Path:
    file_path = Path(path)
    if not file_path.exists():
        raise ItemsDatasetError(f"Items file does not exist: {file_path}")
    return file_path


def validate_items_jsonl(path: str | Path, *, max_errors: int = 100) -> ItemsValidationReport:
    """Scan a JSONL file and return a line-level validation report.

    Unlike `load_items_jsonl`, scanning continues past the first error.
    """

    if max_errors < 0:
        raise ValueError(f"max_errors must be >= 0, got {max_errors}.")

    file_path = _require_file(path)

    total_lines = 0
    non_empty_lines = 0
    valid_item_count = 0
    duplicate_reddit_id_count = 0
    total_error_count = 0
    dropped_error_count = 0
    errors: list[ValidationErrorRecord] = []
    seen_reddit_ids: set[str] = set()

    def _record_error(*, line_number: int, code: str, message: str) -> None:
        nonlocal total_error_count, dropped_error_count
        total_error_count += 1
        if len(errors) < max_errors:
            errors.append(ValidationErrorRecord(line_number=line_number, code=code, message=message))
        else:
            dropped_error_count += 1

    for line_number, stripped in _iter_payloads(file_path):
        total_lines += 1
        if not stripped:
            continue
        non_empty_lines += 1

        try:
            payload = json.loads(stripped)
        except json.JSONDecodeError as exc:
            _record_error(line_number=line_number, code="invalid_json", message=exc.msg)
            continue

        if not isinstance(payload, dict):
            _record_error(
                line_number=line_number,
                code="non_object_line",
                message=f"Expected JSON object, got {type(payload).__name__}.",
            )
            continue

        try:
            item = IngestedItem.model_validate(payload)
        except ValidationError as exc:
            _record_error(
                line_number=line_number,
                code="schema_validation_failed",
                message=str(exc),
            )
            continue

        if item.reddit_id is not None:
            if item.reddit_id in seen_reddit_ids:
                duplicate_reddit_id_count += 1
                _record_error(
                    line_number=line_number,
                    code="duplicate_reddit_id",
                    message=f"Duplicate reddit_id '{item.reddit_id}' in dataset.",
                )
                continue
            seen_reddit_ids.add(item.reddit_id)

        valid_item_count += 1

    if non_empty_lines == 0:
        _record_error(
            line_number=0,
            code="empty_dataset",
            message=f"No non-empty JSONL lines found in {file_path}.",
        )

    invalid_line_count = non_empty_lines - valid_item_count
    return ItemsValidationReport(
        schema_version=ITEMS_JSONL_SCHEMA_VERSION,
        input_path=str(file_path),
        total_lines=total_lines,
        non_empty_lines=non_empty_lines,
        valid_item_count=valid_item_count,
        invalid_line_count=invalid_line_count,
        duplicate_reddit_id_count=duplicate_reddit_id_count,
        error_count=total_error_count,
        dropped_error_count=dropped_error_count,
        is_valid=non_empty_lines > 0 and invalid_line_count == 0,
        errors=errors,
    )


def load_items_jsonl(path: str | Path) -> list[IngestedItem]:
    """Load and validate items from a JSONL file, failing on the first bad line.

    Items that carry a `reddit_id` must not repeat it within the file.
    """

    file_path = _require_file(path)
    items: list[IngestedItem] = []
    seen_reddit_ids: set[str] = set()

    for line_number, stripped in _iter_payloads(file_path):
        if not stripped:
            continue

        try:
            payload = json.loads(stripped)
        except json.JSONDecodeError as exc:
            raise ItemsDatasetError(
                f"Invalid JSON on line {line_number} of {file_path}: {exc.msg}"
            ) from exc

        if not isinstance(payload, dict):
            raise ItemsDatasetError(
                f"Expected object on line {line_number} of {file_path}, "
                f"got {type(payload).__name__}."
            )

        try:
            item = IngestedItem.model_validate(payload)
        except ValidationError as exc:
            raise ItemsDatasetError(
                f"Item schema validation failed on line {line_number} of {file_path}: {exc}"
            ) from exc

        if item.reddit_id is not None:
            if item.reddit_id in seen_reddit_ids:
                raise ItemsDatasetError(
                    f"Duplicate reddit_id '{item.reddit_id}' found on line {line_number} "
                    f"of {file_path}."
                )
            seen_reddit_ids.add(item.reddit_id)

        items.append(item)

    if not items:
        raise ItemsDatasetError(f"No items found in file: {file_path}")

    return items
