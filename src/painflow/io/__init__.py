"""I/O utilities for reading item datasets."""

from painflow.io.load import (
    ITEMS_JSONL_SCHEMA_VERSION,
    ItemsDatasetError,
    ItemsValidationReport,
    ValidationErrorRecord,
    load_items_jsonl,
    validate_items_jsonl,
)

__all__ = [
    "ITEMS_JSONL_SCHEMA_VERSION",
    "ItemsDatasetError",
    "ItemsValidationReport",
    "ValidationErrorRecord",
    "load_items_jsonl",
    "validate_items_jsonl",
]
