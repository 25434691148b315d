"""Submitter profile loader for 837P generation.

Loads ``EDI837Config`` settings from YAML or JSON files so interchange ids
and contacts can be kept alongside deployment configuration.

Example (YAML):
    submitter:
      sender_id: "123456789"
      receiver_id: "CLEARINGHOUSE"
      submitter_name: "ACME CHIROPRACTIC"
      submitter_id: "123456789"
      usage_indicator: "T"
"""

from __future__ import annotations

import json
import logging
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from .edi_837 import EDI837Config

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("sender_id", "receiver_id", "submitter_name", "submitter_id")
USAGE_INDICATORS = ("P", "T")


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.errors = errors or []


def load_submitter_config(file_path: str | Path) -> EDI837Config:
    """Load a submitter profile from a single file.

    Args:
        file_path: Path to YAML or JSON config file

    Returns:
        EDI837Config built from the file

    Raises:
        ConfigValidationError: If validation fails
        FileNotFoundError: If file doesn't exist
        ValueError: If the file extension is not supported
    """
    path = Path(file_path)

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    suffix = path.suffix.lower()
    with open(path, encoding="utf-8") as f:
        if suffix in (".yaml", ".yml"):
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigValidationError(
                    f"Invalid YAML in {path.name}", [{"file": str(path), "error": str(e)}]
                ) from e
        elif suffix == ".json":
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigValidationError(
                    f"Invalid JSON in {path.name}", [{"file": str(path), "error": str(e)}]
                ) from e
        else:
            raise ValueError(f"Unsupported config format: {suffix}")

    config = parse_submitter_config(data, source=path.name)
    logger.info(f"Loaded submitter profile {config.submitter_id} from {path.name}")
    return config


def parse_submitter_config(data: Any, source: str = "<dict>") -> EDI837Config:
    """Validate a mapping (optionally nested under ``submitter``) into a config."""
    if isinstance(data, dict) and isinstance(data.get("submitter"), dict):
        data = data["submitter"]
    if not isinstance(data, dict):
        raise ConfigValidationError(
            f"Submitter config in {source} must be a mapping",
            [{"file": source, "error": "expected a mapping"}],
        )

    errors: list[dict[str, Any]] = []
    for name in REQUIRED_FIELDS:
        if not str(data.get(name) or "").strip():
            errors.append({"file": source, "field": name, "error": "required"})

    usage = str(data.get("usage_indicator", "P")).upper()
    if usage not in USAGE_INDICATORS:
        errors.append(
            {"file": source, "field": "usage_indicator", "error": f"must be one of {USAGE_INDICATORS}"}
        )

    known = {f.name for f in fields(EDI837Config)}
    unknown = sorted(set(data) - known)
    if unknown:
        logger.warning(f"Ignoring unknown submitter config keys in {source}: {unknown}")

    if errors:
        raise ConfigValidationError(f"Invalid submitter config in {source}", errors)

    values = {k: str(v) for k, v in data.items() if k in known and v is not None}
    values["usage_indicator"] = usage
    return EDI837Config(**values)
