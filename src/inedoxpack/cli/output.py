"""Result output for the inedoxpack CLI.

stdout carries command results; stderr carries progress and diagnostics.
"""

import json
import sys
from pathlib import Path
from typing import Any, Literal, TextIO

from pydantic import BaseModel

OutputFormat = Literal["json", "human"]

# Display labels for extension metadata fields in human output
FIELD_LABELS = {
    "name": "Name",
    "version": "Version",
    "sdk_version": "SDK version",
    "target_framework": "Framework",
    "products": "Products",
    "title": "Title",
    "description": "Description",
    "icon_url": "Icon",
    "containing_path": "Location",
}


class JSONEncoder(json.JSONEncoder):
    """JSON encoder for paths and pydantic models."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Path):
            return str(obj)
        if isinstance(obj, BaseModel):
            return obj.model_dump(mode="json", by_alias=True, exclude_none=True)
        return super().default(obj)


def _as_dict(data: dict[str, Any] | BaseModel) -> dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", by_alias=True, exclude_none=True)
    return data


def output_json(data: dict[str, Any] | BaseModel, file: TextIO | None = None) -> None:
    """Write a result as indented JSON.

    Args:
        data: Result dict or pydantic model
        file: Output stream (defaults to stdout)
    """
    file = file or sys.stdout
    json.dump(_as_dict(data), file, cls=JSONEncoder, ensure_ascii=False, indent=2)
    file.write("\n")
    file.flush()


def output_human(data: dict[str, Any] | BaseModel, file: TextIO | None = None) -> None:
    """Write a result as aligned "Label: value" lines.

    Known extension fields come first under their display labels; unset
    fields are omitted and lists are comma-joined.
    """
    file = file or sys.stdout
    values = _as_dict(data)

    keys = [k for k in FIELD_LABELS if k in values]
    keys += [k for k in values if k not in FIELD_LABELS]

    rows = []
    for key in keys:
        value = values[key]
        if value is None or value == []:
            continue
        if isinstance(value, list):
            value = ", ".join(str(v) for v in value)
        rows.append((FIELD_LABELS.get(key, key), value))

    width = max((len(label) for label, _ in rows), default=0)
    for label, value in rows:
        file.write(f"{label + ':':<{width + 1}} {value}\n")
    file.flush()


def output(data: dict[str, Any] | BaseModel, format: OutputFormat = "json", **kwargs: Any) -> None:
    """Write a command result in the requested format."""
    if format == "human":
        output_human(data, **kwargs)
    else:
        output_json(data, **kwargs)
