"""Process-wide parameters read from a YAML settings file."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import numpy as np
import yaml

log = logging.getLogger(__name__)


class _SettingsLoader(yaml.SafeLoader):
    """Safe loader that also understands matrices written with the opencv-matrix tag."""


def _construct_matrix(loader: yaml.SafeLoader, node: yaml.Node) -> np.ndarray:
    spec = loader.construct_mapping(node, deep=True)
    try:
        rows, cols, data = int(spec["rows"]), int(spec["cols"]), spec["data"]
        return np.array(data, dtype=float).reshape(rows, cols)
    except (KeyError, TypeError, ValueError) as exc:
        raise yaml.constructor.ConstructorError(
            None, None, f"malformed matrix: {exc}", node.start_mark
        ) from None


_SettingsLoader.add_constructor("tag:yaml.org,2002:opencv-matrix", _construct_matrix)


class Config:
    """Single shared set of parameters: load with set_parameter_file, read with get."""

    _values: dict[str, Any] | None = None

    @classmethod
    def set_parameter_file(cls, filename) -> None:
        """Load the settings file, replacing any parameters loaded before."""
        cls._values = None
        try:
            text = Path(filename).read_text(encoding="utf-8")
        except FileNotFoundError:
            log.error("parameter file %s does not exist.", filename)
            raise
        # The version directive of these files is not valid YAML syntax.
        body = "\n".join(line for line in text.splitlines() if not line.startswith("%YAML"))
        try:
            data = yaml.load(body, Loader=_SettingsLoader)
        except yaml.YAMLError as exc:
            raise ValueError(f"cannot parse parameter file {filename}: {exc}") from None
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValueError(f"parameter file {filename} does not hold a mapping")
        cls._values = data

    @classmethod
    def get(cls, key: str) -> Any:
        """Value of a parameter from the loaded file."""
        if cls._values is None:
            raise RuntimeError("no parameter file loaded")
        try:
            return cls._values[key]
        except KeyError:
            raise KeyError(f"no parameter named {key!r}") from None