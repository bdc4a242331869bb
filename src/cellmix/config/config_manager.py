#!/usr/bin/env python
# coding: utf-8

"""
Configuration manager for reference-free cell-mixture analyses.

Provides a thread-safe singleton holding the default parameters of the
factorisation, bootstrap, selection and execution stages, validated with
pydantic and loadable from JSON, YAML, TOML or Python-literal files.
"""

import ast
import json
import os
import tempfile
from contextlib import contextmanager
from copy import deepcopy
from importlib.resources import files
from pathlib import Path
from threading import RLock
from typing import Any, Dict, List, Optional, Union

import toml
import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from cellmix.utils.logger import logger

# Pydantic Schemas


class FactorizationSettings(BaseModel):
    """Settings for fitting candidate mixture models."""

    ks: List[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5])
    max_iterations: int = Field(10, ge=1, description="Alternating rounds per fit")
    init: str = Field("ward", pattern="^(ward|svd)$")
    linkage_metric: str = "euclidean"
    tol: Optional[float] = Field(None, gt=0.0)
    large_ok: bool = False

    @field_validator("ks")
    @classmethod
    def validate_ks(cls, v) -> List[int]:
        if not v:
            raise ValueError("At least one candidate K must be configured")
        if any(k < 1 for k in v):
            raise ValueError(f"Candidate K values must be positive, got {v}")
        return sorted(set(v))


class BootstrapSettings(BaseModel):
    """Settings for the bootstrap deviance evaluation."""

    replicates: int = Field(100, ge=1, description="Number of resamples R")
    refit_iterations: int = Field(5, ge=1)
    epsilon: float = Field(1e-4, gt=0.0, lt=0.5)
    seed: Optional[int] = Field(None, ge=0)

    @field_validator("replicates")
    @classmethod
    def validate_replicates(cls, v) -> int:
        if v < 10:
            logger.warning(
                f"Only {v} bootstrap replicate(s); trimmed means will be unstable"
            )
        return v


class SelectionSettings(BaseModel):
    """Settings for choosing K."""

    trim_fraction: float = Field(0.25, ge=0.0, lt=0.5)


class ExecutionSettings(BaseModel):
    """Parallel execution settings."""

    n_jobs: int = Field(1, ge=-1)

    @field_validator("n_jobs")
    @classmethod
    def validate_n_jobs(cls, v) -> int:
        if v == 0:
            raise ValueError("n_jobs must be a positive integer or -1")
        return v


class CellMixConfigModel(BaseModel):
    """Complete configuration model."""

    factorization: FactorizationSettings = Field(
        default_factory=FactorizationSettings
    )
    bootstrap: BootstrapSettings = Field(default_factory=BootstrapSettings)
    selection: SelectionSettings = Field(default_factory=SelectionSettings)
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)


SECTIONS = ("factorization", "bootstrap", "selection", "execution")


# Utility Functions


def _atomic_write(path: Union[str, Path], content: Union[str, bytes]) -> None:
    """
    Write content to a file atomically using a temporary file.

    Parameters
    ----------
    path : str or Path
        Destination file path.
    content : str or bytes
        Content to write.

    Raises
    ------
    OSError
        If the write operation fails.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    content_bytes = content.encode("utf-8") if isinstance(content, str) else content

    tmp_file = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="wb", dir=str(path.parent), delete=False
        ) as tmp:
            tmp_file = Path(tmp.name)
            tmp.write(content_bytes)
            tmp.flush()
            os.fsync(tmp.fileno())

        os.replace(str(tmp_file), str(path))
        logger.debug(f"Successfully wrote file: {path}")

    except OSError as e:
        logger.error(f"Failed to write file {path}: {e}")
        if tmp_file and tmp_file.exists():
            tmp_file.unlink()
        raise


def _read_python_literal(path: Path) -> Dict[str, Any]:
    """
    Parse a Python literal dictionary from a file.

    Raises
    ------
    ValueError
        If the file doesn't contain a valid dictionary.
    """
    try:
        text = path.read_text(encoding="utf-8")
        obj = ast.literal_eval(text)
    except (SyntaxError, ValueError) as e:
        raise ValueError(f"Failed to parse Python literal from {path}: {e}")

    if not isinstance(obj, dict):
        raise ValueError(f"File {path} must contain a dictionary at top level")

    return obj


def _deep_update(base: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    """
    Recursively update base dictionary with values from updates.

    Parameters
    ----------
    base : dict
        Base dictionary (modified in place).
    updates : dict
        Updates to apply.

    Returns
    -------
    dict
        The updated base dictionary.
    """
    for key, value in updates.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_update(base[key], value)
        else:
            base[key] = value
    return base


# CellMixConfig Singleton Class
class CellMixConfig:
    """
    Thread-safe singleton for analysis defaults.

    Values are read from the packaged ``defaults.json`` (or one in the working
    directory), optionally overridden by a user file.

    Parameters
    ----------
    config_file : str or Path, optional
        Configuration file to merge on initialization.
    """

    _instance: Optional["CellMixConfig"] = None
    _lock = RLock()

    def __new__(cls, config_file: Optional[Union[str, Path]] = None):
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
            return cls._instance

    def __init__(self, config_file: Optional[Union[str, Path]] = None):
        if hasattr(self, "_initialized") and self._initialized:
            return

        self._cfg_path: Optional[Path] = None
        self._data_lock = RLock()
        self._raw: Dict[str, Any] = {}
        self.model: Optional[CellMixConfigModel] = None

        self._load_sidecar_config()

        if config_file is not None:
            try:
                self.load_file(config_file)
            except (OSError, ValueError) as e:
                logger.error(f"Failed to load config file {config_file}: {e}")
                raise

        self._validate_and_set(self._raw)
        self._initialized = True

    def _load_sidecar_config(self) -> None:
        """Load defaults from a sidecar ``defaults.json``."""
        candidates = [
            files(__package__) / "defaults.json",
            Path.cwd() / "defaults.json",
        ]
        for sidecar_path in candidates:
            if sidecar_path.is_file():
                self._raw = json.loads(sidecar_path.read_text(encoding="utf-8"))
                logger.debug(f"Loaded sidecar config from {sidecar_path}")
                return
        raise FileNotFoundError(
            "No defaults.json found in either config or working directory"
        )

    @contextmanager
    def _transaction(self):
        """
        Context manager for atomic configuration updates.

        The raw dictionary and the validated model are restored if the body
        raises.
        """
        with self._data_lock:
            backup_raw = deepcopy(self._raw)
            backup_model = self.model
            try:
                yield
            except Exception:
                self._raw = backup_raw
                self.model = backup_model
                raise

    # Loading and Saving
    def load_file(self, path: Union[str, Path]) -> None:
        """
        Merge configuration from a file over the current values.

        Supported formats: JSON, YAML, TOML, Python literal.

        Raises
        ------
        FileNotFoundError
            If file doesn't exist.
        ValueError
            If file format is unsupported or invalid.
        ValidationError
            If configuration fails validation.
        """
        path = Path(path).resolve()

        if not path.exists():
            raise FileNotFoundError(
                f"Configuration file not found: {path}\n"
                f"Current directory: {Path.cwd()}"
            )

        if not path.is_file():
            raise ValueError(f"Path is not a file: {path}")

        logger.info(f"Loading configuration from {path}")
        loaded = self._load_by_format(path, path.suffix.lower())

        if not isinstance(loaded, dict):
            raise ValueError(f"Configuration must be a dictionary, got {type(loaded)}")

        unknown = set(loaded) - set(SECTIONS)
        if unknown:
            raise ValueError(f"Unknown configuration section(s): {sorted(unknown)}")

        with self._transaction():
            merged = deepcopy(self._raw)
            _deep_update(merged, loaded)
            self._validate_and_set(merged)
            self._cfg_path = path

    @staticmethod
    def _load_by_format(path: Path, ext: str) -> Dict[str, Any]:
        """Load configuration based on file format."""
        text = path.read_text(encoding="utf-8")
        if ext == ".json":
            return json.loads(text)
        elif ext in (".yml", ".yaml"):
            return yaml.safe_load(text)
        elif ext == ".toml":
            return toml.loads(text)
        elif ext in (".py", ".txt"):
            return _read_python_literal(path)
        else:
            raise ValueError(f"Unsupported file extension: {ext}")

    def save_file(self, path: Union[str, Path], fmt: Optional[str] = None) -> None:
        """
        Save current configuration to a file.

        Parameters
        ----------
        path : str or Path
            Destination file path.
        fmt : str, optional
            Format (json, yaml, toml). Inferred from extension if not provided.

        Raises
        ------
        ValueError
            If format is unsupported.
        """
        path = Path(path)
        fmt = (fmt or path.suffix.lstrip(".")).lower()

        with self._data_lock:
            data = self.to_dict()

        if fmt in ("json", ""):
            content = json.dumps(data, indent=2)
        elif fmt in ("yml", "yaml"):
            content = yaml.safe_dump(data, sort_keys=False)
        elif fmt == "toml":
            # TOML has no null; unset optional values are omitted
            content = toml.dumps(
                {
                    s: {k: v for k, v in vals.items() if v is not None}
                    for s, vals in data.items()
                }
            )
        else:
            raise ValueError(f"Unsupported format: {fmt}")

        _atomic_write(path, content)
        logger.info(f"Configuration saved to {path}")
        self._cfg_path = path

    # Validation
    def _validate_and_set(self, raw: Dict[str, Any]) -> None:
        """
        Validate configuration and update internal state.

        Raises
        ------
        ValidationError
            If validation fails.
        """
        try:
            validated = CellMixConfigModel(**raw)
        except ValidationError as e:
            logger.error(f"Configuration validation failed: {e}")
            raise

        with self._data_lock:
            self.model = validated
            self._raw = raw

    # Query Methods
    def get(self, section: str) -> Dict[str, Any]:
        """
        Return one configuration section as a dictionary.

        Raises
        ------
        KeyError
            If the section is unknown.
        """
        if section not in SECTIONS:
            raise KeyError(f"Unknown configuration section: {section!r}")
        with self._data_lock:
            return getattr(self.model, section).model_dump()

    def update(self, section: str, **values: Any) -> None:
        """
        Change values of one section; the change is rolled back if invalid.

        Raises
        ------
        KeyError
            If the section is unknown.
        ValidationError
            If the new values fail validation.
        """
        if section not in SECTIONS:
            raise KeyError(f"Unknown configuration section: {section!r}")
        with self._transaction():
            merged = deepcopy(self._raw)
            _deep_update(merged, {section: values})
            self._validate_and_set(merged)
            logger.info(f"Updated {section} settings: {values}")

    def reload(self) -> None:
        """Reload configuration from the last loaded file."""
        if self._cfg_path:
            self.load_file(self._cfg_path)
            logger.info(f"Reloaded configuration from {self._cfg_path}")
        else:
            self._validate_and_set(self._raw)
            logger.info("Re-validated configuration (no file path)")

    def to_dict(self) -> Dict[str, Any]:
        """Export current configuration as a dictionary."""
        with self._data_lock:
            return self.model.model_dump()


# Global Singleton Access
_global_config: Optional[CellMixConfig] = None


def get_config() -> CellMixConfig:
    """
    Get the global CellMixConfig singleton instance.

    Returns
    -------
    CellMixConfig
        The global configuration instance.
    """
    global _global_config
    if _global_config is None:
        _global_config = CellMixConfig()
    return _global_config


def reset_config() -> None:
    """Reset the global configuration instance (primarily for testing)."""
    global _global_config
    _global_config = None
    with CellMixConfig._lock:
        CellMixConfig._instance = None
    logger.debug("Global configuration reset")


# Convenience Functions


def load_file(path: Union[str, Path]) -> None:
    """Load configuration from a file. See CellMixConfig.load_file()."""
    get_config().load_file(path=path)


def save_file(path: Union[str, Path], fmt: Optional[str] = None) -> None:
    """Save configuration to a file. See CellMixConfig.save_file()."""
    get_config().save_file(path=path, fmt=fmt)


def update_settings(section: str, **values: Any) -> None:
    """Change settings of one section. See CellMixConfig.update()."""
    get_config().update(section, **values)


def reload() -> None:
    """Reload configuration. See CellMixConfig.reload()."""
    get_config().reload()
