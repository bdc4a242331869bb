#!/usr/bin/env python
# coding: utf-8


"""
Tests for cellmix.config.config_manager.

Covers:
- Packaged defaults and the singleton.
- Loading JSON, YAML, TOML and Python-literal files.
- Validation, rollback of invalid changes and saving.
"""


import json
import os
import tempfile
from pathlib import Path

import pytest
from pydantic import ValidationError

from cellmix.config.config_manager import (
    CellMixConfig,
    _atomic_write,
    _read_python_literal,
    get_config,
    reset_config,
    update_settings,
)


class TestConfigManager:
    """Test configuration management functionality"""

    def setup_method(self):
        reset_config()

    def teardown_method(self):
        reset_config()

    def test_config_singleton(self):
        cfg1 = CellMixConfig()
        cfg2 = CellMixConfig()
        assert cfg1 is cfg2

    def test_packaged_defaults(self):
        cfg = get_config()
        assert cfg.get("factorization")["ks"] == [1, 2, 3, 4, 5]
        assert cfg.get("factorization")["init"] == "ward"
        assert cfg.get("bootstrap")["replicates"] == 100
        assert cfg.get("bootstrap")["epsilon"] == pytest.approx(1e-4)
        assert cfg.get("selection")["trim_fraction"] == 0.25
        assert cfg.get("execution")["n_jobs"] == 1

    def test_unknown_section(self):
        with pytest.raises(KeyError):
            get_config().get("plotting")

    def test_update_normalises_ks(self):
        update_settings("factorization", ks=[3, 1, 3])
        assert get_config().get("factorization")["ks"] == [1, 3]

    def test_invalid_update_rolled_back(self):
        cfg = get_config()
        with pytest.raises(ValidationError):
            cfg.update("selection", trim_fraction=0.6)
        assert cfg.get("selection")["trim_fraction"] == 0.25

    def test_invalid_n_jobs(self):
        with pytest.raises(ValidationError):
            update_settings("execution", n_jobs=0)

    def test_invalid_init(self):
        with pytest.raises(ValidationError):
            update_settings("factorization", init="kmeans")

    def test_atomic_write_success(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "test.txt"
            _atomic_write(path, "test content")
            assert path.read_text() == "test content"

    def test_atomic_write_creates_directory(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "subdir" / "test.txt"
            _atomic_write(path, "content")
            assert path.exists()

    def test_read_python_literal_valid(self):
        with tempfile.NamedTemporaryFile(mode="w", suffix=".py", delete=False) as f:
            f.write("{'selection': {'trim_fraction': 0.1}}")
            f.flush()
            result = _read_python_literal(Path(f.name))
            assert result == {"selection": {"trim_fraction": 0.1}}
            os.unlink(f.name)

    def test_read_python_literal_invalid(self):
        with tempfile.NamedTemporaryFile(mode="w", suffix=".py", delete=False) as f:
            f.write("not a dict")
            f.flush()
            with pytest.raises(
                ValueError, match="Failed to parse Python literal from .+"
            ):
                _read_python_literal(Path(f.name))
            os.unlink(f.name)

    def test_load_json(self, tmp_path):
        path = tmp_path / "cfg.json"
        path.write_text(json.dumps({"bootstrap": {"replicates": 50, "seed": 3}}))
        cfg = get_config()
        cfg.load_file(path)
        assert cfg.get("bootstrap")["replicates"] == 50
        assert cfg.get("bootstrap")["seed"] == 3
        assert cfg.get("bootstrap")["refit_iterations"] == 5

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text("factorization:\n  init: svd\n  max_iterations: 20\n")
        cfg = get_config()
        cfg.load_file(path)
        assert cfg.get("factorization")["init"] == "svd"
        assert cfg.get("factorization")["max_iterations"] == 20

    def test_load_toml(self, tmp_path):
        path = tmp_path / "cfg.toml"
        path.write_text("[execution]\nn_jobs = -1\n")
        cfg = get_config()
        cfg.load_file(path)
        assert cfg.get("execution")["n_jobs"] == -1

    def test_load_python_literal(self, tmp_path):
        path = tmp_path / "cfg.py"
        path.write_text("{'selection': {'trim_fraction': 0.1}}")
        cfg = get_config()
        cfg.load_file(path)
        assert cfg.get("selection")["trim_fraction"] == 0.1

    def test_load_unknown_section(self, tmp_path):
        path = tmp_path / "cfg.json"
        path.write_text(json.dumps({"platforms": {}}))
        with pytest.raises(ValueError, match="Unknown configuration section"):
            get_config().load_file(path)

    def test_load_unsupported_extension(self, tmp_path):
        path = tmp_path / "cfg.csv"
        path.write_text("a,b\n")
        with pytest.raises(ValueError, match="Unsupported file extension"):
            get_config().load_file(path)

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_config().load_file(tmp_path / "missing.json")

    def test_invalid_file_rolled_back(self, tmp_path):
        path = tmp_path / "cfg.json"
        path.write_text(json.dumps({"bootstrap": {"epsilon": 0.9}}))
        cfg = get_config()
        with pytest.raises(ValidationError):
            cfg.load_file(path)
        assert cfg.get("bootstrap")["epsilon"] == pytest.approx(1e-4)

    @pytest.mark.parametrize("suffix", ["json", "yaml", "toml"])
    def test_save_and_load(self, tmp_path, suffix):
        cfg = get_config()
        cfg.update("bootstrap", replicates=25)
        path = tmp_path / f"saved.{suffix}"
        cfg.save_file(path)
        assert path.exists()
        reset_config()
        cfg2 = get_config()
        cfg2.load_file(path)
        assert cfg2.get("bootstrap")["replicates"] == 25
        assert cfg2.get("factorization")["tol"] is None

    def test_save_unsupported_format(self, tmp_path):
        with pytest.raises(ValueError, match="Unsupported format"):
            get_config().save_file(tmp_path / "cfg.ini")

    def test_reload_from_file(self, tmp_path):
        path = tmp_path / "cfg.json"
        path.write_text(json.dumps({"selection": {"trim_fraction": 0.2}}))
        cfg = get_config()
        cfg.load_file(path)
        path.write_text(json.dumps({"selection": {"trim_fraction": 0.3}}))
        cfg.reload()
        assert cfg.get("selection")["trim_fraction"] == 0.3
