"""Tests for the Pulumi program entry point."""

import importlib.util

import pulumi
import pytest
import yaml

from conftest import CONFIG_PATH, MOCKS, STACK_VALUES


def _load_program():
    spec = importlib.util.spec_from_file_location("khan_program", CONFIG_PATH.parent / "__main__.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def stack_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(pulumi.Config, "get", lambda self, key, default=None: STACK_VALUES.get(key, default))


def test_failed_checks_abort_before_registration(tmp_path, monkeypatch, raw_config, stack_settings) -> None:
    firewall = next(r for r in raw_config["gcp_resources"] if r["type"] == "compute.Firewall")
    firewall["args"]["allows"][0]["ports"] = ["80"]
    (tmp_path / "config.yaml").write_text(yaml.safe_dump(raw_config))
    monkeypatch.chdir(tmp_path)

    errors = []
    monkeypatch.setattr(pulumi.log, "error", lambda message, *args, **kwargs: errors.append(message))
    registered_before = len(MOCKS.registered)

    program = _load_program()
    with pytest.raises(ValueError, match="1 configuration check"):
        program.main()

    assert errors == ["No firewall rule allows tcp:5000 from 0.0.0.0/0"]
    assert len(MOCKS.registered) == registered_before


def test_missing_stack_variable_aborts(tmp_path, monkeypatch, raw_config) -> None:
    monkeypatch.setattr(pulumi.Config, "get", lambda self, key, default=None: None)
    (tmp_path / "config.yaml").write_text(yaml.safe_dump(raw_config))
    monkeypatch.chdir(tmp_path)
    registered_before = len(MOCKS.registered)

    with pytest.raises(ValueError, match="project_id"):
        _load_program().main()

    assert len(MOCKS.registered) == registered_before
