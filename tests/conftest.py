from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def _isolate_home(tmp_path_factory, monkeypatch):
    """Keep session configs and logs out of the real user directories."""
    base = tmp_path_factory.mktemp("home")
    monkeypatch.setenv("HOME", str(base))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(base / ".config"))
    monkeypatch.setenv("XDG_STATE_HOME", str(base / ".local" / "state"))
    monkeypatch.setenv("INTERACTIVE_FEEDBACK_CONFIG_DIR", str(base / "config"))
    monkeypatch.setenv("INTERACTIVE_FEEDBACK_NO_BROWSER", "1")
    monkeypatch.setattr(Path, "home", lambda: base)


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    project = tmp_path / "proj"
    project.mkdir()
    return project
