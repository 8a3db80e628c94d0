import pytest

from collab_quality_gate.config import reset_safety_policy


@pytest.fixture(autouse=True)
def isolated_config(tmp_path_factory, monkeypatch):
    """Point config lookups at an empty directory so a developer's .qgate is never read."""
    config_dir = tmp_path_factory.mktemp("qgate-config")
    monkeypatch.setenv("QGATE_PROJECT_DIR", str(config_dir))
    reset_safety_policy()
    yield config_dir
    reset_safety_policy()
