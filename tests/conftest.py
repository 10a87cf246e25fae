import pytest

from nodeflow.observability import clear_trace_context


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point config lookups at an empty location so a developer's ~/.nodeflow is ignored."""
    monkeypatch.setenv("NODEFLOW_CONFIG", str(tmp_path / "no-such-configuration.json"))
    yield
    clear_trace_context()
