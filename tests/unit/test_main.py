from unittest.mock import MagicMock

import pytest
from equate_chat import __main__ as entry


@pytest.fixture
def uvicorn_run(monkeypatch):
    run = MagicMock()
    monkeypatch.setattr(entry.uvicorn, "run", run)
    return run


def test_missing_api_key_aborts_before_serving(monkeypatch, uvicorn_run):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.setattr("equate_chat.config.load_dotenv", lambda: False)

    with pytest.raises(SystemExit) as excinfo:
        entry.main(["--no-open"])

    assert excinfo.value.code == 1
    uvicorn_run.assert_not_called()


def test_serves_app_on_requested_port(monkeypatch, uvicorn_run):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

    entry.main(["--no-open", "--port", "8123", "--host", "127.0.0.1"])

    uvicorn_run.assert_called_once()
    assert uvicorn_run.call_args.kwargs == {"host": "127.0.0.1", "port": 8123}
