import marketplace.__main__ as entrypoint

def test_main_runs_uvicorn_with_env(monkeypatch):
    calls = {}
    monkeypatch.setattr(entrypoint.uvicorn, "run", lambda app, **kw: calls.update(app=app, **kw))
    monkeypatch.setenv("PORT", "9001")
    monkeypatch.setenv("UVICORN_RELOAD", "true")
    monkeypatch.delenv("LOG_LEVEL", raising=False)

    entrypoint.main()

    assert calls["app"] == "marketplace.asgi:app"
    assert calls["port"] == 9001
    assert calls["reload"] is True
    assert calls["log_level"] == "info"
