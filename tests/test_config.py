"""Tests for client settings."""

from esrepository import ClientSettings
from esrepository import config


def test_defaults():
    settings = ClientSettings.from_env({})
    assert settings.hosts == ["http://localhost:9200"]
    assert settings.client_kwargs() == {
        "hosts": ["http://localhost:9200"],
        "verify_certs": True,
    }


def test_from_env():
    settings = ClientSettings.from_env({
        "ESREPO_HOSTS": "https://es1:9200, https://es2:9200",
        "ESREPO_USERNAME": "elastic",
        "ESREPO_PASSWORD": "secret",
        "ESREPO_VERIFY_CERTS": "false",
        "ESREPO_TIMEOUT": "2.5",
    })
    assert settings.client_kwargs() == {
        "hosts": ["https://es1:9200", "https://es2:9200"],
        "verify_certs": False,
        "basic_auth": ("elastic", "secret"),
        "request_timeout": 2.5,
    }


def test_api_key_takes_precedence():
    settings = ClientSettings(api_key="key", basic_auth=("u", "p"))
    kwargs = settings.client_kwargs()
    assert kwargs["api_key"] == "key"
    assert "basic_auth" not in kwargs


def test_create_client_passes_settings(monkeypatch):
    captured = {}

    class FakeClient:
        def __init__(self, **kwargs):
            captured.update(kwargs)

    monkeypatch.setattr(config, "AsyncElasticsearch", FakeClient)
    client = config.create_client(ClientSettings(hosts=["http://es:9200"], api_key="k"))

    assert isinstance(client, FakeClient)
    assert captured == {"hosts": ["http://es:9200"], "verify_certs": True, "api_key": "k"}
