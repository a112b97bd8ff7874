"""Tests for environment configuration and credential selection."""

import json
import random

import pytest

from relays import RelayEndpoint
from suno_config import ClientSettings, Service, load_relays, load_services, pick_service


class TestPickService:
    def test_weighted_choice_skips_zero_weight(self):
        services = [
            Service(api_key="a", weight=0),
            Service(api_key="b", weight=3),
        ]
        rng = random.Random(1)
        picks = {pick_service(services, rng=rng).api_key for _ in range(50)}
        assert picks == {"b"}

    def test_filters_by_model(self):
        services = [
            Service(api_key="other", service_model="suno-4"),
            Service(api_key="mine"),
        ]
        assert pick_service(services).api_key == "mine"

    def test_api_key_locks_choice(self):
        services = [Service(api_key="a"), Service(api_key="b", weight=100)]
        assert pick_service(services, api_key="a").api_key == "a"

    def test_unknown_api_key(self):
        with pytest.raises(ValueError, match="api_key"):
            pick_service([Service(api_key="a")], api_key="zzz")

    def test_no_services(self):
        with pytest.raises(ValueError, match="SUNO_SERVICES"):
            pick_service([])


class TestEnvironment:
    def test_services_from_json(self, monkeypatch):
        monkeypatch.setenv(
            "SUNO_SERVICES",
            json.dumps([{"api_key": "cookie-1", "weight": 2}, {"api_key": "cookie-2"}]),
        )
        services = load_services()
        assert [s.api_key for s in services] == ["cookie-1", "cookie-2"]
        assert services[0].weight == 2
        assert services[1].service_model == "suno-3.5"

    def test_services_fall_back_to_cookie(self, monkeypatch):
        monkeypatch.delenv("SUNO_SERVICES", raising=False)
        monkeypatch.setenv("SUNO_COOKIE", "__client=abc")
        assert load_services() == [Service(api_key="__client=abc")]

    def test_services_must_be_list(self, monkeypatch):
        monkeypatch.setenv("SUNO_SERVICES", json.dumps({"api_key": "x"}))
        with pytest.raises(ValueError, match="JSON list"):
            load_services()

    def test_relays_from_json(self, monkeypatch):
        monkeypatch.setenv("SUNO_RELAYS", json.dumps([{"id": 1, "server": "https://r1.example/"}]))
        assert load_relays() == [RelayEndpoint(id="1", server="https://r1.example")]

    def test_no_relays(self, monkeypatch):
        monkeypatch.delenv("SUNO_RELAYS", raising=False)
        assert load_relays() == []

    def test_settings_from_env(self, monkeypatch):
        monkeypatch.setenv("SUNO_MAX_CONCURRENT_GENERATIONS", "4")
        monkeypatch.setenv("SUNO_REQUEST_TIMEOUT", "120")
        monkeypatch.setenv("SUNO_TOKEN_MAX_AGE", "none")
        monkeypatch.setenv("SUNO_RELAY_API_KEY", "relay-secret")
        settings = ClientSettings.from_env()

        assert settings.max_concurrent_generations == 4
        assert settings.request_timeout == 120.0
        assert settings.token_max_age is None
        assert settings.relay_api_key == "relay-secret"
        assert "relay-secret" not in repr(settings)
