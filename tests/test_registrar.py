"""End-to-end registration tests over the in-process bus and a loopback server."""

import json
import socket
import threading

import pytest

from beacon.announce import ANNOUNCE_SUBJECT, DISCOVER_SUBJECT
from beacon.config import ComponentConfig
from beacon.errors import TransportSetupError, ValidationError
from beacon.registrar import Registrar

from conftest import FakeSampler, auth_headers, fetch


def _free_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class TestAnnouncement:

    def test_publishes_an_announcement(self, registrar, bus, options):
        announced = []
        bus.subscribe(ANNOUNCE_SUBJECT, announced.append)
        registrar.register(options)
        assert len(announced) == 1
        assert json.loads(announced[0].data)["type"] == "type"

    def test_listens_for_discovery(self, registrar, bus, options):
        registrar.register(options)
        body = json.loads(bus.request(DISCOVER_SUBJECT).data)
        assert body["type"] == "type"
        assert body["host"] == registrar.host

    def test_index_prefixes_uuid(self, registrar, bus, options):
        registrar.register({**options, "index": 5})
        body = json.loads(bus.request(DISCOVER_SUBJECT).data)
        assert body["type"] == "type"
        assert body["index"] == 5
        assert body["uuid"].startswith("5-")

    def test_register_returns_discover_payload(self, registrar, options):
        payload = registrar.register(options)
        assert payload["uuid"] == registrar.identity.uuid
        assert payload["credentials"] == list(registrar.credentials)


class TestRegistrationInput:

    def test_config_is_rejected(self, registrar, options):
        with pytest.raises(ValueError, match="(?i)config"):
            registrar.register({**options, "type": "suppress_test", "config": "fake config"})
        assert registrar.varz is None
        assert not registrar.registered
        assert registrar.port is None

    def test_config_rejection_leaves_prior_varz_untouched(self, registrar, options):
        registrar.register(options)
        with pytest.raises(ValidationError):
            registrar.register({**options, "config": "fake config"})
        assert "config" not in registrar.varz

    def test_missing_bus(self, registrar):
        with pytest.raises(ValidationError):
            registrar.register({"type": "type"})

    def test_missing_type(self, registrar, bus):
        with pytest.raises(ValidationError):
            registrar.register({"nats": bus})

    def test_second_register_rejected(self, registrar, options):
        registrar.register(options)
        with pytest.raises(ValidationError, match="Already registered"):
            registrar.register(options)

    def test_accepts_component_config(self, registrar, bus):
        config = ComponentConfig(type="router", bus=bus, host="127.0.0.1", bind="127.0.0.1")
        registrar.register(config)
        assert registrar.varz["type"] == "router"

    def test_metadata_is_published_in_varz(self, registrar, options):
        registrar.register({**options, "zone": "east"})
        assert registrar.updated_varz()["zone"] == "east"


class TestProcessInformation:

    def test_memory_information(self, bus, options):
        sampler = FakeSampler(active=75, wired=25, inactive=660, free=340)
        registrar = Registrar(sampler=sampler)
        try:
            registrar.register(options)
            varz = registrar.updated_varz()
            assert varz["mem_used_bytes"] == 100
            assert varz["mem_free_bytes"] == 1000
        finally:
            registrar.shutdown()

    def test_cpu_information(self, bus, options):
        registrar = Registrar(sampler=FakeSampler(load=2.0))
        try:
            registrar.register(options)
            assert registrar.updated_varz()["cpu_load_avg"] == 2.0
        finally:
            registrar.shutdown()

    def test_invalidate_picks_up_new_readings(self, registrar, sampler, options):
        registrar.register({**options, "varz_interval": 60})
        assert registrar.updated_varz()["cpu_load_avg"] == 2.0
        sampler.load = 3.5
        assert registrar.updated_varz()["cpu_load_avg"] == 2.0
        registrar.stats.invalidate()
        assert registrar.updated_varz()["cpu_load_avg"] == 3.5


class TestHttpEndpoint:

    def test_port_override(self, registrar, options):
        port = _free_port()
        registrar.register({**options, "port": port})
        assert int(registrar.varz["host"].split(":")[-1]) == port
        status, _, _ = fetch(registrar.host, "/varz", auth_headers(registrar.credentials))
        assert status == 200

    def test_port_in_use_is_fatal(self, bus, options):
        with socket.socket() as s:
            s.bind(("127.0.0.1", 0))
            s.listen()
            registrar = Registrar(sampler=FakeSampler())
            with pytest.raises(TransportSetupError):
                registrar.register({**options, "port": s.getsockname()[1]})
            assert not registrar.registered

    def test_varz_not_truncated_on_second_request(self, registrar, options):
        registrar.register(options)
        headers = auth_headers(registrar.credentials)

        status, resp_headers, body = fetch(registrar.host, "/varz", headers)
        assert status == 200
        content_length = int(resp_headers["Content-Length"])
        json.loads(body.decode("utf-8"))

        registrar.varz["var"] = "♳♴♵♶♷"
        var = registrar.varz["var"]
        assert len(var) != len(var.encode("utf-8"))

        status, resp_headers, body = fetch(registrar.host, "/varz", headers)
        assert status == 200
        content_length2 = int(resp_headers["Content-Length"])
        assert content_length2 == len(body)
        assert content_length2 >= content_length + len(var)
        json.loads(body.decode("utf-8"))

    def test_healthz_not_truncated_on_second_request(self, registrar, options):
        registrar.register(options)
        headers = auth_headers(registrar.credentials)

        status, _, body = fetch(registrar.host, "/healthz", headers)
        assert status == 200
        assert body == b"ok\n"

        registrar.healthz = "∑:healthz†"
        status, resp_headers, body = fetch(registrar.host, "/healthz", headers)
        assert status == 200
        content_length2 = int(resp_headers["Content-Length"])
        assert content_length2 == len(body)
        assert content_length2 == len("∑:healthz†".encode("utf-8"))
        assert body.decode("utf-8") == "∑:healthz†"

    def test_healthz_must_be_str(self, registrar):
        with pytest.raises(TypeError):
            registrar.healthz = b"ok"

    def test_specified_auth(self, registrar, options):
        registrar.register({**options, "user": "foo", "password": "bar"})
        assert registrar.varz["credentials"] == ["foo", "bar"]
        status, _, _ = fetch(registrar.host, "/varz", auth_headers(("foo", "bar")))
        assert status == 200

    def test_unauthorized_request(self, registrar, options):
        registrar.register(options)
        status, _, _ = fetch(registrar.host, "/varz")
        assert status == 401

    def test_malformed_authorization_header(self, registrar, options):
        registrar.register(options)
        status, _, _ = fetch(registrar.host, "/varz", {"Authorization": "foo"})
        assert status == 400


def test_shutdown_stops_discovery_and_http(bus, options):
    registrar = Registrar(sampler=FakeSampler())
    registrar.register(options)
    host = registrar.host
    registrar.shutdown()
    registrar.shutdown()
    with pytest.raises(TimeoutError):
        bus.request(DISCOVER_SUBJECT, timeout=0.05)
    with pytest.raises(OSError):
        fetch(host, "/healthz")


def test_numeric_password_is_rejected_before_binding(registrar, options):
    with pytest.raises(ValidationError, match="password"):
        registrar.register({**options, "user": "foo", "password": 1234})
    assert not registrar.registered
    assert registrar.port is None


def test_announce_subscriber_may_shut_down_registrar(bus, options):
    registrar = Registrar(sampler=FakeSampler())
    bus.subscribe(ANNOUNCE_SUBJECT, lambda msg: registrar.shutdown())
    result = {}

    def run():
        result["payload"] = registrar.register(options)

    t = threading.Thread(target=run, daemon=True)
    t.start()
    t.join(timeout=5)

    assert not t.is_alive()
    assert result["payload"]["type"] == "type"
    assert registrar.port is None
    with pytest.raises(TimeoutError):
        bus.request(DISCOVER_SUBJECT, timeout=0.05)
