"""Tests for FastAPI web API.

Uses TestClient against an app whose services use an in-memory
configuration source, a script toolchain and simulated discovery.
"""

import asyncio
import time
from collections.abc import Iterator
from pathlib import Path

import httpx
import pytest
import respx
import serial
from fastapi.testclient import TestClient

from conftest import SLOW_SCRIPT, SUCCESS_SCRIPT, StaticSource
from rc_configurator import __version__
from rc_configurator.config import Settings
from rc_configurator.events.bus import EventBus
from rc_configurator.events.models import SerialLine
from rc_configurator.firmware.checkout import FirmwareCheckout
from rc_configurator.parameters.source import ConfigurationError
from rc_configurator.services import build_services
from rc_configurator.targets.http import HttpTargetsLoader
from web.app import create_app
from web.routers.events import format_sse, stream_events

RELEASE_URL = (
    "https://api.github.com/repos/ExpressLRS/ExpressLRS-Configurator/releases/latest"
)
TARGETS_ENDPOINT = "https://artifacts.example.com/ExpressLRS"


class WriteFailingHandle:
    """Serial handle that stays readable but rejects every write."""

    in_waiting = 0

    def read(self, size: int) -> bytes:
        time.sleep(0.05)
        return b""

    def write(self, data: bytes) -> int:
        raise serial.SerialException("device reports write failure")

    def close(self) -> None:
        pass


class UnavailableSource(StaticSource):
    async def _fetch_catalog(self):
        raise ConfigurationError("catalog server down", code="source_unavailable")


def make_client(
    devices_file: Path, toolchain, config_source=None, **kwargs
) -> TestClient:
    settings = Settings(devices_path=devices_file, discovery_mode="simulated")
    app = create_app(
        lambda: build_services(
            settings,
            config_source=config_source or StaticSource(),
            toolchain=toolchain,
            **kwargs,
        )
    )
    return TestClient(app)


def wait_for_job(client: TestClient, target: str, timeout: float = 10.0) -> dict:
    """Poll until the target is idle again and return its latest job."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        data = client.get(f"/builds/{target}").json()
        if data["state"] == "idle":
            return data["job"]
        time.sleep(0.05)
    raise AssertionError(f"build for {target} did not finish")


@pytest.fixture
def client(devices_file: Path, script_toolchain) -> Iterator[TestClient]:
    with make_client(devices_file, script_toolchain(SUCCESS_SCRIPT)) as test_client:
        yield test_client


@pytest.fixture
def firmware_client(
    devices_file: Path, script_toolchain, tmp_path: Path
) -> Iterator[TestClient]:
    """Client whose versions come from a mocked endpoint and local trees."""
    with make_client(
        devices_file,
        script_toolchain(SUCCESS_SCRIPT),
        targets_loader=HttpTargetsLoader(TARGETS_ENDPOINT),
        firmware=FirmwareCheckout("/nonexistent/firmware.git", tmp_path / "firmwares"),
    ) as test_client:
        yield test_client


@pytest.fixture
def slow_client(devices_file: Path, script_toolchain) -> Iterator[TestClient]:
    with make_client(devices_file, script_toolchain(SLOW_SCRIPT)) as test_client:
        yield test_client


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "version": __version__}

    def test_root(self, client: TestClient) -> None:
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["name"] == "RC Configurator API"


class TestConfigEndpoints:
    """Tests for config endpoints."""

    def test_get_config(self, client: TestClient, devices_file: Path) -> None:
        response = client.get("/config")
        assert response.status_code == 200
        data = response.json()
        assert data["devices_path"] == str(devices_file)
        assert data["discovery_mode"] == "simulated"


class TestDeviceEndpoints:
    """Tests for device endpoints."""

    def test_list_devices(self, client: TestClient) -> None:
        response = client.get("/devices")
        assert response.status_code == 200
        assert [d["target"]["name"] for d in response.json()] == [
            "RX_ESP8285",
            "TX_ESP32",
        ]

    def test_get_device(self, client: TestClient) -> None:
        response = client.get("/devices/TX_ESP32")
        assert response.status_code == 200
        assert response.json()["product_name"] == "Generic ESP32 2.4GHz TX"

    def test_get_device_not_found(self, client: TestClient) -> None:
        response = client.get("/devices/NOPE")
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "device_not_found"

    def test_list_parameters(self, client: TestClient) -> None:
        response = client.get("/devices/RX_ESP8285/parameters")
        assert response.status_code == 200
        assert [p["key"] for p in response.json()] == [
            "binding_phrase",
            "lock_on_first_connection",
        ]

    def test_list_parameters_unknown_device(self, client: TestClient) -> None:
        response = client.get("/devices/NOPE/parameters")
        assert response.status_code == 404

    def test_list_parameters_source_unavailable(
        self, devices_file: Path, script_toolchain
    ) -> None:
        toolchain = script_toolchain(SUCCESS_SCRIPT)
        with make_client(devices_file, toolchain, UnavailableSource()) as client:
            response = client.get("/devices/TX_ESP32/parameters")
        assert response.status_code == 502
        assert response.json()["detail"] == {
            "code": "source_unavailable",
            "message": "catalog server down",
        }


class TestBuildEndpoints:
    """Tests for build endpoints."""

    def test_submit_build(self, client: TestClient, artifact: Path) -> None:
        response = client.post(
            "/builds", json={"target": "TX_ESP32", "overrides": {"power": "250mW"}}
        )
        assert response.status_code == 202
        data = response.json()
        assert data["state"] == "running"
        assert data["topic"] == "build/TX_ESP32"

        job = wait_for_job(client, "TX_ESP32")
        assert job["job_id"] == data["job_id"]
        assert job["state"] == "succeeded"
        assert job["artifact_path"] == str(artifact)
        assert job["parameters"]["power"] == "250mW"
        assert job["line_count"] == 3

    def test_list_builds(self, client: TestClient) -> None:
        assert client.get("/builds").json() == []
        client.post("/builds", json={"target": "RX_ESP8285"})
        wait_for_job(client, "RX_ESP8285")
        jobs = client.get("/builds").json()
        assert [j["target"] for j in jobs] == ["RX_ESP8285"]

    def test_configuration_error_fails_build(self, client: TestClient) -> None:
        client.post("/builds", json={"target": "TX_ESP32", "overrides": {"turbo": "1"}})
        job = wait_for_job(client, "TX_ESP32")
        assert job["state"] == "failed"
        assert job["error_code"] == "unknown_parameter"

    def test_submit_unknown_target(self, client: TestClient) -> None:
        response = client.post("/builds", json={"target": "NOPE"})
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "device_not_found"

    def test_submit_invalid_body(self, client: TestClient) -> None:
        response = client.post("/builds", json={"overrides": {}})
        assert response.status_code == 422

    def test_get_build_never_built(self, client: TestClient) -> None:
        response = client.get("/builds/TX_ESP32")
        assert response.status_code == 200
        assert response.json() == {"target": "TX_ESP32", "state": "idle", "job": None}

    def test_get_build_unknown_target(self, client: TestClient) -> None:
        assert client.get("/builds/NOPE").status_code == 404

    def test_cancel_idle_target(self, client: TestClient) -> None:
        response = client.post("/builds/TX_ESP32/cancel")
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "build_not_running"

    def test_second_submit_conflicts_then_cancel(self, slow_client: TestClient) -> None:
        first = slow_client.post("/builds", json={"target": "TX_ESP32"})
        assert first.status_code == 202

        second = slow_client.post("/builds", json={"target": "TX_ESP32"})
        assert second.status_code == 409
        assert second.json()["detail"]["code"] == "already_building"

        cancel = slow_client.post("/builds/TX_ESP32/cancel")
        assert cancel.status_code == 202
        assert cancel.json() == {"target": "TX_ESP32", "cancel_requested": True}

        job = wait_for_job(slow_client, "TX_ESP32", timeout=15)
        assert job["state"] == "cancelled"
        assert job["error_code"] == "cancelled"


    def test_submit_invalid_firmware(self, client: TestClient) -> None:
        response = client.post(
            "/builds", json={"target": "TX_ESP32", "firmware": {"kind": "git_tag"}}
        )
        assert response.status_code == 422

    def test_build_missing_local_firmware(
        self, firmware_client: TestClient, tmp_path: Path
    ) -> None:
        firmware = {"kind": "local", "local_path": str(tmp_path / "missing")}
        response = firmware_client.post(
            "/builds", json={"target": "TX_ESP32", "firmware": firmware}
        )
        assert response.status_code == 202
        assert response.json()["firmware"] == {**firmware, "ref": None}

        job = wait_for_job(firmware_client, "TX_ESP32")
        assert job["state"] == "failed"
        assert job["error_code"] == "firmware_source_unavailable"

    def test_build_local_firmware(
        self, firmware_client: TestClient, tmp_path: Path, artifact: Path
    ) -> None:
        (tmp_path / "ExpressLRS" / "src").mkdir(parents=True)
        firmware = {"kind": "local", "local_path": str(tmp_path / "ExpressLRS")}
        firmware_client.post("/builds", json={"target": "TX_ESP32", "firmware": firmware})
        job = wait_for_job(firmware_client, "TX_ESP32")
        assert job["state"] == "succeeded"
        assert job["artifact_path"] == str(artifact)


class TestTargetEndpoints:
    """Tests for the firmware targets endpoint."""

    @respx.mock
    def test_list_targets_for_tag(self, firmware_client: TestClient) -> None:
        respx.get(f"{TARGETS_ENDPOINT}/3.4.0/targets.json").mock(
            return_value=httpx.Response(200, json={"targets": ["TX_ESP32", "TX_OTHER"]})
        )
        response = firmware_client.get("/targets?kind=git_tag&ref=3.4.0")
        assert response.status_code == 200
        data = response.json()
        assert data["firmware"] == {"kind": "git_tag", "ref": "3.4.0", "local_path": None}
        assert [d["name"] for d in data["devices"]] == ["TX_ESP32"]

    @respx.mock
    def test_default_version(self, firmware_client: TestClient) -> None:
        respx.get(f"{TARGETS_ENDPOINT}/master/targets.json").mock(
            return_value=httpx.Response(200, json={"targets": ["RX_ESP8285"]})
        )
        data = firmware_client.get("/targets").json()
        assert data["firmware"]["kind"] == "git_branch"
        assert [d["name"] for d in data["devices"]] == ["RX_ESP8285"]

    @respx.mock
    def test_targets_unavailable(self, firmware_client: TestClient) -> None:
        respx.get(f"{TARGETS_ENDPOINT}/3.4.0/targets.json").mock(
            return_value=httpx.Response(404)
        )
        response = firmware_client.get("/targets?kind=git_tag&ref=3.4.0")
        assert response.status_code == 502
        assert response.json()["detail"]["code"] == "targets_unavailable"

    def test_version_without_ref(self, firmware_client: TestClient) -> None:
        response = firmware_client.get("/targets?kind=git_tag")
        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["code"] == "invalid_firmware_source"
        assert "requires 'ref'" in detail["message"]

    def test_ref_without_kind(self, firmware_client: TestClient) -> None:
        response = firmware_client.get("/targets?ref=3.4.0")
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "invalid_firmware_source"

    def test_unknown_kind(self, firmware_client: TestClient) -> None:
        assert firmware_client.get("/targets?kind=svn&ref=1").status_code == 422


class TestLuaEndpoints:
    """Tests for the Lua script download."""

    def test_download_from_local_tree(
        self, firmware_client: TestClient, tmp_path: Path
    ) -> None:
        lua_dir = tmp_path / "ExpressLRS" / "src" / "lua"
        lua_dir.mkdir(parents=True)
        (lua_dir / "elrsV3.lua").write_text("-- elrs\n")

        response = firmware_client.get(
            "/lua", params={"kind": "local", "local_path": str(tmp_path / "ExpressLRS")}
        )
        assert response.status_code == 200
        assert response.text == "-- elrs\n"
        assert "elrsV3.lua" in response.headers["content-disposition"]

    def test_tree_without_script(
        self, firmware_client: TestClient, tmp_path: Path
    ) -> None:
        response = firmware_client.get(
            "/lua", params={"kind": "local", "local_path": str(tmp_path)}
        )
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "lua_script_not_found"

    def test_checkout_failure(self, firmware_client: TestClient) -> None:
        response = firmware_client.get("/lua?kind=git_tag&ref=3.4.0")
        assert response.status_code == 502
        assert response.json()["detail"]["code"] == "firmware_source_unavailable"


class TestEventEndpoints:
    """Tests for the event stream."""

    def test_stream_with_zero_limit(self, client: TestClient) -> None:
        response = client.get("/events", params={"topic": "build/TX_ESP32", "limit": 0})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        assert response.text == ""

    def test_topic_is_required(self, client: TestClient) -> None:
        assert client.get("/events").status_code == 422

    def test_format_sse(self) -> None:
        event = EventBus().publish("serial/dev1", SerialLine(device_id="dev1", text="hi"))
        message = format_sse(event)
        lines = message.split("\n")
        assert lines[0] == "id: 0"
        assert lines[1] == "event: serial_line"
        assert lines[2].startswith("data: {")
        assert '"text":"hi"' in lines[2]
        assert message.endswith("\n\n")

    @pytest.mark.asyncio
    async def test_stream_events_stops_at_limit(self) -> None:
        bus = EventBus()
        subscription = bus.subscribe("serial/dev1")
        for text in ("a", "b", "c"):
            bus.publish("serial/dev1", SerialLine(device_id="dev1", text=text))

        messages = [m async for m in stream_events(subscription, limit=2)]

        assert [m.split("\n")[0] for m in messages] == ["id: 0", "id: 1"]
        assert subscription.closed
        assert bus.subscriber_count("serial/dev1") == 0

    @pytest.mark.asyncio
    async def test_stream_events_ends_with_bus(self) -> None:
        bus = EventBus()
        subscription = bus.subscribe("t")
        bus.publish("t", SerialLine(device_id="dev1", text="last"))
        stream = stream_events(subscription)
        first = await stream.__anext__()
        bus.close()
        rest = [m async for m in stream]
        assert "last" in first
        assert rest == []

    @pytest.mark.asyncio
    async def test_closing_stream_releases_subscription(self) -> None:
        bus = EventBus()
        subscription = bus.subscribe("t")
        stream = stream_events(subscription)
        task = asyncio.ensure_future(stream.__anext__())
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await stream.aclose()
        assert subscription.closed


class TestSerialEndpoints:
    """Tests for serial endpoints over pyserial's loop:// handler."""

    def test_open_write_close(self, client: TestClient) -> None:
        services = client.app.state.services
        subscription = services.subscribe_events("serial/dev1")

        response = client.post("/serial/dev1/open", json={"port": "loop://"})
        assert response.status_code == 200
        assert response.json() == {
            "device_id": "dev1",
            "open": True,
            "topic": "serial/dev1",
        }

        response = client.post("/serial/dev1/write", json={"data": "hello\n"})
        assert response.json() == {"device_id": "dev1", "written": 6}

        received = []
        deadline = time.monotonic() + 5
        while not received and time.monotonic() < deadline:
            received.extend(subscription.drain())
            time.sleep(0.05)
        assert [e.text for e in received] == ["hello"]

        assert client.post("/serial/dev1/close").json()["closed"] is True
        assert client.post("/serial/dev1/close").json()["closed"] is False
        subscription.close()

    def test_open_twice_conflicts(self, client: TestClient) -> None:
        client.post("/serial/dev1/open", json={"port": "loop://"})
        response = client.post("/serial/dev1/open", json={"port": "loop://"})
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "serial_already_open"
        client.post("/serial/dev1/close")

    def test_open_bad_port(self, client: TestClient) -> None:
        response = client.post("/serial/dev1/open", json={"port": "nosuchscheme://x"})
        assert response.status_code == 502
        assert response.json()["detail"]["code"] == "serial_open_failed"

    def test_write_not_open(self, client: TestClient) -> None:
        response = client.post("/serial/dev1/write", json={"data": "x"})
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "serial_not_open"

    def test_write_failure_is_bad_gateway(
        self, devices_file: Path, script_toolchain
    ) -> None:
        toolchain = script_toolchain(SUCCESS_SCRIPT)
        with make_client(
            devices_file,
            toolchain,
            serial_factory=lambda port, **kwargs: WriteFailingHandle(),
        ) as client:
            client.post("/serial/dev1/open", json={"port": "/dev/ttyUSB0"})
            response = client.post("/serial/dev1/write", json={"data": "x"})
            client.post("/serial/dev1/close")
        assert response.status_code == 502
        assert response.json()["detail"] == {
            "code": "serial_write_failed",
            "message": "Failed to write to dev1: device reports write failure",
        }

    def test_open_requires_port(self, client: TestClient) -> None:
        assert client.post("/serial/dev1/open", json={}).status_code == 422


class TestUpdateEndpoints:
    """Tests for the update check endpoint."""

    @respx.mock
    def test_update_available(self, client: TestClient) -> None:
        respx.get(RELEASE_URL).mock(
            return_value=httpx.Response(200, json={"tag_name": "v99.0.0"})
        )
        response = client.get("/updates")
        assert response.status_code == 200
        data = response.json()
        assert data["latest"] == "99.0.0"
        assert data["update_available"] is True

    @respx.mock
    def test_lookup_failure(self, client: TestClient) -> None:
        respx.get(RELEASE_URL).mock(return_value=httpx.Response(500))
        response = client.get("/updates")
        assert response.status_code == 502
        assert response.json()["detail"]["code"] == "update_check_failed"
