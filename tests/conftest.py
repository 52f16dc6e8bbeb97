"""Shared fixtures: a small device catalog, a parameter catalog and git helpers."""

import shutil
import subprocess
import sys
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import pytest
import yaml

from rc_configurator.builds.runner import SubprocessToolchain
from rc_configurator.devices.schema import DeviceSchema
from rc_configurator.parameters.source import CatalogConfigurationSource
from rc_configurator.types import ArtifactKind, ParameterValue

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")

CATALOG_DATA: dict[str, Any] = {
    "version": "3.4.0",
    "parameters": [
        {
            "key": "power",
            "type": "enum",
            "default": "100mW",
            "options": ["10mW", "25mW", "100mW", "250mW"],
        },
        {
            "key": "Regulatory_Domain_EU_868",
            "type": "boolean",
            "default": False,
            "group": "domain",
        },
        {
            "key": "Regulatory_Domain_FCC_915",
            "type": "boolean",
            "default": True,
            "group": "domain",
        },
        {"key": "binding_phrase", "type": "text"},
        {"key": "lock_on_first_connection", "type": "boolean", "default": True},
    ],
}

DEVICES_DATA: dict[str, Any] = {
    "devices": [
        {
            "target": {
                "name": "TX_ESP32",
                "platform": "espressif32",
                "board": "esp32dev",
                "architecture": "xtensa-esp32-elf",
                "environment": "Unified_ESP32_2400_TX_via_UART",
            },
            "product_name": "Generic ESP32 2.4GHz TX",
            "category": "2.4 GHz Transmitters",
            "connection_types": ["uart", "wifi"],
            "parameters": [
                "power",
                "Regulatory_Domain_EU_868",
                "Regulatory_Domain_FCC_915",
                "binding_phrase",
            ],
        },
        {
            "target": {
                "name": "RX_ESP8285",
                "platform": "espressif8266",
                "board": "esp8285",
                "architecture": "xtensa-lx106-elf",
            },
            "product_name": "Generic ESP8285 2.4GHz RX",
            "category": "2.4 GHz Receivers",
            "connection_types": ["uart", "betaflight_passthrough"],
            "parameters": ["binding_phrase", "lock_on_first_connection"],
        },
    ]
}

# Prints two lines, writes the artifact named by argv[1], prints its path.
SUCCESS_SCRIPT = """
import pathlib, sys
print("compiling", flush=True)
print("linking", flush=True)
path = pathlib.Path(sys.argv[1])
path.parent.mkdir(parents=True, exist_ok=True)
path.write_bytes(b"firmware")
print(path, flush=True)
"""

FAILURE_SCRIPT = """
import sys
print("compiling", flush=True)
print("error: undefined reference to main", flush=True)
sys.exit(2)
"""

# Ignores the soft stop; only a hard kill ends it.
STUBBORN_SCRIPT = """
import signal, time
signal.signal(signal.SIGTERM, signal.SIG_IGN)
print("ignoring SIGTERM", flush=True)
while True:
    time.sleep(0.05)
"""

SLOW_SCRIPT = """
import time
print("started", flush=True)
time.sleep(30)
"""


def git(args: list[str], cwd: Path) -> None:
    """Run git in ``cwd`` with a fixed committer identity."""
    subprocess.run(
        [
            "git",
            "-c",
            "user.name=Test",
            "-c",
            "user.email=test@example.com",
            *args,
        ],
        cwd=cwd,
        check=True,
        capture_output=True,
    )


class StaticSource(CatalogConfigurationSource):
    """Configuration source serving an in-memory catalog."""

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        super().__init__()
        self.data = CATALOG_DATA if data is None else data
        self.fetches = 0

    async def _fetch_catalog(self) -> dict[str, Any]:
        self.fetches += 1
        return self.data


class ScriptToolchain(SubprocessToolchain):
    """Runs a Python script as the toolchain; argv[1] is the artifact path."""

    def __init__(self, script: str, artifact: Path, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.script = script
        self.artifact = artifact
        self.started: list[dict[str, ParameterValue]] = []

    def compose_command(
        self,
        device: DeviceSchema,
        parameters: Mapping[str, ParameterValue],
        kind: ArtifactKind,
    ) -> list[str]:
        self.started.append(dict(parameters))
        return [sys.executable, "-c", self.script, str(self.artifact)]

    def artifact_path(
        self, device: DeviceSchema, kind: ArtifactKind, cwd: Path | None = None
    ) -> Path:
        return self.artifact


@pytest.fixture
def devices() -> list[DeviceSchema]:
    """Both sample devices, validated."""
    return [DeviceSchema.model_validate(d) for d in DEVICES_DATA["devices"]]


@pytest.fixture
def tx_device(devices: list[DeviceSchema]) -> DeviceSchema:
    """The sample transmitter (TX_ESP32)."""
    return devices[0]


@pytest.fixture
def rx_device(devices: list[DeviceSchema]) -> DeviceSchema:
    """The sample receiver (RX_ESP8285)."""
    return devices[1]


@pytest.fixture
def devices_file(tmp_path: Path) -> Path:
    """Sample device catalog written as YAML."""
    path = tmp_path / "devices.yaml"
    path.write_text(yaml.safe_dump(DEVICES_DATA))
    return path


@pytest.fixture
def static_source() -> StaticSource:
    """Configuration source serving the sample parameter catalog."""
    return StaticSource()


@pytest.fixture
def artifact(tmp_path: Path) -> Path:
    """Where script toolchains write their firmware."""
    return tmp_path / "out" / "fw.bin"


@pytest.fixture
def script_toolchain(artifact: Path):
    """Factory for script-driven toolchains writing to ``artifact``."""

    def factory(script: str, **kwargs: Any) -> ScriptToolchain:
        kwargs.setdefault("grace_period", 0.5)
        return ScriptToolchain(script, artifact, **kwargs)

    return factory
