"""Tests for parameters/schema.py and parameters/source.py."""

import asyncio

import pytest
from pydantic import ValidationError

from conftest import CATALOG_DATA, StaticSource
from rc_configurator.devices.schema import DeviceSchema
from rc_configurator.parameters.schema import (
    ParameterCatalogSchema,
    ParameterDefinition,
)
from rc_configurator.parameters.source import (
    ConfigurationError,
    available_parameters,
    coerce_value,
    resolve_parameters,
)
from rc_configurator.types import ParameterType


@pytest.fixture
def catalog() -> ParameterCatalogSchema:
    return ParameterCatalogSchema.model_validate(CATALOG_DATA)


class TestParameterDefinition:
    """Tests for ParameterDefinition validation."""

    def test_key_must_be_identifier(self) -> None:
        with pytest.raises(ValidationError):
            ParameterDefinition(key="not-an-identifier")

    def test_enum_needs_options(self) -> None:
        with pytest.raises(ValidationError, match="needs options"):
            ParameterDefinition(key="power", type=ParameterType.ENUM)

    def test_enum_default_must_be_option(self) -> None:
        with pytest.raises(ValidationError, match="not an option"):
            ParameterDefinition(
                key="power", type=ParameterType.ENUM, default="1W", options=("10mW",)
            )

    def test_boolean_default_must_be_bool(self) -> None:
        with pytest.raises(ValidationError):
            ParameterDefinition(key="flag", default="yes")

    def test_text_default_must_be_string(self) -> None:
        with pytest.raises(ValidationError):
            ParameterDefinition(key="phrase", type=ParameterType.TEXT, default=True)

    def test_catalog_duplicate_keys(self) -> None:
        with pytest.raises(ValidationError, match="duplicate parameter key"):
            ParameterCatalogSchema(
                parameters=[ParameterDefinition(key="a"), ParameterDefinition(key="a")]
            )


class TestCoerceValue:
    """Tests for coerce_value."""

    def test_boolean_strings(self) -> None:
        definition = ParameterDefinition(key="flag")
        assert coerce_value(definition, "true") is True
        assert coerce_value(definition, "OFF") is False
        assert coerce_value(definition, True) is True

    def test_boolean_rejects_other_values(self) -> None:
        definition = ParameterDefinition(key="flag")
        with pytest.raises(ConfigurationError) as exc_info:
            coerce_value(definition, "maybe")
        assert exc_info.value.code == "invalid_value"
        assert exc_info.value.keys == ["flag"]

    def test_text_rejects_bool(self) -> None:
        definition = ParameterDefinition(key="phrase", type=ParameterType.TEXT)
        with pytest.raises(ConfigurationError):
            coerce_value(definition, True)

    def test_enum_option(self, catalog: ParameterCatalogSchema) -> None:
        power = catalog.by_key()["power"]
        assert coerce_value(power, "250mW") == "250mW"
        with pytest.raises(ConfigurationError, match="not a valid value"):
            coerce_value(power, "2W")


class TestResolveParameters:
    """Tests for resolve_parameters."""

    def test_defaults_only(
        self, catalog: ParameterCatalogSchema, tx_device: DeviceSchema
    ) -> None:
        resolved = resolve_parameters(catalog, tx_device, {})
        assert resolved == {
            "power": "100mW",
            "Regulatory_Domain_EU_868": False,
            "Regulatory_Domain_FCC_915": True,
        }

    def test_override(
        self, catalog: ParameterCatalogSchema, tx_device: DeviceSchema
    ) -> None:
        resolved = resolve_parameters(
            catalog, tx_device, {"power": "250mW", "binding_phrase": "secret"}
        )
        assert resolved["power"] == "250mW"
        assert resolved["binding_phrase"] == "secret"

    def test_result_follows_device_order(
        self, catalog: ParameterCatalogSchema, tx_device: DeviceSchema
    ) -> None:
        resolved = resolve_parameters(catalog, tx_device, {"binding_phrase": "x"})
        assert list(resolved) == [
            "power",
            "Regulatory_Domain_EU_868",
            "Regulatory_Domain_FCC_915",
            "binding_phrase",
        ]

    def test_unknown_parameter(
        self, catalog: ParameterCatalogSchema, tx_device: DeviceSchema
    ) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            resolve_parameters(catalog, tx_device, {"turbo": True})
        assert exc_info.value.code == "unknown_parameter"
        assert exc_info.value.keys == ["turbo"]

    def test_unsupported_parameter(
        self, catalog: ParameterCatalogSchema, rx_device: DeviceSchema
    ) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            resolve_parameters(catalog, rx_device, {"power": "250mW"})
        assert exc_info.value.code == "unsupported_parameter"

    def test_conflicting_group(
        self, catalog: ParameterCatalogSchema, tx_device: DeviceSchema
    ) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            resolve_parameters(catalog, tx_device, {"Regulatory_Domain_EU_868": True})
        assert exc_info.value.code == "conflicting_parameters"
        assert set(exc_info.value.keys) == {
            "Regulatory_Domain_EU_868",
            "Regulatory_Domain_FCC_915",
        }

    def test_switching_group_member(
        self, catalog: ParameterCatalogSchema, tx_device: DeviceSchema
    ) -> None:
        resolved = resolve_parameters(
            catalog,
            tx_device,
            {"Regulatory_Domain_EU_868": "true", "Regulatory_Domain_FCC_915": "false"},
        )
        assert resolved["Regulatory_Domain_EU_868"] is True
        assert resolved["Regulatory_Domain_FCC_915"] is False

    def test_device_parameter_missing_from_catalog_is_skipped(
        self, catalog: ParameterCatalogSchema, tx_device: DeviceSchema
    ) -> None:
        device = tx_device.model_copy(
            update={"parameters": (*tx_device.parameters, "future_option")}
        )
        keys = [d.key for d in available_parameters(catalog, device)]
        assert "future_option" not in keys


class TestCatalogConfigurationSource:
    """Tests for the cached catalog source base class."""

    @pytest.mark.asyncio
    async def test_catalog_is_cached(self, tx_device: DeviceSchema) -> None:
        source = StaticSource()
        await source.resolve(tx_device, {})
        await source.list_available(tx_device)
        assert source.fetches == 1

    @pytest.mark.asyncio
    async def test_refresh_refetches(self, tx_device: DeviceSchema) -> None:
        source = StaticSource()
        await source.catalog()
        source.refresh()
        await source.catalog()
        assert source.fetches == 2

    @pytest.mark.asyncio
    async def test_concurrent_first_use_fetches_once(self) -> None:
        source = StaticSource()
        await asyncio.gather(*(source.catalog() for _ in range(5)))
        assert source.fetches == 1

    @pytest.mark.asyncio
    async def test_invalid_catalog(self, tx_device: DeviceSchema) -> None:
        source = StaticSource({"parameters": [{"key": "bad key"}]})
        with pytest.raises(ConfigurationError) as exc_info:
            await source.resolve(tx_device, {})
        assert exc_info.value.code == "invalid_catalog"

    @pytest.mark.asyncio
    async def test_list_available(self, rx_device: DeviceSchema) -> None:
        source = StaticSource()
        keys = [d.key for d in await source.list_available(rx_device)]
        assert keys == ["binding_phrase", "lock_on_first_connection"]
