"""Firmware configuration parameter module.

This module handles:
- Parameter catalog schema
- The configuration source contract and resolution rules
- Repository-backed and endpoint-backed sources
"""

from rc_configurator.parameters.git import GitConfigurationSource
from rc_configurator.parameters.http import HttpConfigurationSource
from rc_configurator.parameters.schema import (
    ParameterCatalogSchema,
    ParameterDefinition,
)
from rc_configurator.parameters.source import (
    CatalogConfigurationSource,
    ConfigurationError,
    ConfigurationSource,
    resolve_parameters,
)

__all__ = [
    "CatalogConfigurationSource",
    "ConfigurationError",
    "ConfigurationSource",
    "GitConfigurationSource",
    "HttpConfigurationSource",
    "ParameterCatalogSchema",
    "ParameterDefinition",
    "resolve_parameters",
]
