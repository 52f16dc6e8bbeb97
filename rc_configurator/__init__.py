"""RC Configurator - firmware build orchestration for RC link hardware.

This package builds firmware for radio-control receivers and transmitters,
streams build output to observers, discovers devices on the local network
and monitors device serial output.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
