"""Fedora workstation post-installation provisioning."""

from fedora_setup.config import SCRIPT_VERSION

__version__ = SCRIPT_VERSION
