# fedora-setup/fedora_setup/phases/__init__.py

"""
Step catalogue. The run is split in two plans:

- the update plan runs before environment detection (no facts yet);
- the provisioning plan starts with the reboot gate, evaluated against the
  facts detected after the update.
"""

from typing import List

from fedora_setup.engine import Step
from fedora_setup.phases import (
    base_setup,
    finalization,
    optimization,
    packages,
    repositories,
    shell,
    system_update,
    terminal,
    third_party,
)


def build_update_steps() -> List[Step]:
    return system_update.update_steps()


def build_provisioning_steps() -> List[Step]:
    return (
        system_update.gate_steps()
        + base_setup.steps()
        + terminal.steps()
        + shell.steps()
        + optimization.steps()
        + repositories.steps()
        + packages.steps()
        + third_party.steps()
        + finalization.steps()
    )
