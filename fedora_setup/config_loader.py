# fedora-setup/fedora_setup/config_loader.py

import json
from pathlib import Path
from typing import Any, Dict, Union

from fedora_setup import console_output as con


def load_configuration(config_file: Union[str, Path]) -> Dict[str, Any]:
    """Loads the configuration from the given JSON file. Returns {} on any error."""
    config_path = Path(config_file)
    if not config_path.is_file():
        con.print_error(f"Configuration file '{config_file}' not found.")
        return {}

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (json.JSONDecodeError, IOError) as e:
        con.print_error(f"Error loading configuration file '{config_file}': {e}")
        return {}

    if not isinstance(data, dict):
        con.print_error(f"Configuration file '{config_file}' must contain a JSON object at the top level.")
        return {}
    return data


def get_section(app_config: Dict[str, Any], name: str) -> Dict[str, Any]:
    """Returns a named top-level section, or an empty dict when absent or malformed."""
    section = app_config.get(name, {})
    return section if isinstance(section, dict) else {}
