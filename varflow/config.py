# File: varflow/config.py
# Location: varflow/varflow/config.py

"""
Configuration management module.

This module handles loading configuration from a JSON file.
All default values reside in config.json, which is included in
the installed package directory. A user-supplied file only needs to
contain the keys it overrides; the ``tools`` mapping is merged key by key.
"""

import json
import os
from typing import Any, Dict, Optional

DEFAULT_CONFIG = os.path.join(os.path.dirname(__file__), "config.json")


def _read_json(config_file: str) -> Dict[str, Any]:
    if not os.path.exists(config_file):
        raise FileNotFoundError(f"Configuration file '{config_file}' not found.")

    with open(config_file, "r", encoding="utf-8") as f:
        try:
            config = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Error parsing JSON configuration: {e}")

    if not isinstance(config, dict):
        raise ValueError(f"Configuration file '{config_file}' must contain a JSON object.")
    return config


def load_config(config_file: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from a JSON file.

    The package's 'config.json' is always loaded first; if config_file is
    given, its values override the defaults.

    Parameters
    ----------
    config_file : str, optional
        Path to a configuration file in JSON format.

    Returns
    -------
    dict
        Configuration dictionary.

    Raises
    ------
    FileNotFoundError
        If the specified configuration file does not exist.
    ValueError
        If there is an error parsing the JSON configuration file.
    """
    config = _read_json(DEFAULT_CONFIG)
    if config_file:
        user_config = _read_json(config_file)
        tools = {**config.get("tools", {}), **user_config.pop("tools", {})}
        config.update(user_config)
        config["tools"] = tools
    return config
