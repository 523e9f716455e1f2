import os
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_BASE_URL = "https://phabricator.services.mozilla.com"

DEFAULT_CONFIG: dict = {
    "base_url": DEFAULT_BASE_URL,
    "include_done": False,
    "suggestions": True,  # scrape the changeset endpoint for code suggestions
    "max_workers": 4,  # concurrent changeset fetches
    "timeout": 30,  # seconds, per HTTP call
    "cookie_domain": None,  # None = host of base_url
    "show_review_actions": False,
}


def load_config(config_path: str = ".phabdigest.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. PHABRICATOR_BASE_URL from the environment
      3. .phabdigest.yml in the current directory
      4. CLI argument overrides
    """
    config = dict(DEFAULT_CONFIG)

    env_base_url = os.environ.get("PHABRICATOR_BASE_URL")
    if env_base_url:
        config["base_url"] = env_base_url

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        if not isinstance(file_config, dict):
            raise ValueError(f"{config_path} must contain a mapping, got {type(file_config).__name__}.")
        config.update(file_config)

    # Credentials only ever come from the environment or the CLI, never from the file.
    config["api_token"] = os.environ.get("PHABRICATOR_TOKEN")
    config["cookies"] = os.environ.get("PHABRICATOR_COOKIES")

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    config["base_url"] = str(config["base_url"]).rstrip("/")

    return config
