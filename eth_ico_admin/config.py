import logging
import os
import re
from pathlib import Path
from typing import Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from eth_ico_admin.errors import ConfigurationError
from eth_ico_admin.schemas import IcoAdminSettings

"""
Configuration Management for the ICO Admin CLI

This module loads the YAML settings document, substitutes template variables,
validates it against the pydantic schema and returns an immutable settings object.

Configuration Sources (in order of precedence):
1. Path given with -c/--config on the command line
2. ICO_ADMIN_CONFIG environment variable (a .env file is honoured)
3. cli.yml in the current working directory

Template Variables:
    ${home}: the user's home directory
    ${cwd}: the current working directory
    ${moduledir}: the directory of this package

Security Considerations:
- Private keys are never stored in the YAML file; local self-destruct signing
  reads the key from the environment variable named in ``selfdestruct.privateKeyEnv``
- The ``from`` account is expected to be unlocked on the connected node
"""

logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()

MODULE_DIR = Path(__file__).parent.resolve()
DEFAULT_CONFIG_FILE = "cli.yml"

_TEMPLATE_VAR = re.compile(r"\$\{(\w+)\}")


def default_config_path() -> str:
    """Config path used when none is given on the command line."""
    return os.getenv("ICO_ADMIN_CONFIG", DEFAULT_CONFIG_FILE)


def template_variables() -> Dict[str, str]:
    """The fixed set of variables available to ${var} substitution."""
    return {
        "home": str(Path.home()),
        "cwd": os.getcwd(),
        "moduledir": str(MODULE_DIR),
    }


def replace_template(text: str, variables: Dict[str, str]) -> str:
    """Replace ${name} occurrences with known variables; unknown names are left untouched."""
    return _TEMPLATE_VAR.sub(lambda m: variables.get(m.group(1), m.group(0)), text)


def parse_settings(text: str, source: str = "<string>") -> IcoAdminSettings:
    """
    Substitute, parse and validate a settings document.

    Args:
        text: Raw YAML text.
        source: Name of the document, used in error messages.

    Returns:
        The validated, frozen settings object.

    Raises:
        ConfigurationError: On YAML syntax errors or schema validation failure.
    """
    try:
        data = yaml.safe_load(replace_template(text, template_variables()))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid configuration: {source}: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError(f"Invalid configuration: {source}: top level must be a mapping")

    try:
        return IcoAdminSettings.model_validate(data)
    except ValidationError as e:
        logger.error(f"Invalid configuration: {source}: {e}")
        raise ConfigurationError(f"Invalid configuration: {source}:\n{e}")


def load_settings(path: Optional[str] = None, verbose: bool = False) -> IcoAdminSettings:
    """Load the settings file at ``path`` (or the default location)."""
    config_path = Path(path or default_config_path())
    try:
        text = config_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Unable to read configuration {config_path}: {e}")

    settings = parse_settings(text, source=str(config_path))
    logger.info(f"Configuration loaded from {config_path}")
    if verbose:
        logger.debug("Configuration %s", settings.model_dump_json(indent=2, by_alias=True))
    return settings
