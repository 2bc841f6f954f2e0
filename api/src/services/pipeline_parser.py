"""
Deployment profile (.deployline.yml) parser and validator.
"""

import re
import yaml
from typing import Dict, Any, Optional

class PipelineConfigError(Exception):
    """Raised when a deployment profile is invalid."""
    pass

STRING_FIELDS = (
    "app_name",
    "manifest_path",
    "manifest_branch",
    "install_command",
    "quality_command",
    "dependency_scan_command",
    "fs_scan_command",
    "image_scan_command",
)
BOOL_FIELDS = (
    "quality_abort_on_failure",
    "scan_abort_on_failure",
)
APP_NAME_PATTERN = re.compile(r"^[a-z0-9]+(?:[._-][a-z0-9]+)*$")

def parse_profile_config(yaml_content: str) -> Dict[str, Any]:
    """Parse a deployment profile from YAML text."""
    try:
        config = yaml.safe_load(yaml_content)
    except yaml.YAMLError as e:
        raise PipelineConfigError(f"Invalid YAML: {e}")

    return validate_profile(config)

def parse_profile_dict(config: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a deployment profile given as a dict."""
    return validate_profile(config)

def validate_profile(config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Validate profile keys and types; unknown keys are rejected."""
    if config is None or config == "":
        raise PipelineConfigError("Empty deployment profile")

    if not isinstance(config, dict):
        raise PipelineConfigError("Deployment profile must be a mapping")

    unknown = sorted(set(config) - set(STRING_FIELDS) - set(BOOL_FIELDS))
    if unknown:
        raise PipelineConfigError(f"Unknown profile keys: {', '.join(map(str, unknown))}")

    profile = {}
    for key in STRING_FIELDS:
        if key not in config:
            continue
        value = config[key]
        if not isinstance(value, str) or not value.strip():
            raise PipelineConfigError(f"Profile '{key}' must be a non-empty string")
        profile[key] = value

    for key in BOOL_FIELDS:
        if key not in config:
            continue
        if not isinstance(config[key], bool):
            raise PipelineConfigError(f"Profile '{key}' must be true or false")
        profile[key] = config[key]

    if "app_name" in profile and not APP_NAME_PATTERN.match(profile["app_name"]):
        raise PipelineConfigError(
            f"Profile 'app_name' must be a lowercase image name, got '{profile['app_name']}'"
        )

    if "manifest_path" in profile:
        path = profile["manifest_path"]
        if path.startswith("/") or ".." in path.split("/"):
            raise PipelineConfigError("Profile 'manifest_path' must stay inside the repository")

    return profile
