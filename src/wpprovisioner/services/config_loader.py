"""Configuration loader for wpprovisioner."""

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from wpprovisioner.errors import ProvisionerError
from wpprovisioner.settings import DEFAULT_CONFIG, Settings


class ConfigLoader:
    """Loads and validates YAML site configuration files."""

    def __init__(self, schema: Optional[Dict[str, Any]] = None):
        self.schema = schema or DEFAULT_CONFIG

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise ProvisionerError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise ProvisionerError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise ProvisionerError("Config file must contain a YAML mapping at the root.")

        unknown = self._unknown_keys(parsed, self.schema, prefix="")
        if unknown:
            unknown_list = ", ".join(sorted(unknown))
            raise ProvisionerError(f"Unknown configuration keys: {unknown_list}")

        return parsed

    def load_settings(self, config_path: Optional[str]) -> Settings:
        return Settings.from_mapping(self.load(config_path))

    def write_default(self, config_path: str, force: bool = False) -> Path:
        path = Path(config_path)
        if path.exists() and not force:
            raise ProvisionerError(f"Config file already exists: {config_path}")

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(
                yaml.safe_dump(self.schema, sort_keys=False, default_flow_style=False),
                encoding="utf-8",
            )
        except OSError as exc:
            raise ProvisionerError(f"Could not write config file '{config_path}': {exc}") from exc
        return path

    def _unknown_keys(self, values: Dict[str, Any], schema: Dict[str, Any], prefix: str) -> List[str]:
        unknown: List[str] = []
        for key, value in values.items():
            dotted = f"{prefix}{key}"
            if key not in schema:
                unknown.append(dotted)
                continue
            expected = schema[key]
            if isinstance(expected, dict):
                if value is None:
                    continue
                if not isinstance(value, dict):
                    raise ProvisionerError(f"Configuration section '{dotted}' must be a mapping.")
                unknown.extend(self._unknown_keys(value, expected, prefix=f"{dotted}."))
        return unknown
