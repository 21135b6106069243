"""Actionable error catalog for wpprovisioner."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "invalid_site_name": {
        "what": "Invalid site name '{name}'.",
        "next": "Use only letters, numbers, hyphens and underscores.",
    },
    "dump_not_found": {
        "what": "SQL dump not found: {path}",
        "next": "Check `sql.source` in the config file or remove it to run a fresh install.",
    },
    "dump_import_failed": {
        "what": "Importing {path} into `{database}` failed.",
        "next": "Inspect the dump for statements the target server rejects and retry.",
    },
    "database_not_ready": {
        "what": "Database server did not accept connections after {attempts} attempts.",
        "next": "Check `docker logs {container}` and the configured credentials.",
    },
    "tool_not_found": {
        "what": "Required command not found: {program}",
        "next": "Install it or point the config at the right executable.",
    },
    "config_sample_missing": {
        "what": "Neither wp-config.php nor wp-config-sample.php exists in {path}.",
        "next": "Download WordPress core first or disable `advanced.skip_wordpress_download`.",
    },
    "site_exists": {
        "what": "Site directory already exists and is not empty: {path}",
        "next": "Re-run with `--force` to replace it, or pick another site name.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
