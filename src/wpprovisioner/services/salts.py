"""Secret key/salt generation for wp-config.php."""

import re
import secrets
from typing import Dict

import requests

from wpprovisioner.constants import SALT_ALPHABET, SALT_KEYS, SALT_LENGTH, SALT_URL

_DEFINE_PATTERN = re.compile(
    r"""define\(\s*['"](?P<key>[A-Z_]+)['"]\s*,\s*'(?P<value>(?:[^'\\]|\\.)*)'\s*\)\s*;"""
)


def format_secret_block(values: Dict[str, str]) -> str:
    lines = []
    for key in SALT_KEYS:
        label = f"'{key}',"
        lines.append(f"define({label:<20}'{values[key]}');")
    return "\n".join(lines)


def parse_secret_block(text: str) -> Dict[str, str]:
    found = {}
    for match in _DEFINE_PATTERN.finditer(text or ""):
        if match.group("key") in SALT_KEYS:
            found[match.group("key")] = match.group("value")
    return found


class SecretKeyService:
    """Fetches the eight secret definitions, generating them locally on any failure."""

    def __init__(self, logger, requests_module=requests, url: str = SALT_URL, timeout: float = 10.0):
        self.logger = logger
        self.requests = requests_module
        self.url = url
        self.timeout = timeout

    def fetch(self) -> str:
        try:
            response = self.requests.get(self.url, timeout=self.timeout)
            response.raise_for_status()
            text = response.text
        except self.requests.RequestException as exc:
            self.logger.warning("Could not fetch secret keys from %s (%s); generating locally.", self.url, exc)
            return self.generate_local()

        values = parse_secret_block(text)
        missing = [key for key in SALT_KEYS if key not in values]
        if missing:
            self.logger.warning(
                "Secret key service response is missing %s; generating locally.", ", ".join(missing)
            )
            return self.generate_local()

        return format_secret_block(values)

    def generate_local(self) -> str:
        return format_secret_block({key: self._random_key() for key in SALT_KEYS})

    @staticmethod
    def _random_key() -> str:
        return "".join(secrets.choice(SALT_ALPHABET) for _ in range(SALT_LENGTH))
