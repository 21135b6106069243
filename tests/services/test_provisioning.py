import pytest

from wpprovisioner.constants import PASSWORD_ALPHABET
from wpprovisioner.errors import DatabaseQueryError, ProvisioningError
from wpprovisioner.models import SiteContext
from wpprovisioner.services.provisioning import DatabaseProvisioner, generate_password
from wpprovisioner.settings import Settings


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def info(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


class ScriptedClient:
    def __init__(self, database_exists=True, fail_on=None):
        self.statements = []
        self.database_exists = database_exists
        self.fail_on = fail_on

    def execute(self, statement):
        self.statements.append(statement)
        if self.fail_on and statement.startswith(self.fail_on):
            raise DatabaseQueryError("ERROR 1044: Access denied", statement=statement)
        if statement.startswith("SHOW DATABASES"):
            return [("wp_mysite",)] if self.database_exists else []
        return []


CONTEXT = SiteContext("mysite", "/srv/mysite", "wp_mysite", "http://mysite.test", "mysite.test")


def _provisioner(**database):
    settings = Settings.from_mapping({"database": database})
    return DatabaseProvisioner(DummyLogger(), DummyConsole(), settings)


def test_provision_drops_creates_and_verifies():
    client = ScriptedClient()

    db_name, credential = _provisioner(password="rootpw").provision(CONTEXT, client)

    assert db_name == "wp_mysite"
    assert credential.user == "root" and credential.password == "rootpw"
    assert credential.scoped is False
    assert client.statements == [
        "DROP DATABASE IF EXISTS `wp_mysite`",
        "CREATE DATABASE `wp_mysite` CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci",
        "SHOW DATABASES LIKE 'wp_mysite'",
    ]


def test_provision_fails_when_database_is_not_listed():
    with pytest.raises(ProvisioningError, match="Failed to create database: wp_mysite"):
        _provisioner().provision(CONTEXT, ScriptedClient(database_exists=False))


def test_scoped_user_replaces_root_credential():
    client = ScriptedClient()

    _, credential = _provisioner(create_user=True, grant_privileges=["select", "insert"]).provision(
        CONTEXT, client
    )

    assert credential.scoped is True
    assert credential.user == "wp_mysite"
    assert len(credential.password) == 16
    create_user, grant, flush = client.statements[3:]
    assert create_user.startswith("CREATE USER IF NOT EXISTS 'wp_mysite'@'localhost' IDENTIFIED BY ")
    assert grant == "GRANT SELECT, INSERT ON `wp_mysite`.* TO 'wp_mysite'@'localhost'"
    assert flush == "FLUSH PRIVILEGES"


def test_grant_failure_is_a_provisioning_error():
    client = ScriptedClient(fail_on="GRANT")

    with pytest.raises(ProvisioningError, match="Access denied"):
        _provisioner(create_user=True).provision(CONTEXT, client)

    assert client.statements[-1].startswith("GRANT")


def test_invalid_privilege_is_rejected_before_any_user_statement():
    client = ScriptedClient()

    with pytest.raises(ProvisioningError, match="Invalid privilege"):
        _provisioner(create_user=True, grant_privileges=["ALL; DROP"]).provision(CONTEXT, client)

    assert not any(statement.startswith("CREATE USER") for statement in client.statements)


def test_generate_password_uses_alphabet_and_length():
    password = generate_password(24)

    assert len(password) == 24
    assert set(password) <= set(PASSWORD_ALPHABET)
    with pytest.raises(ProvisioningError):
        generate_password(0)
