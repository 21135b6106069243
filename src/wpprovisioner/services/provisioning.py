"""Database provisioning: recreate the site database and its scoped user."""

import secrets
from typing import Sequence, Tuple

from wpprovisioner.constants import DEFAULT_PASSWORD_LENGTH, PASSWORD_ALPHABET
from wpprovisioner.errors import DatabaseQueryError, ProvisioningError
from wpprovisioner.models import Credential, SiteContext
from wpprovisioner.services.database import quote_identifier, sql_literal


def generate_password(length: int = DEFAULT_PASSWORD_LENGTH, alphabet: str = PASSWORD_ALPHABET) -> str:
    if length <= 0:
        raise ProvisioningError("Password length must be positive.")
    return "".join(secrets.choice(alphabet) for _ in range(length))


class DatabaseProvisioner:
    """Drops and recreates the site database, optionally with a dedicated user."""

    def __init__(self, logger, console, settings):
        self.logger = logger
        self.console = console
        self.settings = settings

    def provision(self, context: SiteContext, client) -> Tuple[str, Credential]:
        """Returns the database name and the credential every later stage must use.

        Destructive: an existing database with the same name is dropped.
        Nothing is rolled back when a later statement fails.
        """
        db = self.settings.database
        db_name = context.db_name
        quoted = quote_identifier(db_name)

        self.console.print(f"[blue]Creating database {db_name}...[/blue]")
        self._execute(client, f"DROP DATABASE IF EXISTS {quoted}")
        self._execute(
            client,
            f"CREATE DATABASE {quoted} CHARACTER SET {db.charset} COLLATE {db.collate}",
        )

        rows = self._execute(client, f"SHOW DATABASES LIKE {sql_literal(db_name)}")
        if not any(row and row[0] == db_name for row in rows):
            raise ProvisioningError(f"Failed to create database: {db_name}")
        self.logger.debug("Database created: %s", db_name)

        credential = Credential(user=db.user, password=db.password)
        if db.create_user:
            credential = self.create_scoped_user(context, client)

        self.console.print("[green]Database created.[/green]")
        return db_name, credential

    def create_scoped_user(self, context: SiteContext, client) -> Credential:
        db = self.settings.database
        user = f"{db.user_prefix}{context.site_name}"
        password = generate_password(db.password_length)
        account = f"{sql_literal(user)}@{sql_literal(db.grant_host)}"
        privileges = self._privileges(db.grant_privileges)

        self._execute(client, f"CREATE USER IF NOT EXISTS {account} IDENTIFIED BY {sql_literal(password)}")
        # A failing GRANT leaves the user behind without privileges; it is not dropped.
        self._execute(client, f"GRANT {privileges} ON {quote_identifier(context.db_name)}.* TO {account}")
        self._execute(client, "FLUSH PRIVILEGES")

        self.logger.info("Created database user %s@%s", user, db.grant_host)
        return Credential(user=user, password=password, scoped=True)

    @staticmethod
    def _privileges(privileges: Sequence[str]) -> str:
        if not privileges:
            raise ProvisioningError("database.grant_privileges must list at least one privilege.")
        for privilege in privileges:
            if not privilege.replace(" ", "").isalpha():
                raise ProvisioningError(f"Invalid privilege name: {privilege}")
        return ", ".join(privileges)

    @staticmethod
    def _execute(client, statement: str):
        try:
            return client.execute(statement)
        except DatabaseQueryError as exc:
            raise ProvisioningError(str(exc)) from exc
