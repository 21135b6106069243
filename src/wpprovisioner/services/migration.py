"""Dump import and stored URL/domain rewriting."""

import os
from typing import Iterable, List, Optional

from wpprovisioner.constants import (
    CANONICAL_TABLES,
    DEFAULT_REPLACE_COLUMN,
    FALLBACK_REPLACE_COLUMNS,
)
from wpprovisioner.errors import DatabaseQueryError, MigrationError, ToolInvocationError
from wpprovisioner.errors_catalog import actionable_error
from wpprovisioner.models import (
    MigrationResult,
    ReplacementRule,
    RuleOutcome,
    SiteContext,
    StrategyResult,
)
from wpprovisioner.services.database import like_contains, quote_identifier, sql_literal


def build_replacement_rules(settings, context: SiteContext) -> List[ReplacementRule]:
    """Base URL rule, bare domain rule, then the user supplied ones, in that order."""
    options = settings.sql.search_replace
    flags = {
        "case_sensitive": options.case_sensitive,
        "regex": options.regex,
        "dry_run": options.dry_run,
    }
    rules = [
        ReplacementRule(
            settings.sql.old_url or "http://example.com", context.base_url, category="base_url", **flags
        ),
        ReplacementRule(
            settings.sql.old_domain or "example.com", context.domain, category="domain", **flags
        ),
    ]
    for search, replace in options.additional_replacements:
        rules.append(ReplacementRule(search, replace, category="custom", **flags))
    return rules


class WpCliReplaceStrategy:
    """Primary strategy: ``wp search-replace --all-tables``."""

    name = "wp-cli"

    def __init__(self, wp_cli):
        self.wp_cli = wp_cli

    def apply(self, rule: ReplacementRule) -> StrategyResult:
        try:
            result = self.wp_cli.search_replace(rule)
        except ToolInvocationError as exc:
            return StrategyResult(self.name, False, str(exc))

        if result.returncode != 0:
            message = (result.stderr or result.stdout or "").strip()
            return StrategyResult(
                self.name, False, message or f"exit code {result.returncode}", statements=1
            )

        lines = [line for line in (result.stdout or "").splitlines() if line.strip()]
        return StrategyResult(self.name, True, lines[-1] if lines else "", statements=1)


class RawSqlReplaceStrategy:
    """Fallback strategy: per-table ``UPDATE ... REPLACE(...)`` statements.

    Tables are updated one at a time with no surrounding transaction; a failure
    part way leaves the earlier tables rewritten. Only missing columns are
    skipped quietly, any other error marks the table as failed.
    """

    name = "raw-sql"

    def __init__(self, logger, client, candidate_columns: Iterable[str] = FALLBACK_REPLACE_COLUMNS):
        self.logger = logger
        self.client = client
        self.candidate_columns = tuple(candidate_columns)

    def apply(self, rule: ReplacementRule) -> StrategyResult:
        try:
            tables = [row[0] for row in self.client.execute("SHOW TABLES") if row]
        except ToolInvocationError as exc:
            return StrategyResult(self.name, False, f"Could not list tables: {exc}", statements=1)

        result = StrategyResult(self.name, True, statements=1)
        for table in tables:
            try:
                quoted_table = quote_identifier(table)
            except DatabaseQueryError:
                self.logger.warning("Skipping table with unexpected name: %r", table)
                continue

            try:
                changed = self._apply_to_table(quoted_table, rule, result)
            except DatabaseQueryError as exc:
                self.logger.warning("Search-replace failed on %s: %s", table, exc.stderr or exc)
                result.failed_tables.append(table)
                continue
            if changed:
                result.tables.append(table)

        verb = "matched in" if rule.dry_run else "applied to"
        result.message = f"{verb} {len(result.tables)} table(s)"
        if result.failed_tables:
            result.succeeded = False
            result.message += f"; failed on {', '.join(result.failed_tables)}"
        return result

    def _apply_to_table(self, quoted_table: str, rule: ReplacementRule, result: StrategyResult) -> bool:
        matched = self._apply_to_column(quoted_table, DEFAULT_REPLACE_COLUMN, rule, result)
        if matched is not None:
            return matched > 0

        changed = False
        for column in self.candidate_columns:
            matched = self._apply_to_column(quoted_table, column, rule, result)
            if matched:
                changed = True
        return changed

    def _apply_to_column(
        self, quoted_table: str, column: str, rule: ReplacementRule, result: StrategyResult
    ) -> Optional[int]:
        """Number of matching rows, or None when the table has no such column."""
        result.statements += 1
        try:
            matched = _as_count(self.client.scalar(self.count_statement(quoted_table, column, rule)))
        except DatabaseQueryError as exc:
            if not is_unknown_column(exc):
                raise
            self.logger.debug("Skipping %s.%s: %s", quoted_table, column, exc.stderr or exc)
            return None

        if rule.dry_run:
            if matched:
                self.logger.info("%s.%s: %s matching row(s)", quoted_table, column, matched)
            return matched
        if matched:
            result.statements += 1
            self.client.execute(self.statement(quoted_table, column, rule))
        return matched

    @staticmethod
    def _clauses(column: str, rule: ReplacementRule):
        col = quote_identifier(column)
        if rule.regex:
            match_type = "c" if rule.case_sensitive else "i"
            pattern = sql_literal(rule.search)
            condition = f"REGEXP_LIKE({col}, {pattern}, '{match_type}')"
            replacement = (
                f"REGEXP_REPLACE({col}, {pattern}, {sql_literal(rule.replace)}, 1, 0, '{match_type}')"
            )
        else:
            condition = f"{col} LIKE {like_contains(rule.search)}"
            replacement = f"REPLACE({col}, {sql_literal(rule.search)}, {sql_literal(rule.replace)})"
        return col, condition, replacement

    @classmethod
    def count_statement(cls, quoted_table: str, column: str, rule: ReplacementRule) -> str:
        _, condition, _ = cls._clauses(column, rule)
        return f"SELECT COUNT(*) FROM {quoted_table} WHERE {condition}"

    @classmethod
    def statement(cls, quoted_table: str, column: str, rule: ReplacementRule) -> str:
        if rule.dry_run:
            return cls.count_statement(quoted_table, column, rule)
        col, condition, replacement = cls._clauses(column, rule)
        return f"UPDATE {quoted_table} SET {col} = {replacement} WHERE {condition}"


def is_unknown_column(exc: DatabaseQueryError) -> bool:
    text = f"{exc.stderr or ''} {exc}"
    return "1054" in text or "unknown column" in text.lower()


def _as_count(value: Optional[str]) -> int:
    value = (value or "").strip()
    return int(value) if value.isdigit() else 0


class ContentMigrationEngine:
    """Imports a foreign dump and rewrites its stored URLs and domains."""

    def __init__(
        self,
        logger,
        console,
        client,
        primary,
        fallback,
        table_prefix: str = "wp_",
        optimize: bool = True,
        repair: bool = True,
    ):
        self.logger = logger
        self.console = console
        self.client = client
        self.primary = primary
        self.fallback = fallback
        self.table_prefix = table_prefix
        self.optimize = optimize
        self.repair = repair

    def migrate(self, dump_path: str, rules: List[ReplacementRule]) -> MigrationResult:
        result = self.import_dump(dump_path)
        result.maintenance_warnings.extend(self.run_maintenance())
        result.outcomes.extend(self.apply_rules(rules))
        return result

    def import_dump(self, dump_path: str) -> MigrationResult:
        resolved = os.path.abspath(os.path.expanduser(dump_path))
        if not os.path.isfile(resolved):
            raise MigrationError(actionable_error("dump_not_found", path=resolved))

        database = self.client.database or ""
        self.console.print(f"[blue]Importing {os.path.basename(resolved)} into {database}...[/blue]")
        try:
            self.client.import_file(resolved)
        except ToolInvocationError as exc:
            raise MigrationError(
                f"{actionable_error('dump_import_failed', path=resolved, database=database)}\n{exc}"
            ) from exc

        self.console.print("[green]Database imported.[/green]")
        return MigrationResult(dump_path=resolved, database=database, imported=True)

    def canonical_tables(self) -> List[str]:
        return [f"{self.table_prefix}{table}" for table in CANONICAL_TABLES]

    def run_maintenance(self) -> List[str]:
        warnings: List[str] = []
        table_list = ", ".join(quote_identifier(table) for table in self.canonical_tables())
        for enabled, operation in ((self.optimize, "OPTIMIZE"), (self.repair, "REPAIR")):
            if not enabled:
                continue
            try:
                self.client.execute(f"{operation} TABLE {table_list}")
                self.logger.info("%s TABLE finished on %s core tables.", operation, len(CANONICAL_TABLES))
            except ToolInvocationError as exc:
                message = f"{operation} TABLE failed: {exc}"
                self.logger.warning(message)
                warnings.append(message)
        return warnings

    def apply_rules(self, rules: List[ReplacementRule]) -> List[RuleOutcome]:
        return [self.apply_rule(rule) for rule in rules]

    def apply_rule(self, rule: ReplacementRule) -> RuleOutcome:
        outcome = RuleOutcome(rule=rule)
        if rule.is_noop:
            self.logger.debug("Skipping no-op %s replacement of %s", rule.category, rule.search)
            outcome.skipped = True
            return outcome

        self.console.print(f"[blue]Replacing '{rule.search}' with '{rule.replace}'...[/blue]")
        primary = self.primary.apply(rule)
        outcome.attempts.append(primary)
        if primary.succeeded:
            return outcome

        self.console.print(
            f"[yellow]{self.primary.name} search-replace failed, trying {self.fallback.name}...[/yellow]"
        )
        self.logger.warning("Primary search-replace failed for %s: %s", rule.search, primary.message)
        fallback = self.fallback.apply(rule)
        outcome.attempts.append(fallback)
        if not fallback.succeeded:
            self.logger.warning("Fallback search-replace failed for %s: %s", rule.search, fallback.message)
        return outcome

    def summary(self, outcomes: List[RuleOutcome]) -> Optional[str]:
        if not outcomes:
            return None
        considered = [outcome for outcome in outcomes if not outcome.skipped]
        applied = [outcome for outcome in considered if outcome.applied_by]
        summary = f"{len(applied)}/{len(considered)} replacement rule(s) applied"
        skipped = len(outcomes) - len(considered)
        if skipped:
            summary += f", {skipped} no-op rule(s) skipped"
        return summary
