import subprocess

import pytest

from wpprovisioner.errors import DatabaseQueryError, MigrationError, ToolInvocationError
from wpprovisioner.models import ReplacementRule, SiteContext, StrategyResult
from wpprovisioner.services.migration import (
    ContentMigrationEngine,
    RawSqlReplaceStrategy,
    WpCliReplaceStrategy,
    build_replacement_rules,
)
from wpprovisioner.services.wp_cli import WpCli
from wpprovisioner.settings import Settings


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def info(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


class RecordingStrategy:
    def __init__(self, name, succeeded):
        self.name = name
        self.succeeded = succeeded
        self.rules = []

    def apply(self, rule):
        self.rules.append(rule)
        return StrategyResult(self.name, self.succeeded, statements=1)


class LockedTableClient:
    """Fails UPDATE statements on one table the way a lock timeout would."""

    def __init__(self, inner, table):
        self.inner = inner
        self.table = table

    def execute(self, statement):
        if statement.startswith(f"UPDATE `{self.table}`"):
            stderr = "ERROR 1205 (HY000) at line 1: Lock wait timeout exceeded; try restarting transaction"
            raise DatabaseQueryError(stderr, statement=statement, stderr=stderr)
        return self.inner.execute(statement)

    def scalar(self, statement):
        rows = self.execute(statement)
        return rows[0][0] if rows and rows[0] else None


def _missing_wp(cmd, **_kwargs):
    raise ToolInvocationError(f"Required command not found: {cmd.program}")


def _engine(client, primary, fallback=None):
    return ContentMigrationEngine(
        logger=DummyLogger(),
        console=DummyConsole(),
        client=client,
        primary=primary,
        fallback=fallback or RawSqlReplaceStrategy(DummyLogger(), client),
    )


def _options(client):
    return dict(client.execute("SELECT option_name, option_value FROM wp_options"))


def test_noop_rule_issues_zero_statements(wordpress_db):
    primary = RecordingStrategy("wp-cli", True)
    fallback = RecordingStrategy("raw-sql", True)
    engine = _engine(wordpress_db, primary, fallback)

    outcome = engine.apply_rule(ReplacementRule("http://mysite.test", "http://mysite.test"))

    assert outcome.skipped is True
    assert outcome.attempts == []
    assert primary.rules == [] and fallback.rules == []
    assert wordpress_db.statements == []


def test_fallback_rewrites_options_and_posts_when_wp_cli_is_missing(wordpress_db):
    wp_cli = WpCli(DummyLogger(), _missing_wp, "/srv/mysite")
    engine = _engine(wordpress_db, WpCliReplaceStrategy(wp_cli))

    outcome = engine.apply_rule(ReplacementRule("http://example.com", "http://mysite.test"))

    assert [attempt.strategy for attempt in outcome.attempts] == ["wp-cli", "raw-sql"]
    assert outcome.applied_by == "raw-sql"
    assert _options(wordpress_db)["siteurl"] == "http://mysite.test"
    assert _options(wordpress_db)["home"] == "http://mysite.test"
    assert wordpress_db.scalar("SELECT post_content FROM wp_posts") == "Visit http://mysite.test/about for more."
    assert set(outcome.attempts[1].tables) >= {"wp_options", "wp_posts"}


def test_fallback_matches_plain_text_substitution(wordpress_db):
    before = wordpress_db.scalar("SELECT post_content FROM wp_posts")
    strategy = RawSqlReplaceStrategy(DummyLogger(), wordpress_db)

    result = strategy.apply(ReplacementRule("example.com", "mysite.test"))

    assert result.succeeded is True
    assert wordpress_db.scalar("SELECT post_content FROM wp_posts") == before.replace("example.com", "mysite.test")
    assert _options(wordpress_db)["blogname"] == "Example"


def test_fallback_dry_run_leaves_rows_untouched(wordpress_db):
    strategy = RawSqlReplaceStrategy(DummyLogger(), wordpress_db)

    result = strategy.apply(ReplacementRule("http://example.com", "http://mysite.test", dry_run=True))

    assert result.succeeded is True
    assert _options(wordpress_db)["siteurl"] == "http://example.com"
    assert all(statement.startswith(("SHOW", "SELECT")) for statement in wordpress_db.statements)


def test_primary_success_skips_fallback(wordpress_db):
    def run_cmd(cmd, **_kwargs):
        return subprocess.CompletedProcess(cmd.argv, 0, stdout="Success: Made 3 replacements.\n", stderr="")

    fallback = RecordingStrategy("raw-sql", True)
    engine = _engine(wordpress_db, WpCliReplaceStrategy(WpCli(DummyLogger(), run_cmd, "/srv/mysite")), fallback)

    outcome = engine.apply_rule(ReplacementRule("http://example.com", "http://mysite.test"))

    assert outcome.applied_by == "wp-cli"
    assert outcome.attempts[0].message == "Success: Made 3 replacements."
    assert fallback.rules == []


def test_wp_cli_non_zero_exit_is_a_failed_attempt():
    def run_cmd(cmd, **_kwargs):
        return subprocess.CompletedProcess(cmd.argv, 1, stdout="", stderr="Error: no tables")

    strategy = WpCliReplaceStrategy(WpCli(DummyLogger(), run_cmd, "/srv/mysite"))

    result = strategy.apply(ReplacementRule("a", "b"))

    assert result.succeeded is False
    assert result.message == "Error: no tables"


def test_regex_statement_uses_regexp_functions():
    rule = ReplacementRule("https?://old\\.example", "https://new.test", regex=True)

    statement = RawSqlReplaceStrategy.statement("`wp_options`", "option_value", rule)

    assert statement.startswith("UPDATE `wp_options` SET `option_value` = REGEXP_REPLACE(")
    assert "REGEXP_LIKE(`option_value`" in statement
    assert statement.endswith("'i')")


def test_run_maintenance_downgrades_failures_to_warnings(wordpress_db):
    engine = _engine(wordpress_db, RecordingStrategy("wp-cli", True))

    warnings = engine.run_maintenance()

    assert len(warnings) == 2
    assert warnings[0].startswith("OPTIMIZE TABLE failed")
    assert "`wp_term_relationships`" in wordpress_db.statements[0]


def test_import_dump_rejects_missing_file(tmp_path, wordpress_db):
    engine = _engine(wordpress_db, RecordingStrategy("wp-cli", True))

    with pytest.raises(MigrationError, match="SQL dump not found"):
        engine.import_dump(str(tmp_path / "missing.sql"))


def test_import_dump_wraps_client_failures(tmp_path):
    dump = tmp_path / "site.sql"
    dump.write_text("garbage", encoding="utf-8")

    class FailingClient:
        database = "wp_mysite"

        def import_file(self, _path):
            raise ToolInvocationError("ERROR 1064 (42000): syntax error")

    engine = _engine(FailingClient(), RecordingStrategy("wp-cli", True), RecordingStrategy("raw-sql", True))

    with pytest.raises(MigrationError, match="syntax error"):
        engine.import_dump(str(dump))


def test_replacement_rules_follow_base_url_domain_custom_order():
    settings = Settings.from_mapping(
        {
            "sql": {
                "old_url": "https://live.example.org",
                "old_domain": "live.example.org",
                "search_replace": {
                    "regex": True,
                    "additional_replacements": [{"search": "cdn.example.org", "replace": "cdn.test"}],
                },
            }
        }
    )
    context = SiteContext("mysite", "/srv/mysite", "wp_mysite", "http://mysite.test", "mysite.test")

    rules = build_replacement_rules(settings, context)

    assert [(rule.category, rule.search, rule.replace) for rule in rules] == [
        ("base_url", "https://live.example.org", "http://mysite.test"),
        ("domain", "live.example.org", "mysite.test"),
        ("custom", "cdn.example.org", "cdn.test"),
    ]
    assert all(rule.regex for rule in rules)


def test_migrate_runs_import_maintenance_and_rules(tmp_path, wordpress_db):
    dump = tmp_path / "site.sql"
    dump.write_text("-- empty", encoding="utf-8")
    wordpress_db.import_file = lambda _path: None
    primary = RecordingStrategy("wp-cli", True)
    engine = _engine(wordpress_db, primary)

    result = engine.migrate(str(dump), [ReplacementRule("a", "b"), ReplacementRule("c", "c")])

    assert result.imported is True
    assert result.database == "wp_mysite"
    assert [outcome.skipped for outcome in result.outcomes] == [False, True]
    assert engine.summary(result.outcomes) == "1/1 replacement rule(s) applied, 1 no-op rule(s) skipped"


def test_fallback_reports_tables_that_fail_for_other_reasons(wordpress_db):
    client = LockedTableClient(wordpress_db, "wp_options")
    wp_cli = WpCli(DummyLogger(), _missing_wp, "/srv/mysite")
    engine = _engine(client, WpCliReplaceStrategy(wp_cli), RawSqlReplaceStrategy(DummyLogger(), client))

    outcome = engine.apply_rule(ReplacementRule("http://example.com", "http://mysite.test"))

    fallback = outcome.attempts[1]
    assert fallback.succeeded is False
    assert fallback.failed_tables == ["wp_options"]
    assert fallback.tables == ["wp_posts"]
    assert "failed on wp_options" in fallback.message
    assert outcome.applied_by is None
    assert _options(wordpress_db)["siteurl"] == "http://example.com"


def test_fallback_only_lists_tables_with_matching_rows(wordpress_db):
    strategy = RawSqlReplaceStrategy(DummyLogger(), wordpress_db)

    dry = strategy.apply(ReplacementRule("nomatch-xyz", "anything", dry_run=True))
    applied = strategy.apply(ReplacementRule("http://example.com", "http://mysite.test"))

    assert dry.succeeded is True
    assert dry.tables == []
    assert dry.message == "matched in 0 table(s)"
    assert applied.tables == ["wp_options", "wp_posts"]
    assert not any(
        statement.startswith(("UPDATE `wp_users`", "UPDATE `wp_usermeta`")) for statement in wordpress_db.statements
    )


def test_summary_leaves_noop_rules_out_of_the_total(wordpress_db):
    engine = _engine(wordpress_db, RecordingStrategy("wp-cli", True))

    outcomes = engine.apply_rules([ReplacementRule("a", "b"), ReplacementRule("c", "c")])

    assert engine.summary(outcomes) == "1/1 replacement rule(s) applied, 1 no-op rule(s) skipped"
    assert engine.summary([]) is None
