"""Tests for the acl command group."""

import pytest
from rich.console import Console
from typer.testing import CliRunner

from dcomaudit import __version__
from dcomaudit.acl.descriptor import decode
from dcomaudit.cli.console import set_console
from dcomaudit.cli.main import app
from dcomaudit.store.base import ACCESS_DEFAULT, APP_ACCESS, AclTarget
from dcomaudit.store.snapshot import SnapshotBlobStore

from conftest import ALICE, APP_ID, OTHER_APP_ID

runner = CliRunner()

CONFIG_YAML = (
    "store:\n"
    "  backend: snapshot\n"
    "  snapshot_path: dcom_snapshot.json\n"
    "logging:\n"
    "  level: WARNING\n"
    "  console: false\n"
    "principals:\n"
    "  names:\n"
    f"    {ALICE}: CONTOSO\\alice\n"
)


@pytest.fixture
def snapshot(tmp_path, monkeypatch):
    """Snapshot store in a working directory holding dcomaudit.yaml."""
    for name in ("DCOMAUDIT_STORE_BACKEND", "DCOMAUDIT_SNAPSHOT", "DCOMAUDIT_HOST"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    (tmp_path / "dcomaudit.yaml").write_text(CONFIG_YAML, encoding="utf-8")
    store = SnapshotBlobStore(tmp_path / "dcom_snapshot.json")
    store.register_application(APP_ID, "Test Server")
    store.register_application(OTHER_APP_ID, "Other Server")
    return store


@pytest.fixture(autouse=True)
def wide_console():
    set_console(Console(width=200))
    yield
    set_console(None)


def invoke(*args):
    return runner.invoke(app, list(args))


class TestGlobalOptions:
    def test_version(self):
        result = invoke("--version")

        assert result.exit_code == 0
        assert f"dcomaudit {__version__}" in result.output

    def test_no_command_prints_help(self):
        result = invoke()

        assert result.exit_code == 0
        assert "acl" in result.output


class TestShow:
    def test_empty_machine_lists(self, snapshot):
        result = invoke("acl", "show")

        assert result.exit_code == 0
        assert "machine@local" in result.output
        assert "Access permissions (default): no entries" in result.output
        assert "Launch permissions (limits): no entries" in result.output

    def test_application_falls_back_to_machine_default(self, snapshot):
        result = invoke("acl", "show", "--app", APP_ID, "-C", "launch")

        assert result.exit_code == 0
        assert f"Test Server {APP_ID}@local" in result.output
        assert "uses machine default" in result.output

    def test_application_identity_is_listed(self, snapshot):
        snapshot.register_application(
            "{00000000-0000-0000-0000-0000000000A1}",
            "Spooler Proxy",
            settings={"LocalService": "Spooler", "RunAs": "LocalSystem", "ServiceStartup": 2},
        )

        plain = invoke("acl", "show", "--app", APP_ID, "-C", "access")
        service = invoke(
            "acl", "show", "--app", "{00000000-0000-0000-0000-0000000000A1}", "-C", "access"
        )

        assert plain.exit_code == 0, plain.output
        assert "Runs as Launching User, authentication default" in plain.output
        assert service.exit_code == 0, service.output
        assert "service Spooler (automatic start)" in service.output

    def test_unknown_application_renders_error_code(self, snapshot):
        result = invoke("acl", "show", "--app", "{00000000-0000-0000-0000-000000000009}")

        assert result.exit_code == 1
        assert "DA-STORE-001" in result.output

    def test_invalid_key_for_application_is_reported(self, snapshot):
        result = invoke("acl", "show", "--app", APP_ID, "-C", "access", "-s", "limits")

        assert result.exit_code == 1
        assert "DA-ACL-001" in result.output


class TestGrantRevoke:
    def test_given_empty_store_when_granting_then_machine_default_is_written(self, snapshot):
        # When
        result = invoke("acl", "grant", "CONTOSO\\alice", "-C", "access", "-r", "execute-local")

        # Then
        assert result.exit_code == 0, result.output
        assert "allow execute_local for CONTOSO\\alice" in result.output
        aces = decode(snapshot.read_blob(AclTarget.machine(), ACCESS_DEFAULT))
        assert [(a.mask) for a in aces if a.principal == ALICE] == [0x3]

    def test_grant_then_show_lists_the_entry(self, snapshot):
        invoke("acl", "grant", str(ALICE), "-C", "access", "--app", APP_ID, "-r", "er")

        result = invoke("acl", "show", "--app", APP_ID, "-C", "access")

        assert result.exit_code == 0
        assert "CONTOSO\\alice" in result.output
        assert "remote access" in result.output
        assert "uses machine default" not in result.output

    def test_raw_output_is_sddl(self, snapshot):
        invoke("acl", "grant", "alice", "-C", "launch", "-r", "el")

        result = invoke("acl", "show", "-C", "launch", "-s", "default", "--raw")

        assert result.exit_code == 0
        assert "launch/default: O:BAG:BAD:" in result.output
        assert f"(A;;CCDC;;;{ALICE})" in result.output

    def test_revoke_removes_only_the_requested_type(self, snapshot):
        invoke("acl", "grant", "alice", "-C", "access", "--app", APP_ID, "--deny")
        invoke("acl", "grant", "alice", "-C", "access", "--app", APP_ID, "-r", "el")

        result = invoke("acl", "revoke", "alice", "-C", "access", "--app", APP_ID, "-t", "deny")

        assert result.exit_code == 0, result.output
        aces = [
            a
            for a in decode(snapshot.read_blob(AclTarget.application(APP_ID), APP_ACCESS))
            if a.principal == ALICE
        ]
        assert [a.access_type.value for a in aces] == ["allow"]

    def test_unknown_principal_is_a_usage_error(self, snapshot):
        result = invoke("acl", "grant", "mallory", "-C", "access")

        assert result.exit_code == 2

    def test_unknown_right_is_a_usage_error(self, snapshot):
        result = invoke("acl", "grant", "alice", "-C", "access", "-r", "fly")

        assert result.exit_code == 2

    def test_category_is_required(self, snapshot):
        result = invoke("acl", "grant", "alice")

        assert result.exit_code == 2


class TestReset:
    def test_reset_drops_application_lists(self, snapshot):
        invoke("acl", "grant", "alice", "-C", "access", "--app", APP_ID)

        result = invoke("acl", "reset", "--app", APP_ID, "-C", "access")

        assert result.exit_code == 0
        assert "access uses the machine default" in result.output
        assert snapshot.read_blob(AclTarget.application(APP_ID), APP_ACCESS) is None


class TestDiffCopy:
    def test_diff_reports_entries_on_one_side(self, snapshot):
        invoke("acl", "grant", "alice", "-C", "access", "--app", APP_ID)

        result = invoke("acl", "diff", "--from-app", APP_ID, "--app", OTHER_APP_ID, "-C", "access")

        assert result.exit_code == 0
        assert "CONTOSO\\alice" in result.output
        assert "1 permission list(s) differ" in result.output
        assert "Tip: run 'dcomaudit acl copy'" in result.output

    def test_given_source_application_when_copying_then_lists_match(self, snapshot):
        # Given
        invoke("acl", "grant", "alice", "-C", "access", "--app", APP_ID, "-r", "el")

        # When
        result = invoke(
            "acl", "copy", "--from-app", APP_ID, "--app", OTHER_APP_ID, "-C", "access", "--overwrite"
        )

        # Then
        assert result.exit_code == 0, result.output
        assert "access/none: 1 added, 0 removed" in result.output
        diff = invoke("acl", "diff", "--from-app", APP_ID, "--app", OTHER_APP_ID, "-C", "access")
        assert "access/none: identical" in diff.output

    def test_copy_of_default_source_resets_destination(self, snapshot):
        invoke("acl", "grant", "alice", "-C", "launch", "--app", OTHER_APP_ID)

        result = invoke("acl", "copy", "--from-app", APP_ID, "--app", OTHER_APP_ID, "-C", "launch")

        assert result.exit_code == 0, result.output
        assert "launch/none: now uses the machine default" in result.output

    def test_one_sided_application_is_a_usage_error(self, snapshot):
        result = invoke("acl", "diff", "--app", APP_ID)

        assert result.exit_code == 2

    def test_settings_copy_needs_machine_targets(self, snapshot):
        result = invoke(
            "acl", "copy", "--from-app", APP_ID, "--app", OTHER_APP_ID, "--with-settings"
        )

        assert result.exit_code == 2
