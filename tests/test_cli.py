import io

import pytest

import main
from opskit.audit import AuditLog, AuditEntry, Outcome
from opskit.directives import Directive, ResourceKind
from opskit.planner import Action, ActionKind
from opskit.snapshots import SnapshotStore

from conftest import SSHD_CONFIG


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(f"paths:\n  state_dir: {tmp_path / 'state'}\n")
    return path


def test_parser_collects_presets_and_files():
    args = main.build_parser().parse_args([
        "apply", "config.yaml", "-p", "firewall-basic", "-p", "ssh-basic",
        "-f", "extra.yaml", "--decline-risky", "--disable-password-auth",
    ])
    assert args.func is main.cmd_apply
    assert args.preset == ["firewall-basic", "ssh-basic"]
    assert args.file == ["extra.yaml"]
    assert args.decline_risky and not args.yes
    assert args.backup_schedule == "daily"


def test_parser_rejects_unknown_preset():
    with pytest.raises(SystemExit):
        main.build_parser().parse_args(["plan", "-p", "nope"])


def test_yes_and_decline_are_exclusive():
    with pytest.raises(SystemExit):
        main.build_parser().parse_args(["apply", "-p", "ssh-basic", "--yes", "--decline-risky"])


def test_gather_directives_in_command_line_order(tmp_path):
    extra = tmp_path / "extra.yaml"
    extra.write_text("- {kind: rule, key: 8080/tcp}\n")
    args = main.build_parser().parse_args(["plan", "-p", "firewall-basic", "-f", str(extra)])
    combined = main.gather_directives(args)
    assert [d.key for d in combined][-1] == "8080/tcp"
    assert len(combined) == 4


def test_gather_directives_needs_input():
    args = main.build_parser().parse_args(["plan"])
    with pytest.raises(SystemExit) as exc_info:
        main.gather_directives(args)
    assert exc_info.value.code == 1


def test_bad_config_exits(tmp_path):
    with pytest.raises(SystemExit) as exc_info:
        main.load_and_check_config(str(tmp_path / "missing.yaml"))
    assert exc_info.value.code == 1


def test_presets_command():
    assert main.cmd_presets(main.build_parser().parse_args(["presets"])) == 0


def test_snapshots_and_audit_commands(config_file, tmp_path):
    state = tmp_path / "state"
    SnapshotStore(state / "snapshots").save("sshd", ResourceKind.FILE_BLOCK, "Port 22\n")
    action = Action(directive=Directive(kind="rule", key="22/tcp"), kind=ActionKind.ADD, rationale="key absent")
    AuditLog(state / "audit").append(AuditEntry(run_id="r1", action=action, outcome=Outcome.APPLIED))

    parser = main.build_parser()
    assert main.cmd_snapshots(parser.parse_args(["snapshots", str(config_file)])) == 0
    assert main.cmd_audit(parser.parse_args(["audit", str(config_file)])) == 0
    assert main.cmd_audit(parser.parse_args(["audit", str(config_file), "--run", "missing"])) == 0


@pytest.fixture
def connected(monkeypatch, host):
    monkeypatch.setattr(main, "connect", lambda config: host)
    return host


@pytest.fixture
def password_off(tmp_path):
    path = tmp_path / "password-off.yaml"
    path.write_text("- {kind: file_block, key: PasswordAuthentication, value: 'no'}\n")
    return path


def test_apply_decline_risky_leaves_sshd_alone(config_file, password_off, connected):
    connected.files["/etc/ssh/sshd_config"] = SSHD_CONFIG
    args = main.build_parser().parse_args(["apply", str(config_file), "-f", str(password_off), "--decline-risky"])

    assert main.cmd_apply(args) == 0
    assert connected.files["/etc/ssh/sshd_config"] == SSHD_CONFIG
    assert connected.mutating_commands == []
    assert connected.closed


def test_apply_without_terminal_declines_risky(monkeypatch, config_file, password_off, connected):
    connected.files["/etc/ssh/sshd_config"] = SSHD_CONFIG
    monkeypatch.setattr(main.sys, "stdin", io.StringIO())
    args = main.build_parser().parse_args(["apply", str(config_file), "-f", str(password_off)])

    assert main.cmd_apply(args) == 0
    assert connected.files["/etc/ssh/sshd_config"] == SSHD_CONFIG


def test_apply_exit_code_when_rule_replace_fails(tmp_path, config_file, connected):
    connected.ufw_rules = [("allow", "22/tcp", "SSH")]
    connected.failing["ufw limit 22/tcp comment SSH"] = "ERROR: Could not update running firewall\n"
    limit = tmp_path / "limit.yaml"
    limit.write_text("- {kind: rule, key: 22/tcp, value: limit, match: exact}\n")
    args = main.build_parser().parse_args(["apply", str(config_file), "-f", str(limit), "--yes"])

    assert main.cmd_apply(args) == 2
    assert connected.ufw_rules == [("allow", "22/tcp", "SSH")]


def test_audit_command_shows_rollbacks(config_file, tmp_path):
    state = tmp_path / "state"
    AuditLog(state / "audit").append(AuditEntry(
        run_id="restore-1",
        outcome=Outcome.RESTORED,
        resource="sshd",
        restored_from="20261019-101500-000001-sshd",
        snapshot_ref="20261019-102000-000002-sshd",
    ))
    args = main.build_parser().parse_args(["audit", str(config_file), "--run", "restore-1"])
    assert main.cmd_audit(args) == 0
