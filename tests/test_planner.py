import pytest

from opskit.config import OpsKitConfig
from opskit.directives import build_directive_set
from opskit.errors import MalformedDirective
from opskit.planner import ActionKind, plan
from opskit.resources import LAST_ACCESS_PATH, ResourceRegistry

from conftest import SSHD_CONFIG


def _set(*entries):
    return build_directive_set("test", list(entries))


def test_empty_rule_table_plans_adds(registry, host):
    result = plan(_set(
        {"kind": "rule", "key": "22/tcp", "value": "allow"},
        {"kind": "rule", "key": "80/tcp", "value": "allow"},
    ), registry)
    assert result.kinds == [ActionKind.ADD, ActionKind.ADD]
    assert [a.rationale for a in result] == ["key absent", "key absent"]


def test_actions_follow_directive_order(registry, host):
    host.ufw_rules = [("allow", "22/tcp", "SSH"), ("allow", "3306/tcp", None)]
    host.files["/etc/ssh/sshd_config"] = SSHD_CONFIG
    result = plan(_set(
        {"kind": "file_block", "key": "X11Forwarding", "value": "no"},
        {"kind": "rule", "key": "22/tcp", "value": "allow"},
        {"kind": "rule", "key": "3306/tcp", "ensure": "absent"},
        {"kind": "file_block", "key": "PubkeyAuthentication", "value": "yes"},
        {"kind": "rule", "key": "443/tcp", "value": "allow"},
    ), registry)
    assert result.kinds == [
        ActionKind.REPLACE,
        ActionKind.SKIP,
        ActionKind.REMOVE,
        ActionKind.SKIP,
        ActionKind.ADD,
    ]
    assert result.actions[0].current == "yes"
    assert result.actions[3].rationale == "value matches"
    assert result.counts() == {"replace": 1, "skip": 2, "remove": 1, "add": 1}


def test_presence_match_ignores_value(registry, host):
    host.files["/etc/ssh/sshd_config"] = "Ciphers aes256-ctr\n"
    result = plan(_set(
        {"kind": "file_block", "key": "Ciphers", "value": "chacha20-poly1305@openssh.com", "match": "presence"},
        {"kind": "file_block", "key": "Ciphers", "value": "chacha20-poly1305@openssh.com"},
    ), registry)
    assert result.kinds == [ActionKind.SKIP, ActionKind.REPLACE]


def test_keyword_comparison_is_canonical(registry, host):
    host.files["/etc/ssh/sshd_config"] = "passwordauthentication   no\n"
    result = plan(_set({"kind": "file_block", "key": "PasswordAuthentication", "value": "no"}), registry)
    assert result.converged


def test_removal_of_absent_key_skips(registry, host):
    result = plan(_set({"kind": "rule", "key": "3306/tcp", "ensure": "absent"}), registry)
    assert result.kinds == [ActionKind.SKIP]
    assert result.actions[0].rationale == "already absent"


def test_removing_sole_access_rule_aborts(registry, host):
    host.ufw_rules = [("allow", "22/tcp", None), ("allow", "80/tcp", None)]
    result = plan(_set(
        {"kind": "rule", "key": "22/tcp", "ensure": "absent"},
        {"kind": "rule", "key": "80/tcp", "ensure": "absent"},
    ), registry)
    assert result.kinds == [ActionKind.ABORT, ActionKind.REMOVE]
    assert result.actions[0].rationale == LAST_ACCESS_PATH


def test_denying_sole_access_rule_aborts(registry, host):
    host.ufw_rules = [("allow", "22/tcp", None)]
    result = plan(_set({"kind": "rule", "key": "22/tcp", "value": "deny", "match": "exact"}), registry)
    assert result.kinds == [ActionKind.ABORT]


def test_removing_access_rule_allowed_when_another_remains(registry, host):
    host.ufw_rules = [("allow", "22/tcp", None), ("limit", "OpenSSH", None)]
    result = plan(_set({"kind": "rule", "key": "22/tcp", "ensure": "absent"}), registry)
    assert result.kinds == [ActionKind.REMOVE]


def test_disabling_both_ssh_login_methods_aborts(registry, host):
    host.files["/etc/ssh/sshd_config"] = "PubkeyAuthentication no\nPasswordAuthentication yes\n"
    result = plan(_set({"kind": "file_block", "key": "PasswordAuthentication", "value": "no"}), registry)
    assert result.kinds == [ActionKind.ABORT]
    assert result.actions[0].rationale == LAST_ACCESS_PATH


def test_disabling_password_auth_requires_admin_key(tmp_path, host):
    config = OpsKitConfig(
        paths={"state_dir": str(tmp_path)},
        resources={"sshd": {"admin_user": "deploy"}},
    )
    registry = ResourceRegistry.from_config(config, host)
    host.files["/etc/ssh/sshd_config"] = SSHD_CONFIG
    directives = _set({"kind": "file_block", "key": "PasswordAuthentication", "value": "no"})

    result = plan(directives, registry)
    assert result.kinds == [ActionKind.ABORT]
    assert "deploy has no authorized_keys" in result.actions[0].rationale

    host.files["/home/deploy/.ssh/authorized_keys"] = "ssh-ed25519 AAAAC3Nza deploy@laptop\n"
    assert plan(directives, registry).kinds == [ActionKind.REPLACE]


def test_unavailable_resource_only_aborts_its_own_directives(registry, host):
    host.installed.discard("ufw")
    host.files["/etc/ssh/sshd_config"] = SSHD_CONFIG
    result = plan(_set(
        {"kind": "rule", "key": "22/tcp"},
        {"kind": "file_block", "key": "X11Forwarding", "value": "no"},
        {"kind": "rule", "key": "80/tcp"},
    ), registry)
    assert result.kinds == [ActionKind.ABORT, ActionKind.REPLACE, ActionKind.ABORT]
    assert result.actions[0].unavailable
    assert result.actions[0].rationale.startswith("resource unavailable")


def test_each_resource_is_probed_once(registry, host):
    plan(_set(
        {"kind": "rule", "key": "22/tcp"},
        {"kind": "rule", "key": "80/tcp"},
        {"kind": "rule", "key": "443/tcp"},
    ), registry)
    assert host.commands.count("ufw show added") == 1


def test_planning_writes_nothing(registry, host):
    host.ufw_rules = [("allow", "22/tcp", None)]
    host.files["/etc/ssh/sshd_config"] = SSHD_CONFIG
    directives = _set(
        {"kind": "rule", "key": "22/tcp", "ensure": "absent"},
        {"kind": "rule", "key": "80/tcp"},
        {"kind": "file_block", "key": "X11Forwarding", "value": "no"},
        {"kind": "cron", "key": "/opt/vps-backup/backup.sh", "value": "@daily"},
    )
    first = plan(directives, registry)
    second = plan(directives, registry)

    assert first == second
    assert host.mutating_commands == []
    assert host.files["/etc/ssh/sshd_config"] == SSHD_CONFIG
    assert host.ufw_rules == [("allow", "22/tcp", None)]


def test_malformed_set_fails_before_probing(registry, host):
    with pytest.raises(MalformedDirective):
        plan(_set(
            {"kind": "rule", "key": "22/tcp"},
            {"kind": "ini", "key": "sshd.maxretry", "value": "3", "resource": "nope"},
        ), registry)
    assert host.commands == []


def test_lockout_check_that_cannot_run_aborts_as_unavailable(tmp_path, host):
    config = OpsKitConfig(
        paths={"state_dir": str(tmp_path)},
        resources={"sshd": {"admin_user": "deploy"}},
    )
    registry = ResourceRegistry.from_config(config, host)
    host.files["/etc/ssh/sshd_config"] = SSHD_CONFIG
    host.broken.add("test -s")

    result = plan(_set(
        {"kind": "file_block", "key": "PasswordAuthentication", "value": "no"},
        {"kind": "rule", "key": "80/tcp"},
    ), registry)
    assert result.kinds == [ActionKind.ABORT, ActionKind.ADD]
    assert result.actions[0].unavailable
    assert "Socket is closed" in result.actions[0].rationale


def test_include_before_key_adds_note(registry, host):
    host.files["/etc/ssh/sshd_config"] = SSHD_CONFIG
    result = plan(_set(
        {"kind": "file_block", "key": "X11Forwarding", "value": "no"},
        {"kind": "file_block", "key": "PubkeyAuthentication", "value": "yes"},
        {"kind": "rule", "key": "80/tcp"},
    ), registry)
    assert "sshd_config.d/*.conf is read before X11Forwarding" in result.actions[0].note
    # Only changes carry notes
    assert result.actions[1].note is None
    assert result.actions[2].note is None


def test_firewall_policy_plans_against_status(registry, host):
    result = plan(_set(
        {"kind": "policy", "key": "incoming", "value": "deny"},
        {"kind": "policy", "key": "outgoing", "value": "allow"},
        {"kind": "policy", "key": "status", "value": "active"},
    ), registry)
    assert result.kinds == [ActionKind.SKIP, ActionKind.SKIP, ActionKind.REPLACE]
    assert result.actions[2].current == "inactive"
