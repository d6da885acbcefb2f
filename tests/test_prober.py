from opskit.config import KeywordFileResource
from opskit.directives import ResourceKind
from opskit.prober import (
    canonical_value,
    ini_entries,
    normalize_crontab,
    normalize_ini,
    normalize_keyword_file,
    normalize_rules,
    parse_ufw_line,
    probe,
)

from conftest import SSHD_CONFIG

SSHD = KeywordFileResource(path="/etc/ssh/sshd_config", case_insensitive=True, stop_at="Match")
SYSCTL = KeywordFileResource(path="/etc/sysctl.d/99.conf", separator="equals", first_wins=False)

UFW_OUTPUT = """\
Added user rules (see 'ufw status' for running firewall):
ufw allow 22/tcp comment 'SSH'
ufw limit 2222/tcp
ufw allow 8080/tcp comment 'Web Application'
ufw route allow in on eth0 out on lxdbr0
ufw deny 22/tcp
"""


def test_parse_ufw_line():
    assert parse_ufw_line("ufw allow 22/tcp comment 'SSH'") == ("22/tcp", "allow", "SSH")
    assert parse_ufw_line("ufw allow from 10.0.0.0/8") == ("from 10.0.0.0/8", "allow", None)
    assert parse_ufw_line("ufw route allow in on eth0") == ("route in on eth0", "allow", None)
    assert parse_ufw_line("Added user rules (see 'ufw status' for running firewall):") is None
    assert parse_ufw_line("(None)") is None


def test_normalize_rules_first_rule_wins():
    values = normalize_rules(UFW_OUTPUT)
    assert values == {
        "22/tcp": "allow",
        "2222/tcp": "limit",
        "8080/tcp": "allow",
        "route in on eth0 out on lxdbr0": "allow",
    }


def test_normalize_rules_empty_table():
    assert normalize_rules("Added user rules (see 'ufw status' for running firewall):\n(None)\n") == {}
    assert normalize_rules(None) == {}


def test_keyword_file_skips_comments_and_match_blocks():
    values = normalize_keyword_file(SSHD_CONFIG, SSHD)
    assert values["passwordauthentication"] == "yes"
    assert values["x11forwarding"] == "yes"
    assert "permitrootlogin" not in values
    assert "maxauthtries" not in values
    assert "match" not in values


def test_keyword_file_first_value_wins_for_sshd():
    content = "PasswordAuthentication no\npasswordauthentication   yes\n"
    assert normalize_keyword_file(content, SSHD) == {"passwordauthentication": "no"}


def test_keyword_file_collapses_whitespace():
    content = "AllowUsers   deploy\t admin\n"
    assert normalize_keyword_file(content, SSHD) == {"allowusers": "deploy admin"}


def test_sysctl_last_value_wins():
    content = "# tuning\nvm.swappiness = 10\nvm.swappiness=60\nnet.core.somaxconn =  4096\n"
    assert normalize_keyword_file(content, SYSCTL) == {
        "vm.swappiness": "60",
        "net.core.somaxconn": "4096",
    }


def test_sysctl_keys_are_case_sensitive():
    values = normalize_keyword_file("Vm.Swappiness = 1\n", SYSCTL)
    assert "Vm.Swappiness" in values


JAIL_LOCAL = """\
# local overrides
[DEFAULT]
bantime = 600

[sshd]
enabled = true
logpath = /var/log/auth.log
    /var/log/secure
; disabled for now
MaxRetry: 5
"""


def test_normalize_ini_sections_and_continuations():
    assert normalize_ini(JAIL_LOCAL) == {
        "DEFAULT.bantime": "600",
        "sshd.enabled": "true",
        "sshd.logpath": "/var/log/auth.log /var/log/secure",
        "sshd.maxretry": "5",
    }


def test_ini_entries_cover_continuation_lines():
    lines = JAIL_LOCAL.splitlines()
    logpath = next(entry for entry in ini_entries(lines) if entry.option == "logpath")
    assert lines[logpath.start].startswith("logpath")
    assert logpath.end - logpath.start == 2


def test_normalize_crontab():
    content = (
        "SHELL=/bin/bash\n"
        "# m h dom mon dow command\n"
        "0 3 * * *   /usr/local/bin/cleanup.sh --all\n"
        "@reboot /opt/start.sh\n"
        "30 4 * * 0 /usr/local/bin/cleanup.sh --all\n"
    )
    assert normalize_crontab(content) == {
        "/usr/local/bin/cleanup.sh --all": "0 3 * * *",
        "/opt/start.sh": "@reboot",
    }


def test_canonical_value():
    assert canonical_value(ResourceKind.RULE, " ALLOW ") == "allow"
    assert canonical_value(ResourceKind.FILE_BLOCK, "a   b") == "a b"
    assert canonical_value(ResourceKind.INI, None) is None


def test_probe_is_repeatable(registry, host):
    host.files["/etc/ssh/sshd_config"] = SSHD_CONFIG
    adapter = registry.get("sshd")
    first = probe(adapter)
    second = probe(adapter)
    assert first.values == second.values
    assert first.raw.content == SSHD_CONFIG
    assert host.mutating_commands == []
