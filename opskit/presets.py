"""Built-in directive sets.

These cover what an operator usually wants on a fresh VPS: a firewall that
keeps SSH open, hardened sshd, fail2ban jails, kernel parameters, automatic
upgrades, auditd watches and a scheduled backup job.
"""

from typing import Callable

from opskit.directives import DirectiveSet, build_directive_set

STRONG_CIPHERS = (
    "chacha20-poly1305@openssh.com,aes256-gcm@openssh.com,aes128-gcm@openssh.com,"
    "aes256-ctr,aes192-ctr,aes128-ctr"
)
STRONG_MACS = "hmac-sha2-512-etm@openssh.com,hmac-sha2-256-etm@openssh.com,hmac-sha2-512,hmac-sha2-256"
STRONG_KEX = (
    "curve25519-sha256,curve25519-sha256@libssh.org,"
    "diffie-hellman-group16-sha512,diffie-hellman-group18-sha512"
)

BACKUP_SCRIPT = "/opt/vps-backup/backup.sh"

BACKUP_SCHEDULES = {
    "daily": "0 2 * * *",
    "weekly": "0 2 * * 0",
}


def _rules(rules: list[tuple[str, str]]) -> list[dict]:
    return [{"kind": "rule", "key": port, "value": "allow", "comment": comment} for port, comment in rules]


def _policy(key: str, value: str) -> dict:
    return {"kind": "policy", "key": key, "value": value}


def firewall_basic(**options) -> DirectiveSet:
    """Deny incoming by default, open SSH before web, and only then enable ufw."""
    return build_directive_set("firewall-basic", [
        _policy("incoming", "deny"),
        _policy("outgoing", "allow"),
        *_rules([
            ("22/tcp", "SSH"),
            ("80/tcp", "HTTP"),
            ("443/tcp", "HTTPS"),
        ]),
        _policy("status", "active"),
    ])


def firewall_livekit(**options) -> DirectiveSet:
    return build_directive_set("firewall-livekit", _rules([
        ("7881/tcp", "LiveKit WebRTC over TCP"),
        ("3478/udp", "LiveKit TURN/UDP"),
        ("50000:60000/udp", "LiveKit WebRTC UDP Range"),
        ("1935/tcp", "LiveKit RTMP Ingress"),
        ("7885/udp", "LiveKit WHIP Ingress WebRTC"),
    ]))


def firewall_monitoring(**options) -> DirectiveSet:
    return build_directive_set("firewall-monitoring", _rules([
        ("9091/tcp", "Prometheus"),
        ("3000/tcp", "Grafana"),
    ]))


def _ssh(key: str, value: str, match: str = "exact") -> dict:
    return {"kind": "file_block", "resource": "sshd", "key": key, "value": value, "match": match}


def ssh_basic(disable_password_auth: bool = False, **options) -> DirectiveSet:
    entries = [
        _ssh("PermitRootLogin", "prohibit-password"),
        _ssh("PermitEmptyPasswords", "no"),
        _ssh("MaxAuthTries", "3"),
    ]
    if disable_password_auth:
        entries.append(_ssh("PasswordAuthentication", "no"))
    return build_directive_set("ssh-basic", entries)


def ssh_full(disable_password_auth: bool = False, **options) -> DirectiveSet:
    full = build_directive_set("ssh-full", [
        _ssh("X11Forwarding", "no"),
        _ssh("LoginGraceTime", "30"),
        _ssh("MaxSessions", "2"),
        # Only set algorithm lists where the operator has not chosen their own
        _ssh("Ciphers", STRONG_CIPHERS, match="presence"),
        _ssh("MACs", STRONG_MACS, match="presence"),
        _ssh("KexAlgorithms", STRONG_KEX, match="presence"),
    ])
    return ssh_basic(disable_password_auth).extend(full, name="ssh-full")


def _jail(key: str, value: str) -> dict:
    return {"kind": "ini", "resource": "fail2ban", "key": key, "value": value}


def fail2ban_jails(**options) -> DirectiveSet:
    return build_directive_set("fail2ban", [
        _jail("DEFAULT.bantime", "3600"),
        _jail("DEFAULT.findtime", "600"),
        _jail("DEFAULT.maxretry", "3"),
        _jail("sshd.enabled", "true"),
        _jail("sshd.port", "ssh"),
        _jail("sshd.logpath", "%(sshd_log)s"),
        _jail("sshd.backend", "%(sshd_backend)s"),
        _jail("sshd.maxretry", "3"),
        _jail("sshd.bantime", "3600"),
        _jail("sshd.findtime", "600"),
        _jail("sshd-ddos.enabled", "true"),
        _jail("sshd-ddos.port", "ssh"),
        _jail("sshd-ddos.logpath", "%(sshd_log)s"),
        _jail("sshd-ddos.maxretry", "2"),
        _jail("sshd-ddos.bantime", "7200"),
        _jail("sshd-ddos.findtime", "300"),
    ])


def kernel_params(**options) -> DirectiveSet:
    """Kernel parameters for a container/web host."""
    params = {
        "kernel.dmesg_restrict": "1",
        "net.ipv4.tcp_syncookies": "1",
        "fs.inotify.max_user_instances": "1048576",
        "fs.inotify.max_user_watches": "1048576",
        "vm.max_map_count": "262144",
    }
    return build_directive_set("kernel-params", [
        {"kind": "file_block", "resource": "sysctl", "key": key, "value": value}
        for key, value in params.items()
    ])


def auto_upgrades(**options) -> DirectiveSet:
    """Daily package list refresh and unattended security upgrades."""
    periodic = {
        "Update-Package-Lists": "1",
        "Download-Upgradeable-Packages": "1",
        "AutocleanInterval": "7",
        "Unattended-Upgrade": "1",
    }
    return build_directive_set("auto-upgrades", [
        {"kind": "file_block", "resource": "auto-upgrades", "key": f"APT::Periodic::{key}", "value": f'"{value}";'}
        for key, value in periodic.items()
    ])


AUDIT_WATCHES = [
    ("/etc/group", "identity"),
    ("/etc/passwd", "identity"),
    ("/etc/gshadow", "identity"),
    ("/etc/shadow", "identity"),
    ("/etc/sudoers", "actions"),
    ("/etc/sudoers.d/", "actions"),
    ("/etc/ssh/sshd_config", "sshd"),
    ("/var/log/lastlog", "logins"),
    ("/var/run/faillock/", "logins"),
    ("/etc/network/", "network"),
]


def auditd_watches(**options) -> DirectiveSet:
    return build_directive_set("auditd", [
        {"kind": "watch", "key": path, "value": f"-p wa -k {key}"}
        for path, key in AUDIT_WATCHES
    ])


def backup_schedule(backup_schedule: str = "daily", **options) -> DirectiveSet:
    """Run the backup script from root's crontab.

    ``backup_schedule`` is `daily`, `weekly` or a literal cron expression.
    """
    schedule = BACKUP_SCHEDULES.get(backup_schedule, backup_schedule)
    return build_directive_set("backup-schedule", [
        {"kind": "cron", "resource": "crontab", "key": BACKUP_SCRIPT, "value": schedule},
    ])


PRESETS: dict[str, tuple[str, Callable[..., DirectiveSet]]] = {
    "firewall-basic": ("Deny incoming, allow SSH, HTTP and HTTPS, enable ufw", firewall_basic),
    "firewall-livekit": ("Open LiveKit WebRTC, TURN and ingress ports", firewall_livekit),
    "firewall-monitoring": ("Open Prometheus and Grafana ports", firewall_monitoring),
    "ssh-basic": ("Root login by key only, no empty passwords, 3 auth tries", ssh_basic),
    "ssh-full": ("ssh-basic plus session limits and strong algorithms", ssh_full),
    "fail2ban": ("sshd and sshd-ddos jails", fail2ban_jails),
    "kernel-params": ("sysctl hardening and inotify/map limits", kernel_params),
    "auto-upgrades": ("Daily apt refresh and unattended upgrades", auto_upgrades),
    "auditd": ("Watch identity, sudoers, sshd, login and network files", auditd_watches),
    "backup-schedule": (f"Schedule {BACKUP_SCRIPT} in root's crontab", backup_schedule),
}


def get_preset(name: str, **options) -> DirectiveSet:
    if name not in PRESETS:
        raise KeyError(f"Unknown preset: {name} (choose from {', '.join(PRESETS)})")
    _, factory = PRESETS[name]
    return factory(**options)
