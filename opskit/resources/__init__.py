"""Resource adapters and the registry that resolves directives to them."""

from opskit.config import OpsKitConfig
from opskit.directives import Directive, DirectiveSet, ResourceKind
from opskit.errors import MalformedDirective
from opskit.resources.audit_rules import AuditRulesAdapter
from opskit.resources.base import LAST_ACCESS_PATH, ResourceAdapter, TextFileAdapter
from opskit.resources.crontab import CrontabAdapter
from opskit.resources.firewall import FirewallAdapter, FirewallPolicyAdapter, UfwAdapter
from opskit.resources.ini_file import IniFileAdapter
from opskit.resources.keyword_file import KeywordFileAdapter

ADAPTERS: dict[ResourceKind, type[ResourceAdapter]] = {
    ResourceKind.RULE: FirewallAdapter,
    ResourceKind.FILE_BLOCK: KeywordFileAdapter,
    ResourceKind.INI: IniFileAdapter,
    ResourceKind.CRON: CrontabAdapter,
    ResourceKind.POLICY: FirewallPolicyAdapter,
    ResourceKind.WATCH: AuditRulesAdapter,
}


class ResourceRegistry:
    """Named resource adapters for one host."""

    def __init__(self, adapters: dict[str, ResourceAdapter]):
        self._adapters = dict(adapters)

    @classmethod
    def from_config(cls, config: OpsKitConfig, ssh) -> "ResourceRegistry":
        adapters = {}
        for name, settings in config.resources.items():
            adapter_cls = ADAPTERS[ResourceKind(settings.kind)]
            adapters[name] = adapter_cls(name, settings, ssh)
        return cls(adapters)

    def __iter__(self):
        return iter(self._adapters.values())

    def __contains__(self, name: str) -> bool:
        return name in self._adapters

    @property
    def names(self) -> list[str]:
        return list(self._adapters)

    def get(self, name: str) -> ResourceAdapter:
        if name not in self._adapters:
            raise KeyError(f"Unknown resource: {name}")
        return self._adapters[name]

    def adapter_for(self, directive: Directive) -> ResourceAdapter:
        return self.get(directive.resource)

    def check(self, directive_set: DirectiveSet) -> None:
        """Reject directives that no configured resource can take.

        Raises MalformedDirective for the first offending directive.
        """
        for index, directive in enumerate(directive_set):
            if directive.resource not in self._adapters:
                raise MalformedDirective(f"unknown resource '{directive.resource}'", index)
            adapter = self._adapters[directive.resource]
            if adapter.kind != directive.kind:
                raise MalformedDirective(
                    f"resource '{directive.resource}' holds {adapter.kind.value} entries, "
                    f"not {directive.kind.value}",
                    index,
                )
            problem = adapter.check_directive(directive)
            if problem:
                raise MalformedDirective(problem, index)


__all__ = [
    "ADAPTERS",
    "AuditRulesAdapter",
    "LAST_ACCESS_PATH",
    "CrontabAdapter",
    "FirewallAdapter",
    "FirewallPolicyAdapter",
    "IniFileAdapter",
    "KeywordFileAdapter",
    "ResourceAdapter",
    "ResourceRegistry",
    "TextFileAdapter",
    "UfwAdapter",
]
