"""ModSecurity rule files for rules with a WAF enabled.

The rule's Nginx config only points at this file; the engine mode and
rulesets live here so the Nginx side stays the same across WAF changes.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from kontainers_proxy.constants import WAF_RULES_SUFFIX
from kontainers_proxy.rules.models import Rule, WafConfig, WafMode, WafRuleset

RULESET_FILES: dict[WafRuleset, tuple[str, ...]] = {
    WafRuleset.CORE: ("coreruleset/crs-setup.conf", "coreruleset/rules/*.conf"),
    WafRuleset.SQL: ("rules/sql-injection.conf",),
    WafRuleset.XSS: ("rules/xss-protection.conf",),
    WafRuleset.LFI: ("rules/lfi-protection.conf",),
    WafRuleset.RFI: ("rules/rfi-protection.conf",),
    WafRuleset.SCANNER: ("rules/scanner-detection.conf",),
    WafRuleset.SESSION: ("rules/session-protection.conf",),
    WafRuleset.PROTOCOL: ("rules/protocol-protection.conf",),
}


def waf_config_for(rule: Rule) -> Optional[WafConfig]:
    """Return the rule's WAF settings when they apply to its protocol."""
    if rule.protocol.is_stream or rule.advanced_config is None:
        return None
    waf = rule.advanced_config.waf_config
    if waf is None or not waf.enabled:
        return None
    return waf


def waf_rules_path(modsecurity_dir: Path, rule_id: str) -> Path:
    return modsecurity_dir / "rules" / f"{rule_id}{WAF_RULES_SUFFIX}"


def generate_waf_rules(rule: Rule, modsecurity_dir: Path) -> Optional[str]:
    waf = waf_config_for(rule)
    if waf is None:
        return None

    engine = "DetectionOnly" if waf.mode == WafMode.DETECTION else "On"
    lines = [
        f"# ModSecurity rules for {rule.name or rule.id} ({rule.server_name})",
        "",
        f"SecRuleEngine {engine}",
    ]

    includes = [
        modsecurity_dir / relative
        for ruleset in WafRuleset
        if ruleset in waf.rulesets
        for relative in RULESET_FILES.get(ruleset, ())
    ]
    if includes:
        lines.append("")
        lines.extend(f"Include {path}" for path in includes)

    custom = waf.custom_rules.strip()
    if custom:
        lines.extend(["", "# custom rules", custom])
    return "\n".join(lines) + "\n"
