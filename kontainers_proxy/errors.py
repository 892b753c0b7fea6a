from pathlib import Path


class ProxyRuleError(Exception):
    """Base user-facing application error."""


class RuleValidationError(ProxyRuleError):
    def __init__(self, problems: list[str], rule_id: str | None = None) -> None:
        self.problems = list(problems)
        self.rule_id = rule_id
        label = f"Invalid proxy rule {rule_id}" if rule_id else "Invalid proxy rule"
        super().__init__(f"{label}: {'; '.join(self.problems)}")


class CompileError(ProxyRuleError):
    def __init__(self, rule_id: str, detail: str) -> None:
        self.rule_id = rule_id
        self.detail = detail
        super().__init__(f"Cannot render config for rule {rule_id}: {detail}")


class ConfigTestFailedError(ProxyRuleError):
    def __init__(self, diagnostic: str, rule_id: str | None = None) -> None:
        self.diagnostic = diagnostic
        self.rule_id = rule_id
        super().__init__(f"Nginx configuration test failed: {diagnostic}")


class ApplyFailedError(ProxyRuleError):
    def __init__(
        self, output: str, rule_id: str | None = None, rolled_back: bool = False
    ) -> None:
        self.output = output
        self.rule_id = rule_id
        self.rolled_back = rolled_back
        super().__init__(f"Failed to reload Nginx: {output}")


class ConfigStoreError(ProxyRuleError):
    def __init__(self, path: Path, message: str) -> None:
        self.path = path
        self.message = message
        super().__init__(f"{message}: {path}")


class SettingsError(ProxyRuleError):
    def __init__(self, source: str, detail: str) -> None:
        self.source = source
        self.detail = detail
        super().__init__(f"Invalid settings ({detail}): {source}")
