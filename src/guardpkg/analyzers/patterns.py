"""Declarative catalog of suspicious-code rules.

Each rule is a (category, compiled regex, description) record. A rule either
fires on a piece of content or it does not; how many times it matches is
irrelevant to the result.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from guardpkg.models.schemas import PatternMatch, Severity

# Severity tag per risk category
CATEGORY_SEVERITY: dict[str, Severity] = {
    "code-execution": Severity.CRITICAL,
    "data-exfiltration": Severity.HIGH,
    "obfuscation": Severity.MODERATE,
    "system-access": Severity.HIGH,
    "crypto-mining": Severity.CRITICAL,
    "persistence": Severity.HIGH,
    "anti-debugging": Severity.LOW,
    "fingerprinting": Severity.LOW,
    "known-exploits": Severity.CRITICAL,
    "package-manipulation": Severity.MODERATE,
    "environment-detection": Severity.LOW,
}


@dataclass(frozen=True)
class PatternRule:
    """A single catalog rule."""

    category: str
    pattern: re.Pattern[str]
    description: str

    @property
    def severity(self) -> Severity:
        return CATEGORY_SEVERITY[self.category]


# (category, regex, flags, description)
_RULE_TABLE: list[tuple[str, str, int, str]] = [
    # Code execution
    ("code-execution", r"\beval\s*\(", 0, "eval() call"),
    ("code-execution", r"new\s+Function\s*\(", 0, "Function constructor"),
    ("code-execution", r"\b(?:setTimeout|setInterval)\s*\([^)]*\beval\b", 0, "eval scheduled via timer"),
    ("code-execution", r"require\(\s*['\"]child_process['\"]\s*\)", 0, "child_process import"),
    ("code-execution", r"\.exec(?:Sync)?\s*\(", 0, "Shell command execution"),
    ("code-execution", r"vm\.runIn(?:New|This)?Context", 0, "vm sandbox escape primitive"),

    # Data exfiltration
    ("data-exfiltration", r"new\s+WebSocket\s*\(", 0, "WebSocket connection"),
    ("data-exfiltration", r"\bXMLHttpRequest\b", 0, "XMLHttpRequest usage"),
    ("data-exfiltration", r"navigator\.sendBeacon", 0, "Beacon data upload"),
    ("data-exfiltration", r"require\(\s*['\"](?:http|https|net|dgram)['\"]\s*\)", 0, "Raw network module import"),
    ("data-exfiltration", r"\bdns\.(?:lookup|resolve)\w*\s*\(", 0, "DNS lookup (possible DNS tunnelling)"),
    ("data-exfiltration", r"\.upload\s*\(", 0, "File upload call"),

    # Obfuscation
    ("obfuscation", r"\b(?:atob|btoa)\s*\(", 0, "Base64 encode/decode"),
    ("obfuscation", r"String\.fromCharCode\s*\(\s*(?:\d+\s*,\s*){3,}\d+\s*\)", 0, "Character code array"),
    ("obfuscation", r"Buffer\.from\s*\([^)]*['\"]base64['\"]", 0, "Buffer decoded from base64"),
    ("obfuscation", r"(?:\\x[0-9a-fA-F]{2}){8,}", 0, "Hex-escaped string sequence"),
    ("obfuscation", r"(?:\\u[0-9a-fA-F]{4}){6,}", 0, "Unicode-escaped string sequence"),
    ("obfuscation", r"\[['\"]\w+['\"]\]\[['\"]\w+['\"]\]", 0, "Nested bracket-notation access"),
    ("obfuscation", r"\b_0x[0-9a-fA-F]{4,}\b", 0, "Obfuscator-generated identifiers"),

    # System access
    ("system-access", r"process\.binding\s*\(", 0, "Native binding access"),
    ("system-access", r"require\(\s*['\"](?:sudo-prompt|registry-js|systeminformation)['\"]\s*\)", 0,
     "Privileged system module import"),
    ("system-access", r"process\.kill\s*\(", 0, "Process termination"),
    ("system-access", r"['\"][^'\"]*\.(?:ssh|aws|gnupg)/[^'\"]*['\"]", 0, "Credential directory path"),
    ("system-access", r"['\"][^'\"]*/etc/(?:passwd|shadow|hosts)['\"]", 0, "System file path"),

    # Crypto mining
    ("crypto-mining", r"stratum\+tcp://", 0, "Mining pool protocol"),
    ("crypto-mining", r"\b(?:coinhive|cryptonight|xmrig)\b", re.IGNORECASE, "Known miner reference"),
    ("crypto-mining", r"\bminerAddress\b|\bmining-pool\b|pool\.supportxmr", 0, "Mining configuration"),
    ("crypto-mining", r"\bhashrate\b", re.IGNORECASE, "Hashrate reporting"),
    ("crypto-mining", r"\b(?:monero|electroneum)\b", re.IGNORECASE, "Privacy coin reference"),

    # Persistence
    ("persistence", r"\.(?:bashrc|bash_profile|zshrc|profile)\b", 0, "Shell profile modification"),
    ("persistence", r"\bcrontab\b", 0, "Cron job installation"),
    ("persistence", r"\b(?:systemctl|launchctl)\b", 0, "Service manager usage"),
    ("persistence", r"\bautostart\b", re.IGNORECASE, "Autostart entry"),

    # Anti-debugging
    ("anti-debugging", r"\bdebugger\s*;", 0, "debugger statement"),
    ("anti-debugging", r"console\s*\.\s*clear\s*\(", 0, "Console clearing"),
    ("anti-debugging", r"chrome\s*\.\s*debugger", 0, "Debugger API access"),
    ("anti-debugging", r"process\.execArgv", 0, "Inspector flag detection"),

    # Fingerprinting
    ("fingerprinting", r"navigator\.(?:userAgent|platform|hardwareConcurrency|languages?)", 0,
     "Browser fingerprinting"),
    ("fingerprinting", r"screen\.(?:width|height|availWidth|availHeight)", 0, "Screen fingerprinting"),
    ("fingerprinting", r"canvas\.toDataURL", 0, "Canvas fingerprinting"),
    ("fingerprinting", r"os\.(?:userInfo|networkInterfaces|hostname)\s*\(", 0, "Host fingerprinting"),

    # Known exploits
    ("known-exploits", r"\.__proto__\b|\[\s*['\"]__proto__['\"]\s*\]", 0, "Prototype pollution"),
    ("known-exploits", r"constructor\.prototype|\[\s*['\"]constructor['\"]\s*\]", 0, "Constructor prototype access"),
    ("known-exploits", r"Buffer\.allocUnsafe", 0, "Uninitialized buffer allocation"),
    ("known-exploits", r"child_process\.fork", 0, "Process forking"),

    # Package manipulation
    ("package-manipulation", r"\bnpm\s+(?:publish|config\s+set|adduser|token)\b", 0, "npm account/publish command"),
    ("package-manipulation", r"['\"][^'\"]*\.npmrc['\"]", 0, ".npmrc access"),
    ("package-manipulation", r"\bNPM_TOKEN\b", 0, "npm token access"),

    # Environment detection
    ("environment-detection", r"process\.env\.(?:PATH|HOME|USER|USERPROFILE)\b", 0, "User environment probing"),
    ("environment-detection", r"process\.(?:platform|arch)\b", 0, "Platform detection"),
    ("environment-detection", r"\b(?:Object\.(?:keys|entries)\s*\(\s*process\.env\s*\))", 0,
     "Environment enumeration"),
]


def _compile_rules(table: Iterable[tuple[str, str, int, str]]) -> tuple[PatternRule, ...]:
    rules = []
    for category, regex, flags, description in table:
        if category not in CATEGORY_SEVERITY:
            raise ValueError(f"Unknown pattern category: {category}")
        rules.append(PatternRule(category, re.compile(regex, flags | re.MULTILINE), description))
    return tuple(rules)


class PatternCatalog:
    """Immutable set of categorized suspicious-code rules."""

    def __init__(self, rules: Iterable[PatternRule] | None = None) -> None:
        self._rules: tuple[PatternRule, ...] = (
            tuple(rules) if rules is not None else _compile_rules(_RULE_TABLE)
        )

    @property
    def rules(self) -> tuple[PatternRule, ...]:
        return self._rules

    def categories(self) -> list[str]:
        """Return the categories covered by this catalog, in rule order."""
        return list(dict.fromkeys(rule.category for rule in self._rules))

    def match(self, content: str) -> list[PatternMatch]:
        """Return one match per rule that fires on the content."""
        if not content:
            return []
        return [
            PatternMatch(
                category=rule.category,
                description=rule.description,
                severity=rule.severity,
            )
            for rule in self._rules
            if rule.pattern.search(content)
        ]

    def match_categories(self, content: str) -> set[str]:
        return {m.category for m in self.match(content)}


DEFAULT_CATALOG = PatternCatalog()
