"""
Code pattern checks used by ``validate_code_pattern``.

A small rule table of regexes over a code snippet.  Each check reports a
``Violation`` with a severity and the fix the project expects.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Literal

Severity = Literal["violation", "warning"]


@dataclass(frozen=True)
class Violation:
    """One failed check."""

    rule: str
    severity: Severity
    title: str
    fix: str

    def to_markdown(self) -> str:
        marker = "VIOLATION" if self.severity == "violation" else "WARNING"
        return f"**{marker}: {self.title}**\n{self.fix}"


# ─── Patterns ────────────────────────────────────────────────────────────────

CROSS_APP_IMPORT = re.compile(r"(?:\.\./)+apps/")
INLINE_STYLE = re.compile(r"style=\{\{|\bstyle\s*:")
SERVER_ACTION = re.compile(r"\b(?:export\s+)?async\s+function\b")
FORM_DATA = re.compile(r"\bformData\b")
ZOD_USAGE = re.compile(r"\bz\.|['\"]zod['\"]")
ENV_FILE_REF = re.compile(r"\.env\b")
PROCESS_ENV = re.compile(r"\bprocess\.env\b")


def _cross_app_import(code: str) -> bool:
    return bool(CROSS_APP_IMPORT.search(code))


def _inline_style(code: str) -> bool:
    return bool(INLINE_STYLE.search(code))


def _missing_zod(code: str) -> bool:
    return bool(SERVER_ACTION.search(code) and FORM_DATA.search(code) and not ZOD_USAGE.search(code))


def _env_file(code: str) -> bool:
    return bool(ENV_FILE_REF.search(code)) and not PROCESS_ENV.search(code)


CHECKS: list[tuple[Callable[[str], bool], Violation]] = [
    (
        _cross_app_import,
        Violation(
            rule="cross-app-import",
            severity="violation",
            title="Cross-App Import Detected",
            fix="Never import from `../../apps/*`. Use shared packages instead, "
            'e.g. `import { Button } from "@repo/ui/button"`.',
        ),
    ),
    (
        _inline_style,
        Violation(
            rule="inline-style",
            severity="warning",
            title="Inline Styles Detected",
            fix='Use Tailwind CSS classes instead of inline styles, e.g. `<div className="p-4">`.',
        ),
    ),
    (
        _missing_zod,
        Violation(
            rule="missing-zod",
            severity="violation",
            title="Missing Zod Validation",
            fix="All Server Actions must validate input with Zod: "
            "`const parsed = schema.safeParse(data)`.",
        ),
    ),
    (
        _env_file,
        Violation(
            rule="env-file",
            severity="warning",
            title=".env File Reference",
            fix="Use the secrets manager for configuration, not .env files.",
        ),
    ),
]


def check_code(code: str) -> list[Violation]:
    """Run every check against *code* and return the ones that fired."""
    return [violation for check, violation in CHECKS if check(code)]
