"""Migration discovery and idempotency validation.

Migrations are plain SQL files named ``NNN_description.sql`` and applied with
``supabase db push``. This module lists them in order and lints them so a
rerun is always safe:

  1. CREATE TABLE / INDEX / SCHEMA use IF NOT EXISTS.
  2. CREATE FUNCTION uses CREATE OR REPLACE.
  3. CREATE POLICY is preceded by DROP POLICY IF EXISTS for the same name.
  4. DROP TABLE / INDEX use IF EXISTS.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

_MIGRATION_RE = re.compile(r'^(\d{3})_.*\.sql$')

MIGRATIONS_DIR = Path(__file__).parent

_UNSAFE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (
        re.compile(r'^\s*create\s+table\s+(?!.*if\s+not\s+exists)', re.IGNORECASE),
        'CREATE TABLE without IF NOT EXISTS',
    ),
    (
        re.compile(
            r'^\s*create\s+(unique\s+)?index\s+(?!.*if\s+not\s+exists)',
            re.IGNORECASE,
        ),
        'CREATE INDEX without IF NOT EXISTS',
    ),
    (
        re.compile(r'^\s*create\s+schema\s+(?!.*if\s+not\s+exists)', re.IGNORECASE),
        'CREATE SCHEMA without IF NOT EXISTS',
    ),
    (
        re.compile(r'^\s*create\s+function\s+', re.IGNORECASE),
        'CREATE FUNCTION without OR REPLACE',
    ),
    (
        re.compile(r'^\s*drop\s+(table|index)\s+(?!.*if\s+exists)', re.IGNORECASE),
        'DROP without IF EXISTS',
    ),
]

_CREATE_POLICY_RE = re.compile(r'^\s*create\s+policy\s+(\S+)', re.IGNORECASE)
_DROP_POLICY_RE = re.compile(
    r'^\s*drop\s+policy\s+if\s+exists\s+(\S+)', re.IGNORECASE,
)


@dataclass(frozen=True, slots=True)
class MigrationFile:
    sequence: int
    filename: str
    path: Path


@dataclass
class ValidationResult:
    path: Path
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def discover_migrations(directory: Path | None = None) -> list[MigrationFile]:
    """Migration files sorted by sequence number.

    Raises:
        ValueError: If two files share a sequence number.
    """
    results: list[MigrationFile] = []
    seen: dict[int, str] = {}
    for p in sorted((directory or MIGRATIONS_DIR).iterdir()):
        m = _MIGRATION_RE.match(p.name)
        if not p.is_file() or not m:
            continue
        seq = int(m.group(1))
        if seq in seen:
            raise ValueError(
                f'Duplicate migration sequence {seq:03d}: {seen[seq]} and {p.name}'
            )
        seen[seq] = p.name
        results.append(MigrationFile(sequence=seq, filename=p.name, path=p))
    return sorted(results, key=lambda mf: mf.sequence)


def validate_idempotency(sql_path: Path) -> ValidationResult:
    result = ValidationResult(path=sql_path)
    dropped_policies: set[str] = set()

    for i, line in enumerate(sql_path.read_text().splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith('--'):
            continue

        dp = _DROP_POLICY_RE.match(stripped)
        if dp:
            dropped_policies.add(dp.group(1).lower())
            continue

        cp = _CREATE_POLICY_RE.match(stripped)
        if cp:
            if cp.group(1).lower() not in dropped_policies:
                result.errors.append(
                    f'Line {i}: CREATE POLICY {cp.group(1)} without '
                    f'preceding DROP POLICY IF EXISTS'
                )
            continue

        for pattern, msg in _UNSAFE_PATTERNS:
            if pattern.search(stripped):
                result.errors.append(f'Line {i}: {msg}')

    return result


def validate_all(directory: Path | None = None) -> dict[str, ValidationResult]:
    return {
        mf.filename: validate_idempotency(mf.path)
        for mf in discover_migrations(directory)
    }
