"""
Template-aware file comparison.

A scaffolded repository differs from its template wherever scaffold-time
variables were filled in. Before comparing a file, the template's placeholders
(``${{ values.name }}`` or ``{{ name }}``) are replaced with the values found at
the same positions in the target file, so only genuine drift produces a change.

Correlation rule:

1. Lines are correlated by index. Each template line containing placeholders
   is matched against the target line with the same index.
2. A line is matched in one left-to-right pass. The text before the first
   placeholder must match exactly. Each placeholder then takes the target text
   up to the first occurrence of the literal that follows it, and the last
   placeholder takes everything before the line's trailing literal. A repeated
   variable must take the same text each time. There is no backtracking, so
   matching cost stays linear in the line length.
3. The first value found for a variable wins.

Values known from the target entity take precedence over inferred ones, so a
known value that no longer appears in the target shows up as drift.

Only bare identifiers (optionally prefixed with ``values.``) are variables.
Expressions with filters or operators match anything during correlation but
are never substituted. A variable without an inferred or known value stays
literal, so the file is compared as-is.
"""

import hashlib
import re
from typing import Dict, List, Mapping, NamedTuple, Optional

from scaffold_sync.models import ChangeType, FileChange, FileChangeSet
from scaffold_sync.utils.logging import get_logger

logger = get_logger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\$?\{\{\s*(?P<expr>[^{}]+?)\s*\}\}")

_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_VALUES_PREFIX = "values."


class Placeholder(NamedTuple):
    """One placeholder occurrence in template text."""

    start: int
    end: int
    expression: str
    variable: Optional[str]


def _variable_name(expression: str) -> Optional[str]:
    expression = expression.strip()
    if expression.startswith(_VALUES_PREFIX):
        expression = expression[len(_VALUES_PREFIX):]
    if _IDENTIFIER.fullmatch(expression):
        return expression
    return None


def find_placeholders(template: str) -> List[Placeholder]:
    """Find all placeholders in template text, in order of appearance."""
    return [
        Placeholder(
            start=match.start(),
            end=match.end(),
            expression=match.group("expr"),
            variable=_variable_name(match.group("expr")),
        )
        for match in PLACEHOLDER_PATTERN.finditer(template)
    ]


def match_line(template_line: str, target_line: str) -> Optional[Dict[str, str]]:
    """
    Match one template line against one target line.

    Returns:
        Variable name -> captured text, or None when the line has no
        placeholders or the target line does not fit it
    """
    placeholders = find_placeholders(template_line)
    if not placeholders:
        return None

    position = placeholders[0].start
    if target_line[:position] != template_line[:position]:
        return None

    values: Dict[str, str] = {}
    for index, placeholder in enumerate(placeholders):
        if index + 1 < len(placeholders):
            literal = template_line[placeholder.end:placeholders[index + 1].start]
            end = target_line.find(literal, position)
            if end < 0:
                return None
        else:
            literal = template_line[placeholder.end:]
            end = len(target_line) - len(literal)
            if end < position or target_line[end:] != literal:
                return None

        value = target_line[position:end]
        if placeholder.variable is not None and values.setdefault(placeholder.variable, value) != value:
            return None
        position = end + len(literal)

    return values


def infer_variable_values(template: str, target: str) -> Dict[str, str]:
    """
    Infer template variable values from the target content.

    Args:
        template: Template file content
        target: Scaffolded file content

    Returns:
        Variable name -> value observed in the target
    """
    values: Dict[str, str] = {}
    for template_line, target_line in zip(template.splitlines(), target.splitlines()):
        line_values = match_line(template_line, target_line)
        for variable, value in (line_values or {}).items():
            values.setdefault(variable, value)

    return values


def substitute_variables(template: str, values: Mapping[str, str]) -> str:
    """Replace variable placeholders that have a value; leave the rest literal."""
    if not values:
        return template

    def replace(match: "re.Match[str]") -> str:
        variable = _variable_name(match.group("expr"))
        if variable is not None and variable in values:
            return values[variable]
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(replace, template)


def preprocess_template(
    template: str,
    target: str,
    known_values: Optional[Mapping[str, str]] = None
) -> str:
    """
    Produce the content the target is expected to have.

    Known values take precedence; inferred values fill the variables the
    entity does not provide.

    Args:
        template: Template file content
        target: Scaffolded file content
        known_values: Variable values known from the target entity

    Returns:
        Template content with variables substituted
    """
    values = infer_variable_values(template, target)
    values.update({key: str(value) for key, value in (known_values or {}).items()})
    return substitute_variables(template, values)


def content_hash(content: str) -> str:
    """SHA-256 hex digest of the UTF-8 encoded content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class TemplateDiffEngine:
    """Computes the file changes that bring a target back in line with its template."""

    def __init__(self, include_new_files: bool = False):
        """
        Args:
            include_new_files: Also propose files that exist only in the template
        """
        self.include_new_files = include_new_files

    def find_common_files(self, template: Mapping[str, str], target: Mapping[str, str]) -> List[str]:
        """Paths present in both snapshots, in template order."""
        return [path for path in template if path in target]

    def find_new_files(self, template: Mapping[str, str], target: Mapping[str, str]) -> List[str]:
        """Paths present only in the template."""
        return [path for path in template if path not in target]

    def compute_changes(
        self,
        template: Mapping[str, str],
        target: Mapping[str, str],
        known_values: Optional[Mapping[str, str]] = None
    ) -> FileChangeSet:
        """
        Compare template and target snapshots.

        Args:
            template: Template snapshot (path -> content)
            target: Target snapshot (path -> content)
            known_values: Variable values known from the target entity

        Returns:
            FileChangeSet; empty when the target has not drifted
        """
        changes = FileChangeSet()
        common_files = self.find_common_files(template, target)

        for path in common_files:
            expected = preprocess_template(template[path], target[path], known_values)
            if content_hash(expected) != content_hash(target[path]):
                changes.add(FileChange(file_path=path, change_type=ChangeType.EDIT, content=expected))

        if self.include_new_files:
            known = {key: str(value) for key, value in (known_values or {}).items()}
            for path in self.find_new_files(template, target):
                changes.add(FileChange(
                    file_path=path,
                    change_type=ChangeType.ADD,
                    content=substitute_variables(template[path], known)
                ))

        logger.debug(
            f"Compared {len(common_files)} common files, {len(changes)} changed",
            extra={"compared": len(common_files), "changed": len(changes)}
        )
        return changes
