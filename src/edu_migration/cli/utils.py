"""
Utility functions for CLI commands.

This module provides helper functions for common CLI operations like
formatting output and reading or writing record files.
"""

import json
from collections import Counter
from pathlib import Path
from typing import Any

import click
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from edu_migration.migration.models import ClassRecord, UserRecord, UserRole
from edu_migration.reporting.snapshot import dump_users

console = Console()


def echo_success(message: str) -> None:
    """Print success message in green."""
    click.secho(f"✓ {message}", fg="green")


def echo_error(message: str) -> None:
    """Print error message in red."""
    click.secho(f"✗ {message}", fg="red", err=True)


def echo_warning(message: str) -> None:
    """Print warning message in yellow."""
    click.secho(f"⚠ {message}", fg="yellow")


def echo_info(message: str) -> None:
    """Print info message in blue."""
    click.secho(f"ℹ {message}", fg="blue")


def format_duration(seconds: float) -> str:
    """
    Format duration in human-readable format.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted duration string (e.g., "2h 30m 15s")
    """
    if seconds < 60:
        return f"{seconds:.1f}s"

    minutes = int(seconds // 60)
    remaining_seconds = int(seconds % 60)

    if minutes < 60:
        return f"{minutes}m {remaining_seconds}s"

    hours = minutes // 60
    remaining_minutes = minutes % 60

    return f"{hours}h {remaining_minutes}m {remaining_seconds}s"


def print_table(
    title: str,
    columns: list[str],
    rows: list[list[Any]],
    show_header: bool = True,
) -> None:
    """
    Print a formatted table using rich.

    Args:
        title: Table title
        columns: Column headers
        rows: List of row data
        show_header: Whether to show header row
    """
    table = Table(title=title, show_header=show_header)

    for col in columns:
        table.add_column(col)

    for row in rows:
        table.add_row(*[str(cell) for cell in row])

    console.print(table)


def print_stats(stats: dict[str, Any], title: str = "Statistics") -> None:
    """
    Print statistics in a two-column table.

    Args:
        stats: Dictionary of statistics
        title: Table title
    """
    rows = [[key.replace("_", " ").title(), str(value)] for key, value in stats.items()]
    print_table(title, ["Metric", "Value"], rows)


def confirm_overwrite(path: Path, force: bool = False) -> bool:
    """
    Confirm overwrite of existing file.

    Args:
        path: Path to check
        force: Skip confirmation if True

    Returns:
        True if should proceed, False otherwise
    """
    if not path.exists():
        return True

    if force:
        return True

    return click.confirm(f"File {path} already exists. Overwrite?")


def load_json_or_yaml(path: Path) -> Any:
    """
    Load JSON or YAML file based on extension.

    Args:
        path: Path to file

    Returns:
        Parsed data

    Raises:
        click.BadParameter: If file format is unsupported
    """
    suffix = path.suffix.lower()

    if suffix == ".json":
        with open(path, encoding="utf-8") as f:
            return json.load(f)

    elif suffix in [".yaml", ".yml"]:
        with open(path, encoding="utf-8") as f:
            return yaml.safe_load(f)

    else:
        raise click.BadParameter(f"Unsupported file format: {suffix}. Use .json, .yaml, or .yml")


def _parse_users(items: list[Any], role: UserRole | None, path: Path) -> list[UserRecord]:
    records = []
    for index, item in enumerate(items or []):
        if role is not None:
            item = {**item, "role": role.value}
        try:
            records.append(UserRecord.model_validate(item))
        except ValidationError as e:
            raise click.BadParameter(f"{path}: invalid user record #{index + 1}: {e}") from e
    return records


def _parse_classes(items: list[Any], path: Path) -> list[ClassRecord]:
    classes = []
    for index, item in enumerate(items or []):
        if isinstance(item, str):
            item = {"name": item}
        try:
            classes.append(ClassRecord.model_validate(item))
        except ValidationError as e:
            raise click.BadParameter(f"{path}: invalid class #{index + 1}: {e}") from e
    return classes


def load_migration_input(
    path: Path,
) -> tuple[list[UserRecord], list[UserRecord], list[ClassRecord]]:
    """
    Load students, teachers and classes from a records file.

    The file holds ``students``, ``teachers`` and ``classes`` lists. Keys may
    be camelCase or snake_case; classes may be plain names.

    Raises:
        click.BadParameter: If the file is malformed
    """
    data = load_json_or_yaml(path)
    if not isinstance(data, dict):
        raise click.BadParameter(f"{path}: expected an object with students, teachers, classes")
    return (
        _parse_users(data.get("students", []), UserRole.STUDENT, path),
        _parse_users(data.get("teachers", []), UserRole.TEACHER, path),
        _parse_classes(data.get("classes", []), path),
    )


def load_classes(path: Path) -> list[ClassRecord]:
    """Load a class list (a list, or an object with a ``classes`` key)."""
    data = load_json_or_yaml(path)
    if isinstance(data, dict):
        data = data.get("classes", [])
    return _parse_classes(data, path)


def load_failed_users(path: Path) -> list[UserRecord]:
    """
    Load previously failed records.

    Accepts a plain list, a file written with --failed-out, or a migration
    snapshot (its ``errors.failedUsers``).
    """
    data = load_json_or_yaml(path)
    if isinstance(data, dict):
        if "errors" in data:
            data = data["errors"].get("failedUsers", [])
        else:
            data = data.get("failedUsers", [])
    if not isinstance(data, list):
        raise click.BadParameter(f"{path}: expected a list of failed users")
    return ensure_unique_keys(_parse_users(data, None, path), str(path))


def write_failed_users(path: Path, records: list[UserRecord]) -> None:
    """Write records so that ``retry --input`` can read them back."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump({"failedUsers": dump_users(records)}, f, indent=2, ensure_ascii=False)


def ensure_unique_keys(records: list[UserRecord], source: str) -> list[UserRecord]:
    """Reject record lists where two records share a key.

    Raises:
        click.BadParameter: Naming the repeated keys
    """
    counts = Counter(r.key for r in records)
    duplicates = sorted(key for key, count in counts.items() if count > 1)
    if duplicates:
        raise click.BadParameter(f"{source}: duplicate record keys: {', '.join(duplicates)}")
    return records


def load_roster(path: Path) -> tuple[list[UserRecord], list[UserRecord]]:
    """Students and teachers of an earlier run (a snapshot or a records file).

    A plain class list yields empty rosters.
    """
    data = load_json_or_yaml(path)
    if not isinstance(data, dict):
        return [], []
    return (
        _parse_users(data.get("students", []), UserRole.STUDENT, path),
        _parse_users(data.get("teachers", []), UserRole.TEACHER, path),
    )


def load_teacher_ids(path: Path) -> list[str]:
    """User ids from a teachers list or from the ``teachers`` of a snapshot.

    Raises:
        click.BadParameter: If an entry is not an object
    """
    data = load_json_or_yaml(path)
    items = data.get("teachers", []) if isinstance(data, dict) else data
    if not isinstance(items, list):
        raise click.BadParameter(f"{path}: expected a list of teachers")
    ids = []
    for index, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            raise click.BadParameter(f"{path}: teacher #{index} is not an object")
        user_id = item.get("userId") or item.get("user_id")
        if user_id:
            ids.append(str(user_id))
    return ids
