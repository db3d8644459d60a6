"""CLI command for validating lab files without running them."""

from __future__ import annotations

from rich.markup import escape

from vriksh.cli.ux import console, error, header, print_key_value, success, warning
from vriksh.core.errors import ExitCode, main_with_error_handling
from vriksh.providers import provider_registry
from vriksh.specs.validator import validate_lab_file


@main_with_error_handling()
def validate_command(file_path: str, *, strict: bool = False) -> int:
    """
    Validate a lab file.

    Args:
        file_path: Path to the lab YAML file
        strict: Treat warnings as errors

    Returns:
        Exit code (0 valid, 12 invalid)
    """
    header("Validate Lab")
    console.print(f"[muted]File:[/muted] {escape(file_path)}")
    console.print()

    result = validate_lab_file(file_path, registry=provider_registry)

    if not result.valid:
        for message in result.errors:
            error(escape(message))
        console.print()
        error("Lab spec is invalid")
        return ExitCode.VALIDATION_ERROR

    print_key_value(
        {
            "Lab": f"{result.lab_id} ({result.version})",
            "Title": result.title or "-",
            "Providers": str(result.provider_count),
        }
    )
    console.print()

    for message in result.warnings:
        warning(escape(message))

    if strict and result.warnings:
        error("Warnings treated as errors (--strict)")
        return ExitCode.VALIDATION_ERROR

    success("Lab spec is valid")
    return ExitCode.SUCCESS
