"""Shared output format configuration for the mock engine CLI and logging."""

from __future__ import annotations

import os
from enum import Enum
from typing import Literal


class OutputFormat(str, Enum):
    """Console output format options."""
    AUTO = "auto"
    RICH = "rich"
    PLAIN = "plain"
    JSON = "json"


LogFormat = Literal["json", "console", "plain"]

ENV_VAR_NAME = "CONSOLE_OUTPUT_FORMAT"


def get_output_format(cli_override: str | None = None) -> OutputFormat:
    """
    Get the output format with priority: CLI parameter > Environment variable > Default (auto).

    Args:
        cli_override: Optional CLI parameter value that takes precedence

    Returns:
        OutputFormat enum value
    """
    for candidate in (cli_override, os.environ.get(ENV_VAR_NAME)):
        if not candidate:
            continue
        try:
            return OutputFormat(candidate.lower())
        except ValueError:
            continue
    return OutputFormat.AUTO


def get_log_format(cli_override: str | None = None) -> LogFormat:
    """
    Get the log format with the same priority chain as ``get_output_format``.

    Maps output format to log format:
    - auto/rich -> console (with colors)
    - plain -> plain (no colors, simple text)
    - json -> json
    """
    if cli_override and cli_override.lower() in ("json", "console", "plain"):
        return cli_override.lower()  # type: ignore[return-value]

    output_format = get_output_format(cli_override)
    if output_format == OutputFormat.JSON:
        return "json"
    if output_format == OutputFormat.PLAIN:
        return "plain"
    return "console"
