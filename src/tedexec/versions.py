from __future__ import annotations

import logging
from pathlib import Path

from tedexec.models import CompatibilityError, NotFoundError

_log = logging.getLogger("tedexec.versions")

# Oldest CLI release this package drives at all.
MINIMUM_CLI_VERSION = "20.09.03"
# First release whose script understands ``-cmd execute``.
EXECUTE_COMMAND_MIN_VERSION = "20.09.03"
DEFAULT_VERSION_FILE = "TopazCLI.version"


def parse_version(text: str) -> tuple[int, ...]:
    """Dotted release string (``20.09.03``, ``20.9.3.1``) to an int tuple."""
    parts = [part.strip() for part in text.strip().split(".")]
    if not parts or any(not part.isdigit() for part in parts):
        raise ValueError(f"Invalid CLI version '{text}'")
    values = [int(part) for part in parts]
    while len(values) > 1 and values[-1] == 0:
        values.pop()
    return tuple(values)


def is_minimum_release(version: str | None, minimum: str) -> bool:
    """True when *version* is at or above *minimum*; unknown versions never are."""
    if not version:
        return False
    try:
        return parse_version(version) >= parse_version(minimum)
    except ValueError:
        _log.warning("version_unparseable version=%s", version)
        return False


def check_cli_compatibility(version: str, minimum: str = MINIMUM_CLI_VERSION) -> None:
    if not is_minimum_release(version, minimum):
        raise CompatibilityError(required=minimum, found=version)


def read_cli_version(cli_dir: Path, version_file: str = DEFAULT_VERSION_FILE) -> str:
    """Read the installed release from the version file in the CLI directory.

    The file holds the release on its first non-blank line, either bare
    (``20.09.03``) or as ``version=20.09.03``.
    """
    path = cli_dir / version_file
    if not path.is_file():
        raise NotFoundError(
            f"Topaz for Enterprise Data CLI version file not found: {path}. "
            "Reinstall the CLI or set 'version_file' in the settings file."
        )
    for line in path.read_text(encoding="utf-8").splitlines():
        text = line.strip()
        if not text or text.startswith("#"):
            continue
        if "=" in text:
            text = text.split("=", 1)[1].strip()
        _log.debug("cli_version path=%s version=%s", path, text)
        return text
    raise NotFoundError(f"Topaz for Enterprise Data CLI version file is empty: {path}")
