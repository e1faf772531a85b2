from pathlib import Path

from registry_worker.exceptions import FatalJobError

_DEFAULT_PROMPT_DIR = Path(__file__).parent / "prompts"


def load_prompt(name: str, prompt_dir: Path | None = None) -> str:
    """Load a prompt template by name (file stem under ``prompts/``).

    Raises:
        FatalJobError: if the file cannot be read.
    """
    path = (prompt_dir or _DEFAULT_PROMPT_DIR) / f"{name}.txt"
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise FatalJobError(f"Failed to load prompt template {name!r}: {exc}") from exc


def render_prompt(name: str, prompt_dir: Path | None = None, /, **values: object) -> str:
    """Load a template and fill its ``{placeholder}`` fields from ``values``."""
    return load_prompt(name, prompt_dir).format(**values)
