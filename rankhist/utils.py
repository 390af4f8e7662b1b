from __future__ import annotations

import logging
import time
from pathlib import Path

logger = logging.getLogger(__name__)


# -------------------------
# Path utilities
# -------------------------
def normalize_abs_posix(path: str | Path) -> str:
    """
    Return an absolute POSIX-style path string for the given input.
    Ensures deterministic representation across platforms.
    """
    p = Path(path).resolve()
    return p.as_posix()


# -------------------------
# Run directories (shared by CLI helpers and the Gradio UI)
# -------------------------
def run_timestamp() -> str:
    """Local timestamp used to name per-run directories, e.g. 20250101T120000."""
    return time.strftime("%Y%m%dT%H%M%S", time.localtime())


def ensure_run_dir(base: Path | str = ".", prefix: str = "output_gradio") -> Path:
    """
    Ensure and return a per-run directory under `base`/`prefix`/<timestamp>.

    Two runs within the same second get distinct directories (a numeric suffix is
    appended to the later one).

    Returns:
        Path to the created run directory (exists on return).
    """
    root = Path(base) / prefix
    stamp = run_timestamp()
    run_dir = root / stamp
    suffix = 1
    while run_dir.exists():
        run_dir = root / f"{stamp}-{suffix}"
        suffix += 1
    run_dir.mkdir(parents=True, exist_ok=False)
    logger.debug("Ensured run_dir=%s", str(run_dir))
    return run_dir
