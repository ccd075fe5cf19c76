import hashlib
from datetime import datetime, timezone
from pathlib import Path


def ensure_dir(path: str | Path) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def safe_filename(name: str) -> str:
    """Filesystem-safe form of *name*.

    Names that had to be altered get a short digest of the original, so
    ``STEP.1`` and ``STEP-1`` map to different files.
    """
    keepchars = ("_", "-")
    cleaned = "".join(c if c.isalnum() or c in keepchars else "-" for c in name)
    if cleaned and cleaned == name:
        return cleaned
    digest = hashlib.sha1(name.encode("utf-8")).hexdigest()[:8]
    return f"{cleaned or 'unnamed'}-{digest}"


def sortable_timestamp(moment: datetime | None = None) -> str:
    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
