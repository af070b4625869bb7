from datetime import datetime
from pathlib import Path


def format_duration(seconds):
    if seconds < 60:
        return f"{seconds:.2f} sec"
    elif seconds < 3600:
        return f"{seconds / 60:.2f} min"
    else:
        return f"{seconds / 3600:.2f} hr"


def run_directory(out_dir, dataset, now=None):
    """
    Create and return a timestamped run folder: <out_dir>/<dataset>_<YYYYmmdd_HHMMSS>.
    """
    now = now or datetime.now()
    label = dataset or "run"
    path = Path(out_dir) / f"{label}_{now.strftime('%Y%m%d_%H%M%S')}"
    path.mkdir(parents=True, exist_ok=True)
    return path
