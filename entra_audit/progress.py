# entra_audit/progress.py


def build_progress_bar(index: int, total: int, bar_len: int = 30) -> str:
    if total <= 0:
        return "[" + "-" * bar_len + "] 100.0%"
    percent = index / total * 100
    filled = int(bar_len * index / total)
    bar = "#" * filled + "-" * (bar_len - filled)
    return f"[{bar}] {percent:5.1f}%  ({index}/{total})"
