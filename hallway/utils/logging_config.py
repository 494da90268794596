import logging
import logging.config
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Tuple

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# logger name -> (handlers, level, propagate)
_LOGGER_ROUTES: Dict[str, Tuple[List[str], str, bool]] = {
    "": (["console", "file_app", "file_error"], "INFO", True),
    "uvicorn": (["console", "file_app"], "INFO", False),
    "uvicorn.access": (["console", "file_app"], "INFO", False),
    "uvicorn.error": (["console", "file_error"], "INFO", False),
    "audit": (["console", "file_app"], "INFO", False),
    "hallway": (["console", "file_app", "file_error"], "DEBUG", False),
}


def _prune_backups(log_dir: Path, base_name: str, backup_count: int) -> None:
    """Remove rotated files beyond backup_count, oldest first."""
    if backup_count < 1:
        return
    rotated: Iterable[Path] = sorted(
        log_dir.glob(f"{base_name}.*"),
        key=lambda path: path.stat().st_mtime,
        reverse=True,
    )
    for stale in list(rotated)[backup_count:]:
        try:
            stale.unlink()
        except OSError:
            continue


def _rotating_handler(
    path: Path, level: str, max_bytes: int, backup_count: int
) -> Dict[str, Any]:
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "formatter": "default",
        "filename": str(path),
        "maxBytes": max_bytes,
        "backupCount": backup_count,
        "level": level,
        "encoding": "utf8",
    }


def build_logging_config(
    log_path: Path, *, level: str, max_bytes: int, backup_count: int
) -> Dict[str, Any]:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": {"format": LOG_FORMAT}},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "level": level,
            },
            "file_app": _rotating_handler(
                log_path / "app.log", "INFO", max_bytes, backup_count
            ),
            "file_error": _rotating_handler(
                log_path / "error.log", "ERROR", max_bytes, backup_count
            ),
        },
        "loggers": {
            name: {"handlers": list(handlers), "level": lvl, "propagate": propagate}
            for name, (handlers, lvl, propagate) in _LOGGER_ROUTES.items()
        },
    }


def setup_logging(log_dir: str = "logs"):
    """
    Configures logging for the service.
    Logs go to '<log_dir>/app.log' and '<log_dir>/error.log'; HALLWAY_LOG_DIR
    overrides the directory.
    """
    log_path = Path(os.getenv("HALLWAY_LOG_DIR", log_dir))
    log_path.mkdir(parents=True, exist_ok=True)
    max_bytes = int(os.getenv("LOG_MAX_BYTES", str(5 * 1024 * 1024)))
    backup_count = int(os.getenv("LOG_BACKUP_COUNT", "3"))
    for base_name in ("app.log", "error.log"):
        _prune_backups(log_path, base_name, backup_count)

    logging.config.dictConfig(
        build_logging_config(
            log_path,
            level=os.getenv("LOG_LEVEL", "INFO").upper(),
            max_bytes=max_bytes,
            backup_count=backup_count,
        )
    )
    logging.getLogger("hallway").info("Logging configured in %s", log_path)
