import logging
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from tkeep.common.setup import PATHS, ensure_directory
from datetime import datetime

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s:%(filename)s:%(lineno)d] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

def get_logger(
        name = "timekeeper",
        level = logging.INFO,
        log_dir: Path | None = None,
        max_bytes = 5 * 1024 * 1024,
        backup_count = 5,
        persistent = True,
        console = False,
        historical_debugs: int = 10
) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.propagate = False
    logger.setLevel(level)

    log_dir = log_dir or PATHS.logs
    fmt = logging.Formatter(LOG_FORMAT,LOG_DATE_FORMAT)

    try:
        ensure_directory(log_dir)
        log_file_path = log_dir / f"{name}.log"

        # Setup persistent handler
        persistent_handler_name = f"{name}:persistent"
        if persistent and not any(h.get_name() == persistent_handler_name for h in logger.handlers):
            persistent_handler = RotatingFileHandler(
                filename=log_file_path,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
                delay=False,
            )
            persistent_handler.setLevel(level)
            persistent_handler.setFormatter(fmt)
            persistent_handler.set_name(persistent_handler_name)
            logger.addHandler(persistent_handler)

        # Setup latest-only handler (always overwritten each run)
        latest_handler_name = f"{name}:latest"
        if not any(h.get_name() == latest_handler_name for h in logger.handlers):
            latest_handler = logging.FileHandler(
                filename=log_dir / "latest.log",
                mode="w",             # overwrite on each run
                encoding="utf-8",
                delay=False
            )
            latest_handler.setLevel(level)
            latest_handler.setFormatter(fmt)
            latest_handler.set_name(latest_handler_name)
            logger.addHandler(latest_handler)

        # Setup historical debug handler
        historical_debug_handler_name = f"{name}:historical_debug"
        if historical_debugs > 0 and not any(h.get_name() == historical_debug_handler_name for h in logger.handlers):
            historical_debug_path = ensure_directory(log_dir / "debug")
            this_historical_debug_log_path = historical_debug_path / f"{name}_{datetime.now():%Y-%m-%d_%H-%M-%S}.log"

            historical_debug_handler = logging.FileHandler(
                filename=this_historical_debug_log_path,
                encoding="utf-8",
                delay=False
            )
            historical_debug_handler.setLevel(logging.DEBUG)
            historical_debug_handler.setFormatter(fmt)
            historical_debug_handler.set_name(historical_debug_handler_name)
            logger.addHandler(historical_debug_handler)

            # Prune oldest runs
            runs = sorted(historical_debug_path.glob(f"{name}_*.log"),key=lambda p: p.stat().st_mtime,reverse=True)
            for run in runs[historical_debugs:]:
                try: run.unlink()
                except OSError: pass
    # A read-only or missing data directory must not keep the program from starting, so the log
    # goes to stderr instead.
    except OSError as e:
        fallback_handler_name = f"{name}:fallback"
        if not any(h.get_name() == fallback_handler_name for h in logger.handlers):
            fallback_handler = logging.StreamHandler(sys.stderr)
            fallback_handler.setLevel(level)
            fallback_handler.setFormatter(fmt)
            fallback_handler.set_name(fallback_handler_name)
            logger.addHandler(fallback_handler)
        logger.warning(f"Cannot open log destination '{log_dir}' ({e}), logging to stderr instead")

    # Setup console handler
    console_handler_name = f"{name}:console"
    if console and not any(h.get_name() == console_handler_name for h in logger.handlers):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(fmt)
        console_handler.set_name(console_handler_name)
        logger.addHandler(console_handler)

    return logger

log = get_logger(level=logging.DEBUG,console=False,historical_debugs=10)
log.info("=== INITIALIZED NEW SESSION ===")
