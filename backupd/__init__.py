import os
import logging


def configure_logging(config, console=True):
    """Configure daemon logging: console plus the append-only run log"""

    # Create destination directory if it doesn't exist
    os.makedirs(config.destination, exist_ok=True)

    log_level = logging.getLevelName(config.log_level)
    if not isinstance(log_level, int):
        log_level = logging.DEBUG if config.debug else logging.INFO

    handlers = []

    # Console handler
    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
        )
        console_handler.setFormatter(console_formatter)
        handlers.append(console_handler)

    # File handler (append-only run log)
    file_handler = logging.FileHandler(config.log_path, mode='a')
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
    )
    file_handler.setFormatter(file_formatter)
    handlers.append(file_handler)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # APScheduler logs every job execution at INFO
    logging.getLogger('apscheduler').setLevel(max(log_level, logging.WARNING))

    logging.getLogger(__name__).info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def create_daemon(config_name=None, console=True, **overrides):
    """Backup daemon factory"""
    from backupd.config import load_config
    from backupd.daemon import BackupDaemon

    # Load configuration
    config = load_config(config_name, **overrides)

    # Configure logging
    configure_logging(config, console=console)

    logger = logging.getLogger(__name__)
    logger.info(
        f"Backing up {len(config.sources)} sources to {config.destination} "
        f"({config.store_backend} store, every {config.interval_seconds}s)"
    )
    for source in config.sources:
        logger.debug(f"  - {source.path} (max file size: {source.max_file_size_bytes} bytes)")

    return BackupDaemon(config)
