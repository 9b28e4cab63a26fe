import sys
import logging
from logging.handlers import RotatingFileHandler
from typing import Optional

import config

# Configure logging with rotation
log_handler = RotatingFileHandler(config.LOG_FILE, maxBytes=5 * 1024 * 1024, backupCount=3)  # 5MB per file, keep 3 backups
log_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))

logging.basicConfig(
    level=logging.INFO,
    handlers=[
        log_handler,
        logging.StreamHandler(sys.stdout)
    ]
)


logger = logging.getLogger("journal")


def log_with_user(message: str, user_id: Optional[str] = None, level: str = "info", extra: Optional[dict] = None) -> None:
    """Enhanced logging function with user context"""
    if user_id:
        message = f"[User:{user_id}] {message}"

    if extra:
        message = f"{message} {extra}"

    if level == "debug":
        logger.debug(message)
    elif level == "info":
        logger.info(message)
    elif level == "warning":
        logger.warning(message)
    elif level == "error":
        logger.error(message)
    elif level == "critical":
        logger.critical(message)
    else:
        logger.info(message)


def log_user_action(user_id: str, action: str, details: Optional[str] = None, level: str = "info") -> None:
    """Log user-scoped engine actions with structured format"""
    parts = [f"USER:{user_id}", f"ACTION:{action}"]
    if details:
        parts.append(f"DETAILS:{details}")

    message = " | ".join(parts)
    log_with_user(message, None, level)


def log_database_event(event: str, user_id: Optional[str] = None, details: Optional[str] = None, level: str = "info") -> None:
    """Log table-store events"""
    message = f"DATABASE: {event}"
    if details:
        message += f" - {details}"
    log_with_user(message, user_id, level)
