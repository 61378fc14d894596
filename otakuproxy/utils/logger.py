import sys
import logging
from loguru import logger


# ===========================
# Configuration
# ===========================
LOG_LEVEL = "INFO"


# ===========================
# Log Contexts Configuration
# ===========================
CONTEXTS = {
    "APP": {"color": "green", "icon": "🚀"},
    "API": {"color": "cyan", "icon": "🔗"},
    "CONVERT": {"color": "yellow", "icon": "🔑"},
    "BROWSER": {"color": "magenta", "icon": "🧭"},
    "SCRAPER": {"color": "blue", "icon": "🌐"},
    "CACHE": {"color": "white", "icon": "💾"},
}


# ===========================
# Log Level Icons
# ===========================
LEVEL_ICONS = {
    "DEBUG": "🔍",
    "INFO": "ℹ️ ",
    "WARNING": "⚠️ ",
    "ERROR": "❌",
}


# ===========================
# Log Formatter
# ===========================
def format_log(record):
    context = record["extra"].get("context", "APP")
    context_data = CONTEXTS.get(context, {"color": "white", "icon": "📦"})
    context_color = context_data["color"]
    context_icon = context_data["icon"]
    level_icon = LEVEL_ICONS.get(record["level"].name, "")

    return (
        "<white>{time:YYYY-MM-DD}</white> "
        "<magenta>{time:HH:mm:ss}</magenta> | "
        f"<level>{level_icon} {{level: <8}}</level> | "
        f"<{context_color}>{context_icon} {{extra[context]: <10}}</{context_color}> | "
        "<level>{message}</level>\n"
    )


# ===========================
# Logger Setup Function
# ===========================
def setup_logger(level: str = "INFO"):
    global LOG_LEVEL
    LOG_LEVEL = level

    logger.remove()

    logger.add(
        sys.stderr,
        level=LOG_LEVEL,
        format=format_log,
        colorize=True,
        backtrace=True,
        diagnose=True,
    )


# ===========================
# Logger Factory
# ===========================
def get_logger(context: str):
    return logger.bind(context=context)


# ===========================
# Logger Instances
# ===========================
app_logger = get_logger("APP")
api_logger = get_logger("API")
convert_logger = get_logger("CONVERT")
browser_logger = get_logger("BROWSER")
scraper_logger = get_logger("SCRAPER")
cache_logger = get_logger("CACHE")


# ===========================
# External Loggers Suppression
# ===========================
logging.getLogger("uvicorn.access").disabled = True
logging.getLogger("uvicorn.error").setLevel(logging.CRITICAL)
logging.getLogger("fastapi").setLevel(logging.CRITICAL)
