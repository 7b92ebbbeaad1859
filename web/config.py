"""
Web service configuration.
"""
import os

from synchub.config import config, VERSION

# Web server settings
WEB_HOST = os.getenv("WEB_HOST", config.web.host)
WEB_PORT = int(os.getenv("WEB_PORT", str(config.web.port)))

# Rate limits (slowapi syntax)
WEBHOOK_RATE_LIMIT = config.web.webhook_rate_limit
ADMIN_RATE_LIMIT = config.web.admin_rate_limit

__all__ = ["WEB_HOST", "WEB_PORT", "WEBHOOK_RATE_LIMIT", "ADMIN_RATE_LIMIT", "VERSION"]
