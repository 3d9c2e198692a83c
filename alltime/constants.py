from __future__ import annotations

import logging

LOGGER = logging.getLogger("alltime.api")
APP_VERSION = "0.1.0"

DEFAULT_BASE_URL = "https://alltime-backend-756952284083.us-central1.run.app"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_TOKEN_STORE_PATH = ".tokens.json"

HEALTH_PATH = "/health"
ERROR_BODY_LOG_LIMIT = 1000
