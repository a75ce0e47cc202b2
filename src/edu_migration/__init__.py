"""edu-bridge - Migrate school accounts from spreadsheets into the learning platform."""

import logging

__version__ = "0.1.0"

# httpx logs every request at INFO; the client logs its own api_request lines
for _name in ("httpx", "httpcore"):
    logging.getLogger(_name).setLevel(logging.WARNING)
