"""Forum Bridge - Resumable bulk migration of a forum content graph."""

import logging

__version__ = "0.1.0"
__author__ = "Forum Migration Team"
__license__ = "Apache-2.0"

# Keep third-party loggers quiet so they do not clutter progress output
logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
