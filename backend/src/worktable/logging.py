"""
Package logger for handlers and the coordination modules.
Conflicts log at INFO, integrity violations at CRITICAL, datastore
failures at ERROR.
"""
import json
import logging

from .config import config

logger = logging.getLogger('worktable')
logger.setLevel(getattr(logging, config.LOG_LEVEL.upper(), logging.INFO))

if not logger.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    logger.addHandler(_handler)

# Request fields worth keeping; bodies hold transcripts and headers hold tokens
_EVENT_FIELDS = ('resource', 'path', 'httpMethod', 'pathParameters', 'queryStringParameters', 'source', 'detail-type')


def log_event(event: dict) -> None:
    """Log the routing part of an incoming Lambda event."""
    try:
        summary = {k: event[k] for k in _EVENT_FIELDS if event.get(k) is not None}
        claims = ((event.get('requestContext') or {}).get('authorizer') or {}).get('claims') or {}
        if claims.get('sub'):
            summary['caller'] = claims['sub']
        logger.info(f"Lambda event: {json.dumps(summary, default=str)}")
    except Exception as e:
        logger.warning(f"Could not log event: {e}")
