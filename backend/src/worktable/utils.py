"""
Common utility functions for Lambda handlers.
"""
import base64
import binascii
import json
import time
import uuid
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from .errors import Result, ValidationError


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal types from DynamoDB."""

    def default(self, o):
        if isinstance(o, Decimal):
            # Convert to int if it's a whole number, otherwise float
            if o % 1 == 0:
                return int(o)
            return float(o)
        return super().default(o)


def format_response(
    status_code: int,
    body: Any,
    headers: Dict[str, str] = None
) -> Dict[str, Any]:
    """
    Format a standard API Gateway response with CORS headers.

    Args:
        status_code: HTTP status code
        body: Response body (will be JSON serialized)
        headers: Additional headers to include

    Returns:
        API Gateway response dict
    """
    default_headers = {
        'Access-Control-Allow-Origin': '*',
        'Access-Control-Allow-Credentials': True,
        'Content-Type': 'application/json'
    }

    if headers:
        default_headers.update(headers)

    return {
        'statusCode': status_code,
        'headers': default_headers,
        'body': json.dumps(body, cls=DecimalEncoder)
    }


def result_response(
    result: Result,
    render: Callable[[Any], Any],
    status_code: int = 200
) -> Dict[str, Any]:
    """
    Turn a write operation Result into an API Gateway response.
    Expected errors carry their code, message and retry guidance.
    """
    if result.ok:
        return format_response(status_code, render(result.value))
    return format_response(result.error.status_code, result.error.to_dict())


def unauthorized() -> Dict[str, Any]:
    return format_response(401, {'error': 'Unauthorized', 'message': 'Authentication required'})


def server_error() -> Dict[str, Any]:
    return format_response(500, {'error': 'InternalError', 'message': 'Internal Server Error'})


def parse_body(event: dict) -> dict:
    """
    Safely parse JSON body from API Gateway event.

    Args:
        event: API Gateway Lambda proxy event

    Returns:
        Parsed body dict or empty dict if invalid
    """
    try:
        body = event.get('body') or '{}'
        if isinstance(body, str):
            body = json.loads(body, parse_float=Decimal)
        return body if isinstance(body, dict) else {}
    except (json.JSONDecodeError, TypeError):
        return {}


def get_path_param(event: dict, param_name: str) -> Optional[str]:
    """Extract path parameter from event."""
    try:
        return event['pathParameters'][param_name]
    except (KeyError, TypeError):
        return None


def get_query_param(event: dict, param_name: str, default: str = None) -> Optional[str]:
    """Extract query string parameter from event."""
    params = event.get('queryStringParameters') or {}
    return params.get(param_name, default)


def get_int_query_param(event: dict, param_name: str, default: int, maximum: int) -> int:
    raw = get_query_param(event, param_name)
    try:
        value = int(raw) if raw is not None else default
    except ValueError:
        value = default
    return min(max(value, 1), maximum)


def new_id() -> str:
    return str(uuid.uuid4())


def now_ts() -> int:
    """Current UTC time in epoch seconds."""
    return int(time.time())


def encode_page_token(last_key: Optional[Dict[str, Any]]) -> Optional[str]:
    """Opaque token for a DynamoDB LastEvaluatedKey."""
    if not last_key:
        return None
    raw = json.dumps(last_key, cls=DecimalEncoder, sort_keys=True).encode('utf-8')
    return base64.urlsafe_b64encode(raw).decode('ascii')


def decode_page_token(token: Optional[str]) -> Optional[Dict[str, Any]]:
    if not token:
        return None
    try:
        raw = base64.urlsafe_b64decode(token.encode('ascii'))
        key = json.loads(raw, parse_float=Decimal, parse_int=Decimal)
    except (binascii.Error, ValueError, UnicodeError):
        raise ValidationError('Invalid page token')
    if not isinstance(key, dict):
        raise ValidationError('Invalid page token')
    return key
