"""
DynamoDB utility functions: table access, paged queries and
conditional transactions.
"""
import boto3
from typing import Any, Dict, Iterator, List, Optional, Tuple
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError
from .config import config
from .logging import logger

_resource = None
_client = None
_serializer = TypeSerializer()


def get_resource():
    """DynamoDB service resource, created on first use."""
    global _resource
    if _resource is None:
        _resource = boto3.resource('dynamodb', region_name=config.AWS_REGION)
    return _resource


def get_client():
    """Low-level DynamoDB client used for transactions."""
    global _client
    if _client is None:
        _client = boto3.client('dynamodb', region_name=config.AWS_REGION)
    return _client


def reset_clients() -> None:
    """Drop cached clients so the next call picks up new endpoints or mocks."""
    global _resource, _client
    _resource = None
    _client = None


def table(table_name: str):
    return get_resource().Table(table_name)


class TransactionCancelled(Exception):
    """
    A TransactWriteItems call was cancelled.
    `reasons` holds one cancellation code per operation, in request order,
    when DynamoDB reports them.
    """

    def __init__(self, reasons: List[str]):
        self.reasons = reasons
        super().__init__(f"Transaction cancelled: {reasons}")

    def failed(self, index: int) -> bool:
        """True if the operation at `index` failed its condition."""
        return index < len(self.reasons) and self.reasons[index] == 'ConditionalCheckFailed'

    @property
    def conflicted(self) -> bool:
        return 'TransactionConflict' in self.reasons


class ConditionFailed(Exception):
    """A single conditional write did not apply."""


def _serialize(values: Dict[str, Any]) -> Dict[str, Any]:
    return {k: _serializer.serialize(v) for k, v in values.items()}


def update_op(
    table_name: str,
    key: Dict[str, Any],
    update_expression: str,
    condition: Optional[str] = None,
    names: Optional[Dict[str, str]] = None,
    values: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Build an Update entry for transact()."""
    op = {
        'TableName': table_name,
        'Key': _serialize(key),
        'UpdateExpression': update_expression,
    }
    if condition:
        op['ConditionExpression'] = condition
    if names:
        op['ExpressionAttributeNames'] = names
    if values:
        op['ExpressionAttributeValues'] = _serialize(values)
    return {'Update': op}


def put_op(
    table_name: str,
    item: Dict[str, Any],
    condition: Optional[str] = None
) -> Dict[str, Any]:
    """Build a Put entry for transact()."""
    op = {
        'TableName': table_name,
        'Item': _serialize(item),
    }
    if condition:
        op['ConditionExpression'] = condition
    return {'Put': op}


def transact(operations: List[Dict[str, Any]]) -> None:
    """
    Execute operations atomically.

    Raises:
        TransactionCancelled: a condition failed or the items were contended
        ClientError: any other datastore failure
    """
    try:
        get_client().transact_write_items(TransactItems=operations)
    except ClientError as e:
        if e.response['Error']['Code'] == 'TransactionCanceledException':
            reasons = [r.get('Code', 'None') for r in e.response.get('CancellationReasons', [])]
            raise TransactionCancelled(reasons) from e
        logger.error(f"Transaction failed: {e}")
        raise


def get_item(table_name: str, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Strongly consistent read of a single item."""
    try:
        response = table(table_name).get_item(Key=key, ConsistentRead=True)
        return response.get('Item')
    except ClientError as e:
        logger.error(f"Error getting item from {table_name}: {e}")
        raise


def put_item(
    table_name: str,
    item: Dict[str, Any],
    condition: Optional[str] = None,
    values: Optional[Dict[str, Any]] = None
) -> None:
    """Write one item, optionally conditionally."""
    params = {'Item': item}
    if condition:
        params['ConditionExpression'] = condition
    if values:
        params['ExpressionAttributeValues'] = values
    try:
        table(table_name).put_item(**params)
    except ClientError as e:
        if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
            raise ConditionFailed(f"Put on {table_name} did not apply") from e
        logger.error(f"Error putting item in {table_name}: {e}")
        raise


def update_item(
    table_name: str,
    key: Dict[str, Any],
    update_expression: str,
    expression_values: Optional[Dict[str, Any]] = None,
    expression_names: Optional[Dict[str, str]] = None,
    condition: Optional[str] = None
) -> Dict[str, Any]:
    """Update an item and return its new attributes."""
    params = {
        'Key': key,
        'UpdateExpression': update_expression,
        'ReturnValues': 'ALL_NEW',
    }
    if expression_values:
        params['ExpressionAttributeValues'] = expression_values
    if expression_names:
        params['ExpressionAttributeNames'] = expression_names
    if condition:
        params['ConditionExpression'] = condition

    try:
        response = table(table_name).update_item(**params)
        return response.get('Attributes', {})
    except ClientError as e:
        if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
            raise ConditionFailed(f"Update on {table_name} did not apply") from e
        logger.error(f"Error updating item in {table_name}: {e}")
        raise


def delete_item(
    table_name: str,
    key: Dict[str, Any],
    condition: Optional[str] = None,
    names: Optional[Dict[str, str]] = None,
    values: Optional[Dict[str, Any]] = None
) -> None:
    params = {'Key': key}
    if condition:
        params['ConditionExpression'] = condition
    if names:
        params['ExpressionAttributeNames'] = names
    if values:
        params['ExpressionAttributeValues'] = values
    try:
        table(table_name).delete_item(**params)
    except ClientError as e:
        if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
            raise ConditionFailed(f"Delete on {table_name} did not apply") from e
        raise


def query_page(
    table_name: str,
    key_condition: Any,
    index_name: Optional[str] = None,
    filter_expression: Optional[Any] = None,
    limit: Optional[int] = None,
    scan_forward: bool = True,
    start_key: Optional[Dict[str, Any]] = None
) -> Tuple[List[Dict[str, Any]], Optional[Dict[str, Any]]]:
    """
    Query one page of a table or index.

    Args:
        table_name: Name of the DynamoDB table
        key_condition: Key condition expression
        index_name: Optional GSI name
        filter_expression: Optional filter expression
        limit: Max items to evaluate
        scan_forward: True for ascending, False for descending
        start_key: LastEvaluatedKey of the previous page

    Returns:
        (items, last_evaluated_key); the key is None on the final page
    """
    query_params = {
        'KeyConditionExpression': key_condition,
        'ScanIndexForward': scan_forward,
    }
    if index_name:
        query_params['IndexName'] = index_name
    if filter_expression is not None:
        query_params['FilterExpression'] = filter_expression
    if limit:
        query_params['Limit'] = limit
    if start_key:
        query_params['ExclusiveStartKey'] = start_key

    try:
        response = table(table_name).query(**query_params)
    except ClientError as e:
        logger.error(f"Error querying {table_name}: {e}")
        raise
    return response.get('Items', []), response.get('LastEvaluatedKey')


def query_all(
    table_name: str,
    key_condition: Any,
    index_name: Optional[str] = None,
    filter_expression: Optional[Any] = None,
    scan_forward: bool = True
) -> Iterator[Dict[str, Any]]:
    """Iterate every item matching a query, following pagination."""
    start_key = None
    while True:
        items, start_key = query_page(
            table_name,
            key_condition,
            index_name=index_name,
            filter_expression=filter_expression,
            scan_forward=scan_forward,
            start_key=start_key,
        )
        yield from items
        if not start_key:
            return


def scan_all(table_name: str, filter_expression: Optional[Any] = None) -> Iterator[Dict[str, Any]]:
    """Iterate every item in a table, following pagination."""
    scan_params = {}
    if filter_expression is not None:
        scan_params['FilterExpression'] = filter_expression

    while True:
        try:
            response = table(table_name).scan(**scan_params)
        except ClientError as e:
            logger.error(f"Error scanning {table_name}: {e}")
            raise
        yield from response.get('Items', [])
        if 'LastEvaluatedKey' not in response:
            return
        scan_params['ExclusiveStartKey'] = response['LastEvaluatedKey']


def acquire_lock(lock_name: str, owner: str, ttl_seconds: int, now: int) -> bool:
    """
    Take a named lock until now + ttl_seconds.
    An expired lock may be taken over by any owner.
    """
    try:
        put_item(
            config.LOCKS_TABLE,
            {'lockName': lock_name, 'owner': owner, 'expiresAt': now + ttl_seconds},
            condition='attribute_not_exists(lockName) OR expiresAt <= :now',
            values={':now': now},
        )
        return True
    except ConditionFailed:
        return False


def release_lock(lock_name: str, owner: str) -> None:
    try:
        delete_item(
            config.LOCKS_TABLE,
            {'lockName': lock_name},
            condition='#owner = :owner',
            names={'#owner': 'owner'},
            values={':owner': owner},
        )
    except ConditionFailed:
        logger.warning(f"Lock {lock_name} was taken over before {owner} released it")
