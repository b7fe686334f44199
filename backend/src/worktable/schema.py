"""
DynamoDB table layouts. Mirrors the deployed tables so local runs and
tests can provision the same keys and indexes.
"""
from typing import Any, Dict, List

from .config import config


def _index(name: str, hash_key: str, range_key: str) -> Dict[str, Any]:
    return {
        'IndexName': name,
        'KeySchema': [
            {'AttributeName': hash_key, 'KeyType': 'HASH'},
            {'AttributeName': range_key, 'KeyType': 'RANGE'},
        ],
        'Projection': {'ProjectionType': 'ALL'},
    }


def table_definitions() -> List[Dict[str, Any]]:
    """CreateTable parameters for every table the service uses."""
    return [
        {
            'TableName': config.WORK_ITEMS_TABLE,
            'KeySchema': [{'AttributeName': 'workItemId', 'KeyType': 'HASH'}],
            'AttributeDefinitions': [
                {'AttributeName': 'workItemId', 'AttributeType': 'S'},
                {'AttributeName': 'status', 'AttributeType': 'S'},
                {'AttributeName': 'createdAt', 'AttributeType': 'N'},
            ],
            'GlobalSecondaryIndexes': [_index('StatusIndex', 'status', 'createdAt')],
        },
        {
            'TableName': config.ASSIGNMENTS_TABLE,
            'KeySchema': [{'AttributeName': 'assignmentId', 'KeyType': 'HASH'}],
            'AttributeDefinitions': [
                {'AttributeName': 'assignmentId', 'AttributeType': 'S'},
                {'AttributeName': 'leaseState', 'AttributeType': 'S'},
                {'AttributeName': 'expiresAt', 'AttributeType': 'N'},
            ],
            # Sparse: leaseState is removed when the assignment closes
            'GlobalSecondaryIndexes': [_index('ActiveLeaseIndex', 'leaseState', 'expiresAt')],
        },
        {
            'TableName': config.SUBMISSIONS_TABLE,
            'KeySchema': [{'AttributeName': 'submissionId', 'KeyType': 'HASH'}],
            'AttributeDefinitions': [
                {'AttributeName': 'submissionId', 'AttributeType': 'S'},
                {'AttributeName': 'workerId', 'AttributeType': 'S'},
                {'AttributeName': 'status', 'AttributeType': 'S'},
                {'AttributeName': 'submittedAt', 'AttributeType': 'N'},
            ],
            'GlobalSecondaryIndexes': [
                _index('WorkerIndex', 'workerId', 'submittedAt'),
                _index('StatusIndex', 'status', 'submittedAt'),
            ],
        },
        {
            'TableName': config.REVIEWS_TABLE,
            'KeySchema': [{'AttributeName': 'reviewId', 'KeyType': 'HASH'}],
            'AttributeDefinitions': [{'AttributeName': 'reviewId', 'AttributeType': 'S'}],
        },
        {
            'TableName': config.WORKERS_TABLE,
            'KeySchema': [{'AttributeName': 'workerId', 'KeyType': 'HASH'}],
            'AttributeDefinitions': [{'AttributeName': 'workerId', 'AttributeType': 'S'}],
        },
        {
            'TableName': config.PAYMENTS_TABLE,
            'KeySchema': [{'AttributeName': 'paymentId', 'KeyType': 'HASH'}],
            'AttributeDefinitions': [
                {'AttributeName': 'paymentId', 'AttributeType': 'S'},
                {'AttributeName': 'workerId', 'AttributeType': 'S'},
                {'AttributeName': 'createdAt', 'AttributeType': 'N'},
            ],
            'GlobalSecondaryIndexes': [_index('WorkerIndex', 'workerId', 'createdAt')],
        },
        {
            'TableName': config.LANGUAGES_TABLE,
            'KeySchema': [{'AttributeName': 'languageId', 'KeyType': 'HASH'}],
            'AttributeDefinitions': [{'AttributeName': 'languageId', 'AttributeType': 'S'}],
        },
        {
            'TableName': config.LOCKS_TABLE,
            'KeySchema': [{'AttributeName': 'lockName', 'KeyType': 'HASH'}],
            'AttributeDefinitions': [{'AttributeName': 'lockName', 'AttributeType': 'S'}],
        },
    ]


def create_tables(dynamodb) -> None:
    """Create all tables on the given DynamoDB resource (on-demand billing)."""
    for definition in table_definitions():
        dynamodb.create_table(BillingMode='PAY_PER_REQUEST', **definition)
