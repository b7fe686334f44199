"""
Shared fixtures. DynamoDB, S3 and SQS are emulated with moto so the
conditional transactions run against real request semantics.
"""
import json
import os
import sys
from decimal import Decimal

import boto3
import pytest
from moto import mock_aws

# Environment must be in place before worktable.config is imported
os.environ.setdefault('AWS_ACCESS_KEY_ID', 'testing')
os.environ.setdefault('AWS_SECRET_ACCESS_KEY', 'testing')
os.environ.setdefault('AWS_SECURITY_TOKEN', 'testing')
os.environ.setdefault('AWS_SESSION_TOKEN', 'testing')
os.environ['AWS_REGION'] = 'us-east-1'
os.environ['AWS_DEFAULT_REGION'] = 'us-east-1'
os.environ['WORK_ITEMS_TABLE'] = 'test-work-items'
os.environ['ASSIGNMENTS_TABLE'] = 'test-assignments'
os.environ['SUBMISSIONS_TABLE'] = 'test-submissions'
os.environ['REVIEWS_TABLE'] = 'test-reviews'
os.environ['WORKERS_TABLE'] = 'test-workers'
os.environ['PAYMENTS_TABLE'] = 'test-payments'
os.environ['LANGUAGES_TABLE'] = 'test-languages'
os.environ['LOCKS_TABLE'] = 'test-locks'
os.environ['MEDIA_BUCKET'] = 'test-media'

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from worktable import dynamo, notifications, schema, storage  # noqa: E402
from worktable.auth import ADMIN_GROUP, REVIEWER_GROUP, TRANSCRIBER_GROUP, Caller  # noqa: E402
from worktable.config import config  # noqa: E402
from worktable.models import WorkItem, WorkItemStatus  # noqa: E402

NOW = 1_700_000_000
LEASE = config.LEASE_DURATION_SECONDS


def _reset_clients():
    dynamo.reset_clients()
    storage.reset_client()
    notifications.reset_client()


@pytest.fixture
def aws(monkeypatch):
    """Fresh emulated tables, notifications queue and media bucket."""
    with mock_aws():
        _reset_clients()
        schema.create_tables(boto3.resource('dynamodb', region_name=config.AWS_REGION))

        sqs = boto3.client('sqs', region_name=config.AWS_REGION)
        queue_url = sqs.create_queue(QueueName='test-notifications')['QueueUrl']
        monkeypatch.setattr(config, 'NOTIFICATIONS_QUEUE_URL', queue_url)

        boto3.client('s3', region_name=config.AWS_REGION).create_bucket(Bucket=config.MEDIA_BUCKET)

        yield {'queue_url': queue_url, 'sqs': sqs}
        _reset_clients()


@pytest.fixture
def worker_a():
    return Caller('worker-a', [TRANSCRIBER_GROUP])


@pytest.fixture
def worker_b():
    return Caller('worker-b', [TRANSCRIBER_GROUP])


@pytest.fixture
def reviewer():
    return Caller('reviewer-1', [REVIEWER_GROUP])


@pytest.fixture
def admin():
    return Caller('admin-1', [ADMIN_GROUP])


@pytest.fixture
def make_item(aws):
    """Insert a claimable work item directly into the table."""
    counter = {'n': 0}

    def _make(language_id='fr', speaker_id='speaker-1', duration_sec=10, created_at=None, **overrides):
        counter['n'] += 1
        item = WorkItem(
            work_item_id=overrides.pop('work_item_id', f"item-{counter['n']}"),
            prompt_id=overrides.pop('prompt_id', 'prompt-1'),
            language_id=language_id,
            speaker_id=speaker_id,
            duration_sec=Decimal(str(duration_sec)),
            storage_ref=overrides.pop('storage_ref', f"recordings/{language_id}/{counter['n']}.webm"),
            status=overrides.pop('status', WorkItemStatus.PENDING_TRANSCRIPTION),
            created_at=created_at if created_at is not None else NOW - 1000 + counter['n'],
            **overrides
        )
        dynamo.table(config.WORK_ITEMS_TABLE).put_item(Item=item.to_item())
        return item

    return _make


@pytest.fixture
def set_rate(aws):
    def _set(language_id, rate):
        dynamo.table(config.LANGUAGES_TABLE).put_item(Item={
            'languageId': language_id,
            'transcriberRatePerMin': Decimal(str(rate)),
        })
    return _set


@pytest.fixture
def messages(aws):
    """Drain the notifications queue and return the decoded bodies."""
    def _drain():
        response = aws['sqs'].receive_message(QueueUrl=aws['queue_url'], MaxNumberOfMessages=10)
        return [json.loads(m['Body']) for m in response.get('Messages', [])]
    return _drain


def load(table_name, key):
    return dynamo.get_item(table_name, key)


def api_event(user_id=None, groups=(), body=None, path=None, query=None):
    """Minimal API Gateway proxy event with Cognito claims."""
    event = {
        'httpMethod': 'POST',
        'pathParameters': path,
        'queryStringParameters': query,
        'body': json.dumps(body) if body is not None else None,
        'requestContext': {},
    }
    if user_id:
        event['requestContext']['authorizer'] = {
            'claims': {'sub': user_id, 'cognito:groups': ','.join(groups)}
        }
    return event
