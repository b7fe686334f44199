"""
Configuration module for the transcription work table.
Loads all environment variables needed by the handlers and the sweep.
"""
import os
from decimal import Decimal


class Config:
    """Centralized configuration from environment variables."""

    # AWS Region
    AWS_REGION = os.environ.get('AWS_REGION', 'us-east-1')

    # DynamoDB Tables
    WORK_ITEMS_TABLE = os.environ.get('WORK_ITEMS_TABLE', '')
    ASSIGNMENTS_TABLE = os.environ.get('ASSIGNMENTS_TABLE', '')
    SUBMISSIONS_TABLE = os.environ.get('SUBMISSIONS_TABLE', '')
    REVIEWS_TABLE = os.environ.get('REVIEWS_TABLE', '')
    WORKERS_TABLE = os.environ.get('WORKERS_TABLE', '')
    PAYMENTS_TABLE = os.environ.get('PAYMENTS_TABLE', '')
    LANGUAGES_TABLE = os.environ.get('LANGUAGES_TABLE', '')
    LOCKS_TABLE = os.environ.get('LOCKS_TABLE', '')

    # SQS Queues
    NOTIFICATIONS_QUEUE_URL = os.environ.get('NOTIFICATIONS_QUEUE_URL', '')

    # S3 Buckets
    MEDIA_BUCKET = os.environ.get('MEDIA_BUCKET', '')
    AUDIO_URL_EXPIRATION = int(os.environ.get('AUDIO_URL_EXPIRATION', '3600'))

    # Leasing
    LEASE_DURATION_SECONDS = int(os.environ.get('LEASE_DURATION_SECONDS', '1800'))
    CLAIM_NEXT_ATTEMPTS = int(os.environ.get('CLAIM_NEXT_ATTEMPTS', '5'))
    SWEEP_LOCK_SECONDS = int(os.environ.get('SWEEP_LOCK_SECONDS', '300'))
    SWEEP_LOCK_NAME = os.environ.get('SWEEP_LOCK_NAME', 'expire-assignments')

    # Submissions
    MAX_TRANSCRIPT_CHARS = int(os.environ.get('MAX_TRANSCRIPT_CHARS', '20000'))
    DEFAULT_FLAG_REASON = os.environ.get('DEFAULT_FLAG_REASON', 'UNCLEAR')

    # Review / quality score (0-100 scale)
    DECIDE_ATTEMPTS = int(os.environ.get('DECIDE_ATTEMPTS', '3'))
    QUALITY_SCORE_INITIAL = Decimal(os.environ.get('QUALITY_SCORE_INITIAL', '50'))
    QUALITY_SCORE_FLOOR = Decimal(os.environ.get('QUALITY_SCORE_FLOOR', '0'))
    QUALITY_SCORE_CEILING = Decimal(os.environ.get('QUALITY_SCORE_CEILING', '100'))
    QUALITY_SCORE_STEP = Decimal(os.environ.get('QUALITY_SCORE_STEP', '0.1'))

    # Earnings
    DEFAULT_RATE_PER_MINUTE = Decimal(os.environ.get('DEFAULT_RATE_PER_MINUTE', '0.03'))
    PAYOUT_THRESHOLD = Decimal(os.environ.get('PAYOUT_THRESHOLD', '30'))
    PAYOUT_ATTEMPTS = int(os.environ.get('PAYOUT_ATTEMPTS', '3'))
    CURRENCY = os.environ.get('CURRENCY', 'USD')

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


config = Config()
