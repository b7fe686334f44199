"""
Tests for the best-effort collaborators: notification queue and media store.
A failing collaborator never undoes a committed write.
"""
from unittest.mock import MagicMock, patch

from botocore.exceptions import ClientError

from conftest import NOW
from worktable import notifications, storage
from worktable.assignments import claim
from worktable.models import SubmissionStatus, WorkItemStatus
from worktable.reviews import decide
from worktable.submissions import get_submission, submit
from worktable.work_items import get_work_item


def _broken_client():
    client = MagicMock()
    client.send_message.side_effect = ClientError(
        {'Error': {'Code': 'ServiceUnavailable', 'Message': 'down'}}, 'SendMessage')
    return client


class TestNotificationFailures:
    """A broken notification queue never undoes a commit."""

    def test_flag_commits_when_queue_is_down(self, make_item, worker_a):
        """A flag commits even when the queue is down."""
        item = make_item()
        assignment = claim(worker_a, item.work_item_id, now=NOW).value

        with patch.object(notifications, 'get_sqs_client', return_value=_broken_client()) as client:
            result = submit(worker_a, assignment.assignment_id, flag_reason='NOISE', now=NOW + 1)

        assert result.ok
        client.assert_called_once()
        assert get_work_item(item.work_item_id).status == WorkItemStatus.FLAGGED

    def test_decision_commits_when_queue_is_down(self, make_item, worker_a, reviewer):
        """A decision commits even when the queue is down."""
        item = make_item()
        assignment = claim(worker_a, item.work_item_id, now=NOW).value
        submission = submit(worker_a, assignment.assignment_id, text='hola', now=NOW + 1).value

        with patch.object(notifications, 'get_sqs_client', return_value=_broken_client()):
            result = decide(reviewer, submission.submission_id, 'REJECTED', now=NOW + 2)

        assert result.ok
        assert get_submission(submission.submission_id).status == SubmissionStatus.REJECTED

    def test_no_queue_configured(self, monkeypatch):
        """Without a queue URL nothing is sent."""
        monkeypatch.setattr(notifications.config, 'NOTIFICATIONS_QUEUE_URL', '')
        client = MagicMock()

        with patch.object(notifications, 'get_sqs_client', return_value=client):
            assert notifications.send_message('', {'type': 'REVIEW'}) is False

        client.send_message.assert_not_called()


class TestAudioUrlFailures:
    """Signing problems degrade to no URL."""

    def test_signing_error_returns_none(self):
        """A signing error yields no URL."""
        client = MagicMock()
        client.generate_presigned_url.side_effect = ClientError(
            {'Error': {'Code': 'AccessDenied', 'Message': 'no'}}, 'GetObject')

        with patch.object(storage, 'get_s3_client', return_value=client):
            assert storage.audio_url('recordings/fr/1.webm', bucket_name='media') is None

    def test_own_bucket_url_is_resigned(self):
        """URLs into the media bucket are re-signed."""
        client = MagicMock()
        client.generate_presigned_url.return_value = 'https://signed'

        with patch.object(storage, 'get_s3_client', return_value=client):
            url = storage.audio_url('https://media.s3.amazonaws.com/recordings/a.webm', bucket_name='media')

        assert url == 'https://signed'
        client.generate_presigned_url.assert_called_once_with(
            'get_object',
            Params={'Bucket': 'media', 'Key': 'recordings/a.webm'},
            ExpiresIn=storage.config.AUDIO_URL_EXPIRATION,
        )

    def test_no_bucket(self, monkeypatch):
        """Without a media bucket there is no URL."""
        monkeypatch.setattr(storage.config, 'MEDIA_BUCKET', '')

        assert storage.audio_url('recordings/a.webm') is None
