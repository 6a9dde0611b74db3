"""
Unit tests for report building and Discord delivery (backupbot/notify.py).

Discord is replaced with an httpx.MockTransport.
"""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx
import pytest

from backupbot.models import BackupArtifact
from backupbot.notify import (
    COLOR_SUCCESS,
    Attachment,
    DeliveryError,
    DiscordNotifier,
    NotificationSink,
    build_backup_report,
    format_datetime,
    to_discord_embed
)


CREATED_AT = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)
BASE_URL = 'https://discord.test/api/v10'

TEXT_CHANNEL = {'id': '123456789', 'type': 0, 'guild_id': '42'}
VOICE_CHANNEL = {'id': '123456789', 'type': 2, 'guild_id': '42'}


@pytest.fixture
def artifact(tmp_path):
    archive = tmp_path / 'TestServer-2024-01-15T12-00-00.000Z.zip'
    archive.write_bytes(b'PK' + b'\x00' * 2048)
    return BackupArtifact(
        source_id='TestServer',
        created_at=CREATED_AT,
        folder=tmp_path,
        dump_path=archive.with_suffix('.sql'),
        archive_path=archive,
        size_bytes=2 * 1024 * 1024 + 512 * 1024
    )


@pytest.fixture
def attachment(artifact):
    return Attachment(path=str(artifact.archive_path), filename=artifact.archive_name)


def make_notifier(handler):
    """DiscordNotifier whose HTTP calls are answered by `handler`."""
    client = httpx.Client(transport=httpx.MockTransport(handler), base_url=BASE_URL)
    return DiscordNotifier('test-token', '123456789', client=client)


class TestBuildBackupReport:
    """Test build_backup_report."""

    def test_fields(self, artifact):
        report = build_backup_report(artifact, 'db', 10, display_name='Test Server')

        assert report.color == COLOR_SUCCESS
        assert [f.name for f in report.fields] == ['Date', 'Size', 'Database', 'File', 'Next backup']
        assert report.field_value('Size') == '2.50 MB'
        assert report.field_value('Database') == 'db'
        assert report.field_value('File') == 'TestServer-2024-01-15T12-00-00.000Z.zip'
        assert report.field_value('Date') == format_datetime(CREATED_AT)
        assert report.timestamp == CREATED_AT
        assert report.footer == 'Backup - Server: Test Server'

    def test_next_backup_is_created_plus_interval(self, artifact):
        report = build_backup_report(artifact, 'db', 90)

        assert report.field_value('Next backup') == format_datetime(
            CREATED_AT + timedelta(minutes=90), with_seconds=False
        )

    def test_missing_field(self, artifact):
        assert build_backup_report(artifact, 'db', 10).field_value('Nope') is None


class TestFormatDatetime:
    """Test format_datetime."""

    def test_with_and_without_seconds(self):
        local = CREATED_AT.astimezone()

        assert format_datetime(CREATED_AT) == local.strftime('%d/%m/%Y %H:%M:%S')
        assert format_datetime(CREATED_AT, with_seconds=False) == local.strftime('%d/%m/%Y %H:%M')


class TestToDiscordEmbed:
    """Test to_discord_embed."""

    def test_embed_shape(self, artifact):
        embed = to_discord_embed(build_backup_report(artifact, 'db', 10, display_name='S'))

        assert embed['title'] == 'Automatic Backup System'
        assert embed['color'] == 0x00FF00
        assert embed['footer'] == {'text': 'Backup - Server: S'}
        assert embed['timestamp'] == CREATED_AT.isoformat()
        assert embed['fields'][2] == {'name': 'Database', 'value': 'db', 'inline': False}


class TestNotificationSink:
    """Test the NotificationSink interface."""

    def test_cannot_instantiate_interface(self):
        with pytest.raises(TypeError):
            NotificationSink()

    def test_subclass_must_implement_send(self):
        class Incomplete(NotificationSink):
            pass

        with pytest.raises(TypeError):
            Incomplete()

    def test_minimal_sink(self, artifact, attachment):
        """Test a sink implementing send is usable and close is optional."""
        class RecordingSink(NotificationSink):
            def __init__(self):
                self.sent = []

            def send(self, report, attachment):
                self.sent.append((report, attachment))

        sink = RecordingSink()
        sink.send(build_backup_report(artifact, 'db', 10), attachment)
        sink.close()

        assert len(sink.sent) == 1


class TestDiscordNotifier:
    """Test DiscordNotifier against a mocked Discord API."""

    def test_requires_credentials(self):
        with pytest.raises(ValueError):
            DiscordNotifier('', '123')
        with pytest.raises(ValueError):
            DiscordNotifier('token', '')

    def test_default_client_headers(self):
        notifier = DiscordNotifier('secret', '123')
        try:
            assert notifier._client.headers['Authorization'] == 'Bot secret'
        finally:
            notifier.close()

    def test_send_posts_embed_and_file(self, artifact, attachment):
        """Test the message carries the embed and the archive as multipart."""
        requests = []

        def handler(request):
            requests.append(request)
            if request.method == 'GET':
                return httpx.Response(200, json=TEXT_CHANNEL)
            return httpx.Response(200, json={'id': '1'})

        notifier = make_notifier(handler)
        notifier.send(build_backup_report(artifact, 'db', 10), attachment)

        assert [r.method for r in requests] == ['GET', 'POST']
        assert requests[0].url.path == '/api/v10/channels/123456789'

        post = requests[1]
        assert post.url.path == '/api/v10/channels/123456789/messages'
        assert post.headers['content-type'].startswith('multipart/form-data')
        body = post.read()
        assert b'name="payload_json"' in body
        assert b'name="files[0]"; filename="TestServer-2024-01-15T12-00-00.000Z.zip"' in body

        payload_start = body.index(b'{"embeds"')
        payload_end = body.index(b'\r\n', payload_start)
        payload = json.loads(body[payload_start:payload_end])
        assert payload['embeds'][0]['fields'][2]['value'] == 'db'
        assert payload['attachments'] == [{'id': 0, 'filename': attachment.filename}]

    def test_non_text_channel(self, artifact, attachment):
        notifier = make_notifier(lambda request: httpx.Response(200, json=VOICE_CHANNEL))

        with pytest.raises(DeliveryError, match='not a text channel'):
            notifier.send(build_backup_report(artifact, 'db', 10), attachment)

    def test_unknown_channel(self, artifact, attachment):
        notifier = make_notifier(lambda request: httpx.Response(404, json={'message': 'Unknown Channel'}))

        with pytest.raises(DeliveryError, match='not found'):
            notifier.send(build_backup_report(artifact, 'db', 10), attachment)

    def test_attachment_too_large(self, artifact, attachment):
        def handler(request):
            if request.method == 'GET':
                return httpx.Response(200, json=TEXT_CHANNEL)
            return httpx.Response(413, json={'message': 'Request entity too large'})

        notifier = make_notifier(handler)

        with pytest.raises(DeliveryError, match='too large'):
            notifier.send(build_backup_report(artifact, 'db', 10), attachment)

    def test_api_error(self, artifact, attachment):
        def handler(request):
            if request.method == 'GET':
                return httpx.Response(200, json=TEXT_CHANNEL)
            return httpx.Response(403, json={'message': 'Missing Permissions'})

        notifier = make_notifier(handler)

        with pytest.raises(DeliveryError, match=r'Discord API error \(403\)'):
            notifier.send(build_backup_report(artifact, 'db', 10), attachment)

    def test_transport_error(self, artifact, attachment):
        def handler(request):
            raise httpx.ConnectError('connection refused', request=request)

        notifier = make_notifier(handler)

        with pytest.raises(DeliveryError, match='request failed'):
            notifier.send(build_backup_report(artifact, 'db', 10), attachment)

    def test_missing_attachment_file(self, artifact, tmp_path):
        notifier = make_notifier(lambda request: httpx.Response(200, json=TEXT_CHANNEL))
        missing = Attachment(path=str(tmp_path / 'gone.zip'), filename='gone.zip')

        with pytest.raises(DeliveryError, match='Cannot read attachment'):
            notifier.send(build_backup_report(artifact, 'db', 10), missing)

    def test_resolve_source_name(self):
        """Test the guild name of the target channel is returned."""
        def handler(request):
            if request.url.path.endswith('/channels/123456789'):
                return httpx.Response(200, json=TEXT_CHANNEL)
            if request.url.path.endswith('/guilds/42'):
                return httpx.Response(200, json={'id': '42', 'name': 'My Server! 2024'})
            return httpx.Response(404)

        assert make_notifier(handler).resolve_source_name() == 'My Server! 2024'

    def test_resolve_source_name_without_guild(self):
        channel = {'id': '123456789', 'type': 0}
        notifier = make_notifier(lambda request: httpx.Response(200, json=channel))

        with pytest.raises(DeliveryError, match='does not belong'):
            notifier.resolve_source_name()
