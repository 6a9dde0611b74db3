"""
Notification sinks for finished backups.

Supports:
- NotificationSink: interface the backup cycle delivers to
- DiscordNotifier: posts an embed plus the archive to a Discord text channel
"""

import json
from abc import ABC, abstractmethod
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

import httpx

from backupbot.models import BackupArtifact


logger = logging.getLogger(__name__)

DISCORD_API_URL = 'https://discord.com/api/v10'
GUILD_TEXT_CHANNEL = 0

COLOR_SUCCESS = 0x00FF00
REPORT_TITLE = 'Automatic Backup System'


class DeliveryError(Exception):
    """Raised when a report cannot be delivered."""
    pass


@dataclass
class MessageField:
    name: str
    value: str
    inline: bool = False


@dataclass
class StructuredMessage:
    """Renderer-agnostic status report."""

    title: str
    color: int
    fields: List[MessageField] = field(default_factory=list)
    timestamp: Optional[datetime] = None
    footer: str = ''

    def field_value(self, name: str) -> Optional[str]:
        for message_field in self.fields:
            if message_field.name == name:
                return message_field.value
        return None


@dataclass
class Attachment:
    path: str
    filename: str


def format_datetime(value: datetime, with_seconds: bool = True) -> str:
    """Local-time dd/mm/YYYY HH:MM[:SS]."""
    fmt = '%d/%m/%Y %H:%M:%S' if with_seconds else '%d/%m/%Y %H:%M'
    return value.astimezone().strftime(fmt)


def build_backup_report(artifact: BackupArtifact, database: str, interval_minutes: float,
                        display_name: str = '') -> StructuredMessage:
    """
    Build the report for a successful backup.

    Args:
        artifact: The verified backup artifact
        database: Name of the dumped database
        interval_minutes: Delay until the next cycle
        display_name: Human-readable instance name for the footer

    Returns:
        StructuredMessage with date, size, database, file and next-run fields
    """
    next_run = artifact.created_at + timedelta(minutes=interval_minutes)

    return StructuredMessage(
        title=REPORT_TITLE,
        color=COLOR_SUCCESS,
        fields=[
            MessageField('Date', format_datetime(artifact.created_at)),
            MessageField('Size', f"{artifact.size_mb:.2f} MB"),
            MessageField('Database', database),
            MessageField('File', artifact.archive_name),
            MessageField('Next backup', format_datetime(next_run, with_seconds=False)),
        ],
        timestamp=artifact.created_at,
        footer=f"Backup - Server: {display_name}" if display_name else 'Backup'
    )


class NotificationSink(ABC):
    """Interface for delivering a report with the backup attached."""

    @abstractmethod
    def send(self, report: StructuredMessage, attachment: Attachment):
        """
        Deliver `report` with `attachment`.

        Raises:
            DeliveryError: If delivery fails
        """

    def close(self):
        """Release connections; sinks without any keep this no-op."""


def to_discord_embed(report: StructuredMessage) -> dict:
    """Render a StructuredMessage as a Discord embed object."""
    embed = {
        'title': report.title,
        'color': report.color,
        'fields': [
            {'name': f.name, 'value': f.value, 'inline': f.inline}
            for f in report.fields
        ],
    }
    if report.timestamp:
        embed['timestamp'] = report.timestamp.isoformat()
    if report.footer:
        embed['footer'] = {'text': report.footer}
    return embed


class DiscordNotifier(NotificationSink):
    """
    Delivers backup reports to a Discord text channel through the REST API.

    Uses a bot token; the channel must be a guild text channel.
    """

    def __init__(self, token: str, channel_id: str, client: Optional[httpx.Client] = None,
                 base_url: str = DISCORD_API_URL, timeout: float = 60.0):
        """
        Initialize the notifier.

        Args:
            token: Discord bot token
            channel_id: Target channel ID
            client: Optional preconfigured httpx client (used by tests)
            base_url: Discord API base URL
            timeout: Request timeout in seconds
        """
        if not token or not channel_id:
            raise ValueError("Discord token and channel ID are required")

        self.channel_id = str(channel_id)
        self._client = client or httpx.Client(
            base_url=base_url,
            headers={
                'Authorization': f"Bot {token}",
                'User-Agent': 'DiscordBot (backupbot, 1.0)'
            },
            timeout=timeout
        )

    def _get(self, path: str) -> dict:
        try:
            response = self._client.get(path)
        except httpx.HTTPError as e:
            raise DeliveryError(f"Discord request failed: {e}")

        if response.status_code == 404:
            raise DeliveryError(f"Discord resource not found: {path}")
        if response.is_error:
            raise DeliveryError(f"Discord API error ({response.status_code}): {response.text}")
        return response.json()

    def fetch_channel(self) -> dict:
        """
        Fetch the target channel and check it accepts messages.

        Raises:
            DeliveryError: If the channel is missing or not a text channel
        """
        channel = self._get(f"/channels/{self.channel_id}")
        if channel.get('type') != GUILD_TEXT_CHANNEL:
            raise DeliveryError("Channel not found or not a text channel")
        return channel

    def resolve_source_name(self) -> str:
        """
        Name of the guild that owns the target channel.

        Used as the instance name when none is configured.
        """
        channel = self.fetch_channel()
        guild_id = channel.get('guild_id')
        if not guild_id:
            raise DeliveryError("Channel does not belong to a server")
        guild = self._get(f"/guilds/{guild_id}")
        return guild.get('name', '')

    def send(self, report: StructuredMessage, attachment: Attachment):
        self.fetch_channel()

        payload = {
            'embeds': [to_discord_embed(report)],
            'attachments': [{'id': 0, 'filename': attachment.filename}]
        }

        try:
            with open(attachment.path, 'rb') as fh:
                response = self._client.post(
                    f"/channels/{self.channel_id}/messages",
                    data={'payload_json': json.dumps(payload)},
                    files={'files[0]': (attachment.filename, fh, 'application/zip')}
                )
        except OSError as e:
            raise DeliveryError(f"Cannot read attachment {attachment.path}: {e}")
        except httpx.HTTPError as e:
            raise DeliveryError(f"Discord upload failed: {e}")

        if response.status_code == 413:
            raise DeliveryError(f"Attachment too large for Discord: {attachment.filename}")
        if response.is_error:
            raise DeliveryError(f"Discord API error ({response.status_code}): {response.text}")

        logger.debug(f"Delivered {attachment.filename} to channel {self.channel_id}")

    def close(self):
        self._client.close()
