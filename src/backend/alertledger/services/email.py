"""
Gmail transport for bank alert emails.

Lists unread alert messages, fetches and decodes them into InboundMessages,
and marks them read once ingested. API errors propagate so the poller can
back off or stop.
"""

import base64
import logging
from typing import Dict, List, Optional, Tuple
from datetime import datetime, timezone
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
import html2text

from alertledger.config import settings
from alertledger.models.pending import InboundMessage
from alertledger.utils.dates import utcnow

logger = logging.getLogger(__name__)

GMAIL_SCOPES = ['https://www.googleapis.com/auth/gmail.modify']


class EmailService:
    """Service for interacting with Gmail API."""

    def __init__(self, service=None):
        """Initialize Gmail service with OAuth credentials, unless one is given."""
        self.creds = None
        self.service = service
        if self.service is None:
            self._initialize_service()

    def _initialize_service(self):
        """Set up Gmail API service with credentials."""
        try:
            self.creds = Credentials(
                token=None,
                refresh_token=settings.GMAIL_REFRESH_TOKEN,
                token_uri="https://oauth2.googleapis.com/token",
                client_id=settings.GMAIL_CLIENT_ID,
                client_secret=settings.GMAIL_CLIENT_SECRET,
                scopes=GMAIL_SCOPES
            )

            self.service = build('gmail', 'v1', credentials=self.creds, cache_discovery=False)
            logger.debug("Gmail service initialized successfully")

        except Exception:
            logger.error("Failed to initialize Gmail service", exc_info=True)
            raise

    def list_messages(self, query: Optional[str] = None, max_results: Optional[int] = None) -> List[Dict]:
        """
        List messages matching a Gmail search query.

        Args:
            query: Gmail search query, defaults to the configured alert query
            max_results: Maximum number of messages to return

        Returns:
            List of message stubs with id and threadId

        Raises:
            googleapiclient.errors.HttpError
        """
        full_query = query if query is not None else settings.GMAIL_QUERY
        results = self.service.users().messages().list(
            userId='me',
            q=full_query,
            maxResults=max_results or settings.GMAIL_MAX_RESULTS
        ).execute()

        messages = results.get('messages', [])
        logger.debug("Listed messages from Gmail", extra={
            "count": len(messages),
            "query": full_query
        })
        return messages

    def get_message(self, message_id: str) -> Dict:
        """Full message by ID, with headers and MIME parts."""
        return self.service.users().messages().get(
            userId='me',
            id=message_id,
            format='full'
        ).execute()

    def mark_as_read(self, message_id: str) -> None:
        self.service.users().messages().modify(
            userId='me',
            id=message_id,
            body={'removeLabelIds': ['UNREAD']}
        ).execute()

    def extract_email_body(self, message: Dict) -> Tuple[Optional[str], Optional[str]]:
        """
        Extract email body content (HTML and/or plain text).

        Returns:
            Tuple of (html_body, text_body)
        """
        html_body = None
        text_body = None

        def get_body_from_part(part):
            nonlocal html_body, text_body

            mime_type = part.get('mimeType', '')
            body = part.get('body', {})

            if 'data' in body:
                try:
                    decoded = base64.urlsafe_b64decode(body['data']).decode('utf-8')

                    if mime_type == 'text/html' and html_body is None:
                        html_body = decoded
                    elif mime_type == 'text/plain' and text_body is None:
                        text_body = decoded
                except (ValueError, UnicodeDecodeError) as e:
                    logger.warning("Error decoding body part", extra={
                        "mime_type": mime_type,
                        "error": str(e)
                    })

            for subpart in part.get('parts', []):
                get_body_from_part(subpart)

        get_body_from_part(message.get('payload', {}))

        return html_body, text_body

    @staticmethod
    def convert_html_to_text(html_content: str) -> str:
        """Convert an HTML email to plain text, without wrapping or links."""
        h = html2text.HTML2Text()
        h.ignore_links = True
        h.ignore_images = True
        h.ignore_emphasis = True
        h.body_width = 0  # Don't wrap lines

        return h.handle(html_content).strip()

    def extract_email_metadata(self, message: Dict) -> Dict:
        """
        Extract subject, sender and received time from a message.

        Returns:
            Dictionary with subject, from, date, received_at
        """
        headers = message.get('payload', {}).get('headers', [])
        metadata = {
            'subject': '',
            'from': '',
            'date': '',
            'received_at': None
        }

        for header in headers:
            name = header['name'].lower()
            if name in ('subject', 'from', 'date'):
                metadata[name] = header['value']

        # internalDate is milliseconds since epoch
        try:
            timestamp_ms = int(message['internalDate'])
            metadata['received_at'] = datetime.fromtimestamp(timestamp_ms / 1000.0, tz=timezone.utc)
        except (KeyError, ValueError, TypeError):
            logger.warning("Missing or invalid internalDate", extra={"message_id": message.get('id')})
            metadata['received_at'] = utcnow()

        return metadata

    def to_inbound(self, message: Dict, user_id: str) -> InboundMessage:
        """Decode a full Gmail message into an InboundMessage, preferring the plain-text body."""
        metadata = self.extract_email_metadata(message)
        html_body, text_body = self.extract_email_body(message)

        body = text_body
        if not body and html_body:
            body = self.convert_html_to_text(html_body)
        if not body:
            body = message.get('snippet', '')

        return InboundMessage(
            user_id=user_id,
            sender=metadata['from'],
            subject=metadata['subject'] or None,
            body=body,
            timestamp=metadata['received_at'],
            message_id=message['id'],
            source_kind='gmail'
        )
