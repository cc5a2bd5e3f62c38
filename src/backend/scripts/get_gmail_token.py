"""
Gmail OAuth Token Generator
Run this script once to authorize the alert inbox and print a refresh token.

Usage:
    python get_gmail_token.py
"""

import os
from google_auth_oauthlib.flow import InstalledAppFlow

from alertledger.services.email import GMAIL_SCOPES


def get_gmail_credentials():
    """
    Authenticate with Gmail and get credentials.
    This will open a browser window for OAuth consent.
    """
    if not os.path.exists('credentials.json'):
        print("\n❌ Error: credentials.json not found!")
        print("\nDownload the OAuth 2.0 Client ID JSON from Google Cloud Console")
        print("(APIs & Services → Credentials) and save it as 'credentials.json' here.")
        return None

    print("\nThis will open a browser window for authentication.")
    print("AlertLedger asks to read alert emails and mark them as read once ingested.")
    input("Press Enter to continue...")

    flow = InstalledAppFlow.from_client_secrets_file('credentials.json', GMAIL_SCOPES)
    # offline + consent so Google always returns a refresh token
    return flow.run_local_server(port=0, access_type='offline', prompt='consent')


def main():
    print("\nGmail API Token Generator for AlertLedger")
    print("=" * 60)

    creds = get_gmail_credentials()
    if not creds:
        print("\n✗ Authentication failed")
        return

    print("\n✓ Authentication successful!")
    print("\nAdd these to your .env file:")
    print("-" * 60)
    print(f"GMAIL_CLIENT_ID={creds.client_id}")
    print(f"GMAIL_CLIENT_SECRET={creds.client_secret}")
    print(f"GMAIL_REFRESH_TOKEN={creds.refresh_token}")
    print("GMAIL_USER_ID=<the Supabase user that owns this inbox>")
    print("-" * 60)


if __name__ == "__main__":
    main()
