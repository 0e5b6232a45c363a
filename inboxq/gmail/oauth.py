"""Google OAuth2 credentials for Gmail and Drive.

InboxQ runs as the mailbox owner: an authorized-user token (token.json) is
created once with the desktop flow and refreshed automatically afterwards.

Environment:
    GOOGLE_OAUTH_CLIENT_SECRETS  client secrets JSON (default credentials/credentials.json)
    GOOGLE_OAUTH_TOKEN_FILE      authorized-user token (default credentials/token.json)
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from inboxq.errors import ConfigurationError
from inboxq.observability.logging import get_logger

logger = get_logger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/gmail.modify",  # Labels, archive, drafts
    "https://www.googleapis.com/auth/gmail.send",  # Digest emails
    "https://www.googleapis.com/auth/drive.readonly",  # Knowledge documents
]


def _paths() -> tuple[Path, Path]:
    secrets = Path(os.getenv("GOOGLE_OAUTH_CLIENT_SECRETS", "credentials/credentials.json"))
    token = Path(os.getenv("GOOGLE_OAUTH_TOKEN_FILE", "credentials/token.json"))
    return secrets, token


def load_credentials(interactive: bool = False) -> Credentials:
    """
    Load (and refresh) the mailbox owner's OAuth credentials.

    Args:
        interactive: Run the local-server consent flow if no usable token exists

    Raises:
        ConfigurationError: No token and interactive consent not allowed/possible

    Side Effects:
        - May refresh the token over the network and rewrite the token file
        - May open a browser for consent (interactive only)
    """
    secrets_file, token_file = _paths()
    creds: Credentials | None = None

    if token_file.exists():
        creds = Credentials.from_authorized_user_file(str(token_file), SCOPES)

    if creds and creds.valid:
        return creds

    if creds and creds.expired and creds.refresh_token:
        creds.refresh(Request())
        token_file.write_text(creds.to_json(), encoding="utf-8")
        logger.info("Refreshed Google OAuth token")
        return creds

    if not interactive:
        raise ConfigurationError(
            "GOOGLE_OAUTH_TOKEN_FILE",
            f"no valid token at {token_file}; run the consent flow once with interactive=True",
        )
    if not secrets_file.exists():
        raise ConfigurationError(
            "GOOGLE_OAUTH_CLIENT_SECRETS",
            f"client secrets not found at {secrets_file}; download them from Google Cloud Console",
        )

    flow = InstalledAppFlow.from_client_secrets_file(str(secrets_file), SCOPES)
    creds = flow.run_local_server(port=0)
    token_file.parent.mkdir(parents=True, exist_ok=True)
    token_file.write_text(creds.to_json(), encoding="utf-8")
    logger.info("Stored new Google OAuth token at %s", token_file)
    return creds


def main() -> int:
    """
    Console entry point (``inboxq-oauth-setup``): create or refresh the token.

    Opens a browser for consent when no usable token exists, then checks the
    token against the Gmail profile endpoint.

    Returns:
        Process exit code (0 on success)
    """
    from inboxq.gmail.mailbox import build_gmail_service

    print("=" * 60)
    print("          InboxQ - Gmail OAuth Setup")
    print("=" * 60)
    print()

    secrets_file, token_file = _paths()
    if not token_file.exists() and not secrets_file.exists():
        print(f"❌ OAuth client secrets not found at {secrets_file}")
        print("   1. Go to https://console.cloud.google.com/apis/credentials")
        print("   2. Create an OAuth 2.0 Client ID (Desktop app type)")
        print("   3. Save the JSON there, or point GOOGLE_OAUTH_CLIENT_SECRETS at it")
        return 1

    try:
        creds = load_credentials(interactive=True)
    except KeyboardInterrupt:
        print("\n❌ Setup cancelled by user")
        return 1
    except Exception as e:
        print(f"❌ OAuth setup failed: {e}")
        return 1

    print(f"✅ Token stored at {token_file}")
    try:
        profile = build_gmail_service(creds).users().getProfile(userId="me").execute()
    except Exception as e:
        print(f"⚠️  Token stored, but the Gmail connection test failed: {e}")
        return 1
    print(f"✅ Connected to Gmail for: {profile.get('emailAddress')}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
