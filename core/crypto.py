"""
Channel config encryption.

Notification channel configs (webhook URLs, tokens) are stored encrypted with
a Fernet key from CHANNEL_ENCRYPTION_KEY and decrypted only at send time.
"""

import json
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken

from core.config import settings
from core.exceptions import ChannelConfigError


def _get_fernet(key: Optional[str] = None) -> Fernet:
    """Get a Fernet instance for the channel encryption key."""
    key = key or settings.CHANNEL_ENCRYPTION_KEY
    if not key:
        raise ChannelConfigError("CHANNEL_ENCRYPTION_KEY must be set to use notification channels")
    return Fernet(key.encode() if isinstance(key, str) else key)


def encrypt_config(config: Dict[str, Any], key: Optional[str] = None) -> str:
    """Serialize and encrypt a channel config dict."""
    payload = json.dumps(config).encode("utf-8")
    return _get_fernet(key).encrypt(payload).decode("ascii")


def decrypt_config(token: str, key: Optional[str] = None) -> Dict[str, Any]:
    """
    Decrypt a stored channel config.

    Raises:
        ChannelConfigError: Token is invalid for the key or does not hold a JSON object
    """
    try:
        raw = _get_fernet(key).decrypt(token.encode("ascii"))
        config = json.loads(raw.decode("utf-8"))
    except (InvalidToken, ValueError) as e:
        raise ChannelConfigError("Failed to decrypt channel config", original_exception=e)

    if not isinstance(config, dict):
        raise ChannelConfigError("Channel config must be a JSON object")
    return config
