"""
Wire encoding of user metadata values
"""

import base64
import binascii
import logging
from typing import Dict, Mapping, Optional

logger = logging.getLogger(__name__)


def encode_metadata(metadata: Mapping[str, Optional[bytes]]) -> Dict[str, Optional[str]]:
    """Base64-encode each value; None stays null so a patch removes the key."""
    encoded: Dict[str, Optional[str]] = {}
    for key, value in metadata.items():
        if value is None:
            encoded[key] = None
        else:
            encoded[key] = base64.b64encode(value).decode("ascii")
    return encoded


def decode_metadata(metadata: Optional[Mapping[str, Optional[str]]]) -> Dict[str, Optional[bytes]]:
    """Reverse encode_metadata; undecodable values are logged and come back as None."""
    if not metadata:
        return {}
    decoded: Dict[str, Optional[bytes]] = {}
    for key, value in metadata.items():
        if value is None:
            decoded[key] = None
            continue
        try:
            decoded[key] = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as ex:
            logger.error("Failed to parse base64 encoded attribute value %s - %s", value, ex)
            decoded[key] = None
    return decoded
