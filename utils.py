# utils.py

import hmac
import hashlib
import logging
import os
from typing import Optional

logger = logging.getLogger(__name__)

SIGNATURE_SCHEME = "sha256"
SHELL_METACHARACTERS = frozenset(";&|`$<>")


def verify_signature(request_body: Optional[bytes], signature: Optional[str], secret: str) -> bool:
    """
    Check a GitHub X-Hub-Signature-256 header against the raw request body.

    Never raises; every malformed input is a failed verification.
    """
    if request_body is None:
        logger.warning("Request body was not captured; cannot verify signature.")
        return False

    if not signature:
        logger.warning("No signature provided.")
        return False

    sha_name, sep, hex_digest = signature.partition('=')
    if not sep or sha_name != SIGNATURE_SCHEME:
        logger.warning("Invalid signature format.")
        return False

    try:
        if len(hex_digest) != hashlib.sha256().digest_size * 2:
            raise ValueError("unexpected digest length")
        provided = bytes.fromhex(hex_digest)
    except ValueError:
        logger.warning("Signature is not valid hex.")
        return False

    mac = hmac.new(secret.encode(), msg=request_body, digestmod=hashlib.sha256)
    is_valid = hmac.compare_digest(mac.digest(), provided)
    if is_valid:
        logger.debug("Webhook signature verified successfully.")
    else:
        logger.warning("Webhook signature verification failed.")
    return is_valid


def sign_body(request_body: bytes, secret: str) -> str:
    """Build the header value GitHub would send for this body."""
    digest = hmac.new(secret.encode(), msg=request_body, digestmod=hashlib.sha256).hexdigest()
    return f"{SIGNATURE_SCHEME}={digest}"


def is_safe_script_path(path: str) -> bool:
    """
    Static check for an operator-supplied script path.

    The path must be absolute after normalization and free of shell
    metacharacters, since it ends up on a `bash <path>` command line.
    """
    if not path or not isinstance(path, str):
        return False

    bad = SHELL_METACHARACTERS.intersection(path)
    if bad or "\n" in path or "\r" in path:
        logger.error(f"Script path contains forbidden characters: {path!r}")
        return False

    normalized = os.path.normpath(path)
    if not os.path.isabs(normalized):
        logger.error(f"Script path must be absolute: {path!r}")
        return False
    return True


def script_exists(path: str) -> bool:
    return os.path.isfile(path)
