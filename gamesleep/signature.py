"""Ed25519 verification of inbound interaction requests.

The signed message is ``timestamp + raw_body`` on the exact bytes received.
Verification must run before the body is parsed: re-serialized JSON is not
byte-identical and would fail a legitimate signature.
"""

import logging

from nacl.exceptions import BadSignatureError
from nacl.signing import VerifyKey

from .errors import AuthenticationFailure
from .logs import log_event

log = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-signature-ed25519"
TIMESTAMP_HEADER = "x-signature-timestamp"


def verify_request(raw_body, signature, timestamp, public_key):
    """Return True only when ``signature`` verifies ``timestamp || raw_body``.

    Any missing piece, malformed hex or bad signature yields False.
    """
    if not signature or not timestamp or not public_key:
        return False
    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")
    try:
        key = VerifyKey(bytes.fromhex(public_key))
        key.verify(timestamp.encode("utf-8") + raw_body, bytes.fromhex(signature))
        return True
    except BadSignatureError:
        return False
    except (ValueError, TypeError) as e:
        # Non-hex input or wrong key/signature length.
        log_event(log, "signature_malformed", level=logging.WARNING, error=str(e))
        return False


def require_valid_request(raw_body, headers, public_key):
    """Raise AuthenticationFailure unless the request headers carry a valid signature.

    ``headers`` must already be lower-cased.
    """
    ok = verify_request(
        raw_body,
        headers.get(SIGNATURE_HEADER),
        headers.get(TIMESTAMP_HEADER),
        public_key,
    )
    if not ok:
        raise AuthenticationFailure("invalid request signature")
