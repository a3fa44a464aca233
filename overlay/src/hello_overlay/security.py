import dataclasses
import hashlib
import hmac

import msgpack

from hello_overlay.config import SIGNING_KEY
from hello_overlay.protocol import Response, Signature

DIGEST_SHA256 = "DigestSha256"
HMAC_SHA256 = "SignatureHmacWithSha256"


class KeyChain:
    """
    Signs responses before they leave the producer.

    With a key, the signature is an HMAC-SHA256 over the signed portion of the
    response; without one, a plain SHA-256 digest (integrity only).
    """

    def __init__(self, key: str | bytes = SIGNING_KEY, key_name: str = "/localhost/hello"):
        self.key = key.encode() if isinstance(key, str) else key
        self.key_name = key_name

    def _compute(self, response: Response, sig_type: str) -> bytes:
        blob = msgpack.packb(response.signed_portion(), use_bin_type=True)
        if sig_type == HMAC_SHA256:
            return hmac.new(self.key, blob, hashlib.sha256).digest()
        return hashlib.sha256(blob).digest()

    def sign(self, response: Response) -> Response:
        if self.key:
            signature = Signature(
                type=HMAC_SHA256,
                value=self._compute(response, HMAC_SHA256),
                key_name=self.key_name,
            )
        else:
            signature = Signature(
                type=DIGEST_SHA256, value=self._compute(response, DIGEST_SHA256)
            )
        return dataclasses.replace(response, signature=signature)

    def verify(self, response: Response) -> bool:
        sig = response.signature
        if sig is None or sig.type not in (DIGEST_SHA256, HMAC_SHA256):
            return False
        if sig.type == HMAC_SHA256 and not self.key:
            return False
        return hmac.compare_digest(sig.value, self._compute(response, sig.type))
