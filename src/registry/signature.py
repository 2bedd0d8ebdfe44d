"""Detached signature verification for indexes and artifacts.

Sidecar format (``<artifact>.sig``, JSON)::

    {
      "format": "elpm-sig",
      "version": 0,
      "signatures": [
        {"algo": "ed25519", "kid": "ed25519:<b64 sha256(pubkey)>", "sig": "<b64>"}
      ]
    }

Signatures cover the exact artifact bytes. Public keys come from a local
keyring file; keys offered by the sidecar itself are never trusted.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from common.errors import SignatureCause, SignatureError
from constants import SignaturePolicy

logger = logging.getLogger(__name__)

SIDECAR_FORMAT = "elpm-sig"
KEYRING_FORMAT = "elpm-keyring"
ED25519 = "ed25519"


def _b64_decode(text: str) -> bytes:
    return base64.b64decode(text.encode("ascii"), validate=True)


def compute_key_id(pubkey_raw: bytes) -> str:
    """Key id for an Ed25519 public key: ``ed25519:`` + base64(sha256(key))."""
    digest = hashlib.sha256(pubkey_raw).digest()
    return f"{ED25519}:" + base64.b64encode(digest).decode("ascii")


@dataclass(frozen=True)
class GoodSignature:
    """One signature that verified against a trusted key."""

    kid: str
    algo: str = ED25519


@dataclass(frozen=True)
class Keyring:
    """Trusted public keys by key id."""

    keys: Dict[str, bytes]

    @classmethod
    def empty(cls) -> "Keyring":
        return cls(keys={})

    @classmethod
    def load(cls, path: Optional[Path]) -> "Keyring":
        """Load a keyring file; a missing path yields an empty keyring.

        Format::

            {"format": "elpm-keyring", "version": 0,
             "keys": {"<kid>": {"algo": "ed25519", "pubkey": "<b64>"}}}
        """
        if path is None or not Path(path).is_file():
            return cls.empty()
        try:
            obj = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise SignatureError(SignatureCause.MALFORMED, str(path), f"unreadable keyring: {exc}") from exc
        if not isinstance(obj, dict) or obj.get("format") != KEYRING_FORMAT:
            raise SignatureError(SignatureCause.MALFORMED, str(path), "not a keyring file")
        keys: Dict[str, bytes] = {}
        for kid, entry in (obj.get("keys") or {}).items():
            if not isinstance(entry, dict) or entry.get("algo") != ED25519:
                logger.warning("Ignoring unsupported key %s in keyring %s", kid, path)
                continue
            try:
                raw = _b64_decode(str(entry.get("pubkey", "")))
            except (binascii.Error, ValueError) as exc:
                raise SignatureError(SignatureCause.MALFORMED, str(path), f"bad public key for {kid}") from exc
            if len(raw) != 32:
                raise SignatureError(SignatureCause.MALFORMED, str(path), f"ed25519 key {kid} must be 32 bytes")
            keys[kid] = raw
        return cls(keys=keys)

    def add(self, pubkey_raw: bytes) -> str:
        kid = compute_key_id(pubkey_raw)
        self.keys[kid] = pubkey_raw
        return kid


@dataclass(frozen=True)
class _SigEntry:
    kid: str
    sig_raw: bytes


def _load_sidecar(signature: bytes, target: str) -> List[_SigEntry]:
    try:
        obj = json.loads(signature.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise SignatureError(SignatureCause.MALFORMED, target, "signature is not valid JSON") from exc
    if not isinstance(obj, dict) or obj.get("format") != SIDECAR_FORMAT or obj.get("version") != 0:
        raise SignatureError(SignatureCause.MALFORMED, target, "unsupported signature format")
    entries: List[_SigEntry] = []
    for item in obj.get("signatures") or []:
        if not isinstance(item, dict) or item.get("algo") != ED25519:
            continue
        kid = str(item.get("kid") or "")
        try:
            sig_raw = _b64_decode(str(item.get("sig") or ""))
        except (binascii.Error, ValueError) as exc:
            raise SignatureError(SignatureCause.MALFORMED, target, "invalid base64 signature") from exc
        if not kid or len(sig_raw) != 64:
            raise SignatureError(SignatureCause.MALFORMED, target, "ed25519 signature must be 64 bytes")
        entries.append(_SigEntry(kid=kid, sig_raw=sig_raw))
    if not entries:
        raise SignatureError(SignatureCause.MALFORMED, target, "no usable signatures")
    return entries


def verify_signature(
    data: bytes,
    signature: bytes,
    keyring: Keyring,
    *,
    target: str = "<data>",
    allow_unknown_keys: bool = False,
) -> List[GoodSignature]:
    """Verify a detached signature over ``data``.

    Any signature that does not verify is fatal. Signatures by keys missing
    from the keyring are fatal unless ``allow_unknown_keys`` is set; with no
    good signature at all the cause is ``UNKNOWN_KEY``.
    """
    good: List[GoodSignature] = []
    unknown: List[str] = []
    for entry in _load_sidecar(signature, target):
        pubkey = keyring.keys.get(entry.kid)
        if pubkey is None:
            unknown.append(entry.kid)
            continue
        try:
            Ed25519PublicKey.from_public_bytes(pubkey).verify(entry.sig_raw, data)
        except InvalidSignature as exc:
            raise SignatureError(SignatureCause.BAD_SIGNATURE, target, f"key {entry.kid}") from exc
        good.append(GoodSignature(kid=entry.kid))
    if unknown and (not good or not allow_unknown_keys):
        raise SignatureError(SignatureCause.UNKNOWN_KEY, target, "no public key for " + ", ".join(unknown))
    return good


class SignatureChecker:
    """Applies a signature policy to fetched bytes."""

    def __init__(self, policy: SignaturePolicy, keyring: Keyring):
        self.policy = policy
        self.keyring = keyring

    def check(
        self,
        target: str,
        data: bytes,
        signature: Optional[bytes],
        *,
        policy: Optional[SignaturePolicy] = None,
    ) -> List[GoodSignature]:
        """Return good signatures, ``[]`` when unchecked or downgraded.

        Raises:
            SignatureError: The policy rejects ``data``.
        """
        policy = policy or self.policy
        if policy is SignaturePolicy.OFF:
            return []
        if signature is None:
            if policy is SignaturePolicy.REQUIRED:
                raise SignatureError(SignatureCause.MISSING, target, "no signature file")
            logger.warning("Unsigned: %s (no signature file)", target)
            return []
        allow = policy is SignaturePolicy.ALLOW_UNSIGNED
        try:
            return verify_signature(data, signature, self.keyring, target=target, allow_unknown_keys=allow)
        except SignatureError as exc:
            if allow and exc.cause is SignatureCause.UNKNOWN_KEY:
                logger.warning("Unverified: %s (%s)", target, exc.detail)
                return []
            raise
