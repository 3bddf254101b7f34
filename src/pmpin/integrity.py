"""Integrity verification for downloaded package manager artifacts.

Two mechanisms are supported:

* a digest embedded in the locator reference, ``<version>+<algorithm>.<hex>``,
  checked against the bytes of the downloaded artifact;
* npm registry signatures: the ECDSA P-256 signature published alongside a
  version's SRI ``integrity`` is verified with known registry keys, then the
  artifact's sha512 is compared to that SRI value.

Digests are always compared in constant time.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import load_der_public_key

from .common.logging_utils import extra_context
from .constants import Constants
from .errors import IntegrityMismatch, UsageError
from .settings import BrokerSettings

logger = logging.getLogger(__name__)


def parse_reference_digest(reference: str) -> Optional[Tuple[str, str]]:
    """Split ``1.2.3+sha1.abcd`` into ``("sha1", "abcd")``.

    Returns:
        (algorithm, hex digest), or None when the reference embeds no digest.
    """
    _, plus, build = reference.partition("+")
    if not plus or "." not in build:
        return None
    algorithm, _, digest = build.partition(".")
    if not algorithm or not digest:
        return None
    return algorithm.lower(), digest.lower()


def new_hasher(algorithm: str):
    """Return a hashlib object for algorithm.

    Raises:
        IntegrityMismatch: If the algorithm is not available.
    """
    try:
        return hashlib.new(algorithm)
    except (ValueError, TypeError) as exc:
        raise IntegrityMismatch(f"Unsupported hash algorithm {algorithm!r}") from exc


def sri_to_hex(integrity: str) -> str:
    """Convert an SRI string such as ``sha512-<base64>`` to a hex digest."""
    _, _, encoded = integrity.partition("-")
    try:
        return base64.b64decode(encoded).hex()
    except (binascii.Error, ValueError) as exc:
        raise IntegrityMismatch(f"Malformed integrity value {integrity!r}") from exc


def digests_match(expected: str, actual: str) -> bool:
    return hmac.compare_digest(expected.lower().encode("ascii"), actual.lower().encode("ascii"))


def verify_digest(expected: str, hasher, label: str) -> None:
    """Compare hasher's digest with expected.

    Raises:
        IntegrityMismatch: On any difference.
    """
    actual = hasher.hexdigest()
    if not digests_match(expected, actual):
        logger.debug(
            "Digest mismatch",
            extra=extra_context(
                event="integrity_check",
                component="integrity",
                outcome="mismatch",
                target=label,
                algorithm=hasher.name,
            ),
        )
        raise IntegrityMismatch(f"Mismatch hashes for {label}. Expected {expected}, got {actual}")
    logger.debug("Verified %s digest of %s", hasher.name, label)


def load_verification_keys(settings: BrokerSettings) -> List[Dict[str, str]]:
    """Return the npm registry keys used to check signatures.

    ``PMPIN_INTEGRITY_KEYS`` may hold ``{"npm": [{"keyid": ..., "key": ...}]}``
    (the layout of the registry's ``/-/npm/v1/keys`` endpoint, with ``npm``
    as the wrapping key) to trust a custom registry's keys.

    Raises:
        UsageError: If the variable holds malformed JSON.
    """
    raw = settings.integrity_keys
    if raw and not settings.skip_integrity_check:
        try:
            data = json.loads(raw)
            keys = [{"keyid": str(k["keyid"]), "key": str(k["key"])} for k in data["npm"]]
        except (ValueError, KeyError, TypeError) as exc:
            raise UsageError(f"Invalid {Constants.ENV_INTEGRITY_KEYS}: {exc}") from exc
        logger.debug(
            "Using %s to verify signatures: %s",
            Constants.ENV_INTEGRITY_KEYS,
            ", ".join(k["keyid"] for k in keys),
        )
        return keys
    return list(Constants.NPM_SIGNING_KEYS)


def verify_signature(
    signatures: Any,
    integrity: Optional[str],
    package_name: str,
    version: str,
    settings: BrokerSettings,
) -> None:
    """Verify the registry signature of ``package@version:integrity``.

    Args:
        signatures: The ``dist.signatures`` list from version metadata.
        integrity: The ``dist.integrity`` SRI string that was signed.
        package_name: Registry package name.
        version: Exact version.
        settings: Broker settings (custom keys).

    Raises:
        IntegrityMismatch: If no signature can be checked or it is invalid.
    """
    if not isinstance(signatures, list) or not signatures:
        raise IntegrityMismatch("No compatible signature found in package metadata")
    if not integrity:
        raise IntegrityMismatch(f"No integrity published for {package_name}@{version}")

    keys = load_verification_keys(settings)
    signature_ids = [s.get("keyid") for s in signatures if isinstance(s, dict)]
    key_info = next((k for k in keys if k["keyid"] in signature_ids), None)
    if key_info is None:
        raise IntegrityMismatch(
            f"Cannot find key to verify signature. signature keys: {signature_ids}, "
            f"verification keys: {[k['keyid'] for k in keys]}"
        )
    signature = next(s for s in signatures if isinstance(s, dict) and s.get("keyid") == key_info["keyid"])

    payload = f"{package_name}@{version}:{integrity}"
    try:
        public_key = load_der_public_key(base64.b64decode(key_info["key"]))
        if not isinstance(public_key, ec.EllipticCurvePublicKey):
            raise IntegrityMismatch(f"Key {key_info['keyid']} is not an ECDSA key")
        public_key.verify(
            base64.b64decode(signature.get("sig", "")),
            payload.encode("utf-8"),
            ec.ECDSA(hashes.SHA256()),
        )
    except (InvalidSignature, UnsupportedAlgorithm, binascii.Error, ValueError) as exc:
        raise IntegrityMismatch(
            f"Signature verification failed for {payload} with key {key_info['keyid']}. "
            f"If you are using a custom registry you can set {Constants.ENV_INTEGRITY_KEYS}."
        ) from exc

    logger.debug(
        "Signature verified",
        extra=extra_context(
            event="integrity_check",
            component="integrity",
            outcome="success",
            package=package_name,
            version=version,
            keyid=key_info["keyid"],
        ),
    )


class ArtifactCheck:
    """Expected digest(s) for one download, fed chunk by chunk.

    Build it before the download, pass ``hashers`` to the transport, then call
    ``verify()`` once the artifact is complete.
    """

    def __init__(self, label: str, settings: BrokerSettings):
        self.label = label
        self._settings = settings
        self._checks: List[Tuple[str, Any]] = []

    def expect(self, algorithm: str, hex_digest: str) -> None:
        self._checks.append((hex_digest, new_hasher(algorithm)))

    def expect_sri(self, integrity: str) -> None:
        algorithm, _, _ = integrity.partition("-")
        self.expect(algorithm, sri_to_hex(integrity))

    @property
    def hashers(self) -> List[Any]:
        return [hasher for _, hasher in self._checks]

    def verify(self) -> None:
        """Check every expected digest.

        Raises:
            IntegrityMismatch: On mismatch, or when nothing was expected and
                strict integrity is enabled.
        """
        if not self._checks:
            if self._settings.integrity_strict:
                raise IntegrityMismatch(
                    f"No integrity digest available for {self.label} and "
                    f"{Constants.ENV_INTEGRITY_STRICT} is set"
                )
            logger.debug("No digest to verify for %s", self.label)
            return
        for expected, hasher in self._checks:
            verify_digest(expected, hasher, self.label)
