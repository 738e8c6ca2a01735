"""Lookup of the policy encryption key and the decryption configuration built from it."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

__all__ = [
    "IV_ANNOTATION",
    "SECRET_NAME",
    "NotFoundError",
    "EncryptionError",
    "CachedEncryptionKey",
    "EncryptionConfig",
    "EncryptionKeyProvider",
    "uses_encryption",
]

logger = logging.getLogger(__name__)

IV_ANNOTATION = "policy.open-cluster-management.io/encryption-iv"
SECRET_NAME = "policy-encryption-key"

_ALPHABET = b"ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"
_DECODE_MAP = {ch: index for index, ch in enumerate(_ALPHABET)}
_NEWLINES = (0x0A, 0x0D)
_PAD = ord("=")

SecretGetter = Callable[[str, str], Mapping[str, bytes]]


class NotFoundError(LookupError):
    """Raised by a secret getter when the requested object does not exist."""

    def __init__(self, resource: str, name: str) -> None:
        super().__init__(f'{resource} "{name}" not found')
        self.resource = resource
        self.name = name


class EncryptionError(Exception):
    """Raised when the encryption key or configuration cannot be obtained."""


class _Base64Error(ValueError):
    def __init__(self, offset: int) -> None:
        super().__init__(f"illegal base64 data at input byte {offset}")
        self.offset = offset


def _skip_newlines(src: bytes, index: int) -> int:
    while index < len(src) and src[index] in _NEWLINES:
        index += 1
    return index


def _decode_base64(text: str) -> bytes:
    """Decode padded standard Base64, reporting the byte offset of any fault."""
    src = text.encode("utf-8")
    size = len(src)
    si = 0
    out = bytearray()

    while True:
        quantum: list[int] = []
        dlen = 4
        while len(quantum) < 4:
            j = len(quantum)
            if si == size:
                if j == 0:
                    return bytes(out)
                raise _Base64Error(si - j)
            ch = src[si]
            si += 1
            if ch in _DECODE_MAP:
                quantum.append(_DECODE_MAP[ch])
                continue
            if ch in _NEWLINES:
                continue
            if ch != _PAD:
                raise _Base64Error(si - 1)
            if j in (0, 1):
                raise _Base64Error(si - 1)
            if j == 2:
                si = _skip_newlines(src, si)
                if si == size:
                    raise _Base64Error(size)
                if src[si] != _PAD:
                    raise _Base64Error(si - 1)
                si += 1
            si = _skip_newlines(src, si)
            if si < size:
                raise _Base64Error(si)
            dlen = j
            break

        padded = quantum + [0] * (4 - len(quantum))
        value = (padded[0] << 18) | (padded[1] << 12) | (padded[2] << 6) | padded[3]
        chunk = value.to_bytes(3, "big")
        out.extend(chunk[: dlen - 1])
        if dlen < 4:
            return bytes(out)


def _metadata(policy: Mapping[str, Any]) -> Mapping[str, Any]:
    return policy.get("metadata") or {}


def _annotations(policy: Mapping[str, Any]) -> Mapping[str, str]:
    return _metadata(policy).get("annotations") or {}


def uses_encryption(policy: Mapping[str, Any]) -> bool:
    """Whether the policy carries an initialization vector, meaning it holds encrypted values."""
    return _annotations(policy).get(IV_ANNOTATION, "") != ""


@dataclass
class CachedEncryptionKey:
    """The current and previous AES keys read from the encryption secret."""

    key: bytes | None = None
    previous_key: bytes | None = None


@dataclass(frozen=True)
class EncryptionConfig:
    """Settings needed to decrypt values encrypted by hub templates."""

    aes_key: bytes | None = None
    aes_key_fallback: bytes | None = None
    decryption_concurrency: int = 0
    decryption_enabled: bool = False
    encryption_enabled: bool = False
    initialization_vector: bytes = b""


class EncryptionKeyProvider:
    """Reads the encryption key from a secret and caches it between evaluations.

    ``get_secret(namespace, name)`` returns the secret's data and raises
    NotFoundError when the secret does not exist.
    """

    def __init__(self, get_secret: SecretGetter, decryption_concurrency: int = 0) -> None:
        self._get_secret = get_secret
        self.decryption_concurrency = decryption_concurrency
        self.cached_encryption_key: CachedEncryptionKey | None = None

    def get_encryption_key(self, namespace: str) -> CachedEncryptionKey:
        """Fetch the encryption keys from the secret in ``namespace``."""
        try:
            data = self._get_secret(namespace, SECRET_NAME)
        except Exception as exc:
            raise EncryptionError(
                f"failed to get the encryption key from Secret {namespace}/{SECRET_NAME}: {exc}"
            ) from exc

        key = data.get("key") or b""
        previous_key = data.get("previousKey") or b""
        return CachedEncryptionKey(
            key=bytes(key) if key else None,
            previous_key=bytes(previous_key) if previous_key else None,
        )

    def get_encryption_config(
        self, policy: Mapping[str, Any], force_refresh: bool = False
    ) -> tuple[EncryptionConfig, bool]:
        """Return the decryption config and whether the cached key was used.

        ``force_refresh`` skips the cache and replaces it with the secret's contents.
        """
        name = _metadata(policy).get("name", "")
        iv_base64 = _annotations(policy).get(IV_ANNOTATION, "")

        try:
            iv = _decode_base64(iv_base64)
        except _Base64Error as exc:
            raise EncryptionError(
                f'the policy annotation of "{IV_ANNOTATION}" is not Base64: {exc}'
            ) from exc

        if self.cached_encryption_key is None or force_refresh:
            self.cached_encryption_key = CachedEncryptionKey()

        used_cache = False
        if self.cached_encryption_key.key is None:
            logger.debug(
                "The encryption key is not cached, getting it from the server (policy=%s)",
                name,
            )
            self.cached_encryption_key = None
            # The managed cluster namespace is the policy's namespace.
            self.cached_encryption_key = self.get_encryption_key(
                _metadata(policy).get("namespace", "")
            )
        else:
            logger.debug("Using the cached encryption key (policy=%s)", name)
            used_cache = True

        config = EncryptionConfig(
            aes_key=self.cached_encryption_key.key,
            aes_key_fallback=self.cached_encryption_key.previous_key,
            decryption_concurrency=self.decryption_concurrency,
            decryption_enabled=True,
            initialization_vector=iv,
        )
        return config, used_cache