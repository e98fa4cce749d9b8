"""Authenticated packet encryption with time-windowed keys and replay protection.

Wire format: UserID(4) | Timestamp(2, big endian) | Nonce(12) | Ciphertext | Tag(16).
"""

from __future__ import annotations

import base64
import binascii
import os
import threading
import time
from typing import Callable

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from phantom.crypto.replay import ReplayGuard, ReplayStats

PSK_SIZE = 32
USER_ID_SIZE = 4
TIMESTAMP_SIZE = 2
NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32
HEADER_SIZE = USER_ID_SIZE + TIMESTAMP_SIZE

_USER_ID_INFO = b"phantom-userid-v3"
_KEY_INFO = b"phantom-key-v3"
_NONCE_ATTEMPTS = 10
_U64_MASK = 0xFFFFFFFFFFFFFFFF


class CryptoError(Exception):
    """Raised when a key is unusable or a packet cannot be encrypted or decrypted."""


def _hkdf(psk: bytes, salt: bytes | None, info: bytes, length: int) -> bytes:
    return HKDF(algorithm=hashes.SHA256(), length=length, salt=salt, info=info).derive(psk)


def generate_psk() -> str:
    """A new random pre-shared key, base64 encoded."""
    return base64.b64encode(os.urandom(PSK_SIZE)).decode("ascii")


class PacketCipher:
    """Encrypts and decrypts packets with a key derived per time window from a PSK."""

    def __init__(
        self,
        psk_base64: str,
        time_window: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        try:
            cleaned = psk_base64.replace("\r", "").replace("\n", "")
            psk = base64.b64decode(cleaned, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise CryptoError(f"failed to decode PSK: {exc}") from exc
        if len(psk) != PSK_SIZE:
            raise CryptoError(f"PSK must be {PSK_SIZE} bytes")
        if time_window < 1:
            raise CryptoError("time_window must be at least 1 second")

        self._psk = psk
        self._time_window = time_window
        self._clock = clock
        self._user_id = _hkdf(psk, None, _USER_ID_INFO, USER_ID_SIZE)
        self._recv_guard = ReplayGuard()
        self._send_guard = ReplayGuard()
        self._aead_cache: dict[int, ChaCha20Poly1305] = {}
        self._lock = threading.Lock()

    @property
    def user_id(self) -> bytes:
        return self._user_id

    def _current_window(self) -> int:
        return int(self._clock()) // self._time_window

    def _valid_windows(self) -> list[int]:
        w = self._current_window()
        return [w - 1, w, w + 1]

    def _aead(self, window: int) -> ChaCha20Poly1305:
        with self._lock:
            aead = self._aead_cache.get(window)
            if aead is not None:
                return aead
            current = self._current_window()
            for stale in [w for w in self._aead_cache if current - w > 2]:
                del self._aead_cache[stale]
            salt = (window & _U64_MASK).to_bytes(8, "big")
            aead = ChaCha20Poly1305(_hkdf(self._psk, salt, _KEY_INFO, KEY_SIZE))
            self._aead_cache[window] = aead
            return aead

    def _validate_timestamp(self, ts: int) -> bool:
        current = int(self._clock()) & 0xFFFF
        diff = current - ts
        if diff < -32768:
            diff += 65536
        elif diff > 32768:
            diff -= 65536
        return abs(diff) <= self._time_window * 2

    def _unique_nonce(self) -> bytes:
        for _ in range(_NONCE_ATTEMPTS):
            nonce = os.urandom(NONCE_SIZE)
            if self._send_guard.check_only(nonce):
                self._send_guard.mark(nonce)
                return nonce
        raise CryptoError("could not generate a unique nonce")

    def encrypt(self, plaintext: bytes) -> bytes:
        aead = self._aead(self._current_window())
        nonce = self._unique_nonce()
        timestamp = int(self._clock()) & 0xFFFF
        header = self._user_id + timestamp.to_bytes(TIMESTAMP_SIZE, "big")
        return header + nonce + aead.encrypt(nonce, bytes(plaintext), header)

    def decrypt(self, data: bytes) -> bytes:
        data = bytes(data)
        if len(data) < HEADER_SIZE + NONCE_SIZE + TAG_SIZE:
            raise CryptoError("data too short")
        if data[:USER_ID_SIZE] != self._user_id:
            raise CryptoError("user id mismatch")
        timestamp = int.from_bytes(data[USER_ID_SIZE:HEADER_SIZE], "big")
        if not self._validate_timestamp(timestamp):
            raise CryptoError("invalid timestamp")

        nonce = data[HEADER_SIZE : HEADER_SIZE + NONCE_SIZE]
        # The nonce is only recorded once decryption succeeds.
        if not self._recv_guard.check_only(nonce):
            raise CryptoError("replayed packet")

        header = data[:HEADER_SIZE]
        ciphertext = data[HEADER_SIZE + NONCE_SIZE :]
        for window in self._valid_windows():
            try:
                plaintext = self._aead(window).decrypt(nonce, ciphertext, header)
            except InvalidTag:
                continue
            self._recv_guard.mark(nonce)
            return plaintext
        raise CryptoError("decryption failed")

    def stats(self) -> tuple[ReplayStats, ReplayStats]:
        """Replay statistics for the receive and send sides."""
        return self._recv_guard.stats(), self._send_guard.stats()

    def memory_usage(self) -> int:
        return self._recv_guard.memory_usage() + self._send_guard.memory_usage()