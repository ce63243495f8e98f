"""
Share Code Codec for CS2 Match Replays

Decodes CS2 share codes (e.g., CSGO-xxxxx-xxxxx-xxxxx-xxxxx-xxxxx) into
match metadata including match ID, outcome ID, and token ID, and builds the
candidate replay CDN URL for a decoded code.

The share code is a 25-digit base57 number written least significant digit
first. Once folded into an integer it is serialized as 18 big-endian bytes:
match_id (8) | outcome_id (8) | token_id (2).
"""

import re
import struct
from dataclasses import dataclass, field

from replayfetch.errors import InvalidCharacter, InvalidFormat, ShareCodeOutOfRange

# Order is significant. Excludes ambiguous glyphs: I, g, l, 0, 1
SHARECODE_ALPHABET = "ABCDEFGHJKLMNOPQRSTUVWXYZabcdefhijkmnopqrstuvwxyz23456789"
SHARECODE_BASE = len(SHARECODE_ALPHABET)  # 57
SHARECODE_PREFIX = "CSGO-"
SHARECODE_LENGTH = 25
DECODED_BYTES = 18

# Reverse lookup table for decoding
ALPHABET_MAP = {char: idx for idx, char in enumerate(SHARECODE_ALPHABET)}

SHARECODE_PATTERN = re.compile(rf"^CSGO(-[{SHARECODE_ALPHABET}]{{5}}){{5}}$")

DEMO_URL_TEMPLATE = "https://replay{shard}.valve.net/730/{match_id}_{outcome_id}_{token_id}.dem.bz2"

_BYTE_SPACE = 256**DECODED_BYTES


@dataclass(frozen=True)
class ShareCodeInfo:
    """Decoded share code metadata."""

    match_id: int
    outcome_id: int
    token_id: int
    raw_code: str = field(default="", compare=False)

    @property
    def key(self) -> tuple[int, int, int]:
        """De-duplication key for a specific match outcome."""
        return (self.match_id, self.outcome_id, self.token_id)

    def __repr__(self) -> str:
        return (
            f"ShareCodeInfo(match_id={self.match_id}, "
            f"outcome_id={self.outcome_id}, token_id={self.token_id})"
        )


def _strip_prefix(code: str) -> str:
    """Remove CSGO- prefix and dashes from share code."""
    code = code.strip()
    if code.startswith(SHARECODE_PREFIX):
        code = code[len(SHARECODE_PREFIX) :]
    return code.replace("-", "")


def _fold_base57(digits: str, raw_code: str) -> int:
    """Fold the reversed digit string into a single integer."""
    value = 0
    for char in reversed(digits):
        idx = ALPHABET_MAP.get(char)
        if idx is None:
            raise InvalidCharacter(char, raw_code)
        value = value * SHARECODE_BASE + idx
    return value


def _to_bytes(value: int) -> bytes:
    """Serialize to 18 big-endian bytes, keeping the low 144 bits."""
    return (value % _BYTE_SPACE).to_bytes(DECODED_BYTES, "big")


def decode_sharecode(code: str, strict: bool = False) -> ShareCodeInfo:
    """
    Decode a CS2 share code into match metadata.

    Args:
        code: Share code in format CSGO-xxxxx-xxxxx-xxxxx-xxxxx-xxxxx
        strict: Reject codes whose value needs more than 144 bits instead of
            reducing them modulo 256**18

    Returns:
        ShareCodeInfo containing match_id, outcome_id, and token_id

    Raises:
        InvalidFormat: If the code does not have 25 significant characters
        InvalidCharacter: If a character is outside the share code alphabet
        ShareCodeOutOfRange: If strict and the value overflows 18 bytes

    Example:
        >>> info = decode_sharecode("CSGO-GADqf-jjyJ8-cSP2r-smZRo-TO2xK")
        >>> info.token_id
        60633
    """
    if not isinstance(code, str):
        raise InvalidFormat(f"Share code must be a string, got {type(code).__name__}")

    digits = _strip_prefix(code)
    if len(digits) != SHARECODE_LENGTH:
        raise InvalidFormat(
            f"Share code must have {SHARECODE_LENGTH} significant characters, got {len(digits)}"
        )

    value = _fold_base57(digits, code)
    if strict and value >= _BYTE_SPACE:
        raise ShareCodeOutOfRange(f"Share code value does not fit in {DECODED_BYTES} bytes")

    match_id, outcome_id, token_id = struct.unpack(">QQH", _to_bytes(value))
    return ShareCodeInfo(
        match_id=match_id, outcome_id=outcome_id, token_id=token_id, raw_code=code
    )


def encode_sharecode(match_id: int, outcome_id: int, token_id: int) -> str:
    """
    Encode match metadata into a CS2 share code.

    Args:
        match_id: The match ID (u64)
        outcome_id: The outcome/reservation ID (u64)
        token_id: The token value (u16)

    Returns:
        Share code in format CSGO-xxxxx-xxxxx-xxxxx-xxxxx-xxxxx
    """
    try:
        raw_bytes = struct.pack(">QQH", match_id, outcome_id, token_id)
    except struct.error as e:
        raise ValueError(f"Share code fields out of range: {e}") from e

    value = int.from_bytes(raw_bytes, "big")

    # Least significant digit first, which is the order decode reverses
    chars = []
    for _ in range(SHARECODE_LENGTH):
        value, digit = divmod(value, SHARECODE_BASE)
        chars.append(SHARECODE_ALPHABET[digit])

    code = "".join(chars)
    return f"CSGO-{code[0:5]}-{code[5:10]}-{code[10:15]}-{code[15:20]}-{code[20:25]}"


def build_demo_url(info: ShareCodeInfo, shard: int = 1) -> str:
    """
    Build the replay CDN URL for a decoded share code on a given shard.

    Args:
        info: Decoded share code
        shard: Replay server number (positive integer)

    Returns:
        URL of the compressed demo on that shard
    """
    if isinstance(shard, bool) or not isinstance(shard, int) or shard < 1:
        raise ValueError(f"Shard must be a positive integer, got {shard!r}")

    return DEMO_URL_TEMPLATE.format(
        shard=shard,
        match_id=info.match_id,
        outcome_id=info.outcome_id,
        token_id=info.token_id,
    )


def is_sharecode_format(code: str) -> bool:
    """Check the dashed CSGO-XXXXX-... shape against the share code alphabet."""
    return isinstance(code, str) and SHARECODE_PATTERN.fullmatch(code) is not None


def validate_sharecode(code: str) -> bool:
    """
    Check if a share code appears to be valid.

    Args:
        code: The share code to validate

    Returns:
        True if the code decodes, False otherwise
    """
    try:
        decode_sharecode(code)
        return True
    except ValueError:
        return False
