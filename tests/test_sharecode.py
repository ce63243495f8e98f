"""Tests for the sharecode module."""

import pytest

from replayfetch.errors import InvalidCharacter, InvalidFormat, ShareCodeOutOfRange
from replayfetch.sharecode import (
    SHARECODE_ALPHABET,
    ShareCodeInfo,
    build_demo_url,
    decode_sharecode,
    encode_sharecode,
    is_sharecode_format,
    validate_sharecode,
)

KNOWN_CODE = "CSGO-GADqf-jjyJ8-cSP2r-smZRo-TO2xK"
KNOWN_MATCH_ID = 11240985223876039980
KNOWN_OUTCOME_ID = 10304235951191282988
KNOWN_TOKEN_ID = 60633
KNOWN_URL = (
    "https://replay1.valve.net/730/"
    "11240985223876039980_10304235951191282988_60633.dem.bz2"
)

# Largest 25-digit code; its value needs more than 144 bits
MAX_CODE = "CSGO-99999-99999-99999-99999-99999"


class TestSharecodeAlphabet:
    """Tests for the sharecode alphabet."""

    def test_alphabet_length(self):
        """Verify alphabet is base57."""
        assert len(SHARECODE_ALPHABET) == 57

    def test_alphabet_excludes_ambiguous(self):
        """Verify ambiguous characters are excluded."""
        for char in "0", "1", "I", "g", "l":
            assert char not in SHARECODE_ALPHABET

    def test_alphabet_unique(self):
        """Verify all characters are unique."""
        assert len(set(SHARECODE_ALPHABET)) == len(SHARECODE_ALPHABET)

    def test_alphabet_order(self):
        """Order is significant, not alphabetical across cases."""
        assert SHARECODE_ALPHABET.index("O") == 13
        assert SHARECODE_ALPHABET.index("h") == 31
        assert SHARECODE_ALPHABET.index("9") == 56


class TestDecodeSharecode:
    """Tests for share code decoding."""

    def test_known_vector(self):
        """A real share code decodes to the hand-verified triple."""
        info = decode_sharecode(KNOWN_CODE)
        assert info.match_id == KNOWN_MATCH_ID
        assert info.outcome_id == KNOWN_OUTCOME_ID
        assert info.token_id == KNOWN_TOKEN_ID

    def test_all_zero_digits(self):
        info = decode_sharecode("CSGO-AAAAA-AAAAA-AAAAA-AAAAA-AAAAA")
        assert info.key == (0, 0, 0)

    def test_first_character_is_least_significant(self):
        """The string is reversed before folding."""
        info = decode_sharecode("CSGO-BAAAA-AAAAA-AAAAA-AAAAA-AAAAA")
        assert info.key == (0, 0, 1)

    def test_decode_is_deterministic(self):
        assert decode_sharecode(KNOWN_CODE) == decode_sharecode(KNOWN_CODE)

    def test_decode_without_prefix_or_dashes(self):
        bare = KNOWN_CODE.replace("CSGO-", "").replace("-", "")
        assert decode_sharecode(bare) == decode_sharecode(KNOWN_CODE)

    def test_decode_strips_whitespace(self):
        assert decode_sharecode(f"  {KNOWN_CODE}\n").match_id == KNOWN_MATCH_ID

    def test_decode_preserves_raw_code(self):
        """Verify raw code is preserved in result."""
        result = decode_sharecode(KNOWN_CODE)
        assert result.raw_code == KNOWN_CODE

    def test_decode_returns_frozen_info(self):
        info = decode_sharecode(KNOWN_CODE)
        assert isinstance(info, ShareCodeInfo)
        with pytest.raises(AttributeError):
            info.match_id = 1

    def test_decode_empty_code_raises(self):
        """Verify empty code raises InvalidFormat."""
        with pytest.raises(InvalidFormat):
            decode_sharecode("")

    def test_decode_short_code_raises(self):
        """Verify short code raises InvalidFormat."""
        with pytest.raises(InvalidFormat):
            decode_sharecode("CSGO-ABC")

    def test_decode_long_code_raises(self):
        with pytest.raises(InvalidFormat):
            decode_sharecode(KNOWN_CODE + "A")

    def test_decode_non_string_raises(self):
        with pytest.raises(InvalidFormat):
            decode_sharecode(None)

    @pytest.mark.parametrize("bad", ["0", "1", "I", "g", "l", "_"])
    def test_decode_invalid_character_raises(self, bad):
        code = "CSGO-" + bad + KNOWN_CODE[6:]
        with pytest.raises(InvalidCharacter) as excinfo:
            decode_sharecode(code)
        assert excinfo.value.char == bad

    def test_codec_errors_are_value_errors(self):
        with pytest.raises(ValueError):
            decode_sharecode("CSGO-00000-00000-00000-00000-00000")

    def test_overflow_reduced_modulo_by_default(self):
        """Values past 144 bits keep their low 18 bytes."""
        info = decode_sharecode(MAX_CODE)
        assert info.match_id == 9893426721377045222
        assert info.outcome_id == 14668508050772208519
        assert info.token_id == 18552

    def test_overflow_rejected_when_strict(self):
        with pytest.raises(ShareCodeOutOfRange):
            decode_sharecode(MAX_CODE, strict=True)

    def test_strict_accepts_in_range_code(self):
        assert decode_sharecode(KNOWN_CODE, strict=True).token_id == KNOWN_TOKEN_ID


class TestBuildDemoUrl:
    """Tests for replay URL construction."""

    def test_known_url(self):
        assert build_demo_url(decode_sharecode(KNOWN_CODE), 1) == KNOWN_URL

    def test_shard_in_host(self):
        url = build_demo_url(decode_sharecode(KNOWN_CODE), 17)
        assert url.startswith("https://replay17.valve.net/730/")

    @pytest.mark.parametrize("shard", [0, -1, 1.5, True])
    def test_invalid_shard_raises(self, shard):
        with pytest.raises(ValueError):
            build_demo_url(decode_sharecode(KNOWN_CODE), shard)


class TestEncodeSharecode:
    """Tests for share code encoding."""

    def test_encode_known_vector(self):
        assert encode_sharecode(KNOWN_MATCH_ID, KNOWN_OUTCOME_ID, KNOWN_TOKEN_ID) == KNOWN_CODE

    def test_encode_format(self):
        """Verify encoded code has correct format."""
        result = encode_sharecode(12345, 67890, 100)
        assert is_sharecode_format(result)

    def test_encode_out_of_range_raises(self):
        with pytest.raises(ValueError):
            encode_sharecode(2**64, 0, 0)
        with pytest.raises(ValueError):
            encode_sharecode(0, 0, 2**16)


class TestValidateSharecode:
    """Tests for share code validation."""

    def test_validate_known_code(self):
        assert validate_sharecode(KNOWN_CODE) is True

    def test_validate_empty_returns_false(self):
        """Verify empty code returns False."""
        assert validate_sharecode("") is False

    def test_validate_short_returns_false(self):
        """Verify short code returns False."""
        assert validate_sharecode("CSGO-ABC") is False

    def test_format_requires_prefix_and_dashes(self):
        assert is_sharecode_format(KNOWN_CODE)
        assert not is_sharecode_format(KNOWN_CODE.replace("-", ""))
        assert not is_sharecode_format(KNOWN_CODE[5:])
        assert not is_sharecode_format("CSGO-IIIII-AAAAA-AAAAA-AAAAA-AAAAA")


class TestRoundTrip:
    """Tests for encode/decode round-trip."""

    def test_roundtrip_preserves_values(self):
        """Verify encoding then decoding preserves original values."""
        match_id = 3524696969420133337
        outcome_id = 3524696969420133338
        token_id = 32767

        decoded = decode_sharecode(encode_sharecode(match_id, outcome_id, token_id))

        assert decoded.key == (match_id, outcome_id, token_id)
