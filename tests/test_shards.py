"""Tests for replay shard probing."""

from unittest.mock import MagicMock

import pytest
import requests

from replayfetch.errors import ShardNotFound
from replayfetch.integrations.shards import DEFAULT_SHARDS, ShardResolver
from replayfetch.sharecode import decode_sharecode

from conftest import FakeResponse

CODE = "CSGO-GADqf-jjyJ8-cSP2r-smZRo-TO2xK"


def _session_answering(hit_shard=None, errors=()):
    """A session whose HEAD returns 200 only for replay{hit_shard}."""
    session = MagicMock()

    def head(url, **kwargs):
        for shard in errors:
            if url.startswith(f"https://replay{shard}.valve.net/"):
                raise requests.ConnectionError("refused")
        if hit_shard is not None and url.startswith(f"https://replay{hit_shard}.valve.net/"):
            return FakeResponse(200)
        return FakeResponse(404)

    session.head.side_effect = head
    return session


class TestShardResolver:
    """Shard discovery by HEAD probe."""

    def test_default_candidates(self):
        assert DEFAULT_SHARDS == tuple(range(1, 21))

    def test_finds_first_answering_shard(self):
        session = _session_answering(hit_shard=7)
        resolver = ShardResolver(session=session)

        assert resolver.find_shard(decode_sharecode(CODE)) == 7
        assert session.head.call_count == 7

    def test_probes_in_order(self):
        session = _session_answering(hit_shard=3)
        ShardResolver(session=session).find_shard(decode_sharecode(CODE))

        urls = [c.args[0] for c in session.head.call_args_list]
        assert urls[0].startswith("https://replay1.")
        assert urls[2].startswith("https://replay3.")

    def test_transport_errors_count_as_miss(self):
        session = _session_answering(hit_shard=4, errors=(1, 2))
        assert ShardResolver(session=session).find_shard(decode_sharecode(CODE)) == 4

    def test_redirect_is_not_a_hit(self):
        session = MagicMock()
        session.head.return_value = FakeResponse(302)
        with pytest.raises(ShardNotFound):
            ShardResolver(session=session, candidates=(1, 2)).find_shard(decode_sharecode(CODE))

    def test_all_miss_raises(self):
        session = _session_answering()
        with pytest.raises(ShardNotFound):
            ShardResolver(session=session).find_shard(decode_sharecode(CODE))
        assert session.head.call_count == 20

    def test_explicit_candidates_override(self):
        session = _session_answering(hit_shard=12)
        resolver = ShardResolver(session=session, candidates=(1, 2))
        assert resolver.find_shard(decode_sharecode(CODE), candidates=(11, 12)) == 12

    def test_probe_uses_timeout(self):
        session = _session_answering(hit_shard=1)
        ShardResolver(session=session, timeout=3.0).find_url(decode_sharecode(CODE))
        assert session.head.call_args.kwargs["timeout"] == 3.0

    def test_find_url(self):
        session = _session_answering(hit_shard=2)
        url = ShardResolver(session=session).find_url(decode_sharecode(CODE))
        assert url == (
            "https://replay2.valve.net/730/"
            "11240985223876039980_10304235951191282988_60633.dem.bz2"
        )
