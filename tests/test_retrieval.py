"""Tests for the share code chain retrieval job."""

import threading
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from replayfetch.fetcher import DownloadArtifact, FetchPhase, FetchResult
from replayfetch.infra.ratelimit import PARSER_SERVICE, InMemoryCounterStore, RateLimiter, RateLimitPolicy
from replayfetch.pipeline.retrieval import DemoRetrievalJob, PlayerChain

START = "CSGO-AAAAA-AAAAA-AAAAA-AAAAA-AAAAA"
CODES = [
    "CSGO-BAAAA-AAAAA-AAAAA-AAAAA-AAAAA",
    "CSGO-CAAAA-AAAAA-AAAAA-AAAAA-AAAAA",
    "CSGO-DAAAA-AAAAA-AAAAA-AAAAA-AAAAA",
]


def chain_identity(codes, healthy=True):
    """Identity client whose chain is START -> codes[0] -> ... -> end."""
    identity = MagicMock()
    identity.check_health.return_value = healthy
    successors = dict(zip([START] + codes, codes + [None]))
    identity.get_next_sharecode.side_effect = lambda steam_id, auth, known, cancel=None: successors.get(known)
    return identity


def ok_result(sharecode, **kwargs):
    artifact = DownloadArtifact(path=Path(f"/tmp/{sharecode}.dem.bz2"), size_bytes=10)
    return FetchResult(sharecode, FetchPhase.DONE, artifact=artifact, demo_url="http://replay1/x.dem.bz2")


def failed_result(sharecode):
    return FetchResult(sharecode, FetchPhase.FAILED, failed_phase=FetchPhase.AWAITING_URL)


@pytest.fixture
def limiter():
    return RateLimiter(InMemoryCounterStore(), sleep=lambda s: None)


@pytest.fixture
def player():
    return PlayerChain("76561198000000000", "AAAA-BBBBB-CCCC", START)


def make_job(identity, fetcher, limiter, ingest=None, **kwargs):
    return DemoRetrievalJob(identity, fetcher, limiter, ingest or MagicMock(), **kwargs)


class TestProcessPlayer:
    """Walking one player's chain."""

    def test_processes_whole_chain(self, limiter, player):
        fetcher = MagicMock()
        fetcher.fetch_detailed.side_effect = ok_result
        ingest = MagicMock()

        summary = make_job(chain_identity(CODES), fetcher, limiter, ingest).process_player(player)

        assert summary.processed == CODES
        assert summary.last_sharecode == CODES[-1]
        assert ingest.call_count == 3
        artifact, info, demo_url = ingest.call_args.args
        assert info.key == (0, 0, 3)
        assert limiter.slot_count() == 0

    def test_fetches_with_probe_allowed(self, limiter, player):
        fetcher = MagicMock()
        fetcher.fetch_detailed.side_effect = ok_result
        make_job(chain_identity(CODES[:1]), fetcher, limiter).process_player(player)
        assert fetcher.fetch_detailed.call_args.kwargs["allow_probe"] is True

    def test_failure_still_advances(self, limiter, player):
        fetcher = MagicMock()
        fetcher.fetch_detailed.side_effect = [failed_result(CODES[0]), ok_result(CODES[1]), ok_result(CODES[2])]

        summary = make_job(chain_identity(CODES), fetcher, limiter).process_player(player)

        assert summary.failed == [CODES[0]]
        assert summary.processed == CODES[1:]
        assert summary.last_sharecode == CODES[-1]

    def test_known_codes_skipped(self, limiter, player):
        fetcher = MagicMock()
        fetcher.fetch_detailed.side_effect = ok_result
        job = make_job(chain_identity(CODES), fetcher, limiter, is_known=lambda code: code == CODES[1])

        summary = job.process_player(player)

        assert summary.skipped == [CODES[1]]
        assert fetcher.fetch_detailed.call_count == 2

    def test_stops_at_max_per_run(self, limiter, player):
        fetcher = MagicMock()
        fetcher.fetch_detailed.side_effect = ok_result
        job = make_job(chain_identity(CODES), fetcher, limiter, max_sharecodes_per_run=2)

        assert job.process_player(player).processed == CODES[:2]

    def test_repeated_code_ends_chain(self, limiter, player):
        identity = MagicMock()
        identity.get_next_sharecode.return_value = START
        fetcher = MagicMock()

        summary = make_job(identity, fetcher, limiter).process_player(player)

        assert summary.processed == []
        fetcher.fetch_detailed.assert_not_called()

    def test_ingest_error_marks_failed_and_releases_slot(self, limiter, player):
        fetcher = MagicMock()
        fetcher.fetch_detailed.side_effect = ok_result
        ingest = MagicMock(side_effect=RuntimeError("queue down"))

        summary = make_job(chain_identity(CODES[:1]), fetcher, limiter, ingest).process_player(player)

        assert summary.failed == CODES[:1]
        assert limiter.slot_count(PARSER_SERVICE) == 0

    def test_ingest_holds_parser_slot(self, limiter, player):
        fetcher = MagicMock()
        fetcher.fetch_detailed.side_effect = ok_result
        seen = []

        def ingest(artifact, info, demo_url):
            seen.append(limiter.slot_count(PARSER_SERVICE))

        make_job(chain_identity(CODES[:1]), fetcher, limiter, ingest).process_player(player)

        assert seen == [1]

    def test_parser_capacity_wait_cancelled(self, limiter, player):
        fetcher = MagicMock()
        fetcher.fetch_detailed.side_effect = ok_result
        cancel = threading.Event()
        cancel.set()
        limiter.increment_slot()
        ingest = MagicMock()
        job = make_job(
            chain_identity(CODES[:1]),
            fetcher,
            limiter,
            ingest,
            parser_policy=RateLimitPolicy(PARSER_SERVICE, 1),
            cancel=cancel,
        )

        summary = job.process_player(player)

        assert summary.failed == CODES[:1]
        ingest.assert_not_called()


class TestRun:
    def test_unhealthy_steam_skips_run(self, limiter, player):
        fetcher = MagicMock()
        job = make_job(chain_identity(CODES, healthy=False), fetcher, limiter)

        assert job.run([player]) == []
        fetcher.fetch_detailed.assert_not_called()

    def test_runs_sweeper_first(self, limiter, player):
        sweeper = MagicMock()
        fetcher = MagicMock()
        fetcher.fetch_detailed.side_effect = ok_result
        job = make_job(chain_identity([]), fetcher, limiter, sweeper=sweeper)

        summaries = job.run([player])

        sweeper.sweep.assert_called_once()
        assert len(summaries) == 1

    def test_cancel_stops_between_players(self, limiter, player):
        cancel = threading.Event()
        cancel.set()
        job = make_job(chain_identity(CODES), MagicMock(), limiter, cancel=cancel)
        assert job.run([player, player]) == []

    def test_player_error_does_not_stop_run(self, limiter, player):
        """A crash in one player's walk is recorded and the next player still runs."""
        second = PlayerChain("76561198000000001", "DDDD-EEEEE-FFFF", START)
        fetcher = MagicMock()
        fetcher.fetch_detailed.side_effect = [
            ok_result(CODES[0]),
            ConnectionError("redis down"),
            ok_result(CODES[0]),
            ok_result(CODES[1]),
            ok_result(CODES[2]),
        ]
        ingest = MagicMock()
        job = make_job(chain_identity(CODES), fetcher, limiter, ingest)

        summaries = job.run([player, second])

        assert [s.steam_id for s in summaries] == [player.steam_id, second.steam_id]
        assert summaries[0].processed == CODES[:1]
        assert summaries[0].last_sharecode == CODES[1]
        assert "redis down" in summaries[0].error
        assert summaries[1].processed == CODES
        assert summaries[1].error is None
        assert limiter.slot_count(PARSER_SERVICE) == 0
