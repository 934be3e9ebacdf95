import asyncio
import copy
import time

import pytest
from unittest.mock import MagicMock, patch

pytest.importorskip("libtorrent")

from dhtmeta.config import default_config
from dhtmeta.models import AcquisitionStatus, AttemptOutcome
from dhtmeta.strategy import AcquisitionContext
from dhtmeta.swarm import SwarmStrategy

INFO_HASH = '34' * 20


def make_status(has_metadata=False, num_peers=0, list_peers=0):
    status = MagicMock()
    status.has_metadata = has_metadata
    status.num_peers = num_peers
    status.list_peers = list_peers
    return status


@pytest.fixture
def session():
    return MagicMock()


def make_strategy(session, **overrides):
    config = copy.deepcopy(default_config)
    config.update({"SWARM_TIMEOUT": 0.05, "SWARM_POLL_INTERVAL": 0.01, "SWARM_MAX_CONCURRENT": 2})
    config.update(overrides)
    return SwarmStrategy(config, session=session)


def test_fetch_blocking_success(session):
    handle = session.add_torrent.return_value
    handle.status.side_effect = [make_status(), make_status(), make_status(has_metadata=True)]
    handle.torrent_file.return_value.metadata.return_value = b'd4:name1:xe'
    strategy = make_strategy(session, SWARM_TIMEOUT=5)

    outcome = strategy.fetch_blocking(INFO_HASH)

    assert outcome.ok
    assert outcome.strategy == "swarm"
    assert outcome.raw_info == b'd4:name1:xe'
    session.add_torrent.assert_called_once()
    session.remove_torrent.assert_called_once_with(handle)
    strategy.close()


def test_fetch_blocking_no_peers(session):
    session.add_torrent.return_value.status.return_value = make_status()
    strategy = make_strategy(session)
    outcome = strategy.fetch_blocking(INFO_HASH)
    assert outcome.status is AcquisitionStatus.NO_PEERS
    session.remove_torrent.assert_called_once()
    strategy.close()


def test_fetch_blocking_timeout_with_peers(session):
    session.add_torrent.return_value.status.return_value = make_status(num_peers=2, list_peers=5)
    strategy = make_strategy(session)
    outcome = strategy.fetch_blocking(INFO_HASH)
    assert outcome.status is AcquisitionStatus.TIMEOUT
    assert "peers=5" in outcome.reason
    strategy.close()


def test_fetch_blocking_engine_error(session):
    session.add_torrent.side_effect = RuntimeError("session closed")
    strategy = make_strategy(session)
    outcome = strategy.fetch_blocking(INFO_HASH)
    assert outcome.status is AcquisitionStatus.ERROR
    session.remove_torrent.assert_not_called()
    strategy.close()


@pytest.mark.asyncio
async def test_attempt_skipped_when_disabled(session):
    strategy = make_strategy(session, SWARM_ENABLED=False)
    outcome = await strategy.attempt(INFO_HASH, AcquisitionContext(None))
    assert outcome.status is AcquisitionStatus.SKIPPED
    session.add_torrent.assert_not_called()
    strategy.close()


@pytest.mark.asyncio
async def test_attempt_runs_in_executor_and_coalesces(session):
    strategy = make_strategy(session)
    expected = AttemptOutcome.success(INFO_HASH, "swarm", b'de')
    with patch.object(strategy, 'fetch_blocking', return_value=expected) as fetch_blocking:
        results = await asyncio.gather(
            strategy.attempt(INFO_HASH, AcquisitionContext(None)),
            strategy.attempt(INFO_HASH, AcquisitionContext(None)),
        )
    assert results == [expected, expected]
    fetch_blocking.assert_called_once_with(INFO_HASH)
    strategy.close()


@pytest.mark.asyncio
async def test_attempt_rejected_when_pool_full(session):
    strategy = make_strategy(session, SWARM_MAX_CONCURRENT=1)
    gate = asyncio.Event()

    async def blocked(info_hash):
        await gate.wait()
        return AttemptOutcome.success(info_hash, "swarm", b'de')

    with patch.object(strategy, '_run', side_effect=blocked):
        first = asyncio.ensure_future(strategy.attempt(INFO_HASH, AcquisitionContext(None)))
        await asyncio.sleep(0)
        outcome = await strategy.attempt('56' * 20, AcquisitionContext(None))
        assert outcome.status is AcquisitionStatus.REJECTED
        gate.set()
        assert (await first).ok
    strategy.close()


@pytest.mark.asyncio
async def test_close_abandons_inflight_fetch(session):
    """
    close 之后工作线程立即停止轮询，不会等到 SWARM_TIMEOUT。
    """
    handle = session.add_torrent.return_value
    handle.status.return_value = make_status(num_peers=1, list_peers=1)
    strategy = make_strategy(session, SWARM_TIMEOUT=30, SWARM_POLL_INTERVAL=0.05)

    task = asyncio.ensure_future(strategy.attempt(INFO_HASH, AcquisitionContext(None)))
    await asyncio.sleep(0.2)
    started = time.monotonic()
    strategy.close()
    outcome = await asyncio.wait_for(task, timeout=2)

    assert time.monotonic() - started < 1
    assert outcome.status is AcquisitionStatus.ERROR
    assert "abandoned" in outcome.reason
    session.remove_torrent.assert_called_once_with(handle)
    polls = handle.status.call_count
    await asyncio.sleep(0.2)
    assert handle.status.call_count == polls
