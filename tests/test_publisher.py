import copy
import json
import os

import bencoding
import pytest
from unittest.mock import AsyncMock, MagicMock

from dhtmeta.config import default_config
from dhtmeta.models import AcquisitionStatus, FileEntry, PeerAddress, TorrentMetadataResult
from dhtmeta.publisher import MetadataPublisher

INFO_HASH = 'ef' * 20


@pytest.fixture
def config(tmp_path):
    test_config = copy.deepcopy(default_config)
    test_config["OUTPUT_DIR"] = str(tmp_path / "output")
    return test_config


def read_lines(path):
    with open(path, encoding="utf-8") as f:
        return [json.loads(line) for line in f]


@pytest.mark.asyncio
async def test_publish_success_record(config):
    storage = MagicMock()
    storage.save = AsyncMock()
    publisher = MetadataPublisher(config, storage=storage)
    result = TorrentMetadataResult(
        INFO_HASH, AcquisitionStatus.SUCCESS, name='电影', total_size=10,
        files=[FileEntry('a/b.txt', 10)], strategy="direct", elapsed=0.25,
        peer=PeerAddress('1.1.1.1', 80))
    raw = bencoding.bencode({b'name': b'x'})

    await publisher.publish(result, raw)

    records = read_lines(publisher.channel_path("dht.metadata.fetched"))
    assert len(records) == 1
    record = records[0]
    assert record["info_hash"] == INFO_HASH
    assert record["name"] == '电影'
    assert record["files"] == [{"path": "a/b.txt", "length": 10}]
    assert record["status"] == "SUCCESS"
    assert record["elapsed_ms"] == 250
    assert record["peer_ip"] == '1.1.1.1'
    storage.save.assert_awaited_once_with(INFO_HASH, raw)
    assert publisher.published_count == 1


@pytest.mark.asyncio
async def test_publish_skips_storage_when_disabled(config):
    config["SAVE_TORRENT_FILES"] = False
    storage = MagicMock()
    storage.save = AsyncMock()
    publisher = MetadataPublisher(config, storage=storage)
    await publisher.publish(TorrentMetadataResult(INFO_HASH, AcquisitionStatus.SUCCESS), b'de')
    storage.save.assert_not_called()


@pytest.mark.asyncio
async def test_publish_failure_record(config):
    publisher = MetadataPublisher(config)
    result = TorrentMetadataResult(INFO_HASH, AcquisitionStatus.TIMEOUT, reason="60 秒内未获取到元数据", strategy="swarm")

    await publisher.publish_failure(result)
    await publisher.publish_failure(result)

    records = read_lines(os.path.join(config["OUTPUT_DIR"], "dht.metadata.failed.jsonl"))
    assert len(records) == 2
    assert records[0]["status"] == "TIMEOUT"
    assert records[0]["reason"] == "60 秒内未获取到元数据"
    assert records[0]["peer_ip"] is None
    assert set(records[0]) == {"info_hash", "status", "reason", "strategy", "fetched_at", "peer_ip", "peer_port"}
    assert publisher.stats() == "Published=0 Failed=2"


@pytest.mark.asyncio
async def test_publish_errors_are_logged_not_raised(config):
    storage = MagicMock()
    storage.save = AsyncMock(side_effect=OSError("disk full"))
    publisher = MetadataPublisher(config, storage=storage)

    await publisher.publish(TorrentMetadataResult(INFO_HASH, AcquisitionStatus.SUCCESS), b'de')

    assert publisher.published_count == 0
    assert not os.path.exists(publisher.channel_path("dht.metadata.fetched"))
