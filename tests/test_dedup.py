import copy
import os

import pytest
from unittest.mock import patch

from dhtmeta.config import default_config
from dhtmeta.dedup import BloomMembership


@pytest.fixture
def config(tmp_path):
    test_config = copy.deepcopy(default_config)
    test_config["BLOOM_FILTER_DIR"] = str(tmp_path / "bloom")
    test_config["BLOOM_FILTER_CAPACITY"] = 1000
    return test_config


def test_membership_add_and_exists(config):
    membership = BloomMembership(config)
    assert not membership.exists("dht:bloom:infohash", "a" * 40)
    membership.add("dht:bloom:infohash", "a" * 40)
    assert membership.exists("dht:bloom:infohash", "a" * 40)


def test_namespaces_are_independent(config):
    membership = BloomMembership(config)
    membership.add("dht:bloom:infohash", "key")
    assert not membership.exists("dht:bloom:direct", "key")


def test_membership_persists_to_file(config):
    """
    save 之后，新的实例能从文件恢复过滤器内容。
    """
    membership = BloomMembership(config)
    membership.add("dht:bloom:direct", "b" * 40 + "|1.2.3.4|6881")
    membership.save()
    assert os.path.exists(os.path.join(config["BLOOM_FILTER_DIR"], "dht_bloom_direct.bloom"))

    restored = BloomMembership(config)
    assert restored.exists("dht:bloom:direct", "b" * 40 + "|1.2.3.4|6881")
    assert not restored.exists("dht:bloom:direct", "c" * 40 + "|1.2.3.4|6881")


def test_save_without_filters_writes_nothing(config):
    BloomMembership(config).save()
    assert not os.path.exists(config["BLOOM_FILTER_DIR"])


def test_exists_degrades_to_absent_on_error(config):
    """
    过滤器不可用时按“不存在”处理，add 也不会抛出异常。
    """
    membership = BloomMembership(config)
    with patch.object(membership, '_filter', side_effect=OSError("disk gone")):
        assert membership.exists("dht:bloom:infohash", "key") is False
        membership.add("dht:bloom:infohash", "key")
