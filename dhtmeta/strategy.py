import abc
import asyncio
import logging
from collections import namedtuple

from .fetcher import MetadataFetcher
from .models import AttemptOutcome
from .utils import generate_peer_id

AcquisitionContext = namedtuple('AcquisitionContext', 'peer')


class AcquisitionStrategy(abc.ABC):
    """
    元数据获取策略。编排器按顺序调用各策略的 attempt，直到有一个成功。
    """
    name = None

    @abc.abstractmethod
    async def attempt(self, info_hash, context):
        """
        尝试获取 info_hash 的原始 info 字典，返回 AttemptOutcome，不抛出异常。
        """

    def close(self):
        pass


class DirectPeerStrategy(AcquisitionStrategy):
    """
    直接连接宣告该 info_hash 的 peer，通过 ut_metadata 拉取元数据。
    每个 (info_hash, ip, port) 组合只尝试一次，无论成功与否。
    """
    name = "direct"

    def __init__(self, config, membership, peer_id=None):
        self.config = config
        self.membership = membership
        self.enabled = config["DIRECT_ENABLED"]
        self.bloom_key = config["DIRECT_BLOOM_KEY"]
        self.peer_id = peer_id or generate_peer_id()
        self.semaphore = asyncio.Semaphore(config["DIRECT_MAX_CONCURRENT"])

    @staticmethod
    def dedup_key(info_hash, peer):
        return "%s|%s|%d" % (info_hash, peer.ip, peer.port)

    async def attempt(self, info_hash, context):
        peer = context.peer
        if not self.enabled:
            return AttemptOutcome.skipped(info_hash, self.name, "直连已禁用")
        if peer is None or not peer.port or peer.port <= 0:
            return AttemptOutcome.skipped(info_hash, self.name, "没有可用的 peer")

        key = self.dedup_key(info_hash, peer)
        if self.membership.exists(self.bloom_key, key):
            logging.debug("[direct] 跳过已尝试过的 peer %s", key)
            return AttemptOutcome.skipped(info_hash, self.name, "该 peer 已尝试过")
        # 检查与登记之间不能有 await
        self.membership.add(self.bloom_key, key)

        async with self.semaphore:
            fetcher = MetadataFetcher.from_config(info_hash, peer, self.config, self.peer_id)
            return await fetcher.fetch()
