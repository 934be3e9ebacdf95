import asyncio
import logging
import time
from collections import Counter

from .errors import DecodeError, InvalidInfoHash
from .models import AcquisitionStatus, TorrentMetadataResult, normalize_info_hash
from .parser import parse_raw_info
from .status import FETCHING, METADATA, MetadataStatusStore
from .strategy import AcquisitionContext


class Stats:
    """
    进程级计数器，只用于观测，不影响控制流程。
    """
    def __init__(self):
        self.requested = 0
        self.duplicates = 0
        self.active = 0
        self.by_status = Counter()
        self.by_strategy = Counter()

    def record(self, result):
        self.by_status[result.status.value] += 1
        if result.ok and result.strategy:
            self.by_strategy[result.strategy] += 1

    def snapshot(self):
        return {
            "requested": self.requested,
            "duplicates": self.duplicates,
            "active": self.active,
            "status": dict(self.by_status),
            "strategy": dict(self.by_strategy),
        }


class Acquirer:
    """
    元数据获取编排器。

    acquire 先用布隆过滤器去重，再依次尝试各策略（默认先直连 peer，再回退到 swarm），
    总会返回一个带明确状态的 TorrentMetadataResult，不会向调用方抛出异常。
    """
    def __init__(self, config, membership, publisher=None, strategies=None, status_store=None):
        self.config = config
        self.membership = membership
        self.publisher = publisher
        self.strategies = list(strategies or [])
        self.dedup_enabled = config["DEDUP_ENABLED"]
        self.bloom_key = config["BLOOM_KEY"]
        self.status_store = status_store if status_store is not None else MetadataStatusStore(config)
        self.stats = Stats()
        self._inflight = set()

    async def acquire(self, info_hash, peer=None):
        started_at = time.monotonic()
        self.stats.requested += 1
        try:
            info_hash = normalize_info_hash(info_hash)
        except InvalidInfoHash as e:
            result = TorrentMetadataResult(str(info_hash), AcquisitionStatus.ERROR, reason="%s: %s" % (e.kind, e), peer=peer)
            self.stats.record(result)
            return result

        # 同一 info_hash 只允许一个进行中的获取，其余按重复处理
        if info_hash in self._inflight or (
                self.dedup_enabled and self.membership.exists(self.bloom_key, info_hash)):
            self.stats.duplicates += 1
            if self.stats.duplicates % 100 == 0:
                logging.debug("已跳过 %d 个重复的 info_hash", self.stats.duplicates)
            return TorrentMetadataResult(info_hash, AcquisitionStatus.DUPLICATE, peer=peer)

        self._inflight.add(info_hash)
        self.stats.active += 1
        self.status_store.set(info_hash, FETCHING)
        try:
            result, raw_info = await self._run_strategies(info_hash, peer, started_at)
            self.stats.record(result)
            self.status_store.set(info_hash, result.status.value, result.strategy, result.reason)
            if result.ok:
                if self.dedup_enabled:
                    self.membership.add(self.bloom_key, info_hash)
                logging.info("成功获取元数据: %s (infohash: %s, 策略: %s)", result.name, info_hash, result.strategy)
                if self.publisher is not None:
                    await self.publisher.publish(result, raw_info)
            else:
                logging.info("未能获取元数据 %s 状态=%s 原因=%s", info_hash, result.status.value, result.reason)
                if self.publisher is not None:
                    await self.publisher.publish_failure(result)
        finally:
            self.stats.active -= 1
            self._inflight.discard(info_hash)
        return result

    def status(self, info_hash):
        """
        查询某个 info_hash 最近一次获取的状态，未知或已过期时返回 None。
        """
        try:
            return self.status_store.get(normalize_info_hash(info_hash))
        except InvalidInfoHash:
            return None

    async def _run_strategies(self, info_hash, peer, started_at):
        context = AcquisitionContext(peer)
        last = None
        for strategy in self.strategies:
            try:
                outcome = await strategy.attempt(info_hash, context)
            except Exception as e:
                logging.error("策略 %s 处理 %s 时出现未知错误: %s", strategy.name, info_hash, e, exc_info=True)
                last = TorrentMetadataResult(
                    info_hash, AcquisitionStatus.ERROR, reason=repr(e), strategy=strategy.name,
                    elapsed=time.monotonic() - started_at, peer=peer)
                self.status_store.set(info_hash, FETCHING, strategy.name, last.reason)
                continue
            if outcome.status is AcquisitionStatus.SKIPPED:
                logging.debug("策略 %s 跳过 %s: %s", strategy.name, info_hash, outcome.reason)
                continue
            if outcome.ok:
                self.status_store.set(info_hash, METADATA, strategy.name)
                return self._parse(info_hash, outcome, peer, started_at), outcome.raw_info
            self.status_store.set(info_hash, FETCHING, strategy.name, "%s: %s" % (outcome.status.value, outcome.reason))
            last = TorrentMetadataResult(
                info_hash, outcome.status, reason=outcome.reason, strategy=strategy.name,
                elapsed=time.monotonic() - started_at, peer=peer)

        if last is None:
            last = TorrentMetadataResult(
                info_hash, AcquisitionStatus.NO_PEERS, reason="没有可用的获取策略",
                elapsed=time.monotonic() - started_at, peer=peer)
        return last, None

    def _parse(self, info_hash, outcome, peer, started_at):
        elapsed = time.monotonic() - started_at
        try:
            info = parse_raw_info(info_hash, outcome.raw_info)
        except DecodeError as e:
            return TorrentMetadataResult(
                info_hash, AcquisitionStatus.ERROR, reason="%s: %s" % (e.kind, e),
                strategy=outcome.strategy, elapsed=elapsed, peer=peer)
        return TorrentMetadataResult(
            info_hash, AcquisitionStatus.SUCCESS, name=info.name, total_size=info.total_size,
            files=info.files, strategy=outcome.strategy, elapsed=elapsed, peer=peer)

    def stats_text(self):
        snapshot = self.stats.snapshot()
        text = "Requested=%d Duplicates=%d Active=%d Status=%s" % (
            snapshot["requested"], snapshot["duplicates"], snapshot["active"], snapshot["status"])
        if self.publisher is not None:
            text += " " + self.publisher.stats()
        return text

    async def report_status(self, interval):
        """
        定期打印获取状态。
        """
        while True:
            await asyncio.sleep(interval)
            logging.info("[状态报告] %s", self.stats_text())

    def close(self):
        """
        关闭各策略并保存布隆过滤器。进行中的抓取直接放弃。
        """
        for strategy in self.strategies:
            try:
                strategy.close()
            except Exception as e:
                logging.error("关闭策略 %s 时出错: %s", strategy.name, e, exc_info=True)
        self.membership.save()
