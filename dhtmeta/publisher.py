import asyncio
import json
import os
import logging


class MetadataPublisher:
    """
    元数据发布服务：成功结果与失败记录分别写入两个 JSON Lines 通道，
    每行一条记录，以 info_hash 为键。
    """
    def __init__(self, config, storage=None):
        self.output_dir = config["OUTPUT_DIR"]
        self.fetched_topic = config["METADATA_FETCHED_TOPIC"]
        self.failed_topic = config["METADATA_FAILED_TOPIC"]
        self.storage = storage if config["SAVE_TORRENT_FILES"] else None
        self.lock = asyncio.Lock()
        self.published_count = 0
        self.failed_count = 0
        os.makedirs(self.output_dir, exist_ok=True)

    def channel_path(self, topic):
        return os.path.join(self.output_dir, "%s.jsonl" % topic)

    async def _append(self, topic, record):
        line = json.dumps(record, ensure_ascii=False)
        async with self.lock:
            with open(self.channel_path(topic), "a", encoding="utf-8") as f:
                f.write(line + "\n")

    async def publish(self, result, raw_info=None):
        """
        发布成功获取的元数据。
        """
        try:
            if self.storage is not None and raw_info is not None:
                await self.storage.save(result.info_hash, raw_info)
            await self._append(self.fetched_topic, result.to_dict())
            self.published_count += 1
            if self.published_count % 10 == 0:
                logging.info("已发布 %d 条元数据", self.published_count)
        except Exception as e:
            logging.error("发布元数据时出错 info_hash=%s: %s", result.info_hash, e, exc_info=True)

    async def publish_failure(self, result):
        """
        记录未能获取元数据的 info_hash，便于后续分析或重试。
        """
        record = {
            "info_hash": result.info_hash,
            "status": result.status.value,
            "reason": result.reason,
            "strategy": result.strategy,
            "fetched_at": result.fetched_at,
            "peer_ip": result.peer.ip if result.peer else None,
            "peer_port": result.peer.port if result.peer else None,
        }
        try:
            await self._append(self.failed_topic, record)
            self.failed_count += 1
        except Exception as e:
            logging.error("记录失败信息时出错 info_hash=%s: %s", result.info_hash, e, exc_info=True)

    def stats(self):
        return "Published=%d Failed=%d" % (self.published_count, self.failed_count)
