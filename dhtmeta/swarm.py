import asyncio
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import libtorrent as lt

from .errors import AdmissionRejected
from .models import AcquisitionStatus, AttemptOutcome
from .pool import BoundedFetchPool
from .strategy import AcquisitionStrategy
from .utils import magnet_uri


def create_session(config):
    """
    创建开启 DHT 的 libtorrent 会话，只用于获取元数据。
    """
    settings = {
        'listen_interfaces': config["SWARM_LISTEN_INTERFACES"],
        'enable_dht': True,
        'enable_lsd': False,
        'enable_upnp': False,
        'enable_natpmp': False,
        'dht_bootstrap_nodes': ','.join("%s:%d" % node for node in config["BOOTSTRAP_NODES"]),
        'alert_mask': lt.alert.category_t.error_notification | lt.alert.category_t.status_notification,
    }
    session = lt.session(settings)
    logging.info("libtorrent 会话已启动 listen=%s", config["SWARM_LISTEN_INTERFACES"])
    return session


class SwarmStrategy(AcquisitionStrategy):
    """
    通过磁力链接在 swarm 中获取元数据：DHT 发现 peer，由 libtorrent 完成 ut_metadata 交换。
    阻塞的轮询在专用线程池中执行；同一 info_hash 的并发请求会被合并。
    """
    name = "swarm"

    def __init__(self, config, session=None):
        self.config = config
        self.enabled = config["SWARM_ENABLED"]
        self.timeout = config["SWARM_TIMEOUT"]
        self.poll_interval = config["SWARM_POLL_INTERVAL"]
        self.save_path = config["SWARM_SAVE_PATH"]
        limit = config["SWARM_MAX_CONCURRENT"]
        self.session = session if session is not None else create_session(config)
        self.executor = ThreadPoolExecutor(max_workers=limit, thread_name_prefix="swarm")
        self.pool = BoundedFetchPool(limit)
        self._closed = threading.Event()

    async def attempt(self, info_hash, context):
        if not self.enabled:
            return AttemptOutcome.skipped(info_hash, self.name, "swarm 已禁用")
        try:
            return await self.pool.submit(info_hash, lambda: self._run(info_hash))
        except AdmissionRejected as e:
            logging.warning("[swarm] 拒绝 %s: %s", info_hash, e)
            return AttemptOutcome.failure(info_hash, self.name, e.status, "%s: %s" % (e.kind, e))

    async def _run(self, info_hash):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, self.fetch_blocking, info_hash)

    def fetch_blocking(self, info_hash):
        """
        在工作线程中添加磁力链接并轮询，直到拿到元数据或超时。
        torrent 在所有路径上都会从会话中移除。
        """
        started_at = time.monotonic()
        handle = None
        try:
            params = lt.parse_magnet_uri(magnet_uri(info_hash))
            params.save_path = self.save_path
            params.flags |= lt.torrent_flags.upload_mode
            handle = self.session.add_torrent(params)
            logging.debug("[swarm] 已添加 %s", info_hash)

            deadline = started_at + self.timeout
            status = handle.status()
            while time.monotonic() < deadline:
                status = handle.status()
                if status.has_metadata:
                    raw_info = bytes(handle.torrent_file().metadata())
                    logging.info("[swarm] 获取成功 %s 大小=%d 耗时=%.0fms",
                                 info_hash, len(raw_info), (time.monotonic() - started_at) * 1000)
                    return AttemptOutcome.success(info_hash, self.name, raw_info, started_at)
                if self._closed.wait(self.poll_interval):
                    logging.info("[swarm] 会话已关闭，放弃 %s", info_hash)
                    return AttemptOutcome.failure(
                        info_hash, self.name, AcquisitionStatus.ERROR, "会话关闭，获取被放弃 (abandoned)", started_at)

            if status.num_peers == 0 and status.list_peers == 0:
                logging.info("[swarm] 没有找到 peer %s", info_hash)
                return AttemptOutcome.failure(
                    info_hash, self.name, AcquisitionStatus.NO_PEERS, "截止前没有发现可用 peer", started_at)
            logging.info("[swarm] 获取超时 %s peers=%d", info_hash, status.list_peers)
            return AttemptOutcome.failure(
                info_hash, self.name, AcquisitionStatus.TIMEOUT,
                "%d 秒内未获取到元数据 (peers=%d)" % (self.timeout, status.list_peers), started_at)
        except Exception as e:
            logging.error("[swarm] 获取 %s 时出错: %s", info_hash, e, exc_info=True)
            return AttemptOutcome.failure(
                info_hash, self.name, AcquisitionStatus.ERROR, repr(e), started_at)
        finally:
            if handle is not None:
                try:
                    self.session.remove_torrent(handle)
                except Exception as e:
                    logging.warning("[swarm] 移除 torrent %s 失败: %s", info_hash, e)

    def close(self):
        """
        停止会话，放弃进行中的抓取。
        """
        self._closed.set()
        self.executor.shutdown(wait=False, cancel_futures=True)
        try:
            self.session.pause()
        except Exception as e:
            logging.warning("[swarm] 停止 libtorrent 会话失败: %s", e)
