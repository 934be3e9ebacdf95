import argparse
import asyncio
import copy
import sys
import logging

from dhtmeta.config import default_config
from dhtmeta.dedup import BloomMembership
from dhtmeta.models import InfoHashEvent, PeerAddress
from dhtmeta.orchestrator import Acquirer
from dhtmeta.publisher import MetadataPublisher
from dhtmeta.storage import Storage
from dhtmeta.strategy import DirectPeerStrategy
from dhtmeta.swarm import SwarmStrategy

# --- 日志配置 ---
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)


# --- 事件循环配置 ---
if sys.platform != 'win32':
    try:
        import uvloop
        uvloop.install()
        logging.info("uvloop 已安装，事件循环性能已提升。")
    except ImportError:
        logging.warning("uvloop 未安装，将使用默认的 asyncio 事件循环。")
else:
    logging.info("在 Windows 平台上运行，使用默认的 asyncio 事件循环。")


def build_acquirer(config):
    """
    组装去重、发布与两种获取策略。
    """
    membership = BloomMembership(config)
    publisher = MetadataPublisher(config, storage=Storage(config))
    strategies = [DirectPeerStrategy(config, membership)]
    if config["SWARM_ENABLED"]:
        strategies.append(SwarmStrategy(config))
    return Acquirer(config, membership, publisher=publisher, strategies=strategies)


async def read_events(stream, queue):
    """
    逐行读取 "<info_hash> [ip port]" 事件并放入队列，格式错误的行被忽略。
    """
    loop = asyncio.get_running_loop()
    while True:
        line = await loop.run_in_executor(None, stream.readline)
        if not line:
            break
        if not line.strip() or line.startswith('#'):
            continue
        try:
            await queue.put(InfoHashEvent.from_line(line))
        except ValueError as e:
            logging.warning("忽略无效事件行 %r: %s", line.strip(), e)


async def worker(acquirer, queue):
    while True:
        event = await queue.get()
        try:
            await acquirer.acquire(event.info_hash, event.peer)
        finally:
            queue.task_done()


async def run_stream(acquirer, config, stream):
    queue = asyncio.Queue(maxsize=config["WORKER_COUNT"] * 4)
    workers = [asyncio.ensure_future(worker(acquirer, queue)) for _ in range(config["WORKER_COUNT"])]
    reporter = asyncio.ensure_future(acquirer.report_status(config["STATUS_REPORT_INTERVAL"]))
    try:
        await read_events(stream, queue)
        await queue.join()
    finally:
        for task in workers + [reporter]:
            task.cancel()
    return 0


async def run_single(acquirer, info_hash, peer):
    """
    单次获取，用于人工验证获取功能是否正常。
    """
    logging.info("[TEST] 开始单次元数据获取验证 infoHash=%s peer=%s", info_hash, peer)
    result = await acquirer.acquire(info_hash, peer)
    logging.info("[TEST] 获取状态 status=%s elapsed=%.0fms", result.status.value, result.elapsed * 1000)
    if result.ok:
        logging.info("[TEST] 获取成功 name=%s totalSize=%d files=%d",
                     result.name, result.total_size, len(result.files))
        return 0
    logging.warning("[TEST] 获取未成功 status=%s reason=%s", result.status.value, result.reason)
    return 1


async def main(argv=None):
    """
    主函数，负责组装和启动元数据获取服务。
    """
    parser = argparse.ArgumentParser(description="从 DHT 发现的 info_hash 获取 torrent 元数据")
    parser.add_argument("events", nargs="?", help="事件文件，每行 \"<info_hash> [ip port]\"，默认读取标准输入")
    parser.add_argument("--info-hash", help="只获取一个 info_hash 后退出")
    parser.add_argument("--peer", type=PeerAddress.parse, help="单次模式下直连的 peer，格式 ip:port")
    parser.add_argument("--no-swarm", action="store_true", help="禁用 libtorrent 回退")
    args = parser.parse_args(argv)

    config = copy.deepcopy(default_config)
    if args.no_swarm:
        config["SWARM_ENABLED"] = False

    logging.info("正在初始化组件...")
    acquirer = build_acquirer(config)
    try:
        if args.info_hash:
            return await run_single(acquirer, args.info_hash, args.peer)
        if args.events:
            with open(args.events, encoding="utf-8") as stream:
                return await run_stream(acquirer, config, stream)
        return await run_stream(acquirer, config, sys.stdin)
    except (KeyboardInterrupt, asyncio.CancelledError):
        logging.info("收到停止信号...")
        return 0
    finally:
        logging.info("正在关闭...")
        acquirer.close()
        logging.info("%s", acquirer.stats_text())


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass
