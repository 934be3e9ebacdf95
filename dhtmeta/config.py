# -*- coding: utf-8 -*-

"""
默认配置设置
"""
default_config = {
    # 去重（布隆过滤器）相关配置
    "DEDUP_ENABLED": True,
    "BLOOM_KEY": "dht:bloom:infohash",
    "DIRECT_BLOOM_KEY": "dht:bloom:direct",
    "BLOOM_FILTER_CAPACITY": 10000000,
    "BLOOM_FILTER_ERROR_RATE": 0.001,
    "BLOOM_FILTER_DIR": "bloom",

    # 直连 peer 抓取配置（超时单位：秒）
    "DIRECT_ENABLED": True,
    "DIRECT_CONNECT_TIMEOUT": 1.0,
    "DIRECT_READ_TIMEOUT": 2.0,
    "DIRECT_PIECE_TIMEOUT": 2.0,
    "DIRECT_MAX_CONCURRENT": 100,
    "MAX_METADATA_SIZE": 2000000,
    "VERIFY_INFO_HASH": True,

    # 基于 libtorrent 的 swarm 回退配置
    "SWARM_ENABLED": True,
    "SWARM_MAX_CONCURRENT": 100,
    "SWARM_TIMEOUT": 60,
    "SWARM_POLL_INTERVAL": 0.5,
    "SWARM_LISTEN_INTERFACES": "0.0.0.0:6891",
    "SWARM_SAVE_PATH": "bt-temp",

    # DHT 引导节点
    "BOOTSTRAP_NODES": [
        ("router.bittorrent.com", 6881),
        ("dht.transmissionbt.com", 6881),
        ("router.utorrent.com", 6881),
    ],

    # 输出相关配置
    "OUTPUT_DIR": "output",
    "STORAGE_DIR": "bt",
    "SAVE_TORRENT_FILES": True,
    "METADATA_FETCHED_TOPIC": "dht.metadata.fetched",
    "METADATA_FAILED_TOPIC": "dht.metadata.failed",

    # 事件消费配置
    "WORKER_COUNT": 16,

    # 状态报告配置
    "STATUS_REPORT_INTERVAL": 30,

    # 单个 info_hash 获取状态的保留时间（秒），默认 7 天
    "STATUS_TTL": 7 * 24 * 3600,
    # 每写入多少次状态清理一次过期条目
    "STATUS_PURGE_EVERY": 1000,
}
