import re
import enum
import time
from collections import namedtuple
from datetime import datetime, timezone

INFO_HASH_RE = re.compile(r'[0-9a-fA-F]{40}')


class AcquisitionStatus(enum.Enum):
    """
    一次元数据获取尝试的终止状态。
    SKIPPED 只在策略内部使用，表示该策略不适用，不会作为 acquire 的结果返回。
    """
    SUCCESS = "SUCCESS"
    TIMEOUT = "TIMEOUT"
    PEER_MISMATCH = "PEER_MISMATCH"
    NO_PEERS = "NO_PEERS"
    ERROR = "ERROR"
    DUPLICATE = "DUPLICATE"
    REJECTED = "REJECTED"
    SKIPPED = "SKIPPED"


def normalize_info_hash(value):
    """
    将 20 字节或 40 位十六进制的 info_hash 规范化为小写十六进制字符串。
    """
    from .errors import InvalidInfoHash

    if isinstance(value, (bytes, bytearray)):
        if len(value) != 20:
            raise InvalidInfoHash("info_hash 必须为 20 字节, 实际为 %d 字节" % len(value))
        return bytes(value).hex()
    if isinstance(value, str) and INFO_HASH_RE.fullmatch(value):
        return value.lower()
    raise InvalidInfoHash("无效的 info_hash: %r" % (value,))


class PeerAddress(namedtuple('PeerAddress', 'ip port')):
    __slots__ = ()

    @classmethod
    def parse(cls, text):
        """解析 "ip:port" 形式的地址。"""
        host, _, port = text.rpartition(':')
        if not host or not port.isdigit():
            raise ValueError("无效的 peer 地址: %r" % text)
        return cls(host.strip('[]'), int(port))

    def __str__(self):
        return "%s:%d" % (self.ip, self.port)


ExtendedHandshake = namedtuple('ExtendedHandshake', 'ut_metadata_id metadata_size')
MetadataPiece = namedtuple('MetadataPiece', 'piece data')
MetadataMessage = namedtuple('MetadataMessage', 'msg_type piece data total_size')
FileEntry = namedtuple('FileEntry', 'path length')
RawInfo = namedtuple('RawInfo', 'name total_size files')


class AttemptOutcome:
    """
    单次策略尝试的结果：成功时携带原始 info 字典字节，失败时携带原因。
    """
    def __init__(self, info_hash, strategy, status, started_at=None,
                 raw_info=None, reason=None, peer=None):
        self.info_hash = info_hash
        self.strategy = strategy
        self.status = status
        self.started_at = started_at if started_at is not None else time.monotonic()
        self.elapsed = time.monotonic() - self.started_at
        self.raw_info = raw_info
        self.reason = reason
        self.peer = peer

    @classmethod
    def success(cls, info_hash, strategy, raw_info, started_at=None, peer=None):
        return cls(info_hash, strategy, AcquisitionStatus.SUCCESS,
                   started_at=started_at, raw_info=raw_info, peer=peer)

    @classmethod
    def failure(cls, info_hash, strategy, status, reason, started_at=None, peer=None):
        return cls(info_hash, strategy, status,
                   started_at=started_at, reason=reason, peer=peer)

    @classmethod
    def skipped(cls, info_hash, strategy, reason):
        return cls(info_hash, strategy, AcquisitionStatus.SKIPPED, reason=reason)

    @property
    def ok(self):
        return self.status is AcquisitionStatus.SUCCESS

    def __repr__(self):
        return "AttemptOutcome(%s, %s, %s, reason=%r, elapsed=%.3f)" % (
            self.info_hash, self.strategy, self.status.value, self.reason, self.elapsed)


class TorrentMetadataResult:
    """
    发布给下游的元数据结果。失败时 name 为 info_hash，files 为空。
    """
    def __init__(self, info_hash, status, name=None, total_size=0, files=None,
                 reason=None, strategy=None, elapsed=0.0, peer=None):
        self.info_hash = info_hash
        self.status = status
        self.name = name or info_hash
        self.total_size = total_size
        self.files = list(files or [])
        self.reason = reason
        self.strategy = strategy
        self.elapsed = elapsed
        self.peer = peer
        self.fetched_at = datetime.now(timezone.utc).isoformat()

    @property
    def ok(self):
        return self.status is AcquisitionStatus.SUCCESS

    def to_dict(self):
        return {
            "info_hash": self.info_hash,
            "name": self.name,
            "total_size": self.total_size,
            "files": [{"path": f.path, "length": f.length} for f in self.files],
            "status": self.status.value,
            "reason": self.reason,
            "strategy": self.strategy,
            "elapsed_ms": int(self.elapsed * 1000),
            "fetched_at": self.fetched_at,
            "peer_ip": self.peer.ip if self.peer else None,
            "peer_port": self.peer.port if self.peer else None,
        }

    def __repr__(self):
        return "TorrentMetadataResult(%s, %s, name=%r, total_size=%d, files=%d)" % (
            self.info_hash, self.status.value, self.name, self.total_size, len(self.files))


class InfoHashEvent(namedtuple('InfoHashEvent', 'info_hash source_ip source_port')):
    """
    上游发现的 info_hash 事件，可能附带宣告它的 peer 地址。
    """
    __slots__ = ()

    @classmethod
    def from_line(cls, line):
        """
        解析一行 "<info_hash> [ip port]" 文本。
        """
        parts = line.split()
        if not parts:
            raise ValueError("空事件行")
        info_hash = normalize_info_hash(parts[0])
        if len(parts) >= 3 and parts[2].isdigit():
            return cls(info_hash, parts[1], int(parts[2]))
        return cls(info_hash, None, None)

    @property
    def peer(self):
        if self.source_ip and self.source_port:
            return PeerAddress(self.source_ip, self.source_port)
        return None
