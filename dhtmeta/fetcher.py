import asyncio
import enum
import hashlib
import logging
import time

from . import wire
from .errors import (
    AcquisitionError, DecodeError, HashMismatch, OversizeMetadata, PeerRejected, ProtocolViolation
)
from .models import AcquisitionStatus, AttemptOutcome
from .utils import generate_peer_id


class FetchState(enum.Enum):
    CONNECTING = "CONNECTING"
    HANDSHAKING = "HANDSHAKING"
    AWAITING_EXT_HANDSHAKE = "AWAITING_EXT_HANDSHAKE"
    REQUESTING_PIECES = "REQUESTING_PIECES"
    REASSEMBLING = "REASSEMBLING"
    DONE = "DONE"


class MetadataFetcher:
    """
    通过 ut_metadata 扩展从单个 peer 获取 torrent 的 info 字典。

    一个实例只负责一条 TCP 连接：连接 -> 握手 -> 扩展握手 -> 逐片请求 -> 重组。
    任何阶段失败都会转为带原因的终止结果，连接在所有路径上都会被关闭。
    """
    STRATEGY = "direct"

    def __init__(self, info_hash, peer_address, our_peer_id=None,
                 connect_timeout=1.0, read_timeout=2.0, piece_timeout=None,
                 max_metadata_size=2000000, verify_hash=True):
        self.info_hash = info_hash
        self.info_hash_bytes = bytes.fromhex(info_hash)
        self.peer_address = peer_address
        self.our_peer_id = our_peer_id or generate_peer_id()
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.piece_timeout = piece_timeout if piece_timeout is not None else read_timeout
        self.max_metadata_size = max_metadata_size
        self.verify_hash = verify_hash
        self.state = None
        self.reader = None
        self.writer = None

    @classmethod
    def from_config(cls, info_hash, peer_address, config, our_peer_id=None):
        return cls(
            info_hash, peer_address, our_peer_id,
            connect_timeout=config["DIRECT_CONNECT_TIMEOUT"],
            read_timeout=config["DIRECT_READ_TIMEOUT"],
            piece_timeout=config["DIRECT_PIECE_TIMEOUT"],
            max_metadata_size=config["MAX_METADATA_SIZE"],
            verify_hash=config["VERIFY_INFO_HASH"],
        )

    def _transition(self, state):
        logging.debug("[direct] %s %s:%s -> %s", self.info_hash, self.peer_address[0], self.peer_address[1], state.value)
        self.state = state

    async def fetch(self):
        """
        连接到 peer 并获取元数据，返回 AttemptOutcome。
        """
        started_at = time.monotonic()
        peer = self.peer_address
        try:
            self._transition(FetchState.CONNECTING)
            self.reader, self.writer = await asyncio.wait_for(
                asyncio.open_connection(peer[0], peer[1]),
                timeout=self.connect_timeout
            )
            await self._handshake()
            handshake = await self._extended_handshake()
            raw_info = await self._request_pieces(handshake.ut_metadata_id, handshake.metadata_size)
            outcome = AttemptOutcome.success(self.info_hash, self.STRATEGY, raw_info, started_at, peer)
        except asyncio.TimeoutError:
            outcome = AttemptOutcome.failure(
                self.info_hash, self.STRATEGY, AcquisitionStatus.TIMEOUT,
                "%s 阶段超时" % self.state.value, started_at, peer)
        except AcquisitionError as e:
            outcome = AttemptOutcome.failure(
                self.info_hash, self.STRATEGY, e.status, "%s: %s" % (e.kind, e), started_at, peer)
        except (OSError, asyncio.IncompleteReadError) as e:
            outcome = AttemptOutcome.failure(
                self.info_hash, self.STRATEGY, AcquisitionStatus.ERROR,
                "%s 阶段连接错误: %r" % (self.state.value, e), started_at, peer)
        finally:
            await self._close()
            self._transition(FetchState.DONE)

        if outcome.ok:
            logging.info("[direct] 获取成功 %s peer=%s:%s 大小=%d 耗时=%.0fms",
                         self.info_hash, peer[0], peer[1], len(outcome.raw_info), outcome.elapsed * 1000)
        else:
            logging.info("[direct] 获取失败 %s peer=%s:%s 状态=%s 原因=%s",
                         self.info_hash, peer[0], peer[1], outcome.status.value, outcome.reason)
        return outcome

    async def _close(self):
        if self.writer:
            self.writer.close()
            try:
                await self.writer.wait_closed()
            except Exception:
                pass

    async def _send(self, data):
        self.writer.write(data)
        await self.writer.drain()

    async def _handshake(self):
        """
        执行 BitTorrent 协议握手，并声明支持扩展协议。
        """
        self._transition(FetchState.HANDSHAKING)
        await self._send(wire.build_handshake(self.info_hash_bytes, self.our_peer_id))
        try:
            response = await asyncio.wait_for(
                self.reader.readexactly(wire.HANDSHAKE_LENGTH), timeout=self.read_timeout)
        except asyncio.IncompleteReadError as e:
            response = e.partial
        reserved, peer_id = wire.parse_handshake_response(response, self.info_hash_bytes)
        logging.debug("[direct] 握手成功 %s reserved=%s peer_id=%r", self.info_hash, reserved.hex(), peer_id)

    async def _extended_handshake(self):
        """
        发送扩展握手并校验对端的 ut_metadata 支持与 metadata_size。
        """
        self._transition(FetchState.AWAITING_EXT_HANDSHAKE)
        payload = wire.build_extended_handshake_payload()
        await self._send(wire.build_extended_message(wire.EXT_HANDSHAKE_ID, payload))

        handshake = await wire.read_extended_handshake(self.reader, timeout=self.read_timeout)
        if handshake is None:
            raise AcquisitionError("对端未返回有效的扩展握手")
        if handshake.ut_metadata_id <= 0:
            raise AcquisitionError("对端不支持 ut_metadata")
        if handshake.metadata_size <= 0:
            raise AcquisitionError("metadata_size 无效: %d" % handshake.metadata_size)
        if handshake.metadata_size > self.max_metadata_size:
            raise OversizeMetadata("metadata_size %d 超过上限 %d" % (handshake.metadata_size, self.max_metadata_size))
        logging.debug("[direct] 扩展握手 %s ut_metadata=%d metadata_size=%d",
                      self.info_hash, handshake.ut_metadata_id, handshake.metadata_size)
        return handshake

    async def _request_pieces(self, ut_metadata_id, metadata_size):
        """
        严格按顺序逐片请求元数据，收到当前片之前不发送下一个请求。
        """
        self._transition(FetchState.REQUESTING_PIECES)
        piece_count = (metadata_size + wire.METADATA_PIECE_SIZE - 1) // wire.METADATA_PIECE_SIZE
        metadata = bytearray(metadata_size)
        written = 0
        for piece in range(piece_count):
            await self._send(wire.build_extended_message(ut_metadata_id, wire.build_piece_request(piece)))
            data = await self._await_piece(ut_metadata_id, piece, metadata_size)
            offset = piece * wire.METADATA_PIECE_SIZE
            length = min(len(data), metadata_size - offset)
            metadata[offset:offset + length] = data[:length]
            written += length
            logging.debug("[direct] 收到分片 %s %d/%d 已写入 %d/%d",
                          self.info_hash, piece + 1, piece_count, written, metadata_size)

        self._transition(FetchState.REASSEMBLING)
        if written != metadata_size:
            raise DecodeError("元数据长度不符: 写入 %d 声明 %d" % (written, metadata_size))
        raw_info = bytes(metadata)
        if self.verify_hash and hashlib.sha1(raw_info).digest() != self.info_hash_bytes:
            raise HashMismatch("元数据 SHA-1 与 info_hash 不一致")
        return raw_info

    async def _await_piece(self, ut_metadata_id, piece, metadata_size):
        """
        在截止时间内轮询读取，直到收到与 piece 编号匹配的数据片。
        无关的扩展消息和编号不符的数据片会被丢弃。
        数据片携带的 total_size 必须与扩展握手中的 metadata_size 一致。
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.piece_timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise asyncio.TimeoutError()
            message = await wire.read_metadata_message(
                self.reader, ut_metadata_id, timeout=min(self.read_timeout, remaining))
            if message is None:
                if self.reader.at_eof():
                    raise asyncio.IncompleteReadError(b'', None)
                continue
            if message.piece != piece:
                logging.debug("[direct] 丢弃不匹配的分片 %s 收到=%d 期望=%d", self.info_hash, message.piece, piece)
                continue
            if message.msg_type == wire.MSG_TYPE_REJECT:
                raise PeerRejected("对端拒绝了分片 %d" % piece)
            if message.msg_type == wire.MSG_TYPE_DATA:
                if message.total_size >= 0 and message.total_size != metadata_size:
                    raise ProtocolViolation(
                        "total_size %d 与 metadata_size %d 不一致" % (message.total_size, metadata_size))
                return message.data
