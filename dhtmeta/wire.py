"""
BitTorrent 握手、BEP-10 扩展协议与 BEP-9 ut_metadata 消息的编解码。
除 read_* 协程从 StreamReader 读取数据外，这里的函数都是无状态的纯函数。
"""
import asyncio
import struct
import logging

import bencoding

from .errors import HandshakeRejected, ProtocolViolation
from .models import ExtendedHandshake, MetadataMessage, MetadataPiece
from .scanner import find_element_end

PROTOCOL = b'BitTorrent protocol'
HANDSHAKE_LENGTH = 68
# reserved[5] & 0x10: 支持扩展协议 (BEP-10)
EXTENSION_RESERVED = b'\x00\x00\x00\x00\x00\x10\x00\x00'

MSG_EXTENDED = 20
EXT_HANDSHAKE_ID = 0
LOCAL_UT_METADATA_ID = 1

METADATA_PIECE_SIZE = 16384
MSG_TYPE_REQUEST = 0
MSG_TYPE_DATA = 1
MSG_TYPE_REJECT = 2

# 单条消息长度上限，防止对端声明超大长度
MAX_MESSAGE_LENGTH = 1 << 20


def build_handshake(info_hash, peer_id, reserved=EXTENSION_RESERVED):
    """
    构造 68 字节的标准握手消息。
    """
    return bytes([len(PROTOCOL)]) + PROTOCOL + reserved + info_hash + peer_id


def parse_handshake_response(data, expected_info_hash):
    """
    校验对端握手响应，返回 (reserved, peer_id)。
    长度不足、协议字符串不符或 info_hash 任一字节不同都会抛出 HandshakeRejected。
    """
    if len(data) < HANDSHAKE_LENGTH:
        raise HandshakeRejected("握手响应过短: %d 字节" % len(data))
    if data[0] != len(PROTOCOL):
        raise HandshakeRejected("pstrlen 无效: %d" % data[0])
    if data[1:20] != PROTOCOL:
        raise HandshakeRejected("协议字符串无效: %r" % bytes(data[1:20]))
    for i in range(20):
        if data[28 + i] != expected_info_hash[i]:
            raise HandshakeRejected(
                "info_hash 第 %d 字节不匹配: 期望 %d 实际 %d" % (i, expected_info_hash[i], data[28 + i]))
    return bytes(data[20:28]), bytes(data[48:68])


def build_extended_message(ext_id, payload):
    """
    <长度><20><ext_id><payload>，长度不含前 4 个字节。
    """
    return struct.pack('>IBB', 2 + len(payload), MSG_EXTENDED, ext_id) + payload


def build_extended_handshake_payload(ut_metadata_id=LOCAL_UT_METADATA_ID):
    return bencoding.bencode({b'm': {b'ut_metadata': ut_metadata_id}})


def build_piece_request(piece):
    return bencoding.bencode({b'msg_type': MSG_TYPE_REQUEST, b'piece': piece})


def _as_int(value, default=-1):
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return default


async def _read_message(reader):
    header = await reader.readexactly(4)
    length = struct.unpack('>I', header)[0]
    if length == 0:
        return b''
    if length > MAX_MESSAGE_LENGTH:
        raise ProtocolViolation("消息长度超出上限: %d" % length)
    return await reader.readexactly(length)


async def read_envelope(reader, timeout=None):
    """
    读取一条带长度前缀的消息体。keep-alive 返回 b''，连接提前关闭返回 None。
    timeout 限制整条消息（长度头加消息体）的读取时间，超时抛出 asyncio.TimeoutError。
    """
    try:
        if timeout is None:
            return await _read_message(reader)
        return await asyncio.wait_for(_read_message(reader), timeout=timeout)
    except asyncio.IncompleteReadError:
        return None


async def read_extended_handshake(reader, timeout=None):
    """
    读取并解析对端的扩展握手 (ext id 0)。
    消息不完整、不是扩展握手或无法解码时返回 None。
    """
    body = await read_envelope(reader, timeout)
    if body is None or len(body) <= 2:
        return None
    if body[0] != MSG_EXTENDED or body[1] != EXT_HANDSHAKE_ID:
        return None
    try:
        decoded = bencoding.bdecode(body[2:])
    except Exception:
        return None
    if not isinstance(decoded, dict):
        return None
    m = decoded.get(b'm')
    ut_metadata_id = _as_int(m.get(b'ut_metadata')) if isinstance(m, dict) else -1
    metadata_size = _as_int(decoded.get(b'metadata_size'))
    return ExtendedHandshake(ut_metadata_id, metadata_size)


def parse_metadata_message(body, ut_metadata_id):
    """
    解析一条完整的 ut_metadata 消息体（不含长度前缀）。
    前导字典的结束位置由扫描器给出，其后的字节原样作为数据。
    """
    if len(body) <= 2 or body[0] != MSG_EXTENDED or body[1] != ut_metadata_id:
        return None
    dict_end = find_element_end(body, 2)
    if dict_end is None:
        return None
    try:
        header = bencoding.bdecode(bytes(body[2:dict_end + 1]))
    except Exception:
        return None
    if not isinstance(header, dict):
        return None
    return MetadataMessage(
        _as_int(header.get(b'msg_type')),
        _as_int(header.get(b'piece')),
        bytes(body[dict_end + 1:]),
        _as_int(header.get(b'total_size')),
    )


async def read_metadata_message(reader, ut_metadata_id, timeout=None):
    body = await read_envelope(reader, timeout)
    if not body:
        return None
    message = parse_metadata_message(body, ut_metadata_id)
    if message is None:
        logging.debug("忽略非 ut_metadata 消息: id=%d 长度=%d", body[0], len(body))
    return message


async def read_metadata_piece(reader, ut_metadata_id, timeout=None):
    """
    读取一条 ut_metadata 数据消息。只有 msg_type=1 且 piece 非负时返回 MetadataPiece，
    请求 (0) 与拒绝 (2) 都返回 None。
    """
    message = await read_metadata_message(reader, ut_metadata_id, timeout)
    if message is None or message.msg_type != MSG_TYPE_DATA or message.piece < 0:
        return None
    return MetadataPiece(message.piece, message.data)
