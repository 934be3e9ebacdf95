import os
import string

PEER_ID_PREFIX = b'-DM0001-'
PEER_ID_ALPHABET = (string.digits + string.ascii_lowercase).encode()


def generate_peer_id():
    """
    生成一个20字节的 peer_id：固定客户端前缀加随机字母数字。
    """
    suffix = bytes(PEER_ID_ALPHABET[b % len(PEER_ID_ALPHABET)] for b in os.urandom(20 - len(PEER_ID_PREFIX)))
    return PEER_ID_PREFIX + suffix


def magnet_uri(info_hash):
    """
    仅由 info_hash 构造的磁力链接。
    """
    return "magnet:?xt=urn:btih:%s" % info_hash
