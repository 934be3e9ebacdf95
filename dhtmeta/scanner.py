"""
在任意缓冲区中定位一个 bencode 元素的结束位置，而不完整解码它。

ut_metadata 的数据消息由一个 bencode 字典和紧随其后的原始字节组成，
字典长度没有显式给出，只能扫描字典本身来找到原始数据的起点。
"""

DIGITS = b'0123456789'


def _scalar_end(buf, offset):
    """
    整数或字符串元素的最后一个字节下标，失败返回 None。
    """
    first = buf[offset]
    if first == ord('i'):
        end = buf.find(b'e', offset + 1)
        return end if end > offset + 1 else None
    if first in DIGITS:
        colon = buf.find(b':', offset)
        if colon < 0:
            return None
        length_prefix = bytes(buf[offset:colon])
        if not length_prefix.isdigit():
            return None
        end = colon + int(length_prefix)
        return end if end < len(buf) else None
    return None


def find_element_end(buf, offset):
    """
    返回从 offset 开始的 bencode 元素的最后一个字节的下标。
    容器（d/l）逐个跳过子元素，直到同一层级的 e 为止。
    数据被截断或格式错误时返回 None。
    """
    if offset < 0 or offset >= len(buf):
        return None
    depth = 0
    i = offset
    while i < len(buf):
        c = buf[i]
        if c in b'dl':
            depth += 1
            i += 1
            continue
        if c == ord('e'):
            if depth == 0:
                return None
            depth -= 1
            if depth == 0:
                return i
            i += 1
            continue
        end = _scalar_end(buf, i)
        if end is None:
            return None
        if depth == 0:
            return end
        i = end + 1
    return None
