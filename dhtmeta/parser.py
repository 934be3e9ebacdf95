import bencoding

from .errors import DecodeError
from .models import FileEntry, RawInfo


def _text(value):
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode('utf-8', 'replace')
    return str(value)


def _length(value):
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return 0


def parse_raw_info(info_hash, raw_info):
    """
    解析通过 ut_metadata 获取的原始 info 字典字节，
    提取名称、总大小和文件列表（兼容单文件与多文件两种布局）。
    """
    try:
        info = bencoding.bdecode(raw_info)
    except Exception as e:
        raise DecodeError("无法解码 info 字典 (info_hash=%s): %s" % (info_hash, e))
    if not isinstance(info, dict):
        raise DecodeError("info 不是字典 (info_hash=%s)" % info_hash)

    name = _text(info.get(b'name.utf-8') or info.get(b'name'))
    files_list = info.get(b'files')
    if isinstance(files_list, list):
        files = []
        for entry in files_list:
            if not isinstance(entry, dict):
                continue
            path = entry.get(b'path.utf-8') or entry.get(b'path')
            segments = [_text(p) for p in path] if isinstance(path, list) else []
            files.append(FileEntry('/'.join(segments), _length(entry.get(b'length'))))
        total_size = sum(f.length for f in files)
    else:
        total_size = _length(info.get(b'length'))
        files = [FileEntry(name or info_hash, total_size)]
    return RawInfo(name, total_size, files)
