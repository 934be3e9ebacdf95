import asyncio
import os
import logging


class Storage:
    """
    用于将获取到的 info 字典保存为 .torrent 文件。
    """
    def __init__(self, config):
        self.output_dir = config["STORAGE_DIR"]
        self.lock = asyncio.Lock()
        # 确保输出目录存在
        os.makedirs(self.output_dir, exist_ok=True)

    def path_for(self, info_hash):
        return os.path.join(self.output_dir, "%s.torrent" % info_hash)

    async def save(self, info_hash, raw_info):
        """
        将原始 info 字典包装为 {"info": ...} 写入文件，保持 info 字节不变以保留 info_hash。
        文件名为 info_hash 的十六进制表示。
        """
        file_path = self.path_for(info_hash)
        async with self.lock:
            with open(file_path, "wb") as f:
                f.write(b'd4:info' + raw_info + b'e')
        logging.debug("成功保存种子文件: %s", file_path)
        return file_path
