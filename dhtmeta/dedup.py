import os
import logging

from pybloom_live import BloomFilter


class BloomMembership:
    """
    基于布隆过滤器的去重服务，每个命名空间对应一个过滤器。
    exists 的语义是“可能存在”：没有假阴性，可能有假阳性。
    """
    def __init__(self, config):
        self.capacity = config["BLOOM_FILTER_CAPACITY"]
        self.error_rate = config["BLOOM_FILTER_ERROR_RATE"]
        self.directory = config["BLOOM_FILTER_DIR"]
        self.filters = {}

    def _path(self, namespace):
        return os.path.join(self.directory, "%s.bloom" % namespace.replace(':', '_'))

    def _filter(self, namespace):
        """
        取得命名空间对应的过滤器，首次使用时从文件加载，文件不存在则新建。
        """
        bloom = self.filters.get(namespace)
        if bloom is not None:
            return bloom
        path = self._path(namespace)
        try:
            with open(path, 'rb') as f:
                bloom = BloomFilter.fromfile(f)
            logging.info("成功从 %s 加载布隆过滤器。", path)
        except FileNotFoundError:
            logging.info("未找到布隆过滤器文件 %s，将创建一个新的。", path)
            bloom = BloomFilter(capacity=self.capacity, error_rate=self.error_rate)
        self.filters[namespace] = bloom
        return bloom

    def exists(self, namespace, key):
        """
        key 可能已存在时返回 True。过滤器不可用时按“不存在”处理，不阻塞获取流程。
        """
        try:
            return key in self._filter(namespace)
        except Exception as e:
            logging.warning("布隆过滤器查询失败 namespace=%s key=%s: %s", namespace, key, e)
            return False

    def add(self, namespace, key):
        try:
            self._filter(namespace).add(key)
        except Exception as e:
            logging.warning("布隆过滤器添加失败 namespace=%s key=%s: %s", namespace, key, e)

    def save(self):
        """
        将所有过滤器持久化到文件。
        """
        if not self.filters:
            return
        os.makedirs(self.directory, exist_ok=True)
        for namespace, bloom in self.filters.items():
            path = self._path(namespace)
            try:
                with open(path, 'wb') as f:
                    bloom.tofile(f)
                logging.info("布隆过滤器已成功保存到 %s。", path)
            except Exception as e:
                logging.error("保存布隆过滤器时出错: %s", e, exc_info=True)
