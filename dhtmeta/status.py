import logging
import time
from collections import namedtuple

FETCHING = "FETCHING"
METADATA = "METADATA"

StatusEntry = namedtuple('StatusEntry', 'state strategy reason updated_at')


class MetadataStatusStore:
    """
    记录每个 info_hash 最近一次获取的进度：
    FETCHING -> METADATA -> 终止状态 (SUCCESS / TIMEOUT / NO_PEERS / PEER_MISMATCH / ERROR / REJECTED)。
    条目在 STATUS_TTL 秒后过期。
    """
    def __init__(self, config):
        self.ttl = config["STATUS_TTL"]
        self.purge_every = config["STATUS_PURGE_EVERY"]
        self.entries = {}
        self._writes = 0

    def set(self, info_hash, state, strategy=None, reason=None):
        self.entries[info_hash] = (StatusEntry(state, strategy, reason, time.time()), time.monotonic() + self.ttl)
        self._writes += 1
        if self._writes % self.purge_every == 0:
            self.purge()

    def get(self, info_hash):
        item = self.entries.get(info_hash)
        if item is None:
            return None
        entry, expires_at = item
        if time.monotonic() >= expires_at:
            del self.entries[info_hash]
            return None
        return entry

    def purge(self):
        """
        删除所有已过期的条目，返回删除的数量。
        """
        now = time.monotonic()
        expired = [k for k, (_, expires_at) in self.entries.items() if expires_at <= now]
        for k in expired:
            del self.entries[k]
        if expired:
            logging.debug("已清理 %d 条过期的获取状态", len(expired))
        return len(expired)

    def __len__(self):
        return len(self.entries)
