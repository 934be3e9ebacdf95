import asyncio
import logging

from .errors import AdmissionRejected


class BoundedFetchPool:
    """
    限制同时进行中的抓取数量，并合并对同一 key 的并发请求。
    超过上限的新请求立即被拒绝，而不是无限排队。
    """
    def __init__(self, limit):
        self.limit = limit
        self._inflight = {}

    @property
    def active(self):
        return len(self._inflight)

    async def submit(self, key, factory):
        """
        factory 为返回协程的可调用对象。key 已在进行中时等待同一个任务的结果。
        """
        task = self._inflight.get(key)
        if task is None:
            if len(self._inflight) >= self.limit:
                raise AdmissionRejected("进行中的抓取已达上限 %d" % self.limit)
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task
            task.add_done_callback(lambda _: self._inflight.pop(key, None))
        else:
            logging.debug("合并对 %s 的重复请求", key)
        return await asyncio.shield(task)
