from abc import ABC, abstractmethod
import asyncio
import base64
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
import json
import logging
import os
from pathlib import Path
import shutil
import tempfile
import threading
import time
from typing import Callable, Iterator, Optional, Tuple, Union

from .model import CacheEntry, CacheInfo, CachePolicy, TransportRequest
from .util import clamp, DataclassJSONEncoder


logger = logging.getLogger(__name__)

EVICTION_TARGET = 0.75
"""
After an over-budget write, the disk tier evicts down to this fraction of its budget.
"""


class CacheTier(ABC):
    """
    One storage layer of the response cache.

    A tier has a relatively narrow scope: remember an entry under a key such that
    it can be recalled later. Deciding what to cache, and when an entry has
    expired, is left to `ResponseCache`.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[CacheEntry]:
        """
        Retrieve the entry stored under `key`.

        @return
          The entry, or `None` if there is no readable one.
        """

    @abstractmethod
    def add(self, key: str, entry: CacheEntry) -> bool:
        """
        Store `entry` under `key`, replacing any prior entry.

        @return
          Whether the entry was stored.
        """

    @abstractmethod
    def delete(self, key: str) -> None:
        """
        Forget the entry stored under `key`, if any.
        """

    @abstractmethod
    def clear(self) -> None:
        """
        Forget every entry.
        """

    @abstractmethod
    def items(self) -> Iterator[Tuple[str, CacheEntry]]:
        """
        Iterate over a snapshot of all readable entries.
        """

    @property
    @abstractmethod
    def total_size(self) -> int:
        """
        The number of payload bytes currently held.
        """

    def close(self):
        """
        Close any resources associated with the tier.
        """


class MemoryCache(CacheTier):
    """
    A cost-limited, least-recently-used in-process tier.

    The cost of an entry is its payload size. An entry bigger than the whole
    budget is refused.
    """

    def __init__(self, max_size: int = 50 * 1024 * 1024) -> None:
        self.__max_size = max_size
        self.__entries: 'OrderedDict[str, CacheEntry]' = OrderedDict()
        self.__size = 0
        self.__lock = threading.Lock()

    @property
    def max_size(self) -> int:
        return self.__max_size

    @property
    def total_size(self) -> int:
        return self.__size

    def __len__(self):
        return len(self.__entries)

    def __contains__(self, key):
        return key in self.__entries

    def get(self, key: str) -> Optional[CacheEntry]:
        with self.__lock:
            entry = self.__entries.get(key)
            if entry is not None:
                self.__entries.move_to_end(key)
            return entry

    def add(self, key: str, entry: CacheEntry) -> bool:
        if entry.size > self.__max_size:
            logger.info('Refusing to keep a {} byte entry in memory. The budget is {} bytes.'.format(entry.size, self.__max_size))
            return False
        with self.__lock:
            self._discard(key)
            self.__entries[key] = entry
            self.__size += entry.size
            while self.__size > self.__max_size:
                evicted_key, evicted = self.__entries.popitem(last=False)
                self.__size -= evicted.size
                logger.debug('Evicted {} from memory'.format(evicted_key))
        return True

    def delete(self, key: str) -> None:
        with self.__lock:
            self._discard(key)

    def clear(self) -> None:
        with self.__lock:
            self.__entries.clear()
            self.__size = 0

    def items(self) -> Iterator[Tuple[str, CacheEntry]]:
        with self.__lock:
            snapshot = list(self.__entries.items())
        return iter(snapshot)

    def _discard(self, key: str) -> None:
        entry = self.__entries.pop(key, None)
        if entry is not None:
            self.__size -= entry.size


@dataclass
class FileCacheRecord:
    """
    The on-disk shape of an entry.
    """
    data: str
    timestamp: float
    expirationDate: float
    etag: Optional[str]
    size: int

    @classmethod
    def from_entry(cls, entry: CacheEntry) -> 'FileCacheRecord':
        return cls(data=base64.b64encode(entry.payload).decode('ascii'),
                   timestamp=entry.created_at,
                   expirationDate=entry.expires_at,
                   etag=entry.etag,
                   size=entry.size)

    def to_entry(self) -> CacheEntry:
        payload = base64.b64decode(self.data.encode('ascii'), validate=True)
        return CacheEntry(payload=payload,
                          created_at=self.timestamp,
                          expires_at=self.expirationDate,
                          etag=self.etag or None,
                          size=len(payload))


class CorruptEntry(Exception):
    def __init__(self, entry_path: Path):
        super().__init__()
        self.__entry_path = entry_path

    @property
    def entry_path(self) -> Path:
        return self.__entry_path


class FileCache(CacheTier):
    """
    A size-bounded tier storing one JSON record per entry.

    The directory is owned entirely by the cache and may be deleted wholesale. It
    is created, and its current size measured, on first use.

    This class is not thread-safe. `ResponseCache` funnels all calls through a
    single worker thread, which also makes that thread the sole owner of the
    tracked byte total.
    """

    def __init__(self, directory: Path, max_size: int = 100 * 1024 * 1024, directory_levels: int = 2) -> None:
        """
        Initialize the file cache.

        @param directory
          The path to the root directory of the cache.
        @param max_size
          The budget, in payload bytes. Once exceeded, the oldest entries are
          evicted until usage falls to 75% of it.
        @param directory_levels
          The number of subdirectory levels to use in the cache directory. This
          will be clamped to be between 0 and 20, respectively.
        """
        self.__directory = Path(directory)
        self.__max_size = max_size
        self.__directory_levels = clamp(directory_levels, 0, 20)
        self.__size: Optional[int] = None

    @property
    def directory(self) -> Path:
        return self.__directory

    @property
    def max_size(self) -> int:
        return self.__max_size

    @property
    def total_size(self) -> int:
        self._ensure_ready()
        return self.__size

    def _ensure_ready(self) -> None:
        if self.__size is not None:
            return
        try:
            self.__directory.mkdir(parents=True, exist_ok=True)
        except OSError:
            logger.exception('Could not create the cache directory {}'.format(self.__directory))
        self.__size = sum(entry.size for _, _, entry in self._scan())
        logger.info('Disk cache at {} holds {} bytes'.format(self.__directory, self.__size))

    def _get_path(self, key: str) -> Path:
        return self.__directory / self._split_path(key)

    def _split_path(self, path: str) -> Path:
        subdirectories = (list(path[:self.__directory_levels])
                          + [path[self.__directory_levels:] + '.json'])
        return Path(*subdirectories)

    def _load_entry(self, entry_path: Path) -> CacheEntry:
        """
        Read a cache entry from a file.

        @throws FileNotFoundError
          If there is no file at `entry_path`.
        @throws CorruptEntry
          If the file could not be parsed.
        """
        try:
            with open(entry_path, 'r') as f:
                raw = json.load(f)
            return FileCacheRecord(**raw).to_entry()
        except FileNotFoundError:
            raise
        except (AttributeError, TypeError, KeyError, ValueError, UnicodeDecodeError) as e:
            raise CorruptEntry(entry_path) from e

    def _scan(self) -> Iterator[Tuple[str, Path, CacheEntry]]:
        """
        Walk the directory, yielding every readable entry with its key and path.

        Corrupt files are deleted along the way.
        """
        if not self.__directory.exists():
            return
        for entry_path in self.__directory.rglob('*.json'):
            relative = entry_path.relative_to(self.__directory)
            key = ''.join(relative.parts)[:-len('.json')]
            try:
                yield key, entry_path, self._load_entry(entry_path)
            except CorruptEntry:
                logger.warning('Found a corrupt cache entry. Deleting {}'.format(entry_path))
                self._unlink(entry_path)
            except OSError:
                logger.warning('Could not read {}'.format(entry_path), exc_info=True)

    def get(self, key: str) -> Optional[CacheEntry]:
        self._ensure_ready()
        entry_path = self._get_path(key)
        try:
            return self._load_entry(entry_path)
        except FileNotFoundError:
            logger.debug('No matching cache entry found on disk.')
            return None
        except CorruptEntry as e:
            logger.warning('Found a corrupt cache entry. Deleting the entry file.')
            self._unlink(e.entry_path)
            return None
        except OSError:
            logger.warning('Could not read {}'.format(entry_path), exc_info=True)
            return None

    def add(self, key: str, entry: CacheEntry) -> bool:
        self._ensure_ready()
        entry_path = self._get_path(key)
        serialized = json.dumps(FileCacheRecord.from_entry(entry), cls=DataclassJSONEncoder)

        try:
            entry_path.parent.mkdir(parents=True, exist_ok=True)
            # Write aside and move into place so that readers never see half a record.
            fd, temp_name = tempfile.mkstemp(dir=str(entry_path.parent), suffix='.tmp')
            with os.fdopen(fd, 'w') as f:
                f.write(serialized)
            self.delete(key)
            os.replace(temp_name, str(entry_path))
        except OSError:
            logger.warning('Could not write cache entry {}'.format(entry_path), exc_info=True)
            return False

        self.__size += entry.size
        if self.__size > self.__max_size:
            self._evict()
        return True

    def delete(self, key: str) -> None:
        self._ensure_ready()
        entry_path = self._get_path(key)
        try:
            entry = self._load_entry(entry_path)
        except FileNotFoundError:
            return
        except (CorruptEntry, OSError):
            self._unlink(entry_path)
            return
        if self._unlink(entry_path):
            self.__size = max(self.__size - entry.size, 0)

    def clear(self) -> None:
        if self.__directory.exists():
            shutil.rmtree(str(self.__directory), ignore_errors=True)
        self.__size = 0
        try:
            self.__directory.mkdir(parents=True, exist_ok=True)
        except OSError:
            logger.exception('Could not recreate the cache directory {}'.format(self.__directory))

    def items(self) -> Iterator[Tuple[str, CacheEntry]]:
        self._ensure_ready()
        return iter([(key, entry) for key, _, entry in self._scan()])

    def _evict(self) -> None:
        target = int(self.__max_size * EVICTION_TARGET)
        logger.info('Disk cache holds {} bytes, over its {} byte budget. Evicting down to {} bytes.'.format(
            self.__size, self.__max_size, target))
        entries = sorted(self._scan(), key=lambda item: item[2].created_at)
        for key, entry_path, entry in entries:
            if self.__size <= target:
                break
            if self._unlink(entry_path):
                self.__size = max(self.__size - entry.size, 0)
                logger.debug('Evicted {} from disk'.format(key))

    @staticmethod
    def _unlink(path: Path) -> bool:
        try:
            logger.debug('Deleting {}'.format(path))
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError:
            logger.exception('Unexpected error occurred while deleting {}'.format(path))
            return False


CacheKey = Union[str, TransportRequest]


def _key(request: CacheKey) -> str:
    if isinstance(request, TransportRequest):
        return request.cache_key
    return request


class ResponseCache:
    """
    The two-tier response cache the executor talks to.

    Memory tier operations run inline. Disk tier operations run on a dedicated
    single-thread executor, which keeps them in submission order and off the
    event loop. Nothing raised by a tier ever escapes: the cache is best-effort.

    @param memory
      The fast tier.
    @param disk
      The durable tier.
    @param expiration
      The lifetime of new entries, in seconds.
    """

    def __init__(self, memory: Optional[MemoryCache] = None, disk: Optional[FileCache] = None,
                 expiration: float = 300.0, clock: Callable[[], float] = time.time) -> None:
        if expiration <= 0:
            raise ValueError('expiration must be > 0')
        self.__memory = memory if memory is not None else MemoryCache()
        self.__disk = disk
        self.__expiration = expiration
        self.__clock = clock
        self.__disk_executor: Optional[ThreadPoolExecutor] = None

    @property
    def memory(self) -> MemoryCache:
        return self.__memory

    @property
    def disk(self) -> Optional[FileCache]:
        return self.__disk

    async def _run_on_disk(self, default, fn, *args):
        if self.__disk is None:
            return default
        if self.__disk_executor is None:
            self.__disk_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='resilient-disk-cache')
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self.__disk_executor, fn, *args)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception('Disk cache operation {} failed'.format(getattr(fn, '__name__', fn)))
            return default

    async def store(self, payload: bytes, request: CacheKey, policy: CachePolicy = CachePolicy.AUTOMATIC,
                    etag: Optional[str] = None) -> Optional[CacheEntry]:
        if policy is CachePolicy.NONE:
            return None
        key = _key(request)
        entry = CacheEntry.create(payload, expiration=self.__expiration, etag=etag, now=self.__clock())
        if policy.uses_memory:
            self.__memory.add(key, entry)
        if policy.uses_disk:
            await self._run_on_disk(False, self.__disk.add if self.__disk is not None else None, key, entry)
        return entry

    async def retrieve(self, request: CacheKey) -> Optional[CacheEntry]:
        key = _key(request)
        now = self.__clock()

        entry = self.__memory.get(key)
        if entry is not None:
            if not entry.is_expired(now):
                return entry
            logger.debug('Memory cache entry {} expired'.format(key))
            self.__memory.delete(key)

        entry = await self._run_on_disk(None, self._retrieve_from_disk, key, now)
        if entry is not None:
            self.__memory.add(key, entry)
        return entry

    def _retrieve_from_disk(self, key: str, now: float) -> Optional[CacheEntry]:
        entry = self.__disk.get(key)
        if entry is None:
            return None
        if entry.is_expired(now):
            logger.debug('Disk cache entry {} expired'.format(key))
            self.__disk.delete(key)
            return None
        return entry

    async def remove(self, request: CacheKey) -> None:
        key = _key(request)
        self.__memory.delete(key)
        await self._run_on_disk(None, self.__disk.delete if self.__disk is not None else None, key)

    async def clear_all(self) -> None:
        self.__memory.clear()
        await self._run_on_disk(None, self.__disk.clear if self.__disk is not None else None)

    async def clear_expired(self) -> int:
        """
        Drop every expired entry from both tiers.

        @return
          The number of entries removed.
        """
        now = self.__clock()
        removed = 0
        for key, entry in self.__memory.items():
            if entry.is_expired(now):
                self.__memory.delete(key)
                removed += 1
        removed += await self._run_on_disk(0, self._clear_expired_on_disk, now)
        return removed

    def _clear_expired_on_disk(self, now: float) -> int:
        removed = 0
        for key, entry in self.__disk.items():
            if entry.is_expired(now):
                self.__disk.delete(key)
                removed += 1
        return removed

    async def size(self) -> int:
        """
        The number of payload bytes held on disk.
        """
        return await self._run_on_disk(0, lambda: self.__disk.total_size)

    async def info(self) -> CacheInfo:
        return await self._run_on_disk(CacheInfo(0, 0, None, None, 0), self._disk_info, self.__clock())

    def _disk_info(self, now: float) -> CacheInfo:
        entries = [entry for _, entry in self.__disk.items()]
        if not entries:
            return CacheInfo(0, 0, None, None, 0)
        created = [entry.created_at for entry in entries]
        return CacheInfo(total_size=sum(entry.size for entry in entries),
                         entry_count=len(entries),
                         oldest_entry=min(created),
                         newest_entry=max(created),
                         expired_count=sum(1 for entry in entries if entry.is_expired(now)))

    def close(self) -> None:
        if self.__disk_executor is not None:
            self.__disk_executor.shutdown(wait=True)
            self.__disk_executor = None
        self.__memory.close()
        if self.__disk is not None:
            self.__disk.close()
