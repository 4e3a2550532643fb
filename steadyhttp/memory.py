"""Pooled byte buffers and header maps with usage statistics."""

from __future__ import annotations

import gc
import threading
import time
from dataclasses import dataclass

_HEADER_POOL_LIMIT = 1000


@dataclass
class MemoryConfig:
    """Buffer pool sizes and limits. ``cleanup_interval`` is in seconds."""

    small_buffer_size: int = 4 * 1024
    medium_buffer_size: int = 32 * 1024
    large_buffer_size: int = 256 * 1024

    max_small_buffers: int = 1000
    max_medium_buffers: int = 500
    max_large_buffers: int = 100

    cleanup_interval: float = 30.0

    memory_pressure_threshold: float = 0.8
    gc_trigger_threshold: float = 0.9


@dataclass
class MemoryStats:
    """A snapshot of pool usage.

    ``allocated_bytes`` counts buffer bytes handed out, ``system_bytes`` the
    bytes of every buffer the pools have created; ``memory_pressure`` is
    their ratio as of the last cleanup.
    """

    small_buffers_in_use: int = 0
    medium_buffers_in_use: int = 0
    large_buffers_in_use: int = 0
    small_buffers_total: int = 0
    medium_buffers_total: int = 0
    large_buffers_total: int = 0

    headers_in_use: int = 0
    headers_total: int = 0

    allocated_bytes: int = 0
    system_bytes: int = 0
    gc_cycles: int = 0
    last_gc_time: int = 0

    buffer_hit_rate: float = 0.0
    object_hit_rate: float = 0.0
    memory_pressure: float = 0.0

    last_update: int = 0


class _BufferPool:
    def __init__(self, size: int, max_count: int):
        self.size = size
        self.max_count = max_count
        self.free: list[bytearray] = []
        self.in_use = 0
        self.total = 0
        self.gets = 0

    def take(self) -> bytearray:
        self.in_use += 1
        self.gets += 1
        if self.free:
            return self.free.pop()
        self.total += 1
        return bytearray(self.size)

    def give(self, buf: bytearray) -> None:
        self.in_use -= 1
        if self.in_use < self.max_count:
            self.free.append(buf)


class MemoryManager:
    """Hands out reusable buffers and header dictionaries."""

    def __init__(self, config: MemoryConfig | None = None):
        self.config = config if config is not None else MemoryConfig()
        cfg = self.config
        self._lock = threading.Lock()
        self._small = _BufferPool(cfg.small_buffer_size, cfg.max_small_buffers)
        self._medium = _BufferPool(cfg.medium_buffer_size, cfg.max_medium_buffers)
        self._large = _BufferPool(cfg.large_buffer_size, cfg.max_large_buffers)
        self._pools = (self._small, self._medium, self._large)

        self._free_headers: list[dict[str, str]] = []
        self._headers_in_use = 0
        self._headers_total = 0
        self._headers_gets = 0

        self._allocated_bytes = 0
        self._system_bytes = 0
        self._gc_cycles = 0
        self._last_gc_time = 0
        self._memory_pressure = 0.0
        self._last_update = 0

        self._closed = False
        self._done = threading.Event()
        if cfg.cleanup_interval > 0:
            threading.Thread(target=self._cleanup_loop, daemon=True).start()

    def get_buffer(self, size: int) -> bytearray:
        """A buffer of at least ``size`` bytes, pooled when a pool fits."""
        for pool in self._pools:
            if size <= pool.size:
                with self._lock:
                    return pool.take()
        return bytearray(size)

    def put_buffer(self, buf: bytearray | None) -> None:
        """Return a buffer obtained from get_buffer; others are ignored."""
        if buf is None:
            return
        with self._lock:
            if self._closed:
                return
            for pool in self._pools:
                if len(buf) == pool.size:
                    pool.give(buf)
                    return

    def get_headers(self) -> dict[str, str]:
        """An empty header dictionary from the pool."""
        with self._lock:
            self._headers_in_use += 1
            self._headers_gets += 1
            if self._free_headers:
                return self._free_headers.pop()
            self._headers_total += 1
            return {}

    def put_headers(self, headers: dict[str, str] | None) -> None:
        """Clear a header dictionary and return it to the pool."""
        if headers is None:
            return
        with self._lock:
            if self._closed:
                return
            headers.clear()
            self._headers_in_use -= 1
            if self._headers_in_use < _HEADER_POOL_LIMIT:
                self._free_headers.append(headers)

    def _cleanup_loop(self) -> None:
        try:
            while not self._done.wait(self.config.cleanup_interval):
                self.perform_cleanup()
        finally:
            self.perform_cleanup()

    def perform_cleanup(self) -> None:
        """Refresh memory statistics and collect garbage under high pressure."""
        with self._lock:
            handed_out = sum(p.in_use * p.size for p in self._pools)
            held = sum(p.total * p.size for p in self._pools)
        pressure = handed_out / held if held else 0.0
        collected_at = 0
        if pressure > self.config.gc_trigger_threshold:
            gc.collect()
            collected_at = time.time_ns()
        cycles = sum(generation["collections"] for generation in gc.get_stats())
        with self._lock:
            self._allocated_bytes = handed_out
            self._system_bytes = held
            self._gc_cycles = cycles
            if collected_at:
                self._last_gc_time = collected_at
            self._memory_pressure = pressure
            self._last_update = int(time.time())

    def stats(self) -> MemoryStats:
        """A snapshot of the current statistics."""
        with self._lock:
            gets = sum(p.gets for p in self._pools)
            created = sum(p.total for p in self._pools)
            buffer_hit = (gets - created) / gets if gets else 0.0
            object_hit = (
                (self._headers_gets - self._headers_total) / self._headers_gets
                if self._headers_gets
                else 0.0
            )
            return MemoryStats(
                small_buffers_in_use=self._small.in_use,
                medium_buffers_in_use=self._medium.in_use,
                large_buffers_in_use=self._large.in_use,
                small_buffers_total=self._small.total,
                medium_buffers_total=self._medium.total,
                large_buffers_total=self._large.total,
                headers_in_use=self._headers_in_use,
                headers_total=self._headers_total,
                allocated_bytes=self._allocated_bytes,
                system_bytes=self._system_bytes,
                gc_cycles=self._gc_cycles,
                last_gc_time=self._last_gc_time,
                buffer_hit_rate=buffer_hit,
                object_hit_rate=object_hit,
                memory_pressure=self._memory_pressure,
                last_update=self._last_update,
            )

    def close(self) -> None:
        """Stop the cleanup thread; later returns are no longer pooled. Safe to repeat."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._done.set()