"""
Tenant-scoped topic resolution.

Topics are assigned by the data broker per (tenant, subject) and never
change, so successful lookups are cached for the lifetime of the agent.
Failures are not cached; the next caller triggers a fresh lookup.
"""

import asyncio
import logging
from typing import Dict, Optional, Tuple

from core.errors import ResolutionError
from core.logging import get_logger, log_exception, log_with_context

logger = get_logger(__name__)

TopicKey = Tuple[str, str]


class TopicResolver:
    """Resolves (tenant, subject) to a physical topic through the directory.

    Concurrent misses for the same key share a single in-flight lookup.
    """

    def __init__(self, directory):
        self._directory = directory
        self._topics: Dict[TopicKey, str] = {}
        self._inflight: Dict[TopicKey, asyncio.Task] = {}
        self._lock = asyncio.Lock()

    def cached(self, tenant: str, subject: str) -> Optional[str]:
        """Topic for the pair if already resolved; never performs I/O."""
        return self._topics.get((tenant, subject))

    async def resolve(self, tenant: str, subject: str, is_global: bool = False) -> str:
        """Return the topic for (tenant, subject).

        Raises:
            ResolutionError: the directory lookup failed
        """
        key = (tenant, subject)
        topic = self._topics.get(key)
        if topic is not None:
            return topic

        async with self._lock:
            topic = self._topics.get(key)
            if topic is not None:
                return topic
            task = self._inflight.get(key)
            if task is None:
                task = asyncio.create_task(self._lookup(key, is_global))
                self._inflight[key] = task

        # One waiter being cancelled must not cancel the lookup for the others
        return await asyncio.shield(task)

    async def _lookup(self, key: TopicKey, is_global: bool) -> str:
        tenant, subject = key
        try:
            topic = await self._directory.get_topic(tenant, subject, is_global)
        except ResolutionError as e:
            log_exception(
                logger,
                e,
                "Topic resolution failed",
                level=logging.WARNING,
                include_traceback=False,
                tenant=tenant,
                subject=subject,
            )
            raise
        except Exception as e:
            log_exception(logger, e, "Topic resolution failed", tenant=tenant, subject=subject)
            raise ResolutionError(
                f"Failed to resolve topic: {e}", tenant=tenant, subject=subject, cause=e
            ) from e
        else:
            self._topics[key] = topic
            log_with_context(
                logger,
                logging.INFO,
                "Resolved topic",
                tenant=tenant,
                subject=subject,
                topic=topic,
            )
            return topic
        finally:
            self._inflight.pop(key, None)
