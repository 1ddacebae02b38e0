"""Shared synchronous Elasticsearch client.

Callers push blocking calls onto a worker thread with ``asyncio.to_thread``.
Transport retries are disabled: a failed store call surfaces immediately and
the caller decides what to do with it.
"""
from __future__ import annotations

import logging
from functools import lru_cache

from elasticsearch import Elasticsearch

from .config import settings

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_client() -> Elasticsearch:
    logger.info(
        "Connecting to Elasticsearch at %s (request_timeout=%ss)",
        settings.es_host,
        settings.es_request_timeout_seconds,
    )
    return Elasticsearch(
        settings.es_host,
        request_timeout=settings.es_request_timeout_seconds,
        max_retries=0,
        retry_on_timeout=False,
    )
