"""
Batch/queue worker.

Queue integrations (Redis/Kafka/DB) can pull jobs and hand them here. Each
item is an independent pipeline call with its own inference session, so
items share no mutable state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from .assets import AssetResolver
from .pipeline import RemoveBackgroundOptions, SessionFactory, remove_background
from .session import load_session
from .tensor import ImageSource

logger = logging.getLogger(__name__)


@dataclass
class BatchItem:
    source: ImageSource
    options: RemoveBackgroundOptions = field(default_factory=RemoveBackgroundOptions)


def process_batch(
    items: Iterable[BatchItem],
    resolver: Optional[AssetResolver] = None,
    session_factory: SessionFactory = load_session,
) -> List[bytes]:
    """
    Process a batch of images synchronously.

    Returns a list of PNG byte buffers matching the input order. The first
    failing item raises; storage of the outputs is left to the caller.
    """
    outputs: List[bytes] = []
    for index, item in enumerate(items):
        logger.info(
            "Processing batch item %d output=%s resolution=%s",
            index,
            item.options.output or "default",
            item.options.resolution or "width",
        )
        outputs.append(
            remove_background(
                item.source,
                item.options,
                resolver=resolver,
                session_factory=session_factory,
            )
        )
    return outputs
