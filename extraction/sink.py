"""
Sink adapter: hand extracted records to the downstream consumer.

The downstream contract is ``ingest(query_name, batch) -> SinkAck``.
Anything other than an ack covering the whole batch is a SinkError, and
the executor treats a SinkError as a failed run.
"""

from abc import ABC, abstractmethod
from typing import Optional, Sequence
import asyncio
import logging

import httpx

from core.config import settings
from core.exceptions import SinkError
from schemas.records import ExtractedRecord, SinkAck, SinkBatch

logger = logging.getLogger(__name__)


class RecordSink(ABC):
    """Downstream consumer of extracted record batches"""

    @abstractmethod
    async def ingest(self, query_name: str, batch: Sequence[ExtractedRecord]) -> SinkAck:
        """
        Durably accept a batch.

        Must tolerate duplicate records keyed by source_row_id; a crash
        between ack and watermark commit redelivers the same window.
        """
        pass

    async def close(self):
        pass


class SinkAdapter:
    """
    Batch records and deliver them with acknowledgement checks.

    Ensures:
    - Batches never exceed max_batch_size
    - Batches are delivered in order, one at a time
    - Every batch is fully acknowledged or a SinkError is raised
    """

    def __init__(self, sink: RecordSink, max_batch_size: int = None):
        self.sink = sink
        self.max_batch_size = max_batch_size or settings.SINK_BATCH_SIZE

    async def deliver(self, query_name: str, records: Sequence[ExtractedRecord]) -> int:
        """
        Deliver records as one or more batches.

        Returns:
            Number of records acknowledged

        Raises:
            SinkError: the sink failed or did not acknowledge a batch
        """
        if not records:
            return 0

        delivered = 0
        for start in range(0, len(records), self.max_batch_size):
            batch = list(records[start:start + self.max_batch_size])
            try:
                ack = await self.sink.ingest(query_name, batch)
            except SinkError:
                raise
            except asyncio.CancelledError:
                raise
            except Exception as e:
                raise SinkError(
                    f"Sink raised while ingesting {query_name}",
                    context={"query_name": query_name, "batch_size": len(batch)},
                    original_exception=e
                )

            if not isinstance(ack, SinkAck) or ack.accepted != len(batch):
                raise SinkError(
                    f"Sink did not acknowledge batch for {query_name}",
                    context={
                        "query_name": query_name,
                        "batch_size": len(batch),
                        "ack": ack,
                    }
                )

            delivered += ack.accepted
            logger.debug(f"Sink acknowledged {ack.accepted} records for {query_name}")

        return delivered

    async def close(self):
        await self.sink.close()


class HttpSink(RecordSink):
    """
    POST batches as JSON to a downstream HTTP endpoint.

    Expects a 2xx response with body {"accepted": <int>}. Timeouts,
    network errors and 5xx responses are retried with exponential
    backoff; 4xx responses fail immediately.
    """

    def __init__(
        self,
        url: str,
        timeout: float = None,
        max_retries: int = None,
        retry_delay: float = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.url = url
        self.timeout = timeout or settings.SINK_TIMEOUT
        self.max_retries = max_retries or settings.SINK_MAX_RETRIES
        self.retry_delay = retry_delay if retry_delay is not None else settings.SINK_RETRY_DELAY
        self._client = client or httpx.AsyncClient(timeout=self.timeout)

    async def ingest(self, query_name: str, batch: Sequence[ExtractedRecord]) -> SinkAck:
        payload = SinkBatch(query_name=query_name, records=list(batch)).json()
        context = {"query_name": query_name, "batch_size": len(batch), "sink_url": self.url}
        last_exception = None

        for attempt in range(self.max_retries):
            try:
                response = await self._client.post(
                    self.url,
                    content=payload,
                    headers={"Content-Type": "application/json"},
                )

                if response.status_code >= 500:
                    if attempt < self.max_retries - 1:
                        delay = self.retry_delay * (2 ** attempt)
                        logger.warning(
                            f"Sink returned {response.status_code}. "
                            f"Retrying in {delay} seconds (attempt {attempt + 1}/{self.max_retries})"
                        )
                        await asyncio.sleep(delay)
                        continue
                    raise SinkError(
                        f"Sink error after {self.max_retries} attempts",
                        context={
                            **context,
                            "status_code": response.status_code,
                            "response_body": response.text[:500],
                        }
                    )

                if response.status_code >= 400:
                    raise SinkError(
                        f"Sink rejected batch for {query_name}",
                        context={
                            **context,
                            "status_code": response.status_code,
                            "response_body": response.text[:500],
                        }
                    )

                try:
                    return SinkAck.parse_obj(response.json())
                except ValueError as e:
                    raise SinkError(
                        "Sink response is not an acknowledgement",
                        context={**context, "response_body": response.text[:500]},
                        original_exception=e
                    )

            except (httpx.TimeoutException, httpx.NetworkError) as e:
                last_exception = e
                if attempt < self.max_retries - 1:
                    delay = self.retry_delay * (2 ** attempt)
                    logger.warning(f"Sink unreachable ({type(e).__name__}). Retrying in {delay} seconds")
                    await asyncio.sleep(delay)
                else:
                    raise SinkError(
                        f"Sink unreachable after {self.max_retries} attempts",
                        context=context,
                        original_exception=e
                    )

        raise SinkError(
            "Max retries exceeded",
            context=context,
            original_exception=last_exception
        )

    async def close(self):
        await self._client.aclose()


class LoggingSink(RecordSink):
    """Acknowledge and log every batch; used when no SINK_URL is configured"""

    async def ingest(self, query_name: str, batch: Sequence[ExtractedRecord]) -> SinkAck:
        logger.info(f"[{query_name}] {len(batch)} records (no sink configured)")
        return SinkAck(accepted=len(batch))
