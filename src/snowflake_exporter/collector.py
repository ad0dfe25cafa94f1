"""
Snowflake metrics collector.

Runs a fixed set of ACCOUNT_USAGE queries on every scrape and republishes
the rows as Prometheus gauges. The collector implements the
prometheus_client custom collector protocol (``describe``/``collect``) and
is meant to be registered on a caller-owned ``CollectorRegistry``.
"""

import itertools
import threading
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, NamedTuple, Optional, Sequence, Tuple

import structlog
from prometheus_client.core import GaugeMetricFamily

from .config.settings import parse_dsn
from .connectors.snowflake_client import QueryExecutionError, SnowflakeClient

logger = structlog.get_logger(__name__)


class RowDecodeError(ValueError):
    """Raised when a result row cannot be turned into an observation."""
    pass


@dataclass(frozen=True)
class MetricDescriptor:
    """Catalog entry for one gauge: name, help text and ordered label names."""
    name: str
    documentation: str
    labels: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, 'labels', tuple(self.labels))


RowDecoder = Callable[[Sequence[Any]], Tuple[Tuple[str, ...], float]]


@dataclass(frozen=True)
class QuerySpec:
    """A parameterless query, the metric it feeds, and how to decode its rows."""
    name: str
    sql: str
    descriptor: MetricDescriptor
    decode: RowDecoder


class Observation(NamedTuple):
    """One labeled gauge value produced while a scrape runs."""
    descriptor: MetricDescriptor
    label_values: Tuple[str, ...]
    value: float


def decode_labeled_value(row: Sequence[Any]) -> Tuple[Tuple[str, ...], float]:
    """
    Decode a ``(label, value)`` row.

    Decoders may raise ``RowDecodeError``, ``TypeError``, ``ValueError`` or
    ``LookupError`` (e.g. indexing a short row); the collector skips the row
    either way.

    Snowflake returns ``NUMBER`` columns as ``Decimal``; values are converted
    with ``float()``.

    Raises:
        RowDecodeError: If the row shape, label or value is unusable
    """
    if len(row) != 2:
        raise RowDecodeError(f"expected 2 columns, got {len(row)}")

    label, value = row
    if label is None:
        raise RowDecodeError("label column is NULL")
    if not isinstance(label, str):
        raise RowDecodeError(f"label column must be a string, got {type(label).__name__}")
    if value is None:
        raise RowDecodeError(f"value column is NULL for '{label}'")
    if isinstance(value, bool):
        raise RowDecodeError(f"value column must be numeric, got bool for '{label}'")

    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise RowDecodeError(f"value column is not numeric for '{label}': {value!r}") from e

    return (label,), number


WAREHOUSE_CREDITS = MetricDescriptor(
    'snowflake_warehouse_credits_used',
    'Number of credits used by warehouse',
    ('warehouse_name',),
)
STORAGE_BYTES = MetricDescriptor(
    'snowflake_storage_bytes',
    'Total storage used in bytes',
    ('database_name',),
)

# Advertised but not yet backed by a query
QUERY_COUNT = MetricDescriptor(
    'snowflake_query_count',
    'Number of queries executed',
    ('warehouse_name', 'query_type'),
)
CONCURRENT_QUERIES = MetricDescriptor(
    'snowflake_concurrent_queries',
    'Number of concurrent queries',
    ('warehouse_name',),
)

WAREHOUSE_CREDITS_QUERY = QuerySpec(
    name='warehouse_credits',
    sql="""
        SELECT warehouse_name, SUM(credits_used) AS total_credits
        FROM snowflake.account_usage.warehouse_metering_history
        WHERE start_time > dateadd(day, -1, current_timestamp())
        GROUP BY warehouse_name
    """,
    descriptor=WAREHOUSE_CREDITS,
    decode=decode_labeled_value,
)
STORAGE_BYTES_QUERY = QuerySpec(
    name='storage_bytes',
    sql="""
        SELECT database_name, storage_bytes
        FROM snowflake.account_usage.database_storage_usage_history
        WHERE usage_date = current_date()
    """,
    descriptor=STORAGE_BYTES,
    decode=decode_labeled_value,
)

DEFAULT_QUERIES = (WAREHOUSE_CREDITS_QUERY, STORAGE_BYTES_QUERY)
DEFAULT_CATALOG = (WAREHOUSE_CREDITS, STORAGE_BYTES, QUERY_COUNT, CONCURRENT_QUERIES)


class SnowflakeMetricsCollector:
    """
    Prometheus collector for Snowflake account usage.

    Every ``collect`` call runs each configured query in order while holding
    a lock, so concurrent scrapes never interleave their query sequences on
    the shared connection. A failing query is logged and skipped; a row
    that fails to decode is logged and skipped. Neither reaches the caller.
    The collector owns the connection handle: health probes and shutdown
    go through it and take the same lock.

    Args:
        client: Connection handle exposing ``iter_query(sql)``,
            ``test_connection()`` and ``close()``
        queries: Queries to run on every scrape, in order
        catalog: Every descriptor the collector may emit; defaults to the
            descriptors of ``queries``

    Raises:
        ValueError: If a query's descriptor is missing from the catalog
    """

    def __init__(
        self,
        client: Any,
        queries: Iterable[QuerySpec] = DEFAULT_QUERIES,
        catalog: Optional[Iterable[MetricDescriptor]] = None,
    ):
        self._client = client
        self._queries = tuple(queries)
        if catalog is None:
            catalog = (spec.descriptor for spec in self._queries)
        self._catalog = tuple(dict.fromkeys(catalog))

        undeclared = [
            spec.descriptor.name for spec in self._queries
            if spec.descriptor not in self._catalog
        ]
        if undeclared:
            raise ValueError(f"Queries emit undeclared metrics: {', '.join(undeclared)}")

        self._lock = threading.Lock()

    @classmethod
    def from_dsn(cls, dsn: str, **kwargs) -> 'SnowflakeMetricsCollector':
        """
        Build a collector with the default catalog from a DSN.

        The Snowflake session is opened lazily on the first scrape.

        Raises:
            ConnectionError: If the DSN is malformed or the handle cannot be built
        """
        try:
            settings = parse_dsn(dsn)
        except ValueError as e:
            raise ConnectionError(f"Failed to connect to Snowflake: {e}") from e

        kwargs.setdefault('catalog', DEFAULT_CATALOG)
        return cls(SnowflakeClient(settings), **kwargs)

    def check_health(self) -> bool:
        """Probe the connection, waiting for any scrape in progress to finish."""
        with self._lock:
            return bool(self._client.test_connection())

    def close(self):
        with self._lock:
            self._client.close()

    def descriptors(self) -> Tuple[MetricDescriptor, ...]:
        return self._catalog

    def describe(self) -> Iterable[GaugeMetricFamily]:
        return [
            GaugeMetricFamily(d.name, d.documentation, labels=d.labels)
            for d in self._catalog
        ]

    def observations(self) -> Iterator[Observation]:
        """
        Run every configured query and yield observations as rows decode.

        The lock is held from the first query until the generator finishes,
        so observations already yielded stay valid even if a later query fails.
        """
        with self._lock:
            for spec in self._queries:
                yield from self._run_query(spec)

    def _run_query(self, spec: QuerySpec) -> Iterator[Observation]:
        emitted = 0
        skipped = 0
        try:
            for row in self._client.iter_query(spec.sql):
                try:
                    label_values, value = spec.decode(row)
                    if len(label_values) != len(spec.descriptor.labels):
                        raise RowDecodeError(
                            f"expected {len(spec.descriptor.labels)} label values, "
                            f"got {len(label_values)}"
                        )
                except (TypeError, ValueError, LookupError) as e:
                    skipped += 1
                    logger.warning("Error decoding row", query=spec.name, row=repr(row), error=str(e))
                    continue
                emitted += 1
                yield Observation(spec.descriptor, tuple(label_values), value)
        except QueryExecutionError as e:
            logger.error("Error fetching metric", query=spec.name, emitted=emitted, error=str(e))
            return

        logger.debug("Query collected", query=spec.name, emitted=emitted, skipped=skipped)

    def collect(self) -> Iterator[GaugeMetricFamily]:
        for descriptor, group in itertools.groupby(self.observations(), key=lambda o: o.descriptor):
            family = GaugeMetricFamily(
                descriptor.name, descriptor.documentation, labels=descriptor.labels
            )
            for observation in group:
                family.add_metric(observation.label_values, observation.value)
            yield family
