"""Building lookup: full-text index, ingestion pipeline and disambiguation.

The building catalog is paged out of the Directory API and written into a
SQLite FTS5 index in bulk batches while paging is still in progress. The
index lives in the cache space and is rebuilt once it is older than the
configured max age. A free-text query such as ``tor-111`` is then resolved
to one building ID, but only if the top search hit stands out clearly
from the rest.

Room catalogs are cached per building as plain JSON next to the index.
"""

from __future__ import annotations

import json
import logging
import queue
import re
import sqlite3
import statistics
import threading
from datetime import timedelta
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Sequence, Tuple, Union

from .batch import CLOSED, batch_up
from .cache import CacheSpace
from .errors import AmbiguousResult, AutoroomError, EmptyInput, UpstreamFailure
from .models import Building, Resource, SearchHit

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.sqlite"
RESOURCES_FILENAME = "resources.json"

# Standard deviations the top hit must sit above the mean of all hits.
MIN_STD_SCORE = 2.0

SEARCH_SIZE = 50


class BuildingSource(Protocol):
    def for_each_building(self, visit: Callable[[Building], None]) -> None: ...


class ResourceSource(Protocol):
    def for_each_resource(self, building_id: str, visit: Callable[[Resource], None]) -> None: ...


class BuildingResolver(Protocol):
    def search(self, query: str, size: int = SEARCH_SIZE) -> Tuple[List[SearchHit], int]: ...


class BuildingIndex:
    """A full-text index of buildings stored in one SQLite file.

    Writes may come from a different thread than the one that opened the
    index; they are serialised with a lock.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        path = Path(path)
        if path.is_dir():
            path = path / INDEX_FILENAME
        self.path = path
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._conn.execute(
            "CREATE VIRTUAL TABLE IF NOT EXISTS buildings "
            "USING fts5(building_id, body, doc UNINDEXED)"
        )

    def close(self) -> None:
        self._conn.close()

    def __len__(self) -> int:
        with self._lock:
            (n,) = self._conn.execute("SELECT count(*) FROM buildings").fetchone()
        return n

    def index_batch(self, buildings: Sequence[Building]) -> None:
        """Index ``buildings`` in one transaction, replacing documents by ID."""
        rows = [(b.buildingId, b.search_text(), b.model_dump_json()) for b in buildings]
        with self._lock, self._conn:
            self._conn.executemany(
                "DELETE FROM buildings WHERE building_id = ?", [(r[0],) for r in rows]
            )
            self._conn.executemany(
                "INSERT INTO buildings (building_id, body, doc) VALUES (?, ?, ?)", rows
            )

    def get(self, building_id: str) -> Optional[Building]:
        with self._lock:
            row = self._conn.execute(
                "SELECT doc FROM buildings WHERE building_id = ?", (building_id,)
            ).fetchone()
        return Building.model_validate_json(row[0]) if row else None

    def search(self, query: str, size: int = SEARCH_SIZE) -> Tuple[List[SearchHit], int]:
        """Return up to ``size`` hits for ``query``, best first, and the total count.

        Every word of the query is an optional term; documents matching
        more and rarer terms score higher.
        """
        match = _match_expression(query)
        if not match:
            return [], 0
        with self._lock:
            rows = self._conn.execute(
                "SELECT building_id, -bm25(buildings) AS score FROM buildings "
                "WHERE buildings MATCH ? ORDER BY score DESC LIMIT ?",
                (match, size),
            ).fetchall()
            (total,) = self._conn.execute(
                "SELECT count(*) FROM buildings WHERE buildings MATCH ?", (match,)
            ).fetchone()
        return [SearchHit(id=r[0], score=r[1]) for r in rows], total


def _match_expression(query: str) -> str:
    terms = re.findall(r"\w+", query.lower())
    return " OR ".join('"%s"' % t for t in terms)


def build_building_index(
    directory: BuildingSource,
    index: BuildingIndex,
    *,
    buffer_size: int = 10000,
) -> BuildingIndex:
    """Page every building out of ``directory`` into ``index``.

    Paging runs on a producer thread that feeds a bounded queue; the
    calling thread groups whatever has been paged so far into batches and a
    consumer thread writes each batch with one bulk index call.

    Raises:
        UpstreamFailure: if paging or indexing failed. Other autoroom
            errors are re-raised unchanged.
    """
    buildings: "queue.Queue" = queue.Queue(maxsize=buffer_size)
    batches: "queue.Queue" = queue.Queue(maxsize=1)
    errors: List[BaseException] = []
    indexed = 0

    def produce() -> None:
        try:
            directory.for_each_building(buildings.put)
        except Exception as exc:
            errors.append(exc)
        finally:
            buildings.put(CLOSED)

    def consume() -> None:
        nonlocal indexed
        while True:
            bs = batches.get()
            if bs is CLOSED:
                return
            if errors:
                # Keep draining so neither side blocks.
                continue
            try:
                index.index_batch(bs)
                indexed += len(bs)
            except Exception as exc:
                errors.append(exc)

    producer = threading.Thread(target=produce, name="buildings-producer", daemon=True)
    consumer = threading.Thread(target=consume, name="buildings-consumer", daemon=True)
    producer.start()
    consumer.start()
    batch_up(buildings, batches)
    batches.put(CLOSED)
    producer.join()
    consumer.join()

    if errors:
        err = errors[0]
        if isinstance(err, AutoroomError):
            raise err
        raise UpstreamFailure(f"indexing buildings: {err}") from err
    logger.info("Indexed %d buildings", indexed)
    return index


def load_building_index(
    cache: CacheSpace,
    directory: BuildingSource,
    max_age: timedelta = timedelta(days=7),
) -> BuildingIndex:
    """Return the cached building index, rebuilding it if stale."""

    def load(path: Path) -> BuildingIndex:
        index = BuildingIndex(path)
        logger.info("Reusing cached index of %d buildings", len(index))
        return index

    def create(path: Path) -> BuildingIndex:
        index = BuildingIndex(path)
        try:
            return build_building_index(directory, index)
        except BaseException:
            index.close()
            raise

    return cache.get_or_create("buildings", max_age, load, create)


def load_resources(
    cache: CacheSpace,
    directory: ResourceSource,
    building_id: str,
    max_age: timedelta = timedelta(days=7),
) -> List[Resource]:
    """Return the conference rooms of ``building_id``, from cache when fresh."""

    def load(path: Path) -> List[Resource]:
        with open(path / RESOURCES_FILENAME, "r", encoding="utf-8") as fh:
            return [Resource.model_validate(r) for r in json.load(fh)]

    def create(path: Path) -> List[Resource]:
        resources: List[Resource] = []
        directory.for_each_resource(building_id, resources.append)
        with open(path / RESOURCES_FILENAME, "w", encoding="utf-8") as fh:
            json.dump([r.model_dump(exclude_none=True) for r in resources], fh)
        logger.info("Cached %d rooms for building %s", len(resources), building_id or "(all)")
        return resources

    return cache.get_or_create(f"rooms-{building_id or 'all'}", max_age, load, create)


def confidence_in_first(scores: Sequence[float]) -> bool:
    """Report whether the first of ``scores`` clearly beats the others.

    A single score is always confident. Otherwise the z-score of the first
    score against the mean and sample standard deviation of all scores
    must exceed ``MIN_STD_SCORE``.

    Raises:
        EmptyInput: if ``scores`` is empty.
    """
    if len(scores) == 0:
        raise EmptyInput("no scores to compare")
    if len(scores) == 1:
        return True
    mean = statistics.fmean(scores)
    stdev = statistics.stdev(scores)
    if stdev == 0:
        return False
    return (scores[0] - mean) / stdev > MIN_STD_SCORE


def search_buildings(resolver: BuildingResolver, query: str) -> str:
    """Resolve a free-text building query to a single building ID.

    Raises:
        EmptyInput: if nothing matches ``query``.
        AmbiguousResult: if no hit stands out; every candidate is logged.
    """
    hits, total = resolver.search(query, SEARCH_SIZE)
    # Hits beyond the page count as zero-score hits.
    scores = [h.score for h in hits] + [0.0] * max(0, total - len(hits))
    if not scores:
        raise EmptyInput(f"no buildings match '{query}'")
    if confidence_in_first(scores):
        return hits[0].id
    for h in hits:
        logger.info("%s: %f", h.id, h.score)
    raise AmbiguousResult(query, total)
