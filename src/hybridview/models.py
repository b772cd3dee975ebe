import datetime
import re
from dataclasses import dataclass, field
from typing import Callable

EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)

IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9_]+$")

QueryGenerator = Callable[[datetime.datetime, bool], str]
IndexGenerator = Callable[[str], str]


def validate_identifier(identifier: str) -> str:
    if not IDENTIFIER_RE.match(identifier):
        raise ValueError(
            f"Invalid view identifier {identifier!r}, only letters, digits and underscores are allowed"
        )
    return identifier


@dataclass(frozen=True)
class ViewDefinition:
    """What a caller registers: a logical name, the aggregation query and its indexes.

    `query_generator(after, materialized)` must return a query that

    - exposes a `window_end` column marking the end of each row's aggregation window, which is
      used to find the crossover between materialized and live data
    - filters input rows to `timestamp > after`, so that the live part only scans the tail
    - (optionally) filters to `timestamp < NOW()` when `materialized` is true, so that rows with
      timestamps in the future don't push the crossover time forward

    Example:

        SELECT
            count(*) AS view_count,
            post_id,
            date_trunc('day', "timestamp") + interval '1 day' AS window_end
        FROM page_view
        WHERE "timestamp" > '{after.isoformat()}'
              {"AND timestamp < NOW()" if materialized else ""}
        GROUP BY post_id, date_trunc('day', "timestamp")

    Each index generator receives the concrete materialized view name and returns an index
    statement. At least one of them must create a UNIQUE index, otherwise the view can't be
    refreshed CONCURRENTLY. They should all use "IF NOT EXISTS". PostgreSQL truncates index names
    to 63 characters, and with a long identifier `f"{name}_a_long_suffix"` can collapse onto another
    index that "IF NOT EXISTS" then skips; build names with `identity.index_name(name, suffix)`.
    """

    identifier: str
    query_generator: QueryGenerator
    index_generators: tuple[IndexGenerator, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        validate_identifier(self.identifier)
        # Accept any sequence, store a tuple
        object.__setattr__(self, "index_generators", tuple(self.index_generators))


@dataclass
class ActiveQuery:
    """A statement currently running in the database, as seen in pg_stat_activity"""

    pid: int
    duration: datetime.timedelta
    query: str


@dataclass
class ViewStatus:
    identifier: str
    materialized_view_name: str
    exists: bool
    crossover_time: datetime.datetime | None
