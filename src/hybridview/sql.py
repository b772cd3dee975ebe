"""SQL text used by HybridView.

Everything here is a pure function of its arguments so the exact statements can be asserted on
without a database.
"""

import datetime


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def timestamp_literal(value: datetime.datetime) -> str:
    # Left untyped so PostgreSQL casts it to whatever type window_end has
    return "'" + value.isoformat() + "'"


VIEW_EXISTS = """
    SELECT 1
    FROM pg_matviews
    WHERE matviewname = $1
"""

# The caller's own backend is excluded, its query text contains the pattern as a parameter
ACTIVE_QUERIES = """
    SELECT pid, now() - query_start AS duration, query
    FROM pg_stat_activity
    WHERE state = 'active' AND
          pid <> pg_backend_pid() AND
          query ~* $1
    ORDER BY query_start
"""

MATCHING_VIEWS = """
    SELECT matviewname
    FROM pg_matviews
    WHERE matviewname ~ $1
    ORDER BY matviewname
"""

MAINTENANCE = "VACUUM ANALYZE"


def active_query_pattern(verb: str, view_name: str) -> str:
    """Regular expression for `verb` ("CREATE" or "REFRESH") statements touching `view_name`"""
    return f"^\\s*{verb}\\s+MATERIALIZED\\s+VIEW.*{view_name}"


def create_view(view_name: str, query: str) -> str:
    return f"CREATE MATERIALIZED VIEW {quote_identifier(view_name)} AS ({query})"


def refresh_view(view_name: str, concurrently: bool = True) -> str:
    concurrently_sql = " CONCURRENTLY" if concurrently else ""
    return f"REFRESH MATERIALIZED VIEW{concurrently_sql} {quote_identifier(view_name)}"


def drop_view(view_name: str) -> str:
    return f"DROP MATERIALIZED VIEW IF EXISTS {quote_identifier(view_name)}"


def crossover_time(view_name: str) -> str:
    # Penultimate distinct window_end, the last window may still be filling up
    return f"""
        SELECT DISTINCT window_end
        FROM {quote_identifier(view_name)}
        ORDER BY window_end DESC
        LIMIT 1 OFFSET 1
    """


def live_query(live_subquery: str) -> str:
    return f"""
        SELECT
            *,
            'live' AS source
        FROM
            ({live_subquery}) AS live_subquery
    """


def hybrid_query(view_name: str, crossover: datetime.datetime, live_subquery: str) -> str:
    return f"""
        (
            SELECT
                *,
                'materialized' AS source
            FROM
                {quote_identifier(view_name)}
            WHERE
                window_end <= {timestamp_literal(crossover)}
        )
        UNION ALL
        (
            SELECT
                *,
                'live' AS source
            FROM
                ({live_subquery}) AS live_subquery
        )
    """


def select_all(query: str) -> str:
    return f"SELECT * FROM ({query}) AS hybrid"
