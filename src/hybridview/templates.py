"""View definitions written as Jinja2 SQL templates.

A view `<identifier>` lives in a directory as

- `<identifier>.sql.j2`: the aggregation query, rendered with `after` (an ISO-8601 string, UTC)
  and `materialized` (bool)
- `<identifier>.indexes.sql.j2` (optional): index statements separated by `;`, rendered with
  `view_name` and an `index_name(view_name, suffix)` helper that keeps index names unique
  within the 63 character identifier limit
"""

import datetime
from pathlib import Path

from jinja2 import Environment, StrictUndefined

from hybridview.identity import index_name
from hybridview.models import IndexGenerator, QueryGenerator, ViewDefinition

QUERY_SUFFIX = ".sql.j2"
INDEXES_SUFFIX = ".indexes.sql.j2"

_environment = Environment(undefined=StrictUndefined, keep_trailing_newline=True)
_environment.globals["index_name"] = index_name


def template_query_generator(text: str) -> QueryGenerator:
    template = _environment.from_string(text)

    def generate(after: datetime.datetime, materialized: bool) -> str:
        return template.render(after=after.isoformat(), materialized=materialized).strip()

    return generate


def _index_generator(statement: str) -> IndexGenerator:
    template = _environment.from_string(statement)

    def generate(view_name: str) -> str:
        return template.render(view_name=view_name)

    return generate


def template_index_generators(text: str) -> tuple[IndexGenerator, ...]:
    # One generator per statement, so a failing index doesn't take the others down with it
    statements = [statement.strip() for statement in text.split(";")]
    return tuple(_index_generator(statement) for statement in statements if statement)


def load_definitions(directory: Path) -> list[ViewDefinition]:
    if not directory.is_dir():
        raise FileNotFoundError(f"View template directory {directory} does not exist")

    definitions = []
    for query_file in sorted(directory.glob(f"*{QUERY_SUFFIX}")):
        if query_file.name.endswith(INDEXES_SUFFIX):
            continue
        identifier = query_file.name.removesuffix(QUERY_SUFFIX)
        indexes_file = directory / f"{identifier}{INDEXES_SUFFIX}"
        index_generators = (
            template_index_generators(indexes_file.read_text()) if indexes_file.exists() else ()
        )
        definitions.append(
            ViewDefinition(
                identifier=identifier,
                query_generator=template_query_generator(query_file.read_text()),
                index_generators=index_generators,
            )
        )
    return definitions
