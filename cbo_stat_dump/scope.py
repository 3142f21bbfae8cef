"""Find the relations a query touches from its EXPLAIN plan tree."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterator, List, Set

from .errors import PlanParseError

logger = logging.getLogger(__name__)

COST_MODEL_PARAMETER = "yb_enable_base_scans_cost_model"


def iter_plan_nodes(plan: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
    """Yield a plan node and all of its descendants, depth first."""
    yield plan
    for child in plan.get("Plans", []) or []:
        yield from iter_plan_nodes(child)


def extract_relations(plan: Dict[str, Any]) -> Set[str]:
    """Collect ``schema.relation`` names from every node of a plan tree.

    Nodes without a relation name (joins, aggregates, ...) contribute
    nothing; nodes without a schema contribute the bare relation name.
    """
    relations: Set[str] = set()
    for node in iter_plan_nodes(plan):
        name = node.get("Relation Name")
        if not name:
            continue
        schema = node.get("Schema")
        relations.add(f"{schema}.{name}" if schema else name)
    return relations


def parse_explain_output(result: List[Any]) -> Dict[str, Any]:
    """Return the root ``Plan`` node of EXPLAIN (FORMAT JSON) output.

    psycopg2 decodes the json column already; some servers (and older
    drivers) hand back text, possibly split over several rows.
    """
    if len(result) == 1 and isinstance(result[0], list):
        document = result[0]
    else:
        try:
            document = json.loads("".join(str(line) for line in result))
        except json.JSONDecodeError as e:
            raise PlanParseError("scope", f"EXPLAIN output is not valid JSON: {e}") from e

    if not isinstance(document, list) or not document or not isinstance(document[0], dict):
        raise PlanParseError("scope", "EXPLAIN output is not a JSON plan list")
    plan = document[0].get("Plan")
    if not isinstance(plan, dict):
        raise PlanParseError("scope", "EXPLAIN output has no Plan node")
    return plan


class RelationScopeResolver:
    """Resolve the relation scope of a query on a live connection.

    Args:
        conn: Open connection (see ``PostgresConnection``).
        enable_base_scans_cost_model: Switch on YugabyteDB's base-scans cost
            model for the session before explaining. The setting stays on
            for the rest of the session.
    """

    def __init__(self, conn, enable_base_scans_cost_model: bool = False):
        self.conn = conn
        self.enable_base_scans_cost_model = enable_base_scans_cost_model

    def prepare_session(self) -> None:
        if self.enable_base_scans_cost_model:
            logger.debug("Setting %s=ON", COST_MODEL_PARAMETER)
            self.conn.set_parameter(COST_MODEL_PARAMETER, "ON")

    def resolve(self, query: str) -> Set[str]:
        """Return the deduplicated set of relations referenced by ``query``."""
        self.prepare_session()
        result = self.conn.fetch_column(f"EXPLAIN (VERBOSE, FORMAT JSON) {query}")
        relations = extract_relations(parse_explain_output(result))
        logger.info("Query references %d relation(s): %s", len(relations), ", ".join(sorted(relations)))
        return relations
