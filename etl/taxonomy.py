import os
from typing import Optional, Sequence

import psycopg
from dotenv import load_dotenv
from loguru import logger

from reconcile.store import TaxonomySnapshot

load_dotenv()

log = logger.bind(tags=['taxonomy-db'])

SPECIES_RANKS = ('species', 'subspecies', 'variety', 'form')


def get_db_connection() -> psycopg.Connection:
    """Create a new PostgreSQL connection from POSTGRES_* settings"""
    missing = [var for var in ('POSTGRES_DB', 'POSTGRES_USER', 'POSTGRES_PASSWORD') if not os.getenv(var)]
    if missing:
        raise ValueError(f"Missing required environment variables: {missing}")

    return psycopg.connect(
        host=os.getenv('POSTGRES_HOST', 'localhost'),
        port=os.getenv('POSTGRES_PORT', '5432'),
        dbname=os.getenv('POSTGRES_DB'),
        user=os.getenv('POSTGRES_USER'),
        password=os.getenv('POSTGRES_PASSWORD'),
        connect_timeout=30
    )


def load_snapshot_from_postgres(
        conn,
        schema_name: str = 'taxonomy',
        ranks: Sequence[str] = SPECIES_RANKS,
        version: Optional[str] = None
    ) -> TaxonomySnapshot:
    """
    Snapshot from the taxa table: accepted taxa are canonical, synonyms
    hang off their accepted taxon through parent_id.
    """
    query = f"""
        SELECT a.name AS canonical, s.name AS synonym
        FROM {schema_name}.taxa a
        LEFT JOIN {schema_name}.taxa s
          ON s.parent_id = a.id AND s.status = 'synonym'
        WHERE a.status = 'accepted'
          AND a.rank::text = ANY(%s)
          AND a.name IS NOT NULL
        ORDER BY a.name, s.name
    """

    with conn.cursor() as cur:
        cur.execute(query, (list(ranks),))
        rows = cur.fetchall()

    log.info(f"Fetched {len(rows):,} accepted/synonym rows from {schema_name}.taxa")
    return TaxonomySnapshot.from_pairs(rows, version=version or f"postgres:{schema_name}.taxa")


def main():
    conn = get_db_connection()
    try:
        snapshot = load_snapshot_from_postgres(conn)
    finally:
        conn.close()

    log.success(f"Snapshot {snapshot.version}: {len(snapshot):,} canonical names (fingerprint {snapshot.fingerprint[:12]})")


if __name__ == "__main__":
    main()
