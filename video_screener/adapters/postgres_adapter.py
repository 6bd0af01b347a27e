"""
Postgres implementation of the job store.

Each job is one row in video_jobs; metadata is kept as JSONB. Partial
updates are a single UPDATE ... RETURNING, so each one is atomic.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Tuple

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool

from ..errors import JobNotFoundError, PersistenceError
from ..logging_setup import log_exception
from ..models import VideoJob, VideoMetadata
from .base import JobStore, check_fields, check_listing, normalize_filters

logger = logging.getLogger("video_screener")

COLUMNS = (
    'id', 'title', 'path', 'size_bytes', 'mime_type', 'status', 'process_progress',
    'sensitivity_flag', 'metadata', 'duration', 'error_message', 'created_at', 'processed_at'
)

SCHEMA = """
    CREATE TABLE IF NOT EXISTS video_jobs (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL DEFAULT '',
        path TEXT NOT NULL,
        size_bytes BIGINT NOT NULL DEFAULT 0,
        mime_type TEXT NOT NULL DEFAULT 'video/mp4',
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'processing', 'completed', 'failed')),
        process_progress INTEGER NOT NULL DEFAULT 0
            CHECK (process_progress BETWEEN 0 AND 100),
        sensitivity_flag TEXT NOT NULL DEFAULT 'pending'
            CHECK (sensitivity_flag IN ('pending', 'safe', 'flagged')),
        metadata JSONB,
        duration DOUBLE PRECISION NOT NULL DEFAULT 0,
        error_message TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        processed_at TIMESTAMPTZ
    );
    CREATE INDEX IF NOT EXISTS video_jobs_status_idx ON video_jobs (status);
    CREATE INDEX IF NOT EXISTS video_jobs_flag_idx ON video_jobs (sensitivity_flag);
    CREATE INDEX IF NOT EXISTS video_jobs_created_idx ON video_jobs (created_at DESC);
"""


def _to_db(name: str, value: Any) -> Any:
    if name == 'metadata':
        if value is None:
            return None
        return Jsonb(value.to_dict() if isinstance(value, VideoMetadata) else value)
    if name in ('status', 'sensitivity_flag'):
        return getattr(value, 'value', value)
    return value


def _from_row(row: Dict[str, Any]) -> VideoJob:
    return VideoJob(**{name: row[name] for name in COLUMNS})


def _escape_like(text: str) -> str:
    return text.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')


def _where_clause(filters: Dict[str, Any]) -> Tuple[sql.Composable, Dict[str, Any]]:
    """WHERE clause and parameters for normalized listing filters"""
    clauses = []
    params: Dict[str, Any] = {}
    for name in ('status', 'sensitivity_flag'):
        if name in filters:
            clauses.append(sql.SQL("{} = {}").format(sql.Identifier(name), sql.Placeholder(name)))
            params[name] = _to_db(name, filters[name])
    if 'search' in filters:
        clauses.append(sql.SQL("title ILIKE {}").format(sql.Placeholder('search')))
        params['search'] = f"%{_escape_like(filters['search'])}%"
    
    if not clauses:
        return sql.SQL(""), params
    return sql.SQL(" WHERE ") + sql.SQL(" AND ").join(clauses), params


def build_find_query(filters: Dict[str, Any], sort_by: str, order: str,
                     skip: int, limit: int) -> Tuple[sql.Composed, Dict[str, Any]]:
    """SELECT for one page of jobs; sort_by and order must already be checked"""
    where, params = _where_clause(filters)
    query = sql.SQL(
        "SELECT * FROM video_jobs{} ORDER BY {} {} NULLS LAST, id LIMIT {} OFFSET {}"
    ).format(
        where,
        sql.Identifier(sort_by),
        sql.SQL(order.upper()),
        sql.Placeholder('_limit'),
        sql.Placeholder('_skip')
    )
    params.update({'_limit': limit, '_skip': skip})
    return query, params


def build_count_query(filters: Dict[str, Any]) -> Tuple[sql.Composed, Dict[str, Any]]:
    where, params = _where_clause(filters)
    return sql.SQL("SELECT COUNT(*) AS total FROM video_jobs{}").format(where), params


class PostgresJobStore(JobStore):
    """Postgres implementation of job store"""
    
    def __init__(self, database_url: str, pool_size: int = 5, timeout: int = 10):
        self.database_url = database_url
        self.pool_size = pool_size
        self.timeout = timeout
        self.pool = None
    
    def connect(self):
        """Initialize connection pool"""
        try:
            self.pool = ConnectionPool(
                self.database_url,
                min_size=1,
                max_size=self.pool_size,
                kwargs={
                    "connect_timeout": self.timeout,
                    "application_name": "video_screener"
                }
            )
            logger.info("Postgres job store connection pool initialized")
            self._bootstrap_schema()
        except Exception as e:
            log_exception(logger, f"Failed to connect to Postgres job store: {e}")
            raise
    
    def _bootstrap_schema(self):
        """Create the video_jobs table if it does not exist"""
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(SCHEMA)
                conn.commit()
                logger.info("Postgres job store schema validated")
    
    def create(self, job: VideoJob) -> VideoJob:
        values = {name: _to_db(name, getattr(job, name)) for name in COLUMNS}
        if values['created_at'] is None:
            values['created_at'] = datetime.now(timezone.utc)
        
        query = sql.SQL("INSERT INTO video_jobs ({}) VALUES ({}) RETURNING *").format(
            sql.SQL(', ').join(map(sql.Identifier, COLUMNS)),
            sql.SQL(', ').join(sql.Placeholder(name) for name in COLUMNS)
        )
        try:
            with self.pool.connection() as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(query, values)
                    row = cur.fetchone()
                    conn.commit()
        except psycopg.errors.UniqueViolation as e:
            raise ValueError(f"Job {job.id} already exists") from e
        except psycopg.Error as e:
            raise PersistenceError(f"Failed to create job {job.id}: {e}") from e
        
        logger.info(f"Created job {job.id} ({job.status.value})")
        return _from_row(row)
    
    def find_by_id(self, job_id: str) -> Optional[VideoJob]:
        try:
            with self.pool.connection() as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute("SELECT * FROM video_jobs WHERE id = %s", (job_id,))
                    row = cur.fetchone()
        except psycopg.Error as e:
            raise PersistenceError(f"Failed to load job {job_id}: {e}") from e
        return _from_row(row) if row else None
    
    def update_by_id(self, job_id: str, **fields: Any) -> VideoJob:
        check_fields(fields)
        if not fields:
            job = self.find_by_id(job_id)
            if job is None:
                raise JobNotFoundError(f"Job {job_id} not found")
            return job
        
        query = sql.SQL("UPDATE video_jobs SET {} WHERE id = {} RETURNING *").format(
            sql.SQL(', ').join(
                sql.SQL("{} = {}").format(sql.Identifier(name), sql.Placeholder(name))
                for name in fields
            ),
            sql.Placeholder('_job_id')
        )
        params = {name: _to_db(name, value) for name, value in fields.items()}
        params['_job_id'] = job_id
        
        try:
            with self.pool.connection() as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(query, params)
                    row = cur.fetchone()
                    conn.commit()
        except psycopg.Error as e:
            raise PersistenceError(f"Failed to update job {job_id}: {e}") from e
        
        if row is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return _from_row(row)
    
    def find(self, filters: Optional[Dict[str, Any]] = None, sort_by: str = 'created_at',
             order: str = 'desc', skip: int = 0, limit: int = 10) -> List[VideoJob]:
        filters = normalize_filters(filters)
        check_listing(sort_by, order, skip, limit)
        query, params = build_find_query(filters, sort_by, order, skip, limit)
        try:
            with self.pool.connection() as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(query, params)
                    rows = cur.fetchall()
        except psycopg.Error as e:
            raise PersistenceError(f"Failed to list jobs: {e}") from e
        return [_from_row(row) for row in rows]
    
    def count(self, filters: Optional[Dict[str, Any]] = None) -> int:
        query, params = build_count_query(normalize_filters(filters))
        try:
            with self.pool.connection() as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(query, params)
                    row = cur.fetchone()
        except psycopg.Error as e:
            raise PersistenceError(f"Failed to count jobs: {e}") from e
        return row['total']
    
    def get_stats(self) -> Dict[str, Any]:
        """Get aggregate counts for monitoring"""
        try:
            with self.pool.connection() as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute("""
                        SELECT
                            COUNT(*) AS total_videos,
                            COUNT(*) FILTER (WHERE status = 'pending') AS pending,
                            COUNT(*) FILTER (WHERE status = 'processing') AS processing,
                            COUNT(*) FILTER (WHERE status = 'completed') AS completed,
                            COUNT(*) FILTER (WHERE status = 'failed') AS failed,
                            COUNT(*) FILTER (WHERE sensitivity_flag = 'safe') AS safe,
                            COUNT(*) FILTER (WHERE sensitivity_flag = 'flagged') AS flagged,
                            COALESCE(SUM(size_bytes), 0) AS total_size
                        FROM video_jobs
                    """)
                    row = cur.fetchone()
        except psycopg.Error as e:
            raise PersistenceError(f"Failed to read job stats: {e}") from e

        return {
            'totalVideos': row['total_videos'],
            'pending': row['pending'],
            'processing': row['processing'],
            'completed': row['completed'],
            'failed': row['failed'],
            'safe': row['safe'],
            'flagged': row['flagged'],
            'totalSize': int(row['total_size'])
        }
    
    def ping(self) -> bool:
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
                cur.fetchone()
        return True
    
    def close(self):
        """Close connection pool"""
        if self.pool:
            self.pool.close()
            logger.info("Postgres job store connection pool closed")
