"""
同步历史存储 - 使用 SQLite 本地存储每次运行及各表结果
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence, Union

from retail_sync.models.status import SyncRunResult, TableResult


class RunHistoryStore:
    """
    同步历史管理器

    记录每次同步运行（触发方式、最终状态、错误）以及每张表的读取/上传行数，
    供 status 命令和运行时统计使用。
    """

    def __init__(self, db_path: Union[str, Path] = "sync_history.db"):
        """
        参数:
            db_path: 存储数据库路径，默认 sync_history.db
        """
        self.db_path = Path(db_path)
        self._ensure_tables()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """打开连接，成功时提交，始终关闭"""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _ensure_tables(self) -> None:
        with self._connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS sync_runs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    source TEXT NOT NULL,
                    trigger TEXT NOT NULL,
                    state TEXT NOT NULL DEFAULT 'running',
                    tables_requested TEXT,
                    rows_uploaded INTEGER NOT NULL DEFAULT 0,
                    error TEXT,
                    started_at TIMESTAMP NOT NULL,
                    finished_at TIMESTAMP
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS table_syncs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_id INTEGER NOT NULL REFERENCES sync_runs(id),
                    table_name TEXT NOT NULL,
                    status TEXT NOT NULL,
                    rows_read INTEGER NOT NULL DEFAULT 0,
                    rows_uploaded INTEGER NOT NULL DEFAULT 0,
                    endpoint TEXT,
                    error TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS sync_errors (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_id INTEGER,
                    table_name TEXT,
                    error_type TEXT NOT NULL,
                    error_message TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_runs_source
                    ON sync_runs(source, started_at)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_table_syncs_run
                    ON table_syncs(run_id)
            """)

    # ========================================================================
    # 运行记录
    # ========================================================================

    def start_run(
        self,
        source: str,
        trigger: str,
        tables: Sequence[str],
        started_at: Optional[datetime] = None
    ) -> int:
        """
        记录一次运行的开始

        返回:
            运行记录 ID
        """
        with self._connection() as conn:
            cursor = conn.execute("""
                INSERT INTO sync_runs (source, trigger, tables_requested, started_at)
                VALUES (?, ?, ?, ?)
            """, (
                source,
                trigger,
                json.dumps(list(tables)),
                (started_at or datetime.now()).isoformat()
            ))
            return cursor.lastrowid or 0

    def record_table(self, run_id: int, result: TableResult) -> None:
        """记录单表结果"""
        with self._connection() as conn:
            conn.execute("""
                INSERT INTO table_syncs
                    (run_id, table_name, status, rows_read, rows_uploaded, endpoint, error)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                run_id,
                result.table,
                result.status.value,
                result.rows_read,
                result.rows_uploaded,
                result.endpoint,
                result.error
            ))

    def finish_run(self, run_id: int, result: SyncRunResult) -> None:
        """记录运行结束时的状态和上传总数"""
        uploaded = sum(t.rows_uploaded for t in result.tables)
        with self._connection() as conn:
            conn.execute("""
                UPDATE sync_runs
                SET state = ?, rows_uploaded = ?, error = ?, finished_at = ?
                WHERE id = ?
            """, (
                result.state.value,
                uploaded,
                result.error,
                (result.finished_at or datetime.now()).isoformat(),
                run_id
            ))

    def last_run(self, source: Optional[str] = None) -> Optional[dict[str, Any]]:
        """最近一次运行（含各表结果）"""
        runs = self.list_runs(limit=1, source=source)
        if not runs:
            return None

        run = runs[0]
        with self._connection() as conn:
            rows = conn.execute("""
                SELECT table_name, status, rows_read, rows_uploaded, endpoint, error
                FROM table_syncs
                WHERE run_id = ?
                ORDER BY id
            """, (run["id"],)).fetchall()
        run["tables"] = [dict(row) for row in rows]
        return run

    def list_runs(self, limit: int = 10, source: Optional[str] = None) -> List[dict[str, Any]]:
        """按开始时间倒序列出运行记录"""
        with self._connection() as conn:
            if source:
                rows = conn.execute("""
                    SELECT id, source, trigger, state, tables_requested, rows_uploaded,
                           error, started_at, finished_at
                    FROM sync_runs
                    WHERE source = ?
                    ORDER BY id DESC
                    LIMIT ?
                """, (source, limit)).fetchall()
            else:
                rows = conn.execute("""
                    SELECT id, source, trigger, state, tables_requested, rows_uploaded,
                           error, started_at, finished_at
                    FROM sync_runs
                    ORDER BY id DESC
                    LIMIT ?
                """, (limit,)).fetchall()

        runs = []
        for row in rows:
            run = dict(row)
            run["tables_requested"] = json.loads(run["tables_requested"] or "[]")
            runs.append(run)
        return runs

    # ========================================================================
    # 错误日志
    # ========================================================================

    def log_error(
        self,
        run_id: Optional[int],
        table_name: Optional[str],
        error_type: str,
        error_message: str
    ) -> int:
        """
        记录同步错误

        返回:
            错误记录 ID
        """
        with self._connection() as conn:
            cursor = conn.execute("""
                INSERT INTO sync_errors (run_id, table_name, error_type, error_message)
                VALUES (?, ?, ?, ?)
            """, (run_id, table_name, error_type, error_message))
            return cursor.lastrowid or 0

    def list_errors(self, limit: int = 20) -> List[dict[str, Any]]:
        with self._connection() as conn:
            rows = conn.execute("""
                SELECT id, run_id, table_name, error_type, error_message, created_at
                FROM sync_errors
                ORDER BY id DESC
                LIMIT ?
            """, (limit,)).fetchall()
        return [dict(row) for row in rows]

    # ========================================================================
    # 统计信息
    # ========================================================================

    def table_totals(self, source: Optional[str] = None) -> dict[str, dict[str, Any]]:
        """各表累计上传行数与最后成功同步时间"""
        query = """
            SELECT t.table_name AS table_name,
                   SUM(t.rows_uploaded) AS rows_uploaded,
                   MAX(CASE WHEN t.status = 'synced' THEN r.finished_at END) AS last_synced_at
            FROM table_syncs t
            JOIN sync_runs r ON r.id = t.run_id
        """
        params: tuple[Any, ...] = ()
        if source:
            query += " WHERE r.source = ?"
            params = (source,)
        query += " GROUP BY t.table_name"

        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()

        return {
            row["table_name"]: {
                "rows_uploaded": row["rows_uploaded"] or 0,
                "last_synced_at": row["last_synced_at"],
            }
            for row in rows
        }
