"""SQLite database for the global AI config, patients, analyses and RAG documents."""

from __future__ import annotations

import json
import os
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable

import platformdirs


def utc_now() -> str:
    """Return current UTC time as ISO 8601 string."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


_SCHEMA = """
CREATE TABLE IF NOT EXISTS global_ai_config (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    config TEXT NOT NULL,
    version TEXT NOT NULL,
    last_updated_by TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS patients (
    id TEXT PRIMARY KEY,
    company_id TEXT NOT NULL,
    name TEXT NOT NULL,
    age INTEGER,
    life_cycle TEXT,
    main_symptoms TEXT,
    menstrual_cycle TEXT,
    medical_history TEXT,
    constitution TEXT,
    lifestyle TEXT,
    treatment_goals TEXT,
    email TEXT,
    phone TEXT,
    created_by TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_patients_company ON patients(company_id);

CREATE TABLE IF NOT EXISTS analyses (
    id TEXT PRIMARY KEY,
    company_id TEXT NOT NULL,
    professional_id TEXT NOT NULL,
    patient_id TEXT NOT NULL,
    analysis_type TEXT NOT NULL,
    status TEXT NOT NULL,
    input_data TEXT,
    analysis TEXT,
    raw_output TEXT,
    ai_metadata TEXT,
    rag_metadata TEXT,
    error_category TEXT,
    error_message TEXT,
    review_notes TEXT,
    reviewed_by TEXT,
    reviewed_at TEXT,
    decided_by TEXT,
    decided_at TEXT,
    delivery TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_analyses_company ON analyses(company_id, created_at);
CREATE INDEX IF NOT EXISTS idx_analyses_patient ON analyses(company_id, patient_id);

CREATE TABLE IF NOT EXISTS rag_documents (
    id TEXT PRIMARY KEY,
    company_id TEXT NOT NULL,
    name TEXT NOT NULL,
    category TEXT,
    content TEXT NOT NULL,
    chunk_count INTEGER NOT NULL DEFAULT 0,
    created_by TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_rag_documents_company ON rag_documents(company_id);

CREATE TABLE IF NOT EXISTS rag_chunks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    document_id TEXT NOT NULL REFERENCES rag_documents(id),
    company_id TEXT NOT NULL,
    category TEXT,
    chunk_index INTEGER NOT NULL,
    content TEXT NOT NULL,
    embedding TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_rag_chunks_company ON rag_chunks(company_id, category);
"""

_PATIENT_JSON = ("main_symptoms", "medical_history", "lifestyle", "treatment_goals")
_PATIENT_COLUMNS = (
    "name", "age", "life_cycle", "main_symptoms", "menstrual_cycle",
    "medical_history", "constitution", "lifestyle", "treatment_goals",
    "email", "phone",
)

_ANALYSIS_JSON = ("input_data", "analysis", "ai_metadata", "rag_metadata", "delivery")
_ANALYSIS_UPDATABLE = (
    "status", "analysis", "raw_output", "ai_metadata", "rag_metadata",
    "error_category", "error_message", "review_notes", "reviewed_by",
    "reviewed_at", "decided_by", "decided_at", "delivery",
)


def _get_db_path() -> str:
    """Return OS-appropriate path for lyz.db, or LYZ_DB_PATH when set."""
    override = os.getenv("LYZ_DB_PATH")
    if override:
        return override
    data_dir = platformdirs.user_data_dir("Lyz")
    os.makedirs(data_dir, exist_ok=True)
    return os.path.join(data_dir, "lyz.db")


def _encode(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False)


def _decode_row(row: sqlite3.Row, json_columns: Iterable[str]) -> dict[str, Any]:
    result = dict(row)
    for col in json_columns:
        raw = result.get(col)
        if isinstance(raw, str):
            result[col] = json.loads(raw)
    return result


class Database:
    """SQLite-backed storage. Every tenant-data query is scoped by company_id."""

    def __init__(self, db_path: str | None = None) -> None:
        self._db_path = db_path or _get_db_path()
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def _init_db(self) -> None:
        conn = self._get_conn()
        try:
            conn.executescript(_SCHEMA)
            conn.commit()
        finally:
            conn.close()

    # --- Global AI config ---

    def get_global_config(self) -> dict[str, Any] | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM global_ai_config WHERE id = 1"
            ).fetchone()
            if not row:
                return None
            return _decode_row(row, ("config",))
        finally:
            conn.close()

    def create_global_config_if_missing(
        self,
        config: dict[str, Any],
        version: str,
    ) -> dict[str, Any]:
        """Insert the singleton row unless it exists; return the stored row."""
        conn = self._get_conn()
        try:
            now = utc_now()
            conn.execute(
                """INSERT OR IGNORE INTO global_ai_config (id, config, version, last_updated_by, created_at, updated_at)
                   VALUES (1, ?, ?, NULL, ?, ?)""",
                (_encode(config), version, now, now),
            )
            conn.commit()
            row = conn.execute(
                "SELECT * FROM global_ai_config WHERE id = 1"
            ).fetchone()
            return _decode_row(row, ("config",))
        finally:
            conn.close()

    def upsert_global_config(
        self,
        config: dict[str, Any],
        version: str,
        last_updated_by: str | None,
    ) -> dict[str, Any]:
        """Write the singleton row in one statement. created_at survives updates."""
        conn = self._get_conn()
        try:
            now = utc_now()
            conn.execute(
                """INSERT INTO global_ai_config (id, config, version, last_updated_by, created_at, updated_at)
                   VALUES (1, ?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       config = excluded.config,
                       version = excluded.version,
                       last_updated_by = excluded.last_updated_by,
                       updated_at = excluded.updated_at""",
                (_encode(config), version, last_updated_by, now, now),
            )
            conn.commit()
            row = conn.execute(
                "SELECT * FROM global_ai_config WHERE id = 1"
            ).fetchone()
            return _decode_row(row, ("config",))
        finally:
            conn.close()

    # --- Patients ---

    def create_patient(
        self,
        company_id: str,
        data: dict[str, Any],
        created_by: str | None = None,
    ) -> dict[str, Any]:
        conn = self._get_conn()
        try:
            pid = str(uuid.uuid4())
            now = utc_now()
            values = [
                _encode(data.get(col)) if col in _PATIENT_JSON else data.get(col)
                for col in _PATIENT_COLUMNS
            ]
            conn.execute(
                f"""INSERT INTO patients (id, company_id, {", ".join(_PATIENT_COLUMNS)}, created_by, created_at, updated_at)
                    VALUES (?, ?, {", ".join("?" for _ in _PATIENT_COLUMNS)}, ?, ?, ?)""",
                [pid, company_id, *values, created_by, now, now],
            )
            conn.commit()
            row = conn.execute("SELECT * FROM patients WHERE id = ?", (pid,)).fetchone()
            return _decode_row(row, _PATIENT_JSON)
        finally:
            conn.close()

    def get_patient(self, company_id: str, patient_id: str) -> dict[str, Any] | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM patients WHERE id = ? AND company_id = ?",
                (patient_id, company_id),
            ).fetchone()
            return _decode_row(row, _PATIENT_JSON) if row else None
        finally:
            conn.close()

    def list_patients(
        self,
        company_id: str,
        offset: int = 0,
        limit: int = 50,
        search: str | None = None,
    ) -> tuple[list[dict[str, Any]], int]:
        conn = self._get_conn()
        try:
            conditions = ["company_id = ?"]
            params: list[Any] = [company_id]
            if search:
                like = f"%{search}%"
                conditions.append("(name LIKE ? OR email LIKE ?)")
                params.extend([like, like])
            where_clause = " WHERE " + " AND ".join(conditions)

            total = conn.execute(
                f"SELECT COUNT(*) as cnt FROM patients{where_clause}", params,
            ).fetchone()["cnt"]
            rows = conn.execute(
                f"""SELECT * FROM patients{where_clause}
                    ORDER BY name COLLATE NOCASE
                    LIMIT ? OFFSET ?""",
                params + [limit, offset],
            ).fetchall()
            return [_decode_row(r, _PATIENT_JSON) for r in rows], total
        finally:
            conn.close()

    def update_patient(
        self,
        company_id: str,
        patient_id: str,
        fields: dict[str, Any],
    ) -> dict[str, Any] | None:
        updates = {k: v for k, v in fields.items() if k in _PATIENT_COLUMNS}
        conn = self._get_conn()
        try:
            if updates:
                assignments = ", ".join(f"{col} = ?" for col in updates)
                params = [
                    _encode(v) if col in _PATIENT_JSON else v
                    for col, v in updates.items()
                ]
                conn.execute(
                    f"UPDATE patients SET {assignments}, updated_at = ? WHERE id = ? AND company_id = ?",
                    params + [utc_now(), patient_id, company_id],
                )
                conn.commit()
            row = conn.execute(
                "SELECT * FROM patients WHERE id = ? AND company_id = ?",
                (patient_id, company_id),
            ).fetchone()
            return _decode_row(row, _PATIENT_JSON) if row else None
        finally:
            conn.close()

    # --- Analyses ---

    def create_analysis(
        self,
        company_id: str,
        professional_id: str,
        patient_id: str,
        analysis_type: str,
        input_data: dict[str, Any],
        status: str = "draft",
    ) -> dict[str, Any]:
        conn = self._get_conn()
        try:
            aid = str(uuid.uuid4())
            now = utc_now()
            conn.execute(
                """INSERT INTO analyses (id, company_id, professional_id, patient_id, analysis_type, status, input_data, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    aid, company_id, professional_id, patient_id,
                    analysis_type, status, _encode(input_data), now, now,
                ),
            )
            conn.commit()
            row = conn.execute("SELECT * FROM analyses WHERE id = ?", (aid,)).fetchone()
            return _decode_row(row, _ANALYSIS_JSON)
        finally:
            conn.close()

    def get_analysis(self, company_id: str, analysis_id: str) -> dict[str, Any] | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM analyses WHERE id = ? AND company_id = ?",
                (analysis_id, company_id),
            ).fetchone()
            return _decode_row(row, _ANALYSIS_JSON) if row else None
        finally:
            conn.close()

    def list_analyses(
        self,
        company_id: str,
        patient_id: str | None = None,
        analysis_type: str | None = None,
        statuses: Iterable[str] | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[dict[str, Any]], int]:
        conn = self._get_conn()
        try:
            conditions = ["company_id = ?"]
            params: list[Any] = [company_id]
            if patient_id:
                conditions.append("patient_id = ?")
                params.append(patient_id)
            if analysis_type:
                conditions.append("analysis_type = ?")
                params.append(analysis_type)
            status_list = list(statuses or [])
            if status_list:
                conditions.append(
                    f"status IN ({', '.join('?' for _ in status_list)})"
                )
                params.extend(status_list)
            where_clause = " WHERE " + " AND ".join(conditions)

            total = conn.execute(
                f"SELECT COUNT(*) as cnt FROM analyses{where_clause}", params,
            ).fetchone()["cnt"]
            rows = conn.execute(
                f"""SELECT * FROM analyses{where_clause}
                    ORDER BY created_at DESC, rowid DESC
                    LIMIT ? OFFSET ?""",
                params + [limit, offset],
            ).fetchall()
            return [_decode_row(r, _ANALYSIS_JSON) for r in rows], total
        finally:
            conn.close()

    def update_analysis(
        self,
        company_id: str,
        analysis_id: str,
        fields: dict[str, Any],
        expected_status: str | Iterable[str] | None = None,
    ) -> bool:
        """Update columns of one analysis.

        When ``expected_status`` is given the write only happens if the row is
        still in that status (or one of those statuses). Returns False when no
        row matched, so a concurrent status change is detectable.
        """
        updates = {k: v for k, v in fields.items() if k in _ANALYSIS_UPDATABLE}
        unknown = set(fields) - set(updates)
        if unknown:
            raise ValueError(f"Not updatable: {', '.join(sorted(unknown))}")

        assignments = ", ".join(f"{col} = ?" for col in updates)
        params: list[Any] = [
            _encode(v) if col in _ANALYSIS_JSON else v for col, v in updates.items()
        ]
        sql = f"UPDATE analyses SET {assignments}{', ' if assignments else ''}updated_at = ? WHERE id = ? AND company_id = ?"
        params += [utc_now(), analysis_id, company_id]

        if expected_status is not None:
            expected = [expected_status] if isinstance(expected_status, str) else list(expected_status)
            sql += f" AND status IN ({', '.join('?' for _ in expected)})"
            params.extend(expected)

        conn = self._get_conn()
        try:
            cursor = conn.execute(sql, params)
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    # --- RAG documents ---

    def save_rag_document(
        self,
        company_id: str,
        name: str,
        content: str,
        chunks: list[tuple[str, list[float]]],
        category: str | None = None,
        created_by: str | None = None,
    ) -> dict[str, Any]:
        """Store a document and its embedded chunks in one transaction."""
        conn = self._get_conn()
        try:
            did = str(uuid.uuid4())
            conn.execute(
                """INSERT INTO rag_documents (id, company_id, name, category, content, chunk_count, created_by, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (did, company_id, name, category, content, len(chunks), created_by, utc_now()),
            )
            conn.executemany(
                """INSERT INTO rag_chunks (document_id, company_id, category, chunk_index, content, embedding)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                [
                    (did, company_id, category, i, text, json.dumps(embedding))
                    for i, (text, embedding) in enumerate(chunks)
                ],
            )
            conn.commit()
            row = conn.execute(
                "SELECT id, company_id, name, category, chunk_count, created_by, created_at FROM rag_documents WHERE id = ?",
                (did,),
            ).fetchone()
            return dict(row)
        finally:
            conn.close()

    def list_rag_documents(
        self,
        company_id: str,
        category: str | None = None,
    ) -> list[dict[str, Any]]:
        conn = self._get_conn()
        try:
            sql = "SELECT id, company_id, name, category, chunk_count, created_by, created_at FROM rag_documents WHERE company_id = ?"
            params: list[Any] = [company_id]
            if category:
                sql += " AND category = ?"
                params.append(category)
            rows = conn.execute(sql + " ORDER BY created_at DESC", params).fetchall()
            return [dict(r) for r in rows]
        finally:
            conn.close()

    def list_rag_chunks(
        self,
        company_id: str,
        category: str | None = None,
    ) -> list[dict[str, Any]]:
        """Chunks with decoded embeddings and their document name."""
        conn = self._get_conn()
        try:
            sql = """SELECT c.document_id, c.chunk_index, c.content, c.embedding, d.name AS document_name
                     FROM rag_chunks c JOIN rag_documents d ON d.id = c.document_id
                     WHERE c.company_id = ?"""
            params: list[Any] = [company_id]
            if category:
                sql += " AND c.category = ?"
                params.append(category)
            rows = conn.execute(sql, params).fetchall()
            return [_decode_row(r, ("embedding",)) for r in rows]
        finally:
            conn.close()


_db_instance: Database | None = None


def get_db() -> Database:
    """Return the module-level Database singleton."""
    global _db_instance
    if _db_instance is None:
        _db_instance = Database()
    return _db_instance
