from __future__ import annotations

from typing import Any

from video_transcribe_mcp.db.database import Database


class TranscriptsRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    def get_by_job_id(self, job_id: str) -> dict[str, Any] | None:
        row = self.db.conn.execute(
            "SELECT * FROM transcripts WHERE job_id = ? LIMIT 1",
            (job_id,),
        ).fetchone()
        return dict(row) if row is not None else None

    def get_by_normalized_url(self, normalized_url: str) -> dict[str, Any] | None:
        row = self.db.conn.execute(
            "SELECT * FROM transcripts WHERE normalized_url = ? LIMIT 1",
            (normalized_url,),
        ).fetchone()
        return dict(row) if row is not None else None

    def upsert(
        self,
        *,
        job_id: str,
        normalized_url: str,
        video_url: str,
        path: str,
        transcript_text: str,
        language: str | None,
        method: str | None,
        chunk_count: int | None,
        confidence: float | None,
        word_count: int | None,
        segment_count: int | None,
    ) -> None:
        with self.db.lock:
            # A re-transcription of the same URL replaces the earlier row.
            self.db.conn.execute(
                """
                DELETE FROM transcripts_fts WHERE job_id IN (
                    SELECT job_id FROM transcripts WHERE normalized_url = ? AND job_id != ?
                )
                """,
                (normalized_url, job_id),
            )
            self.db.conn.execute(
                "DELETE FROM transcripts WHERE normalized_url = ? AND job_id != ?",
                (normalized_url, job_id),
            )
            self.db.conn.execute(
                """
                INSERT INTO transcripts(
                    job_id, normalized_url, video_url, language, method, chunk_count,
                    confidence, word_count, segment_count, transcribed_at, path
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, datetime('now'), ?)
                ON CONFLICT(job_id) DO UPDATE SET
                    normalized_url = excluded.normalized_url,
                    video_url = excluded.video_url,
                    language = excluded.language,
                    method = excluded.method,
                    chunk_count = excluded.chunk_count,
                    confidence = excluded.confidence,
                    word_count = excluded.word_count,
                    segment_count = excluded.segment_count,
                    transcribed_at = datetime('now'),
                    path = excluded.path
                """,
                (
                    job_id,
                    normalized_url,
                    video_url,
                    language,
                    method,
                    chunk_count,
                    confidence,
                    word_count,
                    segment_count,
                    path,
                ),
            )
            self.db.conn.execute("DELETE FROM transcripts_fts WHERE job_id = ?", (job_id,))
            self.db.conn.execute(
                "INSERT INTO transcripts_fts(job_id, transcript_text) VALUES (?, ?)",
                (job_id, transcript_text),
            )
            self.db.conn.commit()

    def list_transcripts(
        self,
        *,
        method: str | None = None,
        language: str | None = None,
        limit: int = 20,
    ) -> list[dict[str, Any]]:
        query = "SELECT * FROM transcripts"
        clauses: list[str] = []
        params: list[Any] = []

        if method:
            clauses.append("method = ?")
            params.append(method)
        if language:
            clauses.append("language = ?")
            params.append(language)

        if clauses:
            query += " WHERE " + " AND ".join(clauses)

        query += " ORDER BY transcribed_at DESC LIMIT ?"
        params.append(max(1, min(limit, 100)))

        rows = self.db.conn.execute(query, tuple(params)).fetchall()
        return [dict(row) for row in rows]

    def search(self, query: str, limit: int = 10) -> list[dict[str, Any]]:
        rows = self.db.conn.execute(
            """
            SELECT
                t.job_id,
                t.video_url,
                t.language,
                t.method,
                t.path,
                t.transcribed_at,
                snippet(transcripts_fts, 1, '[', ']', ' ... ', 20) AS snippet,
                bm25(transcripts_fts) AS score
            FROM transcripts_fts
            JOIN transcripts AS t ON t.job_id = transcripts_fts.job_id
            WHERE transcripts_fts MATCH ?
            ORDER BY score
            LIMIT ?
            """,
            (query, max(1, min(limit, 50))),
        ).fetchall()
        return [dict(row) for row in rows]
