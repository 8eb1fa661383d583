"""
Graph store for askgraph.

This module keeps an imported Roam graph in DuckDB and exposes the storage
query primitive used by the graph query engine: regex predicates over block
content, page limitation, and bounded-depth tree traversal rules.
"""

import duckdb
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from ..models import Block, Page, RoamBlock, RoamPage, DNP_UID_PATTERN
from .traversal import TraversalRule, rule_cte


# (uid, content, edit_time, page_title)
BlockRow = Tuple[str, str, int, str]


class GraphStore:
    """
    Manages the DuckDB database holding pages, blocks and the LLM call log.
    """

    def __init__(self, db_path: str = "askgraph.db"):
        """
        Initialize the graph store.

        Args:
            db_path: Path to the DuckDB database file, or ":memory:"
        """
        self.db_path = db_path
        self.connection = None

    def connect(self):
        """Establish connection to the database."""
        self.connection = duckdb.connect(self.db_path)

    def disconnect(self):
        """Close the database connection."""
        if self.connection:
            self.connection.close()
            self.connection = None

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()

    def _require_connection(self):
        if not self.connection:
            raise RuntimeError("Database connection not established")
        return self.connection

    def initialize_database(self):
        """
        Create all necessary tables if they don't exist.
        """
        conn = self._require_connection()

        conn.execute("""
            CREATE TABLE IF NOT EXISTS pages (
                uid VARCHAR PRIMARY KEY,
                title VARCHAR NOT NULL,
                create_time BIGINT DEFAULT 0,
                edit_time BIGINT DEFAULT 0
            )
        """)

        # Top level blocks have a NULL parent_uid
        conn.execute("""
            CREATE TABLE IF NOT EXISTS blocks (
                uid VARCHAR PRIMARY KEY,
                content VARCHAR NOT NULL,
                page_uid VARCHAR NOT NULL,
                parent_uid VARCHAR,
                child_order INTEGER DEFAULT 0,
                create_time BIGINT DEFAULT 0,
                edit_time BIGINT DEFAULT 0
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS blocks_parent_idx ON blocks (parent_uid)")

        # Create sequence for auto-incrementing call_id in ai_agent_calls
        conn.execute("CREATE SEQUENCE IF NOT EXISTS call_id_seq;")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS ai_agent_calls (
                call_id BIGINT PRIMARY KEY DEFAULT nextval('call_id_seq'),
                agent_name VARCHAR NOT NULL,
                input_data TEXT NOT NULL,
                system_prompt TEXT,
                user_prompt TEXT NOT NULL,
                model_name VARCHAR NOT NULL,
                raw_response TEXT NOT NULL,
                parsed_response TEXT,
                success BOOLEAN NOT NULL,
                error_message TEXT,
                execution_time_ms INTEGER,
                request_id VARCHAR,
                called_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_page(self, page: RoamPage) -> bool:
        """
        Add a page row, without its blocks.

        Returns:
            True if the page was added, False if it already existed
        """
        conn = self._require_connection()
        try:
            conn.execute("""
                INSERT INTO pages (uid, title, create_time, edit_time)
                VALUES (?, ?, ?, ?)
            """, [
                page.uid,
                page.title,
                page.create_time or 0,
                page.edit_time or page.create_time or 0
            ])
            return True
        except duckdb.IntegrityError:
            # Page already exists
            return False

    def add_block_tree(self, page: RoamPage) -> int:
        """
        Insert every block of a page tree, keeping child order.

        Returns:
            Number of inserted blocks
        """
        conn = self._require_connection()
        rows = []

        def _collect(blocks: List[RoamBlock], parent_uid: Optional[str]):
            for order, block in enumerate(blocks):
                rows.append([
                    block.uid,
                    block.content,
                    page.uid,
                    parent_uid,
                    order,
                    block.create_time or 0,
                    block.edit_time or block.create_time or 0
                ])
                _collect(block.children, block.uid)

        _collect(page.children, None)
        if rows:
            conn.executemany("""
                INSERT OR REPLACE INTO blocks
                    (uid, content, page_uid, parent_uid, child_order, create_time, edit_time)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, rows)
        return len(rows)

    def import_pages(self, pages: Iterable[RoamPage]) -> Tuple[int, int]:
        """
        Import page trees into the store.

        Returns:
            Tuple of (pages added, blocks inserted)
        """
        page_count = 0
        block_count = 0
        for page in pages:
            if self.add_page(page):
                page_count += 1
            else:
                logging.warning(f"Page '{page.title}' ({page.uid}) already imported, refreshing its blocks")
                self._require_connection().execute("DELETE FROM blocks WHERE page_uid = ?", [page.uid])
            block_count += self.add_block_tree(page)
        logging.info(f"Imported {page_count} pages and {block_count} blocks")
        return page_count, block_count

    def clear(self):
        conn = self._require_connection()
        conn.execute("DELETE FROM blocks")
        conn.execute("DELETE FROM pages")

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    def count_blocks(self) -> int:
        conn = self._require_connection()
        return conn.execute("SELECT COUNT(*) FROM blocks").fetchone()[0]

    def get_block(self, uid: str) -> Optional[Block]:
        """
        Retrieve a block by uid.

        Args:
            uid: The block uid

        Returns:
            The block if found, None otherwise
        """
        conn = self._require_connection()
        result = conn.execute("""
            SELECT b.uid, b.content, b.page_uid, p.title, b.edit_time, b.parent_uid
            FROM blocks b
            JOIN pages p ON p.uid = b.page_uid
            WHERE b.uid = ?
        """, [uid]).fetchone()
        if not result:
            return None
        children = [child_uid for child_uid, _ in self.get_children(uid)]
        return Block(
            uid=result[0],
            content=result[1],
            page_uid=result[2],
            page_title=result[3],
            edit_time=result[4] or 0,
            parent_uid=result[5],
            children_uids=children
        )

    def get_page(self, uid: str) -> Optional[Page]:
        conn = self._require_connection()
        result = conn.execute(
            "SELECT uid, title, create_time, edit_time FROM pages WHERE uid = ?", [uid]
        ).fetchone()
        if result:
            return Page(uid=result[0], title=result[1], create_time=result[2] or 0, edit_time=result[3] or 0)
        return None

    def get_page_uid_of_block(self, uid: str) -> Optional[str]:
        conn = self._require_connection()
        result = conn.execute("SELECT page_uid FROM blocks WHERE uid = ?", [uid]).fetchone()
        return result[0] if result else None

    def get_children(self, uid: str) -> List[Tuple[str, str]]:
        """Ordered (uid, content) pairs of the direct children of a block or page."""
        conn = self._require_connection()
        if self.get_page(uid):
            rows = conn.execute("""
                SELECT uid, content FROM blocks
                WHERE page_uid = ? AND parent_uid IS NULL
                ORDER BY child_order
            """, [uid]).fetchall()
        else:
            rows = conn.execute("""
                SELECT uid, content FROM blocks
                WHERE parent_uid = ?
                ORDER BY child_order
            """, [uid]).fetchall()
        return [(row[0], row[1]) for row in rows]

    def get_first_child_content(self, uid: str) -> Optional[str]:
        children = self.get_children(uid)
        return children[0][1] if children else None

    def get_parent_uid(self, uid: str) -> Optional[str]:
        return self.get_parent_uids([uid]).get(uid)

    def get_parent_uids(self, uids: Sequence[str]) -> Dict[str, str]:
        """
        Batched direct parent lookup.

        Top level blocks have no block parent and are absent from the mapping.
        """
        if not uids:
            return {}
        conn = self._require_connection()
        rows = conn.execute("""
            SELECT uid, parent_uid FROM blocks
            WHERE uid IN (SELECT UNNEST(?::VARCHAR[])) AND parent_uid IS NOT NULL
        """, [list(uids)]).fetchall()
        return {row[0]: row[1] for row in rows}

    def get_path(self, uid: str) -> List[Tuple[str, str]]:
        """
        Ancestor blocks of a block, from the top level block down to its direct parent.
        """
        conn = self._require_connection()
        rows = conn.execute("""
            WITH RECURSIVE up(uid, content, parent_uid, lvl) AS (
                SELECT uid, content, parent_uid, 0 FROM blocks WHERE uid = ?
                UNION ALL
                SELECT b.uid, b.content, b.parent_uid, up.lvl + 1
                FROM blocks b
                JOIN up ON b.uid = up.parent_uid
            )
            SELECT uid, content FROM up WHERE lvl > 0 ORDER BY lvl DESC
        """, [uid]).fetchall()
        return [(row[0], row[1]) for row in rows]

    def get_ancestor_uids(self, uid: str) -> List[str]:
        """Uids of every block on the ancestor path, plus the page uid."""
        ancestors = [ancestor_uid for ancestor_uid, _ in self.get_path(uid)]
        page_uid = self.get_page_uid_of_block(uid)
        if page_uid:
            ancestors.insert(0, page_uid)
        return ancestors

    def get_formatted_path(self, uid: str, max_depth: int = 6, word_limit: int = 30) -> str:
        """
        Breadcrumb of the ancestors of a block, each truncated to a word limit.
        """
        path = self.get_path(uid)[-max_depth:] if max_depth else self.get_path(uid)
        parts = []
        for _, content in path:
            words = content.split()
            text = " ".join(words[:word_limit])
            if len(words) > word_limit:
                text += "..."
            parts.append(text)
        return " > ".join(parts)

    def get_flattened_content(self, uid: str, max_levels: int = 3, with_dash: bool = True) -> str:
        """
        Indented text rendering of the children of a block, up to max_levels deep.
        """
        lines: List[str] = []

        def _walk(parent_uid: str, level: int):
            if level > max_levels:
                return
            for child_uid, content in self.get_children(parent_uid):
                prefix = "  " * level + ("- " if with_dash else "")
                lines.append(prefix + content)
                _walk(child_uid, level + 1)

        _walk(uid, 1)
        return ("\n" + "\n".join(lines)) if lines else ""

    # ------------------------------------------------------------------
    # Storage query primitive
    # ------------------------------------------------------------------

    def _page_clause(self, pages_limitation: Optional[str], params: list, page_alias: str = "pg") -> str:
        if not pages_limitation:
            return ""
        if pages_limitation == "dnp":
            params.append(DNP_UID_PATTERN)
            return f" AND regexp_matches({page_alias}.uid, ?)"
        params.append(pages_limitation)
        return f" AND regexp_matches({page_alias}.title, ?)"

    def blocks_matching(
        self,
        regexes: Sequence[str],
        exclude_regex: Optional[str] = None,
        pages_limitation: Optional[str] = None
    ) -> List[BlockRow]:
        """
        Blocks whose own content matches every regex and not the exclusion regex.

        Args:
            regexes: Regexes that must all match (conjunction)
            exclude_regex: Optional regex that must not match
            pages_limitation: None, "dnp", or a regex on page titles

        Returns:
            Rows of (uid, content, edit_time, page_title)
        """
        conn = self._require_connection()
        params: list = []
        where = []
        for regex in regexes:
            where.append("regexp_matches(b.content, ?)")
            params.append(regex)
        if exclude_regex:
            where.append("NOT regexp_matches(b.content, ?)")
            params.append(exclude_regex)
        query = f"""
            SELECT b.uid, b.content, b.edit_time, pg.title
            FROM blocks b
            JOIN pages pg ON pg.uid = b.page_uid
            WHERE {' AND '.join(where) if where else 'TRUE'}
        """
        query += self._page_clause(pages_limitation, params)
        query += " ORDER BY b.uid"
        return [tuple(row) for row in conn.execute(query, params).fetchall()]

    def uids_matching(self, uids: Sequence[str], regex: str) -> Set[str]:
        """Subset of uids whose own content matches regex."""
        if not uids:
            return set()
        conn = self._require_connection()
        rows = conn.execute("""
            SELECT uid FROM blocks
            WHERE uid IN (SELECT UNNEST(?::VARCHAR[])) AND regexp_matches(content, ?)
        """, [list(uids), regex]).fetchall()
        return {row[0] for row in rows}

    def descendants_matching(
        self,
        root_uids: Sequence[str],
        regex: str,
        rule: TraversalRule,
        exclude_regex: Optional[str] = None,
        limit_per_root: Optional[int] = None
    ) -> Dict[str, List[Tuple[str, str]]]:
        """
        Descendants of each root, within the traversal rule, matching regex.

        Returns:
            Mapping of root uid to (uid, content) pairs, nearest first
        """
        if not root_uids:
            return {}
        conn = self._require_connection()
        params: list = [list(root_uids), regex]
        exclude_str = ""
        if exclude_regex:
            exclude_str = "AND NOT regexp_matches(d.content, ?)"
            params.append(exclude_regex)
        qualify_str = ""
        if limit_per_root:
            qualify_str = "QUALIFY row_number() OVER (PARTITION BY t.root_uid ORDER BY t.depth, d.child_order, d.uid) <= ?"
            params.append(limit_per_root)
        query = f"""
            WITH RECURSIVE roots AS (SELECT DISTINCT UNNEST(?::VARCHAR[]) AS uid),
            {rule_cte(rule)}
            SELECT t.root_uid, d.uid, d.content
            FROM tree t
            JOIN blocks d ON d.uid = t.uid
            WHERE regexp_matches(d.content, ?) {exclude_str}
            {qualify_str}
            ORDER BY t.root_uid, t.depth, d.child_order, d.uid
        """
        matches: Dict[str, List[Tuple[str, str]]] = {}
        for root_uid, uid, content in conn.execute(query, params).fetchall():
            matches.setdefault(root_uid, []).append((uid, content))
        return matches

    def descendants_matching_all(
        self,
        root_uids: Sequence[str],
        regexes: Sequence[str],
        rule: TraversalRule,
        exclude_regex: Optional[str] = None,
        pages_limitation: Optional[str] = None
    ) -> List[BlockRow]:
        """
        Blocks below any of the roots whose own content matches every regex.

        Used by 'child < parent' queries, where the child side blocks are the result.
        """
        if not root_uids:
            return []
        conn = self._require_connection()
        params: list = [list(root_uids)]
        where = []
        for regex in regexes:
            where.append("regexp_matches(d.content, ?)")
            params.append(regex)
        if exclude_regex:
            where.append("NOT regexp_matches(d.content, ?)")
            params.append(exclude_regex)
        query = f"""
            WITH RECURSIVE roots AS (SELECT DISTINCT UNNEST(?::VARCHAR[]) AS uid),
            {rule_cte(rule)}
            SELECT DISTINCT d.uid, d.content, d.edit_time, pg.title
            FROM tree t
            JOIN blocks d ON d.uid = t.uid
            JOIN pages pg ON pg.uid = d.page_uid
            WHERE {' AND '.join(where) if where else 'TRUE'}
        """
        query += self._page_clause(pages_limitation, params)
        query += " ORDER BY d.uid"
        return [tuple(row) for row in conn.execute(query, params).fetchall()]

    def parents_with_matching_siblings(
        self,
        candidate_uids: Sequence[str],
        regexes: Sequence[str],
        exclude_regex: Optional[str] = None,
        pages_limitation: Optional[str] = None
    ) -> List[Tuple]:
        """
        Parents of candidate blocks having distinct children matching each regex.

        When an exclusion regex is given, neither the parent nor any of its
        children may match it.

        Returns:
            Rows of (uid, content, edit_time, page_title, child_uid0, child_content0, ...)
        """
        if not candidate_uids or not regexes:
            return []
        conn = self._require_connection()
        params: list = [list(candidate_uids)]
        child_cols = []
        joins = []
        where = []
        for i, regex in enumerate(regexes):
            joins.append(f"JOIN blocks c{i} ON c{i}.parent_uid = p.uid")
            child_cols.append(f"c{i}.uid, c{i}.content")
            where.append(f"regexp_matches(c{i}.content, ?)")
            params.append(regex)
            for j in range(i):
                where.append(f"c{j}.uid <> c{i}.uid")
        if exclude_regex:
            where.append("NOT regexp_matches(p.content, ?)")
            params.append(exclude_regex)
            where.append("""NOT EXISTS (
                SELECT 1 FROM blocks x
                WHERE x.parent_uid = p.uid AND regexp_matches(x.content, ?)
            )""")
            params.append(exclude_regex)
        query = f"""
            WITH candidates AS (SELECT DISTINCT UNNEST(?::VARCHAR[]) AS uid),
            parents AS (
                SELECT DISTINCT b.parent_uid AS uid
                FROM blocks b
                JOIN candidates ON candidates.uid = b.uid
                WHERE b.parent_uid IS NOT NULL
            )
            SELECT p.uid, p.content, p.edit_time, pg.title, {', '.join(child_cols)}
            FROM parents
            JOIN blocks p ON p.uid = parents.uid
            JOIN pages pg ON pg.uid = p.page_uid
            {' '.join(joins)}
            WHERE {' AND '.join(where)}
        """
        query += self._page_clause(pages_limitation, params)
        query += " ORDER BY p.uid, " + ", ".join(f"c{i}.child_order" for i in range(len(regexes)))
        return [tuple(row) for row in conn.execute(query, params).fetchall()]

    # ------------------------------------------------------------------
    # LLM call log
    # ------------------------------------------------------------------

    def log_ai_agent_call(
        self,
        agent_name: str,
        input_data: str,
        system_prompt: Optional[str],
        user_prompt: str,
        model_name: str,
        raw_response: str,
        parsed_response: Optional[str] = None,
        success: bool = True,
        error_message: Optional[str] = None,
        execution_time_ms: Optional[int] = None,
        request_id: Optional[str] = None
    ) -> Optional[int]:
        """
        Log an AI agent call to the database for reproducibility.
        """
        conn = self._require_connection()
        result = conn.execute("""
            INSERT INTO ai_agent_calls (
                agent_name, input_data, system_prompt, user_prompt, model_name,
                raw_response, parsed_response, success, error_message,
                execution_time_ms, request_id
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING call_id
        """, [
            agent_name, input_data, system_prompt, user_prompt, model_name,
            raw_response, parsed_response, success, error_message,
            execution_time_ms, request_id
        ]).fetchone()
        return result[0] if result else None

    def get_ai_agent_calls(
        self,
        agent_name: Optional[str] = None,
        request_id: Optional[str] = None,
        success_only: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict]:
        """
        Retrieve AI agent calls from the database.

        Args:
            agent_name: Filter by agent name (optional)
            request_id: Filter by search request (optional)
            success_only: Only return successful calls
            limit: Limit number of results

        Returns:
            List of AI agent call records
        """
        conn = self._require_connection()

        query = """
            SELECT call_id, agent_name, input_data, system_prompt, user_prompt,
                   model_name, raw_response, parsed_response, success, error_message,
                   execution_time_ms, request_id, called_at
            FROM ai_agent_calls
            WHERE 1=1
        """
        params = []

        if agent_name:
            query += " AND agent_name = ?"
            params.append(agent_name)

        if request_id:
            query += " AND request_id = ?"
            params.append(request_id)

        if success_only:
            query += " AND success = true"

        query += " ORDER BY call_id DESC"

        if limit:
            query += f" LIMIT {int(limit)}"

        results = conn.execute(query, params).fetchall()

        return [
            {
                "call_id": row[0],
                "agent_name": row[1],
                "input_data": row[2],
                "system_prompt": row[3],
                "user_prompt": row[4],
                "model_name": row[5],
                "raw_response": row[6],
                "parsed_response": row[7],
                "success": row[8],
                "error_message": row[9],
                "execution_time_ms": row[10],
                "request_id": row[11],
                "called_at": row[12]
            }
            for row in results
        ]
