"""
CRUD simulation over an in-memory SQLite table.

POST /crud {"operation": "CRUD"} runs create, read, update, delete in that
order, skipping whichever letters are missing. The operation string is
checked up front and turned into flags; nothing scans it later.
"""
import logging
import random
import sqlite3
import string
import threading
from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_validator

logger = logging.getLogger(__name__)

router = APIRouter()

SCHEMA = (
    "CREATE TABLE test ("
    "id INTEGER PRIMARY KEY, data TEXT, created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP)"
)


@dataclass(frozen=True)
class CrudFlags:
    create: bool = False
    read: bool = False
    update: bool = False
    delete: bool = False

    @classmethod
    def parse(cls, operation):
        letters = set(operation.upper())
        return cls(
            create="C" in letters,
            read="R" in letters,
            update="U" in letters,
            delete="D" in letters,
        )


class CrudRequest(BaseModel):
    operation: str = ""

    @field_validator("operation")
    @classmethod
    def only_crud_letters(cls, value):
        bad = sorted(set(value.upper()) - set("CRUD"))
        if bad:
            raise ValueError(f"operation may only contain C, R, U, D (got {''.join(bad)!r})")
        return value

    def flags(self):
        return CrudFlags.parse(self.operation)


class CrudStore:
    """One shared connection. sqlite3 objects aren't thread safe, hence the lock."""

    def __init__(self, path=":memory:"):
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        with self._lock:
            self._conn.execute(SCHEMA)
            self._conn.commit()
        logger.info("In-memory SQLite database initialized")

    def close(self):
        with self._lock:
            self._conn.close()

    def run(self, flags, data):
        operations = []
        rows = None
        with self._lock:
            try:
                if flags.create:
                    cur = self._conn.execute("INSERT INTO test (data) VALUES (?)", (data,))
                    operations.append({"type": "create", "success": True, "lastId": cur.lastrowid})
                if flags.read:
                    rows = [dict(r) for r in self._conn.execute("SELECT * FROM test")]
                    operations.append({"type": "read", "success": True, "count": len(rows)})
                if flags.update:
                    cur = self._conn.execute(
                        "UPDATE test SET data = ? "
                        "WHERE id = (SELECT id FROM test ORDER BY RANDOM() LIMIT 1)",
                        (data,),
                    )
                    operations.append({"type": "update", "success": True,
                                       "affectedRows": cur.rowcount})
                if flags.delete:
                    cur = self._conn.execute(
                        "DELETE FROM test WHERE id = (SELECT id FROM test ORDER BY RANDOM() LIMIT 1)"
                    )
                    operations.append({"type": "delete", "success": True,
                                       "affectedRows": cur.rowcount})
                self._conn.commit()
            except sqlite3.Error:
                self._conn.rollback()
                raise
        return operations, rows


def random_data():
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=5))
    return f"Data_{suffix}"


@router.post("/crud")
def crud(body: CrudRequest, request: Request):
    store = request.app.state.store
    data = random_data()
    timestamp = datetime.now(timezone.utc).isoformat()

    try:
        operations, rows = store.run(body.flags(), data)
    except sqlite3.Error as exc:
        logger.error("CRUD %r failed: %s", body.operation, exc)
        return JSONResponse(
            status_code=500,
            content={"error": str(exc), "operation": body.operation, "timestamp": timestamp},
        )

    result = {"operations": operations, "timestamp": timestamp}
    if rows is not None:
        result["data"] = rows
    result["message"] = f"Operations executed: {body.operation}"
    result["randomData"] = data
    return result
