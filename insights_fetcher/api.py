"""Read-only FastAPI view of a session store."""

import argparse
import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request

from .errors import NotFound
from .models import QueueStats, QueueStatus
from .queue import QueueStorage
from .report import summarize_report

logger = logging.getLogger(__name__)


def create_app(db_path: str) -> FastAPI:
    """Build the API for one session database."""
    app = FastAPI(
        title="PSI Queue API",
        description="Inspect the progress of a PageSpeed Insights fetch session",
        version="1.0.0",
    )
    app.state.db_path = db_path

    def get_storage(request: Request):
        try:
            storage = QueueStorage(db_path=request.app.state.db_path, create=False)
        except NotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        try:
            yield storage
        finally:
            storage.close()

    def parse_status(status: Optional[str]) -> Optional[QueueStatus]:
        if status is None:
            return None
        try:
            return QueueStatus(status)
        except ValueError:
            raise HTTPException(
                status_code=400,
                detail=f"Invalid status. Must be one of: {', '.join(s.value for s in QueueStatus)}",
            )

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "message": "PSI Queue API",
            "version": "1.0.0",
            "endpoints": {
                "stats": "/api/stats",
                "items": "/api/items?status=<status>",
                "item": "/api/items/<id>",
                "ignored": "/api/ignored",
            },
        }

    @app.get("/api/stats", response_model=QueueStats)
    def get_stats(storage: QueueStorage = Depends(get_storage)):
        """Get queue statistics."""
        return storage.get_stats()

    @app.get("/api/items")
    def get_items(
        status: Optional[str] = None,
        limit: int = 100,
        storage: QueueStorage = Depends(get_storage),
    ):
        """Get queue items, without their reports.

        Args:
            status: Filter by status (QUEUED, PROCESSING, FETCHED, FAILED)
            limit: Maximum number of items to return
        """
        items = storage.all_items(status=parse_status(status), limit=limit)
        return {
            "items": [item.to_dict() for item in items],
            "count": len(items),
            "limit": limit,
        }

    @app.get("/api/items/{item_id}")
    def get_item(item_id: int, storage: QueueStorage = Depends(get_storage)):
        """Get one item with its report summary."""
        try:
            item = storage.get(item_id)
        except NotFound:
            raise HTTPException(status_code=404, detail=f"Item {item_id} not found")

        body = item.to_dict()
        body.pop("report")
        if item.status == QueueStatus.FETCHED:
            body["summary"] = summarize_report(item).model_dump()
        return body

    @app.get("/api/ignored")
    def get_ignored(limit: int = 100, storage: QueueStorage = Depends(get_storage)):
        """Get URLs on the ignore list."""
        entries = storage.ignore_entries(limit=limit)
        return {"ignored": [e.to_dict() for e in entries], "count": len(entries)}

    return app


def add_arguments(parser: argparse.ArgumentParser):
    parser.add_argument("--db", required=True, help="Path to the session database")
    parser.add_argument("--host", default="127.0.0.1", help="Interface to bind")
    parser.add_argument("--port", type=int, default=8000, help="Port to listen on")


def run(args: argparse.Namespace) -> int:
    """Run the API server."""
    import uvicorn

    QueueStorage(db_path=args.db, create=False).close()
    logger.info(f"Serving {args.db} on {args.host}:{args.port}")
    uvicorn.run(create_app(args.db), host=args.host, port=args.port)
    return 0
