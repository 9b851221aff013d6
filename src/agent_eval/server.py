"""Read/query HTTP API over a ledger, consumed by the results dashboard."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Query
from pydantic import BaseModel

from .errors import RunNotFoundError

logger = logging.getLogger(__name__)


class OverrideRequest(BaseModel):
  score: Any = None
  reason: Any = None


def build_router(ledger) -> APIRouter:
  router = APIRouter(tags=["ledger"])

  @router.get("/runs")
  def list_runs(test_id: Optional[str] = Query(default=None, alias="testId")) -> List[Dict[str, Any]]:
    return [e.to_dict() for e in ledger.get_runs(test_id)]

  @router.get("/runs/{run_id}")
  def get_run(run_id: int) -> Dict[str, Any]:
    entry = ledger.get_run_by_id(run_id)
    if entry is None:
      raise HTTPException(status_code=404, detail=f"Run #{run_id} not found")
    return entry.to_dict()

  @router.get("/tests")
  def list_tests() -> List[str]:
    return ledger.get_test_ids()

  @router.get("/tree")
  def test_tree() -> List[Dict[str, Any]]:
    return [n.to_dict() for n in ledger.get_test_tree()]

  @router.get("/latest")
  def latest_entries() -> List[Dict[str, Any]]:
    return [e.to_dict() for e in ledger.get_latest_entries()]

  @router.get("/stats")
  def stats(test_id: Optional[str] = Query(default=None, alias="testId")) -> List[Dict[str, Any]]:
    return [s.to_dict() for s in ledger.get_stats(test_id)]

  @router.patch("/runs/{run_id}/override")
  def override_run(run_id: int, body: OverrideRequest) -> Dict[str, Any]:
    if not isinstance(body.reason, str):
      raise HTTPException(status_code=400, detail="Reason is required")
    try:
      override = ledger.override_run_score(run_id, body.score, body.reason)
    except ValueError as e:
      raise HTTPException(status_code=400, detail=str(e))
    except RunNotFoundError as e:
      raise HTTPException(status_code=404, detail=str(e))
    return override.to_dict()

  @router.get("/runs/{run_id}/overrides")
  def run_overrides(run_id: int) -> List[Dict[str, Any]]:
    if ledger.get_run_by_id(run_id) is None:
      raise HTTPException(status_code=404, detail=f"Run #{run_id} not found")
    return [o.to_dict() for o in ledger.get_run_overrides(run_id)]

  return router


def create_app(ledger) -> FastAPI:
  ledger.initialize()
  app = FastAPI(title="agent-eval ledger")
  app.include_router(build_router(ledger))

  @app.get("/health")
  def health() -> Dict[str, str]:
    return {"status": "ok", "ledger": getattr(ledger, "name", "unknown")}

  return app
