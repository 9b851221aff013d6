from __future__ import annotations

from typing import Optional, Sequence

from .config import validate_thresholds
from .errors import JudgeFailure
from .judge import judge
from .models import FAIL, JudgeResult, Thresholds, compute_status, resolve_thresholds


class Expectation:

  def __init__(self, ctx):
    self.ctx = ctx

  def to_pass_judge(
      self,
      criteria: str,
      model: Optional[str] = None,
      expected_files: Optional[Sequence[str]] = None,
      thresholds: Optional[Thresholds] = None,
  ) -> JudgeResult:
    """Judge the current iteration and record the verdict on the context.

    Per-call thresholds win over the run's configured thresholds. Raises
    JudgeFailure when the verdict's status is FAIL.
    """
    ctx = self.ctx
    effective = resolve_thresholds(validate_thresholds(thresholds), ctx.thresholds)
    ctx.judge_calls.append(criteria)
    if ctx.dry_run:
      return JudgeResult(passed=True, score=1.0, reason="(dry run)", improvement="", status=None)

    result = judge(ctx, criteria, ctx.judge_config, model_override=model, expected_files=expected_files,
                   instruction=getattr(ctx, "instruction", None))
    result.status = compute_status(result.score, effective)
    result.passed = result.status != FAIL
    ctx.record_verdict(result, effective)
    if result.status == FAIL:
      raise JudgeFailure(result)
    return result


def expect(ctx) -> Expectation:
  return Expectation(ctx)
