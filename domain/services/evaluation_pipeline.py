import re
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Tuple

from pydantic import BaseModel, ValidationError

from domain.errors import ErrorKind, EvaluationError
from domain.evaluation import (
    CVEvaluation,
    EvaluationOutput,
    GroundingDocuments,
    ParsedCV,
    ParsedProject,
    ProjectEvaluation,
    SummaryResult,
)

logger = logging.getLogger(__name__)


def redact_numeric_examples(text: str) -> str:
    # remove json-like examples with numeric scores to prevent bias
    text = re.sub(r'\{[^{}]{0,200}("project_score"|\'project_score\')[^{}]+\}',
                  '[redacted-example]', text, flags=re.I | re.S)
    text = re.sub(r'\{[^{}]{0,200}("cv_match_rate"|\'cv_match_rate\')[^{}]+\}',
                  '[redacted-example]', text, flags=re.I | re.S)
    return text


@dataclass
class StageContext:
    job_title: str
    cv_text: str
    report_text: str
    documents: Any
    model: Any
    outputs: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Stage:
    """One step of the pipeline.

    ``requires`` names outputs of earlier stages; ``run`` produces the raw
    output, which ``validate`` turns into ``output_type`` or rejects.
    """
    name: str
    output_key: str
    output_type: type
    run: Callable[[StageContext], Awaitable[Any]]
    requires: Tuple[str, ...] = ()
    validate: Optional[Callable[[Any], Any]] = None

    def check(self, raw: Any) -> Any:
        if self.validate is not None:
            return self.validate(raw)
        if issubclass(self.output_type, BaseModel):
            if isinstance(raw, BaseModel):
                raw = raw.model_dump()
            return self.output_type.model_validate(raw)
        if not isinstance(raw, self.output_type):
            raise ValueError(f"expected {self.output_type.__name__}, got {type(raw).__name__}")
        return raw


async def _retrieve_grounding(ctx: StageContext) -> GroundingDocuments:
    resolved = await ctx.documents.find_relevant_job_title(ctx.job_title)
    if not resolved:
        raise EvaluationError(ErrorKind.JOB_NOT_FOUND,
                              f"no relevant job found for title '{ctx.job_title}'",
                              context={"job_title": ctx.job_title})
    grounding = await ctx.documents.fetch_grounding(resolved)
    return grounding.model_copy(update={
        "job_description": redact_numeric_examples(grounding.job_description),
        "scoring_rubric": redact_numeric_examples(grounding.scoring_rubric),
        "case_study_brief": redact_numeric_examples(grounding.case_study_brief),
    })


async def _parse_cv(ctx: StageContext):
    return await ctx.model.parse_cv(ctx.cv_text)


async def _evaluate_cv(ctx: StageContext):
    grounding: GroundingDocuments = ctx.outputs["grounding"]
    return await ctx.model.evaluate_cv(ctx.cv_text, grounding.job_description, grounding.scoring_rubric)


async def _parse_project(ctx: StageContext):
    return await ctx.model.parse_project(ctx.report_text)


async def _evaluate_project(ctx: StageContext):
    grounding: GroundingDocuments = ctx.outputs["grounding"]
    return await ctx.model.evaluate_project(
        ctx.report_text, grounding.case_study_brief, grounding.scoring_rubric)


async def _synthesize_summary(ctx: StageContext):
    # only sees validated judgments, never the raw documents
    cv_eval: CVEvaluation = ctx.outputs["cv_evaluation"]
    project_eval: ProjectEvaluation = ctx.outputs["project_evaluation"]
    return await ctx.model.synthesize_summary(
        job_title=ctx.job_title,
        cv_match_rate=cv_eval.cv_match_rate,
        cv_feedback=cv_eval.cv_feedback,
        project_score=project_eval.project_score,
        project_feedback=project_eval.project_feedback,
    )


DEFAULT_STAGES: Tuple[Stage, ...] = (
    Stage("retrieve_grounding", "grounding", GroundingDocuments, _retrieve_grounding),
    Stage("parse_cv", "parsed_cv", ParsedCV, _parse_cv, requires=("grounding",)),
    Stage("evaluate_cv", "cv_evaluation", CVEvaluation, _evaluate_cv,
          requires=("grounding", "parsed_cv")),
    Stage("parse_project", "parsed_project", ParsedProject, _parse_project,
          requires=("cv_evaluation",)),
    Stage("evaluate_project", "project_evaluation", ProjectEvaluation, _evaluate_project,
          requires=("grounding", "parsed_project")),
    Stage("synthesize_summary", "summary", SummaryResult, _synthesize_summary,
          requires=("cv_evaluation", "project_evaluation"), validate=SummaryResult.from_text),
)


class EvaluationPipeline:
    """Runs the stages in order for one candidate; holds no job state."""

    def __init__(self, documents, model, stages: Sequence[Stage] = DEFAULT_STAGES):
        self._documents = documents
        self._model = model
        self.stages = tuple(stages)

    async def run_stages(
        self,
        job_title: str,
        cv_text: str,
        report_text: str,
        on_stage: Optional[Callable[[str], None]] = None,
    ) -> Dict[str, Any]:
        ctx = StageContext(job_title=job_title, cv_text=cv_text, report_text=report_text,
                           documents=self._documents, model=self._model)
        for stage in self.stages:
            missing = [key for key in stage.requires if key not in ctx.outputs]
            if missing:
                raise EvaluationError(ErrorKind.UNKNOWN,
                                      f"stage inputs not available: {', '.join(missing)}",
                                      stage=stage.name)
            if on_stage is not None:
                on_stage(stage.name)
            logger.info("Stage %s started for '%s'", stage.name, job_title)
            ctx.outputs[stage.output_key] = await self._run_stage(stage, ctx)
            logger.info("Stage %s finished", stage.name)
        return ctx.outputs

    async def _run_stage(self, stage: Stage, ctx: StageContext) -> Any:
        try:
            raw = await stage.run(ctx)
        except EvaluationError as exc:
            if exc.stage is None:
                exc.stage = stage.name
            raise
        except Exception as exc:
            logger.exception("Stage %s failed unexpectedly", stage.name)
            raise EvaluationError(ErrorKind.UNKNOWN, f"{type(exc).__name__}: {exc}",
                                  stage=stage.name) from exc
        try:
            return stage.check(raw)
        except (ValidationError, ValueError, TypeError) as exc:
            logger.warning("Stage %s produced invalid output: %s", stage.name, exc)
            raise EvaluationError(ErrorKind.MALFORMED_OUTPUT, f"invalid {stage.output_key}: {exc}",
                                  stage=stage.name) from exc

    async def run(
        self,
        job_title: str,
        cv_text: str,
        report_text: str,
        on_stage: Optional[Callable[[str], None]] = None,
    ) -> EvaluationOutput:
        outputs = await self.run_stages(job_title, cv_text, report_text, on_stage=on_stage)
        result = EvaluationOutput(
            grounding=outputs["grounding"],
            parsed_cv=outputs["parsed_cv"],
            cv_evaluation=outputs["cv_evaluation"],
            parsed_project=outputs["parsed_project"],
            project_evaluation=outputs["project_evaluation"],
            summary=outputs["summary"],
        )
        logger.info(
            "Evaluation for '%s' done: match_rate=%.2f project_score=%.1f recommendation=%s",
            job_title, result.cv_evaluation.cv_match_rate,
            result.project_evaluation.project_score, result.summary.recommendation,
        )
        return result
