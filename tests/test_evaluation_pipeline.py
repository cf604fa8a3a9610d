import pytest

from domain.errors import ErrorKind, EvaluationError
from domain.evaluation import CVEvaluation, SummaryResult
from domain.services.evaluation_pipeline import (
    DEFAULT_STAGES,
    EvaluationPipeline,
    Stage,
    redact_numeric_examples,
)

from tests.conftest import CV_TEXT, REPORT_TEXT, FakeModelGateway, fail

MODEL_STAGES = ["parse_cv", "evaluate_cv", "parse_project", "evaluate_project", "synthesize_summary"]


async def test_full_run_produces_every_artifact(populated_store, model):
    seen = []
    pipeline = EvaluationPipeline(populated_store, model)
    output = await pipeline.run("Backend Engineer", CV_TEXT, REPORT_TEXT, on_stage=seen.append)

    assert seen == [stage.name for stage in DEFAULT_STAGES]
    assert model.calls == MODEL_STAGES
    assert output.grounding.job_title == "backend_engineer_2025"
    assert output.parsed_cv.personal_info.name == "Jane Doe"
    assert output.cv_evaluation.cv_match_rate == pytest.approx(0.82)
    assert output.cv_evaluation.cv_feedback.startswith("- Strong Python")
    assert output.project_evaluation.project_score == pytest.approx(4.5)
    assert output.summary.recommendation == "Hire"

    record = output.to_result_record()
    assert record["resolved_job_title"] == "backend_engineer_2025"
    assert '"Jane Doe"' in record["parsed_cv"]


async def test_grounding_reaches_the_evaluation_requests(populated_store, model):
    await EvaluationPipeline(populated_store, model).run("Backend Engineer", CV_TEXT, REPORT_TEXT)
    requests = dict(model.requests)
    assert "backend" in requests["evaluate_cv"]["job_description"].lower()
    assert "Backend Scoring Rubric" in requests["evaluate_cv"]["scoring_rubric"]
    assert "case study brief" in requests["evaluate_project"]["case_study_brief"].lower()
    # the score example in the job description must not anchor the model
    assert "0.9" not in requests["evaluate_cv"]["job_description"]


async def test_missing_rubric_fails_before_any_model_call(populated_store, model):
    pipeline = EvaluationPipeline(populated_store, model)
    with pytest.raises(EvaluationError) as info:
        await pipeline.run("Data Analyst", CV_TEXT, REPORT_TEXT)
    assert info.value.kind is ErrorKind.DOCUMENT_MISSING
    assert info.value.stage == "retrieve_grounding"
    assert model.calls == []


async def test_unresolvable_title_is_job_not_found(store, model):
    with pytest.raises(EvaluationError) as info:
        await EvaluationPipeline(store, model).run("Backend Engineer", CV_TEXT, REPORT_TEXT)
    assert info.value.kind is ErrorKind.JOB_NOT_FOUND
    assert model.calls == []


async def test_out_of_range_score_is_malformed(populated_store):
    model = FakeModelGateway(evaluate_project=[{"project_score": 7, "project_feedback": "great"}])
    with pytest.raises(EvaluationError) as info:
        await EvaluationPipeline(populated_store, model).run("Backend Engineer", CV_TEXT, REPORT_TEXT)
    assert info.value.kind is ErrorKind.MALFORMED_OUTPUT
    assert info.value.stage == "evaluate_project"
    assert info.value.retryable
    assert "synthesize_summary" not in model.calls


async def test_parse_missing_required_field_is_malformed(populated_store):
    model = FakeModelGateway(parse_cv=[{"skills": [], "education": []}])
    with pytest.raises(EvaluationError) as info:
        await EvaluationPipeline(populated_store, model).run("Backend Engineer", CV_TEXT, REPORT_TEXT)
    assert info.value.kind is ErrorKind.MALFORMED_OUTPUT
    assert info.value.stage == "parse_cv"
    assert model.calls == ["parse_cv"]


async def test_summary_without_recommendation_is_malformed(populated_store):
    model = FakeModelGateway(synthesize_summary=["A fine candidate overall."])
    with pytest.raises(EvaluationError) as info:
        await EvaluationPipeline(populated_store, model).run("Backend Engineer", CV_TEXT, REPORT_TEXT)
    assert info.value.kind is ErrorKind.MALFORMED_OUTPUT
    assert info.value.stage == "synthesize_summary"


async def test_gateway_errors_are_tagged_with_stage(populated_store):
    model = FakeModelGateway(evaluate_cv=[fail(ErrorKind.RATE_LIMITED)])
    with pytest.raises(EvaluationError) as info:
        await EvaluationPipeline(populated_store, model).run("Backend Engineer", CV_TEXT, REPORT_TEXT)
    assert info.value.kind is ErrorKind.RATE_LIMITED
    assert info.value.stage == "evaluate_cv"


async def test_unexpected_exception_becomes_unknown(populated_store):
    def boom():
        raise RuntimeError("socket closed")

    model = FakeModelGateway(parse_project=[boom])
    with pytest.raises(EvaluationError) as info:
        await EvaluationPipeline(populated_store, model).run("Backend Engineer", CV_TEXT, REPORT_TEXT)
    assert info.value.kind is ErrorKind.UNKNOWN
    assert info.value.stage == "parse_project"


async def test_stage_never_runs_without_its_inputs(store, model):
    async def evaluate(ctx):
        return {"cv_match_rate": 0.5, "cv_feedback": "ok"}

    stages = (Stage("evaluate_cv", "cv_evaluation", CVEvaluation, evaluate, requires=("grounding",)),)
    with pytest.raises(EvaluationError) as info:
        await EvaluationPipeline(store, model, stages=stages).run_stages("Backend", CV_TEXT, REPORT_TEXT)
    assert info.value.stage == "evaluate_cv"
    assert info.value.kind is ErrorKind.UNKNOWN


def test_redact_numeric_examples():
    text = 'Return JSON like {"project_score": 4, "project_feedback": "..."} please.'
    assert redact_numeric_examples(text) == "Return JSON like [redacted-example] please."
    assert redact_numeric_examples("no examples here") == "no examples here"


@pytest.mark.parametrize("text, label", [
    ("Strong hire: excellent on every axis.", "Strong Hire"),
    ("Recommendation: NO HIRE. The project is incomplete.", "No Hire"),
    ("Maybe. Needs a follow-up interview.", "Maybe"),
    ("Not a Strong Hire; recommendation: No Hire", "No Hire"),
    ("**Recommendation:** Strong Hire\nGreat systems design.", "Strong Hire"),
    ("Recommendation: Maybe\nRevised after the report review.\nRecommendation: Hire", "Hire"),
])
def test_summary_recommendation_parsing(text, label):
    assert SummaryResult.from_text(text).recommendation == label


def test_summary_requires_recommendation():
    with pytest.raises(ValueError):
        SummaryResult.from_text("Solid candidate with good fundamentals.")


@pytest.mark.parametrize("text", [
    "Before we hire, verify references.",
    "Solid engineer. We would hire again if the role reopens.",
])
def test_passing_mention_is_not_a_recommendation(text):
    with pytest.raises(ValueError):
        SummaryResult.from_text(text)
