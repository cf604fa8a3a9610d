import json

from domain.evaluation import CVEvaluation, ParsedCV, ParsedProject, ProjectEvaluation


def _schema(model) -> str:
    return json.dumps(model.model_json_schema(), indent=2)


CV_PARSE_PROMPT = """
You are an expert CV parser. Extract structured information from the CV below.

Focus on:
- Personal information (name, contact)
- Technical skills and proficiency levels
- Work experience with roles, companies, and durations
- Education background
- Total years of professional experience
- Notable projects, certifications and languages when present

Do NOT infer data that is not in the CV.
Return ONLY a JSON object that validates against this JSON Schema:
{schema}

CV:
{cv_text}
"""


CV_EVAL_PROMPT = """
You are an impartial evaluator assessing how well a candidate's CV matches a job.
Read the Job Description and the Scoring Rubric first: they are the standard the
CV is measured against.

Job Description:
{job_description}

Scoring Rubric (use only the CV-related sections):
{scoring_rubric}

Evaluation rules:
- Base every judgment ONLY on the Job Description and Rubric above.
- Do NOT use prior knowledge and do NOT infer missing data.
- High scores require multiple strong, explicit matches.

Candidate CV:
{cv_text}

Return ONLY strict JSON validating against this JSON Schema:
{schema}
cv_match_rate is a float between 0 and 1; cv_feedback is 2-4 short bullet points.
"""


PROJECT_PARSE_PROMPT = """
You are an expert software engineer skilled in analyzing project reports.
Extract the key information from the report below: project overview, technical
implementation, features, code structure, documentation, additional features,
improvements made and lessons learned.

Return ONLY a JSON object that validates against this JSON Schema:
{schema}

Project Report:
{report_text}
"""


PROJECT_EVAL_PROMPT = """
You are a senior software architect evaluating a candidate's project submission.
Read the Case Study Brief and the Scoring Rubric first: they define what the
project is measured against.

Case Study Brief:
{case_study_brief}

Scoring Rubric (use only the project-related sections):
{scoring_rubric}

Evaluate requirements fulfillment, technical implementation, documentation
quality, problem-solving approach, and error handling and resilience.
Do NOT invent criteria that are not in the brief or rubric.

Candidate Project Report:
{report_text}

Return ONLY strict JSON validating against this JSON Schema:
{schema}
project_score is a float between 1 and 5; project_feedback is 2-4 short bullet points.
"""


FINAL_SUMMARY_PROMPT = """
You are a hiring manager making a final assessment for the {job_title} position.

CV Evaluation:
Match Rate: {cv_match_rate}/1
Feedback: {cv_feedback}

Project Evaluation:
Score: {project_score}/5
Feedback: {project_feedback}

Write a concise executive summary (3-5 sentences) that includes:
1. Overall recommendation, on the first line as "Recommendation: <Strong Hire | Hire | Maybe | No Hire>"
2. Key strengths
3. Main concerns or gaps
4. Suggested next steps in the hiring process

Base the summary only on the evaluations above.
"""


def build_cv_parse_prompt(cv_text: str) -> str:
    return CV_PARSE_PROMPT.format(schema=_schema(ParsedCV), cv_text=cv_text)


def build_cv_eval_prompt(job_description: str, scoring_rubric: str, cv_text: str) -> str:
    return CV_EVAL_PROMPT.format(job_description=job_description, scoring_rubric=scoring_rubric,
                                 cv_text=cv_text, schema=_schema(CVEvaluation))


def build_project_parse_prompt(report_text: str) -> str:
    return PROJECT_PARSE_PROMPT.format(schema=_schema(ParsedProject), report_text=report_text)


def build_project_eval_prompt(case_study_brief: str, scoring_rubric: str, report_text: str) -> str:
    return PROJECT_EVAL_PROMPT.format(case_study_brief=case_study_brief,
                                      scoring_rubric=scoring_rubric, report_text=report_text,
                                      schema=_schema(ProjectEvaluation))


def build_summary_prompt(job_title: str, cv_match_rate: float, cv_feedback: str,
                         project_score: float, project_feedback: str) -> str:
    return FINAL_SUMMARY_PROMPT.format(job_title=job_title, cv_match_rate=f"{cv_match_rate:.2f}",
                                      cv_feedback=cv_feedback, project_score=f"{project_score:.1f}",
                                      project_feedback=project_feedback)
