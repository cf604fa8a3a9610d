"""Declared output shapes of the evaluation stages."""
import json
import re
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


def _feedback_text(value):
    if isinstance(value, list):
        items = [str(item).strip() for item in value if item is not None and str(item).strip()]
        return "\n".join(f"- {item}" for item in items)
    if isinstance(value, str):
        return value.strip()
    raise ValueError("feedback must be a string or list of strings")


class GroundingDocuments(BaseModel):
    job_title: str = Field(..., min_length=1)
    job_description: str = Field(..., min_length=1)
    scoring_rubric: str = Field(..., min_length=1)
    case_study_brief: str = Field(..., min_length=1)


class PersonalInfo(BaseModel):
    name: str = Field(..., min_length=1)
    email: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None


class Skill(BaseModel):
    skill: str
    proficiency: Optional[str] = None
    category: Optional[str] = None
    years_experience: Optional[float] = None


class WorkExperience(BaseModel):
    company: str
    position: str
    duration: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    responsibilities: List[str] = Field(default_factory=list)
    achievements: List[str] = Field(default_factory=list)


class Education(BaseModel):
    institution: str
    degree: str
    field: Optional[str] = None
    graduation_year: Optional[int] = None


class CVProject(BaseModel):
    name: str
    description: str
    technologies: List[str] = Field(default_factory=list)
    role: Optional[str] = None


class Certification(BaseModel):
    name: str
    issuer: Optional[str] = None
    date_obtained: Optional[str] = None


class ParsedCV(BaseModel):
    personal_info: PersonalInfo
    skills: List[Skill]
    work_experience: List[WorkExperience]
    education: List[Education]
    total_years_experience: float = Field(..., ge=0)
    projects: List[CVProject] = Field(default_factory=list)
    certifications: List[Certification] = Field(default_factory=list)
    languages: List[str] = Field(default_factory=list)


class CVEvaluation(BaseModel):
    cv_match_rate: float = Field(..., ge=0.0, le=1.0)
    cv_feedback: str = Field(..., min_length=1)

    @field_validator("cv_feedback", mode="before")
    @classmethod
    def _ensure_text(cls, value):
        return _feedback_text(value)


class ProjectOverview(BaseModel):
    title: str
    description: str
    objectives: List[str] = Field(default_factory=list)
    approach: Optional[str] = None


class TechnicalImplementation(BaseModel):
    technologies: List[str]
    architecture: Optional[str] = None
    design_decisions: List[str] = Field(default_factory=list)
    challenges: List[str] = Field(default_factory=list)
    solutions: List[str] = Field(default_factory=list)


class Feature(BaseModel):
    feature: str
    description: str
    implementation: Optional[str] = None


class Documentation(BaseModel):
    has_readme: bool = False
    setup_instructions: bool = False
    api_documentation: bool = False
    code_comments: bool = False
    tradeoffs: Optional[str] = None


class ParsedProject(BaseModel):
    project_overview: ProjectOverview
    technical_implementation: TechnicalImplementation
    features: List[Feature]
    documentation: Optional[Documentation] = None
    additional_features: List[str] = Field(default_factory=list)
    improvements: List[str] = Field(default_factory=list)
    lessons: List[str] = Field(default_factory=list)


class ProjectEvaluation(BaseModel):
    project_score: float = Field(..., ge=1.0, le=5.0)
    project_feedback: str = Field(..., min_length=1)

    @field_validator("project_feedback", mode="before")
    @classmethod
    def _ensure_text(cls, value):
        return _feedback_text(value)


RECOMMENDATIONS = ("Strong Hire", "No Hire", "Hire", "Maybe")
_CATEGORY = r"(strong\s+hire|no\s+hire|hire|maybe)\b"
# "Recommendation: No Hire", "**Recommendation** - Maybe"
_LABELLED_RE = re.compile(r"recommendation\W{0,6}" + _CATEGORY, re.I)
# a summary that opens with the category, e.g. "Hire. Strong backend..."
_LEADING_RE = re.compile(r"^\W*" + _CATEGORY, re.I)


class SummaryResult(BaseModel):
    overall_summary: str = Field(..., min_length=1)
    recommendation: str

    @classmethod
    def from_text(cls, text: str) -> "SummaryResult":
        """Read the hiring category from a labelled line, else from the opening words.

        A category mentioned in passing ("before we hire...") does not count;
        with several labels the last one wins.
        """
        if not isinstance(text, str):
            raise ValueError("summary must be text")
        text = text.strip()
        labelled = _LABELLED_RE.findall(text)
        if labelled:
            found = labelled[-1]
        else:
            m = _LEADING_RE.match(text.splitlines()[0] if text else "")
            if not m:
                raise ValueError("summary does not state a hiring recommendation")
            found = m.group(1)
        label = " ".join(found.split()).title()
        return cls(overall_summary=text, recommendation=label)


class EvaluationOutput(BaseModel):
    """Every artifact of one successful pipeline run."""
    grounding: GroundingDocuments
    parsed_cv: ParsedCV
    cv_evaluation: CVEvaluation
    parsed_project: ParsedProject
    project_evaluation: ProjectEvaluation
    summary: SummaryResult

    def to_result_record(self) -> dict:
        return {
            "cv_match_rate": self.cv_evaluation.cv_match_rate,
            "cv_feedback": self.cv_evaluation.cv_feedback,
            "project_score": self.project_evaluation.project_score,
            "project_feedback": self.project_evaluation.project_feedback,
            "overall_summary": self.summary.overall_summary,
            "parsed_cv": json.dumps(self.parsed_cv.model_dump(), ensure_ascii=False),
            "parsed_project": json.dumps(self.parsed_project.model_dump(), ensure_ascii=False),
            "resolved_job_title": self.grounding.job_title,
        }
