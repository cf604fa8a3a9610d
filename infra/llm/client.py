import json
import logging
import re
from typing import Any, Dict, List, Optional

import httpx

from app.settings import Settings, settings as default_settings
from domain.errors import ErrorKind, EvaluationError
from infra.llm.prompts import (
    build_cv_eval_prompt,
    build_cv_parse_prompt,
    build_project_eval_prompt,
    build_project_parse_prompt,
    build_summary_prompt,
)

logger = logging.getLogger(__name__)

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
OPENROUTER_CHAT_URL = "https://openrouter.ai/api/v1/chat/completions"

PARSING_TEMPERATURE = 0.1
EVALUATION_TEMPERATURE = 0.2
SUMMARY_TEMPERATURE = 0.4

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.S)


def classify_http_error(exc: httpx.HTTPError, target: str) -> EvaluationError:
    if isinstance(exc, httpx.TimeoutException):
        return EvaluationError(ErrorKind.TIMEOUT, f"{target} request timed out")
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status == 408:
            kind = ErrorKind.TIMEOUT
        elif status == 429:
            kind = ErrorKind.RATE_LIMITED
        elif status >= 500:
            kind = ErrorKind.OVERLOADED
        else:
            kind = ErrorKind.PROVIDER_ERROR
        return EvaluationError(kind, f"{target} returned HTTP {status}",
                               context={"status_code": status})
    return EvaluationError(ErrorKind.OVERLOADED, f"{target} unreachable: {exc}")


async def post_json(
    url: str,
    headers: Dict[str, str],
    payload: Dict,
    *,
    timeout: float,
    target: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict:
    """Single POST with a hard timeout; failures come back as tagged EvaluationErrors.

    Retrying is the worker's job, not this function's.
    """
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.post(url, headers=headers, json=payload)
        response.raise_for_status()
    except httpx.HTTPError as exc:
        raise classify_http_error(exc, target) from exc
    try:
        return response.json()
    except ValueError as exc:
        raise EvaluationError(ErrorKind.MALFORMED_OUTPUT,
                              f"{target} returned a non-JSON body") from exc


def decode_json_object(raw_text: str) -> Dict[str, Any]:
    text = (raw_text or "").strip()
    m = _FENCE_RE.match(text)
    if m:
        text = m.group(1)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise EvaluationError(ErrorKind.MALFORMED_OUTPUT,
                              "LLM response was not valid JSON") from exc
    if not isinstance(data, dict):
        raise EvaluationError(ErrorKind.MALFORMED_OUTPUT,
                              "LLM response was not a JSON object")
    return data


class ModelGateway:
    """Chat-completion client for the five evaluation request shapes.

    Structured requests return the decoded JSON object; schema validation is
    done by the pipeline stage that made the request. The summary request
    returns raw text.
    """

    def __init__(self, settings: Settings = default_settings,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = settings
        self._transport = transport

    def _provider(self):
        s = self._settings
        if s.OPENAI_API_KEY:
            return OPENAI_CHAT_URL, {"Authorization": f"Bearer {s.OPENAI_API_KEY}"}, s.OPENAI_MODEL
        if s.OPENROUTER_API_KEY:
            headers = {
                "Authorization": f"Bearer {s.OPENROUTER_API_KEY}",
                "HTTP-Referer": "http://localhost",
                "X-Title": s.APP_NAME,
            }
            return OPENROUTER_CHAT_URL, headers, s.OPENROUTER_MODEL
        raise EvaluationError(ErrorKind.PROVIDER_ERROR, "No LLM provider configured")

    async def _chat(self, messages: List[Dict], temperature: float, json_mode: bool) -> str:
        url, headers, model = self._provider()
        payload: Dict[str, Any] = {"model": model, "messages": messages, "temperature": temperature}
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        data = await post_json(url, headers, payload, timeout=self._settings.LLM_TIMEOUT_SECONDS,
                               target="LLM provider", transport=self._transport)
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise EvaluationError(ErrorKind.MALFORMED_OUTPUT,
                                  "LLM response had no message content") from exc
        if not content or not str(content).strip():
            raise EvaluationError(ErrorKind.MALFORMED_OUTPUT, "LLM returned an empty response")
        return str(content)

    async def _structured(self, prompt: str, temperature: float) -> Dict[str, Any]:
        messages = [
            {"role": "system", "content": "You are a strict evaluator returning only valid JSON."},
            {"role": "user", "content": prompt},
        ]
        return decode_json_object(await self._chat(messages, temperature, json_mode=True))

    def _clip(self, text: str) -> str:
        return text[: self._settings.MAX_CANDIDATE_CHARS]

    async def parse_cv(self, cv_text: str) -> Dict[str, Any]:
        logger.debug("Parsing CV with LLM (%d chars)", len(cv_text))
        return await self._structured(build_cv_parse_prompt(self._clip(cv_text)), PARSING_TEMPERATURE)

    async def evaluate_cv(self, cv_text: str, job_description: str, scoring_rubric: str) -> Dict[str, Any]:
        logger.debug("Evaluating CV with LLM")
        prompt = build_cv_eval_prompt(job_description, scoring_rubric, self._clip(cv_text))
        return await self._structured(prompt, EVALUATION_TEMPERATURE)

    async def parse_project(self, report_text: str) -> Dict[str, Any]:
        logger.debug("Parsing project report with LLM (%d chars)", len(report_text))
        return await self._structured(build_project_parse_prompt(self._clip(report_text)),
                                      PARSING_TEMPERATURE)

    async def evaluate_project(self, report_text: str, case_study_brief: str,
                               scoring_rubric: str) -> Dict[str, Any]:
        logger.debug("Evaluating project report with LLM")
        prompt = build_project_eval_prompt(case_study_brief, scoring_rubric, self._clip(report_text))
        return await self._structured(prompt, EVALUATION_TEMPERATURE)

    async def synthesize_summary(self, job_title: str, cv_match_rate: float, cv_feedback: str,
                                 project_score: float, project_feedback: str) -> str:
        logger.debug("Generating final summary for %s", job_title)
        prompt = build_summary_prompt(job_title, cv_match_rate, cv_feedback,
                                      project_score, project_feedback)
        messages = [
            {"role": "system", "content": "You are a hiring manager writing a final assessment."},
            {"role": "user", "content": prompt},
        ]
        return (await self._chat(messages, SUMMARY_TEMPERATURE, json_mode=False)).strip()
