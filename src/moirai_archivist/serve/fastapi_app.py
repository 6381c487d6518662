"""FastAPI fragment service in front of the Gemini generateContent API.

Endpoints:
- GET /health
- POST /api/generate-fragment  { "secretTag": "FATE", "difficultyTier": 2, "genre": "Noir" }
"""
from __future__ import annotations
import json
import logging
import os
from typing import Any

import httpx
from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from moirai_archivist.common.logging_setup import setup_logging
from moirai_archivist.common.schema import (
    FRAGMENT_JSON_SCHEMA,
    RANDOM_GENRE,
    GenerationRequest,
    GenerationResult,
)
from moirai_archivist.common.templates import (
    DEFAULT_USER_PROMPT,
    SYSTEM_TAG,
    USER_TAG,
    extract_system,
    extract_user,
    load_template,
    render_prompt,
    subtlety_instruction,
)

LOGGER = logging.getLogger("moirai.serve.app")
setup_logging()

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
GEMINI_BASE_URL = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com")
MODEL_ID = os.getenv("GEMINI_MODEL_ID", "gemini-2.5-flash")
SERVICE_TOKEN = os.getenv("ARCHIVIST_SERVICE_TOKEN")

TEMPERATURE = float(os.getenv("TEMPERATURE", "0.8"))
UPSTREAM_TIMEOUT_S = float(os.getenv("UPSTREAM_TIMEOUT_S", "60"))

if not GEMINI_API_KEY:
    LOGGER.error("GEMINI_API_KEY is not set; /api/generate-fragment will refuse requests")


class FragmentIn(BaseModel):
    secretTag: str
    difficultyTier: int
    genre: str | None = None
    systemInstruction: str | None = None


app = FastAPI()


@app.exception_handler(HTTPException)
async def _error_body(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(RequestValidationError)
async def _bad_request(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = sorted({str(err["loc"][-1]) for err in exc.errors() if err.get("loc")})
    LOGGER.info("Rejected fragment request: %s", fields)
    return JSONResponse(
        status_code=400,
        content={"error": f"Missing or invalid fields in request body: {', '.join(fields)}."},
    )


@app.on_event("startup")
def _validate_template_on_startup() -> None:
    """Validate prompt template shape on startup and warn if malformed."""
    try:
        template = load_template()
        has_sys = SYSTEM_TAG in template
        has_user = USER_TAG in template
        if not (has_sys and has_user):
            LOGGER.warning(
                "Prompt template missing expected tags; found system=%s user=%s",
                has_sys,
                has_user,
            )
    except OSError as e:
        LOGGER.warning("Failed to read prompt template: %s", e)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok", "model": MODEL_ID}


def extract_json(text: str) -> dict[str, Any] | None:
    """Parse the outermost ``{...}`` span of ``text``; None if there is none."""
    start = text.find("{")
    end = text.rfind("}") + 1
    if start == -1 or end <= start:
        return None
    try:
        data = json.loads(text[start:end])
    except json.JSONDecodeError:
        LOGGER.error("Failed to parse JSON string: %s", text.strip()[:200])
        return None
    return data if isinstance(data, dict) else None


def build_prompts(req: GenerationRequest, system_override: str | None = None) -> tuple[str, str]:
    """Return (system, user) prompts for a request."""
    try:
        template = load_template()
    except OSError as e:
        LOGGER.warning("Failed to read prompt template, using default persona: %s", e)
        template = ""
    genre = req.genre if req.genre != RANDOM_GENRE else "any setting of your choosing"
    user = render_prompt(
        extract_user(template) or DEFAULT_USER_PROMPT,
        {
            "secretTag": req.secret_tag.value,
            "difficultyTier": req.difficulty_tier,
            "genre": genre,
            "subtlety": subtlety_instruction(req.difficulty_tier),
        },
    )
    return system_override or extract_system(template), user


def _check_token(authorization: str | None) -> None:
    if SERVICE_TOKEN and authorization != f"Bearer {SERVICE_TOKEN}":
        raise HTTPException(status_code=401, detail="Missing or invalid service token.")


@app.post("/api/generate-fragment")
def generate_fragment(
    body: FragmentIn,
    authorization: str | None = Header(default=None),
) -> dict[str, str]:
    _check_token(authorization)
    if not GEMINI_API_KEY:
        raise HTTPException(
            status_code=500,
            detail="AI Service Not Configured: Missing GEMINI_API_KEY environment variable.",
        )

    try:
        req = GenerationRequest(
            difficultyTier=body.difficultyTier, secretTag=body.secretTag, genre=body.genre
        )
    except ValidationError as e:
        fields = sorted({str(err["loc"][-1]) for err in e.errors() if err.get("loc")})
        raise HTTPException(
            status_code=400,
            detail=f"Missing or invalid fields in request body: {', '.join(fields)}.",
        )
    system_prompt, user_prompt = build_prompts(req, body.systemInstruction)

    url = f"{GEMINI_BASE_URL}/v1beta/models/{MODEL_ID}:generateContent"
    headers = {"x-goog-api-key": GEMINI_API_KEY}
    payload = {
        "systemInstruction": {"parts": [{"text": system_prompt}]},
        "contents": [{"role": "user", "parts": [{"text": user_prompt}]}],
        "generationConfig": {
            "responseMimeType": "application/json",
            "responseSchema": FRAGMENT_JSON_SCHEMA,
            "temperature": TEMPERATURE,
        },
    }

    try:
        with httpx.Client(timeout=UPSTREAM_TIMEOUT_S) as client:
            r = client.post(url, headers=headers, json=payload)
            if r.status_code == 429:
                LOGGER.warning("Gemini rate limited the request")
                raise HTTPException(status_code=429, detail="AI service is rate limited. Retry later.")
            r.raise_for_status()
            data = r.json()
    except HTTPException:
        raise
    except (httpx.HTTPError, ValueError) as e:
        LOGGER.error("GenAI API error: %s", e)
        raise HTTPException(status_code=500, detail=f"GenAI API call failed: {e}")

    try:
        text = data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        LOGGER.error("GenAI response had no candidate text: %s", str(data)[:200])
        raise HTTPException(status_code=500, detail="AI response format was invalid or unparsable.")

    parsed = extract_json(text.strip())
    try:
        result = GenerationResult.model_validate(parsed)
    except ValidationError:
        LOGGER.error("GenAI Response Error (Invalid JSON structure): %s", text.strip()[:200])
        raise HTTPException(status_code=500, detail="AI response format was invalid or unparsable.")

    LOGGER.info(
        "Generated fragment tag=%s tier=%d genre=%s",
        req.secret_tag.value, req.difficulty_tier, req.genre,
    )
    return result.to_wire()
