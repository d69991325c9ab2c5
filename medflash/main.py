import asyncio

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from google.genai import errors as genai_errors

from medflash import config
from medflash.models import (
    ConfigUpdate,
    DocumentAnalysis,
    ExportRequest,
    GenerationPreferences,
    GenerationResult,
)
from medflash.services.exporter import produce_export
from medflash.services.gemini_client import analyze_document
from medflash.services.pipeline import ExportJob
from medflash.services.raster import prepare_document
from medflash.utils import content_disposition

load_dotenv()

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


async def _read_upload(file: UploadFile) -> tuple[bytes, str, str]:
    raw = await file.read()
    filename = file.filename or "document"
    mime_type = file.content_type or "application/octet-stream"
    data, mime_type = await asyncio.to_thread(prepare_document, raw, mime_type, filename)
    return data, mime_type, filename


@app.post("/api/analyze", response_model=DocumentAnalysis)
async def api_analyze(file: UploadFile = File(...)):
    try:
        data, mime_type, _ = await _read_upload(file)
        return await asyncio.to_thread(analyze_document, data, mime_type)
    except genai_errors.APIError as err:
        raise HTTPException(status_code=502, detail=f"Gemini API error: {err}") from err
    except RuntimeError as err:
        raise HTTPException(status_code=500, detail=str(err)) from err


@app.post("/api/generate", response_model=GenerationResult)
async def api_generate(
    file: UploadFile = File(...),
    exam_type: str = Form("USMLE Step 1"),
    focus_area: str = Form("General Medicine"),
    card_count: int = Form(30),
    language: str = Form("English"),
    detailed_context: bool = Form(False),
):
    try:
        prefs = GenerationPreferences(
            exam_type=exam_type,
            focus_area=focus_area,
            card_count=card_count,
            language=language,
            detailed_context=detailed_context,
        )
    except ValueError as err:
        raise HTTPException(status_code=422, detail=str(err)) from err

    try:
        data, mime_type, filename = await _read_upload(file)
        job = ExportJob(data, mime_type, filename)
        cards = await job.generate(prefs)
        return GenerationResult(cards=cards, state=job.state.value)
    except genai_errors.APIError as err:
        raise HTTPException(status_code=502, detail=f"Gemini API error: {err}") from err
    except RuntimeError as err:
        raise HTTPException(status_code=500, detail=str(err)) from err


@app.post("/api/export")
async def api_export(req: ExportRequest):
    artifact = produce_export(req.cards, req.source_filename, req.format)
    return Response(
        content=artifact.content,
        media_type=artifact.media_type,
        headers={"Content-Disposition": content_disposition(artifact.filename)},
    )


@app.get("/api/config")
async def api_get_config():
    return config.get_all()


@app.put("/api/config")
async def api_update_config(values: ConfigUpdate):
    config.update(values.model_dump(mode="json", exclude_none=True))
    return config.get_all()


if __name__ == "__main__":
    uvicorn.run("medflash.main:app", host="0.0.0.0", port=8000, reload=True)
