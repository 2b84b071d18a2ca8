import logging
from functools import lru_cache
from typing import Optional, Union

from fastapi import Depends, FastAPI, File, Response, UploadFile

from .config import Settings
from .models import AnalysisSuccess, Failure, HealthResponse, NarrativeRequest, NarrativeResponse
from .narrative import NarrativeClient, NarrativeError
from .normalize import analyze_upload


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()


def get_narrative_client(settings: Settings = Depends(get_settings)) -> NarrativeClient:
    return NarrativeClient(settings)


logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger("adpilot")

app = FastAPI(
    title="adpilot",
    description="Ad performance export aggregation with AI commentary",
    version="0.1.0",
)


@app.get("/health", response_model=HealthResponse)
def health():
    return {"ok": True}


@app.post("/analyze", response_model=Union[AnalysisSuccess, Failure])
async def analyze_csv(
    response: Response,
    file: Optional[UploadFile] = File(None),
    insights: bool = False,
    settings: Settings = Depends(get_settings),
    narrator: NarrativeClient = Depends(get_narrative_client),
):
    if file is None:
        result = analyze_upload(None)
    elif not (file.filename or "").lower().endswith(".csv"):
        result = {"ok": False, "error": "Only CSV files are supported"}
    else:
        raw = await file.read()
        result = analyze_upload(raw, settings.columns, skip_summary_rows=settings.skip_summary_rows)

    if not result["ok"]:
        response.status_code = 422
        return result

    logger.info("Analyzed %d rows (%d skipped)", result["rowCount"], result["skippedRows"])

    if insights:
        context = {"metrics": result["metrics"], "ads": result["ads"]}
        try:
            parsed = narrator.generate("analysis", context)["result"]
            if parsed is None:
                raise NarrativeError("Narrative reply was not valid JSON")
            result["insights"] = parsed
        except NarrativeError as exc:
            logger.warning("Insights unavailable: %s", exc)
            result["insightsError"] = str(exc)
        finally:
            narrator.close()

    return result


@app.post("/narrative", response_model=Union[NarrativeResponse, Failure])
def narrative(
    request: NarrativeRequest,
    response: Response,
    narrator: NarrativeClient = Depends(get_narrative_client),
):
    try:
        return {"ok": True, **narrator.generate(request.type, request.payload)}
    except NarrativeError as exc:
        response.status_code = 502
        return {"ok": False, "error": str(exc)}
    finally:
        narrator.close()
