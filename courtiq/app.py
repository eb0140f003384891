from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Generator

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from sqlalchemy import select
from sqlalchemy.orm import Session

from courtiq import jobs, services
from courtiq.brief import LLMCallError
from courtiq.config import Settings, get_settings
from courtiq.db import get_session, init_db
from courtiq.errors import AuthRejected, PersistenceConflict, SourceUnavailable
from courtiq.fetchers import SourceClient
from courtiq.models import Prospect, RankingHistory, Recruit, UTRHistory
from courtiq.schemas import (
    BriefRequest,
    DiscoveryOut,
    FitOut,
    FitRequest,
    InteractionCreate,
    ITFPlayersImport,
    MatchIngestOut,
    MatchIngestRequest,
    MatchResultOut,
    ProgramProfileOut,
    ProgramProfileUpdate,
    ProspectHTMLImport,
    ProspectOut,
    RankingEntryCreate,
    RecruitCreate,
    RecruitOut,
    RecruitUpdate,
    UTREntryCreate,
)

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    app.state.source_client = SourceClient()
    try:
        yield
    finally:
        await app.state.source_client.aclose()


app = FastAPI(
    title="CourtIQ",
    version="0.1.0",
    description=(
        "Recruiting pipeline API for college tennis programs. Syncs national "
        "rankings and ITF junior rankings, ingests match results and serves "
        "the discovery board. Sync endpoints require the cron bearer secret."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Sync", "description": "Cron-triggered ranking and prospect syncs."},
        {"name": "Prospects", "description": "Unrecruited players surfaced by the list scans."},
        {"name": "Recruits", "description": "Recruit pipeline, histories and contact log."},
        {"name": "Matches", "description": "Match results from tournament activity pages."},
        {"name": "Discovery", "description": "Trend-annotated recruit board."},
        {"name": "Program", "description": "Program profile and fit scoring."},
        {"name": "Exports", "description": "CSV exports for compliance records."},
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=Settings().cors_origins,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=600,
)


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def source_client(request: Request) -> SourceClient:
    return request.app.state.source_client


def require_cron_secret(
    authorization: str | None = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    try:
        jobs.authorize(authorization, settings.cron_secret)
    except AuthRejected as exc:
        log.warning("Rejected sync request: %s", exc)
        raise HTTPException(401, "Unauthorized") from exc


def _get_or_404(session: Session, model, entity_id: int, label: str = "Entity"):
    obj = session.execute(select(model).where(model.id == entity_id)).scalars().first()
    if not obj:
        raise HTTPException(404, f"{label} not found")
    return obj


# ---------------------------------------------------------------------------
# Routes: Sync
# ---------------------------------------------------------------------------


@app.get("/api/cron/sync-rankings", tags=["Sync"], dependencies=[Depends(require_cron_secret)],
         summary="Refresh recruit rankings and scan the national lists for prospects")
async def cron_sync_rankings(
    session: Session = Depends(db_session),
    client: SourceClient = Depends(source_client),
    settings: Settings = Depends(get_settings),
):
    return await jobs.run_ranking_sync(session, client, settings)


@app.get("/api/cron/sync-itf", tags=["Sync"], dependencies=[Depends(require_cron_secret)],
         summary="Fetch ITF junior rankings server-side and upsert eligible prospects")
async def cron_sync_itf(
    session: Session = Depends(db_session), client: SourceClient = Depends(source_client),
):
    try:
        return await jobs.sync_itf_prospects(session, client)
    except SourceUnavailable as exc:
        raise HTTPException(500, "ITF rankings unavailable") from exc


@app.post("/api/cron/sync-itf", tags=["Sync"],
          summary="Import an ITF ranking list fetched in the browser")
async def import_itf(body: ITFPlayersImport, session: Session = Depends(db_session)):
    return jobs.import_itf_players(session, body.players)


# ---------------------------------------------------------------------------
# Routes: Prospects
# ---------------------------------------------------------------------------


@app.post("/api/prospects/import", tags=["Prospects"],
          summary="Import a national ranking-list page captured in the browser")
async def import_prospect_list(body: ProspectHTMLImport, session: Session = Depends(db_session)):
    return jobs.import_ranking_list_html(session, body.html, body.class_year)


@app.get("/api/prospects", response_model=list[ProspectOut], tags=["Prospects"],
         summary="List prospects, optionally by source or rising flag")
async def list_prospects(
    source: str | None = Query(None, description="itf or tennisrecruiting"),
    rising: bool | None = Query(None),
    session: Session = Depends(db_session),
):
    return [services.prospect_summary(p) for p in services.query_prospects(session, source=source, rising=rising)]


@app.post("/api/prospects/{prospect_id}/promote", response_model=RecruitOut, status_code=201,
          tags=["Prospects", "Recruits"], summary="Turn a prospect into a tracked recruit")
async def promote_prospect(prospect_id: int, session: Session = Depends(db_session)):
    prospect = _get_or_404(session, Prospect, prospect_id, "Prospect")
    recruit = services.promote_prospect(session, prospect)
    session.commit()
    return services.recruit_summary(recruit)


@app.delete("/api/prospects/{prospect_id}", tags=["Prospects"], summary="Dismiss a prospect")
async def delete_prospect(prospect_id: int, session: Session = Depends(db_session)):
    session.delete(_get_or_404(session, Prospect, prospect_id, "Prospect"))
    session.commit()
    return {"success": True}


# ---------------------------------------------------------------------------
# Routes: Match results
# ---------------------------------------------------------------------------


@app.get("/api/match-results", response_model=list[MatchResultOut], tags=["Matches"],
         summary="List stored match results for a recruit")
async def list_match_results(recruit_id: int = Query(...), session: Session = Depends(db_session)):
    return [services.match_summary(m) for m in services.query_matches(session, recruit_id)]


def _recruit_for_ingest(session: Session, body: MatchIngestRequest) -> Recruit:
    if body.recruit_id is not None:
        return _get_or_404(session, Recruit, body.recruit_id, "Recruit")
    column, value = (
        (Recruit.tennisrecruiting_id, body.tennisrecruiting_id)
        if body.source == "tennisrecruiting" else (Recruit.itf_player_id, body.itf_player_id)
    )
    recruit = session.execute(select(Recruit).where(column == value)).scalars().first() if value else None
    if recruit is None:
        raise HTTPException(404, "Recruit not found")
    return recruit


@app.post("/api/match-results", response_model=MatchIngestOut, tags=["Matches"],
          summary="Ingest match results by server-side fetch or from supplied HTML")
async def ingest_match_results(
    body: MatchIngestRequest,
    session: Session = Depends(db_session),
    client: SourceClient = Depends(source_client),
    settings: Settings = Depends(get_settings),
):
    recruit = _recruit_for_ingest(session, body)
    if body.html:
        result = jobs.ingest_match_html(session, recruit, body.source, body.html)
    else:
        result = await jobs.fetch_match_results(session, client, recruit, settings)
    session.commit()
    return {
        "success": True, "fetched": result.fetched, "inserted": result.inserted,
        "by_source": result.by_source, "failed_sources": result.failed_sources,
    }


# ---------------------------------------------------------------------------
# Routes: Discovery
# ---------------------------------------------------------------------------


@app.get("/api/discovery", response_model=DiscoveryOut, tags=["Discovery"],
         summary="Recruits with rating/ranking trends plus the derived discovery views")
async def get_discovery(session: Session = Depends(db_session)):
    return services.discovery(session)


# ---------------------------------------------------------------------------
# Routes: Recruits
# ---------------------------------------------------------------------------


@app.get("/api/recruits", response_model=list[RecruitOut], tags=["Recruits"], summary="List recruits")
async def list_recruits(session: Session = Depends(db_session)):
    return [services.recruit_summary(r) for r in services.query_recruits(session)]


@app.get("/api/recruits/{recruit_id}", response_model=RecruitOut, tags=["Recruits"],
         summary="Get one recruit with its rating and ranking histories")
async def get_recruit(recruit_id: int, session: Session = Depends(db_session)):
    return services.recruit_summary(_get_or_404(session, Recruit, recruit_id, "Recruit"))


@app.post("/api/recruits", response_model=RecruitOut, status_code=201, tags=["Recruits"],
          summary="Add a recruit to the pipeline")
async def create_recruit(body: RecruitCreate, session: Session = Depends(db_session)):
    recruit = Recruit(**body.model_dump())
    session.add(recruit)
    session.commit()
    session.refresh(recruit)
    return services.recruit_summary(recruit)


@app.patch("/api/recruits/{recruit_id}", response_model=RecruitOut, tags=["Recruits"],
           summary="Update recruit fields (partial update, null fields ignored)")
async def update_recruit(recruit_id: int, body: RecruitUpdate, session: Session = Depends(db_session)):
    recruit = _get_or_404(session, Recruit, recruit_id, "Recruit")
    services.apply_updates(recruit, body.model_dump(), services.UPDATABLE_FIELDS)
    session.commit()
    return services.recruit_summary(recruit)


@app.delete("/api/recruits/{recruit_id}", tags=["Recruits"],
            summary="Delete a recruit with its histories, matches and interactions")
async def delete_recruit(recruit_id: int, session: Session = Depends(db_session)):
    session.delete(_get_or_404(session, Recruit, recruit_id, "Recruit"))
    session.commit()
    return {"success": True}


@app.post("/api/utr-history", status_code=201, tags=["Recruits"],
          summary="Record a UTR rating and make it the recruit's current rating")
async def add_utr_history(body: UTREntryCreate, session: Session = Depends(db_session)):
    recruit = _get_or_404(session, Recruit, body.recruit_id, "Recruit")
    try:
        services.add_utr_entry(session, recruit, body.utr_rating, body.recorded_date, body.source)
    except PersistenceConflict as exc:
        session.rollback()
        raise HTTPException(409, str(exc)) from exc
    session.commit()
    return {"success": True, "utr_rating": recruit.utr_rating}


@app.delete("/api/utr-history/{entry_id}", tags=["Recruits"], summary="Delete a UTR history entry")
async def delete_utr_history(entry_id: int, session: Session = Depends(db_session)):
    if not services.delete_history_entry(session, UTRHistory, entry_id):
        raise HTTPException(404, "UTR history entry not found")
    session.commit()
    return {"success": True}


@app.post("/api/ranking-history", status_code=201, tags=["Recruits"],
          summary="Record a national ranking data point")
async def add_ranking_history(body: RankingEntryCreate, session: Session = Depends(db_session)):
    recruit = _get_or_404(session, Recruit, body.recruit_id, "Recruit")
    try:
        services.add_ranking_entry(session, recruit, body.national_ranking, body.recorded_date, body.source)
    except PersistenceConflict as exc:
        session.rollback()
        raise HTTPException(409, str(exc)) from exc
    session.commit()
    return {"success": True}


@app.delete("/api/ranking-history/{entry_id}", tags=["Recruits"], summary="Delete a ranking history entry")
async def delete_ranking_history(entry_id: int, session: Session = Depends(db_session)):
    if not services.delete_history_entry(session, RankingHistory, entry_id):
        raise HTTPException(404, "Ranking history entry not found")
    session.commit()
    return {"success": True}


@app.post("/api/interactions", status_code=201, tags=["Recruits"],
          summary="Log a contact with a recruit")
async def create_interaction(body: InteractionCreate, session: Session = Depends(db_session)):
    recruit = _get_or_404(session, Recruit, body.recruit_id, "Recruit")
    interaction = services.log_interaction(
        session, recruit, type=body.type, contact_date=body.contact_date,
        notes=body.notes, author=body.author,
    )
    session.commit()
    return {"success": True, "id": interaction.id, "last_contacted": recruit.last_contacted}


@app.get("/api/exports/arms", tags=["Exports"], summary="Export the contact log as CSV")
async def export_contact_log(
    recruit_id: str | None = Query(None, description="Recruit id, or 'all' for every recruit."),
    session: Session = Depends(db_session),
):
    if recruit_id in (None, "", "all"):
        rid = None
    elif recruit_id.isdigit():
        rid = int(recruit_id)
    else:
        raise HTTPException(400, "recruit_id must be an integer or 'all'")
    return Response(
        services.contact_log_csv(session, rid),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="arms-export.csv"'},
    )


# ---------------------------------------------------------------------------
# Routes: Program profile & fit
# ---------------------------------------------------------------------------


@app.get("/api/program-profile", response_model=ProgramProfileOut, tags=["Program"],
         summary="Get the program's targeting profile")
async def get_program_profile(session: Session = Depends(db_session)):
    profile = services.get_program_profile(session)
    session.commit()
    return services.profile_summary(profile)


@app.patch("/api/program-profile", response_model=ProgramProfileOut, tags=["Program"],
           summary="Update the targeting profile (partial update)")
async def update_program_profile(body: ProgramProfileUpdate, session: Session = Depends(db_session)):
    try:
        profile = services.update_program_profile(session, body.model_dump())
    except ValueError as exc:
        session.rollback()
        raise HTTPException(400, str(exc)) from exc
    session.commit()
    return services.profile_summary(profile)


@app.post("/api/calculate-fit", response_model=FitOut, tags=["Program"],
          summary="Score a recruit against the program's weighted fit criteria")
async def calculate_fit(body: FitRequest, session: Session = Depends(db_session)):
    recruit = _get_or_404(session, Recruit, body.recruit_id, "Recruit")
    try:
        fit, breakdown = services.apply_fit(session, recruit, body.scores)
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc
    session.commit()
    return {"success": True, "fit_score": fit, "breakdown": breakdown}


@app.post("/api/brief", tags=["Recruits"], summary="Generate a coach-ready recruit brief via LLM")
async def create_brief(body: BriefRequest, session: Session = Depends(db_session)) -> dict[str, Any]:
    recruit = _get_or_404(session, Recruit, body.recruit_id, "Recruit")
    try:
        brief = await services.run_brief(session, recruit)
    except LLMCallError as exc:
        raise HTTPException(500, f"Brief generation failed: {exc}") from exc
    session.commit()
    return {"success": True, "brief": brief}


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    uvicorn.run("courtiq.app:app", host="127.0.0.1", port=8001, reload=True)


if __name__ == "__main__":
    main()
