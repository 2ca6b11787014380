from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
from mangum import Mangum

from .domain import (
    CreateDepartmentRequest,
    CreateEventRequest,
    Department,
    DepartmentStanding,
    Event,
    EventResultRow,
    EventResultsResponse,
    MedalType,
    RecordResultRequest,
    ResultRecord,
    StandingRow,
    StandingsResponse,
    UpdateDepartmentRequest,
    UpdateEventRequest,
)
from .scoring import format_points
from .standings import compute_standings, group_by_event, podium, select_awards
from .store import MedalAlreadyAwarded, Store, build_store

logger = logging.getLogger(__name__)


def _load_dotenv(repo_root: Path) -> None:
    env_path = repo_root / "config" / ".env"
    if env_path.exists():
        load_dotenv(dotenv_path=env_path, override=False)


def _configure_logging() -> None:
    raw = os.environ.get("LOG_LEVEL", "INFO").strip().upper() or "INFO"
    level = logging.getLevelName(raw)
    unknown = not isinstance(level, int)
    if unknown:
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if unknown:
        logger.warning("unknown LOG_LEVEL %r, falling back to INFO", raw)


def _cors_origins() -> list[str]:
    raw = os.environ.get("CORS_ALLOW_ORIGINS", "*")
    origins = [o.strip() for o in raw.split(",") if o.strip()]
    return origins or ["*"]


def _standing_rows(ranking: list[DepartmentStanding]) -> list[StandingRow]:
    return [
        StandingRow(
            rank=i,
            department_id=s.department_id,
            name=s.name,
            abbreviation=s.abbreviation,
            image_url=s.image_url,
            gold_count=s.gold_count,
            silver_count=s.silver_count,
            bronze_count=s.bronze_count,
            total_medals=s.total_medals,
            total_points=s.total_points,
            display_points=format_points(s.total_points),
        )
        for i, s in enumerate(ranking, start=1)
    ]


def create_app(store: Store | None = None) -> FastAPI:
    repo_root = Path(__file__).resolve().parents[3]
    _load_dotenv(repo_root)
    _configure_logging()

    app = FastAPI(title="SIDLAK Standings")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if store is None:
        store = build_store()

    @app.get("/health")
    def health():
        return {"ok": True}

    # departments

    @app.get("/api/departments", response_model=list[Department])
    def list_departments():
        return store.list_departments()

    @app.post("/api/departments", response_model=Department, status_code=201)
    def create_department(req: CreateDepartmentRequest):
        return store.create_department(req.name, req.abbreviation, req.image_url)

    @app.get("/api/departments/{department_id}", response_model=Department)
    def get_department(department_id: str):
        dept = store.get_department(department_id)
        if dept is None:
            raise HTTPException(status_code=404, detail="department not found")
        return dept

    @app.patch("/api/departments/{department_id}", response_model=Department)
    def update_department(department_id: str, req: UpdateDepartmentRequest):
        changes = req.model_dump(exclude_unset=True)
        try:
            return store.update_department(department_id, **changes)
        except KeyError:
            raise HTTPException(status_code=404, detail="department not found")
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))

    @app.delete("/api/departments/{department_id}", status_code=204)
    def delete_department(department_id: str):
        try:
            store.delete_department(department_id)
        except KeyError:
            raise HTTPException(status_code=404, detail="department not found")
        return Response(status_code=204)

    # events

    @app.get("/api/events", response_model=list[Event])
    def list_events():
        return store.list_events()

    @app.post("/api/events", response_model=Event, status_code=201)
    def create_event(req: CreateEventRequest):
        return store.create_event(req.name, req.category, req.icon)

    # 固定パスは /api/events/{event_id} より先に登録する
    @app.get("/api/events/results", response_model=EventResultsResponse)
    def event_results(
        category: str | None = None,
        medal_type: MedalType | None = None,
        department_id: str | None = None,
    ):
        events = store.list_events()
        departments = store.list_departments()
        awards = select_awards(
            store.list_results(),
            events,
            category=category,
            medal_type=medal_type,
            department_id=department_id,
        )
        grouped = group_by_event(awards, departments)

        rows: list[EventResultRow] = []
        known = {e.id: e for e in events}
        for event in events:
            medals = grouped.get(event.id)
            if medals:
                rows.append(
                    EventResultRow(
                        event_id=event.id,
                        event_name=event.name,
                        category=event.category,
                        icon=event.icon,
                        medals=medals,
                    )
                )
        for event_id, medals in grouped.items():
            if event_id not in known:
                rows.append(
                    EventResultRow(event_id=event_id, event_name="Unknown Event", medals=medals)
                )
        return EventResultsResponse(events=rows)

    @app.get("/api/events/{event_id}", response_model=Event)
    def get_event(event_id: str):
        event = store.get_event(event_id)
        if event is None:
            raise HTTPException(status_code=404, detail="event not found")
        return event

    @app.patch("/api/events/{event_id}", response_model=Event)
    def update_event(event_id: str, req: UpdateEventRequest):
        changes = req.model_dump(exclude_unset=True)
        try:
            return store.update_event(event_id, **changes)
        except KeyError:
            raise HTTPException(status_code=404, detail="event not found")
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))

    @app.delete("/api/events/{event_id}", status_code=204)
    def delete_event(event_id: str):
        try:
            store.delete_event(event_id)
        except KeyError:
            raise HTTPException(status_code=404, detail="event not found")
        return Response(status_code=204)

    # results

    @app.get("/api/results", response_model=list[ResultRecord])
    def list_results():
        return store.list_results()

    @app.post("/api/results", response_model=ResultRecord, status_code=201)
    def record_result(req: RecordResultRequest):
        try:
            return store.record_result(req.event_id, req.department_id, req.medal_type)
        except MedalAlreadyAwarded as exc:
            raise HTTPException(status_code=409, detail=str(exc))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))

    @app.delete("/api/results")
    def reset_results():
        return {"deleted": store.reset_results()}

    @app.put("/api/results/{result_id}", response_model=ResultRecord)
    def update_result(result_id: str, req: RecordResultRequest):
        try:
            return store.update_result(
                result_id, req.event_id, req.department_id, req.medal_type
            )
        except KeyError:
            raise HTTPException(status_code=404, detail="result not found")
        except MedalAlreadyAwarded as exc:
            raise HTTPException(status_code=409, detail=str(exc))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))

    @app.delete("/api/results/{result_id}", status_code=204)
    def delete_result(result_id: str):
        try:
            store.delete_result(result_id)
        except KeyError:
            raise HTTPException(status_code=404, detail="result not found")
        return Response(status_code=204)

    # standings

    @app.get("/api/standings", response_model=StandingsResponse)
    def standings():
        ranking = compute_standings(store.list_results(), store.list_departments())
        rows = _standing_rows(ranking)
        return StandingsResponse(standings=rows, podium=_standing_rows(podium(ranking)))

    return app


app = create_app()
handler = Mangum(app)
