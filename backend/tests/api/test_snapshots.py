"""Tests for snapshot API endpoints."""

from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from app.schemas.roadmap import (
    ActiveScheduleSchema,
    CaptureSchema,
    DisciplineScheduleSchema,
    ExportDeliverableSchema,
    ExportProjectSchema,
    ScheduledDeliverableSchema,
    ScheduleReportSchema,
    TeamScheduleSchema,
)

JAN_1_2022 = 1_640_995_200_000


def test_health(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}
    assert "x-elapsed-ms" in response.headers


# ---------------------------------------------------------------------------
# GET /api/v1/snapshots/dates
# ---------------------------------------------------------------------------


@patch("app.api.v1.snapshots.get_capture_dates", new_callable=AsyncMock)
def test_list_capture_dates(mock_get: AsyncMock, client: TestClient) -> None:
    """Capture dates come back newest first."""
    mock_get.return_value = [
        CaptureSchema(observed_at=JAN_1_2022 + 86_400_000, date="2022-01-02T00:00:00.000Z"),
        CaptureSchema(observed_at=JAN_1_2022, date="2022-01-01T00:00:00.000Z"),
    ]

    response = client.get("/api/v1/snapshots/dates")
    assert response.status_code == 200

    data = response.json()
    assert [c["date"] for c in data] == [
        "2022-01-02T00:00:00.000Z",
        "2022-01-01T00:00:00.000Z",
    ]


# ---------------------------------------------------------------------------
# GET /api/v1/snapshots/{as_of}
# ---------------------------------------------------------------------------


@patch("app.api.v1.snapshots.get_snapshot", new_callable=AsyncMock)
def test_roadmap_at(mock_get: AsyncMock, client: TestClient) -> None:
    """Roadmap documents use the feed's camelCase keys."""
    mock_get.return_value = [
        ExportDeliverableSchema(
            uuid="d1",
            slug="salvage",
            title="Salvage",
            start_date="2022-01-01T00:00:00.000Z",
            end_date="2022-02-01T00:00:00.000Z",
            number_of_teams=2,
            projects=[ExportProjectSchema(title="Star Citizen")],
        )
    ]

    response = client.get("/api/v1/snapshots/20220101")
    assert response.status_code == 200

    [deliverable] = response.json()
    assert deliverable["startDate"] == "2022-01-01T00:00:00.000Z"
    assert deliverable["numberOfTeams"] == 2
    assert deliverable["projects"] == [{"title": "Star Citizen"}]
    mock_get.assert_awaited_once()
    assert mock_get.await_args.args[1] == JAN_1_2022


@patch("app.api.v1.snapshots.get_snapshot", new_callable=AsyncMock)
def test_roadmap_at_before_first_capture(mock_get: AsyncMock, client: TestClient) -> None:
    mock_get.return_value = None

    response = client.get("/api/v1/snapshots/20100101")
    assert response.status_code == 404


@patch("app.api.v1.snapshots.get_snapshot", new_callable=AsyncMock)
def test_roadmap_at_bad_date(mock_get: AsyncMock, client: TestClient) -> None:
    response = client.get("/api/v1/snapshots/yesterday")

    assert response.status_code == 422
    mock_get.assert_not_awaited()


# ---------------------------------------------------------------------------
# GET /api/v1/snapshots/{as_of}/schedule
# ---------------------------------------------------------------------------


@patch("app.api.v1.snapshots.get_schedule", new_callable=AsyncMock)
def test_schedule_at(mock_get: AsyncMock, client: TestClient) -> None:
    """Schedule report lists active work per team and discipline."""
    mock_get.return_value = ScheduleReportSchema(
        at=JAN_1_2022,
        is_past=True,
        deliverable_count=1,
        team_count=1,
        deliverables=[
            ScheduledDeliverableSchema(
                uuid="d1",
                slug="salvage",
                title="Salvage",
                projects=["SC"],
                teams=[
                    TeamScheduleSchema(
                        slug="core",
                        title="Core",
                        disciplines=[
                            DisciplineScheduleSchema(
                                uuid="disc-1",
                                title="Engineering",
                                number_of_members=2,
                                active=[
                                    ActiveScheduleSchema(
                                        start_date=JAN_1_2022,
                                        end_date=JAN_1_2022 + 10 * 86_400_000,
                                        full_time=1,
                                        part_time=2,
                                        tasks=3,
                                        number_of_members=2,
                                        load=1.6667,
                                    )
                                ],
                            )
                        ],
                    )
                ],
            )
        ],
    )

    response = client.get("/api/v1/snapshots/2022-01-01/schedule")
    assert response.status_code == 200

    data = response.json()
    assert data["is_past"] is True
    assert data["deliverables"][0]["projects"] == ["SC"]
    active = data["deliverables"][0]["teams"][0]["disciplines"][0]["active"][0]
    assert active["tasks"] == 3
    assert active["load"] == 1.6667


@patch("app.api.v1.snapshots.get_schedule", new_callable=AsyncMock)
def test_schedule_without_captures(mock_get: AsyncMock, client: TestClient) -> None:
    mock_get.return_value = None

    response = client.get("/api/v1/snapshots/20220101/schedule")
    assert response.status_code == 404
