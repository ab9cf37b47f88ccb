from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable

from auth.errors import HttpError

from .http import ApiClient

ZONE_TYPES = ("heartrate", "speed", "power")
DEFAULT_RANGE_DAYS = 30
PLAN_RANGE_DAYS = 7
DEFAULT_UPLOAD_CLIENT = "TrainingPeaks API Explorer"
DEFAULT_EVENT_TYPE = "Other"

METRIC_FIELDS = (
    "WeightInKilograms",
    "Steps",
    "SleepHours",
    "Pulse",
    "Stress",
    "Mood",
    "Fatigue",
    "Soreness",
    "SleepQuality",
    "OverallFeeling",
    "HRV",
    "WaterConsumption",
    "BMI",
    "PercentFat",
    "MuscleMass",
)

DateLike = date | datetime | str
ResourceId = str | int

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def format_date(value: DateLike) -> str:
    """Format ``value`` as ``YYYY-MM-DD``."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if _ISO_DATE.match(value):
        return value
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ValueError(f"Unrecognised date {value!r}; expected YYYY-MM-DD.") from None
    return parsed.date().isoformat()


def _zone_type(zone_type: str | None) -> str:
    if not zone_type:
        raise ValueError(f"Zone type is required. Valid types: {', '.join(ZONE_TYPES)}")
    normalized = zone_type.lower()
    if normalized not in ZONE_TYPES:
        raise ValueError(f"Invalid zone type. Valid types are: {', '.join(ZONE_TYPES)}")
    return normalized


def _require(value: Any, message: str) -> None:
    if value is None or value == "":
        raise ValueError(message)


def _now_utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class TrainingPeaksApi:
    """Endpoint catalog of the TrainingPeaks REST API.

    Every call goes through :class:`~tpexplorer.http.ApiClient`, so it
    either returns decoded JSON or raises ``HttpError`` /
    ``AuthenticationRequiredError``.
    """

    def __init__(
        self,
        client: ApiClient,
        *,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.client = client
        self._today = today

    def _range(
        self,
        start: DateLike | None,
        end: DateLike | None,
    ) -> tuple[str, str]:
        if not start or not end:
            today = self._today()
            return format_date(today - timedelta(days=DEFAULT_RANGE_DAYS)), format_date(today)
        return format_date(start), format_date(end)

    # -- info ------------------------------------------------------------------

    async def get_version(self) -> Any:
        return await self.client.get("/v1/info/version")

    # -- athlete ---------------------------------------------------------------

    async def get_athlete_profile(self) -> Any:
        return await self.client.get("/v1/athlete/profile")

    async def get_athlete_zones(self) -> Any:
        return await self.client.get("/v1/athlete/profile/zones")

    async def get_athlete_zones_by_type(self, zone_type: str) -> Any:
        normalized = _zone_type(zone_type)
        try:
            return await self.client.get(f"/v1/athlete/profile/zones/{normalized}")
        except HttpError as error:
            if error.status_code != 404:
                raise
        return await self.client.get(f"/v1/athlete/zones/{normalized}")

    # -- workouts --------------------------------------------------------------

    async def get_workouts(
        self, start: DateLike | None = None, end: DateLike | None = None
    ) -> Any:
        start_day, end_day = self._range(start, end)
        return await self.client.get(f"/v2/workouts/{start_day}/{end_day}")

    async def get_workouts_by_athlete(
        self,
        athlete_id: ResourceId,
        start: DateLike | None = None,
        end: DateLike | None = None,
    ) -> Any:
        _require(athlete_id, "Athlete ID is required")
        start_day, end_day = self._range(start, end)
        return await self.client.get(f"/v2/workouts/{athlete_id}/{start_day}/{end_day}")

    async def get_changed_workouts(self, day: DateLike | None = None) -> Any:
        return await self.client.get(
            "/v2/workouts/changed",
            params={"date": format_date(day or self._today())},
        )

    async def get_changed_workouts_by_athlete(
        self, athlete_id: ResourceId, day: DateLike | None = None
    ) -> Any:
        _require(athlete_id, "Athlete ID is required")
        return await self.client.get(
            f"/v2/workouts/{athlete_id}/changed",
            params={"date": format_date(day or self._today())},
        )

    def _workout_path(
        self,
        workout_id: ResourceId,
        athlete_id: ResourceId | None = None,
        suffix: str = "",
    ) -> str:
        _require(workout_id, "Workout ID is required")
        if athlete_id:
            return f"/v2/workouts/{athlete_id}/id/{workout_id}{suffix}"
        return f"/v2/workouts/id/{workout_id}{suffix}"

    async def get_workout(
        self, workout_id: ResourceId, athlete_id: ResourceId | None = None
    ) -> Any:
        return await self.client.get(self._workout_path(workout_id, athlete_id))

    async def get_workout_details(
        self, workout_id: ResourceId, athlete_id: ResourceId | None = None
    ) -> Any:
        return await self.client.get(self._workout_path(workout_id, athlete_id, "/details"))

    async def get_workout_mean_maxes(
        self, workout_id: ResourceId, athlete_id: ResourceId | None = None
    ) -> Any:
        return await self.client.get(self._workout_path(workout_id, athlete_id, "/meanmaxes"))

    async def get_workout_time_in_zones(
        self, workout_id: ResourceId, athlete_id: ResourceId | None = None
    ) -> Any:
        return await self.client.get(self._workout_path(workout_id, athlete_id, "/timeinzones"))

    async def delete_workout(
        self, workout_id: ResourceId, athlete_id: ResourceId | None = None
    ) -> Any:
        return await self.client.delete(self._workout_path(workout_id, athlete_id))

    async def post_workout_comment(
        self,
        athlete_id: ResourceId,
        workout_id: ResourceId,
        comment: Any,
    ) -> Any:
        if not athlete_id or not workout_id:
            raise ValueError("Athlete ID and Workout ID are required")
        return await self.client.post(
            f"/v2/workouts/{athlete_id}/id/{workout_id}/comment",
            json=comment,
        )

    async def get_workout_of_the_day(self, day: DateLike | None = None) -> Any:
        return await self.client.get(f"/v2/workouts/wod/{format_date(day or self._today())}")

    async def get_workout_of_the_day_file(
        self,
        workout_id: ResourceId,
        file_format: str = "tcx",
    ) -> Any:
        _require(workout_id, "Workout ID is required")
        return await self.client.get(
            f"/v2/workouts/wod/file/{workout_id}/",
            params={"format": file_format},
        )

    async def create_workout_plan(self, plan: dict) -> Any:
        return await self.client.post("/v2/workouts/plan", json=plan)

    async def update_workout_plan(self, plan_id: ResourceId, plan: dict) -> Any:
        _require(plan_id, "Plan ID is required")
        return await self.client.put(f"/v2/workouts/plan/{plan_id}", json=plan)

    async def get_workout_plan(self) -> Any:
        today = self._today()
        end = today + timedelta(days=PLAN_RANGE_DAYS)
        return await self.client.get(f"/v2/workouts/{format_date(today)}/{format_date(end)}")

    # -- events ----------------------------------------------------------------

    async def get_next_event(self) -> Any:
        return await self.client.get("/v2/events/next")

    async def get_events_by_date(self, day: DateLike | None = None) -> Any:
        return await self.client.get(f"/v2/events/{format_date(day or self._today())}")

    async def create_event(self, event: dict) -> Any:
        payload = dict(event)
        if not payload.get("AthleteId"):
            profile = await self.get_athlete_profile()
            if not isinstance(profile, dict) or "Id" not in profile:
                raise ValueError("Could not determine AthleteId from the athlete profile.")
            payload["AthleteId"] = profile["Id"]

        if not payload.get("EventDate"):
            start = payload.pop("startDate", None)
            payload["EventDate"] = start or _now_utc_iso()
        payload.pop("endDate", None)
        payload.setdefault("EventType", DEFAULT_EVENT_TYPE)
        return await self.client.post("/v2/events", json=payload)

    # -- coach -----------------------------------------------------------------

    async def get_coach_profile(self) -> Any:
        return await self.client.get("/v1/coach/profile")

    async def get_coach_athletes(self) -> Any:
        return await self.client.get("/v1/coach/athletes")

    async def get_coach_athletes_zones(self) -> Any:
        return await self.client.get("/v1/coach/athletes/zones")

    async def get_coach_athletes_zones_by_type(self, zone_type: str) -> Any:
        return await self.client.get(f"/v1/coach/athletes/zones/{_zone_type(zone_type)}")

    async def get_coach_assistants(self) -> Any:
        return await self.client.get("/v1/coach/assistants")

    async def get_coach_assistant(self, assistant_id: ResourceId) -> Any:
        _require(assistant_id, "Assistant ID is required")
        return await self.client.get(f"/v1/coach/assistants/{assistant_id}")

    async def get_assistant_athletes(self, assistant_id: ResourceId) -> Any:
        _require(assistant_id, "Assistant ID is required")
        return await self.client.get(f"/v1/coach/assistants/{assistant_id}/athletes")

    # -- metrics ---------------------------------------------------------------

    async def get_metric(self, metric_id: ResourceId) -> Any:
        _require(metric_id, "Metric ID is required")
        return await self.client.get(f"/v2/metrics/{metric_id}")

    async def get_metrics(
        self, start: DateLike | None = None, end: DateLike | None = None
    ) -> Any:
        start_day, end_day = self._range(start, end)
        return await self.client.get(f"/v2/metrics/{start_day}/{end_day}")

    async def get_metrics_by_athlete(
        self,
        athlete_id: ResourceId,
        start: DateLike | None = None,
        end: DateLike | None = None,
    ) -> Any:
        _require(athlete_id, "Athlete ID is required")
        start_day, end_day = self._range(start, end)
        return await self.client.get(f"/v2/metrics/{athlete_id}/{start_day}/{end_day}")

    async def upsert_metric(self, metric: dict) -> Any:
        if not any(metric.get(field) is not None for field in METRIC_FIELDS):
            raise ValueError(
                "At least one metric value is required. Valid fields include: "
                + ", ".join(METRIC_FIELDS)
            )
        payload = dict(metric)
        if not payload.get("DateTime"):
            payload["DateTime"] = _now_utc_iso()
        if not payload.get("UploadClient"):
            payload["UploadClient"] = DEFAULT_UPLOAD_CLIENT
        return await self.client.post("/v2/metrics", json=payload)

    # -- files -----------------------------------------------------------------

    async def upload_file(self, file_data: dict) -> Any:
        return await self.client.post("/v3/file", json=file_data)

    # -- webhooks --------------------------------------------------------------

    async def create_webhook_subscription(self, subscription: dict) -> Any:
        return await self.client.post("/v1/webhook/subscriptions", json=subscription)

    async def get_webhook_subscriptions(self) -> Any:
        return await self.client.get("/v1/webhook/subscriptions")

    async def update_webhook_subscription(
        self, subscription_id: ResourceId, subscription: dict
    ) -> Any:
        _require(subscription_id, "Subscription ID is required")
        return await self.client.put(
            f"/v1/webhook/subscriptions/{subscription_id}",
            json=subscription,
        )

    async def delete_webhook_subscription(self, subscription_id: ResourceId) -> Any:
        _require(subscription_id, "Subscription ID is required")
        return await self.client.delete(f"/v1/webhook/subscriptions/{subscription_id}")
