from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from site_attendance.models import AttendanceStatus, EventType, TriggerMethod


class CoordinatesMixin(BaseModel):
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)

    @model_validator(mode="after")
    def _validate_coordinate_pair(self):
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be provided together.")
        return self


class AttendanceEventCreate(CoordinatesMixin):
    employee_id: int = Field(ge=1)
    site_id: int = Field(ge=1)
    event_type: EventType
    ts_utc: datetime | None = None
    trigger_method: TriggerMethod = TriggerMethod.GPS
    device_identifier: str | None = Field(default=None, max_length=200)


class AttendanceEventRead(BaseModel):
    id: int
    tenant_id: int
    employee_id: int
    site_id: int
    event_type: EventType
    ts_utc: datetime
    latitude: float | None
    longitude: float | None
    trigger_method: TriggerMethod
    device_registration_id: int | None
    is_noise: bool
    distance_to_site_m: float | None
    processed: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SitePhotoAttendanceCreate(CoordinatesMixin):
    employee_id: int = Field(ge=1)
    site_id: int = Field(ge=1)
    event_date: date
    weather_conditions: str | None = Field(default=None, max_length=100)
    notes: str | None = Field(default=None, max_length=1000)


class SitePhotoAttendanceRead(BaseModel):
    id: int
    employee_id: int
    site_id: int
    event_date: date
    latitude: float | None
    longitude: float | None
    distance_to_site_m: float | None
    weather_conditions: str | None
    notes: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class GeofenceCheckRequest(BaseModel):
    site_id: int = Field(ge=1)
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class GeofenceCheckResponse(BaseModel):
    site_id: int
    within_geofence: bool


class NearestSiteRequest(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class NearestSiteResponse(BaseModel):
    site_id: int | None = None
    site_name: str | None = None
    distance_m: float | None = None


class ProcessDailyRequest(BaseModel):
    target_date: date | None = None


class ProcessDailyResponse(BaseModel):
    tenant_id: int
    target_date: date
    events_processed: int
    summaries_created: int
    summaries_updated: int
    errors: list[str] = Field(default_factory=list)
    cancelled: bool = False


class ProcessRangeRequest(BaseModel):
    from_date: date | None = None
    to_date: date | None = None


class ProcessRangeResponse(BaseModel):
    tenant_id: int
    from_date: date
    to_date: date
    dates_processed: int
    events_processed: int
    summaries_created: int
    summaries_updated: int
    cancelled: bool = False
    details: list[ProcessDailyResponse] = Field(default_factory=list)


class AttendanceSummaryRead(BaseModel):
    id: int
    employee_id: int
    employee_name: str | None = None
    site_id: int
    site_name: str | None = None
    summary_date: date
    expected_hours: Decimal
    first_entry_utc: datetime | None
    last_exit_utc: datetime | None
    total_minutes: Decimal
    utilization_percent: Decimal
    entry_count: int
    exit_count: int
    has_spa: bool
    status: AttendanceStatus

    model_config = ConfigDict(from_attributes=True)


class ProcessingDayCount(BaseModel):
    day: date
    total: int
    processed: int
    unprocessed: int


class ProcessingStats(BaseModel):
    total: int
    processed: int
    unprocessed: int
    by_date: list[ProcessingDayCount] = Field(default_factory=list)


class StatusCounts(BaseModel):
    excellent: int = 0
    good: int = 0
    below_target: int = 0
    absent: int = 0
    incomplete: int = 0


class DashboardKpis(BaseModel):
    from_date: date
    to_date: date
    working_days: int
    overall_utilization_percent: Decimal
    average_hours_per_summary: Decimal
    active_employees: int
    active_sites: int
    expected_hours: Decimal
    actual_hours: Decimal
    variance_hours: Decimal
    status_counts: StatusCounts


class EmployeePerformance(BaseModel):
    employee_id: int
    employee_name: str
    total_hours: Decimal
    expected_hours: Decimal
    utilization_percent: Decimal
    status: AttendanceStatus
    days_present: int
    days_absent: int
    spa_count: int


class EmployeePerformancePage(BaseModel):
    items: list[EmployeePerformance]
    total: int
    page: int
    page_size: int


class SiteActivity(BaseModel):
    site_id: int
    site_name: str
    employee_count: int
    total_hours: Decimal
    average_hours_per_employee: Decimal
    total_events: int
    days_active: int
