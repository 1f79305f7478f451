from datetime import date, time, datetime
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict

from gymbook.core.exceptions import ValidationError
from gymbook.staff.models.schedules import Weekday


def _validate_weekdays(v: Optional[List[Weekday]]) -> Optional[List[Weekday]]:
    if v is None:
        return v
    if not v:
        raise ValidationError("days_of_week must contain at least one day")
    # Убираем повторы, сохраняя порядок недели
    return [day for day in Weekday if day in set(v)]


class ScheduleBase(BaseModel):
    activity_id: int = Field(..., gt=0)
    trainer_id: Optional[int] = Field(None, gt=0)
    start_time: time
    end_time: time
    days_of_week: List[Weekday]
    valid_from: date
    valid_until: Optional[date] = None
    capacity: Optional[int] = Field(None, gt=0, description="Overrides activity default")
    notes: Optional[str] = Field(None, max_length=1000)


class ScheduleCreate(ScheduleBase):
    """Схема для создания расписания"""

    @field_validator("days_of_week")
    @classmethod
    def validate_days(cls, v):
        return _validate_weekdays(v)

    @model_validator(mode="after")
    def validate_windows(self):
        if self.end_time <= self.start_time:
            raise ValidationError("end_time must be after start_time")
        if self.valid_until is not None and self.valid_until < self.valid_from:
            raise ValidationError("valid_until must be on or after valid_from")
        return self


class ScheduleUpdate(BaseModel):
    """Схема для обновления расписания (все поля опциональны)"""

    activity_id: Optional[int] = Field(None, gt=0)
    trainer_id: Optional[int] = Field(None, gt=0)
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    days_of_week: Optional[List[Weekday]] = None
    valid_from: Optional[date] = None
    valid_until: Optional[date] = None
    capacity: Optional[int] = Field(None, gt=0)
    notes: Optional[str] = Field(None, max_length=1000)
    # Версия, которую видел клиент (optimistic lock)
    version: Optional[int] = None

    @field_validator("days_of_week")
    @classmethod
    def validate_days(cls, v):
        return _validate_weekdays(v)


class ScheduleRead(BaseModel):
    id: int
    club_id: int
    activity_id: Optional[int]
    trainer_id: Optional[int]
    start_time: time
    end_time: time
    days_of_week: List[Weekday]
    valid_from: date
    valid_until: Optional[date]
    capacity: Optional[int]
    notes: Optional[str]
    is_active: bool
    version: int
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ScheduleListResponse(BaseModel):
    schedules: List[ScheduleRead]
    total: int


# Генерация занятий из расписаний
class ExpandSchedulesRequest(BaseModel):
    """Запрос на генерацию занятий клуба за период (включительно)"""

    start_date: date = Field(..., description="First date to materialize")
    end_date: date = Field(..., description="Last date to materialize")


class ExpansionWarning(BaseModel):
    """Расписание пропущено, генерация остальных продолжается"""

    schedule_id: int
    reason: str
    dates: List[date] = Field(default_factory=list)


class ExpandSchedulesResponse(BaseModel):
    club_id: int
    start_date: date
    end_date: date
    sessions_created: int
    warnings: List[ExpansionWarning] = Field(default_factory=list)
