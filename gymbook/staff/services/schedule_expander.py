import logging
from datetime import date, timedelta
from typing import Dict, Iterator, List, Optional, Set, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload
from sqlalchemy import and_, or_
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from gymbook.core.config import MAX_EXPANSION_DAYS
from gymbook.core.exceptions import ValidationError, NotFoundError, ConfigurationError
from gymbook.core.logging_utils import log_business_event
from gymbook.staff.models.clubs import Club
from gymbook.staff.models.schedules import Schedule
from gymbook.staff.models.sessions import ClassSession, SessionStatus
from gymbook.staff.schemas.schedules import ExpansionWarning, ExpandSchedulesResponse

logger = logging.getLogger(__name__)

# INSERT ... ON CONFLICT DO NOTHING по диалекту
_DIALECT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class ScheduleExpander:
    """Сервис для генерации занятий клуба из еженедельных расписаний"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def expand_schedules(
        self, club_id: int, start_date: date, end_date: date
    ) -> ExpandSchedulesResponse:
        """
        Создает недостающие занятия для всех активных расписаний клуба
        в периоде [start_date, end_date].

        Повторный запуск на пересекающемся периоде ничего не дублирует:
        уже существующие пары (schedule_id, session_date) пропускаются,
        а вставка идет через ON CONFLICT DO NOTHING по уникальному ключу.
        """
        self._validate_period(start_date, end_date)
        await self._get_club(club_id)

        schedules = await self._get_active_schedules(club_id, start_date, end_date)
        existing = await self._get_existing_session_keys(
            [schedule.id for schedule in schedules], start_date, end_date
        )

        created_count = 0
        warnings: List[ExpansionWarning] = []

        for schedule in schedules:
            dates = [
                session_date
                for session_date in self._iter_schedule_dates(schedule, start_date, end_date)
                if (schedule.id, session_date) not in existing
            ]
            if not dates:
                continue

            skip_reason = self._get_skip_reason(schedule)
            if skip_reason:
                logger.warning(
                    f"Schedule {schedule.id} skipped: {skip_reason}",
                    extra={
                        "schedule_id": schedule.id,
                        "club_id": club_id,
                        "reason": skip_reason,
                        "skipped_dates": [d.isoformat() for d in dates],
                    },
                )
                warnings.append(
                    ExpansionWarning(schedule_id=schedule.id, reason=skip_reason, dates=dates)
                )
                continue

            created_count += await self._insert_sessions(schedule, dates)

        await self.session.commit()

        log_business_event(
            "sessions_expanded",
            "club",
            club_id,
            {
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
                "schedules": len(schedules),
                "sessions_created": created_count,
                "warnings": len(warnings),
            },
        )

        return ExpandSchedulesResponse(
            club_id=club_id,
            start_date=start_date,
            end_date=end_date,
            sessions_created=created_count,
            warnings=warnings,
        )

    def _validate_period(self, start_date: date, end_date: date):
        """Валидирует период генерации"""
        if start_date > end_date:
            raise ValidationError(
                f"start_date {start_date} must not be after end_date {end_date}",
                {"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
            )

        days = (end_date - start_date).days + 1
        if days > MAX_EXPANSION_DAYS:
            raise ValidationError(
                f"Cannot generate sessions for more than {MAX_EXPANSION_DAYS} days",
                {"requested_days": days, "max_days": MAX_EXPANSION_DAYS},
            )

    async def _get_club(self, club_id: int) -> Club:
        result = await self.session.execute(select(Club).where(Club.id == club_id))
        club = result.scalar_one_or_none()

        if not club:
            raise NotFoundError("Club", str(club_id))

        return club

    async def _get_active_schedules(
        self, club_id: int, start_date: date, end_date: date
    ) -> List[Schedule]:
        """Активные расписания клуба, окно действия которых пересекает период"""
        result = await self.session.execute(
            select(Schedule)
            .options(selectinload(Schedule.activity), selectinload(Schedule.trainer))
            .where(
                and_(
                    Schedule.club_id == club_id,
                    Schedule.is_active.is_(True),
                    Schedule.valid_from <= end_date,
                    or_(
                        Schedule.valid_until.is_(None),
                        Schedule.valid_until >= start_date,
                    ),
                )
            )
            .order_by(Schedule.id)
        )

        return result.scalars().all()

    async def _get_existing_session_keys(
        self, schedule_ids: List[int], start_date: date, end_date: date
    ) -> Set[Tuple[int, date]]:
        """Получает существующие пары (schedule_id, session_date) в периоде"""
        if not schedule_ids:
            return set()

        result = await self.session.execute(
            select(ClassSession.schedule_id, ClassSession.session_date).where(
                and_(
                    ClassSession.schedule_id.in_(schedule_ids),
                    ClassSession.session_date >= start_date,
                    ClassSession.session_date <= end_date,
                )
            )
        )

        return {(schedule_id, session_date) for schedule_id, session_date in result.fetchall()}

    @staticmethod
    def _iter_schedule_dates(
        schedule: Schedule, start_date: date, end_date: date
    ) -> Iterator[date]:
        """Даты в пересечении периода и окна действия, попадающие на дни расписания"""
        first = max(schedule.valid_from, start_date)
        last = end_date
        if schedule.valid_until is not None:
            last = min(schedule.valid_until, end_date)

        current_date = first
        while current_date <= last:
            if schedule.occurs_on(current_date):
                yield current_date
            current_date += timedelta(days=1)

    @staticmethod
    def _get_skip_reason(schedule: Schedule) -> Optional[str]:
        if schedule.activity is None:
            return "activity deleted"
        if not schedule.activity.is_active:
            return "activity inactive"
        if schedule.activity.club_id != schedule.club_id:
            return "activity belongs to another club"
        if schedule.trainer is not None and not schedule.trainer.is_active:
            return "trainer inactive"
        return None

    async def _insert_sessions(self, schedule: Schedule, dates: List[date]) -> int:
        """Вставляет занятия одним запросом, конфликтующие строки пропускаются"""
        capacity = schedule.capacity or schedule.activity.default_capacity
        rows: List[Dict] = [
            {
                "schedule_id": schedule.id,
                "club_id": schedule.club_id,
                "activity_id": schedule.activity_id,
                "trainer_id": schedule.trainer_id,
                "session_date": session_date,
                "start_time": schedule.start_time,
                "end_time": schedule.end_time,
                "capacity": capacity,
                "booked_count": 0,
                "status": SessionStatus.scheduled,
            }
            for session_date in dates
        ]

        insert = self._dialect_insert()
        result = await self.session.execute(
            insert(ClassSession)
            .values(rows)
            .on_conflict_do_nothing(index_elements=["schedule_id", "session_date"])
        )

        return max(result.rowcount, 0)

    def _dialect_insert(self):
        dialect = self.session.get_bind().dialect.name
        insert = _DIALECT_INSERTS.get(dialect)
        if insert is None:
            raise ConfigurationError(
                "DATABASE_URL", f"Session expansion is not supported on '{dialect}'"
            )
        return insert
