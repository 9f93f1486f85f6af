from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from clinic_scheduler.models import Dentist, Service


class CatalogService:
    """Read-only access to the clinic's services and dentists."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_services(self) -> list[dict]:
        result = await self.db.execute(
            select(Service).where(Service.is_active == True).order_by(Service.name)  # noqa: E712
        )
        return [
            {
                "id": s.id,
                "name": s.name,
                "duration_minutes": s.duration_minutes,
                "price": float(s.price) if s.price is not None else None,
            }
            for s in result.scalars().all()
        ]

    async def list_dentists(self) -> list[dict]:
        result = await self.db.execute(
            select(Dentist).where(Dentist.is_active == True).order_by(Dentist.name)  # noqa: E712
        )
        return [
            {"id": d.id, "name": d.name, "specialty": d.specialty}
            for d in result.scalars().all()
        ]
