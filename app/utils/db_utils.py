import asyncio
from typing import Any, Awaitable, Callable, List
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

Reader = Callable[[AsyncSession], Awaitable[Any]]


async def run_concurrent_reads(session_factory: async_sessionmaker, *readers: Reader) -> List[Any]:
    """읽기 전용 조회를 각자의 세션에서 동시에 실행하고 결과를 순서대로 반환"""

    async def _run(reader: Reader):
        async with session_factory() as db:
            return await reader(db)

    return list(await asyncio.gather(*(_run(reader) for reader in readers)))
