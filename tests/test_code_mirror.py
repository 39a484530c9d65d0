from datetime import timedelta

from mclink.dal.code_mirror import VolatileCodeMirror
from mclink.models.link_code import LinkCode

from .conftest import START


def _code(code: str, owner: str, *, minutes: int = 10, created_offset: int = 0) -> LinkCode:
    created = START + timedelta(seconds=created_offset)
    return LinkCode(
        code=code,
        owner_account_id=owner,
        expires_at=created + timedelta(minutes=minutes),
        created_at=created,
    )


async def test_codes_are_normalized_on_the_record():
    rec = _code(" ab12cd ", "u1")
    assert rec.code == "AB12CD"


async def test_find_live_returns_unexpired_record():
    m = VolatileCodeMirror()
    await m.insert(_code("AAAA1111", "u1"))

    rec = await m.find_live("AAAA1111", START + timedelta(minutes=5))
    assert rec is not None
    assert rec.owner_account_id == "u1"


async def test_expired_lookup_evicts_entry():
    m = VolatileCodeMirror()
    await m.insert(_code("AAAA1111", "u1", minutes=1))

    assert await m.find_live("AAAA1111", START + timedelta(minutes=1)) is None
    assert "AAAA1111" not in m
    assert len(m) == 0


async def test_owner_lookup_prefers_newest_and_drops_expired():
    m = VolatileCodeMirror()
    await m.insert(_code("OLD00000", "u1", minutes=1))
    await m.insert(_code("MID00000", "u1", minutes=30, created_offset=10))
    await m.insert(_code("NEW00000", "u1", minutes=30, created_offset=20))
    await m.insert(_code("OTHER000", "u2", minutes=30, created_offset=30))

    rec = await m.find_live_for_owner("u1", START + timedelta(minutes=2))
    assert rec.code == "NEW00000"
    assert "OLD00000" not in m
    assert "OTHER000" in m


async def test_delete_for_owner_and_delete_expired():
    m = VolatileCodeMirror()
    await m.insert(_code("A0000000", "u1"))
    await m.insert(_code("B0000000", "u1"))
    await m.insert(_code("C0000000", "u2", minutes=1))
    await m.insert(_code("D0000000", "u3", minutes=60))

    assert await m.delete_for_owner("u1") == 2
    assert await m.delete_expired(START + timedelta(minutes=5)) == 1
    assert [r.code for r in await m.list_codes()] == ["D0000000"]

    assert await m.delete("D0000000") is True
    assert await m.delete("D0000000") is False


async def test_delete_for_owner_can_keep_one_code():
    m = VolatileCodeMirror()
    await m.insert(_code("A0000000", "u1"))
    await m.insert(_code("B0000000", "u1"))

    assert await m.delete_for_owner("u1", except_code="B0000000") == 1
    assert "A0000000" not in m
    assert "B0000000" in m
