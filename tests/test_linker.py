from pymongo.errors import PyMongoError

from mclink.core.errors import LinkError
from mclink.dal.security_log_dal import LINKED, UNLINKED
from mclink.events.sink import LINKED as EV_LINKED
from mclink.events.sink import UNLINKED as EV_UNLINKED
from mclink.services.linker import canonical_uuid, valid_mc_username

UUID_A = "0f8fad5b-d9cb-469f-a165-70867728950e"
UUID_B = "7c9e6679-7425-40de-944b-e07fc1f90ae7"


async def _account(accounts, name: str):
    return await accounts.create(username=name, email=f"{name}@example.com")


def test_username_and_uuid_shapes():
    assert valid_mc_username("Steve_01")
    assert not valid_mc_username("ab")
    assert not valid_mc_username("has space")
    assert not valid_mc_username("x" * 17)
    assert not valid_mc_username(None)

    assert canonical_uuid(UUID_A.upper()) == UUID_A
    assert canonical_uuid(UUID_A.replace("-", "")) == UUID_A
    assert canonical_uuid("not-a-uuid") is None


async def test_apply_link_marks_account_and_consumes_code(linker, accounts, manager, sink, audit):
    owner = await _account(accounts, "alice")
    issued = await manager.generate(owner.id)

    res = await linker.apply_link(issued.code, "Alice_MC", UUID_A)

    assert res.ok
    assert res.account_id == owner.id
    assert res.username == "alice"

    linked = await accounts.find_by_id(owner.id)
    assert linked.linked is True
    assert linked.mc_username == "Alice_MC"
    assert linked.mc_uuid == UUID_A
    assert linked.is_linked

    assert await manager.validate(issued.code) is None
    assert sink.of(EV_LINKED)[0]["account_id"] == owner.id
    actions = [d["action"] for d in await audit.list_for_account(owner.id)]
    assert LINKED in actions


async def test_malformed_input_is_rejected_before_lookup(linker, accounts, manager):
    owner = await _account(accounts, "alice")
    issued = await manager.generate(owner.id)

    bad_name = await linker.apply_link(issued.code, "a!", UUID_A)
    bad_uuid = await linker.apply_link(issued.code, "Alice_MC", "1234")

    assert bad_name.error == LinkError.invalid_input
    assert bad_uuid.error == LinkError.invalid_input
    assert await manager.validate(issued.code) is not None


async def test_unknown_or_expired_code(linker, accounts, manager, clock):
    owner = await _account(accounts, "alice")
    issued = await manager.generate(owner.id, ttl_minutes=1)

    unknown = await linker.apply_link("ZZZZZZZZ", "Alice_MC", UUID_A)
    clock.advance(minutes=1)
    expired = await linker.apply_link(issued.code, "Alice_MC", UUID_A)

    assert unknown.error == LinkError.invalid_or_expired_code
    assert expired.error == LinkError.invalid_or_expired_code
    assert (await accounts.find_by_id(owner.id)).linked is False


async def test_owner_account_missing(linker, manager):
    issued = await manager.generate("ghost-account")

    res = await linker.apply_link(issued.code, "Ghost_MC", UUID_A)

    assert res.error == LinkError.owner_account_missing
    assert res.message == "Linked user not found"


async def test_uuid_linked_elsewhere_changes_nothing(linker, accounts, manager, sink):
    first = await _account(accounts, "alice")
    await linker.apply_link((await manager.generate(first.id)).code, "Alice_MC", UUID_A)

    second = await _account(accounts, "bob")
    issued = await manager.generate(second.id)

    # hyphen-less spelling of the same identity
    res = await linker.apply_link(issued.code, "Bob_MC", UUID_A.replace("-", ""))

    assert res.error == LinkError.uuid_already_linked
    assert (await accounts.find_by_id(second.id)).linked is False
    assert (await accounts.find_by_id(first.id)).mc_uuid == UUID_A
    # the code survives for a distinct attempt
    assert await manager.validate(issued.code) is not None
    ok = await linker.apply_link(issued.code, "Bob_MC", UUID_B)
    assert ok.ok
    assert len(sink.of(EV_LINKED)) == 2


async def test_persist_failure_keeps_code(linker, accounts, manager, monkeypatch):
    owner = await _account(accounts, "alice")
    issued = await manager.generate(owner.id)

    async def broken_set_link(*args, **kwargs):
        raise PyMongoError("write concern timeout")

    monkeypatch.setattr(accounts, "set_link", broken_set_link)

    res = await linker.apply_link(issued.code, "Alice_MC", UUID_A)

    assert res.error == LinkError.link_persist_failed
    assert await manager.validate(issued.code) is not None


async def test_unlink_twice_is_idempotent(linker, accounts, manager, sink, audit):
    owner = await _account(accounts, "alice")
    await linker.apply_link((await manager.generate(owner.id)).code, "Alice_MC", UUID_A)

    first = await linker.unlink(owner.id)
    second = await linker.unlink(owner.id)

    assert first.found and not first.already_unlinked
    assert first.previous_mc_uuid == UUID_A
    assert second.already_unlinked is True

    doc = await accounts.col.find_one({"_id": owner.id})
    assert doc["linked"] is False
    assert "mc_uuid" not in doc
    assert "mc_username" not in doc

    assert len(sink.of(EV_UNLINKED)) == 1
    assert UNLINKED in [d["action"] for d in await audit.list_for_account(owner.id)]


async def test_unlink_unknown_account(linker):
    res = await linker.unlink("missing")
    assert res.found is False


async def test_uuid_can_be_claimed_again_after_unlink(linker, accounts, manager):
    alice = await _account(accounts, "alice")
    bob = await _account(accounts, "bob")
    carol = await _account(accounts, "carol")

    await linker.apply_link((await manager.generate(alice.id)).code, "Shared_MC", UUID_A)
    await linker.apply_link((await manager.generate(carol.id)).code, "Carol_MC", UUID_B)
    await linker.unlink(alice.id)
    await linker.unlink(carol.id)

    # two unlinked accounts without mc_uuid coexist under the unique index
    assert (await accounts.find_by_id(alice.id)).mc_uuid is None
    assert (await accounts.find_by_id(carol.id)).mc_uuid is None

    res = await linker.apply_link((await manager.generate(bob.id)).code, "Shared_MC", UUID_A)

    assert res.ok
    assert (await accounts.find_by_uuid(UUID_A)).id == bob.id


async def test_request_code_checks_link_state(linker, accounts, manager):
    owner = await _account(accounts, "alice")

    req = await linker.request_code(owner.id, mc_username="Alice_MC")
    assert req.ok
    assert req.warning is None
    assert (await accounts.find_by_id(owner.id)).pending_mc_username == "Alice_MC"

    await linker.apply_link(req.issued.code, "Alice_MC", UUID_A)
    again = await linker.request_code(owner.id)
    assert again.error == LinkError.already_linked

    bad = await linker.request_code(owner.id, mc_username="??")
    assert bad.error == LinkError.invalid_input

    missing = await linker.request_code("nobody")
    assert missing.error == LinkError.owner_account_missing
