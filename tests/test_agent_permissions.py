"""AgentPermissionService and the legacy visibility migration."""

import pytest
from sqlalchemy import text

from canvas_backend.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from canvas_backend.db.migrations import migrate_legacy_visibility
from canvas_backend.permissions import Visibility
from canvas_backend.repositories.agent_repo import SQLAlchemyAgentRepository
from canvas_backend.services.agent_permissions import AgentPermissionService


@pytest.fixture
def service(session_factory):
    return AgentPermissionService(session_factory)


@pytest.mark.asyncio
async def test_selective_grants_listed_users(service, users, make_agent):
    agent = await make_agent(users.alice.id, Visibility.PRIVATE)

    result = await service.update_permissions(agent.id, [users.bob.id], "admin-selective", users.admin)

    assert result == {"agentId": agent.id, "visibility": "admin-selective", "userIds": [users.bob.id]}
    assert (await service.check_access(agent.id, users.bob.id)).allowed
    assert not (await service.check_access(agent.id, users.carol.id)).allowed
    assert (await service.check_access(agent.id, users.alice.id)).allowed


@pytest.mark.asyncio
async def test_selective_with_no_users_denies_everyone_else(service, users, make_agent):
    agent = await make_agent(users.alice.id, Visibility.PUBLIC)
    await service.update_permissions(agent.id, [], Visibility.ADMIN_SELECTIVE, users.alice)

    for other in (users.bob, users.carol, users.admin):
        assert not (await service.check_access(agent.id, other.id)).allowed


@pytest.mark.asyncio
async def test_replacing_permissions_revokes_old_rows(service, users, make_agent):
    agent = await make_agent(users.alice.id, Visibility.PRIVATE)
    await service.update_permissions(agent.id, [users.bob.id], "admin-selective", users.alice)
    await service.update_permissions(agent.id, [users.carol.id], "admin-selective", users.alice)

    view = await service.get_permissions(agent.id, users.alice)
    assert view["userIds"] == [users.carol.id]
    assert not (await service.check_access(agent.id, users.bob.id)).allowed


@pytest.mark.asyncio
async def test_non_selective_visibility_clears_rows(service, users, make_agent, session_factory):
    agent = await make_agent(users.alice.id, Visibility.PRIVATE)
    await service.update_permissions(agent.id, [users.bob.id], "admin-selective", users.alice)

    result = await service.update_permissions(agent.id, [users.bob.id], "admin-all", users.alice)

    assert result["userIds"] == []
    async with session_factory() as session:
        assert await SQLAlchemyAgentRepository(session).count_permissions(agent.id) == 0
    assert (await service.check_access(agent.id, users.carol.id)).allowed


@pytest.mark.asyncio
async def test_unknown_visibility_rejected(service, users, make_agent):
    agent = await make_agent(users.alice.id, Visibility.PRIVATE)
    with pytest.raises(ValidationError):
        await service.update_permissions(agent.id, [], "admin-shared", users.alice)


@pytest.mark.asyncio
async def test_unknown_user_rejects_whole_update(service, users, make_agent):
    agent = await make_agent(users.alice.id, Visibility.PRIVATE)
    with pytest.raises(ValidationError):
        await service.update_permissions(
            agent.id, [users.bob.id, "00000000-0000-0000-0000-000000000001"], "admin-selective", users.alice
        )
    view = await service.get_permissions(agent.id, users.alice)
    assert view["visibility"] == "private"
    assert view["userIds"] == []


@pytest.mark.asyncio
async def test_only_owner_or_admin_manages(service, users, make_agent):
    agent = await make_agent(users.alice.id, Visibility.PRIVATE)
    with pytest.raises(AuthorizationError):
        await service.update_permissions(agent.id, [], "public", users.bob)
    with pytest.raises(AuthorizationError):
        await service.get_permissions(agent.id, users.bob)
    assert (await service.get_permissions(agent.id, users.admin))["agentId"] == agent.id


@pytest.mark.asyncio
async def test_missing_agent(service, users):
    with pytest.raises(NotFoundError):
        await service.check_access("00000000-0000-0000-0000-000000000002", users.alice.id)


@pytest.mark.asyncio
async def test_list_users_requires_admin(service, users):
    with pytest.raises(AuthorizationError):
        await service.list_users(users.alice)
    listed = await service.list_users(users.admin)
    assert {u["email"] for u in listed} >= {"alice@example.com", "bob@example.com"}


@pytest.mark.asyncio
async def test_readonly_sharing_is_configurable(session_factory, users, make_agent):
    agent = await make_agent(users.alice.id, Visibility.READONLY)
    assert not (await AgentPermissionService(session_factory).check_access(agent.id, users.bob.id)).allowed
    shared = AgentPermissionService(session_factory, readonly_shared=True)
    assert (await shared.check_access(agent.id, users.bob.id)).allowed


@pytest.mark.asyncio
async def test_legacy_visibility_migration(session_factory, users, make_agent, service):
    agent = await make_agent(users.alice.id, Visibility.PRIVATE)
    async with session_factory() as session:
        async with session.begin():
            await session.execute(
                text("UPDATE agent SET visibility = 'admin-shared' WHERE id = :id"),
                {"id": agent.id},
            )

    assert await migrate_legacy_visibility(session_factory) == 1
    assert await migrate_legacy_visibility(session_factory) == 0
    assert (await service.check_access(agent.id, users.bob.id)).allowed
