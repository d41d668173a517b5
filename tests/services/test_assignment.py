"""
Тесты для эксклюзивного назначения волонтера на заявку.
"""

import asyncio

import pytest

from helphub.models.results import Assigned, Failure, FailureReason
from helphub.services.assignment import AssignmentCoordinator


@pytest.fixture
def coordinator(requests_repo, volunteers_repo, otp) -> AssignmentCoordinator:
    return AssignmentCoordinator(requests_repo, volunteers_repo, otp)


@pytest.mark.asyncio
async def test_assign_success(
    coordinator, requests_repo, volunteers_repo, make_request, make_volunteer
):
    """Тест: Заявка назначается, волонтер занят, код выдан."""
    # Arrange
    request = make_request()
    volunteer = make_volunteer()
    await requests_repo.add(request)
    await volunteers_repo.add(volunteer)

    # Act
    result = await coordinator.assign(request.request_id, volunteer.volunteer_id)

    # Assert
    assert isinstance(result, Assigned)
    assert result.ok
    assert result.request.status == "assigned"
    assert result.request.assigned_volunteer_id == volunteer.volunteer_id
    assert len(result.otp_code) == 6

    stored_request = await requests_repo.get(request.request_id)
    assert stored_request.otp.code == result.otp_code
    assert stored_request.otp.attempts == 0

    stored_volunteer = await volunteers_repo.get(volunteer.volunteer_id)
    assert stored_volunteer.availability == "busy"
    assert stored_volunteer.total_jobs == 1

    assert result.event.name == "request_assigned"
    assert result.event.payload["customer_telegram_id"] == 900
    assert result.event.payload["otp"] == result.otp_code
    assert result.event.payload["volunteer"]["id"] == volunteer.volunteer_id


@pytest.mark.asyncio
async def test_assign_already_assigned(
    coordinator, requests_repo, volunteers_repo, make_request, make_volunteer
):
    """Тест: Второй волонтер получает отказ и остается свободным."""
    request = make_request()
    first = make_volunteer(volunteer_id="first")
    second = make_volunteer(volunteer_id="second")
    await requests_repo.add(request)
    await volunteers_repo.add(first)
    await volunteers_repo.add(second)

    await coordinator.assign(request.request_id, "first")
    result = await coordinator.assign(request.request_id, "second")

    assert isinstance(result, Failure)
    assert result.reason == FailureReason.INVALID_STATE
    stored_second = await volunteers_repo.get("second")
    assert stored_second.availability == "available"
    assert stored_second.total_jobs == 0


@pytest.mark.asyncio
async def test_assign_not_found(
    coordinator, requests_repo, volunteers_repo, make_request, make_volunteer
):
    volunteer = make_volunteer()
    await volunteers_repo.add(volunteer)

    result = await coordinator.assign("missing", volunteer.volunteer_id)
    assert result.reason == FailureReason.NOT_FOUND

    request = make_request()
    await requests_repo.add(request)
    result = await coordinator.assign(request.request_id, "missing")
    assert result.reason == FailureReason.NOT_FOUND


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides", [{"availability": "busy"}, {"availability": "unavailable"}, {"is_active": False}]
)
async def test_assign_volunteer_unavailable(
    coordinator, requests_repo, volunteers_repo, make_request, make_volunteer, overrides
):
    request = make_request()
    volunteer = make_volunteer(**overrides)
    await requests_repo.add(request)
    await volunteers_repo.add(volunteer)

    result = await coordinator.assign(request.request_id, volunteer.volunteer_id)

    assert result.reason == FailureReason.VOLUNTEER_UNAVAILABLE
    stored = await requests_repo.get(request.request_id)
    assert stored.status == "pending"


@pytest.fixture
def yielding_coordinator(
    yielding_requests_repo, yielding_volunteers_repo, otp
) -> AssignmentCoordinator:
    return AssignmentCoordinator(yielding_requests_repo, yielding_volunteers_repo, otp)


@pytest.mark.asyncio
async def test_concurrent_accepts_have_single_winner(
    yielding_coordinator,
    yielding_requests_repo,
    yielding_volunteers_repo,
    make_request,
    make_volunteer,
):
    """Тест: Пять волонтеров одновременно берут одну заявку, побеждает ровно один."""
    # Arrange
    requests_repo, volunteers_repo = yielding_requests_repo, yielding_volunteers_repo
    request = make_request()
    await requests_repo.add(request)
    volunteer_ids = [f"v{i}" for i in range(5)]
    for volunteer_id in volunteer_ids:
        await volunteers_repo.add(make_volunteer(volunteer_id=volunteer_id))

    # Act
    results = await asyncio.gather(
        *(yielding_coordinator.assign(request.request_id, v) for v in volunteer_ids)
    )

    # Assert
    winners = [r for r in results if r.ok]
    losers = [r for r in results if not r.ok]
    assert len(winners) == 1
    assert all(r.reason == FailureReason.INVALID_STATE for r in losers)

    stored = await requests_repo.get(request.request_id)
    assert stored.assigned_volunteer_id == winners[0].volunteer.volunteer_id

    # Резерв проигравших снят, счетчики вернулись к исходным
    for volunteer in await volunteers_repo.list_all():
        if volunteer.volunteer_id == stored.assigned_volunteer_id:
            assert volunteer.availability == "busy"
            assert volunteer.total_jobs == 1
        else:
            assert volunteer.availability == "available"
            assert volunteer.total_jobs == 0


@pytest.mark.asyncio
async def test_losing_racer_reservation_is_rolled_back(
    yielding_coordinator,
    yielding_requests_repo,
    yielding_volunteers_repo,
    make_request,
    make_volunteer,
):
    """Тест: Оба волонтера успели зарезервироваться, проигравший откатывает резерв."""
    request = make_request()
    await yielding_requests_repo.add(request)
    await yielding_volunteers_repo.add(make_volunteer(volunteer_id="first"))
    await yielding_volunteers_repo.add(make_volunteer(volunteer_id="second"))

    results = await asyncio.gather(
        yielding_coordinator.assign(request.request_id, "first"),
        yielding_coordinator.assign(request.request_id, "second"),
    )

    winner = next(r for r in results if r.ok)
    loser_id = "second" if winner.volunteer.volunteer_id == "first" else "first"
    loser = await yielding_volunteers_repo.get(loser_id)
    assert loser.availability == "available"
    assert loser.total_jobs == 0
    # Резерв и откат: две записи поверх исходной
    assert loser.version == 2


@pytest.mark.asyncio
async def test_volunteer_cannot_take_two_requests_at_once(
    yielding_coordinator,
    yielding_requests_repo,
    yielding_volunteers_repo,
    make_request,
    make_volunteer,
):
    first, second = make_request(), make_request()
    volunteer = make_volunteer()
    await yielding_requests_repo.add(first)
    await yielding_requests_repo.add(second)
    await yielding_volunteers_repo.add(volunteer)

    results = await asyncio.gather(
        yielding_coordinator.assign(first.request_id, volunteer.volunteer_id),
        yielding_coordinator.assign(second.request_id, volunteer.volunteer_id),
    )

    assert sorted(r.ok for r in results) == [False, True]
    loser = next(r for r in results if not r.ok)
    assert loser.reason == FailureReason.VOLUNTEER_UNAVAILABLE
    statuses = sorted(r.status for r in await yielding_requests_repo.list_all())
    assert statuses == ["assigned", "pending"]
    stored = await yielding_volunteers_repo.get(volunteer.volunteer_id)
    assert stored.availability == "busy"
    assert stored.total_jobs == 1


@pytest.mark.asyncio
async def test_failed_request_write_releases_volunteer(
    coordinator, requests_repo, volunteers_repo, make_request, make_volunteer, mocker
):
    """Тест: Если запись заявки упала, резерв волонтера снимается."""
    request = make_request()
    volunteer = make_volunteer()
    await requests_repo.add(request)
    await volunteers_repo.add(volunteer)
    mocker.patch.object(
        requests_repo, "compare_and_swap", side_effect=RuntimeError("storage down")
    )

    with pytest.raises(RuntimeError, match="storage down"):
        await coordinator.assign(request.request_id, volunteer.volunteer_id)

    stored = await volunteers_repo.get(volunteer.volunteer_id)
    assert stored.availability == "available"
    assert stored.total_jobs == 0


@pytest.mark.asyncio
async def test_release_only_busy_volunteer(coordinator, volunteers_repo, make_volunteer):
    volunteer = make_volunteer()
    await volunteers_repo.add(volunteer)

    result = await coordinator.release(volunteer.volunteer_id)

    assert result.reason == FailureReason.VOLUNTEER_UNAVAILABLE
