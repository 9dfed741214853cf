from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from booking_engine.core.errors import (
    CapacityExceeded,
    Expired,
    GroupNotFound,
    ReservationNotFound,
    Unauthorized,
    ValidationError,
)
from booking_engine.models.generated import Bookings, PendingBookings
from booking_engine.services.reservations import (
    ReservationManager,
    new_booking_number,
    new_group_id,
    release_reservation,
)
from booking_engine.services.slots import SlotStore

from conftest import DAY, KAYAK, OVERNIGHTS_2, PADDLE, SUP

NOW = datetime(2030, 6, 1, 8, 0)


def pending(db, booking_number):
    db.expire_all()
    return db.query(PendingBookings).filter_by(booking_number=booking_number).one_or_none()


def test_identifier_formats():
    assert new_booking_number().startswith("BK-")
    assert len(new_booking_number().split("-")[2]) == 8
    group_id = new_group_id()
    assert group_id.startswith("RG-")
    assert len(group_id.split("-")[2]) == 9


def test_create_reserves_slots_and_inserts_row(db, catalog, kayak, booking_data, fake_redis):
    result = ReservationManager(db).create(booking_data(), now=NOW)

    assert result["groupId"].startswith("RG-")
    assert result["expiresAt"] == (NOW + timedelta(minutes=15)).isoformat()
    row = pending(db, result["bookingNumber"])
    assert row.availability_reserved == 1
    assert row.session_id is None
    assert row.end_date == DAY
    assert SlotStore(db).read_row(kayak, DAY) == {600: 1, 615: 1, 630: 1, 645: 1}
    assert fake_redis.event_types() == ["reservation_created"]


def test_capacity_exceeded_on_overlapping_reserve(db, catalog, kayak, booking_data):
    manager = ReservationManager(db)
    manager.create(booking_data(products=[{"productId": KAYAK, "quantity": 2}]), now=NOW)

    with pytest.raises(CapacityExceeded):
        manager.create(booking_data(startTime="10:30", endTime="11:30"), now=NOW)

    assert db.query(PendingBookings).count() == 1
    row = SlotStore(db).read_row(kayak, DAY)
    assert row[630] == 2
    assert row.get(660, 0) == 0


def test_repeated_resource_lines_are_reserved_together(db, catalog, sup, booking_data):
    with pytest.raises(CapacityExceeded):
        ReservationManager(db).create(booking_data(products=[
            {"productId": SUP, "quantity": 1},
            {"productId": SUP, "quantity": 1},
        ]), now=NOW)

    assert db.query(PendingBookings).count() == 0
    assert SlotStore(db).read_row(sup, DAY).get(600, 0) == 0


def test_overnight_reservation_consumes_every_day(db, catalog, kayak, booking_data):
    result = ReservationManager(db).create(
        booking_data(durationId=OVERNIGHTS_2, startDate="2024-06-01", startTime="14:00", endTime="10:00"),
        now=NOW,
    )

    store = SlotStore(db)
    first, middle, last = (store.read_grid(kayak, d) for d in ("2024-06-01", "2024-06-02", "2024-06-03"))
    assert first == [0] * 56 + [1] * 40
    assert middle == [1] * 96
    assert last == [1] * 40 + [0] * 56
    assert pending(db, result["bookingNumber"]).end_date == "2024-06-03"


def test_failed_resource_rolls_back_earlier_ones(db, catalog, kayak, sup, booking_data):
    manager = ReservationManager(db)
    manager.create(booking_data(products=[{"productId": SUP, "quantity": 1}]), now=NOW)

    with pytest.raises(CapacityExceeded):
        manager.create(
            booking_data(products=[
                {"productId": KAYAK, "quantity": 1},
                {"productId": SUP, "quantity": 1},
            ]),
            now=NOW,
        )

    assert all(qty == 0 for qty in SlotStore(db).read_row(kayak, DAY).values())
    assert SlotStore(db).read_row(sup, DAY)[600] == 1
    assert db.query(PendingBookings).count() == 1


def test_missing_fields_are_rejected_before_any_write(db, catalog, kayak, booking_data):
    data = booking_data()
    del data["startTime"]
    del data["durationId"]

    with pytest.raises(ValidationError) as exc_info:
        ReservationManager(db).create(data, now=NOW)

    assert "durationId" in str(exc_info.value)
    assert "startTime" in str(exc_info.value)
    assert SlotStore(db).read_row(kayak, DAY) == {}


def test_zero_quantity_entries_are_ignored(db, catalog, paddle, booking_data):
    ReservationManager(db).create(booking_data(addons=[{"addonId": PADDLE, "quantity": 0}]), now=NOW)

    assert SlotStore(db).read_row(paddle, DAY) == {}


def test_extend_group_pushes_shared_expiry(db, catalog, booking_data, fake_redis):
    manager = ReservationManager(db)
    first = manager.create(booking_data(), now=NOW)

    later = NOW + timedelta(minutes=5)
    second = manager.create(booking_data(startTime="13:00", endTime="14:00"), group_id=first["groupId"], now=later)

    assert second["groupId"] == first["groupId"]
    assert second["expiresAt"] == (later + timedelta(minutes=20)).isoformat()
    group = manager.get_group(first["groupId"])
    assert [r["bookingNumber"] for r in group] == [first["bookingNumber"], second["bookingNumber"]]
    assert {r["expiresAt"] for r in group} == {second["expiresAt"]}
    assert fake_redis.event_types() == ["reservation_created", "reservation_extended"]


def test_extend_unknown_group(db, catalog, booking_data):
    with pytest.raises(GroupNotFound):
        ReservationManager(db).extend("RG-0-missing", booking_data(), now=NOW)


def test_extend_lapsed_group(db, catalog, kayak, booking_data):
    manager = ReservationManager(db)
    first = manager.create(booking_data(), now=NOW)

    with pytest.raises(Expired):
        manager.extend(first["groupId"], booking_data(startTime="13:00", endTime="14:00"), now=NOW + timedelta(hours=1))

    assert SlotStore(db).read_row(kayak, DAY).get(780, 0) == 0


def test_retime_moves_slots(db, catalog, kayak, booking_data):
    manager = ReservationManager(db)
    hold = manager.create(booking_data(), now=NOW)

    result = manager.retime(hold["groupId"], hold["bookingNumber"], "14:00", "15:00", now=NOW + timedelta(minutes=1))

    assert result["oldTime"] == {"startTime": "10:00", "endTime": "11:00"}
    assert result["newTime"] == {"startTime": "14:00", "endTime": "15:00"}
    row = SlotStore(db).read_row(kayak, DAY)
    assert row[600] == 0
    assert row[840] == 1
    record = pending(db, hold["bookingNumber"])
    assert (record.start_time, record.end_time) == ("14:00", "15:00")


def test_retime_to_same_times_is_noop(db, catalog, kayak, booking_data, fake_redis):
    manager = ReservationManager(db)
    hold = manager.create(booking_data(), now=NOW)
    before = SlotStore(db).read_grid(kayak, DAY)

    result = manager.retime(hold["groupId"], hold["bookingNumber"], "10:00", "11:00", now=NOW)

    assert result["oldTime"] == result["newTime"]
    assert SlotStore(db).read_grid(kayak, DAY) == before
    assert "reservation_retimed" not in fake_redis.event_types()


def test_retime_into_full_window_restores_original(db, catalog, sup, booking_data):
    manager = ReservationManager(db)
    sup_only = [{"productId": SUP, "quantity": 1}]
    mine = manager.create(booking_data(products=sup_only), now=NOW)
    manager.create(booking_data(products=sup_only, startTime="14:00", endTime="15:00"), now=NOW)

    with pytest.raises(CapacityExceeded):
        manager.retime(mine["groupId"], mine["bookingNumber"], "14:00", "15:00", now=NOW)

    row = SlotStore(db).read_row(sup, DAY)
    assert [row[m] for m in (600, 615, 630, 645)] == [1, 1, 1, 1]
    assert [row[m] for m in (840, 855, 870, 885)] == [1, 1, 1, 1]
    record = pending(db, mine["bookingNumber"])
    assert (record.start_time, record.end_time) == ("10:00", "11:00")


def test_retime_lapsed_hold(db, catalog, booking_data):
    manager = ReservationManager(db)
    hold = manager.create(booking_data(), now=NOW)

    with pytest.raises(Expired):
        manager.retime(hold["groupId"], hold["bookingNumber"], "14:00", "15:00", now=NOW + timedelta(minutes=16))


def test_retime_rejects_malformed_time(db, catalog, booking_data):
    manager = ReservationManager(db)
    hold = manager.create(booking_data(), now=NOW)

    with pytest.raises(ValidationError):
        manager.retime(hold["groupId"], hold["bookingNumber"], "2pm", "15:00", now=NOW)


def test_commit_turns_holds_into_bookings(db, catalog, kayak, booking_data, fake_redis):
    manager = ReservationManager(db)
    hold = manager.create(booking_data(hasBookingGuarantee=True), now=NOW)
    manager.attach_session(hold["groupId"], "cs_test_1", {"email": "guest@example.com"})

    result = manager.commit("cs_test_1", now=NOW)

    assert result == {"sessionId": "cs_test_1", "committed": [hold["bookingNumber"]], "alreadyCommitted": []}
    booking = db.query(Bookings).one()
    assert booking.booking_number == hold["bookingNumber"]
    assert booking.has_booking_guarantee == 1
    assert booking.status == "confirmed"
    assert "guest@example.com" in booking.booking_data
    assert pending(db, hold["bookingNumber"]).availability_reserved == 0
    assert SlotStore(db).read_row(kayak, DAY)[600] == 1
    assert fake_redis.event_types()[-1] == "booking_committed"


def test_commit_is_idempotent(db, catalog, kayak, booking_data):
    manager = ReservationManager(db)
    hold = manager.create(booking_data(), now=NOW)
    manager.attach_session(hold["groupId"], "cs_test_2")
    manager.commit("cs_test_2", now=NOW)

    again = manager.commit("cs_test_2", now=NOW)

    assert again["committed"] == []
    assert again["alreadyCommitted"] == [hold["bookingNumber"]]
    assert db.query(Bookings).count() == 1
    assert SlotStore(db).read_row(kayak, DAY)[600] == 1


def test_commit_unknown_session(db, catalog):
    with pytest.raises(ReservationNotFound):
        ReservationManager(db).commit("cs_missing", now=NOW)


def test_attach_session_to_unknown_group(db, catalog):
    with pytest.raises(GroupNotFound):
        ReservationManager(db).attach_session("RG-0-missing", "cs_test")


def test_cancel_releases_slots(db, catalog, kayak, booking_data, fake_redis):
    manager = ReservationManager(db)
    hold = manager.create(booking_data(), now=NOW)

    cancelled = manager.cancel(booking_number=hold["bookingNumber"])

    assert cancelled == [hold["bookingNumber"]]
    assert pending(db, hold["bookingNumber"]) is None
    assert all(qty == 0 for qty in SlotStore(db).read_row(kayak, DAY).values())
    assert fake_redis.event_types()[-1] == "reservation_cancelled"


def test_cancel_whole_group(db, catalog, kayak, booking_data):
    manager = ReservationManager(db)
    first = manager.create(booking_data(), now=NOW)
    manager.create(booking_data(startTime="13:00", endTime="14:00"), group_id=first["groupId"], now=NOW)

    assert len(manager.cancel(group_id=first["groupId"])) == 2
    assert db.query(PendingBookings).count() == 0
    assert max(SlotStore(db).read_grid(kayak, DAY)) == 0


def test_cancel_in_payment_is_refused(db, catalog, kayak, booking_data):
    manager = ReservationManager(db)
    hold = manager.create(booking_data(), now=NOW)
    manager.attach_session(hold["groupId"], "cs_test_3")

    with pytest.raises(Unauthorized):
        manager.cancel(booking_number=hold["bookingNumber"])

    assert pending(db, hold["bookingNumber"]) is not None
    assert SlotStore(db).read_row(kayak, DAY)[600] == 1


def test_cancel_needs_exactly_one_selector(db, catalog):
    manager = ReservationManager(db)

    with pytest.raises(ValidationError):
        manager.cancel()
    with pytest.raises(ValidationError):
        manager.cancel(booking_number="BK-1", group_id="RG-1")


def test_cancel_by_session_is_refused(db, catalog, kayak, booking_data):
    manager = ReservationManager(db)
    hold = manager.create(booking_data(), now=NOW)
    manager.attach_session(hold["groupId"], "cs_test_4")

    with pytest.raises(Unauthorized):
        manager.cancel(session_id="cs_test_4")

    assert pending(db, hold["bookingNumber"]) is not None
    assert SlotStore(db).read_row(kayak, DAY)[600] == 1


def test_cancel_unknown_reservation(db, catalog):
    with pytest.raises(ReservationNotFound):
        ReservationManager(db).cancel(booking_number="BK-0-missing")


def test_release_twice_subtracts_once(db, catalog, kayak, booking_data):
    manager = ReservationManager(db)
    first = manager.create(booking_data(), now=NOW)
    manager.create(booking_data(), now=NOW)
    row = pending(db, first["bookingNumber"])

    assert release_reservation(db, row) is True
    assert release_reservation(db, row) is False

    assert SlotStore(db).read_row(kayak, DAY)[600] == 1


def test_release_leaves_row_retimed_since_loaded(engine, db, catalog, kayak, booking_data):
    hold = ReservationManager(db).create(booking_data(), now=NOW)
    loaded = pending(db, hold["bookingNumber"])

    other = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        ReservationManager(other).retime(hold["groupId"], hold["bookingNumber"], "14:00", "15:00", now=NOW)
    finally:
        other.close()

    assert release_reservation(db, loaded) is False

    assert pending(db, hold["bookingNumber"]).start_time == "14:00"
    row = SlotStore(db).read_row(kayak, DAY)
    assert row[840] == 1
    assert row.get(600, 0) == 0
