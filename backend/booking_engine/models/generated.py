from sqlalchemy import Column, ForeignKey, Integer, Text, UniqueConstraint, text

from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()
metadata = Base.metadata


class Experiences(Base):
    __tablename__ = 'experiences'

    name = Column(Text, nullable=False)
    booking_foresight_hours = Column(Integer, nullable=False, server_default=text('0'))
    id = Column(Integer, primary_key=True)
    created_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))

    open_dates = relationship('ExperienceOpenDates', back_populates='experience')
    blocked_dates = relationship('ExperienceBlockedDates', back_populates='experience')


class ExperienceOpenDates(Base):
    __tablename__ = 'experience_open_dates'

    experience_id = Column(ForeignKey('experiences.id', ondelete='CASCADE'), nullable=False)
    type = Column(Text, nullable=False)  # specific / interval
    open_time = Column(Text, nullable=False)
    close_time = Column(Text, nullable=False)
    id = Column(Integer, primary_key=True)
    specific_date = Column(Text)
    start_date = Column(Text)
    end_date = Column(Text)
    created_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))

    experience = relationship('Experiences', back_populates='open_dates')


class ExperienceBlockedDates(Base):
    __tablename__ = 'experience_blocked_dates'

    experience_id = Column(ForeignKey('experiences.id', ondelete='CASCADE'), nullable=False)
    start_date = Column(Text, nullable=False)
    end_date = Column(Text, nullable=False)
    id = Column(Integer, primary_key=True)
    reason = Column(Text)
    created_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))

    experience = relationship('Experiences', back_populates='blocked_dates')


class Durations(Base):
    __tablename__ = 'durations'

    duration_type = Column(Text, nullable=False)  # hours / overnights
    duration_value = Column(Integer, nullable=False)
    id = Column(Integer, primary_key=True)
    start_location_id = Column(Integer)


class Products(Base):
    __tablename__ = 'products'

    name = Column(Text, nullable=False)
    total_quantity = Column(Integer, nullable=False)
    id = Column(Integer, primary_key=True)


class Addons(Base):
    __tablename__ = 'addons'

    name = Column(Text, nullable=False)
    total_quantity = Column(Integer, nullable=False)
    track_availability = Column(Integer, nullable=False, server_default=text('1'))
    id = Column(Integer, primary_key=True)


class AvailabilitySlots(Base):
    """
    One row per (resource_type, resource_id, date).

    slots: JSON object {"<minute>": quantity} for minutes 0..1425 step 15.
    version: compare-and-swap counter, bumped on every write.
    """
    __tablename__ = 'availability_slots'
    __table_args__ = (
        UniqueConstraint('resource_type', 'resource_id', 'date'),
    )

    resource_type = Column(Text, nullable=False)  # product / addon
    resource_id = Column(Integer, nullable=False)
    date = Column(Text, nullable=False)
    slots = Column(Text, nullable=False, server_default=text("'{}'"))
    version = Column(Integer, nullable=False, server_default=text('0'))
    id = Column(Integer, primary_key=True)


class PendingBookings(Base):
    __tablename__ = 'pending_bookings'

    booking_number = Column(Text, nullable=False, unique=True)
    reservation_group_id = Column(Text, nullable=False, index=True)
    experience_id = Column(Integer, nullable=False)
    start_location_id = Column(Integer, nullable=False)
    duration_id = Column(Integer, nullable=False)
    start_date = Column(Text, nullable=False)
    end_date = Column(Text, nullable=False)
    start_time = Column(Text, nullable=False)
    end_time = Column(Text, nullable=False)
    products = Column(Text, nullable=False, server_default=text("'[]'"))
    addons = Column(Text, nullable=False, server_default=text("'[]'"))
    booking_data = Column(Text, nullable=False, server_default=text("'{}'"))
    availability_reserved = Column(Integer, nullable=False, server_default=text('1'))
    expires_at = Column(Text, nullable=False)
    created_at = Column(Text, nullable=False, server_default=text('CURRENT_TIMESTAMP'))
    id = Column(Integer, primary_key=True)
    session_id = Column(Text, index=True)


class Bookings(Base):
    __tablename__ = 'bookings'

    booking_number = Column(Text, nullable=False, unique=True)
    experience_id = Column(Integer, nullable=False)
    start_location_id = Column(Integer, nullable=False)
    duration_id = Column(Integer, nullable=False)
    start_date = Column(Text, nullable=False)
    end_date = Column(Text, nullable=False)
    start_time = Column(Text, nullable=False)
    end_time = Column(Text, nullable=False)
    products = Column(Text, nullable=False, server_default=text("'[]'"))
    addons = Column(Text, nullable=False, server_default=text("'[]'"))
    booking_data = Column(Text, nullable=False, server_default=text("'{}'"))
    has_booking_guarantee = Column(Integer, nullable=False, server_default=text('0'))
    status = Column(Text, nullable=False, server_default=text("'confirmed'"))
    created_at = Column(Text, nullable=False, server_default=text('CURRENT_TIMESTAMP'))
    updated_at = Column(Text, nullable=False, server_default=text('CURRENT_TIMESTAMP'))
    id = Column(Integer, primary_key=True)
    reservation_group_id = Column(Text)
    session_id = Column(Text)
